from __future__ import annotations

import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime

from flask import Flask

from app.extensions import db
from app.models import Bookmark, EnhancementJob, utcnow
from app.services.enhancement import (
    BookmarkMetadata,
    apply_metadata,
    enhance_bookmark,
    find_preset,
    load_presets,
    needs_enhancement,
)
from app.services.library import LibraryError

ACTIVE_STATUSES = {"pending", "running"}
# Finished jobs keep their runtime stats for polling until pushed out.
RUNTIME_HISTORY_LIMIT = 20

_RUNTIME_LOCK = threading.Lock()
_RUNTIME_STATE: dict[int, dict] = {}
_STOP_REQUESTED: set[int] = set()
_FINISHED_JOBS: deque[int] = deque()


class EnhancementInProgress(LibraryError):
    status = 409

    def __init__(self, message: str = "Enhancement already in progress"):
        super().__init__(message)


@dataclass
class _EnhancementTarget:
    bookmark_id: str
    url: str
    title: str | None
    description: str | None


def active_enhancement_job() -> EnhancementJob | None:
    return (
        EnhancementJob.query.filter(EnhancementJob.status.in_(ACTIVE_STATUSES))
        .order_by(EnhancementJob.id.desc())
        .first()
    )


def create_enhancement_job() -> EnhancementJob:
    if active_enhancement_job():
        raise EnhancementInProgress()
    job = EnhancementJob(status="pending")
    db.session.add(job)
    db.session.flush()
    return job


def fail_orphaned_jobs() -> int:
    """Jobs left pending/running by a previous process can never finish."""
    orphaned = EnhancementJob.query.filter(
        EnhancementJob.status.in_(ACTIVE_STATUSES)
    ).all()
    for job in orphaned:
        job.status = "failed"
        job.error_message = "Interrupted by restart."
    return len(orphaned)


def start_enhancement_job(
    app: Flask,
    job_id: int,
    bookmark_ids: list[str] | None = None,
) -> None:
    worker = threading.Thread(
        target=_run_enhancement_job,
        args=(app, job_id, tuple(bookmark_ids or [])),
        daemon=True,
        name=f"enhancement-job-{job_id}",
    )
    worker.start()


def get_enhancement_job_details(job: EnhancementJob) -> dict:
    payload = job.as_dict()
    runtime = _runtime_snapshot(job.id)
    payload.update(
        {
            "current_title": runtime.get("current_title"),
            "current_url": runtime.get("current_url"),
            "items_per_second": runtime.get("items_per_second"),
            "eta_seconds": runtime.get("eta_seconds"),
            "elapsed_seconds": runtime.get("elapsed_seconds"),
            "status_message": runtime.get("status_message"),
            "can_stop": job.status in ACTIVE_STATUSES,
        }
    )
    return payload


def request_enhancement_job_stop(job_id: int) -> bool:
    job = db.session.get(EnhancementJob, job_id)
    if not job or job.status not in ACTIVE_STATUSES:
        return False

    with _RUNTIME_LOCK:
        _STOP_REQUESTED.add(job_id)

    _runtime_update(
        job_id, {"status_message": "Stop requested. Finishing active fetches..."}
    )
    return True


def _run_enhancement_job(
    app: Flask,
    job_id: int,
    bookmark_ids: tuple[str, ...] = (),
) -> None:
    with app.app_context():
        db.session.remove()
        started_at = utcnow()
        with _RUNTIME_LOCK:
            _RUNTIME_STATE.pop(job_id, None)
        _runtime_update(
            job_id,
            {
                "started_at": started_at,
                "status_message": "Preparing bookmarks...",
            },
        )

        try:
            job = db.session.get(EnhancementJob, job_id)
            if not job:
                return

            if _stop_requested(job_id):
                _finish_job(job_id, started_at, "stopped", "Stopped by user.")
                return

            targets, skipped = _load_targets(list(bookmark_ids))
            job.status = "running"
            job.progress = 0
            job.total_targets = len(targets)
            job.total_processed = 0
            job.total_enhanced = 0
            job.total_skipped = skipped
            job.total_errors = 0
            job.error_message = None
            db.session.commit()

            if not targets:
                _finish_job(
                    job_id, started_at, "done", "No bookmarks need enhancement."
                )
                return

            presets = load_presets(app.config.get("PRESET_DESCRIPTIONS_PATH", ""))
            preset_targets = [t for t in targets if find_preset(t.url, presets)]
            other_targets = [t for t in targets if not find_preset(t.url, presets)]

            counters = {"processed": 0, "enhanced": 0, "errors": 0}
            total = len(targets)

            for target in preset_targets:
                if _stop_requested(job_id):
                    _finish_job(job_id, started_at, "stopped", "Stopped by user.")
                    return
                metadata = enhance_bookmark(target, presets=presets)
                _store_result(
                    app, job_id, target, metadata, None, counters, total, started_at
                )

            stop_job = _enhance_remaining(
                app, job_id, other_targets, presets, counters, total, started_at
            )
            if stop_job:
                _finish_job(job_id, started_at, "stopped", "Stopped by user.")
                return

            completion_message = None
            if counters["errors"]:
                completion_message = f"Finished with {counters['errors']} errors."
            _finish_job(job_id, started_at, "done", completion_message)
        except Exception as exc:
            db.session.rollback()
            app.logger.exception("enhancement job %s failed", job_id)
            _finish_job(job_id, started_at, "failed", str(exc))
        finally:
            db.session.remove()


def _enhance_remaining(
    app: Flask,
    job_id: int,
    targets: list[_EnhancementTarget],
    presets: dict,
    counters: dict,
    total: int,
    started_at: datetime,
) -> bool:
    if not targets:
        return False

    fetch_remote = bool(app.config.get("ENHANCEMENT_FETCH_REMOTE", True))
    timeout = float(app.config["META_FETCH_TIMEOUT"])
    max_bytes = int(app.config["CONTENT_MAX_BYTES"])
    max_workers = int(app.config.get("ENHANCEMENT_WORKERS", 8))
    max_workers = max(1, min(max_workers, 16))

    executor = ThreadPoolExecutor(max_workers=max_workers)
    futures = {
        executor.submit(
            enhance_bookmark,
            target,
            presets=presets,
            fetch_remote=fetch_remote,
            timeout=timeout,
            max_bytes=max_bytes,
        ): target
        for target in targets
    }
    stop_job = False
    try:
        for future in as_completed(futures):
            if _stop_requested(job_id):
                stop_job = True
                break
            target = futures[future]
            metadata, error = _resolve_future(future)
            _store_result(
                app, job_id, target, metadata, error, counters, total, started_at
            )
    finally:
        if stop_job:
            executor.shutdown(wait=False, cancel_futures=True)
        else:
            executor.shutdown(wait=True)
    return stop_job


def _load_targets(
    bookmark_ids: list[str] | None = None,
) -> tuple[list[_EnhancementTarget], int]:
    query = Bookmark.query.order_by(Bookmark.created_at.asc())
    if bookmark_ids:
        query = query.filter(Bookmark.id.in_(list(dict.fromkeys(bookmark_ids))))

    targets: list[_EnhancementTarget] = []
    skipped = 0
    for row in query.all():
        if not needs_enhancement(row):
            skipped += 1
            continue
        targets.append(
            _EnhancementTarget(
                bookmark_id=row.id,
                url=row.url,
                title=row.title,
                description=row.description,
            )
        )
    return targets, skipped


def _resolve_future(
    future: Future[BookmarkMetadata | None],
) -> tuple[BookmarkMetadata | None, str | None]:
    try:
        return future.result(), None
    except Exception as exc:
        return None, str(exc)


def _store_result(
    app: Flask,
    job_id: int,
    target: _EnhancementTarget,
    metadata: BookmarkMetadata | None,
    error: str | None,
    counters: dict,
    total: int,
    started_at: datetime,
) -> None:
    status_message = f"Enhanced {target.url}"
    if error:
        app.logger.warning("enhancement failed for %s: %s", target.url, error)
        status_message = f"Failed to enhance {target.url}: {error[:140]}"
    elif metadata is not None:
        try:
            bookmark = db.session.get(Bookmark, target.bookmark_id)
            if bookmark:
                apply_metadata(bookmark, metadata)
                db.session.commit()
                counters["enhanced"] += 1
        except Exception as exc:
            db.session.rollback()
            app.logger.warning("storing enhancement for %s failed: %s", target.url, exc)
            error = str(exc)
            status_message = f"Failed to store metadata: {error[:140]}"
    else:
        status_message = f"Skipped {target.url}"

    counters["processed"] += 1
    if error:
        counters["errors"] += 1

    _persist_progress(
        job_id=job_id,
        counters=counters,
        total=total,
        started_at=started_at,
        current_title=target.title,
        current_url=target.url,
        status_message=status_message,
    )


def _persist_progress(
    job_id: int,
    counters: dict,
    total: int,
    started_at: datetime,
    current_title: str | None,
    current_url: str,
    status_message: str,
) -> None:
    processed = counters["processed"]
    job = db.session.get(EnhancementJob, job_id)
    if job:
        job.progress = int((processed / total) * 100) if total else 100
        job.total_processed = processed
        job.total_enhanced = counters["enhanced"]
        job.total_errors = counters["errors"]
        db.session.commit()

    _runtime_update(
        job_id,
        {
            "started_at": started_at,
            "current_title": current_title,
            "current_url": current_url,
            "status_message": status_message,
            "processed": processed,
            "total": total,
        },
    )


def _finish_job(
    job_id: int,
    started_at: datetime,
    status: str,
    error_message: str | None,
) -> None:
    job = db.session.get(EnhancementJob, job_id)
    if not job:
        return

    job.status = status
    if job.total_targets:
        job.progress = int((job.total_processed / job.total_targets) * 100)
    else:
        job.progress = 100
    job.error_message = error_message
    db.session.commit()

    _runtime_update(
        job_id,
        {
            "started_at": started_at,
            "finished_at": utcnow(),
            "status_message": error_message
            if error_message
            else ("Enhancement complete." if status == "done" else "Enhancement failed."),
        },
    )
    with _RUNTIME_LOCK:
        _STOP_REQUESTED.discard(job_id)
        _FINISHED_JOBS.append(job_id)
        while len(_FINISHED_JOBS) > RUNTIME_HISTORY_LIMIT:
            _RUNTIME_STATE.pop(_FINISHED_JOBS.popleft(), None)


def _stop_requested(job_id: int) -> bool:
    with _RUNTIME_LOCK:
        return job_id in _STOP_REQUESTED


def _runtime_update(job_id: int, updates: dict) -> None:
    with _RUNTIME_LOCK:
        state = _RUNTIME_STATE.get(job_id, {}).copy()
        state.update(updates)
        _RUNTIME_STATE[job_id] = state


def _runtime_snapshot(job_id: int) -> dict:
    with _RUNTIME_LOCK:
        state = _RUNTIME_STATE.get(job_id, {}).copy()

    started_at = state.get("started_at")
    finished_at = state.get("finished_at")
    now = finished_at or utcnow()

    elapsed_seconds = None
    if isinstance(started_at, datetime):
        elapsed_seconds = max(0, int((now - started_at).total_seconds()))

    processed = int(state.get("processed", 0) or 0)
    total = int(state.get("total", 0) or 0)

    items_per_second = None
    eta_seconds = None
    if elapsed_seconds and processed > 0:
        items_per_second = round(processed / elapsed_seconds, 2)
        if total > processed and items_per_second > 0:
            eta_seconds = int((total - processed) / items_per_second)

    state["elapsed_seconds"] = elapsed_seconds
    state["items_per_second"] = items_per_second
    state["eta_seconds"] = eta_seconds
    return state
