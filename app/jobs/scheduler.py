import os

from apscheduler.schedulers.background import BackgroundScheduler

from app.extensions import db
from app.models import Bookmark
from app.services.enhancement import (
    apply_metadata,
    enhance_bookmark,
    load_presets,
    needs_enhancement,
)
from app.services.enhancement_jobs import active_enhancement_job


scheduler = BackgroundScheduler()


def run_enhancement_sweep(app):
    with app.app_context():
        if active_enhancement_job():
            app.logger.info("enhancement sweep skipped: job in progress")
            return 0

        limit = int(app.config.get("ENHANCEMENT_SWEEP_LIMIT", 50))
        bookmarks = (
            Bookmark.query.filter_by(enhanced=False)
            .order_by(Bookmark.created_at.asc())
            .limit(limit)
            .all()
        )
        presets = load_presets(app.config.get("PRESET_DESCRIPTIONS_PATH", ""))

        enhanced = 0
        for bookmark in bookmarks:
            if not needs_enhancement(bookmark):
                bookmark.enhanced = True
                continue
            try:
                metadata = enhance_bookmark(
                    bookmark,
                    presets=presets,
                    fetch_remote=app.config.get("ENHANCEMENT_FETCH_REMOTE", True),
                    timeout=app.config["META_FETCH_TIMEOUT"],
                    max_bytes=app.config["CONTENT_MAX_BYTES"],
                )
            except Exception as exc:
                app.logger.warning("sweep failed for %s: %s", bookmark.url, exc)
                continue
            if metadata:
                apply_metadata(bookmark, metadata)
                enhanced += 1

        db.session.commit()
        return enhanced


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return

    interval_minutes = app.config["ENHANCEMENT_SWEEP_INTERVAL_MINUTES"]
    if not scheduler.get_jobs():
        scheduler.add_job(
            run_enhancement_sweep,
            "interval",
            minutes=interval_minutes,
            kwargs={"app": app},
            id="enhancement_sweep",
            replace_existing=True,
        )
        scheduler.start()
