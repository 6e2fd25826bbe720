from __future__ import annotations

import json

from flask import Response, current_app, jsonify, request

from app.extensions import db
from app.library import library_bp
from app.models import Bookmark, EnhancementJob, utcnow
from app.services import library
from app.services.bookmark_html import (
    build_export_html,
    build_import_payload,
    parse_bookmark_html,
)
from app.services.common import to_bool
from app.services.enhancement import apply_metadata, enhance_bookmark, load_presets
from app.services.enhancement_jobs import (
    EnhancementInProgress,
    create_enhancement_job,
    get_enhancement_job_details,
    request_enhancement_job_stop,
    start_enhancement_job,
)
from app.services.library import InvalidInput, LibraryError
from app.services.search import search_bookmarks


@library_bp.errorhandler(LibraryError)
def handle_library_error(exc: LibraryError):
    db.session.rollback()
    return jsonify({"error": exc.message}), exc.status


def _selected_ids(payload: dict, key: str = "ids") -> list[str]:
    raw = payload.get(key)
    if not isinstance(raw, list):
        raise InvalidInput(f"{key} must be a list")
    return [str(item) for item in raw if item]


def _launch_enhancement(bookmark_ids: list[str] | None = None) -> EnhancementJob:
    job = create_enhancement_job()
    db.session.commit()
    start_enhancement_job(
        app=current_app._get_current_object(),
        job_id=job.id,
        bookmark_ids=bookmark_ids,
    )
    return job


@library_bp.route("/categories", methods=["GET"])
def categories_list():
    return jsonify(
        {"items": [category.as_dict() for category in library.list_categories()]}
    )


@library_bp.route("/categories", methods=["POST"])
def categories_create():
    payload = request.get_json(silent=True) or {}
    category = library.add_category(payload.get("name"))
    db.session.commit()
    return jsonify(category.as_dict()), 201


@library_bp.route("/categories/<category_id>", methods=["PATCH"])
def categories_update(category_id: str):
    payload = request.get_json(silent=True) or {}
    category = library.update_category(category_id, payload.get("name"))
    db.session.commit()
    return jsonify(category.as_dict())


@library_bp.route("/categories/<category_id>", methods=["DELETE"])
def categories_delete(category_id: str):
    removed = library.delete_category(category_id)
    db.session.commit()
    return jsonify({"status": "deleted", "removed_bookmarks": removed})


@library_bp.route("/categories/<category_id>/sub-categories", methods=["POST"])
def sub_categories_create(category_id: str):
    payload = request.get_json(silent=True) or {}
    sub_category = library.add_sub_category(category_id, payload.get("name"))
    db.session.commit()
    return jsonify(sub_category.as_dict()), 201


@library_bp.route("/sub-categories/<sub_category_id>", methods=["PATCH"])
def sub_categories_update(sub_category_id: str):
    payload = request.get_json(silent=True) or {}
    sub_category = library.update_sub_category(sub_category_id, payload.get("name"))
    db.session.commit()
    return jsonify(sub_category.as_dict())


@library_bp.route("/sub-categories/<sub_category_id>", methods=["DELETE"])
def sub_categories_delete(sub_category_id: str):
    removed = library.delete_sub_category(sub_category_id)
    db.session.commit()
    return jsonify({"status": "deleted", "removed_bookmarks": removed})


@library_bp.route("/bookmarks", methods=["GET"])
def bookmarks_list():
    items = library.list_bookmarks(
        sub_category_id=request.args.get("sub_category_id"),
        category_id=request.args.get("category_id"),
        tag=request.args.get("tag"),
    )
    return jsonify({"items": [item.as_dict() for item in items]})


@library_bp.route("/bookmarks", methods=["POST"])
def bookmarks_create():
    payload = request.get_json(silent=True) or {}
    bookmark = library.add_bookmark(payload)
    db.session.commit()
    return jsonify(bookmark.as_dict()), 201


@library_bp.route("/bookmarks/<bookmark_id>", methods=["GET"])
def bookmarks_get(bookmark_id: str):
    return jsonify(library.get_bookmark(bookmark_id).as_dict())


@library_bp.route("/bookmarks/<bookmark_id>", methods=["PATCH"])
def bookmarks_update(bookmark_id: str):
    payload = request.get_json(silent=True) or {}
    bookmark = library.update_bookmark(bookmark_id, payload)
    db.session.commit()
    return jsonify(bookmark.as_dict())


@library_bp.route("/bookmarks/<bookmark_id>", methods=["DELETE"])
def bookmarks_delete(bookmark_id: str):
    library.delete_bookmark(bookmark_id)
    db.session.commit()
    return jsonify({"status": "deleted"})


@library_bp.route("/bookmarks/<bookmark_id>/move", methods=["POST"])
def bookmarks_move(bookmark_id: str):
    payload = request.get_json(silent=True) or {}
    target = payload.get("subCategoryId") or payload.get("sub_category_id")
    if not target:
        raise InvalidInput("subCategoryId is required")
    bookmark = library.move_bookmark(bookmark_id, str(target))
    db.session.commit()
    return jsonify(bookmark.as_dict())


@library_bp.route("/bookmarks/move", methods=["POST"])
def bookmarks_move_many():
    payload = request.get_json(silent=True) or {}
    target = payload.get("subCategoryId") or payload.get("sub_category_id")
    if not target:
        raise InvalidInput("subCategoryId is required")
    stats = library.move_bookmarks(_selected_ids(payload), str(target))
    db.session.commit()
    return jsonify({"moved": stats.moved, "skipped": stats.skipped})


@library_bp.route("/bookmarks/delete", methods=["POST"])
def bookmarks_delete_many():
    payload = request.get_json(silent=True) or {}
    deleted = library.delete_bookmarks(_selected_ids(payload))
    db.session.commit()
    return jsonify({"deleted": deleted})


@library_bp.route("/bookmarks/<bookmark_id>/enhance", methods=["POST"])
def bookmarks_enhance(bookmark_id: str):
    bookmark = library.get_bookmark(bookmark_id)
    metadata = enhance_bookmark(
        bookmark,
        presets=load_presets(current_app.config.get("PRESET_DESCRIPTIONS_PATH", "")),
        fetch_remote=current_app.config.get("ENHANCEMENT_FETCH_REMOTE", True),
        timeout=current_app.config["META_FETCH_TIMEOUT"],
        max_bytes=current_app.config["CONTENT_MAX_BYTES"],
    )
    if metadata is None:
        return jsonify({"bookmark": bookmark.as_dict(), "enhanced": False})

    apply_metadata(bookmark, metadata)
    db.session.commit()
    return jsonify(
        {"bookmark": bookmark.as_dict(), "enhanced": True, "source": metadata.source}
    )


@library_bp.route("/tags", methods=["GET"])
def tags_list():
    return jsonify({"items": library.list_tags()})


@library_bp.route("/search", methods=["GET"])
def search_api():
    query = (request.args.get("q") or "").strip()
    if not query:
        return jsonify({"items": []})

    source = Bookmark.query.order_by(Bookmark.updated_at.desc()).all()
    ranked = search_bookmarks(
        source, query, limit=request.args.get("limit", type=int) or 50
    )
    return jsonify(
        {
            "items": [
                {
                    **item["bookmark"].as_dict(),
                    "score": item["score"],
                    "match_reasons": item["reasons"],
                }
                for item in ranked
            ]
        }
    )


def _read_import_payload() -> dict:
    upload = request.files.get("file")
    if upload is None:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            raise InvalidInput("JSON body or file field is required")
        return payload

    filename = (upload.filename or "").lower()
    text = upload.read().decode("utf-8", errors="ignore")
    if filename.endswith(".json"):
        try:
            payload = json.loads(text)
        except ValueError:
            raise InvalidInput("file is not valid JSON") from None
        if not isinstance(payload, dict):
            raise InvalidInput("file is not a library export")
        return payload
    if filename.endswith((".html", ".htm")):
        return build_import_payload(parse_bookmark_html(text))
    raise InvalidInput("only .json and .html files can be imported")


@library_bp.route("/import", methods=["POST"])
def import_api():
    payload = _read_import_payload()
    stats = library.import_library(payload)
    db.session.commit()

    enhance = to_bool(
        request.args.get("enhance")
        or request.form.get("enhance")
        or (payload.get("enhance") if request.files.get("file") is None else None)
    )
    job_payload = None
    if enhance and stats.bookmark_ids:
        try:
            job = _launch_enhancement(stats.bookmark_ids)
            job_payload = get_enhancement_job_details(job)
        except EnhancementInProgress as exc:
            current_app.logger.info("import enhancement not started: %s", exc.message)

    return jsonify({"status": "done", "stats": stats.as_dict(), "job": job_payload})


@library_bp.route("/export", methods=["GET"])
def export_api():
    export_format = (request.args.get("format") or "json").strip().lower()
    data = library.export_library()
    timestamp = utcnow().strftime("%Y%m%d-%H%M%S")

    if export_format == "html":
        body = build_export_html(data)
        content_type = "text/html; charset=utf-8"
    elif export_format == "json":
        body = json.dumps(data, ensure_ascii=False, indent=2)
        content_type = "application/json; charset=utf-8"
    else:
        raise InvalidInput("format must be json or html")

    filename = f"markshelf-bookmarks-{timestamp}.{export_format}"
    return Response(
        body,
        content_type=content_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@library_bp.route("/library/initialize", methods=["POST"])
def library_initialize():
    seeded = library.initialize_library()
    db.session.commit()
    return jsonify({"status": "seeded" if seeded else "unchanged"})


@library_bp.route("/library/reset", methods=["POST"])
def library_reset():
    library.reset_library()
    db.session.commit()
    return jsonify({"status": "reset"})


@library_bp.route("/enhancement/jobs", methods=["POST"])
def enhancement_jobs_create():
    payload = request.get_json(silent=True) or {}
    bookmark_ids = _selected_ids(payload) if "ids" in payload else None
    job = _launch_enhancement(bookmark_ids)
    return jsonify({"job": get_enhancement_job_details(job)}), 202


@library_bp.route("/enhancement/jobs/<int:job_id>", methods=["GET"])
def enhancement_job_status(job_id: int):
    job = db.session.get(EnhancementJob, job_id)
    if not job:
        return jsonify({"error": "job not found"}), 404
    return jsonify(get_enhancement_job_details(job))


@library_bp.route("/enhancement/jobs/<int:job_id>/stop", methods=["POST"])
def enhancement_job_stop(job_id: int):
    job = db.session.get(EnhancementJob, job_id)
    if not job:
        return jsonify({"error": "job not found"}), 404
    stopped = request_enhancement_job_stop(job.id)
    payload = get_enhancement_job_details(job)
    payload["stop_requested"] = stopped
    return jsonify(payload), (202 if stopped else 409)
