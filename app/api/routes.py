from __future__ import annotations

from urllib.parse import urlparse

from flask import Response, current_app, jsonify, request

from app.api import api_bp
from app.services.image_proxy import is_private_hostname, proxy_image
from app.services.metadata import InvalidTargetUrl, fetch_meta, fetch_title
from app.services.screenshot import capture_screenshot


def _invalid_url_response(exc: InvalidTargetUrl):
    return jsonify({"error": exc.message}), 400


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "Markshelf"})


@api_bp.route("/fetch-title", methods=["GET"])
def fetch_title_api():
    url = (request.args.get("url") or "").strip()
    try:
        result = fetch_title(
            url,
            timeout=current_app.config["TITLE_FETCH_TIMEOUT"],
            max_bytes=current_app.config["CONTENT_MAX_BYTES"],
        )
    except InvalidTargetUrl as exc:
        return _invalid_url_response(exc)

    if result.error:
        current_app.logger.info("fetch-title fallback for %s: %s", url, result.error)
    return jsonify(result.as_dict())


@api_bp.route("/fetch-meta", methods=["GET"])
def fetch_meta_api():
    url = (request.args.get("url") or "").strip()
    try:
        result = fetch_meta(
            url,
            timeout=current_app.config["META_FETCH_TIMEOUT"],
            max_bytes=current_app.config["CONTENT_MAX_BYTES"],
        )
    except InvalidTargetUrl as exc:
        return _invalid_url_response(exc)

    if result.error:
        current_app.logger.info("fetch-meta fallback for %s: %s", url, result.error)
    return jsonify(result.as_dict())


@api_bp.route("/proxy-image", methods=["GET"])
def proxy_image_api():
    url = (request.args.get("url") or request.args.get("src") or "").strip()
    if not url:
        return jsonify({"error": "URL parameter is required"}), 400

    try:
        target = urlparse(url)
        host = target.hostname
        target.port  # raises ValueError when out of range
    except ValueError:
        return jsonify({"error": "Invalid URL"}), 400
    if not target.scheme or not host:
        return jsonify({"error": "Invalid URL"}), 400
    if target.scheme.lower() not in {"http", "https"}:
        return jsonify({"error": "Unsupported protocol"}), 400
    if is_private_hostname(host):
        return jsonify({"error": "Blocked host"}), 403

    result = proxy_image(target, timeout=current_app.config["IMAGE_PROXY_TIMEOUT"])
    if result.image is None:
        current_app.logger.warning(
            "proxy-image failed for %s: %s", url, "; ".join(result.errors)
        )
        return jsonify({"error": "Upstream error with fallback failed"}), 502

    if result.errors:
        current_app.logger.info(
            "proxy-image fell back for %s: %s", url, "; ".join(result.errors)
        )
    return Response(result.image.body, status=200, headers=result.image.headers)


@api_bp.route("/screenshot", methods=["GET"])
def screenshot_api():
    url = (request.args.get("url") or "").strip()
    if not url:
        return jsonify({"error": "URL parameter is required"}), 400
    try:
        target = urlparse(url)
        host = target.hostname
    except ValueError:
        return jsonify({"error": "Invalid URL"}), 400
    if not target.scheme or not host:
        return jsonify({"error": "Invalid URL"}), 400

    shot = capture_screenshot(
        target,
        service_template=current_app.config.get("SCREENSHOT_SERVICE_URL", ""),
        timeout=current_app.config["SCREENSHOT_TIMEOUT"],
    )
    if shot.error:
        current_app.logger.info("screenshot placeholder for %s: %s", url, shot.error)
    return Response(
        shot.content,
        status=200,
        headers={
            "Content-Type": shot.content_type,
            "Cache-Control": shot.cache_control,
        },
    )
