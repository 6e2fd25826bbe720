from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import ParseResult, quote

import httpx
from flask import render_template
from markupsafe import escape

from app.services.common import strip_www
from app.services.content import (
    BROWSER_USER_AGENT,
    FETCH_ERRORS,
    describe_fetch_error,
)

SCREENSHOT_CACHE_CONTROL = "public, max-age=3600"
PLACEHOLDER_CACHE_CONTROL = "public, max-age=300"


@dataclass
class Screenshot:
    content: bytes | str
    content_type: str
    cache_control: str
    placeholder: bool = False
    error: str | None = None


def render_placeholder(target: ParseResult) -> str:
    hostname = target.hostname or ""
    initial = strip_www(hostname)[:1].upper() or "?"
    return render_template(
        "screenshot_placeholder.svg",
        hostname=escape(hostname),
        initial=escape(initial),
    )


def _request_service(service_url: str, timeout: float) -> httpx.Response:
    with httpx.Client(
        follow_redirects=True,
        timeout=timeout,
        headers={"User-Agent": BROWSER_USER_AGENT},
    ) as client:
        return client.get(service_url)


def capture_screenshot(
    target: ParseResult, service_template: str, timeout: float
) -> Screenshot:
    error = None
    if service_template:
        service_url = service_template.format(url=quote(target.geturl(), safe=""))
        try:
            response = _request_service(service_url, timeout)
            content_type = response.headers.get("content-type", "").split(";")[0]
            if response.is_success and content_type.startswith("image/"):
                return Screenshot(
                    content=response.content,
                    content_type=content_type,
                    cache_control=SCREENSHOT_CACHE_CONTROL,
                )
            error = f"screenshot service returned HTTP {response.status_code}"
        except FETCH_ERRORS as exc:
            error = describe_fetch_error(exc)

    return Screenshot(
        content=render_placeholder(target),
        content_type="image/svg+xml",
        cache_control=PLACEHOLDER_CACHE_CONTROL,
        placeholder=True,
        error=error,
    )
