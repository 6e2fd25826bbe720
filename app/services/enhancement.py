from __future__ import annotations

import json
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from urllib.parse import quote, urlparse

from flask import current_app

from app.models import utcnow
from app.services.common import hostname_of, strip_www
from app.services.metadata import DEFAULT_MAX_BYTES, InvalidTargetUrl, fetch_meta

FAVICON_URL = "https://icons.duckduckgo.com/ip3/{domain}.ico"
SCREENSHOT_PATH = "/api/screenshot?url={url}"
MIN_DESCRIPTION_LENGTH = 20

# Sites whose own pages add nothing over the locally generated description.
WELL_KNOWN_SITES = ("github", "google", "youtube", "twitter", "facebook")

COVER_IMAGES = {
    "github.com": "https://github.githubassets.com/images/modules/site/social-cards/github-social.png",
    "twitter.com": "https://abs.twimg.com/responsive-web/client-web/icon-ios.b1fc7275.png",
    "linkedin.com": "https://static.licdn.com/sc/h/al2o9zrvru7aqj8e1x2rzsrca",
    "medium.com": "https://miro.medium.com/max/1200/1*jfdwtvU6V6g99q3G7gq7dQ.png",
}

PATH_DESCRIPTIONS = [
    (("/docs", "/documentation"), "Documentation and developer guides"),
    (("/blog",), "Blog posts and technical insights"),
    (("/api",), "API reference and interface docs"),
    (("/tutorial", "/guide"), "Tutorials and learning guides"),
    (("/tool",), "Online tools and utilities"),
    (("/download",), "Software downloads and resources"),
]

DOMAIN_DESCRIPTIONS = [
    (("github.io", "gitlab.io"), "Project homepage and documentation"),
    (("npm", "pypi", "maven"), "Software packages and libraries"),
    (("stackoverflow", "stackexchange"), "Programming Q&A and discussions"),
]

_YOUTUBE_ID_RE = re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/)([^&\n?#]+)")


@dataclass
class BookmarkMetadata:
    description: str | None = None
    title: str | None = None
    favicon: str | None = None
    cover_image: str | None = None
    source: str = "smart"


def favicon_url(url: str) -> str | None:
    host = hostname_of(url)
    if not host:
        return None
    return FAVICON_URL.format(domain=host)


def site_name(url: str) -> str:
    host = strip_www(hostname_of(url))
    name = host.split(".")[0] if host else ""
    return name[:1].upper() + name[1:]


def load_presets(path: str) -> dict:
    """Preset descriptions keyed by bare domain (no ``www.``).

    The parsed file is cached until its modification time changes.
    """
    if not path:
        return {}
    try:
        modified = Path(path).stat().st_mtime_ns
    except OSError:
        return {}
    return _read_presets(path, modified)


@lru_cache(maxsize=8)
def _read_presets(path: str, modified: int) -> dict:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        current_app.logger.warning("ignoring preset file %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        current_app.logger.warning("ignoring preset file %s: not an object", path)
        return {}
    return {
        strip_www(str(domain).lower()): entry
        for domain, entry in data.items()
        if isinstance(entry, dict)
    }


def find_preset(url: str, presets: dict | None) -> dict | None:
    if not presets:
        return None
    return presets.get(strip_www(hostname_of(url)))


def smart_description(url: str) -> str:
    try:
        path = urlparse((url or "").strip()).path.lower()
    except ValueError:
        return "Website link"
    domain = strip_www(hostname_of(url))
    name = site_name(url)

    for markers, text in PATH_DESCRIPTIONS:
        if any(marker in path for marker in markers):
            return f"{name} - {text}"
    for markers, text in DOMAIN_DESCRIPTIONS:
        if any(marker in domain for marker in markers):
            return text
    if not name:
        return "Website link"
    return f"{name} - Website link"


def youtube_video_id(url: str) -> str:
    match = _YOUTUBE_ID_RE.search(url or "")
    return match.group(1) if match else "default"


def cover_image_for(url: str) -> str | None:
    domain = strip_www(hostname_of(url))
    if not domain:
        return None
    if "youtube.com" in domain:
        return f"https://img.youtube.com/vi/{youtube_video_id(url)}/maxresdefault.jpg"
    for site, image in COVER_IMAGES.items():
        if site in domain:
            return image
    return SCREENSHOT_PATH.format(url=quote(url, safe=""))


def needs_enhancement(bookmark) -> bool:
    return len((bookmark.description or "").strip()) < MIN_DESCRIPTION_LENGTH


def is_well_known(url: str) -> bool:
    name = site_name(url).lower()
    return any(site in name for site in WELL_KNOWN_SITES)


def enhance_bookmark(
    bookmark,
    presets: dict | None = None,
    fetch_remote: bool = False,
    timeout: float = 7.0,
    max_bytes: int = DEFAULT_MAX_BYTES,
) -> BookmarkMetadata | None:
    if not needs_enhancement(bookmark):
        return None

    url = bookmark.url
    preset = find_preset(url, presets)
    if preset:
        return BookmarkMetadata(
            title=preset.get("title") or None,
            description=preset.get("description") or None,
            favicon=favicon_url(url),
            cover_image=preset.get("coverImage") or None,
            source="preset",
        )

    description = smart_description(url)
    if fetch_remote and not is_well_known(url):
        try:
            page = fetch_meta(url, timeout=timeout, max_bytes=max_bytes)
        except InvalidTargetUrl:
            page = None
        if page and not page.error and len(page.description) > len(description):
            return BookmarkMetadata(
                title=page.title or None,
                description=page.description,
                favicon=favicon_url(url),
                cover_image=cover_image_for(url),
                source="remote",
            )

    return BookmarkMetadata(
        description=description,
        favicon=favicon_url(url),
        cover_image=cover_image_for(url),
    )


def apply_metadata(bookmark, metadata: BookmarkMetadata) -> None:
    if metadata.description:
        bookmark.description = metadata.description
    # Never overwrite a title the user typed.
    current_title = (bookmark.title or "").strip()
    if metadata.title and (not current_title or current_title == bookmark.url):
        bookmark.title = metadata.title
    if metadata.favicon:
        bookmark.favicon = metadata.favicon
    if metadata.cover_image:
        bookmark.cover_image = metadata.cover_image
    bookmark.enhanced = True
    bookmark.enhanced_at = utcnow()
