import secrets
import time
from urllib.parse import urlparse


def new_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


def normalize_url_key(url: str) -> str:
    return (url or "").strip().lower()


def hostname_of(url: str) -> str:
    try:
        return (urlparse((url or "").strip()).hostname or "").lower()
    except ValueError:
        return ""


def strip_www(host: str) -> str:
    return host[4:] if host.startswith("www.") else host


def parse_tags(raw) -> list[str]:
    if not raw:
        return []
    if isinstance(raw, str):
        tokens = raw.replace(";", ",").split(",")
    else:
        tokens = [str(item) for item in raw if item is not None]

    tags: list[str] = []
    seen: set[str] = set()
    for token in tokens:
        tag = token.strip()
        key = tag.lower()
        if not tag or key in seen:
            continue
        seen.add(key)
        tags.append(tag)
    return tags


def to_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}
