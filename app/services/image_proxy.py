from __future__ import annotations

import ipaddress
import re
import socket
from dataclasses import dataclass, field
from typing import Iterator
from urllib.parse import ParseResult, quote

import httpx

from app.services.content import FETCH_ERRORS, IMAGE_HEADERS, describe_fetch_error

CACHE_CONTROL = "public, max-age=86400, immutable"
S2_FAVICON_URL = "https://www.google.com/s2/favicons?domain={domain}&sz=256"
FALLBACK_S2 = "s2"

# Static asset hosts that only serve images with the main site as Referer.
REFERER_HOST_OVERRIDE = {
    "static.figma.com": "https://figma.com/",
    "static.canva.com": "https://canva.com/",
    "a.trellocdn.com": "https://trello.com/",
}

FAVICON_DOMAIN_OVERRIDE = {
    "static.figma.com": "figma.com",
    "static.canva.com": "canva.com",
    "a.trellocdn.com": "trello.com",
}

_BLOCKED_HOSTS = {"localhost", "127.0.0.1", "::1", "0.0.0.0"}
_PRIVATE_IPV4_RE = re.compile(
    r"^(10\.|192\.168\.|172\.(1[6-9]|2\d|3[0-1])\.|169\.254\.)"
)


class BlockedHostError(Exception):
    pass


@dataclass
class ProxiedImage:
    content_type: str
    body: object
    source_host: str
    fallback: str | None = None

    @property
    def headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": self.content_type,
            "Cache-Control": CACHE_CONTROL,
            "X-Proxy-From": self.source_host,
        }
        if self.fallback:
            headers["X-Proxy-Fallback"] = self.fallback
        return headers


@dataclass
class UpstreamImage:
    status_code: int
    content_type: str | None = None
    body: object | None = None


@dataclass
class ProxyResult:
    image: ProxiedImage | None
    errors: list[str] = field(default_factory=list)


class StreamedBody:
    """Response iterable that owns the upstream client until it is closed."""

    def __init__(self, client: httpx.Client, response: httpx.Response):
        self._client = client
        self._response = response

    def __iter__(self) -> Iterator[bytes]:
        try:
            yield from self._response.iter_bytes()
        finally:
            self.close()

    def close(self) -> None:
        self._response.close()
        self._client.close()


def is_private_hostname(host: str | None) -> bool:
    value = (host or "").strip().lower().strip("[]").rstrip(".")
    if not value:
        return True
    if value in _BLOCKED_HOSTS or value.endswith(".localhost"):
        return True
    if _PRIVATE_IPV4_RE.match(value):
        return True

    address = _parse_address(value)
    if address is None:
        # Dot-less names resolve on the local network only.
        return "." not in value
    return _is_blocked_address(address)


def resolves_to_private_address(host: str | None) -> bool:
    """True when any address the resolver returns for ``host`` is blocked."""
    try:
        infos = socket.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    except (OSError, UnicodeError):
        # Unresolvable hosts fail on connect.
        return False
    for _family, _type, _proto, _name, sockaddr in infos:
        address = _parse_address(str(sockaddr[0]).split("%", 1)[0])
        if address is None or _is_blocked_address(address):
            return True
    return False


def _parse_address(value: str):
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        pass
    if ":" in value:
        return None
    # The resolver also accepts shorthand and octal forms such as 127.1.
    try:
        return ipaddress.IPv4Address(socket.inet_aton(value))
    except OSError:
        return None


def _is_blocked_address(address) -> bool:
    if getattr(address, "ipv4_mapped", None):
        address = address.ipv4_mapped
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
        or address.is_reserved
        or address.is_multicast
    )


def root_domain(host: str) -> str:
    parts = host.split(".")
    if len(parts) <= 2:
        return host
    return ".".join(parts[-2:])


def favicon_fallback_url(host: str) -> str:
    domain = FAVICON_DOMAIN_OVERRIDE.get(host) or root_domain(host)
    return S2_FAVICON_URL.format(domain=quote(domain, safe=""))


def referer_for(target: ParseResult) -> str:
    host = target.hostname or ""
    if host in REFERER_HOST_OVERRIDE:
        return REFERER_HOST_OVERRIDE[host]
    if ":" in host:
        host = f"[{host}]"
    port = f":{target.port}" if target.port else ""
    return f"{target.scheme}://{host}{port}/"


def _reject_private_hosts(request: httpx.Request) -> None:
    host = request.url.host
    if is_private_hostname(host) or resolves_to_private_address(host):
        raise BlockedHostError(f"Blocked host: {host}")


def open_image_stream(
    url: str, headers: dict[str, str], timeout: float
) -> UpstreamImage:
    client = httpx.Client(
        follow_redirects=True,
        timeout=timeout,
        headers=headers,
        event_hooks={"request": [_reject_private_hosts]},
    )
    try:
        response = client.send(client.build_request("GET", url), stream=True)
    except Exception:
        client.close()
        raise

    if not response.is_success:
        response.close()
        client.close()
        return UpstreamImage(status_code=response.status_code)

    return UpstreamImage(
        status_code=response.status_code,
        content_type=response.headers.get("content-type"),
        body=StreamedBody(client, response),
    )


def proxy_image(target: ParseResult, timeout: float) -> ProxyResult:
    host = target.hostname or ""
    errors: list[str] = []

    primary_headers = dict(IMAGE_HEADERS, Referer=referer_for(target))
    try:
        upstream = open_image_stream(target.geturl(), primary_headers, timeout)
        if upstream.body is not None:
            return ProxyResult(
                image=ProxiedImage(
                    content_type=upstream.content_type or "application/octet-stream",
                    body=upstream.body,
                    source_host=host,
                ),
                errors=errors,
            )
        errors.append(f"upstream returned HTTP {upstream.status_code}")
    except (BlockedHostError, *FETCH_ERRORS) as exc:
        errors.append(describe_fetch_error(exc))

    try:
        upstream = open_image_stream(
            favicon_fallback_url(host), dict(IMAGE_HEADERS), timeout
        )
        if upstream.body is not None:
            return ProxyResult(
                image=ProxiedImage(
                    content_type=upstream.content_type or "image/png",
                    body=upstream.body,
                    source_host=host,
                    fallback=FALLBACK_S2,
                ),
                errors=errors,
            )
        errors.append(f"favicon fallback returned HTTP {upstream.status_code}")
    except (BlockedHostError, *FETCH_ERRORS) as exc:
        errors.append(describe_fetch_error(exc))

    return ProxyResult(image=None, errors=errors)
