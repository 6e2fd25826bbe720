from __future__ import annotations

from dataclasses import dataclass

import httpx


BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

IMAGE_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8",
}

# Errors an outbound fetch may raise; callers degrade to a fallback value.
FETCH_ERRORS = (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError, UnicodeError)


@dataclass
class FetchedPage:
    html: str
    final_url: str
    status_code: int

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def describe_fetch_error(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return exc.__class__.__name__


def fetch_html(url: str, timeout: float, max_bytes: int) -> FetchedPage:
    with httpx.Client(
        follow_redirects=True, timeout=timeout, headers=DEFAULT_HEADERS
    ) as client:
        with client.stream("GET", url) as response:
            chunks = []
            total = 0
            for chunk in response.iter_bytes():
                total += len(chunk)
                if total > max_bytes:
                    break
                chunks.append(chunk)
            data = b"".join(chunks)
            try:
                html = data.decode(response.encoding or "utf-8", errors="ignore")
            except LookupError:
                html = data.decode("utf-8", errors="ignore")
            return FetchedPage(
                html=html,
                final_url=str(response.url),
                status_code=response.status_code,
            )
