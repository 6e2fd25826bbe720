from __future__ import annotations

import html as html_lib
import json
import re
import warnings
from dataclasses import dataclass, field
from urllib.parse import ParseResult, urlparse

import trafilatura
from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning

from app.services.common import strip_www
from app.services.content import FETCH_ERRORS, describe_fetch_error, fetch_html

TITLE_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 200
ARTICLE_SNIPPET_LENGTH = 180
MIN_ARTICLE_LENGTH = 40
DEFAULT_MAX_BYTES = 2_500_000

TITLE_FALLBACK_WARNING = "Failed to fetch title, using domain name"
META_FALLBACK_WARNING = "Failed to fetch metadata, using domain name"

ALLOWED_SCHEMES = {"http", "https"}

SELECTORS_BY_HOST: dict[str, list[str]] = {
    "blog.csdn.net": ["#content_views"],
    "zhuanlan.zhihu.com": ["article", ".Post-RichTextContainer", ".RichText"],
    "juejin.cn": ["article", ".markdown-body", ".article-content"],
    "cnblogs.com": ["#cnblogs_post_body", ".post", ".postBody"],
    "jianshu.com": ["article", ".note .content", ".article"],
    "medium.com": [
        "article",
        'article div[role="article"]',
        "article .pw-post-body-paragraph",
    ],
    "ahrefs.com": [
        "article",
        ".post__content",
        ".article__content",
        ".blog-content",
    ],
    "moz.com": ["article", ".article-content", ".entry-content"],
    "searchengineland.com": ["article", ".article__content", ".entry-content"],
    "backlinko.com": ["article", ".entry-content", ".post-content"],
    "neilpatel.com": [
        "article",
        ".entry",
        ".post-content",
        ".single-post-content",
    ],
    "hubspot.com": ["article", ".post-body", ".article-body"],
    "semrush.com": ["article", ".c-blog__content", ".article__content"],
    "searchenginejournal.com": [
        "article",
        ".article__content",
        ".single-post .content",
    ],
    "yoast.com": ["article", ".article__content", ".entry-content"],
    "contentmarketinginstitute.com": [
        "article",
        ".entry-content",
        ".article__content",
    ],
    "reddit.com": ["article"],
}

GENERIC_SELECTORS = [
    "article",
    "main article",
    '[itemprop="articleBody"]',
    ".article-content",
    ".post-content",
    ".entry-content",
]

# Scripts in which single-page apps ship their initial state.
SPA_STATE_SCRIPTS_BY_HOST = {"zhuanlan.zhihu.com": ["js-initialData"]}
GENERIC_SPA_STATE_SCRIPTS = ["__NEXT_DATA__"]

_TITLE_RE = re.compile(r"<title[^>]*>([^<]*)</title>", re.IGNORECASE)
_META_TAG_RE = re.compile(r"<meta\b[^>]*>", re.IGNORECASE)
_ATTRIBUTE_RE = re.compile(
    r"""([a-zA-Z_:][-a-zA-Z0-9_:.]*)\s*=\s*(?:"([^"]*)"|'([^']*)')"""
)
_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b[\s\S]*?</\1\s*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")
_JSON_LD_RE = re.compile(
    r"""<script[^>]*type=["']application/ld\+json["'][^>]*>([\s\S]*?)</script>""",
    re.IGNORECASE,
)
_MAX_JSON_DEPTH = 200


class InvalidTargetUrl(ValueError):
    messages = {
        "missing": "URL parameter is required",
        "invalid": "Invalid URL",
        "protocol": "Invalid URL protocol",
    }

    def __init__(self, reason: str):
        super().__init__(self.messages[reason])
        self.reason = reason
        self.message = self.messages[reason]


@dataclass
class ArticleExtract:
    text: str | None = None
    title: str | None = None


@dataclass
class TitleResult:
    title: str
    url: str
    warning: str | None = None
    error: str | None = field(default=None, repr=False)

    def as_dict(self):
        payload = {"title": self.title, "url": self.url}
        if self.warning:
            payload["warning"] = self.warning
        return payload


@dataclass
class PageMeta:
    title: str
    description: str
    url: str
    warning: str | None = None
    error: str | None = field(default=None, repr=False)

    def as_dict(self):
        payload = {
            "title": self.title,
            "description": self.description,
            "url": self.url,
        }
        if self.warning:
            payload["warning"] = self.warning
        return payload


def validate_target_url(raw: str | None) -> ParseResult:
    value = (raw or "").strip()
    if not value:
        raise InvalidTargetUrl("missing")
    try:
        parsed = urlparse(value)
        hostname = parsed.hostname
    except ValueError:
        raise InvalidTargetUrl("invalid") from None
    scheme = parsed.scheme.lower()
    if scheme and scheme not in ALLOWED_SCHEMES:
        raise InvalidTargetUrl("protocol")
    if not scheme or not hostname:
        raise InvalidTargetUrl("invalid")
    return parsed


def decode_entities(text: str) -> str:
    return html_lib.unescape(text or "")


def clean_text(text: str | None) -> str:
    return _WHITESPACE_RE.sub(" ", decode_entities(text or "")).strip()


def strip_html(fragment: str | None) -> str:
    without_code = _SCRIPT_STYLE_RE.sub("", fragment or "")
    return clean_text(_TAG_RE.sub(" ", without_code))


def truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def domain_title(target: ParseResult | str) -> str:
    if isinstance(target, str):
        target = urlparse(target)
    domain = strip_www(target.hostname or "")
    return domain[:1].upper() + domain[1:]


def _meta_attributes(tag: str) -> dict[str, str]:
    attributes = {}
    for name, double_quoted, single_quoted in _ATTRIBUTE_RE.findall(tag):
        attributes.setdefault(name.lower(), double_quoted or single_quoted)
    return attributes


def find_meta_content(html: str, attribute: str, value: str) -> str:
    for tag in _META_TAG_RE.findall(html or ""):
        attributes = _meta_attributes(tag)
        if attributes.get(attribute, "").strip().lower() != value:
            continue
        content = attributes.get("content", "").strip()
        if content:
            return content
    return ""


def extract_title(html: str) -> str:
    match = _TITLE_RE.search(html or "")
    if match and match.group(1).strip():
        return match.group(1).strip()
    return find_meta_content(html, "property", "og:title")


def extract_description(html: str) -> str:
    return find_meta_content(html, "name", "description") or find_meta_content(
        html, "property", "og:description"
    )


def _pick_json_ld_node(data):
    if isinstance(data, list):
        data = next((item for item in data if isinstance(item, dict)), None)
    if not isinstance(data, dict):
        return None

    keys = ("headline", "name", "articleBody", "description")
    if any(data.get(key) for key in keys):
        return data
    graph = data.get("@graph")
    if isinstance(graph, list):
        for node in graph:
            if isinstance(node, dict) and any(node.get(key) for key in keys):
                return node
    return data


def extract_json_ld(html: str):
    match = _JSON_LD_RE.search(html or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(1).strip())
    except ValueError:
        return None
    return _pick_json_ld_node(data)


def extract_json_by_script_id(html: str, script_id: str):
    pattern = re.compile(
        rf"""<script[^>]*id=["']{re.escape(script_id)}["'][^>]*>([\s\S]*?)</script>""",
        re.IGNORECASE,
    )
    match = pattern.search(html or "")
    if not match:
        return None
    try:
        return json.loads(match.group(1).strip())
    except ValueError:
        return None


def deep_find_article(data, depth: int = 0) -> ArticleExtract | None:
    """Depth-first search for the first object carrying an article body."""
    if depth > _MAX_JSON_DEPTH:
        return None

    if isinstance(data, dict):
        content = data.get("content")
        if isinstance(content, str) and len(content) > MIN_ARTICLE_LENGTH:
            title = data.get("title")
            return ArticleExtract(
                text=content, title=title if isinstance(title, str) else None
            )
        body = data.get("articleBody")
        if isinstance(body, str) and len(body) > MIN_ARTICLE_LENGTH:
            headline = data.get("headline")
            return ArticleExtract(
                text=body, title=headline if isinstance(headline, str) else None
            )
        children = data.values()
    elif isinstance(data, list):
        children = data
    else:
        return None

    for child in children:
        found = deep_find_article(child, depth + 1)
        if found:
            return found
    return None


def _build_soup(html: str) -> BeautifulSoup:
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
        return BeautifulSoup(html, "lxml")


def _selectors_for_host(host: str) -> list[str]:
    selectors = SELECTORS_BY_HOST.get(host, []) + GENERIC_SELECTORS
    return list(dict.fromkeys(selectors))


def _extract_by_selectors(html: str, host: str) -> str | None:
    soup = _build_soup(html)
    for selector in _selectors_for_host(host):
        node = soup.select_one(selector)
        if node is None:
            continue
        text = strip_html(node.decode_contents())
        if len(text) > MIN_ARTICLE_LENGTH:
            return text
    return None


def _extract_spa_state(html: str, host: str) -> ArticleExtract | None:
    script_ids = SPA_STATE_SCRIPTS_BY_HOST.get(host, []) + GENERIC_SPA_STATE_SCRIPTS
    for script_id in script_ids:
        found = deep_find_article(extract_json_by_script_id(html, script_id))
        if found and found.text:
            return found
    return None


def _extract_main_text(html: str) -> str | None:
    try:
        extracted = trafilatura.extract(
            html,
            include_comments=False,
            include_tables=False,
            favor_precision=True,
        )
    except Exception:
        return None
    text = clean_text(extracted)
    if len(text) > MIN_ARTICLE_LENGTH:
        return text
    return None


def extract_article(html: str, host: str) -> ArticleExtract:
    """Best-effort article snippet for pages without a meta description.

    Tries CSS selectors (host-specific first), JSON-LD, SPA state embedded in
    script tags and finally trafilatura. A JSON-LD headline found on the way
    is kept as the title even when a later step supplies the text.
    """
    host = strip_www((host or "").lower())
    html = html or ""

    text = _extract_by_selectors(html, host)
    if text:
        return ArticleExtract(text=text)

    json_ld = extract_json_ld(html)
    json_ld_title = None
    if isinstance(json_ld, dict):
        headline = json_ld.get("headline") or json_ld.get("name")
        json_ld_title = headline if isinstance(headline, str) else None
        body = json_ld.get("articleBody") or json_ld.get("description")
        if body:
            snippet = strip_html(str(body))[:ARTICLE_SNIPPET_LENGTH]
            if snippet:
                return ArticleExtract(text=snippet, title=json_ld_title)

    found = _extract_spa_state(html, host)
    if found:
        return ArticleExtract(
            text=strip_html(found.text)[:ARTICLE_SNIPPET_LENGTH],
            title=found.title or json_ld_title,
        )

    main_text = _extract_main_text(html)
    if main_text:
        return ArticleExtract(
            text=main_text[:ARTICLE_SNIPPET_LENGTH], title=json_ld_title
        )

    return ArticleExtract(title=json_ld_title)


def extract_page_meta(html: str, target: ParseResult, url: str) -> PageMeta:
    title = extract_title(html)
    description = extract_description(html)

    if not description:
        article = extract_article(html, target.hostname or "")
        description = article.text or ""
        if not title and article.title:
            title = article.title

    title = clean_text(title)
    description = truncate(clean_text(description), DESCRIPTION_MAX_LENGTH)
    return PageMeta(
        title=title or domain_title(target),
        description=description,
        url=url,
    )


def fetch_title(
    url: str, timeout: float, max_bytes: int = DEFAULT_MAX_BYTES
) -> TitleResult:
    target = validate_target_url(url)
    fallback = domain_title(target)

    try:
        page = fetch_html(url, timeout=timeout, max_bytes=max_bytes)
    except FETCH_ERRORS as exc:
        return TitleResult(
            title=fallback,
            url=url,
            warning=TITLE_FALLBACK_WARNING,
            error=describe_fetch_error(exc),
        )

    if not page.ok:
        return TitleResult(
            title=fallback, url=url, error=f"HTTP {page.status_code}"
        )

    title = truncate(clean_text(extract_title(page.html)), TITLE_MAX_LENGTH)
    return TitleResult(title=title or fallback, url=url)


def fetch_meta(
    url: str, timeout: float, max_bytes: int = DEFAULT_MAX_BYTES
) -> PageMeta:
    target = validate_target_url(url)

    try:
        page = fetch_html(url, timeout=timeout, max_bytes=max_bytes)
    except FETCH_ERRORS as exc:
        return PageMeta(
            title=domain_title(target),
            description="",
            url=url,
            warning=META_FALLBACK_WARNING,
            error=describe_fetch_error(exc),
        )

    if not page.ok:
        return PageMeta(
            title=domain_title(target),
            description="",
            url=url,
            error=f"HTTP {page.status_code}",
        )

    return extract_page_meta(page.html, target, url)
