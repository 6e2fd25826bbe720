from __future__ import annotations

import html
from dataclasses import dataclass
from typing import cast

from bs4 import BeautifulSoup, Tag

TOOLBAR_FOLDER_NAMES = {"bookmarks bar", "书签栏"}
UNCATEGORIZED_NAME = "Uncategorized"
DEFAULT_SUB_CATEGORY_NAME = "Default"
UNNAMED_BOOKMARK = "Unnamed Bookmark"
UNNAMED_FOLDER = "Unnamed Folder"


@dataclass
class ImportedBookmark:
    title: str
    url: str
    folder_path: list[str]
    in_toolbar: bool = False


def _iter_dt_entries(dl: Tag) -> list[Tag]:
    entries: list[Tag] = []
    for dt in dl.find_all("dt"):
        if not isinstance(dt, Tag):
            continue
        parent_dl = dt.find_parent("dl")
        if parent_dl is dl:
            entries.append(cast(Tag, dt))
    return entries


def _find_nested_dl(dt: Tag) -> Tag | None:
    nested = dt.find("dl")
    if isinstance(nested, Tag):
        return nested

    sibling = dt.next_sibling
    while sibling is not None:
        if isinstance(sibling, Tag):
            name = (sibling.name or "").lower()
            if name == "dl":
                return sibling
            if name == "dt":
                return None
        sibling = sibling.next_sibling
    return None


def _find_anchor_in_dt(dt: Tag) -> Tag | None:
    for anchor in dt.find_all("a"):
        if isinstance(anchor, Tag) and anchor.find_parent("dt") is dt:
            return anchor
    return None


def _find_folder_in_dt(dt: Tag) -> Tag | None:
    for folder in dt.find_all(["h3", "h2", "h1"]):
        if isinstance(folder, Tag) and folder.find_parent("dt") is dt:
            return folder
    return None


def _is_toolbar_folder(folder: Tag) -> bool:
    if folder.has_attr("personal_toolbar_folder"):
        return True
    return folder.get_text(strip=True).lower() in TOOLBAR_FOLDER_NAMES


def _parse_dl(
    dl: Tag,
    folder_path: list[str],
    out: list[ImportedBookmark],
    in_toolbar: bool = False,
) -> None:
    for dt in _iter_dt_entries(dl):
        anchor = _find_anchor_in_dt(dt)
        if isinstance(anchor, Tag):
            href_value = anchor.get("href")
            href = href_value.strip() if isinstance(href_value, str) else ""
        else:
            href = ""

        if href:
            text = anchor.get_text(strip=True) if isinstance(anchor, Tag) else ""
            out.append(
                ImportedBookmark(
                    title=text.strip(),
                    url=href,
                    folder_path=folder_path.copy(),
                    in_toolbar=in_toolbar,
                )
            )

        nested_dl = _find_nested_dl(dt)
        folder = _find_folder_in_dt(dt)
        if folder is None and nested_dl is not None:
            for heading in dt.find_all(["h3", "h2", "h1"]):
                if isinstance(heading, Tag):
                    folder = heading
                    break

        if folder and nested_dl:
            name = folder.get_text(strip=True) or UNNAMED_FOLDER
            toolbar = in_toolbar or (not folder_path and _is_toolbar_folder(folder))
            _parse_dl(nested_dl, folder_path + [name], out, in_toolbar=toolbar)


def parse_bookmark_html(html_text: str) -> list[ImportedBookmark]:
    soup = BeautifulSoup(html_text, "lxml")
    root = soup.find("dl")
    if not isinstance(root, Tag):
        return []

    bookmarks: list[ImportedBookmark] = []
    _parse_dl(root, [], bookmarks)
    return [bm for bm in bookmarks if bm.url]


def build_import_payload(rows: list[ImportedBookmark]) -> dict:
    """Fold browser folder trees into the two-level category layout.

    The toolbar folder is transparent. The first folder level becomes the
    category and the second the sub-category; deeper folders are flattened
    into the sub-category as ``[Folder] `` title prefixes.
    """
    categories: dict[str, dict] = {}
    bookmarks: list[dict] = []

    def sub_category_id(category_name: str, sub_name: str) -> str:
        key = category_name.lower()
        category = categories.get(key)
        if category is None:
            category = {
                "id": f"import_cat_{len(categories) + 1}",
                "name": category_name,
                "subCategories": [],
            }
            categories[key] = category
        for sub in category["subCategories"]:
            if sub["name"].lower() == sub_name.lower():
                return sub["id"]
        sub = {
            "id": f"{category['id']}_sub_{len(category['subCategories']) + 1}",
            "name": sub_name,
            "parentId": category["id"],
        }
        category["subCategories"].append(sub)
        return sub["id"]

    for row in rows:
        path = row.folder_path[1:] if row.in_toolbar else list(row.folder_path)
        title = row.title or UNNAMED_BOOKMARK

        if not path:
            category_name, sub_name = UNCATEGORIZED_NAME, DEFAULT_SUB_CATEGORY_NAME
        elif len(path) == 1:
            category_name, sub_name = path[0], DEFAULT_SUB_CATEGORY_NAME
        else:
            category_name, sub_name = path[0], path[1]
            prefix = "".join(f"[{folder}] " for folder in path[2:])
            title = prefix + title

        bookmarks.append(
            {
                "title": title,
                "url": row.url,
                "subCategoryId": sub_category_id(category_name, sub_name),
            }
        )

    return {"categories": list(categories.values()), "bookmarks": bookmarks}


def build_export_html(data: dict) -> str:
    bookmarks_by_sub: dict[str, list[dict]] = {}
    for bookmark in data.get("bookmarks", []):
        bookmarks_by_sub.setdefault(bookmark.get("subCategoryId"), []).append(
            bookmark
        )

    lines = [
        "<!DOCTYPE NETSCAPE-Bookmark-file-1>",
        "<!-- This file is automatically generated by Markshelf. -->",
        '<META HTTP-EQUIV="Content-Type" CONTENT="text/html; charset=UTF-8">',
        "<TITLE>Bookmarks</TITLE>",
        "<H1>Bookmarks</H1>",
        "<DL><p>",
    ]
    for category in data.get("categories", []):
        lines.append(f"    <DT><H3>{html.escape(category.get('name') or '')}</H3>")
        lines.append("    <DL><p>")
        for sub in category.get("subCategories") or []:
            lines.append(f"        <DT><H3>{html.escape(sub.get('name') or '')}</H3>")
            lines.append("        <DL><p>")
            for bookmark in bookmarks_by_sub.get(sub.get("id"), []):
                url = bookmark.get("url") or ""
                title = " ".join((bookmark.get("title") or url).split()) or url
                lines.append(
                    f'            <DT><A HREF="{html.escape(url, quote=True)}">'
                    f"{html.escape(title)}</A>"
                )
            lines.append("        </DL><p>")
        lines.append("    </DL><p>")
    lines.append("</DL><p>")
    return "\n".join(lines) + "\n"
