from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field

from app.extensions import db
from app.models import Bookmark, Category, SubCategory, utcnow
from app.services.common import new_id, normalize_url_key, parse_tags

DEFAULT_CATEGORIES = [
    {
        "id": "dev-tools",
        "name": "Developer Tools",
        "subCategories": [
            {"id": "code-editors", "name": "Code Editors", "parentId": "dev-tools"},
            {
                "id": "version-control",
                "name": "Version Control",
                "parentId": "dev-tools",
            },
            {"id": "api-tools", "name": "API Tools", "parentId": "dev-tools"},
        ],
    },
    {
        "id": "learning",
        "name": "Learning",
        "subCategories": [
            {"id": "documentation", "name": "Documentation", "parentId": "learning"},
            {"id": "tutorials", "name": "Tutorials", "parentId": "learning"},
            {"id": "communities", "name": "Communities", "parentId": "learning"},
        ],
    },
    {
        "id": "productivity",
        "name": "Productivity",
        "subCategories": [
            {"id": "design", "name": "Design", "parentId": "productivity"},
            {
                "id": "project-management",
                "name": "Project Management",
                "parentId": "productivity",
            },
            {"id": "utilities", "name": "Utilities", "parentId": "productivity"},
        ],
    },
]

DEFAULT_BOOKMARKS = [
    {
        "id": "vscode",
        "title": "Visual Studio Code",
        "url": "https://code.visualstudio.com/",
        "description": "Free source-code editor made by Microsoft",
        "subCategoryId": "code-editors",
    },
    {
        "id": "github",
        "title": "GitHub",
        "url": "https://github.com/",
        "description": "The largest code hosting platform",
        "subCategoryId": "version-control",
    },
    {
        "id": "postman",
        "title": "Postman",
        "url": "https://www.postman.com/",
        "description": "API development and testing tool",
        "subCategoryId": "api-tools",
    },
    {
        "id": "mdn",
        "title": "MDN Web Docs",
        "url": "https://developer.mozilla.org/",
        "description": "The reference documentation for the web platform",
        "subCategoryId": "documentation",
    },
    {
        "id": "stackoverflow",
        "title": "Stack Overflow",
        "url": "https://stackoverflow.com/",
        "description": "Question and answer community for programmers",
        "subCategoryId": "communities",
    },
    {
        "id": "figma",
        "title": "Figma",
        "url": "https://www.figma.com/",
        "description": "Collaborative design tool in the browser",
        "subCategoryId": "design",
    },
]


class LibraryError(Exception):
    status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RecordNotFound(LibraryError):
    status = 404


class DuplicateBookmark(LibraryError):
    status = 409


class InvalidInput(LibraryError):
    status = 400


@dataclass
class ImportStats:
    new_categories: int = 0
    new_sub_categories: int = 0
    new_bookmarks: int = 0
    skipped_bookmarks: int = 0
    bookmark_ids: list[str] = field(default_factory=list)

    def as_dict(self):
        payload = asdict(self)
        return {
            "newCategories": payload["new_categories"],
            "newSubCategories": payload["new_sub_categories"],
            "newBookmarks": payload["new_bookmarks"],
            "skippedBookmarks": payload["skipped_bookmarks"],
        }


@dataclass
class MoveStats:
    moved: int = 0
    skipped: int = 0


def _field(payload: dict, *names):
    for name in names:
        if name in payload:
            return payload[name]
    return None


def _has_field(payload: dict, *names) -> bool:
    return any(name in payload for name in names)


def _clean_name(value, label: str) -> str:
    name = str(value or "").strip()
    if not name:
        raise InvalidInput(f"{label} name is required")
    return name


def _optional_text(value) -> str | None:
    text = str(value).strip() if value is not None else ""
    return text or None


def get_category(category_id: str) -> Category:
    category = db.session.get(Category, category_id)
    if not category:
        raise RecordNotFound("category not found")
    return category


def get_sub_category(sub_category_id: str) -> SubCategory:
    sub_category = db.session.get(SubCategory, sub_category_id)
    if not sub_category:
        raise RecordNotFound("sub-category not found")
    return sub_category


def get_bookmark(bookmark_id: str) -> Bookmark:
    bookmark = db.session.get(Bookmark, bookmark_id)
    if not bookmark:
        raise RecordNotFound("bookmark not found")
    return bookmark


def list_categories() -> list[Category]:
    return Category.query.order_by(
        Category.position.asc(), Category.created_at.asc()
    ).all()


def list_bookmarks(
    sub_category_id: str | None = None,
    category_id: str | None = None,
    tag: str | None = None,
) -> list[Bookmark]:
    query = Bookmark.query
    if sub_category_id:
        query = query.filter_by(sub_category_id=sub_category_id)
    if category_id:
        query = query.join(SubCategory).filter(SubCategory.parent_id == category_id)
    items = query.order_by(Bookmark.created_at.asc()).all()
    if tag:
        wanted = tag.strip().lower()
        items = [
            item for item in items if wanted in {t.lower() for t in item.tags or []}
        ]
    return items


def list_tags() -> list[dict]:
    counts: Counter[str] = Counter()
    spelling: dict[str, str] = {}
    for tags in db.session.query(Bookmark.tags).all():
        for tag in tags[0] or []:
            key = tag.lower()
            spelling.setdefault(key, tag)
            counts[key] += 1
    return [
        {"name": spelling[key], "count": counts[key]}
        for key in sorted(counts, key=lambda value: spelling[value].lower())
    ]


def _next_position(column, *criteria) -> int:
    current = db.session.query(db.func.max(column)).filter(*criteria).scalar()
    return 0 if current is None else current + 1


def add_category(name: str) -> Category:
    category = Category(
        id=new_id("cat"),
        name=_clean_name(name, "category"),
        position=_next_position(Category.position),
    )
    db.session.add(category)
    db.session.flush()
    return category


def update_category(category_id: str, name: str) -> Category:
    category = get_category(category_id)
    category.name = _clean_name(name, "category")
    return category


def delete_category(category_id: str) -> int:
    category = get_category(category_id)
    removed = sum(len(sub.bookmarks) for sub in category.sub_categories)
    db.session.delete(category)
    db.session.flush()
    return removed


def add_sub_category(parent_id: str, name: str) -> SubCategory:
    parent = get_category(parent_id)
    sub_category = SubCategory(
        id=new_id("sub"),
        parent_id=parent.id,
        name=_clean_name(name, "sub-category"),
        position=_next_position(
            SubCategory.position, SubCategory.parent_id == parent.id
        ),
    )
    db.session.add(sub_category)
    db.session.flush()
    return sub_category


def update_sub_category(sub_category_id: str, name: str) -> SubCategory:
    sub_category = get_sub_category(sub_category_id)
    sub_category.name = _clean_name(name, "sub-category")
    return sub_category


def delete_sub_category(sub_category_id: str) -> int:
    sub_category = get_sub_category(sub_category_id)
    removed = len(sub_category.bookmarks)
    db.session.delete(sub_category)
    db.session.flush()
    return removed


def find_duplicate(
    sub_category_id: str, url: str, exclude_id: str | None = None
) -> Bookmark | None:
    key = normalize_url_key(url)
    for candidate in Bookmark.query.filter_by(sub_category_id=sub_category_id).all():
        if candidate.id != exclude_id and normalize_url_key(candidate.url) == key:
            return candidate
    return None


def add_bookmark(payload: dict) -> Bookmark:
    url = str(payload.get("url") or "").strip()
    if not url:
        raise InvalidInput("url is required")
    sub_category_id = _field(payload, "subCategoryId", "sub_category_id")
    if not sub_category_id:
        raise InvalidInput("subCategoryId is required")
    sub_category = get_sub_category(str(sub_category_id))
    if find_duplicate(sub_category.id, url):
        raise DuplicateBookmark("bookmark already exists in this sub-category")

    bookmark = Bookmark(
        id=new_id("bm"),
        sub_category_id=sub_category.id,
        url=url,
        title=str(payload.get("title") or "").strip() or url,
        description=_optional_text(payload.get("description")),
        favicon=_optional_text(payload.get("favicon")),
        cover_image=_optional_text(_field(payload, "coverImage", "cover_image")),
        tags=parse_tags(payload.get("tags")),
    )
    db.session.add(bookmark)
    db.session.flush()
    return bookmark


def update_bookmark(bookmark_id: str, updates: dict) -> Bookmark:
    bookmark = get_bookmark(bookmark_id)

    target_sub_id = bookmark.sub_category_id
    if _has_field(updates, "subCategoryId", "sub_category_id"):
        target_sub_id = get_sub_category(
            str(_field(updates, "subCategoryId", "sub_category_id") or "")
        ).id
    url = bookmark.url
    if "url" in updates:
        url = str(updates.get("url") or "").strip() or bookmark.url
    if find_duplicate(target_sub_id, url, exclude_id=bookmark.id):
        raise DuplicateBookmark("bookmark already exists in this sub-category")

    bookmark.sub_category_id = target_sub_id
    bookmark.url = url
    if "title" in updates:
        bookmark.title = str(updates.get("title") or "").strip() or bookmark.url
    if "description" in updates:
        bookmark.description = _optional_text(updates.get("description"))
    if "favicon" in updates:
        bookmark.favicon = _optional_text(updates.get("favicon"))
    if _has_field(updates, "coverImage", "cover_image"):
        bookmark.cover_image = _optional_text(
            _field(updates, "coverImage", "cover_image")
        )
    if "tags" in updates:
        bookmark.tags = parse_tags(updates.get("tags"))
    return bookmark


def delete_bookmark(bookmark_id: str) -> None:
    db.session.delete(get_bookmark(bookmark_id))
    db.session.flush()


def delete_bookmarks(bookmark_ids: list[str]) -> int:
    deleted = 0
    for bookmark_id in dict.fromkeys(bookmark_ids):
        bookmark = db.session.get(Bookmark, bookmark_id)
        if bookmark:
            db.session.delete(bookmark)
            deleted += 1
    db.session.flush()
    return deleted


def move_bookmark(bookmark_id: str, target_sub_category_id: str) -> Bookmark:
    bookmark = get_bookmark(bookmark_id)
    target = get_sub_category(target_sub_category_id)
    if bookmark.sub_category_id == target.id:
        return bookmark
    if find_duplicate(target.id, bookmark.url, exclude_id=bookmark.id):
        raise DuplicateBookmark("bookmark already exists in the target sub-category")
    bookmark.sub_category_id = target.id
    return bookmark


def move_bookmarks(bookmark_ids: list[str], target_sub_category_id: str) -> MoveStats:
    target = get_sub_category(target_sub_category_id)
    taken = {normalize_url_key(item.url) for item in target.bookmarks}
    stats = MoveStats()
    for bookmark_id in dict.fromkeys(bookmark_ids):
        bookmark = db.session.get(Bookmark, bookmark_id)
        if not bookmark or bookmark.sub_category_id == target.id:
            continue
        key = normalize_url_key(bookmark.url)
        if key in taken:
            stats.skipped += 1
            continue
        bookmark.sub_category_id = target.id
        taken.add(key)
        stats.moved += 1
    db.session.flush()
    return stats


def _import_rows(data, key: str) -> list[dict]:
    rows = data.get(key) if isinstance(data, dict) else None
    if not isinstance(rows, list):
        raise InvalidInput("import data must contain categories and bookmarks lists")
    return [row for row in rows if isinstance(row, dict)]


def import_library(data: dict) -> ImportStats:
    """Merge exported library data into the current library.

    Categories merge by case-insensitive name, sub-categories by name within
    their category. Bookmarks whose URL already exists in the mapped
    sub-category are skipped.
    """
    incoming_categories = _import_rows(data, "categories")
    incoming_bookmarks = _import_rows(data, "bookmarks")

    stats = ImportStats()
    categories_by_name = {
        category.name.strip().lower(): category for category in list_categories()
    }
    sub_category_mapping: dict[str, SubCategory] = {}
    category_position = _next_position(Category.position)

    for incoming in incoming_categories:
        name = str(incoming.get("name") or "").strip() or "Unnamed Category"
        category = categories_by_name.get(name.lower())
        if category is None:
            category = Category(id=new_id("cat"), name=name, position=category_position)
            category_position += 1
            db.session.add(category)
            categories_by_name[name.lower()] = category
            stats.new_categories += 1

        subs_by_name = {
            sub.name.strip().lower(): sub for sub in category.sub_categories
        }
        sub_position = len(category.sub_categories)
        for incoming_sub in incoming.get("subCategories") or []:
            if not isinstance(incoming_sub, dict):
                continue
            sub_name = str(incoming_sub.get("name") or "").strip() or "Default"
            sub_category = subs_by_name.get(sub_name.lower())
            if sub_category is None:
                sub_category = SubCategory(
                    id=new_id("sub"), name=sub_name, position=sub_position
                )
                sub_position += 1
                category.sub_categories.append(sub_category)
                subs_by_name[sub_name.lower()] = sub_category
                stats.new_sub_categories += 1
            source_id = str(incoming_sub.get("id") or "")
            if source_id:
                sub_category_mapping[source_id] = sub_category

    db.session.flush()

    taken = {
        (row.sub_category_id, normalize_url_key(row.url))
        for row in Bookmark.query.all()
    }
    now = utcnow()
    for incoming in incoming_bookmarks:
        source_sub_id = str(_field(incoming, "subCategoryId", "sub_category_id") or "")
        sub_category = sub_category_mapping.get(source_sub_id)
        url = str(incoming.get("url") or "").strip()
        if sub_category is None or not url:
            continue

        key = (sub_category.id, normalize_url_key(url))
        if key in taken:
            stats.skipped_bookmarks += 1
            continue

        bookmark = Bookmark(
            id=new_id("bm"),
            sub_category_id=sub_category.id,
            url=url,
            title=str(incoming.get("title") or "").strip() or url,
            description=_optional_text(incoming.get("description")),
            favicon=_optional_text(incoming.get("favicon")),
            cover_image=_optional_text(_field(incoming, "coverImage", "cover_image")),
            tags=parse_tags(incoming.get("tags")),
            created_at=now,
        )
        db.session.add(bookmark)
        taken.add(key)
        stats.new_bookmarks += 1
        stats.bookmark_ids.append(bookmark.id)

    db.session.flush()
    return stats


def export_library() -> dict:
    categories = list_categories()
    bookmarks = Bookmark.query.order_by(Bookmark.created_at.asc()).all()
    return {
        "categories": [category.as_dict() for category in categories],
        "bookmarks": [bookmark.as_dict() for bookmark in bookmarks],
    }


def _seed_defaults() -> None:
    for position, row in enumerate(DEFAULT_CATEGORIES):
        category = Category(id=row["id"], name=row["name"], position=position)
        for sub_position, sub in enumerate(row["subCategories"]):
            category.sub_categories.append(
                SubCategory(id=sub["id"], name=sub["name"], position=sub_position)
            )
        db.session.add(category)
    db.session.flush()

    for row in DEFAULT_BOOKMARKS:
        db.session.add(
            Bookmark(
                id=row["id"],
                title=row["title"],
                url=row["url"],
                description=row["description"],
                sub_category_id=row["subCategoryId"],
                tags=[],
            )
        )
    db.session.flush()


def initialize_library() -> bool:
    if Category.query.count() > 0:
        return False
    _seed_defaults()
    return True


def reset_library() -> None:
    Bookmark.query.delete()
    SubCategory.query.delete()
    Category.query.delete()
    db.session.flush()
    db.session.expunge_all()
    _seed_defaults()
