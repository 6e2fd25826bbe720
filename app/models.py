from datetime import datetime, timezone

from app.extensions import db
from app.services.common import new_id


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.String(64), primary_key=True, default=lambda: new_id("cat"))
    name = db.Column(db.String(255), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    sub_categories = db.relationship(
        "SubCategory",
        backref="parent",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="SubCategory.position",
    )

    def as_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "subCategories": [sub.as_dict() for sub in self.sub_categories],
        }


class SubCategory(db.Model):
    __tablename__ = "sub_categories"

    id = db.Column(db.String(64), primary_key=True, default=lambda: new_id("sub"))
    parent_id = db.Column(
        db.String(64), db.ForeignKey("categories.id"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    bookmarks = db.relationship(
        "Bookmark",
        backref="sub_category",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Bookmark.created_at",
    )

    def as_dict(self):
        return {"id": self.id, "name": self.name, "parentId": self.parent_id}


class Bookmark(db.Model):
    __tablename__ = "bookmarks"

    id = db.Column(db.String(64), primary_key=True, default=lambda: new_id("bm"))
    sub_category_id = db.Column(
        db.String(64), db.ForeignKey("sub_categories.id"), nullable=False, index=True
    )

    url = db.Column(db.Text, nullable=False)
    title = db.Column(db.String(512), nullable=False, default="")
    description = db.Column(db.Text, nullable=True)
    favicon = db.Column(db.Text, nullable=True)
    cover_image = db.Column(db.Text, nullable=True)
    tags = db.Column(db.JSON, nullable=False, default=list)
    enhanced = db.Column(db.Boolean, nullable=False, default=False)
    enhanced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        db.Index("ix_bookmark_sub_category_created", "sub_category_id", "created_at"),
    )

    def as_dict(self):
        payload = {
            "id": self.id,
            "title": self.title or "",
            "url": self.url,
            "subCategoryId": self.sub_category_id,
            "tags": list(self.tags or []),
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
            "enhanced": bool(self.enhanced),
        }
        if self.description:
            payload["description"] = self.description
        if self.favicon:
            payload["favicon"] = self.favicon
        if self.cover_image:
            payload["coverImage"] = self.cover_image
        return payload


class EnhancementJob(db.Model):
    __tablename__ = "enhancement_jobs"

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(32), nullable=False, default="pending")
    progress = db.Column(db.Integer, nullable=False, default=0)
    total_targets = db.Column(db.Integer, nullable=False, default=0)
    total_processed = db.Column(db.Integer, nullable=False, default=0)
    total_enhanced = db.Column(db.Integer, nullable=False, default=0)
    total_skipped = db.Column(db.Integer, nullable=False, default=0)
    total_errors = db.Column(db.Integer, nullable=False, default=0)
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def as_dict(self):
        return {
            "id": self.id,
            "status": self.status,
            "progress": self.progress,
            "total_targets": self.total_targets,
            "total_processed": self.total_processed,
            "total_enhanced": self.total_enhanced,
            "total_skipped": self.total_skipped,
            "total_errors": self.total_errors,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
