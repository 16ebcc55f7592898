import re
import unicodedata

from sqlalchemy.orm import Session

import models


def slugify(text: str, separator: str = "-") -> str:
    """Lowercase ASCII slug: 'Hello, World!' -> 'hello-world'"""
    normalized = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", separator, normalized.lower())
    return slug.strip(separator)


def unique_slug(db: Session, title: str, ignore_id: int | None = None) -> str:
    """Slug for title not used by any other post; repeats get -1, -2, ... appended"""
    base = slugify(title) or "post"
    candidate = base
    suffix = 0
    while _slug_taken(db, candidate, ignore_id):
        suffix += 1
        candidate = f"{base}-{suffix}"
    return candidate


def _slug_taken(db: Session, slug: str, ignore_id: int | None) -> bool:
    query = db.query(models.Post.id).filter(models.Post.slug == slug)
    if ignore_id is not None:
        query = query.filter(models.Post.id != ignore_id)
    return query.first() is not None
