"""Resource repositories for posts, post categories, users and bookmarks.

Repositories own the queries and the multi-step mutations. Every multi-step
write runs inside ``database.transaction`` so that its sub-steps (slug,
row, pivot rows, media) are committed together or not at all. Cache
invalidation is left to the caller and happens after the repository call
has returned, i.e. after the commit.
"""
import logging
import math

from sqlalchemy import delete, func, insert, select
from sqlalchemy.orm import Query, Session, selectinload

import config
import models
from auth import hash_password
from database import transaction
from errors import ConflictError, NotFoundError, ValidationFailed
from media import MediaStore
from slugs import unique_slug

logger = logging.getLogger(__name__)


def clamp_per_page(per_page: int | None) -> int:
    if not per_page or per_page < 1:
        return config.DEFAULT_PER_PAGE
    return min(per_page, config.MAX_PER_PAGE)


def paginate(query: Query, page: int, per_page: int, serialize, total: int | None = None) -> dict:
    """Slice query to one page and describe it with the usual paginator metadata"""
    page = max(page or 1, 1)
    per_page = clamp_per_page(per_page)
    if total is None:
        total = query.order_by(None).count()
    offset = (page - 1) * per_page
    items = query.offset(offset).limit(per_page).all()
    data = [serialize(item) for item in items]
    return {
        "data": data,
        "total": total,
        "per_page": per_page,
        "current_page": page,
        "last_page": max(math.ceil(total / per_page), 1),
        "from": offset + 1 if data else None,
        "to": offset + len(data) if data else None,
        "offset": offset,
        "limit": per_page,
    }


def serialize_post(post: models.Post) -> dict:
    data = post.to_dict()
    data["user"] = {"id": post.author.id, "name": post.author.name} if post.author else None
    data["post_categories"] = [{"id": c.id, "name": c.name} for c in post.categories]
    return data


class PostRepository:

    def __init__(self, db: Session, media: MediaStore):
        self.db = db
        self.media = media

    def _query(self):
        # soft-deleted posts are hidden from listing and lookup
        return (
            self.db.query(models.Post)
            .filter(models.Post.deleted_at.is_(None))
            .options(
                selectinload(models.Post.author),
                selectinload(models.Post.categories),
                selectinload(models.Post.media),
            )
        )

    def paginate(self, search: str | None, page: int, per_page: int) -> dict:
        query = self._query()
        if search:
            pattern = f"%{search}%"
            query = query.filter(models.Post.title.ilike(pattern) | models.Post.content.ilike(pattern))
        return paginate(query.order_by(models.Post.id), page, per_page, serialize_post)

    def get(self, post_id: int) -> models.Post:
        post = self._query().filter(models.Post.id == post_id).first()
        if post is None:
            raise NotFoundError("Post not found")
        return post

    def get_by_slug(self, slug: str) -> models.Post:
        post = self._query().filter(models.Post.slug == slug).first()
        if post is None:
            raise NotFoundError("Post not found")
        return post

    def load_categories_for(self, post_id: int) -> list[models.PostCategory]:
        return (
            self.db.query(models.PostCategory)
            .join(models.post_category_pivot,
                  models.post_category_pivot.c.post_category_id == models.PostCategory.id)
            .filter(models.post_category_pivot.c.post_id == post_id)
            .order_by(models.PostCategory.id)
            .all()
        )

    def _categories(self, category_ids) -> list[models.PostCategory]:
        wanted = list(dict.fromkeys(int(i) for i in category_ids))
        categories = self.db.query(models.PostCategory).filter(models.PostCategory.id.in_(wanted)).all()
        missing = set(wanted) - {c.id for c in categories}
        if missing:
            raise ValidationFailed(
                "Validation Error",
                errors={"post_categories": ["The selected post categories is invalid."]},
            )
        return sorted(categories, key=lambda c: c.id)

    def create(self, author: models.User, title: str, content: str, category_ids, image=None) -> models.Post:
        with transaction(self.db) as tx:
            post = models.Post(
                title=title,
                slug=unique_slug(self.db, title),
                content=content,
                user_id=author.id,
            )
            self.db.add(post)
            self.db.flush()
            if category_ids:
                post.categories = self._categories(category_ids)
            if image is not None:
                self.media.attach(self.db, tx, post, image)
        logger.info(f"Post {post.id} created by user {author.id}")
        return self.get(post.id)

    def update(self, post: models.Post, title: str, content: str, category_ids=None, image=None) -> models.Post:
        with transaction(self.db) as tx:
            if title != post.title:
                post.slug = unique_slug(self.db, title, ignore_id=post.id)
            post.title = title
            post.content = content
            if category_ids is not None:
                post.categories = self._categories(category_ids)
            if image is not None:
                self.media.clear(self.db, tx, post)
                self.media.attach(self.db, tx, post, image)
        logger.info(f"Post {post.id} updated")
        return self.get(post.id)

    def _remove(self, tx, post: models.Post):
        self.media.clear(self.db, tx, post)
        post.categories = []
        self.db.flush()
        self.db.execute(delete(models.bookmarks).where(models.bookmarks.c.post_id == post.id))
        self.db.delete(post)

    def delete(self, post: models.Post):
        post_id = post.id
        with transaction(self.db) as tx:
            self._remove(tx, post)
        logger.info(f"Post {post_id} deleted")


class PostCategoryRepository:

    def __init__(self, db: Session):
        self.db = db

    def paginate(self, search: str | None, page: int, per_page: int) -> dict:
        posts_count = (
            select(func.count(models.post_category_pivot.c.post_id))
            .where(models.post_category_pivot.c.post_category_id == models.PostCategory.id)
            .correlate(models.PostCategory)
            .scalar_subquery()
            .label("posts_count")
        )
        query = self.db.query(models.PostCategory, posts_count)
        total_query = self.db.query(models.PostCategory)
        if search:
            query = query.filter(models.PostCategory.name.ilike(f"%{search}%"))
            total_query = total_query.filter(models.PostCategory.name.ilike(f"%{search}%"))

        def serialize(row):
            category, count = row
            data = category.to_dict()
            data["posts_count"] = count
            return data

        return paginate(query.order_by(models.PostCategory.id), page, per_page, serialize,
                        total=total_query.count())

    def create(self, name: str) -> models.PostCategory:
        category = models.PostCategory(name=name)
        self.db.add(category)
        self.db.commit()
        self.db.refresh(category)
        return category

    def get(self, category_id: int) -> models.PostCategory:
        category = self.db.get(models.PostCategory, category_id)
        if category is None:
            raise NotFoundError("Post category not found")
        return category

    def update(self, category: models.PostCategory, name: str) -> models.PostCategory:
        category.name = name
        self.db.commit()
        self.db.refresh(category)
        return category

    def has_posts(self, category: models.PostCategory) -> bool:
        row = self.db.execute(
            select(models.post_category_pivot.c.post_id)
            .where(models.post_category_pivot.c.post_category_id == category.id)
            .limit(1)
        ).first()
        return row is not None

    def delete(self, category: models.PostCategory):
        if self.has_posts(category):
            raise ConflictError("Post categories cannot be deleted because they still have posts.")
        self.db.delete(category)
        self.db.commit()


class UserRepository:

    def __init__(self, db: Session, media: MediaStore):
        self.db = db
        self.media = media

    @staticmethod
    def serialize(user: models.User) -> dict:
        data = user.to_dict()
        data["bookmarks"] = [post.to_dict() for post in user.bookmarked_posts]
        return data

    def paginate(self, search: str | None, page: int, per_page: int) -> dict:
        query = self.db.query(models.User).options(
            selectinload(models.User.bookmarked_posts).selectinload(models.Post.media)
        )
        if search:
            pattern = f"%{search}%"
            query = query.filter(models.User.name.ilike(pattern) | models.User.email.ilike(pattern))
        return paginate(query.order_by(models.User.id), page, per_page, self.serialize)

    def get(self, user_id: int) -> models.User:
        user = self.db.get(models.User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def create(self, name: str, email: str, password: str, commit: bool = True) -> models.User:
        """Create a user with a hashed password; commit=False only flushes"""
        user = models.User(name=name, email=email, password=hash_password(password))
        self.db.add(user)
        if commit:
            self.db.commit()
            self.db.refresh(user)
        else:
            self.db.flush()
        return user

    def update(self, user: models.User, name: str, email: str) -> models.User:
        user.name = name
        user.email = email
        self.db.commit()
        self.db.refresh(user)
        return user

    def delete(self, user: models.User):
        """Delete user together with their tokens, bookmarks and posts"""
        user_id = user.id
        posts = PostRepository(self.db, self.media)
        with transaction(self.db) as tx:
            for post in self.db.query(models.Post).filter(models.Post.user_id == user_id).all():
                posts._remove(tx, post)
            self.db.flush()
            self.db.execute(delete(models.bookmarks).where(models.bookmarks.c.user_id == user_id))
            self.db.query(models.PersonalAccessToken).filter(
                models.PersonalAccessToken.user_id == user_id
            ).delete(synchronize_session=False)
            self.db.expire(user, ["posts", "tokens", "bookmarked_posts"])
            self.db.delete(user)
        logger.info(f"User {user_id} deleted")


class BookmarkRepository:

    def __init__(self, db: Session):
        self.db = db

    def list(self, user: models.User) -> list[dict]:
        posts = (
            self.db.query(models.Post)
            .join(models.bookmarks, models.bookmarks.c.post_id == models.Post.id)
            .filter(models.bookmarks.c.user_id == user.id, models.Post.deleted_at.is_(None))
            .options(selectinload(models.Post.media))
            .order_by(models.Post.id)
            .all()
        )
        return [post.to_dict() for post in posts]

    def toggle(self, user: models.User, post_id: int) -> bool:
        """Remove the bookmark if present, otherwise add it; True when the post is now bookmarked.

        A conditional delete decides the branch, so there is no separate
        existence read. Two concurrent first-time toggles can still both
        take the insert branch; the composite primary key rejects the second.
        """
        post = self.db.get(models.Post, post_id)
        if post is None or post.deleted_at is not None:
            raise NotFoundError("Post not found")

        with transaction(self.db):
            removed = self.db.execute(
                delete(models.bookmarks).where(
                    models.bookmarks.c.user_id == user.id,
                    models.bookmarks.c.post_id == post_id,
                )
            ).rowcount
            if not removed:
                self.db.execute(insert(models.bookmarks).values(user_id=user.id, post_id=post_id))
        self.db.expire(user, ["bookmarked_posts"])
        return not removed
