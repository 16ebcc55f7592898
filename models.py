"""SQLAlchemy models for users, posts, post categories, bookmarks, tokens, media and the cache table."""
from datetime import datetime, timezone

from sqlalchemy import (Column, DateTime, ForeignKey, Integer, String, Table,
                        Text)
from sqlalchemy.orm import relationship

import config
from database import Base


def utcnow():
    return datetime.now(timezone.utc)


def isoformat(value):
    return value.isoformat() if value is not None else None


post_category_pivot = Table(
    "post_category_pivot",
    Base.metadata,
    Column("post_id", Integer, ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True),
    Column("post_category_id", Integer, ForeignKey("post_categories.id"), primary_key=True),
)

bookmarks = Table(
    "bookmarks",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("post_id", Integer, ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True),
    Column("created_at", DateTime(timezone=True), default=utcnow),
)


class User(Base):
    """User model representing application users."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password = Column(String(255), nullable=False)
    email_verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    posts = relationship("Post", back_populates="author")
    tokens = relationship("PersonalAccessToken", back_populates="user")
    bookmarked_posts = relationship("Post", secondary=bookmarks, order_by="Post.id")

    def has_verified_email(self) -> bool:
        return self.email_verified_at is not None

    def to_dict(self):
        # password is never serialized
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "email_verified_at": isoformat(self.email_verified_at),
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


class Post(Base):
    """Post model representing blog posts created by users."""
    __tablename__ = "posts"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    content = Column(Text, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    author = relationship("User", back_populates="posts")
    categories = relationship("PostCategory", secondary=post_category_pivot,
                              back_populates="posts", order_by="PostCategory.id")
    media = relationship("Media", back_populates="post", order_by="Media.id")

    @property
    def image_url(self):
        for item in self.media:
            if item.collection_name == "posts":
                return item.url
        return None

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "slug": self.slug,
            "content": self.content,
            "user_id": self.user_id,
            "deleted_at": isoformat(self.deleted_at),
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
            "image_url": self.image_url,
        }


class PostCategory(Base):
    __tablename__ = "post_categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    posts = relationship("Post", secondary=post_category_pivot, back_populates="categories")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


class PersonalAccessToken(Base):
    """A bearer token issued to a user; the token is valid only while its row exists."""
    __tablename__ = "personal_access_tokens"

    id = Column(String(36), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", back_populates="tokens")


class Media(Base):
    """A stored file attached to a post."""
    __tablename__ = "media"

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    collection_name = Column(String(50), nullable=False, default="posts")
    file_name = Column(String(255), nullable=False)
    mime_type = Column(String(100), nullable=True)
    size = Column(Integer, nullable=False, default=0)
    path = Column(String(512), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    post = relationship("Post", back_populates="media")

    @property
    def url(self):
        return f"{config.MEDIA_URL.rstrip('/')}/{self.path}"


class CacheEntry(Base):
    __tablename__ = "cache"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    # unix timestamp in seconds
    expiration = Column(Integer, nullable=False)
