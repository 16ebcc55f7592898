"""Post image storage on the local filesystem.

Files live under MEDIA_ROOT and each one has a ``media`` row pointing at it.
Disk changes are tied to the surrounding ``database.transaction``: a file
written inside a transaction that rolls back is removed again, and files of
cleared media are only unlinked once the deletion has been committed.
"""
import logging
import os
import shutil
import uuid

from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile

import config
from database import Transaction
from models import Media, Post

logger = logging.getLogger(__name__)


class MediaStore:

    def __init__(self, root: str):
        self.root = root

    def full_path(self, relative: str) -> str:
        return os.path.join(self.root, relative)

    def attach(self, db: Session, tx: Transaction, post: Post, upload: UploadFile,
               collection: str = "posts") -> Media:
        """Store upload as a media item of post"""
        extension = os.path.splitext(upload.filename or "")[1].lower()
        relative = f"{post.id}/{uuid.uuid4().hex}{extension}"
        destination = self.full_path(relative)
        os.makedirs(os.path.dirname(destination), exist_ok=True)

        upload.file.seek(0)
        with open(destination, "wb") as out:
            shutil.copyfileobj(upload.file, out)
        tx.after_rollback(lambda: self._remove(destination))

        item = Media(
            post_id=post.id,
            collection_name=collection,
            file_name=upload.filename,
            mime_type=upload.content_type,
            size=os.path.getsize(destination),
            path=relative,
        )
        db.add(item)
        db.flush()
        db.refresh(post, attribute_names=["media"])
        logger.info(f"Stored {collection} media {relative} for post {post.id}")
        return item

    def clear(self, db: Session, tx: Transaction, post: Post, collection: str = "posts") -> int:
        """Remove every media item of post in collection"""
        items = db.query(Media).filter(Media.post_id == post.id, Media.collection_name == collection).all()
        for item in items:
            path = self.full_path(item.path)
            db.delete(item)
            tx.after_commit(lambda path=path: self._remove(path))
        db.flush()
        db.refresh(post, attribute_names=["media"])
        return len(items)

    def _remove(self, path: str):
        try:
            os.remove(path)
        except FileNotFoundError:
            pass


media_store = MediaStore(config.MEDIA_ROOT)


def get_media_store() -> MediaStore:
    return media_store
