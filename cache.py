"""Read-through cache stored in the ``cache`` table.

Values are JSON documents with a unix-seconds expiration. Listing endpoints
use ``remember`` and writes invalidate a whole resource with
``delete_by_prefix``. Failures while reading, writing or invalidating are
logged and never reach the caller.
"""
import hashlib
import json
import logging
import time
from typing import Any, Callable

from fastapi import Depends
from sqlalchemy.orm import Session

import config
from database import get_db
from models import CacheEntry

logger = logging.getLogger(__name__)

POST_INDEX_PREFIX = "post_index_"
USER_INDEX_PREFIX = "user_index_"


def _digest(*params) -> str:
    raw = "|".join("" if p is None else str(p) for p in params)
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


def post_index_key(search, page, per_page) -> str:
    return POST_INDEX_PREFIX + _digest(search, page, per_page)


def user_index_key(page, per_page, search) -> str:
    return USER_INDEX_PREFIX + _digest(page, per_page, search)


class DatabaseCache:
    """Cache service over a database session."""

    def __init__(self, db: Session, prefix: str = config.CACHE_PREFIX, clock: Callable[[], float] = time.time):
        self.db = db
        self.prefix = prefix
        self.clock = clock

    def _key(self, key: str) -> str:
        return self.prefix + key

    def get(self, key: str, default: Any = None) -> Any:
        try:
            entry = self.db.get(CacheEntry, self._key(key))
            if entry is None:
                return default
            if entry.expiration <= self.clock():
                self.db.delete(entry)
                self.db.commit()
                return default
            return json.loads(entry.value)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error reading cache key '{key}': {e}")
            return default

    def set(self, key: str, value: Any, ttl: int) -> bool:
        try:
            entry = self.db.get(CacheEntry, self._key(key))
            if entry is None:
                entry = CacheEntry(key=self._key(key))
                self.db.add(entry)
            entry.value = json.dumps(value)
            entry.expiration = int(self.clock()) + int(ttl)
            self.db.commit()
            return True
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error setting cache key '{key}': {e}")
            return False

    def remember(self, key: str, ttl: int, compute: Callable[[], Any]) -> Any:
        """Return the cached value for key, computing and storing it on a miss"""
        value = self.get(key)
        if value is not None:
            return value
        value = compute()
        self.set(key, value, ttl)
        return value

    def forget(self, key: str) -> bool:
        try:
            deleted = self.db.query(CacheEntry).filter(CacheEntry.key == self._key(key)).delete(
                synchronize_session=False)
            self.db.commit()
            return deleted > 0
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error removing cache key '{key}': {e}")
            return False

    def delete_by_prefix(self, prefix: str) -> int:
        """Delete every entry whose key starts with prefix; returns the number removed"""
        try:
            deleted = self.db.query(CacheEntry).filter(
                CacheEntry.key.startswith(self._key(prefix), autoescape=True)
            ).delete(synchronize_session=False)
            self.db.commit()
            logger.debug(f"Cleared {deleted} cache entries for prefix '{prefix}'")
            return deleted
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to clear cache: {e}")
            return 0

    def flush(self) -> int:
        return self.delete_by_prefix("")


def get_cache(db: Session = Depends(get_db)) -> DatabaseCache:
    """Dependency providing the cache bound to the request's session"""
    return DatabaseCache(db)
