"""The database-backed cache service."""

import logging
from unittest.mock import MagicMock

import models
from cache import (POST_INDEX_PREFIX, USER_INDEX_PREFIX, DatabaseCache,
                   post_index_key, user_index_key)


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_remember_computes_once(db):
    cache = DatabaseCache(db)
    calls = []

    def compute():
        calls.append(1)
        return {"items": [1, 2, 3]}

    assert cache.remember("numbers", 60, compute) == {"items": [1, 2, 3]}
    assert cache.remember("numbers", 60, compute) == {"items": [1, 2, 3]}
    assert len(calls) == 1


def test_entries_expire(db):
    clock = Clock()
    cache = DatabaseCache(db, clock=clock)
    cache.set("key", "value", 60)

    clock.now += 59
    assert cache.get("key") == "value"

    clock.now += 1
    assert cache.get("key", "missing") == "missing"
    assert db.query(models.CacheEntry).count() == 0


def test_keys_are_prefixed(db):
    DatabaseCache(db, prefix="app_").set("thing", 1, 60)

    assert [entry.key for entry in db.query(models.CacheEntry)] == ["app_thing"]


def test_forget(db):
    cache = DatabaseCache(db)
    cache.set("key", 1, 60)

    assert cache.forget("key") is True
    assert cache.forget("key") is False
    assert cache.get("key") is None


def test_delete_by_prefix_removes_only_matching_keys(db):
    cache = DatabaseCache(db)
    cache.set(post_index_key("", 1, 10), [], 60)
    cache.set(post_index_key("news", 2, 10), [], 60)
    cache.set(user_index_key(1, 10, ""), [], 60)
    # "_" must match literally, not as a LIKE wildcard
    cache.set("postXindexXabc", [], 60)

    assert cache.delete_by_prefix(POST_INDEX_PREFIX) == 2

    assert cache.get(user_index_key(1, 10, "")) == []
    assert cache.get("postXindexXabc") == []
    assert cache.get(post_index_key("", 1, 10)) is None


def test_flush_clears_everything_under_the_prefix(db):
    cache = DatabaseCache(db)
    cache.set("a", 1, 60)
    cache.set("b", 2, 60)
    DatabaseCache(db, prefix="other_").set("c", 3, 60)

    assert cache.flush() == 2
    assert [entry.key for entry in db.query(models.CacheEntry)] == ["other_c"]


def test_index_keys():
    assert user_index_key(2, 15, None) == user_index_key(2, 15, "")
    assert user_index_key(2, 15, None).startswith(USER_INDEX_PREFIX)
    assert post_index_key(None, 1, 10) == post_index_key("", 1, 10)
    assert post_index_key("a", 1, 10) != post_index_key("b", 1, 10)
    assert post_index_key("a", 1, 10).startswith(POST_INDEX_PREFIX)


def test_failures_are_logged_and_swallowed(caplog):
    broken = MagicMock()
    broken.query.side_effect = RuntimeError("database is gone")
    broken.get.side_effect = RuntimeError("database is gone")
    cache = DatabaseCache(broken)

    with caplog.at_level(logging.ERROR, logger="cache"):
        assert cache.delete_by_prefix(POST_INDEX_PREFIX) == 0
        assert cache.get("key", "fallback") == "fallback"
        assert cache.set("key", 1, 60) is False

    assert "Failed to clear cache: database is gone" in caplog.text
    assert broken.rollback.call_count == 3


def test_index_keys_keep_parameters_apart():
    assert post_index_key("", 1, 11) != post_index_key("", 11, 1)
    assert user_index_key(1, 11, "") != user_index_key(11, 1, "")
    assert user_index_key(1, 10, "1") != user_index_key(11, 0, "")


def test_user_index_key_has_fixed_length():
    long_search = "x" * 1000

    assert len(user_index_key(1, 10, long_search)) == len(user_index_key(1, 10, ""))
    assert len(user_index_key(1, 10, long_search)) < 255
