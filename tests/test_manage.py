"""The operator CLI."""

import models
import manage
from cache import DatabaseCache


def test_create_user(db):
    assert manage.main(["create-user", "Jane Doe", "jane@example.com", "secret123", "--verified"]) == 0

    user = db.query(models.User).filter_by(email="jane@example.com").one()
    assert user.name == "Jane Doe"
    assert user.has_verified_email()
    assert user.password != "secret123"


def test_create_existing_user_fails(user):
    assert manage.main(["create-user", "Alice", user.email, "secret123"]) == 1


def test_verify_user(db, make_user):
    pending = make_user(verified=False)

    assert manage.main(["verify-user", pending.email]) == 0

    db.expire_all()
    assert db.get(models.User, pending.id).has_verified_email()
    assert manage.main(["verify-user", "nobody@example.com"]) == 1


def test_generate_key(capsys):
    assert manage.main(["generate-key"]) == 0

    key = capsys.readouterr().out.strip()
    assert len(key) == 64
    int(key, 16)


def test_clear_cache(db):
    DatabaseCache(db).set("a", 1, 60)
    DatabaseCache(db).set("b", 2, 60)

    assert manage.main(["clear-cache"]) == 0

    assert db.query(models.CacheEntry).count() == 0
