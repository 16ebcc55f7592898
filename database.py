import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

import config

logger = logging.getLogger(__name__)


def make_engine(url: str, echo: bool = False):
    """Create an engine; SQLite gets thread sharing, in-memory SQLite a single shared connection"""
    kwargs = {"echo": echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


engine = make_engine(config.DATABASE_URL, echo=config.SQL_ECHO)

SessionLocal = sessionmaker(autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency function that provides a database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class Transaction:
    """Callbacks tied to the outcome of a transaction() block."""

    def __init__(self, db: Session):
        self.db = db
        self._on_commit = []
        self._on_rollback = []

    def after_commit(self, callback):
        self._on_commit.append(callback)

    def after_rollback(self, callback):
        self._on_rollback.append(callback)

    def _run(self, callbacks):
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error("Transaction callback failed: %s", e)


@contextmanager
def transaction(db: Session):
    """Commit everything done inside the block, or roll all of it back.

    Rollback callbacks run after the database rollback and commit callbacks
    after a successful commit, so side effects outside the database (files,
    caches) follow the same outcome as the rows.
    """
    tx = Transaction(db)
    try:
        yield tx
        db.commit()
    except Exception:
        db.rollback()
        tx._run(tx._on_rollback)
        raise
    tx._run(tx._on_commit)
