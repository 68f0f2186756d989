"""Database session management"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from vending.models.base import Base
from vending.core.config import settings

# Create engine
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_recycle=3600
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for FastAPI endpoints"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database (create all tables)"""
    Base.metadata.create_all(bind=engine)


class UnitOfWork:
    """Transaction boundary over a Session.

    ``begin()`` blocks nest: only the outermost block commits (or rolls back
    on error), inner blocks join the transaction already in progress. Ledger
    and alert functions open a ``begin()`` block of their own, so they commit
    when called standalone and simply join when a job calls them inside its
    per-item transaction.
    """

    def __init__(self, db: Session):
        self.db = db
        self._depth = 0

    @contextmanager
    def begin(self) -> Iterator[Session]:
        outermost = self._depth == 0
        self._depth += 1
        try:
            yield self.db
            if outermost:
                self.db.commit()
        except Exception:
            if outermost:
                self.db.rollback()
            raise
        finally:
            self._depth -= 1
