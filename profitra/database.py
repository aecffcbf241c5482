# profitra/database.py
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Callable, Generator, Optional, TypeVar

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from profitra.core.errors import ConcurrencyConflict
from profitra.models import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Database:
    """Persistence provider handed to every workflow.

    Owns the engine and the session factory; nothing in the package reaches
    for a module-level connection.
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        engine: Engine | None = None,
        max_retries: int = 3,
        retry_backoff: float = 0.05,
    ):
        if engine is None:
            if not url:
                raise RuntimeError("DATABASE_URL is not set")
            engine = create_engine(url, pool_pre_ping=True, future=True)
        self.engine = engine
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._sessionmaker = sessionmaker(
            bind=engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            future=True,
        )

    @classmethod
    def from_settings(cls, settings) -> "Database":
        return cls(
            settings.database_url,
            max_retries=settings.LEDGER_MAX_RETRIES,
            retry_backoff=settings.LEDGER_RETRY_BACKOFF_SECONDS,
        )

    def init_schema(self) -> None:
        Base.metadata.create_all(bind=self.engine, checkfirst=True)

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """All-or-nothing unit of work: commit on clean exit, rollback otherwise."""
        db = self._sessionmaker()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def run(self, fn: Callable[[Session], T], *, retries: Optional[int] = None) -> T:
        """Execute `fn` inside a fresh transaction, retrying lost optimistic-lock races.

        Every attempt starts from a clean session, so `fn` re-reads the
        balance it is about to change.
        """
        attempts = (self.max_retries if retries is None else retries) + 1
        for attempt in range(attempts):
            try:
                with self.transaction() as db:
                    return fn(db)
            except StaleDataError as e:
                if attempt + 1 >= attempts:
                    logger.warning("Optimistic lock retries exhausted after %d attempts: %s", attempts, e)
                    raise ConcurrencyConflict("concurrent update on the same account, retry later") from e
                delay = self.retry_backoff * (2 ** attempt)
                logger.info("Stale write detected, retrying (attempt %d/%d) in %.3fs", attempt + 2, attempts, delay)
                time.sleep(delay)
        raise ConcurrencyConflict("concurrent update on the same account, retry later")

    def dispose(self) -> None:
        self.engine.dispose()
