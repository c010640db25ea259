"""Atomic read-modify-write over single rows of the document store.

Rows that act as shared aggregates carry a SQLAlchemy ``version_id_col``. An
UPDATE only succeeds when the version read is still current, so concurrent
writers surface as ``StaleDataError`` and the whole read-compute-write cycle
is retried with a fresh read.
"""

import logging
import os
import random
import time
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from coaching_engine.core.errors import PersistenceError

logger = logging.getLogger("uvicorn.error")

ATOMIC_UPDATE_MAX_ATTEMPTS = int(os.getenv("ATOMIC_UPDATE_MAX_ATTEMPTS", "200"))
ATOMIC_UPDATE_BACKOFF_SECONDS = float(os.getenv("ATOMIC_UPDATE_BACKOFF_SECONDS", "0.005"))

RowT = TypeVar("RowT")
ResultT = TypeVar("ResultT")

# Stale version, a concurrent first insert of the same key, or SQLite lock contention.
_CONFLICT_ERRORS = (StaleDataError, IntegrityError, OperationalError)


class ConcurrentUpdateError(RuntimeError):
    def __init__(self, model_name: str, key: Any, attempts: int):
        super().__init__(f"atomic update of {model_name}[{key!r}] gave up after {attempts} attempts")
        self.model_name = model_name
        self.key = key
        self.attempts = attempts


def atomic_update(
    session_factory: Callable[[], Session],
    model: type[RowT],
    key: Any,
    fn: Callable[[RowT], ResultT],
    create: Callable[[], RowT],
    max_attempts: Optional[int] = None,
    prepare: Optional[Callable[[Session], bool]] = None,
) -> Optional[ResultT]:
    """Apply ``fn`` to the row stored under ``key`` and commit, retrying on conflict.

    ``fn`` mutates the row in place and may return a value, which is handed
    back once the commit succeeds. ``create`` builds the initial row when the
    key does not exist yet. ``fn`` must only depend on the row it receives,
    since it can run several times.

    ``prepare`` runs first in the same transaction with the open session, so
    rows it adds commit or roll back together with the update. When it returns
    False nothing is written and ``None`` is returned.
    """
    attempts = max(1, max_attempts or ATOMIC_UPDATE_MAX_ATTEMPTS)
    for attempt in range(attempts):
        db = session_factory()
        try:
            if prepare is not None and not prepare(db):
                db.rollback()
                return None
            row = db.get(model, key)
            if row is None:
                row = create()
                db.add(row)
            result = fn(row)
            db.commit()
            return result
        except _CONFLICT_ERRORS as exc:
            db.rollback()
            logger.debug(
                "atomic_update_conflict model=%s key=%s attempt=%s detail=%s",
                model.__name__,
                key,
                attempt + 1,
                exc.__class__.__name__,
            )
            time.sleep(ATOMIC_UPDATE_BACKOFF_SECONDS * random.uniform(0.5, 1.5) * min(attempt + 1, 10))
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
    raise ConcurrentUpdateError(model.__name__, key, attempts)


def retry_once(operation: str, session_factory: Callable[[], Session], fn: Callable[[Session], ResultT]) -> ResultT:
    """Run a primary write, retrying once on a store failure before raising ``PersistenceError``."""
    last_error: Optional[SQLAlchemyError] = None
    for attempt in range(2):
        db = session_factory()
        try:
            result = fn(db)
            db.commit()
            return result
        except SQLAlchemyError as exc:
            db.rollback()
            last_error = exc
            logger.warning("persistence_retry operation=%s attempt=%s detail=%s", operation, attempt + 1, exc)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
    raise PersistenceError(operation, str(last_error)) from last_error
