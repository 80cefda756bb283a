from contextlib import contextmanager
from typing import Iterator

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.core.exceptions import APIError, PersistenceFailure

logger = structlog.get_logger()


@contextmanager
def transaction(db: Session, **context) -> Iterator[Session]:
    """
    Explicit unit of work around a block of writes.

    Commits when the block exits cleanly and rolls back on any exception.
    Typed API errors are re-raised unchanged after the rollback; database
    errors (including a failed commit) surface as PersistenceFailure.

    Args:
        db (Session): Session the block writes through
        **context: Extra key/values attached to the failure log entry

    Yields:
        Session: the same session
    """
    try:
        yield db
        db.commit()
    except APIError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "persistence_failure",
            error_type=type(exc).__name__,
            detail=str(exc),
            **context,
        )
        raise PersistenceFailure() from exc
    except BaseException:
        db.rollback()
        raise
