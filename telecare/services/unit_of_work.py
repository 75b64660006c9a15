# telecare/services/unit_of_work.py
from contextlib import contextmanager

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import DependencyFailure, TelecareError

logger = structlog.get_logger(__name__)


@contextmanager
def atomic(db: Session, operation: str, passthrough_integrity: bool = False, **context):
    """Commit everything written inside the block, or nothing.

    Business errors roll back and propagate unchanged. Storage errors roll
    back and surface as ``DependencyFailure`` so callers know a retry may
    help. With ``passthrough_integrity`` a constraint violation is re-raised
    as-is for the caller to interpret.
    """
    try:
        yield
        db.commit()
    except TelecareError as e:
        db.rollback()
        logger.info("operation_rejected", operation=operation, code=e.code, **context)
        raise
    except IntegrityError as e:
        db.rollback()
        if passthrough_integrity:
            raise
        logger.error("operation_integrity_error", operation=operation, error=str(e), **context)
        raise DependencyFailure(f"Storage constraint violated during {operation}") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("operation_failed", operation=operation, error=str(e), **context)
        raise DependencyFailure(f"Storage error during {operation}") from e
    except Exception:
        db.rollback()
        logger.exception("operation_crashed", operation=operation, **context)
        raise
