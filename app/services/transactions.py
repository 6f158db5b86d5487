from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException, status
from fastapi.exceptions import RequestValidationError
from sqlalchemy.orm import Session

from app.core.errors import BusinessRuleError

logger = logging.getLogger(__name__)


@contextmanager
def atomic(db: Session, failure_message: str) -> Iterator[Session]:
    """Commit the block's writes together or roll all of them back.

    ``HTTPException`` and validation errors propagate unchanged,
    ``BusinessRuleError`` becomes 400 and anything else
    becomes 500 carrying ``failure_message`` and the error text.
    """
    try:
        yield db
        db.commit()
    except (HTTPException, RequestValidationError):
        db.rollback()
        raise
    except BusinessRuleError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        db.rollback()
        logger.exception("%s", failure_message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"{failure_message}: {exc}",
        ) from exc
