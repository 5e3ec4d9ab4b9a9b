"""
api/routes/v1/common.py -- Helpers shared by the habit resource routers.

store_errors() is the one place a raw database failure becomes an API error:
each operation names the code it reports (FETCH_ERROR, CREATE_ERROR, ...).
AppError passes through untouched, and so does IntegrityError, which
api/main.py maps to 409 DUPLICATE_ENTRY.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import Request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.errors import INTERNAL_SERVER_ERROR, AppError
from habits.store import HabitStore

logger = logging.getLogger("atomic.api")


def habit_store(request: Request) -> HabitStore:
    return request.app.state.habit_store


@contextmanager
def store_errors(code: str, message: str) -> Iterator[None]:
    try:
        yield
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        logger.exception("%s: %s", code, message)
        raise AppError(message, INTERNAL_SERVER_ERROR, code) from exc
