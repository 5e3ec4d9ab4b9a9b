"""
core/errors.py -- The single application exception type.

Services, stores' callers and route handlers raise AppError with a stable
machine-readable code. The exception handlers in api/main.py are the only place
that turns it into an HTTP response, so nothing below the API layer needs to
know about FastAPI.

Layer rule: core/ is the kernel. No imports from api/, auth/, or habits/.
"""

from typing import Any, Optional

BAD_REQUEST = 400
UNAUTHORIZED = 401
NOT_FOUND = 404
CONFLICT = 409
INTERNAL_SERVER_ERROR = 500


class AppError(Exception):
    """An expected, caller-visible failure.

    status_code -- HTTP status the API layer responds with.
    code        -- stable identifier clients branch on (e.g. "DUPLICATE_NAME").
    details     -- optional structured payload (field errors, conflicting field).
    """

    def __init__(
        self,
        message: str,
        status_code: int = INTERNAL_SERVER_ERROR,
        code: str = "INTERNAL_ERROR",
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details

    def __repr__(self) -> str:
        return f"AppError({self.code!r}, {self.status_code}, {self.message!r})"


def not_found(message: str, code: str = "NOT_FOUND") -> AppError:
    return AppError(message, NOT_FOUND, code)


def conflict(message: str, code: str) -> AppError:
    return AppError(message, CONFLICT, code)
