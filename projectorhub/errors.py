"""
Error taxonomy for the service engine.

Callers distinguish "fix your input" (validation, not_found, mismatch, conflict,
unauthorized, precondition_failed) from "try again" (unavailable) through the
``retryable`` flag, which is also rendered in every error response.
"""
from contextlib import contextmanager
from typing import Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError


class EngineError(Exception):
    code = "error"
    status_code = 500
    retryable = False

    def __init__(self, detail: str, *, field: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.field = field

    def to_dict(self) -> dict:
        body = {"error": self.code, "detail": self.detail, "retryable": self.retryable}
        if self.field:
            body["field"] = self.field
        return body


class ValidationError(EngineError):
    code = "validation"
    status_code = 400


class NotFoundError(EngineError):
    code = "not_found"
    status_code = 404


class MismatchError(NotFoundError):
    """Referenced rows exist but do not belong together (projector at another site)."""
    code = "mismatch"


class ConflictError(EngineError):
    code = "conflict"
    status_code = 409


class UnauthorizedError(EngineError):
    code = "unauthorized"
    status_code = 403


class PreconditionFailedError(EngineError):
    code = "precondition_failed"
    status_code = 412


class UnavailableError(EngineError):
    code = "unavailable"
    status_code = 503
    retryable = True


@contextmanager
def store_errors(operation: str):
    """Translate store failures raised inside the block into engine errors."""
    try:
        yield
    except EngineError:
        raise
    except IntegrityError as e:
        raise ConflictError(f"{operation}: uniqueness violated") from e
    except (OperationalError, PoolTimeoutError) as e:
        raise UnavailableError(f"{operation}: record store unavailable") from e
    except DBAPIError as e:
        if e.connection_invalidated:
            raise UnavailableError(f"{operation}: record store connection lost") from e
        raise


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    headers = {"Retry-After": "5"} if exc.retryable else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies and parameters use the same error shape as the engine."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(part) for part in first.get("loc", ())]
    if loc and loc[0] in ("body", "query", "path", "header"):
        loc = loc[1:]
    message = first.get("msg", "Invalid request")
    detail = f"{'.'.join(loc)}: {message}" if loc else message
    return await engine_error_handler(request, ValidationError(detail, field=loc[-1] if loc else None))
