"""Error taxonomy shared by the vote, query and lifecycle components.

Every error carries a machine-readable ``kind`` and an HTTP status so the
application can render it as ``{"error": kind, "detail": message}``. None of
them are fatal: a failing request never affects other requests.
"""

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class CivicError(Exception):
    kind = "error"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(CivicError):
    kind = "not_found"
    status_code = 404
    default_message = "Not found"


class InvalidInput(CivicError):
    kind = "invalid_input"
    status_code = 400
    default_message = "Invalid data"


class Forbidden(CivicError):
    kind = "forbidden"
    status_code = 403
    default_message = "Permission denied"


class Conflict(CivicError):
    kind = "conflict"
    status_code = 409
    default_message = "Conflicting concurrent update"


class Unauthorized(CivicError):
    kind = "unauthorized"
    status_code = 401
    default_message = "Authentication required"


async def civic_error_handler(request: Request, exc: CivicError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(status_code=exc.status_code,
                        content={"error": exc.kind, "detail": exc.message},
                        headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{"loc": [str(part) for part in e.get("loc", ())], "msg": e.get("msg", "")}
              for e in exc.errors()]
    return JSONResponse(status_code=InvalidInput.status_code,
                        content={"error": InvalidInput.kind, "detail": InvalidInput.default_message,
                                 "errors": errors})
