"""
Error taxonomy shared by the directory, the store, the relay and the client.

Routers raise these directly; `register_exception_handlers` renders them as
`{"detail": ...}` JSON with the matching status code, the same body shape
FastAPI uses for `HTTPException`.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class MessagingError(Exception):
    status_code = 500
    default_detail = "Internal server error."

    def __init__(self, detail: str = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class Unauthenticated(MessagingError):
    status_code = 401
    default_detail = "Unauthorized"


class AuthorizationError(MessagingError):
    status_code = 403
    default_detail = "Not authorized to access this conversation"


class NotFound(MessagingError):
    status_code = 404
    default_detail = "Not found"


class InvalidArgument(MessagingError):
    status_code = 400
    default_detail = "Invalid request"


class Conflict(MessagingError):
    status_code = 409
    default_detail = "Conflicting write"


class Unavailable(MessagingError):
    status_code = 503
    default_detail = "Service temporarily unavailable, please retry."


ERRORS_BY_STATUS = {
    401: Unauthenticated,
    403: AuthorizationError,
    404: NotFound,
    400: InvalidArgument,
    409: Conflict,
    503: Unavailable,
}


async def messaging_error_handler(request: Request, exc: MessagingError):
    if exc.status_code >= 500:
        logger.error(
            f"request_failed path={request.url.path} error={type(exc).__name__} detail={exc.detail}"
        )
    else:
        logger.info(
            f"request_rejected path={request.url.path} error={type(exc).__name__} detail={exc.detail}"
        )

    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return JSONResponse(
        status_code=exc.status_code, content={"detail": exc.detail}, headers=headers
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(MessagingError, messaging_error_handler)
