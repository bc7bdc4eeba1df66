"""
Error types for SkillSwap

Services raise these; the handlers registered by ``register_error_handlers``
turn them into JSON responses of the form ``{"message": ...}``.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class SkillSwapError(Exception):
    """Base class for expected domain errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message}


class ValidationError(SkillSwapError):
    """Malformed or missing input"""
    status_code = status.HTTP_400_BAD_REQUEST


class AuthError(SkillSwapError):
    """Missing or invalid credentials"""
    status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(SkillSwapError):
    """Caller is not allowed to do this"""
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(SkillSwapError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(SkillSwapError):
    """Duplicate request or an already-written one-shot value"""
    status_code = status.HTTP_409_CONFLICT


class InvalidSkillError(SkillSwapError):
    """Skill named in a swap is not offered by the party it belongs to"""
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidStateError(SkillSwapError):
    """Transition not legal from the swap's current status"""
    status_code = status.HTTP_400_BAD_REQUEST


class ServerError(SkillSwapError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


async def skillswap_error_handler(request: Request, exc: SkillSwapError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail},
                        headers=getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        errors.append({
            "msg": err.get("msg"),
            "path": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
            "location": err.get("loc", ("body",))[0],
        })
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"errors": errors})


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"message": "Server error"})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SkillSwapError, skillswap_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
