import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.errors import ChatError, ErrorKind

logger = logging.getLogger(__name__)


def _error_response(error: ChatError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    logger.info("request rejected", extra={"path": request.url.path, "code": exc.code})
    return _error_response(exc)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("request validation failed", extra={"path": request.url.path, "error_count": len(exc.errors())})
    return _error_response(ChatError(ErrorKind.BAD_REQUEST, "api"))


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled request failure", exc_info=exc, extra={"path": request.url.path})
    return _error_response(ChatError(ErrorKind.OFFLINE_OR_UNEXPECTED, "api"))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ChatError, chat_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
