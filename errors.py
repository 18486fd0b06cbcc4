import logging
import traceback
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Error carrying the HTTP status and the module that raised it."""

    def __init__(self, message: str, status_code: int = 500, module: str = ""):
        super().__init__(message)
        self.message = message
        self.status_code = 500 if status_code < 400 or status_code > 599 else int(status_code)
        self.module = module


def error_body(message: str, module: str = "", trace: str = "") -> Dict[str, Any]:
    return {"error": message, "module": module, "trace": trace}


def _format_trace(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed in {exc.module or 'unknown module'}: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, exc.module, _format_trace(exc)),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Only routing failures reach this handler, controllers raise ApiError
    if exc.status_code in (404, 405):
        message = f"Cannot {request.method} {request.url.path}"
    else:
        message = str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message, "Main (router)"),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', '')}"
        for error in exc.errors()
    )
    message = f"The request data is invalid! The following inconsistencies were found: {problems}"
    logger.warning(f"{request.method} {request.url.path} -> 400: {message}")
    return JSONResponse(status_code=400, content=error_body(message, "RequestValidation"))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content=error_body(str(exc), "", _format_trace(exc)))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
