"""Map reservation errors onto HTTP responses."""

from typing import Any, Callable, Coroutine

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.responses import Response

from mealhold.errors import MealholdError
from mealhold.utils.logging import get_logger

logger = get_logger(__name__)

ExceptionHandler = Callable[[Request, Exception], Coroutine[Any, Any, Response]]


async def mealhold_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error = exc if isinstance(exc, MealholdError) else MealholdError(str(exc))
    if error.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=error.message)
    return JSONResponse(status_code=error.status_code, content={"detail": error.message})


async def general_500_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_error", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Something went wrong; please try again"},
    )


EXCEPTION_HANDLERS: dict[type[Exception], ExceptionHandler] = {
    MealholdError: mealhold_error_handler,
    Exception: general_500_exception_handler,
}


def register_exception_handlers(app: FastAPI) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
