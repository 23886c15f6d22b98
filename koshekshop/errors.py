"""Общие обработчики ошибок FastAPI: ответ всегда {"error": ..., "success": false}"""

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from koshekshop import config

logger = logging.getLogger(__name__)


async def global_exception_handler(request: Request, exc: Exception):
    """Глобальный обработчик необработанных исключений"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    # в production не раскрываем детали ошибки
    error_message = "internal_error" if config.IS_PRODUCTION else str(exc)
    return JSONResponse(status_code=500, content={"error": error_message, "success": False})


async def http_exception_handler(request: Request, exc: HTTPException):
    if isinstance(exc.detail, dict):
        content = {**exc.detail, "success": False}
    else:
        content = {"error": exc.detail, "success": False}
    return JSONResponse(status_code=exc.status_code, content=content)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"error": "invalid_request", "success": False})


def install_error_handlers(app: FastAPI):
    app.add_exception_handler(Exception, global_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
