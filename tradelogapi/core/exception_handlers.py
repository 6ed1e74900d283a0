import logging
import traceback
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .exceptions import BaseAPIException, InternalServerError, ServiceException

logger = logging.getLogger("tradelogapi")


def _request_context(request: Request) -> Dict[str, Any]:
    client = request.client.host if request.client else "-"
    return {
        "method": request.method,
        "url": str(request.url),
        "client": client,
    }


def _error_body(code: str, message: str, details: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "success": False,
        "error": {"code": code, "message": message, "details": details},
    }


async def handle_base_api_exception(request: Request, exc: BaseAPIException):
    ctx = _request_context(request)
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"[{exc.error_code}] {ctx['method']} {ctx['url']} from {ctx['client']} -> {exc.status_code}: {exc.message}"
    )
    return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)


async def handle_http_exception(request: Request, exc: HTTPException):
    ctx = _request_context(request)
    error_msg = f"[HTTPException] {ctx['method']} {ctx['url']} from {ctx['client']} -> {exc.status_code}: {exc.detail}"

    if exc.status_code >= 500:
        tb_str = "".join(traceback.format_tb(exc.__traceback__))
        logger.error(f"{error_msg}\n\nStack Trace:\n{tb_str}")
    else:
        logger.warning(error_msg)

    if isinstance(exc.detail, dict) and "error" in exc.detail:
        content = exc.detail
    else:
        content = _error_body("HTTP_ERROR", str(exc.detail), {})
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def handle_validation_error(request: Request, exc: RequestValidationError):
    ctx = _request_context(request)
    logger.warning(
        f"[ValidationError] {ctx['method']} {ctx['url']} from {ctx['client']} -> 422: {exc.errors()}"
    )
    content = _error_body(
        "VALIDATION_001", "Validation failed", {"errors": jsonable_errors(exc)}
    )
    return JSONResponse(status_code=422, content=content)


def jsonable_errors(exc: RequestValidationError):
    # ctx 에 예외 객체가 들어갈 수 있어 문자열로 정리
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(error)
    return errors


async def handle_service_exception(request: Request, exc: ServiceException):
    ctx = _request_context(request)
    logger.error(
        f"[ServiceException] {ctx['method']} {ctx['url']} from {ctx['client']}: {type(exc).__name__}: {exc}"
    )
    internal = InternalServerError()
    return JSONResponse(status_code=internal.status_code, content=internal.detail)


async def handle_unexpected_error(request: Request, exc: Exception):
    ctx = _request_context(request)

    tb_str = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    logger.error(
        f"[Unhandled Error] {ctx['method']} {ctx['url']} from {ctx['client']}\n"
        f"Exception Type: {type(exc).__name__}\n"
        f"Exception Message: {str(exc)}\n\n"
        f"Full Stack Trace:\n{tb_str}"
    )

    internal = InternalServerError()
    return JSONResponse(status_code=internal.status_code, content=internal.detail)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BaseAPIException, handle_base_api_exception)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(ServiceException, handle_service_exception)
    app.add_exception_handler(Exception, handle_unexpected_error)
