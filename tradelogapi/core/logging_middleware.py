import logging
import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = logging.getLogger("tradelogapi")

# 폴링 엔드포인트는 요청 로그를 DEBUG 로 낮춤
QUIET_PATH_SUFFIXES = ("/review-status", "/health")


def _response_level(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.perf_counter()
        method = request.method
        path = request.url.path
        client = request.client.host if request.client else "-"
        quiet = path.endswith(QUIET_PATH_SUFFIXES)

        logger.log(
            logging.DEBUG if quiet else logging.INFO,
            f"[Request] {method} {path} from {client}",
        )
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"[Unhandled Error] {method} {path} from {client}")
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        level = _response_level(response.status_code)
        if quiet and level == logging.INFO:
            level = logging.DEBUG
        logger.log(
            level,
            f"[Response] {method} {path} from {client} -> {response.status_code} in {duration_ms:.1f}ms",
        )
        return response
