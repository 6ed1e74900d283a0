import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from mangum import Mangum
from starlette.middleware.cors import CORSMiddleware

from tradelogapi import containers
from tradelogapi.config import settings
from tradelogapi.core.exception_handlers import register_exception_handlers
from tradelogapi.core.logging_middleware import LoggingMiddleware
from tradelogapi.logging_config import setup_logging
from tradelogapi.routers import (
    credit_router,
    health_router,
    review_router,
    trade_log_router,
)

load_dotenv("tradelogapi/.env")
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = app.container  # type: ignore
    catalog = container.externals.instrument_catalog()
    logger.info(f"Loaded {len(catalog)} instruments")

    dispatcher = container.services.review_dispatcher()
    await dispatcher.start()

    if settings.REVIEW_RECONCILE_ON_STARTUP:
        try:
            result = dispatcher.reconcile_stale_reviews()
            logger.info(f"Startup reconciliation finished: {result.reconciled} review(s)")
        except Exception as e:
            logger.error(f"Startup reconciliation failed: {str(e)}")

    yield

    await dispatcher.stop()
    logger.info("Review dispatcher stopped")


def create_app() -> FastAPI:
    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.container = containers.Container()  # type: ignore

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)

    register_exception_handlers(app)

    @app.get("/")
    def hello() -> dict:
        return {"message": "Hello World!"}

    app.include_router(health_router.router)
    app.include_router(trade_log_router.router, prefix=settings.API_V1_STR)
    app.include_router(review_router.router, prefix=settings.API_V1_STR)
    app.include_router(credit_router.router, prefix=settings.API_V1_STR)

    return app


app = create_app()

handler = Mangum(app)
