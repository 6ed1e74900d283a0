from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends

from tradelogapi.containers import Container
from tradelogapi.core.instruments import InstrumentCatalog
from tradelogapi.schemas.health import HealthCheckResponse
from tradelogapi.services.review_worker_pool import ReviewWorkerPool

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
@inject
async def health_check(
    pool: ReviewWorkerPool = Depends(Provide[Container.services.review_worker_pool]),
    catalog: InstrumentCatalog = Depends(Provide[Container.externals.instrument_catalog]),
) -> HealthCheckResponse:
    """Health check endpoint."""

    return HealthCheckResponse(
        status="healthy" if pool.running else "degraded",
        system_operational=pool.running,
        review_queue_depth=pool.depth,
        review_queue_capacity=pool.max_depth,
        review_workers_running=pool.running_workers,
        instruments_loaded=len(catalog),
    )
