from dependency_injector import containers, providers

from tradelogapi.config import Settings
from tradelogapi.core.instruments import load_instrument_catalog
from tradelogapi.database.session import get_db_context
from tradelogapi.providers.analysis.engine import HttpAnalysisEngine
from tradelogapi.providers.queue.review_events import ReviewEventPublisher
from tradelogapi.services.review_dispatcher import ReviewDispatcher
from tradelogapi.services.review_projector import ReviewQueryProjector
from tradelogapi.services.review_worker_pool import ReviewWorkerPool


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(Settings)


class ProviderModule(containers.DeclarativeContainer):
    """External collaborators."""

    config = providers.DependenciesContainer()

    analysis_engine = providers.Singleton(HttpAnalysisEngine, settings=config.config)
    review_event_publisher = providers.Singleton(ReviewEventPublisher, settings=config.config)
    instrument_catalog = providers.Singleton(load_instrument_catalog, settings=config.config)


class ServiceModule(containers.DeclarativeContainer):
    """Long-lived review runtime (request-scoped services live in deps.py)."""

    config = providers.DependenciesContainer()
    externals = providers.DependenciesContainer()

    review_worker_pool = providers.Singleton(ReviewWorkerPool, settings=config.config)
    review_dispatcher = providers.Singleton(
        ReviewDispatcher,
        settings=config.config,
        engine=externals.analysis_engine,
        pool=review_worker_pool,
        publisher=externals.review_event_publisher,
        session_factory=providers.Object(get_db_context),
    )
    review_projector = providers.Singleton(ReviewQueryProjector)


class Container(containers.DeclarativeContainer):
    """Application container."""

    wiring_config = containers.WiringConfiguration(
        modules=[
            "tradelogapi.deps",
            "tradelogapi.routers.trade_log_router",
            "tradelogapi.routers.review_router",
            "tradelogapi.routers.health_router",
        ],
    )

    config = providers.Container(ConfigModule)
    externals = providers.Container(ProviderModule, config=config)
    services = providers.Container(
        ServiceModule, config=config, externals=externals
    )
