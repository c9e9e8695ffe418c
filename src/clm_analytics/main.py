"""Entry point for the pool analytics engine.

Wires all components together, optionally serves the read-only API, and
starts the tiered scheduler. When the API is enabled, the scheduler and the
API share a single asyncio event loop via uvicorn's programmatic API and
FastAPI's lifespan context manager.

Handles SIGINT/SIGTERM for graceful shutdown.

Component wiring order (in _build_components):
1. AnalyticsDatabase + AnalyticsStore (persistence)
2. Rate limiters (one per provider, usage persisted to api_usage)
3. Providers + FetchClient (failover chain with circuit breakers)
4. IngestionPipeline
5. VolatilityCalculator
6. AlertFeed + AlertEvaluator
7. TieredScheduler
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from clm_analytics.alerts.evaluator import AlertEvaluator, AlertFeed
from clm_analytics.analytics.volatility import VolatilityCalculator
from clm_analytics.config import AppSettings
from clm_analytics.data.database import AnalyticsDatabase
from clm_analytics.data.seed import seed_default_pools
from clm_analytics.data.store import AnalyticsStore
from clm_analytics.fetch.client import FetchClient
from clm_analytics.fetch.providers import build_providers
from clm_analytics.fetch.rate_limiter import build_rate_limiters
from clm_analytics.ingestion.pipeline import IngestionPipeline
from clm_analytics.logging import get_logger, setup_logging
from clm_analytics.scheduler.scheduler import TieredScheduler


async def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all engine components from settings.

    Note: Does NOT connect the database -- that happens in the lifespan
    (API mode) or run() (scheduler-only mode).

    Args:
        settings: Application-wide settings.

    Returns:
        Dict mapping component names to instances.
    """
    database = AnalyticsDatabase(settings.database.path)
    store = AnalyticsStore(database)

    limiters = build_rate_limiters(
        settings.providers.rate_limits, usage_recorder=store.increment_api_usage
    )
    providers = build_providers(settings.providers, sampling=settings.analytics.sampling)
    fetch_client = FetchClient(providers, limiters, settings.providers)

    ingestion = IngestionPipeline(store, settings.ingestion)
    volatility = VolatilityCalculator(store, settings.analytics)

    alert_feed = AlertFeed(settings.alerts.feed_size)
    alert_evaluator = AlertEvaluator(store, settings.alerts, alert_feed)

    scheduler = TieredScheduler(
        store=store,
        fetch_client=fetch_client,
        ingestion=ingestion,
        volatility=volatility,
        alert_evaluator=alert_evaluator,
        settings=settings,
    )

    return {
        "database": database,
        "store": store,
        "limiters": limiters,
        "fetch_client": fetch_client,
        "ingestion": ingestion,
        "volatility": volatility,
        "alert_feed": alert_feed,
        "alert_evaluator": alert_evaluator,
        "scheduler": scheduler,
    }


async def _open(settings: AppSettings, components: dict[str, Any]) -> None:
    await components["database"].connect()
    if settings.database.seed_defaults:
        await seed_default_pools(components["store"])


async def _close(components: dict[str, Any]) -> None:
    await components["fetch_client"].close()
    await components["database"].close()


def _setup_signal_handlers(scheduler: TieredScheduler) -> None:
    """Register SIGINT/SIGTERM to stop the scheduler after its current tick.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("clm_analytics.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        asyncio.create_task(scheduler.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage engine component lifecycle within the FastAPI application.

    On startup: stores components on app.state, connects the database and
    starts the scheduler as a background task.

    On shutdown: stops the scheduler, cancels its task, closes providers
    and the database.
    """
    logger = get_logger("clm_analytics.main")
    settings = app.state.settings
    components = app.state.components

    # Store components on app.state for route handler access
    app.state.store = components["store"]
    app.state.alert_feed = components["alert_feed"]
    app.state.scheduler = components["scheduler"]

    await _open(settings, components)

    scheduler_task = asyncio.create_task(components["scheduler"].start())

    logger.info("lifespan_started", database=settings.database.path)

    yield

    await components["scheduler"].stop()
    scheduler_task.cancel()
    try:
        await scheduler_task
    except asyncio.CancelledError:
        pass

    await _close(components)
    logger.info("clm_analytics_stopped")


async def run() -> None:
    """Run the analytics engine.

    When the API is enabled (API_ENABLED=true):
    - Creates the FastAPI app with lifespan
    - Runs scheduler and API in a single asyncio event loop via uvicorn

    When the API is disabled (the default):
    - Runs the scheduler directly; with SCHEDULER_RUN_ONCE=true a single
      tick runs and the process exits, for cron-driven deployments
    """
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("clm_analytics.main")

    # 3. Build all components
    components = await _build_components(settings)

    if settings.api.enabled:
        from clm_analytics.api.app import create_api_app

        app = create_api_app(lifespan=lifespan)
        app.state.settings = settings
        app.state.components = components

        logger.info(
            "starting_with_api",
            host=settings.api.host,
            port=settings.api.port,
        )

        config = uvicorn.Config(
            app,
            host=settings.api.host,
            port=settings.api.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        server = uvicorn.Server(config)
        await server.serve()
    else:
        if not settings.scheduler.run_once:
            _setup_signal_handlers(components["scheduler"])

        logger.info(
            "starting_without_api",
            database=settings.database.path,
            run_once=settings.scheduler.run_once,
            max_workers=settings.scheduler.max_workers,
        )

        try:
            await _open(settings, components)
            await components["scheduler"].start()
        finally:
            await _close(components)
            logger.info("clm_analytics_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
