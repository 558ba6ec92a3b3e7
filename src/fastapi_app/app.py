"""FastAPI application factory with lifespan hook."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from fastapi_app.routes import router
from services.cost_collector import CostCollector
from services.poller import Poller


def create_app(collector: CostCollector | None = None, start_poller: bool = True) -> FastAPI:
    """Build the app around ``collector`` (built from the config file when None)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start the poller on startup; cancel it on shutdown."""
        from helpers.constants import APP_LOGGER

        if app.state.collector is None:
            from config.loader import load_config

            app.state.collector = CostCollector(load_config())

        poller = None
        if start_poller:
            poller = Poller(
                app.state.collector,
                interval=app.state.collector.config.polling_interval,
            )
            poller.start()
            APP_LOGGER.info(
                msg="Starting exporter",
                **app.state.collector.config.as_dict(),
            )
        yield
        if poller is not None:
            await poller.stop()
        APP_LOGGER.info(msg="Exporter stopped")

    app = FastAPI(
        title="AWS Cost Exporter",
        description="Republishes AWS Cost Explorer data as Prometheus gauges",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.collector = collector
    app.include_router(router)
    return app


# ``uvicorn fastapi_app.app:app`` builds the collector from CONFIG_PATH on startup
app = create_app()
