from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.responses import HTMLResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from billing_exporter.services.billing.collector import BillingCollector
from billing_exporter.services.billing.factory import BillingSourceFactory
from billing_exporter.services.billing.source import BillingSource
from billing_exporter.shared.core.config import Settings, get_settings
from billing_exporter.shared.core.exceptions import ConfigurationError
from billing_exporter.shared.core.logging import setup_logging

# Configure logging
setup_logging()

logger = structlog.get_logger()

LANDING_PAGE = """<html>
<head><title>{title}</title></head>
<body>
<h1>{title}</h1>
<p><a href="{metrics_path}">Metrics</a></p>
</body>
</html>
"""


def create_app(
    settings: Optional[Settings] = None,
    collector: Optional[BillingCollector] = None,
    sources: Optional[List[BillingSource]] = None,
) -> FastAPI:
    """
    Build the exporter app.

    Sources are built from settings unless given; they must increment the
    collector's counter.
    """
    settings = settings or get_settings()
    collector = collector or BillingCollector(query_timeout=settings.SOURCE_QUERY_TIMEOUT_SECONDS)

    # Runs before the app starts serving and after it stops.
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("exporter_starting", app=settings.APP_NAME, version=settings.VERSION)

        candidates = sources
        if candidates is None:
            candidates = BillingSourceFactory(settings, collector.counter).create_all()

        active = await collector.activate(candidates)
        if not active:
            logger.critical("no_working_billing_source", configured=len(candidates))
            raise ConfigurationError("None of the configured billing sources works.")

        REGISTRY.register(collector)
        logger.info("exporter_ready", sources=[s.describe() for s in active], metrics_path=settings.METRICS_PATH)

        try:
            yield
        finally:
            REGISTRY.unregister(collector)
            logger.info("exporter_stopped", app=settings.APP_NAME)

    app = FastAPI(
        title=settings.APP_NAME_LONG,
        version=settings.VERSION,
        lifespan=lifespan)
    app.state.settings = settings
    app.state.collector = collector

    async def metrics() -> Response:
        # Every scrape queries the sources first, so it sees current costs
        await collector.query_all()
        return Response(generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)

    app.add_api_route(settings.METRICS_PATH, metrics, methods=["GET"], include_in_schema=False)

    @app.get("/", response_class=HTMLResponse)
    async def landing_page():
        return LANDING_PAGE.format(title=settings.APP_NAME_LONG, metrics_path=settings.METRICS_PATH)

    @app.get("/health")
    async def health_check():
        return {
            "status": "active",
            "app": settings.APP_NAME,
            "version": settings.VERSION,
            "sources": [
                {"source": source.describe(), "state": source.status.value}
                for source in collector.sources
            ],
        }

    return app


app = create_app()


def run() -> None:
    """Console entry point."""
    settings = get_settings()
    uvicorn.run(app, host=settings.LISTEN_HOST, port=settings.LISTEN_PORT)


if __name__ == "__main__":
    run()
