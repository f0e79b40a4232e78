import asyncio
import logging
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from greenwood.api.feeds import router as feeds_router
from greenwood.core.dependencies import get_config, get_db_manager, get_query_builder
from greenwood.domain.errors import InvalidFilterError, StoreUnavailableError
from greenwood.domain.models import ReleaseKind, ServiceConfig
from greenwood.services.feed import TEMPLATES_DIR, channel_title
from greenwood.services.importer.package_sync import PackageSynchronizer
from greenwood.services.importer.registry_client import RegistryClient
from greenwood.services.package_updater import sync_loop
from greenwood.services.query import QueryBuilder
from greenwood.storage.db_manager import DatabaseManager

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# HTML templates (Jinja2)
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def create_app(
    config: Optional[ServiceConfig] = None,
    db: Optional[DatabaseManager] = None,
    start_sync: bool = True,
) -> FastAPI:
    """
    Build the FastAPI application.

    Configuration and store default to the on-disk ones and are resolved at
    startup when not given. The background synchronizer only starts when
    `start_sync` is true.
    """
    app = FastAPI(
        title="greenwood",
        version="0.1.0",
        description="RSS feeds of package releases published on the Elm package registry.",
    )
    app.state.config = config
    app.state.db = db
    app.state.sync_task = None

    @app.on_event("startup")
    async def startup_event() -> None:
        """
        Resolve configuration and store, then start the synchronization loop.
        """
        if app.state.config is None:
            app.state.config = get_config()
        logging.getLogger().setLevel(app.state.config.log_level.upper())
        if app.state.db is None:
            app.state.db = get_db_manager()

        if start_sync:
            cfg = app.state.config
            app.state.http_client = httpx.AsyncClient(
                timeout=cfg.request_timeout_seconds, follow_redirects=True
            )
            registry = RegistryClient(
                app.state.http_client,
                base_url=cfg.registry_url,
                legacy_base_url=cfg.legacy_registry_url,
                legacy_package_version=cfg.legacy_package_version,
            )
            synchronizer = PackageSynchronizer(app.state.db, registry)
            app.state.sync_task = asyncio.create_task(
                sync_loop(synchronizer, cfg.sync_interval_seconds, cfg.legacy_sync_every)
            )
            logger.info(f"Synchronizing with {cfg.registry_url} every {cfg.sync_interval_seconds}s")

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        if app.state.sync_task is not None:
            app.state.sync_task.cancel()
        if getattr(app.state, "http_client", None) is not None:
            await app.state.http_client.aclose()

    @app.get("/", response_class=HTMLResponse)
    def index(
        request: Request,
        builder: QueryBuilder = Depends(get_query_builder),
    ) -> HTMLResponse:
        """
        Landing page listing the latest releases matching the query parameters.
        """
        cfg: ServiceConfig = request.app.state.config
        filter = dict(request.query_params)
        try:
            records = builder.run(filter, ReleaseKind.ANY, cfg.query_limit)
        except InvalidFilterError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except StoreUnavailableError as e:
            logger.error(f"Landing page query failed: {e}")
            raise HTTPException(status_code=503, detail="Package store unavailable")
        query_string = str(request.url.query)
        return templates.TemplateResponse(
            request,
            "index.html",
            {
                "title": channel_title(filter, ReleaseKind.ANY),
                "query": f"?{query_string}" if query_string else "",
                "records": records,
                "registry_url": cfg.registry_url,
            },
        )

    @app.get("/health")
    async def health() -> dict:
        """
        Lightweight health check endpoint.
        """
        return {"status": "ok"}

    app.include_router(feeds_router, tags=["feeds"])
    return app


app = create_app()


if __name__ == "__main__":
    """
    Allow running `python -m greenwood.main` to start the Uvicorn server.
    """
    import uvicorn

    uvicorn.run(
        "greenwood.main:app",
        host="127.0.0.1",
        port=4242,
    )
