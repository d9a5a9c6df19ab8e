"""FastAPI application entry point"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sharekit.api import monitoring, oauth, share
from sharekit.api.deps import sharekit_error_handler
from sharekit.core.config import settings
from sharekit.core.container import ServiceContainer, build_container
from sharekit.core.exceptions import ShareKitError
from sharekit.core.logging import setup_logging
from sharekit.db.redis import get_async_redis_client
from sharekit.tasks.cleanup import pkce_sweep_task

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    owns_container = app.state.container is None
    if owns_container:
        app.state.container = build_container(settings, get_async_redis_client())
    container = app.state.container

    sweep = asyncio.create_task(pkce_sweep_task(container.oauth, container.settings.PKCE_SWEEP_INTERVAL))
    logger.info(f"sharekit started ({container.settings.ENVIRONMENT})")
    try:
        yield
    finally:
        sweep.cancel()
        try:
            await sweep
        except asyncio.CancelledError:
            pass
        if owns_container:
            await container.aclose()


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the FastAPI app; pass a container to run against pre-built services"""
    app = FastAPI(title="sharekit", lifespan=lifespan)
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ShareKitError, sharekit_error_handler)

    app.include_router(oauth.router)
    app.include_router(share.router)
    app.include_router(monitoring.router)
    return app


setup_logging()
app = create_app()
