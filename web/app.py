"""FastAPI application factory and main app.

This module creates the FastAPI application with all routers and the
build pipeline configured from settings.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from iot_cicd import __version__
from iot_cicd.builds.service import BuildPipeline
from iot_cicd.config import Settings, get_settings
from web.routers import build, config, health, metrics

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Removes a workspace link left behind by a previous process, which
    would otherwise make every publish fail.
    """
    publisher = app.state.pipeline.publisher
    if publisher.link_path.is_symlink():
        logger.warning("Removing stale workspace link %s", publisher.link_path)
        publisher.unpublish()
    yield


def create_app(
    settings: Settings | None = None,
    pipeline: BuildPipeline | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings (loaded from environment if None).
        pipeline: Build pipeline (created from settings if None).

    Returns:
        Configured FastAPI application.
    """
    if settings is None:
        settings = get_settings()
    if pipeline is None:
        pipeline = BuildPipeline.from_settings(settings)

    application = FastAPI(
        title="IoT CI/CD Build API",
        description="Webhook endpoint that clones, builds and streams "
        "device firmware builds",
        version=__version__,
        lifespan=lifespan,
    )
    application.state.settings = settings
    application.state.pipeline = pipeline

    # Include routers
    logger.info("Registering build handler on %s", settings.build_path)
    application.include_router(health.router, tags=["health"])
    application.include_router(config.router, prefix="/config", tags=["config"])
    application.include_router(build.router, prefix=settings.build_path, tags=["build"])
    if settings.metrics_path:
        logger.debug("Registering prometheus handler on %s", settings.metrics_path)
        application.include_router(
            metrics.router, prefix=settings.metrics_path, tags=["metrics"]
        )

    return application

