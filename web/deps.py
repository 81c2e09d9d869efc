"""Application state dependencies for FastAPI.

The build pipeline and the effective settings are created once by the
application factory and stored on ``app.state``; route handlers receive
them through dependency injection.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request

from iot_cicd.builds.service import BuildPipeline
from iot_cicd.config import Settings


def get_pipeline(request: Request) -> BuildPipeline:
    """Get the build pipeline from app state.

    Args:
        request: FastAPI request object.

    Returns:
        Shared BuildPipeline instance.
    """
    pipeline: Any = request.app.state.pipeline
    return pipeline  # type: ignore[no-any-return]


def get_app_settings(request: Request) -> Settings:
    """Get the settings the application was created with."""
    settings: Any = request.app.state.settings
    return settings  # type: ignore[no-any-return]
