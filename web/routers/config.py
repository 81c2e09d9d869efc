"""Configuration endpoints."""

from typing import Any

from fastapi import APIRouter, Depends

from iot_cicd.config import Settings
from web.deps import get_app_settings

router = APIRouter()


@router.get("")
def get_config(settings: Settings = Depends(get_app_settings)) -> dict[str, Any]:
    """Get effective configuration.

    Returns:
        Current configuration as JSON.
    """
    return {
        "host": settings.host,
        "port": settings.port,
        "tls_enabled": settings.tls_enabled,
        "build_path": settings.build_path,
        "metrics_path": settings.metrics_path,
        "repo_url": settings.repo_url,
        "build_script": settings.build_script,
        "build_args": settings.build_args,
        "master_args": settings.master_args,
        "workspace_link": str(settings.workspace_link),
        "tmp_dir": str(settings.tmp_dir) if settings.tmp_dir else None,
        "serialize_builds": settings.serialize_builds,
        "log_level": settings.log_level,
    }
