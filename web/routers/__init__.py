"""Router modules for FastAPI web API."""

from web.routers import build, config, health, metrics

__all__ = ["build", "config", "health", "metrics"]
