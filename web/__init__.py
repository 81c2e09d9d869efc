"""FastAPI web application for IoT CI/CD.

This module provides the HTTP surface: the build endpoint that streams
clone and build output, the metrics endpoint and small status endpoints.

All business logic is delegated to core modules in iot_cicd/.

The application is built by ``create_app()`` from settings; run it with
``iot-cicd serve`` or ``uvicorn --factory web.app:create_app``.
"""

from web.app import create_app

__all__ = ["create_app"]
