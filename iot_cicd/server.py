"""HTTP service host.

Owns the listening socket, optional TLS and the lifecycle of the uvicorn
server running the FastAPI application.

start() blocks until SIGINT/SIGTERM (when called from the main thread) or
stop() shuts the listener down, and raises ServiceError when the listener
cannot be set up.
"""

from __future__ import annotations

import contextlib
import logging
import signal
import socket
import threading
from collections.abc import Iterator
from pathlib import Path
from types import FrameType
from typing import TYPE_CHECKING, Any

import uvicorn

if TYPE_CHECKING:
    from fastapi import FastAPI

    from iot_cicd.config import Settings

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ServiceError(Exception):
    """Raised when the listener fails to bind or serve."""

    def __init__(self, message: str, code: str = "service_error") -> None:
        super().__init__(message)
        self.code = code


class _Server(uvicorn.Server):
    """uvicorn server that leaves signal handling to ServiceHost."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class ServiceHost:
    """Serves the application on one listener, with or without TLS."""

    def __init__(
        self,
        app: FastAPI,
        host: str = "127.0.0.1",
        port: int = 8080,
        tls_cert_file: Path | None = None,
        tls_key_file: Path | None = None,
        log_level: str = "info",
    ) -> None:
        self.app = app
        self.host = host
        self.port = port
        self.tls_enabled = tls_cert_file is not None and tls_key_file is not None
        self.config = uvicorn.Config(
            app,
            host=host,
            port=port,
            ssl_certfile=str(tls_cert_file) if self.tls_enabled else None,
            ssl_keyfile=str(tls_key_file) if self.tls_enabled else None,
            log_level=log_level.lower(),
        )
        self._server = _Server(self.config)
        self._stop_requested = False
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, app: FastAPI) -> ServiceHost:
        """Create a host from application settings."""
        return cls(
            app,
            host=settings.host,
            port=settings.port,
            tls_cert_file=settings.tls_cert_file,
            tls_key_file=settings.tls_key_file,
            log_level=settings.log_level,
        )

    @property
    def started(self) -> bool:
        """Whether the listener is accepting connections."""
        return bool(self._server.started) and not self._server.should_exit

    def start(self) -> None:
        """Serve until a termination signal or stop().

        Raises:
            ServiceError: If TLS material cannot be loaded or the socket
                cannot be bound or served.
        """
        if self.tls_enabled:
            logger.info("Enabling TLS")
        try:
            self.config.load()
        except OSError as e:
            raise ServiceError(f"error starting webserver: {e}") from e

        sock = self._bind()
        logger.info("Starting to serve on %s:%s", self.host, self.port)
        try:
            with self._signal_handlers():
                self._server.run(sockets=[sock])
        except SystemExit as e:
            raise ServiceError(f"error starting webserver: exit status {e.code}") from e
        finally:
            sock.close()

        if not self._server.started and not self._stop_requested:
            raise ServiceError("error starting webserver: server did not start")
        logger.info("Server stopped")

    def stop(self) -> None:
        """Request an orderly shutdown. Idempotent and thread-safe."""
        with self._lock:
            if self._stop_requested:
                return
            self._stop_requested = True
        logger.info("Stopping Server...")
        self._server.should_exit = True

    def _bind(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        try:
            sock = socket.create_server((self.host, self.port), family=family)
        except OSError as e:
            raise ServiceError(
                f"error starting webserver: cannot listen on {self.host}:{self.port}: {e}"
            ) from e
        # Port 0 picks a free port
        self.port = sock.getsockname()[1]
        return sock

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        logger.info("Got shutdown signal %s", signal.Signals(signum).name)
        self.stop()

    @contextlib.contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        previous: dict[int, Any] = {}
        for sig in HANDLED_SIGNALS:
            previous[sig] = signal.signal(sig, self._handle_signal)
        try:
            yield
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)


__all__ = ["ServiceError", "ServiceHost"]
