"""IoT CI/CD - Webhook-triggered firmware build orchestrator.

This package clones a device firmware repository on request, publishes the
checkout at a stable path, runs its build script and streams the output
back to the HTTP caller.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
