"""Shared type definitions for iot_cicd.

This module contains dataclasses and enums shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum

# Revision value that stands for "no revision", see normalize_revision()
BUILD_SEGMENT = "build"

HTTP_OK = 200
HTTP_FAILED_DEPENDENCY = 424


class BuildOutcome(str, Enum):
    """Outcome of one build request pipeline."""

    SUCCESS = "success"
    REPOSITORY_ERROR = "repository_error"
    PUBLISH_ERROR = "publish_error"
    EXECUTION_ERROR = "execution_error"

    @property
    def status_code(self) -> int:
        """HTTP status code reported for this outcome."""
        if self is BuildOutcome.SUCCESS:
            return HTTP_OK
        return HTTP_FAILED_DEPENDENCY


class ErrorCode(str, Enum):
    """Machine-readable codes for request-scoped pipeline failures."""

    WORKSPACE_ALLOCATION_FAILED = "workspace_allocation_failed"
    CLONE_FAILED = "clone_failed"
    CHECKOUT_FAILED = "checkout_failed"
    BRANCH_RESOLUTION_FAILED = "branch_resolution_failed"
    PUBLISH_FAILED = "publish_failed"
    EXECUTION_SPAWN_FAILED = "execution_spawn_failed"
    EXECUTION_NONZERO_EXIT = "execution_nonzero_exit"


def normalize_revision(revision: str | None) -> str:
    """Normalize a revision taken from the request path.

    An empty value or the bare mount segment ("build") both mean
    "build the default branch".

    Args:
        revision: Raw revision value, possibly None.

    Returns:
        Commit identifier, or empty string for the default branch.
    """
    revision = (revision or "").strip().strip("/")
    if revision == BUILD_SEGMENT:
        return ""
    return revision


@dataclass(frozen=True)
class BuildRequest:
    """A request to build one revision of the source repository."""

    revision: str = ""

    @classmethod
    def from_path_parameter(cls, revision: str | None) -> "BuildRequest":
        """Create a request from the route parameter after the mount point."""
        return cls(revision=normalize_revision(revision))


@dataclass
class PipelineResult:
    """Result of running the fetch, publish and execute pipeline."""

    outcome: BuildOutcome
    message: str = ""
    code: ErrorCode | None = None
    branch: str = ""
    exit_code: int | None = None

    @property
    def success(self) -> bool:
        return self.outcome is BuildOutcome.SUCCESS

    @property
    def status_code(self) -> int:
        return self.outcome.status_code


__all__ = [
    "BUILD_SEGMENT",
    "HTTP_FAILED_DEPENDENCY",
    "HTTP_OK",
    "BuildOutcome",
    "BuildRequest",
    "ErrorCode",
    "PipelineResult",
    "normalize_revision",
]
