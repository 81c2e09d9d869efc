"""Workspace publication.

The build tooling downstream (e.g. a container bind mount) is configured
once against a fixed path. The current checkout is exposed there through a
symlink, so only the link target changes from one build to the next.

The link path is shared by every build on the host. With
``serialize=True`` a whole build runs under a file lock next to the link
(see ``exclusive``), which also covers other server processes publishing
the same path; without it, concurrent builds race on the link.
"""

from __future__ import annotations

import fcntl
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from iot_cicd.types import ErrorCode

if TYPE_CHECKING:
    from iot_cicd.builds.repository import RepositoryCheckout

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"


class PublishError(Exception):
    """Raised when the workspace link cannot be created."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.PUBLISH_FAILED,
    ) -> None:
        super().__init__(message)
        self.code = code


def lock_path_for(link_path: Path) -> Path:
    """Return the lock file guarding a workspace link path."""
    return link_path.with_name(link_path.name + LOCK_SUFFIX)


@contextmanager
def workspace_lock(link_path: Path) -> Iterator[None]:
    """Acquire the lock for a workspace link path.

    Uses a file-based lock, so builds in other threads and in other
    processes wait for each other.

    Args:
        link_path: Workspace link the lock guards.

    Yields:
        None when lock is acquired.

    Raises:
        PublishError: If the lock file cannot be opened.
    """
    lock_file = lock_path_for(link_path)
    logger.debug("Acquiring workspace lock %s", lock_file)

    try:
        fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    except OSError as e:
        raise PublishError(f"lock {lock_file}: {e}") from e

    lock_acquired = False
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        lock_acquired = True
        logger.debug("Workspace lock acquired: %s", lock_file)
        yield
    finally:
        if lock_acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Workspace lock released: %s", lock_file)
        os.close(fd)


class WorkspacePublisher:
    """Publishes a checkout at a fixed, well-known path."""

    def __init__(self, link_path: Path, serialize: bool = True) -> None:
        self.link_path = Path(link_path)
        self.serialize = serialize

    @property
    def lock_path(self) -> Path:
        return lock_path_for(self.link_path)

    def publish(self, checkout: RepositoryCheckout) -> Path:
        """Point the well-known path at the checkout.

        Args:
            checkout: Prepared checkout.

        Returns:
            The published link path.

        Raises:
            PublishError: If something already exists at the link path or
                the filesystem rejects the link.
        """
        logger.debug("Linking %s -> %s", self.link_path, checkout.local_path)
        try:
            os.symlink(checkout.local_path, self.link_path, target_is_directory=True)
        except OSError as e:
            raise PublishError(f"symlink {checkout.local_path} {self.link_path}: {e}") from e
        return self.link_path

    def unpublish(self) -> None:
        """Remove the link if present. Never raises."""
        try:
            if self.link_path.is_symlink() or self.link_path.is_file():
                self.link_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove workspace link %s: %s", self.link_path, e)

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Hold the link path for one publish -> execute -> unpublish run.

        A no-op unless the publisher serializes builds.

        Raises:
            PublishError: If the lock file cannot be opened.
        """
        if not self.serialize:
            yield
            return
        with workspace_lock(self.link_path):
            yield


__all__ = ["PublishError", "WorkspacePublisher", "lock_path_for", "workspace_lock"]
