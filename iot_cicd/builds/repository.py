"""Repository preparation for builds.

This module handles:
- Allocating an ephemeral checkout directory per request
- Cloning the source repository with live progress output
- Checking out a requested revision
- Resolving the remote branch the checked out commit belongs to

The git command line client is driven through subprocess.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from iot_cicd.builds.stream import copy_output
from iot_cicd.types import ErrorCode

if TYPE_CHECKING:
    from iot_cicd.builds.stream import OutputSink

logger = logging.getLogger(__name__)

# Namespace of remote-tracking branches created by `git clone`
REMOTE_BRANCH_PREFIX = "refs/remotes/origin/"

# Symbolic ref naming the remote's default branch
REMOTE_HEAD_REF = "refs/remotes/origin/HEAD"

# Prefix for per-request checkout directories
CHECKOUT_DIR_PREFIX = "iot-cicd-"

GIT = "git"


class FetchError(Exception):
    """Raised when the repository cannot be prepared for a build."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CLONE_FAILED,
        checkout: RepositoryCheckout | None = None,
    ) -> None:
        """Initialize FetchError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
            checkout: Partially prepared checkout that still needs releasing.
        """
        super().__init__(message)
        self.code = code
        self.checkout = checkout


@dataclass
class RepositoryCheckout:
    """An ephemeral clone owned by exactly one build request.

    Attributes:
        source_url: Remote URL the clone was made from.
        local_path: Checkout directory, unique per request.
        requested_revision: Commit requested by the caller ("" for default).
        resolved_branch: Remote branch pointing at the checked out commit.
    """

    source_url: str
    local_path: Path
    requested_revision: str = ""
    resolved_branch: str = ""
    _released: bool = field(default=False, repr=False)

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Remove the checkout from disk.

        Safe to call more than once. Failures are logged, never raised.
        """
        if self._released:
            return
        self._released = True
        logger.debug("Removing checkout %s", self.local_path)
        try:
            shutil.rmtree(self.local_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove checkout %s: %s", self.local_path, e)


def allocate_checkout_dir(tmp_dir: Path | None = None) -> Path:
    """Create a fresh, uniquely named checkout directory.

    Args:
        tmp_dir: Parent directory (system temp dir if None).

    Returns:
        Path to the new empty directory.

    Raises:
        FetchError: If the directory cannot be created.
    """
    try:
        return Path(tempfile.mkdtemp(prefix=CHECKOUT_DIR_PREFIX, dir=tmp_dir))
    except OSError as e:
        raise FetchError(
            f"error creating checkout directory: {e}",
            code=ErrorCode.WORKSPACE_ALLOCATION_FAILED,
        ) from e


def clone_repository(url: str, dest: Path, output: OutputSink) -> None:
    """Clone a repository, streaming git's progress into a sink.

    Args:
        url: Remote repository URL.
        dest: Existing, empty destination directory.
        output: Sink receiving combined stdout/stderr of git.

    Raises:
        FetchError: If git cannot be started or the clone fails.
    """
    cmd = [GIT, "clone", "--progress", url, str(dest)]
    logger.info("Cloning repo %s to %s", url, dest)

    try:
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
    except OSError as e:
        raise FetchError(
            f"error cloning repository {url}: {e}",
            code=ErrorCode.CLONE_FAILED,
        ) from e

    assert process.stdout is not None
    with process.stdout:
        copy_output(process.stdout, output)
    exit_code = process.wait()

    if exit_code != 0:
        raise FetchError(
            f"error cloning repository {url}: git clone exited with status {exit_code}",
            code=ErrorCode.CLONE_FAILED,
        )


def _git(repo_path: Path, *args: str) -> subprocess.CompletedProcess[str]:
    """Run a git command inside a repository and capture its output."""
    return subprocess.run(
        [GIT, "-C", str(repo_path), *args],
        stdin=subprocess.DEVNULL,
        capture_output=True,
        text=True,
        check=False,
    )


def checkout_revision(repo_path: Path, revision: str) -> None:
    """Check out an exact commit in the working tree.

    An empty revision leaves the tree on the default branch of the clone.

    Args:
        repo_path: Path to the clone.
        revision: Commit identifier, or "".

    Raises:
        FetchError: If the revision does not exist in the clone.
    """
    if not revision:
        return

    if revision.startswith("-"):
        raise FetchError(
            f"error checking out commit {revision}: invalid revision",
            code=ErrorCode.CHECKOUT_FAILED,
        )

    logger.debug("Checking out commit id %s", revision)
    try:
        result = _git(repo_path, "checkout", "--quiet", "--detach", revision)
    except OSError as e:
        raise FetchError(
            f"error checking out commit {revision}: {e}",
            code=ErrorCode.CHECKOUT_FAILED,
        ) from e

    if result.returncode != 0:
        raise FetchError(
            f"error checking out commit {revision}: {result.stderr.strip()}",
            code=ErrorCode.CHECKOUT_FAILED,
        )


def _default_remote_branch(repo_path: Path) -> str:
    """Return the branch origin/HEAD points to, or "" if unknown."""
    result = _git(repo_path, "symbolic-ref", "--quiet", REMOTE_HEAD_REF)
    ref = result.stdout.strip()
    if result.returncode != 0 or not ref.startswith(REMOTE_BRANCH_PREFIX):
        return ""
    return ref[len(REMOTE_BRANCH_PREFIX) :]


def resolve_branch(repo_path: Path) -> str:
    """Find the remote branch the checked out commit belongs to.

    Scans the remote-tracking refs once for those pointing at HEAD.
    Tags and the synthetic origin/HEAD are ignored. When several branches
    point at the commit, the remote's default branch is preferred.

    Args:
        repo_path: Path to the clone.

    Returns:
        Branch name without the remote prefix, or "" when the commit is
        not the tip of any remote branch.

    Raises:
        FetchError: If the refs cannot be listed.
    """
    try:
        result = _git(
            repo_path,
            "for-each-ref",
            "--points-at",
            "HEAD",
            "--format=%(refname)",
            REMOTE_BRANCH_PREFIX,
        )
    except OSError as e:
        raise FetchError(
            f"error determining branch name: {e}",
            code=ErrorCode.BRANCH_RESOLUTION_FAILED,
        ) from e

    if result.returncode != 0:
        raise FetchError(
            f"error determining branch name: {result.stderr.strip()}",
            code=ErrorCode.BRANCH_RESOLUTION_FAILED,
        )

    branches = [
        ref[len(REMOTE_BRANCH_PREFIX) :]
        for ref in result.stdout.splitlines()
        if ref.startswith(REMOTE_BRANCH_PREFIX) and ref != REMOTE_HEAD_REF
    ]
    if not branches:
        return ""
    if len(branches) > 1:
        default = _default_remote_branch(repo_path)
        if default in branches:
            return default
    return branches[0]


def prepare_repository(
    source_url: str,
    revision: str,
    output: OutputSink,
    tmp_dir: Path | None = None,
) -> RepositoryCheckout:
    """Clone, check out and resolve the branch for one build request.

    Args:
        source_url: Remote repository URL.
        revision: Commit to check out ("" for the default branch).
        output: Sink receiving clone progress.
        tmp_dir: Parent directory for the checkout.

    Returns:
        Prepared checkout. The caller owns it and must release it.

    Raises:
        FetchError: On any failure. ``error.checkout`` is set whenever a
            directory was allocated and still needs releasing.
    """
    local_path = allocate_checkout_dir(tmp_dir)
    checkout = RepositoryCheckout(
        source_url=source_url,
        local_path=local_path,
        requested_revision=revision,
    )

    try:
        clone_repository(source_url, local_path, output)
        checkout_revision(local_path, revision)
        checkout.resolved_branch = resolve_branch(local_path)
    except FetchError as e:
        e.checkout = checkout
        raise

    logger.info(
        "Prepared %s at %s (revision=%s, branch=%s)",
        source_url,
        local_path,
        revision or "default",
        checkout.resolved_branch or "unknown",
    )
    return checkout


__all__ = [
    "REMOTE_BRANCH_PREFIX",
    "FetchError",
    "RepositoryCheckout",
    "allocate_checkout_dir",
    "checkout_revision",
    "clone_repository",
    "prepare_repository",
    "resolve_branch",
]
