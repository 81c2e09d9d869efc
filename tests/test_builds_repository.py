"""Tests for builds/repository.py module.

Clone and checkout tests run git against a local origin repository
created in tmp_path (see conftest.py).
"""

import subprocess
from unittest.mock import patch

import pytest

from iot_cicd.builds.repository import (
    FetchError,
    RepositoryCheckout,
    allocate_checkout_dir,
    checkout_revision,
    prepare_repository,
    resolve_branch,
)
from iot_cicd.builds.stream import TranscriptBuffer
from iot_cicd.types import ErrorCode


def _completed(stdout: str = "", returncode: int = 0, stderr: str = ""):
    return subprocess.CompletedProcess(
        args=["git"], returncode=returncode, stdout=stdout, stderr=stderr
    )


class TestAllocateCheckoutDir:
    """Tests for allocate_checkout_dir function."""

    def test_creates_unique_directories(self, tmp_path):
        """Each call should create a new empty directory."""
        first = allocate_checkout_dir(tmp_path)
        second = allocate_checkout_dir(tmp_path)
        assert first != second
        assert first.is_dir()
        assert list(first.iterdir()) == []
        assert first.name.startswith("iot-cicd-")

    def test_missing_parent_fails(self, tmp_path):
        """Should raise FetchError when the parent does not exist."""
        with pytest.raises(FetchError) as exc_info:
            allocate_checkout_dir(tmp_path / "missing")
        assert exc_info.value.code == ErrorCode.WORKSPACE_ALLOCATION_FAILED
        assert exc_info.value.checkout is None


class TestRepositoryCheckout:
    """Tests for RepositoryCheckout.release."""

    def test_release_removes_directory(self, tmp_path):
        """release() should remove the checkout directory."""
        path = tmp_path / "checkout"
        (path / "sub").mkdir(parents=True)
        (path / "sub" / "file").write_text("x")
        checkout = RepositoryCheckout(source_url="url", local_path=path)

        checkout.release()

        assert not path.exists()
        assert checkout.released is True

    def test_release_is_idempotent(self, tmp_path):
        """Releasing twice should not fail."""
        path = tmp_path / "checkout"
        path.mkdir()
        checkout = RepositoryCheckout(source_url="url", local_path=path)

        checkout.release()
        checkout.release()

        assert not path.exists()

    def test_release_missing_directory(self, tmp_path):
        """Releasing an already removed directory should not fail."""
        checkout = RepositoryCheckout(source_url="url", local_path=tmp_path / "gone")
        checkout.release()
        assert checkout.released is True

    def test_release_logs_failures(self, tmp_path):
        """Removal errors should be swallowed."""
        path = tmp_path / "checkout"
        path.mkdir()
        checkout = RepositoryCheckout(source_url="url", local_path=path)
        with patch(
            "iot_cicd.builds.repository.shutil.rmtree",
            side_effect=PermissionError("denied"),
        ):
            checkout.release()
        assert checkout.released is True


class TestResolveBranchParsing:
    """Tests for resolve_branch with mocked git output."""

    def test_strips_remote_prefix(self, tmp_path):
        """Should return the branch name without refs/remotes/origin/."""
        with patch(
            "iot_cicd.builds.repository._git",
            return_value=_completed("refs/remotes/origin/feature\n"),
        ):
            assert resolve_branch(tmp_path) == "feature"

    def test_ignores_remote_head(self, tmp_path):
        """origin/HEAD should never be reported as a branch."""
        with patch(
            "iot_cicd.builds.repository._git",
            return_value=_completed("refs/remotes/origin/HEAD\n"),
        ):
            assert resolve_branch(tmp_path) == ""

    def test_no_match_is_empty(self, tmp_path):
        """A commit on no branch tip should resolve to an empty name."""
        with patch(
            "iot_cicd.builds.repository._git",
            return_value=_completed(""),
        ):
            assert resolve_branch(tmp_path) == ""

    def test_prefers_default_branch(self, tmp_path):
        """With several matches the remote default branch should win."""
        outputs = [
            _completed(
                "refs/remotes/origin/HEAD\n"
                "refs/remotes/origin/develop\n"
                "refs/remotes/origin/master\n"
            ),
            _completed("refs/remotes/origin/master\n"),
        ]
        with patch("iot_cicd.builds.repository._git", side_effect=outputs):
            assert resolve_branch(tmp_path) == "master"

    def test_first_match_without_default(self, tmp_path):
        """Without a usable origin/HEAD the first match should be used."""
        outputs = [
            _completed("refs/remotes/origin/alpha\nrefs/remotes/origin/beta\n"),
            _completed("", returncode=1),
        ]
        with patch("iot_cicd.builds.repository._git", side_effect=outputs):
            assert resolve_branch(tmp_path) == "alpha"

    def test_git_failure_raises(self, tmp_path):
        """A failing ref scan should raise FetchError."""
        with patch(
            "iot_cicd.builds.repository._git",
            return_value=_completed(returncode=128, stderr="fatal: not a git repository"),
        ):
            with pytest.raises(FetchError, match="error determining branch name") as exc_info:
                resolve_branch(tmp_path)
        assert exc_info.value.code == ErrorCode.BRANCH_RESOLUTION_FAILED

    def test_git_missing_raises(self, tmp_path):
        """A git binary that cannot be started should raise FetchError."""
        with patch(
            "iot_cicd.builds.repository._git",
            side_effect=FileNotFoundError("git"),
        ):
            with pytest.raises(FetchError) as exc_info:
                resolve_branch(tmp_path)
        assert exc_info.value.code == ErrorCode.BRANCH_RESOLUTION_FAILED


class TestCheckoutRevision:
    """Tests for checkout_revision without a repository."""

    def test_empty_revision_is_noop(self, tmp_path):
        """An empty revision should not run git at all."""
        with patch("iot_cicd.builds.repository._git") as mock_git:
            checkout_revision(tmp_path, "")
        mock_git.assert_not_called()

    def test_option_like_revision_rejected(self, tmp_path):
        """Revisions starting with '-' should be rejected."""
        with patch("iot_cicd.builds.repository._git") as mock_git:
            with pytest.raises(FetchError) as exc_info:
                checkout_revision(tmp_path, "--orphan")
        assert exc_info.value.code == ErrorCode.CHECKOUT_FAILED
        mock_git.assert_not_called()


class TestPrepareRepository:
    """Tests for prepare_repository against a local origin."""

    def test_default_branch(self, origin_repo, tmp_path):
        """An empty revision should resolve to the default branch."""
        output = TranscriptBuffer()
        checkout = prepare_repository(origin_repo.url, "", output, tmp_path)
        try:
            assert checkout.resolved_branch == "master"
            assert checkout.requested_revision == ""
            assert (checkout.local_path / "Device" / "build.sh").is_file()
        finally:
            checkout.release()
        assert not checkout.local_path.exists()

    def test_streams_clone_progress(self, origin_repo, tmp_path):
        """Clone output should be written to the sink."""
        output = TranscriptBuffer()
        checkout = prepare_repository(origin_repo.url, "", output, tmp_path)
        checkout.release()
        assert b"Cloning into" in output.getvalue()

    def test_master_commit(self, origin_repo, tmp_path):
        """The master tip should resolve to master."""
        checkout = prepare_repository(
            origin_repo.url, origin_repo.tip_master, TranscriptBuffer(), tmp_path
        )
        try:
            assert checkout.resolved_branch == "master"
        finally:
            checkout.release()

    def test_branch_commit(self, origin_repo, tmp_path):
        """A commit only on testing-branch should resolve to it."""
        checkout = prepare_repository(
            origin_repo.url, origin_repo.tip_testing, TranscriptBuffer(), tmp_path
        )
        try:
            assert checkout.resolved_branch == "testing-branch"
            assert (checkout.local_path / "README").read_text() == "testing\n"
        finally:
            checkout.release()

    def test_commit_not_on_branch_tip(self, origin_repo, tmp_path):
        """A tagged commit below the tips should resolve to no branch."""
        checkout = prepare_repository(
            origin_repo.url, origin_repo.base, TranscriptBuffer(), tmp_path
        )
        try:
            assert checkout.resolved_branch == ""
        finally:
            checkout.release()

    def test_unknown_revision(self, origin_repo, tmp_path):
        """An unknown commit should fail and still hand back the checkout."""
        with pytest.raises(FetchError) as exc_info:
            prepare_repository(
                origin_repo.url, "0" * 40, TranscriptBuffer(), tmp_path
            )
        error = exc_info.value
        assert error.code == ErrorCode.CHECKOUT_FAILED
        assert error.checkout is not None
        assert error.checkout.local_path.exists()
        error.checkout.release()
        assert not error.checkout.local_path.exists()

    def test_clone_failure(self, origin_repo, tmp_path):
        """An unreachable URL should fail with clone_failed."""
        with pytest.raises(FetchError) as exc_info:
            prepare_repository(
                str(tmp_path / "does-not-exist"), "", TranscriptBuffer(), tmp_path
            )
        error = exc_info.value
        assert error.code == ErrorCode.CLONE_FAILED
        assert error.checkout is not None
        error.checkout.release()

    def test_git_not_installed(self, tmp_path):
        """A missing git binary should be reported as a clone failure."""
        with patch(
            "iot_cicd.builds.repository.subprocess.Popen",
            side_effect=FileNotFoundError("git"),
        ):
            with pytest.raises(FetchError) as exc_info:
                prepare_repository("url", "", TranscriptBuffer(), tmp_path)
        assert exc_info.value.code == ErrorCode.CLONE_FAILED
        exc_info.value.checkout.release()
