"""Shared fixtures: a throwaway origin repository built with the git CLI.

Layout of the origin repository:

    base ---- tip_master        (master, default branch)
                 \\
                  tip_testing   (testing-branch)

``base`` is tagged v0.1 but is not the tip of any branch.
"""

import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

import pytest

BUILD_SCRIPT = """#!/bin/sh
printf 'branch=%s args=%s\\n' "$IOT_CICD_BRANCH" "$*"
"""


@dataclass
class OriginRepo:
    """Origin repository used as clone source in tests."""

    path: Path
    base: str
    tip_master: str
    tip_testing: str

    @property
    def url(self) -> str:
        return str(self.path)


def _git_env(home: Path) -> dict[str, str]:
    env = dict(os.environ)
    env.update(
        {
            "HOME": str(home),
            "GIT_CONFIG_NOSYSTEM": "1",
            "GIT_AUTHOR_NAME": "Test",
            "GIT_AUTHOR_EMAIL": "test@example.com",
            "GIT_COMMITTER_NAME": "Test",
            "GIT_COMMITTER_EMAIL": "test@example.com",
        }
    )
    return env


def _git(cwd: Path, env: dict[str, str], *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        env=env,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def _commit_file(
    repo: Path, env: dict[str, str], name: str, content: str, message: str
) -> str:
    path = repo / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    _git(repo, env, "add", name)
    _git(repo, env, "commit", "--quiet", "-m", message)
    return _git(repo, env, "rev-parse", "HEAD")


@pytest.fixture
def origin_repo(tmp_path) -> OriginRepo:
    """Create an origin repository with master and testing-branch."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")

    home = tmp_path / "home"
    home.mkdir()
    env = _git_env(home)

    repo = tmp_path / "origin"
    repo.mkdir()
    _git(repo, env, "init", "--quiet")
    _git(repo, env, "symbolic-ref", "HEAD", "refs/heads/master")

    script = repo / "Device" / "build.sh"
    script.parent.mkdir()
    script.write_text(BUILD_SCRIPT)
    script.chmod(0o755)
    _git(repo, env, "add", "Device/build.sh")
    _git(repo, env, "commit", "--quiet", "-m", "Add build script")
    base = _git(repo, env, "rev-parse", "HEAD")
    _git(repo, env, "tag", "v0.1", base)

    tip_master = _commit_file(repo, env, "README", "master\n", "Update README")

    _git(repo, env, "checkout", "--quiet", "-b", "testing-branch")
    tip_testing = _commit_file(repo, env, "README", "testing\n", "Try something")
    _git(repo, env, "checkout", "--quiet", "master")

    return OriginRepo(
        path=repo,
        base=base,
        tip_master=tip_master,
        tip_testing=tip_testing,
    )
