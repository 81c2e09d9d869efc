"""Build service module.

This module provides the request-to-build pipeline:
- BuildPipeline.execute(): fetch -> publish -> execute, strictly in order
- Conversion of stage failures into a PipelineResult
- Guaranteed release of the checkout and the workspace link
- Outcome metrics
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from iot_cicd.builds.repository import FetchError, RepositoryCheckout, prepare_repository
from iot_cicd.builds.runner import BuildExecutionError, run_build_script, select_build_args
from iot_cicd.builds.workspace import PublishError, WorkspacePublisher
from iot_cicd.metrics import record_request
from iot_cicd.types import BuildOutcome, BuildRequest, ErrorCode, PipelineResult

if TYPE_CHECKING:
    from iot_cicd.builds.stream import OutputSink
    from iot_cicd.config import Settings

logger = logging.getLogger(__name__)

# Prefixes of the failure messages sent to the caller
REPOSITORY_ERROR_PREFIX = "Error getting repository ready: "
PUBLISH_ERROR_PREFIX = "Error creating symlink: "
EXECUTION_ERROR_PREFIX = "Error executing command: "

# prepare_repository(source_url, revision, output, tmp_dir) or a stand-in
Fetcher = Callable[..., RepositoryCheckout]


class BuildPipeline:
    """Drives one build request from clone to finished build script.

    The pipeline holds only immutable configuration and can serve
    concurrent requests; each call to execute() owns its own checkout.
    """

    def __init__(
        self,
        repo_url: str,
        build_script: str,
        build_args: list[str],
        master_args: list[str],
        workspace_link: Path,
        tmp_dir: Path | None = None,
        serialize: bool = True,
        fetcher: Fetcher = prepare_repository,
    ) -> None:
        self.repo_url = repo_url
        self.build_script = build_script
        self.build_args = list(build_args)
        self.master_args = list(master_args)
        self.publisher = WorkspacePublisher(workspace_link, serialize=serialize)
        self.tmp_dir = tmp_dir
        self._fetch = fetcher

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        fetcher: Fetcher = prepare_repository,
    ) -> BuildPipeline:
        """Create a pipeline from application settings."""
        return cls(
            repo_url=settings.repo_url,
            build_script=settings.build_script,
            build_args=settings.build_args,
            master_args=settings.master_args,
            workspace_link=settings.workspace_link,
            tmp_dir=settings.tmp_dir,
            serialize=settings.serialize_builds,
            fetcher=fetcher,
        )

    def execute(
        self,
        request: BuildRequest,
        output: OutputSink,
        transcript: OutputSink | None = None,
    ) -> PipelineResult:
        """Run the whole pipeline for one request.

        Never raises for request-scoped failures; they are returned as a
        failed PipelineResult and counted in the metrics.

        Args:
            request: Build request.
            output: Sink for the build script output.
            transcript: Sink for clone progress (defaults to ``output``).

        Returns:
            PipelineResult describing the outcome.
        """
        logger.info("Got request to build revision %s", request.revision or "(default)")
        result = self._run(request, output, transcript or output)

        record_request(result.status_code)
        if result.success:
            logger.info("Build of %s succeeded", result.branch or request.revision)
        else:
            logger.error(result.message)
        return result

    def _run(
        self,
        request: BuildRequest,
        output: OutputSink,
        transcript: OutputSink,
    ) -> PipelineResult:
        try:
            with self.publisher.exclusive():
                return self._run_exclusive(request, output, transcript)
        except PublishError as e:
            # Lock file could not be opened; nothing was fetched yet
            return PipelineResult(
                outcome=BuildOutcome.PUBLISH_ERROR,
                message=PUBLISH_ERROR_PREFIX + str(e),
                code=e.code,
            )

    def _run_exclusive(
        self,
        request: BuildRequest,
        output: OutputSink,
        transcript: OutputSink,
    ) -> PipelineResult:
        checkout: RepositoryCheckout | None = None
        try:
            try:
                checkout = self._fetch(
                    self.repo_url, request.revision, transcript, self.tmp_dir
                )
            except FetchError as e:
                checkout = e.checkout
                return PipelineResult(
                    outcome=BuildOutcome.REPOSITORY_ERROR,
                    message=REPOSITORY_ERROR_PREFIX + str(e),
                    code=e.code,
                )

            try:
                workspace = self.publisher.publish(checkout)
            except PublishError as e:
                return PipelineResult(
                    outcome=BuildOutcome.PUBLISH_ERROR,
                    message=PUBLISH_ERROR_PREFIX + str(e),
                    code=e.code,
                    branch=checkout.resolved_branch,
                )

            return self._build(request, checkout, workspace, output)
        finally:
            if checkout is not None:
                checkout.release()
            self.publisher.unpublish()

    def _build(
        self,
        request: BuildRequest,
        checkout: RepositoryCheckout,
        workspace: Path,
        output: OutputSink,
    ) -> PipelineResult:
        branch = checkout.resolved_branch
        args = select_build_args(branch, self.build_args, self.master_args)
        env = {
            "IOT_CICD_WORKSPACE": str(workspace),
            "IOT_CICD_BRANCH": branch,
            "IOT_CICD_REVISION": request.revision,
        }

        try:
            build = run_build_script(workspace, self.build_script, args, output, env)
        except BuildExecutionError as e:
            return PipelineResult(
                outcome=BuildOutcome.EXECUTION_ERROR,
                message=EXECUTION_ERROR_PREFIX + str(e),
                code=e.code,
                branch=branch,
            )

        if not build.success:
            return PipelineResult(
                outcome=BuildOutcome.EXECUTION_ERROR,
                message=EXECUTION_ERROR_PREFIX + (build.error_message or ""),
                code=ErrorCode.EXECUTION_NONZERO_EXIT,
                branch=branch,
                exit_code=build.exit_code,
            )

        return PipelineResult(
            outcome=BuildOutcome.SUCCESS,
            branch=branch,
            exit_code=build.exit_code,
        )


__all__ = [
    "EXECUTION_ERROR_PREFIX",
    "PUBLISH_ERROR_PREFIX",
    "REPOSITORY_ERROR_PREFIX",
    "BuildPipeline",
]
