"""Build endpoint.

Any method on the build mount point triggers a build:
- <build_path> - build the default branch
- <build_path>/{revision} - build the given commit

The clone transcript and the build output are streamed back as one
text/plain body. The status is committed when the build script produces
its first byte: failures before that answer 424 Failed Dependency with
the transcript and the failure message, failures after that append the
message to the already streaming 200 response.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Response
from fastapi.responses import PlainTextResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool

from iot_cicd.builds.service import BuildPipeline
from iot_cicd.builds.stream import ResponseStream, StreamEvent
from iot_cicd.types import BuildRequest, PipelineResult
from web.deps import get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter()

BUILD_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

MEDIA_TYPE = "text/plain; charset=utf-8"

INTERNAL_ERROR_MESSAGE = "Internal error while building"


def _drive(pipeline: BuildPipeline, request: BuildRequest, stream: ResponseStream) -> None:
    """Run the pipeline in a worker thread and report back to the stream."""
    result: PipelineResult | None = None
    try:
        result = pipeline.execute(request, stream, transcript=stream.transcript)
    except Exception:
        logger.exception("Unexpected error building revision %r", request.revision)
    finally:
        stream.finish(result)


def _failure_text(result: PipelineResult | None) -> bytes:
    if result is None:
        return f"{INTERNAL_ERROR_MESSAGE}\n".encode()
    if result.success:
        return b""
    return f"{result.message}\n".encode()


def _finished_response(event: StreamEvent) -> Response:
    """Response for a pipeline that returned before any build output."""
    status_code = event.result.status_code if event.result is not None else 500
    return PlainTextResponse(
        content=event.data + _failure_text(event.result),
        status_code=status_code,
        media_type=MEDIA_TYPE,
    )


async def _stream_body(
    first: StreamEvent,
    stream: ResponseStream,
    task: asyncio.Future[None],
) -> AsyncIterator[bytes]:
    try:
        yield first.data
        while True:
            event = await stream.next_event()
            if event.kind != "finish":
                yield event.data
                continue
            if event.data:
                yield event.data
            tail = _failure_text(event.result)
            if tail:
                yield tail
            await task
            return
    finally:
        # Unblocks a writer waiting on a client that went away
        stream.close()


@router.api_route("", methods=BUILD_METHODS)
@router.api_route("/{revision:path}", methods=BUILD_METHODS)
async def build_endpoint(
    revision: str = "",
    pipeline: BuildPipeline = Depends(get_pipeline),
) -> Response:
    """Clone, publish and build a revision, streaming the transcript.

    Args:
        revision: Commit to build; empty (or "build") for the default branch.
        pipeline: Build pipeline.

    Returns:
        Streaming 200 response once the build produces output, or a
        complete 200/424 response if the pipeline finished before that.
    """
    request = BuildRequest.from_path_parameter(revision)
    stream = ResponseStream(asyncio.get_running_loop())

    # The pipeline is not cancelled when the client goes away.
    task = asyncio.ensure_future(run_in_threadpool(_drive, pipeline, request, stream))

    first = await stream.next_event()
    if first.kind == "finish":
        await task
        return _finished_response(first)

    return StreamingResponse(
        _stream_body(first, stream, task),
        status_code=200,
        media_type=MEDIA_TYPE,
    )
