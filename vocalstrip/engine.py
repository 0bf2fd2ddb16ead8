import logging
import re
import shutil
from pathlib import Path
from typing import BinaryIO, Optional

from starlette.concurrency import run_in_threadpool

from vocalstrip.config import Settings
from vocalstrip.exceptions import ProcessingError
from vocalstrip.models import ErrorResponse, ProcessingRequest
from vocalstrip.pipelines.ffmpeg import DELIVERY_EXTENSION, FFmpeg
from vocalstrip.pipelines.runner import ProcessRunner
from vocalstrip.pipelines.separation import SeparationPipeline
from vocalstrip.storage import Publisher, artifact_name
from vocalstrip.workspace import WorkspaceManager

logger = logging.getLogger("vocalstrip.engine")

_SAFE_SUFFIX_RE = re.compile(r"^\.[A-Za-z0-9]{1,10}$")


def _upload_suffix(filename: Optional[str]) -> str:
    suffix = Path(filename or "").suffix.lower()
    return suffix if _SAFE_SUFFIX_RE.match(suffix) else ""


def _save_upload(source: BinaryIO, target: Path) -> None:
    with open(target, "wb") as fh:
        shutil.copyfileobj(source, fh)


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("[engine] could not remove %s: %s", path, exc)


def error_response(exc: ProcessingError, log_limit: int) -> ErrorResponse:
    """Map a pipeline failure to the public error shape, capping the log."""

    log = exc.log[-log_limit:] if exc.log and log_limit > 0 else None
    return ErrorResponse(error=exc.error, exitCode=exc.exit_code, log=log or None)


class InstrumentalEngine:
    """Runs one upload through the chosen strategy and publishes the result."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.workspaces = WorkspaceManager(settings.tmp_dir)
        self.publisher = Publisher(settings.out_dir, settings.server_public_url)
        self.runner = ProcessRunner(timeout=settings.process_timeout, log_limit=settings.log_tail_chars)
        self.ffmpeg = FFmpeg(self.runner, settings.ffmpeg_bin)
        self.separation = SeparationPipeline(
            self.runner,
            self.ffmpeg,
            demucs_bin=settings.demucs_bin,
            max_concurrent=settings.max_concurrent_separations,
        )

    async def process(self, request: ProcessingRequest, request_base_url: Optional[str] = None) -> str:
        """Process ``request`` and return the download URL of the result.

        Raises a :class:`ProcessingError` subclass on any failure. The
        uploaded copy and the workspace are removed on every path; only the
        published file survives the call.
        """

        name = artifact_name(request.filename, DELIVERY_EXTENSION)
        workspace = self.workspaces.allocate()
        upload_path = workspace.path("upload" + _upload_suffix(request.filename))
        output_path = workspace.path("output" + DELIVERY_EXTENSION)

        logger.info(
            "[engine] %s start strategy=%s file=%r",
            workspace.request_id,
            request.strategy,
            request.filename,
        )
        try:
            await run_in_threadpool(_save_upload, request.source, upload_path)

            if request.strategy == "model-based":
                await self.separation.run(upload_path, output_path, workspace, request.model)
            else:
                await self.ffmpeg.karaoke(upload_path, output_path, request.keep_bass, request.cutoff_hz)
            _discard(upload_path)

            await run_in_threadpool(self.publisher.publish, output_path, name)
        finally:
            _discard(upload_path)
            self.workspaces.release(workspace)

        logger.info("[engine] %s done -> %s", workspace.request_id, name)
        return self.publisher.url_for(name, request_base_url)
