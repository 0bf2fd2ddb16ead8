"""Model-based instrumental extraction through an external demucs binary.

The run is a straight line of awaited stages:

    uploaded -> normalized -> separated -> stem_located -> transcoded

Any stage failure raises and short-circuits the rest; the caller owns the
workspace and removes it whatever happens.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import re
from pathlib import Path
from typing import Iterator, Optional

from vocalstrip.exceptions import ProcessingError, StemNotFoundError
from vocalstrip.pipelines.ffmpeg import FFmpeg
from vocalstrip.pipelines.runner import PipelineStage, ProcessRunner
from vocalstrip.workspace import Workspace

logger = logging.getLogger("vocalstrip.separation")

ACCOMPANIMENT_RE = re.compile(r"(no[_ ]?vocals|accompaniment|instrumental)\.wav$", re.IGNORECASE)

# Forces torchaudio onto libsndfile so demucs never probes an audio device.
DEMUCS_ENV = {"TORCHAUDIO_USE_SOUNDFILE": "1"}


class SeparationState(str, enum.Enum):
    UPLOADED = "uploaded"
    NORMALIZED = "normalized"
    SEPARATED = "separated"
    STEM_LOCATED = "stem_located"
    TRANSCODED = "transcoded"


def iter_accompaniment(root: Path) -> Iterator[Path]:
    """Yield accompaniment stems under ``root`` in a stable order.

    Directories are walked depth-first with entries sorted by name, and a
    directory's own files are checked before its subdirectories.
    """

    root = Path(root)
    if not root.is_dir():
        return
    stack = [root]
    while stack:
        current = stack.pop()
        entries = sorted(current.iterdir(), key=lambda p: p.name)
        for entry in entries:
            if entry.is_file() and ACCOMPANIMENT_RE.search(entry.name):
                yield entry
        stack.extend(reversed([entry for entry in entries if entry.is_dir()]))


def find_accompaniment(root: Path) -> Optional[Path]:
    matches = list(iter_accompaniment(root))
    if not matches:
        return None
    if len(matches) > 1:
        logger.warning(
            "[separation] %d accompaniment candidates under %s, using %s",
            len(matches),
            root,
            matches[0],
        )
    return matches[0]


class SeparationPipeline:
    def __init__(
        self,
        runner: ProcessRunner,
        ffmpeg: FFmpeg,
        demucs_bin: str = "demucs",
        max_concurrent: int = 1,
    ) -> None:
        self.runner = runner
        self.ffmpeg = ffmpeg
        self.demucs_bin = demucs_bin
        # demucs is CPU/memory heavy; only a few may run at once.
        self._slots = asyncio.Semaphore(max(1, max_concurrent))

    def separate_stage(self, model: str, wav_path: Path, out_dir: Path) -> PipelineStage:
        return PipelineStage(
            tool="demucs",
            executable=self.demucs_bin,
            args=["--two-stems=vocals", "-n", model, "-o", str(out_dir), str(wav_path)],
            label="demucs failed",
            env=dict(DEMUCS_ENV),
        )

    async def run(self, input_path: Path, output_path: Path, workspace: Workspace, model: str) -> Path:
        state = SeparationState.UPLOADED
        try:
            wav_path = await self.ffmpeg.normalize(input_path, workspace.path("normalized.wav"))
            state = SeparationState.NORMALIZED
            _discard_upload(workspace, input_path)

            out_dir = workspace.path("demucs_out")
            out_dir.mkdir(parents=True, exist_ok=True)
            async with self._slots:
                result = await self.runner.run_stage(self.separate_stage(model, wav_path, out_dir))
            state = SeparationState.SEPARATED

            stem = find_accompaniment(out_dir)
            if stem is None:
                raise StemNotFoundError(
                    "no accompaniment file from demucs",
                    exit_code=result.exit_code,
                    log=result.log,
                )
            state = SeparationState.STEM_LOCATED

            await self.ffmpeg.transcode(stem, output_path)
            state = SeparationState.TRANSCODED
        except ProcessingError as exc:
            logger.warning("[separation] %s failed after %s: %s", workspace.request_id, state.value, exc.error)
            raise

        logger.info("[separation] %s %s with model=%s", workspace.request_id, state.value, model)
        return output_path


def _discard_upload(workspace: Workspace, input_path: Path) -> None:
    # The upload may have been renamed by the normalizer; remove every
    # variant so only the WAV is left for the separator.
    for candidate in workspace.root.glob(f"{Path(input_path).name}*"):
        try:
            candidate.unlink()
        except OSError as exc:
            logger.warning("[separation] could not remove upload %s: %s", candidate, exc)
