"""Async child-process execution for the ffmpeg and demucs stages.

Commands are always spawned from an argument list with
``asyncio.create_subprocess_exec``; nothing goes through a shell. stdout and
stderr are merged into one stream and only the tail is kept, so a chatty
tool cannot grow memory without bound.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from vocalstrip.exceptions import ProcessTimeoutError, SpawnError, StageFailure

logger = logging.getLogger("vocalstrip.runner")

LOG_TAIL_CHARS = 8000
_READ_CHUNK = 4096


@dataclass
class PipelineStage:
    """One external invocation inside a pipeline.

    ``label`` is the error tag reported when the stage fails; ``tool`` names
    the executable in spawn and timeout errors regardless of the configured
    binary path.
    """

    tool: str
    executable: str
    args: List[str]
    label: str
    expected_output: Optional[Path] = None
    env: Dict[str, str] = field(default_factory=dict)


@dataclass
class StageResult:
    ok: bool
    log: str
    exit_code: Optional[int] = None
    output_path: Optional[Path] = None


class ProcessRunner:
    def __init__(self, *, timeout: Optional[float] = None, log_limit: int = LOG_TAIL_CHARS) -> None:
        self.timeout = timeout
        self.log_limit = log_limit

    async def run(
        self,
        executable: str,
        args: Sequence[str],
        *,
        env: Optional[Mapping[str, str]] = None,
        expected_output: Optional[Path] = None,
        tool: Optional[str] = None,
    ) -> StageResult:
        """Run ``executable`` to completion and report how it went.

        Success requires exit code 0 and, when ``expected_output`` is given,
        that file existing afterwards. Spawn problems raise
        :class:`SpawnError`; an expired timeout kills the child and raises
        :class:`ProcessTimeoutError`.
        """

        tool = tool or Path(executable).name
        cmd = [executable, *args]
        logger.info("[%s] %s", tool, shlex.join(cmd))

        # Overlay on a copy: the service's own environment is never touched.
        child_env = {**os.environ, **env} if env else None

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=child_env,
            )
        except OSError as exc:
            logger.error("[%s] could not start %s: %s", tool, executable, exc)
            raise SpawnError(f"{tool} spawn error", log=str(exc)) from exc

        buf = bytearray()
        try:
            exit_code = await asyncio.wait_for(self._communicate(proc, buf, tool), timeout=self.timeout)
        except asyncio.TimeoutError:
            await self._kill(proc)
            logger.error("[%s] killed after %.0fs timeout", tool, self.timeout or 0)
            raise ProcessTimeoutError(
                f"{tool} timed out",
                exit_code=proc.returncode,
                log=self._decode(buf),
            ) from None
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        log = self._decode(buf)
        if exit_code != 0:
            logger.warning("[%s] exited with code %s", tool, exit_code)
            return StageResult(ok=False, log=log, exit_code=exit_code)

        if expected_output is not None and not Path(expected_output).exists():
            logger.warning("[%s] exited 0 but %s was not written", tool, expected_output)
            return StageResult(ok=False, log=log, exit_code=exit_code)

        return StageResult(ok=True, log=log, exit_code=exit_code, output_path=expected_output)

    async def run_stage(self, stage: PipelineStage) -> StageResult:
        """Run a stage, raising :class:`StageFailure` under its label on failure."""

        result = await self.run(
            stage.executable,
            stage.args,
            env=stage.env,
            expected_output=stage.expected_output,
            tool=stage.tool,
        )
        if not result.ok:
            raise StageFailure(stage.label, exit_code=result.exit_code, log=result.log)
        return result

    async def _communicate(self, proc: asyncio.subprocess.Process, buf: bytearray, tool: str) -> int:
        assert proc.stdout is not None
        while True:
            chunk = await proc.stdout.read(_READ_CHUNK)
            if not chunk:
                break
            logger.debug("[%s] %s", tool, chunk.decode(errors="ignore").rstrip())
            buf.extend(chunk)
            if len(buf) > self.log_limit:
                del buf[: len(buf) - self.log_limit]
        return await proc.wait()

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        await proc.wait()

    def _decode(self, buf: bytearray) -> str:
        return bytes(buf).decode(errors="ignore")[-self.log_limit:]
