"""FFmpeg-based stages.

This module shells out to ffmpeg for everything that touches samples:
normalising uploads to a fixed WAV layout for the separator, the one-pass
karaoke filter of the fast path, and the final AAC encode.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

import soundfile as sf
from starlette.concurrency import run_in_threadpool

from vocalstrip.exceptions import StageFailure
from vocalstrip.pipelines.runner import PipelineStage, ProcessRunner, StageResult

logger = logging.getLogger("vocalstrip.ffmpeg")

AUDIO_EXTENSIONS = frozenset(
  {".mp3", ".wav", ".m4a", ".aac", ".flac", ".ogg", ".oga", ".opus", ".wma", ".aif", ".aiff", ".webm", ".mp4"}
)
DEFAULT_EXTENSION = ".mp3"

DELIVERY_EXTENSION = ".m4a"
DELIVERY_CODEC_ARGS = ["-c:a", "aac", "-b:a", "192k"]

NORMALIZED_CHANNELS = 2
NORMALIZED_SAMPLE_RATE = 44100
NORMALIZED_SUBTYPE = "PCM_16"

BASS_CUTOFF_HZ = 120
BASS_GAIN = 1.2

_STEREO = "aformat=channel_layouts=stereo"
_KARAOKE = "pan=stereo|c0=FL-FR|c1=FR-FL"


def format_cutoff(cutoff_hz: float) -> str:
  """Render a cutoff exactly as given: ``140.0`` -> ``140``, ``99.5`` -> ``99.5``."""
  value = float(cutoff_hz)
  if value.is_integer():
    return str(int(value))
  return repr(value)


def build_karaoke_filter(keep_bass: bool, cutoff_hz: float) -> str:
  """Return the ``-af`` graph for the phase-cancellation fast path.

  L-R / R-L cancels anything panned dead centre (usually the lead vocal)
  and the high-pass trims the mud left behind. Centred bass goes down with
  the vocal, so ``keep_bass`` splits the signal first and mixes a boosted
  low-passed copy back in.
  """
  hp = format_cutoff(cutoff_hz)
  if not keep_bass:
    return f"{_STEREO},{_KARAOKE},highpass=f={hp}"
  return (
    f"{_STEREO},asplit=2[low][all];"
    f"[low]lowpass=f={BASS_CUTOFF_HZ},volume={BASS_GAIN}[lb];"
    f"[all]{_KARAOKE},highpass=f={hp}[inst];"
    f"[inst][lb]amix=inputs=2:duration=longest"
  )


def ensure_extension(path: Path) -> Path:
  """Give ``path`` a recognised audio suffix, renaming the file if needed.

  Some tools dispatch on extension rather than sniffing content, so an
  upload saved without a usable suffix is treated as MP3.
  """
  path = Path(path)
  if path.suffix.lower() in AUDIO_EXTENSIONS:
    return path
  target = path.with_name(path.name + DEFAULT_EXTENSION)
  os.replace(path, target)
  logger.debug("[ffmpeg] renamed %s -> %s", path.name, target.name)
  return target


class FFmpeg:
  def __init__(self, runner: ProcessRunner, binary: str = "ffmpeg") -> None:
    self.runner = runner
    self.binary = binary

  def _stage(self, args: list[str], output: Path, label: str) -> PipelineStage:
    return PipelineStage(
      tool="ffmpeg",
      executable=self.binary,
      args=["-hide_banner", "-y", *args],
      label=label,
      expected_output=output,
    )

  def normalize_stage(self, input_path: Path, wav_path: Path) -> PipelineStage:
    return self._stage(
      [
        "-i",
        str(input_path),
        "-vn",
        "-ac",
        str(NORMALIZED_CHANNELS),
        "-ar",
        str(NORMALIZED_SAMPLE_RATE),
        "-sample_fmt",
        "s16",
        str(wav_path),
      ],
      wav_path,
      "ffmpeg preconvert failed",
    )

  def karaoke_stage(self, input_path: Path, output_path: Path, keep_bass: bool, cutoff_hz: float) -> PipelineStage:
    return self._stage(
      [
        "-i",
        str(input_path),
        "-map",
        "a:0",
        "-af",
        build_karaoke_filter(keep_bass, cutoff_hz),
        *DELIVERY_CODEC_ARGS,
        str(output_path),
      ],
      output_path,
      "ffmpeg failed",
    )

  def transcode_stage(self, input_path: Path, output_path: Path) -> PipelineStage:
    return self._stage(
      ["-i", str(input_path), "-vn", *DELIVERY_CODEC_ARGS, str(output_path)],
      output_path,
      "ffmpeg transcode failed",
    )

  async def normalize(self, input_path: Path, wav_path: Path) -> Path:
    """Decode any upload to 2ch / 44.1 kHz / s16 WAV for the separator."""
    input_path = ensure_extension(input_path)
    result = await self.runner.run_stage(self.normalize_stage(input_path, wav_path))
    await run_in_threadpool(_verify_normalized, wav_path, result)
    return wav_path

  async def karaoke(self, input_path: Path, output_path: Path, keep_bass: bool, cutoff_hz: float) -> Path:
    await self.runner.run_stage(self.karaoke_stage(input_path, output_path, keep_bass, cutoff_hz))
    return output_path

  async def transcode(self, input_path: Path, output_path: Path) -> Path:
    await self.runner.run_stage(self.transcode_stage(input_path, output_path))
    return output_path


def _verify_normalized(wav_path: Path, result: StageResult) -> None:
  try:
    info = sf.info(str(wav_path))
  except RuntimeError as exc:
    raise StageFailure(
      "ffmpeg preconvert failed",
      exit_code=result.exit_code,
      log=f"{result.log}\nunreadable WAV: {exc}",
    ) from exc

  if (
    info.channels != NORMALIZED_CHANNELS
    or info.samplerate != NORMALIZED_SAMPLE_RATE
    or info.subtype != NORMALIZED_SUBTYPE
  ):
    raise StageFailure(
      "ffmpeg preconvert failed",
      exit_code=result.exit_code,
      log=(
        f"{result.log}\nunexpected WAV layout: {info.channels}ch "
        f"{info.samplerate}Hz {info.subtype}"
      ),
    )
