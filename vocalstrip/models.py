"""Request records and response models.

The pydantic models describe the JSON bodies of ``/process`` and are used
by ``main.py`` to serialise every outcome; the dataclass holds one parsed
request for the lifetime of a single HTTP call.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import BinaryIO, Literal, Optional

from pydantic import BaseModel

from vocalstrip.exceptions import ClientInputError


Strategy = Literal["fast", "model-based"]

ENGINE_STRATEGIES: dict[str, Strategy] = {
    "ffmpeg": "fast",
    "demucs": "model-based",
}

DEFAULT_ENGINE = "ffmpeg"
DEFAULT_MODEL = "htdemucs"
DEFAULT_CUTOFF_HZ = 140.0

_MODEL_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


@dataclass
class ProcessingRequest:
    source: BinaryIO
    filename: str
    strategy: Strategy
    keep_bass: bool = True
    cutoff_hz: float = DEFAULT_CUTOFF_HZ
    model: str = DEFAULT_MODEL


def _parse_cutoff(aggression: Optional[str]) -> float:
    if aggression is None or not str(aggression).strip():
        return DEFAULT_CUTOFF_HZ
    try:
        value = float(aggression)
    except ValueError as exc:
        raise ClientInputError("Invalid aggression") from exc
    # float() happily accepts "nan" and "inf"; neither belongs in a filter graph.
    if not math.isfinite(value) or value <= 0:
        raise ClientInputError("Invalid aggression")
    return value


def parse_request(
    source: BinaryIO,
    filename: Optional[str],
    engine: Optional[str] = None,
    model: Optional[str] = None,
    keep_bass: Optional[str] = None,
    aggression: Optional[str] = None,
) -> ProcessingRequest:
    """Turn raw multipart form values into a validated request.

    ``keepBass`` keeps its historical semantics: only the literal string
    ``"true"`` enables the low-frequency branch, anything else disables it.
    """

    engine_key = (engine or DEFAULT_ENGINE).strip().lower()
    strategy = ENGINE_STRATEGIES.get(engine_key)
    if strategy is None:
        raise ClientInputError("Unknown engine")

    model_name = (model or DEFAULT_MODEL).strip()
    if not _MODEL_RE.match(model_name):
        raise ClientInputError("Invalid model")

    return ProcessingRequest(
        source=source,
        filename=filename or "input",
        strategy=strategy,
        keep_bass=(keep_bass if keep_bass is not None else "true") == "true",
        cutoff_hz=_parse_cutoff(aggression),
        model=model_name,
    )


class ProcessResponse(BaseModel):
    ok: bool = True
    downloadUrl: str


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
    exitCode: Optional[int] = None
    log: Optional[str] = None
