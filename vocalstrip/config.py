"""Runtime configuration for the vocalstrip service.

Everything that steers the external tools is read from the environment
exactly once, at startup, into an immutable :class:`Settings`. The object
is then handed to the app factory and from there to the engine, so no
request ever reads or mutates ``os.environ`` directly.
"""
from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    return raw.strip() if raw and raw.strip() else default


@dataclass(frozen=True)
class Settings:
    port: int = 3000
    ffmpeg_bin: str = "ffmpeg"
    demucs_bin: str = "demucs"
    server_public_url: Optional[str] = None

    tmp_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "vocalstrip_tmp")
    out_dir: Path = field(default_factory=lambda: Path.cwd() / "out")

    log_level: str = "INFO"
    # 0 disables the timeout entirely.
    process_timeout_seconds: int = 1800
    max_concurrent_separations: int = 1
    log_tail_chars: int = 8000
    response_log_chars: int = 4000
    cors_origins: Tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment.

        ``SERVER_PUBLIC_URL`` is optional; when it is unset download URLs are
        derived from the scheme and host of the inbound request.
        """

        public_url = os.getenv("SERVER_PUBLIC_URL")
        origins = _env_str("CORS_ORIGINS", "*")

        return cls(
            port=_env_int("PORT", 3000),
            ffmpeg_bin=_env_str("FFMPEG_BIN", "ffmpeg"),
            demucs_bin=_env_str("DEMUCS_BIN", "demucs"),
            server_public_url=public_url.rstrip("/") if public_url and public_url.strip() else None,
            tmp_dir=Path(_env_str("VOCALSTRIP_TMP_DIR", str(Path(tempfile.gettempdir()) / "vocalstrip_tmp"))),
            out_dir=Path(_env_str("VOCALSTRIP_OUT_DIR", str(Path.cwd() / "out"))),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
            process_timeout_seconds=max(0, _env_int("PROCESS_TIMEOUT_SECONDS", 1800)),
            max_concurrent_separations=max(1, _env_int("MAX_CONCURRENT_SEPARATIONS", 1)),
            response_log_chars=max(0, _env_int("RESPONSE_LOG_CHARS", 4000)),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )

    @property
    def process_timeout(self) -> Optional[float]:
        if self.process_timeout_seconds <= 0:
            return None
        return float(self.process_timeout_seconds)
