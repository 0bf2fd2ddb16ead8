import json
import stat
import sys
import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest

from vocalstrip.config import Settings


_FAKE_FFMPEG = """
import json, sys, wave
from pathlib import Path

MODE = {mode!r}
CALLS = Path({calls!r})

args = sys.argv[1:]
with CALLS.open("a") as fh:
    fh.write(json.dumps({{"tool": "ffmpeg", "args": args}}) + "\\n")

sys.stderr.write("ffmpeg version 0.0-fake\\n")
src = Path(args[args.index("-i") + 1])
out = Path(args[-1])
if not src.exists():
    sys.stderr.write(f"{{src}}: No such file or directory\\n")
    sys.exit(1)
if MODE == "fail":
    sys.stderr.write("Error while filtering: synthetic failure\\n")
    sys.exit(1)
if MODE == "no-output":
    sys.exit(0)

if out.suffix == ".wav":
    channels = 1 if MODE == "mono" else int(args[args.index("-ac") + 1])
    rate = int(args[args.index("-ar") + 1])
    with wave.open(str(out), "wb") as w:
        w.setnchannels(channels)
        w.setsampwidth(2)
        w.setframerate(rate)
        w.writeframes(b"\\x00\\x00" * channels * (rate // 10))
else:
    out.write_bytes(b"FAKE-AAC:" + src.name.encode())
"""

_FAKE_DEMUCS = """
import json, os, sys
from pathlib import Path

MODE = {mode!r}
CALLS = Path({calls!r})

args = sys.argv[1:]
with CALLS.open("a") as fh:
    fh.write(json.dumps({{"tool": "demucs", "args": args}}) + "\\n")

if os.environ.get("TORCHAUDIO_USE_SOUNDFILE") != "1":
    sys.stderr.write("no soundfile backend requested\\n")
    sys.exit(3)

model = args[args.index("-n") + 1]
out_dir = Path(args[args.index("-o") + 1])
wav = Path(args[-1])
print(f"Selected model {{model}}")
if not wav.exists():
    sys.stderr.write(f"missing input {{wav}}\\n")
    sys.exit(1)
if MODE == "fail":
    sys.stderr.write("RuntimeError: synthetic separation failure\\n")
    sys.exit(1)

target = out_dir / model / wav.stem
target.mkdir(parents=True, exist_ok=True)
(target / "vocals.wav").write_bytes(wav.read_bytes())
if MODE != "no-stem":
    (target / "no_vocals.wav").write_bytes(wav.read_bytes())
print(f"Separated tracks will be stored in {{target}}")
"""

_TEMPLATES = {"ffmpeg": _FAKE_FFMPEG, "demucs": _FAKE_DEMUCS}


def write_script(path: Path, body: str) -> Path:
    """Write an executable Python script run by the current interpreter."""
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body).lstrip())
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture()
def tools_dir(tmp_path: Path) -> Path:
    path = tmp_path / "tools"
    path.mkdir()
    return path


@pytest.fixture()
def make_script(tools_dir: Path) -> Callable[[str, str], Path]:
    def _make(name: str, body: str) -> Path:
        return write_script(tools_dir / name, body)

    return _make


@pytest.fixture()
def calls_file(tools_dir: Path) -> Path:
    return tools_dir / "calls.jsonl"


@pytest.fixture()
def make_tool(tools_dir: Path, calls_file: Path) -> Callable[..., Path]:
    """Create a fake ``ffmpeg`` or ``demucs`` executable in a given mode."""

    def _make(kind: str, mode: str = "ok") -> Path:
        body = _TEMPLATES[kind].format(mode=mode, calls=str(calls_file))
        return write_script(tools_dir / f"fake_{kind}_{mode}", body)

    return _make


@pytest.fixture()
def read_calls(calls_file: Path) -> Callable[[], list[dict]]:
    def _read() -> list[dict]:
        if not calls_file.exists():
            return []
        return [json.loads(line) for line in calls_file.read_text().splitlines() if line]

    return _read


@pytest.fixture()
def make_settings(tmp_path: Path, make_tool: Callable[..., Path]) -> Callable[..., Settings]:
    def _make(ffmpeg_mode: str = "ok", demucs_mode: str = "ok", **overrides: object) -> Settings:
        values: dict[str, object] = {
            "ffmpeg_bin": str(make_tool("ffmpeg", ffmpeg_mode)),
            "demucs_bin": str(make_tool("demucs", demucs_mode)),
            "tmp_dir": tmp_path / "scratch",
            "out_dir": tmp_path / "out",
            "process_timeout_seconds": 30,
        }
        values.update(overrides)
        return Settings(**values)  # type: ignore[arg-type]

    return _make
