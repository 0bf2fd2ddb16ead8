import logging
import re
import shutil
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from vocalstrip.exceptions import PublishError

logger = logging.getLogger("vocalstrip.storage")

STATIC_PREFIX = "out"
ARTIFACT_SUFFIX = "_instrumental_"
TOKEN_LENGTH = 8

_EXTENSION_RE = re.compile(r"\.[^.]+$")


def artifact_name(original_filename: Optional[str], extension: str = ".m4a") -> str:
    """Build the public name for a finished file.

    ``My Song.mp3`` becomes ``My Song_instrumental_1a2b3c4d.m4a``. Only the
    basename of the upload is used, so client-supplied directories never
    leak into the public tree.
    """

    basename = Path((original_filename or "").replace("\\", "/")).name
    # Drop one trailing extension, then leading dots so nothing is published hidden.
    stem = _EXTENSION_RE.sub("", basename).lstrip(".")
    if not stem:
        stem = "input"
    token = uuid.uuid4().hex[:TOKEN_LENGTH]
    return f"{stem}{ARTIFACT_SUFFIX}{token}{extension}"


class Publisher:
    """Moves finished files into the statically served output directory."""

    def __init__(self, out_dir: Path, public_base_url: Optional[str] = None) -> None:
        self.out_dir = Path(out_dir)
        self.out_dir.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def publish(self, temp_path: Path, name: str) -> Path:
        """Move ``temp_path`` to ``out_dir/name``.

        On the same filesystem this is a single rename, so readers of
        ``/out`` never see a half-written file.
        """

        target = self.out_dir / name
        try:
            shutil.move(str(temp_path), str(target))
        except OSError as exc:
            logger.error("[storage] could not publish %s: %s", temp_path, exc)
            raise PublishError("publish failed", log=str(exc)) from exc
        logger.info("[storage] published %s", target.name)
        return target

    def url_for(self, name: str, request_base_url: Optional[str] = None) -> str:
        base = self.public_base_url or (request_base_url or "").rstrip("/")
        return f"{base}/{STATIC_PREFIX}/{quote(name)}"
