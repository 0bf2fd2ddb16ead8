"""Per-request scratch directories."""
from __future__ import annotations

import logging
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger("vocalstrip.workspace")


@dataclass(frozen=True)
class Workspace:
    request_id: str
    root: Path

    def path(self, name: str) -> Path:
        return self.root / name


class WorkspaceManager:
    """Hands out one private directory per request under a shared root."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def allocate(self, request_id: Optional[str] = None) -> Workspace:
        request_id = request_id or uuid.uuid4().hex
        root = self.root / request_id
        # exist_ok=False: a clash means two requests would share files.
        root.mkdir(parents=False, exist_ok=False)
        logger.debug("[workspace] allocated %s", root)
        return Workspace(request_id=request_id, root=root)

    def release(self, workspace: Workspace) -> None:
        """Remove the workspace tree; failures are logged, never raised."""

        try:
            shutil.rmtree(workspace.root)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("[workspace] cleanup of %s failed: %s", workspace.root, exc)
        else:
            logger.debug("[workspace] released %s", workspace.root)
