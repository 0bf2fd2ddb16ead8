import logging
import shutil
from pathlib import Path

import pytest

from vocalstrip.workspace import WorkspaceManager


class TestAllocate:
    def test_creates_root_on_construction(self, tmp_path: Path) -> None:
        WorkspaceManager(tmp_path / "scratch" / "nested")

        assert (tmp_path / "scratch" / "nested").is_dir()

    def test_each_allocation_is_distinct(self, tmp_path: Path) -> None:
        manager = WorkspaceManager(tmp_path)

        first = manager.allocate()
        second = manager.allocate()

        assert first.root != second.root
        assert first.root.is_dir() and second.root.is_dir()
        assert first.path("upload.mp3") == first.root / "upload.mp3"

    def test_reusing_an_id_is_refused(self, tmp_path: Path) -> None:
        manager = WorkspaceManager(tmp_path)
        manager.allocate("req-1")

        with pytest.raises(FileExistsError):
            manager.allocate("req-1")


class TestRelease:
    def test_removes_everything(self, tmp_path: Path) -> None:
        manager = WorkspaceManager(tmp_path / "scratch")
        workspace = manager.allocate()
        (workspace.path("demucs_out") / "htdemucs").mkdir(parents=True)
        workspace.path("normalized.wav").write_bytes(b"RIFF")

        manager.release(workspace)

        assert list((tmp_path / "scratch").iterdir()) == []

    def test_release_twice_is_harmless(self, tmp_path: Path) -> None:
        manager = WorkspaceManager(tmp_path)
        workspace = manager.allocate()

        manager.release(workspace)
        manager.release(workspace)

    def test_cleanup_errors_are_logged_not_raised(
        self,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        manager = WorkspaceManager(tmp_path)
        workspace = manager.allocate()

        def _deny(path: object) -> None:
            raise PermissionError("read-only filesystem")

        monkeypatch.setattr(shutil, "rmtree", _deny)

        with caplog.at_level(logging.WARNING, logger="vocalstrip.workspace"):
            manager.release(workspace)

        assert "read-only filesystem" in caplog.text
