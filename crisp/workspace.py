"""Local filesystem workspaces for scaffolding."""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path

from .interfaces import FilesystemOperations

logger = logging.getLogger(__name__)


class LocalFilesystem(FilesystemOperations):
    """Workspaces are fresh directories under ``root``; blocking I/O runs in a thread."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _owns(self, path: Path) -> bool:
        try:
            path.resolve().relative_to(self.root.resolve())
        except ValueError:
            return False
        return True

    async def create_workspace(self, prefix: str) -> str:
        def _create() -> str:
            self.root.mkdir(parents=True, exist_ok=True)
            return tempfile.mkdtemp(prefix=prefix, dir=self.root)

        path = await asyncio.to_thread(_create)
        logger.debug("Created workspace %s", path)
        return path

    async def create_directory(self, path: str) -> None:
        await asyncio.to_thread(Path(path).mkdir, parents=True, exist_ok=True)

    async def write_file(self, path: str, content: str) -> None:
        def _write() -> None:
            target = Path(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

        await asyncio.to_thread(_write)

    async def read_file(self, path: str) -> str:
        return await asyncio.to_thread(Path(path).read_text, encoding="utf-8")

    async def cleanup_workspace(self, workspace_path: str) -> None:
        path = Path(workspace_path)
        if not self._owns(path):
            raise ValueError(f"Refusing to delete {path}: not under {self.root}")
        if path.exists():
            await asyncio.to_thread(shutil.rmtree, path)
            logger.debug("Removed workspace %s", path)
