from __future__ import annotations

import asyncio
import logging
import shutil
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator
from uuid import uuid4

from compile_runner.errors import SandboxEnvironmentError
from compile_runner.settings import Settings

logger = logging.getLogger(__name__)

TEMPLATE_MANIFEST = "package.json"
TEMPLATE_DEPENDENCIES = "node_modules"


class Sandbox:
    """Per-job working directories under a shared root.

    Directory names carry a random token, so concurrent jobs never collide
    and the root needs no locking.
    """

    def __init__(self, settings: Settings) -> None:
        self.root = settings.sandbox_root
        self.template_dir = settings.template_dir

    async def create(self, prefix: str = "job", seed: bool = False) -> Path:
        return await asyncio.to_thread(self._create, prefix, seed)

    async def destroy(self, work_dir: Path) -> None:
        await asyncio.to_thread(self._destroy, work_dir)

    @asynccontextmanager
    async def session(self, prefix: str = "job", seed: bool = False) -> AsyncIterator[Path]:
        """Yield a fresh work dir that is removed when the block exits, however it exits."""
        work_dir = await self.create(prefix, seed=seed)
        try:
            yield work_dir
        finally:
            await self.destroy(work_dir)

    def _create(self, prefix: str, seed: bool) -> Path:
        work_dir = self.root / f"{prefix}-{uuid4().hex}"
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            work_dir.mkdir()
        except OSError as exc:
            raise SandboxEnvironmentError(f"could not create sandbox: {exc}") from exc

        if seed:
            try:
                self._seed(work_dir)
            except OSError as exc:
                self._destroy(work_dir)
                raise SandboxEnvironmentError(
                    f"could not seed sandbox from {self.template_dir}: {exc}"
                ) from exc
        logger.debug("created sandbox %s", work_dir)
        return work_dir

    def _seed(self, work_dir: Path) -> None:
        manifest = self.template_dir / TEMPLATE_MANIFEST
        dependencies = self.template_dir / TEMPLATE_DEPENDENCIES
        if manifest.is_file():
            shutil.copy2(manifest, work_dir / TEMPLATE_MANIFEST)
        if dependencies.is_dir():
            shutil.copytree(
                dependencies, work_dir / TEMPLATE_DEPENDENCIES, symlinks=True
            )

    def _destroy(self, work_dir: Path) -> None:
        if not work_dir.exists():
            return
        try:
            shutil.rmtree(work_dir)
        except OSError as exc:
            # never replaces the job's own result
            logger.warning("cleanup of %s failed: %s", work_dir, exc)
            return
        logger.debug("removed sandbox %s", work_dir)
