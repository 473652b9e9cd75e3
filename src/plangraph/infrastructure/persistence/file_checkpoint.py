"""
File-based workflow checkpoints.

Persists a task's workflow and variables as JSON so a host application can
restore a task after a restart:

    store = FileCheckpointStore(".plangraph/checkpoints")
    hooks = Hooks(on_checkpoint=store.save_checkpoint)
    ...
    data = await store.load_checkpoint(task_id)
    orchestrator.init_context(Workflow.from_dict(data["workflow"]), data["variables"])
"""

import asyncio
import json
import time
from datetime import datetime
from pathlib import Path
from typing import Any

import aiofiles
import structlog

from plangraph.core.domain.context import ExecutionContext
from plangraph.core.domain.models import Workflow


class FileCheckpointStore:
    """Stores workflow checkpoints as JSON files, one per task, with versioning and locks."""

    def __init__(self, checkpoint_dir: str = ".plangraph/checkpoints"):
        self.checkpoint_dir = Path(checkpoint_dir)
        self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
        self.locks: dict[str, asyncio.Lock] = {}
        self.logger = structlog.get_logger().bind(component="file_checkpoint_store")

    def _get_lock(self, task_id: str) -> asyncio.Lock:
        if task_id not in self.locks:
            self.locks[task_id] = asyncio.Lock()
        return self.locks[task_id]

    def _checkpoint_file(self, task_id: str) -> Path:
        return self.checkpoint_dir / f"{task_id}.json"

    async def save_checkpoint(self, context: ExecutionContext, workflow: Workflow) -> int:
        """
        Write the current state of a task.

        Usable directly as the ``on_checkpoint`` hook.

        Returns:
            The version number written
        """
        task_id = context.task_id
        async with self._get_lock(task_id):
            checkpoint_file = self._checkpoint_file(task_id)
            version = 0
            if checkpoint_file.exists():
                previous = await self._read(checkpoint_file)
                version = previous.get("version", 0) if previous else 0

            checkpoint = {
                "task_id": task_id,
                "version": version + 1,
                "timestamp": datetime.now().isoformat(),
                "variables": context.variables,
                "workflow": workflow.to_dict(),
            }
            async with aiofiles.open(checkpoint_file, "w", encoding="utf-8") as f:
                await f.write(json.dumps(checkpoint, ensure_ascii=False, default=str, indent=2))

            self.logger.info("checkpoint_saved", task_id=task_id, version=version + 1)
            return version + 1

    async def load_checkpoint(self, task_id: str) -> dict[str, Any] | None:
        """Load the latest checkpoint of a task, or None if there is none."""
        checkpoint_file = self._checkpoint_file(task_id)
        if not checkpoint_file.exists():
            return None
        checkpoint = await self._read(checkpoint_file)
        self.logger.info("checkpoint_loaded", task_id=task_id, version=checkpoint.get("version"))
        return checkpoint

    async def delete_checkpoint(self, task_id: str) -> bool:
        async with self._get_lock(task_id):
            checkpoint_file = self._checkpoint_file(task_id)
            if not checkpoint_file.exists():
                return False
            checkpoint_file.unlink()
            self.logger.info("checkpoint_deleted", task_id=task_id)
            return True

    def cleanup_old_checkpoints(self, days: int = 7) -> int:
        """Remove checkpoints older than the given number of days."""
        cutoff_time = time.time() - (days * 24 * 60 * 60)
        removed = 0
        for checkpoint_file in self.checkpoint_dir.glob("*.json"):
            if checkpoint_file.stat().st_mtime < cutoff_time:
                checkpoint_file.unlink()
                removed += 1
                self.logger.info("old_checkpoint_removed", file=checkpoint_file.name)
        return removed

    async def _read(self, checkpoint_file: Path) -> dict[str, Any]:
        async with aiofiles.open(checkpoint_file, "r", encoding="utf-8") as f:
            return json.loads(await f.read())
