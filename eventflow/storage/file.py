"""
File-per-workflow snapshot store.

Each workflow id maps to one file in a caller-chosen directory. Writes go
to a temporary file first and are moved into place, so a crash never
leaves a half-written snapshot. Single writer per id is assumed.
"""

from pathlib import Path
from typing import Optional, Union
import asyncio
import functools
import hashlib
import logging
import os
import re

from eventflow.engine.errors import PersistenceError, SnapshotNotFoundError
from eventflow.engine.snapshot import InterruptSnapshot
from eventflow.storage.base import SnapshotStore


logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")


class FileSnapshotStore(SnapshotStore):
    """
    Stores each snapshot as ``<prefix><id>.json`` under ``directory``.

    Ids containing anything beyond letters, digits, ``_``, ``.`` and ``-``
    (or starting with a dot) are hashed into the filename.

    Attributes:
        directory: Where snapshot files live (created if missing)
        prefix: Filename prefix
    """

    def __init__(self, directory: Union[str, Path], prefix: str = "workflow_"):
        self.directory = Path(directory).expanduser()
        self.prefix = prefix
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, workflow_id: str) -> Path:
        """Filename derived from the workflow id."""
        if _SAFE_ID.match(workflow_id) and not workflow_id.startswith("."):
            stem = workflow_id
        else:
            stem = hashlib.sha256(workflow_id.encode("utf-8")).hexdigest()
        return self.directory / f"{self.prefix}{stem}.json"

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    def _write(self, path: Path, data: bytes) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError as e:
            raise PersistenceError(f"Failed to write snapshot {path}: {e}") from e

    def _read(self, path: Path) -> Optional[bytes]:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Failed to read snapshot {path}: {e}") from e

    def _unlink(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceError(f"Failed to delete snapshot {path}: {e}") from e

    async def save(self, workflow_id: str, snapshot: InterruptSnapshot) -> None:
        path = self.path_for(workflow_id)
        await self._run(self._write, path, snapshot.to_bytes())
        logger.debug(f"Saved snapshot to: {path}")

    async def load(self, workflow_id: str) -> InterruptSnapshot:
        data = await self._run(self._read, self.path_for(workflow_id))
        if data is None:
            raise SnapshotNotFoundError(workflow_id)
        return InterruptSnapshot.from_bytes(data)

    async def delete(self, workflow_id: str) -> bool:
        return await self._run(self._unlink, self.path_for(workflow_id))

    async def exists(self, workflow_id: str) -> bool:
        return self.path_for(workflow_id).exists()
