"""
Persistence port for suspended runs.

The engine only talks to this interface. Backends decide where the
snapshot blob lives and whether anything is retried; errors propagate to
the caller of ``start``/``wakeup`` unchanged.
"""

from abc import ABC, abstractmethod

from eventflow.engine.errors import SnapshotNotFoundError
from eventflow.engine.snapshot import InterruptSnapshot


class SnapshotStore(ABC):
    """Save/load contract for interrupt snapshots, keyed by workflow id."""

    @abstractmethod
    async def save(self, workflow_id: str, snapshot: InterruptSnapshot) -> None:
        """Store a snapshot, replacing any previous one for the id."""

    @abstractmethod
    async def load(self, workflow_id: str) -> InterruptSnapshot:
        """
        Return the snapshot for the id.

        Raises:
            SnapshotNotFoundError: If nothing is stored for the id
        """

    @abstractmethod
    async def delete(self, workflow_id: str) -> bool:
        """Remove the snapshot; returns False when there was none."""

    async def exists(self, workflow_id: str) -> bool:
        try:
            await self.load(workflow_id)
        except SnapshotNotFoundError:
            return False
        return True

    async def close(self) -> None:
        """Release backend resources."""
