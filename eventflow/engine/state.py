"""
State Management for Workflow Engine.

This module provides the shared state that every node of a run sees.
State is mutable in place - a node writes to it and the next node reads
the change. The engine creates one state per run and serializes it
wholesale when the run is suspended.
"""

from typing import Any, Dict, List, Optional
from copy import deepcopy

from pydantic import BaseModel, Field


class WorkflowState(BaseModel):
    """
    The shared key-value store of a workflow run.

    Nodes receive the same instance for the whole run, so updates are
    visible to every later node. Values that have to survive a
    suspension must be JSON-serializable.

    Attributes:
        data: The actual workflow data (flexible dictionary)
    """

    data: Dict[str, Any] = Field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value from the state data."""
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a value in place."""
        self.data[key] = value

    def update(self, updates: Dict[str, Any]) -> None:
        """Update multiple values in place."""
        self.data.update(updates)

    def has(self, key: str) -> bool:
        return key in self.data

    def delete(self, key: str) -> None:
        """Remove a key if present."""
        self.data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self.data.keys())

    def all(self) -> Dict[str, Any]:
        """Return a deep copy of the data, safe to hand out of the run."""
        return deepcopy(self.data)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.data[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self.data

    def __len__(self) -> int:
        return len(self.data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert state to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")["data"]

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "WorkflowState":
        """Create a WorkflowState from a plain mapping (copied)."""
        return cls(data=deepcopy(dict(data or {})))
