"""Checkpoint persistence."""

from .checkpoint_store import (
    CheckpointStore,
    InMemoryCheckpointStore,
    JsonFileCheckpointStore,
    DEFAULT_SLOT,
)

__all__ = [
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "JsonFileCheckpointStore",
    "DEFAULT_SLOT",
]
