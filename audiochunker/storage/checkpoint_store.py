"""Durable single-slot storage for the session checkpoint."""

import os
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..errors import PersistenceError
from ..models.session import SessionCheckpoint

logger = logging.getLogger(__name__)

DEFAULT_SLOT = "recorder.session.v1"


class CheckpointStore(ABC):
    """Best-effort persistence of one SessionCheckpoint.

    Persistence is an optimization: failures to save, load or clear are
    logged and never propagate to the caller.
    """

    @abstractmethod
    def _write(self, data: Dict[str, Any]) -> None:
        """Persist the serialized checkpoint. Raise PersistenceError on failure."""
        pass

    @abstractmethod
    def _read(self) -> Optional[Dict[str, Any]]:
        """Return the stored record, None if the slot is empty."""
        pass

    @abstractmethod
    def _delete(self) -> None:
        pass

    def save(self, checkpoint: SessionCheckpoint) -> bool:
        """Overwrite the slot with checkpoint. Returns False if it could not be saved."""
        try:
            self._write(checkpoint.to_dict())
        except PersistenceError as e:
            logger.warning(f"Could not persist checkpoint for {checkpoint.session_id}: {e}")
            return False
        logger.debug(f"Checkpoint saved: session={checkpoint.session_id} "
                     f"status={checkpoint.status.value} seq={checkpoint.seq} "
                     f"startMs={checkpoint.start_ms}")
        return True

    def load(self) -> Optional[SessionCheckpoint]:
        """Load the checkpoint, or None if absent or unreadable."""
        try:
            data = self._read()
        except PersistenceError as e:
            logger.warning(f"Could not read checkpoint: {e}")
            return None

        if data is None:
            return None
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed checkpoint record of type {type(data).__name__}")
            return None

        try:
            checkpoint = SessionCheckpoint.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid checkpoint record: {e}")
            return None

        if not checkpoint.session_id:
            logger.warning("Ignoring checkpoint without a session id")
            return None
        return checkpoint

    def clear(self) -> None:
        """Delete the stored checkpoint, if any."""
        try:
            self._delete()
        except PersistenceError as e:
            logger.warning(f"Could not clear checkpoint: {e}")
            return
        logger.debug("Checkpoint cleared")


class InMemoryCheckpointStore(CheckpointStore):
    """Checkpoint store that lives only as long as the process."""

    def __init__(self):
        self._data: Optional[Dict[str, Any]] = None

    def _write(self, data: Dict[str, Any]) -> None:
        self._data = dict(data)

    def _read(self) -> Optional[Dict[str, Any]]:
        return dict(self._data) if self._data is not None else None

    def _delete(self) -> None:
        self._data = None


class JsonFileCheckpointStore(CheckpointStore):
    """Stores the checkpoint as a JSON file in the data directory."""

    def __init__(self, data_dir: str = "./data", slot: str = DEFAULT_SLOT):
        """Initialize checkpoint store.

        Args:
            data_dir: Base directory for storing all data
            slot: Name of the storage slot; one file per slot
        """
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / f"{slot}.json"
        logger.info(f"JsonFileCheckpointStore initialized with path: {self.path}")

    def _write(self, data: Dict[str, Any]) -> None:
        tmp_path = self.path.with_suffix(".json.tmp")
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"{self.path}: {e}") from e

    def _read(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"{self.path}: {e}") from e

    def _delete(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(f"{self.path}: {e}") from e
