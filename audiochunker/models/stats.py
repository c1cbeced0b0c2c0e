"""Recorder statistics and lifecycle event models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class LifecycleState(Enum):
    """Session lifecycle states."""
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    READY = "ready"
    FINALIZED = "finalized"


class SchedulerState(Enum):
    """Segmentation scheduler states."""
    IDLE = "idle"
    ROTATING = "rotating"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass
class RecorderStats:
    """Counters shown to the operator while a session runs."""
    session_id: Optional[str] = None
    state: LifecycleState = LifecycleState.IDLE
    seq: int = 0
    chunks_sent: int = 0
    errors: int = 0
    dropped: int = 0
    capture_error: Optional[str] = None


@dataclass
class LifecycleEvent:
    """Session lifecycle event."""
    session_id: str
    event_type: str  # "started", "resumed", "paused", "stopped", "interrupted", "capture_failed", ...
    state: LifecycleState
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)
