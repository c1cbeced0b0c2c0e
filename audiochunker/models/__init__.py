"""Data models for the audiochunker package."""

from .session import Session, SessionCheckpoint, CheckpointStatus, generate_session_id
from .segment import FlushedWindow, Segment, DeliveryOutcome, DeliveryReport
from .stats import RecorderStats, LifecycleEvent, LifecycleState, SchedulerState

__all__ = [
    "Session",
    "SessionCheckpoint",
    "CheckpointStatus",
    "generate_session_id",
    "FlushedWindow",
    "Segment",
    "DeliveryOutcome",
    "DeliveryReport",
    "RecorderStats",
    "LifecycleEvent",
    "LifecycleState",
    "SchedulerState",
]
