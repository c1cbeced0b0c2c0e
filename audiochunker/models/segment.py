"""Segment and delivery data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional


@dataclass
class FlushedWindow:
    """Bytes accumulated by one capture window, as handed over by a source."""
    payload: bytes
    mime_type: str
    final: bool = False  # True for the window flushed by a stop request
    peak_level: Optional[float] = None
    flushed_at: datetime = field(default_factory=datetime.now)

    @property
    def size(self) -> int:
        return len(self.payload)


@dataclass
class Segment:
    """One delivered unit of audio."""
    session_id: str
    seq: int
    start_ms: int
    end_ms: int
    payload: bytes
    mime_type: str
    participant_refs: Dict[str, str] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.payload)

    @property
    def file_extension(self) -> str:
        """File extension derived from the mime type (``audio/wav;codecs=1`` -> ``wav``)."""
        subtype = self.mime_type.split(";")[0].split("/")[-1].strip()
        if subtype in ("x-wav", "wave"):
            return "wav"
        return subtype or "bin"


class DeliveryOutcome(Enum):
    """Result of a delivery attempt."""
    DELIVERED = "delivered"
    FAILED = "failed"
    DROPPED = "dropped"  # empty window, never handed to the transport


@dataclass
class DeliveryReport:
    """Published once per processed window."""
    session_id: str
    seq: int
    start_ms: int
    end_ms: int
    size: int
    outcome: DeliveryOutcome
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
