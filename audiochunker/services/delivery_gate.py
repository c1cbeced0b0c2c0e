"""Serialized delivery of segments to the transport."""

import asyncio
import logging
from typing import Dict, Optional

from ..models.segment import Segment, DeliveryOutcome
from ..transport.base import AbstractTransport

logger = logging.getLogger(__name__)


class DeliveryGate:
    """Delivers one segment at a time, in sequence order, without retrying.

    A failed upload is counted and logged; the caller carries on with the
    next segment. Because attempts never overlap and never go backwards, every
    segment below the scheduler's cursor has had exactly one attempt.
    """

    def __init__(self, transport: AbstractTransport):
        self.transport = transport
        self.delivered = 0
        self.failed = 0
        self.last_error: Optional[str] = None
        self._lock = asyncio.Lock()
        self._last_seq: Dict[str, int] = {}

    async def deliver(self, segment: Segment) -> DeliveryOutcome:
        """Upload segment and report whether it was delivered."""
        async with self._lock:
            last_seq = self._last_seq.get(segment.session_id)
            if last_seq is not None and segment.seq <= last_seq:
                raise ValueError(f"Segment seq={segment.seq} for session {segment.session_id} "
                                 f"is not after last attempted seq={last_seq}")
            self._last_seq[segment.session_id] = segment.seq

            try:
                await self.transport.upload(segment)
            except Exception as e:
                self.failed += 1
                self.last_error = str(e)
                logger.error(f"Upload error: seq={segment.seq} session={segment.session_id}: {e}")
                return DeliveryOutcome.FAILED

            self.delivered += 1
            self.last_error = None
            logger.info(f"Uploaded seq={segment.seq} bytes={segment.size}")
            return DeliveryOutcome.DELIVERED

    def reset(self) -> None:
        """Clear counters and ordering state before a fresh session."""
        self.delivered = 0
        self.failed = 0
        self.last_error = None
        self._last_seq.clear()
