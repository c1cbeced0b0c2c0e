"""Abstract transport used to hand segments to the remote collector."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict

from ..models.segment import Segment


@dataclass
class FinalizeRequest:
    """Session metadata sent when a recording is finalized."""
    session_id: str
    participant_refs: Dict[str, str] = field(default_factory=dict)
    extra_metadata: Dict[str, Any] = field(default_factory=dict)


def participant_field(role: str) -> str:
    """Wire field name for a participant role (``therapist`` -> ``therapistId``)."""
    return role if role.endswith("Id") else f"{role}Id"


class AbstractTransport(ABC):
    """Abstract base class for collector transports."""

    @abstractmethod
    async def upload(self, segment: Segment) -> None:
        """Upload one segment.

        Raises:
            DeliveryError: if the collector rejected or never received it
        """
        pass

    @abstractmethod
    async def finalize(self, request: FinalizeRequest) -> Any:
        """Tell the collector the session is complete.

        Returns:
            Parsed JSON, plain text or None, depending on the response body

        Raises:
            FinalizeError: if the collector did not accept the call
        """
        pass
