"""Session-related data models."""

import random
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Participant fields written by the first recorder versions at the top level
# of the checkpoint instead of under participantRefs.
LEGACY_PARTICIPANT_FIELDS = {
    "therapistId": "therapist",
    "patientId": "patient",
    "organizationId": "organization",
    "appointmentId": "appointment",
}


def generate_session_id(length: int = 11) -> str:
    """Generate a short random base-36 session id."""
    return ''.join(random.choices(string.ascii_lowercase + string.digits, k=length))


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Session:
    """Identity of one recording run."""
    session_id: str = field(default_factory=generate_session_id)
    participant_refs: Dict[str, str] = field(default_factory=dict)


class CheckpointStatus(str, Enum):
    """Status of a persisted session checkpoint."""
    ACTIVE = "active"
    READY = "ready"


class SessionCheckpoint(BaseModel):
    """Durable resumption record for a single session.

    Serialized with camelCase keys. Unknown keys are ignored and missing keys
    fall back to defaults so that older and newer recorders can read each
    other's checkpoints.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    status: CheckpointStatus = CheckpointStatus.ACTIVE
    session_id: str = Field("", alias="sessionId")
    seq: int = 0
    start_ms: int = Field(0, alias="startMs")
    timeslice_ms: int = Field(0, alias="timesliceMs")
    participant_refs: Dict[str, str] = Field(default_factory=dict, alias="participantRefs")
    updated_at: int = Field(default_factory=now_ms, alias="updatedAt")

    @model_validator(mode="before")
    @classmethod
    def _fold_legacy_participants(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        legacy = {role: str(data[key]) for key, role in LEGACY_PARTICIPANT_FIELDS.items()
                  if data.get(key)}
        if legacy:
            data = dict(data)
            refs = dict(legacy)
            current = data.pop("participantRefs", None) or data.pop("participant_refs", None)
            if isinstance(current, dict):
                refs.update(current)
            data["participantRefs"] = refs
        return data

    @field_validator("status", mode="before")
    @classmethod
    def _default_unknown_status(cls, value: Any) -> Any:
        if isinstance(value, CheckpointStatus):
            return value
        if isinstance(value, str) and value in {s.value for s in CheckpointStatus}:
            return value
        return CheckpointStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == CheckpointStatus.ACTIVE

    def matches(self, session: Session) -> bool:
        """True if this checkpoint belongs to the given session."""
        return bool(self.session_id) and self.session_id == session.session_id

    def to_session(self) -> Session:
        return Session(session_id=self.session_id, participant_refs=dict(self.participant_refs))

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
