"""Exception types raised by the recorder core."""

from typing import Optional


class AudioChunkerError(Exception):
    """Base class for all recorder errors."""


class CaptureError(AudioChunkerError):
    """The segment source failed to open or to produce audio."""


class DeliveryError(AudioChunkerError):
    """A single segment upload failed."""

    def __init__(self, message: str, seq: Optional[int] = None):
        super().__init__(message)
        self.seq = seq


class FinalizeError(AudioChunkerError):
    """The finalize call failed; the session stays ready to finalize."""


class PersistenceError(AudioChunkerError):
    """Checkpoint could not be written or read."""
