"""Abstract segment source interfaces.

A segment source wraps a capture device (or a file played back in real time)
and produces successive finite windows of audio. The scheduler owns the
timing: it asks the open handle to flush the current window and start the
next one, and finally to flush the last window when recording stops.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from ..models.segment import FlushedWindow

FlushCallback = Callable[[FlushedWindow], None]


@dataclass
class SourceConfig:
    """Capture parameters passed to SegmentSource.open()."""
    sample_rate: int = 16000
    chunk_size: int = 1024
    channels: int = 1


class SegmentSourceHandle(ABC):
    """An open capture stream that accumulates audio into windows."""

    @abstractmethod
    def on_flush(self, callback: FlushCallback) -> None:
        """Register the callback that receives every flushed window.

        The callback may be invoked from the thread that requested the flush.
        """
        pass

    @abstractmethod
    def request_flush_and_rotate(self) -> None:
        """Flush the current window and immediately open the next one."""
        pass

    @abstractmethod
    def request_final_flush(self) -> None:
        """Flush the current window as final; no further window is opened."""
        pass

    @abstractmethod
    def pause(self) -> None:
        """Stop adding audio to windows while keeping the stream open."""
        pass

    @abstractmethod
    def resume(self) -> None:
        """Resume adding audio to windows."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the underlying device or file."""
        pass

    @property
    def exhausted(self) -> bool:
        """True once a finite source has no more audio to produce."""
        return False

    @property
    def error(self) -> Optional[Exception]:
        """The exception that stopped capture mid-session, if any."""
        return None


class SegmentSource(ABC):
    """Factory for segment source handles."""

    # Timeline origin for fresh sessions; None means wall-clock time.
    fixed_origin_ms: Optional[int] = None
    # Whether a session recorded from this source may resume from a checkpoint.
    supports_resume: bool = True

    @abstractmethod
    def open(self, config: SourceConfig) -> SegmentSourceHandle:
        """Open the source and start capturing.

        Raises:
            CaptureError: if the device or file cannot be opened
        """
        pass
