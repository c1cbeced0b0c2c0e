"""Segment source that plays a WAV file back in real time."""

import time
import wave
import logging
from pathlib import Path
from typing import Optional

from ..errors import CaptureError
from .source import SegmentSource, SourceConfig
from .window import BufferedSourceHandle

logger = logging.getLogger(__name__)


class FileHandle(BufferedSourceHandle):
    """Reads frames from a WAV file at playback speed."""

    def __init__(self, path: Path, chunk_size: int, playback_rate: float = 1.0):
        super().__init__("File")
        self.path = path
        self.chunk_size = chunk_size
        self.playback_rate = playback_rate
        self._wav: Optional[wave.Wave_read] = None
        self._chunk_seconds = 0.0
        self._next_deadline = 0.0

    def _open_stream(self) -> None:
        try:
            self._wav = wave.open(str(self.path), 'rb')
        except (OSError, EOFError, wave.Error) as e:
            raise CaptureError(f"Could not open audio file {self.path}: {e}") from e

        self.sample_rate = self._wav.getframerate()
        self.channels = self._wav.getnchannels()
        self.sample_width = self._wav.getsampwidth()
        self._chunk_seconds = self.chunk_size / self.sample_rate / self.playback_rate
        self._next_deadline = time.monotonic()

        logger.info(f"Audio file opened: {self.path} ({self._wav.getnframes()} frames, "
                    f"{self.sample_rate}Hz, playback x{self.playback_rate})")

    def _read_chunk(self) -> Optional[bytes]:
        data = self._wav.readframes(self.chunk_size)
        if not data:
            return None

        # Release each chunk only once its playback time has elapsed
        self._next_deadline += self._chunk_seconds
        delay = self._next_deadline - time.monotonic()
        if delay > 0:
            self.stop_event.wait(delay)
        return data

    def _close_stream(self) -> None:
        if self._wav:
            self._wav.close()
            self._wav = None


class FileSegmentSource(SegmentSource):
    """Chunks an audio file as if it were captured live.

    File sessions always start their timeline at zero and are never resumed
    from a checkpoint.
    """

    fixed_origin_ms = 0
    supports_resume = False

    def __init__(self, path: str, playback_rate: float = 1.0):
        if playback_rate <= 0:
            raise ValueError(f"playback_rate must be positive, got: {playback_rate}")
        self.path = Path(path)
        self.playback_rate = playback_rate

    def open(self, config: SourceConfig) -> FileHandle:
        handle = FileHandle(self.path, chunk_size=config.chunk_size,
                            playback_rate=self.playback_rate)
        handle.start()
        return handle
