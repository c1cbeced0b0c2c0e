"""Thread-backed capture handle that accumulates audio into windows."""

import logging
from abc import abstractmethod
from threading import Thread, Event, Lock
from typing import List, Optional

from ..models.segment import FlushedWindow
from .encoding import encode_wav, peak_level, WAV_MIME_TYPE
from .source import SegmentSourceHandle, FlushCallback

logger = logging.getLogger(__name__)


class BufferedSourceHandle(SegmentSourceHandle):
    """Base handle: a background thread reads chunks into the current window.

    Subclasses open the underlying stream and read one chunk at a time.
    Rotation swaps the window buffer under a lock, so the capture thread keeps
    reading while the flushed window is encoded and handed over.
    """

    def __init__(self, name: str):
        self.name = name
        self.sample_rate = 16000
        self.channels = 1
        self.sample_width = 2

        self._frames: List[bytes] = []
        self._lock = Lock()
        self._callback: Optional[FlushCallback] = None
        self._paused = False
        self._final_flushed = False
        self._exhausted = False

        # Capture thread management
        self.capture_thread: Optional[Thread] = None
        self.stop_event = Event()
        self._error: Optional[Exception] = None

        # Statistics tracking
        self.total_chunks = 0
        self.windows_flushed = 0

    @abstractmethod
    def _open_stream(self) -> None:
        """Open the underlying stream. Raise CaptureError on failure."""
        pass

    @abstractmethod
    def _read_chunk(self) -> Optional[bytes]:
        """Read one chunk of PCM frames; None when the stream is exhausted."""
        pass

    @abstractmethod
    def _close_stream(self) -> None:
        pass

    def start(self) -> None:
        """Open the stream in the calling thread and start the capture thread."""
        self._open_stream()
        self.capture_thread = Thread(target=self._capture_continuously, daemon=True)
        self.capture_thread.name = f"{self.name}CaptureThread"
        self.capture_thread.start()
        logger.info(f"{self.name} capture started: {self.sample_rate}Hz, {self.channels} channel(s)")

    def _capture_continuously(self) -> None:
        """Internal method: continuous capture loop in background thread."""
        try:
            while not self.stop_event.is_set():
                chunk = self._read_chunk()
                if chunk is None:
                    self._exhausted = True
                    logger.info(f"{self.name} source exhausted after {self.total_chunks} chunks")
                    break
                self._append(chunk)
        except Exception as e:
            self._error = e
            logger.error(f"{self.name} capture failed: {e}", exc_info=True)
        finally:
            self._close_stream()

    def _append(self, chunk: bytes) -> None:
        with self._lock:
            if self._paused or self._final_flushed:
                return
            self._frames.append(chunk)
            self.total_chunks += 1

    def on_flush(self, callback: FlushCallback) -> None:
        self._callback = callback

    def request_flush_and_rotate(self) -> None:
        self._flush(final=False)

    def request_final_flush(self) -> None:
        self.stop_event.set()
        self._flush(final=True)

    def _flush(self, final: bool) -> None:
        with self._lock:
            if self._final_flushed:
                logger.warning(f"{self.name}: flush requested after final flush, ignoring")
                return
            frames, self._frames = self._frames, []
            if final:
                self._final_flushed = True
            self.windows_flushed += 1

        pcm = b"".join(frames)
        window = FlushedWindow(
            payload=encode_wav(pcm, self.sample_rate, self.channels, self.sample_width),
            mime_type=WAV_MIME_TYPE,
            final=final,
            peak_level=peak_level(pcm, self.sample_width),
        )
        logger.debug(f"{self.name}: flushed window #{self.windows_flushed} "
                     f"({len(frames)} chunks, {window.size} bytes, peak={window.peak_level}, final={final})")

        if self._callback is None:
            logger.warning(f"{self.name}: no flush callback registered, window discarded")
            return
        self._callback(window)

    def pause(self) -> None:
        with self._lock:
            self._paused = True

    def resume(self) -> None:
        with self._lock:
            self._paused = False

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    @property
    def error(self) -> Optional[Exception]:
        return self._error

    def close(self) -> None:
        """Stop the capture thread and release the stream."""
        self.stop_event.set()

        if self.capture_thread and self.capture_thread.is_alive():
            self.capture_thread.join(timeout=2.0)
            if self.capture_thread.is_alive():
                logger.warning(f"{self.name} capture thread did not stop cleanly")

        logger.info(f"{self.name} capture closed. Total chunks: {self.total_chunks}")
