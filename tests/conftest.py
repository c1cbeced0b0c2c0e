"""Pytest configuration and fixtures for audiochunker tests."""

import asyncio
import pytest
import tempfile
import logging
from collections import deque
from pathlib import Path
from typing import Optional
from unittest.mock import Mock, patch
import numpy as np
import wave

from aiohttp import web
from aiohttp import test_utils

from audiochunker.audio.source import SegmentSource, SegmentSourceHandle, SourceConfig
from audiochunker.errors import CaptureError, DeliveryError, FinalizeError
from audiochunker.models.segment import FlushedWindow
from audiochunker.storage.checkpoint_store import InMemoryCheckpointStore
from audiochunker.transport.base import AbstractTransport


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without I/O")
    config.addinivalue_line("markers", "integration: tests spanning several components")


class FakeSourceHandle(SegmentSourceHandle):
    """Source handle that flushes scripted payloads synchronously."""

    def __init__(self, default_payload: bytes = b"\x01\x02\x03\x04"):
        self.default_payload = default_payload
        self.script = deque()
        self.callback = None
        self.rotations = 0
        self.final_flushes = 0
        self.paused = False
        self.closed = False

    def queue_payloads(self, *payloads: bytes) -> None:
        self.script.extend(payloads)

    def _next_window(self, final: bool) -> FlushedWindow:
        payload = self.script.popleft() if self.script else self.default_payload
        return FlushedWindow(payload=payload, mime_type="audio/wav", final=final)

    def on_flush(self, callback):
        self.callback = callback

    def request_flush_and_rotate(self):
        self.rotations += 1
        self.callback(self._next_window(final=False))

    def request_final_flush(self):
        self.final_flushes += 1
        self.callback(self._next_window(final=True))

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False

    def close(self):
        self.closed = True


class FakeSegmentSource(SegmentSource):
    """Segment source handing out FakeSourceHandles."""

    def __init__(self, fail_open: bool = False, fixed_origin_ms: Optional[int] = None,
                 supports_resume: bool = True):
        self.fail_open = fail_open
        self.fixed_origin_ms = fixed_origin_ms
        self.supports_resume = supports_resume
        self.handles = []
        self.configs = []

    def open(self, config: SourceConfig) -> FakeSourceHandle:
        self.configs.append(config)
        if self.fail_open:
            raise CaptureError("no input device")
        handle = FakeSourceHandle()
        self.handles.append(handle)
        return handle

    @property
    def handle(self) -> FakeSourceHandle:
        return self.handles[-1]


class RecordingTransport(AbstractTransport):
    """Transport that records calls instead of talking to a collector."""

    def __init__(self, fail_uploads: bool = False, finalize_failures: int = 0, finalize_result=None):
        self.fail_uploads = fail_uploads
        self.finalize_failures = finalize_failures
        self.finalize_result = finalize_result
        self.attempts = []
        self.segments = []
        self.finalize_requests = []
        self.active = 0
        self.max_active = 0
        # Set to an asyncio.Event inside a test to hold uploads until it is set
        self.release: Optional[asyncio.Event] = None

    async def upload(self, segment):
        self.attempts.append(segment)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.release is not None:
                await self.release.wait()
            else:
                await asyncio.sleep(0)
            if self.fail_uploads:
                raise DeliveryError("collector unavailable", seq=segment.seq)
            self.segments.append(segment)
        finally:
            self.active -= 1

    async def finalize(self, request):
        self.finalize_requests.append(request)
        if self.finalize_failures > 0:
            self.finalize_failures -= 1
            raise FinalizeError("Server responded with 503: busy")
        return self.finalize_result


class FakeCollector:
    """In-process aiohttp collector exposing /upload-chunk and /finalize."""

    def __init__(self):
        self.uploads = []
        self.finalized = []
        self.upload_status = 200
        self.finalize_status = 200
        self.finalize_body = ""
        self.server = None

    async def _upload(self, request):
        form = await request.post()
        upload = form["file"]
        self.uploads.append({
            "fields": {key: value for key, value in form.items() if key != "file"},
            "filename": upload.filename,
            "content_type": upload.content_type,
            "payload": upload.file.read(),
        })
        text = "" if self.upload_status < 300 else "collector unavailable"
        return web.Response(status=self.upload_status, text=text)

    async def _finalize(self, request):
        self.finalized.append(await request.json())
        return web.Response(status=self.finalize_status, text=self.finalize_body)

    async def start(self) -> str:
        """Start the server and return its base URL."""
        app = web.Application()
        app.router.add_post("/upload-chunk", self._upload)
        app.router.add_post("/finalize", self._finalize)
        self.server = test_utils.TestServer(app)
        await self.server.start_server()
        return str(self.server.make_url("/")).rstrip("/")

    async def close(self) -> None:
        if self.server is not None:
            await self.server.close()


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def fake_source():
    return FakeSegmentSource()


@pytest.fixture
def fake_handle():
    return FakeSourceHandle()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def failing_transport():
    return RecordingTransport(fail_uploads=True)


@pytest.fixture
def memory_store():
    return InMemoryCheckpointStore()


@pytest.fixture
def collector():
    return FakeCollector()


@pytest.fixture
def sample_audio_chunk():
    """Generate a sample audio chunk for testing."""
    # Generate 1024 samples of 16-bit audio (sine wave)
    sample_rate = 16000
    duration = 1024 / sample_rate  # ~0.064 seconds
    freq = 440  # A4 note

    t = np.linspace(0, duration, 1024, False)
    wave_data = np.sin(2 * np.pi * freq * t)

    # Convert to 16-bit integers
    audio_data = (wave_data * 32767).astype(np.int16)
    return audio_data.tobytes()


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        # Configure mock stream
        mock_stream.read.return_value = b'\x00' * 2048  # Silent audio
        mock_stream.stop_stream.return_value = None
        mock_stream.close.return_value = None

        # Configure mock PyAudio instance
        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.terminate.return_value = None
        mock_pyaudio_instance.get_sample_size.return_value = 2

        # Configure mock PyAudio class
        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }


@pytest.fixture
def sample_audio_file(temp_data_dir, sample_audio_chunk):
    """Create a sample WAV file for testing (100 chunks, 102400 frames)."""
    file_path = Path(temp_data_dir) / "test_audio.wav"

    # Create a simple WAV file with test data
    with wave.open(str(file_path), 'wb') as wf:
        wf.setnchannels(1)  # Mono
        wf.setsampwidth(2)  # 16-bit
        wf.setframerate(16000)  # 16kHz

        # Write multiple chunks to create a longer file
        for _ in range(100):  # ~6.4 seconds of audio
            wf.writeframes(sample_audio_chunk)

    return str(file_path)


@pytest.fixture
def source_factory():
    """Build FakeSegmentSources with custom behaviour."""
    return FakeSegmentSource


@pytest.fixture
def transport_factory():
    """Build RecordingTransports with custom behaviour."""
    return RecordingTransport
