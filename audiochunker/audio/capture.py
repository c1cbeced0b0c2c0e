"""Microphone segment source backed by PyAudio."""

import logging
from typing import Optional

import pyaudio

from ..errors import CaptureError
from .source import SegmentSource, SourceConfig
from .window import BufferedSourceHandle

logger = logging.getLogger(__name__)


class MicrophoneHandle(BufferedSourceHandle):
    """Continuous microphone capture split into windows on request."""

    def __init__(self, config: SourceConfig, device_index: Optional[int] = None,
                 format: int = pyaudio.paInt16):
        super().__init__("Microphone")
        self.sample_rate = config.sample_rate
        self.channels = config.channels
        self.chunk_size = config.chunk_size
        self.device_index = device_index
        self.format = format

        # PyAudio instance
        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream = None

    def _open_stream(self) -> None:
        try:
            self.pyaudio_instance = pyaudio.PyAudio()
            self.sample_width = self.pyaudio_instance.get_sample_size(self.format)
            self.stream = self.pyaudio_instance.open(
                format=self.format,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                input_device_index=self.device_index,
                frames_per_buffer=self.chunk_size,
                stream_callback=None
            )
        except Exception as e:
            self._close_stream()
            raise CaptureError(f"Could not open microphone: {e}") from e

        logger.info(f"Audio stream opened: {self.sample_rate}Hz, "
                    f"{self.chunk_size} samples/chunk")

    def _read_chunk(self) -> Optional[bytes]:
        return self.stream.read(self.chunk_size, exception_on_overflow=False)

    def _close_stream(self) -> None:
        # Clean up audio resources
        if self.stream:
            self.stream.stop_stream()
            self.stream.close()
            self.stream = None
        if self.pyaudio_instance:
            self.pyaudio_instance.terminate()
            self.pyaudio_instance = None


class MicrophoneSegmentSource(SegmentSource):
    """Opens the default (or a chosen) input device."""

    def __init__(self, device_index: Optional[int] = None):
        self.device_index = device_index

    def open(self, config: SourceConfig) -> MicrophoneHandle:
        handle = MicrophoneHandle(config, device_index=self.device_index)
        handle.start()
        return handle
