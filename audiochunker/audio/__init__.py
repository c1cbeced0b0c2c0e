"""Audio sources that produce capture windows.

The PyAudio-backed microphone source lives in ``audiochunker.audio.capture``
and is imported explicitly by callers that record from a device.
"""

from .source import SegmentSource, SegmentSourceHandle, SourceConfig
from .file_source import FileSegmentSource
from .encoding import encode_wav, peak_level, WAV_MIME_TYPE

__all__ = [
    'SegmentSource',
    'SegmentSourceHandle',
    'SourceConfig',
    'FileSegmentSource',
    'encode_wav',
    'peak_level',
    'WAV_MIME_TYPE',
]
