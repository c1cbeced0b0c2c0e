"""Unit tests for command line handling."""

import asyncio
import logging
import pytest
from pathlib import Path
from unittest.mock import Mock

from audiochunker.audio.file_source import FileSegmentSource
from audiochunker.config import AudioChunkerConfig
from audiochunker.errors import CaptureError
from audiochunker.main import Recorder, apply_overrides, build_parser, parse_participants
from audiochunker.models.session import Session, SessionCheckpoint, CheckpointStatus
from audiochunker.models.stats import LifecycleState


@pytest.fixture
def config_file(temp_data_dir):
    path = Path(temp_data_dir) / "audiochunker.yaml"
    path.write_text(
        "storage:\n"
        "  data_directory: state\n"
        "logging:\n"
        "  file_path: logs/test.log\n"
        "  console_output: false\n",
        encoding="utf-8",
    )
    yield str(path)
    # setup_logging replaces the root handlers; release the log file
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if isinstance(handler, logging.FileHandler):
            handler.close()
            root_logger.removeHandler(handler)


@pytest.mark.unit
class TestParseParticipants:
    """Test cases for role=id parsing."""

    def test_parse(self):
        assert parse_participants(["therapist=150", "patient=151"]) == {"therapist": "150", "patient": "151"}

    def test_empty(self):
        assert parse_participants([]) == {}
        assert parse_participants(None) == {}

    @pytest.mark.parametrize("value", ["therapist", "=150", "therapist="])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_participants([value])


@pytest.mark.unit
class TestCommandLine:
    """Test cases for argument parsing and config overrides."""

    def test_overrides(self):
        """Test that flags take precedence over the configuration."""
        args = build_parser().parse_args([
            "--file", "talk.wav",
            "--playback-rate", "4",
            "--timeslice-ms", "5000",
            "--participant", "therapist=150",
            "--method-type", "CBT",
        ])
        config = AudioChunkerConfig()
        config.set('session.participants', {"patient": "151"})

        apply_overrides(config, args)

        assert config.get('recorder.mode') == 'file'
        assert config.get('file.path') == 'talk.wav'
        assert config.get('file.playback_rate') == 4.0
        assert config.get_timeslice_ms() == 5000
        assert config.get('session.method_type') == 'CBT'
        assert config.get_participants() == {"patient": "151", "therapist": "150"}

    def test_no_overrides(self):
        """Test that an empty command line leaves the configuration alone."""
        args = build_parser().parse_args([])
        config = AudioChunkerConfig()

        apply_overrides(config, args)

        assert config.get('recorder.mode') == 'mic'
        assert config.get_timeslice_ms() == 100000
        assert args.finalize is False
        assert args.clear is False

    def test_zero_overrides_reach_validation(self):
        """Test that zero values are applied and then rejected, not ignored."""
        args = build_parser().parse_args(["--timeslice-ms", "0", "--playback-rate", "0"])
        config = AudioChunkerConfig()

        apply_overrides(config, args)

        assert config.get('file.playback_rate') == 0.0
        with pytest.raises(ValueError):
            config.get_timeslice_ms()


@pytest.mark.unit
class TestRecorder:
    """Test cases for Recorder wiring."""

    def test_init_file_mode(self, config_file, sample_audio_file):
        """Test that file mode wires a file source and the JSON checkpoint store."""
        recorder = Recorder(config_file)
        recorder.config.set('recorder.mode', 'file')
        recorder.config.set('file.path', sample_audio_file)
        try:
            controller = recorder.init(Session(session_id="cli1"))
        finally:
            recorder.cleanup()

        assert isinstance(controller.source, FileSegmentSource)
        assert controller.session.session_id == "cli1"
        assert controller.extra_metadata == {"methodType": "GENERAL"}
        assert controller.store.path.parent == Path(config_file).parent / "state"

    def test_file_mode_requires_path(self, config_file):
        """Test that file mode without a file is rejected."""
        recorder = Recorder(config_file)
        recorder.config.set('recorder.mode', 'file')

        with pytest.raises(ValueError):
            recorder.init()

    def test_run_finalizes_recovered_ready_session(self, config_file, sample_audio_file):
        """Test that a ready checkpoint from a previous run is finalized without recording."""
        recorder = Recorder(config_file)
        recorder.config.set('recorder.mode', 'file')
        recorder.config.set('file.path', sample_audio_file)
        try:
            controller = recorder.init()
            controller.store.save(SessionCheckpoint(status=CheckpointStatus.READY, session_id="old",
                                                    seq=3, start_ms=3000, timeslice_ms=1000))
            finalized = []

            async def fake_finalize(request):
                finalized.append(request)
                return {"ok": True}

            controller.transport.finalize = fake_finalize

            asyncio.run(recorder.run(duration=None, finalize=True))
        finally:
            recorder.cleanup()

        assert controller.state is LifecycleState.FINALIZED
        assert finalized[0].session_id == "old"
        assert finalized[0].extra_metadata == {"methodType": "GENERAL"}
        assert controller.store.load() is None

    def test_cancelled_run_keeps_checkpoint_active(self, config_file, sample_audio_file):
        """Test that Ctrl+C leaves a resumable checkpoint instead of a ready one."""
        recorder = Recorder(config_file)
        recorder.config.set('recorder.mode', 'file')
        recorder.config.set('file.path', sample_audio_file)
        try:
            controller = recorder.init(Session(session_id="cli2"))

            async def scenario():
                task = asyncio.create_task(recorder.run(duration=None, finalize=False))
                await asyncio.sleep(0.3)
                task.cancel()
                with pytest.raises(asyncio.CancelledError):
                    await task

            asyncio.run(scenario())
        finally:
            recorder.cleanup()

        checkpoint = controller.store.load()
        assert checkpoint.status is CheckpointStatus.ACTIVE
        assert checkpoint.session_id == "cli2"
        assert controller.state is LifecycleState.IDLE
        assert controller.handle is None

    def test_wait_raises_on_capture_failure(self, config_file):
        """Test that a capture failure ends the wait with CaptureError."""
        recorder = Recorder(config_file)
        recorder.controller = Mock(capture_error=OSError("device unplugged"), source_exhausted=False)

        with pytest.raises(CaptureError, match="device unplugged"):
            asyncio.run(recorder._wait(None))
