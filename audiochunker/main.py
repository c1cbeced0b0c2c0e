"""Main application entry point for audiochunker."""

import sys
import time
import asyncio
import argparse
import logging
from pathlib import Path
from typing import Dict, List, Optional

from pubsub import pub
from rich.console import Console
from rich.table import Table

from . import __version__
from .audio.file_source import FileSegmentSource
from .audio.source import SegmentSource, SourceConfig
from .config import AudioChunkerConfig
from .errors import CaptureError, FinalizeError
from .models.segment import DeliveryOutcome, DeliveryReport
from .models.session import Session
from .models.stats import LifecycleEvent, LifecycleState
from .services.publisher import RecorderPublisher
from .services.session_controller import SessionController
from .storage.checkpoint_store import JsonFileCheckpointStore
from .transport.http_transport import HttpTransport

logger = logging.getLogger(__name__)


class Recorder:
    """Wires configuration, source, transport and checkpoint store into one session."""

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None):
        # Load configuration
        self.config = AudioChunkerConfig(config_path)
        # Set up logging (override config with command line if specified)
        level = log_level or self.config.get('logging.level', 'INFO')
        setup_logging(self.config, level)
        self.console = Console()
        self.may_recover = True
        self.publisher: Optional[RecorderPublisher] = None
        self.controller: Optional[SessionController] = None

    def init(self, session: Optional[Session] = None) -> SessionController:
        logger.info("Initializing services...")

        source_config = SourceConfig(
            sample_rate=self.config.get('audio.sample_rate', 16000),
            chunk_size=self.config.get('audio.chunk_size', 1024),
            channels=self.config.get('audio.channels', 1),
        )
        transport = HttpTransport(
            base_url=self.config.get('transport.base_url'),
            upload_path=self.config.get('transport.upload_path'),
            finalize_path=self.config.get('transport.finalize_path'),
            timeout_seconds=self.config.get('transport.timeout_seconds'),
        )
        store = JsonFileCheckpointStore(
            self.config.get_data_directory(),
            slot=self.config.get('storage.checkpoint_slot'),
        )

        self.publisher = RecorderPublisher()
        pub.subscribe(self._on_report, self.publisher.segment_topic)
        pub.subscribe(self._on_lifecycle, self.publisher.lifecycle_topic)

        self.controller = SessionController(
            source=self._create_source(),
            transport=transport,
            store=store,
            timeslice_ms=self.config.get_timeslice_ms(),
            session=session,
            source_config=source_config,
            extra_metadata={"methodType": self.config.get('session.method_type', 'GENERAL')},
            publisher=self.publisher,
        )
        return self.controller

    def _create_source(self) -> SegmentSource:
        mode = self.config.get('recorder.mode', 'mic')
        if mode == 'file':
            path = self.config.get('file.path')
            if not path:
                raise ValueError("File mode requires file.path (or --file)")
            return FileSegmentSource(path, playback_rate=float(self.config.get('file.playback_rate', 1.0)))
        if mode == 'mic':
            from .audio.capture import MicrophoneSegmentSource
            return MicrophoneSegmentSource(device_index=self.config.get('audio.device_index'))
        raise ValueError(f"Unknown recorder mode: {mode}")

    async def run(self, duration: Optional[float], finalize: bool) -> None:
        controller = self.controller
        recovered = controller.recover() if self.may_recover else None
        if recovered is not None:
            self.console.print(f"♻️  Recovered session {recovered.session_id} "
                               f"({recovered.status.value}, seq={recovered.seq})", style="yellow")

        if controller.state is LifecycleState.IDLE:
            await controller.start()
            try:
                await self._wait(duration)
            except asyncio.CancelledError:
                # Leave the checkpoint active so the next run resumes this session
                controller.interrupt()
                raise
            finally:
                if controller.state in (LifecycleState.RECORDING, LifecycleState.PAUSED):
                    await controller.stop()

        if finalize:
            try:
                result = await controller.finalize()
                self.console.print(f"✅ Finalized: {result!r}", style="green")
            except FinalizeError as e:
                self.console.print(f"❌ Finalize failed, session kept for retry: {e}", style="red")

        self.print_summary()

    async def _wait(self, duration: Optional[float]) -> None:
        started = time.monotonic()
        while True:
            if duration and time.monotonic() - started >= duration:
                break
            error = self.controller.capture_error
            if error is not None:
                raise CaptureError(f"Capture failed during recording: {error}")
            if self.controller.source_exhausted:
                logger.info("Source exhausted, stopping")
                break
            await asyncio.sleep(0.2)

    def _on_report(self, report: DeliveryReport) -> None:
        if report.outcome is DeliveryOutcome.DELIVERED:
            self.console.print(f"⬆️  seq={report.seq} {report.start_ms}-{report.end_ms}ms "
                               f"({report.size} bytes)")
        elif report.outcome is DeliveryOutcome.FAILED:
            self.console.print(f"⚠️  seq={report.seq} upload failed: {report.error}", style="red")
        else:
            self.console.print(f"·  seq={report.seq} empty window dropped", style="dim")

    def _on_lifecycle(self, event: LifecycleEvent) -> None:
        self.console.print(f"[{event.timestamp.strftime('%H:%M:%S')}] "
                           f"{event.event_type} ({event.state.value})", style="blue")

    def print_summary(self) -> None:
        stats = self.controller.get_stats()
        table = Table(title="Recording session")
        table.add_column("Field")
        table.add_column("Value")
        table.add_row("Session", str(stats.session_id))
        table.add_row("State", stats.state.value)
        table.add_row("Next seq", str(stats.seq))
        table.add_row("Sent", str(stats.chunks_sent))
        table.add_row("Errors", str(stats.errors))
        table.add_row("Dropped", str(stats.dropped))
        if stats.capture_error:
            table.add_row("Capture error", stats.capture_error)
        self.console.print(table)

    def cleanup(self) -> None:
        if self.publisher:
            pub.unsubscribe(self._on_report, self.publisher.segment_topic)
            pub.unsubscribe(self._on_lifecycle, self.publisher.lifecycle_topic)


def parse_participants(values: List[str]) -> Dict[str, str]:
    """Parse repeated ``role=id`` arguments."""
    participants = {}
    for value in values or []:
        role, sep, ref = value.partition("=")
        if not sep or not role or not ref:
            raise ValueError(f"Participant must look like role=id, got: {value}")
        participants[role] = ref
    return participants


def setup_logging(config, level: str = "INFO") -> None:

    """Set up logging configuration from YAML config."""
    # Get log file path from config
    log_file_path = config.get('logging.file_path', 'data/logs/audiochunker.log')
    console_output = config.get('logging.console_output', True)

    # Create logs directory if it doesn't exist
    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    # Set up handlers
    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Console handler - only if enabled in config
    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    # Log startup
    logger = logging.getLogger(__name__)
    logger.info("="*50)
    logger.info("audiochunker starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("="*50)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="audiochunker - record audio and deliver it as fixed-duration segments",
        epilog="Re-run with the same --session-id (or none) to resume an interrupted session"
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: built-in defaults)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config, INFO)"
    )

    parser.add_argument(
        "--mode",
        choices=["mic", "file"],
        help="Capture from the microphone or play back an audio file (overrides config)"
    )

    parser.add_argument(
        "--file",
        type=str,
        help="WAV file to chunk in file mode (overrides config)"
    )

    parser.add_argument(
        "--playback-rate",
        type=float,
        help="Playback speed multiplier for file mode (overrides config)"
    )

    parser.add_argument(
        "--duration",
        type=float,
        help="Seconds to record before stopping (default: until the file ends or Ctrl+C)"
    )

    parser.add_argument(
        "--session-id",
        type=str,
        help="Session id (default: recovered from checkpoint or random)"
    )

    parser.add_argument(
        "--timeslice-ms",
        type=int,
        help="Segment duration in milliseconds (overrides config)"
    )

    parser.add_argument(
        "--participant",
        action="append",
        default=[],
        metavar="ROLE=ID",
        help="Participant reference forwarded with every segment, e.g. therapist=150 (repeatable)"
    )

    parser.add_argument(
        "--method-type",
        type=str,
        help="Method type sent with finalize (overrides config)"
    )

    parser.add_argument(
        "--finalize",
        action="store_true",
        help="Finalize the session after recording stops"
    )

    parser.add_argument(
        "--clear",
        action="store_true",
        help="Discard the persisted session checkpoint and exit"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"audiochunker v{__version__}"
    )
    return parser


def apply_overrides(config: AudioChunkerConfig, args: argparse.Namespace) -> None:
    """Apply command line overrides to the loaded configuration."""
    if args.mode is not None:
        config.set('recorder.mode', args.mode)
    if args.file is not None:
        config.set('recorder.mode', 'file')
        config.set('file.path', args.file)
    if args.playback_rate is not None:
        config.set('file.playback_rate', args.playback_rate)
    if args.timeslice_ms is not None:
        config.set('recorder.timeslice_ms', args.timeslice_ms)
    if args.method_type:
        config.set('session.method_type', args.method_type)
    participants = parse_participants(args.participant)
    if participants:
        merged = config.get_participants()
        merged.update(participants)
        config.set('session.participants', merged)


def main() -> None:
    """Main entry point for audiochunker."""
    args = build_parser().parse_args()

    recorder = None
    try:
        recorder = Recorder(args.config, args.log_level)
        apply_overrides(recorder.config, args)

        participants = recorder.config.get_participants()
        if args.session_id:
            session = Session(session_id=args.session_id, participant_refs=participants)
        else:
            session = Session(participant_refs=participants)
        controller = recorder.init(session)
        # An explicit session id only resumes its own checkpoint
        recorder.may_recover = args.session_id is None

        if args.clear:
            controller.clear_checkpoint()
            print("🧹 Persisted session cleared")
            return

        asyncio.run(recorder.run(args.duration, args.finalize))
    except KeyboardInterrupt:
        print("\n👋 Interrupted - the checkpoint was kept, run again to resume")
    except CaptureError as e:
        print(f"❌ Capture error: {e}")
        logging.error(f"Capture error: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"❌ Error: {e}")
        logging.error(f"Application error: {e}")
        sys.exit(1)
    finally:
        if recorder is not None and recorder.controller is not None:
            recorder.cleanup()


if __name__ == "__main__":
    main()
