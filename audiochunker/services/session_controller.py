"""Session lifecycle controller: Idle -> Recording <-> Paused -> Ready -> Finalized."""

import asyncio
import logging
from typing import Any, Dict, Optional

from ..audio.source import SegmentSource, SegmentSourceHandle, SourceConfig
from ..errors import CaptureError, FinalizeError
from ..models.segment import DeliveryOutcome, DeliveryReport
from ..models.session import Session, SessionCheckpoint, CheckpointStatus, now_ms
from ..models.stats import LifecycleEvent, LifecycleState, RecorderStats
from ..storage.checkpoint_store import CheckpointStore
from ..transport.base import AbstractTransport, FinalizeRequest
from .delivery_gate import DeliveryGate
from .publisher import RecorderPublisher
from .scheduler import SegmentationScheduler

logger = logging.getLogger(__name__)


class SessionController:
    """Owns the segment source and checkpoint for one recording session at a time.

    The controller opens the source, starts a SegmentationScheduler on it,
    and once the scheduler has drained, waits for an explicit finalize() that
    closes the session on the collector and clears the checkpoint.
    """

    def __init__(self,
                 source: SegmentSource,
                 transport: AbstractTransport,
                 store: CheckpointStore,
                 timeslice_ms: int = 100000,
                 session: Optional[Session] = None,
                 source_config: Optional[SourceConfig] = None,
                 extra_metadata: Optional[Dict[str, Any]] = None,
                 publisher: Optional[RecorderPublisher] = None,
                 auto_rotate: bool = True,
                 clock=now_ms):
        """Initialize session controller.

        Args:
            source: Capture capability opened on start()
            transport: Collector transport for uploads and finalize
            store: Checkpoint store
            timeslice_ms: Segment duration in milliseconds
            session: Session identity; a random one is generated if None
            source_config: Capture parameters for the source
            extra_metadata: Extra fields sent with finalize (e.g. methodType)
            publisher: Optional pub/sub publisher for reports and lifecycle events
            auto_rotate: Rotate on a timer (see SegmentationScheduler)
            clock: Wall clock in milliseconds
        """
        if timeslice_ms < 1:
            raise ValueError(f"timeslice_ms must be positive, got: {timeslice_ms}")

        self.source = source
        self.transport = transport
        self.store = store
        self.timeslice_ms = timeslice_ms
        self.session = session or Session()
        self.source_config = source_config or SourceConfig()
        self.extra_metadata = dict(extra_metadata or {})
        self.publisher = publisher
        self.auto_rotate = auto_rotate
        self.clock = clock

        self.state = LifecycleState.IDLE
        self.gate = DeliveryGate(transport)
        self.scheduler: Optional[SegmentationScheduler] = None
        self.handle: Optional[SegmentSourceHandle] = None
        self.dropped = 0
        self.finalize_result: Any = None
        self._capture_error: Optional[Exception] = None
        self._capture_failure_reported = False
        self._recovered_seq = 0

        logger.info(f"SessionController initialized for session {self.session.session_id}")

    def recover(self) -> Optional[SessionCheckpoint]:
        """Detect a session left behind by a previous run.

        An active checkpoint is adopted so that the next start() resumes it; a
        ready checkpoint moves the controller to READY so it can be finalized.

        Returns:
            The recovered checkpoint, or None if there is nothing to recover
        """
        if self.state is not LifecycleState.IDLE:
            logger.warning(f"Cannot recover while {self.state.value}")
            return None

        checkpoint = self.store.load()
        if checkpoint is None:
            return None

        self.session = checkpoint.to_session()
        self._recovered_seq = checkpoint.seq
        if checkpoint.timeslice_ms > 0:
            self.timeslice_ms = checkpoint.timeslice_ms
        self.dropped = 0

        if checkpoint.status is CheckpointStatus.READY:
            self.state = LifecycleState.READY
            logger.info(f"Recovered session {checkpoint.session_id} ready to finalize (seq={checkpoint.seq})")
        else:
            logger.info(f"Recovered active session {checkpoint.session_id} (seq={checkpoint.seq}). "
                        "Start to continue.")
        self._emit("recovered", status=checkpoint.status.value, seq=checkpoint.seq)
        return checkpoint

    def new_session(self, session: Optional[Session] = None) -> Session:
        """Replace the session identity; only allowed while nothing is recording."""
        if self.state not in (LifecycleState.IDLE, LifecycleState.FINALIZED):
            raise ValueError(f"Cannot change session identity while {self.state.value}")
        self.session = session or Session()
        self.state = LifecycleState.IDLE
        self.finalize_result = None
        self._recovered_seq = 0
        logger.info(f"New session: {self.session.session_id}")
        return self.session

    async def start(self) -> bool:
        """Open the source and start segmenting, resuming from the checkpoint if it matches.

        Returns:
            True if recording started, False if the controller was not idle

        Raises:
            CaptureError: if the source could not be opened
        """
        if self.state is not LifecycleState.IDLE:
            logger.warning(f"Cannot start while {self.state.value}")
            return False

        checkpoint = self.store.load() if self.source.supports_resume else None

        try:
            handle = self.source.open(self.source_config)
        except CaptureError as e:
            logger.error(f"Capture error: {e}")
            raise
        except Exception as e:
            logger.error(f"Capture error: {e}")
            raise CaptureError(str(e)) from e

        scheduler = SegmentationScheduler(
            handle,
            self.gate,
            self.store,
            report_callback=self._on_report,
            auto_rotate=self.auto_rotate,
            clock=self.clock,
        )
        resuming = (checkpoint is not None and checkpoint.is_active
                    and checkpoint.matches(self.session))
        if not resuming:
            self.gate.reset()
            self.dropped = 0

        try:
            await scheduler.start(self.session, self.timeslice_ms, resume_from=checkpoint,
                                  origin_ms=self.source.fixed_origin_ms)
        except Exception:
            handle.close()
            raise

        self.handle = handle
        self.scheduler = scheduler
        self._capture_error = None
        self._capture_failure_reported = False
        self.timeslice_ms = scheduler.timeslice_ms
        self.state = LifecycleState.RECORDING
        self._emit("resumed" if scheduler.resumed else "started", seq=scheduler.seq)
        return True

    def pause(self) -> bool:
        """Stop emitting audio; the capture stream stays open."""
        if self.state is not LifecycleState.RECORDING:
            logger.warning(f"Cannot pause while {self.state.value}")
            return False
        self.handle.pause()
        self.scheduler.pause()
        self.state = LifecycleState.PAUSED
        self._emit("paused")
        return True

    def resume(self) -> bool:
        """Resume a paused recording."""
        if self.state is not LifecycleState.PAUSED:
            logger.warning(f"Cannot resume while {self.state.value}")
            return False
        self.handle.resume()
        self.scheduler.resume()
        self.state = LifecycleState.RECORDING
        self._emit("unpaused")
        return True

    async def stop(self) -> bool:
        """Drain the last window, release the source and wait for finalize."""
        if self.state not in (LifecycleState.RECORDING, LifecycleState.PAUSED):
            logger.warning("No recording is active to stop.")
            return False

        logger.info("Stopping recording...")
        drained = False
        try:
            await self.scheduler.stop()
            drained = True
        finally:
            handle = self._detach_handle()
            await asyncio.get_running_loop().run_in_executor(None, handle.close)
            # A failed drain leaves the last active checkpoint to resume from
            self.state = LifecycleState.READY if drained else LifecycleState.IDLE
        self._emit("stopped", seq=self.scheduler.seq)
        return True

    def interrupt(self) -> bool:
        """Release the source without draining the last window.

        The checkpoint stays active, so the next start() (after recover() in
        a new process) resumes this session where delivery left off.
        """
        if self.state not in (LifecycleState.RECORDING, LifecycleState.PAUSED):
            logger.warning("No recording is active to interrupt.")
            return False

        logger.info(f"Interrupting recording of session {self.session.session_id} at seq={self.scheduler.seq}")
        self.scheduler.abort()
        self._detach_handle().close()
        self.state = LifecycleState.IDLE
        self._emit("interrupted", seq=self.scheduler.seq)
        return True

    def _detach_handle(self) -> SegmentSourceHandle:
        handle, self.handle = self.handle, None
        self._capture_error = handle.error
        return handle

    async def finalize(self, extra_metadata: Optional[Dict[str, Any]] = None) -> Any:
        """Close the session on the collector and clear the checkpoint.

        Returns:
            The collector's response: parsed JSON, text or None

        Raises:
            FinalizeError: if the session is not ready or the call failed; in
                           the latter case the checkpoint is kept for a retry
        """
        if self.state is not LifecycleState.READY:
            raise FinalizeError(f"Cannot finalize while {self.state.value}")

        metadata = dict(self.extra_metadata)
        metadata.update(extra_metadata or {})
        request = FinalizeRequest(
            session_id=self.session.session_id,
            participant_refs=dict(self.session.participant_refs),
            extra_metadata=metadata,
        )

        try:
            result = await self.transport.finalize(request)
        except FinalizeError as e:
            logger.error(f"Finalize error: {e}")
            raise
        except Exception as e:
            logger.error(f"Finalize error: {e}")
            raise FinalizeError(str(e)) from e

        self.store.clear()
        self.finalize_result = result
        self.state = LifecycleState.FINALIZED
        logger.info(f"Finalize call completed for session {self.session.session_id}")
        self._emit("finalized")
        return result

    def clear_checkpoint(self) -> None:
        """Discard the persisted session; a ready session goes back to idle."""
        self.store.clear()
        if self.state is LifecycleState.READY:
            self.state = LifecycleState.IDLE
        self._emit("cleared")

    @property
    def source_exhausted(self) -> bool:
        return self.handle is not None and self.handle.exhausted

    @property
    def capture_error(self) -> Optional[Exception]:
        """The error that stopped capture during this recording, if any."""
        if self.handle is not None:
            return self.handle.error
        return self._capture_error

    def get_stats(self) -> RecorderStats:
        """Get current session statistics."""
        error = self.capture_error
        return RecorderStats(
            session_id=self.session.session_id,
            state=self.state,
            seq=self.scheduler.seq if self.scheduler else self._recovered_seq,
            chunks_sent=self.gate.delivered,
            errors=self.gate.failed,
            dropped=self.dropped,
            capture_error=str(error) if error is not None else None,
        )

    def _on_report(self, report: DeliveryReport) -> None:
        if report.outcome is DeliveryOutcome.DROPPED:
            self.dropped += 1
        if self.publisher:
            self.publisher.publish_delivery_report(report)

        error = self.capture_error
        if error is not None and not self._capture_failure_reported:
            self._capture_failure_reported = True
            logger.error(f"Capture error during session {self.session.session_id}: {error}")
            self._emit("capture_failed", error=str(error))

    def _emit(self, event_type: str, **metadata: Any) -> None:
        if not self.publisher:
            return
        self.publisher.publish_lifecycle_event(LifecycleEvent(
            session_id=self.session.session_id,
            event_type=event_type,
            state=self.state,
            metadata=metadata,
        ))
