"""Segmentation scheduler: the rolling recorder rotation loop.

The scheduler is the single authority over window rotation. A timer asks the
source handle to flush the current window and open the next one; flushed
windows are queued and processed by one pump task that assigns each its
sequence number and time range, hands it to the delivery gate and writes a
checkpoint. Rotation never waits for delivery, so a slow upload does not
leave a hole in the recording.

States: IDLE -> ROTATING -> DRAINING -> STOPPED
"""

import asyncio
import logging
import threading
from typing import Callable, Optional

from ..audio.source import SegmentSourceHandle
from ..models.segment import FlushedWindow, Segment, DeliveryOutcome, DeliveryReport
from ..models.session import Session, SessionCheckpoint, CheckpointStatus, now_ms
from ..models.stats import SchedulerState
from ..storage.checkpoint_store import CheckpointStore
from .delivery_gate import DeliveryGate

logger = logging.getLogger(__name__)


class SegmentationScheduler:
    """Turns a capture handle into a contiguous sequence of segments."""

    def __init__(self,
                 handle: SegmentSourceHandle,
                 gate: DeliveryGate,
                 store: CheckpointStore,
                 report_callback: Optional[Callable[[DeliveryReport], None]] = None,
                 auto_rotate: bool = True,
                 clock: Callable[[], int] = now_ms):
        """Initialize the scheduler.

        Args:
            handle: Open segment source handle
            gate: Delivery gate used for every non-empty window
            store: Checkpoint store updated after every delivery attempt
            report_callback: Called with a DeliveryReport per processed window
            auto_rotate: Rotate on a timer every timeslice; when False the
                         caller drives rotation with rotate()
            clock: Wall clock in milliseconds, used for fresh sessions
        """
        self.handle = handle
        self.gate = gate
        self.store = store
        self.report_callback = report_callback
        self.auto_rotate = auto_rotate
        self.clock = clock

        self.state = SchedulerState.IDLE
        self.session: Optional[Session] = None
        self.timeslice_ms = 0
        self.resumed = False

        # Cursor: slot assigned to the next processed window
        self._seq = 0
        self._start_ms = 0

        self.rotations = 0
        self.dropped = 0
        self._paused = False

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[int] = None
        self._windows: Optional[asyncio.Queue] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._unpaused = asyncio.Event()
        self._wakeup = asyncio.Event()
        self._stopped = asyncio.Event()

    @property
    def seq(self) -> int:
        return self._seq

    @property
    def start_ms(self) -> int:
        return self._start_ms

    @property
    def is_paused(self) -> bool:
        return self._paused

    async def start(self,
                    session: Session,
                    timeslice_ms: int,
                    resume_from: Optional[SessionCheckpoint] = None,
                    origin_ms: Optional[int] = None) -> None:
        """Begin the rotation loop.

        Continues from resume_from when it is an active checkpoint of the same
        session, otherwise starts at seq 0 and origin_ms (wall clock if None).
        """
        if self.state is not SchedulerState.IDLE:
            raise RuntimeError(f"Scheduler already started (state={self.state.value})")
        if timeslice_ms < 1:
            raise ValueError(f"timeslice_ms must be positive, got: {timeslice_ms}")

        self.session = session
        self.timeslice_ms = timeslice_ms
        self.resumed = (resume_from is not None
                        and resume_from.is_active
                        and resume_from.matches(session)
                        and resume_from.seq >= 0)

        if self.resumed:
            self._seq = resume_from.seq
            self._start_ms = resume_from.start_ms
            self.timeslice_ms = resume_from.timeslice_ms or timeslice_ms
            logger.info(f"Resuming session {session.session_id} at seq={self._seq} "
                        f"startMs={self._start_ms}")
        else:
            if resume_from is not None:
                logger.info(f"Ignoring checkpoint of session {resume_from.session_id} "
                            f"(status={resume_from.status.value}), starting fresh")
            self._seq = 0
            self._start_ms = origin_ms if origin_ms is not None else self.clock()
            logger.info(f"Starting session {session.session_id} at startMs={self._start_ms}")

        self._loop = asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()
        self._windows = asyncio.Queue()
        self._unpaused.set()
        self.handle.on_flush(self._on_flush)

        self.state = SchedulerState.ROTATING
        self._persist(CheckpointStatus.ACTIVE)

        self._pump_task = asyncio.create_task(self._pump())
        if self.auto_rotate:
            self._timer_task = asyncio.create_task(self._run_timer())

    def rotate(self) -> bool:
        """Flush the current window and open the next one now.

        Returns:
            True if a rotation was requested
        """
        if self.state is not SchedulerState.ROTATING:
            logger.warning(f"Cannot rotate while {self.state.value}")
            return False
        if self._paused:
            logger.debug("Rotation suspended while paused")
            return False

        self.rotations += 1
        try:
            self.handle.request_flush_and_rotate()
        except Exception as e:
            logger.error(f"Rotation #{self.rotations} failed: {e}", exc_info=True)
            return False
        return True

    def pause(self) -> bool:
        """Suspend timer-driven rotation."""
        if self.state is not SchedulerState.ROTATING or self._paused:
            logger.warning(f"Cannot pause scheduler (state={self.state.value}, paused={self._paused})")
            return False
        self._paused = True
        self._unpaused.clear()
        self._wakeup.set()
        return True

    def resume(self) -> bool:
        """Resume timer-driven rotation; the next rotation is a full timeslice away."""
        if self.state is not SchedulerState.ROTATING or not self._paused:
            logger.warning(f"Cannot resume scheduler (state={self.state.value}, paused={self._paused})")
            return False
        self._paused = False
        self._unpaused.set()
        return True

    async def stop(self) -> bool:
        """Flush the last window, wait for its delivery attempt and stop.

        Returns:
            True if this call stopped a running loop, False if there was
            nothing to stop or another call is already draining it
        """
        if self.state in (SchedulerState.IDLE, SchedulerState.STOPPED):
            logger.warning(f"No segmentation loop is running (state={self.state.value})")
            return False
        if self.state is SchedulerState.DRAINING:
            logger.info("Scheduler already draining, waiting for it to stop")
            await self._stopped.wait()
            return False

        logger.info(f"Stopping segmentation loop for session {self.session.session_id}")
        self.state = SchedulerState.DRAINING
        self._paused = False
        self._unpaused.set()
        self._wakeup.set()
        if self._timer_task:
            await self._timer_task

        try:
            self.handle.request_final_flush()
        except Exception as e:
            logger.error(f"Final flush failed: {e}", exc_info=True)
            self._enqueue(None)

        await self._pump_task
        return True

    def abort(self) -> bool:
        """Stop at once without draining or writing a ready checkpoint.

        The last active checkpoint stays in place, so the session resumes
        from it as after a crash. Windows not yet delivered are discarded.

        Returns:
            True if a running loop was aborted
        """
        if self.state in (SchedulerState.IDLE, SchedulerState.STOPPED):
            return False

        logger.info(f"Aborting segmentation loop for session {self.session.session_id} at seq={self._seq}")
        self.state = SchedulerState.STOPPED
        for task in (self._timer_task, self._pump_task):
            if task is not None:
                task.cancel()
        self._stopped.set()
        return True

    async def wait_for_deliveries(self) -> None:
        """Wait until every window flushed so far has been processed."""
        if self._windows is not None:
            await self._windows.join()

    def _on_flush(self, window: FlushedWindow) -> None:
        # Sources may flush from their own capture thread
        if threading.get_ident() == self._loop_thread:
            self._enqueue(window)
        else:
            self._loop.call_soon_threadsafe(self._enqueue, window)

    def _enqueue(self, window: Optional[FlushedWindow]) -> None:
        if self.state is SchedulerState.STOPPED:
            logger.warning("Discarding window flushed after the scheduler stopped")
            return
        self._windows.put_nowait(window)

    async def _run_timer(self) -> None:
        interval = self.timeslice_ms / 1000.0
        while self.state is SchedulerState.ROTATING:
            await self._unpaused.wait()
            if self.state is not SchedulerState.ROTATING:
                break
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=interval)
            except asyncio.TimeoutError:
                self.rotate()

    async def _pump(self) -> None:
        while True:
            window = await self._windows.get()
            try:
                if window is None:
                    break
                await self._process_window(window)
                if window.final:
                    break
            finally:
                self._windows.task_done()

        self.state = SchedulerState.STOPPED
        self._persist(CheckpointStatus.READY)
        self._stopped.set()
        logger.info(f"Segmentation loop stopped at seq={self._seq} "
                    f"(delivered={self.gate.delivered}, failed={self.gate.failed}, dropped={self.dropped})")

    async def _process_window(self, window: FlushedWindow) -> None:
        seq = self._seq
        start_ms = self._start_ms
        end_ms = start_ms + self.timeslice_ms
        error = None

        if window.size == 0:
            # Empty windows still consume their slot to keep time ranges contiguous
            outcome = DeliveryOutcome.DROPPED
            self.dropped += 1
            logger.info(f"Dropped empty window seq={seq}")
        else:
            segment = Segment(
                session_id=self.session.session_id,
                seq=seq,
                start_ms=start_ms,
                end_ms=end_ms,
                payload=window.payload,
                mime_type=window.mime_type,
                participant_refs=dict(self.session.participant_refs),
            )
            outcome = await self.gate.deliver(segment)
            if outcome is DeliveryOutcome.FAILED:
                error = self.gate.last_error

        self._seq = seq + 1
        self._start_ms = end_ms
        self._persist(CheckpointStatus.ACTIVE)

        if self.report_callback:
            report = DeliveryReport(
                session_id=self.session.session_id,
                seq=seq,
                start_ms=start_ms,
                end_ms=end_ms,
                size=window.size,
                outcome=outcome,
                error=error,
            )
            try:
                self.report_callback(report)
            except Exception as e:
                logger.error(f"Delivery report callback failed for seq={seq}: {e}", exc_info=True)

    def _persist(self, status: CheckpointStatus) -> None:
        self.store.save(SessionCheckpoint(
            status=status,
            session_id=self.session.session_id,
            seq=self._seq,
            start_ms=self._start_ms,
            timeslice_ms=self.timeslice_ms,
            participant_refs=dict(self.session.participant_refs),
            updated_at=now_ms(),
        ))
