"""
Session statistics collector.

Drives the sampling of one session: takes a reference report after a start
delay, then polls the snapshot source periodically, normalizes, scores and
diffs every snapshot, and hands the resulting reports and ticket to the
registered callbacks.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from rtcprobe.core.config import Config
from rtcprobe.stats.events import detect
from rtcprobe.stats.exporter import Exporter
from rtcprobe.stats.extractor import extract, merge
from rtcprobe.stats.models import (
    BucketValue,
    CustomEvent,
    EventCategory,
    MediaKind,
    Report,
    SessionState,
    StatEntry,
    Ticket,
)
from rtcprobe.stats.observer import EventSource, SessionEventRecorder
from rtcprobe.stats.scoring import score
from rtcprobe.stats.source import SnapshotSource, to_entries

logger = logging.getLogger(__name__)

CALLBACK_REPORT = "onreport"
CALLBACK_TICKET = "onticket"
CALLBACKS = (CALLBACK_REPORT, CALLBACK_TICKET)

# action -> (states it is allowed from, resulting state)
TRANSITIONS: Dict[str, Tuple[Set[SessionState], SessionState]] = {
    "start": ({SessionState.IDLE}, SessionState.RUNNING),
    "mute": ({SessionState.RUNNING}, SessionState.MUTED),
    "unmute": ({SessionState.MUTED}, SessionState.RUNNING),
    "stop": ({SessionState.RUNNING, SessionState.MUTED}, SessionState.IDLE),
}

ACTIVE_STATES = (SessionState.RUNNING, SessionState.MUTED)


def create_collector_id() -> str:
    return f"coltr-{uuid.uuid4().hex[:8]}"


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class Collector:
    """
    Collects the statistics of one session.

    States are idle, running and muted. Transitions are synchronous and must
    happen on the event loop that runs the collector. At most one sampling
    task is alive per collector.
    """

    def __init__(
        self,
        config: Config,
        source: Optional[SnapshotSource] = None,
        probe_id: Optional[str] = None,
    ):
        self._config = config
        self._source = source
        self._id = probe_id or create_collector_id()
        self._exporter = Exporter(config, self._id)
        self._state = SessionState.IDLE
        self._callbacks: Dict[str, Callable[[Any], None]] = {}
        self._recorder = SessionEventRecorder(self)

        self._session = 0
        self._task: Optional[asyncio.Task] = None
        self._watchdog: Optional[asyncio.Task] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._started_time: Optional[datetime] = None

        logger.info(f"{self._id}: new collector created")

    # State machine

    def _transition(self, action: str) -> bool:
        allowed, target = TRANSITIONS[action]
        if self._state not in allowed:
            logger.warning(f"{self._id}: can't {action} - state is {self._state.value}")
            return False
        logger.debug(f"{self._id}: {self._state.value} -> {target.value}")
        self._state = target
        return True

    def _is_current(self, session: int) -> bool:
        return self._session == session and self._state in ACTIVE_STATES

    def start(self) -> None:
        """Start a new sampling session."""
        if self._source is None:
            logger.error(f"{self._id}: can't start - no snapshot source")
            return

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.error(f"{self._id}: can't start - no running event loop")
            return

        if not self._transition("start"):
            return

        self._cancel_tasks()
        self._session += 1
        self._wakeup = asyncio.Event()
        logger.info(f"{self._id}: starting...")
        self._task = asyncio.create_task(self._run(self._session, self._wakeup))

    def mute(self) -> None:
        """Suspend reports and events; the sampling clock keeps running."""
        if self._transition("mute"):
            logger.info(f"{self._id}: muted")

    def unmute(self) -> None:
        if self._transition("unmute"):
            logger.info(f"{self._id}: unmuted")

    def stop(self, forced: bool = False) -> None:
        """
        Stop the session and emit its ticket.

        A poll in flight is not aborted; its report is discarded.
        """
        if not self._transition("stop"):
            return

        logger.info(f"{self._id}: stopping{' by watchdog' if forced else ''}...")
        if self._wakeup is not None:
            self._wakeup.set()
        self._cancel_watchdog()

        ticket = self._exporter.stop()
        if self._config.ticket.enabled:
            self._fire(CALLBACK_TICKET, ticket)
        self._exporter.reset()
        self._started_time = None
        logger.info(f"{self._id}: stopped")

    async def wait(self) -> None:
        """Wait until the current sampling task finishes."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _cancel_watchdog(self) -> None:
        if self._watchdog is not None and not self._watchdog.done():
            if self._watchdog is not _current_task():
                self._watchdog.cancel()
        self._watchdog = None

    def _cancel_tasks(self) -> None:
        if self._task is not None and not self._task.done():
            logger.warning(f"{self._id}: clean previous collector")
            self._task.cancel()
        self._task = None
        self._cancel_watchdog()

    # Sampling

    async def _sleep_until(self, deadline: float, wakeup: asyncio.Event) -> None:
        """Sleep until a loop time, or until stop() wakes the session."""
        timeout = deadline - asyncio.get_running_loop().time()
        if timeout <= 0:
            return
        try:
            await asyncio.wait_for(wakeup.wait(), timeout)
        except asyncio.TimeoutError:
            pass

    async def _run(self, session: int, wakeup: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        sampling = self._config.sampling
        refresh = sampling.refresh_every_ms

        logger.debug(f"{self._id}: delay start after {sampling.start_after_ms}ms")
        pre_wait = loop.time()
        await self._sleep_until(pre_wait + sampling.start_after_ms / 1000, wakeup)
        if not self._is_current(session):
            return
        await self._take_reference(session, (loop.time() - pre_wait) * 1000)
        if not self._is_current(session):
            return

        self._started_time = self._exporter.start()
        origin = loop.time()
        logger.info(f"{self._id}: started, sampling every {refresh}ms")

        if sampling.watchdog_enabled:
            # Backstop in case a poll hangs past the deadline
            delay = (sampling.stop_after_ms + 2 * refresh) / 1000
            self._watchdog = asyncio.create_task(self._run_watchdog(session, delay))

        tick = 1
        while self._is_current(session):
            offset_ms = tick * refresh
            if sampling.watchdog_enabled and offset_ms > sampling.stop_after_ms:
                await self._sleep_until(origin + sampling.stop_after_ms / 1000, wakeup)
                if self._is_current(session):
                    logger.info(f"{self._id}: watchdog elapsed after {sampling.stop_after_ms}ms")
                    self.stop(forced=True)
                return

            pre_wait = loop.time()
            await self._sleep_until(origin + offset_ms / 1000, wakeup)
            if not self._is_current(session):
                return
            if self._state == SessionState.MUTED:
                logger.debug(f"{self._id}: tick {tick} skipped (muted)")
            else:
                await self._collect(session, (loop.time() - pre_wait) * 1000)
            tick += 1

    async def _run_watchdog(self, session: int, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._is_current(session):
            logger.warning(f"{self._id}: watchdog fired while a poll was pending")
            self.stop(forced=True)

    async def _poll(self) -> List[StatEntry]:
        return to_entries(await self._source.get_stats())

    async def _take_reference(self, session: int, wait_ms: float) -> None:
        loop = asyncio.get_running_loop()
        pre_time = loop.time()
        try:
            entries = await self._poll()
            report, _ = self.analyze(entries, None, None, None, is_reference=True)
        except Exception as e:
            logger.error(f"{self._id}: can't take reference report - {e}")
            return

        report.experimental["time_to_measure_ms"] = round((loop.time() - pre_time) * 1000, 3)
        report.experimental["time_to_wait_ms"] = round(wait_ms, 3)
        if not self._is_current(session):
            logger.debug(f"{self._id}: reference report discarded (too late)")
            return
        self._exporter.save_reference_report(report)
        logger.debug(f"{self._id}: got reference report")

    async def _collect(self, session: int, wait_ms: float) -> None:
        loop = asyncio.get_running_loop()
        pre_time = loop.time()
        try:
            entries = await self._poll()
            report, events = self.analyze(
                entries,
                self._exporter.get_last_report(),
                self._exporter.get_before_last_report(),
                self._exporter.get_reference_report(),
            )
        except Exception as e:
            logger.error(f"{self._id}: got error - {e}")
            return

        report.experimental["time_to_measure_ms"] = round((loop.time() - pre_time) * 1000, 3)
        report.experimental["time_to_wait_ms"] = round(wait_ms, 3)
        if not self._is_current(session) or self._state != SessionState.RUNNING:
            logger.debug(f"{self._id}: report discarded (too late)")
            return

        self._exporter.add_report(report)
        for event in events:
            self._exporter.add_custom_event(event)
        logger.debug(f"{self._id}: got report #{report.count}")
        self._fire(CALLBACK_REPORT, report)

    def analyze(
        self,
        entries: Iterable[StatEntry],
        previous: Optional[Report],
        before_last: Optional[Report],
        reference: Optional[Report],
        is_reference: bool = False,
    ) -> Tuple[Report, List[CustomEvent]]:
        """
        Build the report of one snapshot.

        Returns:
            The report and the change events it triggered.
        """
        entries = list(entries)
        session = self._config.session
        report = Report.initial(session.name, session.call_id, session.user_id, previous)
        if is_reference:
            report.count = 0

        signals = []
        seen_streams = set()
        for entry in entries:
            if report.timestamp is None and entry.timestamp is not None:
                report.timestamp = entry.timestamp
            extracted = extract(
                entry, report, session.name, reference, entries, self._config.passthrough
            )
            for value in extracted:
                if isinstance(value, BucketValue) and value.ssrc is not None:
                    seen_streams.add((MediaKind(value.bucket), value.ssrc))
            signals.extend(merge(report, extracted))

        # Streams that vanished from the snapshot are not carried further
        for kind in MediaKind:
            streams = report.bucket(kind).streams
            for ssrc in [s for s in streams if (kind, s) not in seen_streams]:
                del streams[ssrc]

        score(report, previous, before_last)
        return report, detect(signals, report, previous)

    # Callbacks and events

    def register_callback(self, name: str, callback: Callable[[Any], None]) -> None:
        if name not in CALLBACKS:
            logger.error(f"{self._id}: can't register callback for '{name}' - unknown callback")
            return
        if name in self._callbacks:
            logger.error(f"{self._id}: can't register callback for '{name}' - already exists")
            return
        self._callbacks[name] = callback
        logger.debug(f"{self._id}: registered callback '{name}'")

    def unregister_callback(self, name: str) -> None:
        if name not in self._callbacks:
            logger.error(f"{self._id}: can't unregister callback for '{name}' - not found")
            return
        del self._callbacks[name]
        logger.debug(f"{self._id}: unregistered callback '{name}'")

    def get_callback(self, name: str) -> Optional[Callable[[Any], None]]:
        return self._callbacks.get(name)

    def _fire(self, name: str, payload: Union[Report, Ticket]) -> None:
        callback = self._callbacks.get(name)
        if callback is None:
            return
        try:
            callback(payload)
        except Exception as e:
            logger.error(f"{self._id}: callback '{name}' failed - {e}")

    def add_custom_event(
        self,
        timestamp: Optional[float],
        category: Union[EventCategory, str],
        name: str,
        description: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append an event to the session log."""
        if not isinstance(category, EventCategory):
            try:
                category = EventCategory(category)
            except ValueError:
                logger.debug(f"{self._id}: custom category '{category}' for event '{name}'")
        self._exporter.add_custom_event(
            CustomEvent(
                timestamp=timestamp,
                category=category,
                name=name,
                description=description,
                data=dict(data or {}),
            )
        )

    def attach(self, source: EventSource) -> None:
        """Record the notifications of a device/connection event source."""
        source.attach(self._recorder)

    def detach(self, source: EventSource) -> None:
        source.detach(self._recorder)

    def update_config(self, config: Config) -> None:
        self._config = config
        self._exporter.update_config(config)

    @property
    def observer(self) -> SessionEventRecorder:
        return self._recorder

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def probe_id(self) -> str:
        return self._id

    @property
    def started_time(self) -> Optional[datetime]:
        return self._started_time

    @property
    def exporter(self) -> Exporter:
        return self._exporter
