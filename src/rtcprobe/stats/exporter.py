"""
Report history and ticket assembly.
"""

import logging
import statistics
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from rtcprobe.core.config import Config
from rtcprobe.stats.models import CustomEvent, MediaKind, Report, Ticket

logger = logging.getLogger(__name__)


class Exporter:
    """
    Keeps the reports and events of one session and builds its ticket.

    Holds the reference report, the last two reports, the full ordered
    report list and the event log. Reusable across sessions through reset().
    """

    def __init__(self, config: Config, probe_id: str = ""):
        self._config = config
        self._probe_id = probe_id
        self._start: Optional[datetime] = None
        self._end: Optional[datetime] = None
        self._reference: Optional[Report] = None
        self._last: Optional[Report] = None
        self._before_last: Optional[Report] = None
        self._reports: List[Report] = []
        self._events: List[CustomEvent] = []

    def start(self) -> datetime:
        """Record the session start time."""
        self._start = datetime.now(timezone.utc)
        self._end = None
        return self._start

    def stop(self) -> Ticket:
        """Record the session stop time and build the ticket."""
        self._end = datetime.now(timezone.utc)
        session = self._config.session
        ticket = Ticket(
            session_name=session.name,
            call_id=session.call_id,
            user_id=session.user_id,
            probe_id=self._probe_id,
            started=self._start,
            ended=self._end,
            reports=list(self._reports),
            events=list(self._events),
            summary=self._summarize(),
        )
        logger.debug(
            f"{self._probe_id}: ticket built with {len(ticket.reports)} report(s) "
            f"and {len(ticket.events)} event(s)"
        )
        return ticket

    def reset(self) -> None:
        """Forget everything from the previous session."""
        self._start = None
        self._end = None
        self._reference = None
        self._last = None
        self._before_last = None
        self._reports = []
        self._events = []

    def save_reference_report(self, report: Report) -> None:
        self._reference = report

    def add_report(self, report: Report) -> None:
        self._before_last = self._last
        self._last = report
        self._reports.append(report)

    def add_custom_event(self, event: CustomEvent) -> None:
        self._events.append(event)

    def get_reference_report(self) -> Optional[Report]:
        return self._reference

    def get_last_report(self) -> Optional[Report]:
        return self._last

    def get_before_last_report(self) -> Optional[Report]:
        return self._before_last

    def get_reports_number(self) -> int:
        return len(self._reports)

    @property
    def reports(self) -> List[Report]:
        return list(self._reports)

    @property
    def events(self) -> List[CustomEvent]:
        return list(self._events)

    @property
    def started(self) -> Optional[datetime]:
        return self._start

    def update_config(self, config: Config) -> None:
        self._config = config

    def _summarize(self) -> Dict[str, Any]:
        """Aggregate MOS per kind/direction and count events by category."""
        scores: Dict[str, List[float]] = {}
        for report in self._reports:
            for stream in report.bucket(MediaKind.AUDIO).streams.values():
                suffix = stream.direction.suffix
                for key in (f"mos_{suffix}", f"mos_emodel_{suffix}"):
                    value = stream.values.get(key)
                    if value is not None:
                        scores.setdefault(f"audio_{key}", []).append(value)

        summary: Dict[str, Any] = {
            "reports": len(self._reports),
            "events": dict(Counter(e.category_name for e in self._events)),
        }
        for key, values in sorted(scores.items()):
            summary[key] = {
                "min": min(values),
                "avg": round(statistics.mean(values), 2),
                "max": max(values),
            }
        return summary
