"""
Change detection between consecutive reports.

Every internal signal raised during extraction is checked against the
previous report for the same stream; significant changes become custom
events.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from rtcprobe.stats.models import (
    CustomEvent,
    EventCategory,
    MediaKind,
    Report,
    Signal,
    SignalValue,
    StreamMetrics,
)

logger = logging.getLogger(__name__)

PEAK_RATIO = 10
FRAMERATE_TOLERANCE = 2

EVENT_TRACK_CHANGE = "trackchange"
EVENT_RESOLUTION_CHANGE = "resolutionchange"
EVENT_BYTES_SENT_PEAK = "bytessentpeak"
EVENT_BYTES_RECEIVED_PEAK = "bytesreceivedpeak"
EVENT_SOURCE_ACTIVE_CHANGE = "sourceactivechange"
EVENT_LIMITATION_CHANGE = "limitationchange"
EVENT_PAIR_CHANGE = "pairchange"


def _format_size(size: Optional[Dict[str, Any]]) -> str:
    if not size:
        return "none"
    return f"{size.get('width', 0)}x{size.get('height', 0)}@{size.get('framerate', 0)}fps"


def _size_changed(before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]]) -> bool:
    if not before or not after:
        return False
    if before.get("width") != after.get("width"):
        return True
    return abs((after.get("framerate") or 0) - (before.get("framerate") or 0)) > FRAMERATE_TOLERANCE


def _event(
    report: Report,
    category: EventCategory,
    name: str,
    description: str,
    data: Dict[str, Any],
) -> CustomEvent:
    return CustomEvent(
        timestamp=report.timestamp,
        category=category,
        name=name,
        description=description,
        data=data,
    )


def _stream_data(stream: StreamMetrics) -> Dict[str, Any]:
    return {"ssrc": stream.ssrc, "kind": stream.kind.value, "direction": stream.direction.value}


def _detect_track_change(report, current, previous) -> Optional[CustomEvent]:
    before, after = previous.values.get("track_out"), current.values.get("track_out")
    if before is None or after is None or before == after:
        return None
    return _event(
        report,
        EventCategory.CALL,
        EVENT_TRACK_CHANGE,
        f"{current.kind.value} device changed from track {before} to {after}",
        {**_stream_data(current), "from": before, "to": after},
    )


SIZE_KEYS = (("input_size_out", "input"), ("size_out", "output"))


def _detect_size_change(report, current, previous) -> Optional[CustomEvent]:
    changed = {
        label: (previous.values.get(key), current.values.get(key))
        for key, label in SIZE_KEYS
        if _size_changed(previous.values.get(key), current.values.get(key))
    }
    if not changed:
        return None

    # Output size wins for from/to when both moved
    before, after = changed.get("output") or changed["input"]
    data = {**_stream_data(current), "from": dict(before), "to": dict(after)}
    for label, (old, new) in changed.items():
        data[label] = {"from": dict(old), "to": dict(new)}
    description = ", ".join(
        f"{label} resolution changed from {_format_size(old)} to {_format_size(new)}"
        for label, (old, new) in changed.items()
    )
    return _event(report, EventCategory.QUALITY, EVENT_RESOLUTION_CHANGE, description, data)


def _peak_rule(key: str, active_key: str, name: str, label: str) -> Callable:
    def detect(report, current, previous) -> Optional[CustomEvent]:
        if not current.values.get(active_key):
            return None
        before, after = previous.values.get(key), current.values.get(key)
        # Zero, negative or missing previous delta: nothing to compare against
        if before is None or before <= 0 or after is None:
            return None
        if before * PEAK_RATIO >= after >= before / PEAK_RATIO:
            return None
        return _event(
            report,
            EventCategory.QUALITY,
            name,
            f"{label} jumped from {before} KB to {after} KB on {current.kind.value} stream {current.ssrc}",
            {**_stream_data(current), "from": before, "to": after},
        )
    return detect


def _detect_source_active_change(report, current, previous) -> Optional[CustomEvent]:
    before, after = previous.values.get("active_out"), current.values.get("active_out")
    if before is None or after is None or bool(before) == bool(after):
        return None
    state = "active" if after else "inactive"
    return _event(
        report,
        EventCategory.CALL,
        EVENT_SOURCE_ACTIVE_CHANGE,
        f"{current.kind.value} source on stream {current.ssrc} is now {state}",
        {**_stream_data(current), "from": bool(before), "to": bool(after)},
    )


def _detect_limitation_change(report, current, previous) -> Optional[CustomEvent]:
    before = (previous.values.get("limitation_out") or {}).get("reason")
    after = (current.values.get("limitation_out") or {}).get("reason")
    if before is None or after is None or before == after:
        return None
    return _event(
        report,
        EventCategory.QUALITY,
        EVENT_LIMITATION_CHANGE,
        f"video limitation changed from {before} to {after}",
        {**_stream_data(current), "from": before, "to": after},
    )


STREAM_RULES: Dict[Signal, Callable] = {
    Signal.DEVICE_CHANGED: _detect_track_change,
    Signal.INPUT_SIZE_CHANGED: _detect_size_change,
    Signal.OUTPUT_SIZE_CHANGED: _detect_size_change,
    Signal.BYTES_SENT_CHANGED: _peak_rule(
        "delta_KBytes_out", "active_out", EVENT_BYTES_SENT_PEAK, "bytes sent"
    ),
    Signal.BYTES_RECEIVED_CHANGED: _peak_rule(
        "delta_KBytes_in", "active_in", EVENT_BYTES_RECEIVED_PEAK, "bytes received"
    ),
    Signal.MEDIA_SOURCE_CHANGED: _detect_source_active_change,
    Signal.VIDEO_LIMITATION_CHANGED: _detect_limitation_change,
}


def _detect_pair_change(report: Report, previous: Report) -> Optional[CustomEvent]:
    before = previous.network.get("selected_pair_id")
    after = report.network.get("selected_pair_id")
    if before is None or after is None or before == after:
        return None
    return _event(
        report,
        EventCategory.SIGNAL,
        EVENT_PAIR_CHANGE,
        f"selected candidate pair changed from {before} to {after} "
        f"({report.network.get('local_candidate_type')}/{report.network.get('remote_candidate_type')})",
        {
            "from": before,
            "to": after,
            "local_candidate_type": report.network.get("local_candidate_type"),
            "remote_candidate_type": report.network.get("remote_candidate_type"),
        },
    )


def detect(
    signals: Iterable[SignalValue],
    report: Report,
    previous: Optional[Report],
) -> List[CustomEvent]:
    """
    Evaluate change rules for the signals raised while building a report.

    Args:
        signals: Signals in extraction order.
        report: The report just built.
        previous: The report of the previous tick, if any.

    Returns:
        Events in signal order; empty when there is no previous report.
    """
    if previous is None:
        return []

    events: List[CustomEvent] = []
    seen: Set[Tuple[Any, Optional[MediaKind], Optional[str]]] = set()
    for signal in signals:
        # Input and output size share one rule per stream
        marker = (STREAM_RULES.get(signal.signal, signal.signal), signal.kind, signal.ssrc)
        if marker in seen:
            continue
        seen.add(marker)

        if signal.signal == Signal.SELECTED_PAIR_CHANGED:
            event = _detect_pair_change(report, previous)
        else:
            if signal.kind is None:
                continue
            current = report.stream(signal.kind, signal.ssrc)
            before = previous.stream(signal.kind, signal.ssrc)
            if current is None or before is None:
                continue
            event = STREAM_RULES[signal.signal](report, current, before)

        if event is not None:
            logger.debug(f"{report.session_name}: {event.name} - {event.description}")
            events.append(event)
    return events
