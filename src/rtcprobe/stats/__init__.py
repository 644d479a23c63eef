"""
Session statistics for rtcprobe.

Provides the sampling pipeline for real-time sessions:
- Normalization of raw stat snapshots into reports
- MOS estimation for audio streams
- Change detection between reports
- Report history and end of session tickets
"""

from rtcprobe.stats.models import (
    SessionState,
    MediaKind,
    Direction,
    EventCategory,
    Signal,
    StatEntry,
    StreamMetrics,
    MediaBucket,
    Report,
    BucketValue,
    SignalValue,
    CustomEvent,
    Ticket,
)
from rtcprobe.stats.collector import Collector
from rtcprobe.stats.exporter import Exporter
from rtcprobe.stats.observer import ConnectionObserver, EventSource, SessionEventRecorder
from rtcprobe.stats.source import SnapshotSource, ReplaySource

__all__ = [
    # Models
    "SessionState",
    "MediaKind",
    "Direction",
    "EventCategory",
    "Signal",
    "StatEntry",
    "StreamMetrics",
    "MediaBucket",
    "Report",
    "BucketValue",
    "SignalValue",
    "CustomEvent",
    "Ticket",
    # Pipeline
    "Collector",
    "Exporter",
    # Interfaces
    "ConnectionObserver",
    "EventSource",
    "SessionEventRecorder",
    "SnapshotSource",
    "ReplaySource",
]
