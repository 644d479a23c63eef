"""
Data model for rtcprobe statistics.

Raw stat entries, per-stream sub-metrics, per-tick reports, custom events
and the end-of-session ticket.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class SessionState(Enum):
    """Collector session states."""
    IDLE = "idle"
    RUNNING = "running"
    MUTED = "muted"


class MediaKind(Enum):
    """Media kinds carried by a session."""
    AUDIO = "audio"
    VIDEO = "video"


class Direction(Enum):
    """Stream direction, seen from the local endpoint."""
    INBOUND = "inbound"
    OUTBOUND = "outbound"

    @property
    def suffix(self) -> str:
        return "in" if self is Direction.INBOUND else "out"


class EventCategory(Enum):
    """Custom event categories."""
    CALL = "call"
    QUALITY = "quality"
    SIGNAL = "signal"
    DEVICE = "device"


class Signal(Enum):
    """Internal signals raised during extraction for change detection."""
    DEVICE_CHANGED = "device_changed"
    INPUT_SIZE_CHANGED = "input_size_changed"
    OUTPUT_SIZE_CHANGED = "output_size_changed"
    BYTES_SENT_CHANGED = "bytes_sent_changed"
    BYTES_RECEIVED_CHANGED = "bytes_received_changed"
    MEDIA_SOURCE_CHANGED = "media_source_changed"
    VIDEO_LIMITATION_CHANGED = "video_limitation_changed"
    SELECTED_PAIR_CHANGED = "selected_pair_changed"


# Buckets a BucketValue can target
BUCKET_NETWORK = "network"
BUCKET_PASSTHROUGH = "passthrough"


AUDIO_INBOUND_DEFAULTS: Dict[str, Any] = {
    "codec_in": None,
    "track_in": None,
    "level_in": 0,
    "active_in": False,
    "total_packets_in": 0,
    "total_packets_lost_in": 0,
    "delta_packets_in": None,
    "delta_packets_lost_in": None,
    "percent_packets_lost_in": 0,
    "delta_jitter_ms_in": 0,
    "delta_rtt_ms_in": None,
    "total_KBytes_in": 0,
    "delta_KBytes_in": None,
    "delta_kbs_in": None,
    "avg_kbs_in": None,
    "mos_emodel_in": None,
    "mos_in": None,
}

AUDIO_OUTBOUND_DEFAULTS: Dict[str, Any] = {
    "codec_out": None,
    "track_out": None,
    "level_out": 0,
    "active_out": False,
    "total_packets_out": 0,
    "total_packets_lost_out": None,
    "fraction_lost_out": None,
    "percent_packets_lost_out": 0,
    "delta_jitter_ms_out": None,
    "delta_rtt_ms_out": None,
    "total_KBytes_out": 0,
    "delta_KBytes_out": None,
    "delta_kbs_out": None,
    "avg_kbs_out": None,
    "mos_emodel_out": None,
    "mos_out": None,
}

VIDEO_INBOUND_DEFAULTS: Dict[str, Any] = {
    "codec_in": None,
    "track_in": None,
    "decoder_in": None,
    "active_in": False,
    "size_in": None,
    "total_packets_in": 0,
    "total_packets_lost_in": 0,
    "delta_packets_in": None,
    "delta_packets_lost_in": None,
    "percent_packets_lost_in": 0,
    "delta_jitter_ms_in": 0,
    "total_KBytes_in": 0,
    "delta_KBytes_in": None,
    "delta_kbs_in": None,
    "avg_kbs_in": None,
    "total_frames_decoded_in": 0,
    "total_nack_sent_in": 0,
    "total_pli_sent_in": 0,
}

VIDEO_OUTBOUND_DEFAULTS: Dict[str, Any] = {
    "codec_out": None,
    "track_out": None,
    "encoder_out": None,
    "active_out": False,
    "size_out": None,
    "input_size_out": None,
    "limitation_out": None,
    "total_packets_out": 0,
    "total_packets_lost_out": None,
    "fraction_lost_out": None,
    "percent_packets_lost_out": 0,
    "delta_jitter_ms_out": None,
    "delta_rtt_ms_out": None,
    "total_KBytes_out": 0,
    "delta_KBytes_out": None,
    "delta_kbs_out": None,
    "avg_kbs_out": None,
    "total_frames_encoded_out": 0,
    "total_nack_received_out": 0,
    "total_pli_received_out": 0,
}

STREAM_DEFAULTS = {
    (MediaKind.AUDIO, Direction.INBOUND): AUDIO_INBOUND_DEFAULTS,
    (MediaKind.AUDIO, Direction.OUTBOUND): AUDIO_OUTBOUND_DEFAULTS,
    (MediaKind.VIDEO, Direction.INBOUND): VIDEO_INBOUND_DEFAULTS,
    (MediaKind.VIDEO, Direction.OUTBOUND): VIDEO_OUTBOUND_DEFAULTS,
}

# Only these fields survive into the next report's default sub-metric.
CARRIED_FIELDS = (
    "timestamp",
    "total_packets_in",
    "total_packets_lost_in",
    "total_KBytes_in",
    "total_packets_out",
    "total_KBytes_out",
)

NETWORK_DEFAULTS: Dict[str, Any] = {
    "selected_pair_id": None,
    "delta_rtt_connectivity_ms": None,
    "total_rtt_connectivity_ms": None,
    "available_outgoing_bitrate_kbs": None,
    "available_incoming_bitrate_kbs": None,
    "local_candidate_type": None,
    "local_candidate_protocol": None,
    "local_candidate_address": None,
    "local_candidate_relay_protocol": None,
    "local_candidate_network_type": None,
    "remote_candidate_type": None,
    "remote_candidate_address": None,
    "dtls_state": None,
    "ice_role": None,
}


@dataclass
class StatEntry:
    """One raw entry of a stats snapshot."""
    type: str
    id: str = ""
    timestamp: Optional[float] = None
    fields: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatEntry":
        """Build an entry from a WebRTC-style stats dictionary."""
        values = dict(data)
        return cls(
            type=str(values.pop("type", "")),
            id=str(values.pop("id", "")),
            timestamp=values.pop("timestamp", None),
            fields=values,
        )

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)

    @property
    def ssrc(self) -> Optional[str]:
        ssrc = self.fields.get("ssrc")
        return str(ssrc) if ssrc is not None else None

    @property
    def kind(self) -> Optional[MediaKind]:
        kind = self.fields.get("kind") or self.fields.get("mediaType")
        try:
            return MediaKind(kind)
        except ValueError:
            return None


@dataclass
class StreamMetrics:
    """Metrics of one media stream inside a report."""
    ssrc: str
    kind: MediaKind
    direction: Direction
    values: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def default(
        cls,
        ssrc: str,
        kind: MediaKind,
        direction: Direction,
        carried: Optional["StreamMetrics"] = None,
    ) -> "StreamMetrics":
        """Create a sub-metric seeded from the kind/direction defaults."""
        values = copy.deepcopy(STREAM_DEFAULTS[(kind, direction)])
        values["timestamp"] = None
        if carried is not None:
            for key in CARRIED_FIELDS:
                if key in carried.values and key in values:
                    values[key] = carried.values[key]
        return cls(ssrc=ssrc, kind=kind, direction=direction, values=values)

    def get(self, key: str, default: Any = None) -> Any:
        value = self.values.get(key)
        return default if value is None else value

    def to_dict(self) -> dict:
        return {
            "ssrc": self.ssrc,
            "kind": self.kind.value,
            "direction": self.direction.value,
            **copy.deepcopy(self.values),
        }


@dataclass
class MediaBucket:
    """Per-kind bucket: stream sub-metrics keyed by ssrc plus scalar values."""
    streams: Dict[str, StreamMetrics] = field(default_factory=dict)
    values: Dict[str, Any] = field(default_factory=dict)

    def inbound(self) -> List[StreamMetrics]:
        return [s for s in self.streams.values() if s.direction == Direction.INBOUND]

    def outbound(self) -> List[StreamMetrics]:
        return [s for s in self.streams.values() if s.direction == Direction.OUTBOUND]

    def to_dict(self) -> dict:
        return {
            **copy.deepcopy(self.values),
            "streams": {ssrc: s.to_dict() for ssrc, s in self.streams.items()},
        }


@dataclass
class Report:
    """Normalized metrics for one sampling tick."""
    session_name: str = ""
    call_id: str = ""
    user_id: str = ""
    count: int = 0
    timestamp: Optional[float] = None
    audio: MediaBucket = field(default_factory=MediaBucket)
    video: MediaBucket = field(default_factory=MediaBucket)
    network: Dict[str, Any] = field(default_factory=lambda: dict(NETWORK_DEFAULTS))
    passthrough: Dict[str, Any] = field(default_factory=dict)
    experimental: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def initial(
        cls,
        session_name: str,
        call_id: str,
        user_id: str,
        previous: Optional["Report"] = None,
    ) -> "Report":
        """
        Create the report for the next tick.

        Streams known from the previous report are re-created from their
        defaults; only the carried counters are kept.
        """
        report = cls(session_name=session_name, call_id=call_id, user_id=user_id)
        report.count = previous.count + 1 if previous else 1
        if previous is not None:
            for kind in MediaKind:
                for ssrc, stream in previous.bucket(kind).streams.items():
                    report.bucket(kind).streams[ssrc] = StreamMetrics.default(
                        ssrc, stream.kind, stream.direction, carried=stream
                    )
        return report

    def bucket(self, kind: MediaKind) -> MediaBucket:
        return self.audio if kind == MediaKind.AUDIO else self.video

    def stream(self, kind: MediaKind, ssrc: Optional[str]) -> Optional[StreamMetrics]:
        if ssrc is None:
            return None
        return self.bucket(kind).streams.get(ssrc)

    def ensure_stream(self, kind: MediaKind, ssrc: str, direction: Direction) -> StreamMetrics:
        streams = self.bucket(kind).streams
        if ssrc not in streams:
            streams[ssrc] = StreamMetrics.default(ssrc, kind, direction)
        return streams[ssrc]

    def to_dict(self) -> dict:
        return {
            "session_name": self.session_name,
            "call_id": self.call_id,
            "user_id": self.user_id,
            "count": self.count,
            "timestamp": self.timestamp,
            "audio": self.audio.to_dict(),
            "video": self.video.to_dict(),
            "network": dict(self.network),
            "passthrough": copy.deepcopy(self.passthrough),
            "experimental": dict(self.experimental),
        }


@dataclass(frozen=True)
class BucketValue:
    """Extracted data to merge into a report bucket."""
    bucket: str
    values: Dict[str, Any]
    ssrc: Optional[str] = None
    direction: Optional[Direction] = None


@dataclass(frozen=True)
class SignalValue:
    """Extracted notification that something worth comparing was seen."""
    signal: Signal
    kind: Optional[MediaKind] = None
    ssrc: Optional[str] = None


Extracted = Union[BucketValue, SignalValue]


@dataclass(frozen=True)
class CustomEvent:
    """A timestamped event appended to the session log."""
    timestamp: Optional[float]
    category: Union[EventCategory, str]
    name: str
    description: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def category_name(self) -> str:
        if isinstance(self.category, EventCategory):
            return self.category.value
        return str(self.category)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "category": self.category_name,
            "name": self.name,
            "description": self.description,
            "data": copy.deepcopy(self.data),
        }


TICKET_VERSION = "1.0"


@dataclass(frozen=True)
class Ticket:
    """Immutable summary of a whole session."""
    session_name: str
    call_id: str
    user_id: str
    probe_id: str
    started: Optional[datetime]
    ended: datetime
    reports: List[Report] = field(default_factory=list)
    events: List[CustomEvent] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)
    version: str = TICKET_VERSION

    @property
    def duration_ms(self) -> int:
        if self.started is None:
            return 0
        return int((self.ended - self.started).total_seconds() * 1000)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "session_name": self.session_name,
            "call_id": self.call_id,
            "user_id": self.user_id,
            "probe_id": self.probe_id,
            "started": self.started.isoformat() if self.started else None,
            "ended": self.ended.isoformat(),
            "duration_ms": self.duration_ms,
            "reports": [r.to_dict() for r in self.reports],
            "events": [e.to_dict() for e in self.events],
            "summary": copy.deepcopy(self.summary),
        }
