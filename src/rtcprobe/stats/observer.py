"""
Device and connection notifications.

An event source (the peer connection, the media device layer) pushes
notifications to a ConnectionObserver at unpredictable times. The
SessionEventRecorder turns each of them into exactly one custom event.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Protocol

from rtcprobe.stats.models import EventCategory

logger = logging.getLogger(__name__)


class ConnectionObserver(ABC):
    """Receives device and connection notifications."""

    @abstractmethod
    def on_device_change(self, devices: List[Dict[str, Any]]) -> None:
        """The list of media devices changed."""
        pass

    @abstractmethod
    def on_connection_state_change(self, state: str) -> None:
        """The connection state changed."""
        pass

    @abstractmethod
    def on_ice_gathering_state_change(self, state: str) -> None:
        """The ICE gathering state changed."""
        pass

    @abstractmethod
    def on_track(self, kind: str, stream_id: str) -> None:
        """A new inbound stream started."""
        pass

    @abstractmethod
    def on_negotiation_needed(self) -> None:
        """Session renegotiation was requested."""
        pass

    @abstractmethod
    def on_selected_candidate_pair_change(self, pair: Dict[str, Any]) -> None:
        """The transport switched to another candidate pair."""
        pass


class EventSource(ABC):
    """Something observers can be attached to."""

    @abstractmethod
    def attach(self, observer: ConnectionObserver) -> None:
        pass

    @abstractmethod
    def detach(self, observer: ConnectionObserver) -> None:
        pass


class EventSink(Protocol):
    def add_custom_event(
        self,
        timestamp: Optional[float],
        category: EventCategory,
        name: str,
        description: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...


def _now_ms() -> float:
    return time.time() * 1000


class SessionEventRecorder(ConnectionObserver):
    """Records every notification as a custom event on a sink."""

    def __init__(self, sink: EventSink):
        self._sink = sink

    def _record(
        self,
        category: EventCategory,
        name: str,
        description: str,
        data: Dict[str, Any],
    ) -> None:
        logger.debug(f"{name}: {description}")
        self._sink.add_custom_event(_now_ms(), category, name, description, data)

    def on_device_change(self, devices: List[Dict[str, Any]]) -> None:
        self._record(
            EventCategory.DEVICE,
            "devicechange",
            f"{len(devices)} media device(s) available",
            {"devices": [dict(d) for d in devices]},
        )

    def on_connection_state_change(self, state: str) -> None:
        self._record(
            EventCategory.CALL,
            "connectionstatechange",
            f"connection state is {state}",
            {"state": state},
        )

    def on_ice_gathering_state_change(self, state: str) -> None:
        self._record(
            EventCategory.SIGNAL,
            "icegatheringstatechange",
            f"ICE gathering state is {state}",
            {"state": state},
        )

    def on_track(self, kind: str, stream_id: str) -> None:
        self._record(
            EventCategory.CALL,
            "track",
            f"new inbound {kind} stream {stream_id}",
            {"kind": kind, "stream_id": stream_id},
        )

    def on_negotiation_needed(self) -> None:
        self._record(EventCategory.SIGNAL, "negotiationneeded", "negotiation needed", {})

    def on_selected_candidate_pair_change(self, pair: Dict[str, Any]) -> None:
        local = pair.get("local") or {}
        remote = pair.get("remote") or {}
        self._record(
            EventCategory.SIGNAL,
            "selectedcandidatepairchange",
            f"selected pair is {local.get('candidateType', 'unknown')}"
            f"/{remote.get('candidateType', 'unknown')}",
            {"pair": dict(pair)},
        )
