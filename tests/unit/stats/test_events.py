"""
Tests for rtcprobe.stats.events module.
"""

import pytest

from rtcprobe.stats.events import (
    EVENT_BYTES_RECEIVED_PEAK,
    EVENT_BYTES_SENT_PEAK,
    EVENT_LIMITATION_CHANGE,
    EVENT_PAIR_CHANGE,
    EVENT_RESOLUTION_CHANGE,
    EVENT_SOURCE_ACTIVE_CHANGE,
    EVENT_TRACK_CHANGE,
    detect,
)
from rtcprobe.stats.extractor import extract, merge
from rtcprobe.stats.models import EventCategory, MediaKind, Report, Signal, SignalValue
from rtcprobe.stats.source import to_entries


def build(snapshot, previous=None):
    """Build a report and its signals from raw stats."""
    entries = to_entries(snapshot)
    report = Report.initial("pc-test", "call-1", "user-1", previous)
    report.timestamp = entries[0].timestamp
    signals = []
    for entry in entries:
        signals.extend(merge(report, extract(entry, report, "pc-test", None, entries)))
    return report, signals


def run(snapshots):
    """Detect events over consecutive snapshots; returns events per tick."""
    previous = None
    results = []
    for snapshot in snapshots:
        report, signals = build(snapshot, previous)
        results.append(detect(signals, report, previous))
        previous = report
    return results


def video_outbound(tick, width, fps=30, active=True):
    return [{
        "type": "outbound-rtp", "id": "OV1", "timestamp": 1000.0 * tick, "kind": "video",
        "ssrc": 3333, "frameWidth": width, "frameHeight": width * 3 // 4,
        "framesPerSecond": fps, "active": active,
    }]


class TestDetect:
    """Tests for the detect entry point."""

    def test_no_events_on_first_tick(self, snapshot_factory):
        """Test nothing is compared without a previous report."""
        report, signals = build(snapshot_factory(tick=1, video_width=1280))
        assert signals
        assert detect(signals, report, None) == []

    def test_steady_session(self, snapshot_factory):
        """Test a steady session produces no events."""
        results = run([snapshot_factory(tick=t) for t in (1, 2, 3, 4)])
        assert results == [[], [], [], []]

    def test_signals_deduplicated(self):
        """Test repeated signals are evaluated once."""
        previous, _ = build(video_outbound(1, 640))
        report, signals = build(video_outbound(2, 1280), previous)
        repeated = signals + [SignalValue(Signal.OUTPUT_SIZE_CHANGED, MediaKind.VIDEO, "3333")]
        events = detect(repeated, report, previous)
        assert [e.name for e in events] == [EVENT_RESOLUTION_CHANGE]

    def test_unknown_stream_skipped(self):
        """Test signals for streams missing from the previous report."""
        previous, _ = build(video_outbound(1, 640))
        report, _ = build(video_outbound(2, 1280), previous)
        signals = [SignalValue(Signal.OUTPUT_SIZE_CHANGED, MediaKind.VIDEO, "9999")]
        assert detect(signals, report, previous) == []


class TestResolutionChange:
    """Tests for resolution change detection."""

    def test_width_change(self):
        """Test one event when the sent width changes."""
        results = run([video_outbound(1, 640), video_outbound(2, 1280)])
        events = results[1]

        assert len(events) == 1
        event = events[0]
        assert event.name == EVENT_RESOLUTION_CHANGE
        assert event.category == EventCategory.QUALITY
        assert event.timestamp == 2000.0
        assert event.data["from"]["width"] == 640
        assert event.data["to"]["width"] == 1280
        assert "640x480@30fps" in event.description

    def test_capture_and_sent_width_change(self, snapshot_factory):
        """Test one event when the camera and the encoder both switch width."""
        snapshots = [
            snapshot_factory(tick=1),
            snapshot_factory(tick=2, video_width=1280, video_height=720),
        ]
        source = next(e for e in snapshots[0] if e["id"] == "MSV")
        source["width"], source["height"] = 640, 480

        events = run(snapshots)[1]

        assert [e.name for e in events] == [EVENT_RESOLUTION_CHANGE]
        data = events[0].data
        assert data["ssrc"] == "3333"
        assert data["from"]["width"] == 640
        assert data["to"]["width"] == 1280
        assert data["input"] == {
            "from": {"width": 640, "height": 480, "framerate": 30},
            "to": {"width": 1280, "height": 720, "framerate": 30},
        }
        assert data["output"]["to"]["height"] == 720
        assert "input resolution" in events[0].description
        assert "output resolution" in events[0].description

    def test_small_framerate_change_ignored(self):
        """Test framerate jitter within tolerance."""
        results = run([video_outbound(1, 640, fps=30), video_outbound(2, 640, fps=32)])
        assert results[1] == []

    def test_framerate_drop(self):
        """Test a framerate drop over tolerance."""
        results = run([video_outbound(1, 640, fps=30), video_outbound(2, 640, fps=24)])
        assert [e.name for e in results[1]] == [EVENT_RESOLUTION_CHANGE]


class TestPeaks:
    """Tests for traffic peak detection."""

    def test_bytes_sent_peak(self, snapshot_factory):
        """Test a tenfold jump in sent bytes."""
        results = run([
            snapshot_factory(tick=1),
            snapshot_factory(tick=2),
            snapshot_factory(tick=3, video_bytes=200000 + 100000 * 20),
        ])
        events = results[2]
        assert [e.name for e in events] == [EVENT_BYTES_SENT_PEAK]
        assert events[0].data["ssrc"] == "3333"
        assert events[0].data["from"] == 97.656

    def test_bytes_sent_drop(self, snapshot_factory):
        """Test a tenfold drop in sent bytes."""
        results = run([
            snapshot_factory(tick=1),
            snapshot_factory(tick=2),
            snapshot_factory(tick=3, video_bytes=200000 + 5000),
        ])
        assert [e.name for e in results[2]] == [EVENT_BYTES_SENT_PEAK]

    def test_zero_previous_delta_skipped(self, snapshot_factory):
        """Test no ratio is computed against an idle tick."""
        results = run([
            snapshot_factory(tick=1),
            snapshot_factory(tick=2, video_bytes=100000),
            snapshot_factory(tick=3, video_bytes=200000),
        ])
        assert results[2] == []

    def test_negative_previous_delta_skipped(self, snapshot_factory):
        """Test no ratio is computed against a counter reset."""
        results = run([
            snapshot_factory(tick=1),
            snapshot_factory(tick=2, video_bytes=50000),
            snapshot_factory(tick=3, video_bytes=150000),
        ])
        assert results[2] == []

    def test_inactive_sender_skipped(self, snapshot_factory):
        """Test peaks on a paused sender are ignored."""
        results = run([
            snapshot_factory(tick=1, video_active=False),
            snapshot_factory(tick=2, video_active=False),
            snapshot_factory(tick=3, video_active=False, video_bytes=200000 + 100000 * 20),
        ])
        assert results[2] == []

    def test_bytes_received_peak(self, snapshot_factory):
        """Test a jump in received bytes."""
        snapshots = [snapshot_factory(tick=t) for t in (1, 2, 3)]
        inbound = next(e for e in snapshots[2] if e["id"] == "IA1")
        inbound["bytesReceived"] = 32000 + 16000 * 15
        results = run(snapshots)
        assert [e.name for e in results[2]] == [EVENT_BYTES_RECEIVED_PEAK]


class TestStreamChanges:
    """Tests for device, source, limitation and pair changes."""

    def test_track_change(self, snapshot_factory):
        """Test switching the camera."""
        results = run([snapshot_factory(tick=1), snapshot_factory(tick=2, track_out="camera-2")])
        events = results[1]
        assert [e.name for e in events] == [EVENT_TRACK_CHANGE]
        assert events[0].category == EventCategory.CALL
        assert events[0].data["to"] == "camera-2"

    def test_source_inactive(self, snapshot_factory):
        """Test pausing the video sender."""
        results = run([snapshot_factory(tick=1), snapshot_factory(tick=2, video_active=False)])
        events = results[1]
        assert [e.name for e in events] == [EVENT_SOURCE_ACTIVE_CHANGE]
        assert events[0].data["to"] is False

    def test_limitation_change(self, snapshot_factory):
        """Test the encoder becoming bandwidth limited."""
        results = run([snapshot_factory(tick=1), snapshot_factory(tick=2, limitation="bandwidth")])
        events = results[1]
        assert [e.name for e in events] == [EVENT_LIMITATION_CHANGE]
        assert events[0].data == {
            "ssrc": "3333", "kind": "video", "direction": "outbound",
            "from": "none", "to": "bandwidth",
        }

    def test_pair_change(self, snapshot_factory):
        """Test switching to a relayed candidate pair."""
        results = run([snapshot_factory(tick=1), snapshot_factory(tick=2, pair_id="CP2")])
        events = results[1]
        assert [e.name for e in events] == [EVENT_PAIR_CHANGE]
        assert events[0].category == EventCategory.SIGNAL
        assert events[0].data["local_candidate_type"] == "relay"

    def test_events_in_signal_order(self, snapshot_factory):
        """Test several changes in one tick keep extraction order."""
        results = run([
            snapshot_factory(tick=1),
            snapshot_factory(tick=2, video_width=1280, limitation="cpu", pair_id="CP2"),
        ])
        assert [e.name for e in results[1]] == [
            EVENT_RESOLUTION_CHANGE,
            EVENT_LIMITATION_CHANGE,
            EVENT_PAIR_CHANGE,
        ]
