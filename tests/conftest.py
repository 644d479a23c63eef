"""
Pytest configuration and shared fixtures for rtcprobe tests.
"""

import asyncio
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rtcprobe.core.config import Config  # noqa: E402
from rtcprobe.stats.source import SnapshotSource  # noqa: E402


# ============================================================================
# Temporary Directory Fixtures
# ============================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_config_file(temp_dir: Path) -> Path:
    """Create a temporary config file."""
    config_path = temp_dir / "config.yaml"
    config_path.write_text("""
version: 1
session:
  name: pc-main
  call_id: call-42
  user_id: alice
sampling:
  start_after_ms: 0
  refresh_every_ms: 50
  stop_after_ms: 150
ticket:
  enabled: true
passthrough:
  inbound-rtp: [jitterBufferDelay]
""")
    return config_path


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """Return a sample configuration dictionary."""
    return {
        "version": 1,
        "session": {
            "name": "pc-main",
            "call_id": "call-42",
            "user_id": "alice",
        },
        "sampling": {
            "start_after_ms": 0,
            "refresh_every_ms": 50,
            "stop_after_ms": 150,
        },
        "ticket": {
            "enabled": True,
        },
        "passthrough": {
            "inbound-rtp": ["jitterBufferDelay"],
        },
        "verbose_log": False,
    }


@pytest.fixture
def fast_config():
    """Factory for configs with short sampling periods."""
    def _create(refresh_every_ms=50, stop_after_ms=-1, start_after_ms=0, ticket=True):
        return Config.from_dict({
            "session": {"name": "pc-test", "call_id": "call-1", "user_id": "user-1"},
            "sampling": {
                "start_after_ms": start_after_ms,
                "refresh_every_ms": refresh_every_ms,
                "stop_after_ms": stop_after_ms,
            },
            "ticket": {"enabled": ticket},
        })
    return _create


# ============================================================================
# Stats Snapshot Fixtures
# ============================================================================

def build_snapshot(
    tick: int = 1,
    audio_lost: int = 0,
    rtt: float = 0.05,
    jitter: float = 0.01,
    video_width: int = 640,
    video_height: int = 480,
    video_fps: int = 30,
    video_active: bool = True,
    video_bytes: Optional[int] = None,
    limitation: str = "none",
    track_out: str = "camera-1",
    pair_id: str = "CP1",
) -> List[Dict[str, Any]]:
    """Build a WebRTC-style snapshot with steady traffic growing per tick."""
    ts = 1000.0 * tick
    return [
        {
            "type": "inbound-rtp", "id": "IA1", "timestamp": ts, "kind": "audio", "ssrc": 1111,
            "packetsReceived": 50 * tick, "packetsLost": audio_lost, "bytesReceived": 16000 * tick,
            "jitter": jitter, "codecId": "C1", "trackIdentifier": "remote-audio", "audioLevel": 0.1,
            "jitterBufferDelay": 0.5 * tick,
        },
        {
            "type": "remote-outbound-rtp", "id": "ROA1", "timestamp": ts, "kind": "audio",
            "ssrc": 1111, "roundTripTime": rtt,
        },
        {
            "type": "outbound-rtp", "id": "OA1", "timestamp": ts, "kind": "audio", "ssrc": 2222,
            "packetsSent": 50 * tick, "bytesSent": 16000 * tick, "codecId": "C1",
            "mediaSourceId": "MSA",
        },
        {
            "type": "remote-inbound-rtp", "id": "RIA1", "timestamp": ts, "kind": "audio",
            "ssrc": 2222, "roundTripTime": rtt, "jitter": jitter, "packetsLost": 0,
            "fractionLost": 0.0,
        },
        {
            "type": "media-source", "id": "MSA", "timestamp": ts, "kind": "audio",
            "trackIdentifier": "microphone-1", "audioLevel": 0.2, "totalAudioEnergy": 1.5,
        },
        {
            "type": "outbound-rtp", "id": "OV1", "timestamp": ts, "kind": "video", "ssrc": 3333,
            "packetsSent": 200 * tick,
            "bytesSent": video_bytes if video_bytes is not None else 100000 * tick,
            "frameWidth": video_width, "frameHeight": video_height, "framesPerSecond": video_fps,
            "qualityLimitationReason": limitation, "active": video_active,
            "mediaSourceId": "MSV", "codecId": "C2", "framesEncoded": 30 * tick,
        },
        {
            "type": "media-source", "id": "MSV", "timestamp": ts, "kind": "video",
            "trackIdentifier": track_out, "width": 1280, "height": 720, "framesPerSecond": 30,
        },
        {"type": "codec", "id": "C1", "timestamp": ts, "mimeType": "audio/opus", "clockRate": 48000, "channels": 2},
        {"type": "codec", "id": "C2", "timestamp": ts, "mimeType": "video/VP8", "clockRate": 90000},
        {
            "type": "transport", "id": "T1", "timestamp": ts, "selectedCandidatePairId": pair_id,
            "dtlsState": "connected", "iceRole": "controlling",
        },
        {
            "type": "candidate-pair", "id": "CP1", "timestamp": ts, "localCandidateId": "L1",
            "remoteCandidateId": "R1", "currentRoundTripTime": rtt, "totalRoundTripTime": 0.1 * tick,
            "availableOutgoingBitrate": 1500000, "state": "succeeded", "nominated": True,
        },
        {
            "type": "candidate-pair", "id": "CP2", "timestamp": ts, "localCandidateId": "L2",
            "remoteCandidateId": "R1", "currentRoundTripTime": rtt * 2, "state": "succeeded",
            "nominated": False,
        },
        {
            "type": "local-candidate", "id": "L1", "timestamp": ts, "candidateType": "host",
            "protocol": "udp", "address": "192.168.1.10", "networkType": "ethernet",
        },
        {
            "type": "local-candidate", "id": "L2", "timestamp": ts, "candidateType": "relay",
            "protocol": "udp", "address": "10.0.0.1", "relayProtocol": "tls",
        },
        {
            "type": "remote-candidate", "id": "R1", "timestamp": ts, "candidateType": "srflx",
            "address": "203.0.113.5",
        },
    ]


@pytest.fixture
def snapshot_factory():
    """Factory for WebRTC-style snapshots."""
    return build_snapshot


# ============================================================================
# Fake Snapshot Sources
# ============================================================================

class FakeSnapshotSource(SnapshotSource):
    """Serves a fresh snapshot per poll; can fail or block on given polls."""

    def __init__(self, fail_on=(), block_on=()):
        self.polls = 0
        self._fail_on = set(fail_on)
        self._block_on = set(block_on)
        self.gate = asyncio.Event()
        self.blocked = asyncio.Event()

    async def get_stats(self):
        self.polls += 1
        poll = self.polls
        if poll in self._block_on:
            self.blocked.set()
            await self.gate.wait()
        if poll in self._fail_on:
            raise RuntimeError(f"poll {poll} failed")
        return build_snapshot(tick=poll)


@pytest.fixture
def fake_source():
    """Factory for fake snapshot sources."""
    def _create(fail_on=(), block_on=()):
        return FakeSnapshotSource(fail_on=fail_on, block_on=block_on)
    return _create
