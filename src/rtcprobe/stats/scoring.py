"""
Audio quality estimation.

Computes MOS values for every audio stream of a report using a simplified
ITU-T G.107 E-model, fed by packet loss, round-trip delay and jitter.
"""

import math
from typing import Optional, Tuple

from rtcprobe.stats.models import Direction, MediaKind, Report, StreamMetrics

MOS_MIN = 1.0
MOS_MAX = 4.5

# E-model coefficients
R0 = 93.2  # Ro - Is, default transmission rating
IE = 0.0  # equipment impairment, G.711 with packet loss concealment
BPL = 4.3  # packet-loss robustness factor
BURST_R = 1.0  # random loss
PLAYOUT_DELAY_MS = 20.0  # packetization + playout
JITTER_BUFFER_FACTOR = 2.0

# Simplified effective latency model
CODEC_DELAY_MS = 10.0
LOSS_PENALTY = 2.5

# Weights applied to (current, previous, before-last) smoothed scores
SMOOTHING_TWO_PRIORS = (0.6, 0.25, 0.15)
SMOOTHING_ONE_PRIOR = (0.7, 0.3)


def _sanitize(value: Optional[float]) -> float:
    if value is None:
        return 0.0
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


def clamp_mos(mos: float) -> float:
    if not math.isfinite(mos):
        return MOS_MIN
    return max(MOS_MIN, min(MOS_MAX, mos))


def r_to_mos(r: float) -> float:
    """Map a transmission rating factor to MOS."""
    if r < 0:
        return MOS_MIN
    if r > 100:
        return MOS_MAX
    return clamp_mos(1 + 0.035 * r + r * (r - 60) * (100 - r) * 7e-6)


def delay_impairment(one_way_delay_ms: float) -> float:
    """Idd, the impairment caused by absolute one-way delay (G.107 §7.3)."""
    if one_way_delay_ms <= 100:
        return 0.0
    x = math.log2(one_way_delay_ms / 100)
    return 25 * ((1 + x ** 6) ** (1 / 6) - 3 * (1 + (x / 3) ** 6) ** (1 / 6) + 2)


def loss_impairment(loss_percent: float) -> float:
    """Ie-eff, the equipment impairment degraded by packet loss."""
    return IE + (95 - IE) * loss_percent / (loss_percent / BURST_R + BPL)


def emodel_mos(loss_percent: float, rtt_ms: float, jitter_ms: float) -> float:
    """Instantaneous E-model MOS."""
    loss = min(_sanitize(loss_percent), 100.0)
    rtt = _sanitize(rtt_ms)
    jitter = _sanitize(jitter_ms)

    one_way = rtt / 2 + JITTER_BUFFER_FACTOR * jitter + PLAYOUT_DELAY_MS
    r = R0 - delay_impairment(one_way) - loss_impairment(loss)
    return r_to_mos(r)


def effective_latency_mos(loss_percent: float, rtt_ms: float, jitter_ms: float) -> float:
    """MOS from the effective latency model, before smoothing."""
    loss = min(_sanitize(loss_percent), 100.0)
    rtt = _sanitize(rtt_ms)
    jitter = _sanitize(jitter_ms)

    latency = rtt / 2 + JITTER_BUFFER_FACTOR * jitter + CODEC_DELAY_MS
    if latency < 160:
        r = R0 - latency / 40
    else:
        r = R0 - (latency - 120) / 10
    r -= LOSS_PENALTY * loss
    return r_to_mos(r)


def smooth(current: float, previous: Optional[float], before_last: Optional[float]) -> float:
    """Blend a score with the same stream's two previous scores."""
    if previous is not None and before_last is not None:
        w0, w1, w2 = SMOOTHING_TWO_PRIORS
        return clamp_mos(w0 * current + w1 * previous + w2 * before_last)
    if previous is not None:
        w0, w1 = SMOOTHING_ONE_PRIOR
        return clamp_mos(w0 * current + w1 * previous)
    return clamp_mos(current)


def _window_loss(
    stream: StreamMetrics,
    previous: Optional[StreamMetrics],
    before_last: Optional[StreamMetrics],
) -> float:
    """Packet loss percentage over the last two ticks."""
    suffix = stream.direction.suffix
    received_key = f"total_packets_{suffix}"
    lost_key = f"total_packets_lost_{suffix}"

    lost_now = stream.values.get(lost_key)
    if lost_now is None:
        return 0.0
    received_now = stream.get(received_key, 0)

    base = before_last or previous
    lost_base = base.get(lost_key, 0) if base is not None else 0
    received_base = base.get(received_key, 0) if base is not None else 0

    lost = max(lost_now - lost_base, 0)
    if stream.direction == Direction.INBOUND:
        expected = (received_now - received_base) + lost
    else:
        # packetsSent already counts the lost ones
        expected = received_now - received_base
    if expected <= 0:
        return 0.0
    return min(lost / expected * 100, 100.0)


def _delay_inputs(stream: StreamMetrics, report: Report) -> Tuple[float, float]:
    suffix = stream.direction.suffix
    rtt = stream.values.get(f"delta_rtt_ms_{suffix}")
    if rtt is None:
        rtt = report.network.get("delta_rtt_connectivity_ms")
    jitter = stream.values.get(f"delta_jitter_ms_{suffix}")
    return _sanitize(rtt), _sanitize(jitter)


def score_stream(
    stream: StreamMetrics,
    report: Report,
    previous: Optional[StreamMetrics],
    before_last: Optional[StreamMetrics],
) -> Tuple[float, float]:
    """
    Compute (emodel, smoothed) MOS for one audio stream.

    Only the smoothed score is blended with the previous and before-last
    scores; the emodel score reflects the current window alone. Missing
    remote measurements on outbound streams count as perfect.
    """
    loss = _window_loss(stream, previous, before_last)
    rtt, jitter = _delay_inputs(stream, report)

    key = f"mos_{stream.direction.suffix}"
    emodel = emodel_mos(loss, rtt, jitter)
    smoothed = smooth(
        effective_latency_mos(loss, rtt, jitter),
        previous.values.get(key) if previous is not None else None,
        before_last.values.get(key) if before_last is not None else None,
    )
    return emodel, smoothed


def score(
    report: Report,
    previous: Optional[Report] = None,
    before_last: Optional[Report] = None,
) -> Report:
    """Fill the MOS fields of every audio stream of the report."""
    for ssrc, stream in report.audio.streams.items():
        prev_stream = previous.stream(MediaKind.AUDIO, ssrc) if previous else None
        before_stream = before_last.stream(MediaKind.AUDIO, ssrc) if before_last else None
        emodel, smoothed = score_stream(stream, report, prev_stream, before_stream)
        suffix = stream.direction.suffix
        stream.values[f"mos_emodel_{suffix}"] = round(emodel, 2)
        stream.values[f"mos_{suffix}"] = round(smoothed, 2)
    return report
