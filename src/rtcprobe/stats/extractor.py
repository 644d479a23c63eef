"""
Stat entry normalization.

Maps raw WebRTC-style stat entries to typed values for the report under
construction, plus internal signals consumed by change detection.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from rtcprobe.stats.models import (
    BUCKET_NETWORK,
    BUCKET_PASSTHROUGH,
    BucketValue,
    Direction,
    Extracted,
    MediaKind,
    Report,
    Signal,
    SignalValue,
    StatEntry,
    StreamMetrics,
)

logger = logging.getLogger(__name__)


class StatType:
    """WebRTC stat types understood by the extractor."""
    INBOUND_RTP = "inbound-rtp"
    OUTBOUND_RTP = "outbound-rtp"
    REMOTE_INBOUND_RTP = "remote-inbound-rtp"
    REMOTE_OUTBOUND_RTP = "remote-outbound-rtp"
    MEDIA_SOURCE = "media-source"
    CANDIDATE_PAIR = "candidate-pair"
    LOCAL_CANDIDATE = "local-candidate"
    REMOTE_CANDIDATE = "remote-candidate"
    TRANSPORT = "transport"
    CODEC = "codec"


def _ms(seconds: Optional[float]) -> Optional[float]:
    if seconds is None:
        return None
    return round(seconds * 1000, 3)


def _kbytes(octets: Optional[float]) -> Optional[float]:
    if octets is None:
        return None
    return round(octets / 1024, 3)


def _is_known(stream: Optional[StreamMetrics]) -> bool:
    """A stream is known when an RTP entry was merged into it on a previous tick."""
    return stream is not None and stream.values.get("timestamp") is not None


def _delta(stream: Optional[StreamMetrics], key: str, value: Optional[float]) -> Optional[float]:
    if value is None or not _is_known(stream):
        return None
    previous = stream.values.get(key)
    if previous is None:
        return None
    return round(value - previous, 3)


def _rate_kbs(
    kbytes: Optional[float],
    timestamp: Optional[float],
    since: Optional[float],
) -> Optional[float]:
    if kbytes is None or timestamp is None or since is None or timestamp <= since:
        return None
    return round(kbytes * 8 / ((timestamp - since) / 1000), 2)


def _size(width: Any, height: Any, framerate: Any) -> Optional[Dict[str, Any]]:
    if width is None and height is None:
        return None
    return {"width": width or 0, "height": height or 0, "framerate": framerate or 0}


def _codec(entry: StatEntry, index: Mapping[str, StatEntry]) -> Optional[Dict[str, Any]]:
    codec = index.get(entry.get("codecId", ""))
    if codec is None:
        return None
    return {
        "mime_type": codec.get("mimeType"),
        "clock_rate": codec.get("clockRate"),
        "channels": codec.get("channels"),
        "sdp_fmtp_line": codec.get("sdpFmtpLine"),
    }


def _average_since_reference(
    reference: Optional[Report],
    kind: MediaKind,
    ssrc: str,
    total_key: str,
    total: Optional[float],
    timestamp: Optional[float],
) -> Optional[float]:
    """Average bitrate between the reference report and now."""
    if reference is None or total is None:
        return None
    ref_stream = reference.stream(kind, ssrc)
    if ref_stream is not None and ref_stream.values.get("timestamp") is not None:
        return _rate_kbs(
            total - ref_stream.get(total_key, 0),
            timestamp,
            ref_stream.values["timestamp"],
        )
    return _rate_kbs(total, timestamp, reference.timestamp)


def _loss_percent(delta_packets: Optional[float], delta_lost: Optional[float]) -> float:
    if delta_packets is None or delta_lost is None:
        return 0
    expected = delta_packets + delta_lost
    if expected <= 0:
        return 0
    return round(max(delta_lost, 0) / expected * 100, 2)


def _extract_inbound_rtp(
    entry: StatEntry,
    report: Report,
    reference: Optional[Report],
    index: Mapping[str, StatEntry],
) -> List[Extracted]:
    kind, ssrc = entry.kind, entry.ssrc
    if kind is None or ssrc is None:
        return []

    stream = report.stream(kind, ssrc)
    timestamp = entry.timestamp
    previous_timestamp = stream.values.get("timestamp") if stream else None

    packets = entry.get("packetsReceived")
    lost = entry.get("packetsLost")
    total_kbytes = _kbytes(entry.get("bytesReceived"))
    delta_packets = _delta(stream, "total_packets_in", packets)
    delta_lost = _delta(stream, "total_packets_lost_in", lost)
    delta_kbytes = _delta(stream, "total_KBytes_in", total_kbytes)

    values: Dict[str, Any] = {
        "timestamp": timestamp,
        "codec_in": _codec(entry, index),
        "track_in": entry.get("trackIdentifier"),
        "delta_packets_in": delta_packets,
        "delta_packets_lost_in": delta_lost,
        "percent_packets_lost_in": _loss_percent(delta_packets, delta_lost),
        "delta_KBytes_in": delta_kbytes,
        "delta_kbs_in": _rate_kbs(delta_kbytes, timestamp, previous_timestamp),
        "avg_kbs_in": _average_since_reference(
            reference, kind, ssrc, "total_KBytes_in", total_kbytes, timestamp
        ),
        "active_in": delta_packets > 0 if delta_packets is not None else bool(packets),
    }
    if packets is not None:
        values["total_packets_in"] = packets
    if lost is not None:
        values["total_packets_lost_in"] = lost
    if total_kbytes is not None:
        values["total_KBytes_in"] = total_kbytes
    if entry.get("jitter") is not None:
        values["delta_jitter_ms_in"] = _ms(entry.get("jitter"))

    if kind == MediaKind.AUDIO:
        if entry.get("audioLevel") is not None:
            values["level_in"] = entry.get("audioLevel")
    else:
        values["size_in"] = _size(
            entry.get("frameWidth"), entry.get("frameHeight"), entry.get("framesPerSecond")
        )
        values["decoder_in"] = entry.get("decoderImplementation")
        values["total_frames_decoded_in"] = entry.get("framesDecoded", 0)
        values["total_nack_sent_in"] = entry.get("nackCount", 0)
        values["total_pli_sent_in"] = entry.get("pliCount", 0)

    extracted: List[Extracted] = [
        BucketValue(kind.value, values, ssrc=ssrc, direction=Direction.INBOUND)
    ]
    if total_kbytes is not None:
        extracted.append(SignalValue(Signal.BYTES_RECEIVED_CHANGED, kind, ssrc))
    return extracted


def _extract_outbound_rtp(
    entry: StatEntry,
    report: Report,
    reference: Optional[Report],
    index: Mapping[str, StatEntry],
) -> List[Extracted]:
    kind, ssrc = entry.kind, entry.ssrc
    if kind is None or ssrc is None:
        return []

    stream = report.stream(kind, ssrc)
    timestamp = entry.timestamp
    previous_timestamp = stream.values.get("timestamp") if stream else None

    total_kbytes = _kbytes(entry.get("bytesSent"))
    delta_kbytes = _delta(stream, "total_KBytes_out", total_kbytes)

    values: Dict[str, Any] = {
        "timestamp": timestamp,
        "codec_out": _codec(entry, index),
        "active_out": bool(entry.get("active", True)),
        "delta_KBytes_out": delta_kbytes,
        "delta_kbs_out": _rate_kbs(delta_kbytes, timestamp, previous_timestamp),
        "avg_kbs_out": _average_since_reference(
            reference, kind, ssrc, "total_KBytes_out", total_kbytes, timestamp
        ),
    }
    if entry.get("packetsSent") is not None:
        values["total_packets_out"] = entry.get("packetsSent")
    if total_kbytes is not None:
        values["total_KBytes_out"] = total_kbytes

    extracted: List[Extracted] = [SignalValue(Signal.MEDIA_SOURCE_CHANGED, kind, ssrc)]
    if total_kbytes is not None:
        extracted.append(SignalValue(Signal.BYTES_SENT_CHANGED, kind, ssrc))

    source = index.get(entry.get("mediaSourceId", ""))
    if source is not None:
        values["track_out"] = source.get("trackIdentifier")
        if values["track_out"] is not None:
            extracted.append(SignalValue(Signal.DEVICE_CHANGED, kind, ssrc))
        if kind == MediaKind.AUDIO and source.get("audioLevel") is not None:
            values["level_out"] = source.get("audioLevel")
        if kind == MediaKind.VIDEO:
            values["input_size_out"] = _size(
                source.get("width"), source.get("height"), source.get("framesPerSecond")
            )
            if values["input_size_out"] is not None:
                extracted.append(SignalValue(Signal.INPUT_SIZE_CHANGED, kind, ssrc))

    if kind == MediaKind.VIDEO:
        values["size_out"] = _size(
            entry.get("frameWidth"), entry.get("frameHeight"), entry.get("framesPerSecond")
        )
        values["encoder_out"] = entry.get("encoderImplementation")
        values["total_frames_encoded_out"] = entry.get("framesEncoded", 0)
        values["total_nack_received_out"] = entry.get("nackCount", 0)
        values["total_pli_received_out"] = entry.get("pliCount", 0)
        if values["size_out"] is not None:
            extracted.append(SignalValue(Signal.OUTPUT_SIZE_CHANGED, kind, ssrc))
        reason = entry.get("qualityLimitationReason")
        if reason is not None:
            values["limitation_out"] = {
                "reason": reason,
                "durations": entry.get("qualityLimitationDurations"),
                "resolution_changes": entry.get("qualityLimitationResolutionChanges", 0),
            }
            extracted.append(SignalValue(Signal.VIDEO_LIMITATION_CHANGED, kind, ssrc))

    extracted.insert(0, BucketValue(kind.value, values, ssrc=ssrc, direction=Direction.OUTBOUND))
    return extracted


def _extract_remote_inbound_rtp(entry: StatEntry) -> List[Extracted]:
    """Remote view of our outbound stream: RTT, jitter and loss."""
    kind, ssrc = entry.kind, entry.ssrc
    if kind is None or ssrc is None:
        return []

    values: Dict[str, Any] = {}
    if entry.get("roundTripTime") is not None:
        values["delta_rtt_ms_out"] = _ms(entry.get("roundTripTime"))
    if entry.get("jitter") is not None:
        values["delta_jitter_ms_out"] = _ms(entry.get("jitter"))
    if entry.get("packetsLost") is not None:
        values["total_packets_lost_out"] = entry.get("packetsLost")
    if entry.get("fractionLost") is not None:
        values["fraction_lost_out"] = entry.get("fractionLost")
        values["percent_packets_lost_out"] = round(entry.get("fractionLost") * 100, 2)
    return [BucketValue(kind.value, values, ssrc=ssrc, direction=Direction.OUTBOUND)]


def _extract_remote_outbound_rtp(entry: StatEntry) -> List[Extracted]:
    kind, ssrc = entry.kind, entry.ssrc
    if kind is None or ssrc is None or entry.get("roundTripTime") is None:
        return []
    values = {"delta_rtt_ms_in": _ms(entry.get("roundTripTime"))}
    return [BucketValue(kind.value, values, ssrc=ssrc, direction=Direction.INBOUND)]


def _extract_media_source(entry: StatEntry) -> List[Extracted]:
    kind = entry.kind
    if kind == MediaKind.AUDIO:
        values = {
            "level_local": entry.get("audioLevel"),
            "total_audio_energy_local": entry.get("totalAudioEnergy"),
        }
    elif kind == MediaKind.VIDEO:
        values = {
            "capture_size": _size(
                entry.get("width"), entry.get("height"), entry.get("framesPerSecond")
            ),
        }
    else:
        return []
    return [BucketValue(kind.value, values)]


def _is_selected_pair(entry: StatEntry, entries: Sequence[StatEntry]) -> bool:
    """
    Tell whether a candidate pair is the one carrying media.

    Transports name their selected pair; older stacks only flag the pair.
    """
    selected_ids = [
        e.get("selectedCandidatePairId")
        for e in entries
        if e.type == StatType.TRANSPORT and e.get("selectedCandidatePairId")
    ]
    if selected_ids:
        return entry.id in selected_ids
    if entry.get("selected"):
        return True
    return bool(entry.get("nominated")) and entry.get("state") == "succeeded"


def _extract_candidate_pair(
    entry: StatEntry,
    index: Mapping[str, StatEntry],
    entries: Sequence[StatEntry],
) -> List[Extracted]:
    if not _is_selected_pair(entry, entries):
        return []

    outgoing = entry.get("availableOutgoingBitrate")
    incoming = entry.get("availableIncomingBitrate")
    values: Dict[str, Any] = {
        "selected_pair_id": entry.id,
        "delta_rtt_connectivity_ms": _ms(entry.get("currentRoundTripTime")),
        "total_rtt_connectivity_ms": _ms(entry.get("totalRoundTripTime")),
        "available_outgoing_bitrate_kbs": round(outgoing / 1000, 2) if outgoing is not None else None,
        "available_incoming_bitrate_kbs": round(incoming / 1000, 2) if incoming is not None else None,
    }

    local = index.get(entry.get("localCandidateId", ""))
    if local is not None:
        values["local_candidate_type"] = local.get("candidateType")
        values["local_candidate_protocol"] = local.get("protocol")
        values["local_candidate_address"] = local.get("address") or local.get("ip")
        values["local_candidate_relay_protocol"] = local.get("relayProtocol")
        values["local_candidate_network_type"] = local.get("networkType")

    remote = index.get(entry.get("remoteCandidateId", ""))
    if remote is not None:
        values["remote_candidate_type"] = remote.get("candidateType")
        values["remote_candidate_address"] = remote.get("address") or remote.get("ip")

    return [
        BucketValue(BUCKET_NETWORK, values),
        SignalValue(Signal.SELECTED_PAIR_CHANGED),
    ]


def _extract_transport(entry: StatEntry) -> List[Extracted]:
    values = {}
    if entry.get("dtlsState") is not None:
        values["dtls_state"] = entry.get("dtlsState")
    if entry.get("iceRole") is not None:
        values["ice_role"] = entry.get("iceRole")
    return [BucketValue(BUCKET_NETWORK, values)] if values else []


def _extract_passthrough(
    entry: StatEntry,
    passthrough: Mapping[str, Iterable[str]],
) -> List[Extracted]:
    fields = passthrough.get(entry.type)
    if not fields:
        return []
    kind, ssrc = entry.kind, entry.ssrc
    key = f"{kind.value}_{ssrc}" if kind is not None and ssrc is not None else entry.id
    values = {name: {key: entry.fields[name]} for name in fields if name in entry.fields}
    return [BucketValue(BUCKET_PASSTHROUGH, values)] if values else []


def extract(
    entry: StatEntry,
    report: Report,
    session_name: str,
    reference: Optional[Report] = None,
    entries: Optional[Sequence[StatEntry]] = None,
    passthrough: Optional[Mapping[str, Iterable[str]]] = None,
) -> List[Extracted]:
    """
    Normalize one stat entry.

    Args:
        entry: The raw entry to normalize.
        report: Report under construction; read only.
        session_name: Name of the session, used for diagnostics.
        reference: Baseline report of the session, if already taken.
        entries: Every entry of the current snapshot, for cross references.
        passthrough: Stat type to field names copied verbatim.

    Returns:
        Bucket values to merge and signals for change detection.
    """
    entries = entries if entries is not None else [entry]
    index = {e.id: e for e in entries if e.id}

    if entry.type == StatType.INBOUND_RTP:
        extracted = _extract_inbound_rtp(entry, report, reference, index)
    elif entry.type == StatType.OUTBOUND_RTP:
        extracted = _extract_outbound_rtp(entry, report, reference, index)
    elif entry.type == StatType.REMOTE_INBOUND_RTP:
        extracted = _extract_remote_inbound_rtp(entry)
    elif entry.type == StatType.REMOTE_OUTBOUND_RTP:
        extracted = _extract_remote_outbound_rtp(entry)
    elif entry.type == StatType.MEDIA_SOURCE:
        extracted = _extract_media_source(entry)
    elif entry.type == StatType.CANDIDATE_PAIR:
        extracted = _extract_candidate_pair(entry, index, entries)
    elif entry.type == StatType.TRANSPORT:
        extracted = _extract_transport(entry)
    else:
        extracted = []

    if passthrough:
        extracted.extend(_extract_passthrough(entry, passthrough))

    if extracted:
        logger.debug(f"{session_name}: {entry.type} {entry.id} -> {len(extracted)} value(s)")
    return extracted


def merge(report: Report, extracted: Iterable[Extracted]) -> List[SignalValue]:
    """
    Merge bucket values into the report.

    Returns:
        The signals found among the extracted values, in order.
    """
    signals: List[SignalValue] = []
    for item in extracted:
        if isinstance(item, SignalValue):
            signals.append(item)
        elif item.bucket == BUCKET_PASSTHROUGH:
            for name, mapping in item.values.items():
                report.passthrough.setdefault(name, {}).update(mapping)
        elif item.bucket == BUCKET_NETWORK:
            report.network.update(item.values)
        else:
            kind = MediaKind(item.bucket)
            if item.ssrc is not None:
                stream = report.ensure_stream(kind, item.ssrc, item.direction or Direction.INBOUND)
                stream.values.update(item.values)
            else:
                report.bucket(kind).values.update(item.values)
    return signals
