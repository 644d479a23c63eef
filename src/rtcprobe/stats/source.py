"""
Snapshot sources.

A snapshot source is polled by the collector once per tick and yields the
raw stat entries of the session at that moment.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence, Union

from rtcprobe.stats.models import StatEntry

logger = logging.getLogger(__name__)

RawEntry = Union[StatEntry, Dict[str, Any]]


def to_entries(raw: Iterable[RawEntry]) -> List[StatEntry]:
    """Normalize a snapshot to StatEntry objects."""
    entries = []
    for item in raw:
        if isinstance(item, StatEntry):
            entries.append(item)
        else:
            entries.append(StatEntry.from_dict(item))
    return entries


class SnapshotSource(ABC):
    """Anything that can be asked for the current stats of a session."""

    @abstractmethod
    async def get_stats(self) -> Iterable[RawEntry]:
        """Return the entries of a fresh snapshot."""
        pass


class ReplaySource(SnapshotSource):
    """
    Replays recorded snapshots in order.

    The last snapshot is repeated once the recording is exhausted.
    """

    def __init__(self, snapshots: Sequence[Iterable[RawEntry]]):
        if not snapshots:
            raise ValueError("ReplaySource needs at least one snapshot")
        self._snapshots = [to_entries(s) for s in snapshots]
        self._position = 0

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ReplaySource":
        """
        Load snapshots from a JSON array or a JSON lines file.

        Each snapshot is a list of stat dictionaries, or an object whose
        values are stat dictionaries (as a stats map serializes).
        """
        text = Path(path).read_text()
        stripped = text.lstrip()
        if stripped.startswith("["):
            data = json.loads(text)
        else:
            data = [json.loads(line) for line in text.splitlines() if line.strip()]

        snapshots = []
        for snapshot in data:
            if isinstance(snapshot, dict):
                snapshot = list(snapshot.values())
            snapshots.append(snapshot)
        logger.info(f"Loaded {len(snapshots)} snapshot(s) from {path}")
        return cls(snapshots)

    async def get_stats(self) -> List[StatEntry]:
        snapshot = self._snapshots[min(self._position, len(self._snapshots) - 1)]
        self._position += 1
        return list(snapshot)

    def __len__(self) -> int:
        return len(self._snapshots)
