"""
Edit history for a file.

Entries are kept newest first and capped at 100. Each stores a full
snapshot of the bits so any entry can be restored directly.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

MAX_HISTORY = 100


def quick_stats(bits: str) -> Dict[str, Any]:
    n = len(bits)
    ones = bits.count("1")
    entropy = 0.0
    for count in (ones, n - ones):
        if count:
            p = count / n
            entropy -= p * math.log2(p)
    return {"total_bits": n, "zero_count": n - ones, "one_count": ones, "entropy": entropy}


@dataclass
class HistoryEntry:
    id: str
    timestamp: datetime
    description: str
    bits: str
    stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self, include_bits: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "description": self.description,
            "stats": self.stats,
        }
        if include_bits:
            data["bits"] = self.bits
        return data


@dataclass
class HistoryGroup:
    id: str
    type: str
    first_timestamp: datetime
    last_timestamp: datetime
    entries: List[HistoryEntry] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.entries)

    def to_dict(self, include_bits: bool = False) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "count": self.count,
            "first_timestamp": self.first_timestamp.isoformat(),
            "last_timestamp": self.last_timestamp.isoformat(),
            "entries": [e.to_dict(include_bits) for e in self.entries],
        }


class HistoryManager:
    """Newest-first history of bit snapshots."""

    def __init__(self, max_entries: int = MAX_HISTORY):
        self.max_entries = max_entries
        self._entries: List[HistoryEntry] = []

    def add_entry(self, bits: str, description: str) -> HistoryEntry:
        entry = HistoryEntry(
            id=uuid.uuid4().hex[:12],
            timestamp=datetime.now(),
            description=description,
            bits=bits,
            stats=quick_stats(bits),
        )
        self._entries.insert(0, entry)
        del self._entries[self.max_entries:]
        return entry

    def get_entries(self) -> List[HistoryEntry]:
        return list(self._entries)

    def get_entry(self, entry_id: str) -> Optional[HistoryEntry]:
        return next((e for e in self._entries if e.id == entry_id), None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


_TRANSFORM_WORDS = ("transform", "invert", "reverse", "shift", "xor", "pad")


def history_type(description: str) -> str:
    """Classify an entry by keywords in its description."""
    lower = description.lower()
    if "boundary" in lower:
        return "Boundary"
    if any(word in lower for word in _TRANSFORM_WORDS):
        return "Transformation"
    if "edit" in lower:
        return "Edit"
    if "generated" in lower:
        return "Generate"
    if "loaded" in lower or "file created" in lower:
        return "Load"
    return "Other"


def group_history(entries: List[HistoryEntry]) -> List[HistoryGroup]:
    """Group consecutive entries of the same type."""
    groups: List[HistoryGroup] = []
    for entry in entries:
        kind = history_type(entry.description)
        if groups and groups[-1].type == kind:
            groups[-1].entries.append(entry)
            groups[-1].last_timestamp = entry.timestamp
            continue
        groups.append(HistoryGroup(
            id=f"group-{len(groups)}",
            type=kind,
            first_timestamp=entry.timestamp,
            last_timestamp=entry.timestamp,
            entries=[entry],
        ))
    return groups
