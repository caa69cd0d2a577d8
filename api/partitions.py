"""
Boundaries and partitions.

A boundary is a marker bit sequence; every occurrence of it splits the file.
The bits between occurrences form partitions, each with cached statistics.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .shared.binary_stats import BinaryStats, analyze
from .shared.bitstring import validate_bits

DEFAULT_BOUNDARY_COLOR = "#FF00FF"


def find_positions(bits: str, sequence: str) -> List[int]:
    """Non-overlapping occurrences of ``sequence``, scanning left to right."""
    positions: List[int] = []
    if not sequence:
        return positions
    pos = bits.find(sequence)
    while pos != -1:
        positions.append(pos)
        pos = bits.find(sequence, pos + len(sequence))
    return positions


@dataclass
class Boundary:
    id: str
    sequence: str
    description: str
    color: str = DEFAULT_BOUNDARY_COLOR
    positions: List[int] = field(default_factory=list)
    highlight: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sequence": self.sequence,
            "description": self.description,
            "color": self.color,
            "positions": self.positions,
            "occurrences": len(self.positions),
            "length": len(self.sequence),
            "highlight": self.highlight,
        }


@dataclass
class Partition:
    id: str
    start: int
    end: int
    bits: str
    stats: BinaryStats

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def to_dict(self, include_bits: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "start": self.start,
            "end": self.end,
            "length": self.length,
            "stats": self.stats.to_dict(),
        }
        if include_bits:
            data["bits"] = self.bits
        return data


class PartitionManager:
    """Boundaries of one file plus a per-range statistics cache."""

    def __init__(self):
        self._boundaries: List[Boundary] = []
        self._stats_cache: Dict[Tuple[int, int, int], BinaryStats] = {}
        self._cache_key: Optional[int] = None

    def get_boundaries(self) -> List[Boundary]:
        return list(self._boundaries)

    def get_boundary(self, boundary_id: str) -> Optional[Boundary]:
        return next((b for b in self._boundaries if b.id == boundary_id), None)

    def add_boundary(
        self,
        sequence: str,
        description: str,
        color: str = DEFAULT_BOUNDARY_COLOR,
        bits: str = "",
    ) -> Boundary:
        validate_bits(sequence)
        if not sequence:
            raise ValueError("Boundary sequence must not be empty")
        boundary = Boundary(
            id=uuid.uuid4().hex[:8],
            sequence=sequence,
            description=description,
            color=color,
            positions=find_positions(bits, sequence),
        )
        self._boundaries.append(boundary)
        return boundary

    def remove_boundary(self, boundary_id: str) -> Optional[Boundary]:
        boundary = self.get_boundary(boundary_id)
        if boundary is not None:
            self._boundaries.remove(boundary)
        return boundary

    def toggle_highlight(self, boundary_id: str) -> Optional[bool]:
        boundary = self.get_boundary(boundary_id)
        if boundary is None:
            return None
        boundary.highlight = not boundary.highlight
        return boundary.highlight

    def refresh_positions(self, bits: str) -> None:
        for boundary in self._boundaries:
            boundary.positions = find_positions(bits, boundary.sequence)

    def get_highlight_ranges(self) -> List[Dict[str, Any]]:
        """Inclusive ``{start, end, color}`` ranges of highlighted occurrences."""
        return [
            {"start": pos, "end": pos + len(b.sequence) - 1, "color": b.color}
            for b in self._boundaries if b.highlight
            for pos in b.positions
        ]

    def create_partitions(self, bits: str) -> List[Partition]:
        """Split ``bits`` at every boundary occurrence.

        Boundary bits belong to no partition and empty partitions are skipped.
        Occurrences overlapping an earlier one are ignored.
        """
        if not self._boundaries:
            return []
        self._check_cache(bits)

        occurrences = sorted(
            (pos, len(b.sequence))
            for b in self._boundaries
            for pos in find_positions(bits, b.sequence)
        )
        ranges: List[Tuple[int, int]] = []
        cursor = 0
        for pos, length in occurrences:
            if pos < cursor:
                continue
            if pos > cursor:
                ranges.append((cursor, pos - 1))
            cursor = pos + length
        if cursor < len(bits):
            ranges.append((cursor, len(bits) - 1))

        return [
            Partition(
                id=f"partition-{i}",
                start=start,
                end=end,
                bits=bits[start:end + 1],
                stats=self._stats_for(bits, start, end),
            )
            for i, (start, end) in enumerate(ranges)
        ]

    def _check_cache(self, bits: str) -> None:
        key = hash(bits)
        if key != self._cache_key:
            self._stats_cache.clear()
            self._cache_key = key

    def _stats_for(self, bits: str, start: int, end: int) -> BinaryStats:
        key = (start, end, self._cache_key or 0)
        stats = self._stats_cache.get(key)
        if stats is None:
            stats = analyze(bits[start:end + 1])
            self._stats_cache[key] = stats
        return stats


def append_boundary(bits: str, sequence: str) -> str:
    return bits + validate_bits(sequence)


def insert_boundary(bits: str, sequence: str, position: int) -> str:
    position = max(0, min(position, len(bits)))
    return bits[:position] + validate_bits(sequence) + bits[position:]
