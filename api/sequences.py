"""
Saved sequence searches.

A saved sequence is a bit pattern looked up in a file. Every occurrence is
recorded along with the spacing between consecutive occurrences, and the
occurrences can be highlighted in the viewer next to boundary markers.
"""

import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np

from .shared.bitstring import validate_bits

DEFAULT_SEQUENCE_COLOR = "#FF00FF"
SORT_KEYS = ("serial", "count", "length", "position")

_SEPARATORS = re.compile(r"[,\s]+")
_BINARY = re.compile(r"^[01]+$")


def parse_sequences(query: str) -> List[str]:
    """Split a comma or whitespace separated query, keeping binary tokens only."""
    return [token for token in _SEPARATORS.split(query.strip()) if _BINARY.match(token)]


def find_all_positions(bits: str, sequence: str) -> List[int]:
    """Start index of every occurrence of ``sequence``, overlaps included."""
    positions: List[int] = []
    if not sequence:
        return positions
    pos = bits.find(sequence)
    while pos != -1:
        positions.append(pos)
        pos = bits.find(sequence, pos + 1)
    return positions


def distance_stats(positions: List[int]) -> Tuple[float, float]:
    """Mean and population variance of the gaps between consecutive positions."""
    if len(positions) < 2:
        return 0.0, 0.0
    gaps = np.diff(np.asarray(positions, dtype=np.int64))
    return float(gaps.mean()), float(gaps.var())


def search_sequences(bits: str, sequences: Iterable[str]) -> List[Dict[str, Any]]:
    """Occurrences and spacing of several sequences at once."""
    matches = []
    for sequence in sequences:
        validate_bits(sequence)
        positions = find_all_positions(bits, sequence)
        mean, variance = distance_stats(positions)
        matches.append({
            "sequence": sequence,
            "positions": positions,
            "count": len(positions),
            "mean_distance": mean,
            "variance_distance": variance,
        })
    return matches


@dataclass
class SavedSequence:
    id: str
    serial_number: int
    sequence: str
    color: str = DEFAULT_SEQUENCE_COLOR
    positions: List[int] = field(default_factory=list)
    highlighted: bool = True

    @property
    def count(self) -> int:
        return len(self.positions)

    def export(self) -> Dict[str, Any]:
        mean, variance = distance_stats(self.positions)
        return {
            "sequence": self.sequence,
            "color": self.color,
            "count": self.count,
            "positions": self.positions,
            "mean_distance": mean,
            "variance_distance": variance,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "serial_number": self.serial_number,
            "length": len(self.sequence),
            "highlighted": self.highlighted,
            **self.export(),
        }


class SequenceManager:
    """Saved sequences of one file, kept in the order they were added."""

    def __init__(self):
        self._sequences: List[SavedSequence] = []
        self._next_serial = 1

    def __len__(self) -> int:
        return len(self._sequences)

    def get(self, sequence_id: str) -> Optional[SavedSequence]:
        return next((s for s in self._sequences if s.id == sequence_id), None)

    def find(self, sequence: str) -> Optional[SavedSequence]:
        return next((s for s in self._sequences if s.sequence == sequence), None)

    def get_all(self, sort: str = "serial") -> List[SavedSequence]:
        if sort not in SORT_KEYS:
            raise ValueError(f"Unknown sort key: {sort}. Expected one of {', '.join(SORT_KEYS)}")
        items = list(self._sequences)
        if sort == "count":
            items.sort(key=lambda s: -s.count)
        elif sort == "length":
            items.sort(key=lambda s: -len(s.sequence))
        elif sort == "position":
            items.sort(key=lambda s: s.positions[0] if s.positions else 0)
        return items

    def add(
        self,
        sequences: Iterable[str],
        bits: str,
        color: str = DEFAULT_SEQUENCE_COLOR,
    ) -> Tuple[List[SavedSequence], List[str]]:
        """Search and save ``sequences``; ones already saved are skipped.

        Returns:
            Tuple of (added sequences, skipped sequence strings)
        """
        added: List[SavedSequence] = []
        skipped: List[str] = []
        for match in search_sequences(bits, sequences):
            if self.find(match["sequence"]) is not None:
                skipped.append(match["sequence"])
                continue
            saved = SavedSequence(
                id=uuid.uuid4().hex[:8],
                serial_number=self._next_serial,
                sequence=match["sequence"],
                color=color,
                positions=match["positions"],
            )
            self._next_serial += 1
            self._sequences.append(saved)
            added.append(saved)
        return added, skipped

    def remove(self, sequence_id: str) -> Optional[SavedSequence]:
        saved = self.get(sequence_id)
        if saved is not None:
            self._sequences.remove(saved)
        return saved

    def clear(self) -> None:
        self._sequences.clear()
        self._next_serial = 1

    def toggle_highlight(self, sequence_id: str) -> Optional[bool]:
        saved = self.get(sequence_id)
        if saved is None:
            return None
        saved.highlighted = not saved.highlighted
        return saved.highlighted

    def refresh_positions(self, bits: str) -> None:
        for saved in self._sequences:
            saved.positions = find_all_positions(bits, saved.sequence)

    def get_highlight_ranges(self) -> List[Dict[str, Any]]:
        """Inclusive ``{start, end, color}`` ranges of highlighted occurrences."""
        return [
            {"start": pos, "end": pos + len(s.sequence) - 1, "color": s.color}
            for s in self._sequences if s.highlighted
            for pos in s.positions
        ]

    def export(self) -> List[Dict[str, Any]]:
        return [s.export() for s in self._sequences]
