"""
In-memory registry of open bit files.

Each file owns a ``FileState``: the editable model, its history and its
boundaries/partitions. Statistics are refreshed whenever the model changes.
"""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .app_config import get_max_bits
from .bit_model import BinaryModel
from .history import HistoryGroup, HistoryManager, group_history
from .partitions import Boundary, Partition, PartitionManager, append_boundary, insert_boundary
from .sequences import SavedSequence, SequenceManager
from .shared.binary_stats import BinaryStats, analyze
from .shared.logger import get_logger

logger = get_logger(__name__)


class FileTooLargeError(ValueError):
    """Raised when a bit string exceeds the configured size limit."""


def check_length(length: int) -> int:
    limit = get_max_bits()
    if length > limit:
        raise FileTooLargeError(f"Bit string has {length} bits, limit is {limit}")
    return length


def check_size(bits: str) -> str:
    check_length(len(bits))
    return bits


def text_to_binary(text: str) -> str:
    """Each character code (mod 256) becomes 8 bits."""
    return "".join(f"{ord(c) & 0xFF:08b}" for c in text)


def binary_to_text(bits: str) -> str:
    """Complete bytes decoded as Latin-1 characters."""
    return "".join(chr(int(bits[i:i + 8], 2)) for i in range(0, len(bits) - 7, 8))


class FileState:
    """All state for a single bit file."""

    def __init__(self, initial_bits: str = ""):
        self.model = BinaryModel(initial_bits)
        self.history = HistoryManager()
        self.partitions = PartitionManager()
        self.sequences = SequenceManager()
        self.stats: Optional[BinaryStats] = None

        self.model.subscribe(self._on_model_change)

        if initial_bits:
            self.update_stats()
            self.history.add_entry(initial_bits, "File created")

    @property
    def bits(self) -> str:
        return self.model.bits

    def _on_model_change(self) -> None:
        self.update_stats()
        self.partitions.refresh_positions(self.model.bits)
        self.sequences.refresh_positions(self.model.bits)

    def update_stats(self) -> None:
        bits = self.model.bits
        self.stats = analyze(bits) if bits else None

    def add_to_history(self, description: str) -> None:
        self.history.add_entry(self.model.bits, description)

    def apply(self, bits: str, description: str) -> None:
        """Replace the bits as one undoable edit and record it in history."""
        self.model.replace_all(check_size(bits))
        self.add_to_history(description)

    def restore(self, entry_id: str) -> bool:
        entry = self.history.get_entry(entry_id)
        if entry is None:
            return False
        self.model.replace_all(entry.bits, kind="restore")
        self.add_to_history(f"Restored: {entry.description}")
        return True

    # ----- boundaries -----

    def add_boundary(self, sequence: str, description: str, color: str) -> Boundary:
        boundary = self.partitions.add_boundary(sequence, description, color, self.model.bits)
        self.add_to_history(f"Added boundary: {description}")
        return boundary

    def append_boundary(self, sequence: str, description: str, color: str) -> Boundary:
        self.model.replace_all(check_size(append_boundary(self.model.bits, sequence)), kind="boundary")
        boundary = self.partitions.add_boundary(sequence, description, color, self.model.bits)
        self.add_to_history(f"Appended boundary: {description}")
        return boundary

    def insert_boundary(self, sequence: str, description: str, color: str, position: int) -> Boundary:
        new_bits = insert_boundary(self.model.bits, sequence, position)
        self.model.replace_all(check_size(new_bits), kind="boundary")
        boundary = self.partitions.add_boundary(sequence, description, color, self.model.bits)
        self.add_to_history(f"Inserted boundary at {position}: {description}")
        return boundary

    def remove_boundary(self, boundary_id: str) -> Optional[Boundary]:
        boundary = self.partitions.remove_boundary(boundary_id)
        if boundary is not None:
            self.add_to_history(f"Deleted boundary: {boundary.description}")
        return boundary

    def get_partitions(self) -> List[Partition]:
        return self.partitions.create_partitions(self.model.bits)

    def get_highlight_ranges(self) -> List[Dict[str, Any]]:
        """Sequence occurrences first, then boundary occurrences."""
        return self.sequences.get_highlight_ranges() + self.partitions.get_highlight_ranges()

    # ----- saved sequences -----

    def add_sequences(self, sequences: List[str], color: str) -> Tuple[List[SavedSequence], List[str]]:
        added, skipped = self.sequences.add(sequences, self.model.bits, color)
        for saved in added:
            logger.debug("Saved sequence %s with %d occurrences", saved.sequence, saved.count)
        return added, skipped

    def get_history_groups(self) -> List[HistoryGroup]:
        return group_history(self.history.get_entries())


@dataclass
class BinaryFile:
    id: str
    name: str
    type: str
    state: FileState
    created: datetime = field(default_factory=datetime.now)
    modified: datetime = field(default_factory=datetime.now)
    group: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        stats = self.state.stats
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "group": self.group,
            "created": self.created.isoformat(),
            "modified": self.modified.isoformat(),
            "length": len(self.state.model),
            "can_undo": self.state.model.can_undo,
            "can_redo": self.state.model.can_redo,
            "stats": stats.to_dict() if stats else None,
        }


class FileManager:
    """Thread-safe registry of open files with an active-file pointer."""

    def __init__(self):
        self._files: Dict[str, BinaryFile] = {}
        self._groups: set = set()
        self._active_id: Optional[str] = None
        self._lock = threading.Lock()

    def create_file(self, name: str, bits: str = "", file_type: str = "binary") -> BinaryFile:
        check_size(bits)
        file = BinaryFile(
            id=f"file_{uuid.uuid4().hex[:12]}",
            name=name,
            type=file_type,
            state=FileState(bits),
        )
        with self._lock:
            self._files[file.id] = file
            self._active_id = file.id
        logger.info("Created file %s (%s, %d bits)", file.id, name, len(bits))
        return file

    def list_files(self) -> List[BinaryFile]:
        with self._lock:
            return sorted(self._files.values(), key=lambda f: f.created)

    def get_file(self, file_id: str) -> Optional[BinaryFile]:
        with self._lock:
            return self._files.get(file_id)

    def update_file(self, file_id: str, bits: str) -> Optional[BinaryFile]:
        file = self.get_file(file_id)
        if file is not None:
            file.state.model.load_bits(check_size(bits))
            file.modified = datetime.now()
        return file

    def touch(self, file: BinaryFile) -> None:
        file.modified = datetime.now()

    def rename_file(self, file_id: str, name: str) -> Optional[BinaryFile]:
        file = self.get_file(file_id)
        if file is not None:
            file.name = name
            file.modified = datetime.now()
        return file

    def delete_file(self, file_id: str) -> bool:
        with self._lock:
            if self._files.pop(file_id, None) is None:
                return False
            if self._active_id == file_id:
                remaining = sorted(self._files.values(), key=lambda f: f.created)
                self._active_id = remaining[0].id if remaining else None
        return True

    def set_active(self, file_id: str) -> bool:
        with self._lock:
            if file_id not in self._files:
                return False
            self._active_id = file_id
            return True

    def get_active(self) -> Optional[BinaryFile]:
        with self._lock:
            return self._files.get(self._active_id) if self._active_id else None

    # ----- groups -----

    def set_group(self, file_id: str, group: Optional[str]) -> Optional[BinaryFile]:
        file = self.get_file(file_id)
        if file is not None:
            file.group = group or None
            file.modified = datetime.now()
        return file

    def add_group(self, name: str) -> None:
        if name.strip():
            self._groups.add(name.strip())

    def delete_group(self, name: str) -> None:
        self._groups.discard(name)
        for file in self.list_files():
            if file.group == name:
                file.group = None

    def get_groups(self) -> List[str]:
        groups = set(self._groups)
        groups.update(f.group for f in self.list_files() if f.group)
        return sorted(groups)

    def clear(self) -> None:
        with self._lock:
            self._files.clear()
            self._groups.clear()
            self._active_id = None


file_manager = FileManager()
