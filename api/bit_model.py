"""
Editable bit buffer with undo/redo.

``BinaryModel`` holds the original bits as loaded and the working copy
that edits apply to. Each edit is recorded as a splice so it can be undone
and redone; listeners are notified after every change.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np

from .shared.bitstring import bits_to_bytes, bytes_to_bits, clean_bits, validate_bits

MAX_UNDO = 100


@dataclass
class EditAction:
    """Replace ``old_bits`` at ``start`` with ``new_bits``."""
    kind: str
    start: int
    old_bits: str
    new_bits: str


class BinaryModel:
    """Working copy of a bit string with bounded undo history."""

    def __init__(self, initial: str = ""):
        self._original = initial
        self._working = initial
        self._undo: List[EditAction] = []
        self._redo: List[EditAction] = []
        self._listeners: List[Callable[[], None]] = []

    @property
    def bits(self) -> str:
        return self._working

    @property
    def original_bits(self) -> str:
        return self._original

    def __len__(self) -> int:
        return len(self._working)

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    # ----- edits -----

    def set_bit(self, index: int, value: str) -> None:
        """Set one bit; out-of-range and no-op edits are ignored."""
        validate_bits(value)
        if len(value) != 1 or not 0 <= index < len(self._working):
            return
        if self._working[index] == value:
            return
        self._apply(EditAction("edit", index, self._working[index], value))

    def set_bits(self, start: int, bits: str) -> None:
        """Overwrite from ``start``; may extend past the current end."""
        validate_bits(bits)
        if not 0 <= start < len(self._working):
            return
        old = self._working[start:start + len(bits)]
        self._apply(EditAction("paste", start, old, bits))

    def replace_all(self, bits: str, kind: str = "transform") -> None:
        """Replace the whole working copy as one undoable action."""
        validate_bits(bits)
        if bits == self._working:
            return
        self._apply(EditAction(kind, 0, self._working, bits))

    def undo(self) -> bool:
        if not self._undo:
            return False
        action = self._undo.pop()
        self._redo.append(action)
        self._splice(action.start, len(action.new_bits), action.old_bits)
        return True

    def redo(self) -> bool:
        if not self._redo:
            return False
        action = self._redo.pop()
        self._undo.append(action)
        self._splice(action.start, len(action.old_bits), action.new_bits)
        return True

    def load_bits(self, bits: str) -> None:
        validate_bits(bits)
        self._original = bits
        self._working = bits
        self._clear_history()

    def reset(self) -> None:
        """Discard edits and return to the original bits."""
        self._working = self._original
        self._clear_history()

    def commit(self) -> None:
        """Make the working copy the new original."""
        self._original = self._working
        self._clear_history()

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    # ----- internals -----

    def _apply(self, action: EditAction) -> None:
        self._undo.append(action)
        if len(self._undo) > MAX_UNDO:
            self._undo.pop(0)
        self._redo.clear()
        self._splice(action.start, len(action.old_bits), action.new_bits)

    def _splice(self, start: int, remove: int, insert: str) -> None:
        self._working = self._working[:start] + insert + self._working[start + remove:]
        self._notify()

    def _clear_history(self) -> None:
        self._undo.clear()
        self._redo.clear()
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    # ----- constructors / converters -----

    @staticmethod
    def generate_random(length: int, probability: float = 0.5, seed: Optional[int] = None) -> str:
        rng = np.random.default_rng(seed)
        ones = rng.random(length) < probability
        return (ones.astype(np.uint8) + ord("0")).tobytes().decode("ascii")

    @staticmethod
    def generate_pattern(pattern: str, length: int) -> str:
        """Repeat ``pattern`` to exactly ``length`` bits."""
        validate_bits(pattern)
        if not pattern or length <= 0:
            return ""
        repeats = -(-length // len(pattern))
        return (pattern * repeats)[:length]

    @staticmethod
    def from_text(content: str) -> str:
        return clean_bits(content)

    @staticmethod
    def from_bytes(data: bytes) -> str:
        return bytes_to_bits(data)

    @staticmethod
    def to_bytes(bits: str) -> bytes:
        return bits_to_bytes(bits)
