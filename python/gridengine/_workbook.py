"""Spreadsheet: an ordered collection of sheets with an active-sheet cursor.

The engine methods (``get_cell_value``, ``set_cell_formula`` ...) forward to
the active sheet under the spreadsheet's re-entrant lock, so a whole
recompute pass runs as one critical section when a spreadsheet is shared
between threads.  ``with spreadsheet:`` holds the same lock across several
calls.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from gridengine._worksheet import RefLike, Sheet

if TYPE_CHECKING:
    from gridengine._cell import CellValue
    from gridengine._config import CalcSettings
    from gridengine.calc._protocol import RecalcResult


class Spreadsheet:
    """A workbook of one or more sheets."""

    def __init__(self, settings: CalcSettings | None = None) -> None:
        """Create a spreadsheet holding a single sheet named 'Sheet1'."""
        self._settings = settings
        self._sheets: list[Sheet] = [Sheet("Sheet1", settings, workbook=self)]
        self._active = 0
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Sheet access
    # ------------------------------------------------------------------

    @property
    def active_sheet(self) -> int:
        return self._active

    @active_sheet.setter
    def active_sheet(self, index: int) -> None:
        if not 0 <= index < len(self._sheets):
            raise IndexError(f"Sheet index {index} out of range")
        self._active = index

    def active(self) -> Sheet:
        return self._sheets[self._active]

    def sheet(self, index: int) -> Sheet | None:
        if 0 <= index < len(self._sheets):
            return self._sheets[index]
        return None

    def sheet_count(self) -> int:
        return len(self._sheets)

    def sheet_names(self) -> list[str]:
        return [s.name for s in self._sheets]

    def __getitem__(self, name: str) -> Sheet:
        for s in self._sheets:
            if s.name == name:
                return s
        raise KeyError(f"Sheet '{name}' does not exist")

    def __contains__(self, name: object) -> bool:
        return any(s.name == name for s in self._sheets)

    def __iter__(self) -> Iterator[Sheet]:
        return iter(list(self._sheets))

    def __len__(self) -> int:
        return len(self._sheets)

    # ------------------------------------------------------------------
    # Sheet management
    # ------------------------------------------------------------------

    def add_sheet(self, name: str) -> int:
        """Append a new sheet and return its index."""
        with self._lock:
            if name in self:
                raise ValueError(f"Sheet '{name}' already exists")
            self._sheets.append(Sheet(name, self._settings, workbook=self))
            return len(self._sheets) - 1

    def remove_sheet(self, index: int) -> Sheet | None:
        """Remove and return the sheet at *index*.

        The last remaining sheet cannot be removed; that and an invalid index
        return None without changing anything.
        """
        with self._lock:
            if len(self._sheets) <= 1 or not 0 <= index < len(self._sheets):
                return None
            removed = self._sheets.pop(index)
            removed._workbook = None  # noqa: SLF001
            if self._active >= len(self._sheets):
                self._active = len(self._sheets) - 1
            return removed

    def rename_sheet(self, index: int, name: str) -> bool:
        """Rename the sheet at *index*; False for an invalid index."""
        with self._lock:
            target = self.sheet(index)
            if target is None:
                return False
            target.name = name
            return True

    # ------------------------------------------------------------------
    # Engine interface (active sheet)
    # ------------------------------------------------------------------

    def get_cell_value(self, ref: RefLike) -> CellValue | None:
        with self._lock:
            return self.active().get_cell_value(ref)

    def set_cell_value(self, ref: RefLike, value: Any) -> RecalcResult:
        with self._lock:
            return self.active().set_cell_value(ref, value)

    def set_cell_formula(self, ref: RefLike, text: str) -> RecalcResult:
        with self._lock:
            return self.active().set_cell_formula(ref, text)

    def set_cell_input(self, ref: RefLike, text: str) -> RecalcResult:
        with self._lock:
            return self.active().set_cell_input(ref, text)

    def clear_cell(self, ref: RefLike) -> RecalcResult:
        with self._lock:
            return self.active().clear_cell(ref)

    def recalculate_all(self) -> RecalcResult:
        """Rebuild and re-evaluate every formula on the active sheet."""
        with self._lock:
            return self.active().recalculate_all()

    recalculate = recalculate_all

    @contextmanager
    def deferred(self) -> Iterator[Sheet]:
        """Batch writes to the active sheet into one recompute pass."""
        with self._lock, self.active().deferred() as sheet:
            yield sheet

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> Spreadsheet:
        self._lock.acquire()
        return self

    def __exit__(self, *args: object) -> None:
        self._lock.release()

    def __repr__(self) -> str:
        return f"<Spreadsheet sheets={self.sheet_names()} active={self._active}>"
