"""Sheet: sparse cell storage, sizing and the formula engine entry points."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Union

from gridengine._cell import EMPTY, Cell, CellValue
from gridengine._refs import CellRange, CellRef

if TYPE_CHECKING:
    from gridengine._config import CalcSettings
    from gridengine._workbook import Spreadsheet
    from gridengine.calc._evaluator import SheetEvaluator
    from gridengine.calc._protocol import RecalcResult

RefLike = Union[CellRef, str]

DEFAULT_COL_WIDTH = 100.0
DEFAULT_ROW_HEIGHT = 24.0


def _as_ref(key: RefLike) -> CellRef:
    if isinstance(key, CellRef):
        return key
    ref = CellRef.parse(key)
    if ref is None:
        raise ValueError(f"Invalid cell reference: {key!r}")
    return ref


class Sheet:
    """A single sheet of a :class:`Spreadsheet`.

    Storage is sparse: only cells holding a value or a formula are kept.
    ``get``/``set``/``clear`` are raw storage access and never recompute;
    the ``*_cell_*`` methods go through the formula engine and return a
    :class:`~gridengine.calc.RecalcResult`.
    """

    __slots__ = (
        "_workbook", "_name", "_cells", "_col_widths", "_row_heights",
        "default_col_width", "default_row_height", "frozen_rows", "frozen_cols",
        "_settings", "_calc",
    )

    def __init__(
        self,
        name: str = "Sheet1",
        settings: CalcSettings | None = None,
        workbook: Spreadsheet | None = None,
    ) -> None:
        self._workbook = workbook
        self._name = name
        self._cells: dict[CellRef, Cell] = {}
        self._col_widths: dict[int, float] = {}
        self._row_heights: dict[int, float] = {}
        self.default_col_width = DEFAULT_COL_WIDTH
        self.default_row_height = DEFAULT_ROW_HEIGHT
        self.frozen_rows = 0
        self.frozen_cols = 0
        self._settings = settings
        self._calc: SheetEvaluator | None = None

    @property
    def name(self) -> str:
        return self._name

    @name.setter
    def name(self, value: str) -> None:
        """Rename this sheet, keeping names unique within its spreadsheet."""
        if value == self._name:
            return
        wb = self._workbook
        if wb is not None and value in wb:
            raise ValueError(f"Sheet '{value}' already exists")
        self._name = value

    # ------------------------------------------------------------------
    # Raw storage
    # ------------------------------------------------------------------

    def get(self, ref: RefLike) -> Cell | None:
        """The stored cell, or None.  The returned object is live, not a copy."""
        return self._cells.get(_as_ref(ref))

    def set(self, ref: RefLike, cell: Cell) -> None:
        """Store *cell*; an empty non-formula cell removes the entry instead."""
        ref = _as_ref(ref)
        if cell.value.is_empty and cell.formula is None:
            self._cells.pop(ref, None)
        else:
            self._cells[ref] = cell

    def clear(self, ref: RefLike) -> None:
        self._cells.pop(_as_ref(ref), None)

    def cells(self) -> Iterator[tuple[CellRef, Cell]]:
        """``(ref, cell)`` pairs in insertion order."""
        return iter(self._cells.items())

    def __getitem__(self, key: RefLike) -> Cell | None:
        """``sheet['A1']`` -> stored Cell or None."""
        return self.get(key)

    def __contains__(self, key: object) -> bool:
        if isinstance(key, str):
            key = CellRef.parse(key)
        return key in self._cells

    def __len__(self) -> int:
        return len(self._cells)

    def used_range(self) -> tuple[CellRef, CellRef] | None:
        """Bounding box of the stored cells as ``(top_left, bottom_right)``."""
        if not self._cells:
            return None
        min_r = min_c = None
        max_r = max_c = 0
        for ref in self._cells:
            min_r = ref.row if min_r is None else min(min_r, ref.row)
            min_c = ref.col if min_c is None else min(min_c, ref.col)
            max_r = max(max_r, ref.row)
            max_c = max(max_c, ref.col)
        return CellRef(min_r, min_c), CellRef(max_r, max_c)

    def range_values(self, rng: CellRange | str) -> list[CellValue]:
        """Row-major values of *rng*, EMPTY where nothing is stored."""
        if isinstance(rng, str):
            parsed = CellRange.parse(rng)
            if parsed is None:
                raise ValueError(f"Invalid range: {rng!r}")
            rng = parsed
        result: list[CellValue] = []
        for ref in rng.cells():
            cell = self._cells.get(ref)
            result.append(EMPTY if cell is None else cell.value)
        return result

    # ------------------------------------------------------------------
    # Sizing
    # ------------------------------------------------------------------

    def col_width(self, col: int) -> float:
        return self._col_widths.get(col, self.default_col_width)

    def set_col_width(self, col: int, width: float) -> None:
        if width <= 0:
            raise ValueError(f"Column width must be positive, got {width}")
        if width == self.default_col_width:
            self._col_widths.pop(col, None)
        else:
            self._col_widths[col] = width

    def row_height(self, row: int) -> float:
        return self._row_heights.get(row, self.default_row_height)

    def set_row_height(self, row: int, height: float) -> None:
        if height <= 0:
            raise ValueError(f"Row height must be positive, got {height}")
        if height == self.default_row_height:
            self._row_heights.pop(row, None)
        else:
            self._row_heights[row] = height

    def freeze(self, rows: int, cols: int) -> None:
        """Freeze the top *rows* and left *cols*; ``freeze(0, 0)`` unfreezes."""
        if rows < 0 or cols < 0:
            raise ValueError("Frozen row/column counts must be non-negative")
        self.frozen_rows = rows
        self.frozen_cols = cols

    # ------------------------------------------------------------------
    # Formula engine
    # ------------------------------------------------------------------

    @property
    def calc(self) -> SheetEvaluator:
        """The sheet's recalculation driver, created on first use."""
        if self._calc is None:
            from gridengine.calc._evaluator import SheetEvaluator

            self._calc = SheetEvaluator(self, self._settings)
        return self._calc

    def get_cell_value(self, ref: RefLike) -> CellValue | None:
        """Current value at *ref*; a stale formula cell is recomputed first."""
        ref = _as_ref(ref)
        if self._calc is None:
            cell = self._cells.get(ref)
            return None if cell is None else cell.value
        return self._calc.value(ref)

    def set_cell_value(self, ref: RefLike, value: Any) -> RecalcResult:
        return self.calc.set_value(_as_ref(ref), CellValue.from_python(value))

    def set_cell_formula(self, ref: RefLike, text: str) -> RecalcResult:
        return self.calc.set_formula(_as_ref(ref), text)

    def set_cell_input(self, ref: RefLike, text: str) -> RecalcResult:
        return self.calc.set_input(_as_ref(ref), text)

    def clear_cell(self, ref: RefLike) -> RecalcResult:
        return self.calc.clear(_as_ref(ref))

    def recalculate_all(self) -> RecalcResult:
        return self.calc.recalculate_all()

    @contextmanager
    def deferred(self) -> Iterator[Sheet]:
        """Batch engine writes into one recompute pass run on exit.

        The pass result is available afterwards as ``sheet.calc.last_result``.
        """
        with self.calc.deferred():
            yield self

    def __repr__(self) -> str:
        return f"<Sheet \"{self._name}\">"
