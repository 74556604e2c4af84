"""Selection state: one or more ranges plus the primary (anchor) cell."""

from __future__ import annotations

from gridengine._refs import CellRange, CellRef


class Selection:
    """Cells selected in an editor session.

    ``primary`` is the most recently set endpoint and serves as the
    formula-bar reference cell.  ``ranges`` is never empty.
    """

    __slots__ = ("primary", "_ranges")

    def __init__(self, cell: CellRef | None = None) -> None:
        if cell is None:
            cell = CellRef(0, 0)
        self.primary: CellRef = cell
        self._ranges: list[CellRange] = [CellRange.single(cell)]

    @classmethod
    def from_range(cls, rng: CellRange) -> Selection:
        sel = cls(rng.end)
        sel._ranges = [rng]
        return sel

    def extend_to(self, end: CellRef) -> None:
        """Replace all ranges with one spanning from ``primary`` to *end*.

        Not cumulative: a second call replaces the first.  ``primary`` is
        left where it was.
        """
        self._ranges = [CellRange(self.primary, end)]

    def add_range(self, rng: CellRange) -> None:
        """Add a range for multi-select; its end becomes the primary cell."""
        self._ranges.append(rng)
        self.primary = rng.end

    def set(self, cell: CellRef) -> None:
        """Reset to a single-cell selection."""
        self.primary = cell
        self._ranges = [CellRange.single(cell)]

    def move(self, d_row: int, d_col: int) -> None:
        """Arrow-key movement: select the primary shifted by the deltas, clamped at A1."""
        self.set(self.primary.offset(d_row, d_col, clamp=True))

    def is_selected(self, cell: CellRef) -> bool:
        return any(r.contains(cell) for r in self._ranges)

    def cells(self) -> set[CellRef]:
        """Union of every range's cells; overlaps are counted once."""
        result: set[CellRef] = set()
        for rng in self._ranges:
            result.update(rng.cells())
        return result

    @property
    def cell_count(self) -> int:
        return len(self.cells())

    @property
    def range(self) -> CellRange:
        """The first selected range."""
        return self._ranges[0]

    @property
    def ranges(self) -> tuple[CellRange, ...]:
        return tuple(self._ranges)

    def __repr__(self) -> str:
        spans = ", ".join(str(r) for r in self._ranges)
        return f"<Selection primary={self.primary} ranges=[{spans}]>"
