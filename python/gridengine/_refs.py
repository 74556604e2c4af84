"""Cell coordinates and rectangular ranges."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from gridengine._utils import a1_to_rowcol, rowcol_to_a1


@dataclass(frozen=True, order=True)
class CellRef:
    """A 0-based ``(row, col)`` cell coordinate.

    Ordering is row-major, so ``sorted()`` over refs walks a sheet top to
    bottom, left to right.
    """

    row: int
    col: int

    def __post_init__(self) -> None:
        if self.row < 0 or self.col < 0:
            raise ValueError(f"Cell coordinates must be non-negative, got ({self.row}, {self.col})")

    @classmethod
    def parse(cls, text: str) -> CellRef | None:
        """Parse A1 notation (``"B3"``, ``"aa10"``). Returns None if malformed."""
        rowcol = a1_to_rowcol(text)
        if rowcol is None:
            return None
        return cls(*rowcol)

    def to_a1(self) -> str:
        return rowcol_to_a1(self.row, self.col)

    def offset(self, d_row: int, d_col: int, clamp: bool = False) -> CellRef:
        """Return the ref moved by ``(d_row, d_col)``.

        Moving past row or column 0 raises ValueError unless *clamp* is set,
        in which case each axis stops at 0.
        """
        row = self.row + d_row
        col = self.col + d_col
        if clamp:
            return CellRef(max(row, 0), max(col, 0))
        return CellRef(row, col)

    def __str__(self) -> str:
        return self.to_a1()


@dataclass(frozen=True)
class CellRange:
    """Rectangular span of cells, inclusive on both ends.

    The constructor normalizes its corners, so ``start`` is always the
    top-left and ``end`` the bottom-right cell whatever order they were
    given in.
    """

    start: CellRef
    end: CellRef

    def __post_init__(self) -> None:
        a, b = self.start, self.end
        object.__setattr__(self, "start", CellRef(min(a.row, b.row), min(a.col, b.col)))
        object.__setattr__(self, "end", CellRef(max(a.row, b.row), max(a.col, b.col)))

    @classmethod
    def single(cls, cell: CellRef) -> CellRange:
        return cls(cell, cell)

    @classmethod
    def parse(cls, text: str) -> CellRange | None:
        """Parse ``"A1:C5"``. A lone ``"A1"`` is not a range and yields None."""
        parts = text.split(":")
        if len(parts) != 2:
            return None
        start = CellRef.parse(parts[0])
        end = CellRef.parse(parts[1])
        if start is None or end is None:
            return None
        return cls(start, end)

    @property
    def row_count(self) -> int:
        return self.end.row - self.start.row + 1

    @property
    def col_count(self) -> int:
        return self.end.col - self.start.col + 1

    @property
    def cell_count(self) -> int:
        return self.row_count * self.col_count

    def contains(self, cell: CellRef) -> bool:
        return (
            self.start.row <= cell.row <= self.end.row
            and self.start.col <= cell.col <= self.end.col
        )

    def intersects(self, other: CellRange) -> bool:
        return not (
            other.end.row < self.start.row
            or other.start.row > self.end.row
            or other.end.col < self.start.col
            or other.start.col > self.end.col
        )

    def cells(self) -> Iterator[CellRef]:
        """Lazily enumerate the range row by row."""
        for row in range(self.start.row, self.end.row + 1):
            for col in range(self.start.col, self.end.col + 1):
                yield CellRef(row, col)

    def __iter__(self) -> Iterator[CellRef]:
        return self.cells()

    def __len__(self) -> int:
        return self.cell_count

    def __contains__(self, cell: object) -> bool:
        return isinstance(cell, CellRef) and self.contains(cell)

    def to_range_string(self) -> str:
        return f"{self.start.to_a1()}:{self.end.to_a1()}"

    def __str__(self) -> str:
        return self.to_range_string()
