"""Calc protocols, per-cell recalculation state and result dataclasses."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from gridengine._cell import CellValue
    from gridengine._refs import CellRef


class CellState(Enum):
    """Lifecycle of a formula cell within the recalculation driver.

    CLEAN -> DIRTY when a precedent changes, DIRTY -> EVALUATING while its
    formula runs, then CLEAN or ERROR.  Reaching an EVALUATING cell again
    during the same evaluation is a circular reference.
    """

    CLEAN = "clean"
    DIRTY = "dirty"
    EVALUATING = "evaluating"
    ERROR = "error"


@dataclass(frozen=True)
class CellDelta:
    """A single cell's cached value change from recalculation."""

    cell: CellRef
    old_value: CellValue | None
    new_value: CellValue | None
    formula: str | None = None  # the formula that produced new_value


@dataclass(frozen=True)
class RecalcResult:
    """Outcome of one recompute pass."""

    changed: tuple[CellRef, ...] = ()  # cells written by the caller
    deltas: tuple[CellDelta, ...] = ()  # cells whose cached value changed
    evaluated: int = 0  # formula cells evaluated in the pass
    circular: frozenset[CellRef] = frozenset()
    total_formula_cells: int = 0
    max_chain_depth: int = 0  # longest dependency chain evaluated in the pass

    @property
    def changed_cells(self) -> frozenset[CellRef]:
        """Cells a view must repaint."""
        return frozenset(d.cell for d in self.deltas)

    @property
    def propagated_cells(self) -> int:
        """Formula cells whose value actually changed."""
        return sum(1 for d in self.deltas if d.formula is not None)

    @property
    def propagation_ratio(self) -> float:
        if self.total_formula_cells == 0:
            return 0.0
        return self.propagated_cells / self.total_formula_cells


@runtime_checkable
class EvaluationContext(Protocol):
    """Value lookup used by the evaluator.

    A context may also define ``stored_refs(rng) -> list[CellRef] | None`` to
    let large ranges be read from its stored cells only.
    """

    def get_cell(self, ref: CellRef) -> CellValue | None:
        """Return the value at *ref*, or None for a never-written cell."""
        ...


@runtime_checkable
class CalcEngine(Protocol):
    """Cell read/write surface consumed by an editor layer."""

    def get_cell_value(self, ref: CellRef) -> CellValue | None:
        ...

    def set_cell_value(self, ref: CellRef, value: CellValue) -> RecalcResult:
        ...

    def set_cell_formula(self, ref: CellRef, text: str) -> RecalcResult:
        """Parse and store a formula; parse errors raise and keep prior content."""
        ...

    def clear_cell(self, ref: CellRef) -> RecalcResult:
        ...

    def recalculate_all(self) -> RecalcResult:
        """Rebuild dependencies from stored formulas and evaluate everything."""
        ...
