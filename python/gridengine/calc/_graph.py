"""Dependency graph for formula cells with topological ordering."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gridengine._refs import CellRange, CellRef
    from gridengine.calc._parser import Formula


class DependencyGraph:
    """Tracks formula cell dependencies for evaluation ordering.

    Edges run from a precedent to the formula cell that reads it.  A range
    reference is stored as one range edge rather than one edge per cell, so
    ``=SUM(A1:A100000)`` costs a single entry; :meth:`dependents_of` resolves
    range membership at query time.
    """

    __slots__ = (
        "dependencies",
        "range_dependencies",
        "dependents",
        "range_dependents",
        "formulas",
    )

    def __init__(self) -> None:
        # cell -> single cells it reads from
        self.dependencies: dict[CellRef, frozenset[CellRef]] = {}
        # cell -> ranges it reads from
        self.range_dependencies: dict[CellRef, frozenset[CellRange]] = {}
        # cell -> formula cells that read it directly (reverse edges)
        self.dependents: dict[CellRef, set[CellRef]] = {}
        # range -> formula cells that read it
        self.range_dependents: dict[CellRange, set[CellRef]] = {}
        # cell -> parsed formula
        self.formulas: dict[CellRef, Formula] = {}

    def add_formula(self, cell: CellRef, formula: Formula) -> None:
        """Register a formula cell, replacing any edges it had before."""
        self.remove_formula(cell)
        cells, ranges = formula.references()
        self.formulas[cell] = formula
        self.dependencies[cell] = cells
        self.range_dependencies[cell] = ranges
        for ref in cells:
            self.dependents.setdefault(ref, set()).add(cell)
        for rng in ranges:
            self.range_dependents.setdefault(rng, set()).add(cell)

    def remove_formula(self, cell: CellRef) -> None:
        """Drop *cell*'s formula and its outgoing dependency edges."""
        self.formulas.pop(cell, None)
        for ref in self.dependencies.pop(cell, frozenset()):
            readers = self.dependents.get(ref)
            if readers is not None:
                readers.discard(cell)
                if not readers:
                    del self.dependents[ref]
        for rng in self.range_dependencies.pop(cell, frozenset()):
            readers = self.range_dependents.get(rng)
            if readers is not None:
                readers.discard(cell)
                if not readers:
                    del self.range_dependents[rng]

    def clear(self) -> None:
        self.dependencies.clear()
        self.range_dependencies.clear()
        self.dependents.clear()
        self.range_dependents.clear()
        self.formulas.clear()

    @property
    def formula_cells(self) -> frozenset[CellRef]:
        return frozenset(self.formulas)

    def precedents(self, cell: CellRef) -> tuple[frozenset[CellRef], frozenset[CellRange]]:
        """Cells and ranges that *cell*'s formula reads."""
        return (
            self.dependencies.get(cell, frozenset()),
            self.range_dependencies.get(cell, frozenset()),
        )

    def dependents_of(self, cell: CellRef) -> set[CellRef]:
        """Formula cells that read *cell*, directly or through a range."""
        result = set(self.dependents.get(cell, ()))
        for rng, readers in self.range_dependents.items():
            if rng.contains(cell):
                result |= readers
        return result

    def affected_cells(self, changed_cells: Iterable[CellRef]) -> set[CellRef]:
        """All formula cells transitively downstream of *changed_cells* (BFS).

        The changed cells themselves are included only when they are reached
        again through a cycle.
        """
        affected: set[CellRef] = set()
        queue: deque[CellRef] = deque(changed_cells)
        visited: set[CellRef] = set(queue)

        while queue:
            cell = queue.popleft()
            for dep in self.dependents_of(cell):
                if dep in self.formulas:
                    affected.add(dep)
                if dep not in visited:
                    visited.add(dep)
                    queue.append(dep)

        return affected

    def topological_order(
        self, cells: Iterable[CellRef] | None = None
    ) -> tuple[list[CellRef], set[CellRef]]:
        """Order *cells* (default: every formula cell) with Kahn's algorithm.

        Only edges between members of the set count.  Returns the evaluation
        order and the residual: members that sit on a cycle or downstream of
        one and so could never be consumed.
        """
        nodes = set(self.formulas) if cells is None else set(cells)
        if not nodes:
            return [], set()

        out_edges: dict[CellRef, set[CellRef]] = {}
        in_degree: dict[CellRef, int] = dict.fromkeys(nodes, 0)
        for cell in nodes:
            targets = self.dependents_of(cell) & nodes
            out_edges[cell] = targets
            for dep in targets:
                in_degree[dep] += 1

        queue: deque[CellRef] = deque(sorted(c for c in nodes if in_degree[c] == 0))
        order: list[CellRef] = []
        while queue:
            cell = queue.popleft()
            order.append(cell)
            for dep in sorted(out_edges[cell]):
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    queue.append(dep)

        residual = nodes.difference(order)
        return order, residual

    def max_depth(self, roots: Iterable[CellRef]) -> int:
        """Longest dependency chain from *roots* through formula cells.

        Cells on a cycle do not extend the chain.
        """
        roots = set(roots)
        if not roots:
            return 0

        reachable = self.affected_cells(roots) | roots
        order, _ = self.topological_order(reachable)
        depth: dict[CellRef, int] = {r: 0 for r in roots}
        max_d = 0
        for cell in order:
            if cell not in depth:
                continue
            for dep in self.dependents_of(cell):
                if dep in self.formulas and dep in reachable:
                    new_depth = depth[cell] + 1
                    if new_depth > depth.get(dep, -1):
                        depth[dep] = new_depth
                        max_d = max(max_d, new_depth)

        return max_d

    def __len__(self) -> int:
        return len(self.formulas)

    def __contains__(self, cell: object) -> bool:
        return cell in self.formulas
