"""Formula evaluation and the per-sheet recalculation driver.

:class:`Evaluator` walks a parsed :data:`FormulaExpr` against any
:class:`EvaluationContext`.  :class:`SheetEvaluator` owns a sheet's
dependency graph and keeps cached formula values current::

    calc = SheetEvaluator(sheet)
    calc.set_value(CellRef(0, 0), CellValue.number(2))
    result = calc.set_formula(CellRef(0, 1), "=A1*3")
    result.changed_cells      # {B1}
"""

from __future__ import annotations

import functools
import logging
import math
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from gridengine._cell import EMPTY, Cell, CellStyle, CellValue, ValueKind, parse_number
from gridengine._config import DEFAULT_SETTINGS, CalcSettings
from gridengine._errors import (
    CircularReference,
    DivByZero,
    ErrorKind,
    FormulaError,
    InvalidArgument,
    InvalidSyntax,
    UnknownFunction,
)
from gridengine.calc._functions import (
    Arg,
    FunctionRegistry,
    RangeValue,
    first_error,
    power,
    to_number,
)
from gridengine.calc._graph import DependencyGraph
from gridengine.calc._parser import (
    BinaryOperator,
    BinOp,
    Call,
    Formula,
    FormulaExpr,
    Literal,
    RangeRef,
    Ref,
    UnaryOp,
    UnaryOperator,
)
from gridengine.calc._protocol import CellDelta, CellState, EvaluationContext, RecalcResult

if TYPE_CHECKING:
    from gridengine._refs import CellRange, CellRef
    from gridengine._worksheet import Sheet

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Operator helpers
# ---------------------------------------------------------------------------

_COMPARISONS = frozenset({
    BinaryOperator.EQ,
    BinaryOperator.NE,
    BinaryOperator.LT,
    BinaryOperator.LE,
    BinaryOperator.GT,
    BinaryOperator.GE,
})

# Comparison classes: values of different classes never order against each other
_NUMERIC = "numeric"
_LOGICAL = "logical"
_TEXT = "text"


def _comparison_class(value: CellValue) -> str:
    if value.kind in (ValueKind.NUMBER, ValueKind.DATE):
        return _NUMERIC
    if value.kind is ValueKind.BOOLEAN:
        return _LOGICAL
    return _TEXT


def _zero_like(value: CellValue) -> CellValue:
    """What EMPTY means when compared against *value*."""
    cls = _comparison_class(value)
    if cls == _NUMERIC:
        return CellValue.number(0)
    if cls == _LOGICAL:
        return CellValue.boolean(False)
    return CellValue.text("")


def _binary_op(left: CellValue, op: BinaryOperator, right: CellValue) -> CellValue:
    """Evaluate an arithmetic or string binary operation."""
    err = first_error(left, right)
    if err is not None:
        return err
    if op is BinaryOperator.CONCAT:
        return CellValue.text(left.to_display_string() + right.to_display_string())

    a = to_number(left)
    b = to_number(right)
    if op is BinaryOperator.ADD:
        result = a + b
    elif op is BinaryOperator.SUB:
        result = a - b
    elif op is BinaryOperator.MUL:
        result = a * b
    elif op is BinaryOperator.DIV:
        if b == 0:
            raise DivByZero("Division by zero")
        result = a / b
    elif op is BinaryOperator.POW:
        result = power(a, b)
    else:
        raise InvalidSyntax(f"Unsupported operator {op.value!r}")
    if not math.isfinite(result):
        raise InvalidArgument("Numeric overflow")
    return CellValue.number(result)


def _compare(left: CellValue, right: CellValue, op: BinaryOperator) -> CellValue:
    """Evaluate a comparison operation.

    Numbers and dates compare numerically, booleans against booleans, text
    case-insensitively.  EMPTY takes the type of the other side.  Values of
    different types are unequal and cannot be ordered.
    """
    err = first_error(left, right)
    if err is not None:
        return err
    if left.is_empty and right.is_empty:
        return CellValue.boolean(op in (BinaryOperator.EQ, BinaryOperator.LE, BinaryOperator.GE))
    if left.is_empty:
        left = _zero_like(right)
    elif right.is_empty:
        right = _zero_like(left)

    cls = _comparison_class(left)
    if cls != _comparison_class(right):
        if op is BinaryOperator.EQ:
            return CellValue.boolean(False)
        if op is BinaryOperator.NE:
            return CellValue.boolean(True)
        return CellValue.error(ErrorKind.UNEQUAL_TYPES)

    lv: Any
    rv: Any
    if cls == _TEXT:
        lv, rv = left.data.casefold(), right.data.casefold()
    else:
        lv, rv = float(left.data), float(right.data)

    if op is BinaryOperator.EQ:
        return CellValue.boolean(lv == rv)
    if op is BinaryOperator.NE:
        return CellValue.boolean(lv != rv)
    if op is BinaryOperator.LT:
        return CellValue.boolean(lv < rv)
    if op is BinaryOperator.LE:
        return CellValue.boolean(lv <= rv)
    if op is BinaryOperator.GT:
        return CellValue.boolean(lv > rv)
    return CellValue.boolean(lv >= rv)


def _values_differ(a: CellValue | None, b: CellValue | None, tolerance: float) -> bool:
    """Check if two values differ beyond tolerance."""
    if a is None and b is None:
        return False
    if a is None or b is None:
        return True
    if a.is_number and b.is_number:
        return abs(a.data - b.data) > tolerance
    return a != b


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class Evaluator:
    """Evaluates formula expressions against an :class:`EvaluationContext`.

    Usage::

        value = Evaluator(context).evaluate(Formula.parse("=SUM(A1:A3)*2").expr)
    """

    __slots__ = ("_context", "_functions")

    def __init__(
        self, context: EvaluationContext, functions: FunctionRegistry | None = None,
    ) -> None:
        self._context = context
        self._functions = functions if functions is not None else FunctionRegistry()

    def evaluate(self, expr: FormulaExpr) -> CellValue:
        """Evaluate *expr* in scalar context."""
        return self._scalar(self._eval(expr))

    @staticmethod
    def _scalar(value: Arg) -> CellValue:
        if isinstance(value, RangeValue):
            return value.scalar()
        return value

    def _eval(self, expr: FormulaExpr) -> Arg:
        if isinstance(expr, Literal):
            return expr.value
        if isinstance(expr, Ref):
            value = self._context.get_cell(expr.cell)
            return EMPTY if value is None else value
        if isinstance(expr, RangeRef):
            return self._resolve_range(expr.range)
        if isinstance(expr, BinOp):
            left = self._scalar(self._eval(expr.left))
            right = self._scalar(self._eval(expr.right))
            if expr.op in _COMPARISONS:
                return _compare(left, right, expr.op)
            return _binary_op(left, expr.op, right)
        if isinstance(expr, UnaryOp):
            return self._unary(expr.op, self._scalar(self._eval(expr.operand)))
        if isinstance(expr, Call):
            return self._call(expr)
        raise InvalidSyntax(f"Unknown expression node {expr!r}")

    @staticmethod
    def _unary(op: UnaryOperator, operand: CellValue) -> CellValue:
        if operand.is_error:
            return operand
        if op is UnaryOperator.PLUS:
            return operand
        n = to_number(operand)
        if op is UnaryOperator.NEG:
            return CellValue.number(-n)
        return CellValue.number(n / 100)

    def _resolve_range(self, rng: CellRange) -> RangeValue:
        """Read *rng* through the context.

        A context with a ``stored_refs(rng)`` method may return the stored
        refs inside the range (row-major) so that a huge, mostly empty range
        is read without walking every coordinate; None means walk it.
        """
        stored_refs = getattr(self._context, "stored_refs", None)
        refs = stored_refs(rng) if stored_refs is not None else None
        values: list[CellValue] = []
        if refs is None:
            for ref in rng.cells():
                value = self._context.get_cell(ref)
                values.append(EMPTY if value is None else value)
            return RangeValue(values, rng.row_count, rng.col_count)

        positions: list[tuple[int, int]] = []
        for ref in refs:
            value = self._context.get_cell(ref)
            if value is None:
                continue
            values.append(value)
            positions.append((ref.row - rng.start.row, ref.col - rng.start.col))
        return RangeValue(values, rng.row_count, rng.col_count, positions)

    # ------------------------------------------------------------------
    # Function dispatch
    # ------------------------------------------------------------------

    def _call(self, expr: Call) -> Arg:
        """Evaluate a function call.

        Functions with ``_lazy_args = True`` receive one thunk per argument
        rather than evaluated values.
        """
        func = self._functions.get(expr.name)
        if func is None:
            logger.debug("Unsupported function: %s", expr.name)
            raise UnknownFunction(expr.name)
        if getattr(func, "_lazy_args", False):
            args: list[Any] = [functools.partial(self._eval, a) for a in expr.args]
        else:
            args = [self._eval(a) for a in expr.args]
        try:
            return func(args)
        except FormulaError:
            raise
        except (ArithmeticError, ValueError) as e:
            logger.debug("Error evaluating %s: %s", expr.name, e)
            raise InvalidArgument(f"{expr.name}: {e}") from e


def evaluate(
    expr: FormulaExpr,
    context: EvaluationContext,
    functions: FunctionRegistry | None = None,
) -> CellValue:
    """Evaluate *expr* against *context*; failures raise :class:`FormulaError`."""
    return Evaluator(context, functions).evaluate(expr)


# ---------------------------------------------------------------------------
# Recalculation driver
# ---------------------------------------------------------------------------


class SheetEvaluator:
    """Keeps a sheet's formula values current as cells are written.

    Every write marks the written cell and its transitive dependents DIRTY
    and, outside a :meth:`deferred` block, runs one recompute pass: the dirty
    set is ordered with Kahn's algorithm, each cell evaluated once after its
    precedents, and whatever Kahn's algorithm cannot consume is set to a
    circular-reference error.  Reading a DIRTY cell evaluates it on demand.
    """

    def __init__(
        self,
        sheet: Sheet,
        settings: CalcSettings | None = None,
        functions: FunctionRegistry | None = None,
    ) -> None:
        self._sheet = sheet
        self._settings = settings if settings is not None else DEFAULT_SETTINGS
        self._functions = functions if functions is not None else FunctionRegistry()
        self._graph = DependencyGraph()
        self._states: dict[CellRef, CellState] = {}
        # Pre-pass value of every cell touched since the last pass
        self._old_values: dict[CellRef, CellValue | None] = {}
        self._changed: list[CellRef] = []
        self._batch_depth = 0
        self.last_result: RecalcResult | None = None

    @property
    def graph(self) -> DependencyGraph:
        return self._graph

    @property
    def functions(self) -> FunctionRegistry:
        return self._functions

    @property
    def settings(self) -> CalcSettings:
        return self._settings

    def state(self, ref: CellRef) -> CellState | None:
        """Lifecycle state of a formula cell, None for other cells."""
        return self._states.get(ref)

    # ------------------------------------------------------------------
    # EvaluationContext
    # ------------------------------------------------------------------

    def get_cell(self, ref: CellRef) -> CellValue | None:
        cell = self._sheet.get(ref)
        if cell is None:
            return None
        state = self._states.get(ref)
        if state is CellState.EVALUATING:
            raise CircularReference(f"Circular reference through {ref}")
        if state is CellState.DIRTY:
            self._evaluate_cell(ref)
        return cell.value

    def stored_refs(self, rng: CellRange) -> list[CellRef] | None:
        """Stored refs inside *rng* in row-major order.

        None when the range has no more coordinates than the sheet has
        stored cells, where walking the range is no more expensive.
        """
        if rng.cell_count <= len(self._sheet):
            return None
        return sorted(ref for ref, _ in self._sheet.cells() if rng.contains(ref))

    def value(self, ref: CellRef) -> CellValue | None:
        """Current value of *ref*, recomputing it first if it is stale."""
        if self._states.get(ref) is CellState.DIRTY:
            self._evaluate_cell(ref)
        cell = self._sheet.get(ref)
        return None if cell is None else cell.value

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_value(self, ref: CellRef, value: CellValue) -> RecalcResult:
        self._remember(ref)
        self._graph.remove_formula(ref)
        self._states.pop(ref, None)
        self._sheet.set(ref, Cell.with_value(value))
        return self._written(ref)

    def set_formula(self, ref: CellRef, text: str) -> RecalcResult:
        """Store a formula; parse errors raise and leave the cell untouched."""
        formula = Formula.parse(text)
        self._remember(ref)
        existing = self._sheet.get(ref)
        cell = Cell(
            value=existing.value if existing is not None else EMPTY,
            formula=formula.text,
            style=existing.style if existing is not None else CellStyle(),
        )
        self._sheet.set(ref, cell)
        self._graph.add_formula(ref, formula)
        return self._written(ref)

    def clear(self, ref: CellRef) -> RecalcResult:
        self._remember(ref)
        self._graph.remove_formula(ref)
        self._states.pop(ref, None)
        self._sheet.clear(ref)
        return self._written(ref)

    def set_input(self, ref: CellRef, text: str) -> RecalcResult:
        """Interpret editor text: formula, number, boolean, blank or text."""
        stripped = text.strip()
        if not stripped:
            return self.clear(ref)
        if stripped.startswith("="):
            return self.set_formula(ref, stripped)
        n = parse_number(stripped)
        if n is not None:
            return self.set_value(ref, CellValue.number(n))
        upper = stripped.upper()
        if upper in ("TRUE", "FALSE"):
            return self.set_value(ref, CellValue.boolean(upper == "TRUE"))
        return self.set_value(ref, CellValue.text(text))

    def _remember(self, ref: CellRef) -> None:
        if ref not in self._old_values:
            cell = self._sheet.get(ref)
            self._old_values[ref] = None if cell is None else cell.value

    def _written(self, ref: CellRef) -> RecalcResult:
        self._changed.append(ref)
        stale = self._graph.affected_cells({ref})
        if ref in self._graph.formulas:
            stale.add(ref)
        for cell in stale:
            self._remember(cell)
            self._states[cell] = CellState.DIRTY
        if self._batch_depth:
            return RecalcResult(changed=(ref,))
        return self._run_pass()

    # ------------------------------------------------------------------
    # Batching
    # ------------------------------------------------------------------

    @contextmanager
    def deferred(self) -> Iterator[SheetEvaluator]:
        """Batch writes; one recompute pass runs when the outermost block exits.

        The pass result is stored on :attr:`last_result`.
        """
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._old_values:
                self.last_result = self._run_pass()

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------

    def recalculate_all(self) -> RecalcResult:
        """Rebuild the graph from the sheet's stored formulas and evaluate all."""
        self._graph.clear()
        self._states.clear()
        for ref, cell in list(self._sheet.cells()):
            if cell.formula is None:
                continue
            self._remember(ref)
            try:
                formula = Formula.parse(cell.formula)
            except FormulaError as exc:
                logger.debug("Cannot parse formula %r in %s: %s", cell.formula, ref, exc)
                cell.value = CellValue.error(exc.kind)
                self._states[ref] = CellState.ERROR
                continue
            self._graph.add_formula(ref, formula)
            self._states[ref] = CellState.DIRTY
        return self._run_pass()

    def _run_pass(self) -> RecalcResult:
        graph = self._graph
        targets = {ref for ref in self._old_values if ref in graph.formulas}
        for ref in targets:
            self._states[ref] = CellState.DIRTY

        order, residual = graph.topological_order(targets)
        if residual:
            logger.warning(
                "Circular reference involving %s",
                ", ".join(str(r) for r in sorted(residual)),
            )
            circular = CellValue.error(ErrorKind.CIRCULAR_REFERENCE)
            for ref in residual:
                cell = self._sheet.get(ref)
                if cell is not None:
                    cell.value = circular
                self._states[ref] = CellState.ERROR

        evaluated = 0
        for ref in order:
            if self._states.get(ref) is CellState.DIRTY:
                self._evaluate_cell(ref)
                evaluated += 1

        deltas: list[CellDelta] = []
        for ref, old in self._old_values.items():
            cell = self._sheet.get(ref)
            new = None if cell is None else cell.value
            if _values_differ(old, new, self._settings.tolerance):
                deltas.append(CellDelta(
                    cell=ref,
                    old_value=old,
                    new_value=new,
                    formula=cell.formula if cell is not None else None,
                ))

        changed = tuple(dict.fromkeys(self._changed))
        depth = self._chain_depth(order, changed)
        if depth > self._settings.max_chain_depth:
            logger.warning(
                "Dependency chain of depth %d exceeds max_chain_depth=%d",
                depth, self._settings.max_chain_depth,
            )

        self._old_values = {}
        self._changed = []
        result = RecalcResult(
            changed=changed,
            deltas=tuple(deltas),
            evaluated=evaluated,
            circular=frozenset(residual),
            total_formula_cells=len(graph),
            max_chain_depth=depth,
        )
        self.last_result = result
        return result

    def _chain_depth(self, order: list[CellRef], changed: tuple[CellRef, ...]) -> int:
        """Longest dependency chain through *order*, counted in edges.

        A cell with no precedent in the pass sits one edge below the written
        cells, or at 0 when it was written itself or no cell was written.
        """
        written = set(changed)
        in_pass = set(order)
        depth = {ref: 0 if ref in written or not written else 1 for ref in order}
        for ref in order:
            for dep in self._graph.dependents_of(ref):
                if dep in in_pass and depth[ref] + 1 > depth[dep]:
                    depth[dep] = depth[ref] + 1
        return max(depth.values(), default=0)

    def _evaluate_cell(self, ref: CellRef) -> None:
        formula = self._graph.formulas.get(ref)
        cell = self._sheet.get(ref)
        if formula is None or cell is None:
            # Removed behind our back through raw storage access
            self._graph.remove_formula(ref)
            self._states.pop(ref, None)
            return

        self._states[ref] = CellState.EVALUATING
        try:
            value = Evaluator(self, self._functions).evaluate(formula.expr)
        except FormulaError as exc:
            logger.debug("Cannot evaluate formula %r in %s: %s", formula.text, ref, exc)
            value = CellValue.error(exc.kind)
        except RecursionError:
            logger.debug("Formula %r in %s nests too deeply", formula.text, ref)
            value = CellValue.error(ErrorKind.INVALID_ARGUMENT)
        cell.value = value
        self._states[ref] = CellState.ERROR if value.is_error else CellState.CLEAN
