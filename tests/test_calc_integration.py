"""Integration tests for gridengine.calc: recompute passes driven through Sheet."""

from __future__ import annotations

import logging

import pytest
from gridengine import (
    CalcSettings,
    Cell,
    CellRange,
    CellRef,
    CellValue,
    ErrorKind,
    InvalidRef,
    InvalidSyntax,
    Sheet,
    Spreadsheet,
)
from gridengine.calc import CalcEngine, CellState, RecalcResult

N = CellValue.number

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _ref(a1: str) -> CellRef:
    return CellRef.parse(a1)


def _build_sum_chain() -> Sheet:
    """A1=10, A2=20, A3=SUM(A1:A2), A4=A3*2."""
    ws = Sheet()
    ws.set_cell_value("A1", 10)
    ws.set_cell_value("A2", 20)
    ws.set_cell_formula("A3", "=SUM(A1:A2)")
    ws.set_cell_formula("A4", "=A3*2")
    return ws


def _error(kind: ErrorKind) -> CellValue:
    return CellValue.error(kind)


# ---------------------------------------------------------------------------
# Propagation
# ---------------------------------------------------------------------------


class TestPropagation:
    def test_sum_chain(self) -> None:
        ws = _build_sum_chain()
        assert ws.get_cell_value("A3") == N(30)
        assert ws.get_cell_value("A4") == N(60)

    def test_input_change_propagates(self) -> None:
        ws = _build_sum_chain()
        result = ws.set_cell_value("A1", 15)
        assert isinstance(result, RecalcResult)
        assert ws.get_cell_value("A4") == N(70)
        assert result.changed == (_ref("A1"),)
        assert result.changed_cells == frozenset({_ref("A1"), _ref("A3"), _ref("A4")})
        assert result.evaluated == 2

    def test_delta_old_and_new_values(self) -> None:
        ws = _build_sum_chain()
        result = ws.set_cell_value("A2", 0)
        deltas = {d.cell: d for d in result.deltas}
        assert deltas[_ref("A3")].old_value == N(30)
        assert deltas[_ref("A3")].new_value == N(10)
        assert deltas[_ref("A3")].formula == "=SUM(A1:A2)"
        assert deltas[_ref("A2")].formula is None

    def test_result_counters(self) -> None:
        ws = _build_sum_chain()
        result = ws.set_cell_value("A1", 1)
        assert result.total_formula_cells == 2
        assert result.propagated_cells == 2
        assert result.propagation_ratio == 1.0
        assert result.max_chain_depth == 2

    def test_diamond_evaluates_each_cell_once(self) -> None:
        ws = Sheet()
        calls: list[str] = []

        def tick(args: list) -> CellValue:
            calls.append("tick")
            return N(0)

        ws.calc.functions.register("TICK", tick)
        ws.set_cell_formula("B1", "=A1+1")
        ws.set_cell_formula("C1", "=A1*2")
        ws.set_cell_formula("D1", "=B1+C1+TICK()")
        calls.clear()
        result = ws.set_cell_value("A1", 5)
        assert ws.get_cell_value("D1") == N(16)
        assert result.evaluated == 3
        assert calls == ["tick"]

    def test_unchanged_result_is_not_a_delta(self) -> None:
        ws = Sheet()
        ws.set_cell_value("A1", 1)
        ws.set_cell_formula("B1", "=IF(A1>0, 1, 0)")
        result = ws.set_cell_value("A1", 2)
        assert result.changed_cells == frozenset({_ref("A1")})
        assert result.evaluated == 1

    def test_tolerance_suppresses_tiny_changes(self) -> None:
        ws = Sheet(settings=CalcSettings(tolerance=0.5))
        ws.set_cell_value("A1", 1)
        ws.set_cell_formula("B1", "=A1*1")
        result = ws.set_cell_value("A1", 1.1)
        assert _ref("B1") not in result.changed_cells
        assert ws.get_cell_value("B1") == N(1.1)

    def test_clear_input_recomputes_dependents(self) -> None:
        ws = _build_sum_chain()
        result = ws.clear_cell("A1")
        assert ws.get_cell_value("A1") is None
        assert ws.get_cell_value("A4") == N(40)
        deltas = {d.cell: d for d in result.deltas}
        assert deltas[_ref("A1")].old_value == N(10)
        assert deltas[_ref("A1")].new_value is None

    def test_replacing_formula_with_value(self) -> None:
        ws = _build_sum_chain()
        ws.set_cell_value("A3", 1)
        assert ws.get_cell_value("A4") == N(2)
        ws.set_cell_value("A1", 1000)
        assert ws.get_cell_value("A4") == N(2)
        assert ws.calc.state(_ref("A3")) is None

    def test_error_propagates_down_chain(self) -> None:
        ws = Sheet()
        ws.set_cell_formula("A1", "=1/0")
        ws.set_cell_formula("B1", "=A1+1")
        assert ws.get_cell_value("A1") == _error(ErrorKind.DIV_BY_ZERO)
        assert ws.get_cell_value("B1") == _error(ErrorKind.DIV_BY_ZERO)
        assert ws.calc.state(_ref("B1")) is CellState.ERROR

    def test_if_does_not_evaluate_untaken_branch(self) -> None:
        ws = Sheet()
        ws.set_cell_value("A1", 0)
        ws.set_cell_formula("B1", "=IF(A1=0, 0, 1/A1)")
        assert ws.get_cell_value("B1") == N(0)

    def test_unknown_function_stored_as_error(self) -> None:
        ws = Sheet()
        ws.set_cell_formula("A1", "=NOPE(1)")
        assert ws.get_cell_value("A1") == _error(ErrorKind.UNKNOWN_FUNCTION)
        assert ws["A1"].formula == "=NOPE(1)"


# ---------------------------------------------------------------------------
# Parse errors
# ---------------------------------------------------------------------------


class TestParseErrors:
    def test_syntax_error_keeps_prior_content(self) -> None:
        ws = Sheet()
        ws.set_cell_value("A1", 5)
        with pytest.raises(InvalidSyntax):
            ws.set_cell_formula("A1", "=1+")
        assert ws.get_cell_value("A1") == N(5)
        assert ws["A1"].formula is None

    def test_bad_ref_keeps_prior_formula(self) -> None:
        ws = _build_sum_chain()
        with pytest.raises(InvalidRef):
            ws.set_cell_formula("A3", "=SUM(A1:)")
        assert ws["A3"].formula == "=SUM(A1:A2)"
        ws.set_cell_value("A1", 0)
        assert ws.get_cell_value("A3") == N(20)

    def test_input_text_with_bad_formula_raises(self) -> None:
        ws = Sheet()
        with pytest.raises(InvalidSyntax):
            ws.set_cell_input("A1", "=(")
        assert "A1" not in ws

    def test_overlong_row_reference_keeps_prior_content(self) -> None:
        ws = Sheet()
        ws.set_cell_value("A1", 5)
        with pytest.raises(InvalidRef):
            ws.set_cell_formula("A1", "=B" + "1" * 5000)
        assert ws.get_cell_value("A1") == N(5)

    def test_deep_nesting_keeps_prior_content(self) -> None:
        ws = Sheet()
        ws.set_cell_value("B1", 5)
        with pytest.raises(InvalidSyntax):
            ws.set_cell_formula("B1", "=" + "(" * 200 + "1" + ")" * 200)
        with pytest.raises(InvalidSyntax):
            ws.set_cell_formula("B1", "=" + "-" * 1000 + "1")
        assert ws.get_cell_value("B1") == N(5)
        assert ws["B1"].formula is None


# ---------------------------------------------------------------------------
# Large ranges
# ---------------------------------------------------------------------------


class TestLargeRanges:
    def test_whole_sheet_range_reads_stored_cells_only(self) -> None:
        ws = Sheet()
        ws.set_cell_value("A1", 1)
        ws.set_cell_value("C7", "x")
        ws.set_cell_value("XFC1048576", 2)
        ws.set_cell_formula("XFD1", "=COUNTA(A1:XFC1048576)")
        assert ws.get_cell_value("XFD1") == N(3)
        ws.set_cell_formula("XFD1", "=SUM(A1:XFC1048576)")
        assert ws.get_cell_value("XFD1") == N(3)

    def test_whole_sheet_range_around_its_own_cell_is_circular(self) -> None:
        ws = Sheet()
        ws.set_cell_value("A1", 1)
        ws.set_cell_formula("B2", "=COUNTA(A1:XFD1048576)")
        assert ws.get_cell_value("B2") == _error(ErrorKind.CIRCULAR_REFERENCE)

    def test_sum_over_huge_range(self) -> None:
        ws = Sheet()
        ws.set_cell_value("A1", 1)
        ws.set_cell_value("A500000", 2)
        ws.set_cell_formula("C1", "=B1*10")
        ws.set_cell_formula("B1", "=SUM(A1:A1048576)+COUNTA(A1:A1048576)")
        assert ws.get_cell_value("B1") == N(5)
        assert ws.get_cell_value("C1") == N(50)
        ws.set_cell_value("A999999", 4)
        assert ws.get_cell_value("B1") == N(10)

    def test_dirty_cell_inside_huge_range_is_evaluated_first(self) -> None:
        ws = Sheet()
        ws.set_cell_formula("B1", "=SUM(A1:A1048576)")
        with ws.deferred():
            ws.set_cell_value("A1", 3)
            ws.set_cell_formula("A2", "=A1*2")
            assert ws.get_cell_value("B1") == N(9)
        assert ws.get_cell_value("B1") == N(9)

    def test_huge_range_in_scalar_context(self) -> None:
        ws = Sheet()
        ws.set_cell_value("A1", 1)
        ws.set_cell_formula("B1", "=A1:A1048576+1")
        assert ws.get_cell_value("B1") == CellValue.error(ErrorKind.INVALID_ARGUMENT)

    def test_stored_refs_only_for_ranges_larger_than_the_sheet(self) -> None:
        ws = Sheet()
        for row in range(1, 6):
            ws.set_cell_value(f"A{row}", row)
        assert ws.calc.stored_refs(CellRange.parse("A1:A3")) is None
        assert ws.calc.stored_refs(CellRange.parse("A2:B1000")) == [
            _ref("A2"), _ref("A3"), _ref("A4"), _ref("A5"),
        ]


# ---------------------------------------------------------------------------
# Circular references
# ---------------------------------------------------------------------------


class TestCircular:
    def test_cycle_from_sequential_writes(self, caplog: pytest.LogCaptureFixture) -> None:
        ws = Sheet()
        ws.set_cell_formula("A1", "=B1+1")
        assert ws.get_cell_value("A1") == N(1)
        with caplog.at_level(logging.WARNING, logger="gridengine.calc._evaluator"):
            result = ws.set_cell_formula("B1", "=A1+1")
        circular = _error(ErrorKind.CIRCULAR_REFERENCE)
        assert ws.get_cell_value("A1") == circular
        assert ws.get_cell_value("B1") == circular
        assert result.circular == frozenset({_ref("A1"), _ref("B1")})
        assert "Circular reference" in caplog.text

    def test_cycle_inside_deferred_block(self) -> None:
        ws = Sheet()
        with ws.deferred():
            ws.set_cell_formula("A1", "=B1+1")
            ws.set_cell_formula("B1", "=A1+1")
        circular = _error(ErrorKind.CIRCULAR_REFERENCE)
        assert ws.get_cell_value("A1") == circular
        assert ws.get_cell_value("B1") == circular
        assert ws.calc.last_result.circular == frozenset({_ref("A1"), _ref("B1")})

    def test_breaking_the_cycle_recovers(self) -> None:
        ws = Sheet()
        ws.set_cell_formula("A1", "=B1+1")
        ws.set_cell_formula("B1", "=A1+1")
        ws.set_cell_value("B1", 5)
        assert ws.get_cell_value("A1") == N(6)
        assert ws.calc.state(_ref("A1")) is CellState.CLEAN

    def test_self_reference(self) -> None:
        ws = Sheet()
        ws.set_cell_formula("A1", "=A1+1")
        assert ws.get_cell_value("A1") == _error(ErrorKind.CIRCULAR_REFERENCE)

    def test_range_containing_own_cell(self) -> None:
        ws = Sheet()
        ws.set_cell_value("A1", 1)
        ws.set_cell_formula("A3", "=SUM(A1:A5)")
        assert ws.get_cell_value("A3") == _error(ErrorKind.CIRCULAR_REFERENCE)

    def test_downstream_of_cycle_is_circular(self) -> None:
        ws = Sheet()
        ws.set_cell_formula("C1", "=A1*2")
        ws.set_cell_formula("A1", "=B1")
        ws.set_cell_formula("B1", "=A1")
        assert ws.get_cell_value("C1") == _error(ErrorKind.CIRCULAR_REFERENCE)

    def test_unrelated_cells_still_evaluate(self) -> None:
        ws = Sheet()
        ws.set_cell_formula("A1", "=B1")
        ws.set_cell_formula("B1", "=A1")
        ws.set_cell_value("D1", 3)
        ws.set_cell_formula("E1", "=D1*3")
        assert ws.get_cell_value("E1") == N(9)


# ---------------------------------------------------------------------------
# Deferred batches
# ---------------------------------------------------------------------------


class TestDeferred:
    def test_one_pass_on_exit(self) -> None:
        ws = Sheet()
        with ws.deferred():
            r1 = ws.set_cell_value("A1", 2)
            r2 = ws.set_cell_formula("B1", "=A1*2")
            assert r1.deltas == ()
            assert r2.changed == (_ref("B1"),)
            assert ws.calc.state(_ref("B1")) is CellState.DIRTY
        result = ws.calc.last_result
        assert result.changed == (_ref("A1"), _ref("B1"))
        assert result.changed_cells == frozenset({_ref("A1"), _ref("B1")})
        assert ws.get_cell_value("B1") == N(4)

    def test_read_inside_batch_evaluates_on_demand(self) -> None:
        ws = Sheet()
        with ws.deferred():
            ws.set_cell_value("A1", 2)
            ws.set_cell_formula("B1", "=A1*2")
            assert ws.get_cell_value("B1") == N(4)
            ws.set_cell_value("A1", 3)
        assert ws.get_cell_value("B1") == N(6)

    def test_nested_blocks_run_once(self) -> None:
        ws = Sheet()
        ws.set_cell_formula("B1", "=A1+A2")
        with ws.deferred():
            ws.set_cell_value("A1", 1)
            with ws.deferred():
                ws.set_cell_value("A2", 2)
            assert ws.calc.state(_ref("B1")) is CellState.DIRTY
        assert ws.calc.state(_ref("B1")) is CellState.CLEAN
        assert ws.get_cell_value("B1") == N(3)

    def test_pass_runs_when_block_raises(self) -> None:
        ws = Sheet()
        ws.set_cell_formula("B1", "=A1")
        with pytest.raises(RuntimeError):
            with ws.deferred():
                ws.set_cell_value("A1", 7)
                raise RuntimeError("boom")
        assert ws.calc.state(_ref("B1")) is CellState.CLEAN
        assert ws.get_cell_value("B1") == N(7)

    def test_deltas_against_pre_batch_values(self) -> None:
        ws = Sheet()
        ws.set_cell_value("A1", 1)
        with ws.deferred():
            ws.set_cell_value("A1", 2)
            ws.set_cell_value("A1", 1)
        assert ws.calc.last_result.deltas == ()


# ---------------------------------------------------------------------------
# Lifecycle and full recalculation
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_states(self) -> None:
        ws = Sheet()
        ws.set_cell_value("A1", 1)
        ws.set_cell_formula("B1", "=A1")
        ws.set_cell_formula("C1", "=1/0")
        assert ws.calc.state(_ref("A1")) is None
        assert ws.calc.state(_ref("B1")) is CellState.CLEAN
        assert ws.calc.state(_ref("C1")) is CellState.ERROR

    def test_recalculate_all_after_raw_writes(self) -> None:
        ws = Sheet()
        ws.set(_ref("A1"), Cell.with_value(N(3)))
        ws.set(_ref("B1"), Cell.with_formula("=A1*2"))
        ws.set(_ref("C1"), Cell.with_formula("=1+"))
        result = ws.recalculate_all()
        assert ws.get_cell_value("B1") == N(6)
        assert ws.get_cell_value("C1") == _error(ErrorKind.INVALID_SYNTAX)
        assert result.total_formula_cells == 1
        assert result.changed == ()

    def test_formula_keeps_existing_style(self) -> None:
        ws = Sheet()
        ws.set_cell_value("A1", 1)
        style = ws["A1"].style
        ws.set_cell_formula("A1", "=2")
        assert ws["A1"].style is style

    def test_max_chain_depth_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        ws = Sheet(settings=CalcSettings(max_chain_depth=2))
        ws.set_cell_formula("B1", "=A1")
        ws.set_cell_formula("C1", "=B1")
        ws.set_cell_formula("D1", "=C1")
        with caplog.at_level(logging.WARNING, logger="gridengine.calc._evaluator"):
            result = ws.set_cell_value("A1", 1)
        assert result.max_chain_depth == 3
        assert ws.get_cell_value("D1") == N(1)
        assert "max_chain_depth" in caplog.text

    def test_chain_depth_measured_over_the_pass(self, caplog: pytest.LogCaptureFixture) -> None:
        ws = Sheet(settings=CalcSettings(max_chain_depth=1))
        ws.set_cell_formula("B1", "=A1")
        with caplog.at_level(logging.WARNING, logger="gridengine.calc._evaluator"):
            assert ws.set_cell_formula("C1", "=B1").max_chain_depth == 0
            assert ws.set_cell_formula("B1", "=A1+1").max_chain_depth == 1
            assert ws.recalculate_all().max_chain_depth == 1
            assert ws.set_cell_value("Z9", 1).max_chain_depth == 0
        assert caplog.text == ""

    def test_sheet_and_spreadsheet_satisfy_engine_protocol(self) -> None:
        assert isinstance(Sheet(), CalcEngine)
        assert isinstance(Spreadsheet(), CalcEngine)
