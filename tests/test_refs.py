"""Tests for A1 helpers, CellRef and CellRange."""

from __future__ import annotations

import pytest
from gridengine import CellRange, CellRef, a1_to_rowcol, column_index, column_letters, rowcol_to_a1


class TestColumnCodec:
    @pytest.mark.parametrize(
        ("letters", "index"),
        [("A", 0), ("Z", 25), ("AA", 26), ("AZ", 51), ("BA", 52), ("ZZ", 701), ("AAA", 702)],
    )
    def test_letters_round_trip(self, letters: str, index: int) -> None:
        assert column_index(letters) == index
        assert column_letters(index) == letters

    def test_lowercase_letters(self) -> None:
        assert column_index("ab") == 27

    def test_invalid_letters(self) -> None:
        assert column_index("") is None
        assert column_index("A1") is None
        assert column_index("É") is None

    def test_negative_index_raises(self) -> None:
        with pytest.raises(ValueError):
            column_letters(-1)


class TestA1:
    def test_a1_to_rowcol(self) -> None:
        assert a1_to_rowcol("A1") == (0, 0)
        assert a1_to_rowcol("B3") == (2, 1)
        assert a1_to_rowcol("  c10 ") == (9, 2)

    @pytest.mark.parametrize("text", ["", "A", "1", "A0", "1A", "A1B", "A-1", "Ä1", "A 1"])
    def test_malformed(self, text: str) -> None:
        assert a1_to_rowcol(text) is None

    def test_rowcol_to_a1(self) -> None:
        assert rowcol_to_a1(0, 0) == "A1"
        assert rowcol_to_a1(99, 27) == "AB100"

    def test_overlong_row_number(self) -> None:
        assert a1_to_rowcol("A" + "9" * 5000) is None
        assert a1_to_rowcol("A" + "1" * 11) is None
        assert a1_to_rowcol("A" + "9" * 10) == (9_999_999_998, 0)

    def test_leading_zeros_do_not_count_toward_row_length(self) -> None:
        assert a1_to_rowcol("A" + "0" * 20 + "7") == (6, 0)


class TestCellRef:
    def test_parse(self) -> None:
        assert CellRef.parse("B3") == CellRef(2, 1)
        assert CellRef.parse("b3") == CellRef(2, 1)
        assert CellRef.parse("A01") == CellRef(0, 0)
        assert CellRef.parse("A0") is None
        assert CellRef.parse("hello") is None

    def test_canonical_form(self) -> None:
        assert CellRef.parse("a01").to_a1() == "A1"
        assert str(CellRef(9, 26)) == "AA10"

    def test_round_trip(self) -> None:
        for row in (0, 1, 9, 99, 1_048_575):
            for col in (0, 1, 25, 26, 701, 702, 16_383):
                ref = CellRef(row, col)
                assert CellRef.parse(ref.to_a1()) == ref

    def test_negative_raises(self) -> None:
        with pytest.raises(ValueError):
            CellRef(-1, 0)
        with pytest.raises(ValueError):
            CellRef(0, -1)

    def test_row_major_ordering(self) -> None:
        refs = [CellRef(1, 0), CellRef(0, 5), CellRef(0, 1)]
        assert sorted(refs) == [CellRef(0, 1), CellRef(0, 5), CellRef(1, 0)]

    def test_hashable(self) -> None:
        assert len({CellRef(1, 1), CellRef(1, 1), CellRef(1, 2)}) == 2

    def test_offset(self) -> None:
        assert CellRef(2, 2).offset(1, -1) == CellRef(3, 1)

    def test_offset_underflow(self) -> None:
        with pytest.raises(ValueError):
            CellRef(0, 0).offset(-1, 0)
        assert CellRef(0, 3).offset(-1, -5, clamp=True) == CellRef(0, 0)


class TestCellRange:
    def test_normalizes_corners(self) -> None:
        r = CellRange(CellRef(4, 2), CellRef(0, 0))
        assert r.start == CellRef(0, 0)
        assert r.end == CellRef(4, 2)

    def test_order_independent_equality(self) -> None:
        a, b = CellRef(3, 0), CellRef(0, 3)
        assert CellRange(a, b) == CellRange(b, a)
        assert CellRange(a, b).start == CellRef(0, 0)
        assert CellRange(a, b).end == CellRef(3, 3)

    def test_counts(self) -> None:
        r = CellRange.parse("A1:C5")
        assert r.row_count == 5
        assert r.col_count == 3
        assert r.cell_count == 15
        assert len(r) == 15

    def test_single(self) -> None:
        r = CellRange.single(CellRef(2, 2))
        assert r.cell_count == 1
        assert list(r.cells()) == [CellRef(2, 2)]

    def test_contains(self) -> None:
        r = CellRange.parse("B2:C3")
        assert r.contains(CellRef(1, 1))
        assert r.contains(CellRef(2, 2))
        assert not r.contains(CellRef(0, 1))
        assert CellRef(2, 1) in r
        assert "B2" not in r

    def test_intersects(self) -> None:
        r = CellRange.parse("B2:C3")
        assert r.intersects(CellRange.parse("C3:D4"))
        assert not r.intersects(CellRange.parse("D1:E9"))

    def test_cells_row_major_and_restartable(self) -> None:
        r = CellRange.parse("A1:B2")
        expected = [CellRef(0, 0), CellRef(0, 1), CellRef(1, 0), CellRef(1, 1)]
        assert list(r.cells()) == expected
        assert list(r.cells()) == expected
        assert list(r) == expected

    def test_cells_is_lazy(self) -> None:
        r = CellRange(CellRef(0, 0), CellRef(1_000_000, 16_000))
        first = next(iter(r.cells()))
        assert first == CellRef(0, 0)

    def test_parse(self) -> None:
        assert CellRange.parse("A1:C5") == CellRange(CellRef(0, 0), CellRef(4, 2))
        assert CellRange.parse("C5:A1") == CellRange.parse("A1:C5")

    @pytest.mark.parametrize("text", ["A1", "A1:", ":B2", "A1:B2:C3", "A1-B2", "A0:B2"])
    def test_parse_rejects(self, text: str) -> None:
        assert CellRange.parse(text) is None

    def test_parse_rejects_overlong_rows(self) -> None:
        assert CellRange.parse("A1:B" + "1" * 5000) is None
        assert CellRef.parse("A" + "9" * 5000) is None

    def test_to_range_string(self) -> None:
        r = CellRange(CellRef(4, 2), CellRef(0, 0))
        assert r.to_range_string() == "A1:C5"
        assert str(r) == "A1:C5"
