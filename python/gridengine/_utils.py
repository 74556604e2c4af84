"""A1 notation helpers shared by references, sheets and the formula parser."""

from __future__ import annotations

import re

# Letters then a row number, e.g. "B3", "aa10".  Surrounding whitespace is
# stripped by callers.
_A1_RE = re.compile(r"([A-Za-z]+)([0-9]+)")

# Row numbers with more significant digits are rejected before int()
MAX_ROW_DIGITS = 10


def column_index(letters: str) -> int | None:
    """Convert column letters to a 0-based index: ``A`` -> 0, ``AA`` -> 26.

    Letters form a bijective base-26 numeral (A=1 ... Z=26, AA=27).
    Returns None for an empty or non-ASCII-letter string.
    """
    if not letters or not letters.isascii() or not letters.isalpha():
        return None
    n = 0
    for ch in letters.upper():
        n = n * 26 + (ord(ch) - ord("A") + 1)
    return n - 1


def column_letters(index: int) -> str:
    """Convert a 0-based column index to letters: 0 -> ``A``, 26 -> ``AA``."""
    if index < 0:
        raise ValueError(f"Column index must be non-negative, got {index}")
    result = ""
    n = index + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        result = chr(rem + ord("A")) + result
    return result


def a1_to_rowcol(a1: str) -> tuple[int, int] | None:
    """Parse ``"B3"`` into 0-based ``(row, col)`` = ``(2, 1)``.

    Returns None for malformed input: missing letters or digits, row 0,
    a row of more than MAX_ROW_DIGITS significant digits, or trailing garbage.
    """
    m = _A1_RE.fullmatch(a1.strip())
    if m is None:
        return None
    digits = m.group(2)
    if len(digits.lstrip("0")) > MAX_ROW_DIGITS:
        return None
    col = column_index(m.group(1))
    row = int(digits)
    if col is None or row == 0:
        return None
    return (row - 1, col)


def rowcol_to_a1(row: int, col: int) -> str:
    """Format 0-based ``(row, col)`` as canonical uppercase A1 text."""
    if row < 0:
        raise ValueError(f"Row index must be non-negative, got {row}")
    return f"{column_letters(col)}{row + 1}"
