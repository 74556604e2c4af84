"""Cell values, styles and the storage unit ``Cell``."""

from __future__ import annotations

import datetime
import math
import re
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any

from gridengine._errors import ErrorKind

_EPOCH = datetime.date(1970, 1, 1)

# Strict numeric text: "12", "-1.5", ".5", "1e3".  No surrounding spaces,
# no "inf"/"nan", no digit separators.
_NUMERIC_TEXT_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


class ValueKind(Enum):
    EMPTY = "empty"
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ERROR = "error"
    DATE = "date"


def parse_number(text: str) -> float | None:
    """Parse *text* as a finite float literal, or None if it is not one."""
    if not _NUMERIC_TEXT_RE.fullmatch(text):
        return None
    n = float(text)
    return n if math.isfinite(n) else None


def format_number(n: float) -> str:
    """Display form of a number: integral values print without a decimal point."""
    if math.isfinite(n) and n.is_integer() and abs(n) < 1e16:
        return str(int(n))
    return repr(n)


@dataclass(frozen=True)
class CellValue:
    """Tagged value held by a cell.

    Build values through the constructors (``CellValue.number(3)``,
    ``CellValue.text("x")`` ...) rather than the raw fields; ``kind`` is the
    tag and ``data`` the payload (None for EMPTY, the code string for ERROR,
    days since 1970-01-01 for DATE).
    """

    kind: ValueKind
    data: Any = None

    # -- constructors -------------------------------------------------------

    @classmethod
    def empty(cls) -> CellValue:
        return EMPTY

    @classmethod
    def text(cls, text: str) -> CellValue:
        return cls(ValueKind.TEXT, str(text))

    @classmethod
    def number(cls, n: float) -> CellValue:
        return cls(ValueKind.NUMBER, float(n))

    @classmethod
    def boolean(cls, b: bool) -> CellValue:
        return TRUE if b else FALSE

    @classmethod
    def error(cls, code: ErrorKind | str) -> CellValue:
        return cls(ValueKind.ERROR, str(code))

    @classmethod
    def date(cls, days: int) -> CellValue:
        return cls(ValueKind.DATE, int(days))

    @classmethod
    def from_date(cls, d: datetime.date) -> CellValue:
        if isinstance(d, datetime.datetime):
            d = d.date()
        return cls.date((d - _EPOCH).days)

    @classmethod
    def from_python(cls, value: Any) -> CellValue:
        """Wrap a plain Python value: None, bool, int/float, str or date."""
        if value is None:
            return EMPTY
        if isinstance(value, CellValue):
            return value
        if isinstance(value, bool):
            return cls.boolean(value)
        if isinstance(value, (int, float)):
            return cls.number(value)
        if isinstance(value, str):
            return cls.text(value)
        if isinstance(value, datetime.date):
            return cls.from_date(value)
        raise TypeError(f"Cannot store {type(value).__name__} in a cell")

    # -- predicates -----------------------------------------------------------

    @property
    def is_empty(self) -> bool:
        return self.kind is ValueKind.EMPTY

    @property
    def is_error(self) -> bool:
        return self.kind is ValueKind.ERROR

    @property
    def is_number(self) -> bool:
        return self.kind is ValueKind.NUMBER

    @property
    def is_text(self) -> bool:
        return self.kind is ValueKind.TEXT

    # -- coercion -------------------------------------------------------------

    def as_number(self) -> float | None:
        """Numeric coercion.

        NUMBER is itself, BOOLEAN is 0/1, TEXT must be a float literal,
        DATE is its day count.  EMPTY and ERROR do not coerce.
        """
        kind = self.kind
        if kind is ValueKind.NUMBER:
            return self.data
        if kind is ValueKind.BOOLEAN:
            return 1.0 if self.data else 0.0
        if kind is ValueKind.TEXT:
            return parse_number(self.data)
        if kind is ValueKind.DATE:
            return float(self.data)
        return None

    def as_date(self) -> datetime.date | None:
        if self.kind is not ValueKind.DATE:
            return None
        try:
            return _EPOCH + datetime.timedelta(days=self.data)
        except OverflowError:
            return None

    def to_display_string(self) -> str:
        kind = self.kind
        if kind is ValueKind.EMPTY:
            return ""
        if kind is ValueKind.TEXT:
            return self.data
        if kind is ValueKind.NUMBER:
            return format_number(self.data)
        if kind is ValueKind.BOOLEAN:
            return "TRUE" if self.data else "FALSE"
        if kind is ValueKind.ERROR:
            return f"#{self.data}!"
        d = self.as_date()
        return d.isoformat() if d is not None else f"Date({self.data})"

    def __str__(self) -> str:
        return self.to_display_string()

    def __repr__(self) -> str:
        if self.kind is ValueKind.EMPTY:
            return "CellValue.empty()"
        return f"CellValue.{self.kind.value}({self.data!r})"


EMPTY = CellValue(ValueKind.EMPTY)
TRUE = CellValue(ValueKind.BOOLEAN, True)
FALSE = CellValue(ValueKind.BOOLEAN, False)


# ---------------------------------------------------------------------------
# Style
# ---------------------------------------------------------------------------


class HAlign(Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class VAlign(Enum):
    TOP = "top"
    MIDDLE = "middle"
    BOTTOM = "bottom"


@dataclass
class CellStyle:
    """Presentation attributes. ``None`` means "inherit the sheet default"."""

    number_format: str | None = None
    font_family: str | None = None
    font_size: float | None = None
    bold: bool | None = None
    italic: bool | None = None
    color: tuple[int, int, int, int] | None = None  # RGBA
    background: tuple[int, int, int, int] | None = None  # RGBA
    h_align: HAlign | None = None
    v_align: VAlign | None = None

    def is_default(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))


# ---------------------------------------------------------------------------
# Cell
# ---------------------------------------------------------------------------


@dataclass
class Cell:
    """Storage unit of a sheet.

    A cell with ``formula is None`` is a literal.  Otherwise ``value`` is the
    last value computed from the formula.
    """

    value: CellValue = EMPTY
    formula: str | None = None
    style: CellStyle = field(default_factory=CellStyle)

    @classmethod
    def empty(cls) -> Cell:
        return cls()

    @classmethod
    def with_value(cls, value: CellValue) -> Cell:
        return cls(value=value)

    @classmethod
    def with_formula(cls, formula: str) -> Cell:
        return cls(formula=formula)

    @property
    def is_formula(self) -> bool:
        return self.formula is not None
