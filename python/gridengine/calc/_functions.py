"""Function whitelist and builtin implementations for formula evaluation.

Builtins take a list of evaluated arguments, each a :class:`CellValue` or a
:class:`RangeValue`, and return a :class:`CellValue`.  Hard failures (bad
arity, ranges where a scalar is needed, uncoercible numeric arguments) are
raised as :class:`~gridengine._errors.FormulaError` subclasses; soft failures
(``MAX`` of nothing, ``SQRT`` of a negative) come back as error values.

Functions flagged with ``_lazy_args = True`` receive zero-argument thunks
instead of values so that untaken branches are never evaluated.
"""

from __future__ import annotations

import datetime
import decimal
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Union

from gridengine._cell import EMPTY, CellValue, ValueKind, format_number
from gridengine._errors import (
    DivByZero,
    ErrorKind,
    FormulaError,
    FormulaTypeError,
    InvalidArgument,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.date(1970, 1, 1)
_EPOCH_DATETIME = datetime.datetime(1970, 1, 1)


# ---------------------------------------------------------------------------
# RangeValue: shape-aware 2D range container
# ---------------------------------------------------------------------------


@dataclass
class RangeValue:
    """A resolved cell range, row-major, with its shape.

    Dense ranges hold every cell, absent ones as ``EMPTY``.  A sparse range
    (``positions`` set) holds only stored cells, each at the 0-based
    ``(row, col)`` offset given by the matching entry of ``positions``;
    iteration then skips the absent cells, which every aggregate ignores.
    """

    values: list[CellValue]
    n_rows: int
    n_cols: int
    positions: list[tuple[int, int]] | None = None

    def get(self, row: int, col: int) -> CellValue | None:
        """Get value at 1-based (row, col) position."""
        if row < 1 or row > self.n_rows or col < 1 or col > self.n_cols:
            return None
        if self.positions is None:
            return self.values[(row - 1) * self.n_cols + (col - 1)]
        for pos, value in zip(self.positions, self.values):
            if pos == (row - 1, col - 1):
                return value
        return EMPTY

    def scalar(self) -> CellValue:
        """The single value of a 1x1 range."""
        if self.n_rows * self.n_cols != 1:
            raise InvalidArgument(
                f"{self.n_rows}x{self.n_cols} range used where a single value is expected"
            )
        return self.values[0] if self.values else EMPTY

    def as_flat(self) -> list[CellValue]:
        return list(self.values)

    def __iter__(self):
        return iter(self.values)

    def __len__(self):
        return self.n_rows * self.n_cols


Arg = Union[CellValue, RangeValue]


# ---------------------------------------------------------------------------
# Whitelist: functions the calc engine will evaluate, by category.
# ---------------------------------------------------------------------------

FUNCTION_CATEGORIES: dict[str, str] = {
    # Math
    "SUM": "math",
    "ABS": "math",
    "ROUND": "math",
    "FLOOR": "math",
    "CEIL": "math",
    "SQRT": "math",
    "POWER": "math",
    "MOD": "math",
    "INT": "math",
    # Logic
    "IF": "logic",
    "IFERROR": "logic",
    "AND": "logic",
    "OR": "logic",
    "NOT": "logic",
    "TRUE": "logic",
    "FALSE": "logic",
    # Statistical
    "AVERAGE": "statistical",
    "COUNT": "statistical",
    "COUNTA": "statistical",
    "MAX": "statistical",
    "MIN": "statistical",
    # Text
    "CONCATENATE": "text",
    "LEN": "text",
    "UPPER": "text",
    "LOWER": "text",
    "TRIM": "text",
    "LEFT": "text",
    "RIGHT": "text",
    "MID": "text",
    "FIND": "text",
    "SUBSTITUTE": "text",
    "CHAR": "text",
    "CODE": "text",
    "EXACT": "text",
    "REPT": "text",
    # Date
    "TODAY": "date",
    "NOW": "date",
    "DATE": "date",
    "YEAR": "date",
    "MONTH": "date",
    "DAY": "date",
}

FUNCTION_ALIASES: dict[str, str] = {
    "AVG": "AVERAGE",
    "CEILING": "CEIL",
    "CONCAT": "CONCATENATE",
    "SEARCH": "FIND",
    "REPLACE": "SUBSTITUTE",
    "POW": "POWER",
    "LENGTH": "LEN",
}


def resolve_name(func_name: str) -> str:
    """Canonical upper-case name for *func_name*, following synonyms."""
    upper = func_name.upper()
    return FUNCTION_ALIASES.get(upper, upper)


def is_supported(func_name: str) -> bool:
    """Check if a function name (or synonym) is in the evaluation whitelist."""
    return resolve_name(func_name) in FUNCTION_CATEGORIES


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------


def _check_arity(name: str, args: list[Any], low: int, high: int | None = None) -> None:
    n = len(args)
    if high is None:
        high = low
    if n < low or (high >= 0 and n > high):
        if low == high:
            expected = f"exactly {low}"
        elif high < 0:
            expected = f"at least {low}"
        else:
            expected = f"{low} to {high}"
        raise InvalidArgument(f"{name} takes {expected} argument(s), got {n}")


def _flatten(args: list[Arg]) -> list[CellValue]:
    """Expand ranges so every argument contributes its values in order."""
    result: list[CellValue] = []
    for a in args:
        if isinstance(a, RangeValue):
            result.extend(a.values)
        else:
            result.append(a)
    return result


def _numbers(args: list[Arg]) -> list[float]:
    """Coercible values among the flattened arguments; others are skipped."""
    result: list[float] = []
    for v in _flatten(args):
        n = v.as_number()
        if n is not None:
            result.append(n)
    return result


def _scalar(name: str, arg: Arg) -> CellValue:
    if isinstance(arg, RangeValue):
        raise InvalidArgument(f"{name} does not accept a range here")
    return arg


def first_error(*values: CellValue) -> CellValue | None:
    """Return the first error value found in *values*, or None."""
    for v in values:
        if v.is_error:
            return v
    return None


def to_number(value: CellValue) -> float:
    """Numeric coercion used by operators; EMPTY counts as 0."""
    if value.is_empty:
        return 0.0
    n = value.as_number()
    if n is None:
        raise FormulaTypeError(f"Expected a number, got {value.to_display_string()!r}")
    return n


def _int_arg(name: str, value: CellValue) -> int:
    n = to_number(value)
    if not math.isfinite(n):
        raise InvalidArgument(f"{name}: argument must be finite")
    return int(n)


def truthy(value: CellValue) -> bool:
    """Truthiness of a non-error value.

    BOOLEAN as-is, NUMBER/DATE non-zero, EMPTY false, TEXT "TRUE"/"FALSE" in
    any case, numeric text non-zero, any other text true when non-empty.
    """
    kind = value.kind
    if kind is ValueKind.BOOLEAN:
        return value.data
    if kind in (ValueKind.NUMBER, ValueKind.DATE):
        return value.data != 0
    if kind is ValueKind.EMPTY:
        return False
    if kind is ValueKind.TEXT:
        upper = value.data.strip().upper()
        if upper == "TRUE":
            return True
        if upper == "FALSE":
            return False
        n = value.as_number()
        if n is not None:
            return n != 0
        return value.data != ""
    raise InvalidArgument("Error values have no truth value")


def power(base: float, exponent: float) -> float:
    """``base ** exponent`` restricted to real, finite results."""
    if base < 0 and not float(exponent).is_integer():
        raise InvalidArgument("Negative base with a fractional exponent")
    if base == 0 and exponent < 0:
        raise DivByZero("Zero raised to a negative power")
    try:
        result = math.pow(base, exponent)
    except OverflowError:
        raise InvalidArgument("Power result is out of range") from None
    if not math.isfinite(result):
        raise InvalidArgument("Power result is out of range")
    return result


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


def _builtin_sum(args: list[Arg]) -> CellValue:
    return CellValue.number(math.fsum(_numbers(args)))


def _builtin_average(args: list[Arg]) -> CellValue:
    nums = _numbers(args)
    if not nums:
        return CellValue.number(0)
    return CellValue.number(math.fsum(nums) / len(nums))


def _builtin_count(args: list[Arg]) -> CellValue:
    """COUNT - counts NUMBER values only."""
    return CellValue.number(sum(1 for v in _flatten(args) if v.is_number))


def _builtin_counta(args: list[Arg]) -> CellValue:
    """COUNTA - counts non-empty values."""
    return CellValue.number(sum(1 for v in _flatten(args) if not v.is_empty))


def _builtin_max(args: list[Arg]) -> CellValue:
    nums = _numbers(args)
    if not nums:
        return CellValue.error(ErrorKind.NO_NUMERIC_VALUES)
    return CellValue.number(max(nums))


def _builtin_min(args: list[Arg]) -> CellValue:
    nums = _numbers(args)
    if not nums:
        return CellValue.error(ErrorKind.NO_NUMERIC_VALUES)
    return CellValue.number(min(nums))


# ---------------------------------------------------------------------------
# Scalar math.  A first argument that does not coerce is returned unchanged.
# ---------------------------------------------------------------------------


def _round_half_away(x: float, digits: int) -> float:
    if not math.isfinite(x) or digits > 15:
        return x
    quantum = decimal.Decimal(1).scaleb(-digits)
    try:
        rounded = decimal.Decimal(repr(x)).quantize(quantum, rounding=decimal.ROUND_HALF_UP)
    except decimal.InvalidOperation:
        return x
    return float(rounded)


def _builtin_abs(args: list[Arg]) -> CellValue:
    _check_arity("ABS", args, 1)
    value = _scalar("ABS", args[0])
    n = value.as_number()
    if n is None:
        return value
    return CellValue.number(abs(n))


def _builtin_round(args: list[Arg]) -> CellValue:
    _check_arity("ROUND", args, 1, 2)
    value = _scalar("ROUND", args[0])
    n = value.as_number()
    if n is None:
        return value
    digits = _int_arg("ROUND", _scalar("ROUND", args[1])) if len(args) > 1 else 0
    return CellValue.number(_round_half_away(n, digits))


def _step(name: str, args: list[Arg], fn: Callable[[float], float]) -> CellValue:
    _check_arity(name, args, 1, 2)
    value = _scalar(name, args[0])
    n = value.as_number()
    if n is None:
        return value
    significance = to_number(_scalar(name, args[1])) if len(args) > 1 else 1.0
    if significance == 0:
        raise DivByZero(f"{name}: significance is zero")
    return CellValue.number(fn(n / significance) * significance)


def _builtin_floor(args: list[Arg]) -> CellValue:
    return _step("FLOOR", args, math.floor)


def _builtin_ceil(args: list[Arg]) -> CellValue:
    return _step("CEIL", args, math.ceil)


def _builtin_sqrt(args: list[Arg]) -> CellValue:
    _check_arity("SQRT", args, 1)
    value = _scalar("SQRT", args[0])
    n = value.as_number()
    if n is None:
        return value
    if n < 0:
        return CellValue.error(ErrorKind.NEGATIVE_SQRT)
    return CellValue.number(math.sqrt(n))


def _builtin_power(args: list[Arg]) -> CellValue:
    _check_arity("POWER", args, 2)
    base = _scalar("POWER", args[0])
    exponent = _scalar("POWER", args[1])
    b = base.as_number()
    if b is None:
        return base
    e = exponent.as_number()
    if e is None:
        return exponent
    return CellValue.number(power(b, e))


def _builtin_mod(args: list[Arg]) -> CellValue:
    _check_arity("MOD", args, 2)
    dividend = _scalar("MOD", args[0])
    divisor = _scalar("MOD", args[1])
    a = dividend.as_number()
    if a is None:
        return dividend
    b = divisor.as_number()
    if b is None:
        return divisor
    if b == 0:
        raise DivByZero("MOD: division by zero")
    # Result has the sign of the divisor
    return CellValue.number(a - b * math.floor(a / b))


def _builtin_int(args: list[Arg]) -> CellValue:
    _check_arity("INT", args, 1)
    value = _scalar("INT", args[0])
    n = value.as_number()
    if n is None:
        return value
    return CellValue.number(math.floor(n))


# ---------------------------------------------------------------------------
# Logic
# ---------------------------------------------------------------------------


def _builtin_if(args: list[Callable[[], Arg]]) -> Arg:
    _check_arity("IF", args, 2, 3)
    condition = _scalar("IF", args[0]())
    if condition.is_error:
        return condition
    if truthy(condition):
        return args[1]()
    return args[2]() if len(args) > 2 else CellValue.boolean(False)


_builtin_if._lazy_args = True  # type: ignore[attr-defined]


def _builtin_iferror(args: list[Callable[[], Arg]]) -> Arg:
    _check_arity("IFERROR", args, 2)
    try:
        value = args[0]()
    except FormulaError as exc:
        logger.debug("IFERROR caught %s", exc.kind)
        return args[1]()
    if isinstance(value, CellValue) and value.is_error:
        return args[1]()
    return value


_builtin_iferror._lazy_args = True  # type: ignore[attr-defined]


def _logical_values(name: str, args: list[Arg]) -> list[CellValue] | CellValue:
    """Non-empty values for AND/OR, or the first error encountered."""
    _check_arity(name, args, 1, -1)
    values = [v for v in _flatten(args) if not v.is_empty]
    err = first_error(*values)
    return err if err is not None else values


def _builtin_and(args: list[Arg]) -> CellValue:
    values = _logical_values("AND", args)
    if isinstance(values, CellValue):
        return values
    return CellValue.boolean(all(truthy(v) for v in values))


def _builtin_or(args: list[Arg]) -> CellValue:
    values = _logical_values("OR", args)
    if isinstance(values, CellValue):
        return values
    return CellValue.boolean(any(truthy(v) for v in values))


def _builtin_not(args: list[Arg]) -> CellValue:
    _check_arity("NOT", args, 1)
    value = _scalar("NOT", args[0])
    if value.is_error:
        return value
    return CellValue.boolean(not truthy(value))


def _builtin_true(args: list[Arg]) -> CellValue:
    _check_arity("TRUE", args, 0)
    return CellValue.boolean(True)


def _builtin_false(args: list[Arg]) -> CellValue:
    _check_arity("FALSE", args, 0)
    return CellValue.boolean(False)


# ---------------------------------------------------------------------------
# Text.  Scalar arguments work on display strings; an error argument is
# returned as the result.
# ---------------------------------------------------------------------------


def _text_args(name: str, args: list[Arg], low: int, high: int | None = None) -> list[CellValue] | CellValue:
    _check_arity(name, args, low, high)
    values = [_scalar(name, a) for a in args]
    err = first_error(*values)
    return err if err is not None else values


def _builtin_concatenate(args: list[Arg]) -> CellValue:
    values = _flatten(args)
    err = first_error(*values)
    if err is not None:
        return err
    return CellValue.text("".join(v.to_display_string() for v in values))


def _builtin_len(args: list[Arg]) -> CellValue:
    values = _text_args("LEN", args, 1)
    if isinstance(values, CellValue):
        return values
    return CellValue.number(len(values[0].to_display_string()))


def _builtin_upper(args: list[Arg]) -> CellValue:
    values = _text_args("UPPER", args, 1)
    if isinstance(values, CellValue):
        return values
    return CellValue.text(values[0].to_display_string().upper())


def _builtin_lower(args: list[Arg]) -> CellValue:
    values = _text_args("LOWER", args, 1)
    if isinstance(values, CellValue):
        return values
    return CellValue.text(values[0].to_display_string().lower())


def _builtin_trim(args: list[Arg]) -> CellValue:
    """TRIM(text). Strips the ends and collapses inner whitespace runs."""
    values = _text_args("TRIM", args, 1)
    if isinstance(values, CellValue):
        return values
    return CellValue.text(" ".join(values[0].to_display_string().split()))


def _builtin_left(args: list[Arg]) -> CellValue:
    values = _text_args("LEFT", args, 1, 2)
    if isinstance(values, CellValue):
        return values
    text = values[0].to_display_string()
    n = _int_arg("LEFT", values[1]) if len(values) > 1 else 1
    if n < 0:
        raise InvalidArgument("LEFT: count must be non-negative")
    return CellValue.text(text[:n])


def _builtin_right(args: list[Arg]) -> CellValue:
    values = _text_args("RIGHT", args, 1, 2)
    if isinstance(values, CellValue):
        return values
    text = values[0].to_display_string()
    n = _int_arg("RIGHT", values[1]) if len(values) > 1 else 1
    if n < 0:
        raise InvalidArgument("RIGHT: count must be non-negative")
    return CellValue.text(text[len(text) - n:] if n else "")


def _builtin_mid(args: list[Arg]) -> CellValue:
    """MID(text, start, count). ``start`` is 1-based."""
    values = _text_args("MID", args, 3)
    if isinstance(values, CellValue):
        return values
    text = values[0].to_display_string()
    start = _int_arg("MID", values[1])
    count = _int_arg("MID", values[2])
    if start < 1 or count < 0:
        raise InvalidArgument("MID: start must be >= 1 and count >= 0")
    return CellValue.text(text[start - 1:start - 1 + count])


def _builtin_find(args: list[Arg]) -> CellValue:
    """FIND(needle, haystack, [start]). Case-sensitive, 1-based."""
    values = _text_args("FIND", args, 2, 3)
    if isinstance(values, CellValue):
        return values
    needle = values[0].to_display_string()
    haystack = values[1].to_display_string()
    start = _int_arg("FIND", values[2]) if len(values) > 2 else 1
    if start < 1 or start > len(haystack) + 1:
        raise InvalidArgument(f"FIND: start {start} is outside the text")
    idx = haystack.find(needle, start - 1)
    if idx == -1:
        raise InvalidArgument(f"FIND: {needle!r} not found")
    return CellValue.number(idx + 1)


def _builtin_substitute(args: list[Arg]) -> CellValue:
    """SUBSTITUTE(text, old, new, [instance])."""
    values = _text_args("SUBSTITUTE", args, 3, 4)
    if isinstance(values, CellValue):
        return values
    text, old, new = (v.to_display_string() for v in values[:3])
    if len(values) < 4:
        return CellValue.text(text.replace(old, new) if old else text)
    instance = _int_arg("SUBSTITUTE", values[3])
    if instance < 1:
        raise InvalidArgument("SUBSTITUTE: instance must be >= 1")
    if not old:
        return CellValue.text(text)
    idx = -1
    for _ in range(instance):
        idx = text.find(old, idx + 1)
        if idx == -1:
            return CellValue.text(text)
    return CellValue.text(text[:idx] + new + text[idx + len(old):])


def _builtin_char(args: list[Arg]) -> CellValue:
    values = _text_args("CHAR", args, 1)
    if isinstance(values, CellValue):
        return values
    code = _int_arg("CHAR", values[0])
    if not 1 <= code <= 0x10FFFF:
        raise InvalidArgument(f"CHAR: code point {code} out of range")
    return CellValue.text(chr(code))


def _builtin_code(args: list[Arg]) -> CellValue:
    values = _text_args("CODE", args, 1)
    if isinstance(values, CellValue):
        return values
    text = values[0].to_display_string()
    if not text:
        raise InvalidArgument("CODE: empty text")
    return CellValue.number(ord(text[0]))


def _builtin_exact(args: list[Arg]) -> CellValue:
    """EXACT(text1, text2). Case-sensitive comparison."""
    values = _text_args("EXACT", args, 2)
    if isinstance(values, CellValue):
        return values
    return CellValue.boolean(values[0].to_display_string() == values[1].to_display_string())


def _builtin_rept(args: list[Arg]) -> CellValue:
    """REPT(text, times)."""
    values = _text_args("REPT", args, 2)
    if isinstance(values, CellValue):
        return values
    times = _int_arg("REPT", values[1])
    if times < 0:
        raise InvalidArgument("REPT: count must be non-negative")
    return CellValue.text(values[0].to_display_string() * times)


# ---------------------------------------------------------------------------
# Date builtins (TODAY, NOW, DATE, YEAR, MONTH, DAY).  Dates are day counts
# since 1970-01-01.
# ---------------------------------------------------------------------------


def _days_to_date(name: str, value: CellValue) -> datetime.date:
    d = value.as_date()
    if d is not None:
        return d
    days = to_number(value)
    try:
        return _EPOCH + datetime.timedelta(days=math.floor(days))
    except OverflowError:
        raise InvalidArgument(f"{name}: {format_number(days)} is not a valid date") from None


def _builtin_today(args: list[Arg]) -> CellValue:
    _check_arity("TODAY", args, 0)
    return CellValue.from_date(datetime.date.today())


def _builtin_now(args: list[Arg]) -> CellValue:
    """NOW(). Fractional days since 1970-01-01, local time."""
    _check_arity("NOW", args, 0)
    delta = datetime.datetime.now() - _EPOCH_DATETIME
    return CellValue.number(delta.total_seconds() / 86400)


def _builtin_date(args: list[Arg]) -> CellValue:
    """DATE(year, month, day).

    Month and day overflow wrap: DATE(2020, 14, 1) is 2021-02-01 and
    DATE(2021, 3, 0) is 2021-02-28.
    """
    values = _text_args("DATE", args, 3)
    if isinstance(values, CellValue):
        return values
    y, m, d = (_int_arg("DATE", v) for v in values)
    y += (m - 1) // 12
    m = (m - 1) % 12 + 1
    try:
        result = datetime.date(y, m, 1) + datetime.timedelta(days=d - 1)
    except (ValueError, OverflowError):
        raise InvalidArgument(f"DATE: {y}-{m}-{d} is out of range") from None
    return CellValue.from_date(result)


def _date_part(name: str, args: list[Arg], part: str) -> CellValue:
    values = _text_args(name, args, 1)
    if isinstance(values, CellValue):
        return values
    return CellValue.number(getattr(_days_to_date(name, values[0]), part))


def _builtin_year(args: list[Arg]) -> CellValue:
    return _date_part("YEAR", args, "year")


def _builtin_month(args: list[Arg]) -> CellValue:
    return _date_part("MONTH", args, "month")


def _builtin_day(args: list[Arg]) -> CellValue:
    return _date_part("DAY", args, "day")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_BUILTINS: dict[str, Callable[..., Any]] = {
    "SUM": _builtin_sum,
    "AVERAGE": _builtin_average,
    "COUNT": _builtin_count,
    "COUNTA": _builtin_counta,
    "MAX": _builtin_max,
    "MIN": _builtin_min,
    "ABS": _builtin_abs,
    "ROUND": _builtin_round,
    "FLOOR": _builtin_floor,
    "CEIL": _builtin_ceil,
    "SQRT": _builtin_sqrt,
    "POWER": _builtin_power,
    "MOD": _builtin_mod,
    "INT": _builtin_int,
    "IF": _builtin_if,
    "IFERROR": _builtin_iferror,
    "AND": _builtin_and,
    "OR": _builtin_or,
    "NOT": _builtin_not,
    "TRUE": _builtin_true,
    "FALSE": _builtin_false,
    "CONCATENATE": _builtin_concatenate,
    "LEN": _builtin_len,
    "UPPER": _builtin_upper,
    "LOWER": _builtin_lower,
    "TRIM": _builtin_trim,
    "LEFT": _builtin_left,
    "RIGHT": _builtin_right,
    "MID": _builtin_mid,
    "FIND": _builtin_find,
    "SUBSTITUTE": _builtin_substitute,
    "CHAR": _builtin_char,
    "CODE": _builtin_code,
    "EXACT": _builtin_exact,
    "REPT": _builtin_rept,
    "TODAY": _builtin_today,
    "NOW": _builtin_now,
    "DATE": _builtin_date,
    "YEAR": _builtin_year,
    "MONTH": _builtin_month,
    "DAY": _builtin_day,
}


class FunctionRegistry:
    """Registry of callable function implementations.

    Starts with builtins and can be extended with custom functions.  Lookups
    are case-insensitive and follow :data:`FUNCTION_ALIASES` when the name
    itself is not registered.
    """

    def __init__(self) -> None:
        self._functions: dict[str, Callable[..., Any]] = dict(_BUILTINS)

    def register(self, name: str, func: Callable[..., Any]) -> None:
        self._functions[name.upper()] = func

    def get(self, name: str) -> Callable[..., Any] | None:
        func = self._functions.get(name.upper())
        if func is None:
            func = self._functions.get(resolve_name(name))
        return func

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    @property
    def supported_functions(self) -> frozenset[str]:
        return frozenset(self._functions.keys())
