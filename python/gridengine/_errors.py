"""Formula error taxonomy.

Parse-time errors (:class:`InvalidSyntax`, :class:`InvalidRef`) are raised to
the caller of ``set_cell_formula`` and reject the write.  Evaluation-time
errors are caught by the recalculation driver and stored in the cell as an
error value whose code is the exception's :class:`ErrorKind`.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """In-cell error codes."""

    INVALID_SYNTAX = "invalid-syntax"
    INVALID_REF = "invalid-ref"
    DIV_BY_ZERO = "div-by-zero"
    UNKNOWN_FUNCTION = "unknown-function"
    INVALID_ARGUMENT = "invalid-argument"
    TYPE_ERROR = "type-error"
    CIRCULAR_REFERENCE = "circular-reference"
    # Soft errors returned as values by individual operators and functions
    NO_NUMERIC_VALUES = "no-numeric-values"
    NEGATIVE_SQRT = "negative-sqrt"
    UNEQUAL_TYPES = "unequal-types"

    def __str__(self) -> str:
        return self.value


class FormulaError(Exception):
    """Base for all formula errors. ``kind`` is the in-cell error code."""

    kind: ErrorKind = ErrorKind.INVALID_SYNTAX

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind.value)
        self.message = message


class InvalidSyntax(FormulaError):
    kind = ErrorKind.INVALID_SYNTAX


class InvalidRef(FormulaError):
    kind = ErrorKind.INVALID_REF


class DivByZero(FormulaError):
    kind = ErrorKind.DIV_BY_ZERO


class UnknownFunction(FormulaError):
    kind = ErrorKind.UNKNOWN_FUNCTION

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown function: {name}")
        self.name = name


class InvalidArgument(FormulaError):
    kind = ErrorKind.INVALID_ARGUMENT


class FormulaTypeError(FormulaError):
    kind = ErrorKind.TYPE_ERROR


class CircularReference(FormulaError):
    kind = ErrorKind.CIRCULAR_REFERENCE
