"""gridengine.calc - Formula parsing, evaluation and recalculation."""

from gridengine.calc._evaluator import Evaluator, SheetEvaluator, evaluate
from gridengine.calc._functions import (
    FUNCTION_ALIASES,
    FUNCTION_CATEGORIES,
    FunctionRegistry,
    RangeValue,
    is_supported,
    resolve_name,
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
    parse_expression,
    tokenize,
)
from gridengine.calc._protocol import (
    CalcEngine,
    CellDelta,
    CellState,
    EvaluationContext,
    RecalcResult,
)

__all__ = [
    "BinOp",
    "BinaryOperator",
    "CalcEngine",
    "Call",
    "CellDelta",
    "CellState",
    "DependencyGraph",
    "EvaluationContext",
    "Evaluator",
    "FUNCTION_ALIASES",
    "FUNCTION_CATEGORIES",
    "Formula",
    "FormulaExpr",
    "FunctionRegistry",
    "Literal",
    "RangeRef",
    "RangeValue",
    "RecalcResult",
    "Ref",
    "SheetEvaluator",
    "UnaryOp",
    "UnaryOperator",
    "evaluate",
    "is_supported",
    "parse_expression",
    "resolve_name",
    "tokenize",
]
