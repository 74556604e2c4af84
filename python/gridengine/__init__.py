"""gridengine - spreadsheet data engine with cells, ranges, selections and formulas.

Usage::

    from gridengine import Spreadsheet

    book = Spreadsheet()
    book.set_cell_value("A1", 2)
    book.set_cell_value("A2", 3)
    result = book.set_cell_formula("A3", "=SUM(A1:A2)*2")
    print(book.get_cell_value("A3"))     # 10
    print(sorted(map(str, result.changed_cells)))

    sheet = book.active()
    with sheet.deferred():
        sheet.set_cell_formula("B1", "=B2+1")
        sheet.set_cell_formula("B2", "=B1+1")
    print(sheet.get_cell_value("B1"))    # #circular-reference!
"""

from gridengine._cell import (
    EMPTY,
    Cell,
    CellStyle,
    CellValue,
    HAlign,
    VAlign,
    ValueKind,
)
from gridengine._config import CalcSettings
from gridengine._errors import (
    CircularReference,
    DivByZero,
    ErrorKind,
    FormulaError,
    FormulaTypeError,
    InvalidArgument,
    InvalidRef,
    InvalidSyntax,
    UnknownFunction,
)
from gridengine._refs import CellRange, CellRef
from gridengine._selection import Selection
from gridengine._utils import a1_to_rowcol, column_index, column_letters, rowcol_to_a1
from gridengine._workbook import Spreadsheet
from gridengine._worksheet import Sheet
from gridengine.calc import CellDelta, Formula, RecalcResult

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "CalcSettings",
    "Cell",
    "CellDelta",
    "CellRange",
    "CellRef",
    "CellStyle",
    "CellValue",
    "CircularReference",
    "DivByZero",
    "EMPTY",
    "ErrorKind",
    "Formula",
    "FormulaError",
    "FormulaTypeError",
    "HAlign",
    "InvalidArgument",
    "InvalidRef",
    "InvalidSyntax",
    "RecalcResult",
    "Selection",
    "Sheet",
    "Spreadsheet",
    "UnknownFunction",
    "VAlign",
    "ValueKind",
    "a1_to_rowcol",
    "column_index",
    "column_letters",
    "rowcol_to_a1",
]
