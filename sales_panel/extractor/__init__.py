"""Extractor module for workbook loading and wide-to-long reshaping.

Submodules
----------
workbook
    Excel loading (openpyxl) with required-sheet validation.
reshape
    Composite-label sheets to tidy tables; sales and statement assembly.
"""

from sales_panel.extractor.reshape import (
    iter_records,
    pivot_variables,
    reshape_sales,
    reshape_sheet,
    reshape_statement,
)
from sales_panel.extractor.workbook import get_sheet, load_workbook, require_sheets
from sales_panel.types import (
    EmptyPeriodAxisError,
    InsufficientHistoryError,
    MissingSheetError,
    ObservationRecord,
    PanelError,
    ParsedLabel,
    ParseError,
    Period,
    PeriodKind,
)

__all__ = [
    # Types
    "EmptyPeriodAxisError",
    "InsufficientHistoryError",
    "MissingSheetError",
    "ObservationRecord",
    "PanelError",
    "ParseError",
    "ParsedLabel",
    "Period",
    "PeriodKind",
    # Workbook
    "get_sheet",
    "load_workbook",
    "require_sheets",
    # Reshaping
    "iter_records",
    "pivot_variables",
    "reshape_sales",
    "reshape_sheet",
    "reshape_statement",
]
