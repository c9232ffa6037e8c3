"""Workbook loading for the statement export.

The export is one Excel workbook with a sheet per statement type. Cells are
read as raw objects with NA filtering disabled so that literal ``"NA"`` tokens
reach the reshaper and can be told apart from non-numeric garbage.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

import pandas as pd

from sales_panel.config import setup_logging
from sales_panel.types import MissingSheetError

if TYPE_CHECKING:
    from pathlib import Path

logger = setup_logging(__name__)


def load_workbook(path: Path, sheet_names: Iterable[str] | None = None) -> dict[str, pd.DataFrame]:
    """Read workbook sheets into raw-object DataFrames.

    Parameters
    ----------
    path
        Path to the ``.xlsx`` export.
    sheet_names
        Sheets to read; all sheets when ``None``.

    Returns
    -------
    dict[str, pd.DataFrame]
        Sheet name to its grid, first row used as header.

    Raises
    ------
    FileNotFoundError
        If ``path`` does not exist.
    MissingSheetError
        If a requested sheet is absent from the workbook.
    """
    if not path.exists():
        msg = f"Workbook not found: {path}"
        raise FileNotFoundError(msg)

    with pd.ExcelFile(path, engine="openpyxl") as xls:
        available = list(xls.sheet_names)
        wanted = list(sheet_names) if sheet_names is not None else available
        require_sheets(available, wanted)
        sheets = {name: xls.parse(name, dtype=object, na_filter=False) for name in wanted}

    logger.info("Loaded %d sheets from %s", len(sheets), path.name)
    return sheets


def require_sheets(available: Iterable[str], required: Iterable[str]) -> None:
    """Raise :class:`MissingSheetError` naming every required sheet not available."""
    present = set(available)
    missing = [name for name in required if name not in present]
    if missing:
        msg = f"Workbook is missing expected sheets: {missing}"
        raise MissingSheetError(msg)


def get_sheet(sheets: Mapping[str, pd.DataFrame], name: str) -> pd.DataFrame:
    """Return one sheet, failing the run when it is absent."""
    require_sheets(sheets.keys(), [name])
    return sheets[name]
