"""Pytest configuration for sales_panel tests.

This module provides:
- Builders for synthetic sales (periods x labels) and statement
  (labels x years) sheets in the export's layout
- A complete in-memory workbook fixture for end-to-end runs
- A parsed copy of ``config/config.json``
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd
import pytest
from dotenv import load_dotenv

from sales_panel.config import get_config

# Load environment variables from project .env so directory overrides apply in tests
PROJECT_ROOT = Path(__file__).parent.parent
load_dotenv(PROJECT_ROOT / ".env")

SALES_ENTITIES = ["APPLE INC", "3M COMPANY", "MICROSOFT CORP", "NEWS CORP CLASS B"]
STATEMENT_ENTITIES = ["APPLE INC", "3M", "MICROSOFT CORP"]
YEARS = list(range(2002, 2012))

BALANCE_SHEET_VARIABLES = ["TOTAL ASSETS", "CASH & SHORT TERM INVESTMENTS", "TOTAL DEBT"]
PROFIT_LOSS_1_VARIABLES = ["NET INCOME", "OPERATING INCOME"]
PROFIT_LOSS_2_VARIABLES = ["INTEREST EXPENSE"]

# Sales cell left empty in the export; repaired by interpolation
MISSING_SALES_CELL = ("APPLE INC", 2005, 3)

ERROR_HEADER = "$$ER: 4540,NO DATA VALUES FOUND"


def _seed(*parts: object) -> int:
    """Stable seed from arbitrary parts (``hash`` is salted per process)."""
    return sum((i + 1) * ord(ch) for i, ch in enumerate("|".join(map(str, parts))))


def default_sales_value(entity: str, year: int, quarter: int) -> float:
    """Trending quarterly sales with a small entity-specific wobble."""
    t = (year - YEARS[0]) * 4 + (quarter - 1)
    base = 1000.0 + 250.0 * SALES_ENTITIES.index(entity)
    wobble = np.random.default_rng(_seed(entity, year, quarter)).normal(0.0, 5.0)
    return round(base * (1.0 + 0.02 * t) + wobble, 2)


def default_statement_value(entity: str, variable: str, year: int) -> float:
    """Positive annual statement value, independent across variables."""
    rng = np.random.default_rng(_seed(entity, variable, year))
    return round(float(rng.uniform(100.0, 10_000.0)), 2)


def make_sales_sheet(
    quarter: int,
    entities: Iterable[str],
    years: Iterable[int],
    value_fn: Callable[[str, int, int], Any] = default_sales_value,
    extra_headers: Iterable[str] = (),
) -> pd.DataFrame:
    """Build one ``Sales Q<n>`` sheet: period rows by composite-label columns."""
    entities = list(entities)
    rows = []
    for year in years:
        row: dict[str, Any] = {"Name": f"Q{quarter} {year}"}
        for entity in entities:
            row[f"{entity} - NET SALES OR REVENUES - Q{quarter}"] = value_fn(entity, year, quarter)
        for header in extra_headers:
            row[header] = None
        rows.append(row)
    return pd.DataFrame(rows)


def make_statement_sheet(
    entities: Iterable[str],
    variables: Iterable[str],
    years: Iterable[int],
    value_fn: Callable[[str, str, int], Any] = default_statement_value,
) -> pd.DataFrame:
    """Build one statement sheet: composite-label rows by year columns."""
    years = list(years)
    variables = list(variables)
    rows = []
    for entity in entities:
        for variable in variables:
            row: dict[str, Any] = {"Name": f"{entity} - {variable}"}
            for year in years:
                row[year] = value_fn(entity, variable, year)
            rows.append(row)
    return pd.DataFrame(rows)


def make_workbook_sheets() -> dict[str, pd.DataFrame]:
    """Build every sheet the pipeline reads, keyed by sheet name."""
    entity, year, quarter = MISSING_SALES_CELL

    def sales_value(e: str, y: int, q: int) -> Any:
        if (e, y, q) == (entity, year, quarter):
            return "NA"
        return default_sales_value(e, y, q)

    sheets = {
        f"Sales Q{q}": make_sales_sheet(
            q,
            SALES_ENTITIES,
            YEARS,
            sales_value,
            extra_headers=[ERROR_HEADER] if q == 1 else (),
        )
        for q in range(1, 5)
    }
    sheets["Balance Sheet"] = make_statement_sheet(STATEMENT_ENTITIES, BALANCE_SHEET_VARIABLES, YEARS)
    sheets["Profit & Loss 1"] = make_statement_sheet(STATEMENT_ENTITIES, PROFIT_LOSS_1_VARIABLES, YEARS)
    sheets["Profit & Loss 2"] = make_statement_sheet(STATEMENT_ENTITIES, PROFIT_LOSS_2_VARIABLES, YEARS)
    return sheets


@pytest.fixture
def workbook_sheets() -> dict[str, pd.DataFrame]:
    """Complete synthetic workbook with sales, balance sheet, and profit & loss."""
    return make_workbook_sheets()


@pytest.fixture
def project_config() -> dict[str, Any]:
    """Deep copy of ``config/config.json`` that tests may modify."""
    return copy.deepcopy(get_config())


@pytest.fixture
def quarterly_sales() -> pd.DataFrame:
    """Tidy quarterly sales for two entities over 2002-2004, no gaps."""
    rows = [
        {"entity": entity, "year": year, "quarter": quarter, "sales": default_sales_value(entity, year, quarter)}
        for entity in ["APPLE INC", "MICROSOFT CORP"]
        for year in range(2002, 2005)
        for quarter in range(1, 5)
    ]
    return pd.DataFrame(rows)
