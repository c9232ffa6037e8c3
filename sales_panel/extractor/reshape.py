"""Wide-to-long reshaping of statement sheets.

A statement sheet is a grid of composite-label columns by period rows (sales)
or composite-label rows by year columns (balance sheet, profit & loss). The
reshaper puts periods on the row axis, melts the grid, and parses one
composite label per cell into a tidy record.

Output columns
--------------
``entity``, ``variable``, ``year``, ``quarter`` (nullable, empty for annual
data), ``value`` (float, NaN when missing), ``missing_reason``.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from sales_panel.config import setup_logging
from sales_panel.extractor.workbook import get_sheet
from sales_panel.utils.parsing import (
    DEFAULT_ERROR_MARKERS,
    DEFAULT_NA_TOKENS,
    DELIMITER,
    coerce_numeric,
    is_error_label,
    normalize_variable_name,
    parse_label,
    parse_period_token,
    prenormalize_label,
    strip_qualifier,
)
from sales_panel.types import (
    EmptyPeriodAxisError,
    ObservationRecord,
    ParsedLabel,
    ParseError,
    PeriodKind,
)

if TYPE_CHECKING:
    from sales_panel.transformer.quality import QualityReport

logger = setup_logging(__name__)

TIDY_COLUMNS = ["entity", "variable", "year", "quarter", "value", "missing_reason"]


def _header_stem(
    header: Any,
    header_has_qualifier: bool,
    error_markers: Iterable[str],
    replacements: Mapping[str, str] | None,
) -> str:
    """Return the ``"<entity> - <variable>"`` part of a sheet header."""
    if not isinstance(header, str):
        msg = f"Header is not a string: {header!r}"
        raise ParseError(msg)
    # Error cells are rejected before any splitting happens
    if is_error_label(header, error_markers):
        msg = f"Header carries an error marker: {header!r}"
        raise ParseError(msg)
    header = prenormalize_label(header, replacements)
    return strip_qualifier(header) if header_has_qualifier else header.strip()


def reshape_sheet(
    sheet: pd.DataFrame,
    period_kind: PeriodKind | str,
    *,
    label_axis: str = "columns",
    axis_column: str = "Name",
    header_has_qualifier: bool = True,
    error_markers: Iterable[str] = DEFAULT_ERROR_MARKERS,
    na_tokens: Iterable[str] = DEFAULT_NA_TOKENS,
    replacements: Mapping[str, str] | None = None,
    strict: bool = False,
    report: QualityReport | None = None,
) -> pd.DataFrame:
    """Convert one wide sheet into a tidy long table.

    Parameters
    ----------
    sheet
        Raw grid. ``axis_column`` holds period tokens when ``label_axis`` is
        ``"columns"`` and composite labels when it is ``"rows"``.
    period_kind
        Cadence of the sheet.
    label_axis
        Axis of the source grid carrying the composite labels.
    axis_column
        Name of the first (row-label) column.
    header_has_qualifier
        Whether labels end in a sheet-level qualifier (``" - Q1"``) that the
        row's full period token replaces.
    error_markers
        Prefixes of export error labels.
    na_tokens
        Literal tokens meaning "no value".
    replacements
        Label pre-normalization table, see
        :func:`~sales_panel.utils.parsing.prenormalize_label`.
    strict
        Reject labels with extra delimiters instead of folding them into the
        variable segment.
    report
        Optional quality report receiving parse-failure counts.

    Returns
    -------
    pd.DataFrame
        One row per (label, period) cell with :data:`TIDY_COLUMNS`. Duplicate
        labels are kept.

    Raises
    ------
    EmptyPeriodAxisError
        If ``axis_column`` is missing or no period token parses.
    ValueError
        If ``label_axis`` is not ``"columns"`` or ``"rows"``.
    """
    kind = PeriodKind(period_kind)
    if label_axis not in {"columns", "rows"}:
        msg = f"label_axis must be 'columns' or 'rows', got {label_axis!r}"
        raise ValueError(msg)
    if axis_column not in sheet.columns:
        msg = f"Sheet has no axis column {axis_column!r}"
        raise EmptyPeriodAxisError(msg)

    # Periods on the row axis, labels on the column axis
    frame = sheet.set_index(axis_column)
    if label_axis == "rows":
        frame = frame.T

    periods = []
    row_mask = []
    for token in frame.index:
        try:
            periods.append(parse_period_token(token, kind))
            row_mask.append(True)
        except ParseError:
            row_mask.append(False)
    if not periods:
        msg = f"No valid {kind.value} period tokens on the sheet axis"
        raise EmptyPeriodAxisError(msg)

    stems = []
    col_mask = []
    failed_headers = []
    for header in frame.columns:
        try:
            stems.append(_header_stem(header, header_has_qualifier, error_markers, replacements))
            col_mask.append(True)
        except ParseError:
            failed_headers.append(header)
            col_mask.append(False)

    frame = frame.loc[row_mask, col_mask]
    n_rows, n_cols = frame.shape
    if report is not None:
        report.record("reshape", "invalid_period_token", row_mask.count(False))
        report.record("reshape", "parse_failure", len(failed_headers))

    labels = [f"{stem}{DELIMITER}{period}" for period in periods for stem in stems]
    raw = pd.Series(frame.to_numpy(dtype=object).ravel(), dtype=object)

    parsed: dict[str, ParsedLabel | None] = {}
    for label in dict.fromkeys(labels):
        try:
            parsed[label] = parse_label(label, kind, error_markers, strict=strict)
        except ParseError:
            parsed[label] = None

    keep = np.array([parsed[label] is not None for label in labels], dtype=bool)
    if report is not None:
        failed = {label.rsplit(DELIMITER, 1)[0] for label in labels if parsed[label] is None}
        report.record(
            "reshape",
            "parse_failure",
            len(failed),
            {stem.split(DELIMITER)[0] for stem in failed},
        )

    triples = [parsed[label] for label, ok in zip(labels, keep, strict=True) if ok]
    values = coerce_numeric(raw[keep].reset_index(drop=True), na_tokens)

    tidy = pd.DataFrame(
        {
            "entity": [t.entity for t in triples],
            "variable": [t.variable for t in triples],
            "year": pd.array([t.period.year for t in triples], dtype="Int64"),
            "quarter": pd.array([t.period.quarter for t in triples], dtype="Int64"),
            "value": values["value"],
            "missing_reason": values["missing_reason"],
        },
        columns=TIDY_COLUMNS,
    )

    non_numeric = int((tidy["missing_reason"] == "non_numeric").sum())
    if report is not None:
        report.record("reshape", "non_numeric_value", non_numeric)

    logger.info(
        "Reshaped %d labels x %d periods into %d records (%d entities)",
        n_cols,
        n_rows,
        len(tidy),
        tidy["entity"].nunique(),
    )
    return tidy


def iter_records(tidy: pd.DataFrame) -> Iterator[ObservationRecord]:
    """Yield :class:`ObservationRecord` objects for a reshaped table."""
    for row in tidy.to_dict(orient="records"):
        yield ObservationRecord.from_row(row)


# =============================================================================
# Statement Assembly
# =============================================================================


def _reshape_sheets(
    sheets: Mapping[str, pd.DataFrame],
    sheet_names: Iterable[str],
    period_kind: PeriodKind | str,
    report: QualityReport | None,
    **kwargs: Any,
) -> pd.DataFrame:
    """Reshape several sheets of the same statement and concatenate once."""
    parts = [
        reshape_sheet(get_sheet(sheets, name), period_kind, report=report, **kwargs)
        for name in sheet_names
    ]
    return pd.concat(parts, ignore_index=True)


def reshape_sales(
    sheets: Mapping[str, pd.DataFrame],
    sheet_names: Iterable[str],
    value_name: str = "sales",
    drop_absent: bool = True,
    report: QualityReport | None = None,
    **kwargs: Any,
) -> pd.DataFrame:
    """Build the quarterly sales table from the ``Sales Q1..Q4`` sheets.

    Parameters
    ----------
    sheets
        Workbook sheets by name.
    sheet_names
        Sales sheet names, one per quarter.
    value_name
        Name of the value column in the output.
    drop_absent
        Drop records whose value is absent (empty or NA token). Non-numeric
        values are always dropped and counted.
    report
        Optional quality report.
    **kwargs
        Forwarded to :func:`reshape_sheet`.

    Returns
    -------
    pd.DataFrame
        Columns ``entity``, ``year``, ``quarter``, and ``value_name``.
    """
    tidy = _reshape_sheets(sheets, sheet_names, PeriodKind.QUARTERLY, report, **kwargs)

    drop = tidy["missing_reason"] == "non_numeric"
    if drop_absent:
        absent = tidy["missing_reason"] == "absent"
        if report is not None:
            report.record("reshape", "absent_value", int(absent.sum()))
        drop |= absent
    tidy = tidy.loc[~drop]

    sales = tidy[["entity", "year", "quarter", "value"]].rename(columns={"value": value_name})
    logger.info(
        "Sales table: %d records for %d entities from %s to %s",
        len(sales),
        sales["entity"].nunique(),
        sales["year"].min(),
        sales["year"].max(),
    )
    return sales.reset_index(drop=True)


def reshape_statement(
    sheets: Mapping[str, pd.DataFrame],
    sheet_names: Iterable[str],
    report: QualityReport | None = None,
    **kwargs: Any,
) -> pd.DataFrame:
    """Build an annual statement table with one column per variable.

    Parameters
    ----------
    sheets
        Workbook sheets by name.
    sheet_names
        Sheets belonging to the statement (e.g. ``Profit & Loss 1`` and ``2``).
    report
        Optional quality report.
    **kwargs
        Forwarded to :func:`reshape_sheet`.

    Returns
    -------
    pd.DataFrame
        Columns ``entity``, ``year`` and one normalized column per variable.
    """
    tidy = _reshape_sheets(sheets, sheet_names, PeriodKind.ANNUAL, report, **kwargs)
    return pivot_variables(tidy, report)


def pivot_variables(tidy: pd.DataFrame, report: QualityReport | None = None) -> pd.DataFrame:
    """Pivot a tidy annual table to ``entity, year, <variable>...`` columns.

    Variable names are normalized with
    :func:`~sales_panel.utils.parsing.normalize_variable_name`; the first
    non-missing value wins when a label appears more than once.

    Parameters
    ----------
    tidy
        Reshaped annual records.
    report
        Optional quality report. Repeated cells with equal values count as
        ``exact_duplicate``, cells with differing values as
        ``conflicting_duplicate``, and distinct raw variables sharing one
        normalized name as ``variable_name_collision``.

    Returns
    -------
    pd.DataFrame
        One row per entity and year.
    """
    tidy = tidy.assign(raw_variable=tidy["variable"], variable=tidy["variable"].map(normalize_variable_name))
    keys = ["entity", "year", "variable"]

    if report is not None:
        known = tidy.loc[tidy["value"].notna()]
        cells = known.groupby(keys)["value"].agg(["size", "nunique"]).reset_index()
        conflicting = cells.loc[cells["nunique"] > 1]
        repeated = cells.loc[(cells["size"] > 1) & (cells["nunique"] == 1)]
        report.record("reshape", "exact_duplicate", int((repeated["size"] - 1).sum()), repeated["entity"])
        report.record("reshape", "conflicting_duplicate", len(conflicting), conflicting["entity"])

        sources = tidy.groupby("variable")["raw_variable"].nunique()
        collisions = sorted(sources.index[sources > 1])
        report.record("reshape", "variable_name_collision", len(collisions))
        if collisions:
            logger.warning("Variables merged by name normalization: %s", collisions)

    wide = tidy.groupby(keys)["value"].first().unstack("variable")
    wide = wide.reset_index()
    wide.columns.name = None
    return wide.sort_values(["entity", "year"]).reset_index(drop=True)
