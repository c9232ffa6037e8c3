"""Per-entity continuity repair and gap filling.

Each entity's observations are put on a contiguous, equally spaced period
grid (quarterly or annual). Periods missing from the grid, and missing values
on it, are filled by cubic-spline interpolation over that entity's own
series. Filled rows carry ``interpolated=True``.

Preconditions
-------------
Every value column of every entity reaching :func:`repair_series` must hold
at least two known points; run :func:`filter_min_observations` first.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd
from scipy.interpolate import CubicSpline

from sales_panel.config import setup_logging
from sales_panel.types import InsufficientHistoryError, PeriodKind

if TYPE_CHECKING:
    from sales_panel.transformer.quality import QualityReport

logger = setup_logging(__name__)

STAGE = "continuity"


def period_dates(df: pd.DataFrame) -> pd.Series:
    """Return the first day of each row's period.

    Rows carry ``year`` and, for quarterly data, ``quarter``.
    """
    if "quarter" in df.columns:
        month = (df["quarter"].astype(int) - 1) * 3 + 1
    else:
        month = pd.Series(1, index=df.index)
    parts = pd.DataFrame({"year": df["year"].astype(int), "month": month, "day": 1})
    return pd.to_datetime(parts)


def drop_exact_duplicates(df: pd.DataFrame, report: QualityReport | None = None) -> pd.DataFrame:
    """Remove rows that are exact duplicates of an earlier row."""
    dupes = df.duplicated(keep="first")
    n_dupes = int(dupes.sum())
    if report is not None:
        report.record(STAGE, "exact_duplicate", n_dupes, df.loc[dupes, "entity"])
    if n_dupes:
        logger.info("Removed %d exact duplicate rows", n_dupes)
    return df.loc[~dupes].reset_index(drop=True)


def drop_conflicting_periods(df: pd.DataFrame, report: QualityReport | None = None) -> pd.DataFrame:
    """Keep the first row when one (entity, period) has differing values."""
    keys = ["entity", "year", "quarter"] if "quarter" in df.columns else ["entity", "year"]
    conflicts = df.duplicated(subset=keys, keep="first")
    if report is not None:
        report.record(STAGE, "conflicting_duplicate", int(conflicts.sum()), df.loc[conflicts, "entity"])
    return df.loc[~conflicts].reset_index(drop=True)


def drop_sparse_columns(
    df: pd.DataFrame,
    value_columns: Sequence[str],
    max_missing_share: float,
    report: QualityReport | None = None,
) -> list[str]:
    """Return the value columns whose missing share is at most ``max_missing_share``."""
    shares = df[list(value_columns)].isna().mean()
    sparse = list(shares.index[shares > max_missing_share])
    if report is not None:
        report.record(STAGE, "sparse_variable", len(sparse))
    if sparse:
        logger.info("Dropping %d variables with more than %.0f%% missing", len(sparse), 100 * max_missing_share)
    return [c for c in value_columns if c not in set(sparse)]


def _joint_span(values: pd.DataFrame) -> tuple[pd.Timestamp, pd.Timestamp] | None:
    """Return the first and last date where every column of ``values`` is known."""
    firsts = [values[c].first_valid_index() for c in values.columns]
    lasts = [values[c].last_valid_index() for c in values.columns]
    if any(d is None for d in firsts):
        return None
    start, end = max(firsts), min(lasts)
    return (start, end) if start <= end else None


def _span_counts(group: pd.DataFrame, value_columns: list[str]) -> pd.Series:
    """Count known values per column inside the entity's jointly known span."""
    values = group.assign(date=period_dates(group)).sort_values("date").set_index("date")[value_columns]
    span = _joint_span(values)
    if span is None:
        return pd.Series(0, index=value_columns)
    return values.loc[span[0] : span[1]].count()


def filter_min_observations(
    df: pd.DataFrame,
    value_columns: Sequence[str],
    min_observations: int,
    report: QualityReport | None = None,
) -> pd.DataFrame:
    """Drop entities with too few known values in any value column.

    Values are counted only inside the span where every value column is
    known, the range :func:`repair_series` keeps, so an entity passing this
    filter always reaches interpolation with enough points.

    Parameters
    ----------
    df
        Table with an ``entity`` column.
    value_columns
        Columns that will be interpolated.
    min_observations
        Minimum count of non-missing values per column; values below two are
        raised to two, the minimum a spline needs.
    report
        Optional quality report receiving the dropped entities.

    Returns
    -------
    pd.DataFrame
        Rows of entities meeting the threshold in every column.
    """
    threshold = max(int(min_observations), 2)
    columns = list(value_columns)
    counts = {entity: _span_counts(group, columns) for entity, group in df.groupby("entity", sort=True)}
    short = [entity for entity, count in counts.items() if (count < threshold).any()]

    if report is not None:
        report.record(STAGE, "insufficient_history", len(short), short)
    if short:
        logger.warning("%d entities have fewer than %d observations", len(short), threshold)
    return df.loc[~df["entity"].isin(short)].reset_index(drop=True)


def _spline_fill(x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Fill NaNs in ``y`` with a cubic spline through the known points."""
    known = ~np.isnan(y)
    if known.all():
        return y, np.zeros(len(y), dtype=bool)
    spline = CubicSpline(x[known], y[known])
    filled = y.copy()
    filled[~known] = spline(x[~known])
    return filled, ~known


def repair_series(
    series: pd.DataFrame,
    value_columns: Sequence[str],
    period_kind: PeriodKind | str,
    max_gap_days: int,
) -> pd.DataFrame:
    """Complete one entity's period grid and interpolate missing values.

    Parameters
    ----------
    series
        Rows of a single entity with ``entity``, ``year``, optionally
        ``quarter``, and the value columns. (entity, period) must be unique.
    value_columns
        Columns to interpolate.
    period_kind
        Grid cadence.
    max_gap_days
        Largest period delta treated as contiguous (92 quarterly, ~371 annual).
        Missing periods are inserted only where consecutive known periods are
        further apart than this.

    Returns
    -------
    pd.DataFrame
        Rows on the contiguous grid between the first and last period where
        every value column is known, with ``date``, recomputed ``year`` and
        ``quarter``, filled values, and an ``interpolated`` flag.

    Raises
    ------
    InsufficientHistoryError
        If a value column has fewer than two known points, overall or within
        the span where every column is known.
    """
    kind = PeriodKind(period_kind)
    entity = series["entity"].iloc[0]
    columns = list(value_columns)

    frame = series.assign(date=period_dates(series)).sort_values("date")
    values = frame.set_index("date")[columns].astype(float)

    counts = values.count()
    if (counts < 2).any():
        short = list(counts.index[counts < 2])
        msg = f"Entity {entity!r} has fewer than two known points in {short}"
        raise InsufficientHistoryError(msg)

    # Grid spans the range where every column is known; edges would need extrapolation
    span = _joint_span(values)
    if span is None:
        msg = f"Entity {entity!r} has no period where all of {columns} are known"
        raise InsufficientHistoryError(msg)
    values = values.loc[span[0] : span[1]]

    counts = values.count()
    if (counts < 2).any():
        short = list(counts.index[counts < 2])
        msg = f"Entity {entity!r} has fewer than two known points in {short} within its common span"
        raise InsufficientHistoryError(msg)

    deltas = values.index.to_series().diff().dt.days
    n_gaps = int((deltas > max_gap_days).sum())
    if n_gaps:
        logger.debug("Entity %r has %d gaps", entity, n_gaps)
        grid = pd.date_range(span[0], span[1], freq=kind.frequency)
        values = values.reindex(grid)
    else:
        grid = pd.DatetimeIndex(values.index)

    x = (grid - grid[0]).days.to_numpy(dtype=float)
    interpolated = np.zeros(len(grid), dtype=bool)
    repaired = pd.DataFrame({"entity": entity, "date": grid})
    for col in columns:
        filled, flags = _spline_fill(x, values[col].to_numpy(dtype=float))
        repaired[col] = filled
        interpolated |= flags

    # Derived fields come from the regenerated date axis only
    repaired.insert(2, "year", grid.year.astype(int))
    if kind is PeriodKind.QUARTERLY:
        repaired.insert(3, "quarter", grid.quarter.astype(int))
    repaired["interpolated"] = interpolated
    return repaired


def repair_panel(
    df: pd.DataFrame,
    value_columns: Sequence[str],
    period_kind: PeriodKind | str,
    max_gap_days: int,
    report: QualityReport | None = None,
) -> pd.DataFrame:
    """Run :func:`repair_series` for every entity and concatenate the results.

    Parameters
    ----------
    df
        Deduplicated, filtered table of many entities.
    value_columns
        Columns to interpolate.
    period_kind
        Grid cadence.
    max_gap_days
        Gap threshold forwarded to :func:`repair_series`.
    report
        Optional quality report receiving edge trims.

    Returns
    -------
    pd.DataFrame
        Repaired rows of all entities, sorted by entity and date.
    """
    if df.empty:
        msg = "No entities reached continuity repair"
        raise InsufficientHistoryError(msg)

    parts = []
    trimmed = 0
    for _, group in df.groupby("entity", sort=True):
        part = repair_series(group, value_columns, period_kind, max_gap_days)
        dates = period_dates(group)
        trimmed += int(((dates < part["date"].iloc[0]) | (dates > part["date"].iloc[-1])).sum())
        parts.append(part)
    repaired = pd.concat(parts, ignore_index=True)

    n_filled = int(repaired["interpolated"].sum())
    n_entities_filled = repaired.loc[repaired["interpolated"], "entity"].nunique()
    if report is not None:
        report.record(STAGE, "edge_missing", trimmed)

    logger.info(
        "Repaired %d entities: %d rows, %d interpolated across %d entities",
        repaired["entity"].nunique(),
        len(repaired),
        n_filled,
        n_entities_filled,
    )
    return repaired


def add_log_column(df: pd.DataFrame, column: str) -> pd.DataFrame:
    """Add ``log_<column>``; non-positive values become NaN."""
    values = df[column].astype(float)
    logged = np.log(values.where(values > 0))
    return df.assign(**{f"log_{column}": logged})
