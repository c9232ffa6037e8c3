"""Panel dataclasses, period helpers, and the exception taxonomy.

This module contains pure data structures with no business logic dependencies,
ensuring they can be imported without circular dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import pandas as pd

__all__ = [
    "EmptyPeriodAxisError",
    "InsufficientHistoryError",
    "MissingSheetError",
    "ObservationRecord",
    "PanelError",
    "ParseError",
    "ParsedLabel",
    "Period",
    "PeriodKind",
]


class PeriodKind(StrEnum):
    """Cadence of a statement sheet."""

    QUARTERLY = "quarterly"
    ANNUAL = "annual"

    @property
    def months(self) -> int:
        """Months between consecutive periods of this cadence."""
        return 3 if self is PeriodKind.QUARTERLY else 12

    @property
    def frequency(self) -> str:
        """Pandas offset alias anchored at the period start."""
        return "QS" if self is PeriodKind.QUARTERLY else "YS"


# =============================================================================
# Exceptions
# =============================================================================


class PanelError(Exception):
    """Base class for fatal pipeline errors."""


class ParseError(ValueError):
    """A composite label or period token could not be parsed."""


class MissingSheetError(PanelError, KeyError):
    """An expected workbook sheet is absent."""


class EmptyPeriodAxisError(PanelError):
    """A sheet produced zero valid periods."""


class InsufficientHistoryError(PanelError):
    """An entity has too few observations for the requested operation."""


# =============================================================================
# Records
# =============================================================================


@dataclass(frozen=True, order=True)
class Period:
    """Calendar period; ``quarter`` is ``None`` for annual data."""

    year: int
    quarter: int | None = None

    def __post_init__(self) -> None:
        """Reject quarters outside 1-4."""
        if self.quarter is not None and self.quarter not in {1, 2, 3, 4}:
            msg = f"Invalid quarter: {self.quarter}. Must be 1-4."
            raise ValueError(msg)

    @property
    def kind(self) -> PeriodKind:
        """Cadence implied by the presence of a quarter."""
        return PeriodKind.ANNUAL if self.quarter is None else PeriodKind.QUARTERLY

    def to_timestamp(self) -> pd.Timestamp:
        """Return the first day of the period."""
        month = 1 if self.quarter is None else 3 * (self.quarter - 1) + 1
        return pd.Timestamp(year=self.year, month=month, day=1)

    @classmethod
    def from_timestamp(cls, ts: pd.Timestamp, kind: PeriodKind) -> Period:
        """Build a period from a date on the grid of ``kind``."""
        if kind is PeriodKind.ANNUAL:
            return cls(int(ts.year))
        return cls(int(ts.year), int(ts.quarter))

    def __str__(self) -> str:
        """Format as ``"Q1 2002"`` or ``"2002"``."""
        return str(self.year) if self.quarter is None else f"Q{self.quarter} {self.year}"


@dataclass(frozen=True)
class ParsedLabel:
    """Entity, variable, and period recovered from one composite label."""

    entity: str
    variable: str
    period: Period


@dataclass(frozen=True)
class ObservationRecord:
    """One tidy (entity, variable, period, value) observation.

    Attributes
    ----------
    entity : str
        Entity name as it appears in the source sheet.
    variable : str
        Variable segment of the composite label.
    period : Period
        Observation period.
    value : float | None
        Numeric value, ``None`` when missing.
    missing_reason : str | None
        ``"absent"`` (empty or NA token), ``"non_numeric"`` (a value was
        present but could not be cast), or ``None`` when ``value`` is set.
    """

    entity: str
    variable: str
    period: Period
    value: float | None
    missing_reason: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ObservationRecord:
        """Build a record from a reshaped table row."""
        quarter = row.get("quarter")
        value = row.get("value")
        reason = row.get("missing_reason")
        return cls(
            entity=row["entity"],
            variable=row["variable"],
            period=Period(int(row["year"]), None if pd.isna(quarter) else int(quarter)),
            value=None if value is None or pd.isna(value) else float(value),
            missing_reason=None if reason is None or pd.isna(reason) else str(reason),
        )
