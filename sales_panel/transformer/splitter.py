"""Leakage-free temporal train/test split.

The forecasting target is shifted one period forward per entity so that each
row predicts the next period's value; rows without a known next value are
dropped. Each entity's last ``test_periods`` rows then form the test set and
all earlier rows the training set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from sales_panel.config import setup_logging
from sales_panel.transformer.continuity import period_dates
from sales_panel.types import InsufficientHistoryError

if TYPE_CHECKING:
    from sales_panel.transformer.quality import QualityReport

logger = setup_logging(__name__)

STAGE = "split"


@dataclass
class SplitResult:
    """Row identities of the training and test sets.

    Attributes
    ----------
    train_index : np.ndarray
        ``row_id`` values of training rows.
    test_index : np.ndarray
        ``row_id`` values of test rows.
    insufficient : list[str]
        Entities with fewer than ``test_periods + 1`` rows, excluded from both.
    """

    train_index: np.ndarray
    test_index: np.ndarray
    insufficient: list[str] = field(default_factory=list)

    def train(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Select training rows of ``frame`` by ``row_id``."""
        return frame.loc[frame["row_id"].isin(self.train_index)].reset_index(drop=True)

    def test(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Select test rows of ``frame`` by ``row_id``."""
        return frame.loc[frame["row_id"].isin(self.test_index)].reset_index(drop=True)


def _with_dates(panel: pd.DataFrame) -> pd.DataFrame:
    """Ensure a ``date`` column and sort by entity and date."""
    if "date" not in panel.columns:
        panel = panel.assign(date=period_dates(panel))
    return panel.sort_values(["entity", "date"], kind="mergesort")


def shift_target(
    panel: pd.DataFrame,
    target: str,
    cadence_months: int = 3,
    report: QualityReport | None = None,
) -> pd.DataFrame:
    """Add ``<target>_next`` holding the entity's next-period value.

    Parameters
    ----------
    panel
        Panel with ``entity``, ``date`` (or ``year``/``quarter``), ``target``.
    target
        Column to shift.
    cadence_months
        Spacing of consecutive periods; the next row only counts when it is
        exactly one cadence later.
    report
        Optional quality report receiving the dropped final periods.

    Returns
    -------
    pd.DataFrame
        Rows with a known next-period value, sorted by entity and date.
    """
    ordered = _with_dates(panel)
    grouped = ordered.groupby("entity", sort=False)
    next_value = grouped[target].shift(-1)
    next_date = grouped["date"].shift(-1)

    expected = ordered["date"] + pd.DateOffset(months=cadence_months)
    valid = next_date.eq(expected) & next_value.notna()

    if report is not None:
        report.record(STAGE, "no_future_target", int((~valid).sum()))

    shifted = ordered.assign(**{f"{target}_next": next_value}).loc[valid]
    logger.info("Shifted %s: kept %d of %d rows", target, len(shifted), len(ordered))
    return shifted.reset_index(drop=True)


def temporal_split(
    panel: pd.DataFrame,
    test_periods: int,
    strict: bool = False,
    report: QualityReport | None = None,
) -> SplitResult:
    """Split each entity's rows into a leading train and trailing test window.

    Parameters
    ----------
    panel
        Panel with ``row_id``, ``entity``, and period columns.
    test_periods
        Number of trailing periods per entity assigned to the test set.
    strict
        Raise instead of excluding entities with too little history.
    report
        Optional quality report receiving excluded entities.

    Returns
    -------
    SplitResult
        Train and test ``row_id`` arrays.

    Raises
    ------
    ValueError
        If ``test_periods`` is smaller than one.
    InsufficientHistoryError
        If ``strict`` is set and an entity has ``test_periods`` rows or fewer.
    """
    if test_periods < 1:
        msg = f"test_periods must be at least 1, got {test_periods}"
        raise ValueError(msg)

    ordered = _with_dates(panel)
    sizes = ordered.groupby("entity", sort=True).size()
    short = sorted(sizes.index[sizes < test_periods + 1])

    if short and strict:
        msg = f"{len(short)} entities have fewer than {test_periods + 1} periods: {short[:5]}"
        raise InsufficientHistoryError(msg)
    if report is not None:
        report.record(STAGE, "insufficient_history", len(short), short)

    usable = ordered.loc[~ordered["entity"].isin(short)]
    # Position counted from the end of each entity's series
    from_end = usable.groupby("entity", sort=False).cumcount(ascending=False)
    is_test = from_end < test_periods

    result = SplitResult(
        train_index=usable.loc[~is_test, "row_id"].to_numpy(),
        test_index=usable.loc[is_test, "row_id"].to_numpy(),
        insufficient=short,
    )
    logger.info(
        "Split %d entities: %d train rows, %d test rows (%d entities excluded)",
        usable["entity"].nunique(),
        len(result.train_index),
        len(result.test_index),
        len(short),
    )
    return result


def check_no_leakage(panel: pd.DataFrame, split: SplitResult) -> list[str]:
    """Return entities whose latest training period is not before their earliest test period."""
    ordered = _with_dates(panel)
    train = ordered.loc[ordered["row_id"].isin(split.train_index)].groupby("entity")["date"].max()
    test = ordered.loc[ordered["row_id"].isin(split.test_index)].groupby("entity")["date"].min()
    both = pd.concat([train.rename("train_max"), test.rename("test_min")], axis=1, join="inner")
    return sorted(both.index[both["train_max"] >= both["test_min"]])
