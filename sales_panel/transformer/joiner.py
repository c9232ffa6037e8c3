"""Three-way panel join of sales, balance sheet, and profit & loss.

Quarterly sales rows are linked to their resolved balance-sheet entity and
joined to the annual balance-sheet and profit & loss rows of the same year.
Only inner joins are used: a row survives only when the entity is mapped and
its year exists in all three tables.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from sales_panel.config import setup_logging

if TYPE_CHECKING:
    from sales_panel.transformer.quality import QualityReport
    from sales_panel.transformer.resolver import EntityMapping

logger = setup_logging(__name__)

STAGE = "join"

MATCHED_COLUMN = "matched_entity"


def _prepare_statement(table: pd.DataFrame, suffix: str) -> pd.DataFrame:
    """Rename a statement table's keys and flags for joining."""
    renamed = table.drop(columns=["date"], errors="ignore").rename(
        columns={"entity": MATCHED_COLUMN, "interpolated": f"interpolated_{suffix}"},
    )
    return renamed


def join_panel(
    sales: pd.DataFrame,
    balance_sheet: pd.DataFrame,
    profit_loss: pd.DataFrame,
    mappings: Iterable[EntityMapping],
    report: QualityReport | None = None,
) -> pd.DataFrame:
    """Inner-join the three statement tables through the entity mappings.

    Parameters
    ----------
    sales
        Repaired quarterly sales with ``entity``, ``year``, ``quarter``.
    balance_sheet
        Repaired annual balance sheet with ``entity``, ``year``, variables.
    profit_loss
        Repaired annual profit & loss with ``entity``, ``year``, variables.
    mappings
        Resolved sales-entity to balance-sheet-entity links.
    report
        Optional quality report receiving join-miss counts.

    Returns
    -------
    pd.DataFrame
        Panel with a ``row_id`` column (0..n-1, ordered by entity and period),
        ``entity``, ``matched_entity``, period columns, and all features.
        Variables present in both statements get ``_bs`` / ``_pl`` suffixes.
    """
    link = pd.DataFrame(
        [(m.source_entity, m.target_entity) for m in mappings],
        columns=["entity", MATCHED_COLUMN],
    )

    sales = sales.rename(columns={"interpolated": "interpolated_sales"})
    mapped = sales.merge(link, on="entity", how="inner")
    unmapped = sales.loc[~sales["entity"].isin(link["entity"]), "entity"]

    bs = _prepare_statement(balance_sheet, "bs")
    pl = _prepare_statement(profit_loss, "pl")

    with_bs = mapped.merge(bs, on=[MATCHED_COLUMN, "year"], how="inner")
    panel = with_bs.merge(pl, on=[MATCHED_COLUMN, "year"], how="inner", suffixes=("_bs", "_pl"))

    if report is not None:
        report.record(STAGE, "unmapped_entity", len(unmapped), unmapped)
        lost_bs = mapped.loc[~mapped.index.isin(_matched_rows(mapped, bs)), "entity"]
        report.record(STAGE, "join_miss_balance_sheet", len(lost_bs), lost_bs)
        report.record(STAGE, "join_miss_profit_loss", len(with_bs) - len(panel))

    sort_keys = ["entity", "year", "quarter"] if "quarter" in panel.columns else ["entity", "year"]
    panel = panel.sort_values(sort_keys, kind="mergesort").reset_index(drop=True)
    panel.insert(0, "row_id", np.arange(len(panel), dtype=np.int64))

    logger.info(
        "Joined panel: %d rows, %d entities, %d columns",
        len(panel),
        panel["entity"].nunique(),
        panel.shape[1],
    )
    return panel


def _matched_rows(mapped: pd.DataFrame, statement: pd.DataFrame) -> pd.Index:
    """Index labels of ``mapped`` rows with a (matched entity, year) in ``statement``."""
    keys = pd.MultiIndex.from_frame(statement[[MATCHED_COLUMN, "year"]])
    probe = pd.MultiIndex.from_frame(mapped[[MATCHED_COLUMN, "year"]])
    return mapped.index[probe.isin(keys)]
