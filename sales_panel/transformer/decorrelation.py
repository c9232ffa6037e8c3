"""Decorrelation of the panel's predictor columns.

Two independent, non-destructive strategies:

* :func:`prune_correlated` greedily drops variables until no pair has an
  absolute Pearson correlation above a cutoff.
* :func:`project_principal_components` standardizes the predictors and
  keeps the leading principal components explaining a target share of the
  variance.

Identity, period, and target columns are carried through both verbatim.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler

from sales_panel.config import setup_logging

if TYPE_CHECKING:
    from sales_panel.transformer.quality import QualityReport

logger = setup_logging(__name__)

STAGE = "decorrelate"

# Columns never treated as predictors
NON_PREDICTOR_COLUMNS = frozenset(
    {
        "row_id",
        "entity",
        "matched_entity",
        "date",
        "year",
        "quarter",
        "interpolated_sales",
        "interpolated_bs",
        "interpolated_pl",
    },
)


@dataclass
class FeatureSet:
    """A decorrelated view of the panel.

    Attributes
    ----------
    frame : pd.DataFrame
        Kept columns followed by the predictors of this feature set.
    predictors : list[str]
        Predictor column names in ``frame``.
    dropped : list[str]
        Original predictors not present in ``frame``.
    explained_variance : list[float]
        Variance ratio per component (projection only).
    """

    frame: pd.DataFrame
    predictors: list[str]
    dropped: list[str] = field(default_factory=list)
    explained_variance: list[float] = field(default_factory=list)


def predictor_columns(panel: pd.DataFrame, keep: Sequence[str] = ()) -> list[str]:
    """Return numeric columns that are neither identity nor ``keep`` columns."""
    excluded = NON_PREDICTOR_COLUMNS | set(keep)
    return [
        col
        for col in panel.columns
        if col not in excluded
        and pd.api.types.is_numeric_dtype(panel[col])
        and not pd.api.types.is_bool_dtype(panel[col])
    ]


def drop_incomplete_predictors(
    panel: pd.DataFrame,
    predictors: Sequence[str],
    report: QualityReport | None = None,
) -> list[str]:
    """Return the predictors without missing or infinite values."""
    values = panel[list(predictors)].astype(float)
    complete = np.isfinite(values.to_numpy()).all(axis=0)
    incomplete = [p for p, ok in zip(predictors, complete, strict=True) if not ok]
    if report is not None:
        report.record(STAGE, "incomplete_predictor", len(incomplete))
    if incomplete:
        logger.warning("Dropping %d predictors with missing values: %s", len(incomplete), incomplete)
    return [p for p, ok in zip(predictors, complete, strict=True) if ok]


def find_correlated(data: pd.DataFrame, cutoff: float = 0.6) -> list[str]:
    """Greedily pick columns to remove so no |correlation| exceeds ``cutoff``.

    At each step every pair above the cutoff is scored by the larger mean
    absolute correlation of its two members with all remaining columns; the
    highest-scoring pair loses the member with the larger mean (the later
    column on a tie). Means are recomputed after each removal.

    Parameters
    ----------
    data
        Predictor matrix; column order defines tie-breaks.
    cutoff
        Absolute correlation above which a pair is considered redundant.

    Returns
    -------
    list[str]
        Columns to remove, in removal order.
    """
    corr = data.corr().abs().fillna(0.0).to_numpy()
    np.fill_diagonal(corr, 0.0)
    names = list(data.columns)
    alive = list(range(len(names)))
    removed: list[str] = []

    while len(alive) > 1:
        sub = corr[np.ix_(alive, alive)]
        upper = np.triu(sub > cutoff, k=1)
        if not upper.any():
            break

        mean_abs = sub.sum(axis=1) / (len(alive) - 1)
        pairs_i, pairs_j = np.nonzero(upper)
        scores = np.maximum(mean_abs[pairs_i], mean_abs[pairs_j])
        best = int(np.argmax(scores))
        i, j = pairs_i[best], pairs_j[best]
        drop = i if mean_abs[i] > mean_abs[j] else j

        removed.append(names[alive[drop]])
        del alive[drop]

    return removed


def prune_correlated(
    panel: pd.DataFrame,
    predictors: Sequence[str],
    cutoff: float = 0.6,
    report: QualityReport | None = None,
) -> FeatureSet:
    """Build the variable-selected feature set.

    Parameters
    ----------
    panel
        Joined panel.
    predictors
        Candidate predictor columns.
    cutoff
        Absolute correlation cutoff.
    report
        Optional quality report receiving the number of pruned variables.

    Returns
    -------
    FeatureSet
        Non-predictor columns of ``panel`` followed by the kept predictors.
    """
    predictors = list(predictors)
    removed = find_correlated(panel[predictors].astype(float), cutoff)
    kept = [p for p in predictors if p not in set(removed)]
    base = [c for c in panel.columns if c not in set(predictors)]

    if report is not None:
        report.record(STAGE, "correlated_variable", len(removed))
    logger.info("Correlation pruning kept %d of %d predictors (cutoff %.2f)", len(kept), len(predictors), cutoff)

    return FeatureSet(frame=panel[base + kept].copy(), predictors=kept, dropped=removed)


def project_principal_components(
    panel: pd.DataFrame,
    predictors: Sequence[str],
    variance_target: float = 0.95,
) -> FeatureSet:
    """Build the principal-component feature set.

    Parameters
    ----------
    panel
        Joined panel.
    predictors
        Predictor columns to standardize and project.
    variance_target
        Cumulative explained-variance fraction the kept components must reach.

    Returns
    -------
    FeatureSet
        Non-predictor columns of ``panel`` followed by ``PC1..PCk`` scores.

    Raises
    ------
    ValueError
        If ``variance_target`` is outside ``(0, 1]`` or the predictors contain
        missing values.
    """
    if not 0 < variance_target <= 1:
        msg = f"variance_target must be in (0, 1], got {variance_target}"
        raise ValueError(msg)

    predictors = list(predictors)
    values = panel[predictors].to_numpy(dtype=float)
    if not np.isfinite(values).all():
        msg = "Predictors contain missing or infinite values; drop them before projecting"
        raise ValueError(msg)

    scaled = StandardScaler().fit_transform(values)
    max_components = min(scaled.shape)
    pca = PCA(n_components=max_components, random_state=42)
    scores = pca.fit_transform(scaled)

    cumulative_variance = np.cumsum(pca.explained_variance_ratio_)
    n_components = int(np.searchsorted(cumulative_variance, variance_target - 1e-12).item()) + 1
    n_components = min(n_components, max_components)

    names = [f"PC{i + 1}" for i in range(n_components)]
    components = pd.DataFrame(scores[:, :n_components], columns=names, index=panel.index)
    base = [c for c in panel.columns if c not in set(predictors)]

    logger.info(
        "PCA: %d predictors -> %d components (%.1f%% variance)",
        len(predictors),
        n_components,
        100 * cumulative_variance[n_components - 1],
    )
    return FeatureSet(
        frame=pd.concat([panel[base], components], axis=1),
        predictors=names,
        dropped=predictors,
        explained_variance=[float(v) for v in pca.explained_variance_ratio_[:n_components]],
    )
