"""Transformer module for repairing, aligning, and splitting the panel.

Submodules
----------
continuity
    Duplicate removal, history filters, grid completion, spline gap filling.
resolver
    Jaro-Winkler entity matching with manual overrides and exclusions.
joiner
    Inner join of sales, balance sheet, and profit & loss.
decorrelation
    Greedy correlation pruning and principal-component projection.
splitter
    Target shift and per-entity trailing-window train/test split.
quality
    Stage-level accounting of dropped rows and entities.
"""

from sales_panel.transformer.continuity import (
    add_log_column,
    drop_conflicting_periods,
    drop_exact_duplicates,
    drop_sparse_columns,
    filter_min_observations,
    repair_panel,
    repair_series,
)
from sales_panel.transformer.decorrelation import (
    FeatureSet,
    find_correlated,
    predictor_columns,
    project_principal_components,
    prune_correlated,
)
from sales_panel.transformer.joiner import join_panel
from sales_panel.transformer.quality import QualityReport, StageDrop
from sales_panel.transformer.resolver import (
    EntityMapping,
    ResolutionResult,
    resolve_entities,
    validate_overrides,
)
from sales_panel.transformer.splitter import (
    SplitResult,
    check_no_leakage,
    shift_target,
    temporal_split,
)

__all__ = [
    "EntityMapping",
    "FeatureSet",
    "QualityReport",
    "ResolutionResult",
    "SplitResult",
    "StageDrop",
    "add_log_column",
    "check_no_leakage",
    "drop_conflicting_periods",
    "drop_exact_duplicates",
    "drop_sparse_columns",
    "filter_min_observations",
    "find_correlated",
    "join_panel",
    "predictor_columns",
    "project_principal_components",
    "prune_correlated",
    "repair_panel",
    "repair_series",
    "resolve_entities",
    "shift_target",
    "temporal_split",
    "validate_overrides",
]
