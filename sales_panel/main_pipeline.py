#!/usr/bin/env python3
"""Panel orchestrator - reshape, repair, resolve, join, decorrelate, split.

This module runs the complete panel-building workflow:
1. Reshape the sales, balance-sheet, and profit & loss sheets to tidy tables
2. Deduplicate, filter, and repair every entity's period grid
3. Resolve sales entities to balance-sheet entities
4. Join the three statements into one panel
5. Shift the target, decorrelate predictors, and split train/test per entity
6. Save CSV artifacts and the data-quality report

Usage (from project root):
    python -m sales_panel.main_pipeline -w data/raw/datenabzug_sp500.xlsx
    python -m sales_panel.main_pipeline -w export.xlsx --test-periods 8
    python -m sales_panel.main_pipeline -w export.xlsx --no-save --quiet

CLI Flags:
    --workbook, -w      Path to the Excel export (required)
    --output-dir, -o    Directory for CSV artifacts (default: data/processed)
    --test-periods, -t  Trailing periods per entity in the test set
    --no-save           Don't write CSV artifacts or the quality report
    --quiet             Suppress the quality summary
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd

# Add project root to path when running directly
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from sales_panel.config import (  # noqa: E402
    get_config,
    get_entity_overrides,
    get_pipeline_settings,
    get_workbook_config,
    setup_logging,
)
from sales_panel.extractor.reshape import reshape_sales, reshape_statement  # noqa: E402
from sales_panel.extractor.workbook import load_workbook  # noqa: E402
from sales_panel.transformer.continuity import (  # noqa: E402
    add_log_column,
    drop_conflicting_periods,
    drop_exact_duplicates,
    drop_sparse_columns,
    filter_min_observations,
    repair_panel,
)
from sales_panel.transformer.decorrelation import (  # noqa: E402
    FeatureSet,
    drop_incomplete_predictors,
    predictor_columns,
    project_principal_components,
    prune_correlated,
)
from sales_panel.transformer.joiner import join_panel  # noqa: E402
from sales_panel.transformer.quality import QualityReport  # noqa: E402
from sales_panel.transformer.resolver import (  # noqa: E402
    ResolutionResult,
    resolve_entities,
    validate_overrides,
)
from sales_panel.transformer.splitter import (  # noqa: E402
    SplitResult,
    check_no_leakage,
    shift_target,
    temporal_split,
)
from sales_panel.types import PanelError, PeriodKind  # noqa: E402
from sales_panel.writer.table_writer import save_tables  # noqa: E402

logger = setup_logging(__name__)


@dataclass
class PipelineResult:
    """Every intermediate table of one pipeline run."""

    sales: pd.DataFrame
    balance_sheet: pd.DataFrame
    profit_loss: pd.DataFrame
    resolution: ResolutionResult
    panel: pd.DataFrame
    var_sel: FeatureSet
    pca: FeatureSet
    split: SplitResult
    report: QualityReport

    def artifacts(self) -> dict[str, pd.DataFrame]:
        """Return the CSV artifacts keyed by name."""
        return {
            "sales": self.sales.drop(columns=["date"], errors="ignore"),
            "balance_sheet": self.balance_sheet.drop(columns=["date"], errors="ignore"),
            "profit_loss": self.profit_loss.drop(columns=["date"], errors="ignore"),
            "companies": self.resolution.to_frame(),
            "data_joined": self.panel,
            "train_var_sel": self.split.train(self.var_sel.frame),
            "test_var_sel": self.split.test(self.var_sel.frame),
            "train_pca": self.split.train(self.pca.frame),
            "test_pca": self.split.test(self.pca.frame),
        }


# =============================================================================
# Stages
# =============================================================================


def _reshape_options(workbook: Mapping[str, Any], statement: str) -> dict[str, Any]:
    """Collect :func:`reshape_sheet` keyword arguments for one statement."""
    section = workbook[statement]
    return {
        "label_axis": section.get("label_axis", "columns"),
        "header_has_qualifier": section.get("header_has_qualifier", True),
        "axis_column": workbook.get("axis_column", "Name"),
        "error_markers": workbook.get("error_markers", ["#ERROR"]),
        "na_tokens": workbook.get("na_tokens", ["NA"]),
        "replacements": workbook.get("label_replacements", {}),
    }


def build_sales(
    sheets: Mapping[str, pd.DataFrame],
    workbook: Mapping[str, Any],
    settings: Mapping[str, Any],
    report: QualityReport,
) -> pd.DataFrame:
    """Reshape, deduplicate, filter, and repair the quarterly sales table."""
    value_name = workbook["sales"].get("value_name", "sales")
    sales = reshape_sales(
        sheets,
        workbook["sales"]["sheets"],
        value_name=value_name,
        report=report,
        **_reshape_options(workbook, "sales"),
    )
    sales = drop_exact_duplicates(sales, report)
    sales = drop_conflicting_periods(sales, report)
    sales = filter_min_observations(sales, [value_name], settings["min_observations"], report)
    sales = repair_panel(
        sales,
        [value_name],
        PeriodKind.QUARTERLY,
        settings["max_gap_days"]["quarterly"],
        report,
    )
    return add_log_column(sales, value_name)


def build_statement(
    sheets: Mapping[str, pd.DataFrame],
    workbook: Mapping[str, Any],
    statement: str,
    settings: Mapping[str, Any],
    report: QualityReport,
) -> pd.DataFrame:
    """Reshape and repair one annual statement (balance sheet or profit & loss)."""
    table = reshape_statement(
        sheets,
        workbook[statement]["sheets"],
        report=report,
        **_reshape_options(workbook, statement),
    )
    variables = [c for c in table.columns if c not in {"entity", "year"}]
    variables = drop_sparse_columns(table, variables, settings["max_missing_share"], report)
    table = table[["entity", "year", *variables]]
    table = filter_min_observations(table, variables, settings["min_observations_annual"], report)
    return repair_panel(
        table,
        variables,
        PeriodKind.ANNUAL,
        settings["max_gap_days"]["annual"],
        report,
    )


def run_pipeline(
    sheets: Mapping[str, pd.DataFrame],
    config: dict[str, Any] | None = None,
    overrides: Mapping[str, str] | None = None,
    exclude: Iterable[str] | None = None,
    test_periods: int | None = None,
    report: QualityReport | None = None,
) -> PipelineResult:
    """Run every stage on already-loaded workbook sheets.

    Parameters
    ----------
    sheets
        Workbook sheets by name.
    config
        Optional configuration dictionary. When ``None``, configuration is
        loaded from disk.
    overrides, exclude
        Manual override table and exclusion list. When both are ``None`` they
        are loaded from ``config/entity_overrides.json``.
    test_periods
        Overrides the configured split window.
    report
        Quality report to fill; a new one is created when ``None``.

    Returns
    -------
    PipelineResult
        All intermediate tables, feature sets, split, and quality report.

    Raises
    ------
    PanelError
        On structural failures (missing sheet, empty period axis, entities
        with fewer than two points reaching interpolation), when the joined
        panel is empty or has no complete predictor, or if the split
        leaks future periods into training.
    """
    if config is None:
        config = get_config()
    if overrides is None and exclude is None:
        overrides, exclude = get_entity_overrides()
    report = report if report is not None else QualityReport()

    workbook = get_workbook_config(config)
    settings = get_pipeline_settings(config)
    target = settings["target_column"]

    sales = build_sales(sheets, workbook, settings, report)
    balance_sheet = build_statement(sheets, workbook, "balance_sheet", settings, report)
    profit_loss = build_statement(sheets, workbook, "profit_loss", settings, report)

    targets = balance_sheet["entity"].unique()
    validate_overrides(overrides or {}, targets, exclude)
    resolution = resolve_entities(
        sales["entity"].unique(),
        targets,
        settings["max_distance"],
        overrides,
        exclude,
        report,
    )

    panel = join_panel(sales, balance_sheet, profit_loss, resolution.mappings, report)
    if panel.empty:
        msg = "Joined panel is empty; check entity mappings and period coverage"
        raise PanelError(msg)

    shifted = shift_target(panel, target, PeriodKind.QUARTERLY.months, report)
    keep = [target, f"log_{target}", f"{target}_next"]
    predictors = drop_incomplete_predictors(shifted, predictor_columns(shifted, keep), report)
    if not predictors:
        msg = "No complete predictors remain after the join"
        raise PanelError(msg)

    var_sel = prune_correlated(shifted, predictors, settings["correlation_cutoff"], report)
    pca = project_principal_components(shifted, predictors, settings["variance_target"])

    window = test_periods if test_periods is not None else settings["test_periods"]
    split = temporal_split(shifted, window, report=report)
    leaking = check_no_leakage(shifted, split)
    if leaking:
        msg = f"Temporal split leaks future periods for {len(leaking)} entities: {leaking[:5]}"
        raise PanelError(msg)

    return PipelineResult(
        sales=sales,
        balance_sheet=balance_sheet,
        profit_loss=profit_loss,
        resolution=resolution,
        panel=panel,
        var_sel=var_sel,
        pca=pca,
        split=split,
        report=report,
    )


# =============================================================================
# CLI
# =============================================================================


def _all_sheet_names(workbook: Mapping[str, Any]) -> list[str]:
    """Return every configured sheet name in statement order."""
    statements = ("sales", "balance_sheet", "profit_loss")
    return [name for statement in statements for name in workbook[statement]["sheets"]]


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run the pipeline, and persist its artifacts.

    Parameters
    ----------
    argv
        Argument list; defaults to ``sys.argv[1:]``.

    Returns
    -------
    int
        Process exit code (``0`` on success, ``1`` on a fatal pipeline error).
    """
    parser = argparse.ArgumentParser(description="Build the sales forecasting panel from a statement export")
    parser.add_argument("--workbook", "-w", type=Path, required=True, help="Path to the Excel export")
    parser.add_argument("--output-dir", "-o", type=Path, default=None, help="Directory for CSV artifacts")
    parser.add_argument("--test-periods", "-t", type=int, default=None, help="Trailing test periods per entity")
    parser.add_argument("--no-save", action="store_true", help="Don't write artifacts or the quality report")
    parser.add_argument("--quiet", action="store_true", help="Suppress the quality summary")
    args = parser.parse_args(argv)

    config = get_config()
    workbook = get_workbook_config(config)

    try:
        sheets = load_workbook(args.workbook, _all_sheet_names(workbook))
        result = run_pipeline(sheets, config=config, test_periods=args.test_periods)
    except (PanelError, FileNotFoundError) as err:
        logger.error("Pipeline failed: %s", err)
        return 1

    if not args.no_save:
        save_tables(result.artifacts(), args.output_dir)
        result.report.save()

    if not args.quiet:
        print(result.report.format_summary())

    return 0


if __name__ == "__main__":
    sys.exit(main())
