"""End-to-end tests for the panel pipeline on a synthetic workbook."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pandas as pd
import pytest

from sales_panel import main_pipeline
from sales_panel.main_pipeline import PipelineResult, main, run_pipeline
from sales_panel.transformer import quality
from sales_panel.types import MissingSheetError, PanelError
from sales_panel.writer.table_writer import ARTIFACT_NAMES
from tests.conftest import (
    MISSING_SALES_CELL,
    STATEMENT_ENTITIES,
    YEARS,
    make_statement_sheet,
)

OVERRIDES = {"3M COMPANY": "3M"}
EXCLUDE = {"NEWS CORP CLASS B"}
N_QUARTERS = 4 * len(YEARS)


@pytest.fixture
def result(workbook_sheets: dict[str, pd.DataFrame], project_config: dict[str, Any]) -> PipelineResult:
    """Pipeline output for the synthetic workbook."""
    return run_pipeline(workbook_sheets, config=project_config, overrides=OVERRIDES, exclude=EXCLUDE)


class TestRunPipeline:
    """Tests for run_pipeline stage outputs."""

    def test_sales_repaired(self, result: PipelineResult) -> None:
        """Every sales entity gets a full quarterly grid; the empty cell is interpolated."""
        sizes = result.sales.groupby("entity").size()
        assert (sizes == N_QUARTERS).all()

        entity, year, quarter = MISSING_SALES_CELL
        flagged = result.sales.loc[result.sales["interpolated"]]
        assert list(zip(flagged["entity"], flagged["year"], flagged["quarter"], strict=True)) == [
            (entity, year, quarter),
        ]
        assert "log_sales" in result.sales.columns

    def test_statements_pivoted(self, result: PipelineResult) -> None:
        """Statements have one row per entity-year and normalized variable columns."""
        assert len(result.balance_sheet) == len(STATEMENT_ENTITIES) * len(YEARS)
        assert {"total_assets", "cash_and_short_term_investments", "total_debt"} <= set(result.balance_sheet.columns)
        assert {"net_income", "operating_income", "interest_expense"} <= set(result.profit_loss.columns)

    def test_resolution(self, result: PipelineResult) -> None:
        """Overrides apply and excluded entities are gone."""
        assert result.resolution.as_dict() == {
            "3M COMPANY": "3M",
            "APPLE INC": "APPLE INC",
            "MICROSOFT CORP": "MICROSOFT CORP",
        }
        assert result.resolution.excluded == ["NEWS CORP CLASS B"]

    def test_panel(self, result: PipelineResult) -> None:
        """The panel holds every quarter of the three mapped entities."""
        panel = result.panel
        assert len(panel) == 3 * N_QUARTERS
        assert list(panel["row_id"]) == list(range(len(panel)))
        assert int(panel["interpolated_sales"].sum()) == 1
        assert "NEWS CORP CLASS B" not in set(panel["entity"])

    def test_feature_sets(self, result: PipelineResult) -> None:
        """Both feature sets keep the targets and drop raw predictors as documented."""
        for features in (result.var_sel, result.pca):
            assert {"row_id", "entity", "sales", "sales_next"} <= set(features.frame.columns)
            assert "sales_next" not in features.predictors

        assert result.pca.predictors[0] == "PC1"
        assert sum(result.pca.explained_variance) >= 0.95
        corr = result.var_sel.frame[result.var_sel.predictors].corr().abs()
        for i, a in enumerate(result.var_sel.predictors):
            for b in result.var_sel.predictors[i + 1 :]:
                assert corr.loc[a, b] <= 0.6

    def test_split(self, result: PipelineResult) -> None:
        """Each entity loses its last row to the shift and contributes four test rows."""
        assert len(result.split.test_index) == 3 * 4
        assert len(result.split.train_index) == 3 * (N_QUARTERS - 1 - 4)

        train = result.split.train(result.var_sel.frame)
        test = result.split.test(result.var_sel.frame)
        latest = train.groupby("entity")["date"].max()
        earliest = test.groupby("entity")["date"].min()
        assert (latest < earliest.loc[latest.index]).all()

    def test_quality_report(self, result: PipelineResult) -> None:
        """Exclusions at every stage are counted."""
        report = result.report
        assert report.total("reshape", "parse_failure") == 1
        assert report.total("reshape", "absent_value") == 1
        assert report.entities("excluded_entity") == ["NEWS CORP CLASS B"]
        assert report.total("join", "unmapped_entity") == N_QUARTERS
        assert report.total("split", "no_future_target") == 3

    def test_artifacts(self, result: PipelineResult) -> None:
        """Every artifact is produced and train/test partition the shifted panel."""
        artifacts = result.artifacts()
        assert set(artifacts) == set(ARTIFACT_NAMES)
        assert len(artifacts["train_pca"]) + len(artifacts["test_pca"]) == 3 * (N_QUARTERS - 1)
        assert "date" not in artifacts["sales"].columns
        assert len(artifacts["companies"]) == 3

    def test_test_periods_override(self, workbook_sheets: dict[str, pd.DataFrame], project_config: dict[str, Any]) -> None:
        """An explicit window overrides the configured one."""
        result = run_pipeline(workbook_sheets, project_config, OVERRIDES, EXCLUDE, test_periods=8)
        assert len(result.split.test_index) == 3 * 8


class TestPipelineFailures:
    """Tests for fatal structural errors."""

    def test_missing_sheet(self, workbook_sheets: dict[str, pd.DataFrame], project_config: dict[str, Any]) -> None:
        """A missing statement sheet halts the run."""
        del workbook_sheets["Balance Sheet"]
        with pytest.raises(MissingSheetError):
            run_pipeline(workbook_sheets, project_config, OVERRIDES, EXCLUDE)

    def test_empty_panel(self, workbook_sheets: dict[str, pd.DataFrame], project_config: dict[str, Any]) -> None:
        """No resolvable entity leaves an empty panel, which is fatal."""
        for name in ("Balance Sheet", "Profit & Loss 1", "Profit & Loss 2"):
            workbook_sheets[name] = make_statement_sheet(["ZZZ HOLDINGS"], ["TOTAL ASSETS", "NET INCOME"], YEARS)
        with pytest.raises(PanelError, match="empty"):
            run_pipeline(workbook_sheets, project_config, {}, set())

    def test_no_complete_predictors(
        self,
        workbook_sheets: dict[str, pd.DataFrame],
        project_config: dict[str, Any],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A panel with no usable predictor halts before decorrelation."""
        monkeypatch.setattr(main_pipeline, "drop_incomplete_predictors", lambda panel, predictors, report: [])
        with pytest.raises(PanelError, match="No complete predictors"):
            run_pipeline(workbook_sheets, project_config, OVERRIDES, EXCLUDE)


class TestMain:
    """Tests for the command-line entry point."""

    def test_writes_artifacts(
        self,
        workbook_sheets: dict[str, pd.DataFrame],
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A full run writes every CSV and the quality report."""
        workbook = tmp_path / "export.xlsx"
        with pd.ExcelWriter(workbook, engine="openpyxl") as writer:
            for name, sheet in workbook_sheets.items():
                sheet.to_excel(writer, sheet_name=name, index=False)
        monkeypatch.setattr(quality, "AUDIT_DIR", tmp_path / "audit")

        out = tmp_path / "processed"
        assert main(["-w", str(workbook), "-o", str(out), "--quiet"]) == 0

        assert {p.stem for p in out.glob("*.csv")} == set(ARTIFACT_NAMES)
        assert list((tmp_path / "audit").glob("*/quality_report.json"))

    def test_missing_workbook(self, tmp_path: Path) -> None:
        """A missing workbook exits with status 1."""
        assert main(["-w", str(tmp_path / "absent.xlsx"), "--no-save", "--quiet"]) == 1

    def test_summary_printed(
        self,
        workbook_sheets: dict[str, pd.DataFrame],
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Without --quiet the quality summary goes to stdout."""
        monkeypatch.setattr(main_pipeline, "load_workbook", lambda path, names: workbook_sheets)
        assert main(["-w", str(tmp_path / "ignored.xlsx"), "--no-save"]) == 0
        assert "Data Quality Report" in capsys.readouterr().out
