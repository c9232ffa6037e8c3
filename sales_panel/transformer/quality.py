"""Data-quality accounting for audit.

Every stage of the pipeline degrades the dataset by exclusion rather than by
aborting. This module records what each stage dropped and why, so the final
panel can be audited against the raw workbook.

Classes
-------
StageDrop
    Dataclass holding one exclusion event (stage, reason, count, entities).
QualityReport
    Aggregates StageDrop entries per stage and persists them to JSON.

Notes
-----
Reports are saved to audit/{run_id}/quality_report.json.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import pandas as pd

from sales_panel.config import AUDIT_DIR, setup_logging

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

logger = setup_logging(__name__)


@dataclass
class StageDrop:
    """One exclusion event.

    Attributes
    ----------
    stage : str
        Pipeline stage, e.g. ``"reshape"`` or ``"resolve"``.
    reason : str
        Exclusion cause: ``"parse_failure"``, ``"insufficient_history"``,
        ``"unresolved_entity"``, ``"ambiguous_mapping"``, ``"join_miss"``, etc.
    count : int
        Number of rows (or entities, for entity-level reasons) affected.
    entities : list[str]
        Entity names involved, when known.
    timestamp : str
        ISO 8601 timestamp when the event was recorded.
    """

    stage: str
    reason: str
    count: int
    entities: list[str] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


@dataclass
class QualityReport:
    """Track rows and entities dropped at each stage.

    Attributes
    ----------
    run_id : str
        Run identifier used for the audit subdirectory.
    drops : dict[str, list[StageDrop]]
        Stage name to its exclusion events.
    """

    run_id: str = field(default_factory=lambda: datetime.now(UTC).strftime("%Y%m%dT%H%M%S"))
    drops: dict[str, list[StageDrop]] = field(default_factory=dict)

    def record(
        self,
        stage: str,
        reason: str,
        count: int,
        entities: Iterable[str] | None = None,
    ) -> None:
        """Add an exclusion event; zero counts are ignored.

        Parameters
        ----------
        stage : str
            Pipeline stage name.
        reason : str
            Exclusion cause.
        count : int
            Number of rows or entities affected.
        entities : Iterable[str] or None, optional
            Entity names involved.
        """
        if count <= 0:
            return

        drop = StageDrop(stage=stage, reason=reason, count=int(count), entities=sorted(set(entities or [])))

        if stage not in self.drops:
            self.drops[stage] = []

        self.drops[stage].append(drop)
        logger.warning("[%s] dropped %d (%s)", stage, drop.count, reason)

    def total(self, stage: str | None = None, reason: str | None = None) -> int:
        """Sum recorded counts, optionally filtered by stage and reason."""
        return sum(
            d.count
            for s, events in self.drops.items()
            if stage is None or s == stage
            for d in events
            if reason is None or d.reason == reason
        )

    def entities(self, reason: str) -> list[str]:
        """Return every entity recorded under ``reason`` across all stages."""
        names: set[str] = set()
        for events in self.drops.values():
            for d in events:
                if d.reason == reason:
                    names.update(d.entities)
        return sorted(names)

    def to_frame(self) -> pd.DataFrame:
        """Flatten the report to one row per event."""
        rows = [
            {"stage": d.stage, "reason": d.reason, "count": d.count, "n_entities": len(d.entities)}
            for events in self.drops.values()
            for d in events
        ]
        return pd.DataFrame(rows, columns=["stage", "reason", "count", "n_entities"])

    def to_dict(self) -> dict[str, Any]:
        """Convert the report to a JSON-serializable dictionary."""
        return {
            "run_id": self.run_id,
            "generated_at": datetime.now(UTC).isoformat(),
            "drops": {stage: [asdict(d) for d in events] for stage, events in self.drops.items()},
        }

    def save(self, output_dir: Path | None = None) -> Path:
        """Save the report to ``audit/{run_id}/quality_report.json``.

        Parameters
        ----------
        output_dir : Path or None, optional
            Custom output directory. Defaults to ``AUDIT_DIR / run_id``.

        Returns
        -------
        Path
            Path to the saved JSON file.
        """
        save_dir = output_dir if output_dir is not None else AUDIT_DIR / self.run_id
        save_dir.mkdir(parents=True, exist_ok=True)

        filepath = save_dir / "quality_report.json"
        with filepath.open("w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)

        logger.info("Saved quality report: %s", filepath)
        return filepath

    @classmethod
    def load(cls, filepath: Path) -> QualityReport:
        """Load a report from a JSON file written by :meth:`save`."""
        with filepath.open(encoding="utf-8") as f:
            data = json.load(f)

        report = cls(run_id=data.get("run_id", ""))
        for stage, events in data.get("drops", {}).items():
            report.drops[stage] = [StageDrop(**event) for event in events]
        return report

    def format_summary(self) -> str:
        """Format the report as a human-readable summary."""
        if not self.drops:
            return "No rows or entities dropped."

        lines = ["Data Quality Report", "=" * 50, f"Total dropped: {self.total()}", "-" * 50]
        for stage, events in self.drops.items():
            lines.append(f"{stage}:")
            lines.extend(f"  {d.reason}: {d.count:,}" for d in events)
        return "\n".join(lines)
