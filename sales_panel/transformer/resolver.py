"""Entity resolution between independently named datasets.

Sales entities and balance-sheet entities come from different providers and
name the same company differently (``"3M COMPANY"`` vs ``"3M"``). Names are
matched by case-insensitive Jaro-Winkler distance; each source keeps its
nearest target within ``max_distance``. A manual override table is
authoritative and an exclusion list removes entities known to have no
counterpart.

Tie-break policy
----------------
Targets are compared in sorted name order, so among equal-distance candidates
the alphabetically first target wins. Such mappings are flagged ``ambiguous``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd
from rapidfuzz import process
from rapidfuzz.distance import JaroWinkler

from sales_panel.config import setup_logging

if TYPE_CHECKING:
    from sales_panel.transformer.quality import QualityReport

logger = setup_logging(__name__)

STAGE = "resolve"


@dataclass(frozen=True)
class EntityMapping:
    """Resolved link from a source entity name to a target entity name."""

    source_entity: str
    target_entity: str
    distance: float
    resolved_by: str = "auto"  # "auto" or "manual"
    ambiguous: bool = False


@dataclass
class ResolutionResult:
    """Mappings plus the entities that could not be mapped.

    Attributes
    ----------
    mappings : list[EntityMapping]
        At most one mapping per source entity, sorted by source name.
    unresolved : list[str]
        Source entities with no candidate within the distance threshold and
        no manual override.
    excluded : list[str]
        Source entities removed by the exclusion list.
    candidates : pd.DataFrame
        Every (source, target, distance) pair within the threshold, kept for
        manual review.
    """

    mappings: list[EntityMapping] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)
    excluded: list[str] = field(default_factory=list)
    candidates: pd.DataFrame = field(
        default_factory=lambda: pd.DataFrame(columns=["source_entity", "target_entity", "distance"]),
    )

    @property
    def ambiguous(self) -> list[EntityMapping]:
        """Mappings chosen by tie-break among equal-distance candidates."""
        return [m for m in self.mappings if m.ambiguous]

    def as_dict(self) -> dict[str, str]:
        """Return ``source_entity -> target_entity``."""
        return {m.source_entity: m.target_entity for m in self.mappings}

    def to_frame(self) -> pd.DataFrame:
        """One row per mapping, suitable for ``companies.csv``."""
        columns = ["source_entity", "target_entity", "distance", "resolved_by", "ambiguous"]
        return pd.DataFrame([asdict(m) for m in self.mappings], columns=columns)


def name_distance(a: str, b: str) -> float:
    """Case-insensitive normalized Jaro-Winkler distance in ``[0, 1]``."""
    return float(JaroWinkler.normalized_distance(a.lower(), b.lower()))


def _auto_match(
    sources: list[str],
    targets: list[str],
    max_distance: float,
) -> tuple[dict[str, EntityMapping], pd.DataFrame]:
    """Pick the nearest target within ``max_distance`` for every source."""
    empty = pd.DataFrame(columns=["source_entity", "target_entity", "distance"])
    if not sources or not targets:
        return {}, empty

    matrix = process.cdist(
        sources,
        targets,
        scorer=JaroWinkler.normalized_distance,
        processor=str.lower,
        dtype=np.float64,
    )

    rows, cols = np.nonzero(matrix <= max_distance)
    candidates = pd.DataFrame(
        {
            "source_entity": [sources[i] for i in rows],
            "target_entity": [targets[j] for j in cols],
            "distance": matrix[rows, cols],
        },
    )

    matched: dict[str, EntityMapping] = {}
    for i, source in enumerate(sources):
        row = matrix[i]
        within = np.flatnonzero(row <= max_distance)
        if within.size == 0:
            continue
        best = row[within].min()
        # Targets are sorted, so the first minimum is the alphabetical tie-break
        tied = within[row[within] == best]
        matched[source] = EntityMapping(
            source_entity=source,
            target_entity=targets[tied[0]],
            distance=float(best),
            resolved_by="auto",
            ambiguous=tied.size > 1,
        )
    return matched, candidates


def resolve_entities(
    source_entities: Iterable[str],
    target_entities: Iterable[str],
    max_distance: float,
    manual_overrides: Mapping[str, str] | None = None,
    exclude_unresolvable: Iterable[str] | None = None,
    report: QualityReport | None = None,
) -> ResolutionResult:
    """Map every source entity to at most one target entity.

    Parameters
    ----------
    source_entities
        Entity names of the source table (sales).
    target_entities
        Entity names of the target table (balance sheet).
    max_distance
        Largest Jaro-Winkler distance accepted for an automatic match.
    manual_overrides
        ``source -> target`` pairs applied unconditionally; their targets are
        trusted and not checked against ``target_entities``.
    exclude_unresolvable
        Source entities removed from the result whatever their match.
    report
        Optional quality report receiving unresolved, excluded, and
        ambiguous counts.

    Returns
    -------
    ResolutionResult
        Mappings sorted by source name plus the unresolved and excluded names.
    """
    sources = sorted(set(source_entities))
    targets = sorted(set(target_entities))
    overrides = dict(manual_overrides or {})
    exclude = set(exclude_unresolvable or [])

    matched, candidates = _auto_match(sources, targets, max_distance)

    for source in sources:
        if source in overrides:
            target = overrides[source]
            matched[source] = EntityMapping(
                source_entity=source,
                target_entity=target,
                distance=name_distance(source, target),
                resolved_by="manual",
            )

    excluded = sorted(s for s in sources if s in exclude)
    mappings = [matched[s] for s in sources if s in matched and s not in exclude]
    unresolved = [s for s in sources if s not in matched and s not in exclude]

    result = ResolutionResult(
        mappings=mappings,
        unresolved=unresolved,
        excluded=excluded,
        candidates=candidates,
    )

    if report is not None:
        report.record(STAGE, "unresolved_entity", len(unresolved), unresolved)
        report.record(STAGE, "excluded_entity", len(excluded), excluded)
        ambiguous = [m.source_entity for m in result.ambiguous]
        report.record(STAGE, "ambiguous_mapping", len(ambiguous), ambiguous)

    n_manual = sum(1 for m in mappings if m.resolved_by == "manual")
    logger.info(
        "Resolved %d of %d entities (%d manual, %d ambiguous, %d unresolved, %d excluded)",
        len(mappings),
        len(sources),
        n_manual,
        len(result.ambiguous),
        len(unresolved),
        len(excluded),
    )
    return result


def validate_overrides(
    overrides: Mapping[str, str],
    target_entities: Iterable[str],
    exclude: Iterable[str] | None = None,
) -> list[str]:
    """Check the override table for referential integrity.

    Parameters
    ----------
    overrides
        ``source -> target`` override table.
    target_entities
        Entity names the targets must exist in.
    exclude
        Exclusion list; an entity both overridden and excluded is flagged.

    Returns
    -------
    list[str]
        Human-readable issues, empty when the table is consistent.
    """
    targets = set(target_entities)
    excluded = set(exclude or [])

    issues = [
        f"Override target not found: {source!r} -> {target!r}"
        for source, target in overrides.items()
        if target not in targets
    ]
    issues.extend(
        f"Entity is both overridden and excluded: {source!r}"
        for source in overrides
        if source in excluded
    )

    for issue in issues:
        logger.warning(issue)
    return issues
