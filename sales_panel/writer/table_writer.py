"""CSV writer for pipeline artifacts.

Artifact names map one-to-one to files under ``DATA_DIR/processed``:

- sales.csv, balance_sheet.csv, profit_loss.csv
- companies.csv (resolved entity pairs for external enrichment)
- data_joined.csv (full panel)
- train_var_sel.csv, test_var_sel.csv, train_pca.csv, test_pca.csv
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pandas as pd

from sales_panel.config import DATA_DIR, setup_logging

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

logger = setup_logging(__name__)

ARTIFACT_NAMES = (
    "sales",
    "balance_sheet",
    "profit_loss",
    "companies",
    "data_joined",
    "train_var_sel",
    "test_var_sel",
    "train_pca",
    "test_pca",
)


def _artifact_path(name: str, directory: Path) -> Path:
    """Return ``directory/<name>.csv`` for a known artifact name."""
    if name not in ARTIFACT_NAMES:
        msg = f"Unknown artifact: {name}. Expected one of {ARTIFACT_NAMES}"
        raise ValueError(msg)
    return directory / f"{name}.csv"


def save_table(name: str, table: pd.DataFrame, output_dir: Path | None = None) -> Path:
    """Save one artifact as CSV.

    Parameters
    ----------
    name
        Artifact name from :data:`ARTIFACT_NAMES`.
    table
        Data to write; the index is not written.
    output_dir
        Custom output directory; defaults to ``DATA_DIR/processed``.

    Returns
    -------
    Path
        Location of the written file.
    """
    save_dir = output_dir if output_dir is not None else DATA_DIR / "processed"
    save_dir.mkdir(parents=True, exist_ok=True)

    filepath = _artifact_path(name, save_dir)
    table.to_csv(filepath, index=False)

    logger.info("Saved %s: %d rows -> %s", name, len(table), filepath)
    return filepath


def save_tables(tables: Mapping[str, pd.DataFrame], output_dir: Path | None = None) -> dict[str, Path]:
    """Save several artifacts and return their paths by name."""
    return {name: save_table(name, table, output_dir) for name, table in tables.items()}


def load_table(name: str, input_dir: Path | None = None) -> pd.DataFrame:
    """Load one artifact written by :func:`save_table`.

    Raises
    ------
    FileNotFoundError
        If the artifact has not been written yet.
    """
    load_dir = input_dir if input_dir is not None else DATA_DIR / "processed"
    filepath = _artifact_path(name, load_dir)

    if not filepath.exists():
        msg = f"Artifact not found: {filepath}"
        raise FileNotFoundError(msg)

    table = pd.read_csv(filepath)
    logger.info("Loaded %s: %d rows", name, len(table))
    return table
