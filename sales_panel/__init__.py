"""sales-panel: forecasting panel construction from statement exports.

The package turns a wide, human-formatted workbook of quarterly sales and
annual balance-sheet / profit & loss exports into a clean, entity-aligned,
decorrelated panel with a leakage-free train/test split.

Architecture
------------
* ``extractor``: workbook loading and wide-to-long reshaping of composite-label sheets.
* ``transformer``: continuity repair, entity resolution, panel join, decorrelation, temporal split.
* ``writer``: CSV artifacts under ``data/processed``.
* ``utils``: composite-label grammar, period tokens, and cell coercion.

Configuration
-------------
Paths default to the ``data/``, ``audit/`` and ``logs/`` trees but respect
``DATA_DIR``, ``AUDIT_DIR``, and ``LOGS_DIR`` overrides. Workbook layout and
pipeline parameters live in ``config/config.json``; manual entity overrides in
``config/entity_overrides.json``.

Examples
--------
Build the panel from an export:

    >>> python -m sales_panel.main_pipeline -w data/raw/datenabzug_sp500.xlsx
"""

__version__ = "0.1.0"
__all__ = ["__version__"]


def get_version() -> str:
    """Return the current package version string.

    Returns
    -------
    str
        Semantic version identifier (e.g., ``"0.1.0"``).
    """
    return __version__


__all__.append("get_version")
