"""Writer module for CSV artifacts."""

from sales_panel.writer.table_writer import ARTIFACT_NAMES, load_table, save_table, save_tables

__all__ = ["ARTIFACT_NAMES", "load_table", "save_table", "save_tables"]
