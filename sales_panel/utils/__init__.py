"""Shared utility functions for sales_panel package."""

from sales_panel.utils.parsing import (
    coerce_numeric,
    normalize_variable_name,
    parse_label,
    parse_period_token,
    split_label,
)

__all__ = [
    "coerce_numeric",
    "normalize_variable_name",
    "parse_label",
    "parse_period_token",
    "split_label",
]
