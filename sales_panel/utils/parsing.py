"""Composite-label parsing, period tokens, and cell coercion.

A composite label encodes entity, variable, and period in one header string::

    "APPLE INC - NET SALES OR REVENUES - Q1 2002"

The entity is everything before the first ``" - "``, the period qualifier is
everything after the last one, and the variable is the text in between.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

import numpy as np
import pandas as pd

from sales_panel.types import ParsedLabel, ParseError, Period, PeriodKind

DELIMITER = " - "
DEFAULT_ERROR_MARKERS: tuple[str, ...] = ("#ERROR", "$$ER")
DEFAULT_NA_TOKENS: tuple[str, ...] = ("NA", "N/A", "NaN", "n.a.", "")

_QUARTER_TOKEN = re.compile(r"^Q([1-4])\s+(\d{4})$")
_YEAR_TOKEN = re.compile(r"^(\d{4})$")
# Trailing qualifier of a header: the text after the last " -"
_HEADER_QUALIFIER = re.compile(r"\s-(?:\s[^-]*)?$")


def is_error_label(label: str, error_markers: Iterable[str] = DEFAULT_ERROR_MARKERS) -> bool:
    """Return ``True`` when ``label`` starts with an export error marker."""
    stripped = label.lstrip()
    return any(stripped.startswith(marker) for marker in error_markers)


def prenormalize_label(label: str, replacements: Mapping[str, str] | None = None) -> str:
    """Apply configured replacements to names that collide with the delimiter.

    Parameters
    ----------
    label
        Raw composite label.
    replacements
        Mapping of literal substrings to their disambiguated form, e.g.
        ``{"ALPHABET INC - CLASS A": "ALPHABET INC CLASS A"}``.

    Returns
    -------
    str
        Label safe to split on :data:`DELIMITER`.
    """
    if not replacements:
        return label
    for old, new in replacements.items():
        label = label.replace(old, new)
    return label


def split_label(label: str, strict: bool = False) -> tuple[str, str, str]:
    """Split a composite label into entity, variable, and qualifier segments.

    Parameters
    ----------
    label
        Composite label containing at least two delimiters.
    strict
        When ``True``, reject labels with more than three segments instead of
        folding the extra delimiters into the variable.

    Returns
    -------
    tuple[str, str, str]
        ``(entity, variable, qualifier)`` with surrounding whitespace removed.

    Raises
    ------
    ParseError
        If fewer than two delimiters are present, a segment is empty, or
        ``strict`` is set and the label has extra segments.
    """
    parts = label.split(DELIMITER)
    if len(parts) < 3:
        msg = f"Label has no entity/variable/period delimiters: {label!r}"
        raise ParseError(msg)
    if strict and len(parts) > 3:
        msg = f"Delimiter found inside entity or variable name: {label!r}"
        raise ParseError(msg)

    entity = parts[0].strip()
    variable = DELIMITER.join(parts[1:-1]).strip()
    qualifier = parts[-1].strip()
    if not entity or not variable:
        msg = f"Empty entity or variable segment: {label!r}"
        raise ParseError(msg)
    return entity, variable, qualifier


def strip_qualifier(header: str) -> str:
    """Drop the trailing ``" - <qualifier>"`` from a sheet header.

    Sales headers carry a sheet-level qualifier (``"... - Q1"``) that is
    replaced by the row's full period token before parsing.

    Raises
    ------
    ParseError
        If the header has no trailing qualifier separator.
    """
    stem, count = _HEADER_QUALIFIER.subn("", header.rstrip(), count=1)
    if count == 0:
        msg = f"Header has no trailing qualifier: {header!r}"
        raise ParseError(msg)
    return stem


def parse_period_token(token: Any, period_kind: PeriodKind | str) -> Period:
    """Parse a period qualifier into a :class:`Period`.

    Parameters
    ----------
    token
        ``"Q<n> <year>"`` for quarterly data, a bare year for annual data.
        Annual tokens may also arrive as integers, integral floats, or
        timestamps when read from spreadsheet headers.
    period_kind
        Cadence of the sheet the token came from.

    Returns
    -------
    Period
        Parsed period.

    Raises
    ------
    ParseError
        If the token does not match the cadence or its year is not numeric.
    """
    kind = PeriodKind(period_kind)

    if kind is PeriodKind.ANNUAL:
        if isinstance(token, pd.Timestamp):
            return Period(int(token.year))
        if isinstance(token, int | float | np.integer | np.floating) and not pd.isna(token):
            if float(token).is_integer():
                return Period(int(token))
        match = _YEAR_TOKEN.match(str(token).strip())
        if match is None:
            msg = f"Invalid annual period token: {token!r}"
            raise ParseError(msg)
        return Period(int(match.group(1)))

    match = _QUARTER_TOKEN.match(str(token).strip())
    if match is None:
        msg = f"Invalid quarterly period token: {token!r}"
        raise ParseError(msg)
    return Period(int(match.group(2)), int(match.group(1)))


def parse_label(
    label: str,
    period_kind: PeriodKind | str,
    error_markers: Iterable[str] = DEFAULT_ERROR_MARKERS,
    strict: bool = False,
) -> ParsedLabel:
    """Extract the (entity, variable, period) triple from a composite label.

    Parameters
    ----------
    label
        Composite label such as ``"APPLE INC - NET SALES OR REVENUES - Q1 2002"``.
    period_kind
        ``"quarterly"`` or ``"annual"``.
    error_markers
        Prefixes identifying export error cells; such labels are rejected
        before splitting.
    strict
        Forwarded to :func:`split_label`.

    Returns
    -------
    ParsedLabel
        Parsed triple.

    Raises
    ------
    ParseError
        If the label is not a string, carries an error marker, lacks
        delimiters, or ends in a malformed period token.
    """
    if not isinstance(label, str):
        msg = f"Label is not a string: {label!r}"
        raise ParseError(msg)
    if is_error_label(label, error_markers):
        msg = f"Label carries an error marker: {label!r}"
        raise ParseError(msg)

    entity, variable, qualifier = split_label(label, strict=strict)
    return ParsedLabel(entity, variable, parse_period_token(qualifier, period_kind))


# =============================================================================
# Column Names and Cell Values
# =============================================================================


def normalize_variable_name(name: str) -> str:
    """Normalize a statement variable into a column name.

    Lowercases, maps ``&`` to ``and`` and ``<`` to ``lt``, removes
    ``. , ( ) / -``, and turns whitespace runs into underscores.

    Examples
    --------
    >>> normalize_variable_name("Cash & Short Term Investments")
    'cash_and_short_term_investments'
    >>> normalize_variable_name("Debt < 1 Year (Current)")
    'debt_lt_1_year_current'
    """
    name = str(name).strip().lower()
    name = name.replace("&", "and").replace("<", "lt")
    name = re.sub(r"[.,()/\-]", "", name)
    return re.sub(r"\s+", "_", name.strip())


def coerce_numeric(
    values: pd.Series,
    na_tokens: Iterable[str] = DEFAULT_NA_TOKENS,
) -> pd.DataFrame:
    """Cast raw cells to floats, recording why a value is missing.

    Parameters
    ----------
    values
        Raw cell values (strings, numbers, or NaN).
    na_tokens
        Literal tokens that denote a genuinely absent value.

    Returns
    -------
    pd.DataFrame
        Columns ``value`` (float, NaN when missing) and ``missing_reason``
        (``"absent"``, ``"non_numeric"``, or ``None``), aligned to ``values``.
    """
    tokens = {t.strip() for t in na_tokens}
    as_text = values.astype("string").str.strip()
    absent = values.isna() | as_text.isin(tokens).fillna(False).astype(bool)

    cleaned = values.where(~absent).map(
        lambda v: v.replace(",", "").strip() if isinstance(v, str) else v,
    )
    numeric = pd.to_numeric(cleaned, errors="coerce").astype(float)
    non_numeric = ~absent & numeric.isna()

    reason = pd.Series(None, index=values.index, dtype=object)
    reason[absent] = "absent"
    reason[non_numeric] = "non_numeric"
    return pd.DataFrame({"value": numeric, "missing_reason": reason}, index=values.index)
