"""Tests for composite-label parsing, period tokens, and cell coercion."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from sales_panel.types import ParseError, Period, PeriodKind
from sales_panel.utils.parsing import (
    coerce_numeric,
    is_error_label,
    normalize_variable_name,
    parse_label,
    parse_period_token,
    prenormalize_label,
    split_label,
    strip_qualifier,
)

# =============================================================================
# Label Splitting
# =============================================================================


class TestSplitLabel:
    """Tests for split_label segment boundaries."""

    def test_three_segments(self) -> None:
        """Entity, variable, and qualifier are split on the delimiter."""
        assert split_label("APPLE INC - NET SALES OR REVENUES - Q1 2002") == (
            "APPLE INC",
            "NET SALES OR REVENUES",
            "Q1 2002",
        )

    def test_extra_delimiter_folds_into_variable(self) -> None:
        """Lenient mode keeps the first and last delimiters as boundaries."""
        entity, variable, qualifier = split_label("ALPHABET INC - CLASS A - NET SALES - Q1 2002")
        assert entity == "ALPHABET INC"
        assert variable == "CLASS A - NET SALES"
        assert qualifier == "Q1 2002"

    def test_strict_rejects_extra_delimiter(self) -> None:
        """Strict mode refuses labels with more than three segments."""
        with pytest.raises(ParseError, match="Delimiter found inside"):
            split_label("ALPHABET INC - CLASS A - NET SALES - Q1 2002", strict=True)

    def test_missing_delimiters(self) -> None:
        """Labels with fewer than two delimiters are rejected."""
        with pytest.raises(ParseError):
            split_label("APPLE INC NET SALES Q1 2002")

    def test_empty_segment(self) -> None:
        """An empty entity segment is rejected."""
        with pytest.raises(ParseError, match="Empty"):
            split_label(" - NET SALES - 2002")

    def test_hyphen_without_spaces_is_not_a_delimiter(self) -> None:
        """Hyphenated names without surrounding spaces stay intact."""
        entity, _, _ = split_label("COCA-COLA CO - NET SALES OR REVENUES - Q2 2010")
        assert entity == "COCA-COLA CO"


class TestPrenormalizeLabel:
    """Tests for delimiter-collision replacements."""

    def test_replacement_restores_segment_boundaries(self) -> None:
        """A configured replacement turns a four-segment label into three segments."""
        replacements = {"ALPHABET INC - CLASS A": "ALPHABET INC CLASS A"}
        label = prenormalize_label("ALPHABET INC - CLASS A - NET SALES OR REVENUES - Q1 2010", replacements)
        assert split_label(label, strict=True)[0] == "ALPHABET INC CLASS A"

    def test_no_replacements_is_identity(self) -> None:
        """Without replacements the label is returned unchanged."""
        assert prenormalize_label("APPLE INC - X - 2002", None) == "APPLE INC - X - 2002"


class TestStripQualifier:
    """Tests for dropping the sheet-level qualifier from sales headers."""

    def test_strips_quarter_qualifier(self) -> None:
        """The trailing ' - Q1' is removed."""
        assert strip_qualifier("APPLE INC - NET SALES OR REVENUES - Q1") == "APPLE INC - NET SALES OR REVENUES"

    def test_strips_dangling_separator(self) -> None:
        """A header ending in a bare ' -' loses the separator."""
        assert strip_qualifier("APPLE INC - NET SALES OR REVENUES -") == "APPLE INC - NET SALES OR REVENUES"

    def test_no_qualifier(self) -> None:
        """Headers without a separator raise."""
        with pytest.raises(ParseError):
            strip_qualifier("APPLE INC")


# =============================================================================
# Period Tokens
# =============================================================================


class TestParsePeriodToken:
    """Tests for quarterly and annual period tokens."""

    def test_quarterly_token(self) -> None:
        """'Q3 2005' parses to year 2005, quarter 3."""
        assert parse_period_token("Q3 2005", PeriodKind.QUARTERLY) == Period(2005, 3)

    @pytest.mark.parametrize("token", ["Q5 2005", "2005", "Q1 05", "", None])
    def test_invalid_quarterly_token(self, token: object) -> None:
        """Malformed quarterly tokens raise ParseError."""
        with pytest.raises(ParseError):
            parse_period_token(token, "quarterly")

    @pytest.mark.parametrize(
        "token",
        ["2002", 2002, 2002.0, np.int64(2002), pd.Timestamp("2002-12-31")],
    )
    def test_annual_token_types(self, token: object) -> None:
        """Annual tokens arrive as strings, numbers, or timestamps."""
        assert parse_period_token(token, PeriodKind.ANNUAL) == Period(2002)

    @pytest.mark.parametrize("token", ["FY2002", 2002.5, "Q1 2002", float("nan")])
    def test_invalid_annual_token(self, token: object) -> None:
        """Non-year annual tokens raise ParseError."""
        with pytest.raises(ParseError):
            parse_period_token(token, PeriodKind.ANNUAL)


class TestPeriod:
    """Tests for the Period record."""

    def test_ordering(self) -> None:
        """Periods sort chronologically within a cadence."""
        assert sorted([Period(2003, 1), Period(2002, 4), Period(2002, 1)]) == [
            Period(2002, 1),
            Period(2002, 4),
            Period(2003, 1),
        ]

    def test_invalid_quarter(self) -> None:
        """Quarters outside 1-4 are rejected."""
        with pytest.raises(ValueError, match="Invalid quarter"):
            Period(2002, 5)

    def test_timestamp_round_trip(self) -> None:
        """A period maps to its first day and back."""
        period = Period(2002, 3)
        assert period.to_timestamp() == pd.Timestamp("2002-07-01")
        assert Period.from_timestamp(period.to_timestamp(), PeriodKind.QUARTERLY) == period

    def test_str(self) -> None:
        """String form matches the export's period tokens."""
        assert str(Period(2002, 1)) == "Q1 2002"
        assert str(Period(2002)) == "2002"


# =============================================================================
# Full Labels
# =============================================================================


class TestParseLabel:
    """Tests for parse_label."""

    def test_sales_label(self) -> None:
        """The canonical sales label parses to its triple."""
        parsed = parse_label("APPLE INC - NET SALES OR REVENUES - Q1 2002", PeriodKind.QUARTERLY)
        assert parsed.entity == "APPLE INC"
        assert parsed.variable == "NET SALES OR REVENUES"
        assert parsed.period == Period(2002, 1)

    def test_annual_label(self) -> None:
        """Statement labels end in a bare year."""
        parsed = parse_label("3M - TOTAL ASSETS - 2010", PeriodKind.ANNUAL)
        assert (parsed.entity, parsed.variable, parsed.period) == ("3M", "TOTAL ASSETS", Period(2010))

    @pytest.mark.parametrize("label", ["#ERROR - X - 2002", "$$ER: 4540,NO DATA VALUES FOUND - X - 2002"])
    def test_error_marker_rejected(self, label: str) -> None:
        """Error cells are rejected before splitting."""
        with pytest.raises(ParseError, match="error marker"):
            parse_label(label, PeriodKind.ANNUAL)

    def test_non_string(self) -> None:
        """Non-string labels are rejected."""
        with pytest.raises(ParseError, match="not a string"):
            parse_label(42, PeriodKind.ANNUAL)  # type: ignore[arg-type]

    def test_round_trip(self) -> None:
        """Formatting a triple and parsing it back yields the same triple."""
        for entity, variable, period in [
            ("APPLE INC", "NET SALES OR REVENUES", Period(2002, 1)),
            ("3M", "CASH & SHORT TERM INVESTMENTS", Period(2011)),
        ]:
            parsed = parse_label(f"{entity} - {variable} - {period}", period.kind, strict=True)
            assert (parsed.entity, parsed.variable, parsed.period) == (entity, variable, period)

    def test_is_error_label_ignores_leading_space(self) -> None:
        """Leading whitespace does not hide an error marker."""
        assert is_error_label("  #ERROR")
        assert not is_error_label("APPLE INC - #ERROR - 2002")


# =============================================================================
# Column Names and Cell Values
# =============================================================================


class TestNormalizeVariableName:
    """Tests for statement column-name normalization."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Cash & Short Term Investments", "cash_and_short_term_investments"),
            ("Debt < 1 Year (Current)", "debt_lt_1_year_current"),
            ("TOTAL ASSETS", "total_assets"),
            ("Net Income/Loss - Basic", "net_incomeloss_basic"),
            ("  Sales.  Per  Share ", "sales_per_share"),
        ],
    )
    def test_examples(self, raw: str, expected: str) -> None:
        """Known variable names normalize as expected."""
        assert normalize_variable_name(raw) == expected


class TestCoerceNumeric:
    """Tests for coerce_numeric missingness classification."""

    def test_reasons(self) -> None:
        """Absent and non-numeric cells are told apart."""
        raw = pd.Series([5363, "1,250.5", "NA", "", None, "n/m", np.nan], dtype=object)
        result = coerce_numeric(raw)

        assert result["value"].iloc[0] == 5363.0
        assert result["value"].iloc[1] == 1250.5
        assert list(result["missing_reason"]) == [
            None,
            None,
            "absent",
            "absent",
            "absent",
            "non_numeric",
            "absent",
        ]
        assert result["value"].iloc[2:].isna().all()

    def test_custom_tokens(self) -> None:
        """Only configured tokens count as absent."""
        result = coerce_numeric(pd.Series(["NA", "--"], dtype=object), na_tokens=["--"])
        assert list(result["missing_reason"]) == ["non_numeric", "absent"]

    def test_index_preserved(self) -> None:
        """The result aligns to the input index."""
        raw = pd.Series(["1", "2"], index=[10, 20], dtype=object)
        assert list(coerce_numeric(raw).index) == [10, 20]
