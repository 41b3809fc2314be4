"""Tests for the research answer parser."""
import pytest

from app.models.aggregation import SourceType
from app.services.response_parser import (
    FALLBACK_CONFIDENCE,
    FALLBACK_REASONING,
    extract_labeled_fields,
    extract_number_from_prose,
    parse_confidence,
    parse_metric_response,
    parse_source_type,
    parse_value,
)

STRUCTURED = """VALUE: 1.5 trillion
SOURCE: World Bank
URL: https://data.worldbank.org/indicator/NY.GDP.MKTP.CD
CONFIDENCE: 9
TYPE: OFFICIAL
NOTE: Current US dollars, latest revision."""


class TestStructuredAnswers:
    def test_full_answer_is_parsed(self):
        result = parse_metric_response(STRUCTURED)

        assert result.found is True
        assert result.value == pytest.approx(1.5e12)
        assert result.source_name == "World Bank"
        assert result.source_url == "https://data.worldbank.org/indicator/NY.GDP.MKTP.CD"
        assert result.confidence_score == 9
        assert result.source_type == SourceType.OFFICIAL
        assert result.reasoning == "Current US dollars, latest revision."

    def test_currency_and_thousands_separators_are_stripped(self):
        result = parse_metric_response("VALUE: $45,000\nTYPE: AGGREGATOR")
        assert result.found is True
        assert result.value == 45000

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("1.5 trillion", 1.5e12),
            ("2.3 Billion", 2.3e9),
            ("€350 million", 3.5e8),
            ("3.4%", 3.4),
            ("-1.2%", -1.2),
            ("£1,234.5", 1234.5),
        ],
    )
    def test_parse_value_applies_magnitude(self, raw, expected):
        assert parse_value(raw) == pytest.approx(expected)

    def test_non_numeric_value_is_kept_as_text(self):
        result = parse_metric_response("VALUE: Federal presidential republic\nSOURCE: CIA")
        assert result.found is True
        assert result.value == "Federal presidential republic"

    def test_missing_type_defaults_to_aggregator(self):
        result = parse_metric_response("VALUE: 42\nTYPE: blog post")
        assert result.source_type == SourceType.AGGREGATOR

    def test_markdown_decorated_labels(self):
        text = "**VALUE:** 12.5 million\n- **SOURCE:** UN DESA\n**CONFIDENCE**: 8"
        fields = extract_labeled_fields(text)
        assert fields.value == pytest.approx(1.25e7)
        assert fields.source == "UN DESA"
        assert fields.confidence == 8

    def test_absent_lines_are_not_errors(self):
        fields = extract_labeled_fields("VALUE: 7")
        assert fields.value == 7
        assert fields.source is None
        assert fields.url is None
        assert fields.confidence is None
        assert fields.type is None
        assert fields.note is None


class TestConfidenceAndType:
    @pytest.mark.parametrize("raw", ["0", "11", "42", "high", "", None])
    def test_out_of_range_or_missing_confidence_is_absent(self, raw):
        assert parse_confidence(raw) is None

    def test_confidence_with_suffix(self):
        assert parse_confidence("8/10") == 8

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("OFFICIAL", SourceType.OFFICIAL),
            ("aggregator", SourceType.AGGREGATOR),
            ("NEWS_DERIVED", SourceType.NEWS_DERIVED),
            ("news-derived", SourceType.NEWS_DERIVED),
            ("PRIMARY", None),
        ],
    )
    def test_source_type(self, raw, expected):
        assert parse_source_type(raw) == expected


class TestNotFound:
    @pytest.mark.parametrize(
        "text",
        [
            "NOT_FOUND",
            "not_found",
            "I could not find a figure for 2031, although 2023 was 4.5 billion.",
            "VALUE: 12\nNOTE: No data available for this year.",
        ],
    )
    def test_sentinel_wins_over_numbers(self, text):
        assert parse_metric_response(text).found is False

    def test_empty_text(self):
        assert parse_metric_response("").found is False

    def test_prose_without_numbers(self):
        assert parse_metric_response("The statistics office has not published it yet.").found is False


class TestFallback:
    def test_number_in_free_prose(self):
        result = parse_metric_response(
            "India's population is approximately 3.2 billion people according to reports."
        )

        assert result.found is True
        assert result.value == pytest.approx(3.2e9)
        assert result.source_type == SourceType.NEWS_DERIVED
        assert result.confidence_score == FALLBACK_CONFIDENCE == 3
        assert result.reasoning == FALLBACK_REASONING

    def test_year_is_skipped_before_magnitude_number(self):
        value = extract_number_from_prose("In 2023 exports reached $1,234.5 million overall.")
        assert value == pytest.approx(1.2345e9)

    def test_first_number_wins_over_trailing_percentage(self):
        result = parse_metric_response("GDP per capita was $45,000, up 3% from the year before.")

        assert result.found is True
        assert result.value == 45000
        assert result.source_type == SourceType.NEWS_DERIVED

    def test_bare_number_skips_years(self):
        assert extract_number_from_prose("In 2022 the rate stood at 7.1 per thousand.") == 7.1

    def test_only_a_year_is_not_a_value(self):
        assert parse_metric_response("Figures for 2024 are pending.").found is False


def test_parsing_is_idempotent():
    texts = [
        STRUCTURED,
        "approximately 3.2 billion people",
        "NOT_FOUND",
        "VALUE: Constitutional monarchy",
    ]
    for text in texts:
        assert parse_metric_response(text) == parse_metric_response(text)
