"""Parse free-form research answers into typed metric results.

The upstream model is asked to answer with labelled lines::

    VALUE: 1.5 trillion
    SOURCE: World Bank
    URL: https://data.worldbank.org/...
    CONFIDENCE: 9
    TYPE: OFFICIAL
    NOTE: Current USD.

but it does not always comply, so every step here is best-effort and the
parser never raises. When the VALUE line is missing entirely we fall back to
scraping a number out of the prose and mark the result as low confidence.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from app.models.aggregation import MetricSearchResult, SourceType

NOT_FOUND_PHRASES = ("not_found", "could not find", "no data available")

FALLBACK_CONFIDENCE = 3
FALLBACK_REASONING = "Extracted from unstructured response"

MAGNITUDES: dict[str, float] = {
    "trillion": 1e12,
    "billion": 1e9,
    "million": 1e6,
    "%": 1.0,
}

_CURRENCY_RE = re.compile(r"[$€£¥]")
_NUMBER_RE = re.compile(
    r"(?P<number>-?\d+(?:\.\d+)?)\s*(?P<magnitude>trillion|billion|million|%)?",
    re.IGNORECASE,
)
# Loose scan: allow currency prefixes and grouped thousands inside prose.
_PROSE_NUMBER_RE = re.compile(
    r"[$€£¥]?\s?(?P<number>\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)"
    r"(?:\s*(?P<magnitude>trillion|billion|million|%))?",
    re.IGNORECASE,
)
_YEAR_RE = re.compile(r"^(?:19|20)\d{2}$")


def _label_pattern(label: str) -> re.Pattern[str]:
    # Tolerates markdown decoration such as "**VALUE:** 42" or "- VALUE: 42".
    return re.compile(
        rf"^[ \t>*_\-]*{label}[ \t*_]*:[ \t*_]*(?P<value>.*?)[ \t*_]*$",
        re.IGNORECASE | re.MULTILINE,
    )


_LABELS = {
    "value": _label_pattern("VALUE"),
    "source": _label_pattern("SOURCE"),
    "url": _label_pattern("URL"),
    "confidence": _label_pattern("CONFIDENCE"),
    "type": _label_pattern("TYPE"),
    "note": _label_pattern("NOTE"),
}


@dataclass(slots=True)
class LabeledFields:
    value: float | str | None = None
    source: str | None = None
    url: str | None = None
    confidence: int | None = None
    type: SourceType | None = None
    note: str | None = None


def is_not_found(text: str) -> bool:
    lowered = text.lower()
    return any(phrase in lowered for phrase in NOT_FOUND_PHRASES)


def _first_label(text: str, label: str) -> str | None:
    for match in _LABELS[label].finditer(text):
        value = match.group("value").strip()
        if value:
            return value
    return None


def _apply_magnitude(number: float, magnitude: str | None) -> float:
    if not magnitude:
        return number
    return number * MAGNITUDES[magnitude.lower()]


def parse_value(raw: str) -> float | str:
    """Turn a VALUE line into a number when it holds one, else keep the text."""
    cleaned = _CURRENCY_RE.sub("", raw).replace(",", "").strip()
    match = _NUMBER_RE.search(cleaned)
    if not match:
        return raw.strip()
    return _apply_magnitude(float(match.group("number")), match.group("magnitude"))


def parse_confidence(raw: str | None) -> int | None:
    if not raw:
        return None
    match = re.match(r"\d+", raw.strip())
    if not match:
        return None
    score = int(match.group(0))
    if score < 1 or score > 10:
        return None
    return score


def parse_source_type(raw: str | None) -> SourceType | None:
    if not raw:
        return None
    normalized = re.sub(r"[\s\-]+", "_", raw.strip().upper())
    for source_type in SourceType:
        if normalized.startswith(source_type.value):
            return source_type
    return None


def parse_url(raw: str | None) -> str | None:
    if not raw:
        return None
    match = re.search(r"https?://[^\s<>\"')\]]+", raw)
    if not match:
        return None
    return match.group(0).rstrip(".,;")


def extract_labeled_fields(text: str) -> LabeledFields:
    raw_value = _first_label(text, "value")
    return LabeledFields(
        value=parse_value(raw_value) if raw_value is not None else None,
        source=_first_label(text, "source"),
        url=parse_url(_first_label(text, "url")),
        confidence=parse_confidence(_first_label(text, "confidence")),
        type=parse_source_type(_first_label(text, "type")),
        note=_first_label(text, "note"),
    )


def extract_number_from_prose(text: str) -> float | None:
    """Best-effort numeric scrape for answers that ignored the line format.

    Takes the first number in the text, skipping bare calendar years.
    """
    for match in _PROSE_NUMBER_RE.finditer(text):
        token = match.group("number").replace(",", "")
        magnitude = match.group("magnitude")
        if not magnitude and _YEAR_RE.match(token):
            continue
        return _apply_magnitude(float(token), magnitude)
    return None


def parse_metric_response(text: str) -> MetricSearchResult:
    """Parse one research answer. Never raises; always returns a definite result."""
    text = (text or "").strip()
    if not text or is_not_found(text):
        return MetricSearchResult.not_found()

    fields = extract_labeled_fields(text)
    if fields.value is not None:
        return MetricSearchResult(
            found=True,
            value=fields.value,
            source_type=fields.type or SourceType.AGGREGATOR,
            source_url=fields.url,
            source_name=fields.source,
            confidence_score=fields.confidence,
            reasoning=fields.note,
        )

    fallback = extract_number_from_prose(text)
    if fallback is not None:
        return MetricSearchResult(
            found=True,
            value=fallback,
            source_type=SourceType.NEWS_DERIVED,
            confidence_score=FALLBACK_CONFIDENCE,
            reasoning=FALLBACK_REASONING,
        )

    return MetricSearchResult.not_found()
