"""Tests for metadata filter parsing and matching."""

from __future__ import annotations

import pytest

from bolted_store.index import (
    MetadataFilter,
    MetadataFilterParseError,
    coerce_filters,
    parse_metadata_filters,
    supported_filter_syntax,
)
from bolted_store.index.filters import matches_all


def test_parse_metadata_filters_supports_scalar_and_list_values() -> None:
    parsed = parse_metadata_filters(
        "document_type=agreement and mentions_currency=true, file_size_bytes>=100, "
        "document_type in (agreement, report)"
    )

    assert len(parsed) == 4
    assert parsed[0] == MetadataFilter("document_type", "eq", "agreement")
    assert parsed[1].field == "mentions_currency"
    assert parsed[1].value is True
    assert parsed[2].operator == "gte"
    assert parsed[2].value == 100
    assert parsed[3].operator == "in"
    assert parsed[3].value == ("agreement", "report")


def test_parse_metadata_filters_handles_quotes_and_contains() -> None:
    parsed = parse_metadata_filters("title~'q1, draft', lang != en")

    assert parsed[0] == MetadataFilter("title", "contains", "q1, draft")
    assert parsed[1] == MetadataFilter("lang", "ne", "en")


@pytest.mark.parametrize(
    "raw",
    ["size>big", "=value", "field in ()", "field="],
)
def test_parse_metadata_filters_rejects_bad_syntax(raw: str) -> None:
    with pytest.raises(MetadataFilterParseError):
        parse_metadata_filters(raw)


def test_empty_filter_text_means_no_filters() -> None:
    assert parse_metadata_filters(None) == []
    assert parse_metadata_filters("   ") == []
    assert coerce_filters(None) == ()


def test_coerce_filters_accepts_text_or_parsed_conditions() -> None:
    parsed = parse_metadata_filters("lang=en")

    assert coerce_filters("lang=en") == tuple(parsed)
    assert coerce_filters(parsed) == tuple(parsed)


def test_filters_match_string_metadata_with_coercion() -> None:
    metadata = {"lang": "EN", "pages": "12", "draft": "yes", "title": "Q1 Revenue"}

    assert matches_all(parse_metadata_filters("lang=en, pages>10, draft=true"), metadata)
    assert matches_all(parse_metadata_filters("title~revenue"), metadata)
    assert not matches_all(parse_metadata_filters("pages<10"), metadata)
    assert matches_all(parse_metadata_filters("pages in (11, 12)"), metadata)


def test_missing_field_never_matches() -> None:
    assert not MetadataFilter("lang", "ne", "en").matches({})
    assert not MetadataFilter("lang", "eq", "en").matches({"language": "en"})


def test_value_shape_decides_membership_for_hand_built_filters() -> None:
    assert MetadataFilter("lang", "in", "en").matches({"lang": "en"})
    assert not MetadataFilter("lang", "eq", ("en", "de")).matches({"lang": "en"})
    assert MetadataFilter("lang", "in", ("en", "de")).matches({"lang": "de"})


def test_supported_filter_syntax_mentions_operators() -> None:
    syntax = supported_filter_syntax()

    assert ">=" in syntax
    assert " in " in syntax
