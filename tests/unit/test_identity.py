"""
Tests for Item Identity
=======================

URL normalization and stable identifier precedence.
"""

import hashlib

import pytest

from feedrelay.ingestion.identity import (
    normalize_url,
    stable_item_identifier,
    has_identity_fields,
    decode_html_entities,
)


class TestNormalizeUrl:
    """Test suite for normalize_url."""

    def test_lowercases_scheme_and_host(self):
        assert normalize_url("HTTPS://Example.COM/Path") == "https://example.com/Path"

    def test_strips_tracking_parameters_and_sorts_query(self):
        url = "https://example.com/a/?utm_source=rss&b=2&fbclid=xyz&a=1"
        assert normalize_url(url) == "https://example.com/a?a=1&b=2"

    def test_trailing_slash_variants_collapse(self):
        assert normalize_url("https://example.com/post/") == normalize_url("https://example.com/post")
        assert normalize_url("https://example.com/post//") == "https://example.com/post"
        assert normalize_url("https://example.com//") == "https://example.com/"

    def test_empty_path_becomes_root(self):
        assert normalize_url("https://example.com") == "https://example.com/"

    def test_decodes_entities(self):
        assert normalize_url("https://example.com/?a=1&amp;b=2") == "https://example.com/?a=1&b=2"

    @pytest.mark.parametrize(
        "value",
        [
            "urn:uuid:1225c695-cfb8-4ebb-aaaa-80da344efa6a",
            "tag:example.com,2024:post-1",
            "plain-guid-42",
        ],
    )
    def test_non_urls_are_returned_untouched(self, value):
        assert normalize_url(value) == value

    @pytest.mark.parametrize(
        "value",
        [
            "HTTPS://Example.com/a/b/?utm_medium=x&z=1&y=2",
            "https://example.com/?a=1&amp;b=2",
            "https://example.com",
            "guid-without-scheme",
        ],
    )
    def test_idempotent(self, value):
        once = normalize_url(value)
        assert normalize_url(once) == once

    def test_decode_html_entities(self):
        assert decode_html_entities("Tom &amp; Jerry &#38; co") == "Tom & Jerry & co"


class TestStableItemIdentifier:
    """Test suite for identifier precedence."""

    def test_id_wins_over_guid_and_link(self):
        raw = {"id": "entry-1", "guid": "guid-1", "link": "https://example.com/1"}
        assert stable_item_identifier(raw) == "entry-1"

    def test_guid_wins_over_link(self):
        raw = {"guid": "guid-1", "link": "https://example.com/1"}
        assert stable_item_identifier(raw) == "guid-1"

    def test_link_is_normalized(self):
        first = stable_item_identifier({"link": "https://Example.com/1/?utm_source=a"})
        second = stable_item_identifier({"link": "https://example.com/1"})
        assert first == second == "https://example.com/1"

    def test_hash_fallback_is_deterministic(self):
        raw = {"title": "Hello", "isoDate": "2024-01-01T00:00:00Z"}
        expected = hashlib.sha1("Hello|2024-01-01T00:00:00Z".encode("utf-8")).hexdigest()

        assert stable_item_identifier(raw) == expected
        assert stable_item_identifier(dict(raw)) == expected

    def test_hash_fallback_uses_pub_date_without_iso_date(self):
        raw = {"title": "Hello", "pubDate": "Mon, 01 Jan 2024 00:00:00 GMT"}
        expected = hashlib.sha1(
            "Hello|Mon, 01 Jan 2024 00:00:00 GMT".encode("utf-8")
        ).hexdigest()
        assert stable_item_identifier(raw) == expected

    def test_blank_values_are_skipped(self):
        raw = {"guid": "   ", "link": "https://example.com/x"}
        assert stable_item_identifier(raw) == "https://example.com/x"

    def test_has_identity_fields(self):
        assert has_identity_fields({"title": "x"})
        assert has_identity_fields({"pubDate": "yesterday"})
        assert not has_identity_fields({"summary": "only a summary"})
        assert not has_identity_fields({"guid": "  "})
