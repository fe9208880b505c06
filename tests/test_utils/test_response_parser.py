"""Tests for model-response parsing helpers."""

from unittest.mock import MagicMock, patch

import pytest

from spreadsheet_workflow.utils.logging import StructuredLogger
from spreadsheet_workflow.utils.response_parser import (
    extract_tagged_response,
    parse_json_value,
    parse_string_list,
    parse_string_mapping,
)


class TestExtractTaggedResponse:
    """Tests for extract_tagged_response."""

    def test_returns_tag_content(self) -> None:
        text = "Sure!\n<response>\n[\"Acme\"]\n</response>\nThanks"
        assert extract_tagged_response(text) == '["Acme"]'

    def test_first_block_wins(self) -> None:
        text = "<response>one</response><response>two</response>"
        assert extract_tagged_response(text) == "one"

    def test_missing_tags_yield_empty_string(self) -> None:
        assert extract_tagged_response('["Acme"]') == ""


class TestParseJsonValue:
    """Tests for parse_json_value."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ('{"a": "1"}', {"a": "1"}),
            ('["x", "y"]', ["x", "y"]),
            ('```json\n{"a": "1"}\n```', {"a": "1"}),
            ('Here you go: {"a": "1"} hope it helps', {"a": "1"}),
            ('Names: ["x", "y"].', ["x", "y"]),
        ],
    )
    def test_parses_embedded_json(self, text: str, expected: object) -> None:
        assert parse_json_value(text) == expected

    def test_garbage_yields_none(self) -> None:
        assert parse_json_value("no json here") is None


class TestParseStringMapping:
    """Tests for parse_string_mapping."""

    def test_object_values_become_strings(self) -> None:
        text = '{"Revenue": 1200, "Public": true, "Notes": null, "Tags": ["a"]}'
        assert parse_string_mapping(text) == {
            "Revenue": "1200",
            "Public": "True",
            "Notes": "",
            "Tags": '["a"]',
        }

    def test_list_is_zipped_onto_keys(self) -> None:
        result = parse_string_mapping('["Acme", "12"]', keys=["Sheet Name", "Count"])
        assert result == {"Sheet Name": "Acme", "Count": "12"}

    def test_list_without_keys_is_rejected(self) -> None:
        assert parse_string_mapping('["Acme"]') == {}

    def test_malformed_yields_empty_mapping(self) -> None:
        assert parse_string_mapping("not json", keys=["A"]) == {}

    @patch.object(StructuredLogger, "warning")
    def test_malformed_is_logged_with_source(self, mock_warning: MagicMock) -> None:
        parse_string_mapping("not json", source="run_cells")
        mock_warning.assert_called_once_with(
            "Response is not a JSON object", source="run_cells"
        )


class TestParseStringList:
    """Tests for parse_string_list."""

    def test_plain_list(self) -> None:
        assert parse_string_list('["Row A", "Row B"]') == ["Row A", "Row B"]

    def test_blank_items_are_dropped(self) -> None:
        assert parse_string_list('["Row A", "", "  ", null, 3]') == ["Row A", "3"]

    def test_wrapped_results_key(self) -> None:
        assert parse_string_list('{"results": ["Row A"]}') == ["Row A"]

    def test_malformed_yields_empty_list(self) -> None:
        assert parse_string_list('{"count": 3}') == []
        assert parse_string_list("") == []

    @patch.object(StructuredLogger, "warning")
    def test_malformed_is_logged_with_source(self, mock_warning: MagicMock) -> None:
        parse_string_list("nothing here", source="find")
        mock_warning.assert_called_once_with("Response is not a JSON list", source="find")
