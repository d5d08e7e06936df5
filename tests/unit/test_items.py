"""Unit tests for test-data loading, validation and conversion."""

import json

import pytest

from evalrun.core.exceptions import InvalidTestItemError
from evalrun.schemas.evals import LabeledItem
from evalrun.services.items import items_from_csv, load_items, validate_items, write_items


def _write_lines(path, lines):
    path.write_text("\n".join(lines) + "\n")
    return path


class TestLoadItems:
    def test_wrapped_and_bare_lines(self, tmp_path):
        path = _write_lines(tmp_path / "d.jsonl", [
            json.dumps({"item": {"input": "great", "label": "positive"}}),
            "",
            json.dumps({"input": "awful", "label": "negative"}),
        ])
        items = load_items(path)
        assert items == [
            LabeledItem(input="great", label="positive"),
            LabeledItem(input="awful", label="negative"),
        ]

    def test_missing_file(self, tmp_path):
        with pytest.raises(InvalidTestItemError, match="not found"):
            load_items(tmp_path / "nope.jsonl")

    def test_bad_lines_are_reported(self, tmp_path):
        path = _write_lines(tmp_path / "d.jsonl", [
            json.dumps({"input": "ok", "label": "positive"}),
            "{not json",
            json.dumps({"input": "no label"}),
        ])
        with pytest.raises(InvalidTestItemError) as exc_info:
            load_items(path)
        errors = exc_info.value.details["errors"]
        assert errors[0] == "Line 2: invalid JSON"
        assert errors[1] == "Line 3: missing or empty field(s): label"

    def test_error_list_is_capped(self, tmp_path):
        path = _write_lines(tmp_path / "d.jsonl", ["[]"] * 6)
        with pytest.raises(InvalidTestItemError) as exc_info:
            load_items(path)
        errors = exc_info.value.details["errors"]
        assert len(errors) == 4
        assert errors[-1] == "... and 3 more errors"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "d.jsonl"
        path.write_text("\n\n")
        with pytest.raises(InvalidTestItemError, match="no items"):
            load_items(path)

    def test_undecodable_bytes_are_a_line_error(self, tmp_path):
        path = tmp_path / "d.jsonl"
        path.write_bytes(b'{"input": "ok", "label": "a"}\n{"input": "caf\xe9", "label": "b"}\n')
        with pytest.raises(InvalidTestItemError) as exc_info:
            load_items(path)
        assert exc_info.value.details["errors"] == ["Line 2: not valid UTF-8"]


class TestValidateItems:
    def test_valid(self, items_file):
        result = validate_items(items_file)
        assert result.valid is True
        assert result.record_count == 5
        assert result.labels == ["negative", "positive"]
        assert result.warnings == []

    def test_missing_file(self, tmp_path):
        result = validate_items(tmp_path / "missing.jsonl")
        assert result.valid is False
        assert result.errors[0].startswith("File not found")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "d.jsonl"
        path.write_text("")
        result = validate_items(path)
        assert result.valid is False
        assert result.errors == ["File is empty"]

    def test_single_label_and_duplicates_warn(self, tmp_path):
        path = _write_lines(tmp_path / "d.jsonl", [
            json.dumps({"input": "same", "label": "positive"}),
            json.dumps({"input": "same", "label": "positive"}),
        ])
        result = validate_items(path)
        assert result.valid is True
        assert "Only one label present ('positive')" in result.warnings
        assert "1 input(s) appear more than once" in result.warnings

    def test_invalid_lines_make_it_invalid(self, tmp_path):
        path = _write_lines(tmp_path / "d.jsonl", [
            json.dumps({"input": "fine", "label": "a"}),
            json.dumps({"input": "", "label": "b"}),
        ])
        result = validate_items(path)
        assert result.valid is False
        assert result.record_count == 1
        assert result.errors == ["Line 2: missing or empty field(s): input"]

    def test_non_utf8_file_is_reported_not_raised(self, tmp_path):
        path = tmp_path / "d.jsonl"
        path.write_bytes(b"\xff\xfe\n")
        result = validate_items(path)
        assert result.valid is False
        assert result.errors == ["Line 1: not valid UTF-8"]


class TestCsv:
    def test_custom_columns(self, tmp_path):
        path = tmp_path / "d.csv"
        path.write_text("text,sentiment\nlove it,positive\n\"hate it, truly\",negative\n")
        items = items_from_csv(path, input_column="text", label_column="sentiment")
        assert items == [
            LabeledItem(input="love it", label="positive"),
            LabeledItem(input="hate it, truly", label="negative"),
        ]

    def test_missing_column(self, tmp_path):
        path = tmp_path / "d.csv"
        path.write_text("text,label\nx,y\n")
        with pytest.raises(InvalidTestItemError, match="missing column"):
            items_from_csv(path)

    def test_empty_label(self, tmp_path):
        path = tmp_path / "d.csv"
        path.write_text("input,label\nx,\n")
        with pytest.raises(InvalidTestItemError) as exc_info:
            items_from_csv(path)
        assert exc_info.value.details["errors"] == ["Row 2: missing or empty field(s): label"]

    def test_non_utf8_csv(self, tmp_path):
        path = tmp_path / "d.csv"
        path.write_bytes(b"input,label\ncaf\xe9,positive\n")
        with pytest.raises(InvalidTestItemError, match="not valid UTF-8"):
            items_from_csv(path)


def test_write_items_uses_wrapped_form(tmp_path):
    out = write_items(
        [LabeledItem(input="café au lait", label="positive")],
        tmp_path / "nested" / "out.jsonl",
    )
    lines = out.read_text(encoding="utf-8").splitlines()
    assert json.loads(lines[0]) == {"item": {"input": "café au lait", "label": "positive"}}
    assert load_items(out) == [LabeledItem(input="café au lait", label="positive")]
