"""Tests for per-type submission coercion."""

from __future__ import annotations

import logging

import pytest

from ticketwright.coercion import OMIT, coerce, coerce_values
from ticketwright.models import FieldModel, FieldOption, Selection

SEVERITY = FieldModel(
    key="customfield_20",
    display_name="Severity",
    required=True,
    type="select",
    options=(FieldOption("10", "high", "High"), FieldOption("11", "low", "Low")),
)
PRIORITY = FieldModel(
    key="priority",
    display_name="Priority",
    required=False,
    type="select",
    options=(FieldOption("3", "Medium", "Medium"), FieldOption("2", "High", "High")),
)
COMPONENTS = FieldModel(
    key="components",
    display_name="Components",
    required=True,
    type="multiselect",
    options=(FieldOption("100", "Frontend", "Frontend"), FieldOption("101", "Backend", "Backend")),
)


def _field(field_type: str, **kwargs: object) -> FieldModel:
    return FieldModel(key="f", display_name="F", required=False, type=field_type, **kwargs)  # type: ignore[arg-type]


class TestEmptyValues:
    @pytest.mark.parametrize("value", [None, "", "   ", []])
    def test_empty_is_omitted(self, value: object) -> None:
        assert coerce(SEVERITY, value) is OMIT
        assert coerce(_field("text"), value) is OMIT


class TestSelect:
    def test_option_id(self) -> None:
        assert coerce(SEVERITY, "10") == {"id": "10"}

    def test_option_value_resolves_to_id(self) -> None:
        assert coerce(SEVERITY, "low") == {"id": "11"}

    def test_unknown_is_wrapped_verbatim(self) -> None:
        assert coerce(SEVERITY, "99") == {"id": "99"}

    def test_numeric_id(self) -> None:
        assert coerce(SEVERITY, 10) == {"id": "10"}

    def test_selection(self) -> None:
        assert coerce(SEVERITY, Selection(id="11", label="Low")) == {"id": "11"}


class TestPriority:
    def test_submits_name_not_id(self) -> None:
        assert coerce(PRIORITY, "3") == {"name": "Medium"}

    def test_label_accepted(self) -> None:
        assert coerce(PRIORITY, "High") == {"name": "High"}

    def test_unknown_priority_uses_selection_label(self) -> None:
        assert coerce(PRIORITY, Selection(id="9", label="Blocker")) == {"name": "Blocker"}


class TestMultiselect:
    def test_ids_and_values(self) -> None:
        assert coerce(COMPONENTS, ["100", "Backend"]) == [{"id": "100"}, {"id": "101"}]

    def test_unknown_ids_wrapped_verbatim(self) -> None:
        assert coerce(COMPONENTS, ["100", "10050"]) == [{"id": "100"}, {"id": "10050"}]

    def test_empty_and_unrecognized_entries_dropped(self) -> None:
        assert coerce(COMPONENTS, ["100", "  ", None, True]) == [{"id": "100"}]

    def test_nothing_resolvable_is_omitted(self) -> None:
        assert coerce(COMPONENTS, ["", None]) is OMIT

    def test_selections_from_search_kept(self) -> None:
        assert coerce(COMPONENTS, [Selection(id="555", label="Found")]) == [{"id": "555"}]

    def test_without_declared_options_ids_pass_through(self) -> None:
        assert coerce(_field("multiselect"), ["a", "b"]) == [{"id": "a"}, {"id": "b"}]

    def test_single_value_wrapped(self) -> None:
        assert coerce(COMPONENTS, "101") == [{"id": "101"}]


class TestScalars:
    def test_number(self) -> None:
        assert coerce(_field("number"), "3.5") == 3.5
        assert coerce(_field("number"), 8) == 8.0

    def test_number_not_a_number(self) -> None:
        assert coerce(_field("number"), "abc") is OMIT
        assert coerce(_field("number"), float("nan")) is OMIT

    @pytest.mark.parametrize("value", ["inf", "-Infinity", "1e999", float("inf")])
    def test_number_not_finite(self, value: object) -> None:
        assert coerce(_field("number"), value) is OMIT

    def test_boolean(self) -> None:
        field = _field("boolean")
        assert coerce(field, True) is True
        assert coerce(field, False) is False
        assert coerce(field, "true") is True
        assert coerce(field, "1") is True
        assert coerce(field, "no") is False
        assert coerce(field, 1) is True

    def test_user(self) -> None:
        assert coerce(_field("user"), "acc-1") == {"accountId": "acc-1"}
        assert coerce(_field("user"), Selection(id="acc-2", label="Grace")) == {"accountId": "acc-2"}

    def test_array(self) -> None:
        assert coerce(_field("array"), ["ui", 2]) == ["ui", "2"]
        assert coerce(_field("array"), "solo") == ["solo"]

    def test_text_is_raw(self) -> None:
        assert coerce(_field("text"), "  spaced  ") == "  spaced  "
        assert coerce(_field("textarea"), "line\nline") == "line\nline"

    def test_date(self) -> None:
        assert coerce(_field("date"), "2026-01-31") == "2026-01-31"

    def test_autocomplete_backed_date_wraps_id(self) -> None:
        field = _field("datetime", autocomplete_category="generic")
        assert coerce(field, Selection(id="s-1")) == {"id": "s-1"}


class TestUnrecognizedShapes:
    def test_logged_once_and_omitted(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="ticketwright.coercion"):
            assert coerce(_field("user"), {"accountId": "x"}) is OMIT
        assert len(caplog.records) == 1
        assert "Unrecognized value shape dict" in caplog.records[0].getMessage()

    def test_boolean_for_number_is_unrecognized(self) -> None:
        assert coerce(_field("number"), True) is OMIT


class TestPurity:
    def test_same_input_same_output(self) -> None:
        for _ in range(3):
            assert coerce(SEVERITY, "10") == {"id": "10"}
            assert coerce(COMPONENTS, ["100"]) == [{"id": "100"}]

    def test_coerce_values_drops_omitted(self) -> None:
        payload = coerce_values(
            [SEVERITY, PRIORITY, COMPONENTS, _field("number")],
            {"customfield_20": "high", "priority": "", "components": ["101"], "f": "n/a", "stray": "x"},
        )
        assert payload == {"customfield_20": {"id": "10"}, "components": [{"id": "101"}]}
