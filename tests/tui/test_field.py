"""Tests for the Field dataclass."""

from __future__ import annotations

import pytest

from sshm.tui.models.field import Field, FieldKind


class TestField:
    """Tests for Field construction and helpers."""

    def test_field_defaults(self) -> None:
        """Text field has correct default values."""
        field = Field("hostname")

        assert field.label == "Hostname"
        assert field.kind == FieldKind.TEXT
        assert field.value == ""
        assert field.required is False
        assert field.options == []
        assert field.validation_error is None
        assert field.selected_index == -1

    def test_label_derived_from_name(self) -> None:
        assert Field("key_path").label == "Key Path"
        assert Field("key_path", "Key").label == "Key"

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(ValueError):
            Field("")

    def test_enum_defaults_to_first_option(self) -> None:
        field = Field("auth_type", kind=FieldKind.ENUM, options=["key", "password"])
        assert field.value == "key"
        assert field.selected_index == 0

    def test_enum_needs_options(self) -> None:
        with pytest.raises(ValueError, match="at least one option"):
            Field("auth_type", kind=FieldKind.ENUM)

    def test_enum_rejects_duplicate_options(self) -> None:
        with pytest.raises(ValueError, match="duplicate"):
            Field("auth_type", kind=FieldKind.ENUM, options=["key", "key"])

    def test_enum_rejects_unknown_initial_value(self) -> None:
        with pytest.raises(ValueError, match="not an option"):
            Field("auth_type", kind=FieldKind.ENUM, options=["key"], value="otp")

    def test_text_field_rejects_options(self) -> None:
        with pytest.raises(ValueError, match="only enum fields"):
            Field("name", options=["a"])

    def test_cycle_wraps_without_changing_value(self) -> None:
        field = Field("format", kind=FieldKind.ENUM, options=["a", "b", "c"], value="c")

        assert field.cycle(1) == "a"
        assert field.cycle(-1) == "b"
        assert field.value == "c"

    def test_cycle_on_text_field(self) -> None:
        with pytest.raises(TypeError):
            Field("name").cycle()

    def test_secret_is_masked(self) -> None:
        field = Field("password", kind=FieldKind.SECRET, value="hunter2")

        assert field.display_value() == "*******"
        assert "hunter2" not in str(field)
        assert field.to_dict()["value"] == "*******"
