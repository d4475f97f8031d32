"""Tests for the field prompt builder and submission coercion."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from adoflow.errors import ValidationFailedError
from adoflow.models import FieldPrompt, RequiredFieldSpec
from adoflow.prompts import build_prompt, build_prompts, coerce_value, coerce_values, format_datetime, infer_kind


def _prompt(kind: str, *, ref: str = "Custom.Field", required: bool = True, allowed: tuple[str, ...] = ()) -> FieldPrompt:
    return FieldPrompt(ref_name=ref, label=ref, kind=kind, required=required, allowed_values=allowed)  # type: ignore[arg-type]


class TestInferKind:
    def test_allowed_values_make_a_picklist(self) -> None:
        spec = RequiredFieldSpec(ref_name="Custom.Size", field_type="integer", allowed_values=("1", "2"))
        assert infer_kind(spec) == "picklist"

    @pytest.mark.parametrize(
        ("field_type", "kind"),
        [
            ("integer", "number"),
            ("double", "number"),
            ("dateTime", "datetime"),
            ("identity", "identity"),
            ("plainText", "string"),
            ("html", "string"),
            ("treePath", "string"),
            ("boolean", "string"),
        ],
    )
    def test_declared_type(self, field_type: str, kind: str) -> None:
        assert infer_kind(RequiredFieldSpec(ref_name="Custom.X", field_type=field_type)) == kind

    @pytest.mark.parametrize(
        ("ref_name", "kind"),
        [
            ("Microsoft.VSTS.Scheduling.StoryPoints", "number"),
            ("Microsoft.VSTS.Common.Priority", "number"),
            ("Custom.OriginalWork", "number"),
            ("System.AssignedTo", "identity"),
            ("System.CreatedBy", "identity"),
            ("Microsoft.VSTS.Scheduling.TargetDate", "datetime"),
            ("Custom.ReviewTime", "datetime"),
            ("System.Title", "string"),
        ],
    )
    def test_name_heuristics_without_metadata(self, ref_name: str, kind: str) -> None:
        assert infer_kind(RequiredFieldSpec(ref_name=ref_name)) == kind

    def test_unknown_declared_type_falls_back_to_name(self) -> None:
        spec = RequiredFieldSpec(ref_name="Custom.DueDate", field_type="somethingNew")
        assert infer_kind(spec) == "datetime"


class TestBuildPrompts:
    def test_picklist_prompt_for_resolved_reason(self) -> None:
        spec = RequiredFieldSpec(
            ref_name="Microsoft.VSTS.Common.ResolvedReason",
            field_type="string",
            allowed_values=("Fixed", "Won't Fix"),
        )
        prompt = build_prompt(spec)
        assert prompt.kind == "picklist"
        assert prompt.label == "Resolved Reason"
        assert prompt.required is True
        assert prompt.allowed_values == ("Fixed", "Won't Fix")
        assert prompt.default_value == "Fixed"

    def test_picklist_default_honours_allowed_spec_default(self) -> None:
        spec = RequiredFieldSpec(ref_name="Custom.Tier", allowed_values=("Gold", "Silver"), default_value="Silver")
        assert build_prompt(spec).default_value == "Silver"

    def test_picklist_default_ignores_disallowed_spec_default(self) -> None:
        spec = RequiredFieldSpec(ref_name="Custom.Tier", allowed_values=("Gold", "Silver"), default_value="Bronze")
        assert build_prompt(spec).default_value == "Gold"

    def test_defaults_per_kind(self) -> None:
        prompts = build_prompts(
            [
                RequiredFieldSpec(ref_name="System.Title"),
                RequiredFieldSpec(ref_name="Microsoft.VSTS.Scheduling.StoryPoints"),
                RequiredFieldSpec(ref_name="System.AssignedTo"),
                RequiredFieldSpec(ref_name="Microsoft.VSTS.Scheduling.FinishDate"),
            ]
        )
        assert [p.default_value for p in prompts] == ["", None, None, None]

    def test_known_field_label_and_placeholder(self) -> None:
        prompt = build_prompt(RequiredFieldSpec(ref_name="Microsoft.VSTS.Scheduling.StoryPoints"))
        assert prompt.label == "Story Points"
        assert prompt.placeholder == "Enter story points"

    def test_spec_name_wins_over_known_label(self) -> None:
        prompt = build_prompt(RequiredFieldSpec(ref_name="Microsoft.VSTS.Scheduling.StoryPoints", name="Effort"))
        assert prompt.label == "Effort"

    def test_unknown_field_uses_ref_name_as_label(self) -> None:
        assert build_prompt(RequiredFieldSpec(ref_name="Custom.Thing")).label == "Custom.Thing"

    def test_preserves_order_and_drops_duplicates(self) -> None:
        prompts = build_prompts(
            [
                RequiredFieldSpec(ref_name="B.Field", name="first"),
                RequiredFieldSpec(ref_name="A.Field"),
                RequiredFieldSpec(ref_name="B.Field", name="second"),
            ]
        )
        assert [p.ref_name for p in prompts] == ["B.Field", "A.Field"]
        assert prompts[0].label == "first"

    def test_empty_input(self) -> None:
        assert build_prompts([]) == []


class TestCoerceValue:
    def test_number_accepts_int_float_and_numeric_strings(self) -> None:
        prompt = _prompt("number")
        assert coerce_value(prompt, 5) == 5
        assert coerce_value(prompt, 2.5) == 2.5
        assert coerce_value(prompt, " 8 ") == 8
        assert coerce_value(prompt, "3.25") == 3.25
        assert coerce_value(prompt, "-4") == -4
        assert coerce_value(prompt, "1e3") == 1000.0

    @pytest.mark.parametrize(
        "bad", [True, "eight", "nan", "inf", "1e400", float("inf"), [1], "1_000", "\u0663", "\uff15", "0x10", ""]
    )
    def test_number_rejects(self, bad: object) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            coerce_value(_prompt("number"), bad)
        assert exc_info.value.ref_name == "Custom.Field"

    def test_datetime_canonical_utc_with_milliseconds(self) -> None:
        prompt = _prompt("datetime")
        value = datetime(2024, 3, 1, 12, 30, 5, 123456, tzinfo=UTC)
        assert coerce_value(prompt, value) == "2024-03-01T12:30:05.123Z"

    def test_datetime_converts_offsets_and_assumes_naive_is_utc(self) -> None:
        prompt = _prompt("datetime")
        plus_two = timezone(timedelta(hours=2))
        assert coerce_value(prompt, datetime(2024, 3, 1, 14, 0, tzinfo=plus_two)) == "2024-03-01T12:00:00.000Z"
        assert coerce_value(prompt, datetime(2024, 3, 1, 14, 0)) == "2024-03-01T14:00:00.000Z"

    def test_datetime_from_strings_and_dates(self) -> None:
        prompt = _prompt("datetime")
        assert coerce_value(prompt, "2024-03-01T08:00:00Z") == "2024-03-01T08:00:00.000Z"
        assert coerce_value(prompt, "2024-03-01") == "2024-03-01T00:00:00.000Z"
        assert coerce_value(prompt, date(2024, 3, 1)) == "2024-03-01T00:00:00.000Z"

    def test_datetime_rejects_garbage(self) -> None:
        with pytest.raises(ValidationFailedError):
            coerce_value(_prompt("datetime"), "next tuesday")

    def test_identity_defaults_to_acting_user(self) -> None:
        prompt = _prompt("identity", ref="System.AssignedTo")
        assert coerce_value(prompt, "", acting_user="me@example.com") == "me@example.com"
        assert coerce_value(prompt, None, acting_user="me@example.com") == "me@example.com"
        assert coerce_value(prompt, "you@example.com", acting_user="me@example.com") == "you@example.com"

    def test_identity_without_acting_user_is_missing(self) -> None:
        with pytest.raises(ValidationFailedError, match="required"):
            coerce_value(_prompt("identity", ref="System.AssignedTo"), "")

    def test_picklist_value_must_be_allowed(self) -> None:
        prompt = _prompt("picklist", allowed=("Fixed", "Won't Fix"))
        assert coerce_value(prompt, " Fixed ") == "Fixed"
        with pytest.raises(ValidationFailedError, match="not one of"):
            coerce_value(prompt, "Maybe")

    def test_string_is_stripped(self) -> None:
        assert coerce_value(_prompt("string"), "  hello ") == "hello"

    @pytest.mark.parametrize("missing", [None, "", "   "])
    def test_required_missing(self, missing: object) -> None:
        with pytest.raises(ValidationFailedError, match="a value is required"):
            coerce_value(_prompt("string"), missing)

    def test_optional_missing_is_none(self) -> None:
        assert coerce_value(_prompt("number", required=False), "") is None


class TestCoerceValues:
    def test_drops_unrequested_keys_and_empty_optionals(self, caplog: pytest.LogCaptureFixture) -> None:
        prompts = [_prompt("number", ref="A.Points"), _prompt("string", ref="A.Notes", required=False)]
        with caplog.at_level("WARNING", logger="adoflow.prompts"):
            result = coerce_values(prompts, {"A.Points": "3", "A.Notes": "", "Other.Field": "x"})
        assert result == {"A.Points": 3}
        assert "Other.Field" in caplog.text

    def test_fails_on_first_bad_field_in_prompt_order(self) -> None:
        prompts = [_prompt("number", ref="A.First"), _prompt("number", ref="A.Second")]
        with pytest.raises(ValidationFailedError) as exc_info:
            coerce_values(prompts, {"A.First": "x", "A.Second": "y"})
        assert exc_info.value.ref_name == "A.First"


class TestFormatDatetime:
    def test_truncates_to_milliseconds(self) -> None:
        assert format_datetime(datetime(2024, 1, 2, 3, 4, 5, 999999, tzinfo=UTC)) == "2024-01-02T03:04:05.999Z"
