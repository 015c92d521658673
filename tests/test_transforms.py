"""
Tests for value transformation and validation.
"""

from doctemplates.pipelines.transforms import apply_transformation, validate_value
from doctemplates.schemas.rules import DataTransformation, FieldValidationRules


class TestApplyTransformation:
    """Tests for apply_transformation."""

    def test_trim_and_upper(self):
        assert apply_transformation("  inc-42  ", DataTransformation(to_upper_case=True)) == "INC-42"

    def test_upper_wins_over_lower(self):
        transformation = DataTransformation(to_lower_case=True, to_upper_case=True)
        assert apply_transformation("Mixed", transformation) == "MIXED"

    def test_trim_disabled(self):
        assert apply_transformation("  x ", DataTransformation(trim_whitespace=False)) == "  x "

    def test_remove_special_characters(self):
        transformation = DataTransformation(remove_special_characters=True)
        assert apply_transformation("AB-12#/x", transformation) == "AB12x"

    def test_date_reformatted(self):
        transformation = DataTransformation(format_as_date=True, date_format="%d/%m/%Y")
        assert apply_transformation("January 15, 2024", transformation) == "15/01/2024"

    def test_unparseable_date_kept(self):
        transformation = DataTransformation(format_as_date=True)
        assert apply_transformation("not a date at all", transformation) == "not a date at all"

    def test_custom_steps_run_in_order(self):
        transformation = DataTransformation(custom_transformations=["collapse_whitespace", "title_case"])
        assert apply_transformation("jane    smith", transformation) == "Jane Smith"

    def test_unknown_custom_step_skipped(self):
        transformation = DataTransformation(custom_transformations=["rot13", "remove_spaces"])
        assert apply_transformation("a b c", transformation) == "abc"

    def test_empty_value_untouched(self):
        assert apply_transformation("", DataTransformation(to_upper_case=True)) == ""
        assert apply_transformation(None, DataTransformation()) is None


class TestValidateValue:
    """Tests for validate_value."""

    def test_valid_value(self):
        rules = FieldValidationRules(min_length=2, max_length=10, regex_pattern=r"^[A-Z]+-\d+$")
        result = validate_value("INC-42", rules, is_required=True)
        assert result.is_valid
        assert result.errors == []

    def test_length_bounds(self):
        rules = FieldValidationRules(min_length=3, max_length=5)
        assert not validate_value("ab", rules, False).is_valid
        assert not validate_value("abcdef", rules, False).is_valid
        assert validate_value("abcd", rules, False).is_valid

    def test_regex_mismatch(self):
        result = validate_value("abc", FieldValidationRules(regex_pattern=r"^\d+$"), False)
        assert result.errors == ["Value does not match required pattern"]

    def test_required_missing_flagged(self):
        result = validate_value("", FieldValidationRules(), is_required=True)
        assert not result.is_valid
        assert result.metadata["required_missing"] is True

    def test_empty_optional(self):
        assert validate_value(None, FieldValidationRules(), False).is_valid

        result = validate_value(None, FieldValidationRules(allow_empty=False), False)
        assert not result.is_valid
        assert "required_missing" not in result.metadata

    def test_custom_validations(self):
        rules = FieldValidationRules(custom_validations=["numeric"])
        assert validate_value("12.50", rules, False).is_valid
        assert validate_value("12a", rules, False).errors == ["Value must be numeric"]

        date_rules = FieldValidationRules(custom_validations="date")
        assert validate_value("2024-03-01", date_rules, False).is_valid

    def test_unknown_custom_validation_warns(self):
        result = validate_value("x", FieldValidationRules(custom_validations=["luhn"]), False)
        assert result.is_valid
        assert result.warnings
