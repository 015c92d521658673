"""
Value transformation and validation for extracted fields.
"""

import logging
import re
from typing import Optional

from dateutil import parser as date_parser

from ..schemas.rules import DataTransformation, FieldValidationRules
from ..schemas.validation import ValidationResult
from .regex_cache import RegexCache

logger = logging.getLogger(__name__)

SPECIAL_CHARS_RE = re.compile(r"[^a-zA-Z0-9\s]")
WHITESPACE_RE = re.compile(r"\s+")

# Named custom steps usable in DataTransformation.custom_transformations
CUSTOM_TRANSFORMATIONS = {
    "collapse_whitespace": lambda v: WHITESPACE_RE.sub(" ", v).strip(),
    "title_case": lambda v: v.title(),
    "strip_leading_zeros": lambda v: v.lstrip("0") or "0",
    "remove_spaces": lambda v: WHITESPACE_RE.sub("", v),
}

# Named checks usable in FieldValidationRules.custom_validations
CUSTOM_VALIDATIONS = {
    "numeric": (lambda v: v.replace(".", "", 1).isdigit(), "Value must be numeric"),
    "alphanumeric": (lambda v: v.isalnum(), "Value must be alphanumeric"),
    "no_whitespace": (lambda v: not WHITESPACE_RE.search(v), "Value must not contain whitespace"),
    "date": (lambda v: parse_date(v) is not None, "Value must be a date"),
}


def parse_date(value: str):
    try:
        return date_parser.parse(value)
    except (ValueError, OverflowError):
        return None


def apply_transformation(value: Optional[str], transformation: DataTransformation) -> Optional[str]:
    """Trim, case, strip special characters, then reformat dates."""
    if not value:
        return value

    result = value
    if transformation.trim_whitespace:
        result = result.strip()
    if transformation.to_lower_case:
        result = result.lower()
    if transformation.to_upper_case:
        result = result.upper()
    if transformation.remove_special_characters:
        result = SPECIAL_CHARS_RE.sub("", result)
    if transformation.format_as_date:
        parsed = parse_date(result)
        if parsed is not None:
            result = parsed.strftime(transformation.date_format)
        else:
            logger.debug(f"Could not parse '{result}' as a date; keeping raw value")

    for name in transformation.custom_transformations:
        step = CUSTOM_TRANSFORMATIONS.get(name)
        if step is None:
            logger.warning(f"Unknown custom transformation '{name}' skipped")
            continue
        result = step(result)
    return result


def validate_value(
    value: Optional[str],
    rules: FieldValidationRules,
    is_required: bool,
    regex_cache: Optional[RegexCache] = None,
) -> ValidationResult:
    """
    Check an extracted value against field rules.

    A required field without a value is reported with ``metadata["required_missing"]``
    so the caller can treat it as a hard failure; every other problem only
    marks the value invalid.
    """
    result = ValidationResult()
    if not value:
        if is_required:
            result.add_error("Required field is empty")
            result.metadata["required_missing"] = True
        elif not rules.allow_empty:
            result.add_error("Empty value is not allowed")
        return result

    if rules.min_length is not None and len(value) < rules.min_length:
        result.add_error(f"Value is too short (minimum {rules.min_length} characters)")
    if rules.max_length is not None and len(value) > rules.max_length:
        result.add_error(f"Value is too long (maximum {rules.max_length} characters)")

    if rules.regex_pattern:
        cache = regex_cache or RegexCache()
        compiled = cache.try_get(rules.regex_pattern)
        if compiled is None:
            result.add_warning("Validation pattern is invalid")
        elif not compiled.search(value):
            result.add_error("Value does not match required pattern")

    for name in rules.custom_validations:
        check = CUSTOM_VALIDATIONS.get(name)
        if check is None:
            result.add_warning(f"Unknown custom validation '{name}'")
            continue
        predicate, message = check
        if not predicate(value):
            result.add_error(message)
    return result
