"""
Pydantic schemas for the nested configuration blobs stored inside templates.

Validation rules, transformations, fallback options and inheritance configs
travel inside template records (YAML/JSON). Each one carries a
``schema_version`` so stored documents can be migrated explicitly and fail
fast on malformed input.
"""

import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .enums import ExtractionMethod, InheritanceMode, MergeProperty, OverrideAction

RULES_SCHEMA_VERSION = 1


class _VersionedBlob(BaseModel):
    """Common base: version tag and strict field names."""
    model_config = {"extra": "forbid", "use_enum_values": False}

    schema_version: int = RULES_SCHEMA_VERSION

    @field_validator("schema_version")
    @classmethod
    def check_schema_version(cls, v):
        if v > RULES_SCHEMA_VERSION:
            raise ValueError(
                f"schema_version {v} is newer than supported ({RULES_SCHEMA_VERSION})"
            )
        return v


def _coerce_str_list(v):
    if v is None:
        return []
    if isinstance(v, str):
        return [v]
    return [str(item) for item in v]


class FieldValidationRules(_VersionedBlob):
    """Constraints applied to an extracted value."""
    min_length: Optional[int] = Field(default=None, ge=0)
    max_length: Optional[int] = Field(default=None, ge=0)
    regex_pattern: Optional[str] = None
    allow_empty: bool = True
    custom_validations: List[str] = Field(default_factory=list)

    @field_validator("custom_validations", mode="before")
    @classmethod
    def ensure_list(cls, v):
        return _coerce_str_list(v)

    @field_validator("regex_pattern")
    @classmethod
    def check_regex(cls, v):
        if v:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"Invalid validation regex '{v}': {e}")
        return v

    @model_validator(mode="after")
    def check_bounds(self):
        if (
            self.min_length is not None
            and self.max_length is not None
            and self.min_length > self.max_length
        ):
            raise ValueError("min_length cannot exceed max_length")
        return self


class DataTransformation(_VersionedBlob):
    """Post-processing applied to an accepted value."""
    to_lower_case: bool = False
    to_upper_case: bool = False
    trim_whitespace: bool = True
    remove_special_characters: bool = False
    format_as_date: bool = False
    date_format: str = "%Y-%m-%d"  # strftime format
    custom_transformations: List[str] = Field(default_factory=list)

    @field_validator("custom_transformations", mode="before")
    @classmethod
    def ensure_list(cls, v):
        return _coerce_str_list(v)


class FallbackOptions(_VersionedBlob):
    """Alternate methods and patterns tried when the primary method is weak."""
    enable_fallback: bool = True
    fallback_methods: List[ExtractionMethod] = Field(default_factory=list)
    fallback_patterns: List[str] = Field(default_factory=list)

    @field_validator("fallback_patterns", mode="before")
    @classmethod
    def ensure_list(cls, v):
        return _coerce_str_list(v)

    @field_validator("fallback_methods")
    @classmethod
    def no_default_method(cls, v):
        if ExtractionMethod.DEFAULT in v:
            raise ValueError("'default' is not a fallback method; use default_value")
        return v


class FieldOverride(_VersionedBlob):
    """Per-field inheritance action."""
    action: OverrideAction = OverrideAction.INHERIT
    merge_properties: List[MergeProperty] = Field(
        default_factory=lambda: [MergeProperty.TEXT_PATTERNS, MergeProperty.KEYWORDS]
    )


class InheritanceConfig(_VersionedBlob):
    """How a parent template's fields and settings flow into a child."""
    mode: InheritanceMode = InheritanceMode.FULL
    field_overrides: Dict[str, FieldOverride] = Field(default_factory=dict)
    allow_field_addition: bool = True
    allow_field_removal: bool = False
    allow_field_modification: bool = True
    allow_settings_override: bool = True
    priority: int = Field(default=0, ge=0)
    settings_overrides: Dict[str, Any] = Field(default_factory=dict)

    def action_for(self, field_name: str) -> FieldOverride:
        """Override for a field name, defaulting to plain inheritance."""
        override = self.field_overrides.get(field_name)
        if override is None:
            return FieldOverride()
        return override
