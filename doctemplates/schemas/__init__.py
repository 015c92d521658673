"""
Template, document and result models.
"""

from .document import DocumentStructure, LayoutToken, ProcessedDocument
from .enums import (
    ChangeType,
    CoordinateSystem,
    ExtractionMethod,
    FieldType,
    InheritanceMode,
    LayoutType,
    MergeProperty,
    OverrideAction,
    Provenance,
    ValidationStatus,
    ZoneType,
)
from .results import (
    BatchMatchResult,
    ConfidenceScore,
    FieldExtractionResult,
    InheritanceResult,
    MatchOutcome,
    TemplateComparisonResult,
    TemplateExtractionResult,
    TemplateMatchResult,
    TemplatePerformanceAnalysis,
)
from .rules import (
    DataTransformation,
    FallbackOptions,
    FieldOverride,
    FieldValidationRules,
    InheritanceConfig,
)
from .template import (
    ExtractionZone,
    InheritanceRelationship,
    MatchingCriteria,
    Template,
    TemplateChangeRecord,
    TemplateField,
    UsageStats,
)
from .validation import ValidationResult

__all__ = [
    "DocumentStructure",
    "LayoutToken",
    "ProcessedDocument",
    "ChangeType",
    "CoordinateSystem",
    "ExtractionMethod",
    "FieldType",
    "InheritanceMode",
    "LayoutType",
    "MergeProperty",
    "OverrideAction",
    "Provenance",
    "ValidationStatus",
    "ZoneType",
    "BatchMatchResult",
    "ConfidenceScore",
    "FieldExtractionResult",
    "InheritanceResult",
    "MatchOutcome",
    "TemplateComparisonResult",
    "TemplateExtractionResult",
    "TemplateMatchResult",
    "TemplatePerformanceAnalysis",
    "DataTransformation",
    "FallbackOptions",
    "FieldOverride",
    "FieldValidationRules",
    "InheritanceConfig",
    "ExtractionZone",
    "InheritanceRelationship",
    "MatchingCriteria",
    "Template",
    "TemplateChangeRecord",
    "TemplateField",
    "UsageStats",
    "ValidationResult",
]
