# doctemplates/schemas/template.py
"""
Extraction template model.

A Template owns an ordered collection of TemplateFields; each field names an
extraction method, its patterns/keywords/zones and the nested rule blobs
(validation, transformation, fallback) defined in ``rules.py``.

Templates serialize to plain dicts (``to_dict`` / ``from_dict``) so they can
live in YAML or JSON files and in the template store.
"""

import copy
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .enums import (
    CoordinateSystem,
    ExtractionMethod,
    FieldType,
    InheritanceMode,
    ValidationStatus,
    ChangeType,
    ZoneType,
)
from .rules import DataTransformation, FallbackOptions, FieldValidationRules, InheritanceConfig
from .validation import ValidationResult

EMAIL_REGEX = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"
FIELD_NAME_REGEX = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")

DEFAULT_CATEGORY = "General"
DEFAULT_CONFIDENCE_THRESHOLD = 0.75


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass
class ExtractionZone:
    """Geometric region on a page associated with a field."""
    x: float
    y: float
    width: float
    height: float
    page_number: int = 1
    coordinate_system: CoordinateSystem = CoordinateSystem.PIXEL
    zone_type: ZoneType = ZoneType.TEXT
    priority: int = 0
    is_active: bool = True
    position_tolerance: float = 0.1
    size_tolerance: float = 0.1
    name: str = ""
    zone_id: str = field(default_factory=new_id)

    def validate(self) -> ValidationResult:
        result = ValidationResult()
        if self.width <= 0:
            result.add_error("Zone width must be greater than 0")
        if self.height <= 0:
            result.add_error("Zone height must be greater than 0")
        if self.page_number <= 0:
            result.add_error("Page number must be greater than 0")

        if self.coordinate_system == CoordinateSystem.PERCENTAGE:
            if not (0 <= self.x <= 100 and 0 <= self.y <= 100):
                result.add_error("Percentage coordinates must be between 0 and 100")
            if self.x + self.width > 100 or self.y + self.height > 100:
                result.add_error("Zone extends beyond document boundaries (percentage)")
        elif self.coordinate_system == CoordinateSystem.NORMALIZED:
            if self.x < 0 or self.y < 0 or self.x + self.width > 1 or self.y + self.height > 1:
                result.add_error("Normalized coordinates must lie within 0..1")
        elif self.x < 0 or self.y < 0:
            result.add_error(f"{self.coordinate_system.value.capitalize()} coordinates cannot be negative")

        if self.position_tolerance < 0 or self.size_tolerance < 0:
            result.add_error("Zone tolerances cannot be negative")
        return result

    def same_region(self, other: "ExtractionZone") -> bool:
        return (
            self.page_number == other.page_number
            and self.coordinate_system == other.coordinate_system
            and (self.x, self.y, self.width, self.height)
            == (other.x, other.y, other.width, other.height)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zone_id": self.zone_id,
            "name": self.name,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "page_number": self.page_number,
            "coordinate_system": self.coordinate_system.value,
            "zone_type": self.zone_type.value,
            "priority": self.priority,
            "is_active": self.is_active,
            "position_tolerance": self.position_tolerance,
            "size_tolerance": self.size_tolerance,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ExtractionZone":
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data["width"]),
            height=float(data["height"]),
            page_number=int(data.get("page_number", 1)),
            coordinate_system=CoordinateSystem(data.get("coordinate_system", "pixel")),
            zone_type=ZoneType(data.get("zone_type", "text")),
            priority=int(data.get("priority", 0)),
            is_active=bool(data.get("is_active", True)),
            position_tolerance=float(data.get("position_tolerance", 0.1)),
            size_tolerance=float(data.get("size_tolerance", 0.1)),
            name=data.get("name", ""),
            zone_id=data.get("zone_id") or new_id(),
        )


@dataclass
class TemplateField:
    """One value to extract from a document."""
    name: str
    field_type: FieldType = FieldType.TEXT
    extraction_method: ExtractionMethod = ExtractionMethod.TEXT
    text_patterns: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    is_required: bool = False
    is_active: bool = True
    processing_order: int = 0
    confidence_threshold: float = 0.7
    default_value: Optional[str] = None
    allow_multiple_values: bool = False
    multi_value_separator: str = ";"
    display_name: str = ""
    description: Optional[str] = None
    validation_rules: FieldValidationRules = field(default_factory=FieldValidationRules)
    transformation: DataTransformation = field(default_factory=DataTransformation)
    fallback: FallbackOptions = field(default_factory=FallbackOptions)
    extraction_zones: List[ExtractionZone] = field(default_factory=list)
    field_id: str = field(default_factory=new_id)

    def __post_init__(self):
        if self.field_type == FieldType.EMAIL and not self.validation_rules.regex_pattern:
            self.validation_rules = self.validation_rules.model_copy(
                update={"regex_pattern": EMAIL_REGEX}
            )

    def validate(self) -> ValidationResult:
        result = ValidationResult()
        if not self.name or not self.name.strip():
            result.add_error("Field name is required")
        elif not FIELD_NAME_REGEX.match(self.name):
            result.add_error(
                "Field name must start with a letter and contain only letters, numbers, and underscores"
            )

        if (
            self.extraction_method != ExtractionMethod.DEFAULT
            and not (self.extraction_zones or self.text_patterns or self.keywords)
        ):
            result.add_error("Field must have at least one extraction zone, text pattern, or keyword")

        for pattern in list(self.text_patterns) + list(self.fallback.fallback_patterns):
            try:
                re.compile(pattern)
            except re.error:
                result.add_error(f"Invalid regex pattern: {pattern}")

        for zone in self.extraction_zones:
            result.extend(zone.validate(), prefix="Extraction zone error: ")

        if not 0.0 <= self.confidence_threshold <= 1.0:
            result.add_error("Confidence threshold must be between 0.0 and 1.0")

        if self.field_type == FieldType.USERNAME and not self.validation_rules.regex_pattern:
            result.add_warning("Username field should have a regex pattern for validation")
        elif self.field_type == FieldType.TICKET_NUMBER and not self.text_patterns:
            result.add_warning("Ticket number field should have text patterns for extraction")
        elif self.field_type == FieldType.DATE and not self.transformation.format_as_date:
            result.add_warning("Date field should enable date formatting in transformation")
        return result

    def copy(self) -> "TemplateField":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_id": self.field_id,
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "field_type": self.field_type.value,
            "extraction_method": self.extraction_method.value,
            "text_patterns": list(self.text_patterns),
            "keywords": list(self.keywords),
            "is_required": self.is_required,
            "is_active": self.is_active,
            "processing_order": self.processing_order,
            "confidence_threshold": self.confidence_threshold,
            "default_value": self.default_value,
            "allow_multiple_values": self.allow_multiple_values,
            "multi_value_separator": self.multi_value_separator,
            "validation_rules": self.validation_rules.model_dump(mode="json"),
            "transformation": self.transformation.model_dump(mode="json"),
            "fallback": self.fallback.model_dump(mode="json"),
            "extraction_zones": [z.to_dict() for z in self.extraction_zones],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "TemplateField":
        return cls(
            name=data["name"],
            field_type=FieldType(data.get("field_type", "text")),
            extraction_method=ExtractionMethod(data.get("extraction_method", "text")),
            text_patterns=list(data.get("text_patterns") or []),
            keywords=list(data.get("keywords") or []),
            is_required=bool(data.get("is_required", False)),
            is_active=bool(data.get("is_active", True)),
            processing_order=int(data.get("processing_order", 0)),
            confidence_threshold=float(data.get("confidence_threshold", 0.7)),
            default_value=data.get("default_value"),
            allow_multiple_values=bool(data.get("allow_multiple_values", False)),
            multi_value_separator=data.get("multi_value_separator", ";"),
            display_name=data.get("display_name", ""),
            description=data.get("description"),
            validation_rules=FieldValidationRules.model_validate(data.get("validation_rules") or {}),
            transformation=DataTransformation.model_validate(data.get("transformation") or {}),
            fallback=FallbackOptions.model_validate(data.get("fallback") or {}),
            extraction_zones=[ExtractionZone.from_dict(z) for z in data.get("extraction_zones") or []],
            field_id=data.get("field_id") or new_id(),
        )

    # ------------------------------------------------------------------
    # Factories for the common field kinds
    # ------------------------------------------------------------------

    @classmethod
    def username_field(cls, name: str = "document_author", display_name: str = "Document Author") -> "TemplateField":
        return cls(
            name=name,
            display_name=display_name,
            description="Extracts the username/author from the document",
            field_type=FieldType.USERNAME,
            is_required=True,
            text_patterns=[
                r"author:?\s*([a-zA-Z]+\.?[a-zA-Z]+)",
                r"created\s+by:?\s*([a-zA-Z]+\.?[a-zA-Z]+)",
                r"submitted\s+by:?\s*([a-zA-Z]+\.?[a-zA-Z]+)",
                r"([a-zA-Z]+\.[a-zA-Z]+)@\w+\.\w+",
            ],
            keywords=["author", "created by", "submitted by", "requestor"],
            validation_rules=FieldValidationRules(
                min_length=2, max_length=50, regex_pattern=r"^[a-zA-Z]+\.?[a-zA-Z]+$"
            ),
            transformation=DataTransformation(to_lower_case=True),
        )

    @classmethod
    def ticket_number_field(cls, name: str = "ticket_number", display_name: str = "Ticket Number") -> "TemplateField":
        return cls(
            name=name,
            display_name=display_name,
            description="Extracts ticket/case/request numbers from the document",
            field_type=FieldType.TICKET_NUMBER,
            text_patterns=[
                r"ticket\s*#?:?\s*([A-Z]+-?\d+)",
                r"case\s*#?:?\s*([A-Z]+-?\d+)",
                r"request\s*#?:?\s*([A-Z]+-?\d+)",
                r"incident\s*#?:?\s*([A-Z]+-?\d+)",
                r"\b([A-Z]{2,5}-\d{3,8})\b",
                r"\b(INC\d{7,10})\b",
                r"\b(REQ\d{7,10})\b",
            ],
            keywords=["ticket", "case", "request", "incident", "reference"],
            validation_rules=FieldValidationRules(
                min_length=3, max_length=20, regex_pattern=r"^[A-Z]+-?\d+$|^[A-Z]{3}\d{7,10}$"
            ),
            transformation=DataTransformation(to_upper_case=True),
            allow_multiple_values=True,
            multi_value_separator="; ",
        )

    @classmethod
    def date_field(cls, name: str = "document_date", display_name: str = "Document Date") -> "TemplateField":
        return cls(
            name=name,
            display_name=display_name,
            description="Extracts dates from the document",
            field_type=FieldType.DATE,
            text_patterns=[
                r"date:?\s*(\d{1,2}[/-]\d{1,2}[/-]\d{2,4})",
                r"created:?\s*(\d{1,2}[/-]\d{1,2}[/-]\d{2,4})",
                r"\b(\d{4}[/-]\d{1,2}[/-]\d{1,2})\b",
                r"\b(\d{1,2}[/-]\d{1,2}[/-]\d{2,4})\b",
                r"\b((?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+\d{1,2},?\s+\d{4})\b",
            ],
            keywords=["date", "created", "modified", "submitted", "approved"],
            validation_rules=FieldValidationRules(min_length=8, max_length=20),
            transformation=DataTransformation(format_as_date=True, date_format="%Y-%m-%d"),
        )

    @classmethod
    def custom_field(cls, name: str, display_name: str, field_type: FieldType = FieldType.CUSTOM) -> "TemplateField":
        return cls(
            name=name,
            display_name=display_name,
            description=f"Custom field: {display_name}",
            field_type=field_type,
            validation_rules=FieldValidationRules(min_length=1, max_length=500),
        )


@dataclass
class MatchingCriteria:
    """Per-template matching thresholds, hints and factor weights."""
    minimum_confidence: float = 0.75
    auto_apply: bool = False
    format_weight: float = 0.15
    keyword_weight: float = 0.30
    pattern_weight: float = 0.20
    structure_weight: float = 0.15
    metadata_weight: float = 0.10
    filename_weight: float = 0.10
    required_keywords: List[str] = field(default_factory=list)
    optional_keywords: List[str] = field(default_factory=list)
    expected_patterns: List[str] = field(default_factory=list)
    file_name_patterns: List[str] = field(default_factory=list)
    title_patterns: List[str] = field(default_factory=list)
    author_patterns: List[str] = field(default_factory=list)

    WEIGHT_NAMES = (
        "format_weight",
        "keyword_weight",
        "pattern_weight",
        "structure_weight",
        "metadata_weight",
        "filename_weight",
    )

    @property
    def weights(self) -> Dict[str, float]:
        return {
            "format": self.format_weight,
            "keyword": self.keyword_weight,
            "pattern": self.pattern_weight,
            "structure": self.structure_weight,
            "metadata": self.metadata_weight,
            "filename": self.filename_weight,
        }

    def validate_weights(self) -> ValidationResult:
        result = ValidationResult()
        for name in self.WEIGHT_NAMES:
            if getattr(self, name) < 0:
                result.add_error(f"{name} cannot be negative")
        total = sum(self.weights.values())
        if abs(total - 1.0) > 1e-6:
            result.add_warning(f"Matching weights sum to {total:.3f}, not 1.0")
        return result

    def copy(self) -> "MatchingCriteria":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minimum_confidence": self.minimum_confidence,
            "auto_apply": self.auto_apply,
            **{name: getattr(self, name) for name in self.WEIGHT_NAMES},
            "required_keywords": list(self.required_keywords),
            "optional_keywords": list(self.optional_keywords),
            "expected_patterns": list(self.expected_patterns),
            "file_name_patterns": list(self.file_name_patterns),
            "title_patterns": list(self.title_patterns),
            "author_patterns": list(self.author_patterns),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "MatchingCriteria":
        data = data or {}
        defaults = cls()
        kwargs: Dict[str, Any] = {
            "minimum_confidence": float(data.get("minimum_confidence", defaults.minimum_confidence)),
            "auto_apply": bool(data.get("auto_apply", defaults.auto_apply)),
        }
        for name in cls.WEIGHT_NAMES:
            kwargs[name] = float(data.get(name, getattr(defaults, name)))
        for name in (
            "required_keywords",
            "optional_keywords",
            "expected_patterns",
            "file_name_patterns",
            "title_patterns",
            "author_patterns",
        ):
            kwargs[name] = list(data.get(name) or [])
        return cls(**kwargs)


@dataclass
class UsageStats:
    total_uses: int = 0
    successful_uses: int = 0
    failed_uses: int = 0
    average_extraction_time: float = 0.0  # seconds
    average_confidence: float = 0.0
    last_used: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        return self.successful_uses / self.total_uses if self.total_uses else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_uses": self.total_uses,
            "successful_uses": self.successful_uses,
            "failed_uses": self.failed_uses,
            "average_extraction_time": self.average_extraction_time,
            "average_confidence": self.average_confidence,
            "last_used": self.last_used.isoformat() if self.last_used else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "UsageStats":
        data = data or {}
        return cls(
            total_uses=int(data.get("total_uses", 0)),
            successful_uses=int(data.get("successful_uses", 0)),
            failed_uses=int(data.get("failed_uses", 0)),
            average_extraction_time=float(data.get("average_extraction_time", 0.0)),
            average_confidence=float(data.get("average_confidence", 0.0)),
            last_used=_parse_ts(data.get("last_used")),
        )


@dataclass
class Template:
    """An extraction template."""
    name: str
    fields: List[TemplateField] = field(default_factory=list)
    supported_formats: List[str] = field(default_factory=list)
    version: str = "1.0.0"
    category: str = DEFAULT_CATEGORY
    tags: List[str] = field(default_factory=list)
    description: Optional[str] = None
    matching_criteria: MatchingCriteria = field(default_factory=MatchingCriteria)
    is_active: bool = True
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    auto_apply: bool = False
    allow_partial_matches: bool = False
    priority: int = 0
    usage_stats: UsageStats = field(default_factory=UsageStats)
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    last_modified_at: datetime = field(default_factory=utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)
    template_id: str = field(default_factory=new_id)

    def get_field(self, name: str) -> Optional[TemplateField]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def active_fields(self) -> List[TemplateField]:
        """Active fields in processing order (ties broken by name)."""
        return sorted(
            (f for f in self.fields if f.is_active),
            key=lambda f: (f.processing_order, f.name),
        )

    def validate(self) -> ValidationResult:
        result = ValidationResult()
        if not self.name or not self.name.strip():
            result.add_error("Template name is required")
        if not self.fields:
            result.add_error("Template must have at least one field")
        if not self.supported_formats:
            result.add_error("Template must support at least one document format")

        for i, f in enumerate(self.fields):
            result.extend(f.validate(), prefix=f"Field {i + 1} ({f.name}): ")

        seen = set()
        for f in self.fields:
            if f.name in seen:
                result.add_error(f"Duplicate field name: {f.name}")
            seen.add(f.name)

        if not 0.0 <= self.confidence_threshold <= 1.0:
            result.add_error("Confidence threshold must be between 0.0 and 1.0")

        for pattern in self.matching_criteria.file_name_patterns:
            try:
                re.compile(pattern)
            except re.error:
                result.add_error(f"Invalid file name pattern: {pattern}")
        result.extend(self.matching_criteria.validate_weights(), prefix="Matching criteria: ")
        return result

    def record_usage(self, successful: bool, extraction_time: float, confidence: Optional[float] = None) -> None:
        """Update usage statistics after an extraction run."""
        stats = self.usage_stats
        previous = stats.total_uses
        stats.total_uses += 1
        if successful:
            stats.successful_uses += 1
        else:
            stats.failed_uses += 1
        stats.average_extraction_time = (
            stats.average_extraction_time * previous + extraction_time
        ) / stats.total_uses
        if confidence is not None:
            stats.average_confidence = (
                stats.average_confidence * previous + confidence
            ) / stats.total_uses
        stats.last_used = utcnow()

    def copy(self) -> "Template":
        return copy.deepcopy(self)

    def create_version(self, new_version: str) -> "Template":
        """Copy of this template at a new version; usage stats reset."""
        clone = self.copy()
        clone.version = new_version
        clone.usage_stats = UsageStats()
        clone.created_at = utcnow()
        clone.last_modified_at = clone.created_at
        return clone

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "category": self.category,
            "tags": list(self.tags),
            "supported_formats": list(self.supported_formats),
            "fields": [f.to_dict() for f in self.fields],
            "matching_criteria": self.matching_criteria.to_dict(),
            "is_active": self.is_active,
            "confidence_threshold": self.confidence_threshold,
            "auto_apply": self.auto_apply,
            "allow_partial_matches": self.allow_partial_matches,
            "priority": self.priority,
            "usage_stats": self.usage_stats.to_dict(),
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "last_modified_at": self.last_modified_at.isoformat(),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Template":
        now = utcnow()
        return cls(
            template_id=data.get("template_id") or new_id(),
            name=data["name"],
            description=data.get("description"),
            version=str(data.get("version", "1.0.0")),
            category=data.get("category", DEFAULT_CATEGORY),
            tags=list(data.get("tags") or []),
            supported_formats=[str(f).lower().lstrip(".") for f in data.get("supported_formats") or []],
            fields=[TemplateField.from_dict(f) for f in data.get("fields") or []],
            matching_criteria=MatchingCriteria.from_dict(data.get("matching_criteria")),
            is_active=bool(data.get("is_active", True)),
            confidence_threshold=float(data.get("confidence_threshold", DEFAULT_CONFIDENCE_THRESHOLD)),
            auto_apply=bool(data.get("auto_apply", False)),
            allow_partial_matches=bool(data.get("allow_partial_matches", False)),
            priority=int(data.get("priority", 0)),
            usage_stats=UsageStats.from_dict(data.get("usage_stats")),
            created_by=data.get("created_by"),
            created_at=_parse_ts(data.get("created_at")) or now,
            last_modified_at=_parse_ts(data.get("last_modified_at")) or now,
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class InheritanceRelationship:
    """Directed parent -> child edge in the template graph."""
    child_id: str
    parent_id: str
    config: InheritanceConfig = field(default_factory=InheritanceConfig)
    is_active: bool = True
    validation_status: ValidationStatus = ValidationStatus.VALID
    validation_message: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    relationship_id: str = field(default_factory=new_id)

    @property
    def mode(self) -> InheritanceMode:
        return self.config.mode

    @property
    def priority(self) -> int:
        return self.config.priority

    def to_dict(self) -> Dict[str, Any]:
        return {
            "relationship_id": self.relationship_id,
            "child_id": self.child_id,
            "parent_id": self.parent_id,
            "config": self.config.model_dump(mode="json"),
            "is_active": self.is_active,
            "validation_status": self.validation_status.value,
            "validation_message": self.validation_message,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "InheritanceRelationship":
        return cls(
            child_id=data["child_id"],
            parent_id=data["parent_id"],
            config=InheritanceConfig.model_validate(data.get("config") or {}),
            is_active=bool(data.get("is_active", True)),
            validation_status=ValidationStatus(data.get("validation_status", "valid")),
            validation_message=data.get("validation_message"),
            created_at=_parse_ts(data.get("created_at")) or utcnow(),
            relationship_id=data.get("relationship_id") or new_id(),
        )


@dataclass
class TemplateChangeRecord:
    """One entry in a template's change history."""
    template_id: str
    change_type: ChangeType
    description: str = ""
    version: Optional[str] = None
    changed_by: Optional[str] = None
    changed_at: datetime = field(default_factory=utcnow)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "change_type": self.change_type.value,
            "description": self.description,
            "version": self.version,
            "changed_by": self.changed_by,
            "changed_at": self.changed_at.isoformat(),
            "details": dict(self.details),
        }
