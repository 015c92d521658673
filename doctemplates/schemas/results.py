# doctemplates/schemas/results.py
"""
Result records produced by matching, extraction and inheritance resolution.

Results are transient: the core builds them per call and never keeps them.
All of them serialize to JSON-friendly dicts via ``to_dict``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .enums import ExtractionMethod, Provenance
from .template import Template
from .validation import ValidationResult


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


@dataclass
class ConfidenceScore:
    """
    Weighted similarity between a document and a template.

    Each sub-score lies in [0, 1]; ``overall`` is the weighted sum (clamped to
    [0, 1] so caller-supplied weights that do not sum to 1.0 stay in range).
    ``detailed_scores`` holds supplementary signals such as
    ``RequiredKeywordMatch``, ``ComplexityMatch`` and ``LanguageMatch``.
    """
    format_match: float = 0.0
    keyword_match: float = 0.0
    pattern_match: float = 0.0
    structure_match: float = 0.0
    metadata_match: float = 0.0
    filename_match: float = 0.0
    overall: float = 0.0
    detailed_scores: Dict[str, float] = field(default_factory=dict)

    @property
    def sub_scores(self) -> Dict[str, float]:
        return {
            "format": self.format_match,
            "keyword": self.keyword_match,
            "pattern": self.pattern_match,
            "structure": self.structure_match,
            "metadata": self.metadata_match,
            "filename": self.filename_match,
        }

    def compute_overall(self, weights: Dict[str, float]) -> float:
        self.overall = _clamp(
            sum(score * weights.get(name, 0.0) for name, score in self.sub_scores.items())
        )
        return self.overall

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall": round(self.overall, 4),
            **{name: round(v, 4) for name, v in self.sub_scores.items()},
            "detailed_scores": {k: round(v, 4) for k, v in self.detailed_scores.items()},
        }


@dataclass
class TemplateMatchResult:
    """One template scored against one document."""
    template: Template
    confidence: ConfidenceScore
    matching_time: float = 0.0  # seconds
    match_reasons: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def template_id(self) -> str:
        return self.template.template_id

    @property
    def overall(self) -> float:
        return self.confidence.overall

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template.template_id,
            "template_name": self.template.name,
            "template_version": self.template.version,
            "confidence": self.confidence.to_dict(),
            "matching_time": round(self.matching_time, 4),
            "match_reasons": list(self.match_reasons),
            "warnings": list(self.warnings),
            "metadata": dict(self.metadata),
        }


@dataclass
class MatchOutcome:
    """
    Best-match answer for one document.

    Unsuccessful outcomes carry ``overall == 0.0`` and a reason; the closest
    candidate below the threshold, if any, is kept in ``best_candidate``.
    """
    document_id: str
    match: Optional[TemplateMatchResult] = None
    reason: str = ""
    best_candidate: Optional[TemplateMatchResult] = None

    @property
    def success(self) -> bool:
        return self.match is not None

    @property
    def overall(self) -> float:
        return self.match.overall if self.match is not None else 0.0

    @property
    def template(self) -> Optional[Template]:
        return self.match.template if self.match is not None else None

    @classmethod
    def failure(
        cls,
        document_id: str,
        reason: str,
        best_candidate: Optional[TemplateMatchResult] = None,
    ) -> "MatchOutcome":
        return cls(document_id=document_id, reason=reason, best_candidate=best_candidate)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "success": self.success,
            "overall": round(self.overall, 4),
            "reason": self.reason,
            "match": self.match.to_dict() if self.match is not None else None,
        }


@dataclass
class BatchMatchResult:
    """Best-match outcome per document for a batch run."""
    results: Dict[str, MatchOutcome] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    total_documents: int = 0
    processing_time: float = 0.0

    @property
    def matched_documents(self) -> int:
        return sum(1 for r in self.results.values() if r.success)

    @property
    def unmatched_documents(self) -> int:
        return self.total_documents - self.matched_documents

    @property
    def success_rate(self) -> float:
        return self.matched_documents / self.total_documents if self.total_documents else 0.0

    @property
    def average_confidence(self) -> float:
        scores = [r.overall for r in self.results.values() if r.success]
        return sum(scores) / len(scores) if scores else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_documents": self.total_documents,
            "matched_documents": self.matched_documents,
            "unmatched_documents": self.unmatched_documents,
            "success_rate": round(self.success_rate, 4),
            "average_confidence": round(self.average_confidence, 4),
            "processing_time": round(self.processing_time, 4),
            "results": {k: v.to_dict() for k, v in self.results.items()},
            "errors": dict(self.errors),
        }


@dataclass
class FieldExtractionResult:
    """Outcome of extracting one field."""
    field_name: str
    success: bool = False
    value: Optional[str] = None
    all_values: List[str] = field(default_factory=list)
    confidence: float = 0.0
    method: Optional[ExtractionMethod] = None
    is_required: bool = False
    is_valid: bool = True
    validation: Optional[ValidationResult] = None
    error_message: Optional[str] = None
    source_zone_id: Optional[str] = None
    extraction_time: float = 0.0
    attempts: List[str] = field(default_factory=list)

    @classmethod
    def failure(cls, field_name: str, message: str, method: Optional[ExtractionMethod] = None) -> "FieldExtractionResult":
        return cls(field_name=field_name, success=False, confidence=0.0, method=method, error_message=message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_name": self.field_name,
            "success": self.success,
            "value": self.value,
            "all_values": list(self.all_values),
            "confidence": round(self.confidence, 4),
            "method": self.method.value if self.method else None,
            "is_required": self.is_required,
            "is_valid": self.is_valid,
            "validation": self.validation.to_dict() if self.validation else None,
            "error_message": self.error_message,
            "source_zone_id": self.source_zone_id,
            "extraction_time": round(self.extraction_time, 4),
            "attempts": list(self.attempts),
        }


@dataclass
class TemplateExtractionResult:
    """Aggregate extraction outcome for one document and one template."""
    template_id: str
    template_version: str
    document_id: str
    field_results: Dict[str, FieldExtractionResult] = field(default_factory=dict)
    overall_confidence: float = 0.0
    success: bool = False
    error_message: Optional[str] = None
    extraction_time: float = 0.0

    @property
    def values(self) -> Dict[str, Optional[str]]:
        return {name: r.value for name, r in self.field_results.items() if r.success}

    @property
    def successful_fields(self) -> int:
        return sum(1 for r in self.field_results.values() if r.success)

    @property
    def failed_required_fields(self) -> List[str]:
        return [name for name, r in self.field_results.items() if r.is_required and not r.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "template_version": self.template_version,
            "document_id": self.document_id,
            "success": self.success,
            "overall_confidence": round(self.overall_confidence, 4),
            "error_message": self.error_message,
            "extraction_time": round(self.extraction_time, 4),
            "fields": {k: v.to_dict() for k, v in self.field_results.items()},
        }


@dataclass
class InheritanceResult:
    """A template resolved against its parent chain."""
    template: Template
    chain: List[str] = field(default_factory=list)  # root first, template last
    field_provenance: Dict[str, Provenance] = field(default_factory=dict)
    setting_provenance: Dict[str, Provenance] = field(default_factory=dict)
    field_sources: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template.template_id,
            "chain": list(self.chain),
            "field_provenance": {k: v.value for k, v in self.field_provenance.items()},
            "setting_provenance": {k: v.value for k, v in self.setting_provenance.items()},
            "field_sources": dict(self.field_sources),
            "warnings": list(self.warnings),
            "errors": list(self.errors),
        }


@dataclass
class TemplatePerformanceAnalysis:
    template_id: str
    template_name: str
    total_uses: int = 0
    success_rate: float = 0.0
    average_confidence: float = 0.0
    average_extraction_time: float = 0.0
    performance_score: float = 0.0
    optimization_suggestions: List[str] = field(default_factory=list)
    category_metrics: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "template_name": self.template_name,
            "total_uses": self.total_uses,
            "success_rate": round(self.success_rate, 4),
            "average_confidence": round(self.average_confidence, 4),
            "average_extraction_time": round(self.average_extraction_time, 4),
            "performance_score": round(self.performance_score, 4),
            "optimization_suggestions": list(self.optimization_suggestions),
            "category_metrics": dict(self.category_metrics),
        }


@dataclass
class TemplateComparisonResult:
    """Differences between two versions of a template."""
    template_id: str
    from_version: str
    to_version: str
    added_fields: List[str] = field(default_factory=list)
    removed_fields: List[str] = field(default_factory=list)
    modified_fields: List[str] = field(default_factory=list)
    changed_properties: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def has_changes(self) -> bool:
        return bool(self.added_fields or self.removed_fields or self.modified_fields or self.changed_properties)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "from_version": self.from_version,
            "to_version": self.to_version,
            "added_fields": list(self.added_fields),
            "removed_fields": list(self.removed_fields),
            "modified_fields": list(self.modified_fields),
            "changed_properties": dict(self.changed_properties),
        }
