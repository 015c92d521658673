"""
Upload record composition.

Turns a document and its extraction result into a stable, versioned,
JSON-serializable record for the downstream upload client:
- title: document title, falling back to the file stem
- fields: accepted values by field name; a list only for multi-valued fields
- confidence: overall and per-field confidences
- review: fields that need a human look (failed required / invalid / low confidence)
- document: minimal metadata snapshot
- template: id, name, version

The core never sends the record anywhere.
"""

import logging
from typing import Any, Dict, List, Optional

from ..schemas.document import ProcessedDocument
from ..schemas.results import TemplateExtractionResult
from ..schemas.template import Template

logger = logging.getLogger(__name__)

RECORD_SCHEMA_VERSION = "1.0"
LOW_CONFIDENCE = 0.5


def _review_items(result: TemplateExtractionResult, low_confidence: float) -> List[Dict[str, Any]]:
    items = []
    for name, field_result in result.field_results.items():
        if field_result.is_required and not field_result.success:
            items.append({"field": name, "reason": field_result.error_message or "Required field missing"})
        elif field_result.success and not field_result.is_valid:
            errors = field_result.validation.errors if field_result.validation else []
            items.append({"field": name, "reason": "; ".join(errors) or "Invalid value"})
        elif field_result.success and field_result.confidence < low_confidence:
            items.append({"field": name, "reason": f"Low confidence ({field_result.confidence:.2f})"})
    return items


def _field_value(name: str, field_result, template: Optional[Template]) -> Any:
    # lists only for fields declared multi-valued
    field = template.get_field(name) if template is not None else None
    if field is not None and field.allow_multiple_values and len(field_result.all_values) > 1:
        return list(field_result.all_values)
    return field_result.value


def compose_record(
    document: ProcessedDocument,
    result: TemplateExtractionResult,
    template: Optional[Template] = None,
    low_confidence: float = LOW_CONFIDENCE,
) -> Dict[str, Any]:
    """
    Build the upload record.

    Args:
        document: Source document
        result: Extraction result for ``document``
        template: Template used (adds its name and tags, and lets
            multi-valued fields keep every value)
        low_confidence: Fields below this confidence are flagged for review

    Returns:
        Dict safe for ``json.dumps``
    """
    record: Dict[str, Any] = {
        "schema_version": RECORD_SCHEMA_VERSION,
        "title": document.title or document.file_stem,
        "fields": {
            name: _field_value(name, r, template)
            for name, r in result.field_results.items() if r.success
        },
        "confidence": {
            "overall": round(result.overall_confidence, 4),
            "fields": {name: round(r.confidence, 4) for name, r in result.field_results.items()},
        },
        "review": _review_items(result, low_confidence),
        "document": {
            "document_id": document.document_id,
            "file_name": document.file_name,
            "page_count": document.page_count,
            "metadata": document.metadata_snapshot(),
        },
        "template": {
            "template_id": result.template_id,
            "version": result.template_version,
        },
    }
    if template is not None:
        record["template"]["name"] = template.name
        record["tags"] = list(template.tags)

    logger.debug(
        f"Composed record for {document.document_id}: {len(record['fields'])} fields, "
        f"{len(record['review'])} to review"
    )
    return record
