"""
Tests for the field extraction pipeline.

Covers the per-field flow (primary method, fallbacks, transformation,
validation, default value) and the document-level aggregation.
"""

import pytest

from doctemplates.config.matching_config import ExtractionSettings
from doctemplates.exceptions import OperationCancelled
from doctemplates.pipelines.cancellation import CancellationToken
from doctemplates.pipelines.extraction import FieldExtractionPipeline
from doctemplates.pipelines.zones import OcrProvider, ZoneExtraction
from doctemplates.repository.template_store import InMemoryTemplateStore
from doctemplates.schemas.document import LayoutToken, ProcessedDocument
from doctemplates.schemas.enums import CoordinateSystem, ExtractionMethod, FieldType, ZoneType
from doctemplates.schemas.rules import DataTransformation, FallbackOptions, FieldValidationRules
from doctemplates.schemas.template import ExtractionZone, Template, TemplateField


SERVICE_REQUEST = """
Service Request
Ticket # XYZ-99 opened by the help desk
Requested by: jsmith
Date: 01/15/2024
Affected systems: ABC-123 and DEF-456 and ABC-123
"""


def doc(text: str = SERVICE_REQUEST, **kwargs) -> ProcessedDocument:
    return ProcessedDocument(document_id=kwargs.pop("document_id", "request.txt"), text=text, **kwargs)


def template(*fields: TemplateField) -> Template:
    return Template(name="Service Requests", supported_formats=["txt"], fields=list(fields))


class FakeOcr(OcrProvider):
    def __init__(self, lines, confidence=0.85):
        self.lines = lines
        self.confidence = confidence
        self.calls = []

    def recognize(self, document, zone=None):
        self.calls.append(zone)
        return ZoneExtraction(values=list(self.lines), confidence=self.confidence)


class TestTextExtraction:
    """Tests for regex and keyword extraction."""

    def test_regex_hit(self):
        field = TemplateField(name="requester", text_patterns=[r"requested by:\s*(\w+)"])
        result = FieldExtractionPipeline().extract_field(doc(), field)

        assert result.success
        assert result.value == "jsmith"
        assert result.confidence == pytest.approx(0.9)
        assert result.method == ExtractionMethod.TEXT

    def test_keyword_fallback_value(self):
        field = TemplateField(name="ticket", field_type=FieldType.TICKET_NUMBER, keywords=["ticket"])
        result = FieldExtractionPipeline().extract_field(doc(), field)

        assert result.success
        assert result.value == "XYZ-99"
        assert result.confidence == pytest.approx(0.7)

    def test_no_match_fails(self):
        field = TemplateField(name="invoice", text_patterns=[r"invoice:\s*(\d+)"], keywords=["invoice"])
        result = FieldExtractionPipeline().extract_field(doc(), field)

        assert not result.success
        assert result.confidence == 0.0
        assert result.attempts

    def test_empty_document_fails(self):
        field = TemplateField(name="requester", text_patterns=[r"requested by:\s*(\w+)"])
        result = FieldExtractionPipeline().extract_field(doc(""), field)
        assert not result.success
        assert "no extracted text" in result.error_message

    def test_multiple_values(self):
        field = TemplateField(
            name="systems",
            text_patterns=[r"\b([A-Z]{3}-\d{3})\b"],
            allow_multiple_values=True,
            multi_value_separator="; ",
        )
        result = FieldExtractionPipeline().extract_field(doc(), field)

        assert result.all_values == ["ABC-123", "DEF-456"]
        assert result.value == "ABC-123; DEF-456"

    def test_single_value_takes_first_hit(self):
        field = TemplateField(name="system", text_patterns=[r"\b([A-Z]{3}-\d{3})\b"])
        assert FieldExtractionPipeline().extract_field(doc(), field).value == "ABC-123"


class TestFallbacks:
    """Tests for the fallback chain."""

    def test_fallback_method_replaces_weak_primary(self):
        settings = ExtractionSettings(keyword_confidence=0.4)
        field = TemplateField(
            name="requester",
            field_type=FieldType.USERNAME,
            keywords=["requested by"],
            confidence_threshold=0.6,
            fallback=FallbackOptions(fallback_methods=[ExtractionMethod.METADATA]),
        )
        result = FieldExtractionPipeline(settings).extract_field(doc(author="Jane Smith"), field)

        assert result.success
        assert result.value == "Jane Smith"
        assert result.confidence == pytest.approx(0.8)
        assert result.method == ExtractionMethod.METADATA
        assert len(result.attempts) == 2

    def test_weak_primary_kept_without_better_fallback(self):
        settings = ExtractionSettings(keyword_confidence=0.4)
        field = TemplateField(
            name="requester",
            field_type=FieldType.USERNAME,
            keywords=["requested by"],
            confidence_threshold=0.6,
            fallback=FallbackOptions(fallback_methods=[ExtractionMethod.METADATA]),
        )
        result = FieldExtractionPipeline(settings).extract_field(doc(), field)

        assert result.success
        assert result.value == "jsmith"
        assert result.confidence == pytest.approx(0.4)

    def test_fallback_disabled(self):
        settings = ExtractionSettings(keyword_confidence=0.4)
        field = TemplateField(
            name="requester",
            field_type=FieldType.USERNAME,
            keywords=["requested by"],
            confidence_threshold=0.6,
            fallback=FallbackOptions(enable_fallback=False, fallback_methods=[ExtractionMethod.METADATA]),
        )
        result = FieldExtractionPipeline(settings).extract_field(doc(author="Jane Smith"), field)
        assert result.value == "jsmith"
        assert len(result.attempts) == 1

    def test_fallback_patterns_only_after_failure(self):
        field = TemplateField(
            name="reference",
            text_patterns=[r"reference:\s*(\w+)"],
            fallback=FallbackOptions(fallback_patterns=[r"ticket\s*#\s*([A-Z]+-\d+)"]),
        )
        result = FieldExtractionPipeline().extract_field(doc(), field)

        assert result.success
        assert result.value == "XYZ-99"
        assert result.confidence == pytest.approx(0.9)


class TestTransformAndValidate:
    """Tests for transformation, validation and default values."""

    def test_transformation_applied(self):
        field = TemplateField(
            name="requester",
            text_patterns=[r"requested by:\s*(\w+)"],
            transformation=DataTransformation(to_upper_case=True),
        )
        assert FieldExtractionPipeline().extract_field(doc(), field).value == "JSMITH"

    def test_date_formatting(self):
        field = TemplateField(
            name="request_date",
            field_type=FieldType.DATE,
            text_patterns=[r"date:\s*(\S+)"],
            transformation=DataTransformation(format_as_date=True, date_format="%Y-%m-%d"),
        )
        assert FieldExtractionPipeline().extract_field(doc(), field).value == "2024-01-15"

    def test_invalid_value_caps_confidence(self):
        field = TemplateField(
            name="requester",
            text_patterns=[r"requested by:\s*(\w+)"],
            validation_rules=FieldValidationRules(min_length=10),
        )
        result = FieldExtractionPipeline().extract_field(doc(), field)

        assert result.success
        assert result.is_valid is False
        assert result.confidence == pytest.approx(0.5)
        assert result.validation.errors

    def test_regex_validation(self):
        field = TemplateField(
            name="ticket",
            text_patterns=[r"ticket\s*#\s*(\S+)"],
            validation_rules=FieldValidationRules(regex_pattern=r"^[A-Z]+-\d{4,}$"),
        )
        result = FieldExtractionPipeline().extract_field(doc(), field)
        assert result.is_valid is False

    def test_default_value(self):
        field = TemplateField(
            name="priority",
            text_patterns=[r"priority:\s*(\w+)"],
            default_value="normal",
        )
        result = FieldExtractionPipeline().extract_field(doc(), field)

        assert result.success
        assert result.value == "normal"
        assert result.confidence == pytest.approx(0.1)
        assert result.method == ExtractionMethod.DEFAULT

    def test_required_field_without_value(self):
        field = TemplateField(name="priority", text_patterns=[r"priority:\s*(\w+)"], is_required=True)
        result = FieldExtractionPipeline().extract_field(doc(), field)

        assert not result.success
        assert result.is_required
        assert result.validation.metadata.get("required_missing") is True


class TestOtherMethods:
    """Tests for coordinate, OCR, metadata and hybrid extraction."""

    def _zone_doc(self) -> ProcessedDocument:
        return doc(tokens=[
            LayoutToken("Invoice", 10, 10, 60, 20, confidence=0.9),
            LayoutToken("INV-7", 70, 10, 110, 20, confidence=0.7),
            LayoutToken("Footer", 10, 500, 60, 510),
        ])

    def test_coordinate_zone(self):
        zone = ExtractionZone(x=0, y=0, width=200, height=40)
        field = TemplateField(
            name="header",
            extraction_method=ExtractionMethod.COORDINATES,
            extraction_zones=[zone],
        )
        result = FieldExtractionPipeline().extract_field(self._zone_doc(), field)

        assert result.success
        assert result.value == "Invoice INV-7"
        assert result.confidence == pytest.approx(0.8)
        assert result.source_zone_id == zone.zone_id
        assert result.method == ExtractionMethod.COORDINATES

    def test_percentage_zone_needs_page_size(self):
        zone = ExtractionZone(x=0, y=0, width=50, height=10, coordinate_system=CoordinateSystem.PERCENTAGE)
        field = TemplateField(name="header", extraction_method=ExtractionMethod.COORDINATES, extraction_zones=[zone])

        missing = FieldExtractionPipeline().extract_field(self._zone_doc(), field)
        assert not missing.success

        sized = self._zone_doc()
        sized.processing_metadata = {"page_width": 400, "page_height": 600}
        assert FieldExtractionPipeline().extract_field(sized, field).value == "Invoice INV-7"

    def test_ocr_unavailable_fails_explicitly(self):
        field = TemplateField(name="scan", extraction_method=ExtractionMethod.OCR, text_patterns=[r"ticket:\s*(\S+)"])
        result = FieldExtractionPipeline().extract_field(doc(), field)

        assert not result.success
        assert "OCR provider is not available" in result.error_message

    def test_ocr_whole_document(self):
        ocr = FakeOcr(["Ticket: INC0001234"], confidence=0.85)
        field = TemplateField(name="scan", extraction_method=ExtractionMethod.OCR, text_patterns=[r"ticket:\s*(\S+)"])
        result = FieldExtractionPipeline(ocr_provider=ocr).extract_field(doc(), field)

        assert result.value == "INC0001234"
        assert result.confidence == pytest.approx(0.85)
        assert result.method == ExtractionMethod.OCR
        assert ocr.calls == [None]

    def test_ocr_zone_inside_coordinates(self):
        ocr = FakeOcr(["Signed J. Smith"], confidence=0.75)
        zone = ExtractionZone(x=0, y=0, width=10, height=10, zone_type=ZoneType.OCR)
        field = TemplateField(
            name="signature",
            extraction_method=ExtractionMethod.COORDINATES,
            extraction_zones=[zone],
            confidence_threshold=0.5,
        )
        result = FieldExtractionPipeline(ocr_provider=ocr).extract_field(doc(), field)
        assert result.value == "Signed J. Smith"
        assert ocr.calls == [zone]

    def test_metadata_by_type_and_keyword(self):
        field = TemplateField(
            name="department",
            extraction_method=ExtractionMethod.METADATA,
            keywords=["department"],
        )
        document = doc(custom_properties={"Department": "Finance"})
        result = FieldExtractionPipeline().extract_field(document, field)

        assert result.value == "Finance"
        assert result.confidence == pytest.approx(0.8)

    def test_hybrid_keeps_best_method(self):
        field = TemplateField(
            name="summary",
            extraction_method=ExtractionMethod.HYBRID,
            text_patterns=[r"(Service Request)"],
        )
        result = FieldExtractionPipeline().extract_field(doc(title="Quarterly report"), field)

        assert result.value == "Service Request"
        assert result.method == ExtractionMethod.TEXT
        assert result.confidence == pytest.approx(0.9)

    def test_hybrid_falls_to_metadata(self):
        field = TemplateField(
            name="summary",
            extraction_method=ExtractionMethod.HYBRID,
            text_patterns=[r"summary:\s*(.+)"],
        )
        result = FieldExtractionPipeline().extract_field(doc(title="Quarterly report"), field)
        assert result.value == "Quarterly report"
        assert result.method == ExtractionMethod.METADATA


class TestTemplateExtraction:
    """Tests for extracting a whole template."""

    def test_required_failure_weighting(self):
        required = TemplateField(name="invoice", text_patterns=[r"invoice:\s*(\d+)"], is_required=True)
        optional = TemplateField(name="requester", text_patterns=[r"requested by:\s*(\w+)"])
        result = FieldExtractionPipeline().extract(doc(), template(required, optional))

        assert result.success
        assert result.overall_confidence == pytest.approx(0.3)
        assert result.failed_required_fields == ["invoice"]
        assert result.values == {"requester": "jsmith"}

    def test_nothing_extracted(self):
        field = TemplateField(name="invoice", text_patterns=[r"invoice:\s*(\d+)"])
        result = FieldExtractionPipeline().extract(doc(), template(field))

        assert not result.success
        assert result.overall_confidence == 0.0
        assert result.error_message

    def test_processing_order_and_inactive_fields(self):
        first = TemplateField(name="zeta", text_patterns=[r"requested by:\s*(\w+)"], processing_order=1)
        second = TemplateField(name="alpha", text_patterns=[r"date:\s*(\S+)"], processing_order=2)
        skipped = TemplateField(name="beta", text_patterns=[r"date:\s*(\S+)"], is_active=False)
        result = FieldExtractionPipeline().extract(doc(), template(second, skipped, first))
        assert list(result.field_results) == ["zeta", "alpha"]

    def test_cancellation(self):
        token = CancellationToken()
        token.cancel()
        field = TemplateField(name="requester", text_patterns=[r"requested by:\s*(\w+)"])
        with pytest.raises(OperationCancelled):
            FieldExtractionPipeline().extract(doc(), template(field), cancel_token=token)

    def test_usage_statistics_reported(self):
        store = InMemoryTemplateStore()
        stored = store.create(template(
            TemplateField(name="requester", text_patterns=[r"requested by:\s*(\w+)"])
        ))
        FieldExtractionPipeline(template_store=store).extract(doc(), stored)

        stats = store.get(stored.template_id).usage_stats
        assert stats.total_uses == 1
        assert stats.successful_uses == 1
        assert stats.average_confidence == pytest.approx(0.9)
