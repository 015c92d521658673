"""
Tests for document and template fingerprinting.
"""

import pytest

from doctemplates.config.matching_config import MatchingSettings
from doctemplates.pipelines.fingerprint import (
    DocumentFingerprinter,
    TemplateFingerprinter,
    classify_layout,
    content_hash,
    detect_format,
    detect_tables,
    extract_keywords,
    pattern_literal_words,
)
from doctemplates.pipelines.language_id import detect_language
from doctemplates.schemas.document import ProcessedDocument
from doctemplates.schemas.enums import ExtractionMethod, FieldType, LayoutType
from doctemplates.schemas.template import ExtractionZone, MatchingCriteria, Template, TemplateField


SAMPLE_REQUEST = """
Change Request CR-10442
Submitted by: jane.smith@example.com
Date: 2024-03-18

Ticket: OPS-20931
The database migration for the billing service is scheduled for the weekend.
Contact the operations team with any questions about the change.
Phone: 555-867-5309
"""

SAMPLE_TABLE = "Item\tQty\tPrice\tTotal\nWidget\t2\t3.00\t6.00\n"

SAMPLE_LETTER = """
Dear Customer,

We are writing to confirm your subscription renewal.

Sincerely,
Support
"""


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestTextFeatures:
    """Tests for the standalone feature helpers."""

    def test_detect_format_from_extension(self):
        assert detect_format("reports/Q1 Summary.DOCX") == "docx"
        assert detect_format("scan.pdf") == "pdf"
        assert detect_format("README") == "unknown"

    def test_content_hash_is_stable(self):
        assert content_hash("abc") == content_hash("abc")
        assert content_hash("abc") != content_hash("abd")

    def test_detect_tables(self):
        assert detect_tables(SAMPLE_TABLE)
        assert detect_tables("| a | b |")
        assert not detect_tables("plain prose without columns")

    def test_classify_layout(self):
        assert classify_layout(SAMPLE_TABLE, detect_tables(SAMPLE_TABLE)) == LayoutType.TABLE
        assert classify_layout("Name: Jane\nPhone: 555", False) == LayoutType.FORM
        assert classify_layout(SAMPLE_LETTER, False) == LayoutType.LETTER
        assert classify_layout("quarterly numbers look fine", False) == LayoutType.STANDARD

    def test_keywords_ranked_by_frequency(self):
        keywords = extract_keywords("invoice total invoice the and invoice total due")
        assert keywords[0] == "invoice"
        assert keywords[1] == "total"
        assert "the" not in keywords
        assert "and" not in keywords

    def test_keyword_limit(self):
        text = " ".join(f"word{chr(97 + i)}x" for i in range(20))
        assert len(extract_keywords(text, max_keywords=5)) == 5

    def test_pattern_literal_words(self):
        words = pattern_literal_words(r"ticket\s*#?:?\s*([A-Z]+-?\d+)")
        assert "ticket" in words
        assert all(len(w) > 2 for w in words)

    def test_language_detection(self):
        english = "the cat and the dog sat on the mat with the owner of the house by the door " * 2
        assert detect_language(english) == "en"
        assert detect_language("Lorem ipsum dolor sit amet") == "unknown"
        assert detect_language("") == "unknown"


class TestDocumentFingerprinter:
    """Tests for DocumentFingerprinter."""

    def test_fingerprint_is_deterministic(self):
        fingerprinter = DocumentFingerprinter(MatchingSettings(enable_fingerprint_caching=False))
        doc = ProcessedDocument(document_id="request.txt", text=SAMPLE_REQUEST)
        assert fingerprinter.fingerprint(doc) == fingerprinter.fingerprint(doc)

    def test_fingerprint_features(self):
        fingerprinter = DocumentFingerprinter()
        doc = ProcessedDocument(
            document_id="change_request.docx",
            text=SAMPLE_REQUEST,
            page_count=2,
            author="Jane Smith",
            processing_metadata={"is_scanned": "true"},
        )
        fp = fingerprinter.fingerprint(doc)

        assert fp.format == "docx"
        assert fp.file_stem == "change_request"
        assert {"date_iso", "ticket_number", "email", "phone_us"} <= fp.patterns
        assert "date_us" not in fp.patterns
        assert fp.structure.page_count == 2
        assert fp.structure.is_scanned is True
        assert fp.structure.layout_type == LayoutType.FORM
        assert fp.metadata["author"] == "Jane Smith"
        assert "change" in fp.keyword_set

    def test_cache_respects_expiry(self):
        clock = FakeClock()
        settings = MatchingSettings(cache_expiration_hours=1.0)
        fingerprinter = DocumentFingerprinter(settings, clock=clock)
        doc = ProcessedDocument(document_id="a.txt", text="first version")

        first = fingerprinter.fingerprint(doc)
        doc.text = "second version"

        clock.now = 1800.0
        assert fingerprinter.fingerprint(doc).content_hash == first.content_hash

        clock.now = 3601.0
        assert fingerprinter.fingerprint(doc).content_hash == content_hash("second version")

    def test_invalidate_drops_cached_entry(self):
        fingerprinter = DocumentFingerprinter()
        doc = ProcessedDocument(document_id="a.txt", text="first version")
        fingerprinter.fingerprint(doc)
        doc.text = "second version"
        fingerprinter.invalidate("a.txt")
        assert fingerprinter.fingerprint(doc).content_hash == content_hash("second version")


class TestTemplateFingerprinter:
    """Tests for TemplateFingerprinter."""

    def _template(self) -> Template:
        return Template(
            name="Change Requests",
            supported_formats=["DOCX", "pdf"],
            fields=[
                TemplateField(
                    name="ticket",
                    field_type=FieldType.TICKET_NUMBER,
                    text_patterns=[r"ticket:\s*(\S+)", r"\b([A-Z]{2,4}-\d{4,6})\b"],
                    keywords=["Ticket"],
                    is_required=True,
                ),
                TemplateField(
                    name="requester",
                    field_type=FieldType.USERNAME,
                    extraction_method=ExtractionMethod.COORDINATES,
                    extraction_zones=[ExtractionZone(x=0, y=0, width=100, height=20, page_number=2)],
                ),
            ],
            matching_criteria=MatchingCriteria(
                required_keywords=["migration"],
                optional_keywords=["Billing"],
                expected_patterns=["date_iso"],
            ),
        )

    def test_expected_features(self):
        fp = TemplateFingerprinter().fingerprint(self._template())

        assert fp.supported_formats == frozenset({"docx", "pdf"})
        assert {"ticket", "migration", "billing"} <= fp.expected_keywords
        assert fp.required_keywords == frozenset({"ticket", "migration"})
        assert fp.expected_patterns[-1] == "date_iso"
        assert len(fp.expected_patterns) == 3
        assert fp.expected_structure.has_tables is True
        assert fp.expected_structure.is_scanned is False
        assert fp.expected_structure.layout_type == LayoutType.FORM
        assert fp.expected_structure.page_count == 2

    def test_complexity(self):
        fingerprinter = TemplateFingerprinter()
        # text field: 0.1 + 0.1 + 2 * 0.05; coordinate field: 0.1 + 0.3 + 1 * 0.1
        assert fingerprinter.complexity(self._template()) == pytest.approx(0.8)

    def test_complexity_is_capped(self):
        settings = MatchingSettings(complexity_cap=0.5)
        assert TemplateFingerprinter(settings).complexity(self._template()) == pytest.approx(0.5)

    def test_cached_until_invalidated(self):
        fingerprinter = TemplateFingerprinter()
        template = self._template()
        first = fingerprinter.fingerprint(template)

        template.matching_criteria.required_keywords.append("rollback")
        assert fingerprinter.fingerprint(template) is first

        fingerprinter.invalidate(template.template_id)
        assert "rollback" in fingerprinter.fingerprint(template).required_keywords
