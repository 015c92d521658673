"""
Tests for upload record composition.
"""

import json

from doctemplates.export.record import RECORD_SCHEMA_VERSION, compose_record
from doctemplates.schemas.document import ProcessedDocument
from doctemplates.schemas.enums import ExtractionMethod
from doctemplates.schemas.results import FieldExtractionResult, TemplateExtractionResult
from doctemplates.schemas.template import Template, TemplateField
from doctemplates.schemas.validation import ValidationResult


def extraction_result() -> TemplateExtractionResult:
    invalid = ValidationResult()
    invalid.add_error("Value does not match required pattern")
    return TemplateExtractionResult(
        template_id="hr-leave",
        template_version="1.2.0",
        document_id="/inbox/leave_request.pdf",
        overall_confidence=0.61234,
        success=False,
        field_results={
            "employee": FieldExtractionResult(
                field_name="employee", success=True, value="jane.smith", all_values=["jane.smith"],
                confidence=0.9, method=ExtractionMethod.TEXT, is_required=True,
            ),
            "dates": FieldExtractionResult(
                field_name="dates", success=True, value="2024-03-01", all_values=["2024-03-01", "2024-03-05"],
                confidence=0.7, method=ExtractionMethod.TEXT,
            ),
            "manager": FieldExtractionResult(
                field_name="manager", success=True, value="??", all_values=["??"],
                confidence=0.5, is_valid=False, validation=invalid,
            ),
            "cost_center": FieldExtractionResult(
                field_name="cost_center", success=True, value="n/a", all_values=["n/a"],
                confidence=0.1, method=ExtractionMethod.DEFAULT,
            ),
            "approval_id": FieldExtractionResult.failure("approval_id", "Required field is empty"),
        },
    )


class TestComposeRecord:
    """Tests for compose_record."""

    def setup_method(self):
        self.document = ProcessedDocument(
            document_id="/inbox/leave_request.pdf",
            page_count=2,
            author="Jane Smith",
            custom_properties={"department": "HR"},
        )
        self.result = extraction_result()
        self.result.field_results["approval_id"].is_required = True

    def test_shape(self):
        record = compose_record(self.document, self.result)

        assert record["schema_version"] == RECORD_SCHEMA_VERSION
        assert record["title"] == "leave_request"
        assert record["template"] == {"template_id": "hr-leave", "version": "1.2.0"}
        assert record["document"]["file_name"] == "leave_request.pdf"
        assert record["document"]["page_count"] == 2
        assert record["document"]["metadata"]["custom:department"] == "HR"
        assert record["confidence"]["overall"] == 0.6123

    def test_fields(self):
        fields = compose_record(self.document, self.result)["fields"]

        assert fields["employee"] == "jane.smith"
        assert fields["dates"] == "2024-03-01"
        assert "approval_id" not in fields

    def test_only_multi_valued_fields_become_lists(self):
        template = Template(
            template_id="hr-leave",
            name="Leave Requests",
            supported_formats=["pdf"],
            fields=[
                TemplateField(name="employee", keywords=["employee"]),
                TemplateField(name="dates", keywords=["dates"], allow_multiple_values=True),
            ],
        )
        self.result.field_results["employee"].all_values = ["jane.smith", "j.smith"]
        fields = compose_record(self.document, self.result, template)["fields"]

        assert fields["dates"] == ["2024-03-01", "2024-03-05"]
        assert fields["employee"] == "jane.smith"
        assert fields["manager"] == "??"

    def test_review_items(self):
        review = {item["field"]: item["reason"] for item in compose_record(self.document, self.result)["review"]}

        assert review["approval_id"] == "Required field is empty"
        assert review["manager"] == "Value does not match required pattern"
        assert review["cost_center"] == "Low confidence (0.10)"
        assert "employee" not in review
        assert "dates" not in review

    def test_title_prefers_document_title(self):
        self.document.title = "Annual Leave"
        assert compose_record(self.document, self.result)["title"] == "Annual Leave"

    def test_template_details(self):
        template = Template(
            template_id="hr-leave",
            name="Leave Requests",
            supported_formats=["pdf"],
            tags=["hr"],
            fields=[TemplateField(name="employee", keywords=["employee"])],
        )
        record = compose_record(self.document, self.result, template)
        assert record["template"]["name"] == "Leave Requests"
        assert record["tags"] == ["hr"]

    def test_json_serializable(self):
        record = compose_record(self.document, self.result)
        assert json.loads(json.dumps(record)) == record
