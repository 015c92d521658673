"""
Tests for loading templates from YAML/JSON files and exporting them.
"""

import json

import yaml

from doctemplates.pipelines.inheritance import InheritanceResolver
from doctemplates.repository.template_loader import (
    TemplateLoader,
    export_templates,
    load_template_file,
    parse_templates,
)
from doctemplates.repository.template_store import InMemoryTemplateStore
from doctemplates.schemas.enums import OverrideAction


BASE_YAML = """
name: Base Request
category: IT
supported_formats: [pdf, .DOCX]
tags: [it]
fields:
  - name: ticket
    field_type: ticket_number
    text_patterns:
      - 'ticket:\\s*([A-Z]+-\\d+)'
    keywords: [ticket]
    is_required: true
  - name: requester
    field_type: username
    extraction_method: metadata
    keywords: [requester]
"""

CHILD_JSON = {
    "templates": [
        {
            "name": "Access Request",
            "supported_formats": ["pdf"],
            "fields": [
                {"name": "system", "text_patterns": ["system:\\s*(\\w+)"]},
            ],
            "inherits_from": [
                {
                    "parent": "Base Request",
                    "config": {"field_overrides": {"requester": {"action": "remove"}}},
                }
            ],
        }
    ]
}


class TestParsing:
    """Tests for parse_templates."""

    def test_single_template(self):
        templates, declarations = parse_templates(yaml.safe_load(BASE_YAML))

        assert len(templates) == 1
        template = templates[0]
        assert template.supported_formats == ["pdf", "docx"]
        assert template.get_field("ticket").is_required
        assert template.validate().is_valid
        assert declarations == []

    def test_inheritance_declarations(self):
        templates, declarations = parse_templates(CHILD_JSON)

        assert declarations[0].child == templates[0].template_id
        assert declarations[0].parent == "Base Request"
        assert declarations[0].config.action_for("requester").action == OverrideAction.REMOVE

    def test_empty_document(self):
        assert parse_templates(None) == ([], [])


class TestTemplateLoader:
    """Tests for TemplateLoader."""

    def test_missing_directory(self, tmp_path):
        report = TemplateLoader(tmp_path / "nope").load_all()
        assert report.count == 0

    def test_invalid_file_skipped(self, tmp_path):
        (tmp_path / "base.yaml").write_text(BASE_YAML)
        (tmp_path / "broken.yaml").write_text("name: [unclosed")
        (tmp_path / "notes.txt").write_text("ignored")

        report = TemplateLoader(tmp_path).load_all()
        assert [t.name for t in report.templates] == ["Base Request"]
        assert list(report.errors) == [str(tmp_path / "broken.yaml")]

    def test_load_into_store_wires_inheritance(self, tmp_path):
        (tmp_path / "a_base.yaml").write_text(BASE_YAML)
        (tmp_path / "b_child.json").write_text(json.dumps(CHILD_JSON))

        store = InMemoryTemplateStore()
        resolver = InheritanceResolver(store)
        report = TemplateLoader(tmp_path).load_into_store(store, resolver)

        assert report.errors == {}
        child = store.get_by_name("Access Request")
        base = store.get_by_name("Base Request")
        assert [r.parent_id for r in store.get_parents(child.template_id)] == [base.template_id]

        resolved = resolver.resolve(child.template_id).template
        assert {f.name for f in resolved.fields} == {"system", "ticket"}
        assert resolved.category == "IT"

    def test_unknown_parent_reported(self, tmp_path):
        (tmp_path / "child.json").write_text(json.dumps(CHILD_JSON))
        store = InMemoryTemplateStore()
        report = TemplateLoader(tmp_path).load_into_store(store, InheritanceResolver(store))

        assert report.count == 1
        assert any("Unknown parent" in message for message in report.errors.values())

    def test_invalid_template_not_imported(self, tmp_path):
        (tmp_path / "empty.yaml").write_text("name: Empty\nsupported_formats: [pdf]\nfields: []\n")
        store = InMemoryTemplateStore()
        report = TemplateLoader(tmp_path).load_into_store(store)

        assert report.count == 0
        assert "Empty" in report.errors
        assert store.list_templates() == []


class TestExport:
    """Tests for export_templates."""

    def test_yaml_export_reloads(self, tmp_path):
        templates, _ = parse_templates(yaml.safe_load(BASE_YAML))
        path = export_templates(templates, tmp_path / "out" / "templates.yaml")

        reloaded = load_template_file(path)
        assert [t.name for t in reloaded] == ["Base Request"]
        assert reloaded[0].template_id == templates[0].template_id
        assert [f.name for f in reloaded[0].fields] == ["ticket", "requester"]

    def test_json_export(self, tmp_path):
        templates, _ = parse_templates(yaml.safe_load(BASE_YAML))
        path = export_templates(templates, tmp_path / "templates.json")

        data = json.loads(path.read_text())
        assert data[0]["name"] == "Base Request"
        assert data[0]["fields"][0]["field_type"] == "ticket_number"
