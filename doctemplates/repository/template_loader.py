"""
Template files

Loads templates from YAML or JSON files and exports them back:
- One template per file, or a list of templates
- ``*.yaml`` / ``*.yml`` / ``*.json`` in a directory
- Optional ``inherits_from`` entries wire inheritance edges on import

Invalid files are logged and skipped, never fatal for the rest of the directory.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import yaml

from ..exceptions import TemplateCoreError
from ..schemas.rules import InheritanceConfig
from ..schemas.template import Template

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIXES = (".yaml", ".yml", ".json")


@dataclass
class InheritanceDeclaration:
    """``inherits_from`` entry read from a template file."""
    child: str
    parent: str  # template id or name
    config: InheritanceConfig = field(default_factory=InheritanceConfig)


@dataclass
class LoadReport:
    templates: List[Template] = field(default_factory=list)
    inheritance: List[InheritanceDeclaration] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.templates)


def _read(path: Path):
    with open(path, encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            return json.load(f)
        return yaml.safe_load(f)


def parse_templates(data, source: str = "<memory>") -> Tuple[List[Template], List[InheritanceDeclaration]]:
    """
    Build templates from parsed YAML/JSON data.

    Raises:
        ValueError: malformed template data (pydantic errors included)
        KeyError: missing required keys such as ``name``
    """
    if not data:
        return [], []
    if isinstance(data, dict) and "templates" in data:
        data = data["templates"]
    entries = data if isinstance(data, list) else [data]

    templates: List[Template] = []
    declarations: List[InheritanceDeclaration] = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError(f"{source}: template entry must be a mapping")
        entry = dict(entry)
        parents = entry.pop("inherits_from", None) or []
        template = Template.from_dict(entry)
        templates.append(template)
        for parent in parents if isinstance(parents, list) else [parents]:
            if isinstance(parent, str):
                parent = {"parent": parent}
            declarations.append(InheritanceDeclaration(
                child=template.template_id,
                parent=str(parent["parent"]),
                config=InheritanceConfig.model_validate(parent.get("config") or {}),
            ))
    return templates, declarations


def load_template_file(path: Union[str, Path]) -> List[Template]:
    templates, _ = parse_templates(_read(Path(path)), str(path))
    return templates


class TemplateLoader:
    """
    Reads template files from a directory.

    Args:
        directory: Directory holding ``*.yaml``, ``*.yml`` or ``*.json`` files
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def load_all(self) -> LoadReport:
        """Load every template file; invalid files land in ``report.errors``."""
        report = LoadReport()
        if not self.directory.exists():
            logger.debug(f"Templates dir not found: {self.directory}")
            return report

        for path in sorted(p for p in self.directory.iterdir() if p.suffix.lower() in TEMPLATE_SUFFIXES):
            try:
                templates, declarations = parse_templates(_read(path), str(path))
            except (OSError, ValueError, KeyError, TypeError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load template file {path}: {e}")
                report.errors[str(path)] = str(e)
                continue
            report.templates.extend(templates)
            report.inheritance.extend(declarations)
            logger.debug(f"Loaded {len(templates)} template(s) from {path.name}")

        logger.info(f"Loaded {report.count} templates from {self.directory}")
        return report

    def load_into_store(self, store, resolver=None) -> LoadReport:
        """
        Load templates into a store, then wire declared inheritance.

        Templates that fail validation, and edges the resolver rejects, are
        reported in ``errors`` and skipped.
        """
        report = self.load_all()
        created: List[Template] = []
        for template in report.templates:
            try:
                created.append(store.create(template))
            except TemplateCoreError as e:
                logger.warning(f"Template {template.name} not imported: {e}")
                report.errors[template.name] = str(e)
        report.templates = created

        if resolver is None:
            if report.inheritance:
                logger.warning("Inheritance declarations ignored: no resolver given")
            return report

        by_name = {t.name.lower(): t.template_id for t in created}
        created_ids = {t.template_id for t in created}
        for decl in report.inheritance:
            if decl.child not in created_ids:
                continue
            parent_id = decl.parent if store.exists(decl.parent) else by_name.get(decl.parent.lower())
            if parent_id is None:
                report.errors[f"{decl.child}->{decl.parent}"] = f"Unknown parent template {decl.parent}"
                continue
            try:
                resolver.create_inheritance(decl.child, parent_id, decl.config)
            except TemplateCoreError as e:
                report.errors[f"{decl.child}->{decl.parent}"] = str(e)
        return report


def export_templates(
    templates: Sequence[Template],
    path: Union[str, Path],
    fmt: Optional[str] = None,
) -> Path:
    """
    Write templates to a YAML or JSON file.

    Args:
        templates: Templates to export
        path: Output file
        fmt: "yaml" or "json"; defaults to the file suffix

    Returns:
        Path to the written file
    """
    path = Path(path)
    fmt = (fmt or path.suffix.lstrip(".") or "yaml").lower()
    data = [t.to_dict() for t in templates]
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        if fmt == "json":
            json.dump(data, f, indent=2)
        elif fmt in ("yaml", "yml"):
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        else:
            raise ValueError(f"Unsupported export format: {fmt}")

    logger.info(f"Exported {len(templates)} template(s) to {path}")
    return path
