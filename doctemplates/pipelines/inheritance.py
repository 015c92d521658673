# doctemplates/pipelines/inheritance.py
"""
Template Inheritance Resolution

Templates form a directed acyclic graph of parent -> child edges, stored as
InheritanceRelationship records keyed by template id. The resolver:
- validates and creates/removes edges (no self edges, no cycles, bounded depth)
- walks a template's chain to the root (highest-priority parent first)
- resolves a template by applying each link of the chain, root first,
  according to the link's inheritance mode and per-field override actions

Every field and setting of the resolved template records where it came from
(current template, inherited, or merged).
"""

import logging
from typing import Dict, List, Optional, Set

from ..config.matching_config import MatchingSettings
from ..exceptions import (
    CycleDetectedError,
    InheritanceDepthError,
    NotFoundError,
    TemplateCoreError,
    TemplateValidationError,
)
from ..repository.template_store import TemplateStore
from ..schemas.enums import InheritanceMode, MergeProperty, OverrideAction, Provenance
from ..schemas.results import InheritanceResult
from ..schemas.rules import InheritanceConfig
from ..schemas.template import (
    DEFAULT_CATEGORY,
    DEFAULT_CONFIDENCE_THRESHOLD,
    InheritanceRelationship,
    Template,
    TemplateField,
)
from ..schemas.validation import ValidationResult

logger = logging.getLogger(__name__)

CYCLE_MESSAGE = "Circular inheritance detected"
DEPTH_MESSAGE = "Inheritance depth exceeds maximum allowed"

INHERITED_SETTINGS = ("category", "confidence_threshold", "auto_apply", "allow_partial_matches")
UNION_SETTINGS = ("tags", "supported_formats")
OVERRIDABLE_SETTINGS = INHERITED_SETTINGS + UNION_SETTINGS + ("description", "priority", "is_active")


def _union(first: List, second: List, key=lambda v: v) -> List:
    seen = {key(v) for v in first}
    merged = list(first)
    for value in second:
        if key(value) not in seen:
            seen.add(key(value))
            merged.append(value)
    return merged


class InheritanceResolver:
    """Validates, walks and resolves template inheritance."""

    def __init__(self, store: TemplateStore, settings: Optional[MatchingSettings] = None):
        self.store = store
        self.settings = settings or MatchingSettings()

    @property
    def max_depth(self) -> int:
        return self.settings.max_inheritance_depth

    # ------------------------------------------------------------------
    # Graph walks
    # ------------------------------------------------------------------

    def get_ancestors(self, template_id: str) -> Set[str]:
        """Every template reachable through parent edges."""
        seen: Set[str] = set()
        stack = [template_id]
        while stack:
            current = stack.pop()
            for rel in self.store.get_parents(current):
                if rel.parent_id not in seen:
                    seen.add(rel.parent_id)
                    stack.append(rel.parent_id)
        seen.discard(template_id)
        return seen

    def get_descendants(self, template_id: str) -> Set[str]:
        seen: Set[str] = set()
        stack = [template_id]
        while stack:
            current = stack.pop()
            for rel in self.store.get_children(current):
                if rel.child_id not in seen:
                    seen.add(rel.child_id)
                    stack.append(rel.child_id)
        seen.discard(template_id)
        return seen

    def _height(self, template_id: str, upward: bool, guard: Optional[Set[str]] = None) -> int:
        """Longest edge count from ``template_id`` toward roots (or leaves)."""
        guard = set() if guard is None else guard
        if template_id in guard:
            raise CycleDetectedError(template_id, template_id, CYCLE_MESSAGE)
        guard = guard | {template_id}
        if upward:
            next_ids = [r.parent_id for r in self.store.get_parents(template_id)]
        else:
            next_ids = [r.child_id for r in self.store.get_children(template_id)]
        if not next_ids:
            return 0
        return 1 + max(self._height(n, upward, guard) for n in next_ids)

    def get_inheritance_chain(self, template_id: str) -> List[str]:
        """
        Root-first chain ending at ``template_id``.

        With several parents the one with the highest priority is followed;
        equal priorities go to the smallest parent id.

        Raises:
            NotFoundError: unknown template
            CycleDetectedError: a template repeats along the chain
            InheritanceDepthError: chain longer than the configured maximum
        """
        self.store.get(template_id)
        chain = [template_id]
        visited = {template_id}
        current = template_id
        while True:
            parents = self.store.get_parents(current)
            if not parents:
                break
            parent_id = min(parents, key=lambda r: (-r.priority, r.parent_id)).parent_id
            if parent_id in visited:
                raise CycleDetectedError(current, parent_id, CYCLE_MESSAGE)
            if len(chain) > self.max_depth:
                raise InheritanceDepthError(DEPTH_MESSAGE)
            visited.add(parent_id)
            chain.append(parent_id)
            current = parent_id
        chain.reverse()
        return chain

    # ------------------------------------------------------------------
    # Edge management
    # ------------------------------------------------------------------

    def _check_edge(self, child_id: str, parent_id: str) -> None:
        if child_id == parent_id:
            raise CycleDetectedError(child_id, parent_id, "Template cannot inherit from itself")
        self.store.get(child_id)
        self.store.get(parent_id)
        if any(r.parent_id == parent_id for r in self.store.get_parents(child_id)):
            raise TemplateValidationError(f"Relationship {parent_id} -> {child_id} already exists")
        if child_id in self.get_ancestors(parent_id) or parent_id in self.get_descendants(child_id):
            raise CycleDetectedError(child_id, parent_id, CYCLE_MESSAGE)
        depth = self._height(parent_id, upward=True) + 1 + self._height(child_id, upward=False)
        if depth > self.max_depth:
            raise InheritanceDepthError(DEPTH_MESSAGE)

    def validate_inheritance(self, child_id: str, parent_id: str) -> ValidationResult:
        """Dry run of ``create_inheritance``."""
        result = ValidationResult()
        try:
            self._check_edge(child_id, parent_id)
        except TemplateCoreError as e:
            result.add_error(str(e))
        return result

    def create_inheritance(
        self,
        child_id: str,
        parent_id: str,
        config: Optional[InheritanceConfig] = None,
    ) -> InheritanceRelationship:
        """
        Add a parent -> child edge.

        Raises:
            CycleDetectedError: self edge or the edge would close a loop
            InheritanceDepthError: the resulting chain would be too deep
            NotFoundError: either template is unknown
        """
        with self.store.transaction():
            try:
                self._check_edge(child_id, parent_id)
            except TemplateCoreError as e:
                logger.error(f"Inheritance {parent_id} -> {child_id} rejected: {e}")
                raise
            relationship = self.store.add_relationship(InheritanceRelationship(
                child_id=child_id,
                parent_id=parent_id,
                config=config or InheritanceConfig(),
            ))
        logger.info(f"Template {child_id} now inherits from {parent_id}")
        return relationship

    def remove_inheritance(self, child_id: str, parent_id: str) -> bool:
        removed = self.store.remove_relationship(child_id, parent_id)
        if removed:
            logger.info(f"Removed inheritance {parent_id} -> {child_id}")
        return removed

    def update_inheritance_config(
        self,
        child_id: str,
        parent_id: str,
        config: InheritanceConfig,
    ) -> InheritanceRelationship:
        with self.store.transaction():
            relationship = next(
                (r for r in self.store.get_parents(child_id) if r.parent_id == parent_id), None
            )
            if relationship is None:
                raise NotFoundError("Inheritance relationship", f"{parent_id} -> {child_id}")
            relationship.config = config
            return self.store.update_relationship(relationship)

    def get_available_parents(self, template_id: str) -> List[Template]:
        """Active templates that could become a parent without forming a cycle."""
        self.store.get(template_id)
        excluded = self.get_descendants(template_id) | {template_id}
        excluded |= {r.parent_id for r in self.store.get_parents(template_id)}
        return [
            t for t in self.store.list_templates(active_only=True)
            if t.template_id not in excluded
        ]

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, template_id: str) -> InheritanceResult:
        """
        Resolve a template against its chain.

        A template without parents resolves to an unchanged copy of itself
        with chain ``[template_id]``.
        """
        chain = self.get_inheritance_chain(template_id)
        root = self.store.get(chain[0])
        result = InheritanceResult(template=root, chain=chain)
        result.field_provenance = {f.name: Provenance.CURRENT for f in root.fields}
        result.field_sources = {f.name: root.template_id for f in root.fields}
        result.setting_provenance = {
            name: Provenance.CURRENT for name in INHERITED_SETTINGS + UNION_SETTINGS
        }

        for parent_id, child_id in zip(chain, chain[1:]):
            relationship = next(
                (r for r in self.store.get_parents(child_id) if r.parent_id == parent_id), None
            )
            config = relationship.config if relationship else InheritanceConfig()
            self._apply_link(result, self.store.get(child_id), config)

        validation = result.template.validate()
        result.errors.extend(validation.errors)
        logger.info(
            f"Resolved template {result.template.name} through {len(chain)} level(s), "
            f"{len(result.template.fields)} fields"
        )
        return result

    def _apply_link(self, result: InheritanceResult, child: Template, config: InheritanceConfig) -> None:
        parent = result.template
        parent_sources = dict(result.field_sources)
        resolved = child.copy()

        result.field_provenance = {f.name: Provenance.CURRENT for f in child.fields}
        result.field_sources = {f.name: child.template_id for f in child.fields}
        result.setting_provenance = {
            name: Provenance.CURRENT for name in INHERITED_SETTINGS + UNION_SETTINGS
        }

        mode = config.mode
        apply_settings = mode in (InheritanceMode.FULL, InheritanceMode.SETTINGS_ONLY) or (
            mode == InheritanceMode.CUSTOM and config.allow_settings_override
        )
        apply_fields = mode in (InheritanceMode.FULL, InheritanceMode.FIELDS_ONLY, InheritanceMode.CUSTOM)

        if apply_settings:
            self._inherit_settings(resolved, parent, config, result)
        if apply_fields:
            self._inherit_fields(resolved, parent, config, result, parent_sources)

        result.template = resolved

    def _inherit_settings(
        self,
        resolved: Template,
        parent: Template,
        config: InheritanceConfig,
        result: InheritanceResult,
    ) -> None:
        defaults = {
            "category": DEFAULT_CATEGORY,
            "confidence_threshold": DEFAULT_CONFIDENCE_THRESHOLD,
            "auto_apply": False,
            "allow_partial_matches": False,
        }
        for name, default in defaults.items():
            child_value = getattr(resolved, name)
            parent_value = getattr(parent, name)
            if child_value == default and parent_value != default:
                setattr(resolved, name, parent_value)
                result.setting_provenance[name] = Provenance.INHERITED

        for name in UNION_SETTINGS:
            merged = _union(getattr(resolved, name), getattr(parent, name), key=str.lower)
            if len(merged) != len(getattr(resolved, name)):
                setattr(resolved, name, merged)
                result.setting_provenance[name] = Provenance.MERGED

        if config.settings_overrides:
            if not config.allow_settings_override:
                result.warnings.append("Settings overrides ignored: settings override not allowed")
                return
            for name, value in config.settings_overrides.items():
                if name not in OVERRIDABLE_SETTINGS:
                    result.warnings.append(f"Unknown setting override '{name}' ignored")
                    continue
                setattr(resolved, name, value)
                result.setting_provenance[name] = Provenance.CURRENT

    def _inherit_fields(
        self,
        resolved: Template,
        parent: Template,
        config: InheritanceConfig,
        result: InheritanceResult,
        parent_sources: Dict[str, str],
    ) -> None:
        for parent_field in parent.fields:
            name = parent_field.name
            override = config.action_for(name)
            existing = resolved.get_field(name)
            source = parent_sources.get(name, parent.template_id)

            if override.action == OverrideAction.INHERIT:
                if existing is not None:
                    continue
                if not config.allow_field_addition:
                    result.warnings.append(f"Field '{name}' not inherited: field addition not allowed")
                    continue
                resolved.fields.append(parent_field.copy())
                result.field_provenance[name] = Provenance.INHERITED
                result.field_sources[name] = source

            elif override.action == OverrideAction.OVERRIDE:
                continue

            elif override.action == OverrideAction.MERGE:
                if existing is None:
                    resolved.fields.append(parent_field.copy())
                    result.field_provenance[name] = Provenance.INHERITED
                    result.field_sources[name] = source
                elif not config.allow_field_modification:
                    result.warnings.append(f"Field '{name}' not merged: field modification not allowed")
                else:
                    self._merge_field(existing, parent_field, override.merge_properties)
                    result.field_provenance[name] = Provenance.MERGED

            elif override.action == OverrideAction.REMOVE:
                if existing is None:
                    continue
                if not config.allow_field_removal:
                    result.warnings.append(f"Field '{name}' not removed: field removal not allowed")
                    continue
                resolved.fields = [f for f in resolved.fields if f.name != name]
                result.field_provenance.pop(name, None)
                result.field_sources.pop(name, None)

    @staticmethod
    def _merge_field(target: TemplateField, source: TemplateField, properties: List[MergeProperty]) -> None:
        if MergeProperty.TEXT_PATTERNS in properties:
            target.text_patterns = _union(target.text_patterns, source.text_patterns)
        if MergeProperty.KEYWORDS in properties:
            target.keywords = _union(target.keywords, source.keywords, key=str.lower)
        if MergeProperty.EXTRACTION_ZONES in properties:
            zones = list(target.extraction_zones)
            for zone in source.extraction_zones:
                if not any(zone.same_region(z) for z in zones):
                    zones.append(zone.__class__.from_dict(zone.to_dict()))
            target.extraction_zones = zones
        if MergeProperty.VALIDATION_RULES in properties:
            rules = target.validation_rules
            parent_rules = source.validation_rules
            target.validation_rules = rules.model_copy(update={
                "min_length": rules.min_length if rules.min_length is not None else parent_rules.min_length,
                "max_length": rules.max_length if rules.max_length is not None else parent_rules.max_length,
                "regex_pattern": rules.regex_pattern or parent_rules.regex_pattern,
                "custom_validations": _union(rules.custom_validations, parent_rules.custom_validations),
            })
