# doctemplates/repository/template_store.py
"""
Repository layer for templates, their versions and inheritance edges.

Goal:
- Give the resolver and the pipelines a small, stable read interface:
    - get(template_id), get_parents(child_id), get_children(parent_id)
- Keep every mutation validated and atomic: a failed create/update leaves the
  stored state untouched, and every write snapshots the template so it can be
  rolled back later.

InMemoryTemplateStore is the reference backend; a database-backed store only
needs to implement the TemplateStore interface.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Dict, Iterable, List, Optional

from ..exceptions import NotFoundError, TemplateValidationError
from ..schemas.enums import ChangeType
from ..schemas.results import TemplateComparisonResult
from ..schemas.template import (
    InheritanceRelationship,
    Template,
    TemplateChangeRecord,
    new_id,
    utcnow,
)

logger = logging.getLogger(__name__)

COMPARED_PROPERTIES = (
    "name",
    "description",
    "category",
    "tags",
    "supported_formats",
    "is_active",
    "confidence_threshold",
    "auto_apply",
    "allow_partial_matches",
    "priority",
    "matching_criteria",
)


# ---------------------------------------------------------------------------
# 1. Abstract Repository Interface
# ---------------------------------------------------------------------------

class TemplateStore(ABC):
    """
    Abstract template repository.

    Implementations:
    - InMemoryTemplateStore: thread-safe dict-backed store with version history
    """

    @abstractmethod
    def get(self, template_id: str) -> Template:
        """
        Current version of a template.

        Raises:
            NotFoundError: unknown template id
        """
        raise NotImplementedError

    @abstractmethod
    def list_templates(self, active_only: bool = False) -> List[Template]:
        raise NotImplementedError

    @abstractmethod
    def create(self, template: Template, created_by: Optional[str] = None) -> Template:
        raise NotImplementedError

    @abstractmethod
    def update(self, template: Template, changed_by: Optional[str] = None, description: str = "") -> Template:
        raise NotImplementedError

    @abstractmethod
    def delete(self, template_id: str, changed_by: Optional[str] = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_parents(self, child_id: str) -> List[InheritanceRelationship]:
        """Active relationships where ``child_id`` is the child."""
        raise NotImplementedError

    @abstractmethod
    def get_children(self, parent_id: str) -> List[InheritanceRelationship]:
        """Active relationships where ``parent_id`` is the parent."""
        raise NotImplementedError

    @abstractmethod
    def add_relationship(self, relationship: InheritanceRelationship) -> InheritanceRelationship:
        raise NotImplementedError

    @abstractmethod
    def remove_relationship(self, child_id: str, parent_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def update_usage_statistics(
        self,
        template_id: str,
        successful: bool,
        extraction_time: float,
        confidence: Optional[float] = None,
    ) -> None:
        raise NotImplementedError

    @contextmanager
    def transaction(self):
        """Serialize a read-validate-write sequence; no-op by default."""
        yield self


# ---------------------------------------------------------------------------
# 2. In-memory implementation
# ---------------------------------------------------------------------------

class InMemoryTemplateStore(TemplateStore):
    """
    Thread-safe in-memory template store.

    Templates are stored and returned as deep copies, so callers can never
    mutate stored state without going through ``update``.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._templates: Dict[str, Template] = {}
        self._versions: Dict[str, List[Template]] = {}
        self._history: Dict[str, List[TemplateChangeRecord]] = {}
        self._relationships: Dict[str, InheritanceRelationship] = {}
        self._listeners: List[Callable[[str], None]] = []

    @contextmanager
    def transaction(self):
        with self._lock:
            yield self

    def add_change_listener(self, listener: Callable[[str], None]) -> None:
        """Called with a template id whenever that template, or one it inherits from, changes."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Internal helpers (callers hold the lock)
    # ------------------------------------------------------------------

    def _require(self, template_id: str) -> Template:
        template = self._templates.get(template_id)
        if template is None:
            raise NotFoundError("Template", template_id)
        return template

    def _record(
        self,
        template_id: str,
        change_type: ChangeType,
        description: str = "",
        version: Optional[str] = None,
        changed_by: Optional[str] = None,
        **details,
    ) -> None:
        self._history.setdefault(template_id, []).append(TemplateChangeRecord(
            template_id=template_id,
            change_type=change_type,
            description=description,
            version=version,
            changed_by=changed_by,
            details=details,
        ))

    def _snapshot(self, template: Template) -> None:
        self._versions.setdefault(template.template_id, []).append(template.copy())

    def _affected(self, template_id: str) -> List[str]:
        """``template_id`` followed by every template that inherits from it."""
        affected = [template_id]
        seen = {template_id}
        for current in affected:
            for rel in self._relationships.values():
                if rel.parent_id == current and rel.child_id not in seen:
                    seen.add(rel.child_id)
                    affected.append(rel.child_id)
        return affected

    def _notify(self, template_id: str, affected: Optional[List[str]] = None) -> None:
        if affected is None:
            with self._lock:
                affected = self._affected(template_id)
        for changed_id in affected:
            for listener in self._listeners:
                try:
                    listener(changed_id)
                except Exception as e:
                    logger.warning(f"Template change listener failed for {changed_id}: {e}")

    @staticmethod
    def _validate(template: Template) -> None:
        result = template.validate()
        if not result.is_valid:
            raise TemplateValidationError(f"Template '{template.name}' is invalid", result.errors)
        for warning in result.warnings:
            logger.debug(f"Template {template.name}: {warning}")

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def get(self, template_id: str) -> Template:
        with self._lock:
            return self._require(template_id).copy()

    def exists(self, template_id: str) -> bool:
        with self._lock:
            return template_id in self._templates

    def get_by_name(self, name: str) -> Optional[Template]:
        with self._lock:
            for template in self._templates.values():
                if template.name.lower() == name.lower():
                    return template.copy()
        return None

    def list_templates(self, active_only: bool = False) -> List[Template]:
        with self._lock:
            templates = [
                t.copy() for t in self._templates.values()
                if t.is_active or not active_only
            ]
        return sorted(templates, key=lambda t: (t.name.lower(), t.template_id))

    def create(self, template: Template, created_by: Optional[str] = None) -> Template:
        self._validate(template)
        stored = template.copy()
        if created_by:
            stored.created_by = created_by
        stored.created_at = utcnow()
        stored.last_modified_at = stored.created_at
        with self._lock:
            if stored.template_id in self._templates:
                raise TemplateValidationError(f"Template {stored.template_id} already exists")
            self._templates[stored.template_id] = stored
            self._snapshot(stored)
            self._record(stored.template_id, ChangeType.CREATED, f"Created template {stored.name}",
                         stored.version, created_by)
        logger.info(f"Created template {stored.name} ({stored.template_id})")
        return stored.copy()

    def update(self, template: Template, changed_by: Optional[str] = None, description: str = "") -> Template:
        self._validate(template)
        stored = template.copy()
        stored.last_modified_at = utcnow()
        with self._lock:
            previous = self._require(stored.template_id)
            stored.created_at = previous.created_at
            stored.usage_stats = copy.deepcopy(previous.usage_stats)
            self._templates[stored.template_id] = stored
            self._snapshot(stored)
            self._record(stored.template_id, ChangeType.UPDATED,
                         description or f"Updated template {stored.name}", stored.version, changed_by)
        self._notify(stored.template_id)
        logger.info(f"Updated template {stored.name} ({stored.template_id})")
        return stored.copy()

    def delete(self, template_id: str, changed_by: Optional[str] = None) -> None:
        with self._lock:
            template = self._require(template_id)
            affected = self._affected(template_id)
            del self._templates[template_id]
            for rel_id in [
                r.relationship_id for r in self._relationships.values()
                if template_id in (r.child_id, r.parent_id)
            ]:
                del self._relationships[rel_id]
            self._record(template_id, ChangeType.DELETED, f"Deleted template {template.name}",
                         template.version, changed_by)
        self._notify(template_id, affected)
        logger.info(f"Deleted template {template.name} ({template_id})")

    def set_active(self, template_id: str, active: bool, changed_by: Optional[str] = None) -> Template:
        with self._lock:
            template = self._require(template_id)
            template.is_active = active
            template.last_modified_at = utcnow()
            change = ChangeType.ACTIVATED if active else ChangeType.DEACTIVATED
            self._record(template_id, change, f"Template {change.value}", template.version, changed_by)
            return template.copy()

    def activate(self, template_id: str, changed_by: Optional[str] = None) -> Template:
        return self.set_active(template_id, True, changed_by)

    def deactivate(self, template_id: str, changed_by: Optional[str] = None) -> Template:
        return self.set_active(template_id, False, changed_by)

    def duplicate(self, template_id: str, new_name: str, changed_by: Optional[str] = None) -> Template:
        with self._lock:
            source = self._require(template_id)
            clone = source.create_version("1.0.0")
        clone.template_id = new_id()
        clone.name = new_name
        for f in clone.fields:
            f.field_id = new_id()
        clone.metadata["duplicated_from"] = template_id
        created = self.create(clone, changed_by)
        with self._lock:
            self._record(created.template_id, ChangeType.DUPLICATED,
                         f"Duplicated from {source.name}", created.version, changed_by,
                         source_template_id=template_id)
        return created

    def search(
        self,
        text: Optional[str] = None,
        category: Optional[str] = None,
        formats: Optional[Iterable[str]] = None,
        tags: Optional[Iterable[str]] = None,
        match_all_tags: bool = False,
        active_only: bool = True,
    ) -> List[Template]:
        """Filter templates; every given criterion must hold."""
        wanted_formats = {f.lower().lstrip(".") for f in formats or []}
        wanted_tags = {t.lower() for t in tags or []}
        needle = text.lower() if text else None

        results = []
        for template in self.list_templates(active_only=active_only):
            if category and template.category.lower() != category.lower():
                continue
            if wanted_formats and not wanted_formats & {f.lower() for f in template.supported_formats}:
                continue
            if wanted_tags:
                have = {t.lower() for t in template.tags}
                if match_all_tags and not wanted_tags <= have:
                    continue
                if not match_all_tags and not wanted_tags & have:
                    continue
            if needle:
                haystack = " ".join([template.name, template.description or "", " ".join(template.tags)])
                if needle not in haystack.lower():
                    continue
            results.append(template)
        return results

    # ------------------------------------------------------------------
    # Versions and history
    # ------------------------------------------------------------------

    def create_version(self, template_id: str, new_version: str, changed_by: Optional[str] = None) -> Template:
        with self._lock:
            current = self._require(template_id)
            if any(v.version == new_version for v in self._versions.get(template_id, [])):
                raise TemplateValidationError(f"Version {new_version} already exists for template {template_id}")
            versioned = current.create_version(new_version)
            self._templates[template_id] = versioned
            self._snapshot(versioned)
            self._record(template_id, ChangeType.VERSION_CREATED, f"Created version {new_version}",
                         new_version, changed_by, previous_version=current.version)
        self._notify(template_id)
        logger.info(f"Template {template_id}: version {current.version} -> {new_version}")
        return versioned.copy()

    def get_versions(self, template_id: str) -> List[Template]:
        """Snapshots in write order, oldest first."""
        with self._lock:
            if template_id not in self._versions:
                raise NotFoundError("Template", template_id)
            return [v.copy() for v in self._versions[template_id]]

    def get_version(self, template_id: str, version: str) -> Template:
        """Latest snapshot carrying ``version``."""
        with self._lock:
            for snapshot in reversed(self._versions.get(template_id, [])):
                if snapshot.version == version:
                    return snapshot.copy()
        raise NotFoundError("Template version", f"{template_id}@{version}")

    def rollback_to_version(self, template_id: str, version: str, changed_by: Optional[str] = None) -> Template:
        target = self.get_version(template_id, version)
        with self._lock:
            current = self._require(template_id)
            target.usage_stats = copy.deepcopy(current.usage_stats)
            target.last_modified_at = utcnow()
            self._templates[template_id] = target
            self._snapshot(target)
            self._record(template_id, ChangeType.ROLLED_BACK, f"Rolled back to version {version}",
                         version, changed_by, previous_version=current.version)
        self._notify(template_id)
        logger.info(f"Template {template_id} rolled back to version {version}")
        return target.copy()

    def get_change_history(self, template_id: str) -> List[TemplateChangeRecord]:
        with self._lock:
            return list(self._history.get(template_id, []))

    def compare_versions(self, template_id: str, from_version: str, to_version: str) -> TemplateComparisonResult:
        old = self.get_version(template_id, from_version)
        new = self.get_version(template_id, to_version)
        return compare_templates(old, new)

    def update_usage_statistics(
        self,
        template_id: str,
        successful: bool,
        extraction_time: float,
        confidence: Optional[float] = None,
    ) -> None:
        with self._lock:
            self._require(template_id).record_usage(successful, extraction_time, confidence)

    # ------------------------------------------------------------------
    # Inheritance edges
    # ------------------------------------------------------------------

    def get_relationship(self, child_id: str, parent_id: str) -> Optional[InheritanceRelationship]:
        with self._lock:
            for rel in self._relationships.values():
                if rel.child_id == child_id and rel.parent_id == parent_id:
                    return copy.deepcopy(rel)
        return None

    def get_parents(self, child_id: str) -> List[InheritanceRelationship]:
        with self._lock:
            rels = [copy.deepcopy(r) for r in self._relationships.values()
                    if r.child_id == child_id and r.is_active]
        return sorted(rels, key=lambda r: (-r.priority, r.parent_id))

    def get_children(self, parent_id: str) -> List[InheritanceRelationship]:
        with self._lock:
            rels = [copy.deepcopy(r) for r in self._relationships.values()
                    if r.parent_id == parent_id and r.is_active]
        return sorted(rels, key=lambda r: (-r.priority, r.child_id))

    def add_relationship(self, relationship: InheritanceRelationship) -> InheritanceRelationship:
        with self._lock:
            self._require(relationship.child_id)
            self._require(relationship.parent_id)
            if self.get_relationship(relationship.child_id, relationship.parent_id) is not None:
                raise TemplateValidationError(
                    f"Relationship {relationship.parent_id} -> {relationship.child_id} already exists"
                )
            stored = copy.deepcopy(relationship)
            self._relationships[stored.relationship_id] = stored
            self._record(stored.child_id, ChangeType.INHERITANCE_ADDED,
                         f"Inherits from {stored.parent_id}", parent_id=stored.parent_id)
        self._notify(relationship.child_id)
        return copy.deepcopy(stored)

    def update_relationship(self, relationship: InheritanceRelationship) -> InheritanceRelationship:
        with self._lock:
            if relationship.relationship_id not in self._relationships:
                raise NotFoundError("Inheritance relationship", relationship.relationship_id)
            stored = copy.deepcopy(relationship)
            self._relationships[stored.relationship_id] = stored
            self._record(stored.child_id, ChangeType.UPDATED,
                         f"Updated inheritance from {stored.parent_id}", parent_id=stored.parent_id)
        self._notify(relationship.child_id)
        return copy.deepcopy(stored)

    def remove_relationship(self, child_id: str, parent_id: str) -> bool:
        with self._lock:
            match = [
                rel_id for rel_id, r in self._relationships.items()
                if r.child_id == child_id and r.parent_id == parent_id
            ]
            for rel_id in match:
                del self._relationships[rel_id]
            if match:
                self._record(child_id, ChangeType.INHERITANCE_REMOVED,
                             f"No longer inherits from {parent_id}", parent_id=parent_id)
        if match:
            self._notify(child_id)
        return bool(match)


def compare_templates(old: Template, new: Template) -> TemplateComparisonResult:
    """Field and property differences between two template snapshots."""
    result = TemplateComparisonResult(
        template_id=new.template_id,
        from_version=old.version,
        to_version=new.version,
    )
    old_fields = {f.name: f for f in old.fields}
    new_fields = {f.name: f for f in new.fields}
    result.added_fields = sorted(set(new_fields) - set(old_fields))
    result.removed_fields = sorted(set(old_fields) - set(new_fields))
    for name in sorted(set(old_fields) & set(new_fields)):
        before = old_fields[name].to_dict()
        after = new_fields[name].to_dict()
        before.pop("field_id")
        after.pop("field_id")
        if before != after:
            result.modified_fields.append(name)

    old_dict, new_dict = old.to_dict(), new.to_dict()
    for prop in COMPARED_PROPERTIES:
        if old_dict[prop] != new_dict[prop]:
            result.changed_properties[prop] = {"from": old_dict[prop], "to": new_dict[prop]}
    return result
