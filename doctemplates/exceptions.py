"""
Error taxonomy for template matching and extraction.

- NotFoundError: referenced template / version / relationship is absent
- TemplateValidationError: structural template problem on create/update/import
- CycleDetectedError: inheritance edge would create a loop
- ExtractionError: method-specific extraction failure
- OperationCancelled: caller-requested abort, always propagated
"""

from typing import List, Optional


class TemplateCoreError(Exception):
    """Base class for all doctemplates errors."""


class NotFoundError(TemplateCoreError, LookupError):
    """A referenced template, version or relationship does not exist."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class TemplateValidationError(TemplateCoreError, ValueError):
    """Template (or field) structure is invalid."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors or [])
        if self.errors:
            message = f"{message}: {'; '.join(self.errors)}"
        super().__init__(message)


class CycleDetectedError(TemplateCoreError):
    """Creating an inheritance edge would introduce a cycle."""

    def __init__(self, child_id: str, parent_id: str, message: Optional[str] = None):
        self.child_id = child_id
        self.parent_id = parent_id
        super().__init__(
            message or f"Circular inheritance detected: {parent_id} -> {child_id}"
        )


class InheritanceDepthError(TemplateValidationError):
    """Inheritance chain is deeper than the configured maximum."""


class ExtractionError(TemplateCoreError):
    """A single extraction method could not produce a value."""

    def __init__(self, message: str, method: Optional[str] = None):
        super().__init__(message)
        self.method = method


class OperationCancelled(TemplateCoreError):
    """The caller cancelled a long-running operation."""
