"""
Shared enumerations for templates, extraction and inheritance.

Values are lowercase strings so template files stay readable.
"""

from enum import Enum


class FieldType(str, Enum):
    TEXT = "text"
    USERNAME = "username"
    TICKET_NUMBER = "ticket_number"
    DATE = "date"
    EMAIL = "email"
    NUMBER = "number"
    BOOLEAN = "boolean"
    CUSTOM = "custom"
    APPROVAL_STATUS = "approval_status"
    PRIORITY = "priority"
    CATEGORY = "category"


class ExtractionMethod(str, Enum):
    TEXT = "text"
    COORDINATES = "coordinates"
    OCR = "ocr"
    METADATA = "metadata"
    HYBRID = "hybrid"
    DEFAULT = "default"  # value substituted from field.default_value


class ZoneType(str, Enum):
    TEXT = "text"
    OCR = "ocr"
    IMAGE = "image"
    TABLE = "table"
    SIGNATURE = "signature"
    BARCODE = "barcode"


class CoordinateSystem(str, Enum):
    PIXEL = "pixel"
    PERCENTAGE = "percentage"
    POINTS = "points"
    NORMALIZED = "normalized"


class LayoutType(str, Enum):
    STANDARD = "standard"
    FORM = "form"
    TABLE = "table"
    LETTER = "letter"


class InheritanceMode(str, Enum):
    FULL = "full"
    FIELDS_ONLY = "fields_only"
    SETTINGS_ONLY = "settings_only"
    CUSTOM = "custom"


class OverrideAction(str, Enum):
    INHERIT = "inherit"
    OVERRIDE = "override"
    MERGE = "merge"
    REMOVE = "remove"


class MergeProperty(str, Enum):
    TEXT_PATTERNS = "text_patterns"
    KEYWORDS = "keywords"
    EXTRACTION_ZONES = "extraction_zones"
    VALIDATION_RULES = "validation_rules"


class Provenance(str, Enum):
    CURRENT = "current"
    INHERITED = "inherited"
    MERGED = "merged"


class ValidationStatus(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    WARNING = "warning"
    UNKNOWN = "unknown"


class ChangeType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    ACTIVATED = "activated"
    DEACTIVATED = "deactivated"
    VERSION_CREATED = "version_created"
    ROLLED_BACK = "rolled_back"
    DUPLICATED = "duplicated"
    INHERITANCE_ADDED = "inheritance_added"
    INHERITANCE_REMOVED = "inheritance_removed"
