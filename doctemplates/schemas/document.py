# doctemplates/schemas/document.py
"""
Processed document handed over by the document-processing collaborator.

The core never reads raw files: PDF/Word/Excel readers and OCR run upstream
and deliver extracted text, page counts, metadata and (optionally) positioned
text tokens for coordinate-based extraction.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import PurePath
from typing import Any, Dict, List, Optional, Union

from .enums import LayoutType


@dataclass
class LayoutToken:
    """
    A text token with optional bounding box coordinates.

    Attributes:
        text: The token text content
        x0, y0, x1, y1: Bounding box (None if unavailable)
        page: Page number (1-indexed, matches ExtractionZone.page_number)
        confidence: OCR/reader confidence (0.0-1.0, None if not applicable)
    """
    text: str
    x0: Optional[float] = None
    y0: Optional[float] = None
    x1: Optional[float] = None
    y1: Optional[float] = None
    page: int = 1
    confidence: Optional[float] = None

    @property
    def has_coords(self) -> bool:
        return None not in (self.x0, self.y0, self.x1, self.y1)

    @property
    def center(self) -> Optional[tuple]:
        if not self.has_coords:
            return None
        return ((self.x0 + self.x1) / 2.0, (self.y0 + self.y1) / 2.0)


@dataclass
class ProcessedDocument:
    """
    Document source record.

    - document_id: path or other stable identifier (fingerprint cache key)
    - text: extracted plain text
    - processing_metadata: flags from the processor, e.g. has_images / is_scanned
    - custom_properties: document custom properties (Office/PDF)
    - extracted_fields: key/value pairs the processor already recognised
    - tokens: positioned text for coordinate-based extraction
    """
    document_id: str
    text: str = ""
    page_count: int = 1
    author: Optional[str] = None
    creator: Optional[str] = None
    title: Optional[str] = None
    subject: Optional[str] = None
    document_date: Optional[Union[date, datetime]] = None
    creation_date: Optional[Union[date, datetime]] = None
    custom_properties: Dict[str, Any] = field(default_factory=dict)
    extracted_fields: Dict[str, str] = field(default_factory=dict)
    processing_metadata: Dict[str, Any] = field(default_factory=dict)
    tokens: List[LayoutToken] = field(default_factory=list)

    @property
    def file_name(self) -> str:
        return PurePath(self.document_id).name

    @property
    def file_stem(self) -> str:
        return PurePath(self.document_id).stem

    @property
    def extension(self) -> str:
        return PurePath(self.document_id).suffix.lower()

    def flag(self, name: str) -> bool:
        """Boolean processing flag, tolerant of string values like "true"."""
        value = self.processing_metadata.get(name)
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes")
        return bool(value)

    def metadata_snapshot(self) -> Dict[str, str]:
        """Flat key -> string view of all document metadata."""
        snapshot: Dict[str, str] = {}
        for key in ("author", "creator", "title", "subject"):
            value = getattr(self, key)
            if value:
                snapshot[key] = str(value)
        for key in ("document_date", "creation_date"):
            value = getattr(self, key)
            if value is not None:
                snapshot[key] = value.isoformat()
        for k, v in self.custom_properties.items():
            snapshot[f"custom:{k}"] = "" if v is None else str(v)
        for k, v in self.processing_metadata.items():
            snapshot[f"processing:{k}"] = "" if v is None else str(v)
        return snapshot


@dataclass(frozen=True)
class DocumentStructure:
    """Coarse layout summary of a document (or what a template expects)."""
    page_count: int = 1
    word_count: int = 0
    has_tables: bool = False
    has_images: bool = False
    is_scanned: bool = False
    layout_type: LayoutType = LayoutType.STANDARD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_count": self.page_count,
            "word_count": self.word_count,
            "has_tables": self.has_tables,
            "has_images": self.has_images,
            "is_scanned": self.is_scanned,
            "layout_type": self.layout_type.value,
        }
