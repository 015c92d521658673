# doctemplates/pipelines/fingerprint.py
"""
Document and Template Fingerprinting

Turns a processed document, or a template definition, into a comparable
feature set:
- Format (from the file extension / the template's supported formats)
- Keywords (frequency-ranked, stop words removed)
- Structural text patterns (ISO date, US date, ticket number, email, phone)
- Coarse structure (pages, words, tables, scanned, layout class)
- Content hash for change detection

Document fingerprints are cached per document id with a wall-clock expiry;
template fingerprints are cached per template id until invalidated.
"""

import base64
import hashlib
import logging
import re
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from ..config.matching_config import MatchingSettings
from ..schemas.document import DocumentStructure, ProcessedDocument
from ..schemas.enums import ExtractionMethod, FieldType, LayoutType
from ..schemas.template import Template
from .language_id import detect_language
from .regex_cache import RegexCache

logger = logging.getLogger(__name__)


FORMAT_BY_EXTENSION = {
    ".pdf": "pdf",
    ".docx": "docx",
    ".doc": "doc",
    ".xlsx": "xlsx",
    ".xls": "xls",
    ".txt": "txt",
    ".rtf": "rtf",
}
UNKNOWN_FORMAT = "unknown"

# Named structural shapes detected in document text
DOCUMENT_PATTERNS = {
    "date_iso": r"\b\d{4}-\d{2}-\d{2}\b",
    "date_us": r"\b\d{1,2}/\d{1,2}/\d{4}\b",
    "ticket_number": r"\b[A-Z]{2,4}-\d{4,6}\b",
    "email": r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b",
    "phone_us": r"\b\d{3}-\d{3}-\d{4}\b",
}

STOP_WORDS = frozenset({
    "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "from", "was", "were", "been", "have", "has", "had", "will", "would", "could",
    "should", "may", "might", "can", "must", "shall", "this", "that", "these", "those",
})

KEYWORD_RE = re.compile(r"\b[a-z]{3,}\b")
TABLE_PIPE_RE = re.compile(r"\|\s*[^|]+\s*\|")
FORM_RE = re.compile(r"(name|address|phone|email).*:.*", re.IGNORECASE)
LETTER_MARKERS = ("Dear ", "Sincerely")

# Regex syntax stripped before harvesting literal words out of a pattern
_REGEX_ESCAPE_RE = re.compile(r"\\.")
_REGEX_CLASS_RE = re.compile(r"\[[^\]]*\]|\{[^}]*\}|\(\?[a-zA-Z]+\)")


@dataclass(frozen=True)
class DocumentFingerprint:
    """Comparable features of one processed document."""
    document_id: str
    format: str
    content_hash: str
    language: str
    structure: DocumentStructure
    keywords: Tuple[str, ...] = ()  # most frequent first
    patterns: FrozenSet[str] = frozenset()
    metadata: Dict[str, str] = field(default_factory=dict, hash=False)
    text: str = field(default="", repr=False, compare=False, hash=False)
    created_at: float = field(default=0.0, compare=False)

    @property
    def keyword_set(self) -> FrozenSet[str]:
        return frozenset(self.keywords)

    @property
    def file_stem(self) -> str:
        return PurePath(self.document_id).stem

    def to_dict(self) -> Dict:
        return {
            "document_id": self.document_id,
            "format": self.format,
            "content_hash": self.content_hash,
            "language": self.language,
            "structure": self.structure.to_dict(),
            "keywords": list(self.keywords),
            "patterns": sorted(self.patterns),
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class TemplateFingerprint:
    """What a template expects to find in a matching document."""
    template_id: str
    template_version: str
    supported_formats: FrozenSet[str]
    complexity_score: float
    expected_keywords: FrozenSet[str]
    required_keywords: FrozenSet[str]
    expected_patterns: Tuple[str, ...]
    expected_structure: DocumentStructure

    def to_dict(self) -> Dict:
        return {
            "template_id": self.template_id,
            "template_version": self.template_version,
            "supported_formats": sorted(self.supported_formats),
            "complexity_score": round(self.complexity_score, 4),
            "expected_keywords": sorted(self.expected_keywords),
            "required_keywords": sorted(self.required_keywords),
            "expected_patterns": list(self.expected_patterns),
            "expected_structure": self.expected_structure.to_dict(),
        }


# -----------------------------------------------------------------------------
# Text features
# -----------------------------------------------------------------------------

def content_hash(text: str) -> str:
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def detect_format(document_id: str) -> str:
    ext = PurePath(document_id).suffix.lower()
    return FORMAT_BY_EXTENSION.get(ext, UNKNOWN_FORMAT)


def detect_tables(text: str) -> bool:
    for line in text.splitlines():
        if len(line.split("\t")) > 3:
            return True
    return bool(TABLE_PIPE_RE.search(text))


def classify_layout(text: str, has_tables: bool) -> LayoutType:
    """Table > Form > Letter > Standard."""
    if has_tables:
        return LayoutType.TABLE
    if FORM_RE.search(text):
        return LayoutType.FORM
    if any(marker in text for marker in LETTER_MARKERS):
        return LayoutType.LETTER
    return LayoutType.STANDARD


def extract_keywords(text: str, max_keywords: int = 50, min_length: int = 3) -> Tuple[str, ...]:
    """Top keywords by frequency; ties keep first-occurrence order."""
    words = [
        w for w in KEYWORD_RE.findall(text.lower())
        if w not in STOP_WORDS and len(w) >= min_length
    ]
    return tuple(word for word, _ in Counter(words).most_common(max_keywords))


def pattern_literal_words(pattern: str) -> List[str]:
    """Literal words (len > 2) appearing in a regex source."""
    stripped = _REGEX_CLASS_RE.sub(" ", _REGEX_ESCAPE_RE.sub(" ", pattern))
    stripped = re.sub(r"[^\w\s]", " ", stripped)
    return [w.lower() for w in stripped.split() if len(w) > 2 and w.isalpha()]


# -----------------------------------------------------------------------------
# Fingerprinters
# -----------------------------------------------------------------------------

class DocumentFingerprinter:
    """
    Derives DocumentFingerprints, caching them per document id.

    Cached entries are reused while younger than
    ``settings.cache_expiration_hours`` (wall-clock).
    """

    def __init__(
        self,
        settings: Optional[MatchingSettings] = None,
        regex_cache: Optional[RegexCache] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or MatchingSettings()
        self.regex_cache = regex_cache or RegexCache(default_flags=0)
        self._clock = clock
        self._cache: Dict[str, DocumentFingerprint] = {}
        self._lock = threading.Lock()

    def fingerprint(self, document: ProcessedDocument) -> DocumentFingerprint:
        """
        Fingerprint a processed document.

        Args:
            document: Extracted text and metadata from the document processor

        Returns:
            DocumentFingerprint (possibly from cache)
        """
        if self.settings.enable_fingerprint_caching:
            cached = self._cached(document.document_id)
            if cached is not None:
                logger.debug(f"Fingerprint cache hit: {document.document_id}")
                return cached

        fp = self._compute(document)

        if self.settings.enable_fingerprint_caching:
            with self._lock:
                self._cache[document.document_id] = fp
        logger.info(
            f"Fingerprinted {document.document_id}: format={fp.format}, "
            f"{len(fp.keywords)} keywords, patterns={sorted(fp.patterns)}"
        )
        return fp

    def _cached(self, document_id: str) -> Optional[DocumentFingerprint]:
        with self._lock:
            fp = self._cache.get(document_id)
            if fp is None:
                return None
            if self._clock() - fp.created_at > self.settings.cache_expiration_seconds:
                del self._cache[document_id]
                return None
            return fp

    def _compute(self, document: ProcessedDocument) -> DocumentFingerprint:
        text = document.text or ""
        has_tables = detect_tables(text)
        structure = DocumentStructure(
            page_count=max(1, document.page_count),
            word_count=len(text.split()),
            has_tables=has_tables,
            has_images=document.flag("has_images"),
            is_scanned=document.flag("is_scanned"),
            layout_type=classify_layout(text, has_tables),
        )
        patterns = frozenset(
            name for name, source in DOCUMENT_PATTERNS.items()
            if self.regex_cache.get(source).search(text)
        )
        return DocumentFingerprint(
            document_id=document.document_id,
            format=detect_format(document.document_id),
            content_hash=content_hash(text),
            language=detect_language(text),
            structure=structure,
            keywords=extract_keywords(
                text, self.settings.max_keywords, self.settings.min_keyword_length
            ),
            patterns=patterns,
            metadata=document.metadata_snapshot(),
            text=text,
            created_at=self._clock(),
        )

    def invalidate(self, document_id: str) -> None:
        with self._lock:
            self._cache.pop(document_id, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


class TemplateFingerprinter:
    """Derives TemplateFingerprints, cached per template id until invalidated."""

    def __init__(self, settings: Optional[MatchingSettings] = None):
        self.settings = settings or MatchingSettings()
        self._cache: Dict[str, TemplateFingerprint] = {}
        self._lock = threading.Lock()

    def fingerprint(self, template: Template) -> TemplateFingerprint:
        with self._lock:
            cached = self._cache.get(template.template_id)
        if cached is not None:
            return cached

        fp = self._compute(template)
        with self._lock:
            self._cache[template.template_id] = fp
        logger.debug(
            f"Template fingerprint {template.name} ({template.template_id}): "
            f"complexity={fp.complexity_score:.2f}, {len(fp.expected_keywords)} keywords"
        )
        return fp

    def complexity(self, template: Template) -> float:
        s = self.settings
        score = 0.0
        for f in template.fields:
            score += s.complexity_base
            score += s.complexity_weights.get(f.extraction_method, 0.0)
            score += s.complexity_per_pattern * len(f.text_patterns)
            score += s.complexity_per_zone * len(f.extraction_zones)
        return min(score, s.complexity_cap)

    def _compute(self, template: Template) -> TemplateFingerprint:
        expected_keywords = set()
        required_keywords = set()
        expected_patterns: List[str] = []

        for f in template.fields:
            field_keywords = {k.lower() for k in f.keywords if k.strip()}
            for pattern in f.text_patterns:
                field_keywords.update(pattern_literal_words(pattern))
                if pattern not in expected_patterns:
                    expected_patterns.append(pattern)
            expected_keywords |= field_keywords
            if f.is_required:
                required_keywords |= {k.lower() for k in f.keywords if k.strip()}

        criteria = template.matching_criteria
        expected_keywords |= {k.lower() for k in criteria.required_keywords}
        expected_keywords |= {k.lower() for k in criteria.optional_keywords}
        required_keywords |= {k.lower() for k in criteria.required_keywords}
        for pattern in criteria.expected_patterns:
            if pattern not in expected_patterns:
                expected_patterns.append(pattern)

        methods = {f.extraction_method for f in template.fields}
        person_fields = any(
            f.field_type in (FieldType.USERNAME, FieldType.EMAIL) for f in template.fields
        )
        pages = [z.page_number for f in template.fields for z in f.extraction_zones]
        expected_structure = DocumentStructure(
            page_count=max(pages) if pages else 1,
            has_tables=ExtractionMethod.COORDINATES in methods,
            is_scanned=ExtractionMethod.OCR in methods,
            layout_type=LayoutType.FORM if person_fields else LayoutType.STANDARD,
        )

        return TemplateFingerprint(
            template_id=template.template_id,
            template_version=template.version,
            supported_formats=frozenset(f.lower().lstrip(".") for f in template.supported_formats),
            complexity_score=self.complexity(template),
            expected_keywords=frozenset(expected_keywords),
            required_keywords=frozenset(required_keywords),
            expected_patterns=tuple(expected_patterns),
            expected_structure=expected_structure,
        )

    def invalidate(self, template_id: str) -> None:
        with self._lock:
            self._cache.pop(template_id, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
