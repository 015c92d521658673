"""
Zone extraction collaborators.

Coordinate extraction is a thin orchestrator over a ZoneExtractor: given a
document and an ExtractionZone it returns zero or more values with a
confidence. The default TokenZoneExtractor reads positioned text tokens that
the document processor already produced. OCR zones go to an OcrProvider; when
none is configured the zone fails explicitly.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..exceptions import ExtractionError
from ..schemas.document import LayoutToken, ProcessedDocument
from ..schemas.enums import CoordinateSystem, ExtractionMethod
from ..schemas.template import ExtractionZone

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_CONFIDENCE = 0.8
LINE_MERGE_TOLERANCE = 0.5  # fraction of token height


@dataclass
class ZoneExtraction:
    values: List[str] = field(default_factory=list)
    confidence: float = 0.0

    @property
    def success(self) -> bool:
        return bool(self.values)


class ZoneExtractor(ABC):
    """Reads the contents of one zone of a document."""

    @abstractmethod
    def extract(self, document: ProcessedDocument, zone: ExtractionZone) -> ZoneExtraction:
        """
        Raises:
            ExtractionError: zone cannot be read from this document
        """


class OcrProvider(ABC):
    """External OCR engine."""

    @abstractmethod
    def recognize(self, document: ProcessedDocument, zone: Optional[ExtractionZone] = None) -> ZoneExtraction:
        """OCR a zone (or the whole document when ``zone`` is None)."""


def zone_bounds(zone: ExtractionZone, document: ProcessedDocument) -> Tuple[float, float, float, float]:
    """Zone rectangle (x0, y0, x1, y1) in the document's token units."""
    x, y, w, h = zone.x, zone.y, zone.width, zone.height
    if zone.coordinate_system in (CoordinateSystem.PERCENTAGE, CoordinateSystem.NORMALIZED):
        page_w = document.processing_metadata.get("page_width")
        page_h = document.processing_metadata.get("page_height")
        if not page_w or not page_h:
            raise ExtractionError(
                f"Zone {zone.name or zone.zone_id} uses {zone.coordinate_system.value} "
                f"coordinates but the document has no page size",
                method=ExtractionMethod.COORDINATES.value,
            )
        scale = 100.0 if zone.coordinate_system == CoordinateSystem.PERCENTAGE else 1.0
        x, w = x / scale * float(page_w), w / scale * float(page_w)
        y, h = y / scale * float(page_h), h / scale * float(page_h)
    return x, y, x + w, y + h


class TokenZoneExtractor(ZoneExtractor):
    """
    Collects positioned tokens whose center falls inside the zone.

    The zone is grown by its position tolerance. Tokens are grouped into lines
    and each line becomes one value, top to bottom.
    """

    def extract(self, document: ProcessedDocument, zone: ExtractionZone) -> ZoneExtraction:
        if not any(t.has_coords for t in document.tokens):
            raise ExtractionError(
                "Document has no positioned text tokens",
                method=ExtractionMethod.COORDINATES.value,
            )

        x0, y0, x1, y1 = zone_bounds(zone, document)
        pad_x = (x1 - x0) * zone.position_tolerance
        pad_y = (y1 - y0) * zone.position_tolerance

        inside: List[LayoutToken] = []
        for token in document.tokens:
            if token.page != zone.page_number or not token.has_coords or not token.text.strip():
                continue
            cx, cy = token.center
            if x0 - pad_x <= cx <= x1 + pad_x and y0 - pad_y <= cy <= y1 + pad_y:
                inside.append(token)

        if not inside:
            return ZoneExtraction()

        lines = _group_lines(inside)
        values = [" ".join(t.text.strip() for t in line) for line in lines]
        confidences = [t.confidence for t in inside if t.confidence is not None]
        confidence = (
            sum(confidences) / len(confidences) if confidences else DEFAULT_TOKEN_CONFIDENCE
        )
        logger.debug(f"Zone {zone.name or zone.zone_id}: {len(inside)} tokens, {len(values)} lines")
        return ZoneExtraction(values=values, confidence=confidence)


def _group_lines(tokens: List[LayoutToken]) -> List[List[LayoutToken]]:
    ordered = sorted(tokens, key=lambda t: (t.center[1], t.x0))
    lines: List[List[LayoutToken]] = []
    for token in ordered:
        if lines:
            last = lines[-1][-1]
            height = max(last.y1 - last.y0, token.y1 - token.y0, 1e-6)
            if abs(token.center[1] - last.center[1]) <= height * LINE_MERGE_TOLERANCE:
                lines[-1].append(token)
                continue
        lines.append([token])
    return [sorted(line, key=lambda t: t.x0) for line in lines]
