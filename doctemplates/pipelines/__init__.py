"""
Matching, extraction and inheritance pipelines.

Usage:
    from doctemplates.pipelines import MatchRanker, FieldExtractionPipeline

    ranker = MatchRanker()
    outcome = ranker.find_best_match(document, templates)
    if outcome.success:
        result = FieldExtractionPipeline().extract(document, outcome.template)
"""

from .batch import BatchMatcher
from .cancellation import CancellationToken
from .extraction import FieldExtractionPipeline
from .fingerprint import (
    DocumentFingerprint,
    DocumentFingerprinter,
    TemplateFingerprint,
    TemplateFingerprinter,
)
from .inheritance import InheritanceResolver
from .matcher import ConfidenceScorer, MatchRanker
from .regex_cache import RegexCache
from .zones import OcrProvider, TokenZoneExtractor, ZoneExtraction, ZoneExtractor

__all__ = [
    "BatchMatcher",
    "CancellationToken",
    "FieldExtractionPipeline",
    "DocumentFingerprint",
    "DocumentFingerprinter",
    "TemplateFingerprint",
    "TemplateFingerprinter",
    "InheritanceResolver",
    "ConfidenceScorer",
    "MatchRanker",
    "RegexCache",
    "OcrProvider",
    "TokenZoneExtractor",
    "ZoneExtraction",
    "ZoneExtractor",
]
