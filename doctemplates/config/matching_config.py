"""
Matching and extraction configuration.

All scoring constants live here rather than in the algorithms so they can be
tuned per deployment. Both settings objects load from ``DOCTEMPLATES_*``
environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from ..schemas.enums import ExtractionMethod
from ..schemas.template import MatchingCriteria


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _default_complexity_weights() -> Dict[ExtractionMethod, float]:
    return {
        ExtractionMethod.TEXT: 0.1,
        ExtractionMethod.COORDINATES: 0.3,
        ExtractionMethod.OCR: 0.5,
        ExtractionMethod.METADATA: 0.2,
        ExtractionMethod.HYBRID: 0.7,
        ExtractionMethod.DEFAULT: 0.0,
    }


@dataclass
class MatchingSettings:
    """Configuration for fingerprinting, scoring and ranking."""

    default_criteria: MatchingCriteria = field(default_factory=MatchingCriteria)

    # get_all_matches defaults
    minimum_confidence: float = 0.1
    max_results: int = 10

    # Fingerprint cache
    enable_fingerprint_caching: bool = True
    cache_expiration_hours: float = 24.0

    # Batch work
    max_concurrent_operations: int = 4

    # Keyword similarity
    enable_fuzzy_matching: bool = False
    fuzzy_matching_threshold: float = 0.8

    # Template complexity
    complexity_weights: Dict[ExtractionMethod, float] = field(default_factory=_default_complexity_weights)
    complexity_base: float = 0.1
    complexity_per_pattern: float = 0.05
    complexity_per_zone: float = 0.1
    complexity_cap: float = 10.0

    # Keyword extraction
    max_keywords: int = 50
    min_keyword_length: int = 3

    max_inheritance_depth: int = 10

    @property
    def cache_expiration_seconds(self) -> float:
        return self.cache_expiration_hours * 3600.0

    @classmethod
    def from_env(cls, default_criteria: Optional[MatchingCriteria] = None) -> "MatchingSettings":
        """Load settings from environment variables."""
        criteria = default_criteria or MatchingCriteria()
        criteria.minimum_confidence = float(
            os.getenv("DOCTEMPLATES_BEST_MATCH_CONFIDENCE", str(criteria.minimum_confidence))
        )
        return cls(
            default_criteria=criteria,
            minimum_confidence=float(os.getenv("DOCTEMPLATES_MIN_CONFIDENCE", "0.1")),
            max_results=int(os.getenv("DOCTEMPLATES_MAX_RESULTS", "10")),
            enable_fingerprint_caching=_env_bool("DOCTEMPLATES_ENABLE_CACHE", True),
            cache_expiration_hours=float(os.getenv("DOCTEMPLATES_CACHE_HOURS", "24")),
            max_concurrent_operations=int(os.getenv("DOCTEMPLATES_MAX_CONCURRENCY", "4")),
            enable_fuzzy_matching=_env_bool("DOCTEMPLATES_FUZZY_MATCHING", False),
            fuzzy_matching_threshold=float(os.getenv("DOCTEMPLATES_FUZZY_THRESHOLD", "0.8")),
            max_inheritance_depth=int(os.getenv("DOCTEMPLATES_MAX_INHERITANCE_DEPTH", "10")),
        )


@dataclass
class ExtractionSettings:
    """Confidence constants for the field extraction pipeline."""

    regex_confidence: float = 0.9
    keyword_confidence: float = 0.7
    metadata_confidence: float = 0.8
    default_value_confidence: float = 0.1
    invalid_value_confidence_cap: float = 0.5
    required_field_weight: float = 2.0
    optional_field_weight: float = 1.0
    keyword_window: int = 100  # chars of generic keyword capture

    @classmethod
    def from_env(cls) -> "ExtractionSettings":
        """Load settings from environment variables."""
        return cls(
            regex_confidence=float(os.getenv("DOCTEMPLATES_REGEX_CONFIDENCE", "0.9")),
            keyword_confidence=float(os.getenv("DOCTEMPLATES_KEYWORD_CONFIDENCE", "0.7")),
            metadata_confidence=float(os.getenv("DOCTEMPLATES_METADATA_CONFIDENCE", "0.8")),
            default_value_confidence=float(os.getenv("DOCTEMPLATES_DEFAULT_CONFIDENCE", "0.1")),
            invalid_value_confidence_cap=float(os.getenv("DOCTEMPLATES_INVALID_CAP", "0.5")),
            required_field_weight=float(os.getenv("DOCTEMPLATES_REQUIRED_WEIGHT", "2.0")),
        )
