from .matching_config import ExtractionSettings, MatchingSettings

__all__ = ["ExtractionSettings", "MatchingSettings"]
