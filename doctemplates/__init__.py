"""
Document template matching and field extraction.

Fingerprints documents, ranks them against a template library, extracts
fields with fallbacks and validation, and resolves template inheritance.
"""

__version__ = "0.1.0"
