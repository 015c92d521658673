"""
Compiled regex cache shared by fingerprinting and extraction.
"""

import logging
import re
import threading
from typing import Dict, Optional, Pattern, Tuple

logger = logging.getLogger(__name__)


class RegexCache:
    """Thread-safe memo of compiled patterns keyed by (source, flags)."""

    def __init__(self, default_flags: int = re.IGNORECASE):
        self.default_flags = default_flags
        self._patterns: Dict[Tuple[str, int], Pattern] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, pattern: str, flags: Optional[int] = None) -> Pattern:
        """
        Compiled pattern for ``pattern``.

        Raises:
            re.error: if the pattern does not compile (never cached)
        """
        key = (pattern, self.default_flags if flags is None else flags)
        with self._lock:
            compiled = self._patterns.get(key)
            if compiled is not None:
                self.hits += 1
                return compiled
        compiled = re.compile(pattern, key[1])
        with self._lock:
            self.misses += 1
            self._patterns.setdefault(key, compiled)
        return compiled

    def try_get(self, pattern: str, flags: Optional[int] = None) -> Optional[Pattern]:
        """Like ``get`` but logs and returns None for an invalid pattern."""
        try:
            return self.get(pattern, flags)
        except re.error as e:
            logger.warning(f"Invalid regex pattern '{pattern}': {e}")
            return None

    def clear(self) -> None:
        with self._lock:
            self._patterns.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._patterns)
