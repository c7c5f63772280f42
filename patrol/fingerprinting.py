"""
Content fingerprinting system for change detection.

This module provides:
- Pluggable normalization of rendered page content
- SHA-256 fingerprint generation
- Fingerprint comparison into a change verdict

Fingerprints depend on nothing but the content and the normalization
policy; fetch time and target metadata never enter the digest.
"""

import hashlib
import re
from enum import Enum
from typing import Iterable, List, Optional, Pattern

import structlog

from patrol.errors import ConfigurationError, EmptyContentError
from patrol.models import ChangeVerdict

logger = structlog.get_logger(__name__)


class NormalizationPolicy(str, Enum):
    """How content is normalized before hashing."""
    RAW = "raw"                 # hash the text verbatim
    STRIP = "strip"             # trim leading and trailing whitespace
    WHITESPACE = "whitespace"   # collapse every whitespace run to one space, then trim


class ContentNormalizer:
    """Normalizes rendered content according to a fixed policy."""

    def __init__(
        self,
        policy: NormalizationPolicy = NormalizationPolicy.STRIP,
        ignore_patterns: Optional[Iterable[str]] = None
    ):
        """
        Initialize the normalizer.

        Args:
            policy: Whitespace policy applied after ignore patterns
            ignore_patterns: Regular expressions whose matches are removed
                before hashing (volatile noise such as clocks or counters)

        Raises:
            ConfigurationError: if a pattern does not compile
        """
        self.policy = NormalizationPolicy(policy)
        self.ignore_patterns: List[Pattern[str]] = []
        for pattern in ignore_patterns or []:
            try:
                self.ignore_patterns.append(re.compile(pattern))
            except re.error as e:
                raise ConfigurationError(f"Invalid ignore pattern {pattern!r}: {e}") from e

    def normalize(self, content: str) -> str:
        for pattern in self.ignore_patterns:
            content = pattern.sub("", content)

        if self.policy == NormalizationPolicy.STRIP:
            return content.strip()
        if self.policy == NormalizationPolicy.WHITESPACE:
            return " ".join(content.split())
        return content


class ChangeDetector:
    """Turns rendered content into fingerprints and compares them."""

    def __init__(self, normalizer: Optional[ContentNormalizer] = None):
        self.normalizer = normalizer or ContentNormalizer()
        self.logger = logger.bind(component="change_detector")

    def fingerprint(self, content: str) -> str:
        """
        Generate the SHA-256 fingerprint of normalized content.

        Args:
            content: Rendered page text

        Returns:
            Hex digest (64 characters)

        Raises:
            EmptyContentError: if nothing is left after normalization
        """
        normalized = self.normalizer.normalize(content)
        if not normalized.strip():
            raise EmptyContentError("Rendered content is empty after normalization")

        digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()

        self.logger.debug(
            "Generated content fingerprint",
            hash=digest[:16] + "...",
            content_length=len(normalized)
        )

        return digest

    @staticmethod
    def has_changed(previous: Optional[str], current: str) -> ChangeVerdict:
        """
        Compare a stored fingerprint with a fresh one.

        Args:
            previous: Stored fingerprint, None when the target has no record
            current: Fingerprint of the latest observation

        Returns:
            BASELINE when there is nothing to compare against,
            otherwise UNCHANGED or CHANGED
        """
        if previous is None:
            return ChangeVerdict.BASELINE
        if previous == current:
            return ChangeVerdict.UNCHANGED
        return ChangeVerdict.CHANGED
