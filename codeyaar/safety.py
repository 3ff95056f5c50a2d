"""
Content safety filter — a cheap tripwire, not a security boundary.

Runs the policy's ordered pattern list over the raw payload and reports
the first match. Case-insensitive regex matching only; false positives
and false negatives are both expected.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SafetyVerdict:
    blocked: bool
    matched_pattern: str | None = None


ALLOWED = SafetyVerdict(blocked=False)


class ContentFilter:
    """Pure function of the payload: same text, same verdict."""

    def __init__(self, patterns: tuple[tuple[str, re.Pattern], ...]):
        self.patterns = tuple(patterns)

    def evaluate(self, text: str) -> SafetyVerdict:
        if not text:
            return ALLOWED
        for name, pattern in self.patterns:
            if pattern.search(text):
                return SafetyVerdict(blocked=True, matched_pattern=name)
        return ALLOWED

    def __len__(self) -> int:
        return len(self.patterns)
