"""
Rule-based Severity Classifier - used when AI is disabled or no key is set.

Deterministic keyword matching, no network calls.
"""

from typing import Dict
import logging

from sentinel.models.report import Category
from sentinel.services.classifier.base import SeverityClassifier

logger = logging.getLogger(__name__)


class RuleBasedClassifier(SeverityClassifier):
    """
    Keyword classifier. Always enabled, never fails.
    """

    MODEL_NAME = "rules-v1"
    MODEL_VERSION = "1.0.0"

    SEVERE_KEYWORDS = (
        "flood", "fire", "shooting", "gun", "stabbing", "assault", "explosion",
        "collapse", "armed", "robbery", "injur", "dead", "impassable",
    )
    MODERATE_KEYWORDS = (
        "fallen", "blocked", "blocking", "theft", "stolen", "break-in", "vandal",
        "accident", "crash", "harass", "fight", "suspicious",
    )

    def is_enabled(self) -> bool:
        return True

    def get_model_info(self) -> Dict[str, str]:
        return {"name": self.MODEL_NAME, "version": self.MODEL_VERSION}

    def classify(self, title: str, description: str) -> Category:
        text = f"{title} {description}".lower()

        if any(word in text for word in self.SEVERE_KEYWORDS):
            return Category.SEVERE
        if any(word in text for word in self.MODERATE_KEYWORDS):
            return Category.MODERATE
        return Category.LOW
