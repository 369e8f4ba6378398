"""
Classifier Registry.

Selects the severity classifier from configuration and guarantees that
classification never blocks report creation.

Rules:
- AI_ENABLED and GEMINI_API_KEY set -> Gemini; any failure -> Uncategorized
- otherwise -> rule-based classifier
"""

from typing import Optional
import logging

from sentinel.core.exceptions import ClassificationFailure
from sentinel.core.settings import settings
from sentinel.models.report import Category
from sentinel.services.classifier.base import SeverityClassifier
from sentinel.services.classifier.gemini_classifier import GeminiSeverityClassifier
from sentinel.services.classifier.rule_based import RuleBasedClassifier

logger = logging.getLogger(__name__)


class ClassifierRegistry:
    """Holds the active classifier and wraps it with failure handling."""

    def __init__(self, classifier: Optional[SeverityClassifier] = None):
        self.classifier = classifier or self._select_classifier()

    @staticmethod
    def _select_classifier() -> SeverityClassifier:
        if not settings.AI_ENABLED:
            logger.info("AI is disabled globally (AI_ENABLED=false), using rule-based classifier")
            return RuleBasedClassifier()

        gemini = GeminiSeverityClassifier()
        if gemini.is_enabled():
            return gemini

        logger.info("No Gemini API key configured, using rule-based classifier")
        return RuleBasedClassifier()

    def classify(self, title: str, description: str) -> Category:
        """
        Classify a report. Never raises.

        Returns:
            The provider's category, or Uncategorized if it failed
        """
        name = self.classifier.get_model_info()["name"]
        try:
            return self.classifier.classify(title, description)
        except ClassificationFailure as e:
            logger.warning(f"Classifier {name} failed, using Uncategorized: {e}")
        except Exception as e:
            logger.error(f"Classifier {name} raised unexpectedly, using Uncategorized: {e}", exc_info=True)
        return Category.UNCATEGORIZED


# Global registry instance (singleton)
_registry: Optional[ClassifierRegistry] = None


def get_classifier_registry() -> ClassifierRegistry:
    global _registry
    if _registry is None:
        _registry = ClassifierRegistry()
    return _registry


def classify_severity(title: str, description: str) -> Category:
    """Main entry point for severity classification."""
    return get_classifier_registry().classify(title, description)
