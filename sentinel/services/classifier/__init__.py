"""
Severity classifier plug-ins.

Classification is advisory and never blocks report creation: any failure
becomes Category.UNCATEGORIZED.
"""

from sentinel.services.classifier.base import SeverityClassifier
from sentinel.services.classifier.gemini_classifier import GeminiSeverityClassifier
from sentinel.services.classifier.rule_based import RuleBasedClassifier
from sentinel.services.classifier.registry import ClassifierRegistry, classify_severity

__all__ = [
    "SeverityClassifier",
    "GeminiSeverityClassifier",
    "RuleBasedClassifier",
    "ClassifierRegistry",
    "classify_severity",
]
