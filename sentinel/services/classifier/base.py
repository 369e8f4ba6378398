"""
Severity Classifier Base Interface.

Defines the contract for classifier providers.
"""

from abc import ABC, abstractmethod
from typing import Dict

from sentinel.models.report import Category


class SeverityClassifier(ABC):
    """
    Abstract base class for severity classifiers.

    classify() may raise ClassificationFailure; the registry turns any
    failure into Category.UNCATEGORIZED so report creation never blocks on it.
    """

    @abstractmethod
    def is_enabled(self) -> bool:
        """
        Check if this classifier is enabled.

        Returns:
            True if provider is configured and ready, False otherwise
        """
        pass

    @abstractmethod
    def get_model_info(self) -> Dict[str, str]:
        """
        Get model information (name, version).

        Returns:
            Dict with 'name' and 'version' keys
        """
        pass

    @abstractmethod
    def classify(self, title: str, description: str) -> Category:
        """
        Classify an incident report into a severity level.

        Args:
            title: Report title
            description: Report description

        Returns:
            Category: Severe, Moderate or Low

        Raises:
            ClassificationFailure: the provider could not classify the report
        """
        pass
