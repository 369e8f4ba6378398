"""
Gemini Severity Classifier - Real LLM integration.

Calls the Gemini generateContent REST endpoint with a few-shot prompt and
expects ONLY a category name back.
"""

from typing import Any, Dict, Optional
import logging

import requests

from sentinel.core.exceptions import ClassificationFailure
from sentinel.core.settings import settings
from sentinel.models.report import Category
from sentinel.services.classifier.base import SeverityClassifier

logger = logging.getLogger(__name__)


PROMPT_TEMPLATE = """
This is an app that allows users to report dangerous neighborhood incidents.
Classify the following incident report into one of these three severity levels:
- Severe
- Moderate
- Low


Examples of reports and the categories they belong to:
1. Report title: "Flooded street". Description: "Heavy rains have caused severe flooding, making the street impassable for vehicles and pedestrians."
  Category: Severe


2. Report title: "Fallen tree". Description: "A large tree has fallen across the sidewalk, blocking pedestrian access but not causing any injuries."
  Category: Moderate


3. Report title: "Streetlight out". Description: "The streetlight is not working, causing reduced visibility at night but no immediate danger."
  Category: Low


Give ONLY the category name as the output.


Report title: "{title}"
Description: "{description}"
"""


def _extract_text_from_response(payload: Dict[str, Any]) -> str:
    candidates = payload.get("candidates") or []
    if not candidates:
        raise ValueError("Gemini response missing candidates")

    content = candidates[0].get("content") or {}
    parts = content.get("parts") or []
    texts = [part.get("text") for part in parts if isinstance(part.get("text"), str)]
    text = "\n".join(t for t in texts if t.strip()).strip()
    if not text:
        raise ValueError("Gemini response missing text parts")
    return text


class GeminiSeverityClassifier(SeverityClassifier):
    """
    Google Gemini API classifier.

    Requires GEMINI_API_KEY in environment variables.
    """

    MODEL_VERSION = "v1beta"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, session=None):
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.model = model or settings.GEMINI_MODEL
        self.timeout = settings.AI_TIMEOUT_SECONDS
        self.session = session or requests.Session()
        self.enabled = bool(self.api_key and self.api_key.strip())

        if self.enabled:
            logger.info(f"Gemini severity classifier initialized: {self.model}")
        else:
            logger.info("Gemini severity classifier disabled: No API key configured")

    def is_enabled(self) -> bool:
        return self.enabled

    def get_model_info(self) -> Dict[str, str]:
        return {"name": self.model, "version": self.MODEL_VERSION}

    def classify(self, title: str, description: str) -> Category:
        if not self.enabled:
            raise ClassificationFailure("Gemini API key not configured")

        prompt = PROMPT_TEMPLATE.format(title=title, description=description)
        try:
            text = self._call_gemini_api(prompt)
        except (requests.RequestException, ValueError) as e:
            raise ClassificationFailure(f"Gemini API error: {e}") from e

        category = Category.parse(text)
        if category == Category.UNCATEGORIZED:
            raise ClassificationFailure(f"Unexpected Gemini output: {text[:50]!r}")

        logger.info(f"AI severity: {category.value}")
        return category

    def _call_gemini_api(self, prompt: str) -> str:
        url = f"{settings.GEMINI_API_BASE_URL}/models/{self.model}:generateContent"
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": 0.0, "maxOutputTokens": 16},
        }
        response = self.session.post(
            url,
            params={"key": self.api_key},
            json=body,
            timeout=self.timeout,
        )
        response.raise_for_status()
        return _extract_text_from_response(response.json())
