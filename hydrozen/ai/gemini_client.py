"""
GeminiClient — multimodal model access for leak photo classification.

One call matters here: generate_with_vision(), which sends the raw image
bytes inline together with the classification prompt and returns the
model's text reply. Parsing that reply is leak_verifier's job.

Runtime modes (AI_MOCK_MODE env var):
  - MOCK (default): canned replies keyed by response_key, no network.
  - REAL: Gemini API calls with GEMINI_API_KEY and GEMINI_MODEL.

A real-mode client without a key degrades to mock mode with a warning
instead of failing at startup.
"""

import logging
import os
from typing import Any, Optional

# Python 3.14 + protobuf native extension can fail when importing Gemini deps.
os.environ.setdefault("PROTOCOL_BUFFERS_PYTHON_IMPLEMENTATION", "python")

import google.generativeai as genai

from hydrozen.core.config import settings

logger = logging.getLogger(__name__)

# Deterministic, low-variance output for a yes/no classification.
_GENERATION_CONFIG: dict[str, Any] = {
    "temperature": 0.0,
    "response_mime_type": "application/json",
}

_MOCK_RESPONSES: dict[str, str] = {
    "default": "[MOCK] Gemini is in mock mode; set AI_MOCK_MODE=false and GEMINI_API_KEY.",
    "leak_verdict": (
        '{"isLeakage": true, "confidence": 0.92, '
        '"description": "[MOCK] Water is dripping from a pipe joint under the sink '
        'and a puddle has formed on the cabinet floor."}'
    ),
}


class GeminiClient:
    """
    Thin async wrapper over google.generativeai.

    Built once in the app lifespan and injected into ImageVerdictClient.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        mock_mode: Optional[bool] = None,
        model_name: Optional[str] = None,
    ) -> None:
        self.model_name = model_name or settings.gemini_model
        self.mock_mode = settings.ai_mock_mode if mock_mode is None else mock_mode
        self._model = None

        key = settings.gemini_api_key if api_key is None else api_key
        if not self.mock_mode and not key:
            logger.warning("GEMINI_API_KEY not set, leak verification runs in MOCK mode")
            self.mock_mode = True

        if self.mock_mode:
            logger.info("GeminiClient ready (mock)")
            return

        genai.configure(api_key=key)
        self._model = genai.GenerativeModel(self.model_name, generation_config=_GENERATION_CONFIG)
        logger.info("GeminiClient ready (model=%s)", self.model_name)

    async def generate_with_vision(
        self,
        prompt: str,
        media: bytes,
        mime_type: str,
        response_key: str = "default",
    ) -> str:
        """
        Send *prompt* plus the inline image and return the reply text.

        SDK errors propagate; the caller maps them to its own error type.
        """
        if self.mock_mode:
            return _MOCK_RESPONSES.get(response_key, _MOCK_RESPONSES["default"])

        parts = [
            {"text": prompt},
            {"inline_data": {"mime_type": mime_type, "data": media}},
        ]
        try:
            response = await self._model.generate_content_async(parts)
        except Exception as exc:
            logger.error("Gemini vision call failed (model=%s, mime=%s): %s", self.model_name, mime_type, exc)
            raise
        return response.text
