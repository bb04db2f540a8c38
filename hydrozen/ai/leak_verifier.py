"""
leak_verifier.py — Image verdict client for leak photos.

HOW A VERDICT IS PRODUCED
─────────────────────────
1. The uploaded image is fetched back from its storage URL (httpx).
2. The bytes go to Gemini inline with _LEAK_PROMPT, which demands strict JSON:
     {"isLeakage": bool, "confidence": 0..1, "description": "..."}
3. parse_verdict() validates each field's type before trusting the payload.
4. If the model ignored the contract (prose, missing field, wrong type), the
   text is scanned for leak keywords instead and the verdict is marked
   degraded with a fixed confidence of 0.5, below the acceptance threshold,
   so a degraded verdict can never earn points on its own.

Any transport failure, SDK error or timeout becomes VerificationServiceError.
"""

import asyncio
import json
import logging
import re
from typing import Optional

import httpx

from hydrozen.ai.gemini_client import GeminiClient
from hydrozen.core.errors import VerificationServiceError
from hydrozen.models.leakage import ImageVerdict

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.5
_FALLBACK_DESCRIPTION_CHARS = 200
_LEAK_KEYWORDS = ("leak", "drip", "puddle", "wet")

_LEAK_PROMPT = """\
Look at this image and tell me if you see any signs of water leakage or
water-related issues. Consider things like: water puddles, wet surfaces,
dripping, or any water-related damage.

Respond ONLY in this exact JSON format and nothing else:
{"isLeakage": <true|false>, "confidence": <number between 0 and 1>, "description": "<detailed description of what you see>"}"""


# ── Parsing ───────────────────────────────────────────────────────────────────

def _parse_json(raw: str) -> Optional[dict]:
    """Extract and parse the first JSON object found in `raw`."""
    m = re.search(r"\{[\s\S]*\}", raw)
    if not m:
        return None
    try:
        data = json.loads(m.group())
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _strict_verdict(data: dict) -> Optional[ImageVerdict]:
    is_leakage = data.get("isLeakage")
    confidence = data.get("confidence")
    description = data.get("description")

    if not isinstance(is_leakage, bool):
        return None
    # bool is an int subclass; reject it explicitly
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return None
    if not isinstance(description, str):
        return None

    return ImageVerdict(
        is_leakage=is_leakage,
        confidence=max(0.0, min(1.0, float(confidence))),
        description=description,
    )


def keyword_verdict(text: str) -> ImageVerdict:
    """Degraded verdict from free text: mentions water plus a leak indicator."""
    lowered = text.lower()
    is_leakage = "water" in lowered and any(word in lowered for word in _LEAK_KEYWORDS)
    return ImageVerdict(
        is_leakage=is_leakage,
        confidence=FALLBACK_CONFIDENCE,
        description=text[:_FALLBACK_DESCRIPTION_CHARS],
        degraded=True,
    )


def parse_verdict(raw: str) -> ImageVerdict:
    data = _parse_json(raw)
    if data is not None:
        verdict = _strict_verdict(data)
        if verdict is not None:
            return verdict
    logger.warning("Verdict payload not well-formed, using keyword fallback: %.120s", raw)
    return keyword_verdict(raw)


# ── Client ────────────────────────────────────────────────────────────────────

class ImageVerdictClient:
    """Black-box leak classifier: image URL in, ImageVerdict out."""

    def __init__(
        self,
        gemini: GeminiClient,
        http: httpx.AsyncClient,
        timeout: float = 30.0,
    ) -> None:
        self.gemini = gemini
        self.http = http
        self.timeout = timeout

    async def _fetch_image(self, image_url: str) -> tuple[bytes, str]:
        try:
            response = await self.http.get(image_url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise VerificationServiceError(
                f"Could not fetch uploaded image: {exc.response.status_code}",
                status=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise VerificationServiceError(f"Could not fetch uploaded image: {exc}") from exc

        mime_type = response.headers.get("content-type", "image/jpeg").split(";")[0]
        return response.content, mime_type

    async def _ask_model(self, image_url: str) -> str:
        if self.gemini.mock_mode:
            return await self.gemini.generate_with_vision(
                _LEAK_PROMPT, b"", "image/jpeg", response_key="leak_verdict"
            )
        media, mime_type = await self._fetch_image(image_url)
        return await self.gemini.generate_with_vision(
            _LEAK_PROMPT, media, mime_type, response_key="leak_verdict"
        )

    async def verify(self, image_url: str) -> ImageVerdict:
        """Classify the image at *image_url*."""
        try:
            raw = await asyncio.wait_for(self._ask_model(image_url), timeout=self.timeout)
        except VerificationServiceError:
            raise
        except asyncio.TimeoutError as exc:
            raise VerificationServiceError(
                f"Image verification timed out after {self.timeout:.0f}s"
            ) from exc
        except Exception as exc:
            raise VerificationServiceError(f"Image verification failed: {exc}") from exc

        verdict = parse_verdict(raw)
        logger.info(
            "Verdict for %s: leak=%s confidence=%.2f degraded=%s",
            image_url, verdict.is_leakage, verdict.confidence, verdict.degraded,
        )
        return verdict
