"""
verification.py — Photo evidence → verified, rewarded leak report.

HOW A SUBMISSION FLOWS
──────────────────────
0. validate()   MIME type must start with image/, size ≤ 5 MiB.
                Fails with ValidationError before any network call.
1. upload       ObjectStore.upload()          → image_url   (UploadError)
2. verdict      ImageVerdictClient.verify()   → ImageVerdict (VerificationServiceError)
3. policy       accept iff is_leakage and confidence > 0.7
4. reward       IncentiveLedger.apply_leak_reward() — report, stats, history,
                achievements. Rejections write nothing.

Steps run strictly in order; nothing is persisted before step 4, so a
request cancelled mid-upload or mid-verdict leaves no report behind.

Repeated submissions of the same photo are each rewarded; there is no
duplicate-image check.
"""

import logging
from typing import Union

from hydrozen.ai.leak_verifier import ImageVerdictClient
from hydrozen.core.errors import ImageTooLargeError, ValidationError
from hydrozen.models.leakage import (
    ImageUpload,
    ImageVerdict,
    LeakReport,
    PolicyRejection,
    SubmissionResponse,
)
from hydrozen.services.ledger import IncentiveLedger
from hydrozen.services.object_store import ObjectStore

logger = logging.getLogger(__name__)

ACCEPTANCE_CONFIDENCE = 0.7
MAX_IMAGE_BYTES = 5 * 1024 * 1024


def validate_image(image: ImageUpload, max_bytes: int = MAX_IMAGE_BYTES) -> None:
    if not image.mime_type.lower().startswith("image/"):
        raise ValidationError(f"Expected an image file, got {image.mime_type!r}")
    if image.size == 0:
        raise ValidationError("Image file is empty")
    if image.size > max_bytes:
        raise ImageTooLargeError(
            f"Image is {image.size / (1024 * 1024):.1f} MiB; the limit is "
            f"{max_bytes / (1024 * 1024):.0f} MiB"
        )


def is_accepted(verdict: ImageVerdict) -> bool:
    return verdict.is_leakage and verdict.confidence > ACCEPTANCE_CONFIDENCE


class VerificationPipeline:
    def __init__(
        self,
        store: ObjectStore,
        verifier: ImageVerdictClient,
        ledger: IncentiveLedger,
        max_image_bytes: int = MAX_IMAGE_BYTES,
    ) -> None:
        self.store = store
        self.verifier = verifier
        self.ledger = ledger
        self.max_image_bytes = max_image_bytes

    async def submit(self, user_id: str, image: ImageUpload) -> SubmissionResponse:
        """Run the full pipeline and describe the outcome for the API."""
        validate_image(image, self.max_image_bytes)

        image_url = await self.store.upload(image)
        verdict = await self.verifier.verify(image_url)

        if not is_accepted(verdict):
            logger.info(
                "Submission by %s rejected (leak=%s, confidence=%.2f)",
                user_id, verdict.is_leakage, verdict.confidence,
            )
            return SubmissionResponse(outcome="rejected", reason=verdict.description, verdict=verdict)

        reward = await self.ledger.apply_leak_reward(user_id, verdict, image_url)
        return SubmissionResponse(
            outcome="verified",
            report=reward.report,
            verdict=verdict,
            stats=reward.stats,
            unlocked=reward.unlocked,
        )

    async def submit_report(self, user_id: str, image: ImageUpload) -> Union[LeakReport, PolicyRejection]:
        """Core contract: a verified LeakReport, or the reason it was turned down."""
        result = await self.submit(user_id, image)
        if result.outcome == "rejected":
            return PolicyRejection(reason=result.reason or "", verdict=result.verdict)
        return result.report
