"""
errors.py — Typed error taxonomy for the leak detection & incentive core.

  ValidationError           — bad input (oversized / non-image file). Raised
                              before any network call; user-correctable.
  UploadError               — object store rejected or failed the upload.
  VerificationServiceError  — the image verdict service failed or timed out.
  NotFoundError             — unknown or inactive challenge, missing entry.
  ConflictError             — write refused by current state (period
                              closed, challenge already joined or completed).
  LedgerInconsistencyError  — a secondary ledger write failed after the
                              primary stats write succeeded. Logged, never
                              raised to callers.

Policy rejections (image processed fine, verdict below threshold) are NOT
errors; see PolicyRejection in app models.

main.py registers one exception handler for HydroZenError so routes never
build error bodies by hand.
"""

from typing import Optional


class HydroZenError(Exception):
    """Base class for every error the core surfaces to callers."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        # Upstream HTTP status when the failure came from an external service
        self.status = status

    def to_dict(self) -> dict:
        body = {
            "error": type(self).__name__,
            "detail": self.message,
            "retryable": self.retryable,
        }
        if self.status is not None:
            body["upstream_status"] = self.status
        return body


class ValidationError(HydroZenError):
    status_code = 422


class ImageTooLargeError(ValidationError):
    status_code = 413


class UploadError(HydroZenError):
    status_code = 502
    retryable = True


class VerificationServiceError(HydroZenError):
    status_code = 502
    retryable = True


class NotFoundError(HydroZenError):
    status_code = 404


class ConflictError(HydroZenError):
    status_code = 409


class LedgerInconsistencyError(HydroZenError):
    """Carries the user and the write that was lost, for reconciliation."""

    def __init__(self, message: str, user_id: str, operation: str) -> None:
        super().__init__(message)
        self.user_id = user_id
        self.operation = operation
