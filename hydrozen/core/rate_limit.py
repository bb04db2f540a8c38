"""
rate_limit.py — Global rate limiter instance.

Uses slowapi (a Starlette-compatible wrapper around the `limits` library).
Requests are keyed by client IP address.

Usage in routes:
    from fastapi import Request
    from hydrozen.core.rate_limit import limiter

    @router.post("/reports")
    @limiter.limit("10/minute")
    async def submit(request: Request, payload: LeakImageSubmission):
        ...
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Image verification calls a paid multimodal model; throttled per IP.
SUBMISSION_RATE = "10/minute"

limiter = Limiter(key_func=get_remote_address)
