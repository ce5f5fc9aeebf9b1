"""
Webhook Security Module

Signature verification for the payment status webhook.
"""

import hashlib
import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Request

from .config import PAYMENT_WEBHOOK_SECRET

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature"


def constant_time_compare(a: str, b: str) -> bool:
    """Compare two strings in constant time"""
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """True when no secret is configured, or when the signature matches"""
    if not secret:
        return True
    if not signature:
        return False
    # Accept both "sha256=<hex>" and bare hex
    provided = signature.split("=", 1)[1] if signature.startswith("sha256=") else signature
    return constant_time_compare(provided.strip(), compute_hmac_sha256(secret, payload))


async def verify_payment_webhook(request: Request) -> bytes:
    """Return the raw body after checking its signature; 401 on mismatch"""
    body = await request.body()
    if not verify_signature(body, request.headers.get(SIGNATURE_HEADER), PAYMENT_WEBHOOK_SECRET):
        logger.warning(f"🚫 Payment webhook signature verification failed from {request.client}")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")
    return body
