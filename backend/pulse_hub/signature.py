"""Shared-secret signature checks for inbound webhook bodies."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Literal, Optional, Union

logger = logging.getLogger(__name__)

SignatureStatus = Literal["verified", "skipped", "invalid"]


@dataclass(frozen=True)
class SignatureCheck:
    status: SignatureStatus
    reason: str = ""

    @property
    def passed(self) -> bool:
        return self.status != "invalid"


def _expected_digests(body: bytes, secret: str) -> tuple[str, str]:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii"), digest.hex()


def check_signature(
    raw_body: Union[str, bytes],
    signature: Optional[str],
    secret: Optional[str],
) -> SignatureCheck:
    """Check ``signature`` against an HMAC-SHA256 of ``raw_body``.

    A missing signature, or a missing secret, skips verification and counts
    as a pass. The digest is accepted in base64 or hex form. Any error raised
    while computing the digest is logged and reported as ``invalid``.
    """
    if not signature:
        return SignatureCheck("skipped", "no signature header")
    if not secret:
        logger.warning("Signature received but no webhook secret is configured; skipping verification")
        return SignatureCheck("skipped", "no webhook secret configured")
    try:
        body = raw_body.encode("utf-8") if isinstance(raw_body, str) else bytes(raw_body)
        expected_b64, expected_hex = _expected_digests(body, secret)
        provided = signature.strip()
        if hmac.compare_digest(provided.encode("utf-8"), expected_b64.encode("ascii")):
            return SignatureCheck("verified")
        if hmac.compare_digest(provided.lower().encode("utf-8"), expected_hex.encode("ascii")):
            return SignatureCheck("verified")
    except Exception:  # noqa: BLE001
        logger.exception("Signature verification failed with an internal error")
        return SignatureCheck("invalid", "verification error")
    logger.warning("Webhook signature mismatch (payload length %d)", len(raw_body))
    return SignatureCheck("invalid", "signature mismatch")


def verify_signature(
    raw_body: Union[str, bytes],
    signature: Optional[str],
    secret: Optional[str],
) -> bool:
    return check_signature(raw_body, signature, secret).passed


def sign_body(raw_body: Union[str, bytes], secret: str) -> str:
    """Return the base64 HMAC-SHA256 signature a sender would attach."""
    body = raw_body.encode("utf-8") if isinstance(raw_body, str) else raw_body
    return _expected_digests(body, secret)[0]


__all__ = ["SignatureCheck", "check_signature", "sign_body", "verify_signature"]
