from __future__ import annotations

import hashlib
import hmac

from pulse_hub.signature import check_signature, sign_body, verify_signature

BODY = b'{"externalId": "ext-1", "type": "sleep", "score": 0.72}'


def test_base64_signature_verifies() -> None:
    signature = sign_body(BODY, "s3cret")
    check = check_signature(BODY, signature, "s3cret")
    assert check.status == "verified"
    assert check.passed


def test_hex_signature_verifies() -> None:
    signature = hmac.new(b"s3cret", BODY, hashlib.sha256).hexdigest()
    assert verify_signature(BODY.decode("utf-8"), signature.upper(), "s3cret")


def test_signature_mismatch_fails() -> None:
    signature = sign_body(BODY, "other-secret")
    check = check_signature(BODY, signature, "s3cret")
    assert check.status == "invalid"
    assert check.reason == "signature mismatch"
    assert not verify_signature(BODY, signature, "s3cret")


def test_tampered_body_fails() -> None:
    signature = sign_body(BODY, "s3cret")
    assert not verify_signature(BODY.replace(b"0.72", b"0.99"), signature, "s3cret")


def test_missing_signature_or_secret_is_skipped() -> None:
    no_signature = check_signature(BODY, None, "s3cret")
    no_secret = check_signature(BODY, "anything", None)
    assert no_signature.status == "skipped"
    assert no_secret.status == "skipped"
    assert no_signature.passed and no_secret.passed
