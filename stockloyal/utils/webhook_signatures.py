"""
Webhook signature validation - verify incoming webhooks are authentic.

Header format: X-Signature: sha256=<64 hex chars>
The HMAC-SHA256 is computed over the raw request bytes, never a re-serialized body.
A present-but-invalid signature is always rejected. Only absence is
environment-dependent (see signature_required).
"""
import hashlib
import hmac
import re
from typing import Mapping

from stockloyal.schemas.webhook_payloads import SignatureCheck, SignatureReason
from stockloyal.utils.request_parsing import header_value

SIGNATURE_HEADER = "X-Signature"
_SIGNATURE_RE = re.compile(r"^\s*sha256\s*=\s*([a-f0-9]{64})\s*$", re.IGNORECASE)


def compute_signature(secret: str, body: bytes) -> str:
    """Lowercase hex HMAC-SHA256 of body keyed by secret."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def format_signature_header(secret: str, body: bytes) -> str:
    return f"sha256={compute_signature(secret, body)}"


def validate_hmac_sha256(secret: str, signature: str, body: bytes) -> bool:
    """Constant-time check of a hex digest against the HMAC of body. Case-insensitive hex."""
    if not secret or not signature:
        return False
    return hmac.compare_digest(compute_signature(secret, body), signature.lower())


def verify_signature(
    headers: Mapping[str, str],
    body: bytes,
    secret: str,
) -> SignatureCheck:
    """
    Check X-Signature against the raw body.
    absent     -> header missing or blank
    bad_format -> header present but not sha256=<64 hex>
    mismatch   -> well-formed but digest differs
    ok         -> verified
    """
    raw_header = header_value(headers, SIGNATURE_HEADER)
    if not raw_header.strip():
        return SignatureCheck(present=False, verified=False, reason=SignatureReason.ABSENT)

    match = _SIGNATURE_RE.match(raw_header)
    if not match:
        return SignatureCheck(present=True, verified=False, reason=SignatureReason.BAD_FORMAT)

    if not validate_hmac_sha256(secret, match.group(1), body):
        return SignatureCheck(present=True, verified=False, reason=SignatureReason.MISMATCH)

    return SignatureCheck(present=True, verified=True, reason=SignatureReason.OK)


def signature_required(app_env: str) -> bool:
    """Unsigned deliveries are only accepted outside production."""
    return app_env.strip().lower() == "production"
