"""
Shared-secret authentication for the inbound webhook.

Accepted credentials (either one):
- X-API-Key: <secret>
- Authorization: Bearer <secret>
All comparisons are constant-time.
"""
import hmac
import re
from typing import Mapping

from stockloyal.utils.request_parsing import header_value

_BEARER_RE = re.compile(r"^\s*Bearer\s+(.+?)\s*$", re.IGNORECASE)


def _secure_equals(expected: str, provided: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def extract_bearer_token(authorization: str) -> str:
    """Return the token from 'Bearer <token>', or '' if the header has another shape."""
    match = _BEARER_RE.match(authorization or "")
    return match.group(1).strip() if match else ""


def is_authorized(headers: Mapping[str, str], secret: str) -> bool:
    """True if the API-key header or the bearer token matches the shared secret."""
    if not secret:
        # An unset secret must never match an empty credential
        return False

    api_key = header_value(headers, "X-API-Key")
    if api_key and _secure_equals(secret, api_key):
        return True

    token = extract_bearer_token(header_value(headers, "Authorization"))
    if token and _secure_equals(secret, token):
        return True

    return False


def mask_secret(value: str, keep: int = 4) -> str:
    """Mask all but the last `keep` characters for log lines."""
    if not value:
        return ""
    if len(value) <= keep:
        return "*" * len(value)
    return "*" * (len(value) - keep) + value[-keep:]
