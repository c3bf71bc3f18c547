"""
================================================================================
FILE: access_bridge/core/webhook_verifier.py
================================================================================

PURPOSE:
    HMAC-SHA256 authenticity check for inbound unlock webhooks.

RULES:
    - No signature → reject (fail closed)
    - Optional "sha256=" prefix is stripped
    - Signature must be hex; byte lengths must match before comparing
    - Constant-time comparison (hmac.compare_digest)
    - Verification may be skipped only by explicit configuration, and every
      skipped request is logged as a warning
"""

import hashlib
import hmac
import logging
from typing import Optional, Union

from access_bridge.config import constants
from access_bridge.core.exceptions import ConfigurationError, WebhookSignatureError

logger = logging.getLogger(__name__)

Body = Union[bytes, str]


def _as_bytes(value: Body) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def compute_signature(body: Body, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body."""
    return hmac.new(_as_bytes(secret), _as_bytes(body), hashlib.sha256).hexdigest()


def verify_signature(body: Body, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Check a webhook signature.

    Args:
        body: Exact raw request body
        signature: Header value, with or without "sha256=" prefix
        secret: Shared secret

    Returns:
        True only if the signature matches
    """
    if not signature or not secret:
        return False

    provided = signature.strip()
    if provided.lower().startswith(constants.WEBHOOK_SIGNATURE_PREFIX):
        provided = provided[len(constants.WEBHOOK_SIGNATURE_PREFIX):]

    try:
        provided_bytes = bytes.fromhex(provided)
    except ValueError:
        return False

    expected_bytes = bytes.fromhex(compute_signature(body, secret))
    if len(provided_bytes) != len(expected_bytes):
        return False

    return hmac.compare_digest(provided_bytes, expected_bytes)


class WebhookVerifier:
    """Verifier bound to one secret and the operator's skip setting."""

    def __init__(self, secret: Optional[str], verify: bool = True):
        if verify and not secret:
            raise ConfigurationError(
                "Webhook signature verification is enabled but no secret is configured",
                context={"setting": "WEBHOOK_SECRET"},
            )
        self._secret = secret
        self._verify = verify
        if not verify:
            logger.warning("Webhook signature verification is DISABLED by configuration")

    @property
    def enabled(self) -> bool:
        return self._verify

    def verify(self, body: Body, signature: Optional[str]) -> None:
        """
        Raises:
            WebhookSignatureError: If verification is on and the signature is bad
        """
        if not self._verify:
            logger.warning("Skipping webhook signature verification (WEBHOOK_VERIFY_SIGNATURE=false)")
            return
        if not signature:
            logger.warning("Webhook rejected: missing signature header")
            raise WebhookSignatureError("Missing webhook signature")
        if not verify_signature(body, signature, self._secret):
            logger.warning("Webhook rejected: signature mismatch")
            raise WebhookSignatureError("Invalid webhook signature")
