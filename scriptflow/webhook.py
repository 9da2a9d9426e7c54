"""HMAC authentication of inbound webhook deliveries.

A sender signs the exact bytes it transmits::

    X-Webhook-Timestamp: 1718000000000
    X-Webhook-Signature: sha256=<hex(HMAC-SHA256(secret, "<timestamp>.<body>"))>

Without a timestamp the signed message is the body alone. Verification always
runs over the raw request body, never over a re-serialised form of it.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import time
from typing import Callable, Mapping, Optional, Tuple, Union

from pydantic import BaseModel

from .errors import AuthenticationError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-webhook-signature"
TIMESTAMP_HEADER = "x-webhook-timestamp"
DEFAULT_TIMESTAMP_TOLERANCE_MS = 5 * 60 * 1000

_SIGNATURE_PATTERN = re.compile(r"^(sha256)=([a-f0-9]+)$", re.IGNORECASE)

Body = Union[str, bytes]


class VerificationResult(BaseModel):
    valid: bool
    error: Optional[str] = None


def _as_bytes(payload: Body) -> bytes:
    return payload.encode("utf-8") if isinstance(payload, str) else payload


def parse_signature(header: Optional[str]) -> Optional[Tuple[str, str]]:
    """Split ``sha256=<hex>`` into ``(algorithm, hash)``, lower-cased."""
    if not header:
        return None
    match = _SIGNATURE_PATTERN.match(header.strip())
    if not match:
        return None
    return match.group(1).lower(), match.group(2).lower()


def compute_signature(secret: str, payload: Body, timestamp: Optional[str] = None) -> str:
    """Return the hex HMAC-SHA256 of ``payload`` (prefixed by ``timestamp.``)."""
    message = _as_bytes(payload)
    if timestamp:
        message = timestamp.encode("utf-8") + b"." + message
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signature_header(secret: str, payload: Body, timestamp: Optional[str] = None) -> str:
    return f"sha256={compute_signature(secret, payload, timestamp)}"


def verify_signature(
    secret: str,
    payload: Body,
    signature: Optional[str],
    timestamp: Optional[str] = None,
) -> VerificationResult:
    parsed = parse_signature(signature)
    if parsed is None:
        return VerificationResult(valid=False, error="Missing or malformed signature header")

    expected = compute_signature(secret, payload, timestamp).encode("ascii")
    actual = parsed[1].encode("ascii")
    if len(expected) != len(actual):
        return VerificationResult(valid=False, error="Invalid signature")
    if not hmac.compare_digest(expected, actual):
        return VerificationResult(valid=False, error="Invalid signature")
    return VerificationResult(valid=True)


def verify_timestamp(
    timestamp: Optional[str],
    tolerance_ms: int = DEFAULT_TIMESTAMP_TOLERANCE_MS,
    now_ms: Optional[int] = None,
) -> VerificationResult:
    """Check ``|now - timestamp| <= tolerance``. A missing header passes."""
    if not timestamp:
        return VerificationResult(valid=True)
    try:
        sent_at = int(timestamp.strip())
    except ValueError:
        return VerificationResult(valid=False, error="Invalid timestamp format")

    current = now_ms if now_ms is not None else int(time.time() * 1000)
    if abs(current - sent_at) > tolerance_ms:
        return VerificationResult(
            valid=False, error="Request timestamp too old or in the future"
        )
    return VerificationResult(valid=True)


def get_webhook_headers(headers: Mapping[str, str]) -> Tuple[Optional[str], Optional[str]]:
    """Extract ``(signature, timestamp)`` from a case-insensitive header map."""
    return headers.get(SIGNATURE_HEADER), headers.get(TIMESTAMP_HEADER)


class WebhookAuthenticator:
    """Applies the webhook signing policy for one process.

    Signature verification is mandatory when ``require_hmac`` is set or when
    the request carries a signature header at all. Unsigned requests are
    accepted only when neither holds.
    """

    def __init__(
        self,
        require_hmac: bool = False,
        tolerance_ms: int = DEFAULT_TIMESTAMP_TOLERANCE_MS,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.require_hmac = require_hmac
        self.tolerance_ms = tolerance_ms
        self._clock = clock or (lambda: int(time.time() * 1000))

    def authenticate(
        self,
        secret: str,
        raw_body: Body,
        signature: Optional[str],
        timestamp: Optional[str],
        pipeline_id: Optional[str] = None,
    ) -> None:
        """Raise :class:`AuthenticationError` unless the delivery verifies."""
        if self.require_hmac or signature:
            result = verify_signature(secret, raw_body, signature, timestamp)
            if not result.valid:
                logger.warning(
                    f"Webhook signature rejected for pipeline={pipeline_id}: {result.error}"
                )
                raise AuthenticationError(result.error)

        result = verify_timestamp(timestamp, self.tolerance_ms, now_ms=self._clock())
        if not result.valid:
            logger.warning(
                f"Webhook timestamp rejected for pipeline={pipeline_id}: {result.error}"
            )
            raise AuthenticationError(result.error)
