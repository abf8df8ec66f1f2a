"""Payment processor webhook signature verification.

Header format (Stripe-style): ``t=<unix timestamp>,v1=<hex hmac>[,v1=<hex hmac>...]``.
The signed message is ``"{t}.{raw body}"`` with HMAC-SHA256 over the shared secret.
"""

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookSignatureVerifier:
    """Verify signed webhook payloads against the shared signing secret."""

    secret: str
    tolerance_seconds: int = 300

    def compute(self, payload: str, timestamp: int) -> str:
        message = f"{timestamp}.{payload}".encode("utf-8")
        return hmac.new(self.secret.encode("utf-8"), message, hashlib.sha256).hexdigest()

    def sign(self, payload: str, timestamp: int | None = None) -> str:
        """Build a signature header (used by tests and local tooling)."""
        timestamp = int(time.time()) if timestamp is None else timestamp
        return f"t={timestamp},v1={self.compute(payload, timestamp)}"

    # Hey future me - returns False for ANY problem (no secret, malformed header, stale
    # timestamp, wrong digest) and never raises. Callers drop the event silently on False.
    def verify(self, payload: str, signature_header: str, now: float | None = None) -> bool:
        if not self.secret or not signature_header:
            return False

        timestamp: int | None = None
        candidates: list[str] = []
        for part in signature_header.split(","):
            key, sep, value = part.strip().partition("=")
            if not sep:
                return False
            if key == "t":
                try:
                    timestamp = int(value)
                except ValueError:
                    return False
            elif key == "v1":
                candidates.append(value)

        if timestamp is None or not candidates:
            return False

        current = time.time() if now is None else now
        if self.tolerance_seconds > 0 and abs(current - timestamp) > self.tolerance_seconds:
            logger.debug(f"Webhook signature timestamp outside tolerance ({timestamp})")
            return False

        expected = self.compute(payload, timestamp)
        return any(hmac.compare_digest(expected, candidate) for candidate in candidates)
