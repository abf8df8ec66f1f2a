"""Tests for webhook signature verification."""

from cleanspot.infrastructure.security.webhook_signature import WebhookSignatureVerifier

PAYLOAD = '{"id": "evt_1", "type": "invoice.payment_failed"}'
NOW = 1_700_000_000


class TestWebhookSignatureVerifier:
    def setup_method(self) -> None:
        self.verifier = WebhookSignatureVerifier("whsec_abc", tolerance_seconds=300)

    def test_valid_signature(self) -> None:
        """A header we signed verifies."""
        header = self.verifier.sign(PAYLOAD, timestamp=NOW)
        assert self.verifier.verify(PAYLOAD, header, now=NOW + 10) is True

    def test_tampered_payload_is_rejected(self) -> None:
        """Changing one byte of the body breaks the signature."""
        header = self.verifier.sign(PAYLOAD, timestamp=NOW)
        assert self.verifier.verify(PAYLOAD + " ", header, now=NOW) is False

    def test_wrong_secret_is_rejected(self) -> None:
        """Signed with another secret means rejected."""
        header = WebhookSignatureVerifier("other").sign(PAYLOAD, timestamp=NOW)
        assert self.verifier.verify(PAYLOAD, header, now=NOW) is False

    def test_stale_timestamp_is_rejected(self) -> None:
        """Old timestamps fail the tolerance window."""
        header = self.verifier.sign(PAYLOAD, timestamp=NOW)
        assert self.verifier.verify(PAYLOAD, header, now=NOW + 301) is False

    def test_any_matching_v1_is_accepted(self) -> None:
        """One good v1 among several is enough (secret rotation)."""
        digest = self.verifier.compute(PAYLOAD, NOW)
        header = f"t={NOW},v1=deadbeef,v1={digest}"
        assert self.verifier.verify(PAYLOAD, header, now=NOW) is True

    def test_malformed_headers_never_raise(self) -> None:
        """Garbage headers return False."""
        for header in ["", "garbage", "t=abc,v1=00", "v1=00", f"t={NOW}"]:
            assert self.verifier.verify(PAYLOAD, header, now=NOW) is False

    def test_empty_secret_rejects_everything(self) -> None:
        """No configured secret, nothing verifies."""
        verifier = WebhookSignatureVerifier("")
        header = self.verifier.sign(PAYLOAD, timestamp=NOW)
        assert verifier.verify(PAYLOAD, header, now=NOW) is False
