"""Tests for CredentialVault (encryption at rest, refresh lifecycle, revocation)."""

from datetime import timedelta

import httpx
import pytest

from cleanspot.application.services.credential_vault import CredentialVault
from cleanspot.config.settings import MatchingSettings, SpotifySettings
from cleanspot.domain.entities import DEFAULT_PROVIDER, MAX_REFRESH_FAILURES
from cleanspot.domain.exceptions import (
    CredentialError,
    EntityNotFoundException,
    ExternalServiceError,
    TokenRefreshException,
)
from cleanspot.domain.ports import TokenGrant
from cleanspot.infrastructure.integrations.spotify_client import SpotifyClient
from cleanspot.infrastructure.persistence.models import utc_now

PROVIDER = DEFAULT_PROVIDER


async def _expire(session, vault, user_id: str) -> None:
    token = await vault.get(user_id, PROVIDER)
    token.expires_at = utc_now() + timedelta(minutes=3)
    await session.commit()


class TestStore:
    """Storing and replacing tokens."""

    @pytest.mark.asyncio
    async def test_tokens_are_encrypted_at_rest(self, vault, connected_user) -> None:
        """The row holds ciphertext, the vault hands out plaintext."""
        token = await vault.get(connected_user, PROVIDER)
        assert token.encrypted_access_token != "access-1"
        assert token.encrypted_refresh_token != "refresh-1"
        assert await vault.get_valid_access_token(connected_user, PROVIDER) == "access-1"

    @pytest.mark.asyncio
    async def test_store_replaces_and_resets_state(self, session, vault, connected_user) -> None:
        """Storing again clears revocation and the failure count."""
        token = await vault.get(connected_user, PROVIDER)
        token.refresh_failure_count = MAX_REFRESH_FAILURES
        await session.commit()
        await vault.revoke(connected_user, PROVIDER)

        await vault.store(connected_user, PROVIDER, "access-2", "refresh-2", ttl_seconds=3600)

        token = await vault.get(connected_user, PROVIDER)
        assert token.refresh_failure_count == 0
        assert token.is_revoked is False
        assert await vault.get_valid_access_token(connected_user, PROVIDER) == "access-2"

    @pytest.mark.asyncio
    async def test_empty_refresh_token_is_stored_as_absent(self, vault) -> None:
        """An empty refresh token is stored as NULL."""
        token = await vault.store("u2", PROVIDER, "a", "", ttl_seconds=3600)
        assert token.encrypted_refresh_token is None
        assert token.can_refresh() is False


class TestValidity:
    """Validity checks and revocation."""

    @pytest.mark.asyncio
    async def test_is_valid(self, session, vault, connected_user) -> None:
        """Fresh is valid. Expired and missing are not."""
        assert await vault.is_valid(connected_user, PROVIDER) is True
        await _expire(session, vault, connected_user)
        assert await vault.is_valid(connected_user, PROVIDER) is False
        assert await vault.is_valid("nobody", PROVIDER) is False

    @pytest.mark.asyncio
    async def test_revoked_token_is_soft_deleted(self, vault, connected_user) -> None:
        """Revoked tokens are hidden but the row stays."""
        await vault.revoke(connected_user, PROVIDER)
        assert await vault.is_valid(connected_user, PROVIDER) is False
        with pytest.raises(EntityNotFoundException):
            await vault.get(connected_user, PROVIDER)
        with pytest.raises(CredentialError):
            await vault.get_valid_access_token(connected_user, PROVIDER)


class TestRefresh:
    """Refresh through the provider and failure bookkeeping."""

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed_transparently(
        self, session, vault, catalog, connected_user
    ) -> None:
        """get_valid_access_token refreshes an expired token on the way."""
        await _expire(session, vault, connected_user)
        catalog.grant = TokenGrant(access_token="fresh", expires_in=3600, refresh_token="r2")

        assert await vault.get_valid_access_token(connected_user, PROVIDER) == "fresh"
        token = await vault.get(connected_user, PROVIDER)
        assert token.is_expired() is False
        assert token.last_refresh_at is not None
        assert catalog.refresh_calls == 1

    @pytest.mark.asyncio
    async def test_failures_are_counted_and_lock_out_after_threshold(
        self, session, vault, catalog, connected_user
    ) -> None:
        """Failures count up until refresh stops asking the provider."""
        await _expire(session, vault, connected_user)
        catalog.grant = ExternalServiceError("token endpoint down")

        for _ in range(MAX_REFRESH_FAILURES):
            assert await vault.refresh(connected_user, PROVIDER) is False
        token = await vault.get(connected_user, PROVIDER)
        assert token.refresh_failure_count == MAX_REFRESH_FAILURES

        # Locked out: the provider isn't even asked any more
        catalog.grant = TokenGrant(access_token="fresh", expires_in=3600)
        assert await vault.refresh(connected_user, PROVIDER) is False
        assert catalog.refresh_calls == MAX_REFRESH_FAILURES

    @pytest.mark.asyncio
    async def test_success_resets_failure_counter(
        self, session, vault, catalog, connected_user
    ) -> None:
        """One good refresh clears earlier failures."""
        catalog.grant = ExternalServiceError("blip")
        await vault.refresh(connected_user, PROVIDER)
        await vault.refresh(connected_user, PROVIDER)
        catalog.grant = TokenGrant(access_token="fresh", expires_in=3600)

        assert await vault.refresh(connected_user, PROVIDER) is True
        assert (await vault.get(connected_user, PROVIDER)).refresh_failure_count == 0

    @pytest.mark.asyncio
    async def test_unrefreshable_expired_token_requires_reconnect(
        self, session, vault, catalog, connected_user
    ) -> None:
        """Expired and unrefreshable means the user must reconnect."""
        await _expire(session, vault, connected_user)
        catalog.grant = TokenRefreshException(error_code="invalid_grant", http_status=400)

        with pytest.raises(CredentialError) as exc_info:
            await vault.get_valid_access_token(connected_user, PROVIDER)
        assert exc_info.value.requires_reauth is True
        assert exc_info.value.provider == PROVIDER

    @pytest.mark.asyncio
    async def test_refresh_keeps_refresh_token_when_provider_does_not_rotate(
        self, session, vault, catalog, encryption, connected_user
    ) -> None:
        """No new refresh token in the grant keeps the old one."""
        catalog.grant = TokenGrant(access_token="fresh", expires_in=3600)
        await vault.refresh(connected_user, PROVIDER)
        token = await vault.get(connected_user, PROVIDER)
        assert encryption.decrypt(token.encrypted_refresh_token) == "refresh-1"

    @pytest.mark.asyncio
    async def test_unknown_provider_cannot_refresh(self, vault) -> None:
        """No refresher configured for the provider means False."""
        await vault.store("u3", "deezer", "a", "r", ttl_seconds=60)
        assert await vault.refresh("u3", "deezer") is False

    @pytest.mark.asyncio
    async def test_garbage_2xx_refresh_body_counts_as_a_failure(
        self, session, encryption, connected_user
    ) -> None:
        """A 200 from the token endpoint that isn't a grant fails the refresh, it doesn't raise."""
        spotify = SpotifyClient(
            SpotifySettings(client_id="cid", client_secret="secret"),
            MatchingSettings(),
            http_client=httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(200, text="ok"))
            ),
        )
        vault = CredentialVault(session, encryption, {PROVIDER: spotify})

        assert await vault.refresh(connected_user, PROVIDER) is False
        token = await vault.get(connected_user, PROVIDER)
        assert token.refresh_failure_count == 1
        assert await vault.get_valid_access_token(connected_user, PROVIDER) == "access-1"
