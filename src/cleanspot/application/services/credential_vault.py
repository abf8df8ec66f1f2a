"""Credential Vault - per-user, per-provider tokens encrypted at rest.

Hey future me - this is THE way the rest of the app gets a provider access token.
Nobody else touches MusicTokenModel ciphertext or the encryption key:

    vault = CredentialVault(session, encryption, {"spotify": spotify_client})
    access_token = await vault.get_valid_access_token(user_id, "spotify")

Lifecycle rules (see MusicTokenModel helpers):
- "expired" already kicks in 5 minutes BEFORE expires_at
- refresh is only attempted while can_refresh() holds (refresh token present, not
  revoked, fewer than 5 consecutive failures)
- after 5 failures NOTHING refreshes again until store() is called (full reconnect)
- revoke() is a soft delete, rows stay for auditability

Every mutation commits immediately. A refresh failure must be counted even if the job
that triggered it fails and rolls back afterwards.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from cleanspot.domain.entities import MAX_REFRESH_FAILURES
from cleanspot.domain.exceptions import (
    CredentialError,
    DomainException,
    EntityNotFoundException,
    TokenEncryptionError,
)
from cleanspot.domain.ports import ITokenRefresher
from cleanspot.infrastructure.persistence.models import MusicTokenModel, utc_now
from cleanspot.infrastructure.persistence.repositories import MusicTokenRepository
from cleanspot.infrastructure.security.token_encryption import TokenEncryption

logger = logging.getLogger(__name__)


class CredentialVault:
    """Stores, validates, refreshes and revokes provider tokens."""

    def __init__(
        self,
        session: AsyncSession,
        encryption: TokenEncryption,
        refreshers: dict[str, ITokenRefresher] | None = None,
    ) -> None:
        self._session = session
        self._repo = MusicTokenRepository(session)
        self._encryption = encryption
        self._refreshers = refreshers or {}

    async def get(self, user_id: str, provider: str) -> MusicTokenModel:
        """Get the stored (non-revoked) token row.

        Raises:
            EntityNotFoundException: No token, or the token was revoked
        """
        token = await self._repo.get(user_id, provider)
        if token is None or token.is_revoked:
            raise EntityNotFoundException("MusicToken", f"{user_id}/{provider}")
        return token

    async def store(
        self,
        user_id: str,
        provider: str,
        access_token: str,
        refresh_token: str | None,
        ttl_seconds: int,
        scopes: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MusicTokenModel:
        """Create or replace the token for (user, provider).

        A store is a fresh connect: revocation and the refresh failure counter are reset.
        """
        now = utc_now()
        encrypted_access = self._encryption.encrypt(access_token)
        # "" is stored as NULL so can_refresh() sees it as absent
        encrypted_refresh = self._encryption.encrypt(refresh_token) if refresh_token else None
        expires_at = now + timedelta(seconds=ttl_seconds)

        token = await self._repo.get(user_id, provider)
        if token is None:
            token = MusicTokenModel(
                user_id=user_id,
                provider=provider,
                encrypted_access_token=encrypted_access,
                encrypted_refresh_token=encrypted_refresh,
                expires_at=expires_at,
                scopes=list(scopes or []),
                provider_metadata=dict(metadata or {}),
                is_revoked=False,
                refresh_failure_count=0,
                created_at=now,
                updated_at=now,
            )
            await self._repo.add(token)
            logger.info(f"Stored new {provider} token for user {user_id}")
        else:
            token.encrypted_access_token = encrypted_access
            token.encrypted_refresh_token = encrypted_refresh
            token.expires_at = expires_at
            token.scopes = list(scopes or [])
            token.provider_metadata = dict(metadata or {})
            token.is_revoked = False
            token.refresh_failure_count = 0
            token.updated_at = now
            logger.info(f"Replaced {provider} token for user {user_id}")

        await self._session.commit()
        return token

    async def is_valid(self, user_id: str, provider: str) -> bool:
        """True when a non-revoked, non-expired token exists."""
        token = await self._repo.get(user_id, provider)
        return token is not None and not token.is_revoked and not token.is_expired()

    async def refresh(self, user_id: str, provider: str) -> bool:
        """Refresh the access token through the provider's token endpoint.

        Returns:
            True on success. False if refresh isn't allowed or the provider call failed
            (the failure is counted).
        """
        token = await self._repo.get(user_id, provider)
        if token is None:
            logger.warning(f"Refresh requested for missing {provider} token (user {user_id})")
            return False
        if not token.can_refresh():
            logger.info(
                f"Skipping {provider} refresh for user {user_id}: "
                f"revoked={token.is_revoked}, failures={token.refresh_failure_count}"
            )
            return False

        refresher = self._refreshers.get(provider)
        if refresher is None:
            logger.error(f"No token refresher configured for provider '{provider}'")
            return False

        try:
            refresh_token = self._encryption.decrypt(token.encrypted_refresh_token or "")
            grant = await refresher.refresh_access_token(refresh_token)
        except DomainException as e:
            token.mark_refresh_failure()
            await self._session.commit()
            level = logging.ERROR if token.refresh_failure_count >= MAX_REFRESH_FAILURES else logging.WARNING
            logger.log(
                level,
                f"{provider} token refresh failed for user {user_id} "
                f"({token.refresh_failure_count}/{MAX_REFRESH_FAILURES}): {e.message}",
            )
            return False

        now = utc_now()
        token.encrypted_access_token = self._encryption.encrypt(grant.access_token)
        if grant.refresh_token:
            token.encrypted_refresh_token = self._encryption.encrypt(grant.refresh_token)
        token.expires_at = now + timedelta(seconds=grant.expires_in)
        if grant.scopes:
            token.scopes = list(grant.scopes)
        token.mark_refresh_success(now)
        await self._session.commit()
        logger.info(f"Refreshed {provider} token for user {user_id}")
        return True

    async def revoke(self, user_id: str, provider: str) -> None:
        """Soft-delete the token (row is kept)."""
        token = await self._repo.get(user_id, provider)
        if token is None or token.is_revoked:
            return
        token.is_revoked = True
        token.updated_at = utc_now()
        await self._session.commit()
        logger.info(f"Revoked {provider} token for user {user_id}")

    # Hey future me - jobs and syncs call THIS, not get(). It decrypts at the last moment
    # and turns every "can't get a usable token" situation into CredentialError, which the
    # job/sync layers report as "reconnect required" instead of a generic failure.
    async def get_valid_access_token(self, user_id: str, provider: str) -> str:
        """Plaintext access token, refreshed first if expired.

        Raises:
            CredentialError: No usable token and refresh impossible or failed
        """
        token = await self._repo.get(user_id, provider)
        if token is None or token.is_revoked:
            raise CredentialError(
                f"No {provider} connection found. Please connect your account.",
                provider=provider,
            )

        if token.is_expired():
            if not await self.refresh(user_id, provider):
                raise CredentialError(
                    f"Your {provider} session expired and could not be refreshed. "
                    "Please reconnect your account.",
                    provider=provider,
                )

        try:
            return self._encryption.decrypt(token.encrypted_access_token)
        except TokenEncryptionError as e:
            raise CredentialError(
                f"Stored {provider} credentials are unreadable. Please reconnect your account.",
                provider=provider,
            ) from e

    async def has_required_scopes(
        self, user_id: str, provider: str, required_scopes: list[str]
    ) -> bool:
        token = await self._repo.get(user_id, provider)
        if token is None or token.is_revoked:
            return False
        return token.has_scopes(required_scopes)
