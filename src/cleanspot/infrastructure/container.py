"""Service wiring shared by the HTTP layer and the background workers.

Hey future me - every service here is SESSION-SCOPED: routes build one per request
(api/dependencies.py), workers build one per job / sync / sweep. The long-lived pieces
(encryption key, Spotify adapter, broadcaster, job pool) live on this container, which the
lifespan creates once and stores on app.state.container.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from cleanspot.application.services.clean_playlist_job_service import (
    CleanPlaylistJobService,
)
from cleanspot.application.services.credential_vault import CredentialVault
from cleanspot.application.services.playlist_sync_service import SyncService
from cleanspot.application.services.progress_broadcaster import ProgressBroadcaster
from cleanspot.application.services.subscription_service import SubscriptionService
from cleanspot.application.services.webhook_backoff import WebhookBackoff
from cleanspot.application.services.webhook_service import WebhookService
from cleanspot.application.workers.job_worker import JobWorkerPool
from cleanspot.config import Settings
from cleanspot.domain.entities import DEFAULT_PROVIDER
from cleanspot.infrastructure.integrations.spotify_client import SpotifyClient
from cleanspot.infrastructure.security.token_encryption import TokenEncryption
from cleanspot.infrastructure.security.webhook_signature import WebhookSignatureVerifier

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Long-lived collaborators plus factories for session-scoped services."""

    settings: Settings
    encryption: TokenEncryption
    catalog: SpotifyClient
    broadcaster: ProgressBroadcaster
    job_pool: JobWorkerPool | None = None

    def vault(self, session: AsyncSession) -> CredentialVault:
        return CredentialVault(session, self.encryption, {DEFAULT_PROVIDER: self.catalog})

    def job_service(self, session: AsyncSession) -> CleanPlaylistJobService:
        return CleanPlaylistJobService(
            session=session,
            vault=self.vault(session),
            catalog=self.catalog,
            broadcaster=self.broadcaster,
            settings=self.settings.jobs,
            enqueue=self.job_pool.enqueue if self.job_pool is not None else None,
        )

    def sync_service(self, session: AsyncSession) -> SyncService:
        return SyncService(
            session=session,
            vault=self.vault(session),
            catalog=self.catalog,
            subscriptions=SubscriptionService(session),
            settings=self.settings.sync,
        )

    def webhook_service(self, session: AsyncSession) -> WebhookService:
        webhooks = self.settings.webhooks
        return WebhookService(
            session=session,
            verifier=WebhookSignatureVerifier(
                webhooks.signing_secret, tolerance_seconds=webhooks.tolerance_seconds
            ),
            subscriptions=SubscriptionService(session),
            backoff=WebhookBackoff.from_settings(webhooks),
            max_retries=webhooks.max_retries,
        )


def build_container(settings: Settings) -> ServiceContainer:
    """Create the long-lived collaborators from settings.

    Raises:
        ConfigurationError: Token encryption key missing
    """
    if not settings.webhooks.signing_secret:
        logger.warning("No webhook signing secret configured, all webhooks will be rejected")
    return ServiceContainer(
        settings=settings,
        encryption=TokenEncryption(settings.security.token_encryption_key),
        catalog=SpotifyClient(settings.spotify, settings.matching),
        broadcaster=ProgressBroadcaster(queue_size=settings.jobs.subscriber_queue_size),
    )
