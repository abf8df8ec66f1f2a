"""Application services - jobs, sync, credentials and webhooks."""

from cleanspot.application.services.clean_playlist_job_service import (
    CleanPlaylistJobService,
)
from cleanspot.application.services.credential_vault import CredentialVault
from cleanspot.application.services.error_classifier import ErrorClassifier
from cleanspot.application.services.playlist_delta import (
    PlaylistDelta,
    PlaylistDeltaCalculator,
)
from cleanspot.application.services.playlist_sync_service import SyncService
from cleanspot.application.services.progress_broadcaster import (
    ProgressBroadcaster,
    ProgressEvent,
)
from cleanspot.application.services.subscription_service import SubscriptionService
from cleanspot.application.services.sync_time import SyncTimeCalculator
from cleanspot.application.services.track_matching import TrackMatcher
from cleanspot.application.services.webhook_backoff import WebhookBackoff
from cleanspot.application.services.webhook_service import WebhookOutcome, WebhookService

__all__ = [
    "CleanPlaylistJobService",
    "CredentialVault",
    "ErrorClassifier",
    "PlaylistDelta",
    "PlaylistDeltaCalculator",
    "ProgressBroadcaster",
    "ProgressEvent",
    "SubscriptionService",
    "SyncService",
    "SyncTimeCalculator",
    "TrackMatcher",
    "WebhookBackoff",
    "WebhookOutcome",
    "WebhookService",
]
