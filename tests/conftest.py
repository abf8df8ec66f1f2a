"""Shared fixtures: a throwaway SQLite database per test plus the core collaborators.

Hey future me - every test gets its own database FILE under tmp_path (not :memory:),
because workers open extra sessions and each would otherwise see an empty database.
"""

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from fakes import USER_ID, WEBHOOK_SECRET, FakeCatalog
from sqlalchemy.ext.asyncio import AsyncSession

from cleanspot.application.services.credential_vault import CredentialVault
from cleanspot.application.services.progress_broadcaster import ProgressBroadcaster
from cleanspot.config import Settings
from cleanspot.config.settings import (
    DatabaseSettings,
    JobSettings,
    SecuritySettings,
    WebhookSettings,
)
from cleanspot.domain.entities import DEFAULT_PROVIDER, SubscriptionStatus
from cleanspot.infrastructure.observability.metrics import reset_sync_metrics
from cleanspot.infrastructure.persistence import Database
from cleanspot.infrastructure.persistence.models import UserSubscriptionModel
from cleanspot.infrastructure.security.token_encryption import TokenEncryption


@pytest.fixture(autouse=True)
def fresh_metrics() -> None:
    """Every test starts with empty counters."""
    reset_sync_metrics()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"),
        security=SecuritySettings(token_encryption_key=TokenEncryption.generate_key()),
        jobs=JobSettings(batch_size=4, batch_retries=2, batch_retry_delay_seconds=0.0),
        webhooks=WebhookSettings(signing_secret=WEBHOOK_SECRET, jitter=False, max_retries=2),
    )


@pytest_asyncio.fixture
async def db(settings: Settings) -> AsyncIterator[Database]:
    database = Database(settings)
    await database.create_tables()
    yield database
    await database.drop_tables()
    await database.close()


@pytest_asyncio.fixture
async def session(db: Database) -> AsyncIterator[AsyncSession]:
    async with db.session_factory() as session:
        yield session


@pytest.fixture
def encryption(settings: Settings) -> TokenEncryption:
    return TokenEncryption(settings.security.token_encryption_key)


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def broadcaster() -> ProgressBroadcaster:
    return ProgressBroadcaster(queue_size=100)


@pytest.fixture
def vault(
    session: AsyncSession, encryption: TokenEncryption, catalog: FakeCatalog
) -> CredentialVault:
    return CredentialVault(session, encryption, {DEFAULT_PROVIDER: catalog})


@pytest_asyncio.fixture
async def connected_user(vault: CredentialVault) -> str:
    """USER_ID with a fresh, refreshable provider token."""
    await vault.store(USER_ID, DEFAULT_PROVIDER, "access-1", "refresh-1", ttl_seconds=3600)
    return USER_ID


@pytest_asyncio.fixture
async def subscribed_user(session: AsyncSession, connected_user: str) -> str:
    """connected_user plus an active subscription."""
    session.add(
        UserSubscriptionModel(
            user_id=connected_user,
            customer_id="cus_1",
            subscription_id="sub_1",
            status=SubscriptionStatus.ACTIVE.value,
        )
    )
    await session.commit()
    return connected_user
