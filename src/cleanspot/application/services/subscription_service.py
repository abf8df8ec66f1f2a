"""Subscription Service - payment processor events → user_subscriptions.

Hey future me - two callers:
- the sync engine asks is_active(user_id) (ISubscriptionChecker port)
- WebhookService calls apply_event() for every verified, not-yet-processed event

apply_event() does NOT commit. WebhookService commits the subscription change together
with the idempotency ledger row, so the side effect and "event handled" land atomically.

User resolution order for an incoming object:
    metadata.user_id → client_reference_id → stored customer_id
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from cleanspot.domain.entities import SubscriptionStatus
from cleanspot.domain.exceptions import ValidationException
from cleanspot.domain.ports import ISubscriptionChecker
from cleanspot.infrastructure.persistence.models import UserSubscriptionModel, utc_now
from cleanspot.infrastructure.persistence.repositories import UserSubscriptionRepository

logger = logging.getLogger(__name__)

# Processor states that aren't ours map onto the closest one
_STATUS_ALIASES = {
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "paused": SubscriptionStatus.CANCELED,
}


def _to_status(value: str | None) -> SubscriptionStatus:
    if not value:
        return SubscriptionStatus.INCOMPLETE
    try:
        return SubscriptionStatus(value)
    except ValueError:
        return _STATUS_ALIASES.get(value, SubscriptionStatus.INCOMPLETE)


def _from_timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _id_of(value: Any) -> str | None:
    """Processor fields are either an id string or an expanded object with "id"."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


class SubscriptionService(ISubscriptionChecker):
    """Reads and updates subscription state."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._repo = UserSubscriptionRepository(session)
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            "checkout.session.completed": self._on_checkout_completed,
            "customer.subscription.created": self._on_subscription_changed,
            "customer.subscription.updated": self._on_subscription_changed,
            "customer.subscription.deleted": self._on_subscription_deleted,
            "invoice.payment_failed": self._on_payment_failed,
            "invoice.payment_succeeded": self._on_payment_succeeded,
        }

    async def is_active(self, user_id: str) -> bool:
        subscription = await self._repo.get_by_user(user_id)
        return subscription is not None and subscription.is_active()

    def handles(self, event_type: str) -> bool:
        return event_type in self._handlers

    async def apply_event(self, event_type: str, event: dict[str, Any]) -> bool:
        """Apply one processor event.

        Args:
            event_type: e.g. "customer.subscription.updated"
            event: The full event envelope ({"id", "type", "data": {"object": {...}}})

        Returns:
            False for event types we don't care about (nothing changed)

        Raises:
            ValidationException: Event can't be tied to a user (permanent failure)
        """
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug(f"Ignoring unsupported payment event type {event_type}")
            return False

        obj = (event.get("data") or {}).get("object")
        if not isinstance(obj, dict):
            raise ValidationException(f"Event {event.get('id')} has no data.object")

        await handler(obj)
        return True

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _on_checkout_completed(self, obj: dict[str, Any]) -> None:
        subscription = await self._resolve(obj)
        if subscription is None:
            raise ValidationException(
                f"Checkout session {obj.get('id')} cannot be linked to a user"
            )
        subscription.customer_id = _id_of(obj.get("customer")) or subscription.customer_id
        subscription.subscription_id = (
            _id_of(obj.get("subscription")) or subscription.subscription_id
        )
        subscription.status = SubscriptionStatus.ACTIVE.value
        subscription.canceled_at = None
        logger.info(f"Checkout completed for user {subscription.user_id}")

    async def _on_subscription_changed(self, obj: dict[str, Any]) -> None:
        subscription = await self._resolve(obj, subscription_id=obj.get("id"))
        if subscription is None:
            raise ValidationException(
                f"Subscription {obj.get('id')} cannot be linked to a user"
            )
        status = _to_status(obj.get("status"))
        subscription.subscription_id = obj.get("id") or subscription.subscription_id
        subscription.customer_id = _id_of(obj.get("customer")) or subscription.customer_id
        subscription.status = status.value
        subscription.plan = self._plan_of(obj) or subscription.plan
        period_end = _from_timestamp(obj.get("current_period_end"))
        if period_end is not None:
            subscription.current_period_end = period_end
        if status is SubscriptionStatus.CANCELED and subscription.canceled_at is None:
            subscription.canceled_at = utc_now()
        logger.info(f"Subscription {subscription.subscription_id} is now {status.value}")

    async def _on_subscription_deleted(self, obj: dict[str, Any]) -> None:
        subscription = await self._resolve(obj, subscription_id=obj.get("id"), create=False)
        if subscription is None:
            logger.warning(f"Deleted subscription {obj.get('id')} is unknown, nothing to cancel")
            return
        subscription.status = SubscriptionStatus.CANCELED.value
        subscription.canceled_at = utc_now()
        logger.info(f"Subscription {subscription.subscription_id} canceled")

    async def _on_payment_failed(self, obj: dict[str, Any]) -> None:
        await self._set_invoice_status(obj, SubscriptionStatus.PAST_DUE)

    async def _on_payment_succeeded(self, obj: dict[str, Any]) -> None:
        await self._set_invoice_status(obj, SubscriptionStatus.ACTIVE)

    async def _set_invoice_status(self, obj: dict[str, Any], status: SubscriptionStatus) -> None:
        subscription = await self._resolve(
            obj, subscription_id=_id_of(obj.get("subscription")), create=False
        )
        if subscription is None:
            logger.warning(
                f"Invoice {obj.get('id')} belongs to no known subscription, ignoring"
            )
            return
        subscription.status = status.value
        period_end = _from_timestamp(obj.get("period_end"))
        if status is SubscriptionStatus.ACTIVE and period_end is not None:
            subscription.current_period_end = period_end
        logger.info(
            f"Invoice {obj.get('id')} set subscription {subscription.subscription_id} "
            f"to {status.value}"
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _resolve(
        self,
        obj: dict[str, Any],
        subscription_id: str | None = None,
        create: bool = True,
    ) -> UserSubscriptionModel | None:
        """Find (or create) the subscription row an event object refers to."""
        if subscription_id:
            existing = await self._repo.get_by_subscription_id(subscription_id)
            if existing is not None:
                return existing

        metadata = obj.get("metadata") or {}
        user_id = metadata.get("user_id") or obj.get("client_reference_id")
        if user_id:
            existing = await self._repo.get_by_user(str(user_id))
            if existing is not None:
                return existing

        customer_id = _id_of(obj.get("customer"))
        if customer_id:
            existing = await self._repo.get_by_customer_id(customer_id)
            if existing is not None:
                return existing

        if not user_id or not create:
            return None

        subscription = UserSubscriptionModel(
            user_id=str(user_id),
            customer_id=customer_id,
            subscription_id=subscription_id,
            status=SubscriptionStatus.INCOMPLETE.value,
        )
        await self._repo.add(subscription)
        return subscription

    @staticmethod
    def _plan_of(obj: dict[str, Any]) -> str | None:
        items = (obj.get("items") or {}).get("data") or []
        if items:
            price = items[0].get("price") or {}
            return price.get("id")
        plan = obj.get("plan")
        return plan.get("id") if isinstance(plan, dict) else None
