from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from django.conf import settings

from core.exceptions import PayoutAccountUnavailable

from .models import ProviderPayoutAccount

logger = logging.getLogger(__name__)


def get_payout_account(provider_id) -> ProviderPayoutAccount | None:
    return ProviderPayoutAccount.objects.filter(provider_id=provider_id).first()


def require_payout_account(provider_id) -> ProviderPayoutAccount:
    """
    Return the provider's payout account or raise a user-actionable error.

    Bookings are destination charges, so without a connected account that can
    receive transfers there is nowhere to route the provider's share.
    """

    account = get_payout_account(provider_id)
    if account is None:
        logger.info("Provider %s has no payout account; refusing payment setup", provider_id)
        raise PayoutAccountUnavailable(code="payout_account_missing")
    if settings.PROVIDER_PAYOUT_REQUIRE_READY and not account.is_ready:
        logger.info(
            "Provider %s payout account %s not ready (charges=%s payouts=%s transfers=%s reason=%s)",
            provider_id,
            account.account_id,
            account.charges_enabled,
            account.payouts_enabled,
            account.transfers_active,
            account.disabled_reason or "none",
        )
        raise PayoutAccountUnavailable(
            "This provider has not finished payout setup and cannot accept payments yet.",
            code="payout_account_not_ready",
        )
    return account


def sync_account_from_payload(local_account: ProviderPayoutAccount, payload: Mapping[str, Any]) -> None:
    """Mirror the readiness flags of a Stripe account object onto the local record."""

    changed_fields: list[str] = []
    for field in ("livemode", "charges_enabled", "payouts_enabled", "details_submitted"):
        value = bool(payload.get(field, False))
        if getattr(local_account, field) != value:
            setattr(local_account, field, value)
            changed_fields.append(field)

    capabilities = payload.get("capabilities") or {}
    transfers = capabilities.get("transfers")
    transfers_active = None if transfers is None else transfers == "active"
    if local_account.transfers_active != transfers_active:
        local_account.transfers_active = transfers_active
        changed_fields.append("transfers_active")

    requirements = payload.get("requirements") or {}
    disabled_reason = requirements.get("disabled_reason") or ""
    if local_account.disabled_reason != disabled_reason:
        local_account.disabled_reason = disabled_reason
        changed_fields.append("disabled_reason")

    default_currency = payload.get("default_currency") or ""
    if local_account.default_currency != default_currency:
        local_account.default_currency = default_currency
        changed_fields.append("default_currency")

    email = payload.get("email") or ""
    if local_account.account_email != email:
        local_account.account_email = email
        changed_fields.append("account_email")

    local_account.last_webhook_received_at = datetime.now(tz=timezone.utc)
    local_account.last_webhook_error_at = None
    local_account.last_webhook_error_message = ""
    changed_fields += [
        "last_webhook_received_at",
        "last_webhook_error_at",
        "last_webhook_error_message",
        "updated_at",
    ]
    local_account.save(update_fields=changed_fields)


def apply_account_update(payload: Mapping[str, Any]) -> ProviderPayoutAccount | None:
    account_id = payload.get("id")
    account = ProviderPayoutAccount.objects.filter(account_id=account_id).first() if account_id else None
    if account is None:
        logger.info("Ignoring account update for unknown Stripe account %s", account_id)
        return None
    sync_account_from_payload(account, payload)
    logger.info(
        "Payout account %s synced: charges=%s payouts=%s ready=%s",
        account.account_id,
        account.charges_enabled,
        account.payouts_enabled,
        account.is_ready,
    )
    return account


def disconnect_account(account_id: str) -> ProviderPayoutAccount | None:
    """The provider revoked the platform's access; stop routing payments to the account."""

    account = ProviderPayoutAccount.objects.filter(account_id=account_id).first()
    if account is None:
        return None
    account.charges_enabled = False
    account.payouts_enabled = False
    account.transfers_active = False
    account.disabled_reason = "deauthorized"
    account.last_webhook_received_at = datetime.now(tz=timezone.utc)
    account.save(
        update_fields=[
            "charges_enabled",
            "payouts_enabled",
            "transfers_active",
            "disabled_reason",
            "last_webhook_received_at",
            "updated_at",
        ]
    )
    logger.warning("Payout account %s was deauthorized by its provider", account_id)
    return account
