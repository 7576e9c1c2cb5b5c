from __future__ import annotations

import logging

from .models import Payment

logger = logging.getLogger(__name__)


def record_operation(
    booking,
    *,
    kind: str,
    idempotency_key: str,
    status: str,
    amount_cents: int | None = None,
    payment_intent: str = "",
    checkout_session: str = "",
    refund_id: str = "",
    error_message: str = "",
    needs_reconciliation: bool = False,
) -> Payment:
    """Create or update the ledger row for the gateway call made under ``idempotency_key``."""

    defaults = {
        "booking": booking,
        "kind": kind,
        "amount_cents": booking.amount_total_cents if amount_cents is None else amount_cents,
        "currency": booking.currency,
        "status": status,
        "error_message": error_message,
        "needs_reconciliation": needs_reconciliation,
    }
    if payment_intent:
        defaults["stripe_payment_intent"] = payment_intent
    if checkout_session:
        defaults["stripe_checkout_session"] = checkout_session
    if refund_id:
        defaults["stripe_refund"] = refund_id

    payment, _ = Payment.objects.update_or_create(idempotency_key=idempotency_key, defaults=defaults)
    if needs_reconciliation:
        logger.error(
            "Payment %s for booking %s needs manual reconciliation: %s",
            idempotency_key,
            booking.pk,
            error_message or "unknown error",
        )
    return payment


def outstanding_reconciliations(booking):
    return booking.payments.filter(needs_reconciliation=True)
