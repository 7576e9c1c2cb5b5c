"""
Durable at-most-once records.

Each claim is a single unique insert; losing the race (or replaying) hits the
unique constraint and the claim returns ``False``. Claims run inside the
caller's transaction, so a rolled-back handler releases its claim.
"""

from __future__ import annotations

from django.db import IntegrityError, transaction

from .models import ProcessedPaymentObject, ProcessedWebhookEvent


def claim_event(event_id: str, event_type: str) -> bool:
    try:
        with transaction.atomic():
            ProcessedWebhookEvent.objects.create(event_id=event_id, event_type=event_type)
    except IntegrityError:
        return False
    return True


def claim_payment_object(object_id: str, effect: str, *, booking=None) -> bool:
    try:
        with transaction.atomic():
            ProcessedPaymentObject.objects.create(object_id=object_id, effect=effect, booking=booking)
    except IntegrityError:
        return False
    return True


def is_event_processed(event_id: str) -> bool:
    return ProcessedWebhookEvent.objects.filter(event_id=event_id).exists()
