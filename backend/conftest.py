import hashlib
import hmac
import json
import time as time_module
from datetime import date, time

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from bookings.models import Booking
from catalog.models import Service
from catalog.pricing import calc_platform_fee_cents
from providers.models import ProviderPayoutAccount

User = get_user_model()


def _user(email, **extra):
    return User.objects.create_user(username=email, email=email, password="password123", **extra)


@pytest.fixture
def customer(db):
    return _user("casey@customer.test", first_name="Casey", display_name="Casey Customer")


@pytest.fixture
def other_customer(db):
    return _user("drew@customer.test", first_name="Drew")


@pytest.fixture
def provider(db):
    return _user("pat@provider.test", first_name="Pat", display_name="Pat's Studio")


@pytest.fixture
def payout_account(provider):
    return ProviderPayoutAccount.objects.create(
        provider=provider,
        account_id="acct_provider_ready",
        charges_enabled=True,
        payouts_enabled=True,
        details_submitted=True,
    )


@pytest.fixture
def service(provider):
    return Service.objects.create(
        provider=provider,
        name="Haircut",
        price_cents=5000,
        duration_minutes=60,
    )


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def make_booking(customer, provider):
    """Insert a booking row directly in any state, bypassing the request flow."""

    def _make(
        *,
        day=date(2026, 1, 15),
        start=time(14, 0),
        end=time(15, 0),
        status=Booking.AWAITING_PAYMENT,
        payment_status=Booking.PAYMENT_UNPAID,
        price_cents=5000,
        customer_user=None,
        provider_user=None,
        **extra,
    ):
        fee = calc_platform_fee_cents(price_cents)
        return Booking.objects.create(
            customer=customer_user or customer,
            provider=provider_user or provider,
            service_name=extra.pop("service_name", "Haircut"),
            date=day,
            time_start=start,
            time_end=end,
            status=status,
            payment_status=payment_status,
            service_price_cents=price_cents,
            platform_fee_cents=fee,
            amount_total_cents=price_cents + fee,
            **extra,
        )

    return _make


@pytest.fixture
def secured_booking(make_booking):
    """A booking whose funds are authorized and which awaits the provider."""

    def _make(**kwargs):
        kwargs.setdefault("status", Booking.PENDING_ACCEPTANCE)
        kwargs.setdefault("payment_status", Booking.PAYMENT_AUTHORIZED)
        kwargs.setdefault("payment_intent_id", f"pi_test_{kwargs.get('start', time(14, 0)):%H%M}")
        return make_booking(**kwargs)

    return _make


def sign_payload(payload: str, secret: str = "whsec_test", timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time_module.time())
    signature = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def post_webhook(api_client):
    """Deliver a signed Stripe event to the webhook endpoint."""

    def _post(event: dict, *, secret: str = "whsec_test"):
        payload = json.dumps(event)
        return api_client.post(
            "/api/webhooks/stripe/",
            data=payload,
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE=sign_payload(payload, secret=secret),
        )

    return _post


def stripe_event(event_id: str, event_type: str, data_object: dict, **extra) -> dict:
    event = {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": data_object},
    }
    event.update(extra)
    return event
