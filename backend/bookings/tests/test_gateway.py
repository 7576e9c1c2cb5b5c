from types import SimpleNamespace

import pytest
import stripe

from bookings.services import payments as gateway
from core.exceptions import PaymentAuthorizationExpired, PaymentFailed, UpstreamUnavailable


@pytest.fixture
def live_stripe(settings, monkeypatch):
    settings.STRIPE_USE_STUB = False
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    settings.STRIPE_MAX_NETWORK_RETRIES = 3
    monkeypatch.setattr(stripe, "api_key", None)
    monkeypatch.setattr(stripe, "max_network_retries", 0)
    return settings


@pytest.mark.django_db
class TestStubMode:
    def test_same_key_returns_same_intent(self, make_booking):
        booking = make_booking()

        first = gateway.create_payment_intent(booking=booking, destination_account="acct_1", idempotency_key="k1")
        second = gateway.create_payment_intent(booking=booking, destination_account="acct_1", idempotency_key="k1")
        other = gateway.create_payment_intent(booking=booking, destination_account="acct_1", idempotency_key="k2")

        assert first.id == second.id
        assert first.id != other.id
        assert first.amount == booking.amount_total_cents

    def test_checkout_session_links_intent(self, make_booking):
        booking = make_booking()

        session = gateway.create_checkout_session(booking=booking, destination_account="acct_1", idempotency_key="k1")

        assert session.id.startswith("cs_test_")
        assert session.payment_intent.startswith("pi_test_")
        assert f"booking={booking.pk}" in session.url
        assert f"amount={booking.amount_total_cents}" in session.url

    def test_missing_secret_key_falls_back_to_stub(self, settings, make_booking):
        settings.STRIPE_USE_STUB = False
        settings.STRIPE_SECRET_KEY = ""

        refund = gateway.refund_payment_intent(payment_intent_id="pi_1", idempotency_key="booking:1:refund")

        assert refund.id.startswith("re_test_")


@pytest.mark.django_db
class TestLiveMode:
    def test_authorization_is_a_manual_capture_destination_charge(self, live_stripe, make_booking, monkeypatch):
        booking = make_booking()
        calls = []

        def fake_create(**kwargs):
            calls.append(kwargs)
            return SimpleNamespace(id="pi_live", client_secret="secret")

        monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)

        intent = gateway.create_payment_intent(
            booking=booking, destination_account="acct_provider", idempotency_key="booking:x:authorize:1"
        )

        assert intent.id == "pi_live"
        assert stripe.api_key == "sk_test_123"
        assert stripe.max_network_retries == 3
        (kwargs,) = calls
        assert kwargs["amount"] == booking.amount_total_cents
        assert kwargs["capture_method"] == "manual"
        assert kwargs["application_fee_amount"] == booking.platform_fee_cents
        assert kwargs["transfer_data"] == {"destination": "acct_provider"}
        assert kwargs["idempotency_key"] == "booking:x:authorize:1"
        assert kwargs["metadata"]["booking_id"] == str(booking.pk)

    def test_refund_reverses_transfer_and_fee(self, live_stripe, monkeypatch):
        calls = []
        monkeypatch.setattr(
            stripe.Refund, "create", lambda **kwargs: calls.append(kwargs) or SimpleNamespace(id="re_live")
        )

        gateway.refund_payment_intent(payment_intent_id="pi_1", idempotency_key="booking:x:refund")

        assert calls[0]["reverse_transfer"] is True
        assert calls[0]["refund_application_fee"] is True
        assert calls[0]["payment_intent"] == "pi_1"

    def test_expired_capture_is_translated(self, live_stripe, monkeypatch):
        def expired(payment_intent_id, **kwargs):
            raise stripe.InvalidRequestError(
                "This PaymentIntent could not be captured because it has expired.",
                param=None,
                code="charge_expired_for_capture",
            )

        monkeypatch.setattr(stripe.PaymentIntent, "capture", expired)

        with pytest.raises(PaymentAuthorizationExpired):
            gateway.capture_payment_intent(payment_intent_id="pi_1", idempotency_key="booking:x:capture")

    def test_connection_error_is_retryable(self, live_stripe, monkeypatch):
        def offline(payment_intent_id, **kwargs):
            raise stripe.APIConnectionError("Network down")

        monkeypatch.setattr(stripe.PaymentIntent, "capture", offline)

        with pytest.raises(UpstreamUnavailable) as excinfo:
            gateway.capture_payment_intent(payment_intent_id="pi_1", idempotency_key="booking:x:capture")

        assert excinfo.value.retryable


class TestTranslateStripeError:
    def test_card_error(self):
        exc = stripe.CardError("Your card was declined.", param=None, code="card_declined")

        translated = gateway.translate_stripe_error(exc, operation="authorize")

        assert isinstance(translated, PaymentFailed)
        assert translated.code == "card_declined"
        assert not translated.retryable

    def test_rate_limit_is_upstream(self):
        translated = gateway.translate_stripe_error(stripe.RateLimitError("Slow down"), operation="capture")

        assert isinstance(translated, UpstreamUnavailable)

    def test_authentication_error_is_upstream(self):
        translated = gateway.translate_stripe_error(stripe.AuthenticationError("Bad key"), operation="capture")

        assert isinstance(translated, UpstreamUnavailable)
        assert translated.code == "authentication_error"

    def test_other_request_errors_fail_the_payment(self):
        exc = stripe.InvalidRequestError("No such payment_intent", param="intent", code="resource_missing")

        translated = gateway.translate_stripe_error(exc, operation="capture")

        assert type(translated) is PaymentFailed
        assert translated.code == "resource_missing"
