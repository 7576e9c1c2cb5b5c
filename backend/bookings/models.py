import uuid
from zoneinfo import ZoneInfo

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q

from .intervals import TimeInterval


class Booking(models.Model):
    """A customer's request for a provider's time slot and the payment behind it."""

    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PENDING_ACCEPTANCE = "PENDING_ACCEPTANCE"
    CONFIRMED = "CONFIRMED"
    DECLINED = "DECLINED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    STATUSES = [
        (AWAITING_PAYMENT, "Awaiting payment"),
        (PENDING_ACCEPTANCE, "Pending acceptance"),
        (CONFIRMED, "Confirmed"),
        (DECLINED, "Declined"),
        (CANCELLED, "Cancelled"),
        (EXPIRED, "Expired"),
    ]
    TERMINAL_STATUSES = (DECLINED, CANCELLED, EXPIRED)
    ACTIVE_STATUSES = (PENDING_ACCEPTANCE, CONFIRMED)
    # Statuses that hold the provider's schedule; no two of these may overlap.
    BLOCKING_STATUSES = (CONFIRMED,)

    PAYMENT_UNPAID = "UNPAID"
    PAYMENT_AUTHORIZED = "AUTHORIZED"
    PAYMENT_CAPTURED = "CAPTURED"
    PAYMENT_RELEASED = "RELEASED"
    PAYMENT_REFUNDED = "REFUNDED"
    PAYMENT_FAILED = "FAILED"
    PAYMENT_STATUSES = [
        (PAYMENT_UNPAID, "Unpaid"),
        (PAYMENT_AUTHORIZED, "Authorized"),
        (PAYMENT_CAPTURED, "Captured"),
        (PAYMENT_RELEASED, "Released"),
        (PAYMENT_REFUNDED, "Refunded"),
        (PAYMENT_FAILED, "Failed"),
    ]
    FUNDS_SECURED = (PAYMENT_AUTHORIZED, PAYMENT_CAPTURED)

    FLOW_PAYMENT_SHEET = "payment_sheet"
    FLOW_CHECKOUT = "checkout"
    PAYMENT_FLOWS = [
        (FLOW_PAYMENT_SHEET, "Payment sheet"),
        (FLOW_CHECKOUT, "Hosted checkout"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="customer_bookings",
    )
    provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="provider_bookings",
    )
    service = models.ForeignKey(
        "catalog.Service",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bookings",
    )
    service_name = models.CharField(max_length=200, blank=True)
    date = models.DateField()
    time_start = models.TimeField()
    time_end = models.TimeField()
    starts_at = models.DateTimeField(editable=False)
    ends_at = models.DateTimeField(editable=False)
    notes = models.TextField(blank=True)

    status = models.CharField(max_length=20, choices=STATUSES, default=AWAITING_PAYMENT)
    payment_status = models.CharField(
        max_length=12, choices=PAYMENT_STATUSES, default=PAYMENT_UNPAID
    )
    payment_flow = models.CharField(
        max_length=20, choices=PAYMENT_FLOWS, default=FLOW_PAYMENT_SHEET
    )
    service_price_cents = models.PositiveIntegerField()
    platform_fee_cents = models.PositiveIntegerField(default=0)
    amount_total_cents = models.PositiveIntegerField()
    currency = models.CharField(max_length=10, default="usd")
    payment_intent_id = models.CharField(max_length=255, blank=True)
    checkout_session_id = models.CharField(max_length=255, blank=True)
    payment_attempt = models.PositiveIntegerField(default=1)

    decline_reason = models.TextField(blank=True)
    cancellation_reason = models.TextField(blank=True)
    request_key = models.CharField(max_length=255, blank=True)

    confirmed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["starts_at", "created_at"]
        constraints = [
            models.CheckConstraint(
                condition=Q(ends_at__gt=F("starts_at")),
                name="booking_ends_after_start",
            ),
            models.CheckConstraint(
                condition=Q(amount_total_cents=F("service_price_cents") + F("platform_fee_cents")),
                name="booking_total_matches_snapshot",
            ),
            models.UniqueConstraint(
                fields=["customer", "request_key"],
                condition=~Q(request_key=""),
                name="booking_unique_customer_request_key",
            ),
        ]
        indexes = [
            models.Index(fields=["provider", "status", "starts_at"], name="booking_provider_sched_idx"),
            models.Index(fields=["customer", "status"], name="booking_customer_status_idx"),
            models.Index(fields=["payment_intent_id"], name="booking_payment_intent_idx"),
            models.Index(fields=["checkout_session_id"], name="booking_checkout_session_idx"),
        ]

    def __str__(self):
        return f"{self.service_name or 'Booking'} on {self.date} {self.time_start:%H:%M} ({self.status})"

    @property
    def funds_secured(self) -> bool:
        return self.payment_status in self.FUNDS_SECURED

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def build_interval(self) -> TimeInterval:
        return TimeInterval.on_date(
            self.date, self.time_start, self.time_end, ZoneInfo(settings.BOOKING_TIME_ZONE)
        )

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval(self.starts_at, self.ends_at)

    def clean(self):
        super().clean()
        if self.date and self.time_start and self.time_end:
            if self.time_end <= self.time_start:
                raise ValidationError({"time_end": "End time must be after the start time on the same day."})
        if self.customer_id and self.customer_id == self.provider_id:
            raise ValidationError({"provider": "Providers cannot book themselves."})

    def save(self, *args, **kwargs):
        if kwargs.get("update_fields") is None:
            self.full_clean(exclude=["starts_at", "ends_at"])
            interval = self.build_interval()
            self.starts_at, self.ends_at = interval.start, interval.end
        return super().save(*args, **kwargs)


class ProviderScheduleLock(models.Model):
    """Row locked with SELECT ... FOR UPDATE to serialise schedule writes per provider."""

    provider = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="schedule_lock",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Schedule lock for {self.provider}"
