from django.db import models


class Payment(models.Model):
    """Ledger row for one gateway operation performed for a booking."""

    KIND_AUTHORIZATION = "AUTHORIZATION"
    KIND_CHECKOUT = "CHECKOUT"
    KIND_CAPTURE = "CAPTURE"
    KIND_RELEASE = "RELEASE"
    KIND_REFUND = "REFUND"
    KINDS = [
        (KIND_AUTHORIZATION, "Authorization"),
        (KIND_CHECKOUT, "Checkout session"),
        (KIND_CAPTURE, "Capture"),
        (KIND_RELEASE, "Release"),
        (KIND_REFUND, "Refund"),
    ]

    STATUS_PENDING = "PENDING"
    STATUS_SUCCEEDED = "SUCCEEDED"
    STATUS_FAILED = "FAILED"
    STATUSES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_SUCCEEDED, "Succeeded"),
        (STATUS_FAILED, "Failed"),
    ]

    booking = models.ForeignKey('bookings.Booking', on_delete=models.CASCADE, related_name='payments')
    kind = models.CharField(max_length=20, choices=KINDS)
    amount_cents = models.PositiveIntegerField()
    currency = models.CharField(max_length=10, default='usd')
    stripe_payment_intent = models.CharField(max_length=200, blank=True)
    stripe_checkout_session = models.CharField(max_length=200, blank=True)
    stripe_refund = models.CharField(max_length=200, blank=True)
    idempotency_key = models.CharField(max_length=255, unique=True)
    status = models.CharField(max_length=30, choices=STATUSES, default=STATUS_PENDING)
    error_message = models.TextField(blank=True)
    needs_reconciliation = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.kind} {self.amount_cents} {self.currency} ({self.status})"


class ProcessedWebhookEvent(models.Model):
    event_id = models.CharField(max_length=255, unique=True)
    event_type = models.CharField(max_length=100)
    processed_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.event_type} {self.event_id}"


class ProcessedPaymentObject(models.Model):
    """A gateway artifact whose effect has already been applied to its booking."""

    object_id = models.CharField(max_length=255)
    effect = models.CharField(max_length=50)
    booking = models.ForeignKey(
        'bookings.Booking',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='processed_payment_objects',
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['object_id', 'effect'], name='processed_payment_object_once'),
        ]

    def __str__(self):
        return f"{self.effect} {self.object_id}"


class WebhookFailure(models.Model):
    event_id = models.CharField(max_length=255)
    event_type = models.CharField(max_length=100)
    payload = models.JSONField()
    error = models.TextField()
    attempts = models.PositiveIntegerField(default=1)
    last_attempt_at = models.DateTimeField(auto_now=True)
    resolved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.event_type} {self.event_id} failed"

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None
