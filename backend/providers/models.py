from django.conf import settings
from django.db import models


class ProviderPayoutAccount(models.Model):
    """Stripe Connect account that receives a provider's share of booking payments."""

    provider = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payout_account",
    )
    account_id = models.CharField(max_length=255, unique=True)
    livemode = models.BooleanField(default=False)
    charges_enabled = models.BooleanField(default=False)
    payouts_enabled = models.BooleanField(default=False)
    details_submitted = models.BooleanField(default=False)
    transfers_active = models.BooleanField(null=True, blank=True)
    disabled_reason = models.CharField(max_length=120, blank=True)
    default_currency = models.CharField(max_length=10, blank=True)
    account_email = models.EmailField(blank=True)
    last_webhook_received_at = models.DateTimeField(null=True, blank=True)
    last_webhook_error_at = models.DateTimeField(null=True, blank=True)
    last_webhook_error_message = models.CharField(max_length=500, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.provider} payout account ({self.account_id})"

    @property
    def is_ready(self) -> bool:
        if not self.charges_enabled or not self.payouts_enabled:
            return False
        return self.transfers_active is not False
