from django.contrib import admin

from .models import ProviderPayoutAccount


@admin.register(ProviderPayoutAccount)
class ProviderPayoutAccountAdmin(admin.ModelAdmin):
    list_display = (
        "provider",
        "account_id",
        "charges_enabled",
        "payouts_enabled",
        "updated_at",
    )
    readonly_fields = (
        "created_at",
        "updated_at",
        "last_webhook_received_at",
        "last_webhook_error_at",
        "last_webhook_error_message",
    )
    search_fields = ("account_id", "provider__email")
