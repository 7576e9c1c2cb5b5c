from django.contrib import admin

from payments.models import Payment

from .models import Booking, ProviderScheduleLock


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    can_delete = False
    readonly_fields = (
        "kind",
        "amount_cents",
        "status",
        "idempotency_key",
        "needs_reconciliation",
        "error_message",
        "created_at",
    )
    fields = readonly_fields


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("id", "service_name", "provider", "customer", "date", "time_start", "status", "payment_status")
    list_filter = ("status", "payment_status", "payment_flow")
    search_fields = ("id", "service_name", "provider__email", "customer__email", "payment_intent_id")
    readonly_fields = (
        "starts_at",
        "ends_at",
        "status",
        "payment_status",
        "payment_intent_id",
        "checkout_session_id",
        "payment_attempt",
        "confirmed_at",
        "created_at",
        "updated_at",
    )
    inlines = [PaymentInline]

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(ProviderScheduleLock)
class ProviderScheduleLockAdmin(admin.ModelAdmin):
    list_display = ("provider", "created_at")
