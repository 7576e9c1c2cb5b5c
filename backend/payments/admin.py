from django.contrib import admin, messages

from .models import Payment, ProcessedPaymentObject, ProcessedWebhookEvent, WebhookFailure
from .webhooks import FAILED, replay_failure


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("booking", "kind", "amount_cents", "status", "needs_reconciliation", "created_at")
    list_filter = ("kind", "status", "needs_reconciliation")
    search_fields = ("idempotency_key", "stripe_payment_intent", "stripe_checkout_session", "booking__id")
    readonly_fields = ("idempotency_key", "created_at", "updated_at")


@admin.register(ProcessedWebhookEvent)
class ProcessedWebhookEventAdmin(admin.ModelAdmin):
    list_display = ("event_id", "event_type", "processed_at")
    search_fields = ("event_id",)
    list_filter = ("event_type",)


@admin.register(ProcessedPaymentObject)
class ProcessedPaymentObjectAdmin(admin.ModelAdmin):
    list_display = ("object_id", "effect", "booking", "created_at")
    search_fields = ("object_id", "booking__id")
    list_filter = ("effect",)


@admin.register(WebhookFailure)
class WebhookFailureAdmin(admin.ModelAdmin):
    list_display = ("event_id", "event_type", "attempts", "created_at", "last_attempt_at", "resolved_at")
    list_filter = ("event_type", ("resolved_at", admin.EmptyFieldListFilter))
    search_fields = ("event_id", "error")
    readonly_fields = ("event_id", "event_type", "payload", "error", "attempts", "created_at", "last_attempt_at", "resolved_at")
    actions = ["replay_selected"]

    @admin.action(description="Replay selected webhook events")
    def replay_selected(self, request, queryset):
        failed = 0
        for failure in queryset.filter(resolved_at__isnull=True):
            if replay_failure(failure) == FAILED:
                failed += 1
        if failed:
            self.message_user(request, f"{failed} event(s) failed again.", level=messages.ERROR)
        else:
            self.message_user(request, "Replayed selected events.", level=messages.SUCCESS)
