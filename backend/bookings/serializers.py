from rest_framework import serializers

from bookings.models import Booking


class BookingSerializer(serializers.ModelSerializer):
    customer_name = serializers.StringRelatedField(source="customer")
    provider_name = serializers.StringRelatedField(source="provider")

    class Meta:
        model = Booking
        fields = [
            "id",
            "customer",
            "customer_name",
            "provider",
            "provider_name",
            "service",
            "service_name",
            "date",
            "time_start",
            "time_end",
            "starts_at",
            "ends_at",
            "notes",
            "status",
            "payment_status",
            "payment_flow",
            "service_price_cents",
            "platform_fee_cents",
            "amount_total_cents",
            "currency",
            "payment_intent_id",
            "checkout_session_id",
            "decline_reason",
            "cancellation_reason",
            "confirmed_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class BookingCreateSerializer(serializers.Serializer):
    """
    Booking request payload.

    Exactly what is booked is resolved server-side: a catalogue ``service``,
    inline service details, or a custom booking with ``time_end`` and
    ``price_cents``. Client-supplied totals are never accepted.
    """

    service = serializers.IntegerField(required=False, allow_null=True)
    provider = serializers.IntegerField(required=False, allow_null=True)
    date = serializers.DateField()
    time_start = serializers.TimeField()
    time_end = serializers.TimeField(required=False, allow_null=True)
    service_name = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    service_price_cents = serializers.IntegerField(required=False, allow_null=True)
    service_duration_minutes = serializers.IntegerField(required=False, allow_null=True)
    price_cents = serializers.IntegerField(required=False, allow_null=True)
    payment_flow = serializers.ChoiceField(
        choices=Booking.PAYMENT_FLOWS, default=Booking.FLOW_PAYMENT_SHEET
    )
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class BookingReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class PaymentStartSerializer(serializers.Serializer):
    payment_flow = serializers.ChoiceField(choices=Booking.PAYMENT_FLOWS, required=False)
