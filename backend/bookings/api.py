from django.db.models import Q
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from bookings.models import Booking
from bookings.serializers import (
    BookingCreateSerializer,
    BookingReasonSerializer,
    BookingSerializer,
    PaymentStartSerializer,
)
from bookings.services import payment_flow
from core.exceptions import PermissionDenied


class BookingViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = BookingSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["status", "payment_status", "provider", "customer", "date"]
    ordering_fields = ["starts_at", "created_at"]
    lookup_value_regex = "[0-9a-fA-F-]{36}"

    def get_queryset(self):
        user = self.request.user
        queryset = Booking.objects.select_related("customer", "provider", "service").filter(
            Q(customer=user) | Q(provider=user)
        )
        role = self.request.query_params.get("role")
        if role == "customer":
            queryset = queryset.filter(customer=user)
        elif role == "provider":
            queryset = queryset.filter(provider=user)
        if self.request.query_params.get("active") in {"1", "true"}:
            queryset = queryset.filter(status__in=Booking.ACTIVE_STATUSES)
        return queryset.order_by("starts_at", "created_at")

    def create(self, request, *args, **kwargs):
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        booking, created, session = payment_flow.request_booking(
            customer=request.user,
            date=data["date"],
            time_start=data["time_start"],
            time_end=data.get("time_end"),
            service_id=data.get("service"),
            provider_id=data.get("provider"),
            service_name=data.get("service_name"),
            service_price_cents=data.get("service_price_cents"),
            service_duration_minutes=data.get("service_duration_minutes"),
            custom_price_cents=data.get("price_cents"),
            payment_flow=data["payment_flow"],
            notes=data.get("notes", ""),
            request_key=request.headers.get("Idempotency-Key", "").strip(),
        )
        return Response(
            {"booking": BookingSerializer(booking).data, "payment": session.as_dict()},
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    @action(detail=True, methods=["post"])
    def accept(self, request, pk=None):
        booking = payment_flow.accept_booking(pk, request.user)
        return Response(BookingSerializer(booking).data)

    @action(detail=True, methods=["post"])
    def decline(self, request, pk=None):
        serializer = BookingReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = payment_flow.decline_booking(
            pk, request.user, reason=serializer.validated_data["reason"]
        )
        return Response(BookingSerializer(booking).data)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        serializer = BookingReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = payment_flow.cancel_booking(
            pk, request.user, reason=serializer.validated_data["reason"]
        )
        return Response(BookingSerializer(booking).data)

    @action(detail=True, methods=["post"])
    def payment(self, request, pk=None):
        """Open (or re-open after a failure) the payment for a booking awaiting payment."""
        booking = self.get_object()
        if booking.customer_id != request.user.id:
            raise PermissionDenied("Only the customer can pay for this booking.")
        serializer = PaymentStartSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        session = payment_flow.start_payment(booking, flow=serializer.validated_data.get("payment_flow"))
        return Response(
            {"booking": BookingSerializer(session.booking).data, "payment": session.as_dict()}
        )
