from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("service_name", models.CharField(blank=True, max_length=200)),
                ("date", models.DateField()),
                ("time_start", models.TimeField()),
                ("time_end", models.TimeField()),
                ("starts_at", models.DateTimeField(editable=False)),
                ("ends_at", models.DateTimeField(editable=False)),
                ("notes", models.TextField(blank=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("AWAITING_PAYMENT", "Awaiting payment"),
                            ("PENDING_ACCEPTANCE", "Pending acceptance"),
                            ("CONFIRMED", "Confirmed"),
                            ("DECLINED", "Declined"),
                            ("CANCELLED", "Cancelled"),
                            ("EXPIRED", "Expired"),
                        ],
                        default="AWAITING_PAYMENT",
                        max_length=20,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("UNPAID", "Unpaid"),
                            ("AUTHORIZED", "Authorized"),
                            ("CAPTURED", "Captured"),
                            ("RELEASED", "Released"),
                            ("REFUNDED", "Refunded"),
                            ("FAILED", "Failed"),
                        ],
                        default="UNPAID",
                        max_length=12,
                    ),
                ),
                (
                    "payment_flow",
                    models.CharField(
                        choices=[
                            ("payment_sheet", "Payment sheet"),
                            ("checkout", "Hosted checkout"),
                        ],
                        default="payment_sheet",
                        max_length=20,
                    ),
                ),
                ("service_price_cents", models.PositiveIntegerField()),
                ("platform_fee_cents", models.PositiveIntegerField(default=0)),
                ("amount_total_cents", models.PositiveIntegerField()),
                ("currency", models.CharField(default="usd", max_length=10)),
                ("payment_intent_id", models.CharField(blank=True, max_length=255)),
                ("checkout_session_id", models.CharField(blank=True, max_length=255)),
                ("payment_attempt", models.PositiveIntegerField(default=1)),
                ("decline_reason", models.TextField(blank=True)),
                ("cancellation_reason", models.TextField(blank=True)),
                ("request_key", models.CharField(blank=True, max_length=255)),
                ("confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="customer_bookings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "provider",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="provider_bookings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "service",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="bookings",
                        to="catalog.service",
                    ),
                ),
            ],
            options={
                "ordering": ["starts_at", "created_at"],
            },
        ),
        migrations.CreateModel(
            name="ProviderScheduleLock",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "provider",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="schedule_lock",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
        ),
        migrations.AddConstraint(
            model_name="booking",
            constraint=models.CheckConstraint(
                condition=models.Q(("ends_at__gt", models.F("starts_at"))),
                name="booking_ends_after_start",
            ),
        ),
        migrations.AddConstraint(
            model_name="booking",
            constraint=models.CheckConstraint(
                condition=models.Q(
                    ("amount_total_cents", models.F("service_price_cents") + models.F("platform_fee_cents"))
                ),
                name="booking_total_matches_snapshot",
            ),
        ),
        migrations.AddConstraint(
            model_name="booking",
            constraint=models.UniqueConstraint(
                condition=models.Q(("request_key", ""), _negated=True),
                fields=("customer", "request_key"),
                name="booking_unique_customer_request_key",
            ),
        ),
        migrations.AddIndex(
            model_name="booking",
            index=models.Index(fields=["provider", "status", "starts_at"], name="booking_provider_sched_idx"),
        ),
        migrations.AddIndex(
            model_name="booking",
            index=models.Index(fields=["customer", "status"], name="booking_customer_status_idx"),
        ),
        migrations.AddIndex(
            model_name="booking",
            index=models.Index(fields=["payment_intent_id"], name="booking_payment_intent_idx"),
        ),
        migrations.AddIndex(
            model_name="booking",
            index=models.Index(fields=["checkout_session_id"], name="booking_checkout_session_idx"),
        ),
    ]
