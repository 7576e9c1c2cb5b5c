from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="ProviderPayoutAccount",
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
                ("account_id", models.CharField(max_length=255, unique=True)),
                ("livemode", models.BooleanField(default=False)),
                ("charges_enabled", models.BooleanField(default=False)),
                ("payouts_enabled", models.BooleanField(default=False)),
                ("details_submitted", models.BooleanField(default=False)),
                ("transfers_active", models.BooleanField(blank=True, null=True)),
                ("disabled_reason", models.CharField(blank=True, max_length=120)),
                ("default_currency", models.CharField(blank=True, max_length=10)),
                ("account_email", models.EmailField(blank=True, max_length=254)),
                (
                    "last_webhook_received_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                ("last_webhook_error_at", models.DateTimeField(blank=True, null=True)),
                (
                    "last_webhook_error_message",
                    models.CharField(blank=True, max_length=500),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "provider",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payout_account",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
        ),
    ]
