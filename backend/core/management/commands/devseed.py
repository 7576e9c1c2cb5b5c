from datetime import time, timedelta

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from django.utils import timezone

from accounts.models import User
from bookings.models import Booking
from catalog.models import Service
from catalog.pricing import calculate_booking_amounts
from providers.models import ProviderPayoutAccount


SEED_PASSWORD = "Slotkeeper123!"
SUPERUSER_EMAIL = "admin@slotkeeper.test"
SUPERUSER_PASSWORD = "AdminSlotkeeper123!"


class Command(BaseCommand):
    help = "Populate the local development database with sample data."

    def handle(self, *args, **options):
        if not settings.DEBUG:
            raise CommandError("Refusing to seed data while DEBUG is False.")

        with transaction.atomic():
            self.stdout.write(self.style.MIGRATE_HEADING("Creating users"))
            self._ensure_superuser()
            provider = self._ensure_user(
                email="pat@provider.test",
                first_name="Pat",
                last_name="Provider",
                display_name="Pat's Studio",
            )
            unready_provider = self._ensure_user(
                email="nova@provider.test",
                first_name="Nova",
                last_name="Newcomer",
                display_name="Nova Newcomer",
            )
            customer = self._ensure_user(
                email="casey@customer.test",
                first_name="Casey",
                last_name="Customer",
                display_name="Casey Customer",
            )

            self.stdout.write(self.style.MIGRATE_HEADING("Linking payout accounts"))
            ProviderPayoutAccount.objects.update_or_create(
                provider=provider,
                defaults={
                    "account_id": "acct_seed_ready",
                    "charges_enabled": True,
                    "payouts_enabled": True,
                    "details_submitted": True,
                    "transfers_active": True,
                },
            )
            ProviderPayoutAccount.objects.update_or_create(
                provider=unready_provider,
                defaults={"account_id": "acct_seed_pending"},
            )

            self.stdout.write(self.style.MIGRATE_HEADING("Creating services"))
            haircut = self._ensure_service(provider, "Haircut", price_cents=4500, duration_minutes=45)
            self._ensure_service(provider, "Colour consult", price_cents=2000, duration_minutes=30)
            self._ensure_service(unready_provider, "Portrait session", price_cents=12000, duration_minutes=90)

            self.stdout.write(self.style.MIGRATE_HEADING("Creating bookings"))
            tomorrow = timezone.localdate() + timedelta(days=1)
            self._ensure_booking(customer, haircut, tomorrow, time(10, 0), time(10, 45), Booking.CONFIRMED)
            self._ensure_booking(customer, haircut, tomorrow, time(14, 0), time(14, 45), Booking.PENDING_ACCEPTANCE)
            self._ensure_booking(customer, haircut, tomorrow, time(16, 0), time(16, 45), Booking.AWAITING_PAYMENT)

        self.stdout.write(self.style.SUCCESS(f"Seed complete. Password for seeded users: {SEED_PASSWORD}"))

    def _ensure_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        display_name: str,
    ) -> User:
        user, created = User.objects.get_or_create(
            email=email,
            defaults={
                "username": email,
                "first_name": first_name,
                "last_name": last_name,
                "display_name": display_name,
            },
        )
        if created:
            user.set_password(SEED_PASSWORD)
            user.save()
        return user

    def _ensure_service(self, provider: User, name: str, *, price_cents: int, duration_minutes: int) -> Service:
        service, _ = Service.objects.update_or_create(
            provider=provider,
            name=name,
            defaults={"price_cents": price_cents, "duration_minutes": duration_minutes, "active": True},
        )
        return service

    def _ensure_booking(self, customer: User, service: Service, day, start: time, end: time, status: str) -> Booking:
        existing = Booking.objects.filter(provider=service.provider, date=day, time_start=start).first()
        if existing:
            return existing
        amounts = calculate_booking_amounts(service.price_cents)
        payment_status = {
            Booking.CONFIRMED: Booking.PAYMENT_CAPTURED,
            Booking.PENDING_ACCEPTANCE: Booking.PAYMENT_AUTHORIZED,
        }.get(status, Booking.PAYMENT_UNPAID)
        return Booking.objects.create(
            customer=customer,
            provider=service.provider,
            service=service,
            service_name=service.name,
            date=day,
            time_start=start,
            time_end=end,
            status=status,
            payment_status=payment_status,
            service_price_cents=amounts.service_price_cents,
            platform_fee_cents=amounts.platform_fee_cents,
            amount_total_cents=amounts.amount_total_cents,
            currency=amounts.currency,
        )

    def _ensure_superuser(self) -> User:
        user, created = User.objects.get_or_create(
            email=SUPERUSER_EMAIL,
            defaults={
                "username": SUPERUSER_EMAIL,
                "first_name": "Admin",
                "last_name": "User",
                "display_name": "Admin User",
                "is_staff": True,
                "is_superuser": True,
            },
        )
        if created or not user.has_usable_password():
            user.set_password(SUPERUSER_PASSWORD)
            user.save(update_fields=["password"])
        return user
