from datetime import timedelta

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from core.models import Business, Location, LocationRole, Subscription
from inventory.models import Batch, DeliveryNote, InternalTransfer
from inventory.services import register_delivery
from inventory.transfers import request_transfer


class Command(BaseCommand):
    help = "Seed a demo restaurant group with deliveries, expiring batches and a pending transfer."

    def _user(self, username, password, **defaults):
        User = get_user_model()
        user, created = User.objects.get_or_create(username=username, defaults=defaults)
        if created:
            user.set_password(password)
            user.save(update_fields=["password"])
        return user

    @transaction.atomic
    def handle(self, *args, **options):
        today = timezone.localdate()

        owner = self._user("owner", "owner1234", email="owner@example.com", full_name="Demo Owner", is_staff=True)
        manager = self._user("manager", "manager1234", email="manager@example.com", full_name="Kitchen Manager")
        cook = self._user("cook", "cook1234", email="cook@example.com", full_name="Line Cook")

        business, _ = Business.objects.get_or_create(
            owner=owner,
            name="Casa Verde",
            defaults={"legal_name": "Casa Verde Hospitality SL"},
        )
        kitchen, _ = Location.objects.get_or_create(
            business=business,
            name="Central Kitchen",
            defaults={"location_type": Location.LocationType.RESTAURANT, "address": "Calle Mayor 1"},
        )
        bar, _ = Location.objects.get_or_create(
            business=business,
            name="Terrace Bar",
            defaults={"location_type": Location.LocationType.BAR, "address": "Calle Mayor 3"},
        )
        Subscription.objects.update_or_create(
            business=business,
            defaults={"active_locations_count": business.locations.filter(is_active=True).count()},
        )
        LocationRole.objects.get_or_create(user=manager, location=kitchen, defaults={"role": LocationRole.Role.ADMIN})
        LocationRole.objects.get_or_create(user=cook, location=kitchen, defaults={"role": LocationRole.Role.EMPLOYEE})
        LocationRole.objects.get_or_create(user=cook, location=bar, defaults={"role": LocationRole.Role.EMPLOYEE})

        if not DeliveryNote.objects.filter(location=kitchen).exists():
            register_delivery(
                location=kitchen,
                user=cook,
                supplier_name="Frutas Lopez",
                delivery_date=today,
                lines=[
                    {"name": "Tomatoes", "quantity": "12", "unit": "kg", "expiry_date": today + timedelta(days=2)},
                    {"name": "Fresh cream", "quantity": "6", "unit": "L", "expiry_date": today + timedelta(days=6)},
                    {"name": "Chicken breast", "quantity": "8", "unit": "kg", "expiry_date": today - timedelta(days=1), "storage_type": "refrigerated"},
                    {"name": "Flour", "quantity": "25", "unit": "kg", "storage_type": "dry"},
                ],
            )

        if not InternalTransfer.objects.filter(from_location=kitchen).exists():
            cream = Batch.objects.filter(location=kitchen, product__name="Fresh cream").with_stock().first()
            if cream is not None:
                request_transfer(batch=cream, to_location=bar, quantity="2", requested_by=cook, notes="For the dessert menu")

        self.stdout.write(self.style.SUCCESS("Demo data seeded successfully."))
        self.stdout.write("Credentials: owner/owner1234, manager/manager1234, cook/cook1234")
        self.stdout.write(f"Business: {business.name} | Locations: {kitchen.name}, {bar.name}")
