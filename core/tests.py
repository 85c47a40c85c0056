from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import AuditLog, Business, Location, LocationRole, Subscription
from inventory.models import Batch, InternalTransfer, Product


class RegistrationTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.user_model.objects.create_user(
            username="existing-chef",
            email="chef@example.com",
            password="pass1234",
        )

    def test_registration_rejects_case_insensitive_duplicate_email(self):
        response = self.client.post(
            "/api/v1/register/",
            {
                "username": "new-chef",
                "email": "CHEF@example.com",
                "password": "pass12345",
                "full_name": "New Chef",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload["code"], "validation_error")
        self.assertEqual(payload["errors"], {"email": ["A user with this email already exists."]})

    def test_registration_creates_user_and_audit_entry(self):
        response = self.client.post(
            "/api/v1/register/",
            {"username": "sous-chef", "email": "Sous@Example.com", "password": "pass12345"},
            format="json",
            HTTP_X_REQUEST_ID="req-register",
        )

        self.assertEqual(response.status_code, 201)
        user = self.user_model.objects.get(username="sous-chef")
        self.assertEqual(user.email, "sous@example.com")
        self.assertTrue(user.check_password("pass12345"))
        self.assertTrue(AuditLog.objects.filter(action="user.create", request_id="req-register").exists())


class OnboardingTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.owner = get_user_model().objects.create_user(username="owner", password="pass1234")

    def test_onboarding_creates_business_trial_and_first_location(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.post(
            "/api/v1/onboarding/business/",
            {"business_name": "Casa Verde", "location_name": "Centro", "location_type": "restaurant"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        business = Business.objects.get(owner=self.owner)
        self.assertEqual(business.legal_name, "Casa Verde")
        self.assertEqual(business.subscription.status, Subscription.Status.TRIAL)
        self.assertEqual(business.subscription.active_locations_count, 1)
        self.assertEqual(business.locations.get().name, "Centro")
        self.assertEqual(response.json()["location"]["business"], str(business.id))
        self.assertTrue(AuditLog.objects.filter(action="business.create", business=business).exists())

    def test_onboarding_requires_authentication(self):
        response = self.client.post(
            "/api/v1/onboarding/business/",
            {"business_name": "Casa Verde", "location_name": "Centro"},
            format="json",
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")


class LocationScopeTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()

        self.owner_a = self.user_model.objects.create_user(username="owner-a", password="pass1234")
        self.owner_b = self.user_model.objects.create_user(username="owner-b", password="pass1234")
        self.business_a = Business.objects.create(owner=self.owner_a, name="Business A")
        self.business_b = Business.objects.create(owner=self.owner_b, name="Business B")
        Subscription.objects.create(business=self.business_a)
        self.location_a = Location.objects.create(business=self.business_a, name="Kitchen A")
        self.location_b = Location.objects.create(business=self.business_b, name="Kitchen B")

    def test_owner_only_lists_own_locations(self):
        self.client.force_authenticate(user=self.owner_a)

        response = self.client.get("/api/v1/locations/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        ids = {item["id"] for item in payload["results"]}
        self.assertEqual(ids, {str(self.location_a.id)})

    def test_other_business_location_is_not_found(self):
        self.client.force_authenticate(user=self.owner_a)

        response = self.client.get(f"/api/v1/locations/{self.location_b.id}/")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_member_sees_assigned_location(self):
        employee = self.user_model.objects.create_user(username="line-cook", password="pass1234")
        LocationRole.objects.create(user=employee, location=self.location_b, role=LocationRole.Role.EMPLOYEE)
        self.client.force_authenticate(user=employee)

        response = self.client.get("/api/v1/locations/")

        ids = {item["id"] for item in response.json()["results"]}
        self.assertEqual(ids, {str(self.location_b.id)})

    def test_owner_cannot_add_location_to_foreign_business(self):
        self.client.force_authenticate(user=self.owner_a)

        response = self.client.post(
            "/api/v1/locations/",
            {"business": str(self.business_b.id), "name": "Injected"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("business", response.json()["errors"])
        self.assertFalse(Location.objects.filter(name="Injected").exists())

    def test_new_location_updates_subscription_count(self):
        self.client.force_authenticate(user=self.owner_a)

        response = self.client.post(
            "/api/v1/locations/",
            {"business": str(self.business_a.id), "name": "Terrace", "location_type": "bar"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.business_a.subscription.refresh_from_db()
        self.assertEqual(self.business_a.subscription.active_locations_count, 2)
        self.assertTrue(AuditLog.objects.filter(action="location.create", location__name="Terrace").exists())

    def test_malformed_business_filter_is_validation_error(self):
        self.client.force_authenticate(user=self.owner_a)

        response = self.client.get("/api/v1/locations/", {"business": "nope"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("business", response.json()["errors"])


class LocationMemberTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.owner = self.user_model.objects.create_user(username="member-owner", password="pass1234")
        self.business = Business.objects.create(owner=self.owner, name="Members")
        self.location = Location.objects.create(business=self.business, name="Main")
        self.employee = self.user_model.objects.create_user(
            username="member-employee",
            email="employee@example.com",
            password="pass1234",
        )
        LocationRole.objects.create(user=self.employee, location=self.location, role=LocationRole.Role.EMPLOYEE)
        self.newcomer = self.user_model.objects.create_user(
            username="member-newcomer",
            email="newcomer@example.com",
            password="pass1234",
        )

    def test_employee_cannot_manage_members_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.employee)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.post(
                f"/api/v1/locations/{self.location.id}/members/",
                {"email": "newcomer@example.com", "role": "admin"},
                format="json",
            )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertTrue(any("permission_denied" in message for message in cm.output))
        self.assertFalse(LocationRole.objects.filter(user=self.newcomer).exists())

    def test_owner_adds_member_by_email_then_changes_role(self):
        self.client.force_authenticate(user=self.owner)

        created = self.client.post(
            f"/api/v1/locations/{self.location.id}/members/",
            {"email": "NEWCOMER@example.com"},
            format="json",
        )
        updated = self.client.post(
            f"/api/v1/locations/{self.location.id}/members/",
            {"user": str(self.newcomer.id), "role": "admin"},
            format="json",
        )

        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["role"], "employee")
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(LocationRole.objects.get(user=self.newcomer).role, LocationRole.Role.ADMIN)

    def test_employee_cannot_edit_location(self):
        self.client.force_authenticate(user=self.employee)

        response = self.client.patch(f"/api/v1/locations/{self.location.id}/", {"name": "Renamed"}, format="json")

        self.assertEqual(response.status_code, 403)
        self.location.refresh_from_db()
        self.assertEqual(self.location.name, "Main")


class DashboardTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.owner = get_user_model().objects.create_user(username="dash-owner", password="pass1234")
        self.business = Business.objects.create(owner=self.owner, name="Dashboard")
        self.location = Location.objects.create(business=self.business, name="Main")
        self.product = Product.objects.create(business=self.business, name="Milk")
        today = timezone.localdate()

        for expiry, remaining in (
            (today + timedelta(days=30), "5"),
            (None, "2"),
            (today + timedelta(days=6), "1"),
            (today + timedelta(days=1), "3"),
            (today - timedelta(days=1), "4"),
            (today - timedelta(days=2), "0"),
        ):
            Batch.objects.create(
                product=self.product,
                location=self.location,
                quantity=Decimal("5"),
                remaining_quantity=Decimal(remaining),
                expiry_date=expiry,
                created_by=self.owner,
            )

    def test_dashboard_counts_batches_with_stock_per_status(self):
        self.client.force_authenticate(user=self.owner)

        response = self.client.get(f"/api/v1/locations/{self.location.id}/dashboard/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": 2, "warning": 1, "critical": 1, "expired": 1, "total": 5})


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.owner = self.user_model.objects.create_user(username="audit-owner", password="pass1234")
        self.other_owner = self.user_model.objects.create_user(username="audit-other", password="pass1234")
        self.business = Business.objects.create(owner=self.owner, name="Audited")
        self.other_business = Business.objects.create(owner=self.other_owner, name="Other")

    def test_audit_logs_are_read_only(self):
        self.client.force_authenticate(user=self.owner)
        log = AuditLog.objects.create(action="test.action", entity="test", business=self.business, actor=self.owner)

        patch_res = self.client.patch(f"/api/v1/admin/audit-logs/{log.id}/", {"action": "changed"}, format="json")
        delete_res = self.client.delete(f"/api/v1/admin/audit-logs/{log.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_audit_logs_are_scoped_to_owned_businesses(self):
        AuditLog.objects.create(action="own.action", entity="test", business=self.business)
        AuditLog.objects.create(action="foreign.action", entity="test", business=self.other_business)
        self.client.force_authenticate(user=self.owner)

        response = self.client.get("/api/v1/admin/audit-logs/")

        actions = {item["action"] for item in response.json()["results"]}
        self.assertEqual(actions, {"own.action"})

    def test_audit_log_export_is_csv(self):
        AuditLog.objects.create(action="own.action", entity="test", business=self.business)
        self.client.force_authenticate(user=self.owner)

        response = self.client.get("/api/v1/admin/audit-logs/export/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        self.assertIn(b"own.action", response.content)

    def test_malformed_id_filters_are_validation_errors(self):
        self.client.force_authenticate(user=self.owner)

        for param in ("location", "actor_id"):
            with self.subTest(param=param):
                response = self.client.get("/api/v1/admin/audit-logs/", {param: "nope"})

                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()["code"], "validation_error")
                self.assertIn(param, response.json()["errors"])

    def test_filters_by_actor(self):
        AuditLog.objects.create(action="own.action", entity="test", business=self.business, actor=self.owner)
        AuditLog.objects.create(action="system.action", entity="test", business=self.business)
        self.client.force_authenticate(user=self.owner)

        response = self.client.get("/api/v1/admin/audit-logs/", {"actor_id": str(self.owner.id)})

        actions = {item["action"] for item in response.json()["results"]}
        self.assertEqual(actions, {"own.action"})


class HealthCheckTests(TestCase):
    def test_healthz_and_readyz_are_public(self):
        client = APIClient()

        self.assertEqual(client.get("/api/v1/healthz/").json()["status"], "ok")
        self.assertEqual(client.get("/api/v1/readyz/").json()["status"], "ready")


class SeedDemoDataCommandTests(TestCase):
    def test_seed_demo_data_is_idempotent(self):
        call_command("seed_demo_data", stdout=StringIO())
        call_command("seed_demo_data", stdout=StringIO())

        business = Business.objects.get(name="Casa Verde")
        self.assertEqual(business.locations.count(), 2)
        self.assertEqual(business.subscription.active_locations_count, 2)
        self.assertEqual(Batch.objects.filter(location__business=business).count(), 4)
        self.assertEqual(InternalTransfer.objects.filter(status="pending").count(), 1)
        self.assertEqual(Batch.objects.filter(location__business=business).alerts().count(), 3)
