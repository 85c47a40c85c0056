import json
from datetime import date, datetime, timedelta
from datetime import timezone as dt_timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import requests
from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from common.exceptions import InvalidStateTransition
from core.models import AuditLog, Business, Location, LocationRole
from inventory.expiry import BatchStatus, classify_expiry, status_counts
from inventory.models import Batch, DeliveryNote, DeliveryNoteItem, InternalTransfer, Product, Supplier
from inventory.ocr import normalize_extraction
from inventory.services import acknowledge_alert
from inventory.transfers import can_transition, ensure_transition

TODAY = date(2026, 3, 10)


class ExpiryClassifierTests(SimpleTestCase):
    def test_expiring_tomorrow_is_critical(self):
        self.assertEqual(classify_expiry(TODAY + timedelta(days=1), Decimal("2"), TODAY), BatchStatus.CRITICAL)

    def test_expired_yesterday_is_expired(self):
        self.assertEqual(classify_expiry(TODAY - timedelta(days=1), Decimal("2"), TODAY), BatchStatus.EXPIRED)

    def test_threshold_boundaries(self):
        cases = {
            0: BatchStatus.CRITICAL,
            3: BatchStatus.CRITICAL,
            4: BatchStatus.WARNING,
            7: BatchStatus.WARNING,
            8: BatchStatus.OK,
        }
        for offset, expected in cases.items():
            with self.subTest(offset=offset):
                self.assertEqual(classify_expiry(TODAY + timedelta(days=offset), 1, TODAY), expected)

    def test_missing_expiry_date_is_ok(self):
        self.assertEqual(classify_expiry(None, Decimal("4"), TODAY), BatchStatus.OK)
        self.assertEqual(classify_expiry("", None, TODAY), BatchStatus.OK)

    def test_accepts_iso_strings(self):
        self.assertEqual(classify_expiry("2026-03-09", 1, TODAY), BatchStatus.EXPIRED)

    def test_empty_batch_is_still_classified(self):
        self.assertEqual(classify_expiry(TODAY - timedelta(days=5), 0, TODAY), BatchStatus.EXPIRED)

    def test_negative_quantity_is_rejected(self):
        with self.assertRaises(ValidationError):
            classify_expiry(TODAY, Decimal("-1"), TODAY)

    def test_invalid_date_is_rejected(self):
        with self.assertRaises(ValidationError):
            classify_expiry("10/03/2026", 1, TODAY)
        with self.assertRaises(ValidationError):
            classify_expiry("2026-02-30", 1, TODAY)

    @override_settings(BATCH_CRITICAL_DAYS=1, BATCH_WARNING_DAYS=2)
    def test_thresholds_follow_settings(self):
        self.assertEqual(classify_expiry(TODAY + timedelta(days=1), 1, TODAY), BatchStatus.CRITICAL)
        self.assertEqual(classify_expiry(TODAY + timedelta(days=2), 1, TODAY), BatchStatus.WARNING)
        self.assertEqual(classify_expiry(TODAY + timedelta(days=3), 1, TODAY), BatchStatus.OK)

    def test_status_counts_skip_empty_batches(self):
        batches = [
            SimpleNamespace(expiry_date=TODAY + timedelta(days=1), remaining_quantity=Decimal("1")),
            SimpleNamespace(expiry_date=TODAY - timedelta(days=1), remaining_quantity=Decimal("0")),
            SimpleNamespace(expiry_date=None, remaining_quantity=Decimal("3")),
        ]

        counts = status_counts(batches, TODAY)

        self.assertEqual(counts, {"ok": 1, "warning": 0, "critical": 1, "expired": 0, "total": 2})


class TransferStateMachineTests(SimpleTestCase):
    def test_allowed_transitions(self):
        Status = InternalTransfer.Status
        self.assertTrue(can_transition(Status.PENDING, Status.ACCEPTED))
        self.assertTrue(can_transition(Status.PENDING, Status.REJECTED))
        self.assertTrue(can_transition(Status.ACCEPTED, Status.COMPLETED))
        self.assertFalse(can_transition(Status.PENDING, Status.COMPLETED))
        self.assertFalse(can_transition(Status.REJECTED, Status.ACCEPTED))
        self.assertFalse(can_transition(Status.COMPLETED, Status.REJECTED))

    def test_ensure_transition_raises_conflict(self):
        with self.assertRaises(InvalidStateTransition) as ctx:
            ensure_transition(InternalTransfer.Status.REJECTED, InternalTransfer.Status.COMPLETED)
        self.assertEqual(ctx.exception.status_code, 409)


class OCRNormalizationTests(SimpleTestCase):
    def test_normalize_fills_defaults_and_drops_unusable_rows(self):
        result = normalize_extraction(
            {
                "supplier": "  Frutas Lopez ",
                "date": "not a date",
                "products": [
                    {"name": "Tomatoes", "quantity": "abc"},
                    {"name": "", "quantity": 3, "unit": "kg"},
                    "garbage",
                    {"name": "Cream", "quantity": 2.5, "unit": "L"},
                ],
            }
        )

        self.assertEqual(result["supplier"], "Frutas Lopez")
        self.assertIsNone(result["date"])
        self.assertEqual(
            result["products"],
            [
                {"name": "Tomatoes", "quantity": Decimal("1"), "unit": "units"},
                {"name": "Cream", "quantity": Decimal("2.5"), "unit": "L"},
            ],
        )

    def test_normalize_handles_missing_products(self):
        self.assertEqual(normalize_extraction({"products": None}), {"supplier": None, "date": None, "products": []})


class InventoryFixtureMixin:
    def create_fixture(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.today = timezone.localdate()

        self.owner = self.user_model.objects.create_user(username="inv-owner", password="pass1234")
        self.business = Business.objects.create(owner=self.owner, name="Casa Verde")
        self.kitchen = Location.objects.create(business=self.business, name="Kitchen")
        self.bar = Location.objects.create(business=self.business, name="Bar", location_type="bar")

        self.admin = self.user_model.objects.create_user(username="inv-admin", password="pass1234")
        self.employee = self.user_model.objects.create_user(username="inv-employee", password="pass1234")
        LocationRole.objects.create(user=self.admin, location=self.kitchen, role=LocationRole.Role.ADMIN)
        LocationRole.objects.create(user=self.employee, location=self.kitchen, role=LocationRole.Role.EMPLOYEE)

        self.outsider = self.user_model.objects.create_user(username="inv-outsider", password="pass1234")
        self.other_business = Business.objects.create(owner=self.outsider, name="Elsewhere")
        self.foreign_location = Location.objects.create(business=self.other_business, name="Foreign")

        self.milk = Product.objects.create(business=self.business, name="Milk")

    def create_batch(self, *, product=None, location=None, quantity="5", remaining=None, expiry_date=None, **extra):
        return Batch.objects.create(
            product=product or self.milk,
            location=location or self.kitchen,
            quantity=Decimal(quantity),
            remaining_quantity=Decimal(remaining if remaining is not None else quantity),
            unit=extra.pop("unit", "L"),
            expiry_date=expiry_date,
            created_by=self.owner,
            **extra,
        )


class StatusExpressionTests(InventoryFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixture()

    def test_database_status_matches_python_classifier(self):
        for offset in (-3, -1, 0, 1, 3, 4, 7, 8, 30):
            self.create_batch(expiry_date=self.today + timedelta(days=offset))
        self.create_batch(expiry_date=None)

        for batch in Batch.objects.with_status(self.today):
            with self.subTest(expiry_date=batch.expiry_date):
                self.assertEqual(batch.computed_status, classify_expiry(batch.expiry_date, batch.remaining_quantity, self.today))


class CatalogFilterTests(InventoryFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixture()
        self.client.force_authenticate(user=self.owner)

    def test_malformed_business_filter_is_validation_error(self):
        for url in ("/api/v1/products/", "/api/v1/suppliers/"):
            with self.subTest(url=url):
                response = self.client.get(url, {"business": "nope"})

                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()["code"], "validation_error")
                self.assertIn("business", response.json()["errors"])

    def test_products_filter_by_business(self):
        Product.objects.create(business=self.other_business, name="Eggs")

        response = self.client.get("/api/v1/products/", {"business": str(self.business.id)})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["name"] for item in response.json()["results"]], ["Milk"])


class TransferFlowTests(InventoryFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixture()
        self.batch = self.create_batch(quantity="5", expiry_date=self.today + timedelta(days=10))

    def request_transfer(self, user, quantity="5", to_location=None):
        self.client.force_authenticate(user=user)
        return self.client.post(
            "/api/v1/transfers/",
            {"batch": str(self.batch.id), "to_location": str((to_location or self.bar).id), "quantity": quantity},
            format="json",
        )

    def test_transfer_lifecycle_decrements_source_batch(self):
        created = self.request_transfer(self.employee)
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["status"], "pending")
        transfer_id = created.json()["id"]

        self.client.force_authenticate(user=self.admin)
        accepted = self.client.post(f"/api/v1/transfers/{transfer_id}/accept/", {}, format="json")
        self.assertEqual(accepted.status_code, 200)
        self.assertEqual(accepted.json()["status"], "accepted")
        self.batch.refresh_from_db()
        self.assertEqual(self.batch.remaining_quantity, Decimal("5"))

        completed = self.client.post(f"/api/v1/transfers/{transfer_id}/complete/", {}, format="json")
        self.assertEqual(completed.status_code, 200)
        self.assertEqual(completed.json()["status"], "completed")

        self.batch.refresh_from_db()
        self.assertEqual(self.batch.remaining_quantity, Decimal("0"))
        transfer = InternalTransfer.objects.get(id=transfer_id)
        self.assertEqual(transfer.processed_by, self.admin)
        self.assertIsNotNone(transfer.completed_at)
        self.assertEqual(
            list(AuditLog.objects.filter(entity="internal_transfer").order_by("created_at").values_list("action", flat=True)),
            ["transfer.request", "transfer.accept", "transfer.complete"],
        )

    def test_request_above_remaining_quantity_is_rejected(self):
        response = self.request_transfer(self.employee, quantity="10")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("quantity", response.json()["errors"])
        self.assertFalse(InternalTransfer.objects.exists())

    def test_rejected_transfer_cannot_be_completed(self):
        transfer_id = self.request_transfer(self.employee).json()["id"]
        self.client.force_authenticate(user=self.owner)
        rejected = self.client.post(f"/api/v1/transfers/{transfer_id}/reject/", {}, format="json")

        response = self.client.post(f"/api/v1/transfers/{transfer_id}/complete/", {}, format="json")

        self.assertEqual(rejected.status_code, 200)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "invalid_state_transition")
        self.batch.refresh_from_db()
        self.assertEqual(self.batch.remaining_quantity, Decimal("5"))
        self.assertEqual(InternalTransfer.objects.get(id=transfer_id).status, "rejected")

    def test_pending_transfer_cannot_skip_acceptance(self):
        transfer_id = self.request_transfer(self.employee).json()["id"]
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(f"/api/v1/transfers/{transfer_id}/complete/", {}, format="json")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(InternalTransfer.objects.get(id=transfer_id).status, "pending")

    def test_accepted_transfer_cannot_be_accepted_again(self):
        transfer_id = self.request_transfer(self.employee).json()["id"]
        self.client.force_authenticate(user=self.admin)
        self.client.post(f"/api/v1/transfers/{transfer_id}/accept/", {}, format="json")

        response = self.client.post(f"/api/v1/transfers/{transfer_id}/accept/", {}, format="json")

        self.assertEqual(response.status_code, 409)

    def test_completed_transfer_is_immutable(self):
        transfer_id = self.request_transfer(self.employee, quantity="2").json()["id"]
        self.client.force_authenticate(user=self.admin)
        self.client.post(f"/api/v1/transfers/{transfer_id}/accept/", {}, format="json")
        completed = self.client.post(f"/api/v1/transfers/{transfer_id}/complete/", {}, format="json")
        self.assertEqual(completed.status_code, 200)

        for transition in ("complete", "reject", "accept"):
            with self.subTest(transition=transition):
                response = self.client.post(f"/api/v1/transfers/{transfer_id}/{transition}/", {}, format="json")

                self.assertEqual(response.status_code, 409)
                self.assertEqual(response.json()["code"], "invalid_state_transition")

        self.batch.refresh_from_db()
        self.assertEqual(self.batch.remaining_quantity, Decimal("3"))
        self.assertEqual(InternalTransfer.objects.get(id=transfer_id).status, "completed")
        self.assertEqual(AuditLog.objects.filter(action="transfer.complete").count(), 1)

    def test_outsider_request_is_forbidden(self):
        response = self.request_transfer(self.outsider)

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertFalse(InternalTransfer.objects.exists())

    def test_outsider_invalid_request_is_forbidden_before_validation(self):
        response = self.request_transfer(self.outsider, to_location=self.kitchen)

        self.assertEqual(response.status_code, 403)
        self.assertIsNone(response.json()["errors"])

    def test_employee_cannot_process_transfer_and_denial_is_logged(self):
        transfer_id = self.request_transfer(self.employee).json()["id"]

        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.post(f"/api/v1/transfers/{transfer_id}/accept/", {}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertTrue(any("transfer.process" in message for message in cm.output))
        self.assertEqual(InternalTransfer.objects.get(id=transfer_id).status, "pending")

    def test_transfer_to_same_location_is_rejected(self):
        response = self.request_transfer(self.employee, to_location=self.kitchen)

        self.assertEqual(response.status_code, 400)
        self.assertIn("to_location", response.json()["errors"])

    def test_transfer_to_other_business_is_rejected(self):
        response = self.request_transfer(self.owner, to_location=self.foreign_location)

        self.assertEqual(response.status_code, 400)
        self.assertIn("to_location", response.json()["errors"])

    def test_completion_floors_remaining_at_zero(self):
        transfer_id = self.request_transfer(self.employee).json()["id"]
        self.client.post(f"/api/v1/batches/{self.batch.id}/adjust/", {"amount": "3"}, format="json")
        self.client.force_authenticate(user=self.admin)
        self.client.post(f"/api/v1/transfers/{transfer_id}/accept/", {}, format="json")

        response = self.client.post(f"/api/v1/transfers/{transfer_id}/complete/", {}, format="json")

        self.assertEqual(response.status_code, 200)
        self.batch.refresh_from_db()
        self.assertEqual(self.batch.remaining_quantity, Decimal("0"))

    def test_transfer_list_is_scoped_and_filtered_by_status(self):
        self.request_transfer(self.employee)
        foreign_batch = self.create_batch(location=self.foreign_location, product=Product.objects.create(business=self.other_business, name="Eggs"))
        foreign_bar = Location.objects.create(business=self.other_business, name="Foreign Bar")
        InternalTransfer.objects.create(
            batch=foreign_batch,
            product=foreign_batch.product,
            from_location=self.foreign_location,
            to_location=foreign_bar,
            quantity=Decimal("1"),
            requested_by=self.outsider,
        )
        self.client.force_authenticate(user=self.admin)

        pending = self.client.get("/api/v1/transfers/", {"status": "pending"})
        completed = self.client.get("/api/v1/transfers/", {"status": "completed"})

        self.assertEqual(pending.json()["count"], 1)
        self.assertEqual(pending.json()["results"][0]["from_location"], str(self.kitchen.id))
        self.assertEqual(completed.json()["count"], 0)

    def test_available_batches_excludes_empty_batches(self):
        empty = self.create_batch(quantity="2", remaining="0")
        self.client.force_authenticate(user=self.employee)

        response = self.client.get("/api/v1/transfers/available-batches/", {"location": str(self.kitchen.id)})

        ids = [item["id"] for item in response.json()]
        self.assertIn(str(self.batch.id), ids)
        self.assertNotIn(str(empty.id), ids)


class DeliveryRegistrationTests(InventoryFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixture()

    def payload(self, **overrides):
        data = {
            "location": str(self.kitchen.id),
            "supplier_name": "Frutas Lopez",
            "delivery_date": str(self.today),
            "lines": [
                {"name": "Tomatoes", "quantity": "10", "unit": "kg", "expiry_date": str(self.today + timedelta(days=2))},
                {"name": "milk", "quantity": "6", "unit": "L", "batch_number": "L-778"},
            ],
        }
        data.update(overrides)
        return data

    def test_registration_creates_note_items_and_batches(self):
        self.client.force_authenticate(user=self.employee)

        response = self.client.post("/api/v1/delivery-notes/", self.payload(), format="json", HTTP_X_REQUEST_ID="req-delivery")

        self.assertEqual(response.status_code, 201)
        note = DeliveryNote.objects.get(id=response.json()["id"])
        self.assertEqual(note.supplier.name, "Frutas Lopez")
        self.assertEqual(note.processed_by, self.employee)
        self.assertEqual(note.items.count(), 2)
        self.assertEqual(len(response.json()["items"]), 2)

        tomatoes = Batch.objects.get(product__name="Tomatoes")
        self.assertEqual(tomatoes.remaining_quantity, Decimal("10"))
        self.assertEqual(tomatoes.status, "critical")
        self.assertEqual(tomatoes.delivery_note_item.delivery_note_id, note.id)

        milk_batch = Batch.objects.get(batch_number="L-778")
        self.assertEqual(milk_batch.product_id, self.milk.id)
        self.assertIsNone(milk_batch.expiry_date)
        self.assertEqual(Product.objects.filter(business=self.business).count(), 2)
        self.assertTrue(AuditLog.objects.filter(action="delivery_note.create", request_id="req-delivery").exists())

    def test_registration_reuses_existing_supplier(self):
        supplier = Supplier.objects.create(business=self.business, name="Lacteos Norte")
        self.client.force_authenticate(user=self.employee)

        response = self.client.post(
            "/api/v1/delivery-notes/",
            self.payload(supplier=str(supplier.id), supplier_name=""),
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["supplier"], str(supplier.id))
        self.assertEqual(Supplier.objects.count(), 1)

    def test_registration_requires_lines(self):
        self.client.force_authenticate(user=self.employee)

        response = self.client.post("/api/v1/delivery-notes/", self.payload(lines=[]), format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("lines", response.json()["errors"])
        self.assertFalse(DeliveryNote.objects.exists())

    def test_zero_quantity_line_writes_nothing(self):
        self.client.force_authenticate(user=self.employee)
        payload = self.payload()
        payload["lines"][1]["quantity"] = "0"

        response = self.client.post("/api/v1/delivery-notes/", payload, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertFalse(DeliveryNote.objects.exists())
        self.assertFalse(DeliveryNoteItem.objects.exists())
        self.assertFalse(Batch.objects.exists())

    def test_outsider_cannot_register_delivery(self):
        self.client.force_authenticate(user=self.outsider)

        response = self.client.post("/api/v1/delivery-notes/", self.payload(), format="json")

        self.assertEqual(response.status_code, 403)
        self.assertFalse(DeliveryNote.objects.exists())

    def test_delivery_list_is_scoped(self):
        self.client.force_authenticate(user=self.employee)
        self.client.post("/api/v1/delivery-notes/", self.payload(), format="json")
        self.client.force_authenticate(user=self.outsider)

        response = self.client.get("/api/v1/delivery-notes/")

        self.assertEqual(response.json()["count"], 0)


class DeliveryScanTests(InventoryFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixture()
        self.client.force_authenticate(user=self.employee)

    def scan(self):
        return self.client.post(
            "/api/v1/delivery-notes/scan/",
            {"location": str(self.kitchen.id), "image": "data:image/jpeg;base64,AAAA"},
            format="json",
        )

    @override_settings(OCR_API_KEY="test-key")
    @patch("inventory.ocr.requests.post")
    def test_scan_returns_normalized_extraction(self, mock_post):
        content = {
            "supplier": "Frutas Lopez",
            "date": "2026-03-09",
            "products": [{"name": "Tomatoes", "quantity": 500, "unit": "g"}, {"name": "Basil"}],
        }
        mock_post.return_value.json.return_value = {"choices": [{"message": {"content": json.dumps(content)}}]}

        response = self.scan()

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["supplier"], "Frutas Lopez")
        self.assertEqual(payload["date"], "2026-03-09")
        self.assertEqual([row["name"] for row in payload["products"]], ["Tomatoes", "Basil"])
        self.assertEqual(payload["products"][1]["unit"], "units")
        self.assertEqual(mock_post.call_args.kwargs["headers"], {"Authorization": "Bearer test-key"})
        self.assertFalse(DeliveryNote.objects.exists())

    @override_settings(OCR_API_KEY="test-key")
    @patch("inventory.ocr.requests.post")
    def test_scan_maps_provider_failure_to_bad_gateway(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("connection refused")

        response = self.scan()

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["code"], "upstream_service_error")

    @override_settings(OCR_API_KEY="test-key")
    @patch("inventory.ocr.requests.post")
    def test_scan_rejects_unparseable_content(self, mock_post):
        mock_post.return_value.json.return_value = {"choices": [{"message": {"content": "sorry, no"}}]}

        response = self.scan()

        self.assertEqual(response.status_code, 502)

    @override_settings(OCR_API_KEY="test-key")
    @patch("inventory.ocr.requests.post")
    def test_scan_rejects_content_parts_list(self, mock_post):
        mock_post.return_value.json.return_value = {
            "choices": [{"message": {"content": [{"type": "text", "text": "{}"}]}}]
        }

        response = self.scan()

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["code"], "upstream_service_error")
        self.assertEqual(response.json()["message"], "Invalid response structure from OCR provider.")

    @override_settings(OCR_API_KEY="")
    @patch("inventory.ocr.requests.post")
    def test_scan_without_api_key_never_calls_provider(self, mock_post):
        response = self.scan()

        self.assertEqual(response.status_code, 502)
        mock_post.assert_not_called()


class BatchEndpointTests(InventoryFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixture()
        self.client.force_authenticate(user=self.employee)

    def test_alerts_are_ordered_by_expiry_and_skip_empty_batches(self):
        warning = self.create_batch(expiry_date=self.today + timedelta(days=5))
        expired = self.create_batch(expiry_date=self.today - timedelta(days=3))
        critical = self.create_batch(expiry_date=self.today + timedelta(days=2))
        self.create_batch(expiry_date=self.today - timedelta(days=4), remaining="0")
        self.create_batch(expiry_date=self.today + timedelta(days=20))
        self.create_batch(expiry_date=None)

        response = self.client.get("/api/v1/batches/alerts/", {"location": str(self.kitchen.id)})

        self.assertEqual(response.status_code, 200)
        rows = response.json()
        self.assertEqual([row["id"] for row in rows], [str(expired.id), str(critical.id), str(warning.id)])
        self.assertEqual([row["status"] for row in rows], ["expired", "critical", "warning"])

    def test_list_puts_undated_batches_first(self):
        dated = self.create_batch(expiry_date=self.today + timedelta(days=1))
        undated = self.create_batch(expiry_date=None)

        response = self.client.get("/api/v1/batches/", {"location": str(self.kitchen.id)})

        ids = [row["id"] for row in response.json()["results"]]
        self.assertEqual(ids, [str(undated.id), str(dated.id)])

    def test_list_filters_by_status(self):
        self.create_batch(expiry_date=self.today + timedelta(days=1))
        expired = self.create_batch(expiry_date=self.today - timedelta(days=1))

        response = self.client.get("/api/v1/batches/", {"status": "expired"})
        invalid = self.client.get("/api/v1/batches/", {"status": "rotten"})

        self.assertEqual([row["id"] for row in response.json()["results"]], [str(expired.id)])
        self.assertEqual(invalid.status_code, 400)

    def test_outsider_cannot_read_batch(self):
        batch = self.create_batch()
        self.client.force_authenticate(user=self.outsider)

        response = self.client.get(f"/api/v1/batches/{batch.id}/")

        self.assertEqual(response.status_code, 404)

    def test_adjust_floors_at_zero(self):
        batch = self.create_batch(quantity="5")

        response = self.client.post(f"/api/v1/batches/{batch.id}/adjust/", {"amount": "8"}, format="json")

        self.assertEqual(response.status_code, 200)
        batch.refresh_from_db()
        self.assertEqual(batch.remaining_quantity, Decimal("0"))
        self.assertTrue(AuditLog.objects.filter(action="batch.adjust", entity_id=batch.id).exists())

    def test_adjust_rejects_negative_amount(self):
        batch = self.create_batch(quantity="5")

        response = self.client.post(f"/api/v1/batches/{batch.id}/adjust/", {"amount": "-2"}, format="json")

        self.assertEqual(response.status_code, 400)
        batch.refresh_from_db()
        self.assertEqual(batch.remaining_quantity, Decimal("5"))

    def test_expiry_update_is_idempotent(self):
        batch = self.create_batch(expiry_date=None)
        new_date = str(self.today + timedelta(days=2))

        first = self.client.post(f"/api/v1/batches/{batch.id}/expiry/", {"expiry_date": new_date}, format="json")
        second = self.client.post(f"/api/v1/batches/{batch.id}/expiry/", {"expiry_date": new_date}, format="json")

        self.assertEqual(first.json()["status"], "critical")
        self.assertEqual(second.json()["status"], "critical")
        self.assertEqual(second.json()["expiry_date"], new_date)

        cleared = self.client.post(f"/api/v1/batches/{batch.id}/expiry/", {"expiry_date": None}, format="json")
        self.assertEqual(cleared.json()["status"], "ok")

    def test_acknowledge_appends_review_note(self):
        batch = self.create_batch(expiry_date=self.today, notes="Received cold")

        response = self.client.post(f"/api/v1/batches/{batch.id}/acknowledge/", {}, format="json")

        self.assertEqual(response.status_code, 200)
        batch.refresh_from_db()
        first_line, review_line = batch.notes.split("\n")
        self.assertEqual(first_line, "Received cold")
        self.assertTrue(review_line.startswith("Reviewed on "))

    @override_settings(TIME_ZONE="UTC")
    def test_acknowledge_alert_stamps_review_time(self):
        batch = self.create_batch()

        acknowledge_alert(batch, now=datetime(2026, 3, 4, 9, 30, tzinfo=dt_timezone.utc))

        self.assertEqual(batch.notes, "Reviewed on 2026-03-04 09:30")

    def test_summary_groups_remaining_stock_by_product(self):
        bread = Product.objects.create(business=self.business, name="Bread")
        self.create_batch(quantity="3", expiry_date=self.today + timedelta(days=10))
        self.create_batch(quantity="2", expiry_date=self.today + timedelta(days=2))
        self.create_batch(quantity="4", remaining="0", expiry_date=self.today - timedelta(days=1))
        self.create_batch(product=bread, quantity="7", unit="units")

        response = self.client.get("/api/v1/batches/summary/", {"location": str(self.kitchen.id)})

        self.assertEqual(response.status_code, 200)
        rows = response.json()
        self.assertEqual([row["name"] for row in rows], ["Bread", "Milk"])
        self.assertEqual(rows[0]["status"], "ok")
        self.assertIsNone(rows[0]["next_expiry"])
        self.assertEqual(rows[1]["total_quantity"], "5.00")
        self.assertEqual(rows[1]["next_expiry"], str(self.today + timedelta(days=2)))
        self.assertEqual(rows[1]["status"], "critical")

    def test_summary_requires_location(self):
        response = self.client.get("/api/v1/batches/summary/")

        self.assertEqual(response.status_code, 400)
        self.assertIn("location", response.json()["errors"])
