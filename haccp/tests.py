from datetime import date, timedelta
from types import SimpleNamespace

from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from core.models import AuditLog, Business, Location, LocationRole
from haccp.models import HaccpReport
from haccp.reports import (
    MAX_LINES,
    build_report_lines,
    collect_report_data,
    next_month,
    parse_month,
    render_document,
    render_pdf,
    render_report_html,
)
from inventory.expiry import empty_counts
from inventory.models import Batch
from inventory.services import register_delivery


class MonthParsingTests(SimpleTestCase):
    def test_parse_month_returns_first_day(self):
        self.assertEqual(parse_month("2026-02"), date(2026, 2, 1))

    def test_parse_month_rejects_bad_values(self):
        for value in ("2026-13", "2026", "", None, "march"):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError):
                    parse_month(value)

    def test_next_month_rolls_over_year(self):
        self.assertEqual(next_month(date(2026, 12, 1)), date(2027, 1, 1))
        self.assertEqual(next_month(date(2026, 2, 1)), date(2026, 3, 1))


class ReportRenderingTests(SimpleTestCase):
    def setUp(self):
        self.location = SimpleNamespace(name="Kitchen")
        self.empty_data = {"deliveries": [], "batches": [], "alerts": empty_counts()}

    def test_empty_month_lines(self):
        lines = build_report_lines(self.location, date(2026, 3, 1), self.empty_data)

        self.assertEqual(lines[:3], ["HACCP Report", "Location: Kitchen", "Period: March 2026"])
        self.assertIn("- No delivery notes registered in this period", lines)
        self.assertIn("- No batches created in this period", lines)
        self.assertIn("• Critical alerts: 0", lines)
        self.assertNotIn("Signature", lines)

    def test_signature_block(self):
        lines = build_report_lines(
            self.location,
            date(2026, 3, 1),
            self.empty_data,
            signature_name="  Ana Ruiz ",
            today=date(2026, 4, 2),
        )

        self.assertEqual(lines[-3:], ["Signature", "Responsible: Ana Ruiz", "Date: 2026-04-02"])

    def test_pdf_is_a_single_page(self):
        lines = ["HACCP Report", "Supplier <north> & co", ""]

        html = render_report_html(lines)
        pdf = render_pdf(lines)

        self.assertIn("Supplier &lt;north&gt; &amp; co", html)
        self.assertTrue(pdf.startswith(b"%PDF-"))
        self.assertEqual(len(render_document(lines).pages), 1)

    def test_pdf_cuts_overflowing_lines(self):
        lines = [f"Line {index}" for index in range(MAX_LINES + 20)]

        html = render_report_html(lines)

        self.assertIn(f">Line {MAX_LINES - 1}<", html)
        self.assertNotIn(f">Line {MAX_LINES}<", html)
        self.assertEqual(len(render_document(lines).pages), 1)


class HaccpReportFixtureMixin:
    def create_fixture(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.today = timezone.localdate()
        self.month_start = self.today.replace(day=1)

        self.owner = self.user_model.objects.create_user(username="haccp-owner", password="pass1234")
        self.business = Business.objects.create(owner=self.owner, name="Casa Verde")
        self.location = Location.objects.create(business=self.business, name="Kitchen")
        self.employee = self.user_model.objects.create_user(username="haccp-employee", password="pass1234")
        LocationRole.objects.create(user=self.employee, location=self.location, role=LocationRole.Role.EMPLOYEE)
        self.outsider = self.user_model.objects.create_user(username="haccp-outsider", password="pass1234")

        self.note = register_delivery(
            location=self.location,
            user=self.employee,
            supplier_name="Frutas Lopez",
            delivery_date=self.today,
            lines=[
                {"name": "Tomatoes", "quantity": "10", "unit": "kg", "expiry_date": self.today + timedelta(days=1)},
                {"name": "Flour", "quantity": "25", "unit": "kg"},
            ],
        )


class ReportDataTests(HaccpReportFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixture()

    def test_collects_only_the_requested_month(self):
        previous_day = self.month_start - timedelta(days=1)
        old_note = register_delivery(
            location=self.location,
            user=self.employee,
            delivery_date=previous_day,
            lines=[{"name": "Old cheese", "quantity": "1"}],
        )
        Batch.objects.filter(delivery_note_item__delivery_note=old_note).update(
            created_at=timezone.now() - timedelta(days=self.today.day + 1)
        )

        data = collect_report_data(self.location, self.month_start, self.today)

        self.assertEqual([note.id for note in data["deliveries"]], [self.note.id])
        self.assertEqual(sorted(row["batch"].product.name for row in data["batches"]), ["Flour", "Tomatoes"])
        self.assertEqual(data["alerts"]["critical"], 1)
        self.assertEqual(data["alerts"]["ok"], 1)

    def test_lines_list_deliveries_and_batches(self):
        data = collect_report_data(self.location, self.month_start, self.today)

        lines = build_report_lines(self.location, self.month_start, data, today=self.today)

        self.assertIn(f"• {self.today:%Y-%m-%d} - Frutas Lopez", lines)
        self.assertIn("   · Tomatoes: 10 kg", lines)
        self.assertIn("• Flour (No batch)", lines)
        self.assertIn("   · Quantity: 25 kg | Expiry: No date", lines)
        self.assertIn("   · Status: Critical", lines)
        self.assertIn("• Critical alerts: 1", lines)


class HaccpReportApiTests(HaccpReportFixtureMixin, TestCase):
    def setUp(self):
        self.create_fixture()

    def test_owner_generates_signed_pdf(self):
        self.client.force_authenticate(user=self.owner)

        response = self.client.post(
            "/api/v1/haccp-reports/generate/",
            {"location": str(self.location.id), "month": f"{self.month_start:%Y-%m}", "signature_name": "Ana Ruiz"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "application/pdf")
        self.assertEqual(
            response["Content-Disposition"],
            f'attachment; filename="HACCP-{self.month_start:%Y-%m}.pdf"',
        )
        self.assertTrue(response.content.startswith(b"%PDF-"))

        report = HaccpReport.objects.get(id=response["X-Report-ID"])
        self.assertEqual(report.report_month, self.month_start)
        self.assertEqual(report.signed_by, "Ana Ruiz")
        self.assertIsNotNone(report.signed_at)
        self.assertTrue(AuditLog.objects.filter(action="haccp_report.generate", entity_id=report.id).exists())

    def test_employee_cannot_generate_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.employee)

        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.post(
                "/api/v1/haccp-reports/generate/",
                {"location": str(self.location.id), "month": f"{self.month_start:%Y-%m}"},
                format="json",
            )

        self.assertEqual(response.status_code, 403)
        self.assertTrue(any("report.generate" in message for message in cm.output))
        self.assertFalse(HaccpReport.objects.exists())

    def test_generate_rejects_malformed_month(self):
        self.client.force_authenticate(user=self.owner)

        response = self.client.post(
            "/api/v1/haccp-reports/generate/",
            {"location": str(self.location.id), "month": "2026-3"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("month", response.json()["errors"])

    def test_employee_can_preview(self):
        self.client.force_authenticate(user=self.employee)

        response = self.client.get(
            "/api/v1/haccp-reports/preview/",
            {"location": str(self.location.id), "month": f"{self.month_start:%Y-%m}"},
        )

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(len(payload["deliveries"]), 1)
        self.assertEqual(len(payload["batches"]), 2)
        self.assertEqual(payload["alerts"]["total"], 2)
        self.assertEqual(payload["lines"][0], "HACCP Report")

    def test_preview_requires_location(self):
        self.client.force_authenticate(user=self.owner)

        response = self.client.get("/api/v1/haccp-reports/preview/", {"month": "2026-03"})

        self.assertEqual(response.status_code, 400)

    def test_report_history_is_scoped(self):
        HaccpReport.objects.create(location=self.location, report_month=self.month_start, generated_by=self.owner)

        self.client.force_authenticate(user=self.outsider)
        outsider_response = self.client.get("/api/v1/haccp-reports/")
        self.client.force_authenticate(user=self.employee)
        employee_response = self.client.get("/api/v1/haccp-reports/")

        self.assertEqual(outsider_response.json()["count"], 0)
        self.assertEqual(employee_response.json()["count"], 1)
