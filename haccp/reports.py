"""Monthly HACCP report: content lines and single-page PDF rendering."""

import logging
from datetime import date

from django.template.loader import render_to_string
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from weasyprint import HTML

from haccp.models import HaccpReport
from inventory.expiry import BatchStatus, classify_expiry, empty_counts
from inventory.models import Batch, DeliveryNote

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    BatchStatus.OK.value: "Good condition",
    BatchStatus.WARNING.value: "Expiring soon",
    BatchStatus.CRITICAL.value: "Critical",
    BatchStatus.EXPIRED.value: "Expired",
}

DEFAULT_UNIT = "units"

# A4 in points.
PAGE_HEIGHT = 842
TOP_MARGIN = 40
BOTTOM_MARGIN = 40
SIDE_MARGIN = 50
LINE_HEIGHT = 16
FONT_SIZE = 12
MAX_LINES = (PAGE_HEIGHT - TOP_MARGIN - BOTTOM_MARGIN) // LINE_HEIGHT


def parse_month(value):
    """Parse ``YYYY-MM`` into the first day of that month."""
    try:
        year, month = (int(part) for part in str(value or "").split("-"))
        return date(year, month, 1)
    except ValueError:
        raise ValidationError({"month": "Month must use the YYYY-MM format."})


def next_month(month_start):
    if month_start.month == 12:
        return date(month_start.year + 1, 1, 1)
    return date(month_start.year, month_start.month + 1, 1)


def collect_report_data(location, month_start, today=None):
    month_end = next_month(month_start)
    deliveries = list(
        DeliveryNote.objects.filter(
            location=location,
            delivery_date__gte=month_start,
            delivery_date__lt=month_end,
        )
        .select_related("supplier")
        .prefetch_related("items__product")
        .order_by("delivery_date", "created_at")
    )
    batches = list(
        Batch.objects.filter(
            location=location,
            created_at__date__gte=month_start,
            created_at__date__lt=month_end,
        )
        .select_related("product")
        .order_by("created_at")
    )

    alerts = empty_counts()
    batch_rows = []
    for batch in batches:
        batch_status = classify_expiry(batch.expiry_date, batch.remaining_quantity, today)
        alerts[batch_status] += 1
        alerts["total"] += 1
        batch_rows.append({"batch": batch, "status": batch_status})

    return {"deliveries": deliveries, "batches": batch_rows, "alerts": alerts}


def _format_quantity(value):
    return f"{value.normalize():f}" if hasattr(value, "normalize") else str(value)


def build_report_lines(location, month_start, data, signature_name=None, today=None):
    today = today or timezone.localdate()
    lines = [
        "HACCP Report",
        f"Location: {location.name}",
        f"Period: {month_start:%B %Y}",
        "",
        "Deliveries received",
    ]

    if not data["deliveries"]:
        lines.append("- No delivery notes registered in this period")
    for delivery in data["deliveries"]:
        supplier_name = delivery.supplier.name if delivery.supplier_id else "Unnamed supplier"
        lines.append(f"• {delivery.delivery_date:%Y-%m-%d} - {supplier_name}")
        for item in delivery.items.all():
            lines.append(f"   · {item.product.name}: {_format_quantity(item.quantity)} {item.unit or DEFAULT_UNIT}")

    lines.extend(["", "Batches created"])
    if not data["batches"]:
        lines.append("- No batches created in this period")
    for row in data["batches"]:
        batch = row["batch"]
        expiry = f"{batch.expiry_date:%Y-%m-%d}" if batch.expiry_date else "No date"
        lines.append(f"• {batch.product.name} ({batch.batch_number or 'No batch'})")
        lines.append(f"   · Quantity: {_format_quantity(batch.quantity)} {batch.unit or DEFAULT_UNIT} | Expiry: {expiry}")
        lines.append(f"   · Status: {STATUS_LABELS[row['status']]}")

    alerts = data["alerts"]
    lines.extend(
        [
            "",
            "Alerts and corrective actions",
            f"• Critical alerts: {alerts[BatchStatus.CRITICAL.value]}",
            f"• Expiring soon: {alerts[BatchStatus.WARNING.value]}",
            f"• Expired batches: {alerts[BatchStatus.EXPIRED.value]}",
            "",
        ]
    )

    signature_name = (signature_name or "").strip()
    if signature_name:
        lines.extend(["Signature", f"Responsible: {signature_name}", f"Date: {today:%Y-%m-%d}"])

    return lines


def render_report_html(lines):
    """Lay out `lines` on one A4 page; lines past the page are dropped."""
    return render_to_string(
        "haccp/report.html",
        {
            "title": lines[0] if lines else "HACCP Report",
            "lines": lines[:MAX_LINES],
            "font_size": FONT_SIZE,
            "line_height": LINE_HEIGHT,
            "top_margin": TOP_MARGIN,
            "bottom_margin": BOTTOM_MARGIN,
            "side_margin": SIDE_MARGIN,
        },
    )


def render_document(lines):
    return HTML(string=render_report_html(lines)).render()


def render_pdf(lines):
    return render_document(lines).write_pdf()


def report_filename(month_start):
    return f"HACCP-{month_start:%Y-%m}.pdf"


def generate_report(*, location, month_start, user, signature_name=None, today=None):
    """Build the PDF for `month_start` at `location` and record it in the report history."""
    data = collect_report_data(location, month_start, today)
    lines = build_report_lines(location, month_start, data, signature_name, today)
    pdf = render_pdf(lines)

    signature_name = (signature_name or "").strip() or None
    report = HaccpReport.objects.create(
        location=location,
        report_month=month_start,
        generated_by=user,
        signed_by=signature_name,
        signed_at=timezone.now() if signature_name else None,
    )

    logger.info(
        "haccp_report_generated",
        extra={"report_id": report.id, "location_id": location.id, "user_id": user.pk},
    )
    return report, pdf
