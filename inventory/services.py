import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import F, Value
from django.db.models.functions import Greatest
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from inventory.expiry import classify_expiry, parse_expiry_date, parse_quantity
from inventory.models import Batch, DeliveryNote, DeliveryNoteItem, Product, StorageType, Supplier

logger = logging.getLogger(__name__)

DEFAULT_UNIT = "units"


def _resolve_supplier(business, supplier=None, supplier_name=""):
    if supplier is not None:
        if supplier.business_id != business.pk:
            raise ValidationError({"supplier": "Supplier belongs to another business."})
        return supplier

    supplier_name = (supplier_name or "").strip()
    if not supplier_name:
        return None
    return Supplier.objects.create(business=business, name=supplier_name)


def _resolve_products(business, lines):
    """Map lower-cased product names to products, creating the missing ones."""
    products = {}
    for line in lines:
        key = line["name"].strip().lower()
        if key in products:
            continue
        product = Product.objects.filter(business=business, name__iexact=line["name"].strip()).order_by("created_at").first()
        if product is None:
            product = Product.objects.create(
                business=business,
                name=line["name"].strip(),
                gtin=line.get("gtin") or None,
                default_storage_type=line.get("storage_type") or StorageType.REFRIGERATED,
            )
        products[key] = product
    return products


@transaction.atomic
def register_delivery(
    *,
    location,
    user,
    lines,
    supplier=None,
    supplier_name="",
    delivery_date=None,
    notes="",
    image_url=None,
):
    """Record a supplier delivery and open one batch per delivered line.

    Each line is a mapping with ``name`` and ``quantity`` and optionally
    ``unit``, ``expiry_date``, ``storage_type``, ``batch_number``, ``gtin`` and
    ``notes``. Products are matched by case-insensitive name within the
    business and created when missing. Nothing is written if any step fails.
    """
    if not lines:
        raise ValidationError({"lines": "A delivery needs at least one product line."})

    cleaned = []
    for index, line in enumerate(lines):
        name = (line.get("name") or "").strip()
        if not name:
            raise ValidationError({"lines": {index: "Product name is required."}})
        quantity = parse_quantity(line.get("quantity"), field="quantity")
        if quantity <= 0:
            raise ValidationError({"lines": {index: "Quantity must be greater than zero."}})
        cleaned.append(
            {
                **line,
                "name": name,
                "quantity": quantity,
                "expiry_date": parse_expiry_date(line.get("expiry_date")),
            }
        )

    business = location.business
    supplier = _resolve_supplier(business, supplier, supplier_name)
    delivery_note = DeliveryNote.objects.create(
        location=location,
        supplier=supplier,
        delivery_date=delivery_date or timezone.localdate(),
        processed_by=user,
        notes=(notes or "").strip(),
        image_url=image_url or None,
    )

    products = _resolve_products(business, cleaned)
    for line in cleaned:
        product = products[line["name"].lower()]
        unit = line.get("unit") or DEFAULT_UNIT
        item = DeliveryNoteItem.objects.create(
            delivery_note=delivery_note,
            product=product,
            quantity=line["quantity"],
            unit=unit,
            notes=line.get("notes") or "",
        )
        Batch.objects.create(
            product=product,
            location=location,
            delivery_note_item=item,
            batch_number=line.get("batch_number") or None,
            quantity=line["quantity"],
            remaining_quantity=line["quantity"],
            unit=unit,
            expiry_date=line["expiry_date"],
            storage_type=line.get("storage_type") or product.default_storage_type,
            notes=line.get("notes") or "",
            created_by=user,
        )

    logger.info(
        "delivery_registered",
        extra={
            "delivery_note_id": delivery_note.id,
            "location_id": location.id,
            "quantity": len(cleaned),
            "user_id": user.pk,
        },
    )
    return delivery_note


def adjust_batch(batch, amount, user=None):
    """Record consumption of `amount` from `batch`; remaining stock never drops below zero."""
    amount = parse_quantity(amount, field="amount")
    if amount < 0:
        raise ValidationError({"amount": "Consumed amount cannot be negative."})

    Batch.objects.filter(pk=batch.pk).update(
        remaining_quantity=Greatest(F("remaining_quantity") - amount, Value(Decimal("0"))),
        updated_at=timezone.now(),
    )
    batch.refresh_from_db(fields=["remaining_quantity", "updated_at"])

    logger.info(
        "batch_adjusted",
        extra={
            "batch_id": batch.id,
            "location_id": batch.location_id,
            "quantity": str(amount),
            "user_id": getattr(user, "pk", None),
        },
    )
    return batch


def update_batch_expiry(batch, expiry_date):
    batch.expiry_date = parse_expiry_date(expiry_date)
    batch.save(update_fields=["expiry_date", "updated_at"])
    logger.info(
        "batch_expiry_updated",
        extra={"batch_id": batch.id, "location_id": batch.location_id, "status": batch.status},
    )
    return batch


def acknowledge_alert(batch, user=None, now=None):
    """Append a review stamp to the batch notes."""
    now = timezone.localtime(now or timezone.now())
    review_note = f"Reviewed on {now:%Y-%m-%d %H:%M}"
    batch.notes = f"{batch.notes}\n{review_note}" if batch.notes else review_note
    batch.save(update_fields=["notes", "updated_at"])
    logger.info(
        "alert_acknowledged",
        extra={"batch_id": batch.id, "location_id": batch.location_id, "user_id": getattr(user, "pk", None)},
    )
    return batch


def product_summary(batches, today=None):
    """Per-product totals of remaining stock with the soonest expiry and its status."""
    summary = {}
    for batch in batches:
        entry = summary.get(batch.product_id)
        if entry is None:
            summary[batch.product_id] = {
                "product_id": batch.product_id,
                "name": batch.product.name,
                "total_quantity": batch.remaining_quantity,
                "unit": batch.unit or DEFAULT_UNIT,
                "next_expiry": batch.expiry_date,
                "status": classify_expiry(batch.expiry_date, batch.remaining_quantity, today),
            }
            continue

        entry["total_quantity"] += batch.remaining_quantity
        if batch.expiry_date and (entry["next_expiry"] is None or batch.expiry_date < entry["next_expiry"]):
            entry["next_expiry"] = batch.expiry_date
            entry["status"] = classify_expiry(batch.expiry_date, batch.remaining_quantity, today)

    return sorted(summary.values(), key=lambda row: row["name"].lower())
