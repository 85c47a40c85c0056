"""Internal transfer workflow between two locations of the same business.

``pending`` moves to ``accepted`` or ``rejected``; ``accepted`` moves to
``completed``. Completion is the only step that touches inventory: it lowers
the source batch's remaining quantity, never below zero. The receiving
location registers the arrival itself.
"""

import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import F, Q, Value
from django.db.models.functions import Greatest
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from common.exceptions import InvalidStateTransition
from common.permissions import ensure_location_capability, user_has_location_capability
from inventory.expiry import parse_quantity
from inventory.models import Batch, InternalTransfer

logger = logging.getLogger(__name__)

Status = InternalTransfer.Status

ALLOWED_TRANSITIONS = {
    Status.PENDING: {Status.ACCEPTED, Status.REJECTED},
    Status.ACCEPTED: {Status.COMPLETED},
    Status.REJECTED: set(),
    Status.COMPLETED: set(),
}


def can_transition(current, target):
    return target in ALLOWED_TRANSITIONS.get(current, set())


def ensure_transition(current, target):
    if not can_transition(current, target):
        raise InvalidStateTransition(current=current, target=target)


def transferable_batches(location):
    return (
        Batch.objects.filter(location=location)
        .with_stock()
        .with_status()
        .select_related("product")
        .by_expiry()
    )


def transfers_for_locations(queryset, location_ids):
    return queryset.filter(Q(from_location_id__in=location_ids) | Q(to_location_id__in=location_ids))


def request_transfer(*, batch, to_location, quantity, requested_by, from_location=None, notes=""):
    """Create a pending transfer of `quantity` from `batch` to `to_location`.

    The source is the batch's own location. Covers both offering surplus from
    the source and asking for stock from the destination; the caller needs the
    ``transfer.request`` capability at either end.
    """
    quantity = parse_quantity(quantity, field="quantity")
    if quantity <= 0:
        raise ValidationError({"quantity": "Quantity must be greater than zero."})

    with transaction.atomic():
        batch = (
            Batch.objects.select_for_update(of=("self",))
            .select_related("location__business", "product")
            .get(pk=batch.pk)
        )
        source = batch.location
        if not any(
            user_has_location_capability(requested_by, location, "transfer.request")
            for location in (source, to_location)
        ):
            ensure_location_capability(requested_by, to_location, "transfer.request")

        if from_location is not None and from_location.pk != source.pk:
            raise ValidationError({"from_location": "The batch is not stored at this location."})
        if to_location.pk == source.pk:
            raise ValidationError({"to_location": "Source and destination locations must differ."})
        if to_location.business_id != source.business_id:
            raise ValidationError({"to_location": "Both locations must belong to the same business."})
        if not source.is_active or not to_location.is_active:
            raise ValidationError({"to_location": "Transfers require two active locations."})

        if batch.remaining_quantity < quantity:
            raise ValidationError(
                {"quantity": f"Only {batch.remaining_quantity} {batch.unit} available in this batch."}
            )

        transfer = InternalTransfer.objects.create(
            batch=batch,
            product=batch.product,
            from_location=source,
            to_location=to_location,
            quantity=quantity,
            status=Status.PENDING,
            requested_by=requested_by,
            requested_at=timezone.now(),
            notes=notes or "",
        )

    logger.info(
        "transfer_requested",
        extra={
            "transfer_id": transfer.id,
            "batch_id": batch.id,
            "location_id": source.id,
            "quantity": str(quantity),
            "user_id": requested_by.pk,
        },
    )
    return transfer


def _lock(transfer):
    return (
        InternalTransfer.objects.select_for_update(of=("self",))
        .select_related("from_location__business", "to_location", "batch")
        .get(pk=transfer.pk)
    )


def _process(transfer, user, target):
    with transaction.atomic():
        transfer = _lock(transfer)
        ensure_location_capability(user, transfer.from_location, "transfer.process")
        ensure_transition(transfer.status, target)

        transfer.status = target
        transfer.processed_by = user
        transfer.processed_at = timezone.now()
        transfer.save(update_fields=["status", "processed_by", "processed_at", "updated_at"])

    logger.info(
        f"transfer_{target}",
        extra={"transfer_id": transfer.id, "location_id": transfer.from_location_id, "status": target, "user_id": user.pk},
    )
    return transfer


def accept_transfer(transfer, user):
    return _process(transfer, user, Status.ACCEPTED)


def reject_transfer(transfer, user):
    return _process(transfer, user, Status.REJECTED)


def complete_transfer(transfer, user):
    """Finish an accepted transfer and take its quantity out of the source batch."""
    with transaction.atomic():
        transfer = _lock(transfer)
        ensure_location_capability(user, transfer.from_location, "transfer.process")
        ensure_transition(transfer.status, Status.COMPLETED)

        Batch.objects.filter(pk=transfer.batch_id).update(
            remaining_quantity=Greatest(F("remaining_quantity") - transfer.quantity, Value(Decimal("0"))),
            updated_at=timezone.now(),
        )

        transfer.status = Status.COMPLETED
        transfer.completed_at = timezone.now()
        transfer.save(update_fields=["status", "completed_at", "updated_at"])
        transfer.batch.refresh_from_db(fields=["remaining_quantity", "updated_at"])

    logger.info(
        "transfer_completed",
        extra={
            "transfer_id": transfer.id,
            "batch_id": transfer.batch_id,
            "location_id": transfer.from_location_id,
            "quantity": str(transfer.quantity),
            "user_id": user.pk,
        },
    )
    return transfer
