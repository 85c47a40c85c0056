"""Expiry classification of perishable batches.

A batch is ``expired`` once its expiry date has passed, ``critical`` when it
expires within ``BATCH_CRITICAL_DAYS`` days (today included), ``warning``
within ``BATCH_WARNING_DAYS`` days and ``ok`` otherwise. A batch without an
expiry date is always ``ok``.

The same rules exist twice: :func:`classify_expiry` for a single value and
:func:`status_expression` for database-side annotation and filtering. Both read
the thresholds from settings on every call.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.db.models import Case, CharField, Count, TextChoices, Value, When
from django.utils import timezone
from django.utils.dateparse import parse_date
from rest_framework.exceptions import ValidationError


class BatchStatus(TextChoices):
    OK = "ok", "OK"
    WARNING = "warning", "Warning"
    CRITICAL = "critical", "Critical"
    EXPIRED = "expired", "Expired"


ALERT_STATUSES = (BatchStatus.WARNING.value, BatchStatus.CRITICAL.value, BatchStatus.EXPIRED.value)


def get_thresholds() -> tuple[int, int]:
    return settings.BATCH_CRITICAL_DAYS, settings.BATCH_WARNING_DAYS


def parse_expiry_date(value) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            parsed = parse_date(value.strip())
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed
    raise ValidationError({"expiry_date": f"Invalid expiry date: {value!r}. Expected YYYY-MM-DD."})


def parse_quantity(value, field="remaining_quantity") -> Decimal:
    try:
        quantity = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError({field: f"Invalid quantity: {value!r}."})
    if not quantity.is_finite():
        raise ValidationError({field: f"Invalid quantity: {value!r}."})
    return quantity


def days_until_expiry(expiry_date, today: date | None = None) -> int | None:
    expiry_date = parse_expiry_date(expiry_date)
    if expiry_date is None:
        return None
    today = today or timezone.localdate()
    return (expiry_date - today).days


def classify_expiry(expiry_date, remaining_quantity=None, today: date | None = None) -> str:
    """Return the :class:`BatchStatus` value for a batch.

    Raises ``ValidationError`` for a negative remaining quantity or an expiry
    date that is neither a date nor a ``YYYY-MM-DD`` string. Empty batches are
    classified like any other; callers decide whether to show them.
    """
    if remaining_quantity is not None and parse_quantity(remaining_quantity) < 0:
        raise ValidationError({"remaining_quantity": "Remaining quantity cannot be negative."})

    days_remaining = days_until_expiry(expiry_date, today)
    if days_remaining is None:
        return BatchStatus.OK.value

    critical_days, warning_days = get_thresholds()
    if days_remaining < 0:
        return BatchStatus.EXPIRED.value
    if days_remaining <= critical_days:
        return BatchStatus.CRITICAL.value
    if days_remaining <= warning_days:
        return BatchStatus.WARNING.value
    return BatchStatus.OK.value


def status_expression(today: date | None = None) -> Case:
    """Database expression equivalent to :func:`classify_expiry` on ``expiry_date``."""
    today = today or timezone.localdate()
    critical_days, warning_days = get_thresholds()
    return Case(
        When(expiry_date__isnull=True, then=Value(BatchStatus.OK.value)),
        When(expiry_date__lt=today, then=Value(BatchStatus.EXPIRED.value)),
        When(expiry_date__lte=today + timedelta(days=critical_days), then=Value(BatchStatus.CRITICAL.value)),
        When(expiry_date__lte=today + timedelta(days=warning_days), then=Value(BatchStatus.WARNING.value)),
        default=Value(BatchStatus.OK.value),
        output_field=CharField(),
    )


def empty_counts() -> dict[str, int]:
    counts = {status.value: 0 for status in BatchStatus}
    counts["total"] = 0
    return counts


def status_counts(batches, today: date | None = None) -> dict[str, int]:
    """Count batches with stock left per status, plus a ``total``.

    Accepts a ``Batch`` queryset (aggregated in the database) or any iterable
    of objects exposing ``expiry_date`` and ``remaining_quantity``.
    """
    counts = empty_counts()

    if hasattr(batches, "with_status"):
        rows = (
            batches.with_stock()
            .with_status(today)
            .order_by()
            .values("computed_status")
            .annotate(n=Count("id"))
        )
        for row in rows:
            counts[row["computed_status"]] += row["n"]
            counts["total"] += row["n"]
        return counts

    for batch in batches:
        if parse_quantity(batch.remaining_quantity) <= 0:
            continue
        counts[classify_expiry(batch.expiry_date, batch.remaining_quantity, today)] += 1
        counts["total"] += 1
    return counts
