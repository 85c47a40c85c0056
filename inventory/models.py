import uuid

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from core.models import Business, Location
from inventory.expiry import ALERT_STATUSES, classify_expiry, status_expression


class StorageType(models.TextChoices):
    REFRIGERATED = "refrigerated", "Refrigerated"
    FROZEN = "frozen", "Frozen"
    DRY = "dry", "Dry"
    AMBIENT = "ambient", "Ambient"


class Product(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey(Business, on_delete=models.PROTECT, related_name="products")
    name = models.CharField(max_length=255)
    gtin = models.CharField(max_length=64, null=True, blank=True)
    description = models.TextField(blank=True, default="")
    default_storage_type = models.CharField(
        max_length=16, choices=StorageType.choices, default=StorageType.REFRIGERATED
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["business", "name"], name="product_business_name_idx"),
            models.Index(fields=["business", "gtin"], name="product_business_gtin_idx"),
        ]

    def __str__(self):
        return self.name


class Supplier(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey(Business, on_delete=models.PROTECT, related_name="suppliers")
    name = models.CharField(max_length=255)
    contact_email = models.EmailField(null=True, blank=True)
    contact_phone = models.CharField(max_length=64, null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=["business", "name"], name="supplier_business_name_idx")]

    def __str__(self):
        return self.name


class DeliveryNote(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    location = models.ForeignKey(Location, on_delete=models.PROTECT, related_name="delivery_notes")
    supplier = models.ForeignKey(Supplier, on_delete=models.PROTECT, null=True, blank=True, related_name="delivery_notes")
    delivery_date = models.DateField(default=timezone.localdate)
    processed_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="+")
    image_url = models.URLField(max_length=1024, null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=["location", "delivery_date"], name="delivery_location_date_idx")]


class DeliveryNoteItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    delivery_note = models.ForeignKey(DeliveryNote, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT)
    quantity = models.DecimalField(max_digits=12, decimal_places=2)
    unit = models.CharField(max_length=32, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)


class BatchQuerySet(models.QuerySet):
    def with_stock(self):
        return self.filter(remaining_quantity__gt=0)

    def with_status(self, today=None):
        return self.annotate(computed_status=status_expression(today))

    def filter_status(self, statuses, today=None):
        if isinstance(statuses, str):
            statuses = [statuses]
        return self.with_status(today).filter(computed_status__in=list(statuses))

    def alerts(self, today=None):
        return self.with_stock().filter_status(ALERT_STATUSES, today)

    def by_expiry(self):
        return self.order_by(F("expiry_date").asc(nulls_first=True), "created_at")


class Batch(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="batches")
    location = models.ForeignKey(Location, on_delete=models.PROTECT, related_name="batches")
    delivery_note_item = models.OneToOneField(
        DeliveryNoteItem, on_delete=models.PROTECT, null=True, blank=True, related_name="batch"
    )
    batch_number = models.CharField(max_length=128, null=True, blank=True)
    quantity = models.DecimalField(max_digits=12, decimal_places=2)
    remaining_quantity = models.DecimalField(max_digits=12, decimal_places=2)
    unit = models.CharField(max_length=32, blank=True, default="")
    entry_date = models.DateField(default=timezone.localdate)
    expiry_date = models.DateField(null=True, blank=True)
    storage_type = models.CharField(max_length=16, choices=StorageType.choices, default=StorageType.REFRIGERATED)
    notes = models.TextField(blank=True, default="")
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = BatchQuerySet.as_manager()

    class Meta:
        indexes = [
            models.Index(fields=["location", "expiry_date"], name="batch_location_expiry_idx"),
            models.Index(fields=["location", "product"], name="batch_location_product_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(remaining_quantity__gte=0) & Q(remaining_quantity__lte=F("quantity")),
                name="batch_remaining_within_quantity",
            ),
        ]

    @property
    def status(self):
        return classify_expiry(self.expiry_date, self.remaining_quantity)

    def __str__(self):
        return f"{self.product} ({self.batch_number or 'no batch'})"


class InternalTransfer(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        ACCEPTED = "accepted", "Accepted"
        REJECTED = "rejected", "Rejected"
        COMPLETED = "completed", "Completed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    batch = models.ForeignKey(Batch, on_delete=models.PROTECT, related_name="transfers")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="+")
    from_location = models.ForeignKey(Location, on_delete=models.PROTECT, related_name="outgoing_transfers")
    to_location = models.ForeignKey(Location, on_delete=models.PROTECT, related_name="incoming_transfers")
    quantity = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    requested_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="+")
    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, null=True, blank=True, related_name="+"
    )
    requested_at = models.DateTimeField(default=timezone.now)
    processed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["from_location", "status"], name="transfer_from_status_idx"),
            models.Index(fields=["to_location", "status"], name="transfer_to_status_idx"),
            models.Index(fields=["requested_at"], name="transfer_requested_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=~Q(from_location=F("to_location")),
                name="transfer_distinct_locations",
            ),
            models.CheckConstraint(condition=Q(quantity__gt=0), name="transfer_quantity_positive"),
        ]
