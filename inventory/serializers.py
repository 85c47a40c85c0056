from rest_framework import serializers

from core.models import Business, Location
from inventory.expiry import BatchStatus, days_until_expiry
from inventory.models import (
    Batch,
    DeliveryNote,
    DeliveryNoteItem,
    InternalTransfer,
    Product,
    StorageType,
    Supplier,
)


class ProductSerializer(serializers.ModelSerializer):
    class Meta:
        model = Product
        fields = ["id", "business", "name", "gtin", "description", "default_storage_type", "created_at", "updated_at"]
        read_only_fields = ["id", "business", "created_at", "updated_at"]


class SupplierSerializer(serializers.ModelSerializer):
    business = serializers.PrimaryKeyRelatedField(queryset=Business.objects.all())

    class Meta:
        model = Supplier
        fields = ["id", "business", "name", "contact_email", "contact_phone", "notes", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class DeliveryNoteItemSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)

    class Meta:
        model = DeliveryNoteItem
        fields = ["id", "product", "product_name", "quantity", "unit", "notes"]
        read_only_fields = fields


class DeliveryNoteSerializer(serializers.ModelSerializer):
    supplier_name = serializers.CharField(source="supplier.name", read_only=True, default=None)
    items = DeliveryNoteItemSerializer(many=True, read_only=True)

    class Meta:
        model = DeliveryNote
        fields = [
            "id",
            "location",
            "supplier",
            "supplier_name",
            "delivery_date",
            "processed_by",
            "image_url",
            "notes",
            "items",
            "created_at",
        ]
        read_only_fields = fields


class DeliveryLineSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    unit = serializers.CharField(max_length=32, required=False, allow_blank=True)
    expiry_date = serializers.DateField(required=False, allow_null=True)
    storage_type = serializers.ChoiceField(choices=StorageType.choices, required=False)
    batch_number = serializers.CharField(max_length=128, required=False, allow_blank=True, allow_null=True)
    gtin = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate_quantity(self, value):
        if value <= 0:
            raise serializers.ValidationError("Quantity must be greater than zero.")
        return value


class DeliveryRegistrationSerializer(serializers.Serializer):
    location = serializers.PrimaryKeyRelatedField(queryset=Location.objects.select_related("business"))
    supplier = serializers.PrimaryKeyRelatedField(queryset=Supplier.objects.all(), required=False, allow_null=True)
    supplier_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    delivery_date = serializers.DateField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    image_url = serializers.URLField(max_length=1024, required=False, allow_blank=True, allow_null=True)
    lines = DeliveryLineSerializer(many=True, allow_empty=False)


class DeliveryScanSerializer(serializers.Serializer):
    location = serializers.PrimaryKeyRelatedField(queryset=Location.objects.all())
    image = serializers.CharField()


class BatchSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    location_name = serializers.CharField(source="location.name", read_only=True)
    status = serializers.SerializerMethodField()
    days_until_expiry = serializers.SerializerMethodField()

    class Meta:
        model = Batch
        fields = [
            "id",
            "product",
            "product_name",
            "location",
            "location_name",
            "delivery_note_item",
            "batch_number",
            "quantity",
            "remaining_quantity",
            "unit",
            "entry_date",
            "expiry_date",
            "days_until_expiry",
            "storage_type",
            "status",
            "notes",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_status(self, obj):
        return getattr(obj, "computed_status", None) or obj.status

    def get_days_until_expiry(self, obj):
        return days_until_expiry(obj.expiry_date)


class BatchAdjustSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)


class BatchExpirySerializer(serializers.Serializer):
    expiry_date = serializers.DateField(allow_null=True)


class ProductSummarySerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    name = serializers.CharField()
    total_quantity = serializers.DecimalField(max_digits=14, decimal_places=2)
    unit = serializers.CharField()
    next_expiry = serializers.DateField(allow_null=True)
    status = serializers.ChoiceField(choices=BatchStatus.choices)


class InternalTransferSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    from_location_name = serializers.CharField(source="from_location.name", read_only=True)
    to_location_name = serializers.CharField(source="to_location.name", read_only=True)
    batch_number = serializers.CharField(source="batch.batch_number", read_only=True, default=None)
    expiry_date = serializers.DateField(source="batch.expiry_date", read_only=True, default=None)
    unit = serializers.CharField(source="batch.unit", read_only=True)

    class Meta:
        model = InternalTransfer
        fields = [
            "id",
            "batch",
            "batch_number",
            "expiry_date",
            "product",
            "product_name",
            "from_location",
            "from_location_name",
            "to_location",
            "to_location_name",
            "quantity",
            "unit",
            "status",
            "requested_by",
            "processed_by",
            "requested_at",
            "processed_at",
            "completed_at",
            "notes",
        ]
        read_only_fields = fields


class TransferRequestSerializer(serializers.Serializer):
    batch = serializers.PrimaryKeyRelatedField(queryset=Batch.objects.select_related("location"))
    from_location = serializers.PrimaryKeyRelatedField(queryset=Location.objects.all(), required=False)
    to_location = serializers.PrimaryKeyRelatedField(queryset=Location.objects.all())
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2)
    notes = serializers.CharField(required=False, allow_blank=True)
