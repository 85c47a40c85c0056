import logging

from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import PermissionDenied, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from common.audit import create_audit_log_from_request
from common.permissions import (
    LocationCapabilityPermission,
    accessible_business_ids,
    accessible_location_ids,
    is_business_owner,
)
from core.views import get_accessible_location, scoped_queryset_for_user, uuid_query_param
from inventory.expiry import ALERT_STATUSES, BatchStatus
from inventory.models import Batch, DeliveryNote, InternalTransfer, Product, Supplier
from inventory.ocr import extract_delivery_note
from inventory.serializers import (
    BatchAdjustSerializer,
    BatchExpirySerializer,
    BatchSerializer,
    DeliveryNoteSerializer,
    DeliveryRegistrationSerializer,
    DeliveryScanSerializer,
    InternalTransferSerializer,
    ProductSerializer,
    ProductSummarySerializer,
    SupplierSerializer,
    TransferRequestSerializer,
)
from inventory.services import (
    acknowledge_alert,
    adjust_batch,
    product_summary,
    register_delivery,
    update_batch_expiry,
)
from inventory.transfers import (
    accept_transfer,
    complete_transfer,
    reject_transfer,
    request_transfer,
    transferable_batches,
    transfers_for_locations,
)

logger = logging.getLogger(__name__)


class AuditedMutationMixin:
    audit_entity = None

    def _audit(self, *, action, instance, location=None, business=None, before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=action,
            entity=self.audit_entity,
            entity_id=instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
            business=business,
            location=location if location is not None else getattr(instance, "location", None),
        )

    def _location_param(self, required=False, capability="inventory.view"):
        location_id = self.request.query_params.get("location")
        if not location_id:
            if required:
                raise ValidationError({"location": "This query parameter is required."})
            return None
        return get_accessible_location(self.request.user, location_id, capability)

    def _status_param(self, allowed=None):
        value = self.request.query_params.get("status")
        if not value:
            return None
        allowed = allowed or BatchStatus.values
        if value not in allowed:
            raise ValidationError({"status": f"Must be one of: {', '.join(allowed)}."})
        return value


class ProductViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Product.objects.order_by("name")
    serializer_class = ProductSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        queryset = super().get_queryset()
        if not self.request.user.is_superuser:
            queryset = queryset.filter(business_id__in=accessible_business_ids(self.request.user))
        business_id = uuid_query_param(self.request, "business")
        if business_id:
            queryset = queryset.filter(business_id=business_id)
        search = self.request.query_params.get("search")
        if search:
            queryset = queryset.filter(name__icontains=search.strip())
        return queryset


class SupplierViewSet(
    AuditedMutationMixin,
    mixins.CreateModelMixin,
    mixins.RetrieveModelMixin,
    mixins.ListModelMixin,
    viewsets.GenericViewSet,
):
    queryset = Supplier.objects.order_by("name")
    serializer_class = SupplierSerializer
    permission_classes = [IsAuthenticated]
    audit_entity = "supplier"

    def get_queryset(self):
        queryset = super().get_queryset()
        if not self.request.user.is_superuser:
            queryset = queryset.filter(business_id__in=accessible_business_ids(self.request.user))
        business_id = uuid_query_param(self.request, "business")
        if business_id:
            queryset = queryset.filter(business_id=business_id)
        return queryset

    def perform_create(self, serializer):
        business = serializer.validated_data["business"]
        user = self.request.user
        if not is_business_owner(user, business) and business.pk not in set(accessible_business_ids(user)):
            raise PermissionDenied("You do not have access to this business.")
        instance = serializer.save()
        self._audit(action="supplier.create", instance=instance, business=business, after_snapshot=self.get_serializer(instance).data)


class DeliveryNoteViewSet(
    AuditedMutationMixin,
    mixins.CreateModelMixin,
    mixins.RetrieveModelMixin,
    mixins.ListModelMixin,
    viewsets.GenericViewSet,
):
    queryset = DeliveryNote.objects.select_related("supplier", "location").prefetch_related("items__product")
    serializer_class = DeliveryNoteSerializer
    permission_classes = [IsAuthenticated]
    audit_entity = "delivery_note"

    def get_queryset(self):
        queryset = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        location = self._location_param()
        if location is not None:
            queryset = queryset.filter(location=location)
        return queryset.order_by("-delivery_date", "-created_at")

    def create(self, request, *args, **kwargs):
        serializer = DeliveryRegistrationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        location = get_accessible_location(request.user, data["location"].pk, "delivery.register")
        delivery_note = register_delivery(
            location=location,
            user=request.user,
            lines=data["lines"],
            supplier=data.get("supplier"),
            supplier_name=data.get("supplier_name", ""),
            delivery_date=data.get("delivery_date"),
            notes=data.get("notes", ""),
            image_url=data.get("image_url"),
        )
        payload = self.get_serializer(delivery_note).data
        self._audit(action="delivery_note.create", instance=delivery_note, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)


class DeliveryNoteScanView(APIView):
    """Extract supplier, date and lines from a delivery note photo."""

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "ocr"

    def post(self, request):
        serializer = DeliveryScanSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        location = get_accessible_location(request.user, serializer.validated_data["location"].pk, "delivery.register")

        extraction = extract_delivery_note(serializer.validated_data["image"])
        logger.info(
            "delivery_note_scanned",
            extra={"location_id": location.id, "quantity": len(extraction["products"]), "user_id": request.user.pk},
        )
        return Response(extraction)


class BatchViewSet(AuditedMutationMixin, viewsets.ReadOnlyModelViewSet):
    queryset = Batch.objects.select_related("product", "location")
    serializer_class = BatchSerializer
    permission_classes = [IsAuthenticated, LocationCapabilityPermission]
    permission_action_map = {
        "retrieve": "inventory.view",
        "adjust": "batch.adjust",
        "expiry": "batch.expiry.edit",
        "acknowledge": "alert.acknowledge",
    }
    audit_entity = "batch"

    def get_queryset(self):
        queryset = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        if self.action in ("list", "alerts", "summary"):
            location = self._location_param(required=self.action == "summary")
            if location is not None:
                queryset = queryset.filter(location=location)
        return queryset

    def list(self, request, *args, **kwargs):
        queryset = self.get_queryset()
        batch_status = self._status_param()
        if batch_status:
            queryset = queryset.filter_status(batch_status)
        else:
            queryset = queryset.with_status()
        if request.query_params.get("in_stock") in ("1", "true", "yes"):
            queryset = queryset.with_stock()

        page = self.paginate_queryset(queryset.by_expiry())
        serializer = self.get_serializer(page, many=True)
        return self.get_paginated_response(serializer.data)

    @action(detail=False, methods=["get"], url_path="alerts")
    def alerts(self, request):
        queryset = self.get_queryset().alerts()
        batch_status = self._status_param(allowed=ALERT_STATUSES)
        if batch_status:
            queryset = queryset.filter(computed_status=batch_status)
        return Response(self.get_serializer(queryset.by_expiry(), many=True).data)

    @action(detail=False, methods=["get"], url_path="summary")
    def summary(self, request):
        queryset = self.get_queryset().with_stock().by_expiry()
        return Response(ProductSummarySerializer(product_summary(queryset), many=True).data)

    @action(detail=True, methods=["post"], url_path="adjust")
    def adjust(self, request, pk=None):
        batch = self.get_object()
        serializer = BatchAdjustSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        before_snapshot = {"remaining_quantity": batch.remaining_quantity}
        batch = adjust_batch(batch, serializer.validated_data["amount"], user=request.user)
        self._audit(
            action="batch.adjust",
            instance=batch,
            before_snapshot=before_snapshot,
            after_snapshot={"remaining_quantity": batch.remaining_quantity, "amount": serializer.validated_data["amount"]},
        )
        return Response(self.get_serializer(batch).data)

    @action(detail=True, methods=["post"], url_path="expiry")
    def expiry(self, request, pk=None):
        batch = self.get_object()
        serializer = BatchExpirySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        before_snapshot = {"expiry_date": batch.expiry_date, "status": batch.status}
        batch = update_batch_expiry(batch, serializer.validated_data["expiry_date"])
        self._audit(
            action="batch.expiry_update",
            instance=batch,
            before_snapshot=before_snapshot,
            after_snapshot={"expiry_date": batch.expiry_date, "status": batch.status},
        )
        return Response(self.get_serializer(batch).data)

    @action(detail=True, methods=["post"], url_path="acknowledge")
    def acknowledge(self, request, pk=None):
        batch = self.get_object()
        batch = acknowledge_alert(batch, user=request.user)
        self._audit(action="batch.acknowledge", instance=batch, after_snapshot={"notes": batch.notes})
        return Response(self.get_serializer(batch).data)


class InternalTransferViewSet(
    AuditedMutationMixin,
    mixins.CreateModelMixin,
    mixins.RetrieveModelMixin,
    mixins.ListModelMixin,
    viewsets.GenericViewSet,
):
    queryset = InternalTransfer.objects.select_related("batch", "product", "from_location", "to_location")
    serializer_class = InternalTransferSerializer
    permission_classes = [IsAuthenticated]
    audit_entity = "internal_transfer"

    def get_queryset(self):
        queryset = super().get_queryset()
        user = self.request.user
        if not user.is_superuser:
            queryset = transfers_for_locations(queryset, accessible_location_ids(user))

        location = self._location_param()
        if location is not None:
            queryset = transfers_for_locations(queryset, [location.pk])
        transfer_status = self.request.query_params.get("status")
        if transfer_status:
            if transfer_status not in InternalTransfer.Status.values:
                raise ValidationError({"status": f"Must be one of: {', '.join(InternalTransfer.Status.values)}."})
            queryset = queryset.filter(status=transfer_status)
        return queryset.order_by("-requested_at")

    def create(self, request, *args, **kwargs):
        serializer = TransferRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        transfer = request_transfer(
            batch=data["batch"],
            from_location=data.get("from_location"),
            to_location=data["to_location"],
            quantity=data["quantity"],
            requested_by=request.user,
            notes=data.get("notes", ""),
        )
        payload = self.get_serializer(transfer).data
        self._audit(action="transfer.request", instance=transfer, location=transfer.from_location, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    def _transition(self, handler, audit_action):
        transfer = self.get_object()
        before_snapshot = {"status": transfer.status}
        transfer = handler(transfer, self.request.user)
        payload = self.get_serializer(transfer).data
        self._audit(
            action=audit_action,
            instance=transfer,
            location=transfer.from_location,
            before_snapshot=before_snapshot,
            after_snapshot=payload,
        )
        return Response(payload)

    @action(detail=True, methods=["post"], url_path="accept")
    def accept(self, request, pk=None):
        return self._transition(accept_transfer, "transfer.accept")

    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, pk=None):
        return self._transition(reject_transfer, "transfer.reject")

    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, pk=None):
        return self._transition(complete_transfer, "transfer.complete")

    @action(detail=False, methods=["get"], url_path="available-batches")
    def available_batches(self, request):
        location = self._location_param(required=True)
        return Response(BatchSerializer(transferable_batches(location), many=True).data)
