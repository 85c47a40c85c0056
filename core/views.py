import csv
import logging
import uuid

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import connections, transaction
from django.http import HttpResponse
from django.utils.dateparse import parse_datetime
from rest_framework import generics, mixins, status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework_simplejwt.views import TokenObtainPairView

from common.audit import create_audit_log_from_request
from common.permissions import (
    LocationCapabilityPermission,
    accessible_location_ids,
    ensure_location_capability,
)
from core.models import AuditLog, Business, Location, LocationRole, Subscription
from core.serializers import (
    AuditLogSerializer,
    BusinessSerializer,
    DashboardSerializer,
    EmailOrUsernameTokenObtainPairSerializer,
    LocationMemberSerializer,
    LocationSerializer,
    OnboardingSerializer,
    UserRegistrationSerializer,
)
from inventory.expiry import status_counts
from inventory.models import Batch

User = get_user_model()
logger = logging.getLogger(__name__)


def scoped_queryset_for_user(queryset, user, field="location_id"):
    """Restrict `queryset` to rows whose `field` points at a location `user` can access."""
    if not user.is_authenticated:
        return queryset.none()

    if user.is_superuser:
        return queryset

    return queryset.filter(**{f"{field}__in": accessible_location_ids(user)})


def get_accessible_location(user, location_id, capability="inventory.view"):
    """Fetch a location by id, 404 when it does not exist, 403 when `user` lacks `capability` there."""
    try:
        location = Location.objects.select_related("business").get(pk=location_id)
    except (Location.DoesNotExist, ValueError, DjangoValidationError):
        raise NotFound("Location not found.")
    ensure_location_capability(user, location, capability)
    return location


def uuid_query_param(request, name):
    """Return query parameter `name` as a UUID, or None when absent."""
    value = request.query_params.get(name)
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        raise ValidationError({name: "Must be a valid UUID."})


def _sync_active_locations_count(business):
    Subscription.objects.filter(business=business).update(
        active_locations_count=business.locations.filter(is_active=True).count()
    )


class RegisterView(generics.CreateAPIView):
    serializer_class = UserRegistrationSerializer
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"

    def perform_create(self, serializer):
        user = serializer.save()
        create_audit_log_from_request(
            self.request,
            action="user.create",
            entity="user",
            entity_id=user.id,
            after_snapshot={
                "id": str(user.id),
                "username": user.username,
                "email": user.email,
            },
        )


class EmailOrUsernameTokenObtainPairView(TokenObtainPairView):
    serializer_class = EmailOrUsernameTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


class OnboardingView(generics.GenericAPIView):
    """Create a business with its trial subscription and first location."""

    serializer_class = OnboardingSerializer
    permission_classes = [IsAuthenticated]

    def post(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        with transaction.atomic():
            business = Business.objects.create(
                owner=request.user,
                name=data["business_name"],
                legal_name=data.get("legal_name") or data["business_name"],
                tax_id=data.get("tax_id", ""),
            )
            Subscription.objects.create(
                business=business,
                status=Subscription.Status.TRIAL,
                active_locations_count=1,
            )
            location = Location.objects.create(
                business=business,
                name=data["location_name"],
                location_type=data["location_type"],
                address=data.get("address", ""),
            )
            create_audit_log_from_request(
                request,
                action="business.create",
                entity="business",
                entity_id=business.id,
                after_snapshot={"name": business.name, "location": location.name},
                business=business,
                location=location,
            )

        logger.info(
            "business_onboarded",
            extra={"business_id": business.id, "location_id": location.id, "user_id": request.user.id},
        )
        return Response(
            {
                "business": BusinessSerializer(business).data,
                "location": LocationSerializer(location).data,
            },
            status=status.HTTP_201_CREATED,
        )


class LocationViewSet(
    mixins.CreateModelMixin,
    mixins.RetrieveModelMixin,
    mixins.UpdateModelMixin,
    mixins.ListModelMixin,
    viewsets.GenericViewSet,
):
    queryset = Location.objects.select_related("business").order_by("name")
    serializer_class = LocationSerializer
    permission_classes = [IsAuthenticated, LocationCapabilityPermission]
    permission_action_map = {
        "retrieve": "inventory.view",
        "update": "location.manage",
        "partial_update": "location.manage",
        "dashboard": "inventory.view",
        "members": "inventory.view",
    }

    def get_queryset(self):
        queryset = scoped_queryset_for_user(super().get_queryset(), self.request.user, field="id")
        business_id = uuid_query_param(self.request, "business")
        if business_id:
            queryset = queryset.filter(business_id=business_id)
        return queryset

    def get_capability_location(self, obj):
        return obj

    def perform_create(self, serializer):
        instance = serializer.save()
        _sync_active_locations_count(instance.business)
        create_audit_log_from_request(
            self.request,
            action="location.create",
            entity="location",
            entity_id=instance.id,
            after_snapshot=self.get_serializer(instance).data,
            location=instance,
        )

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        _sync_active_locations_count(instance.business)
        create_audit_log_from_request(
            self.request,
            action="location.update",
            entity="location",
            entity_id=instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
            location=instance,
        )

    @action(detail=True, methods=["get"], url_path="dashboard")
    def dashboard(self, request, pk=None):
        location = self.get_object()
        counts = status_counts(Batch.objects.filter(location=location))
        return Response(DashboardSerializer(counts).data)

    @action(detail=True, methods=["get", "post"], url_path="members")
    def members(self, request, pk=None):
        location = self.get_object()

        if request.method == "GET":
            roles = location.roles.select_related("user").order_by("created_at")
            return Response(LocationMemberSerializer(roles, many=True).data)

        ensure_location_capability(request.user, location, "member.manage")
        serializer = LocationMemberSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        member = serializer.validated_data["user"]
        if member.pk == location.business.owner_id:
            raise PermissionDenied("The business owner already manages every location.")

        role, created = LocationRole.objects.update_or_create(
            user=member,
            location=location,
            defaults={"role": serializer.validated_data.get("role", LocationRole.Role.EMPLOYEE)},
        )
        create_audit_log_from_request(
            request,
            action="location_role.create" if created else "location_role.update",
            entity="location_role",
            entity_id=role.id,
            after_snapshot={"user": str(member.pk), "role": role.role},
            location=location,
        )
        return Response(
            LocationMemberSerializer(role).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = AuditLog.objects.select_related("actor", "business", "location")
    serializer_class = AuditLogSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        qs = self.queryset.order_by("-created_at")
        user = self.request.user

        if not user.is_superuser:
            qs = qs.filter(business__owner_id=user.pk)

        start_date = self.request.query_params.get("start_date")
        end_date = self.request.query_params.get("end_date")
        actor_id = uuid_query_param(self.request, "actor_id")
        action_name = self.request.query_params.get("action")
        entity = self.request.query_params.get("entity")
        location_id = uuid_query_param(self.request, "location")

        if start_date:
            dt = parse_datetime(start_date)
            if dt:
                qs = qs.filter(created_at__gte=dt)
        if end_date:
            dt = parse_datetime(end_date)
            if dt:
                qs = qs.filter(created_at__lte=dt)
        if actor_id:
            qs = qs.filter(actor_id=actor_id)
        if action_name:
            qs = qs.filter(action=action_name)
        if entity:
            qs = qs.filter(entity=entity)
        if location_id:
            qs = qs.filter(location_id=location_id)

        return qs

    @action(detail=False, methods=["get"], url_path="export")
    def export(self, request):
        logs = self.get_queryset()
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = 'attachment; filename="audit-logs.csv"'

        writer = csv.writer(response)
        writer.writerow(["id", "created_at", "actor", "business", "location", "action", "entity", "entity_id", "request_id"])
        for log in logs:
            writer.writerow(
                [
                    log.id,
                    log.created_at.isoformat(),
                    getattr(log.actor, "username", ""),
                    getattr(log.business, "name", ""),
                    getattr(log.location, "name", ""),
                    log.action,
                    log.entity,
                    log.entity_id,
                    log.request_id,
                ]
            )
        return response


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response({"status": "ok", "request_id": getattr(request, "request_id", None)})


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    try:
        with connections["default"].cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except Exception as exc:
        logger.exception("readiness_check_failed")
        return Response(
            {"status": "error", "request_id": getattr(request, "request_id", None), "detail": str(exc)},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return Response({"status": "ready", "request_id": getattr(request, "request_id", None)})
