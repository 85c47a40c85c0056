import logging

from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import BasePermission

from core.models import Business, Location, LocationRole

logger = logging.getLogger("security.authorization")

OWNER = "owner"

ROLE_CAPABILITY_MATRIX = {
    "inventory.view": {OWNER, LocationRole.Role.ADMIN, LocationRole.Role.EMPLOYEE},
    "delivery.register": {OWNER, LocationRole.Role.ADMIN, LocationRole.Role.EMPLOYEE},
    "batch.adjust": {OWNER, LocationRole.Role.ADMIN, LocationRole.Role.EMPLOYEE},
    "batch.expiry.edit": {OWNER, LocationRole.Role.ADMIN, LocationRole.Role.EMPLOYEE},
    "alert.acknowledge": {OWNER, LocationRole.Role.ADMIN, LocationRole.Role.EMPLOYEE},
    "transfer.request": {OWNER, LocationRole.Role.ADMIN, LocationRole.Role.EMPLOYEE},
    "transfer.process": {OWNER, LocationRole.Role.ADMIN},
    "report.generate": {OWNER, LocationRole.Role.ADMIN},
    "location.manage": {OWNER},
    "member.manage": {OWNER},
}


def _id_of(value):
    return getattr(value, "pk", value)


def is_business_owner(user, business):
    """True when `user` owns `business` (instance or id)."""
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    return Business.objects.filter(pk=_id_of(business), owner_id=user.pk).exists()


def accessible_location_ids(user):
    if not user or not user.is_authenticated:
        return Location.objects.none().values_list("id", flat=True)
    qs = Location.objects.all()
    if not user.is_superuser:
        owned = Location.objects.filter(business__owner_id=user.pk)
        member = Location.objects.filter(roles__user_id=user.pk)
        qs = owned | member
    return qs.values_list("id", flat=True).distinct()


def accessible_business_ids(user):
    return Location.objects.filter(id__in=accessible_location_ids(user)).values_list("business_id", flat=True).distinct()


def has_location_access(user, location):
    """True when `user` owns the location's business or holds any role on it."""
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    location_id = _id_of(location)
    return (
        Location.objects.filter(pk=location_id, business__owner_id=user.pk).exists()
        or LocationRole.objects.filter(location_id=location_id, user_id=user.pk).exists()
    )


def get_location_role(user, location):
    if not user or not user.is_authenticated:
        return None
    if user.is_superuser:
        return OWNER
    location_id = _id_of(location)
    if Location.objects.filter(pk=location_id, business__owner_id=user.pk).exists():
        return OWNER
    return LocationRole.objects.filter(location_id=location_id, user_id=user.pk).values_list("role", flat=True).first()


def user_has_location_capability(user, location, capability):
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    allowed_roles = ROLE_CAPABILITY_MATRIX.get(capability)
    if not allowed_roles:
        return False
    return get_location_role(user, location) in allowed_roles


def ensure_location_capability(user, location, capability):
    if user_has_location_capability(user, location, capability):
        return
    logger.warning(
        "permission_denied capability=%s user=%s role=%s location=%s",
        capability,
        getattr(user, "username", "anonymous"),
        get_location_role(user, location),
        _id_of(location),
    )
    raise PermissionDenied("You do not have permission to perform this action at this location.")


class LocationCapabilityPermission(BasePermission):
    """Object-level check of the role capability mapped to the current view action.

    The location is taken from `view.get_capability_location(obj)` when the view
    defines it, otherwise from `obj.location`.
    """

    message = "You do not have permission to perform this action at this location."

    def has_object_permission(self, request, view, obj):
        capability_map = getattr(view, "permission_action_map", {})
        action_key = getattr(view, "action", None) or request.method.lower()
        capability = capability_map.get(action_key)
        if capability is None:
            return True

        if hasattr(view, "get_capability_location"):
            location = view.get_capability_location(obj)
        else:
            location = getattr(obj, "location", obj)

        allowed = user_has_location_capability(request.user, location, capability)
        if not allowed:
            logger.warning(
                "permission_denied capability=%s user=%s role=%s method=%s path=%s view=%s action=%s",
                capability,
                getattr(request.user, "username", "anonymous"),
                get_location_role(request.user, location),
                request.method,
                request.path,
                view.__class__.__name__,
                action_key,
            )
        return allowed
