from django.urls import path
from rest_framework.routers import DefaultRouter

from core.views import (
    AuditLogViewSet,
    LocationViewSet,
    OnboardingView,
    RegisterView,
    healthz,
    readyz,
)

router = DefaultRouter()
router.register(r"locations", LocationViewSet, basename="location")
router.register(r"admin/audit-logs", AuditLogViewSet, basename="audit-log")

urlpatterns = router.urls + [
    path("register/", RegisterView.as_view(), name="register"),
    path("onboarding/business/", OnboardingView.as_view(), name="onboarding_business"),
    path("healthz/", healthz, name="healthz"),
    path("readyz/", readyz, name="readyz"),
]
