from rest_framework.routers import DefaultRouter

from haccp.views import HaccpReportViewSet

router = DefaultRouter()
router.register(r"haccp-reports", HaccpReportViewSet, basename="haccp-report")

urlpatterns = router.urls
