from django.urls import path
from rest_framework.routers import DefaultRouter

from inventory.views import (
    BatchViewSet,
    DeliveryNoteScanView,
    DeliveryNoteViewSet,
    InternalTransferViewSet,
    ProductViewSet,
    SupplierViewSet,
)

router = DefaultRouter()
router.register(r"products", ProductViewSet, basename="product")
router.register(r"suppliers", SupplierViewSet, basename="supplier")
router.register(r"delivery-notes", DeliveryNoteViewSet, basename="delivery-note")
router.register(r"batches", BatchViewSet, basename="batch")
router.register(r"transfers", InternalTransferViewSet, basename="transfer")

urlpatterns = [
    path("delivery-notes/scan/", DeliveryNoteScanView.as_view(), name="delivery-note-scan"),
] + router.urls
