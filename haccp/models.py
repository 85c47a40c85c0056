import uuid

from django.conf import settings
from django.db import models

from core.models import Location


class HaccpReport(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    location = models.ForeignKey(Location, on_delete=models.PROTECT, related_name="haccp_reports")
    report_month = models.DateField()
    generated_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="+")
    signed_by = models.CharField(max_length=255, null=True, blank=True)
    signed_at = models.DateTimeField(null=True, blank=True)
    pdf_url = models.URLField(max_length=1024, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=["location", "report_month"], name="haccp_location_month_idx")]

    def __str__(self):
        return f"HACCP {self.report_month:%Y-%m} ({self.location})"
