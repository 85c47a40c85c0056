from rest_framework import serializers

from core.models import Location
from haccp.models import HaccpReport


class HaccpReportSerializer(serializers.ModelSerializer):
    location_name = serializers.CharField(source="location.name", read_only=True)
    generated_by_username = serializers.CharField(source="generated_by.username", read_only=True)

    class Meta:
        model = HaccpReport
        fields = [
            "id",
            "location",
            "location_name",
            "report_month",
            "generated_by",
            "generated_by_username",
            "signed_by",
            "signed_at",
            "pdf_url",
            "created_at",
        ]
        read_only_fields = fields


class ReportGenerateSerializer(serializers.Serializer):
    location = serializers.PrimaryKeyRelatedField(queryset=Location.objects.all())
    month = serializers.RegexField(r"^\d{4}-\d{2}$")
    signature_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
