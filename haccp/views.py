from django.http import HttpResponse
from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import create_audit_log_from_request
from core.views import get_accessible_location, scoped_queryset_for_user
from haccp.models import HaccpReport
from haccp.reports import (
    build_report_lines,
    collect_report_data,
    generate_report,
    parse_month,
    report_filename,
)
from haccp.serializers import HaccpReportSerializer, ReportGenerateSerializer
from inventory.serializers import BatchSerializer, DeliveryNoteSerializer


class HaccpReportViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = HaccpReport.objects.select_related("location", "generated_by")
    serializer_class = HaccpReportSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        queryset = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        location_id = self.request.query_params.get("location")
        if location_id:
            location = get_accessible_location(self.request.user, location_id)
            queryset = queryset.filter(location=location)
        return queryset.order_by("-report_month", "-created_at")

    @action(detail=False, methods=["get"], url_path="preview")
    def preview(self, request):
        location_id = request.query_params.get("location")
        if not location_id:
            raise ValidationError({"location": "This query parameter is required."})
        location = get_accessible_location(request.user, location_id)
        month_start = parse_month(request.query_params.get("month"))

        data = collect_report_data(location, month_start)
        batches = []
        for row in data["batches"]:
            batch = row["batch"]
            batch.computed_status = row["status"]
            batches.append(batch)

        return Response(
            {
                "location": location.id,
                "month": f"{month_start:%Y-%m}",
                "deliveries": DeliveryNoteSerializer(data["deliveries"], many=True).data,
                "batches": BatchSerializer(batches, many=True).data,
                "alerts": data["alerts"],
                "lines": build_report_lines(location, month_start, data),
            }
        )

    @action(detail=False, methods=["post"], url_path="generate")
    def generate(self, request):
        serializer = ReportGenerateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        location = get_accessible_location(request.user, data["location"].pk, "report.generate")
        month_start = parse_month(data["month"])
        report, pdf = generate_report(
            location=location,
            month_start=month_start,
            user=request.user,
            signature_name=data.get("signature_name"),
        )
        create_audit_log_from_request(
            request,
            action="haccp_report.generate",
            entity="haccp_report",
            entity_id=report.id,
            after_snapshot=HaccpReportSerializer(report).data,
            location=location,
        )

        response = HttpResponse(pdf, content_type="application/pdf")
        response["Content-Disposition"] = f'attachment; filename="{report_filename(month_start)}"'
        response["X-Report-ID"] = str(report.id)
        return response
