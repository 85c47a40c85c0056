from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """Page-numbered lists for batches, deliveries, transfers and audit logs.

    `?page_size=` overrides the default page size up to `max_page_size`.
    """

    page_size_query_param = "page_size"
    max_page_size = 200

    def get_page_size(self, request):
        # Kitchen tablets ask for everything at once; the cap still applies.
        if request.query_params.get(self.page_size_query_param) == "all":
            return self.max_page_size
        return super().get_page_size(request)
