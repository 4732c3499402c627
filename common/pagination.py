from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """Page-number pagination for catalog, customer and invoice listings.

    `?page_size=` lets the billing screen pull a whole catalog page at once,
    capped so one request cannot dump the invoice table.
    """

    page_size_query_param = "page_size"
    max_page_size = 500
