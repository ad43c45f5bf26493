"""
Django-Crudkit Meta Block

The diagnostic block returned alongside list and search data.
"""


def compose_meta(
    pagination,
    total_count,
    ordering=(),
    raw_filters=None,
    show_filters=False,
    show_ordering=False,
    allow_filtering=True,
):
    """
    Build the meta block for a list or search response.

    Args:
        pagination: Pagination used for the query
        total_count: Number of root rows matching the filters
        ordering: Tuple of OrderTerm actually applied (default included)
        raw_filters: Filter map exactly as the client sent it
        show_filters: Echo raw_filters under "filters"
        show_ordering: Echo ordering under "ordering"
        allow_filtering: When False, the echoed filters are always empty

    Returns:
        Dict with "paging", plus "ordering" and "filters" when enabled

    Example:
        >>> compose_meta(Pagination(2, 25), 60)
        {'paging': {'page': 2, 'size': 25, 'count': 60, 'total_pages': 3}}
    """
    meta = {
        "paging": {
            "page": pagination.page,
            "size": pagination.size,
            "count": total_count,
            "total_pages": pagination.total_pages(total_count),
        }
    }

    if show_ordering:
        meta["ordering"] = [term.to_list() for term in ordering]

    if show_filters:
        meta["filters"] = (raw_filters or {}) if allow_filtering else {}

    return meta
