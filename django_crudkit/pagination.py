"""
Django-Crudkit Pagination

Page/size validation and offset/limit derivation. Bad input is rejected,
never clamped.
"""

from math import ceil
from typing import NamedTuple

from django_crudkit.exceptions import FieldError, PaginationError


class Pagination(NamedTuple):
    page: int
    size: int
    deduplicate_joined_rows: bool = False

    @property
    def offset(self):
        return (self.page - 1) * self.size

    @property
    def limit(self):
        return self.size

    def total_pages(self, count):
        return max(1, ceil(count / self.size))


def parse_positive_int(value):
    """
    Parse a page or size value.

    Returns the integer, or None when the value is not a positive integer.
    Booleans are rejected even though they are ints.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
    else:
        return None
    return number if number >= 1 else None


def compute_pagination(
    raw_page,
    raw_size,
    default_size,
    max_size=None,
    has_inclusions=False,
    disable_subquery=True,
    page_field="page",
    size_field="page_size",
):
    """
    Compute effective pagination for a request.

    Args:
        raw_page: Client page value, None when absent (defaults to 1)
        raw_size: Client size value, None when absent (defaults to default_size)
        default_size: Configured default page size
        max_size: Configured maximum page size, or None for unbounded
        has_inclusions: Whether the query joins any relation
        disable_subquery: Configuration flag requesting de-duplication of
            root rows multiplied by joins
        page_field, size_field: Names reported in errors

    Returns:
        Pagination

    Raises:
        PaginationError listing every offending parameter

    Examples:
        >>> p = compute_pagination("3", "25", 100)
        >>> (p.page, p.size, p.offset, p.limit)
        (3, 25, 50, 25)
        >>> compute_pagination("0", None, 100)
        Traceback (most recent call last):
        ...
        django_crudkit.exceptions.PaginationError: Invalid pagination: page
    """
    errors = []

    page = 1 if raw_page in (None, "") else parse_positive_int(raw_page)
    if page is None:
        errors.append(FieldError(page_field, "must be a positive integer"))

    size = default_size if raw_size in (None, "") else parse_positive_int(raw_size)
    if size is None:
        errors.append(FieldError(size_field, "must be a positive integer"))
    elif max_size is not None and size > max_size:
        errors.append(FieldError(size_field, f"must not exceed {max_size}"))

    if errors:
        names = ", ".join(e.field for e in errors)
        raise PaginationError(f"Invalid pagination: {names}", errors)

    return Pagination(page, size, deduplicate_joined_rows=bool(has_inclusions and disable_subquery))
