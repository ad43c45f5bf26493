"""
Django-Crudkit: Generic CRUD Endpoints for Django

Exposes relational data through list/search/single/create/update/patch/
destroy endpoints, with filtering and ordering across relations, field
access policies, external identifier mapping and response flattening.

Example:
    from django_crudkit import CrudOperation, DjangoStore

    store = DjangoStore([Album, Artist, Label])
    albums = CrudOperation(store, "album", "list", {"meta_show_ordering": True})

    response = await albums.handle_list({"artist.label.name": "warner", "api:order_by": "-score,+title"})
"""

__version__ = "0.4.0"

# Operations
from django_crudkit.pipeline import CrudOperation

# Stores
from django_crudkit.store import Store, QueryResult
from django_crudkit.backends.django import DjangoStore, build_q_object

# Compilers
from django_crudkit.filters import (
    Operator,
    FilterLeaf,
    FilterGroup,
    compile_filters,
    parse_filter_key,
    extract_filter_keys,
)
from django_crudkit.ordering import OrderTerm, compile_ordering
from django_crudkit.pagination import Pagination, compute_pagination
from django_crudkit.flattening import flatten_row, flatten_rows, normalize_flattening
from django_crudkit.policy import FieldPolicy

# Errors
from django_crudkit.exceptions import (
    CrudError,
    BadRequest,
    NotFound,
    PolicyRejection,
    TypeCoercionError,
    PaginationError,
    RelatedRecordNotFound,
    RecordNotFound,
)

# Views
from django_crudkit.views import CrudView, crud_urlpatterns

# Response
from django_crudkit.response import CrudResponse

# Configuration
from django_crudkit.conf import crud_settings

__all__ = [
    # Version
    "__version__",
    # Operations
    "CrudOperation",
    # Stores
    "Store",
    "QueryResult",
    "DjangoStore",
    "build_q_object",
    # Compilers
    "Operator",
    "FilterLeaf",
    "FilterGroup",
    "compile_filters",
    "parse_filter_key",
    "extract_filter_keys",
    "OrderTerm",
    "compile_ordering",
    "Pagination",
    "compute_pagination",
    "flatten_row",
    "flatten_rows",
    "normalize_flattening",
    "FieldPolicy",
    # Errors
    "CrudError",
    "BadRequest",
    "NotFound",
    "PolicyRejection",
    "TypeCoercionError",
    "PaginationError",
    "RelatedRecordNotFound",
    "RecordNotFound",
    # Views
    "CrudView",
    "crud_urlpatterns",
    # Response
    "CrudResponse",
    # Settings
    "crud_settings",
]
