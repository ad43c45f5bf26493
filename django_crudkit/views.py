"""
Django-Crudkit Views

Django class-based views exposing CRUD operations over a store.

Features:
- CrudView serving list/search/single/create/update/patch/destroy
- Per-operation options and an operations whitelist
- crud_urlpatterns() to mount a resource in urls.py

Routes (with crud_urlpatterns("albums", AlbumView)):
    GET    albums/            list
    POST   albums/search      search
    POST   albums/            create
    GET    albums/<id>        single
    PUT    albums/<id>        update
    PATCH  albums/<id>        patch
    DELETE albums/<id>        destroy
"""

import json
import logging

from django.core.exceptions import ImproperlyConfigured
from django.urls import path
from django.utils.decorators import classonlymethod
from django.views import View

from django_crudkit.conf import crud_settings
from django_crudkit.pipeline import CrudOperation
from django_crudkit.response import CrudResponse


logger = logging.getLogger("django_crudkit")


class CrudView(View):
    """
    Generic view for one entity of a store.

    Example:
        # views.py
        from django_crudkit.backends.django import DjangoStore
        from django_crudkit.views import CrudView

        store = DjangoStore([Album, Artist, Label])

        class AlbumView(CrudView):
            store = store
            entity = "album"
            operations = ["list", "search", "single"]
            operation_options = {
                "list": {"allow_filtering_on": ["status", "artist.*"]},
                "single": {"include": ["artist"]},
            }

        # urls.py
        urlpatterns = crud_urlpatterns("albums", AlbumView)
    """

    # Required: the store and the entity name within it
    store = None
    entity = None

    # Optional: operations this view serves
    operations = ["list", "search", "single", "create", "update", "patch", "destroy"]

    # Optional: options per operation name
    operation_options = {}

    # Set by crud_urlpatterns: "search" for the search route
    action = None

    http_method_names = ["get", "post", "put", "patch", "delete", "options"]

    @classonlymethod
    def as_view(cls, **initkwargs):
        """Mark the view csrf-exempt only when CSRF_EXEMPT is configured."""
        view = super().as_view(**initkwargs)
        if crud_settings.CSRF_EXEMPT:
            view.csrf_exempt = True
        return view

    def get_store(self):
        """Get the store. Override for dynamic store selection."""
        if self.store is None:
            raise ImproperlyConfigured(f"{type(self).__name__} needs a store")
        return self.store

    def get_options(self, operation):
        """Get options for one operation. Override for dynamic options."""
        return (self.operation_options or {}).get(operation, {})

    def get_operation(self, operation):
        return CrudOperation(self.get_store(), self.entity, operation, self.get_options(operation))

    def parse_body(self, request):
        """Decode a JSON body; returns (body, error_response)."""
        if not request.body:
            return {}, None
        try:
            return json.loads(request.body), None
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None, CrudResponse.error("INVALID_JSON")

    async def dispatch_operation(self, operation, *args):
        if operation not in self.operations:
            return CrudResponse.error("METHOD_NOT_ALLOWED", f"Operation '{operation}' not allowed").to_json_response()

        handler = getattr(self.get_operation(operation), f"handle_{operation}")
        try:
            response = await handler(*args)
        except Exception:
            logger.exception("Unhandled error in %s on %s", operation, self.entity)
            response = CrudResponse.error("INTERNAL_ERROR")
        return response.to_json_response()

    async def get(self, request, *args, **kwargs):
        pk = kwargs.get("pk")
        if pk is None:
            return await self.dispatch_operation("list", request.GET)
        return await self.dispatch_operation("single", pk, request.GET)

    async def post(self, request, *args, **kwargs):
        body, error = self.parse_body(request)
        if error:
            return error.to_json_response()
        if self.action == "search":
            return await self.dispatch_operation("search", body)
        return await self.dispatch_operation("create", body)

    async def put(self, request, *args, **kwargs):
        body, error = self.parse_body(request)
        if error:
            return error.to_json_response()
        return await self.dispatch_operation("update", kwargs.get("pk"), body)

    async def patch(self, request, *args, **kwargs):
        body, error = self.parse_body(request)
        if error:
            return error.to_json_response()
        return await self.dispatch_operation("patch", kwargs.get("pk"), body)

    async def delete(self, request, *args, **kwargs):
        return await self.dispatch_operation("destroy", kwargs.get("pk"))


def crud_urlpatterns(prefix, view_class, name=None):
    """
    URL patterns for one resource.

    Args:
        prefix: URL prefix without slashes (e.g., "albums")
        view_class: CrudView subclass
        name: URL name base, defaults to prefix

    Returns:
        List of URL patterns
    """
    name = name or prefix
    return [
        path(f"{prefix}/", view_class.as_view(), name=f"{name}-collection"),
        path(f"{prefix}/search", view_class.as_view(action="search"), name=f"{name}-search"),
        path(f"{prefix}/<str:pk>", view_class.as_view(), name=f"{name}-member"),
    ]
