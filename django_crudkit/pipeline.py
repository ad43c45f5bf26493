"""
Django-Crudkit Operation Pipeline

Ties the compilers, the identifier resolver and the store together into the
seven CRUD operations.

Read flow:
    params -> filters + ordering (policy, forward id mapping)
           -> pagination -> QueryPlan -> Store.execute_query
           -> reverse id mapping -> field aliases -> flattening -> meta
           -> response

Provides:
- CrudOperation, one configured operation on one entity
- handle_* coroutines returning CrudResponse objects
"""

import logging

from django.core.exceptions import ImproperlyConfigured

from django_crudkit.aliases import validate_aliases
from django_crudkit.conf import crud_settings
from django_crudkit.context import RequestPipelineContext
from django_crudkit.exceptions import (
    BadRequest,
    CrudError,
    FieldError,
    NotFound,
    PolicyRejection,
    RecordNotFound,
)
from django_crudkit.filters import (
    combine,
    compile_filters,
    extract_filter_keys,
    query_params_to_filtering,
)
from django_crudkit.flattening import flatten_rows, validate_flattening
from django_crudkit.meta import compose_meta
from django_crudkit.options import build_operation_config
from django_crudkit.ordering import compile_ordering
from django_crudkit.pagination import Pagination, compute_pagination
from django_crudkit.plan import assemble_plan
from django_crudkit.policy import WRITE
from django_crudkit.response import CrudResponse
from django_crudkit.schema import entity_name


logger = logging.getLogger("django_crudkit")

PAGE_PARAM = "api:page"
PAGE_SIZE_PARAM = "api:page_size"
ORDER_BY_PARAM = "api:order_by"
ORDER_DIR_PARAM = "api:order_dir"


class CrudOperation:
    """
    One configured operation on one entity.

    Configuration is built and validated when the operation is created, so
    a bad option fails at startup rather than on the first request.

    Example:
        store = DjangoStore([Album, Artist, Label])
        albums = CrudOperation(store, "album", "list", {
            "allow_filtering_on": ["status", "artist.*"],
            "flattening": {"model": "artist", "as": "artist", "attributes": [["name", "artist_name"]]},
        })

        response = await albums.handle_list({"status": "active", "api:page_size": "20"})
        response.to_dict()
        # {"success": True, "meta": {"paging": {...}}, "data": [...]}
    """

    def __init__(self, store, entity, operation, options=None):
        self.store = store
        self.entity = entity_name(entity)
        if self.entity not in store.graph:
            raise ImproperlyConfigured(f"Store has no entity '{self.entity}'")
        self.operation = operation
        self.config = build_operation_config(operation, store.graph.entity(self.entity).config, options)
        validate_flattening(self.config["flattening"], store.graph, self.entity)
        validate_aliases(self.config["aliases"], store.graph.entity(self.entity))

        # Resolve mappings and inclusions once to surface configuration errors now.
        ctx = self.context()
        for mapping in self.config["relation_id_mapping"]:
            ctx.resolver.mapping_for(mapping["model"])
        ctx.resolver.mapping_for(self.entity)

    def context(self):
        return RequestPipelineContext(self.store, self.entity, self.config, self.operation)

    # Logging

    def _error(self, exc):
        if isinstance(exc, BadRequest):
            logger.warning(
                "Rejected %s on %s: %s",
                self.operation,
                self.entity,
                exc.message,
                extra={"entity": self.entity, "operation": self.operation, "fields": exc.fields},
            )
        elif isinstance(exc, NotFound):
            logger.info("%s on %s: %s", self.operation, self.entity, exc.message)
        return CrudResponse.from_exception(exc)

    def _audit(self, **details):
        if crud_settings.AUDIT_QUERIES:
            logger.info(
                "crudkit_query",
                extra={"entity": self.entity, "operation": self.operation, **details},
            )

    # Shared steps

    def _base_filters(self, ctx):
        return compile_filters(self.config["base_filters"], ctx, check_policy=False)

    def _id_filter(self, ctx, raw_id):
        """Compile an exact match on the root id field, exempt from policy."""
        return compile_filters({"id:eq": raw_id}, ctx, check_policy=False)

    async def _shape(self, ctx, rows):
        rows = await ctx.resolver.to_external_rows(self.entity, rows)
        rows = [ctx.aliases.row_to_external(row) for row in rows]
        return flatten_rows(rows, ctx.flattening)

    async def _fetch_one(self, ctx, raw_id, extra_filters=None):
        """Find the root row addressed by an external id, within base_filters."""
        if raw_id in (None, ""):
            raise RecordNotFound()
        filters = combine(self._base_filters(ctx), extra_filters, self._id_filter(ctx, raw_id))
        filters = await ctx.resolver.resolve_filter(filters)
        pagination = Pagination(
            1, 1, deduplicate_joined_rows=bool(ctx.inclusions and self.config["disable_subquery"])
        )
        plan = assemble_plan(filters, (), pagination, ctx.inclusions)
        result = await self.store.execute_query(self.entity, plan)
        if not result.rows:
            raise RecordNotFound()
        return result.rows[0]

    def _writable_values(self, ctx, body, drop_identifier=False):
        """
        Check a write payload against the entity's fields and the write policy.

        Returns a copy of the payload under internal field names, with
        identifier keys normalized: "id" is stored under the mapped id field
        on create and dropped on update.
        """
        if not isinstance(body, dict):
            raise BadRequest("Request body must be an object")

        schema = ctx.schema
        values = {}
        sent_as = {}
        for key, value in body.items():
            internal = ctx.aliases.to_internal(key)
            values[internal] = value
            sent_as[internal] = key
        id_field = ctx.id_field

        if drop_identifier:
            values.pop("id", None)
            values.pop(id_field, None)
        elif "id" in values and id_field != schema.primary_key:
            values[id_field] = values.pop("id")

        errors = []
        for key in values:
            relation = schema.relation(key)
            name = sent_as.get(key, key)
            if key == schema.primary_key and drop_identifier:
                errors.append(FieldError(name, "cannot be written"))
            elif schema.field(key) is None and not (relation and relation.is_belongs_to):
                errors.append(FieldError(name, "unknown field"))
            elif not ctx.policy.check(name, WRITE):
                errors.append(FieldError(name, "not allowed for writing"))
        if errors:
            names = ", ".join(e.field for e in errors)
            raise PolicyRejection(f"Field not permitted: {names}", errors)
        return values

    def _external_id(self, ctx, row):
        return row.get(ctx.id_field)

    # Read operations

    async def handle_list(self, params=None):
        """
        List rows from query parameters.

        Reserved parameters: api:page, api:page_size, api:order_by,
        api:order_dir. Every other parameter is a filter.
        """
        params = params or {}
        filtering, echo = {}, {}
        if self.config["allow_filtering"]:
            filtering = query_params_to_filtering(params)
            echo = {key: params[key] for key in filtering}
        return await self._read(
            filtering,
            params.get(ORDER_BY_PARAM),
            params.get(ORDER_DIR_PARAM),
            params.get(PAGE_PARAM),
            params.get(PAGE_SIZE_PARAM),
            (PAGE_PARAM, PAGE_SIZE_PARAM),
            echo,
        )

    async def handle_search(self, body=None):
        """
        List rows from a search body.

        Body: {"filtering": {...}, "ordering": [...], "paging": {"page", "size"}}
        """
        body = body or {}
        if not isinstance(body, dict):
            return self._error(BadRequest("Request body must be an object"))
        paging = body.get("paging") or {}
        if not isinstance(paging, dict):
            return self._error(BadRequest("paging must be an object"))

        filtering = (body.get("filtering") or {}) if self.config["allow_filtering"] else {}
        return await self._read(
            filtering,
            body.get("ordering"),
            None,
            paging.get("page"),
            paging.get("size", paging.get("page_size")),
            ("paging.page", "paging.size"),
        )

    async def _read(self, raw_filters, raw_order, order_dir, raw_page, raw_size, paging_names, echo=None):
        config = self.config
        if not config["allow_ordering"]:
            raw_order, order_dir = None, None

        try:
            ctx = self.context()
            filters = compile_filters(raw_filters, ctx)
            ordering = compile_ordering(raw_order, ctx, order_dir)
            base = self._base_filters(ctx)
            pagination = compute_pagination(
                raw_page,
                raw_size,
                config["default_page_size"],
                config["max_page_size"],
                has_inclusions=bool(ctx.inclusions),
                disable_subquery=config["disable_subquery"],
                page_field=paging_names[0],
                size_field=paging_names[1],
            )
            filters = await ctx.resolver.resolve_filter(combine(base, filters))
            plan = assemble_plan(filters, ordering, pagination, ctx.inclusions)
            result = await self.store.execute_query(self.entity, plan)
            rows = await self._shape(ctx, result.rows)
        except CrudError as e:
            return self._error(e)

        meta = compose_meta(
            pagination,
            result.total_count,
            ordering,
            raw_filters if echo is None else echo,
            show_filters=config["meta_show_filters"],
            show_ordering=config["meta_show_ordering"],
            allow_filtering=config["allow_filtering"],
        )
        self._audit(filters=extract_filter_keys(raw_filters), count=result.total_count)
        return CrudResponse.ok(meta=meta, data=rows)

    async def handle_single(self, raw_id, params=None):
        """
        Fetch one row by its external id.

        Non-reserved query parameters narrow the lookup like list filters.
        """
        try:
            ctx = self.context()
            extra = None
            if params and self.config["allow_filtering"]:
                extra = compile_filters(query_params_to_filtering(params), ctx)
            row = await self._fetch_one(ctx, raw_id, extra)
            rows = await self._shape(ctx, [row])
        except CrudError as e:
            return self._error(e)
        self._audit(id=raw_id)
        return CrudResponse.ok(record=rows[0])

    # Write operations

    async def handle_create(self, body):
        """
        Create one row, or several when the body is a list and
        allow_bulk_create is set.
        """
        bulk = isinstance(body, list)
        try:
            if bulk and not self.config["allow_bulk_create"]:
                raise BadRequest("Cannot insert multiple records.")
            ctx = self.context()
            items = body if bulk else [body]
            payloads = []
            for item in items:
                values = self._writable_values(ctx, item)
                payloads.append(await ctx.resolver.resolve_values(self.entity, values))
            created = []
            for values in payloads:
                created.append(await self.store.create(self.entity, values))
            if bulk:
                rows = await self._shape(ctx, created)
        except CrudError as e:
            return self._error(e)

        self._audit(count=len(created))
        if bulk:
            return CrudResponse.created(body=rows)
        return CrudResponse.created(id=self._external_id(ctx, created[0]))

    async def handle_update(self, raw_id, body):
        """Replace every writable field of one row."""
        return await self._write(raw_id, body, replace=True)

    async def handle_patch(self, raw_id, body):
        """Change only the fields present in the body."""
        return await self._write(raw_id, body, replace=False)

    async def _write(self, raw_id, body, replace):
        try:
            ctx = self.context()
            values = self._writable_values(ctx, body, drop_identifier=True)
            values = await ctx.resolver.resolve_values(self.entity, values)
            row = await self._fetch_one(ctx, raw_id)
            pk = row[ctx.schema.primary_key]
            updated = await self.store.update(self.entity, pk, values, replace=replace)
            if updated is None:
                raise RecordNotFound()
        except CrudError as e:
            return self._error(e)
        self._audit(id=raw_id, fields=sorted(values))
        return CrudResponse.ok(id=self._external_id(ctx, row))

    async def handle_destroy(self, raw_id):
        """Delete one row."""
        try:
            ctx = self.context()
            row = await self._fetch_one(ctx, raw_id)
            deleted = await self.store.delete(self.entity, row[ctx.schema.primary_key])
            if deleted is False:
                raise RecordNotFound()
        except CrudError as e:
            return self._error(e)
        self._audit(id=raw_id)
        return CrudResponse.ok(id=self._external_id(ctx, row))
