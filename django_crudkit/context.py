"""
Django-Crudkit Request Pipeline Context

One RequestPipelineContext is built per request and passed explicitly to
each compilation stage. It holds the operation configuration, the field
policy, the request-scoped identifier resolver and the relations the query
must join. Nothing on it outlives the request.
"""

from typing import NamedTuple, Optional

from django.core.exceptions import ImproperlyConfigured

from django_crudkit.aliases import FieldAliases
from django_crudkit.coercion import FieldType
from django_crudkit.exceptions import CrudError
from django_crudkit.filters import compile_filters
from django_crudkit.flattening import exposed_name_to_path
from django_crudkit.identifiers import IdentifierResolver
from django_crudkit.plan import Inclusion
from django_crudkit.policy import FieldPolicy
from django_crudkit.schema import entity_name


ID = "id"


class FieldTarget(NamedTuple):
    """A client field name resolved to a storage path."""

    path: str
    relation_path: str
    field_type: FieldType
    external_entity: Optional[str] = None


class RequestPipelineContext:
    def __init__(self, store, entity, config, operation="list"):
        self.store = store
        self.graph = store.graph
        self.entity = entity_name(entity)
        self.schema = self.graph.entity(self.entity)
        self.operation = operation
        self.config = config
        self.aliases = FieldAliases(config.get("aliases"))
        self.policy = FieldPolicy.from_config(config)
        self.flattening = config["flattening"]
        self.resolver = IdentifierResolver(
            store,
            self.entity,
            id_mapping=config["id_mapping"],
            relation_id_mapping=config["relation_id_mapping"],
            auto=config["auto_relation_id_mapping"],
        )
        self._inclusions = self._configured_inclusions()

    @property
    def root_fields(self):
        return set(self.schema.fields) | set(self.aliases.internal.keys())

    @property
    def id_field(self):
        """Field the root entity is addressed by from outside."""
        return self.resolver.mapping_for(self.entity) or self.schema.primary_key

    @property
    def inclusions(self):
        return tuple(self._inclusions)

    def require_relation(self, relation_path):
        """Join a relation for filtering or ordering without returning it."""
        self._inclusions.append(Inclusion(relation_path, join_only=True))

    def _configured_inclusions(self):
        inclusions = []
        for include in self.config["include"]:
            inclusions.append(self._inclusion(include["path"], include["required"], include["where"], include["through"]))
        included = [include["path"] for include in self.config["include"]]
        for rule in self.flattening:
            required = rule.required
            if required is None:
                required = not any(path == rule.relation or path.startswith(rule.relation + ".") for path in included)
            inclusions.append(self._inclusion(rule.relation, required, rule.where, rule.through))
        return inclusions

    def _inclusion(self, path, required, where, through):
        chain = self.graph.resolve_relation(self.entity, path)
        if chain is None:
            raise ImproperlyConfigured(f"'{path}' is not a relation of '{self.entity}'")
        compiled = None
        if where:
            try:
                compiled = compile_filters(where, self, entity=chain[-1].target, check_policy=False, register_joins=False)
            except CrudError as e:
                raise ImproperlyConfigured(f"Invalid where for '{path}': {e.message}")
        return Inclusion(path, required=required, where=compiled, through=through)

    def resolve_field(self, name, entity=None):
        """
        Resolve a client field name to a FieldTarget.

        Handles flattened exposed names, field aliases, "id" and "relation.id"
        under an id mapping, relation names standing for their foreign key,
        and marks mapped foreign keys for forward resolution.

        Returns None for names that do not resolve.
        """
        entity = entity_name(entity) if entity else self.entity
        path = name
        if entity == self.entity:
            path = exposed_name_to_path(name, self.flattening, self.root_fields) or self.aliases.to_internal(name)

        parts = path.split(".")
        if parts[-1] == ID:
            chain = self.graph.walk(entity, parts[:-1])
            if chain is None:
                return None
            owner = chain[-1].target if chain else entity
            id_field = self.resolver.mapping_for(owner)
            if id_field:
                parts[-1] = id_field
                path = ".".join(parts)

        resolved = self.graph.resolve(entity, path)
        if resolved is None:
            resolved = self._foreign_key_for_relation(entity, parts)
            if resolved is None:
                return None

        field_type = resolved.field.type
        external = None
        target = self.resolver.foreign_key_target(resolved.entity, resolved.field.name)
        if target is not None:
            external, id_field = target
            field_type = self.graph.entity(external).field(id_field).type

        return FieldTarget(resolved.path, resolved.relation_path, field_type, external)

    def _foreign_key_for_relation(self, entity, parts):
        chain = self.graph.walk(entity, parts)
        if not chain or not chain[-1].is_belongs_to:
            return None
        return self.graph.resolve(entity, ".".join(parts[:-1] + [chain[-1].foreign_key]))
