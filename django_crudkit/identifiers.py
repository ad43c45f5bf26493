"""
Django-Crudkit Identifier Mapping

Translates between external identifiers (a natural key or UUID field the
client sees) and the surrogate primary keys the store joins on.

Mappings come from three places, in order of precedence:
- id_mapping: the id field of the root entity
- relation_id_mapping: [{"model": "artist", "id_field": "external_id"}, ...]
- auto discovery: the id-field marker a belongs-to target declares in the
  relation graph (auto_relation_id_mapping, on by default)

Forward (external -> internal) runs on filter values and write payloads
before the store is queried. Reverse (internal -> external) runs on the
returned rows. Lookups are batched: one store call per entity touched, not
per value. Discovered mappings are cached on the resolver, which lives for a
single request.
"""

from django.core.exceptions import ImproperlyConfigured

from django_crudkit.coercion import coerce
from django_crudkit.exceptions import FieldError, RelatedRecordNotFound, TypeCoercionError
from django_crudkit.filters import iter_leaves, map_leaves
from django_crudkit.schema import entity_name


DEFAULT_ID_FIELD = "id"


def _as_list(value):
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


class IdentifierResolver:
    """
    Request-scoped identifier mapper for one root entity.

    Example:
        resolver = IdentifierResolver(store, "album",
                                      relation_id_mapping=[{"model": "artist", "id_field": "external_id"}])
        await resolver.to_internal("artist", "art-7")     # -> 7
        await resolver.to_external_rows("album", rows)    # artist_id 7 -> "art-7"
    """

    def __init__(self, store, entity, id_mapping=DEFAULT_ID_FIELD, relation_id_mapping=(), auto=True):
        self.store = store
        self.graph = store.graph
        self.entity = entity_name(entity)
        self.id_mapping = id_mapping or DEFAULT_ID_FIELD
        self.auto = auto
        self._explicit = {}
        for mapping in relation_id_mapping or ():
            self._explicit[entity_name(mapping["model"])] = mapping["id_field"]
        self._mappings = {}

    def mapping_for(self, entity):
        """
        Return the external id field of an entity, or None when the entity
        is addressed by its surrogate key.
        """
        name = entity_name(entity)
        if name not in self._mappings:
            self._mappings[name] = self._discover(name)
        return self._mappings[name]

    def _discover(self, name):
        schema = self.graph.entity(name)
        if name == self.entity and self.id_mapping != DEFAULT_ID_FIELD:
            field = self.id_mapping
        elif name in self._explicit:
            field = self._explicit[name]
        elif self.auto and name != self.entity:
            field = self._declared_id_field(name)
        else:
            field = None

        if not field or field in (DEFAULT_ID_FIELD, schema.primary_key):
            return None
        if schema.field(field) is None:
            raise ImproperlyConfigured(f"Id field '{field}' does not exist on '{name}'")
        return field

    def _declared_id_field(self, name):
        for owner in self.graph:
            for relation in self.store.relation_metadata(owner.name):
                if relation.target == name and relation.is_belongs_to and relation.declared_id_field:
                    return relation.declared_id_field
        return None

    def foreign_key_target(self, owner, attribute):
        """
        Return (target entity, id field) when attribute is a mapped
        belongs-to foreign key of owner, else None.
        """
        relation = self.graph.entity(owner).foreign_keys().get(attribute)
        if relation is None:
            return None
        id_field = self.mapping_for(relation.target)
        if id_field is None:
            return None
        return relation.target, id_field

    def foreign_key_mappings(self, owner):
        """Map every mapped foreign-key attribute of owner to (target, id field)."""
        mappings = {}
        for attribute in self.graph.entity(owner).foreign_keys():
            target = self.foreign_key_target(owner, attribute)
            if target is not None:
                mappings[attribute] = target
        return mappings

    # Forward pass

    async def _internal_keys(self, wanted):
        """
        Look up surrogate keys for external values, one store call per entity.

        Args:
            wanted: Dict of entity -> iterable of external values

        Returns:
            Dict of entity -> {external value: surrogate key}
        """
        found = {}
        for entity, values in wanted.items():
            values = list(dict.fromkeys(v for v in values if v is not None))
            if not values:
                found[entity] = {}
                continue
            field = self.mapping_for(entity)
            pk = self.graph.entity(entity).primary_key
            rows = await self.store.find_many_by_field(entity, field, values)
            found[entity] = {row[field]: row[pk] for row in rows}
        return found

    @staticmethod
    def _translate(value, keys, entity, label, errors):
        def one(item):
            if item is None:
                return None
            if item not in keys:
                errors.append(FieldError(label, f"no {entity} with id '{item}'"))
                return None
            return keys[item]

        if isinstance(value, (list, tuple)):
            return [one(item) for item in value]
        return one(value)

    async def to_internal(self, entity, value, label=None):
        """
        Translate an external id (or a list of them) to surrogate keys.

        Raises:
            RelatedRecordNotFound naming every value without a matching row
        """
        name = entity_name(entity)
        if self.mapping_for(name) is None:
            return value
        keys = (await self._internal_keys({name: _as_list(value)}))[name]
        errors = []
        result = self._translate(value, keys, name, label or name, errors)
        _raise_missing(errors)
        return result

    async def resolve_filter(self, expression):
        """
        Replace external ids in marked filter leaves with surrogate keys.

        Returns a new expression with every marker cleared.
        """
        wanted = {}
        for leaf in iter_leaves(expression):
            if leaf.external_entity:
                wanted.setdefault(leaf.external_entity, []).extend(_as_list(leaf.value))
        if not wanted:
            return expression

        keys = await self._internal_keys(wanted)
        errors = []

        def substitute(leaf):
            if not leaf.external_entity:
                return leaf
            value = self._translate(leaf.value, keys[leaf.external_entity], leaf.external_entity, leaf.path, errors)
            return leaf._replace(value=value, external_entity=None)

        resolved = map_leaves(expression, substitute)
        _raise_missing(errors)
        return resolved

    async def resolve_values(self, entity, values):
        """
        Forward-map the foreign keys of a write payload.

        A foreign key may be sent under its attribute name ("artist_id") or
        its relation name ("artist"); either way the result holds it under
        the attribute name, as a surrogate key when the target is mapped.
        """
        schema = self.graph.entity(entity)
        result = dict(values)
        pending = []
        coercion_errors = []

        for key, value in values.items():
            attribute = key
            relation = schema.relation(key)
            if relation is not None and relation.is_belongs_to:
                attribute = relation.foreign_key
                result[attribute] = result.pop(key)
            target = self.foreign_key_target(schema.name, attribute)
            if target is None:
                continue
            target_entity, id_field = target
            field_type = self.graph.entity(target_entity).field(id_field).type
            try:
                external = coerce(field_type, value)
            except ValueError as e:
                coercion_errors.append(FieldError(key, str(e)))
                continue
            pending.append((key, attribute, target_entity, external))

        if coercion_errors:
            names = ", ".join(e.field for e in coercion_errors)
            raise TypeCoercionError(f"Invalid value for field: {names}", coercion_errors)

        wanted = {}
        for _, _, target_entity, external in pending:
            wanted.setdefault(target_entity, []).append(external)
        keys = await self._internal_keys(wanted)

        errors = []
        for key, attribute, target_entity, external in pending:
            result[attribute] = self._translate(external, keys[target_entity], target_entity, key, errors)
        _raise_missing(errors)
        return result

    # Reverse pass

    async def to_external_rows(self, entity, rows):
        """
        Rewrite surrogate keys in returned rows to external ids, in place.

        - Root and nested ids of mapped entities become the id field value.
          The root row drops the id field key; nested rows keep it so
          flattening can lift it.
        - Mapped foreign keys become the target's external id. A null key
          stays null; a key whose target row is gone becomes null.

        Returns the rows.
        """
        pending = {}
        patches = []
        for row in rows:
            self._collect(entity_name(entity), row, pending, patches)

        lookups = {}
        for target, keys in pending.items():
            field = self.mapping_for(target)
            pk = self.graph.entity(target).primary_key
            found = await self.store.find_many_by_field(target, pk, list(keys))
            lookups[target] = {row[pk]: row[field] for row in found}

        for row, key, target, value in patches:
            row[key] = lookups[target].get(value)
        return rows

    def _collect(self, entity, row, pending, patches, nested=False):
        if not isinstance(row, dict):
            return
        schema = self.graph.entity(entity)

        field = self.mapping_for(entity)
        if field is not None:
            pk = schema.primary_key
            if field in row:
                row[DEFAULT_ID_FIELD] = row[field] if nested else row.pop(field)
                if pk != DEFAULT_ID_FIELD:
                    row.pop(pk, None)
            elif row.get(pk) is not None:
                pending.setdefault(entity, {})[row[pk]] = None
                patches.append((row, DEFAULT_ID_FIELD, entity, row[pk]))

        for attribute, (target, _) in self.foreign_key_mappings(entity).items():
            value = row.get(attribute)
            if value is None:
                continue
            pending.setdefault(target, {})[value] = None
            patches.append((row, attribute, target, value))

        for relation in schema.relations.values():
            child = row.get(relation.name)
            if isinstance(child, dict):
                self._collect(relation.target, child, pending, patches, nested=True)
            elif isinstance(child, list):
                for item in child:
                    self._collect(relation.target, item, pending, patches, nested=True)


def _raise_missing(errors):
    if errors:
        names = ", ".join(dict.fromkeys(e.field for e in errors))
        raise RelatedRecordNotFound(f"Related record not found: {names}", errors)
