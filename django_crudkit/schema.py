"""
Django-Crudkit Relation Graph

A static description of the entities a store exposes: their fields and
declared types, their relations, and the id-field marker an entity may carry
for external identifiers. The graph is built once by the store (for Django,
by introspecting model _meta) and consulted read-only by every request.

Example:
    graph = RelationGraph([
        EntitySchema("artist", [FieldInfo("id", FieldType.INTEGER, True),
                                FieldInfo("name", FieldType.STRING)],
                     id_field="external_id"),
        EntitySchema("album", [...],
                     relations=[RelationInfo("artist", "artist", False, "artist_id")]),
    ])
    graph.resolve("album", "artist.name")
"""

from typing import NamedTuple, Optional, Tuple

from django_crudkit.coercion import FieldType


class FieldInfo(NamedTuple):
    name: str
    type: FieldType = FieldType.OTHER
    primary_key: bool = False


class RelationInfo(NamedTuple):
    """
    A declared relation from one entity to another.

    foreign_key is set for belongs-to relations: the attribute on the source
    entity holding the target's primary key. declared_id_field is the target
    entity's external id-field marker, if it has one.
    """

    name: str
    target: str
    is_to_many: bool = False
    foreign_key: Optional[str] = None
    declared_id_field: Optional[str] = None

    @property
    def is_belongs_to(self):
        return not self.is_to_many and self.foreign_key is not None


class ResolvedPath(NamedTuple):
    """A relation path resolved against the graph, terminated by a field."""

    relations: Tuple[RelationInfo, ...]
    entity: str
    field: FieldInfo

    @property
    def relation_path(self):
        return ".".join(r.name for r in self.relations)

    @property
    def path(self):
        if self.relations:
            return f"{self.relation_path}.{self.field.name}"
        return self.field.name

    @property
    def crosses_to_many(self):
        return any(r.is_to_many for r in self.relations)


def entity_name(model):
    """
    Normalize an entity reference to its graph name.

    Accepts a string, a Django model class, or anything with a __name__.

    Examples:
        >>> entity_name("Artist")
        'artist'
    """
    if isinstance(model, str):
        return model.lower()
    meta = getattr(model, "_meta", None)
    if meta is not None and getattr(meta, "model_name", None):
        return meta.model_name
    return model.__name__.lower()


class EntitySchema:
    """Fields, relations and identifier marker of one entity."""

    def __init__(self, name, fields, relations=(), primary_key="id", id_field=None, config=None):
        self.name = entity_name(name)
        self.fields = {f.name: f for f in fields}
        self.relations = {r.name: r for r in relations}
        self.primary_key = primary_key
        self.id_field = id_field
        self.config = dict(config or {})

    def field(self, name):
        return self.fields.get(name)

    def relation(self, name):
        return self.relations.get(name)

    def foreign_keys(self):
        """Map foreign-key attribute -> belongs-to relation."""
        return {r.foreign_key: r for r in self.relations.values() if r.is_belongs_to}

    def __repr__(self):
        return f"<EntitySchema {self.name}>"


class RelationGraph:
    """Map of entity name -> EntitySchema, with dotted-path resolution."""

    def __init__(self, entities=()):
        self._entities = {}
        for entity in entities:
            self._entities[entity.name] = entity
        self._stamp_declared_ids()

    def _stamp_declared_ids(self):
        # Copy each target's id-field marker onto the relations pointing at it.
        for entity in self._entities.values():
            for name, relation in list(entity.relations.items()):
                target = self._entities.get(relation.target)
                if target is not None and target.id_field and not relation.declared_id_field:
                    entity.relations[name] = relation._replace(declared_id_field=target.id_field)

    def __contains__(self, name):
        return entity_name(name) in self._entities

    def __iter__(self):
        return iter(self._entities.values())

    def entity(self, name):
        try:
            return self._entities[entity_name(name)]
        except KeyError:
            raise LookupError(f"Unknown entity '{name}'")

    def relations(self, name):
        return list(self.entity(name).relations.values())

    def walk(self, entity, relation_names):
        """
        Follow relation names from an entity.

        Returns a tuple of RelationInfo, or None when a segment is not a
        declared relation.
        """
        current = self.entity(entity)
        chain = []
        for part in relation_names:
            relation = current.relation(part)
            if relation is None or relation.target not in self._entities:
                return None
            chain.append(relation)
            current = self._entities[relation.target]
        return tuple(chain)

    def resolve(self, entity, dotted):
        """
        Resolve a dotted field path from an entity.

        Returns a ResolvedPath, or None when any relation segment or the
        terminal field does not exist.

        Examples:
            >>> graph.resolve("album", "artist.label.name").entity
            'label'
        """
        if not dotted or not isinstance(dotted, str):
            return None
        parts = dotted.split(".")
        chain = self.walk(entity, parts[:-1])
        if chain is None:
            return None
        target = self._entities[chain[-1].target] if chain else self.entity(entity)
        field = target.field(parts[-1])
        if field is None:
            return None
        return ResolvedPath(chain, target.name, field)

    def resolve_relation(self, entity, dotted):
        """Resolve a dotted relation path (no terminal field)."""
        if not dotted:
            return None
        return self.walk(entity, dotted.split("."))
