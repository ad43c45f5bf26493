"""
Django-Crudkit Store Interface

The persistence collaborator the request pipeline talks to. A store owns the
relation graph of the entities it serves and executes query plans; it knows
nothing about requests, policies or identifier mappings.

Rows are plain dicts keyed by field attribute name. Included relations
appear under the relation name: a dict (or None) for to-one relations, a
list of dicts for to-many relations.
"""

from typing import NamedTuple


class QueryResult(NamedTuple):
    rows: list
    total_count: int


class Store:
    """
    Base class for stores.

    Subclasses set ``graph`` and implement the query and write methods.
    Every method taking an entity takes its graph name (lower-case).
    """

    graph = None

    async def execute_query(self, entity, plan):
        """Run a QueryPlan and return a QueryResult."""
        raise NotImplementedError

    async def find_one_by_field(self, entity, field, value):
        """Return the first row whose field equals value, or None."""
        raise NotImplementedError

    async def find_many_by_field(self, entity, field, values):
        """
        Return every row whose field is one of values.

        The default implementation loops over find_one_by_field; stores
        should override it with a single query.
        """
        rows = []
        for value in values:
            row = await self.find_one_by_field(entity, field, value)
            if row is not None:
                rows.append(row)
        return rows

    def relation_metadata(self, entity):
        """Declared relations of an entity, as RelationInfo tuples."""
        return self.graph.relations(entity)

    async def create(self, entity, values):
        """Insert one row and return it."""
        raise NotImplementedError

    async def update(self, entity, pk, values, replace=False):
        """
        Update the row with primary key pk and return it, or None if absent.

        With replace, fields missing from values are reset to their defaults.
        """
        raise NotImplementedError

    async def delete(self, entity, pk):
        """Delete the row with primary key pk; return False if absent."""
        raise NotImplementedError
