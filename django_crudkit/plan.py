"""
Django-Crudkit Query Plan

The value handed to a Store: filter expression, ordering, pagination and the
relations to join. Assembling a plan performs no I/O.
"""

from typing import Any, NamedTuple, Optional, Tuple

from django_crudkit.pagination import Pagination


class Inclusion(NamedTuple):
    """
    A relation joined into the query.

    join_only inclusions exist because a filter or ordering path crosses the
    relation; their rows are not returned. required makes the join an inner
    join. where is a filter expression relative to the included entity.
    """

    path: str
    required: bool = False
    where: Optional[Any] = None
    through: Optional[dict] = None
    join_only: bool = False

    @property
    def depth(self):
        return self.path.count(".") + 1

    def merge(self, other):
        return Inclusion(
            self.path,
            required=self.required or other.required,
            where=other.where if other.where is not None else self.where,
            through=other.through if other.through is not None else self.through,
            join_only=self.join_only and other.join_only,
        )


class QueryPlan(NamedTuple):
    filters: Any
    ordering: Tuple[Any, ...]
    pagination: Optional[Pagination]
    inclusions: Tuple[Inclusion, ...] = ()

    @property
    def deduplicate(self):
        return bool(self.pagination and self.pagination.deduplicate_joined_rows)

    def inclusion(self, path):
        for inclusion in self.inclusions:
            if inclusion.path == path:
                return inclusion
        return None

    @property
    def returned_inclusions(self):
        return tuple(i for i in self.inclusions if not i.join_only)


def merge_inclusions(inclusions):
    """
    Merge inclusions by path and materialize intermediate segments.

    An intermediate segment of a returned inclusion is itself returned, so
    the nested row has a parent to hang from.

    Examples:
        >>> [i.path for i in merge_inclusions([Inclusion("artist.label")])]
        ['artist', 'artist.label']
    """
    merged = {}
    for inclusion in inclusions:
        parts = inclusion.path.split(".")
        for depth in range(1, len(parts)):
            parent = ".".join(parts[:depth])
            implied = Inclusion(parent, join_only=inclusion.join_only)
            merged[parent] = merged[parent].merge(implied) if parent in merged else implied
        if inclusion.path in merged:
            merged[inclusion.path] = merged[inclusion.path].merge(inclusion)
        else:
            merged[inclusion.path] = inclusion
    return tuple(sorted(merged.values(), key=lambda i: i.depth))


def assemble_plan(filters, ordering, pagination, inclusions=()):
    """
    Bundle compiled parts into a QueryPlan.

    Args:
        filters: FilterExpression or None
        ordering: Tuple of OrderTerm
        pagination: Pagination, or None for unpaginated lookups
        inclusions: Iterable of Inclusion (configured, flattening-implied
            and path-implied)
    """
    return QueryPlan(filters, tuple(ordering), pagination, merge_inclusions(inclusions))
