"""
Django-Crudkit Response Flattening

Lifts attributes of an included relation to the top level of each row and
drops the nested object.

Rule format:
    {
        "model": "artist",          # entity of the relation target
        "as": "artist",             # relation name on the root entity
        "attributes": ["name", ["country", "artist_country"]],
        "where": {"active": True},  # optional, constrains the join
        "required": False,          # optional, see below
        "through": {...},           # optional, join-table refinement
    }

A single rule is accepted and normalized to a one-item list.

Behavior:
- A rule without "required" joins its relation as an inner join, unless
  the operation already includes that relation; then the include decides.
- An unmatched relation (left join, no row) emits None for every attribute.
- A to-many relation flattens its first element.
- Rules apply in declared order; the later rule wins on name collision.
- A bare attribute never overwrites a root field of the same name. Only an
  explicit [source, exposed] alias may collide with a root field.
"""

from typing import NamedTuple, Optional, Tuple

from django.core.exceptions import ImproperlyConfigured

from django_crudkit.schema import entity_name


class Attribute(NamedTuple):
    source: str
    exposed: str
    aliased: bool = False


class FlatteningRule(NamedTuple):
    relation: str
    model: str
    attributes: Tuple[Attribute, ...]
    where: Optional[dict] = None
    required: Optional[bool] = None
    through: Optional[dict] = None

    def attribute_map(self):
        """Map source attribute -> exposed name."""
        return {a.source: a.exposed for a in self.attributes}

    def exposed_names(self):
        return [a.exposed for a in self.attributes]


def _parse_attribute(raw, relation):
    if isinstance(raw, str):
        return Attribute(raw, raw)
    if isinstance(raw, (list, tuple)) and len(raw) == 2 and all(isinstance(p, str) for p in raw):
        return Attribute(raw[0], raw[1], aliased=True)
    raise ImproperlyConfigured(
        f"Flattening attribute for '{relation}' must be a name or a [source, exposed] pair, got {raw!r}"
    )


def parse_rule(raw):
    """Build a FlatteningRule from its mapping form."""
    if isinstance(raw, FlatteningRule):
        return raw
    if not isinstance(raw, dict):
        raise ImproperlyConfigured(f"Flattening rule must be a mapping, got {type(raw).__name__}")

    model = raw.get("model")
    relation = raw.get("as")
    if not model or not relation:
        raise ImproperlyConfigured("Flattening rule must specify model and as")

    attributes = raw.get("attributes")
    if not attributes or not isinstance(attributes, (list, tuple)):
        raise ImproperlyConfigured(f"Flattening rule for '{relation}' needs a non-empty attributes list")

    where = raw.get("where")
    if where is not None and not isinstance(where, dict):
        raise ImproperlyConfigured(f"Flattening where for '{relation}' must be a mapping")

    through = raw.get("through")
    if through is not None and not isinstance(through, dict):
        raise ImproperlyConfigured(f"Flattening through for '{relation}' must be a mapping")

    return FlatteningRule(
        relation=relation,
        model=entity_name(model),
        attributes=tuple(_parse_attribute(a, relation) for a in attributes),
        where=where,
        required=None if raw.get("required") is None else bool(raw["required"]),
        through=through,
    )


def normalize_flattening(raw):
    """
    Normalize a flattening configuration to a tuple of rules.

    Examples:
        >>> normalize_flattening(None)
        ()
        >>> len(normalize_flattening({"model": "artist", "as": "artist", "attributes": ["name"]}))
        1
    """
    if not raw:
        return ()
    if isinstance(raw, (dict, FlatteningRule)):
        raw = [raw]
    return tuple(parse_rule(r) for r in raw)


def validate_flattening(rules, graph, entity):
    """
    Check every rule against the relation graph.

    Raises ImproperlyConfigured when a rule names a relation the entity does
    not declare, a model that is not the relation's target, or an attribute
    the target does not have.
    """
    for rule in rules:
        chain = graph.resolve_relation(entity, rule.relation)
        if chain is None:
            raise ImproperlyConfigured(f"Flattening alias '{rule.relation}' is not a relation of '{entity}'")
        target = chain[-1].target
        if rule.model != target:
            raise ImproperlyConfigured(
                f"Flattening model '{rule.model}' does not match included model '{target}' for alias '{rule.relation}'"
            )
        schema = graph.entity(target)
        missing = [a.source for a in rule.attributes if schema.field(a.source) is None]
        if missing:
            raise ImproperlyConfigured(f"Flattening attributes not found on '{target}': {', '.join(missing)}")


def exposed_name_to_path(name, rules, root_fields=()):
    """
    Map a flattened exposed name back to its relation path.

    A bare attribute that shadows a root field is not considered flattened;
    the root field keeps the name.

    Examples:
        >>> rules = normalize_flattening({"model": "artist", "as": "artist",
        ...                               "attributes": [["name", "artist_name"]]})
        >>> exposed_name_to_path("artist_name", rules)
        'artist.name'
        >>> exposed_name_to_path("title", rules) is None
        True
    """
    for rule in reversed(rules):
        for attribute in rule.attributes:
            if attribute.exposed != name:
                continue
            if not attribute.aliased and name in root_fields:
                continue
            return f"{rule.relation}.{attribute.source}"
    return None


def _nested_value(row, relation):
    value = row
    for part in relation.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
        if isinstance(value, list):
            value = value[0] if value else None
    return value if isinstance(value, dict) else None


def _drop_nested(row, relation):
    parts = relation.split(".")
    if len(parts) == 1:
        row.pop(relation, None)
        return
    parent = row.get(parts[0])
    if isinstance(parent, dict):
        parent = dict(parent)
        row[parts[0]] = parent
        _drop_nested(parent, ".".join(parts[1:]))


def flatten_row(row, rules):
    """
    Apply flattening rules to one row.

    Returns a new dict; the input row is not modified.
    """
    if not rules or not isinstance(row, dict):
        return row

    relations = {rule.relation.split(".")[0] for rule in rules}
    root_fields = {k for k in row if k not in relations}

    result = dict(row)
    for rule in rules:
        nested = _nested_value(row, rule.relation)
        for attribute in rule.attributes:
            if not attribute.aliased and attribute.exposed in root_fields:
                continue
            result[attribute.exposed] = nested.get(attribute.source) if nested is not None else None

    for rule in rules:
        _drop_nested(result, rule.relation)
    return result


def flatten_rows(rows, rules):
    if not rules:
        return list(rows)
    return [flatten_row(row, rules) for row in rows]
