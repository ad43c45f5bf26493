"""
Django-Crudkit Field Aliases

Maps external field names the client sees to the root entity's internal
field names, e.g. {"name": "person_name"}.

Aliases apply in every direction:
- filters and ordering name the external field
- write payloads are renamed to internal fields before validation
- returned rows are renamed back to external fields
- allow/block lists may use either name

Internal names stay usable as client names.
"""

from django.core.exceptions import ImproperlyConfigured


def normalize_aliases(raw):
    """
    Validate the shape of an aliases option.

    Returns:
        Dict of external name -> internal name

    Examples:
        >>> normalize_aliases(None)
        {}
        >>> normalize_aliases({"name": "person_name"})
        {'name': 'person_name'}
    """
    if not raw:
        return {}
    if not isinstance(raw, dict):
        raise ImproperlyConfigured("'aliases' must map external names to field names")

    aliases = {}
    for external, internal in raw.items():
        if not isinstance(external, str) or not isinstance(internal, str) or not external or not internal:
            raise ImproperlyConfigured(f"Invalid alias {external!r} -> {internal!r}")
        if "." in external or "." in internal:
            raise ImproperlyConfigured(f"Alias '{external}' must name a root field")
        if internal in aliases.values():
            raise ImproperlyConfigured(f"Field '{internal}' has more than one alias")
        aliases[external] = internal
    return aliases


def validate_aliases(aliases, schema):
    """Raise ImproperlyConfigured when an alias targets a field the entity lacks."""
    missing = [internal for internal in aliases.values() if internal != "id" and schema.field(internal) is None]
    if missing:
        raise ImproperlyConfigured(f"Aliased fields not found on '{schema.name}': {', '.join(missing)}")


class FieldAliases:
    """
    Two-way alias lookup for one operation.

    Example:
        aliases = FieldAliases({"name": "person_name"})
        aliases.to_internal("name")                  # "person_name"
        aliases.row_to_external({"person_name": 1})  # {"name": 1}
    """

    def __init__(self, aliases=None):
        self.internal = dict(aliases or {})
        self.external = {internal: external for external, internal in self.internal.items()}

    def __bool__(self):
        return bool(self.internal)

    def to_internal(self, name):
        return self.internal.get(name, name)

    def to_external(self, name):
        return self.external.get(name, name)

    def names(self, name):
        """Every name a policy list may use for this field."""
        return {name, self.to_internal(name), self.to_external(name)}

    def row_to_external(self, row):
        if not self or not isinstance(row, dict):
            return row
        return {self.to_external(key): value for key, value in row.items()}
