"""
Django-Crudkit Field Access Policy

Decides which fields a request may filter on, order by, or write to.

Each operation carries allow and block lists per kind:

    filter  -> allow_filtering_on / block_filtering_on
    order   -> allow_ordering_on / block_ordering_on
    write   -> allowed_fields / blocked_fields

Rules:
- A block list always wins over an allow list for the same field.
- A missing (None) allow list means every field is permitted unless blocked.
- Paths are matched as full dotted strings, the way lists are authored.
  A trailing ".*" pattern ("artist.*") covers every field under a relation.

Rejections are collected, not raised one at a time, so the client sees every
offending field of a request in a single error.
"""

from django_crudkit.aliases import FieldAliases
from django_crudkit.exceptions import FieldError


FILTER = "filter"
ORDER = "order"
WRITE = "write"

KINDS = (FILTER, ORDER, WRITE)


def field_matches_pattern(field: str, pattern: str) -> bool:
    """
    Check if a field matches an allow/block pattern.

    Pattern types:
        'artist.*' - All fields on the artist relation (any depth)
        'artist.name' - Exact field match

    Examples:
        >>> field_matches_pattern('artist.name', 'artist.*')
        True
        >>> field_matches_pattern('artist', 'artist.*')
        False
        >>> field_matches_pattern('name', 'name')
        True
    """
    if pattern.endswith(".*"):
        prefix = pattern[:-2]
        return field.startswith(prefix + ".")
    return field == pattern


def matches_any(field, patterns):
    for pattern in patterns:
        if field_matches_pattern(field, pattern):
            return True
    return False


class FieldPolicy:
    """
    Allow/block lists for one operation.

    Example:
        policy = FieldPolicy(allow_filtering_on=["status", "artist.*"],
                             block_filtering_on=["artist.secret"])
        policy.check("artist.name", "filter")    # True
        policy.check("artist.secret", "filter")  # False
    """

    def __init__(
        self,
        allow_filtering_on=None,
        block_filtering_on=None,
        allow_ordering_on=None,
        block_ordering_on=None,
        allowed_fields=None,
        blocked_fields=None,
        aliases=None,
    ):
        self.aliases = aliases if isinstance(aliases, FieldAliases) else FieldAliases(aliases)
        self._lists = {
            FILTER: (_as_tuple(allow_filtering_on), _as_tuple(block_filtering_on) or ()),
            ORDER: (_as_tuple(allow_ordering_on), _as_tuple(block_ordering_on) or ()),
            WRITE: (_as_tuple(allowed_fields), _as_tuple(blocked_fields) or ()),
        }

    @classmethod
    def from_config(cls, config):
        """Build a policy from an operation configuration mapping."""
        return cls(
            allow_filtering_on=config.get("allow_filtering_on"),
            block_filtering_on=config.get("block_filtering_on"),
            allow_ordering_on=config.get("allow_ordering_on"),
            block_ordering_on=config.get("block_ordering_on"),
            allowed_fields=config.get("allowed_fields"),
            blocked_fields=config.get("blocked_fields"),
            aliases=config.get("aliases"),
        )

    def check(self, path, kind):
        """
        Return True when the path is permitted for this kind of access.

        An aliased field matches lists naming either its external or its
        internal name.
        """
        allowed, blocked = self._lists[kind]
        names = self.aliases.names(path)
        if any(matches_any(name, blocked) for name in names):
            return False
        if allowed is None:
            return True
        return any(matches_any(name, allowed) for name in names)

    def rejections(self, paths, kind):
        """
        Gather every path the policy rejects.

        Returns:
            List of FieldError, one per distinct rejected path, in input order.
        """
        errors = []
        seen = set()
        for path in paths:
            if path in seen:
                continue
            seen.add(path)
            if not self.check(path, kind):
                errors.append(FieldError(path, f"not allowed for {_KIND_LABELS[kind]}"))
        return errors


_KIND_LABELS = {FILTER: "filtering", ORDER: "ordering", WRITE: "writing"}


def _as_tuple(value):
    if value is None:
        return None
    if isinstance(value, str):
        return (value,)
    return tuple(value)
