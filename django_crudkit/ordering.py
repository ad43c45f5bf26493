"""
Django-Crudkit Order Compiler

Accepted forms:
- Comma string with optional signs: "-score,+name,title"
- List of mappings: [{"order_by": "score", "direction": "DESC"}, ...]
  ("orderby", "column", "field" and "path" are accepted for the name,
  "dir" for the direction)

A sign overrides the request's global direction; unsigned fields use the
global direction when one is given, else ASC. Terms keep the order the
client wrote them in, so later terms only break ties of earlier ones.
"""

from typing import NamedTuple

from django_crudkit.exceptions import FieldError, raise_collected
from django_crudkit.policy import ORDER


ASC = "ASC"
DESC = "DESC"

NAME_KEYS = ("order_by", "orderby", "column", "field", "path")
DIRECTION_KEYS = ("direction", "dir")


class OrderTerm(NamedTuple):
    path: str
    direction: str = ASC

    @property
    def descending(self):
        return self.direction == DESC

    def to_list(self):
        return [self.path, self.direction]


def parse_direction(value):
    """
    Normalize a direction value.

    Returns "ASC", "DESC", or None when the value is not a direction.

    Examples:
        >>> parse_direction("desc")
        'DESC'
        >>> parse_direction("sideways") is None
        True
    """
    if not isinstance(value, str):
        return None
    value = value.strip().upper()
    if value in (ASC, DESC):
        return value
    return None


def parse_order_string(raw, default_direction=ASC):
    """
    Split an order string into (name, direction) pairs.

    Examples:
        >>> parse_order_string("-score,+name,title", "DESC")
        [('score', 'DESC'), ('name', 'ASC'), ('title', 'DESC')]
    """
    terms = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        if part[0] == "-":
            terms.append((part[1:].strip(), DESC))
        elif part[0] == "+":
            terms.append((part[1:].strip(), ASC))
        else:
            terms.append((part, default_direction))
    return terms


def _first(item, keys):
    for key in keys:
        if key in item:
            return item[key]
    return None


class OrderCompiler:
    """Compile one order entry, collecting every rejected field."""

    def __init__(self, ctx, check_policy=True):
        self.ctx = ctx
        self.check_policy = check_policy
        self.policy_errors = []

    def compile(self, raw, global_direction=None):
        direction = ASC
        if global_direction not in (None, ""):
            direction = parse_direction(global_direction)
            if direction is None:
                self.policy_errors.append(FieldError("order_dir", f"invalid direction '{global_direction}'"))
                direction = ASC

        terms = []
        for name, term_direction in self._pairs(raw, direction):
            term = self._term(name, term_direction)
            if term is not None:
                terms.append(term)

        raise_collected((), self.policy_errors)
        return tuple(terms)

    def _pairs(self, raw, direction):
        if raw in (None, "", []):
            return []
        if isinstance(raw, str):
            return parse_order_string(raw, direction)
        if isinstance(raw, dict):
            raw = [raw]
        if not isinstance(raw, (list, tuple)):
            self.policy_errors.append(FieldError("ordering", "ordering must be a string or a list"))
            return []

        pairs = []
        for item in raw:
            if isinstance(item, str):
                pairs.extend(parse_order_string(item, direction))
                continue
            if not isinstance(item, dict):
                self.policy_errors.append(FieldError("ordering", "ordering entries must be objects"))
                continue
            name = _first(item, NAME_KEYS)
            raw_direction = _first(item, DIRECTION_KEYS)
            item_direction = direction if raw_direction is None else parse_direction(raw_direction)
            if item_direction is None:
                self.policy_errors.append(FieldError(str(name), f"invalid direction '{raw_direction}'"))
                continue
            pairs.append((name, item_direction))
        return pairs

    def _term(self, name, direction):
        if not isinstance(name, str) or not name:
            self.policy_errors.append(FieldError(str(name), "unknown field"))
            return None

        if self.check_policy and not self.ctx.policy.check(name, ORDER):
            self.policy_errors.append(FieldError(name, "not allowed for ordering"))
            return None

        target = self.ctx.resolve_field(name)
        if target is None:
            self.policy_errors.append(FieldError(name, "unknown field"))
            return None

        if target.relation_path:
            self.ctx.require_relation(target.relation_path)
        return OrderTerm(target.path, direction)


def compile_ordering(raw, ctx, global_direction=None):
    """
    Compile the request ordering, falling back to the configured default.

    Args:
        raw: Order string or list from the request, may be empty
        ctx: RequestPipelineContext for the current request
        global_direction: The request's single direction parameter, if any

    Returns:
        Tuple of OrderTerm

    Raises:
        PolicyRejection naming every unknown or forbidden field
    """
    terms = OrderCompiler(ctx).compile(raw, global_direction)
    if terms:
        return terms
    return default_ordering(ctx, global_direction)


def default_ordering(ctx, global_direction=None):
    """The configured default order; exempt from the request policy."""
    config = ctx.config
    direction = parse_direction(global_direction) or config["default_order_dir"]
    return OrderCompiler(ctx, check_policy=False).compile(config["default_order_by"], direction)
