"""
Django-Crudkit Filter Compiler

Turns client filter input into a FilterExpression tree resolved
against the relation graph.

Supports:
- Simple equality: {"status": "active"} (case-insensitive for text fields)
- Operators in the key: {"score:gte": 70}
- Operator mappings: {"score": {"gte": 70, "lt": 90}}
- Composable groups: {"or": [{...}, {...}]}, {"and": [...]}
- Leaf dicts inside groups: {"field": "score", "operator": ">", "value": 70}
- Nested relation paths: {"artist.label.name": "warner"}
- Flattened exposed names: {"artist_name": "..."} with a flattening rule

Query parameters use the same keys ("status", "score:gte", "id:in=1,2,3");
reserved "api:" keys carry paging and ordering and are skipped.
"""

import enum
from typing import Any, NamedTuple, Optional, Tuple

from django_crudkit.coercion import FieldType, coercer_for, is_text
from django_crudkit.exceptions import FieldError, raise_collected
from django_crudkit.policy import FILTER


RESERVED_PREFIX = "api:"

AND = "and"
OR = "or"


class Operator(enum.Enum):
    EQ = "eq"
    IEQ = "ieq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    ICONTAINS = "icontains"
    NOT_CONTAINS = "not_contains"
    NOT_ICONTAINS = "not_icontains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    NOT_STARTS_WITH = "not_starts_with"
    NOT_ENDS_WITH = "not_ends_with"
    IS_TRUE = "is_true"
    IS_FALSE = "is_false"

    @classmethod
    def parse(cls, token):
        """
        Look up an operator by name or symbol.

        Returns None for unknown tokens.

        Examples:
            >>> Operator.parse(">=")
            <Operator.GTE: 'gte'>
            >>> Operator.parse("between") is None
            True
        """
        if isinstance(token, Operator):
            return token
        if not isinstance(token, str):
            return None
        token = token.strip()
        if token in ALIASES:
            return ALIASES[token]
        try:
            return cls(token.lower())
        except ValueError:
            return None

    @property
    def takes_list(self):
        return self in (Operator.IN, Operator.NOT_IN)

    @property
    def is_predicate(self):
        return self in (Operator.IS_TRUE, Operator.IS_FALSE)

    @property
    def is_text(self):
        return self in TEXT_OPERATORS

    @property
    def is_negated(self):
        return self in NEGATED_OPERATORS


ALIASES = {
    "=": Operator.EQ,
    "==": Operator.EQ,
    "!=": Operator.NEQ,
    ">": Operator.GT,
    ">=": Operator.GTE,
    "<": Operator.LT,
    "<=": Operator.LTE,
}

TEXT_OPERATORS = frozenset(
    {
        Operator.CONTAINS,
        Operator.ICONTAINS,
        Operator.NOT_CONTAINS,
        Operator.NOT_ICONTAINS,
        Operator.STARTS_WITH,
        Operator.ENDS_WITH,
        Operator.NOT_STARTS_WITH,
        Operator.NOT_ENDS_WITH,
    }
)

NEGATED_OPERATORS = frozenset(
    {
        Operator.NEQ,
        Operator.NOT_IN,
        Operator.NOT_CONTAINS,
        Operator.NOT_ICONTAINS,
        Operator.NOT_STARTS_WITH,
        Operator.NOT_ENDS_WITH,
    }
)

# Operators that survive translating external ids to surrogate keys
IDENTIFIER_OPERATORS = frozenset({Operator.EQ, Operator.NEQ, Operator.IN, Operator.NOT_IN})


class FilterLeaf(NamedTuple):
    """
    One comparison against a field reachable from the root entity.

    external_entity is set while the value still holds external identifiers
    of that entity; the identifier resolver replaces the value with surrogate
    keys and clears it before the plan is executed.
    """

    path: str
    operator: Operator
    value: Any
    external_entity: Optional[str] = None

    @property
    def relation_path(self):
        return self.path.rpartition(".")[0]

    @property
    def field(self):
        return self.path.rpartition(".")[2]


class FilterGroup(NamedTuple):
    combinator: str
    children: Tuple[Any, ...]


def parse_filter_key(key):
    """
    Split a filter key into (field, operator token).

    Examples:
        >>> parse_filter_key("status")
        ('status', None)
        >>> parse_filter_key("artist.name:icontains")
        ('artist.name', 'icontains')
    """
    if ":" in key:
        field, _, operator = key.rpartition(":")
        return field, operator
    return key, None


def split_list_value(value):
    """Split a comma-separated query value, dropping empty items."""
    if isinstance(value, (list, tuple)):
        return list(value)
    return [part.strip() for part in str(value).split(",") if part.strip()]


def query_params_to_filtering(params):
    """
    Convert list query parameters into the structured filter form.

    Args:
        params: Mapping of query parameters (dict or QueryDict)

    Returns:
        Dict of filter key -> value, with "api:" keys removed and the values
        of in/not_in filters split on commas

    Examples:
        >>> query_params_to_filtering({"status": "active", "api:page": "2", "id:in": "1,2"})
        {'status': 'active', 'id:in': ['1', '2']}
    """
    filtering = {}
    for key, value in params.items():
        if key.startswith(RESERVED_PREFIX) or value is None:
            continue
        _, token = parse_filter_key(key)
        operator = Operator.parse(token) if token else None
        if operator is not None and operator.takes_list and isinstance(value, str):
            value = split_list_value(value)
        filtering[key] = value
    return filtering


def extract_filter_keys(filters, keys=None):
    """
    Recursively extract the field names a filter input references.

    Examples:
        >>> extract_filter_keys({"name": "A", "or": [{"score:gt": 1}, {"field": "x", "value": 2}]})
        ['name', 'score', 'x']
    """
    if keys is None:
        keys = []

    if not filters:
        return keys

    if isinstance(filters, list):
        for item in filters:
            extract_filter_keys(item, keys)
        return keys

    if not isinstance(filters, dict):
        return keys

    if _is_leaf_dict(filters):
        keys.append(filters["field"])
        return keys

    for key, value in filters.items():
        if key in (AND, OR):
            extract_filter_keys(value, keys)
        else:
            field, _ = parse_filter_key(key)
            keys.append(field)

    return keys


def _is_leaf_dict(raw):
    return "field" in raw and set(raw) <= {"field", "operator", "op", "value"} and ("value" in raw or "operator" in raw or "op" in raw)


def _group(combinator, children):
    children = tuple(c for c in children if c is not None)
    if not children:
        return None
    if len(children) == 1:
        return children[0]
    return FilterGroup(combinator, children)


def combine(*expressions):
    """AND together expressions, ignoring empty ones."""
    return _group(AND, expressions)


def iter_leaves(expression):
    if expression is None:
        return
    if isinstance(expression, FilterLeaf):
        yield expression
        return
    for child in expression.children:
        yield from iter_leaves(child)


def map_leaves(expression, func):
    """Return a copy of the expression with func applied to every leaf."""
    if expression is None:
        return None
    if isinstance(expression, FilterLeaf):
        return func(expression)
    return FilterGroup(expression.combinator, tuple(map_leaves(c, func) for c in expression.children))


class FilterCompiler:
    """
    Compile one filter input against a request context.

    Every problem is collected before raising: unknown fields, unknown
    operators and policy rejections become one PolicyRejection; if there are
    none, value coercion failures become one TypeCoercionError.

    Args:
        ctx: RequestPipelineContext
        entity: Root entity of the paths (defaults to the context entity)
        check_policy: Apply the request's filter policy
        register_joins: Record relation paths as join-only inclusions
    """

    def __init__(self, ctx, entity=None, check_policy=True, register_joins=True):
        self.ctx = ctx
        self.entity = entity or ctx.entity
        self.check_policy = check_policy
        self.register_joins = register_joins
        self.errors = []
        self.policy_errors = []

    def compile(self, raw):
        if not raw:
            return None
        expression = self._node(raw)
        raise_collected(self.errors, self.policy_errors)
        return expression

    def _node(self, raw):
        if isinstance(raw, list):
            return _group(AND, [self._node(item) for item in raw])

        if not isinstance(raw, dict):
            self.policy_errors.append(FieldError("filtering", "filter must be an object"))
            return None

        if _is_leaf_dict(raw):
            operator = raw.get("operator", raw.get("op"))
            return self._leaf(raw["field"], operator, raw.get("value"))

        children = []
        for key, value in raw.items():
            if key in (AND, OR):
                children.append(_group(key, [self._node(item) for item in _group_items(value)]))
                continue

            field, token = parse_filter_key(key)
            if token is None and isinstance(value, dict) and value:
                for op_token, op_value in value.items():
                    children.append(self._leaf(field, op_token, op_value))
            else:
                children.append(self._leaf(field, token, value))

        return _group(AND, children)

    def _leaf(self, name, token, value):
        if not isinstance(name, str) or not name:
            self.policy_errors.append(FieldError(str(name), "unknown field"))
            return None

        operator = None
        if token is not None:
            operator = Operator.parse(token)
            if operator is None:
                self.policy_errors.append(FieldError(name, f"unknown operator '{token}'"))
                return None

        if self.check_policy and not self.ctx.policy.check(name, FILTER):
            self.policy_errors.append(FieldError(name, "not allowed for filtering"))
            return None

        target = self.ctx.resolve_field(name, entity=self.entity)
        if target is None:
            self.policy_errors.append(FieldError(name, "unknown field"))
            return None

        if target.relation_path and self.register_joins:
            self.ctx.require_relation(target.relation_path)

        field_type = target.field_type
        if operator is None:
            operator = Operator.IEQ if is_text(field_type) and not target.external_entity else Operator.EQ
        elif operator is Operator.IEQ and not is_text(field_type):
            operator = Operator.EQ

        if target.external_entity:
            if operator is Operator.IEQ:
                operator = Operator.EQ
            if operator not in IDENTIFIER_OPERATORS:
                self.policy_errors.append(FieldError(name, f"operator '{operator.value}' not supported on identifiers"))
                return None

        try:
            value = self._coerce(operator, field_type, value)
        except ValueError as e:
            self.errors.append(FieldError(name, str(e)))
            return None

        return FilterLeaf(target.path, operator, value, target.external_entity)

    def _coerce(self, operator, field_type, value):
        if operator.is_predicate:
            return operator is Operator.IS_TRUE

        if operator.is_text:
            if value is None or isinstance(value, (dict, list)):
                raise ValueError("expected a text value")
            return str(value)

        coercer = coercer_for(field_type)
        if operator.takes_list:
            if value is None or isinstance(value, dict):
                raise ValueError("expected a list")
            return [coercer(v) for v in split_list_value(value)]

        if isinstance(value, (dict, list)) and field_type is not FieldType.JSON:
            raise ValueError("expected a scalar")
        if value is None:
            return None
        return coercer(value)


def _group_items(value):
    if isinstance(value, dict):
        return [{k: v} for k, v in value.items()]
    if isinstance(value, list):
        return value
    return [value]


def compile_filters(raw, ctx, entity=None, check_policy=True, register_joins=True):
    """
    Compile a structured filter input.

    Args:
        raw: Filter input (dict or list), may be empty
        ctx: RequestPipelineContext for the current request

    Returns:
        FilterLeaf, FilterGroup, or None for an empty input

    Raises:
        PolicyRejection: unknown or forbidden fields, unknown operators
        TypeCoercionError: values that do not fit the declared field types
    """
    return FilterCompiler(ctx, entity, check_policy, register_joins).compile(raw)
