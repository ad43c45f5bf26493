"""
Django-Crudkit ORM Store

Store implementation on top of the Django ORM.

Features:
- Relation graph built from model _meta (forward and reverse foreign keys,
  one-to-one, many-to-many) including each model's ``crudkit`` attribute
- Q object construction from compiled filter expressions
- select_related for plain to-one inclusions, Prefetch for to-many and
  refined (where/through) inclusions
- ORM work runs in a thread through asgiref's sync_to_async

Example:
    from django_crudkit.backends.django import DjangoStore

    store = DjangoStore([Album, Artist, Label])
    # or every model of an app
    store = DjangoStore.for_app("music")
"""

from asgiref.sync import sync_to_async
from django.apps import apps
from django.core.exceptions import ImproperlyConfigured, ObjectDoesNotExist
from django.db.models import ForeignObjectRel, Prefetch, Q
from django.db.models.fields import NOT_PROVIDED

from django_crudkit.coercion import FieldType
from django_crudkit.filters import FilterLeaf, Operator, OR
from django_crudkit.schema import EntitySchema, FieldInfo, RelationGraph, RelationInfo, entity_name
from django_crudkit.store import QueryResult, Store


MODEL_CONFIG_ATTR = "crudkit"

FIELD_TYPES = {
    "AutoField": FieldType.INTEGER,
    "BigAutoField": FieldType.INTEGER,
    "SmallAutoField": FieldType.INTEGER,
    "IntegerField": FieldType.INTEGER,
    "BigIntegerField": FieldType.INTEGER,
    "SmallIntegerField": FieldType.INTEGER,
    "PositiveIntegerField": FieldType.INTEGER,
    "PositiveBigIntegerField": FieldType.INTEGER,
    "PositiveSmallIntegerField": FieldType.INTEGER,
    "FloatField": FieldType.FLOAT,
    "DecimalField": FieldType.DECIMAL,
    "BooleanField": FieldType.BOOLEAN,
    "NullBooleanField": FieldType.BOOLEAN,
    "CharField": FieldType.STRING,
    "TextField": FieldType.STRING,
    "EmailField": FieldType.STRING,
    "SlugField": FieldType.STRING,
    "URLField": FieldType.STRING,
    "GenericIPAddressField": FieldType.STRING,
    "DateField": FieldType.DATE,
    "DateTimeField": FieldType.DATETIME,
    "TimeField": FieldType.TIME,
    "UUIDField": FieldType.UUID,
    "JSONField": FieldType.JSON,
}

# Operator -> (lookup, negated)
LOOKUPS = {
    Operator.EQ: ("exact", False),
    Operator.IEQ: ("iexact", False),
    Operator.NEQ: ("exact", True),
    Operator.GT: ("gt", False),
    Operator.GTE: ("gte", False),
    Operator.LT: ("lt", False),
    Operator.LTE: ("lte", False),
    Operator.IN: ("in", False),
    Operator.NOT_IN: ("in", True),
    Operator.CONTAINS: ("contains", False),
    Operator.ICONTAINS: ("icontains", False),
    Operator.NOT_CONTAINS: ("contains", True),
    Operator.NOT_ICONTAINS: ("icontains", True),
    Operator.STARTS_WITH: ("startswith", False),
    Operator.ENDS_WITH: ("endswith", False),
    Operator.NOT_STARTS_WITH: ("startswith", True),
    Operator.NOT_ENDS_WITH: ("endswith", True),
    Operator.IS_TRUE: ("exact", False),
    Operator.IS_FALSE: ("exact", False),
}


def orm_path(path, prefix=""):
    """
    Convert a dotted path to Django's double underscore format.

    Examples:
        >>> orm_path("artist.label.name")
        'artist__label__name'
        >>> orm_path("name", prefix="artist")
        'artist__name'
    """
    lookup = path.replace(".", "__")
    if prefix:
        return f"{prefix.replace('.', '__')}__{lookup}"
    return lookup


def get_field_type(field):
    """Declared FieldType of a concrete model field (FKs take their target's type)."""
    if field.is_relation and getattr(field, "target_field", None) is not None:
        return get_field_type(field.target_field)
    return FIELD_TYPES.get(field.get_internal_type(), FieldType.OTHER)


def build_q_object(expression, prefix=""):
    """
    Build a Django Q object from a compiled filter expression.

    Args:
        expression: FilterLeaf, FilterGroup or None
        prefix: Relation path prepended to every field (for where clauses
            compiled relative to an included entity)

    Returns:
        Django Q object

    Examples:
        >>> build_q_object(FilterLeaf("score", Operator.GTE, 70))
        <Q: (AND: ('score__gte', 70))>
        >>> build_q_object(FilterLeaf("artist.name", Operator.NEQ, "x"))
        <Q: (NOT (AND: ('artist__name__exact', 'x')))>
    """
    if expression is None:
        return Q()

    if isinstance(expression, FilterLeaf):
        return _leaf_q(expression, prefix)

    result = Q()
    for child in expression.children:
        child_q = build_q_object(child, prefix)
        if expression.combinator == OR:
            result |= child_q
        else:
            result &= child_q
    return result


def _leaf_q(leaf, prefix):
    path = orm_path(leaf.path, prefix)
    lookup, negated = LOOKUPS[leaf.operator]

    if leaf.operator.is_predicate:
        q = Q(**{f"{path}__exact": leaf.operator is Operator.IS_TRUE})
    elif leaf.value is None and lookup in ("exact", "iexact"):
        q = Q(**{f"{path}__isnull": True})
    else:
        q = Q(**{f"{path}__{lookup}": leaf.value})

    return ~q if negated else q


def graph_from_models(models):
    """
    Build a RelationGraph by introspecting model _meta.

    Relations to models outside the given set are left out.
    """
    models = list(models)
    names = {entity_name(m) for m in models}
    entities = []

    for model in models:
        fields = []
        relations = []
        for field in model._meta.get_fields():
            if not field.is_relation:
                if field.concrete:
                    fields.append(FieldInfo(field.attname, get_field_type(field), field.primary_key))
                continue

            related = field.related_model
            if related is None:
                continue

            if isinstance(field, ForeignObjectRel):
                # Reverse side, named by its query name
                if entity_name(related) in names:
                    relations.append(RelationInfo(field.name, entity_name(related), is_to_many=not field.one_to_one))
            elif field.many_to_many:
                if entity_name(related) in names:
                    relations.append(RelationInfo(field.name, entity_name(related), is_to_many=True))
            elif field.concrete:
                # Forward ForeignKey / OneToOneField
                fields.append(FieldInfo(field.attname, get_field_type(field), field.primary_key))
                if entity_name(related) in names:
                    relations.append(RelationInfo(field.name, entity_name(related), False, field.attname))

        config = getattr(model, MODEL_CONFIG_ATTR, None) or {}
        entities.append(
            EntitySchema(
                model,
                fields,
                relations,
                primary_key=model._meta.pk.attname,
                id_field=config.get("id_field"),
                config=config,
            )
        )

    return RelationGraph(entities)


class DjangoStore(Store):
    """Store backed by Django models."""

    def __init__(self, models):
        self.models = {entity_name(m): m for m in models}
        self.graph = graph_from_models(self.models.values())

    @classmethod
    def for_app(cls, app_label):
        """Store serving every model of an installed app."""
        return cls(apps.get_app_config(app_label).get_models())

    def model(self, entity):
        try:
            return self.models[entity_name(entity)]
        except KeyError:
            raise LookupError(f"Unknown entity '{entity}'")

    # Query building

    def _relation_field(self, model, name):
        for field in model._meta.get_fields():
            if field.is_relation and field.name == name:
                return field
        raise LookupError(f"'{name}' is not a relation of {model.__name__}")

    def _accessor(self, model, name):
        field = self._relation_field(model, name)
        if isinstance(field, ForeignObjectRel):
            return field.get_accessor_name()
        return field.name

    def _chain(self, entity, path):
        chain = self.graph.resolve_relation(entity, path)
        if chain is None:
            raise LookupError(f"'{path}' is not a relation of '{entity}'")
        return chain

    def _through_q(self, model, inclusion):
        """Q on the target of a many-to-many inclusion constraining its join rows."""
        parts = inclusion.path.split(".")
        owner = model
        for part in parts[:-1]:
            owner = self._relation_field(owner, part).related_model
        field = self._relation_field(owner, parts[-1])
        if isinstance(field, ForeignObjectRel) or not field.many_to_many:
            raise ImproperlyConfigured(f"'through' needs a many-to-many relation, '{inclusion.path}' is not one")

        through = field.remote_field.through
        target = field.related_model
        link = None
        for through_field in through._meta.fields:
            if through_field.is_relation and through_field.related_model is target:
                link = through_field.related_query_name()
                break

        where = inclusion.through.get("where") or {}
        return Q(**{f"{link}__{key}": value for key, value in where.items()})

    def _root_q(self, entity, plan):
        """One Q for the whole plan so conditions on a shared relation share its join."""
        q = build_q_object(plan.filters)
        for inclusion in plan.inclusions:
            if not inclusion.required:
                continue
            if inclusion.where is not None:
                q &= build_q_object(inclusion.where, prefix=inclusion.path)
            else:
                q &= Q(**{f"{orm_path(inclusion.path)}__isnull": False})
        return q

    def _apply_inclusions(self, queryset, entity, plan):
        model = self.model(entity)
        select = []
        prefetch = []
        for inclusion in plan.returned_inclusions:
            chain = self._chain(entity, inclusion.path)
            target = self.model(chain[-1].target)
            refined = inclusion.where is not None or inclusion.through
            if not refined and not any(r.is_to_many for r in chain):
                select.append(orm_path(inclusion.path))
                continue

            target_qs = target._default_manager.all()
            if inclusion.where is not None:
                target_qs = target_qs.filter(build_q_object(inclusion.where))
            if inclusion.through:
                target_qs = target_qs.filter(self._through_q(model, inclusion)).distinct()
            prefetch.append(Prefetch(orm_path(inclusion.path), queryset=target_qs))

        if select:
            queryset = queryset.select_related(*select)
        if prefetch:
            queryset = queryset.prefetch_related(*prefetch)
        return queryset

    def build_queryset(self, entity, plan):
        """Unsliced queryset for a plan."""
        model = self.model(entity)
        queryset = model._default_manager.filter(self._root_q(entity, plan))
        if plan.deduplicate:
            queryset = queryset.distinct()
        if plan.ordering:
            queryset = queryset.order_by(*[("-" if t.descending else "") + orm_path(t.path) for t in plan.ordering])
        return self._apply_inclusions(queryset, entity, plan)

    # Serialization

    def serialize(self, obj, entity, tree=None):
        """Row dict of concrete field attnames, with included relations nested."""
        if obj is None:
            return None
        row = {}
        for field in obj._meta.concrete_fields:
            row[field.attname] = getattr(obj, field.attname)

        for name, subtree in (tree or {}).items():
            relation = self.graph.entity(entity).relation(name)
            accessor = self._accessor(type(obj), name)
            if relation.is_to_many:
                related = getattr(obj, accessor).all()
                row[name] = [self.serialize(item, relation.target, subtree) for item in related]
            else:
                try:
                    related = getattr(obj, accessor)
                except ObjectDoesNotExist:
                    related = None
                row[name] = self.serialize(related, relation.target, subtree)
        return row

    @staticmethod
    def inclusion_tree(plan):
        """Nested dict of returned relation names, e.g. {"artist": {"label": {}}}."""
        tree = {}
        for inclusion in plan.returned_inclusions:
            node = tree
            for part in inclusion.path.split("."):
                node = node.setdefault(part, {})
        return tree

    # Store API

    def _run_query(self, entity, plan):
        queryset = self.build_queryset(entity, plan)
        total = queryset.count()
        if plan.pagination is not None:
            start = plan.pagination.offset
            queryset = queryset[start : start + plan.pagination.limit]
        tree = self.inclusion_tree(plan)
        return QueryResult([self.serialize(obj, entity, tree) for obj in queryset], total)

    async def execute_query(self, entity, plan):
        return await sync_to_async(self._run_query)(entity_name(entity), plan)

    def _find_many(self, entity, field, values):
        queryset = self.model(entity)._default_manager.filter(**{f"{field}__in": list(values)})
        return [self.serialize(obj, entity) for obj in queryset]

    def _find_one(self, entity, field, value):
        obj = self.model(entity)._default_manager.filter(**{field: value}).first()
        return self.serialize(obj, entity)

    async def find_one_by_field(self, entity, field, value):
        return await sync_to_async(self._find_one)(entity_name(entity), field, value)

    async def find_many_by_field(self, entity, field, values):
        return await sync_to_async(self._find_many)(entity_name(entity), field, values)

    def _create(self, entity, values):
        obj = self.model(entity)._default_manager.create(**values)
        return self.serialize(obj, entity)

    def _update(self, entity, pk, values, replace):
        model = self.model(entity)
        obj = model._default_manager.filter(pk=pk).first()
        if obj is None:
            return None
        if replace:
            for field in model._meta.concrete_fields:
                if field.primary_key or not field.editable or field.attname in values:
                    continue
                if field.default is NOT_PROVIDED and not field.null:
                    continue
                setattr(obj, field.attname, field.get_default())
        for key, value in values.items():
            setattr(obj, key, value)
        obj.save()
        return self.serialize(obj, entity)

    def _delete(self, entity, pk):
        deleted, _ = self.model(entity)._default_manager.filter(pk=pk).delete()
        return deleted > 0

    async def create(self, entity, values):
        return await sync_to_async(self._create)(entity_name(entity), values)

    async def update(self, entity, pk, values, replace=False):
        return await sync_to_async(self._update)(entity_name(entity), pk, values, replace)

    async def delete(self, entity, pk):
        return await sync_to_async(self._delete)(entity_name(entity), pk)
