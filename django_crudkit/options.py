"""
Django-Crudkit Operation Configuration

Builds the configuration of one operation (list, search, single, create,
update, patch, destroy) from three layers, later layers winning:

1. Package settings (DJANGO_CRUDKIT)
2. Model configuration, the ``crudkit`` attribute of a model:

       class Artist(models.Model):
           crudkit = {
               "id_field": "external_id",
               "page_size": 25,
               "order_by": "name",
               "order_dir": "ASC",
               "operations": {"list": {"allow_filtering_on": ["name"]}},
           }

3. Options passed when the operation is created

Unknown keys and malformed values raise ImproperlyConfigured.
"""

from django.core.exceptions import ImproperlyConfigured

from django_crudkit.aliases import normalize_aliases
from django_crudkit.conf import crud_settings
from django_crudkit.flattening import normalize_flattening
from django_crudkit.ordering import parse_direction
from django_crudkit.schema import entity_name


OPERATIONS = ("list", "search", "single", "create", "update", "patch", "destroy")

OPTION_KEYS = frozenset(
    {
        "default_page_size",
        "max_page_size",
        "default_order_by",
        "default_order_dir",
        "allow_filtering",
        "allow_ordering",
        "allow_filtering_on",
        "block_filtering_on",
        "allow_ordering_on",
        "block_ordering_on",
        "meta_show_filters",
        "meta_show_ordering",
        "id_mapping",
        "relation_id_mapping",
        "auto_relation_id_mapping",
        "flattening",
        "disable_subquery",
        "include",
        "base_filters",
        "allowed_fields",
        "blocked_fields",
        "allow_bulk_create",
        "aliases",
    }
)

# Model-level shorthand -> option key
MODEL_KEYS = {
    "id_field": "id_mapping",
    "page_size": "default_page_size",
    "order_by": "default_order_by",
    "order_dir": "default_order_dir",
}

FIELD_LIST_KEYS = (
    "allow_filtering_on",
    "block_filtering_on",
    "allow_ordering_on",
    "block_ordering_on",
    "allowed_fields",
    "blocked_fields",
)


def default_options():
    return {
        "default_page_size": crud_settings.DEFAULT_PAGE_SIZE,
        "max_page_size": crud_settings.MAX_PAGE_SIZE,
        "default_order_by": crud_settings.DEFAULT_ORDER_BY,
        "default_order_dir": crud_settings.DEFAULT_ORDER_DIR,
        "allow_filtering": True,
        "allow_ordering": True,
        "allow_filtering_on": None,
        "block_filtering_on": None,
        "allow_ordering_on": None,
        "block_ordering_on": None,
        "meta_show_filters": False,
        "meta_show_ordering": False,
        "id_mapping": "id",
        "relation_id_mapping": [],
        "auto_relation_id_mapping": crud_settings.AUTO_RELATION_ID_MAPPING,
        "flattening": None,
        "disable_subquery": crud_settings.DISABLE_SUBQUERY,
        "include": [],
        "base_filters": None,
        "allowed_fields": None,
        "blocked_fields": None,
        "allow_bulk_create": False,
        "aliases": None,
    }


def model_options(operation, model_config):
    """Translate a model's crudkit attribute into option keys."""
    if not model_config:
        return {}
    if not isinstance(model_config, dict):
        raise ImproperlyConfigured("Model crudkit configuration must be a dict")

    options = {}
    for key, value in model_config.items():
        if key == "operations":
            continue
        if key in MODEL_KEYS:
            options[MODEL_KEYS[key]] = value
        elif key in OPTION_KEYS:
            options[key] = value
        else:
            raise ImproperlyConfigured(f"Unknown model configuration key: '{key}'")

    per_operation = model_config.get("operations") or {}
    if operation in per_operation:
        options.update(per_operation[operation] or {})
    return options


def _positive_int(options, key):
    value = options[key]
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ImproperlyConfigured(f"'{key}' must be a positive integer, got {value!r}")


def _normalize_relation_id_mapping(raw):
    if not raw:
        return []
    if isinstance(raw, dict):
        raw = [raw]
    mappings = []
    for item in raw:
        if not isinstance(item, dict) or "model" not in item or "id_field" not in item:
            raise ImproperlyConfigured("relation_id_mapping entries need 'model' and 'id_field'")
        mappings.append({"model": entity_name(item["model"]), "id_field": item["id_field"]})
    return mappings


def _normalize_include(raw):
    if not raw:
        return []
    if isinstance(raw, (str, dict)):
        raw = [raw]
    includes = []
    for item in raw:
        if isinstance(item, str):
            includes.append({"path": item, "required": False, "where": None, "through": None})
        elif isinstance(item, dict) and (item.get("path") or item.get("as")):
            includes.append(
                {
                    "path": item.get("path") or item.get("as"),
                    "required": bool(item.get("required", False)),
                    "where": item.get("where"),
                    "through": item.get("through"),
                }
            )
        else:
            raise ImproperlyConfigured(f"Invalid include entry: {item!r}")
    return includes


def build_operation_config(operation, model_config=None, options=None):
    """
    Merge settings, model configuration and call options for one operation.

    Args:
        operation: One of OPERATIONS
        model_config: The model's crudkit attribute (dict or None)
        options: Options given when wiring the operation

    Returns:
        Dict with every OPTION_KEYS entry, normalized

    Raises:
        ImproperlyConfigured: unknown operation, unknown key or bad value
    """
    if operation not in OPERATIONS:
        raise ImproperlyConfigured(f"Unknown operation: '{operation}'")

    options = dict(options or {})
    unknown = sorted(set(options) - OPTION_KEYS)
    if unknown:
        raise ImproperlyConfigured(f"Unknown option(s) for {operation}: {', '.join(unknown)}")

    config = default_options()
    config.update(model_options(operation, model_config))
    config.update(options)

    _positive_int(config, "default_page_size")
    if config["max_page_size"] is not None:
        _positive_int(config, "max_page_size")

    direction = parse_direction(config["default_order_dir"])
    if direction is None:
        raise ImproperlyConfigured(f"'default_order_dir' must be ASC or DESC, got {config['default_order_dir']!r}")
    config["default_order_dir"] = direction

    if not isinstance(config["id_mapping"], str) or not config["id_mapping"]:
        raise ImproperlyConfigured("'id_mapping' must be a field name")

    for key in FIELD_LIST_KEYS:
        value = config[key]
        if value is not None and not isinstance(value, (list, tuple)):
            raise ImproperlyConfigured(f"'{key}' must be a list of field names")

    base_filters = config["base_filters"]
    if base_filters is not None and not isinstance(base_filters, (dict, list)):
        raise ImproperlyConfigured("'base_filters' must be a filter mapping")

    config["relation_id_mapping"] = _normalize_relation_id_mapping(config["relation_id_mapping"])
    config["include"] = _normalize_include(config["include"])
    config["flattening"] = normalize_flattening(config["flattening"])
    config["aliases"] = normalize_aliases(config["aliases"])
    return config
