"""
Django-Crudkit Type Coercion

Filter values arrive as strings (query parameters) or loosely typed JSON
(search bodies). Each declared field type has one coercer; the coercer for a
field is picked once, when the filter leaf is compiled.

Coercers raise ValueError on failure. The filter compiler turns that into a
TypeCoercionError for the offending field instead of comparing against a
silently wrong value.
"""

import datetime
import decimal
import enum
import math
import uuid


class FieldType(enum.Enum):
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    UUID = "uuid"
    JSON = "json"
    OTHER = "other"


TEXT_TYPES = frozenset({FieldType.STRING})

TRUE_VALUES = frozenset({"true", "1", "yes", "on"})
FALSE_VALUES = frozenset({"false", "0", "no", "off"})


def coerce_string(value):
    if isinstance(value, (dict, list)):
        raise ValueError("expected a scalar")
    return str(value)


def coerce_integer(value):
    if isinstance(value, bool):
        raise ValueError("expected an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError("expected an integer")
        return int(value)
    text = str(value).strip()
    try:
        return int(text)
    except (TypeError, ValueError):
        raise ValueError("expected an integer")


def coerce_float(value):
    if isinstance(value, bool):
        raise ValueError("expected a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError("expected a number")
    if not math.isfinite(number):
        raise ValueError("expected a finite number")
    return number


def coerce_decimal(value):
    if isinstance(value, bool):
        raise ValueError("expected a number")
    try:
        number = decimal.Decimal(str(value).strip())
    except (decimal.InvalidOperation, TypeError, ValueError):
        raise ValueError("expected a number")
    if not number.is_finite():
        raise ValueError("expected a finite number")
    return number


def coerce_boolean(value):
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ValueError("expected a boolean")


def coerce_date(value):
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    text = str(value).strip()
    if len(text) > 10:
        # A full timestamp is accepted and truncated to its date
        try:
            return coerce_datetime(text).date()
        except ValueError:
            raise ValueError("expected an ISO date")
    try:
        return datetime.date.fromisoformat(text)
    except ValueError:
        raise ValueError("expected an ISO date")


def coerce_datetime(value):
    if isinstance(value, datetime.datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.datetime.fromisoformat(text)
    except ValueError:
        raise ValueError("expected an ISO datetime")


def coerce_time(value):
    if isinstance(value, datetime.time):
        return value
    try:
        return datetime.time.fromisoformat(str(value).strip())
    except ValueError:
        raise ValueError("expected an ISO time")


def coerce_uuid(value):
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except ValueError:
        raise ValueError("expected a UUID")


def passthrough(value):
    return value


COERCERS = {
    FieldType.STRING: coerce_string,
    FieldType.INTEGER: coerce_integer,
    FieldType.FLOAT: coerce_float,
    FieldType.DECIMAL: coerce_decimal,
    FieldType.BOOLEAN: coerce_boolean,
    FieldType.DATE: coerce_date,
    FieldType.DATETIME: coerce_datetime,
    FieldType.TIME: coerce_time,
    FieldType.UUID: coerce_uuid,
    FieldType.JSON: passthrough,
    FieldType.OTHER: passthrough,
}


def coercer_for(field_type):
    """Return the coercion function for a declared field type."""
    return COERCERS.get(field_type, passthrough)


def coerce(field_type, value):
    """
    Coerce a client value to a declared field type.

    None passes through untouched (null comparisons are legal).

    Examples:
        >>> coerce(FieldType.INTEGER, "42")
        42
        >>> coerce(FieldType.BOOLEAN, "yes")
        True
        >>> coerce(FieldType.INTEGER, "x")
        Traceback (most recent call last):
        ...
        ValueError: expected an integer
    """
    if value is None:
        return None
    return coercer_for(field_type)(value)


def is_text(field_type):
    return field_type in TEXT_TYPES
