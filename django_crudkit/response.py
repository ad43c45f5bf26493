"""
Django-Crudkit Response Utilities

Response envelope and serialization for CRUD operations.

Features:
- Response code management (code -> HTTP status)
- Error envelope with offending field names
- JSON serialization of dates, decimals and UUIDs via DjangoJSONEncoder
"""

import datetime
import decimal
import uuid

from django.core.serializers.json import DjangoJSONEncoder

from django_crudkit.conf import crud_settings


def serialize_value(value):
    """
    Serialize a value for a JSON response.

    Handles:
    - datetime, date, time -> ISO format string
    - Decimal -> string (no precision loss)
    - UUID -> string
    - dicts and lists recursively

    Examples:
        >>> serialize_value(datetime.date(2024, 1, 2))
        '2024-01-02'
        >>> serialize_value({"a": [uuid.UUID(int=1)]})
        {'a': ['00000000-0000-0000-0000-000000000001']}
    """
    if value is None:
        return None

    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}

    if isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]

    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()

    if isinstance(value, decimal.Decimal):
        return str(value)

    if isinstance(value, uuid.UUID):
        return str(value)

    return value


class CrudResponse:
    """
    Response builder for CRUD operations.

    Example:
        >>> CrudResponse.ok(record={"id": 1}).to_dict()
        {'success': True, 'record': {'id': 1}}

        >>> CrudResponse.error("NOT_FOUND", "Record not found").to_dict()
        {'success': False, 'error': 'Record not found'}
    """

    # Map response codes to HTTP status codes
    STATUS_MAP = {
        "OK": 200,
        "CREATED": 201,
        "BAD_REQUEST": 400,
        "INVALID_JSON": 400,
        "NOT_FOUND": 404,
        "METHOD_NOT_ALLOWED": 405,
        "INTERNAL_ERROR": 500,
    }

    # Messages for response codes
    MSG_MAP = {
        "OK": "Success",
        "CREATED": "Created successfully",
        "BAD_REQUEST": "Bad request",
        "INVALID_JSON": "Invalid JSON in request body",
        "NOT_FOUND": "Not found",
        "METHOD_NOT_ALLOWED": "Method not allowed",
        "INTERNAL_ERROR": "Internal server error",
    }

    def __init__(self, code="OK", error_message=None, fields=None, body=None, **data):
        self.code = code
        self.error_message = error_message
        self.fields = list(fields or [])
        self.body = body
        self.data = data

    @property
    def success(self):
        return self.code in ("OK", "CREATED")

    @property
    def http_status(self):
        return self.STATUS_MAP.get(self.code, 500)

    @classmethod
    def ok(cls, **data):
        return cls(code="OK", **data)

    @classmethod
    def created(cls, **data):
        return cls(code="CREATED", **data)

    @classmethod
    def error(cls, code, message=None, fields=None):
        return cls(code=code, error_message=message or cls.MSG_MAP.get(code, "An error occurred"), fields=fields)

    @classmethod
    def from_exception(cls, exc):
        """Build an error response from a CrudError."""
        return cls.error(exc.code, exc.message, exc.fields)

    def to_dict(self):
        """
        Convert response to dictionary for JSON serialization.

        Success: {"success": true, **data}
        Error:   {"success": false, "error": message, "fields"?: [...]}

        A response built with body (bulk create) serializes to that body.
        """
        if self.body is not None:
            return serialize_value(self.body)

        result = {"success": self.success}

        if not self.success:
            result["error"] = self.error_message or self.MSG_MAP.get(self.code, "An error occurred")
            if self.fields and crud_settings.EXPOSE_ERROR_DETAILS:
                result["fields"] = self.fields

        result.update(serialize_value(self.data))
        return result

    def to_json_response(self):
        """Convert to a Django JsonResponse with the mapped HTTP status."""
        from django.http import JsonResponse

        return JsonResponse(
            self.to_dict(),
            status=self.http_status,
            encoder=DjangoJSONEncoder,
            safe=False,
        )

    def __repr__(self):
        return f"<CrudResponse {self.code}>"
