"""
Django-Crudkit Errors

Every client-facing failure of the request pipeline is a CrudError.
Compilers collect all offending fields of a request before raising, so a
single error lists every problem the client has to fix.

    CrudError
    ├── BadRequest              (400)
    │   ├── PolicyRejection     field not permitted / unknown / bad operator
    │   ├── TypeCoercionError   value does not fit the declared field type
    │   └── PaginationError     non-positive, non-numeric or oversize page/size
    └── NotFound                (404)
        ├── RelatedRecordNotFound   external id lookup found no row
        └── RecordNotFound          root record lookup found no row
"""


class FieldError:
    """A single offending field and the reason it was rejected."""

    __slots__ = ("field", "reason")

    def __init__(self, field, reason):
        self.field = field
        self.reason = reason

    def to_dict(self):
        return {"field": self.field, "reason": self.reason}

    def __eq__(self, other):
        if not isinstance(other, FieldError):
            return NotImplemented
        return (self.field, self.reason) == (other.field, other.reason)

    def __hash__(self):
        return hash((self.field, self.reason))

    def __repr__(self):
        return f"FieldError({self.field!r}, {self.reason!r})"


class CrudError(Exception):
    """Base class for errors surfaced to the client."""

    code = "INTERNAL_ERROR"
    default_message = "An error occurred"

    def __init__(self, message=None, errors=None):
        self.message = message or self.default_message
        self.errors = list(errors or [])
        super().__init__(self.message)

    @property
    def fields(self):
        """Offending field names, in the order they were found."""
        return list(dict.fromkeys(e.field for e in self.errors))


class BadRequest(CrudError):
    code = "BAD_REQUEST"
    default_message = "Bad request"


class PolicyRejection(BadRequest):
    default_message = "Field not permitted"


class TypeCoercionError(BadRequest):
    default_message = "Invalid value for field"


class PaginationError(BadRequest):
    default_message = "Invalid pagination"


class NotFound(CrudError):
    code = "NOT_FOUND"
    default_message = "Not found"


class RelatedRecordNotFound(NotFound):
    default_message = "Related record not found"


class RecordNotFound(NotFound):
    default_message = "Record not found"


def raise_collected(errors, policy_errors=()):
    """
    Raise the aggregated error for a compilation pass, if any.

    Policy problems (unknown or forbidden fields, bad operators) take
    precedence; coercion failures are reported only when every field was
    otherwise acceptable.
    """
    if policy_errors:
        names = ", ".join(dict.fromkeys(e.field for e in policy_errors))
        raise PolicyRejection(f"Field not permitted: {names}", policy_errors)
    if errors:
        names = ", ".join(dict.fromkeys(e.field for e in errors))
        raise TypeCoercionError(f"Invalid value for field: {names}", errors)
