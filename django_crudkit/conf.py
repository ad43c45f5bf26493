"""
Django-Crudkit Settings

Configuration is read from Django settings under the DJANGO_CRUDKIT key.
All settings have sensible defaults.

Example:
    # settings.py
    DJANGO_CRUDKIT = {
        'DEFAULT_PAGE_SIZE': 50,
        'MAX_PAGE_SIZE': 200,
        'AUDIT_QUERIES': True,
    }
"""

from django.conf import settings

DEFAULTS = {
    # Pagination
    "DEFAULT_PAGE_SIZE": 100,
    "MAX_PAGE_SIZE": 1000,
    # Ordering
    "DEFAULT_ORDER_BY": "id",
    "DEFAULT_ORDER_DIR": "ASC",
    # Identifier mapping
    "AUTO_RELATION_ID_MAPPING": True,
    # De-duplicate root rows when relations are joined
    "DISABLE_SUBQUERY": True,
    # Logging
    "AUDIT_QUERIES": False,
    # Include offending field names in error payloads
    "EXPOSE_ERROR_DETAILS": True,
    # Security: CSRF protection stays on unless explicitly disabled
    "CSRF_EXEMPT": False,
}


class CrudSettings:
    """
    A settings object that allows django-crudkit settings to be accessed as
    properties. For example:

        from django_crudkit.conf import crud_settings
        print(crud_settings.DEFAULT_PAGE_SIZE)

    Settings can be overridden in Django settings.py under DJANGO_CRUDKIT key.
    """

    def __init__(self, defaults=None):
        self.defaults = defaults or DEFAULTS
        self._cached_attrs = set()

    @property
    def user_settings(self):
        if not hasattr(self, "_user_settings"):
            self._user_settings = getattr(settings, "DJANGO_CRUDKIT", {})
        return self._user_settings

    def __getattr__(self, attr):
        if attr not in self.defaults:
            raise AttributeError(f"Invalid django-crudkit setting: '{attr}'")

        try:
            val = self.user_settings[attr]
        except KeyError:
            val = self.defaults[attr]

        # Cache the result
        self._cached_attrs.add(attr)
        setattr(self, attr, val)
        return val

    def reload(self):
        """Reload settings (useful for testing)."""
        for attr in self._cached_attrs:
            try:
                delattr(self, attr)
            except AttributeError:
                pass
        self._cached_attrs.clear()
        if hasattr(self, "_user_settings"):
            delattr(self, "_user_settings")


crud_settings = CrudSettings(DEFAULTS)
