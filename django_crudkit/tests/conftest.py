"""
Pytest configuration for django-crudkit tests.
"""

import os
import sys

import pytest

# Add the package root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))


def pytest_configure():
    """Configure Django settings before tests run."""
    from django.conf import settings

    if not settings.configured:
        settings.configure(
            SECRET_KEY="test-secret-key",
            DEBUG=True,
            INSTALLED_APPS=[
                "django.contrib.contenttypes",
                "django.contrib.auth",
                "django_crudkit",
            ],
            DATABASES={
                "default": {
                    "ENGINE": "django.db.backends.sqlite3",
                    "NAME": ":memory:",
                }
            },
            DEFAULT_AUTO_FIELD="django.db.models.BigAutoField",
            USE_TZ=True,
            DJANGO_CRUDKIT={
                "DEFAULT_PAGE_SIZE": 100,
                "MAX_PAGE_SIZE": 1000,
            },
        )

    import django

    django.setup()

    # Register the test models with the django_crudkit app
    import crud_models  # noqa: F401


@pytest.fixture(scope="session")
def django_db_setup(django_db_setup, django_db_blocker):
    """Create tables for the test models, which have no migrations."""
    from django.db import connection

    from crud_models import Album, AlbumTag, Artist, Label, Tag

    with django_db_blocker.unblock():
        with connection.schema_editor() as editor:
            for model in (Label, Artist, Tag, Album, AlbumTag):
                editor.create_model(model)


@pytest.fixture(autouse=True)
def reset_crud_settings():
    """Drop cached settings so override_settings-style changes are seen."""
    from django_crudkit.conf import crud_settings

    crud_settings.reload()
    yield
    crud_settings.reload()


@pytest.fixture
def music_store():
    from memory_store import music_store

    return music_store()


@pytest.fixture
def status_store():
    """150 albums, 75 of them active."""
    from memory_store import music_store

    albums = []
    for i in range(1, 151):
        albums.append(
            {
                "id": i,
                "title": f"album-{i:03d}",
                "status": "active" if i % 2 == 0 else "archived",
                "score": i % 10,
                "released": None,
                "is_live": False,
                "artist_id": None,
            }
        )
    return music_store(albums=albums)
