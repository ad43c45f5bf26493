"""
End-to-end tests for django_crudkit.pipeline against the in-memory store.
"""

import logging

import pytest
from asgiref.sync import async_to_sync


def operation(store, entity, name, **options):
    from django_crudkit.pipeline import CrudOperation

    return CrudOperation(store, entity, name, options)


def run(op, method, *args):
    return async_to_sync(getattr(op, f"handle_{method}"))(*args)


def ids(response):
    return [row["id"] for row in response.data["data"]]


class TestOperationSetup:
    """Configuration errors surface when the operation is created."""

    def test_unknown_entity(self, music_store):
        from django.core.exceptions import ImproperlyConfigured

        with pytest.raises(ImproperlyConfigured):
            operation(music_store, "track", "list")

    def test_unknown_option(self, music_store):
        from django.core.exceptions import ImproperlyConfigured

        with pytest.raises(ImproperlyConfigured):
            operation(music_store, "album", "list", page_limit=10)

    def test_flattening_model_mismatch(self, music_store):
        from django.core.exceptions import ImproperlyConfigured

        with pytest.raises(ImproperlyConfigured) as exc_info:
            operation(music_store, "album", "list", flattening={"model": "label", "as": "artist", "attributes": ["name"]})
        assert "does not match" in str(exc_info.value)

    def test_flattening_unknown_attribute(self, music_store):
        from django.core.exceptions import ImproperlyConfigured

        with pytest.raises(ImproperlyConfigured):
            operation(music_store, "album", "list", flattening={"model": "artist", "as": "artist", "attributes": ["genre"]})

    def test_relation_id_mapping_unknown_field(self, music_store):
        from django.core.exceptions import ImproperlyConfigured

        with pytest.raises(ImproperlyConfigured):
            operation(music_store, "album", "list", relation_id_mapping=[{"model": "artist", "id_field": "uuid"}])

    def test_include_must_be_relation(self, music_store):
        from django.core.exceptions import ImproperlyConfigured

        with pytest.raises(ImproperlyConfigured):
            operation(music_store, "album", "list", include=["title"])

    def test_invalid_include_where(self, music_store):
        from django.core.exceptions import ImproperlyConfigured

        with pytest.raises(ImproperlyConfigured):
            operation(music_store, "album", "list", include=[{"path": "artist", "where": {"genre": "rock"}}])


class TestList:
    """Tests for handle_list."""

    def test_filter_and_paging_meta(self, status_store):
        response = run(operation(status_store, "album", "list"), "list", {"status": "active"})

        assert response.http_status == 200
        assert len(response.data["data"]) == 75
        assert response.data["meta"]["paging"] == {"page": 1, "size": 100, "count": 75, "total_pages": 1}

    def test_second_page(self, status_store):
        params = {"status": "active", "api:page": "2", "api:page_size": "10"}
        response = run(operation(status_store, "album", "list"), "list", params)

        assert ids(response) == list(range(22, 42, 2))
        assert response.data["meta"]["paging"] == {"page": 2, "size": 10, "count": 75, "total_pages": 8}

    def test_page_past_the_end(self, status_store):
        response = run(operation(status_store, "album", "list"), "list", {"api:page": "9", "api:page_size": "20"})

        assert response.data["data"] == []
        assert response.data["meta"]["paging"]["count"] == 150

    def test_ordering_with_tie_break(self, music_store):
        response = run(operation(music_store, "album", "list"), "list", {"api:order_by": "-score,+title"})
        assert ids(response) == [3, 5, 2, 1, 4]

    def test_global_order_direction(self, music_store):
        response = run(operation(music_store, "album", "list"), "list", {"api:order_by": "title", "api:order_dir": "DESC"})
        assert ids(response) == [5, 4, 1, 2, 3]

    def test_default_ordering(self, music_store):
        response = run(operation(music_store, "album", "list", default_order_dir="DESC"), "list", {})
        assert ids(response) == [5, 4, 3, 2, 1]

    def test_two_hop_relation_filter(self, music_store):
        response = run(operation(music_store, "album", "list"), "list", {"artist.label.name": "WARNER"})

        assert ids(response) == [1, 3]
        assert response.data["meta"]["paging"]["count"] == 2

    def test_to_many_filter_returns_each_root_once(self, music_store):
        response = run(operation(music_store, "artist", "list"), "list", {"albums.status": "active"})

        assert ids(response) == ["art-a", "art-b", "art-c"]
        assert response.data["meta"]["paging"]["count"] == 3

    def test_in_filter_on_ids(self, music_store):
        response = run(operation(music_store, "album", "list"), "list", {"id:in": "2,4,9"})
        assert ids(response) == [2, 4]

    def test_external_foreign_key_filter(self, music_store):
        op = operation(music_store, "album", "list")

        assert ids(run(op, "list", {"artist_id": "art-a"})) == [1, 3]
        assert ids(run(op, "list", {"artist": "art-a"})) == [1, 3]
        assert ids(run(op, "list", {"artist.id": "art-a"})) == [1, 3]
        assert ids(run(op, "list", {"artist_id:in": "art-b,art-c"})) == [2, 5]

    def test_unknown_external_id_is_not_found(self, music_store):
        response = run(operation(music_store, "album", "list"), "list", {"artist_id:in": "art-a,nope"})

        assert response.http_status == 404
        assert response.to_dict() == {
            "success": False,
            "error": "Related record not found: artist_id",
            "fields": ["artist_id"],
        }
        assert music_store.called("execute_query") == []

    def test_partial_match_on_external_foreign_key_rejected(self, music_store):
        response = run(operation(music_store, "album", "list"), "list", {"artist_id:starts_with": "art"})

        assert response.http_status == 400
        assert response.to_dict()["fields"] == ["artist_id"]
        assert music_store.calls == []

    def test_rows_carry_external_ids(self, music_store):
        response = run(operation(music_store, "album", "list"), "list", {"api:order_by": "id"})

        assert [row["artist_id"] for row in response.data["data"]] == ["art-a", "art-b", "art-a", None, "art-c"]

    def test_artist_rows_addressed_by_external_id(self, music_store):
        response = run(operation(music_store, "artist", "list"), "list", {"country": "us"})

        assert response.data["data"] == [
            {"id": "art-a", "name": "Alpha", "country": "US", "label_id": "WRN"},
            {"id": "art-c", "name": "Charlie", "country": "US", "label_id": None},
        ]

    def test_base_filters_always_apply(self, music_store):
        op = operation(music_store, "album", "list", base_filters={"status": "active"})

        assert ids(run(op, "list", {})) == [1, 2, 4, 5]
        assert ids(run(op, "list", {"score:gte": "75"})) == [5]

    def test_base_filters_exempt_from_policy(self, music_store):
        op = operation(music_store, "album", "list", base_filters={"status": "active"}, allow_filtering_on=["title"])
        assert ids(run(op, "list", {"title": "echo"})) == [5]

    def test_filtering_disabled_ignores_filters(self, music_store):
        op = operation(music_store, "album", "list", allow_filtering=False, meta_show_filters=True)
        response = run(op, "list", {"status": "archived", "bogus": "1"})

        assert len(response.data["data"]) == 5
        assert response.data["meta"]["filters"] == {}

    def test_ordering_disabled_uses_default(self, music_store):
        op = operation(music_store, "album", "list", allow_ordering=False, meta_show_ordering=True)
        response = run(op, "list", {"api:order_by": "-score"})

        assert ids(response) == [1, 2, 3, 4, 5]
        assert response.data["meta"]["ordering"] == [["id", "ASC"]]

    def test_meta_echo(self, music_store):
        op = operation(music_store, "album", "list", meta_show_filters=True, meta_show_ordering=True)
        response = run(op, "list", {"status": "active", "api:order_by": "-score,title", "api:page_size": "2"})

        assert response.data["meta"] == {
            "paging": {"page": 1, "size": 2, "count": 4, "total_pages": 2},
            "ordering": [["score", "DESC"], ["title", "ASC"]],
            "filters": {"status": "active"},
        }

    def test_meta_echoes_filters_as_received(self, music_store):
        op = operation(music_store, "album", "list", meta_show_filters=True)
        response = run(op, "list", {"id:in": "1,2", "api:page": "1"})

        assert ids(response) == [1, 2]
        assert response.data["meta"]["filters"] == {"id:in": "1,2"}


class TestListRejections:
    """Requests rejected before the store is queried."""

    def test_unknown_field_rejected_without_store_call(self, music_store):
        response = run(operation(music_store, "album", "list"), "list", {"bogus": "1"})

        assert response.http_status == 400
        assert response.to_dict()["fields"] == ["bogus"]
        assert music_store.calls == []

    def test_policy_rejection(self, music_store):
        op = operation(music_store, "album", "list", allow_filtering_on=["title", "artist.*"])
        response = run(op, "list", {"score:gt": "1", "artist.name": "Alpha", "status": "x"})

        assert response.http_status == 400
        assert response.to_dict()["fields"] == ["score", "status"]

    def test_policy_rejection_before_coercion(self, music_store):
        response = run(operation(music_store, "album", "list"), "list", {"score": "abc", "bogus": "1"})
        assert response.error_message == "Field not permitted: bogus"

    def test_coercion_error(self, music_store):
        response = run(operation(music_store, "album", "list"), "list", {"score": "abc"})

        assert response.http_status == 400
        assert response.error_message == "Invalid value for field: score"

    def test_order_policy(self, music_store):
        op = operation(music_store, "album", "list", block_ordering_on=["score"])
        response = run(op, "list", {"api:order_by": "-score"})

        assert response.http_status == 400
        assert response.to_dict()["fields"] == ["score"]

    @pytest.mark.parametrize(
        "params,fields",
        [
            ({"api:page": "0"}, ["api:page"]),
            ({"api:page": "-1"}, ["api:page"]),
            ({"api:page_size": "1001"}, ["api:page_size"]),
            ({"api:page": "x", "api:page_size": "0"}, ["api:page", "api:page_size"]),
        ],
    )
    def test_pagination_bounds(self, music_store, params, fields):
        response = run(operation(music_store, "album", "list"), "list", params)

        assert response.http_status == 400
        assert response.to_dict()["fields"] == fields
        assert music_store.calls == []

    def test_max_page_size_from_options(self, music_store):
        op = operation(music_store, "album", "list", max_page_size=2)

        assert run(op, "list", {"api:page_size": "2"}).http_status == 200
        assert run(op, "list", {"api:page_size": "3"}).http_status == 400

    def test_rejection_logged(self, music_store, caplog):
        with caplog.at_level(logging.WARNING, logger="django_crudkit"):
            run(operation(music_store, "album", "list"), "list", {"bogus": "1"})

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.entity == "album"
        assert record.fields == ["bogus"]


class TestSearch:
    """Tests for handle_search."""

    def test_structured_body(self, music_store):
        body = {
            "filtering": {"or": [{"score:gte": 90}, {"title": "bravo"}]},
            "ordering": [{"order_by": "id", "direction": "DESC"}],
            "paging": {"page": 1, "size": 10},
        }
        response = run(operation(music_store, "album", "search"), "search", body)

        assert ids(response) == [3, 2]
        assert response.data["meta"]["paging"] == {"page": 1, "size": 10, "count": 2, "total_pages": 1}

    def test_leaf_dicts(self, music_store):
        body = {
            "filtering": {
                "and": [
                    {"field": "score", "operator": ">", "value": 60},
                    {"field": "status", "value": "ACTIVE"},
                ]
            }
        }
        assert ids(run(operation(music_store, "album", "search"), "search", body)) == [1, 2, 5]

    def test_empty_body(self, music_store):
        response = run(operation(music_store, "album", "search"), "search", None)
        assert len(response.data["data"]) == 5

    def test_invalid_paging(self, music_store):
        response = run(operation(music_store, "album", "search"), "search", {"paging": {"size": 0}})

        assert response.http_status == 400
        assert response.to_dict()["fields"] == ["paging.size"]

    def test_body_must_be_object(self, music_store):
        response = run(operation(music_store, "album", "search"), "search", ["status"])
        assert response.http_status == 400


class TestFlattening:
    """Flattened relation attributes in list responses."""

    ARTIST_NAME = {"model": "artist", "as": "artist", "attributes": [["name", "artist_name"]], "required": False}

    def test_left_join_null(self, music_store):
        response = run(operation(music_store, "album", "list", flattening=self.ARTIST_NAME), "list", {})
        rows = response.data["data"]

        assert [row["artist_name"] for row in rows] == ["Alpha", "Bravo", "Alpha", None, "Charlie"]
        assert all("artist" not in row for row in rows)
        assert rows[0]["artist_id"] == "art-a"

    def test_required_inner_join(self, music_store):
        rule = dict(self.ARTIST_NAME, required=True)
        response = run(operation(music_store, "album", "list", flattening=rule), "list", {})

        assert ids(response) == [1, 2, 3, 5]
        assert response.data["meta"]["paging"]["count"] == 4

    def test_default_is_inner_join(self, music_store):
        rule = {"model": "artist", "as": "artist", "attributes": [["name", "artist_name"]]}
        response = run(operation(music_store, "album", "list", flattening=rule), "list", {})
        assert ids(response) == [1, 2, 3, 5]

    def test_explicit_include_keeps_left_join(self, music_store):
        rule = {"model": "artist", "as": "artist", "attributes": [["name", "artist_name"]]}
        op = operation(music_store, "album", "list", include=["artist"], flattening=rule)
        response = run(op, "list", {})
        rows = response.data["data"]

        assert response.data["meta"]["paging"]["count"] == 5
        assert [row["artist_name"] for row in rows] == ["Alpha", "Bravo", "Alpha", None, "Charlie"]
        assert all("artist" not in row for row in rows)

    def test_explicit_required_overrides_include(self, music_store):
        rule = {"model": "artist", "as": "artist", "attributes": [["name", "artist_name"]], "required": True}
        op = operation(music_store, "album", "list", include=["artist"], flattening=rule)
        assert ids(run(op, "list", {})) == [1, 2, 3, 5]

    def test_mapped_id_field_lifted(self, music_store):
        rule = {"model": "artist", "as": "artist", "attributes": ["external_id", "name"]}
        row = run(operation(music_store, "album", "list", flattening=rule), "list", {"title": "charlie"}).data["data"][0]

        assert row["external_id"] == "art-a"
        assert row["name"] == "Alpha"
        assert row["artist_id"] == "art-a"

    def test_filter_and_order_by_exposed_name(self, music_store):
        op = operation(music_store, "album", "list", flattening=self.ARTIST_NAME)

        assert ids(run(op, "list", {"artist_name": "bravo"})) == [2]
        assert ids(run(op, "list", {"api:order_by": "artist_name"})) == [4, 1, 3, 2, 5]

    def test_exposed_name_checked_by_policy(self, music_store):
        op = operation(music_store, "album", "list", flattening=self.ARTIST_NAME, allow_filtering_on=["title"])
        response = run(op, "list", {"artist_name": "Bravo"})
        assert response.to_dict()["fields"] == ["artist_name"]

    def test_where_constrains_join(self, music_store):
        rule = {"model": "artist", "as": "artist", "attributes": [["country", "artist_country"]], "where": {"country": "US"}}
        response = run(operation(music_store, "album", "list", flattening=rule), "list", {})

        assert ids(response) == [1, 3, 5]
        assert {row["artist_country"] for row in response.data["data"]} == {"US"}

    def test_bare_attribute_does_not_overwrite_root_field(self, music_store):
        rule = {"model": "artist", "as": "artist", "attributes": ["name", "id", ["id", "artist_ref"]], "required": False}
        op = operation(music_store, "album", "list", flattening=rule)
        row = run(op, "list", {"id": "1"}).data["data"][0]

        assert row["id"] == 1
        assert row["name"] == "Alpha"
        assert row["artist_ref"] == "art-a"

    def test_nested_flattening(self, music_store):
        rule = {"model": "label", "as": "artist.label", "attributes": [["name", "label_name"]], "required": False}
        response = run(operation(music_store, "album", "list", flattening=rule), "list", {"api:order_by": "id"})

        assert [row["label_name"] for row in response.data["data"]] == ["warner", "sony", "warner", None, None]


class TestAliases:
    """External field names mapped onto internal fields."""

    ALIASES = {"name": "title", "rating": "score"}

    def test_rows_use_external_names(self, music_store):
        op = operation(music_store, "album", "list", aliases=self.ALIASES)
        row = run(op, "list", {"id": "1"}).data["data"][0]

        assert row["name"] == "charlie"
        assert row["rating"] == 70
        assert "title" not in row
        assert "score" not in row

    def test_filter_and_order_by_alias(self, music_store):
        op = operation(music_store, "album", "list", aliases=self.ALIASES)

        assert ids(run(op, "list", {"name": "BRAVO"})) == [2]
        assert ids(run(op, "list", {"rating:gte": "80"})) == [3, 5]
        assert ids(run(op, "list", {"api:order_by": "-rating,name"})) == [3, 5, 2, 1, 4]

    def test_internal_names_still_accepted(self, music_store):
        op = operation(music_store, "album", "list", aliases=self.ALIASES)
        assert ids(run(op, "list", {"title": "echo"})) == [5]

    def test_default_order_by_alias(self, music_store):
        op = operation(music_store, "album", "list", aliases=self.ALIASES, default_order_by="rating")
        assert ids(run(op, "list", {})) == [4, 1, 2, 5, 3]

    def test_policy_lists_accept_either_name(self, music_store):
        op = operation(music_store, "album", "list", aliases=self.ALIASES, allow_filtering_on=["name"], block_ordering_on=["score"])

        assert run(op, "list", {"title": "echo"}).http_status == 200
        response = run(op, "list", {"rating": "70"})
        assert response.http_status == 400
        assert response.to_dict()["fields"] == ["rating"]
        assert run(op, "list", {"api:order_by": "rating"}).http_status == 400

    def test_aliased_id(self, music_store):
        op = operation(music_store, "album", "list", aliases={"albumId": "id"})
        rows = run(op, "list", {"albumId:in": "2,3"}).data["data"]

        assert [row["albumId"] for row in rows] == [2, 3]
        assert all("id" not in row for row in rows)

    def test_single_record_renamed(self, music_store):
        op = operation(music_store, "album", "single", aliases=self.ALIASES)
        assert run(op, "single", "5").data["record"]["name"] == "echo"

    def test_create_with_aliases(self, music_store):
        op = operation(music_store, "album", "create", aliases=self.ALIASES)
        response = run(op, "create", {"name": "golf", "rating": 5})

        assert response.http_status == 201
        created = music_store.tables["album"][-1]
        assert (created["title"], created["score"]) == ("golf", 5)

    def test_write_errors_name_the_sent_field(self, music_store):
        op = operation(music_store, "album", "patch", aliases=self.ALIASES, allowed_fields=["name"])
        response = run(op, "patch", "1", {"name": "x", "rating": 1})

        assert response.to_dict()["fields"] == ["rating"]
        assert music_store.called("update") == []

    def test_alias_to_missing_field(self, music_store):
        from django.core.exceptions import ImproperlyConfigured

        with pytest.raises(ImproperlyConfigured):
            operation(music_store, "album", "list", aliases={"genre": "style"})


class TestIncludes:
    """Configured inclusions return nested rows."""

    def test_nested_rows_use_external_ids(self, music_store):
        op = operation(music_store, "album", "list", include=["artist.label"])
        row = run(op, "list", {"id": "1"}).data["data"][0]

        assert row["artist"]["id"] == "art-a"
        assert row["artist"]["label_id"] == "WRN"
        assert row["artist"]["label"] == {"id": "WRN", "code": "WRN", "name": "warner"}

    def test_to_many_include(self, music_store):
        op = operation(music_store, "artist", "list", include=[{"path": "albums", "where": {"status": "active"}}])
        rows = run(op, "list", {"id": "art-a"}).data["data"]

        assert [album["id"] for album in rows[0]["albums"]] == [1]

    def test_required_include(self, music_store):
        op = operation(music_store, "artist", "list", include=[{"path": "label", "required": True}])
        assert ids(run(op, "list", {})) == ["art-a", "art-b"]


class TestSingle:
    """Tests for handle_single."""

    def test_found(self, music_store):
        response = run(operation(music_store, "album", "single"), "single", "3")

        assert response.http_status == 200
        assert response.data["record"]["title"] == "alpha"
        assert response.data["record"]["artist_id"] == "art-a"

    def test_external_id(self, music_store):
        response = run(operation(music_store, "artist", "single"), "single", "art-b")
        assert response.data["record"] == {"id": "art-b", "name": "Bravo", "country": "UK", "label_id": "SNY"}

    def test_not_found(self, music_store):
        response = run(operation(music_store, "album", "single"), "single", "99")

        assert response.http_status == 404
        assert response.to_dict() == {"success": False, "error": "Record not found"}

    def test_invalid_id(self, music_store):
        response = run(operation(music_store, "album", "single"), "single", "abc")

        assert response.http_status == 400
        assert response.to_dict()["fields"] == ["id"]

    def test_base_filters_hide_record(self, music_store):
        op = operation(music_store, "album", "single", base_filters={"status": "active"})

        assert run(op, "single", "3").http_status == 404
        assert run(op, "single", "2").http_status == 200

    def test_query_filters_narrow_lookup(self, music_store):
        op = operation(music_store, "album", "single")

        assert run(op, "single", "3", {"status": "active"}).http_status == 404
        assert run(op, "single", "3", {"status": "archived"}).http_status == 200

    def test_flattened_record(self, music_store):
        op = operation(music_store, "album", "single", flattening={"model": "artist", "as": "artist", "attributes": [["name", "artist_name"]]})
        assert run(op, "single", "2").data["record"]["artist_name"] == "Bravo"


class TestCreate:
    """Tests for handle_create."""

    def test_create(self, music_store):
        body = {"title": "foxtrot", "artist_id": "art-b", "score": 10}
        response = run(operation(music_store, "album", "create"), "create", body)

        assert response.http_status == 201
        assert response.to_dict() == {"success": True, "id": 6}
        assert music_store.tables["album"][-1]["artist_id"] == 11

    def test_relation_name_accepted(self, music_store):
        run(operation(music_store, "album", "create"), "create", {"title": "golf", "artist": "art-c"})
        assert music_store.tables["album"][-1]["artist_id"] == 12

    def test_external_id_stored_in_id_field(self, music_store):
        body = {"id": "art-z", "name": "Zulu", "label": "SNY"}
        response = run(operation(music_store, "artist", "create"), "create", body)

        assert response.to_dict() == {"success": True, "id": "art-z"}
        created = music_store.tables["artist"][-1]
        assert created["external_id"] == "art-z"
        assert created["label_id"] == 2

    def test_unknown_reference(self, music_store):
        response = run(operation(music_store, "album", "create"), "create", {"title": "x", "artist_id": "nope"})

        assert response.http_status == 404
        assert music_store.called("create") == []

    def test_unknown_field(self, music_store):
        response = run(operation(music_store, "album", "create"), "create", {"title": "x", "genre": "rock"})

        assert response.http_status == 400
        assert response.to_dict()["fields"] == ["genre"]

    def test_write_policy(self, music_store):
        op = operation(music_store, "album", "create", allowed_fields=["title", "status"], blocked_fields=["status"])
        response = run(op, "create", {"title": "x", "status": "active", "score": 1})

        assert response.to_dict()["fields"] == ["status", "score"]
        assert music_store.called("create") == []

    def test_bulk_not_allowed(self, music_store):
        response = run(operation(music_store, "album", "create"), "create", [{"title": "a"}, {"title": "b"}])

        assert response.http_status == 400
        assert response.error_message == "Cannot insert multiple records."

    def test_bulk(self, music_store):
        op = operation(music_store, "album", "create", allow_bulk_create=True)
        response = run(op, "create", [{"title": "a", "artist": "art-a"}, {"title": "b"}])
        body = response.to_dict()

        assert response.http_status == 201
        assert [row["id"] for row in body] == [6, 7]
        assert [row["artist_id"] for row in body] == ["art-a", None]

    def test_bulk_validates_before_writing(self, music_store):
        op = operation(music_store, "album", "create", allow_bulk_create=True)
        response = run(op, "create", [{"title": "a"}, {"title": "b", "genre": "x"}])

        assert response.http_status == 400
        assert music_store.called("create") == []


class TestUpdateAndPatch:
    """Tests for handle_update and handle_patch."""

    def test_patch_changes_given_fields(self, music_store):
        response = run(operation(music_store, "album", "patch"), "patch", "1", {"score": 99})

        assert response.to_dict() == {"success": True, "id": 1}
        row = music_store.tables["album"][0]
        assert row["score"] == 99
        assert row["title"] == "charlie"

    def test_update_replaces(self, music_store):
        run(operation(music_store, "album", "update"), "update", "1", {"title": "renamed"})

        row = music_store.tables["album"][0]
        assert row["title"] == "renamed"
        assert row["score"] is None

    def test_patch_by_external_id(self, music_store):
        response = run(operation(music_store, "artist", "patch"), "patch", "art-c", {"label": "WRN"})

        assert response.to_dict() == {"success": True, "id": "art-c"}
        assert music_store.tables["artist"][2]["label_id"] == 1

    def test_identifier_in_body_ignored(self, music_store):
        run(operation(music_store, "album", "patch"), "patch", "1", {"id": 42, "title": "x"})
        assert music_store.called("update")[0][3] == {"title": "x"}

    def test_missing_record(self, music_store):
        response = run(operation(music_store, "album", "patch"), "patch", "99", {"score": 1})

        assert response.http_status == 404
        assert music_store.called("update") == []

    def test_base_filters_protect_records(self, music_store):
        op = operation(music_store, "album", "patch", base_filters={"status": "active"})
        assert run(op, "patch", "3", {"score": 1}).http_status == 404

    def test_body_must_be_object(self, music_store):
        response = run(operation(music_store, "album", "patch"), "patch", "1", ["score"])
        assert response.http_status == 400


class TestDestroy:
    """Tests for handle_destroy."""

    def test_destroy(self, music_store):
        response = run(operation(music_store, "album", "destroy"), "destroy", "2")

        assert response.to_dict() == {"success": True, "id": 2}
        assert [row["id"] for row in music_store.tables["album"]] == [1, 3, 4, 5]

    def test_destroy_by_external_id(self, music_store):
        run(operation(music_store, "artist", "destroy"), "destroy", "art-b")
        assert [row["external_id"] for row in music_store.tables["artist"]] == ["art-a", "art-c"]

    def test_missing_record(self, music_store):
        assert run(operation(music_store, "album", "destroy"), "destroy", "99").http_status == 404


class TestAuditLogging:
    """Tests for the AUDIT_QUERIES setting."""

    def test_audit_off_by_default(self, music_store, caplog):
        with caplog.at_level(logging.INFO, logger="django_crudkit"):
            run(operation(music_store, "album", "list"), "list", {})
        assert not [r for r in caplog.records if r.getMessage() == "crudkit_query"]

    def test_audit_on(self, music_store, caplog, settings):
        from django_crudkit.conf import crud_settings

        settings.DJANGO_CRUDKIT = {"AUDIT_QUERIES": True}
        crud_settings.reload()

        with caplog.at_level(logging.INFO, logger="django_crudkit"):
            run(operation(music_store, "album", "list"), "list", {"status": "active"})

        records = [r for r in caplog.records if r.getMessage() == "crudkit_query"]
        assert len(records) == 1
        assert records[0].operation == "list"
        assert records[0].filters == ["status"]
        assert records[0].count == 4
