"""Tests for the relational gateway."""

import pytest

from contentforge.errors import BadRequestError, NotFoundError, StoreError, ValidationError
from contentforge.hooks.types import MutationEvent, Payload
from contentforge.persistence.gateway import ALL_STATUSES
from contentforge.persistence.query import QueryOptions


@pytest.fixture
def posts(app):
    return app.gateways.get("posts")


@pytest.fixture
def comments(app):
    return app.gateways.get("comments")


@pytest.fixture
def sample_posts(posts):
    rows = [
        {"title": "Alpha", "views": 10, "featured": True, "status": "published", "tags": ["x"]},
        {"title": "Beta", "views": 20, "featured": False, "status": "draft", "tags": ["x", "y"]},
        {"title": "Gamma", "views": 30, "featured": True, "status": "published"},
    ]
    return [posts.insert(r)["id"] for r in rows]


class TestInsert:
    def test_returns_record_with_generated_key(self, posts):
        record = posts.insert({"title": "Hello"})
        assert record["id"] is not None
        assert record["title"] == "Hello"

    def test_stamps_dates_without_user_for_internal_writes(self, posts):
        record = posts.insert({"title": "Hello"})
        assert record["created_on"] is not None
        assert record["modified_on"] is not None
        assert record["author"] is None

    def test_before_filter_can_change_data(self, app, posts):
        def shout(payload: Payload) -> Payload:
            return payload.set("title", payload.get("title").upper())

        app.hooks.subscribe("collection.insert.posts:before", shout)
        assert posts.insert({"title": "quiet"})["title"] == "QUIET"

    def test_after_action_receives_keys(self, app, posts):
        events: list[MutationEvent] = []
        app.hooks.subscribe("collection.insert:after", events.append)

        record = posts.insert({"title": "Hello"})
        inserted = [e for e in events if e.collection_name == "posts"]
        assert len(inserted) == 1
        assert inserted[0].ids == (record["id"],)
        assert inserted[0].operation == "insert"

    def test_nested_many_to_one_is_written_first(self, comments):
        comment = comments.insert({"body": "Nice", "post": {"title": "Nested"}})
        assert comment["post"]["title"] == "Nested"

    def test_nested_one_to_many_is_written_after_parent(self, posts):
        record = posts.insert({"title": "Parent", "comments": [{"body": "one"}, {"body": "two"}]})
        assert sorted(c["body"] for c in record["comments"]) == ["one", "two"]
        assert all(c["post"] == record["id"] for c in record["comments"])

    def test_rejected_child_rolls_back_parent(self, app, posts):
        def reject(payload: Payload) -> Payload:
            raise BadRequestError("comments are closed")

        events: list[MutationEvent] = []
        app.hooks.subscribe("collection.insert.comments:before", reject)
        app.hooks.subscribe("collection.insert:after", events.append)

        with pytest.raises(BadRequestError):
            posts.insert({"title": "Parent", "comments": [{"body": "one"}]})
        assert posts.count(status=(ALL_STATUSES,)) == 0
        assert events == []

    def test_rejected_parent_writes_no_nested_record(self, app, posts, comments):
        def reject(payload: Payload) -> Payload:
            raise BadRequestError("no comments on this post")

        app.hooks.subscribe("collection.insert.comments:before", reject)
        with pytest.raises(BadRequestError):
            comments.insert({"body": "Nice", "post": {"title": "Nested"}})
        assert posts.count(status=(ALL_STATUSES,)) == 0

    def test_after_actions_run_once_committed(self, app, posts):
        seen = {}

        def remember(event: MutationEvent) -> None:
            if event.collection_name in ("posts", "comments"):
                seen[event.collection_name] = posts.count()

        app.hooks.subscribe("collection.insert:after", remember)
        posts.insert({"title": "Parent", "comments": [{"body": "one"}]})
        assert seen == {"posts": 1, "comments": 1}

    def test_one_to_many_must_be_a_list(self, posts):
        with pytest.raises(ValidationError):
            posts.insert({"title": "Parent", "comments": {"body": "one"}})

    def test_store_failure_raises_store_error(self, app, posts):
        errors = []
        app.hooks.subscribe("application.error", errors.append)
        record = posts.insert({"title": "Hello"})

        with pytest.raises(StoreError) as exc_info:
            posts.insert({"id": record["id"], "title": "Duplicate"})
        assert exc_info.value.__cause__ is not None
        assert exc_info.value.message == "Internal server error"
        assert len(errors) == 1


class TestFetch:
    def test_excludes_soft_deleted_rows(self, posts, sample_posts):
        posts.soft_delete({"id": sample_posts[0]})
        titles = [r["title"] for r in posts.fetch()]
        assert titles == ["Beta", "Gamma"]

    def test_status_selection(self, posts, sample_posts):
        posts.soft_delete({"id": sample_posts[0]})
        rows = posts.fetch(None, QueryOptions(status=("deleted",)))
        assert [r["id"] for r in rows] == [sample_posts[0]]
        assert len(posts.fetch(None, QueryOptions(status=(ALL_STATUSES,)))) == 3

    def test_decodes_coded_fields(self, posts, sample_posts):
        row = posts.fetch_by_id(sample_posts[1])
        assert row["tags"] == ["x", "y"]
        assert row["featured"] is False
        assert posts.fetch_by_id(sample_posts[2])["tags"] == []

    @pytest.mark.parametrize(
        "conditions, expected",
        [
            ({"views": {"gt": 15}}, ["Beta", "Gamma"]),
            ({"views": {"between": [15, 25]}}, ["Beta"]),
            ({"title": {"startsWith": "Al"}}, ["Alpha"]),
            ({"title": {"contains": "amm"}}, ["Gamma"]),
            ({"featured": True}, ["Alpha", "Gamma"]),
            ({"status": {"notIn": ["published"]}}, ["Beta"]),
            ({"body": None}, ["Alpha", "Beta", "Gamma"]),
            (
                {"operator": "or", "conditions": [
                    {"field": "title", "operator": "eq", "value": "Alpha"},
                    {"field": "views", "operator": "gte", "value": 30},
                ]},
                ["Alpha", "Gamma"],
            ),
        ],
    )
    def test_filters(self, posts, sample_posts, conditions, expected):
        rows = posts.fetch(conditions, QueryOptions(sort=({"field": "title", "direction": "asc"},)))
        assert [r["title"] for r in rows] == expected

    def test_sort_limit_offset(self, posts, sample_posts):
        options = QueryOptions.from_params({"sort": "-views", "limit": "1", "offset": "1"})
        assert [r["title"] for r in posts.fetch(None, options)] == ["Beta"]

    def test_field_selection_keeps_primary_key(self, posts, sample_posts):
        rows = posts.fetch(None, QueryOptions(fields=("title",)))
        assert set(rows[0]) == {"id", "title"}

    def test_unknown_field_is_bad_request(self, posts):
        with pytest.raises(BadRequestError):
            posts.fetch({"nope": 1})

    def test_fetch_by_id_missing(self, posts):
        with pytest.raises(NotFoundError) as exc_info:
            posts.fetch_by_id(42)
        assert exc_info.value.message == "unable to find record in posts with id 42"

    def test_depth_zero_skips_expansion(self, comments):
        comment = comments.insert({"body": "Nice", "post": {"title": "Nested"}})
        row = comments.fetch_by_id(comment["id"], QueryOptions(depth=0))
        assert row["post"] == comment["post"]["id"]

    def test_select_before_filter_can_add_columns(self, app):
        files = app.gateways.get("directus_files")
        files.insert({"filename": "cat.png", "title": "Cat"})
        row = files.fetch(None, QueryOptions(fields=("title",)))[0]
        assert row["filename"] == "cat.png"
        assert row["url"] == "/storage/uploads/cat.png"
        assert row["thumbnail_url"] == "/thumbnail/cat.png"


class TestTranslations:
    @pytest.fixture
    def post_id(self, app, posts):
        languages = app.gateways.get("languages")
        languages.insert({"code": "en", "name": "English"})
        languages.insert({"code": "fr", "name": "French"})
        return posts.insert({
            "title": "Hello",
            "translations": [
                {"language": "en", "title": "Hello"},
                {"language": "fr", "title": "Bonjour"},
            ],
        })["id"]

    def test_indexed_by_language_code(self, posts, post_id):
        translations = posts.fetch_by_id(post_id)["translations"]
        assert set(translations) == {"en", "fr"}
        assert translations["fr"]["title"] == "Bonjour"

    def test_single_language(self, posts, post_id):
        translation = posts.fetch_by_id(post_id, QueryOptions(lang="fr"))["translations"]
        assert translation["title"] == "Bonjour"

    def test_missing_language_table_option(self, app, posts, post_id):
        from dataclasses import replace

        collection = app.registry.get_collection("posts")
        broken = tuple(
            replace(f, options={"left_column_name": "language"}) if f.name == "translations" else f
            for f in collection.fields
        )
        app.registry.register(replace(collection, fields=broken))

        with pytest.raises(BadRequestError):
            app.gateways.get("posts").fetch_by_id(post_id)


class TestUpdate:
    def test_returns_changed_count(self, posts, sample_posts):
        assert posts.update({"views": 0}, {"status": "published"}) == 2
        assert sorted(r["views"] for r in posts.fetch()) == [0, 0, 20]

    def test_no_match_changes_nothing(self, posts, sample_posts):
        assert posts.update({"views": 0}, {"title": "Nope"}) == 0

    def test_stamps_modification_date(self, posts, sample_posts):
        before = posts.fetch_by_id(sample_posts[0])["modified_on"]
        posts.update({"title": "Alpha 2"}, {"id": sample_posts[0]})
        assert posts.fetch_by_id(sample_posts[0])["modified_on"] >= before

    def test_update_record_requires_key(self, posts):
        with pytest.raises(ValidationError):
            posts.update_record({"title": "no key"})

    def test_update_record_missing_row(self, posts):
        with pytest.raises(NotFoundError):
            posts.update_record({"id": 99, "title": "missing"})

    def test_update_collection_isolates_failures(self, posts, sample_posts):
        errors = posts.update_collection([
            {"id": sample_posts[0], "views": 1},
            {"id": 99, "views": 2},
        ])
        assert errors == [{"id": 99, "message": "unable to find record in posts with id 99"}]
        assert posts.fetch_by_id(sample_posts[0])["views"] == 1


class TestDelete:
    def test_delete_by_conditions(self, posts, sample_posts):
        assert posts.delete({"status": "published"}) == 2
        assert [r["title"] for r in posts.fetch()] == ["Beta"]

    def test_empty_id_list_is_a_no_op(self, app, posts, sample_posts):
        events = []
        app.hooks.subscribe("collection.delete.posts:before", lambda p: events.append(p) or p)
        assert posts.delete_ids([]) == 0
        assert events == []
        assert len(posts.fetch()) == 3

    def test_soft_delete_requires_status_column(self, comments):
        comment = comments.insert({"body": "keep"})
        with pytest.raises(BadRequestError):
            comments.soft_delete({"id": comment["id"]})
        assert comments.fetch_by_id(comment["id"])["body"] == "keep"

    def test_soft_deleted_rows_still_resolve_to_ids(self, posts, sample_posts):
        posts.soft_delete({"id": sample_posts[0]})
        assert sample_posts[0] in posts.ids_for()
        assert posts.count() == 2
        assert posts.count(status=(ALL_STATUSES,)) == 3


class TestTransaction:
    def test_nested_scopes_share_one_connection(self, app):
        with app.gateways.transaction() as outer:
            with app.gateways.transaction() as inner:
                assert inner is outer

    def test_after_commit_runs_now_without_transaction(self, app):
        calls = []
        app.gateways.after_commit(lambda: calls.append("now"))
        assert calls == ["now"]

    def test_after_commit_waits_for_outer_scope(self, app):
        calls = []
        with app.gateways.transaction():
            app.gateways.after_commit(lambda: calls.append("later"))
            assert calls == []
        assert calls == ["later"]

    def test_after_commit_is_dropped_on_rollback(self, app):
        calls = []
        with pytest.raises(RuntimeError):
            with app.gateways.transaction():
                app.gateways.after_commit(lambda: calls.append("later"))
                raise RuntimeError("boom")
        assert calls == []
