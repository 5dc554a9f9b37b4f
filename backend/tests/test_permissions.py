"""Tests for access control levels, ownership and field blacklists."""

import pytest

from contentforge.auth.permissions import AccessControl, Permission
from contentforge.auth.types import PermissionLevel, UserContext
from contentforge.errors import ForbiddenError
from contentforge.schema.loader import SchemaRegistry


@pytest.fixture
def registry(schema_dir):
    registry = SchemaRegistry(schema_dir)
    registry.load_all()
    return registry


@pytest.fixture
def editor(registry):
    permissions = [
        Permission.from_row({
            "collection": "posts",
            "role": 3,
            "create": "full",
            "read": "mine",
            "update": "mine",
            "delete": "none",
            "read_field_blacklist": "secret, body",
            "write_field_blacklist": ["views"],
        }),
        Permission.from_row({"collection": "comments", "role": 3, "read": "full"}),
    ]
    return AccessControl(UserContext(user_id=7, role_id=3), permissions, registry)


class TestPermissionLevel:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("full", PermissionLevel.FULL),
            (" Mine ", PermissionLevel.MINE),
            ("none", PermissionLevel.NONE),
            ("", PermissionLevel.NONE),
            (None, PermissionLevel.NONE),
            ("bogus", PermissionLevel.NONE),
            (0, PermissionLevel.NONE),
            (1, PermissionLevel.MINE),
            (2, PermissionLevel.FULL),
        ],
    )
    def test_parse(self, value, expected):
        assert PermissionLevel.parse(value) == expected

    def test_unknown_verb(self):
        with pytest.raises(ValueError):
            Permission(collection="posts").level("publish")


class TestIdentity:
    def test_admin_by_role(self, registry):
        acl = AccessControl(UserContext(user_id=1, role_id=1), [], registry)
        assert acl.is_admin()
        assert acl.can_delete("posts", {"author": 99})

    def test_admin_by_flag(self, registry):
        assert AccessControl(UserContext(user_id=1, role_id=9, admin=True), [], registry).is_admin()

    @pytest.mark.parametrize(
        "user",
        [
            UserContext(),
            UserContext(user_id=5, role_id=2),
            UserContext(user_id=5, role_id=8, role_name="Public"),
        ],
    )
    def test_public(self, user):
        assert AccessControl(user).is_public()

    def test_authenticated_user_is_not_public(self, editor):
        assert not editor.is_public()
        assert editor.current_user_id() == 7


class TestLevels:
    def test_full(self, editor):
        assert editor.can_create("posts")

    def test_none(self, editor):
        assert not editor.can_delete("posts")
        assert not editor.can_read("directus_files")

    def test_mine_without_row_is_allowed(self, editor):
        assert editor.can_update("posts")

    def test_mine_checks_owner(self, editor):
        assert editor.can_update("posts", {"author": 7})
        assert editor.can_update("posts", {"author": {"id": 7, "email": "x"}})
        assert not editor.can_update("posts", {"author": 8})
        assert not editor.can_update("posts", {"author": None})

    def test_users_own_their_row(self, registry):
        acl = AccessControl(
            UserContext(user_id=7, role_id=3),
            [Permission(collection="directus_users", update=PermissionLevel.MINE)],
            registry,
        )
        assert acl.can_update("directus_users", {"id": 7})
        assert not acl.can_update("directus_users", {"id": 8})

    def test_enforce_raises_forbidden(self, editor):
        with pytest.raises(ForbiddenError):
            editor.enforce("delete", "posts")
        with pytest.raises(ForbiddenError):
            editor.enforce("update", "posts", {"author": 8})
        editor.enforce("update", "posts", {"author": 7})


class TestOwnershipFilter:
    def test_mine_restricts_to_owner(self, editor, registry):
        assert editor.ownership_filter(registry.get_collection("posts")) == {
            "field": "author",
            "operator": "eq",
            "value": 7,
        }

    def test_full_has_no_filter(self, editor, registry):
        assert editor.ownership_filter(registry.get_collection("comments")) is None

    def test_mine_without_owner_field_matches_nothing(self, registry):
        acl = AccessControl(
            UserContext(user_id=7, role_id=3),
            [Permission(collection="comments", read=PermissionLevel.MINE)],
            registry,
        )
        assert acl.ownership_filter(registry.get_collection("comments")) == {
            "field": "id",
            "operator": "isNull",
        }


class TestBlacklists:
    def test_read_policy_strips_fields(self, editor):
        record = {"id": 1, "title": "t", "secret": "s", "body": "b"}
        assert editor.apply_read_policy("posts", record) == {"id": 1, "title": "t"}

    def test_readable_fields(self, editor):
        assert editor.readable_fields("posts", ["title", "secret"]) == ["title"]

    def test_write_policy_strips_fields(self, editor):
        assert editor.apply_write_policy("posts", {"title": "t", "views": 3}) == {"title": "t"}

    def test_admin_has_no_blacklist(self, registry):
        acl = AccessControl(
            UserContext(user_id=1, role_id=1),
            [Permission(collection="posts", read_field_blacklist=frozenset({"secret"}))],
            registry,
        )
        assert acl.apply_read_policy("posts", {"secret": "s"}) == {"secret": "s"}


class TestRepository:
    def test_loads_rows_for_role(self, app, seeded):
        permissions = app.permissions.load(3)
        assert permissions["posts"].read == PermissionLevel.MINE
        assert permissions["directus_users"].read == PermissionLevel.FULL

    def test_anonymous_user_has_no_permissions(self, app):
        acl = app.access_control_for(None)
        assert acl.permissions == {}
        assert acl.is_public()

    def test_changes_apply_to_next_request(self, app, seeded):
        assert app.access_control_for(seeded.alice).level("posts", "delete") == PermissionLevel.MINE
        app.gateways.get("directus_permissions").update({"delete": "none"}, {"role": 3, "collection": "posts"})
        assert app.access_control_for(seeded.alice).level("posts", "delete") == PermissionLevel.NONE
