"""Tests for application assembly."""

from dataclasses import dataclass, field
from unittest.mock import MagicMock

import pytest

from contentforge.app import build_application
from contentforge.auth.types import UserContext
from contentforge.cache.response import MemoryCachePool
from contentforge.errors import ForbiddenError


@dataclass
class FakeProvider:
    name: str
    config: dict = field(default_factory=dict)


class TestBuildApplication:
    def test_creates_tables_and_installs_hooks(self, app):
        assert isinstance(app.cache.pool, MemoryCachePool)
        assert app.hooks.has_subscribers("collection.insert.posts:before")
        assert app.gateways.get("posts").count() == 0

    def test_providers_from_settings(self, settings):
        settings.providers = {"github": {"client_id": "abc"}, "vimeo": {"enabled": False}}
        application = build_application(settings, available_providers={"github": FakeProvider})
        assert application.providers.names() == ["github"]

    def test_schema_change_reloads_registry(self, app, schema_dir):
        (schema_dir / "collections" / "tags.yaml").write_text(
            "collection: tags\nfields:\n  - name: id\n    type: integer\n    primaryKey: true\n"
        )
        assert not app.registry.has_collection("tags")
        app.schema_changed()
        assert app.registry.has_collection("tags")

    def test_schema_change_clears_cache(self, app, seeded):
        service = app.entries_for(seeded.admin)
        service.list_or_create("posts")
        assert len(app.cache.pool) > 0
        app.schema_changed()
        assert len(app.cache.pool) == 0


class TestFiles:
    @pytest.fixture
    def storage(self):
        storage = MagicMock()
        storage.get_data_info.return_value = {"type": "image/png", "size": 3}
        storage.save_data.return_value = {"filename": "stored.png", "filesize": 3}
        return storage

    @pytest.fixture
    def files_app(self, settings, storage):
        application = build_application(settings, files=storage)
        yield application
        application.store.engine.dispose()

    def test_upload_is_saved_and_described(self, files_app, storage):
        service = files_app.entries_for(UserContext(user_id=1, role_id=1))
        record = service.list_or_create(
            "directus_files", None, {"filename": "cat.png", "title": "Cat", "data": "aGk="}
        )["data"]

        storage.get_data_info.assert_called_once_with("aGk=")
        storage.save_data.assert_called_once_with("aGk=", "cat.png", False)
        assert record["filename"] == "stored.png"
        assert record["url"] == "/storage/uploads/stored.png"
        assert record["type"] == "image/png"
        assert record["upload_user"] == 1
        assert record["upload_date"] is not None

    def test_upload_requires_file_permission(self, files_app, storage):
        acl = files_app.access_control_for(UserContext(user_id=5, role_id=3))
        with pytest.raises(ForbiddenError):
            files_app.gateways.get("directus_files", acl).insert({"filename": "cat.png", "data": "aGk="})
        storage.save_data.assert_not_called()
