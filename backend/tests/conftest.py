"""Shared fixtures: a temporary schema directory and a seeded application."""

from pathlib import Path
from types import SimpleNamespace

import pytest

from contentforge.app import build_application
from contentforge.auth.types import UserContext
from contentforge.config import Settings
from contentforge.persistence.config import DatabaseConfig

POSTS_YAML = """\
collection: posts
statusField: status
dateCreated: created_on
dateModified: modified_on
userCreated: author
userModified: modified_by
fields:
  - name: id
    type: integer
    primaryKey: true
  - name: status
    type: string
  - name: title
    type: string
    required: true
  - name: body
    type: text
  - name: views
    type: integer
  - name: tags
    type: array
  - name: settings
    type: json
  - name: featured
    type: boolean
  - name: secret
    type: string
    interface: password
  - name: author
    type: relation
    relation:
      collection: directus_users
  - name: modified_by
    type: integer
  - name: created_on
    type: datetime
  - name: modified_on
    type: datetime
  - name: comments
    type: relation
    relation:
      collection: comments
      cardinality: one_to_many
      joinColumn: post
  - name: translations
    type: relation
    interface: translation
    options:
      languages_table: languages
      left_column_name: language
      languages_code_column: code
    relation:
      collection: post_translations
      cardinality: one_to_many
      joinColumn: post
"""

COMMENTS_YAML = """\
collection: comments
fields:
  - name: id
    type: integer
    primaryKey: true
  - name: post
    type: relation
    relation:
      collection: posts
  - name: body
    type: text
"""

LANGUAGES_YAML = """\
collection: languages
fields:
  - name: code
    type: string
    primaryKey: true
  - name: name
    type: string
"""

POST_TRANSLATIONS_YAML = """\
collection: post_translations
fields:
  - name: id
    type: integer
    primaryKey: true
  - name: post
    type: relation
    relation:
      collection: posts
  - name: language
    type: relation
    relation:
      collection: languages
  - name: title
    type: string
"""

EDITOR_ROLE_ID = 3


@pytest.fixture
def schema_dir(tmp_path) -> Path:
    """A schema directory holding the sample collections."""
    collections = tmp_path / "schema" / "collections"
    collections.mkdir(parents=True)
    (collections / "posts.yaml").write_text(POSTS_YAML)
    (collections / "comments.yaml").write_text(COMMENTS_YAML)
    (collections / "languages.yaml").write_text(LANGUAGES_YAML)
    (collections / "post_translations.yaml").write_text(POST_TRANSLATIONS_YAML)
    return tmp_path / "schema"


@pytest.fixture
def settings(schema_dir) -> Settings:
    return Settings(
        database=DatabaseConfig(url="sqlite://"),
        schema_path=schema_dir,
        cache_adapter="memory",
        bcrypt_rounds=4,
    )


@pytest.fixture
def app(settings):
    application = build_application(settings)
    yield application
    application.store.engine.dispose()


@pytest.fixture
def seeded(app):
    """Roles, two editors and their permissions.

    Roles: 1 Administrator, 2 public, 3 editor. Editors may create posts
    and read, update and delete their own.
    """
    roles = app.gateways.get("directus_roles")
    for name in ("Administrator", "public", "editor"):
        roles.insert({"name": name})

    users = app.gateways.get("directus_users")
    alice = users.insert({"email": "alice@example.com", "password": "alice-pw", "status": "active"})
    bob = users.insert({"email": "bob@example.com", "status": "active", "last_page": "/posts"})

    memberships = app.gateways.get("directus_user_roles")
    for user in (alice, bob):
        memberships.insert({"user": user["id"], "role": EDITOR_ROLE_ID})

    permissions = app.gateways.get("directus_permissions")
    permissions.insert({
        "role": EDITOR_ROLE_ID,
        "collection": "posts",
        "create": "full",
        "read": "mine",
        "update": "mine",
        "delete": "mine",
    })
    permissions.insert({
        "role": EDITOR_ROLE_ID,
        "collection": "comments",
        "create": "full",
        "read": "full",
        "update": "full",
        "delete": "full",
    })
    # Editors see each other's public profile fields, token included
    permissions.update(
        {"read_field_blacklist": []},
        {"role": EDITOR_ROLE_ID, "collection": "directus_users"},
    )

    return SimpleNamespace(
        alice=UserContext(user_id=alice["id"], role_id=EDITOR_ROLE_ID, role_name="editor"),
        bob=UserContext(user_id=bob["id"], role_id=EDITOR_ROLE_ID, role_name="editor"),
        admin=UserContext(user_id=999, role_id=1, role_name="Administrator"),
        public=UserContext(user_id=None, role_id=2, role_name="public"),
        alice_id=alice["id"],
        bob_id=bob["id"],
    )
