"""Built-in system collections.

These collections back users, roles, files, permissions and activity. They
are always registered, whatever the YAML schema directory contains.
"""

from contentforge.schema.types import (
    COLLECTION_ACTIVITY,
    COLLECTION_FILES,
    COLLECTION_PERMISSIONS,
    COLLECTION_ROLES,
    COLLECTION_USER_ROLES,
    COLLECTION_USERS,
    Cardinality,
    Collection,
    Field,
    RelationDescriptor,
)


def _pk() -> Field:
    return Field(name="id", kind="integer", primary_key=True)


def _m2o(name: str, collection: str) -> Field:
    return Field(
        name=name,
        kind="relation",
        relation=RelationDescriptor(collection=collection, cardinality=Cardinality.MANY_TO_ONE),
    )


def system_collections() -> list[Collection]:
    """Build the system collection definitions."""
    users = Collection(
        name=COLLECTION_USERS,
        fields=(
            _pk(),
            Field(name="status", kind="string"),
            Field(name="first_name", kind="string"),
            Field(name="last_name", kind="string"),
            Field(name="email", kind="string"),
            Field(name="password", kind="string", interface="password"),
            Field(name="token", kind="string"),
            Field(name="external_id", kind="string"),
            Field(name="email_notifications", kind="boolean"),
            Field(name="last_access", kind="datetime"),
            Field(name="last_page", kind="string"),
        ),
        status_field="status",
    )

    roles = Collection(
        name=COLLECTION_ROLES,
        fields=(
            _pk(),
            Field(name="name", kind="string", required=True),
            Field(name="description", kind="text"),
            Field(name="external_id", kind="string"),
        ),
    )

    user_roles = Collection(
        name=COLLECTION_USER_ROLES,
        fields=(
            _pk(),
            _m2o("user", COLLECTION_USERS),
            _m2o("role", COLLECTION_ROLES),
        ),
    )

    files = Collection(
        name=COLLECTION_FILES,
        fields=(
            _pk(),
            Field(name="storage", kind="string"),
            Field(name="filename", kind="string"),
            Field(name="title", kind="string"),
            Field(name="type", kind="string"),
            Field(name="filesize", kind="integer"),
            Field(name="width", kind="integer"),
            Field(name="height", kind="integer"),
            Field(name="tags", kind="array"),
            Field(name="metadata", kind="json"),
            Field(name="upload_user", kind="integer"),
            Field(name="upload_date", kind="datetime"),
        ),
    )

    permissions = Collection(
        name=COLLECTION_PERMISSIONS,
        fields=(
            _pk(),
            Field(name="role", kind="integer", required=True),
            Field(name="collection", kind="string", required=True),
            Field(name="create", kind="string"),
            Field(name="read", kind="string"),
            Field(name="update", kind="string"),
            Field(name="delete", kind="string"),
            Field(name="read_field_blacklist", kind="array"),
            Field(name="write_field_blacklist", kind="array"),
        ),
    )

    activity = Collection(
        name=COLLECTION_ACTIVITY,
        fields=(
            _pk(),
            Field(name="action", kind="string"),
            Field(name="collection", kind="string"),
            Field(name="item", kind="string"),
            Field(name="action_by", kind="integer"),
            Field(name="action_on", kind="datetime"),
        ),
    )

    return [users, roles, user_roles, files, permissions, activity]
