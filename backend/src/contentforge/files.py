"""File storage contract used by the files collection hooks."""

from typing import Any, Protocol


class FileStorage(Protocol):
    """Stores uploaded file data outside the database.

    Implementations live with the transport; the pipeline only calls them
    from hooks when ``directus_files`` is written.
    """

    def save_data(self, data: Any, filename: str | None, replace: bool = False) -> dict[str, Any]:
        """Store raw file data and return record-shaped metadata.

        The returned mapping is merged into the file record (e.g. storage,
        filename, type, filesize, width, height).
        """
        ...

    def get_data_info(self, uri: str) -> dict[str, Any]:
        """Describe data given as a URI or data URL (type, size, ...)."""
        ...
