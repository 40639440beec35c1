"""Exceptions for files app.

Every failure of the hierarchical file store is a ``HierarchyError``.
``http_status`` tells the API layer which response code to send.
"""

from typing import ClassVar


class HierarchyError(Exception):
    """Base class for file store errors."""

    http_status: ClassVar[int] = 500


class NotFoundError(HierarchyError):
    """Raised when an item id or physical path does not exist."""

    http_status = 404


class ForbiddenError(HierarchyError):
    """Raised when a user touches an item owned by somebody else."""

    http_status = 403


class ConflictError(HierarchyError):
    """Raised when a sibling with the same name already exists."""

    http_status = 400

    def __init__(self, name: str, parent_id: int | None) -> None:
        """Initialize ConflictError.

        Args:
            name: Colliding item name.
            parent_id: Parent directory id, None for the user's root.
        """
        self.name = name
        self.parent_id = parent_id
        location = 'root' if parent_id is None else f'folder {parent_id}'
        super().__init__(f'An item named {name!r} already exists in {location}')


class InvalidOperationError(HierarchyError):
    """Raised for structurally invalid requests (cycles, empty names)."""

    http_status = 400


class InvalidPathError(HierarchyError):
    """Raised when a relative path escapes the user's storage root."""

    http_status = 400


class PathIsDirectoryError(HierarchyError):
    """Raised when file content is requested from a directory."""

    http_status = 400


class StorageIOError(HierarchyError):
    """Raised when the underlying storage medium fails."""

    http_status = 500


class QuotaExceededError(HierarchyError):
    """Raised when upload would exceed user's storage quota."""

    http_status = 507

    def __init__(
        self,
        quota_bytes: int,
        used_bytes: int,
        required_bytes: int,
    ) -> None:
        """Initialize QuotaExceededError.

        Args:
            quota_bytes: Total quota limit in bytes.
            used_bytes: Currently used bytes.
            required_bytes: Bytes needed for the operation.
        """
        self.quota_bytes = quota_bytes
        self.used_bytes = used_bytes
        self.required_bytes = required_bytes

        available = quota_bytes - used_bytes
        super().__init__(
            f'Quota exceeded: need {required_bytes} bytes, '
            f'only {available} bytes available '
            f'(quota: {quota_bytes}, used: {used_bytes})',
        )
