"""Physical byte storage keyed by (user_id, relative path).

Every user owns an isolated subtree ``{user_id}/...`` inside the
configured storage backend. Paths given to the store are relative to
that subtree and are normalized before they reach the backend.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, BinaryIO, Final, final

from django.core.exceptions import SuspiciousOperation
from django.core.files.base import ContentFile, File
from django.core.files.storage import storages

from server.apps.files.exceptions import (
    InvalidPathError,
    NotFoundError,
    PathIsDirectoryError,
    StorageIOError,
)
from server.apps.files.infrastructure.locks import KeyedLock
from server.apps.files.infrastructure.metadata import build_storage_key

logger = logging.getLogger(__name__)

_PATH_SEPARATOR: Final = '/'

# Serializes writers of the same storage key across the process
_path_locks: Final = KeyedLock()


@final
@dataclass(frozen=True, slots=True)
class PhysicalStat:
    """What the backend knows about a stored path."""

    is_directory: bool
    size_bytes: int
    modified_at: datetime | None


@final
class PhysicalStore:
    """User-scoped facade over a directory-aware Django storage backend.

    The store knows nothing about item ids. Backend failures surface as
    ``StorageIOError``, paths escaping the user's root as
    ``InvalidPathError``.
    """

    def __init__(self, storage: Any) -> None:
        """Initialize the store.

        Args:
            storage: Backend implementing the Django storage API plus
                make_directory, is_directory, remove_directory and move.
        """
        self._storage = storage

    def ensure_user_root(self, user_id: int) -> None:
        """Create the user's storage subtree if it is missing."""
        self.create_directory(user_id, '')

    def create_directory(self, user_id: int, relative_path: str) -> None:
        """Create a directory and its missing parents (idempotent).

        Args:
            user_id: Owner's user ID.
            relative_path: Directory path relative to the user's root.
        """
        key = self._key(user_id, relative_path)
        with self._guard(key):
            self._storage.make_directory(key)
        logger.debug('Directory ensured: %s', key)

    def write(
        self,
        user_id: int,
        relative_path: str,
        content: bytes | BinaryIO | File,
    ) -> None:
        """Write file content, replacing anything stored at the path.

        Missing intermediate directories are created.

        Args:
            user_id: Owner's user ID.
            relative_path: File path relative to the user's root.
            content: Raw bytes or a file-like object.

        Raises:
            PathIsDirectoryError: If a directory occupies the path.
            StorageIOError: If the backend fails to store the content.
        """
        key = self._key(user_id, relative_path)
        with _path_locks.hold(key), self._guard(key):
            if self._storage.is_directory(key):
                raise PathIsDirectoryError(f'Cannot write over directory: {key}')
            self._storage.save(key, _as_django_file(content))
        logger.info('File written to storage: %s', key)

    def read(self, user_id: int, relative_path: str) -> bytes:
        """Read the full content of a file.

        Args:
            user_id: Owner's user ID.
            relative_path: File path relative to the user's root.

        Returns:
            File content.

        Raises:
            NotFoundError: If nothing is stored at the path.
            PathIsDirectoryError: If the path is a directory.
        """
        key = self._key(user_id, relative_path)
        with self._guard(key):
            self._require_file(key)
            with self._storage.open(key, 'rb') as stored_file:
                return stored_file.read()

    def exists(self, user_id: int, relative_path: str) -> bool:
        """Check whether a file or directory is stored at the path."""
        key = self._key(user_id, relative_path)
        with self._guard(key):
            return self._storage.is_directory(key) or self._storage.exists(key)

    def stat(self, user_id: int, relative_path: str) -> PhysicalStat:
        """Describe a stored file or directory.

        Args:
            user_id: Owner's user ID.
            relative_path: Path relative to the user's root.

        Returns:
            PhysicalStat for the path.

        Raises:
            NotFoundError: If nothing is stored at the path.
        """
        key = self._key(user_id, relative_path)
        with self._guard(key):
            if self._storage.is_directory(key):
                return PhysicalStat(
                    is_directory=True,
                    size_bytes=0,
                    modified_at=None,
                )
            if not self._storage.exists(key):
                raise NotFoundError(f'Not found in storage: {key}')
            return PhysicalStat(
                is_directory=False,
                size_bytes=self._storage.size(key),
                modified_at=self._storage.get_modified_time(key),
            )

    def delete(self, user_id: int, relative_path: str) -> None:
        """Delete a single file.

        Args:
            user_id: Owner's user ID.
            relative_path: File path relative to the user's root.

        Raises:
            NotFoundError: If nothing is stored at the path.
            PathIsDirectoryError: If the path is a directory.
        """
        key = self._key(user_id, relative_path)
        with _path_locks.hold(key), self._guard(key):
            self._require_file(key)
            self._storage.delete(key)
        logger.info('File deleted from storage: %s', key)

    def delete_recursive(self, user_id: int, relative_path: str) -> None:
        """Delete a directory and everything beneath it.

        Entries that vanish while the tree is being removed are ignored.
        Other failures do not stop the deletion of the remaining
        entries, they are collected and reported together at the end.

        Args:
            user_id: Owner's user ID.
            relative_path: Directory path relative to the user's root.

        Raises:
            NotFoundError: If nothing is stored at the path.
            StorageIOError: If some entries could not be removed.
        """
        key = self._key(user_id, relative_path)
        with _path_locks.hold(key):
            with self._guard(key):
                is_directory = self._storage.is_directory(key)
                if not is_directory and not self._storage.exists(key):
                    raise NotFoundError(f'Not found in storage: {key}')

            failures: list[str] = []
            if is_directory:
                self._remove_tree(key, failures)
            else:
                self._remove_entry(key, failures)

        if failures:
            raise StorageIOError(
                f'Could not remove {len(failures)} entries under {key}: '
                + ', '.join(failures),
            )
        logger.info('Directory tree deleted from storage: %s', key)

    def move(
        self,
        user_id: int,
        source_path: str,
        destination_path: str,
    ) -> None:
        """Rename a file or directory subtree within the user's root.

        Args:
            user_id: Owner's user ID.
            source_path: Current path relative to the user's root.
            destination_path: New path relative to the user's root.

        Raises:
            NotFoundError: If nothing is stored at the source path.
        """
        source = self._key(user_id, source_path)
        destination = self._key(user_id, destination_path)
        if source == destination:
            return

        with _path_locks.hold(source, destination), self._guard(source):
            if not (
                self._storage.is_directory(source) or
                self._storage.exists(source)
            ):
                raise NotFoundError(f'Not found in storage: {source}')
            self._storage.move(source, destination)
        logger.info('Moved in storage: %s -> %s', source, destination)

    def used_bytes(self, user_id: int) -> int:
        """Sum the sizes of every file in the user's subtree.

        Unreadable entries are skipped and logged.

        Args:
            user_id: Owner's user ID.

        Returns:
            Total size in bytes.
        """
        root = self._key(user_id, '')
        total = self._walk_size(root)
        logger.debug('Storage walk for user %d: %d bytes', user_id, total)
        return total

    def _key(self, user_id: int, relative_path: str) -> str:
        return build_storage_key(user_id, relative_path)

    @contextmanager
    def _guard(self, key: str) -> Iterator[None]:
        try:
            yield
        except SuspiciousOperation as error:
            raise InvalidPathError(
                f'Path escapes storage root: {key}',
            ) from error
        except self._storage.io_errors as error:
            raise StorageIOError(f'Storage failure on {key}: {error}') from error

    def _require_file(self, key: str) -> None:
        if self._storage.is_directory(key):
            raise PathIsDirectoryError(f'Path is a directory: {key}')
        if not self._storage.exists(key):
            raise NotFoundError(f'Not found in storage: {key}')

    def _remove_tree(self, key: str, failures: list[str]) -> None:
        try:
            directories, files = self._storage.listdir(key)
        except FileNotFoundError:
            return
        except self._storage.io_errors:
            logger.exception('Failed to list directory: %s', key)
            failures.append(key)
            return

        for file_name in files:
            self._remove_entry(_join(key, file_name), failures)
        for directory_name in directories:
            self._remove_tree(_join(key, directory_name), failures)

        try:
            self._storage.remove_directory(key)
        except FileNotFoundError:
            logger.debug('Directory already removed: %s', key)
        except self._storage.io_errors:
            logger.exception('Failed to remove directory: %s', key)
            failures.append(key)

    def _remove_entry(self, key: str, failures: list[str]) -> None:
        try:
            self._storage.delete(key)
        except FileNotFoundError:
            logger.debug('File already removed: %s', key)
        except self._storage.io_errors:
            logger.exception('Failed to remove file: %s', key)
            failures.append(key)

    def _walk_size(self, key: str) -> int:
        try:
            directories, files = self._storage.listdir(key)
        except FileNotFoundError:
            return 0
        except self._storage.io_errors:
            logger.warning('Skipping unreadable directory: %s', key, exc_info=True)
            return 0

        total = 0
        for file_name in files:
            file_key = _join(key, file_name)
            try:
                total += self._storage.size(file_key)
            except self._storage.io_errors:
                logger.warning('Skipping unreadable file: %s', file_key, exc_info=True)
        for directory_name in directories:
            total += self._walk_size(_join(key, directory_name))
        return total


def _join(key: str, name: str) -> str:
    return key + _PATH_SEPARATOR + name


def _as_django_file(content: bytes | BinaryIO | File) -> File:
    if isinstance(content, File):
        return content
    if isinstance(content, bytes):
        return ContentFile(content)
    return File(content)


def get_physical_store() -> PhysicalStore:
    """Get a physical store over the configured default storage backend.

    Returns:
        PhysicalStore bound to ``STORAGES['default']``.
    """
    return PhysicalStore(storages['default'])
