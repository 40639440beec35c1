"""Custom storage backends for user files.

Both backends extend a Django storage class with the directory-aware
primitives the physical store needs: ``make_directory``,
``is_directory``, ``remove_directory`` and ``move``. ``io_errors`` lists
the exceptions a backend raises when the storage medium itself fails.
"""

import logging
import os
from typing import Any, ClassVar, Final, final, override

from botocore.exceptions import BotoCoreError, ClientError
from django.core.files.storage import FileSystemStorage
from storages.backends.s3 import S3Storage
from storages.utils import clean_name

logger = logging.getLogger(__name__)

_DIRECTORY_MARKER_SUFFIX: Final = '/'


class _LoggedStorageMixin:
    """Adds enhanced error logging around save and delete."""

    def save(  # noqa: WPS211
        self,
        name: str,
        content: Any,
        max_length: int | None = None,
    ) -> str:
        """Save file with error handling and logging.

        Args:
            name: Storage path for the file.
            content: File content (file-like object).
            max_length: Optional maximum length for the filename.

        Returns:
            Actual storage path used.

        Raises:
            Exception: If the upload fails.
        """
        try:
            logger.debug('Writing file to storage: %s', name)
            saved_name = super().save(name, content, max_length)  # type: ignore[misc]
        except Exception:
            logger.exception('Failed to write file to storage: %s', name)
            raise
        else:
            logger.debug('Successfully wrote file: %s', saved_name)
            return saved_name

    def delete(self, name: str) -> None:
        """Delete file with error handling and logging.

        Args:
            name: Storage path of file to delete.

        Raises:
            Exception: If the delete fails.
        """
        try:
            logger.debug('Deleting file from storage: %s', name)
            super().delete(name)  # type: ignore[misc]
        except Exception:
            logger.exception('Failed to delete file from storage: %s', name)
            raise


@final
class LocalFileStorage(_LoggedStorageMixin, FileSystemStorage):
    """Filesystem storage with real directories and in-place overwrite."""

    io_errors: ClassVar[tuple[type[Exception], ...]] = (OSError,)

    @override
    def get_available_name(self, name: str, max_length: int | None = None) -> str:
        """Reuse the requested name, replacing any previous content.

        Args:
            name: Requested storage path.
            max_length: Unused, names are never rewritten.

        Returns:
            The requested name.
        """
        if self.exists(name) and not self.is_directory(name):
            os.remove(self.path(name))
        return name

    def make_directory(self, name: str) -> None:
        """Create a directory and any missing parents (idempotent)."""
        os.makedirs(self.path(name), exist_ok=True)

    def is_directory(self, name: str) -> bool:
        """Check whether name refers to an existing directory."""
        return os.path.isdir(self.path(name))

    def remove_directory(self, name: str) -> None:
        """Remove an empty directory."""
        os.rmdir(self.path(name))

    def move(self, source: str, destination: str) -> None:
        """Rename a file or directory within the storage root.

        Args:
            source: Current storage path.
            destination: New storage path.
        """
        target = self.path(destination)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        logger.info('Moving: %s -> %s', source, destination)
        os.replace(self.path(source), target)


@final
class ObjectFileStorage(_LoggedStorageMixin, S3Storage):
    """S3-compatible storage where directories are marker objects.

    A directory ``123/Docs`` is represented by a zero-byte object with
    key ``123/Docs/``, so empty folders survive listing.
    """

    io_errors: ClassVar[tuple[type[Exception], ...]] = (
        OSError,
        ClientError,
        BotoCoreError,
    )

    def make_directory(self, name: str) -> None:
        """Create the directory marker object (idempotent)."""
        self.bucket.put_object(Key=self._prefix(name), Body=b'')

    def is_directory(self, name: str) -> bool:
        """Check whether any object lives under the directory prefix."""
        objects = self.bucket.objects.filter(Prefix=self._prefix(name))
        return any(True for _ in objects.limit(1))

    def remove_directory(self, name: str) -> None:
        """Delete the directory marker object."""
        self.bucket.Object(self._prefix(name)).delete()

    def move(self, source: str, destination: str) -> None:
        """Move/rename an object or a whole prefix.

        S3 doesn't support native rename, so this performs a server-side
        copy followed by deletion of the source.

        Note: This operation is not atomic. If copy succeeds but delete
        fails, both objects will exist (source becomes orphaned).

        Args:
            source: Source storage path.
            destination: Destination storage path.
        """
        logger.info('Moving: %s -> %s', source, destination)
        if not self.is_directory(source):
            self._move_object(
                self._normalize_name(clean_name(source)),
                self._normalize_name(clean_name(destination)),
            )
            return

        source_prefix = self._prefix(source)
        destination_prefix = self._prefix(destination)
        keys = [obj.key for obj in self.bucket.objects.filter(Prefix=source_prefix)]
        for key in keys:
            self._move_object(
                key,
                destination_prefix + key[len(source_prefix):],
            )

    def _move_object(self, source_key: str, destination_key: str) -> None:
        copy_source = {
            'Bucket': self.bucket_name,
            'Key': source_key,
        }
        self.bucket.copy(copy_source, destination_key)
        self.bucket.Object(source_key).delete()

    def _prefix(self, name: str) -> str:
        normalized = self._normalize_name(clean_name(name))
        return normalized.rstrip(_DIRECTORY_MARKER_SUFFIX) + _DIRECTORY_MARKER_SUFFIX
