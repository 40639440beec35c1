"""Business logic for file and folder operations.

``HierarchyManager`` is the only place that changes the metadata index
and the physical store in one logical operation. Ordering rules:

- Creation writes physical content first, then commits metadata. A crash
  in between leaves an orphaned file or directory, never a record
  without content.
- Rename/move renames the physical artifact first, then commits
  metadata, moving the artifact back if the commit fails.
- Deletion removes physical artifacts first, then metadata. Metadata is
  removed even when physical removal fails.

Mutations are serialized per user. Reads take no lock.
"""

import logging
from dataclasses import dataclass
from typing import BinaryIO, Final, final

from django.conf import settings
from django.core.files.base import File
from django.db import transaction
from django.db.models import QuerySet

from server.apps.files.exceptions import (
    ConflictError,
    ForbiddenError,
    HierarchyError,
    InvalidOperationError,
    NotFoundError,
)
from server.apps.files.infrastructure.locks import KeyedLock
from server.apps.files.infrastructure.metadata import (
    classify_item_type,
    detect_mime_type,
    join_item_path,
    validate_item_name,
)
from server.apps.files.infrastructure.physical_store import (
    PhysicalStore,
    get_physical_store,
)
from server.apps.files.logic.metadata_index import (
    KEEP_PARENT,
    ItemUpdate,
    KeepParent,
    MetadataIndex,
)
from server.apps.files.logic.quota_operations import check_quota
from server.apps.files.models import Item, ItemType

logger = logging.getLogger(__name__)

# Serializes mutating operations per user across the process
_user_locks: Final = KeyedLock()


@final
@dataclass(frozen=True, slots=True)
class DownloadedFile:
    """File content together with what a response needs to serve it."""

    item: Item
    content: bytes
    content_type: str
    etag: str


@final
class HierarchyManager:
    """Coordinates the metadata index and the physical store."""

    def __init__(self, index: MetadataIndex, store: PhysicalStore) -> None:
        """Initialize the manager.

        Args:
            index: Metadata index holding the item tree.
            store: Physical store holding file content.
        """
        self._index = index
        self._store = store

    def create_folder(
        self,
        user_id: int,
        name: str,
        parent_id: int | None = None,
    ) -> Item:
        """Create a folder.

        Args:
            user_id: Owner of the new folder.
            name: Folder name.
            parent_id: Parent folder, None for the user's root.

        Returns:
            Created folder item.

        Raises:
            NotFoundError: If the parent does not exist.
            ForbiddenError: If the parent belongs to another user.
            ConflictError: If a sibling already uses the name.
        """
        validate_item_name(name)
        with _user_locks.hold(user_id):
            parent = self._index.resolve_parent(user_id, parent_id)
            path = join_item_path(parent.path if parent else None, name)
            self._index.ensure_name_available(user_id, parent_id, name)

            # Physical first: an interrupted create leaves an empty directory
            self._store.create_directory(user_id, path)
            folder = self._index.insert(Item(
                user_id=user_id,
                parent_id=parent_id,
                name=name,
                item_type=ItemType.FOLDER,
                is_directory=True,
            ))

        logger.info('Folder created: %s (ID: %d)', folder.path, folder.id)
        return folder

    def upload_file(  # noqa: WPS211
        self,
        user_id: int,
        name: str,
        content: bytes | BinaryIO | File,
        parent_id: int | None = None,
        content_type: str | None = None,
        item_type: ItemType | None = None,
    ) -> Item:
        """Upload file to storage and create its metadata record.

        Transaction safety: Upload to storage first, then create the
        record. If the record cannot be created the uploaded content is
        deleted again (rollback).

        Args:
            user_id: Owner of the file.
            name: File name.
            content: Raw bytes or a file-like object.
            parent_id: Parent folder, None for the user's root.
            content_type: MIME type declared by the client.
            item_type: Explicit classification, derived when omitted.

        Returns:
            Created file item.

        Raises:
            ConflictError: If a sibling already uses the name.
            QuotaExceededError: If the upload would exceed the quota.
            StorageIOError: If the content cannot be stored.
        """
        validate_item_name(name)
        size_bytes = _get_content_size(content)
        if item_type is None:
            item_type = classify_item_type(name, content_type)
        if item_type == ItemType.FOLDER:
            raise InvalidOperationError('Files cannot be classified as folders')

        with _user_locks.hold(user_id):
            parent = self._index.resolve_parent(user_id, parent_id)
            path = join_item_path(parent.path if parent else None, name)
            self._index.ensure_name_available(user_id, parent_id, name)
            check_quota(user_id, size_bytes, index=self._index)

            # Step 1: Upload to storage first
            self._store.write(user_id, path, content)

            # Step 2: Create metadata record
            try:
                file_item = self._index.insert(Item(
                    user_id=user_id,
                    parent_id=parent_id,
                    name=name,
                    item_type=item_type,
                    size_bytes=size_bytes,
                ))
            except ConflictError:
                # Another writer holds the name, its content is not ours to remove
                raise
            except Exception:
                logger.exception(
                    'Metadata insert failed, rolling back storage upload: %s',
                    path,
                )
                self._rollback_upload(user_id, path)
                raise

        logger.info(
            'File uploaded: %s (ID: %d, %d bytes)',
            file_item.path,
            file_item.id,
            file_item.size_bytes,
        )
        return file_item

    def rename(self, item_id: int, user_id: int, new_name: str) -> Item:
        """Rename an item in place.

        Raises:
            ConflictError: If a sibling already uses the new name.
            InvalidOperationError: If the new name is empty or invalid.
        """
        return self.move(item_id, user_id, new_name=new_name)

    def move(
        self,
        item_id: int,
        user_id: int,
        new_parent_id: int | None | KeepParent = KEEP_PARENT,
        new_name: str | None = None,
    ) -> Item:
        """Move and/or rename an item.

        The physical artifact (a file, or a folder with its whole
        subtree) is renamed first. The metadata update, which also
        rewrites descendant paths, is committed only after that.

        Args:
            item_id: Item to move.
            user_id: User performing the move.
            new_parent_id: Destination folder, None for the root,
                KEEP_PARENT to stay in the current folder.
            new_name: New name, None to keep the current one.

        Returns:
            Updated item.

        Raises:
            NotFoundError: If the item or destination does not exist.
            ForbiddenError: If either belongs to another user.
            ConflictError: If the destination already holds the name.
            InvalidOperationError: If the move would create a cycle.
        """
        with _user_locks.hold(user_id):
            item = self._get_owned(item_id, user_id)
            name = item.name if new_name is None else validate_item_name(new_name)
            parent_id = (
                item.parent_id
                if new_parent_id is KEEP_PARENT
                else new_parent_id
            )
            if name == item.name and parent_id == item.parent_id:
                return item

            parent = self._index.resolve_parent(user_id, parent_id)
            if parent_id != item.parent_id:
                self._index.ensure_no_cycle(item.id, parent_id)
            self._index.ensure_name_available(
                user_id,
                parent_id,
                name,
                exclude_id=item.id,
            )
            old_path = item.path
            new_path = join_item_path(parent.path if parent else None, name)

            logger.info('Moving item %d: %s -> %s', item.id, old_path, new_path)
            self._move_physical(item, new_path)

            try:
                moved = self._index.update(
                    item.id,
                    user_id,
                    ItemUpdate(name=name, parent_id=parent_id),
                )
            except Exception:
                logger.exception(
                    'Metadata update failed, moving storage back: %s',
                    new_path,
                )
                self._rollback_move(user_id, new_path, old_path)
                raise

        return moved

    def toggle_favorite(self, item_id: int, user_id: int) -> Item:
        """Flip the favorite flag of an item."""
        with _user_locks.hold(user_id):
            item = self._get_owned(item_id, user_id)
            updated = self._index.update(
                item_id,
                user_id,
                ItemUpdate(is_favorite=not item.is_favorite),
            )
        logger.info(
            'Favorite toggled: ID=%d, user=%d, favorite=%s',
            item_id,
            user_id,
            updated.is_favorite,
        )
        return updated

    def set_public(self, item_id: int, user_id: int, is_public: bool) -> Item:
        """Share or unshare an item for read access by other users."""
        with _user_locks.hold(user_id):
            return self._index.update(
                item_id,
                user_id,
                ItemUpdate(is_public=is_public),
            )

    def delete(self, item_id: int, user_id: int, recursive: bool = True) -> None:
        """Delete an item, cascading to everything beneath a folder.

        Physical artifacts are removed first, files deepest-first and then
        the folder tree itself. Artifacts that are already gone are not an
        error. Other physical failures are logged and do not stop the
        metadata cleanup.

        Args:
            item_id: Item to delete.
            user_id: User performing the delete.
            recursive: Allow deleting a non-empty folder.

        Raises:
            NotFoundError: If the item does not exist.
            ForbiddenError: If the item belongs to another user.
            InvalidOperationError: If the folder is not empty and
                recursive is False.
        """
        with _user_locks.hold(user_id):
            item = self._get_owned(item_id, user_id)
            descendants = (
                self._index.descendants_of(item.id)
                if item.is_directory
                else []
            )
            if descendants and not recursive:
                raise InvalidOperationError(f'Folder {item_id} is not empty')

            logger.info(
                'Deleting item: ID=%d, path=%s, descendants=%d',
                item.id,
                item.path,
                len(descendants),
            )

            files = [child for child in descendants if not child.is_directory]
            files.sort(key=lambda child: child.path.count('/'), reverse=True)
            for file_item in files:
                self._delete_physical(file_item)
            self._delete_physical(item)

            # Breadth-first order reversed: children before their parents
            with transaction.atomic():
                for descendant in reversed(descendants):
                    self._index.remove(descendant.id)
                self._index.remove(item.id)

        logger.info('Item deleted: ID=%d', item_id)

    def get_by_id(self, item_id: int, user_id: int) -> Item:
        """Get an item, confirming that a file still has content.

        A file whose physical content has vanished is pruned from the
        index and reported as not found. Folders are not verified.
        Public items of other users are readable.

        Raises:
            NotFoundError: If the item does not exist or was orphaned.
            ForbiddenError: If the item is private to another user.
        """
        item = self._get_readable(item_id, user_id)
        if not item.is_directory:
            try:
                self._store.stat(item.user_id, item.path)
            except NotFoundError:
                current = self._prune(item)
                if current is None:
                    raise
                # Renamed or moved since it was read
                return self._ensure_readable(current, user_id)
        return item

    def download(self, item_id: int, user_id: int) -> DownloadedFile:
        """Read a file's content for download or preview.

        Args:
            item_id: File to read.
            user_id: User requesting the content.

        Returns:
            DownloadedFile with content, content type and ETag.

        Raises:
            NotFoundError: If the file does not exist or was orphaned.
            ForbiddenError: If the file is private to another user.
            InvalidOperationError: If the item is a folder.
        """
        item = self.get_by_id(item_id, user_id)
        if item.is_directory:
            raise InvalidOperationError('Folders cannot be downloaded')

        # TODO: stream through PhysicalStore instead of buffering whole files
        try:
            content = self._store.read(item.user_id, item.path)
        except NotFoundError:
            current = self._prune(item)
            if current is None:
                raise
            item = self._ensure_readable(current, user_id)
            content = self._store.read(item.user_id, item.path)

        logger.debug(
            'File read: ID=%d, path=%s, size=%d, user=%d',
            item.id,
            item.path,
            len(content),
            user_id,
        )
        return DownloadedFile(
            item=item,
            content=content,
            content_type=detect_mime_type(item.name),
            etag=f'W/"{item.id}-{item.size_bytes}"',
        )

    def breadcrumbs(self, item_id: int, user_id: int) -> list[Item]:
        """Return the chain from the top-level folder down to the item."""
        item = self._get_readable(item_id, user_id)
        trail = self._index.ancestors_of(item.id)
        trail.reverse()
        trail.append(item)
        return trail

    def list_children(
        self,
        user_id: int,
        parent_id: int | None = None,
    ) -> QuerySet[Item]:
        """List a folder's content, directories first."""
        logger.debug('Listing folder %s for user %d', parent_id, user_id)
        return self._index.list_children(user_id, parent_id)

    def list_by_type(self, user_id: int, item_type: ItemType) -> QuerySet[Item]:
        """List the user's items of one type."""
        return self._index.list_by_type(user_id, item_type)

    def list_favorites(self, user_id: int) -> QuerySet[Item]:
        """List the user's favorites."""
        return self._index.list_favorites(user_id)

    def list_recent(self, user_id: int, limit: int | None = None) -> QuerySet[Item]:
        """List the user's most recently changed files."""
        if limit is None:
            limit = settings.FILES_RECENT_LIMIT
        return self._index.list_recent(user_id, limit)

    def search(self, user_id: int, query: str) -> QuerySet[Item]:
        """Search the user's items by name."""
        return self._index.search(user_id, query)

    def reconcile(self, user_id: int, dry_run: bool = False) -> list[int]:
        """Prune every file of the user whose content has vanished.

        Args:
            user_id: User whose files are checked.
            dry_run: Only report orphans, keep their records.

        Returns:
            Ids of the orphaned items.
        """
        orphaned: list[int] = []
        for file_item in list(self._index.list_files(user_id)):
            if self._store.exists(user_id, file_item.path):
                continue
            if dry_run or self._prune(file_item) is None:
                orphaned.append(file_item.id)

        logger.info(
            'Reconciled user %d: %d orphaned items%s',
            user_id,
            len(orphaned),
            ' (dry run)' if dry_run else '',
        )
        return orphaned

    def _get_owned(self, item_id: int, user_id: int) -> Item:
        item = self._index.get(item_id)
        if item.user_id != user_id:
            raise ForbiddenError(f'Item {item_id} belongs to another user')
        return item

    def _get_readable(self, item_id: int, user_id: int) -> Item:
        return self._ensure_readable(self._index.get(item_id), user_id)

    def _ensure_readable(self, item: Item, user_id: int) -> Item:
        if item.user_id != user_id and not item.is_public:
            raise ForbiddenError(f'Item {item.id} belongs to another user')
        return item

    def _move_physical(self, item: Item, new_path: str) -> None:
        try:
            self._store.move(item.user_id, item.path, new_path)
        except NotFoundError:
            if not item.is_directory:
                self._prune(item)
                raise
            # Folders are not verified on read, recreate the missing one
            logger.warning(
                'Folder missing in storage, recreating at destination: %s',
                new_path,
            )
            self._store.create_directory(item.user_id, new_path)

    def _delete_physical(self, item: Item) -> None:
        try:
            if item.is_directory:
                self._store.delete_recursive(item.user_id, item.path)
            else:
                self._store.delete(item.user_id, item.path)
        except NotFoundError:
            logger.warning(
                'Not found in storage (already deleted?): %s',
                item.path,
            )
        except HierarchyError:
            # Metadata cleanup still proceeds, leftovers are orphans
            logger.exception(
                'Failed to delete from storage: %s (ID: %d)',
                item.path,
                item.id,
            )

    def _prune(self, item: Item) -> Item | None:
        """Remove a file record whose content was found missing.

        The record is re-read under the owner's lock and removed only if
        its current path still has no content.

        Args:
            item: Record as it was when the content was found missing.

        Returns:
            The current record if it still has content, otherwise None.
        """
        with _user_locks.hold(item.user_id):
            try:
                current = self._index.get(item.id)
            except NotFoundError:
                return None
            if self._store.exists(current.user_id, current.path):
                logger.info(
                    'Item changed while being read, not orphaned: %s -> %s',
                    item.path,
                    current.path,
                )
                return current
            self._index.remove(current.id)
        logger.warning(
            'Pruned orphaned item: %s (ID: %d, user: %d)',
            item.path,
            item.id,
            item.user_id,
        )

    def _rollback_upload(self, user_id: int, path: str) -> None:
        try:
            self._store.delete(user_id, path)
        except HierarchyError:
            # The file stays in storage without a record
            logger.exception('Failed to rollback upload, orphaned file: %s', path)

    def _rollback_move(self, user_id: int, new_path: str, old_path: str) -> None:
        try:
            self._store.move(user_id, new_path, old_path)
        except HierarchyError:
            logger.exception(
                'Failed to move back after failed update: %s -> %s',
                new_path,
                old_path,
            )


def _get_content_size(content: bytes | BinaryIO | File) -> int:
    """Get content size in bytes.

    Args:
        content: Raw bytes or file-like object.

    Returns:
        Size in bytes. File-like objects are rewound afterwards.
    """
    if isinstance(content, bytes):
        return len(content)
    if isinstance(content, File):
        return content.size
    position = content.tell()
    content.seek(0, 2)
    size = content.tell()
    content.seek(position)
    return size


def get_hierarchy_manager() -> HierarchyManager:
    """Get a manager over the default index and storage backend.

    Returns:
        HierarchyManager wired to the configured collaborators.
    """
    return HierarchyManager(MetadataIndex(), get_physical_store())
