"""Metadata index: the authoritative tree of items per user.

The index owns id allocation and the tree invariants (unique sibling
names, parents that are directories of the same owner, no cycles,
paths derived from names). It never touches physical storage.

Records are persisted through the Django ORM. Every mutation commits
in its own transaction before returning.
"""

import enum
import logging
from collections import deque
from dataclasses import dataclass
from typing import Final, Literal, final

from django.db import IntegrityError, transaction
from django.db.models import F, QuerySet, RestrictedError, Sum

from server.apps.files.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidOperationError,
    NotFoundError,
)
from server.apps.files.infrastructure.metadata import (
    join_item_path,
    validate_item_name,
)
from server.apps.files.models import Item, ItemSequence, ItemType

logger = logging.getLogger(__name__)

_ITEM_SEQUENCE: Final = 'items'


class _Keep(enum.Enum):
    PARENT = enum.auto()


# Marks an ItemUpdate that leaves the parent untouched
KEEP_PARENT: Final = _Keep.PARENT

KeepParent = Literal[_Keep.PARENT]


@final
@dataclass(frozen=True, slots=True)
class ItemUpdate:
    """Typed set of changes applied by ``MetadataIndex.update``.

    ``None`` leaves a field untouched, except for ``parent_id`` where
    ``None`` means "move to the root" and ``KEEP_PARENT`` leaves it.
    """

    name: str | None = None
    parent_id: int | None | KeepParent = KEEP_PARENT
    is_favorite: bool | None = None
    is_public: bool | None = None


@final
class MetadataIndex:
    """Tree of ``Item`` records scoped per user."""

    def allocate_id(self) -> int:
        """Return a fresh item id, strictly greater than any before it.

        Returns:
            Newly allocated id.
        """
        with transaction.atomic():
            sequence, _ = (
                ItemSequence.objects.select_for_update()
                .get_or_create(name=_ITEM_SEQUENCE)
            )
            sequence.last_value = F('last_value') + 1
            sequence.save(update_fields=['last_value'])
            sequence.refresh_from_db(fields=['last_value'])
        return sequence.last_value

    def get(self, item_id: int) -> Item:
        """Get item by id.

        Raises:
            NotFoundError: If no item has the id.
        """
        try:
            return Item.objects.get(id=item_id)
        except Item.DoesNotExist as error:
            raise NotFoundError(f'Item not found: {item_id}') from error

    def resolve_parent(self, user_id: int, parent_id: int | None) -> Item | None:
        """Look up a prospective parent directory.

        Args:
            user_id: User who wants to place an item under the parent.
            parent_id: Parent id, None for the user's root.

        Returns:
            Parent item, None for the root.

        Raises:
            NotFoundError: If the parent does not exist.
            ForbiddenError: If the parent belongs to another user.
            InvalidOperationError: If the parent is not a directory.
        """
        if parent_id is None:
            return None
        parent = self.get(parent_id)
        if parent.user_id != user_id:
            raise ForbiddenError(f'Folder {parent_id} belongs to another user')
        if not parent.is_directory:
            raise InvalidOperationError(f'Item {parent_id} is not a folder')
        return parent

    def ensure_name_available(
        self,
        user_id: int,
        parent_id: int | None,
        name: str,
        exclude_id: int | None = None,
    ) -> None:
        """Check that no sibling already uses the name.

        Names are compared case-sensitively.

        Args:
            user_id: Owner of the siblings.
            parent_id: Parent directory, None for the root.
            name: Candidate name.
            exclude_id: Item allowed to hold the name (itself, on rename).

        Raises:
            ConflictError: If a sibling with the name exists.
        """
        siblings = Item.objects.filter(
            user_id=user_id,
            parent_id=parent_id,
            name=name,
        )
        if exclude_id is not None:
            siblings = siblings.exclude(id=exclude_id)
        if siblings.exists():
            raise ConflictError(name, parent_id)

    def ensure_no_cycle(self, item_id: int, new_parent_id: int | None) -> None:
        """Check that moving an item under a parent keeps the tree acyclic.

        Raises:
            InvalidOperationError: If the parent is the item or one of
                its descendants.
        """
        if new_parent_id is None:
            return
        if new_parent_id == item_id:
            raise InvalidOperationError('A folder cannot be moved into itself')
        for ancestor in self.ancestors_of(new_parent_id):
            if ancestor.id == item_id:
                raise InvalidOperationError(
                    f'Cannot move item {item_id} into its own descendant '
                    f'{new_parent_id}',
                )

    def insert(self, item: Item) -> Item:
        """Add a new item to the tree.

        The item's path is derived from its parent and name, directories
        are normalized to empty folders, and an id is allocated when the
        item has none.

        Args:
            item: Unsaved item with user, parent and name set.

        Returns:
            The saved item.

        Raises:
            ConflictError: If a sibling already uses the name.
        """
        validate_item_name(item.name)
        parent = self.resolve_parent(item.user_id, item.parent_id)
        item.path = join_item_path(parent.path if parent else None, item.name)
        if item.is_directory:
            item.item_type = ItemType.FOLDER
            item.size_bytes = 0

        with transaction.atomic():
            self.ensure_name_available(item.user_id, item.parent_id, item.name)
            if item.id is None:
                item.id = self.allocate_id()
            try:
                with transaction.atomic():
                    item.save(force_insert=True)
            except IntegrityError as error:
                raise ConflictError(item.name, item.parent_id) from error

        logger.info(
            'Item inserted: %s (ID: %d, user: %d)',
            item.path,
            item.id,
            item.user_id,
        )
        return item

    def update(self, item_id: int, user_id: int, changes: ItemUpdate) -> Item:
        """Apply changes to an item owned by the user.

        Renaming or moving recomputes the path of the item and of every
        descendant in the same transaction. ``updated_at`` is refreshed.

        Args:
            item_id: Item to change.
            user_id: User performing the change.
            changes: Fields to change.

        Returns:
            The updated item.

        Raises:
            NotFoundError: If the item does not exist.
            ForbiddenError: If the item belongs to another user.
            ConflictError: If the new name collides with a sibling.
            InvalidOperationError: If the move would create a cycle.
        """
        with transaction.atomic():
            item = self._get_for_update(item_id)
            if item.user_id != user_id:
                raise ForbiddenError(f'Item {item_id} belongs to another user')

            update_fields = ['updated_at']
            if self._apply_relocation(item, changes):
                update_fields.extend(('name', 'parent', 'path'))
            if changes.is_favorite is not None:
                item.is_favorite = changes.is_favorite
                update_fields.append('is_favorite')
            if changes.is_public is not None:
                item.is_public = changes.is_public
                update_fields.append('is_public')

            try:
                with transaction.atomic():
                    item.save(update_fields=update_fields)
            except IntegrityError as error:
                raise ConflictError(item.name, item.parent_id) from error

            if 'path' in update_fields and item.is_directory:
                self._rebase_descendants(item)

        logger.info(
            'Item updated: %s (ID: %d, fields: %s)',
            item.path,
            item.id,
            ', '.join(update_fields),
        )
        return item

    def remove(self, item_id: int) -> None:
        """Delete a single record.

        Children must be removed first, cascading is up to the caller.

        Raises:
            NotFoundError: If the item does not exist.
            InvalidOperationError: If the item still has children.
        """
        try:
            deleted, _ = Item.objects.filter(id=item_id).delete()
        except RestrictedError as error:
            raise InvalidOperationError(
                f'Folder {item_id} still has children',
            ) from error
        if not deleted:
            raise NotFoundError(f'Item not found: {item_id}')
        logger.info('Item removed from index: ID=%d', item_id)

    def descendants_of(self, item_id: int) -> list[Item]:
        """Collect every transitive child of an item.

        Returns:
            Descendants in breadth-first order, parents before children.
        """
        descendants: list[Item] = []
        frontier = [item_id]
        while frontier:
            children = list(Item.objects.filter(parent_id__in=frontier))
            descendants.extend(children)
            frontier = [child.id for child in children if child.is_directory]
        return descendants

    def ancestors_of(self, item_id: int) -> list[Item]:
        """Walk the parent chain of an item.

        Returns:
            Ancestors, nearest first, excluding the item itself.

        Raises:
            NotFoundError: If the item does not exist.
            InvalidOperationError: If the chain loops.
        """
        ancestors: list[Item] = []
        seen = {item_id}
        current = self.get(item_id)
        while current.parent_id is not None:
            if current.parent_id in seen:
                raise InvalidOperationError(
                    f'Parent chain of item {item_id} is cyclic',
                )
            seen.add(current.parent_id)
            current = self.get(current.parent_id)
            ancestors.append(current)
        return ancestors

    def list_children(self, user_id: int, parent_id: int | None) -> QuerySet[Item]:
        """List direct children, directories first, then by name."""
        return Item.objects.filter(
            user_id=user_id,
            parent_id=parent_id,
        ).order_by('-is_directory', 'name')

    def list_by_type(self, user_id: int, item_type: ItemType) -> QuerySet[Item]:
        """List the user's items of one type, by name."""
        return Item.objects.filter(
            user_id=user_id,
            item_type=item_type,
        ).order_by('name', 'id')

    def list_favorites(self, user_id: int) -> QuerySet[Item]:
        """List the user's favorite items, directories first."""
        return Item.objects.filter(
            user_id=user_id,
            is_favorite=True,
        ).order_by('-is_directory', 'name', 'id')

    def list_recent(self, user_id: int, limit: int) -> QuerySet[Item]:
        """List the user's most recently changed files."""
        return Item.objects.filter(
            user_id=user_id,
            is_directory=False,
        ).order_by('-updated_at', '-id')[:limit]

    def search(self, user_id: int, query: str) -> QuerySet[Item]:
        """Find the user's items whose name contains the query.

        Matching ignores case. A blank query matches nothing.
        """
        if not query.strip():
            return Item.objects.none()
        return Item.objects.filter(
            user_id=user_id,
            name__icontains=query,
        ).order_by('-is_directory', 'name', 'id')

    def list_files(self, user_id: int) -> QuerySet[Item]:
        """List every non-directory item of the user."""
        return Item.objects.filter(
            user_id=user_id,
            is_directory=False,
        ).order_by('id')

    def used_bytes(self, user_id: int) -> int:
        """Sum the sizes of the user's files."""
        return self.list_files(user_id).aggregate(
            total=Sum('size_bytes'),
        )['total'] or 0

    def file_count(self, user_id: int) -> int:
        """Count the user's files."""
        return self.list_files(user_id).count()

    def _get_for_update(self, item_id: int) -> Item:
        try:
            return Item.objects.select_for_update().get(id=item_id)
        except Item.DoesNotExist as error:
            raise NotFoundError(f'Item not found: {item_id}') from error

    def _apply_relocation(self, item: Item, changes: ItemUpdate) -> bool:
        new_name = item.name if changes.name is None else changes.name
        new_parent_id = (
            item.parent_id
            if changes.parent_id is KEEP_PARENT
            else changes.parent_id
        )
        if new_name == item.name and new_parent_id == item.parent_id:
            return False

        validate_item_name(new_name)
        parent = self.resolve_parent(item.user_id, new_parent_id)
        if new_parent_id != item.parent_id:
            self.ensure_no_cycle(item.id, new_parent_id)
        self.ensure_name_available(
            item.user_id,
            new_parent_id,
            new_name,
            exclude_id=item.id,
        )

        item.name = new_name
        item.parent_id = new_parent_id
        item.path = join_item_path(parent.path if parent else None, new_name)
        return True

    def _rebase_descendants(self, directory: Item) -> None:
        paths = {directory.id: directory.path}
        queue = deque([directory.id])
        while queue:
            parent_id = queue.popleft()
            for child in Item.objects.filter(parent_id=parent_id):
                child.path = join_item_path(paths[parent_id], child.name)
                child.save(update_fields=['path'])
                paths[child.id] = child.path
                if child.is_directory:
                    queue.append(child.id)
