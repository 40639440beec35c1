"""Database models for files app."""

from pathlib import PurePosixPath
from typing import Final, final, override

from django.contrib.auth import get_user_model
from django.db import models

User = get_user_model()

# Constants for field max lengths
_NAME_MAX_LENGTH: Final = 255
_ITEM_TYPE_MAX_LENGTH: Final = 16
_SEQUENCE_NAME_MAX_LENGTH: Final = 32


class ItemType(models.TextChoices):
    """Classification of an item, assigned once at creation."""

    FOLDER = 'folder', 'Folder'
    DOCUMENT = 'document', 'Document'
    IMAGE = 'image', 'Image'
    VIDEO = 'video', 'Video'
    AUDIO = 'audio', 'Audio'
    ARCHIVE = 'archive', 'Archive'
    OTHER = 'other', 'Other'


@final
class Item(models.Model):
    """File or directory in a user's virtual hierarchy.

    Items form a forest per user through ``parent``. The ``path`` field
    is derived from the chain of names from the root down to the item,
    for example ``/Docs/reports/q1.pdf``, and doubles as the key of the
    item's content in physical storage (under the owner's root).

    Ids are allocated by the metadata index from ``ItemSequence`` and
    never reused.
    """

    id = models.BigIntegerField(primary_key=True)

    # Owner relationship
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='items',
        db_index=True,
    )

    # RESTRICT keeps a directory from disappearing under its children,
    # while still allowing the whole tree to go with its owner.
    parent = models.ForeignKey(
        'self',
        on_delete=models.RESTRICT,
        related_name='children',
        null=True,
        blank=True,
    )

    name = models.CharField(max_length=_NAME_MAX_LENGTH)

    path = models.TextField(
        help_text='Logical path: /folder/subfolder/name',
    )

    item_type = models.CharField(
        max_length=_ITEM_TYPE_MAX_LENGTH,
        choices=ItemType.choices,
    )

    size_bytes = models.BigIntegerField(
        default=0,
        help_text='File size in bytes, 0 for directories',
    )

    is_directory = models.BooleanField(default=False)
    is_favorite = models.BooleanField(default=False)
    is_public = models.BooleanField(default=False)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Item'  # type: ignore[mutable-override]
        verbose_name_plural = 'Items'  # type: ignore[mutable-override]
        ordering = ['-is_directory', 'name']

        indexes = [
            # Optimize directory listing queries
            models.Index(
                fields=['user', 'parent'],
                name='files_item_user_parent_idx',
            ),
            # Optimize recent files queries
            models.Index(
                fields=['user', '-updated_at'],
                name='files_item_user_recent_idx',
            ),
            models.Index(
                fields=['user', 'item_type'],
                name='files_item_user_type_idx',
            ),
        ]

        constraints = [
            # Sibling names are unique per user and parent
            models.UniqueConstraint(
                fields=['user', 'parent', 'name'],
                name='files_item_sibling_unique',
            ),
            # NULL parents never compare equal, so root needs its own rule
            models.UniqueConstraint(
                fields=['user', 'name'],
                condition=models.Q(parent__isnull=True),
                name='files_item_root_sibling_unique',
            ),
            models.CheckConstraint(
                condition=models.Q(size_bytes__gte=0),
                name='files_item_size_non_negative',
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(is_directory=False) |
                    models.Q(size_bytes=0, item_type='folder')
                ),
                name='files_item_directory_is_empty_folder',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.user_id}:{self.path}'

    @property
    def relative_path(self) -> str:
        """Path relative to the owner's storage root.

        Example: '/Docs/report.pdf' -> 'Docs/report.pdf'
        """
        return self.path.lstrip('/')

    def get_extension(self) -> str:
        """Extract file extension.

        Example: 'file.PDF' -> 'pdf'

        Returns:
            Extension without dot (lowercase).
        """
        extension = PurePosixPath(self.name).suffix
        return extension.lstrip('.').lower()


@final
class ItemSequence(models.Model):
    """Persisted counter behind item id allocation."""

    name = models.CharField(
        max_length=_SEQUENCE_NAME_MAX_LENGTH,
        primary_key=True,
    )

    last_value = models.BigIntegerField(default=0)

    class Meta:
        """Model metadata."""

        verbose_name = 'Item Sequence'  # type: ignore[mutable-override]
        verbose_name_plural = 'Item Sequences'  # type: ignore[mutable-override]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.name}={self.last_value}'


# Default quota: 10 GB in bytes
_DEFAULT_QUOTA_BYTES: Final = 10 * 1024 * 1024 * 1024


@final
class UserQuota(models.Model):
    """Storage quota for a user.

    Holds the user's storage limit. Usage is never stored here, it is
    derived from the metadata index (or a physical walk) on demand.
    """

    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        related_name='quota',
        primary_key=True,
    )

    quota_bytes = models.BigIntegerField(
        default=_DEFAULT_QUOTA_BYTES,
        help_text='Storage quota limit in bytes',
    )

    class Meta:
        """Model metadata."""

        verbose_name = 'User Quota'  # type: ignore[mutable-override]
        verbose_name_plural = 'User Quotas'  # type: ignore[mutable-override]

        constraints = [
            models.CheckConstraint(
                condition=models.Q(quota_bytes__gte=0),
                name='quota_bytes_non_negative',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.user.username}: {self.quota_bytes}'

    def has_space_for(self, used_bytes: int, size_bytes: int) -> bool:
        """Check if there's enough space for the given size.

        Args:
            used_bytes: Bytes already consumed by the user.
            size_bytes: Size to check in bytes.

        Returns:
            True if there's enough space, False otherwise.
        """
        return used_bytes + size_bytes <= self.quota_bytes

    def available_bytes(self, used_bytes: int) -> int:
        """Get available storage space.

        Args:
            used_bytes: Bytes already consumed by the user.

        Returns:
            Available bytes (never negative).
        """
        available = self.quota_bytes - used_bytes
        return max(0, available)
