"""Business logic for storage quota and usage accounting."""

import logging
from dataclasses import dataclass
from typing import final

from django.conf import settings

from server.apps.files.exceptions import QuotaExceededError
from server.apps.files.infrastructure.physical_store import (
    PhysicalStore,
    get_physical_store,
)
from server.apps.files.logic.metadata_index import MetadataIndex
from server.apps.files.models import UserQuota

logger = logging.getLogger(__name__)


@final
@dataclass(frozen=True, slots=True)
class StorageStats:
    """Usage report for one user."""

    used: int
    total: int
    free: int
    used_percentage: float


def get_or_create_quota(user_id: int) -> UserQuota:
    """Get or create quota for user (on-demand creation).

    Args:
        user_id: User to get quota for.

    Returns:
        UserQuota instance for the user.
    """
    quota, created = UserQuota.objects.get_or_create(
        user_id=user_id,
        defaults={'quota_bytes': settings.FILES_DEFAULT_QUOTA_BYTES},
    )
    if created:
        logger.info(
            'Created quota for user %d: %d bytes',
            user_id,
            quota.quota_bytes,
        )
    return quota


def check_quota(
    user_id: int,
    size_bytes: int,
    index: MetadataIndex | None = None,
) -> None:
    """Check if user has enough quota for an upload.

    Creates quota on-demand if it doesn't exist.

    Args:
        user_id: User to check quota for.
        size_bytes: Size of the upload in bytes.
        index: Metadata index to derive current usage from.

    Raises:
        QuotaExceededError: If upload would exceed quota.
    """
    quota = get_or_create_quota(user_id)
    used_bytes = (index or MetadataIndex()).used_bytes(user_id)

    if not quota.has_space_for(used_bytes, size_bytes):
        logger.warning(
            'Quota exceeded for user %d: need %d, have %d available',
            user_id,
            size_bytes,
            quota.available_bytes(used_bytes),
        )
        raise QuotaExceededError(
            quota_bytes=quota.quota_bytes,
            used_bytes=used_bytes,
            required_bytes=size_bytes,
        )


def stats_for(
    user_id: int,
    *,
    live: bool = False,
    index: MetadataIndex | None = None,
    store: PhysicalStore | None = None,
) -> StorageStats:
    """Report a user's storage usage against their quota.

    Usage is the sum of file sizes in the metadata index. When the index
    holds no files for the user, or ``live`` is set, the physical store
    is walked instead.

    Args:
        user_id: User to report on.
        live: Force a walk of the physical store.
        index: Metadata index to sum sizes from.
        store: Physical store to walk.

    Returns:
        StorageStats with used, total and free bytes.
    """
    index = index or MetadataIndex()
    if live or not index.file_count(user_id):
        used = (store or get_physical_store()).used_bytes(user_id)
        source = 'storage walk'
    else:
        used = index.used_bytes(user_id)
        source = 'index'

    quota = get_or_create_quota(user_id)
    total = quota.quota_bytes
    used_percentage = used / total * 100 if total else 0.0

    logger.debug(
        'Usage for user %d from %s: %d/%d bytes',
        user_id,
        source,
        used,
        total,
    )
    return StorageStats(
        used=used,
        total=total,
        free=quota.available_bytes(used),
        used_percentage=used_percentage,
    )
