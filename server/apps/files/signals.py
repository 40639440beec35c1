"""Signal handlers for files app."""

import logging

from django.conf import settings
from django.contrib.auth.models import AbstractBaseUser
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from server.apps.files.exceptions import HierarchyError, NotFoundError
from server.apps.files.infrastructure.physical_store import get_physical_store

logger = logging.getLogger(__name__)


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def create_user_storage_root(
    sender: type,
    instance: AbstractBaseUser,
    created: bool,
    **kwargs: object,
) -> None:
    """Create the storage subtree of a newly registered user.

    Args:
        sender: The user model class.
        instance: The saved user.
        created: Whether the user was just created.
        **kwargs: Additional signal arguments.
    """
    if not created or kwargs.get('raw'):
        return
    get_physical_store().ensure_user_root(instance.pk)
    logger.info('Storage root created for user %d', instance.pk)


@receiver(post_delete, sender=settings.AUTH_USER_MODEL)
def delete_user_storage_root(
    sender: type,
    instance: AbstractBaseUser,
    **kwargs: object,
) -> None:
    """Delete the storage subtree when a user is deleted.

    The user's item records are removed by the database cascade.

    Args:
        sender: The user model class.
        instance: The deleted user.
        **kwargs: Additional signal arguments.
    """
    try:
        get_physical_store().delete_recursive(instance.pk, '')
    except NotFoundError:
        logger.warning(
            'Storage root not found (already deleted?): user %d',
            instance.pk,
        )
    except HierarchyError:
        # Log error but don't raise - DB delete already succeeded
        logger.exception(
            'Failed to delete storage root (orphaned): user %d',
            instance.pk,
        )
    else:
        logger.info('Storage root deleted for user %d', instance.pk)
