"""Tests for user lifecycle signal handlers."""

import pytest

from server.apps.files.logic.file_operations import get_hierarchy_manager
from server.apps.files.models import Item


@pytest.mark.django_db
def test_user_creation_creates_storage_root(user, local_storage):
    """Test a new user gets an empty storage subtree."""
    assert (local_storage / str(user.id)).is_dir()


@pytest.mark.django_db
def test_user_deletion_removes_storage_and_items(user, local_storage):
    """Test deleting a user removes their files everywhere."""
    manager = get_hierarchy_manager()
    docs = manager.create_folder(user.id, 'Docs')
    manager.upload_file(user.id, 'a.txt', b'a', parent_id=docs.id)
    user_root = local_storage / str(user.id)

    user.delete()

    assert not user_root.exists()
    assert not Item.objects.exists()


@pytest.mark.django_db
def test_user_deletion_without_storage_root(user, local_storage, physical_store):
    """Test deleting a user whose storage root is already gone."""
    physical_store.delete_recursive(user.id, '')

    user.delete()

    assert not (local_storage / str(user.id)).exists()
