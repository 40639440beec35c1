"""Tests for quota operations business logic."""

import pytest

from server.apps.files.exceptions import QuotaExceededError
from server.apps.files.logic.quota_operations import (
    check_quota,
    get_or_create_quota,
    stats_for,
)
from server.apps.files.models import Item, ItemType, UserQuota


def _add_file(index, user, name, size_bytes):
    return index.insert(Item(
        user=user,
        name=name,
        item_type=ItemType.OTHER,
        size_bytes=size_bytes,
    ))


@pytest.mark.django_db
def test_get_or_create_quota_creates_new(user, settings):
    """Test get_or_create_quota creates quota when none exists."""
    settings.FILES_DEFAULT_QUOTA_BYTES = 4096
    assert not UserQuota.objects.filter(user=user).exists()

    quota = get_or_create_quota(user.id)

    assert quota.user == user
    assert quota.quota_bytes == 4096


@pytest.mark.django_db
def test_get_or_create_quota_returns_existing(user):
    """Test get_or_create_quota returns existing quota."""
    existing_quota = UserQuota.objects.create(user=user, quota_bytes=5000)

    quota = get_or_create_quota(user.id)

    assert quota.pk == existing_quota.pk
    assert quota.quota_bytes == 5000


@pytest.mark.django_db
def test_check_quota_passes_when_space_available(user, index):
    """Test check_quota doesn't raise when space is available."""
    UserQuota.objects.create(user=user, quota_bytes=1000)
    _add_file(index, user, 'a.bin', 400)

    check_quota(user.id, 600, index=index)


@pytest.mark.django_db
def test_check_quota_raises_when_exceeded(user, index):
    """Test check_quota raises when the upload does not fit."""
    UserQuota.objects.create(user=user, quota_bytes=1000)
    _add_file(index, user, 'a.bin', 400)

    with pytest.raises(QuotaExceededError) as exc_info:
        check_quota(user.id, 601, index=index)

    assert exc_info.value.quota_bytes == 1000
    assert exc_info.value.used_bytes == 400
    assert exc_info.value.required_bytes == 601
    assert exc_info.value.http_status == 507


@pytest.mark.django_db
def test_stats_from_index(user, index, physical_store):
    """Test usage is the sum of indexed file sizes."""
    UserQuota.objects.create(user=user, quota_bytes=1000)
    _add_file(index, user, 'a.bin', 250)
    _add_file(index, user, 'b.bin', 0)

    stats = stats_for(user.id, index=index, store=physical_store)

    assert stats.used == 250
    assert stats.total == 1000
    assert stats.free == 750
    assert stats.used_percentage == pytest.approx(25.0)


@pytest.mark.django_db
def test_stats_falls_back_to_storage_walk(user, index, physical_store):
    """Test usage is walked from storage when nothing is indexed."""
    UserQuota.objects.create(user=user, quota_bytes=100)
    physical_store.write(user.id, 'orphan.bin', b'x' * 40)

    stats = stats_for(user.id, index=index, store=physical_store)

    assert stats.used == 40
    assert stats.free == 60


@pytest.mark.django_db
def test_stats_live_walks_storage(user, index, physical_store):
    """Test live stats ignore the index."""
    UserQuota.objects.create(user=user, quota_bytes=100)
    _add_file(index, user, 'a.bin', 10)
    physical_store.write(user.id, 'a.bin', b'x' * 30)

    assert stats_for(user.id, index=index, store=physical_store).used == 10
    assert stats_for(
        user.id,
        live=True,
        index=index,
        store=physical_store,
    ).used == 30


@pytest.mark.django_db
def test_stats_with_zero_quota(user, index, physical_store):
    """Test the percentage with a zero quota does not divide by zero."""
    UserQuota.objects.create(user=user, quota_bytes=0)

    stats = stats_for(user.id, index=index, store=physical_store)

    assert stats.used == 0
    assert stats.used_percentage == 0.0
    assert stats.free == 0


@pytest.mark.django_db
def test_stats_over_quota_has_no_free_space(user, index, physical_store):
    """Test free space never goes negative."""
    UserQuota.objects.create(user=user, quota_bytes=100)
    _add_file(index, user, 'a.bin', 150)

    stats = stats_for(user.id, index=index, store=physical_store)

    assert stats.free == 0
    assert stats.used_percentage == pytest.approx(150.0)
