"""Shared fixtures for files app tests."""

import boto3
import pytest
from django.contrib.auth import get_user_model
from django.core.files.storage import storages
from moto import mock_aws

from server.apps.files.infrastructure.physical_store import PhysicalStore
from server.apps.files.infrastructure.storage import ObjectFileStorage
from server.apps.files.logic.file_operations import HierarchyManager
from server.apps.files.logic.metadata_index import MetadataIndex

User = get_user_model()

_TEST_BUCKET = 'file-hierarchy'


@pytest.fixture(autouse=True)
def local_storage(settings, tmp_path):
    """Point the default storage backend at a temporary directory.

    Returns:
        Storage root path.
    """
    root = tmp_path / 'storage'
    settings.STORAGES = {
        'default': {
            'BACKEND': 'server.apps.files.infrastructure.storage.LocalFileStorage',
            'OPTIONS': {'location': str(root)},
        },
        'staticfiles': {
            'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage',
        },
    }
    return root


@pytest.fixture
def user(db):
    """Create test user.

    Returns:
        User instance for testing.
    """
    return User.objects.create_user(
        username='testuser',
        password='testpass123',
        email='test@example.com',
    )


@pytest.fixture
def other_user(db):
    """Create second test user for isolation tests.

    Returns:
        Second user instance.
    """
    return User.objects.create_user(
        username='otheruser',
        password='testpass123',
        email='other@example.com',
    )


@pytest.fixture
def physical_store(local_storage):
    """Physical store over the temporary local storage.

    Returns:
        PhysicalStore instance.
    """
    return PhysicalStore(storages['default'])


@pytest.fixture
def index():
    """Metadata index over the test database.

    Returns:
        MetadataIndex instance.
    """
    return MetadataIndex()


@pytest.fixture
def manager(index, physical_store):
    """Hierarchy manager wired to the test collaborators.

    Returns:
        HierarchyManager instance.
    """
    return HierarchyManager(index, physical_store)


@pytest.fixture
def mock_s3():
    """Mock S3 service with the test bucket.

    Yields:
        boto3 S3 resource with the bucket created.
    """
    with mock_aws():
        conn = boto3.resource('s3', region_name='us-east-1')
        conn.create_bucket(Bucket=_TEST_BUCKET)
        yield conn


@pytest.fixture
def object_storage(mock_s3):
    """Object storage backend talking to the mocked bucket.

    Returns:
        ObjectFileStorage instance.
    """
    return ObjectFileStorage(
        bucket_name=_TEST_BUCKET,
        access_key='testing',
        secret_key='testing',
        region_name='us-east-1',
        file_overwrite=True,
        default_acl=None,
    )
