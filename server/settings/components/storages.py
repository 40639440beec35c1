"""Django storage configuration for the physical file store.

Two backends implement the same directory-aware interface:
- local filesystem (default), one subtree per user
- S3-compatible object storage (MinIO, Cloudflare R2, AWS)

The backend is picked with FILES_STORAGE_BACKEND ('local' or 's3').
"""

from typing import Any, Final

from server.settings.components import BASE_DIR, config

FILES_STORAGE_BACKEND: Final = config('FILES_STORAGE_BACKEND', default='local')

FILES_STORAGE_ROOT: Final = config(
    'FILES_STORAGE_ROOT',
    default=str(BASE_DIR.joinpath('storage', 'data')),
)

if FILES_STORAGE_BACKEND == 's3':
    _default_storage: dict[str, Any] = {
        'BACKEND': 'server.apps.files.infrastructure.storage.ObjectFileStorage',
        'OPTIONS': {
            'bucket_name': config('AWS_STORAGE_BUCKET_NAME'),
            'access_key': config('AWS_ACCESS_KEY_ID'),
            'secret_key': config('AWS_SECRET_ACCESS_KEY'),
            'endpoint_url': config(
                'AWS_S3_ENDPOINT_URL',
                default=None,
            ),
            'region_name': config(
                'AWS_S3_REGION_NAME',
                default='auto',
            ),
            'file_overwrite': True,  # Uploads replace content in place
            'default_acl': None,  # Inherit bucket ACL
        },
    }
else:
    _default_storage = {
        'BACKEND': 'server.apps.files.infrastructure.storage.LocalFileStorage',
        'OPTIONS': {
            'location': FILES_STORAGE_ROOT,
        },
    }

STORAGES: Final[dict[str, dict[str, Any]]] = {
    'default': _default_storage,
    'staticfiles': {
        'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage',
    },
}
