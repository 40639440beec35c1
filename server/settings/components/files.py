"""Settings for the hierarchical file store."""

from server.settings.components import config

# Quota applied to users without an explicit UserQuota record: 10 GiB
FILES_DEFAULT_QUOTA_BYTES = config(
    'FILES_DEFAULT_QUOTA_BYTES',
    cast=int,
    default=10 * 1024 * 1024 * 1024,
)

# Number of items returned by the "recent files" listing by default
FILES_RECENT_LIMIT = config('FILES_RECENT_LIMIT', cast=int, default=10)
