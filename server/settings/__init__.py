"""Django settings assembled from components.

Components are included in order, later ones may override earlier ones.
See https://github.com/wemake-services/django-split-settings
"""

from split_settings.tools import include

include(
    'components/common.py',
    'components/logging.py',
    'components/storages.py',
    'components/files.py',
)
