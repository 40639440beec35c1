"""Metadata helpers: type classification, names and path handling."""

import mimetypes
import posixpath
from pathlib import PurePosixPath
from typing import Final

from server.apps.files.exceptions import InvalidOperationError, InvalidPathError
from server.apps.files.models import ItemType

_PATH_SEPARATOR: Final = '/'
_DEFAULT_MIME_TYPE: Final = 'application/octet-stream'
_FORBIDDEN_NAMES: Final = frozenset(('.', '..'))

_EXTENSION_TYPES: Final[dict[ItemType, frozenset[str]]] = {
    ItemType.IMAGE: frozenset((
        'jpg', 'jpeg', 'png', 'gif', 'bmp', 'svg', 'webp',
    )),
    ItemType.VIDEO: frozenset((
        'mp4', 'avi', 'mov', 'wmv', 'flv', 'mkv', 'webm',
    )),
    ItemType.AUDIO: frozenset((
        'mp3', 'wav', 'ogg', 'flac', 'aac', 'm4a',
    )),
    ItemType.DOCUMENT: frozenset((
        'pdf', 'doc', 'docx', 'xls', 'xlsx', 'ppt', 'pptx', 'txt', 'rtf', 'odt',
    )),
    ItemType.ARCHIVE: frozenset((
        'zip', 'rar', '7z', 'tar', 'gz', 'bz2',
    )),
}

# Substrings of a MIME type, checked in order
_DOCUMENT_MIME_MARKERS: Final = ('document', 'spreadsheet', 'presentation')
_ARCHIVE_MIME_MARKERS: Final = ('zip', 'rar', 'tar', 'compress')


def detect_mime_type(filename: str) -> str:
    """Detect MIME type from filename.

    Uses Python's built-in mimetypes module to guess MIME type
    from filename extension.

    Args:
        filename: Filename with extension.

    Returns:
        MIME type string (e.g., 'image/jpeg', 'application/pdf').
        Returns 'application/octet-stream' if type cannot be determined.
    """
    mime_type, _ = mimetypes.guess_type(filename)
    if mime_type is None:
        return _DEFAULT_MIME_TYPE
    return mime_type


def get_file_extension(filename: str) -> str:
    """Get file extension from filename.

    Args:
        filename: Filename (e.g., 'document.pdf').

    Returns:
        Extension without dot, lowercase (e.g., 'pdf').
        Returns empty string if no extension.
    """
    extension = PurePosixPath(filename).suffix
    return extension.lstrip('.').lower()


def classify_item_type(filename: str, content_type: str | None = None) -> ItemType:
    """Classify a file into one of the browsing categories.

    The declared content type wins when it is specific enough,
    otherwise the extension decides.

    Args:
        filename: Name of the uploaded file.
        content_type: MIME type declared by the client, if any.

    Returns:
        ItemType for the file (never FOLDER).
    """
    mime_type = (content_type or '').lower()
    if mime_type and mime_type != _DEFAULT_MIME_TYPE:
        classified = _classify_mime_type(mime_type)
        if classified is not ItemType.OTHER:
            return classified

    extension = get_file_extension(filename)
    for item_type, extensions in _EXTENSION_TYPES.items():
        if extension in extensions:
            return item_type
    return ItemType.OTHER


def _classify_mime_type(mime_type: str) -> ItemType:
    if mime_type.startswith('image/'):
        return ItemType.IMAGE
    if mime_type.startswith('video/'):
        return ItemType.VIDEO
    if mime_type.startswith('audio/'):
        return ItemType.AUDIO
    if mime_type == 'application/pdf' or any(
        marker in mime_type for marker in _DOCUMENT_MIME_MARKERS
    ):
        return ItemType.DOCUMENT
    if any(marker in mime_type for marker in _ARCHIVE_MIME_MARKERS):
        return ItemType.ARCHIVE
    return ItemType.OTHER


def validate_item_name(name: str) -> str:
    """Validate a file or folder name.

    Names are single path components: non-blank, no separators,
    no null bytes and not one of the relative markers.

    Args:
        name: Proposed item name.

    Returns:
        The name, unchanged.

    Raises:
        InvalidOperationError: If the name cannot be used.
    """
    if not name or not name.strip():
        raise InvalidOperationError('Item name cannot be empty')
    if _PATH_SEPARATOR in name or '\\' in name:
        raise InvalidOperationError(f'Item name cannot contain separators: {name!r}')
    if '\x00' in name:
        raise InvalidOperationError('Item name cannot contain null bytes')
    if name in _FORBIDDEN_NAMES:
        raise InvalidOperationError(f'Item name is reserved: {name!r}')
    return name


def join_item_path(parent_path: str | None, name: str) -> str:
    """Derive the logical path of an item.

    Example: ('/Docs', 'report.pdf') -> '/Docs/report.pdf'
             (None, 'Docs') -> '/Docs'

    Args:
        parent_path: Logical path of the parent, None at the root.
        name: Item name.

    Returns:
        Logical path starting with a separator.
    """
    if not parent_path:
        return _PATH_SEPARATOR + name
    return parent_path.rstrip(_PATH_SEPARATOR) + _PATH_SEPARATOR + name


def normalize_relative_path(relative_path: str) -> str:
    """Normalize a path relative to a user's storage root.

    Backslashes become separators, the leading separator is dropped and
    redundant components are collapsed.

    Example: '/Docs//reports/./q1.pdf' -> 'Docs/reports/q1.pdf'

    Args:
        relative_path: Path as stored in item metadata or given by caller.

    Returns:
        Normalized path, empty string for the root itself.

    Raises:
        InvalidPathError: If the path escapes the root or is malformed.
    """
    if '\x00' in relative_path:
        raise InvalidPathError('Path cannot contain null bytes')

    unified = relative_path.replace('\\', _PATH_SEPARATOR).lstrip(_PATH_SEPARATOR)
    if not unified:
        return ''

    normalized = posixpath.normpath(unified)
    if normalized == '.':
        return ''
    if normalized == '..' or normalized.startswith('../'):
        raise InvalidPathError(f'Path escapes storage root: {relative_path!r}')
    return normalized


def build_storage_key(user_id: int, relative_path: str) -> str:
    """Build the storage key for a user-relative path.

    Example: (123, '/Docs/q1.pdf') -> '123/Docs/q1.pdf'

    Args:
        user_id: Owner's user ID.
        relative_path: Path relative to the user's root.

    Returns:
        Key in the storage backend, prefixed with the user ID.

    Raises:
        InvalidPathError: If the path escapes the user's root.
    """
    normalized = normalize_relative_path(relative_path)
    if not normalized:
        return str(user_id)
    return f'{user_id}{_PATH_SEPARATOR}{normalized}'
