"""Tests for the metadata index."""

from datetime import timedelta

import pytest
from django.utils import timezone

from server.apps.files.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidOperationError,
    NotFoundError,
)
from server.apps.files.logic.metadata_index import ItemUpdate
from server.apps.files.models import Item, ItemType


def _folder(index, user, name, parent=None):
    return index.insert(Item(
        user=user,
        parent=parent,
        name=name,
        is_directory=True,
    ))


def _file(index, user, name, parent=None, size_bytes=1, **fields):
    return index.insert(Item(
        user=user,
        parent=parent,
        name=name,
        item_type=fields.pop('item_type', ItemType.DOCUMENT),
        size_bytes=size_bytes,
        **fields,
    ))


@pytest.mark.django_db
def test_allocate_id_is_strictly_increasing(index):
    """Test ids are never reused and always grow."""
    first = index.allocate_id()
    second = index.allocate_id()

    assert first >= 1
    assert second == first + 1


@pytest.mark.django_db
def test_ids_not_reused_after_remove(user, index):
    """Test removing the newest item does not free its id."""
    removed = _file(index, user, 'a.txt')
    index.remove(removed.id)

    created = _file(index, user, 'b.txt')

    assert created.id > removed.id


@pytest.mark.django_db
def test_insert_derives_path(user, index):
    """Test the stored path is built from the chain of names."""
    docs = _folder(index, user, 'Docs')
    reports = _folder(index, user, 'reports', parent=docs)
    report = _file(index, user, 'q1.pdf', parent=reports)

    assert docs.path == '/Docs'
    assert reports.path == '/Docs/reports'
    assert report.path == '/Docs/reports/q1.pdf'


@pytest.mark.django_db
def test_insert_normalizes_directory(user, index):
    """Test directories are stored as empty folders."""
    folder = index.insert(Item(
        user=user,
        name='Docs',
        is_directory=True,
        item_type=ItemType.IMAGE,
        size_bytes=99,
    ))

    assert folder.item_type == ItemType.FOLDER
    assert folder.size_bytes == 0


@pytest.mark.django_db
def test_insert_duplicate_name_conflicts(user, index):
    """Test sibling names are unique per parent."""
    _file(index, user, 'a.txt')

    with pytest.raises(ConflictError) as exc_info:
        _folder(index, user, 'a.txt')

    assert exc_info.value.name == 'a.txt'
    assert exc_info.value.parent_id is None


@pytest.mark.django_db
def test_names_are_case_sensitive(user, index):
    """Test names differing only in case are distinct."""
    _file(index, user, 'Report.txt')
    _file(index, user, 'report.txt')

    assert index.list_children(user.id, None).count() == 2


@pytest.mark.django_db
def test_insert_into_file_parent_fails(user, index):
    """Test files cannot be parents."""
    parent = _file(index, user, 'a.txt')

    with pytest.raises(InvalidOperationError):
        _file(index, user, 'b.txt', parent=parent)


@pytest.mark.django_db
def test_insert_into_foreign_parent_fails(user, other_user, index):
    """Test the parent must belong to the same user."""
    foreign = _folder(index, other_user, 'Shared')

    with pytest.raises(ForbiddenError):
        _file(index, user, 'b.txt', parent=foreign)


@pytest.mark.django_db
def test_insert_missing_parent_fails(user, index):
    """Test inserting under an unknown parent."""
    with pytest.raises(NotFoundError):
        index.insert(Item(user=user, parent_id=999, name='a.txt'))


@pytest.mark.django_db
def test_insert_empty_name_fails(user, index):
    """Test blank names are rejected."""
    with pytest.raises(InvalidOperationError):
        _file(index, user, '   ')


@pytest.mark.django_db
def test_get_missing(index):
    """Test getting an unknown id."""
    with pytest.raises(NotFoundError):
        index.get(12345)


@pytest.mark.django_db
def test_update_rename_rebases_descendants(user, index):
    """Test renaming a folder rewrites the paths beneath it."""
    docs = _folder(index, user, 'Docs')
    sub = _folder(index, user, 'sub', parent=docs)
    deep = _file(index, user, 'a.txt', parent=sub)

    index.update(docs.id, user.id, ItemUpdate(name='Papers'))

    sub.refresh_from_db()
    deep.refresh_from_db()
    assert index.get(docs.id).path == '/Papers'
    assert sub.path == '/Papers/sub'
    assert deep.path == '/Papers/sub/a.txt'


@pytest.mark.django_db
def test_update_move_to_root(user, index):
    """Test moving an item to the root with an explicit None parent."""
    docs = _folder(index, user, 'Docs')
    item = _file(index, user, 'a.txt', parent=docs)

    moved = index.update(item.id, user.id, ItemUpdate(parent_id=None))

    assert moved.parent_id is None
    assert moved.path == '/a.txt'


@pytest.mark.django_db
def test_update_flags_keep_parent(user, index):
    """Test flag updates leave the placement untouched."""
    docs = _folder(index, user, 'Docs')
    item = _file(index, user, 'a.txt', parent=docs)

    updated = index.update(
        item.id,
        user.id,
        ItemUpdate(is_favorite=True, is_public=True),
    )

    assert updated.parent_id == docs.id
    assert updated.is_favorite
    assert updated.is_public


@pytest.mark.django_db
def test_update_refreshes_timestamp(user, index):
    """Test every update moves updated_at forward."""
    item = _file(index, user, 'a.txt')
    before = item.updated_at

    updated = index.update(item.id, user.id, ItemUpdate(is_favorite=True))

    assert updated.updated_at >= before


@pytest.mark.django_db
def test_update_rename_conflict(user, index):
    """Test renaming onto a sibling's name."""
    _file(index, user, 'a.txt')
    other = _file(index, user, 'b.txt')

    with pytest.raises(ConflictError):
        index.update(other.id, user.id, ItemUpdate(name='a.txt'))


@pytest.mark.django_db
def test_update_rename_to_own_name(user, index):
    """Test renaming an item to its current name is a no-op."""
    item = _file(index, user, 'a.txt')

    assert index.update(item.id, user.id, ItemUpdate(name='a.txt')).name == 'a.txt'


@pytest.mark.django_db
def test_update_foreign_item_forbidden(user, other_user, index):
    """Test users cannot change items of other users."""
    item = _file(index, other_user, 'a.txt')

    with pytest.raises(ForbiddenError):
        index.update(item.id, user.id, ItemUpdate(is_favorite=True))


@pytest.mark.django_db
def test_update_move_into_descendant_fails(user, index):
    """Test that a folder cannot be moved beneath itself."""
    docs = _folder(index, user, 'Docs')
    sub = _folder(index, user, 'sub', parent=docs)

    with pytest.raises(InvalidOperationError):
        index.update(docs.id, user.id, ItemUpdate(parent_id=sub.id))
    with pytest.raises(InvalidOperationError):
        index.update(docs.id, user.id, ItemUpdate(parent_id=docs.id))


@pytest.mark.django_db
def test_remove_folder_with_children_fails(user, index):
    """Test removing a folder before its children."""
    docs = _folder(index, user, 'Docs')
    _file(index, user, 'a.txt', parent=docs)

    with pytest.raises(InvalidOperationError):
        index.remove(docs.id)

    assert Item.objects.filter(id=docs.id).exists()


@pytest.mark.django_db
def test_remove_missing(index):
    """Test removing an unknown id."""
    with pytest.raises(NotFoundError):
        index.remove(404)


@pytest.mark.django_db
def test_descendants_and_ancestors(user, index):
    """Test walking the tree in both directions."""
    docs = _folder(index, user, 'Docs')
    sub = _folder(index, user, 'sub', parent=docs)
    first = _file(index, user, 'a.txt', parent=docs)
    deep = _file(index, user, 'b.txt', parent=sub)

    descendants = index.descendants_of(docs.id)
    ancestors = index.ancestors_of(deep.id)

    assert {item.id for item in descendants} == {sub.id, first.id, deep.id}
    assert descendants[-1].id == deep.id
    assert [item.id for item in ancestors] == [sub.id, docs.id]
    assert index.ancestors_of(docs.id) == []


@pytest.mark.django_db
def test_list_children_directories_first(user, index):
    """Test listing orders directories before files, then by name."""
    _file(index, user, 'a.txt')
    _folder(index, user, 'Zeta')
    _folder(index, user, 'Alpha')
    _file(index, user, 'B.txt')

    names = [item.name for item in index.list_children(user.id, None)]

    assert names == ['Alpha', 'Zeta', 'B.txt', 'a.txt']


@pytest.mark.django_db
def test_queries_are_scoped_per_user(user, other_user, index):
    """Test no query leaks items of another user."""
    _file(index, other_user, 'secret.txt', is_favorite=True)
    _file(index, user, 'mine.txt')

    assert [item.name for item in index.list_children(user.id, None)] == [
        'mine.txt',
    ]
    assert not index.list_favorites(user.id).exists()
    assert not index.search(user.id, 'secret').exists()
    assert index.list_by_type(user.id, ItemType.DOCUMENT).count() == 1


@pytest.mark.django_db
def test_list_by_type(user, index):
    """Test listing by type."""
    _file(index, user, 'b.png', item_type=ItemType.IMAGE)
    _file(index, user, 'a.png', item_type=ItemType.IMAGE)
    _file(index, user, 'c.txt')

    names = [item.name for item in index.list_by_type(user.id, ItemType.IMAGE)]

    assert names == ['a.png', 'b.png']


@pytest.mark.django_db
def test_list_recent_excludes_directories(user, index):
    """Test recent files are newest first and never folders."""
    _folder(index, user, 'Docs')
    older = _file(index, user, 'old.txt')
    newer = _file(index, user, 'new.txt')
    Item.objects.filter(id=newer.id).update(
        updated_at=timezone.now() - timedelta(hours=1),
    )
    index.update(older.id, user.id, ItemUpdate(is_favorite=True))

    recent = list(index.list_recent(user.id, 10))

    assert [item.id for item in recent] == [older.id, newer.id]
    assert len(list(index.list_recent(user.id, 1))) == 1


@pytest.mark.django_db
def test_search_case_insensitive_substring(user, index):
    """Test search matches name substrings ignoring case."""
    _file(index, user, 'Quarterly Report.pdf')
    _file(index, user, 'notes.txt')

    names = [item.name for item in index.search(user.id, 'report')]

    assert names == ['Quarterly Report.pdf']


@pytest.mark.django_db
def test_search_blank_query_matches_nothing(user, index):
    """Test a blank query returns no results."""
    _file(index, user, 'a.txt')

    assert not index.search(user.id, '  ').exists()


@pytest.mark.django_db
def test_used_bytes_and_file_count(user, index):
    """Test usage counts files only."""
    docs = _folder(index, user, 'Docs')
    _file(index, user, 'a.txt', size_bytes=10)
    _file(index, user, 'b.txt', parent=docs, size_bytes=5)

    assert index.used_bytes(user.id) == 15
    assert index.file_count(user.id) == 2
