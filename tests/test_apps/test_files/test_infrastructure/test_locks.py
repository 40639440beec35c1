"""Tests for keyed locks."""

import threading

import pytest

from server.apps.files.infrastructure.locks import KeyedLock


def test_hold_is_reentrant():
    """Test that the same thread can hold a key twice."""
    locks = KeyedLock()

    with locks.hold('a'), locks.hold('a', 'b'):
        acquired = True

    assert acquired


def test_hold_serializes_same_key():
    """Test that a second thread waits for a held key."""
    locks = KeyedLock()
    events: list[str] = []
    started = threading.Event()

    def worker():
        started.set()
        with locks.hold('key'):
            events.append('worker')

    with locks.hold('key'):
        thread = threading.Thread(target=worker)
        thread.start()
        started.wait()
        thread.join(timeout=0.1)
        events.append('main')

    thread.join()
    assert events == ['main', 'worker']
    assert not len(locks)


def test_hold_different_keys_independent():
    """Test that distinct keys do not block each other."""
    locks = KeyedLock()
    done = threading.Event()

    def worker():
        with locks.hold('other'):
            done.set()

    with locks.hold('key'):
        thread = threading.Thread(target=worker)
        thread.start()
        assert done.wait(timeout=5)

    thread.join()


def test_registry_empties_after_release():
    """Test that released keys do not stay in the registry."""
    locks = KeyedLock()

    with locks.hold('a', 'b'):
        assert len(locks) == 2
        with locks.hold('a'):
            assert len(locks) == 2

    assert not len(locks)


def test_registry_empties_after_error():
    """Test that keys are released when the guarded block raises."""
    locks = KeyedLock()

    with pytest.raises(RuntimeError), locks.hold('a'):
        raise RuntimeError('boom')

    assert not len(locks)

