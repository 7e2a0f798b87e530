# tests/unit/test_record_locks.py
import threading

import pytest

from dispatch_assistant.record_locks import RecordLocks


def test_entries_dropped_after_use():
    locks = RecordLocks()
    with locks.hold("sr-1"):
        assert len(locks) == 1
    assert locks.acquire("sr-2")
    locks.release("sr-2")
    assert len(locks) == 0


def test_reentrant_on_one_thread():
    locks = RecordLocks()
    with locks.hold("sr-1"):
        with locks.hold("sr-1"):
            assert len(locks) == 1
        assert len(locks) == 1
    assert len(locks) == 0


def test_other_thread_cannot_take_held_lock():
    locks = RecordLocks()
    got = {}

    def try_take():
        got["sr-1"] = locks.acquire("sr-1", blocking=False)
        got["sr-2"] = locks.acquire("sr-2", blocking=False)
        locks.release("sr-2")

    with locks.hold("sr-1"):
        t = threading.Thread(target=try_take)
        t.start()
        t.join(5)
        assert len(locks) == 1  # the failed attempt left no extra entry

    assert got == {"sr-1": False, "sr-2": True}
    assert len(locks) == 0


def test_waiter_keeps_entry_until_it_is_done():
    locks = RecordLocks()
    entered = threading.Event()

    def wait_for_it():
        with locks.hold("sr-1"):
            entered.set()

    locks.acquire("sr-1")
    t = threading.Thread(target=wait_for_it)
    t.start()
    locks.release("sr-1")
    assert entered.wait(5)
    t.join(5)
    assert len(locks) == 0


def test_release_of_unheld_record_raises():
    with pytest.raises(RuntimeError):
        RecordLocks().release("sr-9")
