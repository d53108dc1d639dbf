from __future__ import annotations

import threading

import pytest

from study_planner.locks import PlanBusyError, UserLockRegistry


def test_second_holder_for_same_user_is_rejected() -> None:
    registry = UserLockRegistry()

    with registry.hold("u1", timeout=0):
        assert registry.is_locked("u1")
        with pytest.raises(PlanBusyError) as excinfo:
            with registry.hold("u1", timeout=0):
                pass
        assert excinfo.value.user_id == "u1"

    assert not registry.is_locked("u1")


def test_different_users_do_not_block_each_other() -> None:
    registry = UserLockRegistry()

    with registry.hold("u1", timeout=0):
        with registry.hold("u2", timeout=0):
            assert registry.is_locked("u1") and registry.is_locked("u2")


def test_lock_released_after_error() -> None:
    registry = UserLockRegistry()

    with pytest.raises(ValueError):
        with registry.hold("u1"):
            raise ValueError("planner failed")

    assert not registry.is_locked("u1")


def test_waiter_acquires_once_holder_releases() -> None:
    registry = UserLockRegistry()
    entered = threading.Event()
    release = threading.Event()

    def holder() -> None:
        with registry.hold("u1"):
            entered.set()
            release.wait(timeout=2)

    thread = threading.Thread(target=holder)
    thread.start()
    entered.wait(timeout=2)
    release.set()

    with registry.hold("u1", timeout=2):
        assert registry.is_locked("u1")
    thread.join(timeout=2)
