"""
Tests for Resource Locks
========================

Covers:
- Resource name and lock object name derivation
- Mutual exclusion across threads and processes
- Independence of different resource names
- Timeouts, idempotent release and abandoned-lock recovery
"""

import multiprocessing
import os
import threading
import time

import pytest

from app_runner.errors import LockAcquisitionError, LockTimeoutError
from app_runner.locking import (
    LockState,
    ResourceLock,
    get_lock_object_name,
    get_resource_name,
)

from tests.conftest import TEST_NAMESPACE


# ---------------------------------------------------------------------------
# Child process helpers (module level so the spawn context can import them)
# ---------------------------------------------------------------------------

def _hold_lock(lock_dir, resource_name, acquired, release):
    locks = ResourceLock(lock_dir=lock_dir, namespace=TEST_NAMESPACE, poll_interval=0.01)
    handle = locks.acquire(resource_name, timeout_seconds=10)
    acquired.set()
    release.wait(10)
    locks.release(handle)


def _acquire_and_exit(lock_dir, resource_name):
    locks = ResourceLock(lock_dir=lock_dir, namespace=TEST_NAMESPACE, poll_interval=0.01)
    locks.acquire(resource_name, timeout_seconds=10)
    # Terminate without releasing
    os._exit(0)


class TestResourceName:
    def test_with_target(self):
        assert get_resource_name("Xbox", "192.168.1.100") == "Xbox-192.168.1.100"

    def test_default_target(self):
        assert get_resource_name("Xbox") == "Xbox-Default"

    def test_empty_and_whitespace_target(self):
        assert get_resource_name("Switch", "") == "Switch-Default"
        assert get_resource_name("Switch", "   ") == "Switch-Default"

    def test_target_is_stripped(self):
        assert get_resource_name("PlayStation5", " devkit ") == "PlayStation5-devkit"


class TestLockObjectName:
    def test_safe_name_unchanged(self):
        assert get_lock_object_name("Xbox-192.168.1.100", "AppRunner") == "AppRunner-Xbox-192.168.1.100"

    def test_unsafe_characters_replaced(self):
        name = get_lock_object_name("Adb-127.0.0.1:5555", "AppRunner")
        assert ":" not in name
        assert name.startswith("AppRunner-Adb-127.0.0.1_5555-")

    def test_sanitized_names_do_not_collide(self):
        a = get_lock_object_name("Adb-host:5555", "AppRunner")
        b = get_lock_object_name("Adb-host_5555", "AppRunner")
        assert a != b

    def test_long_names_truncated(self):
        name = get_lock_object_name("Mock-" + "x" * 500, "AppRunner")
        assert len(name) < 220


class TestAcquireRelease:
    def test_acquire_returns_held_handle(self, resource_lock):
        handle = resource_lock.acquire("Mock-Default", timeout_seconds=1)
        try:
            assert handle.state == LockState.HELD
            assert handle.is_held
            assert handle.abandoned is False
            assert handle.acquired_at is not None
            assert handle.owner_path.exists()
        finally:
            resource_lock.release(handle)

    def test_release_removes_owner_record(self, resource_lock):
        handle = resource_lock.acquire("Mock-Default", timeout_seconds=1)
        resource_lock.release(handle)
        assert handle.state == LockState.RELEASED
        assert not handle.owner_path.exists()

    def test_release_is_idempotent(self, resource_lock):
        handle = resource_lock.acquire("Mock-Default", timeout_seconds=1)
        resource_lock.release(handle)
        resource_lock.release(handle)
        resource_lock.release(None)
        assert handle.state == LockState.RELEASED

    def test_reacquire_after_release(self, resource_lock):
        first = resource_lock.acquire("Mock-Default", timeout_seconds=1)
        resource_lock.release(first)
        second = resource_lock.acquire("Mock-Default", timeout_seconds=0)
        assert second.is_held
        assert second.abandoned is False
        resource_lock.release(second)

    def test_hold_context_manager(self, resource_lock):
        with resource_lock.hold("Mock-Default", timeout_seconds=1) as handle:
            assert handle.is_held
        assert handle.state == LockState.RELEASED

    def test_negative_timeout_rejected(self, resource_lock):
        with pytest.raises(ValueError):
            resource_lock.acquire("Mock-Default", timeout_seconds=-1)

    def test_empty_name_rejected(self, resource_lock):
        with pytest.raises(LockAcquisitionError):
            resource_lock.acquire("  ", timeout_seconds=1)

    def test_unusable_lock_dir(self, tmp_path):
        not_a_dir = tmp_path / "file"
        not_a_dir.write_text("x")
        locks = ResourceLock(lock_dir=not_a_dir, namespace=TEST_NAMESPACE)
        with pytest.raises(LockAcquisitionError) as exc_info:
            locks.acquire("Mock-Default", timeout_seconds=0)
        assert exc_info.value.resource_name == "Mock-Default"


class TestMutualExclusion:
    def test_timeout_while_held(self, resource_lock):
        handle = resource_lock.acquire("Xbox-Default", timeout_seconds=1)
        try:
            start = time.monotonic()
            with pytest.raises(LockTimeoutError) as exc_info:
                resource_lock.acquire("Xbox-Default", timeout_seconds=0.2)
            assert time.monotonic() - start >= 0.15
            assert "Xbox-Default" in str(exc_info.value)
            assert "0.2" in str(exc_info.value)
        finally:
            resource_lock.release(handle)

    def test_zero_timeout_single_attempt(self, resource_lock):
        handle = resource_lock.acquire("Xbox-Default", timeout_seconds=1)
        try:
            with pytest.raises(LockTimeoutError):
                resource_lock.acquire("Xbox-Default", timeout_seconds=0)
        finally:
            resource_lock.release(handle)

    def test_different_names_do_not_block(self, resource_lock):
        a = resource_lock.acquire("Xbox-console-a", timeout_seconds=1)
        try:
            b = resource_lock.acquire("Xbox-console-b", timeout_seconds=0)
            assert b.is_held
            resource_lock.release(b)
        finally:
            resource_lock.release(a)

    def test_threads_serialize(self, lock_dir):
        active = 0
        max_active = 0
        counter_lock = threading.Lock()
        errors = []

        def worker():
            locks = ResourceLock(lock_dir=lock_dir, namespace=TEST_NAMESPACE, poll_interval=0.005)
            nonlocal active, max_active
            try:
                with locks.hold("Switch-Default", timeout_seconds=10):
                    with counter_lock:
                        active += 1
                        max_active = max(max_active, active)
                    time.sleep(0.02)
                    with counter_lock:
                        active -= 1
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert not errors
        assert max_active == 1

    def test_release_from_other_thread(self, resource_lock):
        handle = resource_lock.acquire("Mock-Default", timeout_seconds=1)
        t = threading.Thread(target=resource_lock.release, args=(handle,))
        t.start()
        t.join(timeout=5)
        assert handle.state == LockState.RELEASED
        again = resource_lock.acquire("Mock-Default", timeout_seconds=0)
        resource_lock.release(again)


@pytest.mark.slow
class TestCrossProcess:
    def test_process_holds_lock(self, resource_lock, lock_dir):
        ctx = multiprocessing.get_context("spawn")
        acquired = ctx.Event()
        release = ctx.Event()
        child = ctx.Process(target=_hold_lock, args=(str(lock_dir), "PlayStation5-Default", acquired, release))
        child.start()
        try:
            assert acquired.wait(30)
            with pytest.raises(LockTimeoutError):
                resource_lock.acquire("PlayStation5-Default", timeout_seconds=0.2)

            # Other resources stay available
            other = resource_lock.acquire("PlayStation5-other", timeout_seconds=0)
            resource_lock.release(other)
        finally:
            release.set()
            child.join(timeout=30)

        handle = resource_lock.acquire("PlayStation5-Default", timeout_seconds=5)
        assert handle.abandoned is False
        resource_lock.release(handle)

    def test_abandoned_lock_recovered(self, resource_lock, lock_dir):
        ctx = multiprocessing.get_context("spawn")
        child = ctx.Process(target=_acquire_and_exit, args=(str(lock_dir), "Xbox-Default"))
        child.start()
        child.join(timeout=30)
        assert child.exitcode == 0

        handle = resource_lock.acquire("Xbox-Default", timeout_seconds=5)
        try:
            assert handle.is_held
            assert handle.abandoned is True
            assert handle.previous_owner["pid"] == child.pid
        finally:
            resource_lock.release(handle)

        # The next clean acquisition is no longer abandoned
        handle = resource_lock.acquire("Xbox-Default", timeout_seconds=1)
        assert handle.abandoned is False
        resource_lock.release(handle)
