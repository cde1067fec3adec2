"""
Resource Locks
==============

Named, timeout-bounded, cross-process exclusive access to a device.

Each resource name maps to a lock file under the lock directory. The lock
is an OS advisory lock (via filelock), so the OS drops it when the holding
process dies. A small owner record written next to the lock file while it
is held lets the next holder notice that the previous one never released.

Usage:
    from app_runner.locking import ResourceLock, get_resource_name

    locks = ResourceLock()
    name = get_resource_name("Xbox", "192.168.1.100")  # "Xbox-192.168.1.100"
    handle = locks.acquire(name, timeout_seconds=30)
    try:
        ...
    finally:
        locks.release(handle)
"""

import hashlib
import json
import os
import re
import socket
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from filelock import FileLock, Timeout

from app_runner.config import get_settings
from app_runner.errors import LockAcquisitionError, LockTimeoutError
from app_runner.utils.logger import get_logger

logger = get_logger(__name__)

# Target token used when no explicit target is given
DEFAULT_TARGET = "Default"

# Characters allowed in lock object (file) names
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_MAX_OBJECT_NAME_LENGTH = 200

# Longest uninterrupted wait when an acquisition can be cancelled
CANCEL_CHECK_INTERVAL = 0.25


class LockState(Enum):
    """Lifecycle of a lock handle."""

    UNHELD = "unheld"
    ACQUIRING = "acquiring"
    HELD = "held"
    RELEASED = "released"


@dataclass
class LockHandle:
    """
    An exclusive-access handle for one resource.

    Attributes:
        resource_name: Logical resource the handle protects.
        lock_path: Lock file backing the OS-level lock.
        state: Current lifecycle state.
        abandoned: True if the previous holder terminated without releasing.
        acquired_at: When the lock was acquired (UTC).
        previous_owner: Owner record left behind by an abandoning holder.
    """

    resource_name: str
    lock_path: Path
    state: LockState = LockState.UNHELD
    abandoned: bool = False
    acquired_at: Optional[datetime] = None
    previous_owner: Optional[dict[str, Any]] = None
    _lock: Optional[FileLock] = field(default=None, repr=False, compare=False)

    @property
    def is_held(self) -> bool:
        """Check if the handle currently owns the lock."""
        return self.state == LockState.HELD

    @property
    def owner_path(self) -> Path:
        """Path of the owner record written while the lock is held."""
        return self.lock_path.with_suffix(".owner")


def get_resource_name(platform: str, target: Optional[str] = None) -> str:
    """
    Derive the lock key for a platform/target pair.

    Examples:
        >>> get_resource_name("Xbox", "192.168.1.100")
        'Xbox-192.168.1.100'
        >>> get_resource_name("Xbox")
        'Xbox-Default'
    """
    target = (target or "").strip()
    return f"{platform}-{target or DEFAULT_TARGET}"


def get_lock_object_name(resource_name: str, namespace: str) -> str:
    """
    Turn a namespaced resource name into a valid, collision-free file name.

    Names that need no escaping are used as-is. Escaped or truncated names
    get a digest of the raw name appended so two different resource names
    never share a lock.
    """
    raw = f"{namespace}-{resource_name}"
    safe = _UNSAFE_NAME_CHARS.sub("_", raw)
    if safe != raw or len(safe) > _MAX_OBJECT_NAME_LENGTH:
        digest = hashlib.sha1(raw.encode("utf-8")).hexdigest()[:10]
        safe = f"{safe[:_MAX_OBJECT_NAME_LENGTH]}-{digest}"
    return safe


class ResourceLock:
    """
    Named cross-process mutual exclusion.

    Two callers asking for the same resource name serialize, whether they
    are threads in one process or separate processes. Different resource
    names never block each other. Waiters are not served in FIFO order.
    """

    def __init__(
        self,
        lock_dir: Optional[Union[str, Path]] = None,
        namespace: Optional[str] = None,
        poll_interval: float = 0.05,
    ) -> None:
        """
        Initialize the lock manager.

        Args:
            lock_dir: Directory holding lock files (defaults to settings).
            namespace: Prefix for lock object names (defaults to settings).
            poll_interval: Seconds between acquisition attempts while waiting.
        """
        settings = get_settings()
        self.lock_dir = Path(lock_dir) if lock_dir else settings.lock.get_lock_dir()
        self.namespace = namespace or settings.lock.lock_namespace
        self.poll_interval = poll_interval

    def lock_path_for(self, resource_name: str) -> Path:
        """Lock file path used for ``resource_name``."""
        return self.lock_dir / f"{get_lock_object_name(resource_name, self.namespace)}.lock"

    def acquire(
        self,
        resource_name: str,
        timeout_seconds: float,
        cancel_event: Optional[threading.Event] = None,
    ) -> LockHandle:
        """
        Acquire exclusive access to ``resource_name``.

        Args:
            resource_name: Logical resource key (see get_resource_name).
            timeout_seconds: Maximum seconds to wait; 0 means a single attempt.
            cancel_event: When set by another thread, the wait stops within
                CANCEL_CHECK_INTERVAL seconds with LockAcquisitionError.

        Returns:
            A handle in HELD state. ``handle.abandoned`` is True when the
            previous holder terminated without releasing.

        Raises:
            LockTimeoutError: The lock was not acquired within the timeout.
            LockAcquisitionError: Any other failure creating or taking the
                lock, or the wait was cancelled.
            ValueError: If timeout_seconds is negative.
        """
        if timeout_seconds < 0:
            raise ValueError("timeout_seconds must be >= 0")
        if not resource_name or not resource_name.strip():
            raise LockAcquisitionError("Resource name must not be empty", resource_name)

        handle = LockHandle(resource_name=resource_name, lock_path=self.lock_path_for(resource_name))
        handle.state = LockState.ACQUIRING

        logger.debug(
            "Acquiring resource lock",
            resource=resource_name,
            timeout_seconds=timeout_seconds,
            lock_path=str(handle.lock_path),
        )

        deadline = time.monotonic() + timeout_seconds
        try:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
            lock = FileLock(str(handle.lock_path), thread_local=False)
            while True:
                wait = max(0.0, deadline - time.monotonic())
                if cancel_event is not None:
                    wait = min(wait, CANCEL_CHECK_INTERVAL)
                try:
                    lock.acquire(timeout=wait, poll_interval=self.poll_interval)
                    break
                except Timeout:
                    if cancel_event is not None and cancel_event.is_set():
                        handle.state = LockState.UNHELD
                        logger.debug("Lock acquisition cancelled", resource=resource_name)
                        raise LockAcquisitionError(
                            f"Acquisition of resource '{resource_name}' was cancelled",
                            resource_name,
                        )
                    if time.monotonic() >= deadline:
                        raise
        except Timeout as e:
            handle.state = LockState.UNHELD
            logger.warning(
                "Timed out waiting for resource lock",
                resource=resource_name,
                timeout_seconds=timeout_seconds,
            )
            raise LockTimeoutError(resource_name, timeout_seconds) from e
        except (OSError, ValueError) as e:
            handle.state = LockState.UNHELD
            raise LockAcquisitionError(
                f"Failed to acquire lock for resource '{resource_name}': {e}",
                resource_name,
            ) from e

        handle._lock = lock
        try:
            handle.previous_owner = self._claim_ownership(handle)
        except OSError as e:
            lock.release()
            handle._lock = None
            handle.state = LockState.UNHELD
            raise LockAcquisitionError(
                f"Failed to record ownership of resource '{resource_name}': {e}",
                resource_name,
            ) from e

        handle.abandoned = handle.previous_owner is not None
        handle.acquired_at = datetime.now(timezone.utc)
        handle.state = LockState.HELD

        if handle.abandoned:
            logger.warning(
                "Resource lock was abandoned by a previous holder; ownership transferred",
                resource=resource_name,
                previous_owner=handle.previous_owner,
            )
        else:
            logger.debug("Acquired resource lock", resource=resource_name)

        return handle

    def release(self, handle: Optional[LockHandle], resource_name: Optional[str] = None) -> None:
        """
        Release a lock handle.

        Safe to call with None or an already-released handle. Failures are
        logged and never raised.

        Args:
            handle: Handle returned by acquire.
            resource_name: Resource name for log context (defaults to the handle's).
        """
        name = resource_name or (handle.resource_name if handle else "")

        if handle is None or handle.state != LockState.HELD:
            logger.debug("Release skipped, lock not held", resource=name)
            return

        try:
            handle.owner_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to remove lock owner record", resource=name, error=str(e))

        try:
            if handle._lock is not None:
                handle._lock.release()
            logger.debug("Released resource lock", resource=name)
        except Exception as e:
            logger.warning("Failed to release resource lock", resource=name, error=str(e))
        finally:
            handle._lock = None
            handle.state = LockState.RELEASED

    @contextmanager
    def hold(self, resource_name: str, timeout_seconds: float) -> Iterator[LockHandle]:
        """Acquire ``resource_name`` for the duration of a ``with`` block."""
        handle = self.acquire(resource_name, timeout_seconds)
        try:
            yield handle
        finally:
            self.release(handle)

    def _claim_ownership(self, handle: LockHandle) -> Optional[dict[str, Any]]:
        """
        Replace the owner record with ours.

        Returns the previous record if one was left behind, which only
        happens when its writer never reached release.
        """
        previous: Optional[dict[str, Any]] = None
        owner_path = handle.owner_path

        if owner_path.exists():
            try:
                previous = json.loads(owner_path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                previous = {}
            if not isinstance(previous, dict):
                previous = {}

        owner_path.write_text(
            json.dumps(
                {
                    "pid": os.getpid(),
                    "host": socket.gethostname(),
                    "resource": handle.resource_name,
                    "acquired_at": datetime.now(timezone.utc).isoformat(),
                }
            ),
            encoding="utf-8",
        )
        return previous
