from abc import ABC, abstractmethod
from collections import deque
from enum import Enum
from threading import Event, Lock, Thread
from typing import Any, Deque, Generic, List, Optional, TypeVar
import time

from loguru import logger as log

T = TypeVar("T")

DEFAULT_CHANNEL_CAPACITY = 2
DEFAULT_POLL_INTERVAL_S = 1 / 30
RETRY_BACKOFF_S = 0.1
MAX_ACQUIRE_FAILURES = 10


class DropPolicy(Enum):
    NEWEST = "drop_newest"  # full channel rejects the incoming item
    OLDEST = "drop_oldest"  # full channel evicts its oldest item


class FrameChannel(Generic[T]):
    """
    Bounded hand-off between one capture thread and one consumer.

    ``publish`` never blocks: when the channel is full the item chosen by the
    drop policy is discarded. Capture sources use ``DropPolicy.NEWEST`` unless
    told otherwise, so frames already queued stay retrievable in order.
    """

    def __init__(self, capacity: int = DEFAULT_CHANNEL_CAPACITY,
                 policy: DropPolicy = DropPolicy.NEWEST):
        if capacity < 1:
            raise ValueError(f"Channel capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self.policy = policy
        self.dropped = 0
        self._items: Deque[T] = deque()
        self._lock = Lock()

    def publish(self, item: T) -> bool:
        """Queue ``item``; returns False when it was dropped."""
        with self._lock:
            if len(self._items) < self.capacity:
                self._items.append(item)
                return True
            self.dropped += 1
            if self.policy is DropPolicy.NEWEST:
                return False
            self._items.popleft()
            self._items.append(item)
            return True

    def take(self) -> Optional[T]:
        """Oldest queued item, or None."""
        with self._lock:
            return self._items.popleft() if self._items else None

    def take_latest(self) -> Optional[T]:
        """Newest queued item, discarding the older ones it supersedes."""
        with self._lock:
            if not self._items:
                return None
            latest = self._items[-1]
            self._items.clear()
            return latest

    def drain(self) -> List[T]:
        with self._lock:
            items = list(self._items)
            self._items.clear()
            return items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class CaptureSourceBase(ABC):
    """
    Background polling loop feeding a bounded channel.

    The device handle is opened and released on the capture thread itself;
    ``stop()`` only flips the flag and joins, so the handle is never torn down
    while the loop is using it. Acquisition errors are logged and retried after
    a short backoff; once ``max_acquire_failures`` of them happen in a row the
    handle is released and the device reopened.

    Parameters
    ----------
    name : str
        Label used in log lines and the thread name.
    poll_interval : float
        Target seconds between two acquisitions (~30 Hz by default).
    channel_capacity : int
        Bound of the frame channel.
    drop_policy : DropPolicy
        What a full channel discards.
    max_acquire_failures : int
        Consecutive acquisition errors tolerated before the handle is reopened.
    """

    def __init__(self, *, name: str,
                 poll_interval: float = DEFAULT_POLL_INTERVAL_S,
                 channel_capacity: int = DEFAULT_CHANNEL_CAPACITY,
                 drop_policy: DropPolicy = DropPolicy.NEWEST,
                 max_acquire_failures: int = MAX_ACQUIRE_FAILURES):
        self.name = name
        self.poll_interval = poll_interval
        self.max_acquire_failures = max(1, max_acquire_failures)
        self.channel: FrameChannel = FrameChannel(channel_capacity, drop_policy)
        self._stop_event = Event()
        self._stop_event.set()
        self._thread: Optional[Thread] = None

    # ‑‑ device hooks, all called on the capture thread ---------------------
    @abstractmethod
    def _open(self) -> Any:
        """Open the OS capture handle."""

    @abstractmethod
    def _acquire(self, handle: Any) -> Optional[Any]:
        """Grab one item; None means nothing new this round."""

    @abstractmethod
    def _release(self, handle: Any) -> None:
        """Close the OS capture handle."""

    # ‑‑ public API ---------------------------------------------------------
    def is_running(self) -> bool:
        return not self._stop_event.is_set()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            log.warning(f"{self.name} already running; ignoring duplicate start()")
            return
        self._stop_event.clear()
        self._thread = Thread(target=self._run, name=f"capture-{self.name}", daemon=True)
        self._thread.start()
        log.info(f"{self.name} capture started")

    def stop(self) -> None:
        """Signal the loop and wait for it; the device is free once this returns."""
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join()
            log.info(f"{self.name} capture stopped")

    def get_latest_frame(self) -> Optional[Any]:
        return self.channel.take_latest()

    # ‑‑ loop ---------------------------------------------------------------
    def _run(self) -> None:
        handle = None
        failures = 0
        try:
            while not self._stop_event.is_set():
                started = time.monotonic()

                if handle is None:
                    try:
                        handle = self._open()
                    except Exception as e:  # device backends raise assorted errors
                        log.error(f"{self.name}: failed to open device: {e}")
                        self._stop_event.wait(RETRY_BACKOFF_S)
                        continue

                try:
                    item = self._acquire(handle)
                except Exception as e:
                    log.error(f"{self.name}: failed to capture frame: {e}")
                    failures += 1
                    if failures >= self.max_acquire_failures:
                        log.warning(f"{self.name}: {failures} capture failures in a row; reopening device")
                        self._close(handle)
                        handle = None
                        failures = 0
                    self._stop_event.wait(RETRY_BACKOFF_S)
                    continue

                failures = 0
                if item is not None:
                    self.channel.publish(item)

                remaining = self.poll_interval - (time.monotonic() - started)
                if remaining > 0:
                    self._stop_event.wait(remaining)
        finally:
            if handle is not None:
                self._close(handle)

    def _close(self, handle: Any) -> None:
        try:
            self._release(handle)
        except Exception as e:
            log.error(f"{self.name}: failed to release device: {e}")

    def __del__(self):
        if hasattr(self, "_stop_event"):
            self.stop()
