import threading
import time

import numpy as np
import pytest

from octocord.sources.base import CaptureSourceBase, DropPolicy, FrameChannel
from octocord.types import CaptureFrame


def test_publish_never_blocks_and_keeps_first_two():
    channel = FrameChannel(capacity=2)
    accepted = [channel.publish(i) for i in range(10)]

    assert accepted == [True, True] + [False] * 8
    assert channel.dropped == 8
    assert channel.drain() == [0, 1]
    assert len(channel) == 0


def test_drop_oldest_keeps_most_recent():
    channel = FrameChannel(capacity=2, policy=DropPolicy.OLDEST)
    for i in range(10):
        assert channel.publish(i)

    assert channel.dropped == 8
    assert channel.drain() == [8, 9]


def test_take_and_take_latest():
    channel = FrameChannel(capacity=3)
    assert channel.take() is None
    assert channel.take_latest() is None

    for i in range(3):
        channel.publish(i)
    assert channel.take() == 0
    assert channel.take_latest() == 2
    assert len(channel) == 0


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        FrameChannel(capacity=0)


class CountingSource(CaptureSourceBase):
    """Produces an increasing counter as fast as allowed."""

    def __init__(self, fail_first_open=False, **kwargs):
        super().__init__(name="counting", poll_interval=0.001, **kwargs)
        self.counter = 0
        self.opened = 0
        self.released = 0
        self.open_threads = []
        self.release_threads = []
        self.fail_first_open = fail_first_open

    def _open(self):
        self.opened += 1
        self.open_threads.append(threading.current_thread().name)
        if self.fail_first_open and self.opened == 1:
            raise RuntimeError("device busy")
        return object()

    def _acquire(self, handle):
        self.counter += 1
        return CaptureFrame(np.full((2, 2, 3), self.counter % 255, dtype=np.uint8))

    def _release(self, handle):
        self.released += 1
        self.release_threads.append(threading.current_thread().name)


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.005)
    return True


def test_unpolled_source_keeps_running():
    source = CountingSource()
    source.start()
    try:
        assert wait_for(lambda: source.counter > 20)
        assert source.is_running()
        assert len(source.channel) == 2
    finally:
        source.stop()

    assert not source.is_running()
    assert source.channel.dropped >= 18
    assert [f.image[0, 0, 0] for f in source.channel.drain()] == [1, 2]


def test_handle_lives_on_capture_thread():
    source = CountingSource()
    source.start()
    assert wait_for(lambda: source.counter > 0)
    source.stop()

    assert source.opened == source.released == 1
    assert source.open_threads == ["capture-counting"]
    assert source.release_threads == ["capture-counting"]


def test_open_failure_is_retried():
    source = CountingSource(fail_first_open=True)
    source.start()
    try:
        assert wait_for(lambda: source.counter > 0)
    finally:
        source.stop()
    assert source.opened == 2
    assert source.released == 1


def test_restart_after_stop():
    source = CountingSource(drop_policy=DropPolicy.OLDEST)
    source.start()
    assert wait_for(lambda: source.counter > 3)
    source.stop()
    source.start()
    assert wait_for(lambda: source.opened == 2)
    source.stop()

    latest = source.get_latest_frame()
    assert latest is not None
    assert source.get_latest_frame() is None


class DyingHandleSource(CountingSource):
    """First handle breaks for good after open; later handles work."""

    def _open(self):
        super()._open()
        return self.opened

    def _acquire(self, handle):
        if handle == 1:
            raise OSError("No such device")
        return super()._acquire(handle)


def test_dead_handle_is_reopened():
    source = DyingHandleSource(max_acquire_failures=2)
    source.start()
    try:
        assert wait_for(lambda: source.counter > 0)
    finally:
        source.stop()
    assert source.opened == 2
    assert source.released == 2
    assert source.get_latest_frame() is not None
