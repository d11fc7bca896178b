import threading

from octocord.backend.prober import (
    PIPEWIRE_PROBE_ARGS,
    PULSE_PROBE_ARGS,
    BackendProbeResult,
    BackendProber,
)


class CountingRunner:
    def __init__(self, pipewire=True, pulse=False):
        self.answers = {PIPEWIRE_PROBE_ARGS: pipewire, PULSE_PROBE_ARGS: pulse}
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, argv):
        with self._lock:
            self.calls.append(tuple(argv))
        return self.answers[tuple(argv[1:])]


def test_probes_once_per_session():
    runner = CountingRunner(pipewire=True, pulse=False)
    prober = BackendProber("ffmpeg", runner=runner)
    env = {"WAYLAND_DISPLAY": "wayland-0"}

    first = prober.result(env)
    second = prober.result(dict(env))

    assert first == BackendProbeResult(pipewire_supported=True, pulse_supported=False)
    assert second is first
    assert len(runner.calls) == 2
    assert all(call[0] == "ffmpeg" for call in runner.calls)


def test_session_change_reprobes():
    runner = CountingRunner()
    prober = BackendProber("ffmpeg", runner=runner)

    prober.result({"DISPLAY": ":0"})
    prober.result({"WAYLAND_DISPLAY": "wayland-0"})
    assert len(runner.calls) == 4

    # unrelated variables do not count as a new session
    prober.result({"DISPLAY": ":0", "HOME": "/tmp"})
    assert len(runner.calls) == 4


def test_failed_probe_is_cached_as_unsupported():
    runner = CountingRunner(pipewire=False, pulse=False)
    prober = BackendProber(runner=runner)

    assert prober.result({}) == BackendProbeResult()
    assert prober.result({}) == BackendProbeResult()
    assert len(runner.calls) == 2


def test_invalidate_forces_reprobe():
    runner = CountingRunner()
    prober = BackendProber(runner=runner)
    prober.result({})
    prober.invalidate()
    prober.result({})
    assert len(runner.calls) == 4


def test_fixed_prober_never_runs_anything():
    result = BackendProbeResult(pipewire_supported=True, pulse_supported=True)
    prober = BackendProber.fixed(result)
    assert prober.result({"DISPLAY": ":0"}) is result
    assert prober.result({"WAYLAND_DISPLAY": "w"}) is result


def test_concurrent_first_lookups_agree():
    runner = CountingRunner()
    prober = BackendProber(runner=runner)
    results = []

    threads = [threading.Thread(target=lambda: results.append(prober.result({})))
               for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 8
    assert all(r is results[0] for r in results)


def test_missing_binary_reports_unsupported(tmp_path):
    prober = BackendProber(str(tmp_path / "no-such-ffmpeg"))
    assert prober.result({}) == BackendProbeResult()
