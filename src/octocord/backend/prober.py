from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple
import os
import subprocess

from loguru import logger as log

from octocord.config import SESSION_FINGERPRINT_VARS
from octocord.utils.utils import timed

PROBE_TIMEOUT_S = 10.0

PIPEWIRE_PROBE_ARGS = ("-v", "error", "-f", "pipewire", "-list_devices", "true", "-i", "dummy")
PULSE_PROBE_ARGS = ("-v", "error", "-f", "pulse", "-sources", "true", "-i", "dummy")


@dataclass(frozen=True)
class BackendProbeResult:
    """Which optional ffmpeg input backends work on this host."""
    pipewire_supported: bool = False
    pulse_supported: bool = False


def run_probe(argv: Sequence[str]) -> bool:
    """Run a probe invocation with all output discarded; True on exit status 0."""
    try:
        completed = subprocess.run(
            list(argv),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=PROBE_TIMEOUT_S,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        log.debug(f"Probe {argv[0]} {' '.join(argv[1:5])} failed to run: {e}")
        return False
    return completed.returncode == 0


class BackendProber:
    """
    Lazily probes ffmpeg backend support and caches the outcome.

    The cache is keyed by the display/audio session fingerprint, so the same
    session is probed at most once (a failed probe stays "unsupported") while a
    session change, e.g. an X11 login swapped for a Wayland one, triggers a
    fresh probe on the next lookup.

    Parameters:
        ffmpeg_path (str): Encoding tool binary.
        runner (Callable): Executes one probe argv, returns success. Tests swap
            this for a fake.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg",
                 runner: Callable[[Sequence[str]], bool] = run_probe):
        self.ffmpeg_path = ffmpeg_path
        self._runner = runner
        self._lock = Lock()
        self._cache: Dict[Tuple, BackendProbeResult] = {}
        self._fixed: Optional[BackendProbeResult] = None

    @classmethod
    def fixed(cls, result: BackendProbeResult) -> "BackendProber":
        """A prober that never runs anything and always reports ``result``."""
        prober = cls()
        prober._fixed = result
        return prober

    @staticmethod
    def session_key(env: Mapping[str, str]) -> Tuple:
        return tuple(env.get(var) for var in SESSION_FINGERPRINT_VARS)

    def result(self, env: Optional[Mapping[str, str]] = None) -> BackendProbeResult:
        if self._fixed is not None:
            return self._fixed

        env = os.environ if env is None else env
        key = self.session_key(env)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        # Probe outside the lock; concurrent first lookups may both probe but
        # only the first stored result is ever handed out.
        with timed("ffmpeg backend probe"):
            probed = BackendProbeResult(
                pipewire_supported=self._runner((self.ffmpeg_path, *PIPEWIRE_PROBE_ARGS)),
                pulse_supported=self._runner((self.ffmpeg_path, *PULSE_PROBE_ARGS)),
            )
        log.info(f"ffmpeg pipewire support: {probed.pipewire_supported}, "
                 f"pulse support: {probed.pulse_supported}")

        with self._lock:
            return self._cache.setdefault(key, probed)

    def invalidate(self) -> None:
        with self._lock:
            self._cache.clear()
