from threading import Lock
from typing import Any, List, Mapping, Optional, Tuple
import os

import numpy as np
from loguru import logger as log

from octocord.config import ENV_AUDIO_HOST
from octocord.errors import DeviceUnavailable
from octocord.sources.base import CaptureSourceBase, DropPolicy
from octocord.utils.devices import resolve_device_name
from octocord.utils.utils import db_to_linear, mix_to_mono

FALLBACK_AUDIO_DEVICE = "default"
PREFERRED_HOST_API = "alsa"

LEVEL_SMOOTHING = 0.8
LEVEL_DECAY = 0.95


def portaudio() -> Any:
    """
    The sounddevice module, imported on first use.

    sounddevice loads the PortAudio shared library at import time and raises
    OSError when it is missing; importing it here keeps the rest of the
    recorder usable on such hosts.
    """
    import sounddevice
    return sounddevice


def _ordered_host_apis(sd: Any, env: Mapping[str, str]) -> List[dict]:
    apis = list(sd.query_hostapis())
    forced = (env.get(ENV_AUDIO_HOST) or "").lower()
    preferred = forced or PREFERRED_HOST_API
    # Stable sort: the preferred host API first, the rest in PortAudio order
    return sorted(apis, key=lambda api: preferred not in api["name"].lower())


def input_devices(env: Optional[Mapping[str, str]] = None) -> Tuple[Optional[str], List[Tuple[int, str]]]:
    """
    Input-capable devices of the first host API that has any.

    Returns:
        (host api name, [(device index, device name), ...])
    """
    env = os.environ if env is None else env
    sd = portaudio()
    devices = sd.query_devices()
    for api in _ordered_host_apis(sd, env):
        found = [(i, devices[i]["name"]) for i in api["devices"]
                 if devices[i]["max_input_channels"] > 0]
        if found:
            return api["name"], found
    return None, []


def list_audio_devices(env: Optional[Mapping[str, str]] = None) -> List[str]:
    """Input device names; never raises."""
    try:
        _, found = input_devices(env)
    except Exception as e:  # OSError without PortAudio; PortAudioError is not exported everywhere
        log.warning(f"Audio device enumeration failed: {e}")
        found = []
    return [name for _, name in found] or [FALLBACK_AUDIO_DEVICE]


class AudioLevelMonitor(CaptureSourceBase):
    """
    Reads raw input blocks for the VU meter only.

    The recording's audio is captured by ffmpeg itself; this monitor exists so
    the UI can show a level while recording. Each block is mixed to mono, scaled
    by the configured gain and pushed into the bounded channel.

    Parameters:
        device_name (Optional[str]): Input device; exact, substring, then the
            host API's default input device / first input.
        gain_db (float): Gain applied to the metered signal.
        blocksize (int): Frames read per loop iteration.
        env (Mapping[str, str]): Environment used for the host API override.
    """

    def __init__(self, device_name: Optional[str] = None, gain_db: float = 0.0,
                 blocksize: int = 1024, env: Optional[Mapping[str, str]] = None, *,
                 drop_policy: DropPolicy = DropPolicy.NEWEST):
        # Blocking reads pace the loop, so no extra sleep between them.
        super().__init__(name="audio", poll_interval=0.0, drop_policy=drop_policy)

        try:
            self._sd = portaudio()
        except OSError as e:
            err = f"Audio input unavailable: {e}"
            log.error(err)
            raise DeviceUnavailable(err) from e

        host_api, found = input_devices(env)
        requested = device_name if device_name not in (None, "", FALLBACK_AUDIO_DEVICE) else None
        default_input = self._sd.default.device[0]
        if requested is None and any(i == default_input for i, _ in found):
            self.device_index = default_input
            self.device_name = next(n for i, n in found if i == default_input)
        else:
            pos, self.device_name = resolve_device_name(
                [name for _, name in found], requested, kind="audio input device")
            self.device_index = found[pos][0]

        info = self._sd.query_devices(self.device_index)
        self.channels = max(1, min(2, int(info["max_input_channels"])))
        self.sample_rate = int(info["default_samplerate"])
        self.blocksize = blocksize
        self.gain_linear = db_to_linear(gain_db)
        self.overflow_count = 0

        self._level = 0.0
        self._level_lock = Lock()
        log.info(f"Audio host selected: {host_api}; audio input device: {self.device_name}")

    # ‑‑ metering -----------------------------------------------------------
    def set_gain_db(self, gain_db: float) -> None:
        self.gain_linear = db_to_linear(gain_db)

    def update_level(self, mono: np.ndarray) -> float:
        """Fold one mono block into the smoothed peak level (0..1)."""
        with self._level_lock:
            if mono.size == 0:
                self._level *= LEVEL_DECAY
            else:
                peak = float(np.clip(np.max(np.abs(mono)), 0.0, 1.0)) * self.gain_linear
                self._level = LEVEL_SMOOTHING * self._level + (1 - LEVEL_SMOOTHING) * min(peak, 1.0)
            return self._level

    def get_level(self) -> float:
        with self._level_lock:
            return self._level

    # ‑‑ capture hooks ------------------------------------------------------
    def _open(self) -> Any:
        stream = self._sd.InputStream(
            device=self.device_index,
            channels=self.channels,
            samplerate=self.sample_rate,
            blocksize=self.blocksize,
            dtype="float32",
        )
        stream.start()
        return stream

    def _acquire(self, stream: Any) -> Optional[np.ndarray]:
        data, overflowed = stream.read(self.blocksize)
        if overflowed:
            self.overflow_count += 1
            if self.overflow_count % 10 == 0:
                log.warning(f"Input overflows: {self.overflow_count}")
        mono = mix_to_mono(data, self.channels)
        self.update_level(mono)
        return mono * self.gain_linear

    def _release(self, stream: Any) -> None:
        stream.stop()
        stream.close()
