from abc import ABC, abstractmethod
from typing import NamedTuple, Optional
import os
import subprocess

import mss
from loguru import logger as log

from octocord.backend.prober import run_probe
from octocord.errors import BackendUnavailable, DeviceUnavailable

VERSION_PROBE_TIMEOUT_S = 10.0


class DisplayGeometry(NamedTuple):
    width: int
    height: int
    left: int = 0
    top: int = 0

    @property
    def video_size(self) -> str:
        return f"{self.width}x{self.height}"


class HostInspector(ABC):
    """
    Everything the command builder needs to know about the machine.

    Kept behind an interface so the builder stays a pure function of its
    arguments and tests can describe a host without touching real devices.
    """

    @abstractmethod
    def path_exists(self, path: str) -> bool: ...

    @abstractmethod
    def webcam_accessible(self, path: str) -> bool: ...

    @abstractmethod
    def display_geometry(self, screen_index: Optional[int]) -> DisplayGeometry: ...


class SystemHost(HostInspector):
    """Answers host questions by looking at the live system."""

    def __init__(self, ffmpeg_path: str = "ffmpeg"):
        self.ffmpeg_path = ffmpeg_path

    def path_exists(self, path: str) -> bool:
        return os.path.exists(path)

    def webcam_accessible(self, path: str) -> bool:
        ok = run_probe((self.ffmpeg_path, "-v", "error", "-f", "v4l2",
                        "-list_formats", "all", "-i", path))
        log.debug(f"v4l2 accessibility probe for {path}: {ok}")
        return ok

    def display_geometry(self, screen_index: Optional[int]) -> DisplayGeometry:
        try:
            with mss.mss() as sct:
                monitors = list(sct.monitors[1:]) or list(sct.monitors[:1])
        except Exception as e:  # mss raises ScreenShotError and platform errors
            err = f"Failed to enumerate screens: {e}"
            log.error(err)
            raise DeviceUnavailable(err) from e

        if not monitors:
            err = "No screens detected"
            log.error(err)
            raise DeviceUnavailable(err)

        index = 0 if screen_index is None else screen_index
        if not 0 <= index < len(monitors):
            log.warning(f"Invalid screen index {index}; using screen 0")
            index = 0

        mon = monitors[index]
        return DisplayGeometry(int(mon["width"]), int(mon["height"]),
                               int(mon["left"]), int(mon["top"]))


def ensure_tool_available(ffmpeg_path: str) -> None:
    """
    Run ``ffmpeg -version`` to make sure the binary can be launched at all.

    Raises:
        BackendUnavailable: binary missing, not executable, or failing.
    """
    try:
        completed = subprocess.run(
            [ffmpeg_path, "-version"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=VERSION_PROBE_TIMEOUT_S,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        err = f"Failed to launch ffmpeg binary at '{ffmpeg_path}': {e}"
        log.error(err)
        raise BackendUnavailable(err) from e

    if completed.returncode != 0:
        err = f"ffmpeg binary '{ffmpeg_path}' returned non-zero status {completed.returncode}"
        log.error(err)
        raise BackendUnavailable(err)
