from typing import Any, Dict, List, Optional

import cv2
import mss
import numpy as np
from loguru import logger as log

from octocord.errors import DeviceUnavailable
from octocord.sources.base import CaptureSourceBase, DropPolicy
from octocord.types import CaptureFrame

FALLBACK_DISPLAY_NAME = "Primary Screen"


def _query_monitors() -> List[Dict[str, int]]:
    with mss.mss() as sct:
        # monitors[0] is the union of all screens; real screens follow it
        return [dict(m) for m in sct.monitors[1:]]


def list_displays() -> List[str]:
    """Human-readable screen names; never raises."""
    try:
        monitors = _query_monitors()
    except Exception as e:  # mss raises ScreenShotError and platform errors
        log.warning(f"Screen enumeration failed: {e}")
        monitors = []

    names = [f"Screen {i} ({m['width']}x{m['height']})" for i, m in enumerate(monitors)]
    return names or [FALLBACK_DISPLAY_NAME]


class DisplayCapture(CaptureSourceBase):
    """
    Live preview of one screen, grabbed with mss.

    Attributes:
        screen_index (int): Resolved index into the real screens.
        monitor (Dict[str, int]): mss region (left, top, width, height).
    """

    def __init__(self, screen_index: Optional[int] = 0, *,
                 drop_policy: DropPolicy = DropPolicy.NEWEST):
        super().__init__(name="display", drop_policy=drop_policy)

        try:
            monitors = _query_monitors()
        except Exception as e:
            err = f"Failed to enumerate screens: {e}"
            log.error(err)
            raise DeviceUnavailable(err) from e
        if not monitors:
            err = "No screens detected"
            log.error(err)
            raise DeviceUnavailable(err)

        index = screen_index or 0
        if not 0 <= index < len(monitors):
            log.warning(f"Invalid screen index {index}; using screen 0")
            index = 0

        self.screen_index = index
        self.monitor = monitors[index]
        log.info(f"Display preview on screen {index} "
                 f"({self.monitor['width']}x{self.monitor['height']})")

    def _open(self) -> Any:
        return mss.mss()

    def _acquire(self, sct: Any) -> Optional[CaptureFrame]:
        shot = sct.grab(self.monitor)
        bgra = np.asarray(shot)
        return CaptureFrame(cv2.cvtColor(bgra, cv2.COLOR_BGRA2BGR))

    def _release(self, sct: Any) -> None:
        sct.close()
