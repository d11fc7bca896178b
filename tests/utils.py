from pathlib import Path
from typing import Iterable, Optional
import stat

import numpy as np

from octocord.backend.host import DisplayGeometry, HostInspector
from octocord.types import CaptureFrame

FIXED_TIMESTAMP = "20240101_120000"


class FakeHost(HostInspector):
    """Host with a fixed screen and a configurable set of v4l2 nodes."""

    def __init__(self, existing: Iterable[str] = ("/dev/video0",),
                 accessible: Optional[Iterable[str]] = None,
                 geometry: DisplayGeometry = DisplayGeometry(1920, 1080)):
        self.existing = set(existing)
        self.accessible = set(self.existing if accessible is None else accessible)
        self.geometry = geometry
        self.probed = []

    def path_exists(self, path: str) -> bool:
        return path in self.existing

    def webcam_accessible(self, path: str) -> bool:
        self.probed.append(path)
        return path in self.accessible

    def display_geometry(self, screen_index: Optional[int]) -> DisplayGeometry:
        return self.geometry


class FakePreview:
    """Stand-in for a capture source; records start/stop calls."""

    def __init__(self, frame: Optional[np.ndarray] = None, running: bool = True):
        self.frame = frame
        self.running = running
        self.calls = []

    def start(self) -> None:
        self.calls.append("start")
        self.running = True

    def stop(self) -> None:
        self.calls.append("stop")
        self.running = False

    def is_running(self) -> bool:
        return self.running

    def get_latest_frame(self) -> Optional[CaptureFrame]:
        if self.frame is None:
            return None
        frame, self.frame = self.frame, None
        return CaptureFrame(frame)


_VERSION_PREAMBLE = """#!/bin/sh
if [ "$1" = "-version" ]; then
  echo "ffmpeg version 0.0-fake"
  exit 0
fi
printf '%s\\n' "$@" > "{argv_file}"
"""

FAKE_FFMPEG_BEHAVIOURS = {
    # quits on "q", reports pause toggles on stderr
    "graceful": """
while IFS= read -r line; do
  case "$line" in
    q) echo "exiting normally" >&2; exit 0 ;;
    p) echo "pause toggled" >&2 ;;
  esac
done
exit 0
""",
    # -stats style progress: carriage-return terminated lines, then waits for "q"
    "progress": """
i=1
while [ "$i" -le 20 ]; do
  printf 'frame=%d fps=30 size=%dkB\\r' "$i" "$i" >&2
  i=$((i + 1))
done
while IFS= read -r line; do
  case "$line" in
    q) exit 0 ;;
  esac
done
exit 0
""",
    # ignores the quit request until killed
    "stubborn": """
exec sleep 30
""",
    # dies right after launch, e.g. a busy capture device
    "crash": """
echo "/dev/video0: Device or resource busy" >&2
exit 1
""",
    # honours "q" but reports a failed finalisation
    "bad_quit": """
while IFS= read -r line; do
  case "$line" in
    q) echo "error writing trailer" >&2; exit 1 ;;
  esac
done
exit 1
""",
}


def write_fake_ffmpeg(directory: Path, behaviour: str = "graceful") -> Path:
    """
    Write an executable ``ffmpeg`` stand-in into ``directory``.

    The recorded argv of the last recording launch lands in
    ``directory / "argv.txt"``, one argument per line.
    """
    directory = Path(directory)
    script = directory / f"ffmpeg-{behaviour}"
    body = _VERSION_PREAMBLE.format(argv_file=directory / "argv.txt")
    script.write_text(body + FAKE_FFMPEG_BEHAVIOURS[behaviour])
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


def recorded_argv(directory: Path) -> list:
    return (Path(directory) / "argv.txt").read_text().splitlines()
