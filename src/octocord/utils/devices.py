from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from loguru import logger as log

from octocord.errors import DeviceUnavailable

V4L2_SCAN_RANGE = range(10)
V4L2_SYSFS = Path("/sys/class/video4linux")


def resolve_device_name(available: Sequence[str], requested: Optional[str],
                        kind: str = "device") -> Tuple[int, str]:
    """
    Pick a device out of ``available`` for the ``requested`` name.

    Resolution order: exact name, then case-insensitive substring, then the
    first available device.

    Returns:
        (index, name) of the chosen entry in ``available``.

    Raises:
        DeviceUnavailable: if ``available`` is empty.
    """
    if not available:
        err = f"No {kind} available"
        log.error(err)
        raise DeviceUnavailable(err)

    if requested:
        for idx, name in enumerate(available):
            if name == requested:
                return idx, name

        wanted = requested.lower()
        for idx, name in enumerate(available):
            if wanted in name.lower():
                log.info(f"{kind.capitalize()} '{requested}' matched '{name}' by substring")
                return idx, name

        log.warning(f"{kind.capitalize()} '{requested}' not found; falling back to '{available[0]}'")

    return 0, available[0]


def list_v4l2_devices(dev_dir: Path = Path("/dev"),
                      sysfs_dir: Path = V4L2_SYSFS) -> List[Tuple[int, str, str]]:
    """
    Enumerate /dev/videoN nodes in the fixed scan range.

    Returns:
        List of (index, human name, device path). The human name comes from
        sysfs when available, else the device path itself.
    """
    devices = []
    for i in V4L2_SCAN_RANGE:
        path = dev_dir / f"video{i}"
        if not path.exists():
            continue
        name_file = sysfs_dir / f"video{i}" / "name"
        try:
            name = name_file.read_text().strip() or str(path)
        except OSError:
            name = str(path)
        devices.append((i, name, str(path)))
    return devices
