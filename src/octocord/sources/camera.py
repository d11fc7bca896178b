import cv2
from typing import Any, List, Optional

from loguru import logger as log

from octocord.errors import ConfigurationError, DeviceUnavailable
from octocord.sources.base import CaptureSourceBase, DropPolicy
from octocord.types import CaptureFrame
from octocord.utils.devices import list_v4l2_devices, resolve_device_name

FALLBACK_CAMERA_NAME = "Default Webcam"
CAMERA_BACKENDS = ("opencv", "null")


def list_cameras() -> List[str]:
    """Human-readable webcam names; never raises."""
    try:
        names = [name for _, name, _ in list_v4l2_devices()]
    except OSError as e:
        log.warning(f"Webcam enumeration failed: {e}")
        names = []
    return names or [FALLBACK_CAMERA_NAME]


class CameraCapture(CaptureSourceBase):
    """
    Live webcam preview through OpenCV.

    Attributes:
        camera_index (int): v4l2 index handed to ``cv2.VideoCapture``.
        device_name (str): Name the requested camera resolved to.
        device_path (str): ``/dev/videoN`` node of that camera.
    """

    def __init__(self, camera_name: Optional[str] = None,
                 width: Optional[int] = 640, height: Optional[int] = 480, *,
                 drop_policy: DropPolicy = DropPolicy.NEWEST):
        """
        Parameters:
            camera_name (Optional[str]): Camera name or /dev/video path; the
                first camera when None or unmatched.
            width (Optional[int]): Requested capture width.
            height (Optional[int]): Requested capture height.
        """
        super().__init__(name="webcam", drop_policy=drop_policy)

        devices = list_v4l2_devices()
        by_path = {path: (idx, name) for idx, name, path in devices}
        if camera_name in by_path:
            self.camera_index, self.device_name = by_path[camera_name]
        else:
            pos, self.device_name = resolve_device_name(
                [name for _, name, _ in devices], camera_name, kind="camera")
            self.camera_index = devices[pos][0]
        self.device_path = f"/dev/video{self.camera_index}"

        self.width = width
        self.height = height
        log.info(f"Webcam preview on {self.device_name} ({self.device_path})")

    def _open(self) -> Any:
        cap = cv2.VideoCapture(self.camera_index)
        if not cap.isOpened():
            cap.release()
            raise DeviceUnavailable(f"Failed to open camera at index {self.camera_index}")

        if self.width is not None:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        if self.height is not None:
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        return cap

    def _acquire(self, cap: Any) -> Optional[CaptureFrame]:
        ret, frame = cap.read()
        if not ret:
            raise RuntimeError("camera returned no frame")
        return CaptureFrame(frame)

    def _release(self, cap: Any) -> None:
        cap.release()


class NullCameraCapture:
    """Webcam stand-in for hosts without a usable camera stack: never yields frames."""

    def __init__(self, camera_name: Optional[str] = None, **_):
        self.name = "webcam"
        self.device_name = camera_name or FALLBACK_CAMERA_NAME
        self._running = False

    def start(self) -> None:
        self._running = True

    def stop(self) -> None:
        self._running = False

    def is_running(self) -> bool:
        return self._running

    def get_latest_frame(self) -> Optional[CaptureFrame]:
        return None


def create_camera_source(camera_name: Optional[str] = None, backend: str = "opencv", **kwargs):
    """Build the webcam preview source for the configured backend ("opencv" or "null")."""
    if backend == "opencv":
        return CameraCapture(camera_name, **kwargs)
    if backend == "null":
        return NullCameraCapture(camera_name)

    err = f"Unknown camera backend '{backend}', expected one of {CAMERA_BACKENDS}"
    log.error(err)
    raise ConfigurationError(err)
