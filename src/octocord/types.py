from dataclasses import dataclass, field
from typing import Any, TYPE_CHECKING
import time

if TYPE_CHECKING:
    import numpy
    ArrayType = numpy.ndarray
else:
    ArrayType = Any


@dataclass
class CaptureFrame:
    """
    A decoded image handed from a capture thread to the preview renderer.

    Owned by the capture source until published, then by the channel until a
    single consumer takes it.
    """
    image: ArrayType  # (H, W, 3) uint8, BGR
    timestamp: float = field(default_factory=time.monotonic)

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def width(self) -> int:
        return int(self.image.shape[1])
