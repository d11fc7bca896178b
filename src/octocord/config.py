from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Optional
import math

from loguru import logger as log

from octocord.errors import ConfigurationError

# ───────────────────────────── environment variables ────────────────────────
ENV_WAYLAND_DISPLAY = "WAYLAND_DISPLAY"
ENV_DISPLAY = "DISPLAY"
ENV_USE_PIPEWIRE = "OCTOCORD_USE_PIPEWIRE"
ENV_AUDIO_BACKEND = "OCTOCORD_AUDIO_BACKEND"
ENV_AUDIO_HOST = "OCTOCORD_AUDIO_HOST"

# Variables that identify the display/audio session the probes ran against.
SESSION_FINGERPRINT_VARS = (
    ENV_WAYLAND_DISPLAY,
    ENV_DISPLAY,
    "XDG_SESSION_TYPE",
    "PULSE_SERVER",
    "PIPEWIRE_REMOTE",
)

TRUTHY_FLAGS = ("1", "true", "TRUE")

DEFAULT_OUTPUT_DIRECTORY = Path.home() / "Videos" / "discord-recordings"


class VideoQuality(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    ULTRA = "ultra"

    @property
    def crf(self) -> int:
        """Constant rate factor for libx264; lower means higher quality."""
        return {
            VideoQuality.LOW: 28,
            VideoQuality.MEDIUM: 23,
            VideoQuality.HIGH: 20,
            VideoQuality.ULTRA: 18,
        }[self]

    @property
    def bitrate_kbps(self) -> int:
        return {
            VideoQuality.LOW: 1000,
            VideoQuality.MEDIUM: 2500,
            VideoQuality.HIGH: 5000,
            VideoQuality.ULTRA: 10000,
        }[self]

    @property
    def preset(self) -> str:
        return "veryfast"


class AudioQuality(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    LOSSLESS = "lossless"

    @property
    def sample_rate(self) -> int:
        return {
            AudioQuality.LOW: 22050,
            AudioQuality.MEDIUM: 44100,
            AudioQuality.HIGH: 48000,
            AudioQuality.LOSSLESS: 96000,
        }[self]

    @property
    def bitrate_kbps(self) -> int:
        return {
            AudioQuality.LOW: 64,
            AudioQuality.MEDIUM: 128,
            AudioQuality.HIGH: 256,
            AudioQuality.LOSSLESS: 320,
        }[self]


@dataclass(frozen=True)
class RecordingConfiguration:
    """
    Immutable snapshot of everything one recording session needs.

    Attributes:
        output_directory (Path): Where the recording files are written.
        video_quality (VideoQuality): Rate factor / bitrate tier.
        audio_quality (AudioQuality): Sample rate / bitrate tier.
        include_audio (bool): Record system audio.
        include_video (bool): Record the selected display.
        include_webcam (bool): Record the webcam (overlaid when video is on).
        separate_outputs (bool): Write video and audio to separate files.
        selected_screen (Optional[int]): Display index, first display if None.
        audio_device (Optional[str]): Audio device name, "default" if None.
        webcam_device (Optional[str]): v4l2 device path, /dev/video0 if None.
        frame_rate (int): Display capture frame rate.
        audio_gain_db (float): Gain applied to the recorded audio.
        ffmpeg_path (str): Encoding tool binary.
        use_pipewire_on_wayland (bool): Opt in to portal screen capture.
    """
    output_directory: Path = DEFAULT_OUTPUT_DIRECTORY
    video_quality: VideoQuality = VideoQuality.HIGH
    audio_quality: AudioQuality = AudioQuality.HIGH
    include_audio: bool = True
    include_video: bool = True
    include_webcam: bool = False
    separate_outputs: bool = False
    selected_screen: Optional[int] = None
    audio_device: Optional[str] = None
    webcam_device: Optional[str] = None
    frame_rate: int = 60
    audio_gain_db: float = 0.0
    ffmpeg_path: str = "ffmpeg"
    use_pipewire_on_wayland: bool = False

    def __post_init__(self):
        # Accept plain strings from callers that read paths out of settings.
        object.__setattr__(self, "output_directory", Path(self.output_directory))

    @property
    def any_video(self) -> bool:
        return self.include_video or self.include_webcam

    @property
    def video_bitrate_kbps(self) -> int:
        return self.video_quality.bitrate_kbps

    @property
    def audio_bitrate_kbps(self) -> int:
        return self.audio_quality.bitrate_kbps

    @property
    def audio_sample_rate(self) -> int:
        return self.audio_quality.sample_rate

    def validate(self) -> "RecordingConfiguration":
        if not (self.include_audio or self.include_video or self.include_webcam):
            err = "At least one of audio, video, or webcam capture must be enabled"
            log.error(err)
            raise ConfigurationError(err)

        if self.frame_rate <= 0:
            err = f"Frame rate must be positive, got {self.frame_rate}"
            log.error(err)
            raise ConfigurationError(err)

        if not math.isfinite(self.audio_gain_db):
            err = f"Audio gain must be a finite dB value, got {self.audio_gain_db}"
            log.error(err)
            raise ConfigurationError(err)

        return self

    def replace(self, **changes) -> "RecordingConfiguration":
        return replace(self, **changes)
