"""
ffmpeg command construction.

`build_command` maps a RecordingConfiguration, the process environment, the
cached backend probe result and a HostInspector to a CommandPlan. It performs
no I/O of its own: everything it needs to know about the machine comes in
through its arguments, so identical arguments always produce an identical plan.
"""
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Mapping, Optional, Tuple

from loguru import logger as log

from octocord.backend.host import HostInspector
from octocord.backend.prober import BackendProbeResult
from octocord.config import (
    ENV_AUDIO_BACKEND,
    ENV_DISPLAY,
    ENV_USE_PIPEWIRE,
    ENV_WAYLAND_DISPLAY,
    TRUTHY_FLAGS,
    RecordingConfiguration,
)
from octocord.errors import DeviceUnavailable
from octocord.utils.devices import V4L2_SCAN_RANGE
from octocord.utils.utils import db_to_linear

GLOBAL_FLAGS = ("-y", "-hide_banner", "-loglevel", "warning", "-stats", "-threads", "0")

EVEN_SCALE_FILTER = "trunc(iw/2)*2:trunc(ih/2)*2"
WEBCAM_OVERLAY_WIDTH = 640
WEBCAM_OVERLAY_MARGIN = 40
WEBCAM_FRAME_RATE = 30
DEFAULT_WEBCAM_PATH = "/dev/video0"
DEFAULT_X11_DISPLAY = ":0.0"
DEFAULT_AUDIO_DEVICE = "default"
AUDIO_CHANNELS = 2

VIDEO_CODEC = "libx264"
PIXEL_FORMAT = "yuv420p"


@dataclass(frozen=True)
class InputSpec:
    """One ``-f <backend> ... -i <source>`` group of the command line."""
    kind: str  # "video" | "audio" | "webcam"
    backend: str
    source: str
    index: int
    args: Tuple[str, ...]


@dataclass(frozen=True)
class RecordingOutputs:
    combined: Optional[Path] = None
    video_only: Optional[Path] = None
    audio_only: Optional[Path] = None

    def paths(self) -> List[Path]:
        return [p for p in (self.combined, self.video_only, self.audio_only) if p is not None]


@dataclass(frozen=True)
class CommandPlan:
    argv: Tuple[str, ...]
    outputs: RecordingOutputs
    inputs: Tuple[InputSpec, ...]
    filter_complex: Optional[str] = None
    webcam_enabled: bool = False

    def input_index(self, kind: str) -> Optional[int]:
        for spec in self.inputs:
            if spec.kind == kind:
                return spec.index
        return None


def session_timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d_%H%M%S")


def plan_outputs(output_directory: Path, timestamp: str, *, separate_outputs: bool,
                 include_audio: bool, any_video: bool) -> RecordingOutputs:
    """
    Decide which files a session produces.

    Separate video/audio files only exist when both kinds of stream are present
    and the caller asked for them; everything else goes to one combined file,
    ``.mkv`` when it carries video and ``.flac`` for audio alone.
    """
    base = Path(output_directory) / f"recording_{timestamp}"

    if separate_outputs and include_audio and any_video:
        return RecordingOutputs(
            video_only=base.with_name(base.name + ".video.mkv"),
            audio_only=base.with_name(base.name + ".audio.flac"),
        )
    if any_video:
        return RecordingOutputs(combined=base.with_name(base.name + ".mkv"))
    if include_audio:
        return RecordingOutputs(combined=base.with_name(base.name + ".flac"))
    return RecordingOutputs()


def wants_portal_capture(config: RecordingConfiguration, env: Mapping[str, str]) -> bool:
    wayland = env.get(ENV_WAYLAND_DISPLAY) is not None
    prefer_pipewire = env.get(ENV_USE_PIPEWIRE) in TRUTHY_FLAGS or config.use_pipewire_on_wayland
    have_display = env.get(ENV_DISPLAY) is not None
    return wayland and prefer_pipewire and not have_display


def _video_input(config: RecordingConfiguration, env: Mapping[str, str],
                 probe: BackendProbeResult, host: HostInspector, index: int) -> InputSpec:
    if wants_portal_capture(config, env):
        if not probe.pipewire_supported:
            log.warning("PipeWire capture requested but ffmpeg reported no pipewire support")
        log.info("Video input: pipewire (Wayland)")
        return InputSpec("video", "pipewire", "0", index,
                         ("-thread_queue_size", "2048", "-f", "pipewire", "-i", "0"))

    geometry = host.display_geometry(config.selected_screen)
    display = env.get(ENV_DISPLAY) or DEFAULT_X11_DISPLAY
    source = f"{display}+{geometry.left},{geometry.top}"
    log.info(f"Video input: x11grab {geometry.video_size} from {source}")
    return InputSpec("video", "x11grab", source, index, (
        "-thread_queue_size", "2048",
        "-f", "x11grab",
        "-framerate", str(config.frame_rate),
        "-probesize", "50M",
        "-fflags", "+nobuffer",
        "-use_wallclock_as_timestamps", "1",
        "-video_size", geometry.video_size,
        "-i", source,
    ))


def select_audio_backend(env: Mapping[str, str], probe: BackendProbeResult) -> str:
    override = env.get(ENV_AUDIO_BACKEND)
    if override:
        return "pulse" if override.lower() == "pulse" else "alsa"
    return "pulse" if probe.pulse_supported else "alsa"


def _audio_input(config: RecordingConfiguration, env: Mapping[str, str],
                 probe: BackendProbeResult, index: int) -> InputSpec:
    backend = select_audio_backend(env, probe)
    # ALSA hw nodes are frequently busy; only pulse gets an explicit device.
    device = DEFAULT_AUDIO_DEVICE
    if backend == "pulse" and config.audio_device and config.audio_device != DEFAULT_AUDIO_DEVICE:
        device = config.audio_device

    rate = str(config.audio_sample_rate)
    log.info(f"Audio input: {backend}:{device} @ {rate} Hz")
    return InputSpec("audio", backend, device, index, (
        "-thread_queue_size", "2048",
        "-f", backend,
        "-ac", str(AUDIO_CHANNELS),
        "-ar", rate,
        "-i", device,
    ))


def resolve_webcam_path(requested: Optional[str], host: HostInspector) -> Optional[str]:
    """
    Find a usable v4l2 node: the requested one if it exists, else the first
    existing ``/dev/videoN`` in the scan range; accepted only when ffmpeg can
    open it.
    """
    requested = requested or DEFAULT_WEBCAM_PATH
    if requested.startswith("/dev/video") and host.path_exists(requested):
        candidate = requested
    else:
        candidate = next(
            (p for p in (f"/dev/video{i}" for i in V4L2_SCAN_RANGE) if host.path_exists(p)),
            None,
        )

    if candidate is None:
        log.info("Webcam device not found; continuing without webcam")
        return None
    if not host.webcam_accessible(candidate):
        log.info(f"Webcam device {candidate} not accessible; continuing without webcam")
        return None
    return candidate


def _video_codec_args(config: RecordingConfiguration) -> List[str]:
    quality = config.video_quality
    return [
        "-c:v", VIDEO_CODEC,
        "-preset", quality.preset,
        "-crf", str(quality.crf),
        "-pix_fmt", PIXEL_FORMAT,
        "-b:v", f"{config.video_bitrate_kbps}k",
    ]


def audio_gain_args(gain_db: float) -> List[str]:
    if gain_db == 0:
        return []
    return ["-filter:a", f"volume={db_to_linear(gain_db):.6g}"]


def overlay_filter(video_index: int, webcam_index: int) -> str:
    return (
        f"[{webcam_index}:v]scale={WEBCAM_OVERLAY_WIDTH}:-1[cam_scaled];"
        f"[{video_index}:v][cam_scaled]overlay="
        f"W-w-{WEBCAM_OVERLAY_MARGIN}:H-h-{WEBCAM_OVERLAY_MARGIN}[overlayed];"
        f"[overlayed]scale={EVEN_SCALE_FILTER}[vout]"
    )


def build_command(config: RecordingConfiguration, env: Mapping[str, str],
                  probe: BackendProbeResult, host: HostInspector,
                  timestamp: str) -> CommandPlan:
    """
    Resolve the full ffmpeg invocation for one recording session.

    Parameters:
        config (RecordingConfiguration): Validated session configuration.
        env (Mapping[str, str]): Environment variables (display session and
            backend overrides).
        probe (BackendProbeResult): Cached backend support flags.
        host (HostInspector): Device existence, webcam accessibility and
            display geometry.
        timestamp (str): ``YYYYMMDD_HHMMSS`` stem for the output files.

    Returns:
        CommandPlan with the argv and the output files it will write.

    Raises:
        DeviceUnavailable: if no video, webcam or audio stream survives the
            device fallbacks.
    """
    inputs: List[InputSpec] = []

    # Fixed input order: video, audio, webcam. An input's index is the number
    # of inputs included before it.
    if config.include_video:
        inputs.append(_video_input(config, env, probe, host, len(inputs)))
    if config.include_audio:
        inputs.append(_audio_input(config, env, probe, len(inputs)))
    if config.include_webcam:
        webcam_path = resolve_webcam_path(config.webcam_device, host)
        if webcam_path is not None:
            inputs.append(InputSpec("webcam", "v4l2", webcam_path, len(inputs), (
                "-thread_queue_size", "512",
                "-f", "v4l2",
                "-framerate", str(WEBCAM_FRAME_RATE),
                "-i", webcam_path,
            )))

    by_kind = {spec.kind: spec for spec in inputs}
    video_in = by_kind.get("video")
    audio_in = by_kind.get("audio")
    webcam_in = by_kind.get("webcam")

    filter_complex: Optional[str] = None
    needs_even_scale = False
    video_map: Optional[str] = None
    if video_in is not None and webcam_in is not None:
        filter_complex = overlay_filter(video_in.index, webcam_in.index)
        video_map = "[vout]"
    elif video_in is not None:
        video_map = f"{video_in.index}:v"
        needs_even_scale = True
    elif webcam_in is not None:
        video_map = f"{webcam_in.index}:v"
        needs_even_scale = True
    audio_map = f"{audio_in.index}:a" if audio_in is not None else None

    if video_map is None and audio_map is None:
        err = "No usable video, webcam or audio stream remains for the recording"
        log.error(err)
        raise DeviceUnavailable(err)

    outputs = plan_outputs(
        config.output_directory, timestamp,
        separate_outputs=config.separate_outputs,
        include_audio=audio_map is not None,
        any_video=video_map is not None,
    )

    argv: List[str] = [config.ffmpeg_path, *GLOBAL_FLAGS]
    for spec in inputs:
        argv.extend(spec.args)
    if filter_complex is not None:
        argv.extend(["-filter_complex", filter_complex])

    video_args: List[str] = []
    if video_map is not None:
        video_args = ["-map", video_map]
        if needs_even_scale:
            video_args += ["-vf", f"scale={EVEN_SCALE_FILTER}"]
        video_args += _video_codec_args(config)

    rate = str(config.audio_sample_rate)
    gain = audio_gain_args(config.audio_gain_db)

    if outputs.video_only is not None:
        argv += video_args + [str(outputs.video_only)]
        # Standalone audio uses FLAC to match the .flac container
        argv += ["-map", audio_map, *gain, "-c:a", "flac", "-ar", rate, str(outputs.audio_only)]
    else:
        argv += video_args
        if audio_map is not None:
            if video_map is None:
                argv += ["-map", audio_map, *gain, "-c:a", "flac", "-ar", rate]
            else:
                argv += ["-map", audio_map, *gain,
                         "-c:a", "aac", "-b:a", f"{config.audio_bitrate_kbps}k", "-ar", rate,
                         "-shortest"]
        argv.append(str(outputs.combined))

    return CommandPlan(
        argv=tuple(argv),
        outputs=outputs,
        inputs=tuple(inputs),
        filter_complex=filter_complex,
        webcam_enabled=webcam_in is not None,
    )
