"""
Recording pipeline coordinator.

The only surface the GUI talks to: it turns a RecordingConfiguration into a
RecordingSession, keeps the in-process previews out of ffmpeg's way while a
recording runs, and hands back the files that were written.
"""
from threading import Lock
from typing import Callable, Dict, List, Mapping, NamedTuple, Optional

import numpy as np
from loguru import logger as log

from octocord.backend.host import HostInspector, SystemHost
from octocord.backend.prober import BackendProber
from octocord.config import RecordingConfiguration
from octocord.errors import ConfigurationError, StreamTerminatedUnexpectedly
from octocord.preview.overlay import OverlayStyle, compose_overlay
from octocord.recording.command import RecordingOutputs, session_timestamp
from octocord.recording.supervisor import ProcessSupervisor, SupervisorState
from octocord.sources.audio_monitor import list_audio_devices
from octocord.sources.camera import list_cameras
from octocord.sources.display import list_displays

PREVIEW_KINDS = ("display", "webcam", "audio")

# Devices ffmpeg opens exclusively; their previews must be released first.
EXCLUSIVE_KINDS = ("webcam",)


class _Preview(NamedTuple):
    source: object
    exclusive: bool


class RecordingSession:
    """
    One recording: a frozen configuration, its ffmpeg supervisor and the
    previews registered next to it.

    Previews are any objects with ``start()``, ``stop()``, ``is_running()`` and
    ``get_latest_frame()``, i.e. the capture sources and the audio monitor.
    """

    def __init__(self, config: RecordingConfiguration, supervisor: ProcessSupervisor):
        self.config = config
        self.supervisor = supervisor
        self._previews: Dict[str, _Preview] = {}
        self._suspended: List[str] = []
        self._last_frames: Dict[str, np.ndarray] = {}
        self._lock = Lock()

    # ‑‑ previews -----------------------------------------------------------
    def attach_preview(self, kind: str, source, exclusive: Optional[bool] = None) -> None:
        if kind not in PREVIEW_KINDS:
            raise ValueError(f"Unknown preview kind '{kind}', expected one of {PREVIEW_KINDS}")
        if exclusive is None:
            exclusive = kind in EXCLUSIVE_KINDS
        with self._lock:
            self._previews[kind] = _Preview(source, exclusive)

    def detach_preview(self, kind: str):
        with self._lock:
            preview = self._previews.pop(kind, None)
            self._last_frames.pop(kind, None)
        return preview.source if preview else None

    def preview(self, kind: str):
        with self._lock:
            preview = self._previews.get(kind)
        return preview.source if preview else None

    def _records(self, kind: str) -> bool:
        return {
            "display": self.config.include_video,
            "webcam": self.config.include_webcam,
            "audio": self.config.include_audio,
        }[kind]

    def _suspend_conflicting_previews(self) -> None:
        with self._lock:
            conflicting = [(kind, p.source) for kind, p in self._previews.items()
                           if p.exclusive and self._records(kind) and p.source.is_running()]
        for kind, source in conflicting:
            log.info(f"Stopping {kind} preview so ffmpeg can open the device")
            source.stop()
        self._suspended = [kind for kind, _ in conflicting]

    def _resume_previews(self) -> None:
        suspended, self._suspended = self._suspended, []
        for kind in suspended:
            source = self.preview(kind)
            if source is None:
                continue
            try:
                source.start()
            except Exception as e:  # best effort; the recording result still propagates
                log.error(f"Failed to restart {kind} preview: {e}")

    def latest_frame(self, kind: str) -> Optional[np.ndarray]:
        """Newest frame of a preview, repeating the previous one if nothing new arrived."""
        source = self.preview(kind)
        if source is None:
            return None
        frame = source.get_latest_frame()
        with self._lock:
            if frame is not None:
                self._last_frames[kind] = getattr(frame, "image", frame)
            return self._last_frames.get(kind)

    def preview_frame(self, style: Optional[OverlayStyle] = None) -> Optional[np.ndarray]:
        """Display preview with the webcam inset composited on top."""
        display = self.latest_frame("display")
        webcam = self.latest_frame("webcam")
        if display is None:
            return webcam
        if webcam is None or style is None:
            return display
        return compose_overlay(display, webcam, style)

    def audio_level(self) -> float:
        monitor = self.preview("audio")
        get_level: Optional[Callable[[], float]] = getattr(monitor, "get_level", None)
        return get_level() if get_level else 0.0

    # ‑‑ recording ----------------------------------------------------------
    @property
    def state(self) -> SupervisorState:
        return self.supervisor.state

    @property
    def outputs(self) -> Optional[RecordingOutputs]:
        return self.supervisor.outputs

    @property
    def paused(self) -> bool:
        return self.supervisor.paused

    def is_recording(self) -> bool:
        return self.supervisor.state is SupervisorState.RUNNING

    def start(self) -> RecordingOutputs:
        if self.is_recording():
            log.warning("Recording already running; ignoring duplicate start()")
            return self.outputs

        log.info("Starting recording")
        self._suspend_conflicting_previews()
        try:
            return self.supervisor.start()
        except Exception:
            self._resume_previews()
            raise

    def stop(self) -> Optional[RecordingOutputs]:
        log.info("Stopping recording")
        outputs = self.outputs
        try:
            self.supervisor.stop()
        except StreamTerminatedUnexpectedly as e:
            e.outputs = outputs
            raise
        finally:
            self._resume_previews()
        return outputs

    def toggle_pause(self) -> bool:
        return self.supervisor.toggle_pause()

    def poll(self) -> SupervisorState:
        """Raises StreamTerminatedUnexpectedly if ffmpeg died mid-recording."""
        try:
            return self.supervisor.poll()
        except StreamTerminatedUnexpectedly as e:
            self._resume_previews()
            e.outputs = e.outputs or self.outputs
            raise

    # ‑‑ scoped cleanup -----------------------------------------------------
    def __enter__(self) -> "RecordingSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.state is SupervisorState.RUNNING:
            try:
                self.stop()
            except StreamTerminatedUnexpectedly:
                if exc_type is None:
                    raise

    def __del__(self):
        if getattr(self, "supervisor", None) is None:
            return
        try:
            if self.supervisor.is_running():
                self.stop()
        except Exception as e:
            log.error(f"Failed to stop recording session: {e}")


class RecordingPipeline:
    """
    Session factory sharing one backend probe cache per ffmpeg binary.

    Parameters:
        env (Mapping[str, str]): Environment for backend selection; the live
            ``os.environ`` when None.
        host_factory (Callable[[str], HostInspector]): Builds the host view for
            an ffmpeg path.
        stop_timeout (float): Grace period before ffmpeg is killed on stop.
        timestamp_fn (Callable[[], str]): Output filename stem factory.
    """

    def __init__(self, env: Optional[Mapping[str, str]] = None,
                 host_factory: Callable[[str], HostInspector] = SystemHost,
                 prober_factory: Callable[[str], BackendProber] = BackendProber,
                 stop_timeout: float = 5.0,
                 timestamp_fn: Callable[[], str] = session_timestamp):
        self.env = env
        self.host_factory = host_factory
        self.prober_factory = prober_factory
        self.stop_timeout = stop_timeout
        self.timestamp_fn = timestamp_fn
        self._probers: Dict[str, BackendProber] = {}
        self._lock = Lock()

    def prober(self, ffmpeg_path: str) -> BackendProber:
        with self._lock:
            if ffmpeg_path not in self._probers:
                self._probers[ffmpeg_path] = self.prober_factory(ffmpeg_path)
            return self._probers[ffmpeg_path]

    def create(self, config: RecordingConfiguration) -> RecordingSession:
        """
        Validate ``config`` and prepare a session. Nothing is opened or spawned.

        Raises:
            ConfigurationError: no source selected, invalid values, or an
                output directory that cannot be created.
        """
        config.validate()
        try:
            config.output_directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            err = f"Failed to create output directory {config.output_directory}: {e}"
            log.error(err)
            raise ConfigurationError(err) from e

        supervisor = ProcessSupervisor(
            config,
            prober=self.prober(config.ffmpeg_path),
            host=self.host_factory(config.ffmpeg_path),
            env=self.env,
            stop_timeout=self.stop_timeout,
            timestamp_fn=self.timestamp_fn,
        )
        return RecordingSession(config, supervisor)


_default_pipeline = RecordingPipeline()


def create(config: RecordingConfiguration) -> RecordingSession:
    return _default_pipeline.create(config)


def start(session: RecordingSession) -> RecordingOutputs:
    return session.start()


def stop(session: RecordingSession) -> Optional[RecordingOutputs]:
    return session.stop()


def toggle_pause(session: RecordingSession) -> bool:
    return session.toggle_pause()


__all__ = [
    "RecordingPipeline", "RecordingSession",
    "create", "start", "stop", "toggle_pause",
    "list_displays", "list_audio_devices", "list_cameras",
]
