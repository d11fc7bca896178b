"""
octocord – demo launcher
========================

Records the screen, system audio and webcam with ffmpeg while showing a
live preview:

    • display preview with the webcam composited in the corner
    • input level meter
    • Record / Pause buttons

Edit the `RUN_MODE` and FLAGS at the top; no other changes
needed when you switch setups.
"""
from pathlib import Path
import signal
import sys

import cv2
import qdarkstyle
from PyQt5 import QtCore, QtGui, QtWidgets
from loguru import logger

from octocord import pipeline
from octocord.config import AudioQuality, RecordingConfiguration, VideoQuality
from octocord.errors import DeviceUnavailable, RecorderError
from octocord.preview.overlay import OverlayStyle
from octocord.sources.audio_monitor import AudioLevelMonitor
from octocord.sources.camera import create_camera_source
from octocord.sources.display import DisplayCapture

# -----------------------------------------------------------------------------
# 1) HIGH-LEVEL SWITCHES
# -----------------------------------------------------------------------------
RUN_MODE = "live"        # "live" | "headless"
FLAGS = dict(
    include_video=True,
    include_audio=True,
    include_webcam=False,
    separate_outputs=False,

    preview_display=True,
    preview_webcam=True,
    meter_audio=True,

    # preview_webcam=False,
)

OUTPUT_DIR = Path.home() / "Videos" / "discord-recordings"

# -----------------------------------------------------------------------------
# 2) GLOBAL PARAMS
# -----------------------------------------------------------------------------
PREVIEW_FPS  = 30
PREVIEW_SIZE = (960, 540)
HEADLESS_SECONDS = 5

RECORDING_CONF = dict(
    video_quality=VideoQuality.HIGH,
    audio_quality=AudioQuality.HIGH,
    frame_rate=60,
    audio_gain_db=0.0,
    selected_screen=0,
    audio_device=None,
    webcam_device=None,
    # use_pipewire_on_wayland=True,
)

CAMERA_CONF = dict(
    backend="opencv",    # "opencv" | "null"
    width=640,
    height=480,
)

OVERLAY_CONF = dict(
    position=(40, 40),
    size=(320, 180),
    opacity=0.9,
)


class RecorderWindow(QtWidgets.QWidget):
    def __init__(self, session: pipeline.RecordingSession, style: OverlayStyle):
        super().__init__()
        self.session = session
        self.style = style

        self.preview = QtWidgets.QLabel("No preview")
        self.preview.setAlignment(QtCore.Qt.AlignCenter)
        self.preview.setMinimumSize(*PREVIEW_SIZE)

        self.meter = QtWidgets.QProgressBar()
        self.meter.setRange(0, 100)
        self.meter.setTextVisible(False)

        self.record_btn = QtWidgets.QPushButton("Record")
        self.pause_btn = QtWidgets.QPushButton("Pause")
        self.pause_btn.setEnabled(False)
        self.status = QtWidgets.QLabel("Idle")

        self.record_btn.clicked.connect(self.toggle_recording)
        self.pause_btn.clicked.connect(self.toggle_pause)

        buttons = QtWidgets.QHBoxLayout()
        buttons.addWidget(self.record_btn)
        buttons.addWidget(self.pause_btn)
        buttons.addWidget(self.status, 1)

        layout = QtWidgets.QVBoxLayout(self)
        layout.addWidget(self.preview, 1)
        layout.addWidget(self.meter)
        layout.addLayout(buttons)

        self.timer = QtCore.QTimer()
        self.timer.setInterval(int(1000 / PREVIEW_FPS))
        self.timer.timeout.connect(self.refresh)
        self.timer.start()

    # ---------------------------------------------------------------- UI loop
    def refresh(self) -> None:
        try:
            self.session.poll()
        except RecorderError as e:
            logger.error(f"Recording ended unexpectedly: {e}")
            self._set_idle(f"Failed: {e}")

        frame = self.session.preview_frame(self.style)
        if frame is not None:
            rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
            h, w = rgb.shape[:2]
            image = QtGui.QImage(rgb.data, w, h, 3 * w, QtGui.QImage.Format_RGB888)
            pixmap = QtGui.QPixmap.fromImage(image).scaled(
                self.preview.size(), QtCore.Qt.KeepAspectRatio, QtCore.Qt.SmoothTransformation)
            self.preview.setPixmap(pixmap)

        self.meter.setValue(int(self.session.audio_level() * 100))

    # ---------------------------------------------------------------- actions
    def toggle_recording(self) -> None:
        if self.session.is_recording():
            try:
                outputs = pipeline.stop(self.session)
                self._set_idle(f"Saved: {', '.join(str(p) for p in outputs.paths())}")
            except RecorderError as e:
                logger.error(f"Stop failed: {e}")
                self._set_idle(f"Failed: {e}")
            return

        try:
            pipeline.start(self.session)
        except RecorderError as e:
            logger.error(f"Start failed: {e}")
            self.status.setText(f"Failed: {e}")
            return
        self.record_btn.setText("Stop")
        self.pause_btn.setEnabled(True)
        self.status.setText("Recording")

    def toggle_pause(self) -> None:
        paused = pipeline.toggle_pause(self.session)
        self.pause_btn.setText("Resume" if paused else "Pause")
        self.status.setText("Paused" if paused else "Recording")

    def _set_idle(self, message: str) -> None:
        self.record_btn.setText("Record")
        self.pause_btn.setText("Pause")
        self.pause_btn.setEnabled(False)
        self.status.setText(message)


def attach_previews(session: pipeline.RecordingSession) -> None:
    if FLAGS["preview_display"] and FLAGS["include_video"]:
        display = DisplayCapture(RECORDING_CONF["selected_screen"])
        session.attach_preview("display", display)
        display.start()

    if FLAGS["preview_webcam"] and FLAGS["include_webcam"]:
        camera = create_camera_source(RECORDING_CONF["webcam_device"], **CAMERA_CONF)
        session.attach_preview("webcam", camera, exclusive=True)
        camera.start()

    if FLAGS["meter_audio"] and FLAGS["include_audio"]:
        try:
            monitor = AudioLevelMonitor(gain_db=RECORDING_CONF["audio_gain_db"])
        except DeviceUnavailable as e:
            logger.warning(f"Level meter disabled: {e}")
            return
        session.attach_preview("audio", monitor)
        monitor.start()


# -----------------------------------------------------------------------------
# 3) MAIN
# -----------------------------------------------------------------------------
def main() -> None:
    # ---------------------------------------------------------------- Config
    logger.info(f"Displays: {pipeline.list_displays()}")
    logger.info(f"Audio inputs: {pipeline.list_audio_devices()}")
    logger.info(f"Cameras: {pipeline.list_cameras()}")

    config = RecordingConfiguration(
        output_directory=OUTPUT_DIR,
        include_video=FLAGS["include_video"],
        include_audio=FLAGS["include_audio"],
        include_webcam=FLAGS["include_webcam"],
        separate_outputs=FLAGS["separate_outputs"],
        **RECORDING_CONF,
    )
    session = pipeline.create(config)

    if RUN_MODE == "headless":
        with session:
            outputs = pipeline.start(session)
            logger.info(f"Recording {HEADLESS_SECONDS}s to {[str(p) for p in outputs.paths()]}")
            QtCore.QThread.sleep(HEADLESS_SECONDS)
        return

    # ---------------------------------------------------------------- Qt App
    app = QtWidgets.QApplication([])
    app.setStyleSheet(qdarkstyle.load_stylesheet_pyqt5())

    attach_previews(session)

    window = RecorderWindow(session, OverlayStyle(**OVERLAY_CONF))
    window.setWindowTitle("octocord")
    window.show()

    def shutdown() -> None:
        window.timer.stop()
        if session.is_recording():
            try:
                pipeline.stop(session)
            except RecorderError as e:
                logger.error(f"Stop on exit failed: {e}")
        for kind in ("display", "webcam", "audio"):
            source = session.detach_preview(kind)
            if source is not None:
                source.stop()

    signal.signal(signal.SIGINT, signal.SIG_DFL)
    app.aboutToQuit.connect(shutdown)

    try:
        sys.exit(app.exec())
    except KeyboardInterrupt:
        shutdown()


if __name__ == "__main__":
    main()
