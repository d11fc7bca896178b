from collections import deque
from enum import Enum
from threading import Lock, Thread
from typing import Callable, Deque, IO, List, Mapping, Optional
import os
import re
import subprocess
import time

from loguru import logger as log

from octocord.backend.host import HostInspector, SystemHost, ensure_tool_available
from octocord.backend.prober import BackendProber
from octocord.config import RecordingConfiguration
from octocord.errors import SpawnFailure, StreamTerminatedUnexpectedly
from octocord.recording.command import CommandPlan, RecordingOutputs, build_command, session_timestamp

QUIT_COMMAND = b"q\n"
PAUSE_COMMAND = b"p\n"

STOP_TIMEOUT_S = 5.0
POLL_INTERVAL_S = 0.1
DRAIN_JOIN_TIMEOUT_S = 2.0
STDERR_TAIL_LINES = 50

READ_CHUNK_BYTES = 4096
MAX_LINE_BYTES = 4096
LINE_BREAK = re.compile(rb"[\r\n]")
PROGRESS_PREFIXES = ("frame=", "size=")


class SupervisorState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class ProcessSupervisor:
    """
    Owns the ffmpeg process of one recording session.

    stdin belongs to the control path (pause / quit bytes, serialised by its
    own lock); stdout and stderr are each drained by a dedicated thread for
    the lifetime of the process so ffmpeg never stalls on a full pipe.

    Parameters:
        config (RecordingConfiguration): Session configuration.
        prober (BackendProber): Backend support cache shared across sessions.
        host (HostInspector): Host view handed to the command builder.
        env (Mapping[str, str]): Environment for backend selection; defaults to
            ``os.environ`` at start time.
        stop_timeout (float): How long ``stop()`` waits after the quit byte
            before killing the process.
        timestamp_fn (Callable[[], str]): Output filename stem factory.
    """

    def __init__(self, config: RecordingConfiguration,
                 prober: Optional[BackendProber] = None,
                 host: Optional[HostInspector] = None,
                 env: Optional[Mapping[str, str]] = None,
                 stop_timeout: float = STOP_TIMEOUT_S,
                 timestamp_fn: Callable[[], str] = session_timestamp):
        self.config = config
        self.prober = prober or BackendProber(config.ffmpeg_path)
        self.host = host or SystemHost(config.ffmpeg_path)
        self.env = env
        self.stop_timeout = stop_timeout
        self.timestamp_fn = timestamp_fn

        self.plan: Optional[CommandPlan] = None
        self.paused = False
        self.returncode: Optional[int] = None

        self._state = SupervisorState.IDLE
        self._state_lock = Lock()
        self._stdin_lock = Lock()
        self._process: Optional[subprocess.Popen] = None
        self._drains: List[Thread] = []
        self._stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._stop_requested = False

    # ‑‑ state --------------------------------------------------------------
    @property
    def state(self) -> SupervisorState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: SupervisorState) -> None:
        with self._state_lock:
            self._state = state
        log.debug(f"ffmpeg supervisor -> {state.value}")

    @property
    def outputs(self) -> Optional[RecordingOutputs]:
        return self.plan.outputs if self.plan is not None else None

    @property
    def stderr_tail(self) -> list:
        return list(self._stderr_tail)

    def is_running(self) -> bool:
        proc = self._process
        return proc is not None and proc.poll() is None

    # ‑‑ public API ---------------------------------------------------------
    def start(self) -> RecordingOutputs:
        if self.state is SupervisorState.RUNNING:
            log.warning("ffmpeg already running; ignoring duplicate start()")
            return self.plan.outputs

        self._set_state(SupervisorState.STARTING)
        try:
            ensure_tool_available(self.config.ffmpeg_path)

            env = os.environ if self.env is None else self.env
            plan = build_command(self.config, env, self.prober.result(env),
                                 self.host, self.timestamp_fn())
            log.info(f"Recorder options: {self.config}")
            log.debug(f"ffmpeg argv: {' '.join(plan.argv)}")

            try:
                proc = subprocess.Popen(
                    list(plan.argv),
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
            except (OSError, ValueError) as e:
                err = f"Failed to spawn ffmpeg process: {e}"
                log.error(err)
                raise SpawnFailure(err) from e
        except BaseException:
            self._set_state(SupervisorState.IDLE)
            raise

        self.plan = plan
        self.paused = False
        self.returncode = None
        self._stop_requested = False
        self._stderr_tail.clear()
        self._process = proc
        self._drains = [
            Thread(target=self._drain, args=(proc.stdout, "stdout"),
                   name="ffmpeg-stdout", daemon=True),
            Thread(target=self._drain, args=(proc.stderr, "stderr"),
                   name="ffmpeg-stderr", daemon=True),
        ]
        for t in self._drains:
            t.start()

        self._set_state(SupervisorState.RUNNING)
        log.info(f"ffmpeg started (pid {proc.pid}). Outputs: "
                 f"{[str(p) for p in plan.outputs.paths()]}")
        return plan.outputs

    def toggle_pause(self) -> bool:
        """
        Ask ffmpeg to toggle pause. Best effort: without a live process nothing
        is written, and a failed write is only logged.

        Returns:
            The paused flag after the call.
        """
        proc = self._process
        if proc is None or self.state is not SupervisorState.RUNNING:
            return self.paused

        if self._write_control(PAUSE_COMMAND):
            self.paused = not self.paused
            log.info(f"Recording {'paused' if self.paused else 'resumed'}")
        else:
            log.warning("Pause toggle ignored: ffmpeg stdin not writable (process likely exited)")
        return self.paused

    def poll(self) -> SupervisorState:
        """
        Check on the process without blocking.

        Raises:
            StreamTerminatedUnexpectedly: the process exited while no stop was
                requested. The supervisor is cleaned up before raising.
        """
        proc = self._process
        if proc is None or self.state is not SupervisorState.RUNNING:
            return self.state

        code = proc.poll()
        if code is not None and not self._stop_requested:
            self.stop()  # raises after cleanup
        return self.state

    def stop(self) -> Optional[int]:
        """
        Quit gracefully, escalating to kill after ``stop_timeout``.

        Returns:
            The exit status, or None if no process was running.

        Raises:
            StreamTerminatedUnexpectedly: the process had already exited on its
                own, or exited with a failure status after the quit request.
        """
        proc = self._process
        if proc is None:
            return None

        self._set_state(SupervisorState.STOPPING)
        exited_on_its_own = proc.poll() is not None and not self._stop_requested
        self._stop_requested = True
        killed = False

        if not exited_on_its_own:
            self._write_control(QUIT_COMMAND)
            deadline = time.monotonic() + self.stop_timeout
            while proc.poll() is None:
                if time.monotonic() > deadline:
                    log.warning("ffmpeg did not exit gracefully, sending kill signal")
                    proc.kill()
                    proc.wait()
                    killed = True
                    break
                time.sleep(POLL_INTERVAL_S)

        self.returncode = proc.returncode
        log.info(f"ffmpeg exited with status {self.returncode}")
        self._release(proc)
        self._set_state(SupervisorState.STOPPED)

        if exited_on_its_own or (not killed and self.returncode != 0):
            reason = "before stop was requested" if exited_on_its_own else "with a failure status"
            err = f"ffmpeg exited {reason} (status {self.returncode})"
            log.error(err)
            raise StreamTerminatedUnexpectedly(
                err, returncode=self.returncode, stderr_tail=self._stderr_tail,
                outputs=self.outputs,
            )
        return self.returncode

    # ‑‑ internal -----------------------------------------------------------
    def _write_control(self, command: bytes) -> bool:
        proc = self._process
        if proc is None or proc.stdin is None:
            return False
        with self._stdin_lock:
            try:
                proc.stdin.write(command)
                proc.stdin.flush()
            except (BrokenPipeError, OSError, ValueError):
                return False
        return True

    def _drain(self, stream: IO[bytes], name: str) -> None:
        # -stats progress lines end in "\r", everything else in "\n"
        pending = b""
        for chunk in iter(lambda: stream.read1(READ_CHUNK_BYTES), b""):
            *lines, pending = LINE_BREAK.split(pending + chunk)
            if len(pending) > MAX_LINE_BYTES:
                lines.append(pending)
                pending = b""
            for raw in lines:
                self._log_line(raw, name)
        self._log_line(pending, name)

    def _log_line(self, raw: bytes, name: str) -> None:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            return
        if name == "stderr":
            self._stderr_tail.append(line)
        if line.startswith(PROGRESS_PREFIXES):
            log.debug(f"ffmpeg[{name}]: {line}")
        else:
            log.info(f"ffmpeg[{name}]: {line}")

    def _release(self, proc: subprocess.Popen) -> None:
        with self._stdin_lock:
            try:
                if proc.stdin is not None:
                    proc.stdin.close()
            except OSError:
                pass

        # Pipes hit EOF once the process is gone. A drain still blocked here
        # (pipe inherited by a grandchild) keeps its pipe open.
        for t, stream in zip(self._drains, (proc.stdout, proc.stderr)):
            t.join(timeout=DRAIN_JOIN_TIMEOUT_S)
            if t.is_alive():
                log.warning(f"{t.name} drain thread still running after {DRAIN_JOIN_TIMEOUT_S}s")
            elif stream is not None:
                stream.close()
        self._drains = []
        self._process = None

    # ‑‑ scoped cleanup -----------------------------------------------------
    def __enter__(self) -> "ProcessSupervisor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            self.stop()
        except StreamTerminatedUnexpectedly:
            # Only swallow when another exception is already propagating.
            if exc_type is None:
                raise

    def __del__(self):
        try:
            self.stop()
        except Exception as e:
            log.error(f"Failed to stop ffmpeg process: {e}")
