from typing import Optional, Sequence


class RecorderError(RuntimeError):
    """Base class for every failure the recording pipeline surfaces."""


class ConfigurationError(RecorderError, ValueError):
    """The recording configuration cannot describe a session (e.g. no source selected)."""


class DeviceUnavailable(RecorderError):
    """A capture device is absent and every fallback has been exhausted."""


class BackendUnavailable(RecorderError):
    """The external encoding tool is missing or not functional."""


class SpawnFailure(RecorderError):
    """The external encoding process could not be launched."""


class StreamTerminatedUnexpectedly(RecorderError):
    """
    The encoding process went away on its own instead of in response to a stop
    request, or it exited with a failure status after the graceful quit.

    Attributes:
        returncode (Optional[int]): Exit status reported by the process.
        stderr_tail (List[str]): Last lines the process wrote to stderr.
        outputs: RecordingOutputs of the session, filled in by the coordinator.
    """

    def __init__(self, message: str, returncode: Optional[int] = None,
                 stderr_tail: Sequence[str] = (), outputs=None):
        super().__init__(message)
        self.returncode = returncode
        self.stderr_tail = list(stderr_tail)
        self.outputs = outputs
