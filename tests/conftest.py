import pytest

from octocord.backend.prober import BackendProbeResult, BackendProber
from octocord.config import RecordingConfiguration

from utils import FIXED_TIMESTAMP, FakeHost

X11_ENV = {"DISPLAY": ":1"}


@pytest.fixture
def x11_env():
    return dict(X11_ENV)


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def pulse_probe():
    return BackendProbeResult(pipewire_supported=False, pulse_supported=True)


@pytest.fixture
def config(tmp_path):
    return RecordingConfiguration(output_directory=tmp_path / "recordings")


@pytest.fixture
def supervisor_kwargs(host, x11_env, pulse_probe):
    """Everything a ProcessSupervisor needs besides the configuration."""
    return dict(
        prober=BackendProber.fixed(pulse_probe),
        host=host,
        env=x11_env,
        timestamp_fn=lambda: FIXED_TIMESTAMP,
    )
