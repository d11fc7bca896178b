import numpy as np
import pytest

from octocord.errors import DeviceUnavailable
from octocord.utils.devices import list_v4l2_devices, resolve_device_name
from octocord.utils.utils import db_to_linear, mix_to_mono

AVAILABLE = ["HDA Intel PCH: ALC257 Analog", "USB Audio Device", "Blue Yeti"]


def test_exact_match_wins():
    assert resolve_device_name(AVAILABLE, "USB Audio Device") == (1, "USB Audio Device")


def test_substring_match_is_case_insensitive():
    assert resolve_device_name(AVAILABLE, "yeti") == (2, "Blue Yeti")
    assert resolve_device_name(AVAILABLE, "usb audio") == (1, "USB Audio Device")


def test_unknown_name_falls_back_to_first():
    assert resolve_device_name(AVAILABLE, "Focusrite") == (0, AVAILABLE[0])
    assert resolve_device_name(AVAILABLE, None) == (0, AVAILABLE[0])


def test_empty_list_is_unavailable():
    with pytest.raises(DeviceUnavailable):
        resolve_device_name([], "anything", kind="camera")


def test_v4l2_listing(tmp_path):
    dev, sysfs = tmp_path / "dev", tmp_path / "sys"
    dev.mkdir()
    for i in (0, 2, 12):
        (dev / f"video{i}").touch()
    (sysfs / "video0").mkdir(parents=True)
    (sysfs / "video0" / "name").write_text("Integrated Camera: Integrated C\n")

    devices = list_v4l2_devices(dev_dir=dev, sysfs_dir=sysfs)
    assert devices == [
        (0, "Integrated Camera: Integrated C", str(dev / "video0")),
        (2, str(dev / "video2"), str(dev / "video2")),
    ]


def test_db_to_linear():
    assert db_to_linear(0.0) == 1.0
    assert db_to_linear(20.0) == pytest.approx(10.0)
    assert db_to_linear(-6.0) == pytest.approx(0.501187, rel=1e-5)


def test_mix_to_mono():
    block = np.array([[0.0, 1.0], [0.5, 0.5], [-1.0, 1.0]], dtype=np.float32)
    np.testing.assert_allclose(mix_to_mono(block, 2), [0.5, 0.5, 0.0])

    interleaved = np.array([1, 3, 5, 7, 9], dtype=np.int16)
    mono = mix_to_mono(interleaved, 2)
    assert mono.dtype == np.float32
    np.testing.assert_allclose(mono, [2.0, 6.0])

    single = np.ones((4, 1), dtype=np.float64)
    assert mix_to_mono(single, 1).shape == (4,)
