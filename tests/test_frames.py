import numpy as np
import pytest

from spectro_cam.core.calibration import CalibrationMap
from spectro_cam.core.errors import DeviceError
from spectro_cam.core.frames import FrameQueue, SyntheticFrameSource
from spectro_cam.core.spectrum import Frame


def _frame(seq):
    return Frame(pixels=np.zeros((2, 3, 3), dtype=np.uint8), sequence=seq)


def test_queue_drops_oldest_when_full():
    q = FrameQueue(maxsize=2)
    assert q.put(_frame(0))
    assert q.put(_frame(1))
    assert not q.put(_frame(2))
    assert q.dropped_count == 1
    assert q.qsize() == 2
    assert [q.get(timeout=0.1).sequence for _ in range(2)] == [1, 2]
    assert q.get(timeout=0.01) is None


def test_queue_clear():
    q = FrameQueue(maxsize=3)
    for i in range(3):
        q.put(_frame(i))
    q.clear()
    assert q.qsize() == 0
    with pytest.raises(ValueError):
        FrameQueue(maxsize=0)


def test_synthetic_source_renders_band_only():
    source = SyntheticFrameSource(lambda wl: np.full(wl.shape, 0.5), width=20, height=8,
                                  band=(2, 5), dtype=np.float64)
    pixels = source.render()
    assert pixels.shape == (8, 20, 3)
    np.testing.assert_allclose(pixels[2:5], 0.5)
    np.testing.assert_allclose(pixels[:2], 0.0)
    np.testing.assert_allclose(pixels[5:], 0.0)


def test_synthetic_source_follows_calibration():
    cal = CalibrationMap(((0.0, 500.0), (99.0, 599.0)))
    source = SyntheticFrameSource(lambda wl: (wl >= 550.0).astype(float), width=100, height=4,
                                  calibration=cal, dtype=np.uint8)
    pixels = source.render()
    assert pixels[2, 49, 0] == 0
    assert pixels[2, 50, 0] == 255


def test_synthetic_source_sequence_and_timestamps():
    source = SyntheticFrameSource(lambda wl: np.zeros(wl.shape), width=10, height=4)
    with pytest.raises(DeviceError):
        source.read()
    with source:
        frames = [source.read() for _ in range(3)]
    assert [f.sequence for f in frames] == [0, 1, 2]
    assert frames[1].start == frames[0].end
    assert all(f.end >= f.start for f in frames)


def test_synthetic_source_failure():
    source = SyntheticFrameSource(lambda wl: np.zeros(wl.shape), width=10, height=4, fail_after=2)
    source.open()
    source.read()
    source.read()
    with pytest.raises(DeviceError):
        source.read()
