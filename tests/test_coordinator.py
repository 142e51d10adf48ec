import threading
import time

import numpy as np
import pytest

from spectro_cam.core.calibration import CalibrationFactors
from spectro_cam.core.coordinator import PipelineCoordinator
from spectro_cam.core.errors import ConfigValidationError, DeviceError, PipelineStateError
from spectro_cam.core.frames import SyntheticFrameSource
from spectro_cam.core.spectrometer_config import SpectrometerConfig
from spectro_cam.core.spectrum import PipelineState, ReferenceSpectrum

TIMEOUT = 5.0


def _flat(value):
    return lambda wl: np.full(wl.shape, value)


def _make_source(value=0.5, fps=200.0, **kwargs):
    return SyntheticFrameSource(_flat(value), width=160, height=8, band=(0, 8),
                                dtype=np.float64, fps=fps, **kwargs)


def _wait_until(predicate, timeout=TIMEOUT):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def coordinator():
    cfg = SpectrometerConfig.from_dict({
        'calibration': {'points': [[0, 380], [159, 780]]},
        'filter': {'depth': 5},
    })
    coord = PipelineCoordinator(cfg)
    yield coord
    coord.detach()


def test_attach_publishes_and_detach_returns_to_idle(coordinator):
    assert coordinator.state is PipelineState.IDLE
    assert coordinator.latest() is None
    coordinator.attach(_make_source())
    assert coordinator.state is PipelineState.RUNNING
    published = coordinator.wait_for_spectrum(3, timeout=TIMEOUT)
    assert published is not None
    assert published.state is PipelineState.RUNNING
    assert coordinator.spectrum_max() == pytest.approx(0.5)

    coordinator.detach()
    assert coordinator.state is PipelineState.IDLE
    assert coordinator.latest().state is PipelineState.IDLE
    stats = coordinator.stats()
    assert stats['spectra_processed'] <= stats['frames_captured']


def test_attach_twice_is_rejected(coordinator):
    coordinator.attach(_make_source())
    with pytest.raises(PipelineStateError):
        coordinator.attach(_make_source())


def test_every_frame_processed_at_most_once_in_order(coordinator):
    seen = []
    process = coordinator.processor.process

    def recording(frame):
        seen.append(frame.sequence)
        return process(frame)

    coordinator.processor.process = recording
    # Unpaced source overruns the queue so frames get dropped
    coordinator.attach(_make_source(fps=None))
    assert coordinator.wait_for_spectrum(30, timeout=TIMEOUT) is not None
    coordinator.detach()
    assert len(seen) == len(set(seen))
    assert seen == sorted(seen)


def test_published_sequence_never_decreases(coordinator):
    coordinator.attach(_make_source())
    sequences = []
    deadline = time.time() + 0.5
    while time.time() < deadline:
        published = coordinator.latest()
        if published is not None:
            sequences.append(published.sequence)
        time.sleep(0.002)
    assert sequences, "No spectrum published"
    assert all(b >= a for a, b in zip(sequences, sequences[1:]))


def test_device_failure_moves_to_idle(coordinator):
    errors = []
    coordinator.on_error = errors.append
    coordinator.attach(_make_source(fail_after=5))
    assert _wait_until(lambda: coordinator.state is PipelineState.IDLE)
    assert isinstance(coordinator.last_error, DeviceError)
    assert _wait_until(lambda: len(errors) == 1)
    assert coordinator.stats()['last_error']
    # A new session can start after the failure
    coordinator.attach(_make_source())
    assert coordinator.wait_for_spectrum(0, timeout=TIMEOUT) is not None


def test_attach_starts_with_fresh_filter_state(coordinator):
    coordinator.attach(_make_source(0.9))
    assert coordinator.wait_for_spectrum(10, timeout=TIMEOUT) is not None
    coordinator.detach()

    coordinator.attach(_make_source(0.1))
    published = coordinator.wait_for_spectrum(0, timeout=TIMEOUT)
    assert published is not None
    spectrum = published.spectrum
    np.testing.assert_allclose(spectrum.intensity[spectrum.valid], 0.1)


def test_pause_and_resume(coordinator):
    with pytest.raises(PipelineStateError):
        coordinator.pause()
    coordinator.attach(_make_source())
    assert coordinator.wait_for_spectrum(2, timeout=TIMEOUT) is not None
    with pytest.raises(PipelineStateError):
        coordinator.resume()

    coordinator.pause()
    assert coordinator.state is PipelineState.PAUSED
    time.sleep(0.1)
    frozen = coordinator.latest()
    assert frozen.state is PipelineState.PAUSED
    time.sleep(0.2)
    assert coordinator.latest().sequence == frozen.sequence

    coordinator.resume()
    assert coordinator.wait_for_spectrum(frozen.sequence + 1, timeout=TIMEOUT) is not None


def test_config_update_is_adopted_while_running(coordinator):
    coordinator.attach(_make_source())
    assert coordinator.wait_for_spectrum(1, timeout=TIMEOUT) is not None
    coordinator.update_config({
        'calibration': {'points': [[0, 380], [159, 780]]},
        'filter': {'depth': 2},
        'output_grid': {'start_nm': 400, 'end_nm': 700, 'step_nm': 5},
    })
    assert _wait_until(lambda: coordinator.processor.config.filter.depth == 2)
    last = coordinator.latest().sequence
    published = coordinator.wait_for_spectrum(last + 1, timeout=TIMEOUT)
    assert len(published.spectrum) == 61


def test_invalid_config_keeps_previous(coordinator):
    before = coordinator.config
    with pytest.raises(ConfigValidationError):
        coordinator.update_config({'filter': {'depth': 0}})
    assert coordinator.config == before


def test_commands_run_inline_when_idle(coordinator):
    assert coordinator.clear_calibration().result(timeout=0) is None
    future = coordinator.set_reference(ReferenceSpectrum([300.0, 900.0], [1.0, 1.0]))
    assert future.done()
    assert isinstance(future.exception(), PipelineStateError)


def test_set_reference_while_running(coordinator):
    coordinator.attach(_make_source())
    assert coordinator.wait_for_spectrum(2, timeout=TIMEOUT) is not None
    factors = coordinator.set_reference(ReferenceSpectrum([300.0, 900.0], [1.0, 1.0])).result(timeout=TIMEOUT)
    assert isinstance(factors, CalibrationFactors)
    np.testing.assert_allclose(factors.factors, 2.0)
    assert _wait_until(lambda: coordinator.latest().calibrated)
    assert coordinator.spectrum_max() == pytest.approx(1.0)

    coordinator.set_zero_reference().result(timeout=TIMEOUT)
    assert _wait_until(lambda: coordinator.latest().spectrum.absorption)
    coordinator.clear_zero_reference().result(timeout=TIMEOUT)
    coordinator.clear_calibration().result(timeout=TIMEOUT)
    assert _wait_until(lambda: not coordinator.latest().calibrated)


def test_concurrent_readers_see_consistent_snapshots(coordinator):
    coordinator.attach(_make_source())
    failures = []
    stop = threading.Event()

    def reader():
        while not stop.is_set():
            published = coordinator.latest()
            if published is None:
                continue
            spectrum = published.spectrum
            if not (spectrum.intensity.shape == spectrum.wavelengths.shape == spectrum.valid.shape):
                failures.append(published.sequence)

    readers = [threading.Thread(target=reader) for _ in range(3)]
    for t in readers:
        t.start()
    time.sleep(0.3)
    stop.set()
    for t in readers:
        t.join()
    assert not failures
