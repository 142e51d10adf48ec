import numpy as np
import pytest

from spectro_cam.core.absorption import ABSORPTION_SENTINEL, AbsorptionEngine, compute_absorbance
from spectro_cam.core.errors import PipelineStateError
from spectro_cam.core.spectrum import Spectrum


def _spectrum(values):
    values = np.asarray(values, dtype=float)
    return Spectrum(wavelengths=np.arange(500.0, 500.0 + values.size), intensity=values)


def test_live_equal_to_zero_reference_gives_zero_absorbance():
    engine = AbsorptionEngine()
    live = _spectrum(np.linspace(0.1, 0.9, 50))
    engine.set_zero_reference(live)
    out = engine.apply(live)
    assert out.absorption
    np.testing.assert_allclose(out.intensity, 0.0, atol=1e-12)
    np.testing.assert_allclose(out.channels, 0.0, atol=1e-12)


def test_half_transmission_is_log10_two():
    absorbance, degenerate = compute_absorbance([0.25, 0.5], [0.5, 0.5])
    np.testing.assert_allclose(absorbance, [np.log10(2.0), 0.0])
    assert not degenerate.any()


def test_zero_baseline_gives_sentinel_and_flag():
    absorbance, degenerate = compute_absorbance([0.5, 0.0, 0.5], [0.0, 0.5, 0.5])
    assert absorbance[0] == ABSORPTION_SENTINEL
    assert np.isfinite(absorbance).all()
    assert absorbance[1] > 0
    np.testing.assert_array_equal(degenerate, [True, True, False])


def test_zero_reference_is_copied_and_clearable():
    engine = AbsorptionEngine()
    with pytest.raises(PipelineStateError):
        engine.set_zero_reference(None)
    live = _spectrum([0.5, 0.5])
    engine.set_zero_reference(live)
    live.intensity[:] = 0.25
    np.testing.assert_allclose(engine.zero_reference.intensity, 0.5)
    engine.clear()
    assert engine.apply(live) is live


def test_grid_mismatch_rejected():
    engine = AbsorptionEngine()
    engine.set_zero_reference(_spectrum([0.5, 0.5, 0.5]))
    with pytest.raises(ValueError):
        engine.apply(_spectrum([0.5, 0.5]))
