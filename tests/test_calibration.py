import numpy as np
import pytest

from spectro_cam.core.calibration import (
    CalibrationEngine,
    CalibrationMap,
    WavelengthMapper,
    compute_calibration_factors,
    resample_spectrum,
)
from spectro_cam.core.errors import CalibrationDegenerate, NonMonotonicInput, PipelineStateError
from spectro_cam.core.spectrometer_config import GridConfig
from spectro_cam.core.spectrum import ReferenceSpectrum, Spectrum


def _flat_spectrum(value=0.5, start=400.0, end=500.0):
    wl = np.arange(start, end + 1.0, 1.0)
    return Spectrum(wavelengths=wl, intensity=np.full(wl.size, value))


def test_two_point_map_is_linear_and_invertible():
    cal = CalibrationMap(((261.0, 436.0), (486.0, 546.0)))
    np.testing.assert_allclose(cal.wavelength_at([261.0, 486.0]), [436.0, 546.0])
    # Extrapolated beyond the control points
    assert cal.wavelength_at(0.0)[0] == pytest.approx(436.0 - 261.0 * 110.0 / 225.0)
    px = np.array([0.0, 100.5, 700.0])
    np.testing.assert_allclose(cal.pixel_at(cal.wavelength_at(px)), px)


def test_map_rejects_non_monotonic_points():
    with pytest.raises(NonMonotonicInput):
        CalibrationMap(((10.0, 500.0), (5.0, 600.0)))


def test_identity_grid_reproduces_channel_mean():
    curves = np.vstack([np.linspace(0, 1, 100), np.linspace(1, 0, 100), np.full(100, 0.3)])
    mapper = WavelengthMapper(CalibrationMap(((0.0, 400.0), (99.0, 499.0))), GridConfig(400.0, 499.0, 1.0))
    spectrum = mapper.map(curves, sequence=7)
    assert spectrum.sequence == 7
    assert spectrum.valid.all()
    np.testing.assert_allclose(spectrum.channels, curves)
    np.testing.assert_allclose(spectrum.intensity, curves.mean(axis=0))


def test_bins_outside_sensor_are_flagged_not_extrapolated():
    curves = np.ones((3, 100))
    mapper = WavelengthMapper(CalibrationMap(((0.0, 400.0), (99.0, 499.0))), GridConfig(380.0, 520.0, 1.0))
    spectrum = mapper.map(curves)
    wl = spectrum.wavelengths
    outside = (wl < 400.0) | (wl > 499.0)
    assert not spectrum.valid[outside].any()
    assert spectrum.valid[~outside].all()
    np.testing.assert_allclose(spectrum.intensity[outside], 0.0)
    np.testing.assert_allclose(spectrum.intensity[~outside], 1.0)


def test_fractional_pixels_interpolate():
    curves = np.vstack([np.arange(10, dtype=float)] * 3)
    mapper = WavelengthMapper(CalibrationMap(((0.0, 400.0), (9.0, 418.0))), GridConfig(401.0, 417.0, 2.0))
    spectrum = mapper.map(curves)
    # 2 nm per pixel: 401 nm sits at pixel 0.5
    np.testing.assert_allclose(spectrum.intensity, np.arange(0.5, 9.0, 1.0))


def test_factors_are_unity_when_reference_equals_live():
    live = _flat_spectrum(0.5)
    reference = ReferenceSpectrum(live.wavelengths, live.intensity)
    factors = compute_calibration_factors(reference, live)
    np.testing.assert_allclose(factors.factors, 1.0)
    assert not factors.unreliable.any()
    assert factors.reliable_fraction == 1.0


def test_degenerate_bins_get_neutral_factor_and_flag():
    live = _flat_spectrum(0.5)
    live.intensity[10:20] = 0.0
    reference = ReferenceSpectrum([300.0, 450.0], [1.0, 1.0])
    factors = compute_calibration_factors(reference, live)
    # Zero live bins and bins beyond the reference range
    flagged = np.zeros(live.wavelengths.size, dtype=bool)
    flagged[10:20] = True
    flagged[live.wavelengths > 450.0] = True
    np.testing.assert_array_equal(factors.unreliable, flagged)
    np.testing.assert_allclose(factors.factors[flagged], 1.0)
    np.testing.assert_allclose(factors.factors[~flagged], 2.0)
    assert np.all(np.isfinite(factors.factors))


def test_all_degenerate_raises():
    with pytest.raises(CalibrationDegenerate):
        compute_calibration_factors(ReferenceSpectrum([300.0, 900.0], [1.0, 1.0]), _flat_spectrum(0.0))


def test_engine_apply_and_clear():
    engine = CalibrationEngine()
    live = _flat_spectrum(0.25)
    assert engine.apply(live) is live
    with pytest.raises(PipelineStateError):
        engine.set_reference(ReferenceSpectrum([300.0, 900.0], [1.0, 1.0]), None)

    engine.set_reference(ReferenceSpectrum([300.0, 900.0], [1.0, 1.0]), live)
    assert engine.active
    corrected = engine.apply(live)
    np.testing.assert_allclose(corrected.intensity, 1.0)
    np.testing.assert_allclose(corrected.channels, 1.0)
    # Source spectrum untouched
    np.testing.assert_allclose(live.intensity, 0.25)

    engine.clear()
    assert not engine.active
    np.testing.assert_allclose(engine.apply(live).intensity, 0.25)


def test_engine_rejects_other_grid():
    engine = CalibrationEngine()
    engine.set_reference(ReferenceSpectrum([300.0, 900.0], [1.0, 1.0]), _flat_spectrum(0.5))
    with pytest.raises(ValueError):
        engine.apply(_flat_spectrum(0.5, start=400.0, end=450.0))


def test_resample_spectrum_onto_own_grid_is_identity():
    spectrum = _flat_spectrum(0.5)
    spectrum.intensity[:] = np.linspace(0, 1, spectrum.intensity.size)
    again = resample_spectrum(spectrum, spectrum.wavelengths)
    np.testing.assert_allclose(again.intensity, spectrum.intensity)
    assert again.valid.all()
    wider = resample_spectrum(spectrum, np.arange(390.0, 511.0, 1.0))
    assert not wider.valid[:10].any() and not wider.valid[-10:].any()


def test_fine_grid_then_back_approximates_coarse_grid():
    x = np.arange(200, dtype=float)
    curves = np.vstack([0.5 + 0.4 * np.sin(x / 15.0)] * 3)
    cal = CalibrationMap(((0.0, 400.0), (199.0, 599.0)))
    coarse = WavelengthMapper(cal, GridConfig(400.0, 599.0, 1.0)).map(curves)
    fine = WavelengthMapper(cal, GridConfig(400.0, 599.0, 0.25)).map(curves)
    back = resample_spectrum(fine, coarse.wavelengths)
    np.testing.assert_allclose(back.intensity, coarse.intensity, atol=1e-3)
    assert back.valid.all()
