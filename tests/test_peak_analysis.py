import numpy as np

from spectro_cam.core.peak_analysis import extract_features, merge_features, scan_extrema
from spectro_cam.core.spectrum import Spectrum


def _spectrum(values, start=400.0):
    values = np.asarray(values, dtype=float)
    return Spectrum(wavelengths=start + np.arange(values.size), intensity=values)


def test_single_peak_centre_of_flat_line():
    values = np.ones(21)
    values[10] = 10.0
    peaks, dips = extract_features(_spectrum(values), prominence=5.0)
    assert len(peaks) == 1 and not dips
    assert peaks[0].index == 10
    assert peaks[0].wavelength == 410.0
    assert peaks[0].intensity == 10.0
    assert peaks[0].prominence == 9.0


def test_single_dip():
    values = np.full(21, 10.0)
    values[10] = 1.0
    peaks, dips = scan_extrema(values, 5.0)
    assert not peaks
    assert dips == [(10, 1.0, 9.0)]


def test_plateau_reports_first_index():
    peaks, dips = scan_extrema(np.array([0, 0, 5, 5, 5, 0, 0], dtype=float), 1.0)
    assert peaks == [(2, 5.0, 5.0)]
    assert not dips


def test_monotonic_ramp_has_no_features():
    peaks, dips = scan_extrema(np.arange(11, dtype=float), 1.0)
    assert not peaks and not dips
    peaks, dips = scan_extrema(np.arange(11, dtype=float)[::-1], 1.0)
    assert not peaks and not dips


def test_small_wiggles_below_prominence_ignored():
    x = np.linspace(0, 4 * np.pi, 200)
    values = 0.01 * np.sin(x)
    peaks, dips = scan_extrema(values, 0.05)
    assert not peaks and not dips


def test_alternating_peaks_and_dips():
    x = np.linspace(0, 4 * np.pi, 400)
    values = np.sin(x) + 2.0
    peaks, dips = scan_extrema(values, 0.5)
    assert len(peaks) == 2
    assert len(dips) == 2
    for idx, value, prom in peaks:
        assert value > 2.9
        assert prom > 0.5


def test_features_on_invalid_bins_are_dropped():
    values = np.ones(21)
    values[10] = 10.0
    spectrum = _spectrum(values)
    spectrum.valid[10] = False
    peaks, dips = extract_features(spectrum, prominence=5.0)
    assert not peaks and not dips


def test_merge_orders_by_wavelength():
    values = np.array([5, 5, 9, 5, 5, 1, 5, 5], dtype=float)
    peaks, dips = extract_features(_spectrum(values), prominence=2.0)
    merged = merge_features(peaks, dips)
    assert [f.wavelength for f in merged] == [402.0, 405.0]


def test_rise_into_masked_bins_is_not_a_peak():
    # Signal climbs up to the last valid bin, then masked zeros follow
    values = np.concatenate([np.linspace(0.1, 1.0, 30), np.zeros(10)])
    spectrum = _spectrum(values)
    spectrum.valid[30:] = False
    peaks, dips = extract_features(spectrum, prominence=0.05)
    assert not peaks and not dips


def test_each_valid_run_is_scanned_with_its_own_offset():
    values = np.ones(30)
    values[5] = 4.0
    values[22] = 4.0
    spectrum = _spectrum(values)
    spectrum.valid[12:16] = False
    peaks, _ = extract_features(spectrum, prominence=1.0)
    assert [p.index for p in peaks] == [5, 22]
    assert [p.wavelength for p in peaks] == [405.0, 422.0]
