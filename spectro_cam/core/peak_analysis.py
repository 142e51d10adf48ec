"""Peak and dip detection for processed spectra."""

from typing import List, Optional, Tuple

import numpy as np

from .spectrum import DipFeature, Feature, PeakFeature, Spectrum

# (index, value, prominence)
Extremum = Tuple[int, float, float]


def scan_extrema(values: np.ndarray, prominence: float) -> Tuple[List[Extremum], List[Extremum]]:
    """Single left-to-right prominence scan.

    An extremum qualifies once the curve has moved away from it by at least
    `prominence` on both sides; comparisons are strict so the first index of
    a plateau wins and the first/last bin can never qualify on its own.
    Reported prominence is the height above (depth below) the nearer of the
    two bases.

    Args:
        values: Intensity samples
        prominence: Minimum rise/fall on each side

    Returns:
        (peaks, dips), each ordered by index
    """
    values = np.asarray(values, dtype=float)
    peaks: List[Extremum] = []
    dips: List[Extremum] = []
    if values.size < 3:
        return peaks, dips

    delta = float(prominence)
    mx = mn = float(values[0])
    mx_pos = mn_pos = 0
    mx_left = mn_left = float(values[0])
    run_min = run_max = float(values[0])
    state = None            # None until the first reversal, then 'up' or 'down'
    last = None             # [kind, index, value, left_base, reported]

    def _close(right_base: float):
        kind, idx, value, left_base, reported = last
        if not reported:
            return
        if kind == 'peak':
            peaks.append((idx, value, value - max(left_base, right_base)))
        else:
            dips.append((idx, value, min(left_base, right_base) - value))

    for i in range(1, values.size):
        v = float(values[i])
        if state is None:
            if v > mx:
                mx, mx_pos, mx_left = v, i, run_min
            if v < mn:
                mn, mn_pos, mn_left = v, i, run_max
            run_min, run_max = min(run_min, v), max(run_max, v)
            falling = v <= mx - delta
            rising = v >= mn + delta
            if falling and (not rising or mx_pos > mn_pos):
                last = ['peak', mx_pos, mx, mx_left, mx - mx_left >= delta]
                state, mn, mn_pos = 'down', v, i
            elif rising:
                last = ['dip', mn_pos, mn, mn_left, mn_left - mn >= delta]
                state, mx, mx_pos = 'up', v, i
        elif state == 'up':
            if v > mx:
                mx, mx_pos = v, i
            elif v <= mx - delta:
                _close(mx)
                last = ['peak', mx_pos, mx, last[2], True]
                state, mn, mn_pos = 'down', v, i
        else:
            if v < mn:
                mn, mn_pos = v, i
            elif v >= mn + delta:
                _close(mn)
                last = ['dip', mn_pos, mn, last[2], True]
                state, mx, mx_pos = 'up', v, i

    if last is not None:
        _close(mn if state == 'down' else mx)
    return peaks, dips


def _valid_runs(mask: np.ndarray) -> List[Tuple[int, int]]:
    """[start, stop) bounds of each contiguous run of True bins."""
    edges = np.flatnonzero(np.diff(np.concatenate(([0], np.asarray(mask, dtype=int), [0]))))
    return [(int(a), int(b)) for a, b in zip(edges[::2], edges[1::2])]


def extract_features(spectrum: Spectrum, prominence: float,
                     mask: Optional[np.ndarray] = None) -> Tuple[List[PeakFeature], List[DipFeature]]:
    """Detect peaks and dips of `spectrum.intensity`.

    Each contiguous run of `mask` bins (default: the spectrum's valid bins)
    is scanned on its own, so the edge of a run never counts as a rise or
    fall against the masked bins next to it.
    """
    mask = spectrum.valid if mask is None else mask
    wl = spectrum.wavelengths
    peaks, dips = [], []
    for start, stop in _valid_runs(mask):
        run_peaks, run_dips = scan_extrema(spectrum.intensity[start:stop], prominence)
        peaks.extend(PeakFeature(float(wl[start + i]), value, prom, start + int(i))
                     for i, value, prom in run_peaks)
        dips.extend(DipFeature(float(wl[start + i]), value, prom, start + int(i))
                    for i, value, prom in run_dips)
    return peaks, dips


def merge_features(peaks: List[PeakFeature], dips: List[DipFeature]) -> List[Feature]:
    """Peaks and dips in one list ordered by wavelength."""
    return sorted(list(peaks) + list(dips), key=lambda f: f.wavelength)
