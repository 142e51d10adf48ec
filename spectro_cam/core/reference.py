"""Synthetic reference spectra for intensity calibration."""

import numpy as np
import scipy.constants as const

from .spectrum import ReferenceSpectrum

# Reference temperature (1000 K units) of the emissivity fit
_T0 = 2.200

# Emissivity fit coefficients per wavelength band:
# (upper bound nm, l0, a0, a1, b0, b1, b2, c0, c1)
_EMISSIVITY_BANDS = (
    (420.0, 0.380, 0.47245, -0.0155, -0.0086, -0.0229, 0.0, -2.86, 0.0),
    (480.0, 0.450, 0.46361, -0.0172, -0.1304, 0.0, 0.0, 0.52, 0.0),
    (580.0, 0.530, 0.45549, -0.0173, -0.1150, 0.0, 0.0, -0.5, 0.0),
    (640.0, 0.610, 0.44297, -0.0177, -0.1482, 0.0, 0.0, 0.723, 0.0),
    (760.0, 0.700, 0.43151, -0.0207, -0.1441, -0.0551, 0.0, -0.278, -0.190),
    (940.0, 0.850, 0.40610, -0.0259, -0.1889, 0.0087, 0.0290, -0.126, 0.246),
    (1600.0, 1.270, 0.32835, 0.0, -0.1686, 0.0737, 0.0, 0.046, 0.016),
    (2600.0, 2.100, 0.22631, 0.0431, -0.0829, 0.0241, 0.0, 0.04, -0.026),
)
EMISSIVITY_RANGE_NM = (340.0, 2600.0)


def tungsten_emissivity(wavelength_nm: np.ndarray, temperature_k: float) -> np.ndarray:
    """Spectral emissivity of tungsten (de Vos fit, Larrabee/Hanssen form).

    NaN outside EMISSIVITY_RANGE_NM.
    """
    wl = np.atleast_1d(np.asarray(wavelength_nm, dtype=float))
    t = temperature_k / 1000.0 - _T0
    out = np.full(wl.shape, np.nan)
    lower = EMISSIVITY_RANGE_NM[0]
    for upper, l0, a0, a1, b0, b1, b2, c0, c1 in _EMISSIVITY_BANDS:
        band = (wl >= lower) & ((wl < upper) if upper < EMISSIVITY_RANGE_NM[1] else (wl <= upper))
        dl = wl[band] / 1000.0 - l0
        out[band] = a0 + a1 * t + (b0 + b1 * t + b2 * t ** 2) * dl + (c0 + c1 * t) * dl ** 2
        lower = upper
    return out


def planck_radiance(wavelength_nm: np.ndarray, temperature_k: float) -> np.ndarray:
    """Blackbody spectral radiance in W / (m^2 sr m)."""
    wl_m = np.asarray(wavelength_nm, dtype=float) * 1e-9
    return 2.0 * const.h * const.c ** 2 / (wl_m ** 5 * np.expm1(const.h * const.c / (wl_m * const.k * temperature_k)))


def reference_from_tungsten(temperature_k: float,
                            start_nm: float = 340.0,
                            end_nm: float = 2000.0,
                            step_nm: float = 1.0) -> ReferenceSpectrum:
    """Relative spectrum of a tungsten-halogen lamp at the given filament temperature.

    Sampled on [start_nm, end_nm) and normalised to a maximum of 1.
    """
    wl = np.arange(start_nm, end_nm, step_nm, dtype=float)
    values = tungsten_emissivity(wl, temperature_k) * planck_radiance(wl, temperature_k)
    keep = np.isfinite(values)
    wl, values = wl[keep], values[keep]
    return ReferenceSpectrum(wl, values / values.max(), name=f"tungsten {temperature_k:.0f} K")
