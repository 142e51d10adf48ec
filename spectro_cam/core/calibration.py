"""Pixel-to-wavelength mapping and reference-based intensity calibration."""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from .errors import CalibrationDegenerate, NonMonotonicInput, PipelineStateError
from .spectrometer_config import CalibrationConfig, GridConfig
from .spectrum import ReferenceSpectrum, Spectrum

logger = logging.getLogger(__name__)

# Denominators at or below this are treated as zero
EPSILON = 1e-6
NO_SIGNAL = 0.0


class CalibrationMap:
    """Monotonic pixel -> wavelength map through ordered control points.

    Between control points the map is linear; beyond the first/last point
    the outermost segment is extended, so two points give the classic
    linear two-point calibration.
    """

    def __init__(self, points: Sequence[Tuple[float, float]]):
        points = [(float(p), float(w)) for p, w in points]
        if len(points) < 2:
            raise NonMonotonicInput("Calibration map needs at least two points")
        self.pixels = np.array([p for p, _ in points])
        self.wavelengths = np.array([w for _, w in points])
        if np.any(np.diff(self.pixels) <= 0) or np.any(np.diff(self.wavelengths) <= 0):
            raise NonMonotonicInput(f"Calibration points must be strictly increasing: {points}")

    @classmethod
    def from_config(cls, config: CalibrationConfig) -> 'CalibrationMap':
        return cls(config.points)

    @staticmethod
    def _piecewise(x: np.ndarray, xp: np.ndarray, fp: np.ndarray) -> np.ndarray:
        y = np.interp(x, xp, fp)
        lo = x < xp[0]
        hi = x > xp[-1]
        if np.any(lo):
            slope = (fp[1] - fp[0]) / (xp[1] - xp[0])
            y[lo] = fp[0] + (x[lo] - xp[0]) * slope
        if np.any(hi):
            slope = (fp[-1] - fp[-2]) / (xp[-1] - xp[-2])
            y[hi] = fp[-1] + (x[hi] - xp[-1]) * slope
        return y

    def wavelength_at(self, pixel) -> np.ndarray:
        return self._piecewise(np.atleast_1d(np.asarray(pixel, dtype=float)), self.pixels, self.wavelengths)

    def pixel_at(self, wavelength) -> np.ndarray:
        return self._piecewise(np.atleast_1d(np.asarray(wavelength, dtype=float)), self.wavelengths, self.pixels)

    @property
    def nm_per_pixel(self) -> float:
        """Mean dispersion over the control points."""
        return float((self.wavelengths[-1] - self.wavelengths[0]) / (self.pixels[-1] - self.pixels[0]))


def resample_curves(curves: np.ndarray, fractional_pixels: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Linearly interpolate (channels, width) curves at fractional columns.

    Returns (values, valid). Columns outside [0, width - 1] get NO_SIGNAL
    and valid=False rather than extrapolated values.
    """
    curves = np.atleast_2d(np.asarray(curves, dtype=float))
    width = curves.shape[1]
    valid = (fractional_pixels >= 0.0) & (fractional_pixels <= width - 1) if width else \
        np.zeros(fractional_pixels.shape, dtype=bool)
    out = np.full((curves.shape[0], fractional_pixels.size), NO_SIGNAL)
    if not np.any(valid):
        return out, valid
    if width == 1:
        out[:, valid] = curves[:, :1]
        return out, valid
    x = fractional_pixels[valid]
    left = np.minimum(np.floor(x).astype(int), width - 2)
    frac = x - left
    out[:, valid] = curves[:, left] * (1.0 - frac) + curves[:, left + 1] * frac
    return out, valid


class WavelengthMapper:
    """Resamples pixel-indexed curves onto a fixed wavelength grid."""

    def __init__(self, calibration: CalibrationMap, grid: GridConfig):
        self.calibration = calibration
        self.grid = grid
        self.wavelengths = grid.wavelengths()
        # Inverse map is fixed for a given calibration and grid
        self.pixels = calibration.pixel_at(self.wavelengths)

    def map(self, curves: np.ndarray, sequence: int = -1, start: float = 0.0, end: float = 0.0) -> Spectrum:
        channels, valid = resample_curves(curves, self.pixels)
        return Spectrum(
            wavelengths=self.wavelengths.copy(),
            intensity=channels.mean(axis=0),
            channels=channels,
            valid=valid,
            sequence=sequence,
            start=start,
            end=end,
        )


def resample_spectrum(spectrum: Spectrum, wavelengths: np.ndarray) -> Spectrum:
    """Interpolate a spectrum onto another wavelength grid (NO_SIGNAL outside)."""
    wavelengths = np.asarray(wavelengths, dtype=float)
    inside = (wavelengths >= spectrum.wavelengths[0]) & (wavelengths <= spectrum.wavelengths[-1])
    channels = np.vstack([
        np.interp(wavelengths, spectrum.wavelengths, row, left=NO_SIGNAL, right=NO_SIGNAL)
        for row in spectrum.channels
    ])
    valid_src = np.interp(wavelengths, spectrum.wavelengths, spectrum.valid.astype(float), left=0.0, right=0.0)
    return Spectrum(
        wavelengths=wavelengths,
        intensity=np.interp(wavelengths, spectrum.wavelengths, spectrum.intensity, left=NO_SIGNAL, right=NO_SIGNAL),
        channels=channels,
        valid=inside & (valid_src >= 1.0 - 1e-9),
        sequence=spectrum.sequence,
        start=spectrum.start,
        end=spectrum.end,
    )


@dataclass(frozen=True)
class CalibrationFactors:
    """Per-bin multiplicative correction for one wavelength grid."""
    wavelengths: np.ndarray
    factors: np.ndarray
    unreliable: np.ndarray
    reference_name: str = 'reference'

    @property
    def reliable_fraction(self) -> float:
        return float(1.0 - np.mean(self.unreliable)) if self.unreliable.size else 0.0


def compute_calibration_factors(reference: ReferenceSpectrum, live: Spectrum) -> CalibrationFactors:
    """factor = reference / live per bin, guarded against near-zero live bins.

    Degenerate bins (live intensity <= EPSILON, outside the reference range
    or outside the sensor) get the neutral factor 1.0 and are flagged.
    """
    ref_values = reference.value_at(live.wavelengths)
    live_values = live.intensity
    degenerate = (~np.isfinite(ref_values)) | (live_values <= EPSILON) | (~live.valid)
    factors = np.ones_like(live_values)
    ok = ~degenerate
    factors[ok] = ref_values[ok] / live_values[ok]
    if not np.any(ok):
        raise CalibrationDegenerate("No bin of the live spectrum is usable as a calibration base")
    if np.any(degenerate):
        logger.warning(f"Calibration: {int(degenerate.sum())} of {degenerate.size} bins degenerate, "
                       f"using neutral factor")
    return CalibrationFactors(
        wavelengths=live.wavelengths.copy(),
        factors=factors,
        unreliable=degenerate,
        reference_name=reference.name,
    )


class CalibrationEngine:
    """Sticky reference calibration: set once, applied to every spectrum until cleared."""

    def __init__(self):
        self.factors: Optional[CalibrationFactors] = None

    @property
    def active(self) -> bool:
        return self.factors is not None

    def set_reference(self, reference: ReferenceSpectrum, live: Optional[Spectrum]) -> CalibrationFactors:
        if live is None:
            raise PipelineStateError("No live spectrum available to calibrate against")
        self.factors = compute_calibration_factors(reference, live)
        logger.info(f"Calibration set from '{reference.name}' "
                    f"({self.factors.reliable_fraction:.0%} of bins reliable)")
        return self.factors

    def clear(self):
        if self.factors is not None:
            logger.info("Calibration cleared")
        self.factors = None

    def apply(self, spectrum: Spectrum) -> Spectrum:
        if self.factors is None:
            return spectrum
        if len(spectrum) != self.factors.factors.size or \
                not np.allclose(spectrum.wavelengths, self.factors.wavelengths):
            raise ValueError("Calibration factors were computed for a different wavelength grid")
        factors = self.factors.factors
        return spectrum.copy(
            intensity=spectrum.intensity * factors,
            channels=spectrum.channels * factors,
            unreliable=spectrum.unreliable | self.factors.unreliable,
        )
