"""Absorbance against a stored zero reference."""

import logging
from typing import Optional

import numpy as np

from .calibration import EPSILON
from .errors import PipelineStateError
from .spectrum import Spectrum

logger = logging.getLogger(__name__)

# Value reported for bins whose baseline is (near) zero
ABSORPTION_SENTINEL = 0.0


def compute_absorbance(live: np.ndarray, zero: np.ndarray):
    """A = -log10(live / zero) per bin.

    Returns (absorbance, degenerate). Bins with zero <= EPSILON get the
    sentinel; bins with live <= EPSILON are evaluated at EPSILON so the
    result stays finite. Both kinds are flagged as degenerate.
    """
    live = np.asarray(live, dtype=float)
    zero = np.asarray(zero, dtype=float)
    bad_zero = zero <= EPSILON
    bad_live = live <= EPSILON
    ratio = np.maximum(live, EPSILON) / np.where(bad_zero, 1.0, zero)
    absorbance = np.where(bad_zero, ABSORPTION_SENTINEL, -np.log10(ratio))
    return absorbance, bad_zero | bad_live


class AbsorptionEngine:
    """Switches the output to absorbance while a zero reference is stored."""

    def __init__(self):
        self.zero_reference: Optional[Spectrum] = None

    @property
    def active(self) -> bool:
        return self.zero_reference is not None

    def set_zero_reference(self, live: Optional[Spectrum]) -> Spectrum:
        if live is None:
            raise PipelineStateError("No live spectrum available to use as zero reference")
        self.zero_reference = live.copy()
        logger.info(f"Zero reference set from spectrum #{live.sequence}")
        return self.zero_reference

    def clear(self):
        if self.zero_reference is not None:
            logger.info("Zero reference cleared")
        self.zero_reference = None

    def apply(self, spectrum: Spectrum) -> Spectrum:
        zero = self.zero_reference
        if zero is None:
            return spectrum
        if not spectrum.same_grid(zero):
            raise ValueError("Zero reference was recorded on a different wavelength grid")
        intensity, degenerate = compute_absorbance(spectrum.intensity, zero.intensity)
        channels = np.empty_like(spectrum.channels)
        for i, (row, zero_row) in enumerate(zip(spectrum.channels, zero.channels)):
            channels[i], _ = compute_absorbance(row, zero_row)
        if np.any(degenerate & spectrum.valid):
            logger.debug(f"Absorbance: {int(degenerate.sum())} degenerate bins")
        return spectrum.copy(
            intensity=intensity,
            channels=channels,
            unreliable=spectrum.unreliable | zero.unreliable | degenerate,
            absorption=True,
        )
