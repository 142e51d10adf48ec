"""Data containers passed between pipeline stages."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional

import numpy as np

from .errors import NonMonotonicInput

CHANNELS = ('r', 'g', 'b')


class PipelineState(Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    PAUSED = 'paused'


@dataclass
class Frame:
    """One camera frame: `pixels` is (height, width, 3) RGB."""
    pixels: np.ndarray
    sequence: int
    start: float = 0.0   # wall clock, before the first photon of the frame
    end: float = 0.0     # wall clock, after the last photon of the frame

    def __post_init__(self):
        self.pixels = np.asarray(self.pixels)
        if self.pixels.ndim != 3 or self.pixels.shape[2] != 3:
            raise ValueError(f"Frame pixels must be (height, width, 3), got {self.pixels.shape}")
        if self.pixels.shape[0] == 0 or self.pixels.shape[1] == 0:
            raise ValueError("Frame is empty")

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])


@dataclass
class Spectrum:
    """Wavelength-indexed spectrum.

    `intensity` is the combined channel (mean of r, g, b); `channels` keeps
    the per-channel rows for export. `valid` marks bins that map inside the
    sensor, `unreliable` marks bins whose calibration or absorption had a
    near-zero denominator.
    """
    wavelengths: np.ndarray
    intensity: np.ndarray
    channels: Optional[np.ndarray] = None
    valid: Optional[np.ndarray] = None
    unreliable: Optional[np.ndarray] = None
    sequence: int = -1
    start: float = 0.0
    end: float = 0.0
    absorption: bool = False

    def __post_init__(self):
        self.wavelengths = np.asarray(self.wavelengths, dtype=float)
        self.intensity = np.asarray(self.intensity, dtype=float)
        n = self.wavelengths.size
        if self.intensity.shape != (n,):
            raise ValueError(f"intensity shape {self.intensity.shape} does not match {n} wavelengths")
        if n > 1 and np.any(np.diff(self.wavelengths) <= 0):
            raise NonMonotonicInput("Spectrum wavelengths must be strictly increasing")
        if self.channels is None:
            self.channels = np.vstack([self.intensity] * len(CHANNELS))
        if self.valid is None:
            self.valid = np.ones(n, dtype=bool)
        if self.unreliable is None:
            self.unreliable = np.zeros(n, dtype=bool)

    def __len__(self) -> int:
        return int(self.wavelengths.size)

    def same_grid(self, other: 'Spectrum') -> bool:
        return len(self) == len(other) and np.allclose(self.wavelengths, other.wavelengths)

    def copy(self, **changes) -> 'Spectrum':
        out = replace(
            self,
            wavelengths=self.wavelengths.copy(),
            intensity=self.intensity.copy(),
            channels=self.channels.copy(),
            valid=self.valid.copy(),
            unreliable=self.unreliable.copy(),
        )
        return replace(out, **changes) if changes else out


@dataclass(frozen=True)
class ReferenceSpectrum:
    """Immutable (wavelength, intensity) table used as a calibration target."""
    wavelengths: np.ndarray
    intensity: np.ndarray
    name: str = 'reference'

    def __post_init__(self):
        wl = np.asarray(self.wavelengths, dtype=float)
        it = np.asarray(self.intensity, dtype=float)
        if wl.ndim != 1 or wl.shape != it.shape or wl.size < 2:
            raise ValueError("Reference needs matching 1-D wavelength/intensity arrays of length >= 2")
        if not (np.all(np.isfinite(wl)) and np.all(np.isfinite(it))):
            raise ValueError("Reference contains non-finite values")
        if np.any(np.diff(wl) <= 0):
            raise NonMonotonicInput("Reference wavelengths must be strictly increasing")
        wl.setflags(write=False)
        it.setflags(write=False)
        object.__setattr__(self, 'wavelengths', wl)
        object.__setattr__(self, 'intensity', it)

    def value_at(self, wavelengths: np.ndarray) -> np.ndarray:
        """Linear interpolation; NaN outside the covered wavelength range."""
        return np.interp(np.asarray(wavelengths, dtype=float), self.wavelengths, self.intensity,
                         left=np.nan, right=np.nan)

    def scaled(self, scale: float) -> 'ReferenceSpectrum':
        return ReferenceSpectrum(self.wavelengths, self.intensity * float(scale), name=self.name)


@dataclass(frozen=True)
class Feature:
    wavelength: float
    intensity: float
    prominence: float
    index: int


@dataclass(frozen=True)
class PeakFeature(Feature):
    pass


@dataclass(frozen=True)
class DipFeature(Feature):
    pass


@dataclass
class PublishedSpectrum:
    """What the rendering side reads. Never mutated after publication."""
    spectrum: Spectrum
    peaks: List[PeakFeature] = field(default_factory=list)
    dips: List[DipFeature] = field(default_factory=list)
    state: PipelineState = PipelineState.RUNNING
    calibrated: bool = False

    @property
    def sequence(self) -> int:
        return self.spectrum.sequence
