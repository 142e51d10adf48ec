"""Configuration snapshots for the spectrometer pipeline.

Every section is a frozen dataclass validated on construction, so a snapshot
that exists is a snapshot that is safe to hand to the processing thread.
Invalid values raise ConfigValidationError (or NonMonotonicInput for badly
ordered calibration points) and never reach the pipeline.
"""

from dataclasses import dataclass, field, asdict, replace
from typing import Dict, Optional, Tuple, Any

import numpy as np

from .errors import ConfigValidationError, NonMonotonicInput

# Sample rate the low-pass cutoff is expressed against; Nyquist is 1 Hz.
FILTER_SAMPLE_RATE_HZ = 2.0
CUTOFF_RANGE_HZ = (0.001, 0.999)
BUFFER_DEPTH_RANGE = (1, 100)
GAIN_RANGE = (0.0, 10.0)
REFERENCE_SCALE_RANGE = (0.001, 100.0)
TUNGSTEN_TEMPERATURE_RANGE_K = (1000.0, 3500.0)
MAX_GRID_BINS = 100_000

LINEARIZATIONS = ('off', 'rec601', 'rec709', 'srgb')

GAIN_PRESETS: Dict[str, Tuple[float, float, float]] = {
    'unity': (1.0, 1.0, 1.0),
    'srgb': (0.2126, 0.7152, 0.0722),
    'rec601': (0.299, 0.587, 0.114),
    'rec709': (0.2126, 0.7152, 0.0722),
}


def _window(value, name: str) -> Optional[Tuple[int, int]]:
    if value is None:
        return None
    try:
        lo, hi = (int(v) for v in value)
    except (TypeError, ValueError):
        raise ConfigValidationError(f"{name} must be a (start, end) pair, got {value!r}")
    if lo < 0 or hi <= lo:
        raise ConfigValidationError(f"{name} must satisfy 0 <= start < end, got ({lo}, {hi})")
    return lo, hi


def _number(value, name: str, cast=float):
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ConfigValidationError(f"{name} must be a number, got {value!r}")


def _in_range(value: float, bounds: Tuple[float, float], name: str) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigValidationError(f"{name} must be a number, got {value!r}")
    if not np.isfinite(value) or not bounds[0] <= value <= bounds[1]:
        raise ConfigValidationError(f"{name}={value} outside [{bounds[0]}, {bounds[1]}]")
    return value


@dataclass(frozen=True)
class ExtractionConfig:
    """Which part of the camera frame holds the spectrum and how rows are reduced."""
    vertical_window: Optional[Tuple[int, int]] = None    # [top, bottom) rows, None = all
    horizontal_window: Optional[Tuple[int, int]] = None  # [left, right) columns, None = all
    reduce: str = 'mean'                                 # 'mean' or 'sum' over rows
    flip: bool = False                                   # mirror columns first

    def __post_init__(self):
        object.__setattr__(self, 'vertical_window', _window(self.vertical_window, 'vertical_window'))
        object.__setattr__(self, 'horizontal_window', _window(self.horizontal_window, 'horizontal_window'))
        if self.reduce not in ('mean', 'sum'):
            raise ConfigValidationError(f"reduce must be 'mean' or 'sum', got {self.reduce!r}")
        object.__setattr__(self, 'flip', bool(self.flip))


@dataclass(frozen=True)
class ConditioningConfig:
    gain: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    linearization: str = 'off'
    linearization_curve: Optional[Tuple[Tuple[float, float], ...]] = None
    intensity_max: float = 1.0

    def __post_init__(self):
        if isinstance(self.gain, (int, float)):
            object.__setattr__(self, 'gain', (self.gain,) * 3)
        if not isinstance(self.gain, (tuple, list)) or len(self.gain) != 3:
            raise ConfigValidationError(f"gain needs one value per channel (r, g, b), got {self.gain!r}")
        gain = tuple(_in_range(g, GAIN_RANGE, f"gain[{c}]") for c, g in zip('rgb', self.gain))
        object.__setattr__(self, 'gain', gain)

        # YAML 1.1 reads a bare off as False
        lin = 'off' if self.linearization is False else str(self.linearization).lower()
        if lin not in LINEARIZATIONS and lin != 'custom':
            raise ConfigValidationError(f"Unknown linearization {self.linearization!r}")
        if self.linearization_curve is not None:
            curve = tuple((float(x), float(y)) for x, y in self.linearization_curve)
            if len(curve) < 2:
                raise ConfigValidationError("linearization_curve needs at least two points")
            xs = np.array([p[0] for p in curve])
            ys = np.array([p[1] for p in curve])
            if np.any(np.diff(xs) <= 0):
                raise NonMonotonicInput("linearization_curve raw values must be strictly increasing")
            if np.any(np.diff(ys) < 0):
                raise NonMonotonicInput("linearization_curve must be monotonic non-decreasing")
            object.__setattr__(self, 'linearization_curve', curve)
            lin = 'custom'
        elif lin == 'custom':
            raise ConfigValidationError("linearization 'custom' requires linearization_curve")
        object.__setattr__(self, 'linearization', lin)

        intensity_max = _number(self.intensity_max, 'intensity_max')
        if not intensity_max > 0:
            raise ConfigValidationError(f"intensity_max must be positive, got {self.intensity_max}")
        object.__setattr__(self, 'intensity_max', intensity_max)


@dataclass(frozen=True)
class FilterConfig:
    """Averaging depth plus a Butterworth low-pass applied along the spectrum."""
    depth: int = 10
    enabled: bool = False
    cutoff_hz: float = 0.5
    order: int = 2

    def __post_init__(self):
        if isinstance(self.depth, bool) or int(self.depth) != self.depth:
            raise ConfigValidationError(f"filter depth must be an integer, got {self.depth!r}")
        depth = int(self.depth)
        if not BUFFER_DEPTH_RANGE[0] <= depth <= BUFFER_DEPTH_RANGE[1]:
            raise ConfigValidationError(
                f"filter depth must be within {BUFFER_DEPTH_RANGE}, got {depth}")
        object.__setattr__(self, 'depth', depth)
        order = _number(self.order, 'filter order', int)
        if order < 1 or order > 8:
            raise ConfigValidationError(f"filter order must be within 1..8, got {self.order}")
        object.__setattr__(self, 'order', order)
        try:
            cutoff = float(self.cutoff_hz)
        except (TypeError, ValueError):
            raise ConfigValidationError(f"cutoff_hz must be a number, got {self.cutoff_hz!r}")
        if not np.isfinite(cutoff) or cutoff <= 0:
            raise ConfigValidationError(f"cutoff_hz must be positive, got {self.cutoff_hz}")
        # Usability only: clamp into the designable band.
        object.__setattr__(self, 'cutoff_hz', float(np.clip(cutoff, *CUTOFF_RANGE_HZ)))
        object.__setattr__(self, 'enabled', bool(self.enabled))


@dataclass(frozen=True)
class CalibrationConfig:
    """Control points (pixel column, wavelength nm) of the calibration map."""
    points: Tuple[Tuple[float, float], ...] = ((261.0, 436.0), (486.0, 546.0))

    def __post_init__(self):
        try:
            points = tuple((float(p), float(w)) for p, w in self.points)
        except (TypeError, ValueError):
            raise ConfigValidationError(f"calibration points must be (pixel, wavelength) pairs, got {self.points!r}")
        if len(points) < 2:
            raise ConfigValidationError("calibration needs at least two points")
        pixels = np.array([p for p, _ in points])
        wavelengths = np.array([w for _, w in points])
        if not (np.all(np.isfinite(pixels)) and np.all(np.isfinite(wavelengths))):
            raise ConfigValidationError("calibration points must be finite")
        if np.any(np.diff(pixels) <= 0) or np.any(np.diff(wavelengths) <= 0):
            raise NonMonotonicInput(
                f"calibration points must be strictly increasing in pixel and wavelength: {points}")
        object.__setattr__(self, 'points', points)


@dataclass(frozen=True)
class GridConfig:
    start_nm: float = 380.0
    end_nm: float = 780.0
    step_nm: float = 1.0

    def __post_init__(self):
        start, end, step = float(self.start_nm), float(self.end_nm), float(self.step_nm)
        if not (np.isfinite(start) and np.isfinite(end) and np.isfinite(step)):
            raise ConfigValidationError("output grid must be finite")
        if step <= 0 or end <= start:
            raise ConfigValidationError(
                f"output grid needs start < end and step > 0, got ({start}, {end}, {step})")
        if (end - start) / step + 1 > MAX_GRID_BINS:
            raise ConfigValidationError(f"output grid exceeds {MAX_GRID_BINS} bins")
        object.__setattr__(self, 'start_nm', start)
        object.__setattr__(self, 'end_nm', end)
        object.__setattr__(self, 'step_nm', step)

    def wavelengths(self) -> np.ndarray:
        n = int(np.floor((self.end_nm - self.start_nm) / self.step_nm + 1e-9)) + 1
        return self.start_nm + self.step_nm * np.arange(n, dtype=float)


@dataclass(frozen=True)
class FeatureConfig:
    prominence: float = 0.05
    enabled: bool = True

    def __post_init__(self):
        prominence = _number(self.prominence, 'peak prominence')
        if not np.isfinite(prominence) or prominence <= 0:
            raise ConfigValidationError(f"peak prominence must be positive, got {self.prominence}")
        object.__setattr__(self, 'prominence', prominence)
        object.__setattr__(self, 'enabled', bool(self.enabled))


@dataclass(frozen=True)
class CaptureConfig:
    queue_size: int = 4
    poll_timeout_s: float = 0.05

    def __post_init__(self):
        queue_size = _number(self.queue_size, 'queue_size', int)
        poll_timeout_s = _number(self.poll_timeout_s, 'poll_timeout_s')
        if queue_size < 1:
            raise ConfigValidationError(f"queue_size must be >= 1, got {self.queue_size}")
        if poll_timeout_s <= 0:
            raise ConfigValidationError(f"poll_timeout_s must be positive, got {self.poll_timeout_s}")
        object.__setattr__(self, 'queue_size', queue_size)
        object.__setattr__(self, 'poll_timeout_s', poll_timeout_s)


@dataclass(frozen=True)
class ReferenceConfig:
    scale: float = 1.0
    tungsten_temperature_k: float = 2800.0

    def __post_init__(self):
        object.__setattr__(self, 'scale', _in_range(self.scale, REFERENCE_SCALE_RANGE, 'reference scale'))
        object.__setattr__(self, 'tungsten_temperature_k', _in_range(
            self.tungsten_temperature_k, TUNGSTEN_TEMPERATURE_RANGE_K, 'tungsten_temperature_k'))


@dataclass(frozen=True)
class SpectrometerConfig:
    """Complete, validated configuration snapshot."""
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    conditioning: ConditioningConfig = field(default_factory=ConditioningConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    output_grid: GridConfig = field(default_factory=GridConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    reference: ReferenceConfig = field(default_factory=ReferenceConfig)

    def __post_init__(self):
        # A row sum reaches (rows x full scale); intensity_max must leave room for it
        if self.extraction.reduce == 'sum':
            window = self.extraction.vertical_window
            if window is None:
                raise ConfigValidationError("reduce 'sum' needs an explicit vertical_window")
            rows = window[1] - window[0]
            if self.conditioning.intensity_max < rows:
                raise ConfigValidationError(
                    f"reduce 'sum' over {rows} rows needs intensity_max >= {rows}, "
                    f"got {self.conditioning.intensity_max}")

    @classmethod
    def from_dict(cls, cfg: Optional[Dict[str, Any]]) -> 'SpectrometerConfig':
        """Build a snapshot from a loaded YAML mapping. Missing keys take defaults."""
        cfg = cfg or {}
        if not isinstance(cfg, dict):
            raise ConfigValidationError(f"Configuration must be a mapping, got {type(cfg).__name__}")

        ext = dict(cfg.get('extraction', {}) or {})
        cond = dict(cfg.get('conditioning', {}) or {})
        filt = dict(cfg.get('filter', {}) or {})
        cal = cfg.get('calibration', {}) or {}
        grid = cfg.get('output_grid', {}) or {}
        feat = cfg.get('features', {}) or {}
        cap = cfg.get('capture', {}) or {}
        ref = cfg.get('reference', {}) or {}

        # Flat keys of the collaborator schema
        if 'vertical_window' in cfg:
            ext.setdefault('vertical_window', cfg['vertical_window'])
        for key in ('gain', 'linearization_curve'):
            if key in cfg:
                cond.setdefault(key, cfg[key])
        if 'calibration_points' in cfg:
            cal = dict(cal, points=cfg['calibration_points'])
        if 'peak_prominence' in cfg:
            feat = dict(feat, prominence=cfg['peak_prominence'])

        gain = GAIN_PRESETS['unity']
        preset = cond.pop('gain_preset', None)
        if preset is not None:
            if str(preset).lower() not in GAIN_PRESETS:
                raise ConfigValidationError(f"Unknown gain preset {preset!r}")
            gain = GAIN_PRESETS[str(preset).lower()]
        gain_cfg = cond.pop('gain', None)
        if isinstance(gain_cfg, dict):
            gain = (gain_cfg.get('r', gain[0]), gain_cfg.get('g', gain[1]), gain_cfg.get('b', gain[2]))
        elif isinstance(gain_cfg, (int, float)):
            # One scalar for every channel
            gain = (gain_cfg,) * 3
        elif gain_cfg is not None:
            try:
                gain = tuple(gain_cfg)
            except TypeError:
                raise ConfigValidationError(f"gain must be a scalar, a list or an r/g/b mapping, got {gain_cfg!r}")

        if 'cutoff' in filt and 'cutoff_hz' not in filt:
            filt['cutoff_hz'] = filt.pop('cutoff')

        try:
            return cls(
                extraction=ExtractionConfig(**ext),
                conditioning=ConditioningConfig(gain=gain, **cond),
                filter=FilterConfig(**filt),
                calibration=CalibrationConfig(points=cal.get('points', CalibrationConfig.points)),
                output_grid=GridConfig(**grid),
                features=FeatureConfig(**feat),
                capture=CaptureConfig(**cap),
                reference=ReferenceConfig(**ref),
            )
        except TypeError as e:
            # Unknown keyword inside a section
            raise ConfigValidationError(f"Invalid configuration: {e}")

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        r, g, b = out['conditioning'].pop('gain')
        out['conditioning']['gain'] = {'r': r, 'g': g, 'b': b}
        out['calibration']['points'] = [list(p) for p in self.calibration.points]
        if self.conditioning.linearization_curve is not None:
            out['conditioning']['linearization_curve'] = [list(p) for p in self.conditioning.linearization_curve]
        for key in ('vertical_window', 'horizontal_window'):
            if out['extraction'][key] is not None:
                out['extraction'][key] = list(out['extraction'][key])
        return out

    def with_updates(self, **sections) -> 'SpectrometerConfig':
        """Return a copy with whole sections replaced (each already validated)."""
        try:
            return replace(self, **sections)
        except TypeError as e:
            raise ConfigValidationError(f"Unknown configuration section: {e}")
