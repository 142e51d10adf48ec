"""Per-channel gain and sensor linearization."""

from typing import Callable, Optional, Sequence, Tuple

import numpy as np

from .spectrometer_config import ConditioningConfig


def _inverse_bt601(v: np.ndarray) -> np.ndarray:
    # BT.601 and BT.709 share the same transfer function
    return np.where(v < 0.081, v / 4.5, np.power((v + 0.099) / 1.099, 1.0 / 0.45))


def _inverse_srgb(v: np.ndarray) -> np.ndarray:
    return np.where(v <= 0.04045, v / 12.92, np.power((v + 0.055) / 1.055, 2.4))


def curve_linearizer(points: Sequence[Tuple[float, float]]) -> Callable[[np.ndarray], np.ndarray]:
    """Piecewise-linear lookup through (raw, corrected) control points."""
    xs = np.array([p[0] for p in points], dtype=float)
    ys = np.array([p[1] for p in points], dtype=float)
    return lambda v: np.interp(v, xs, ys)


def get_linearizer(name: str,
                   curve: Optional[Sequence[Tuple[float, float]]] = None) -> Optional[Callable[[np.ndarray], np.ndarray]]:
    """Return the linearization function, or None for identity."""
    if curve is not None:
        return curve_linearizer(curve)
    if name == 'off':
        return None
    if name in ('rec601', 'rec709'):
        return _inverse_bt601
    if name == 'srgb':
        return _inverse_srgb
    raise ValueError(f"Unknown linearization: {name}")


def condition_curves(curves: np.ndarray,
                     gain: Sequence[float],
                     linearizer: Optional[Callable[[np.ndarray], np.ndarray]] = None,
                     intensity_max: float = 1.0) -> np.ndarray:
    """Apply linearize(raw * gain) per channel, clamped to [0, intensity_max].

    Args:
        curves: (3, width) raw channel curves
        gain: One gain per channel
        linearizer: Monotonic correction function or None for identity
        intensity_max: Upper bound of the valid intensity range

    Returns:
        New (3, width) array; the input is not modified
    """
    gain = np.asarray(gain, dtype=float).reshape(-1, 1)
    out = np.clip(np.asarray(curves, dtype=float) * gain, 0.0, intensity_max)
    if linearizer is not None:
        out = np.clip(linearizer(out), 0.0, intensity_max)
    return out


class ChannelConditioner:
    """Holds the linearizer for one configuration snapshot."""

    def __init__(self, config: ConditioningConfig):
        self.config = config
        self.linearizer = get_linearizer(config.linearization, config.linearization_curve)

    def __call__(self, curves: np.ndarray) -> np.ndarray:
        return condition_curves(curves, self.config.gain, self.linearizer, self.config.intensity_max)
