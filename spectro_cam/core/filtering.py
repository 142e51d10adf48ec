"""Temporal averaging and low-pass smoothing of channel curves.

State lives here and nowhere else: one ring buffer and one low-pass filter
per colour channel, addressed by channel index. Only the processing thread
touches it.
"""

import logging
from collections import deque
from typing import List, Optional, Tuple

import numpy as np
from scipy.signal import butter, sosfilt, sosfilt_zi

from .spectrometer_config import FilterConfig, FILTER_SAMPLE_RATE_HZ
from .spectrum import CHANNELS

logger = logging.getLogger(__name__)


def design_lowpass(order: int, cutoff_hz: float) -> np.ndarray:
    """Butterworth low-pass as second-order sections (order 2 is one biquad)."""
    return butter(order, cutoff_hz, btype='low', fs=FILTER_SAMPLE_RATE_HZ, output='sos')


def lowpass_zero_phase(samples: np.ndarray, sos: np.ndarray, zi: np.ndarray) -> np.ndarray:
    """Run the filter forward then backward along the samples.

    The delay line of each pass starts at the steady state of its first
    sample, so a constant curve passes through unchanged. The output is
    clamped at zero after each pass since the filter can undershoot.
    """
    if samples.size == 0:
        return samples.copy()
    forward, _ = sosfilt(sos, samples, zi=zi * samples[0])
    forward = np.maximum(forward, 0.0)
    backward, _ = sosfilt(sos, forward[::-1], zi=zi * forward[-1])
    return np.maximum(backward[::-1], 0.0)


class ChannelFilter:
    """Averaging ring buffer plus low-pass for a single channel."""

    def __init__(self, depth: int):
        self.buffer: deque = deque(maxlen=depth)
        self.sos: Optional[np.ndarray] = None
        self.zi: Optional[np.ndarray] = None

    @property
    def width(self) -> Optional[int]:
        return self.buffer[0].size if self.buffer else None

    def set_depth(self, depth: int):
        if depth != self.buffer.maxlen:
            # Keep the most recent curves
            self.buffer = deque(list(self.buffer)[-depth:], maxlen=depth)

    def set_lowpass(self, sos: Optional[np.ndarray]):
        self.sos = sos
        self.zi = sosfilt_zi(sos) if sos is not None else None

    def reset(self):
        self.buffer.clear()

    def push(self, curve: np.ndarray) -> np.ndarray:
        if self.width is not None and self.width != curve.size:
            self.buffer.clear()
        self.buffer.append(np.array(curve, dtype=float, copy=True))
        # Partial window until the buffer fills
        averaged = np.mean(np.stack(self.buffer), axis=0)
        if self.sos is None:
            return averaged
        return lowpass_zero_phase(averaged, self.sos, self.zi)


class TemporalFilterStage:
    """Fixed array of per-channel filters with configuration tracking."""

    def __init__(self, config: Optional[FilterConfig] = None):
        self.config = config or FilterConfig()
        self.channels: List[ChannelFilter] = [ChannelFilter(self.config.depth) for _ in CHANNELS]
        self._times: deque = deque(maxlen=self.config.depth)
        self._apply_lowpass(self.config)

    def _apply_lowpass(self, config: FilterConfig):
        sos = design_lowpass(config.order, config.cutoff_hz) if config.enabled else None
        for channel in self.channels:
            channel.set_lowpass(sos)

    def configure(self, config: FilterConfig):
        """Adopt a new filter config; coefficients are redesigned only if they changed."""
        old = self.config
        if config == old:
            return
        if config.depth != old.depth:
            for channel in self.channels:
                channel.set_depth(config.depth)
            self._times = deque(list(self._times)[-config.depth:], maxlen=config.depth)
        if (config.enabled, config.order, config.cutoff_hz) != (old.enabled, old.order, old.cutoff_hz):
            self._apply_lowpass(config)
            logger.debug(f"Low-pass redesigned: enabled={config.enabled} order={config.order} "
                         f"cutoff={config.cutoff_hz:.3f} Hz")
        self.config = config

    def reset(self):
        for channel in self.channels:
            channel.reset()
        self._times.clear()

    @property
    def fill(self) -> int:
        """Number of curves currently held per channel."""
        return len(self.channels[0].buffer)

    def window_span(self) -> Tuple[float, float]:
        """(start, end) timestamps of the frames inside the averaging window."""
        if not self._times:
            return 0.0, 0.0
        return self._times[0][0], self._times[-1][1]

    def process(self, curves: np.ndarray, start: float = 0.0, end: float = 0.0) -> np.ndarray:
        """Push one (3, width) conditioned frame and return the filtered curves."""
        curves = np.asarray(curves, dtype=float)
        if curves.shape[0] != len(self.channels):
            raise ValueError(f"Expected {len(self.channels)} channel curves, got {curves.shape[0]}")
        width = self.channels[0].width
        if width is not None and width != curves.shape[1]:
            logger.info(f"Curve width changed {width} -> {curves.shape[1]}; clearing averaging buffers")
            self.reset()
        self._times.append((start, end))
        return np.vstack([channel.push(curve) for channel, curve in zip(self.channels, curves)])
