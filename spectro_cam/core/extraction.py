"""Reduce a 2-D camera frame to one intensity curve per colour channel."""

from typing import Optional, Tuple

import numpy as np

from .spectrum import Frame


def _clamp_window(window: Optional[Tuple[int, int]], size: int) -> Tuple[int, int]:
    if window is None:
        return 0, size
    lo = int(np.clip(window[0], 0, size))
    hi = int(np.clip(window[1], 0, size))
    if hi <= lo:
        # Window entirely outside the frame: keep the nearest single line
        lo = min(lo, size - 1)
        hi = lo + 1
    return lo, hi


def full_scale(pixels: np.ndarray) -> float:
    """Value corresponding to a saturated pixel for the frame's dtype."""
    if np.issubdtype(pixels.dtype, np.integer):
        return float(np.iinfo(pixels.dtype).max)
    return 1.0


def extract_columns(frame: Frame,
                    vertical_window: Optional[Tuple[int, int]] = None,
                    horizontal_window: Optional[Tuple[int, int]] = None,
                    reduce: str = 'mean',
                    flip: bool = False) -> np.ndarray:
    """Collapse the rows of `frame` inside the window into channel curves.

    Args:
        frame: Camera frame with (height, width, 3) pixels
        vertical_window: [top, bottom) rows to include; clamped to the frame
        horizontal_window: [left, right) columns to keep; clamped to the frame
        reduce: 'mean' or 'sum' over the included rows
        flip: Mirror the frame horizontally before cropping

    Returns:
        Array of shape (3, width) with intensities normalised to full scale
    """
    pixels = frame.pixels
    if flip:
        pixels = pixels[:, ::-1, :]
    top, bottom = _clamp_window(vertical_window, frame.height)
    left, right = _clamp_window(horizontal_window, frame.width)

    window = pixels[top:bottom, left:right, :].astype(float)
    if reduce == 'sum':
        curves = window.sum(axis=0)
    elif reduce == 'mean':
        curves = window.mean(axis=0)
    else:
        raise ValueError(f"Unknown reduce mode: {reduce}")
    return np.ascontiguousarray(curves.T) / full_scale(frame.pixels)
