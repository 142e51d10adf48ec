"""Frame sources and the bounded frame queue between capture and processing."""

import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional, Sequence, Tuple

import numpy as np

from .calibration import CalibrationMap
from .errors import DeviceError
from .spectrum import Frame

logger = logging.getLogger(__name__)


class FrameSource(ABC):
    """Camera-like producer of RGB frames.

    Implementations raise DeviceError from open()/read() on any device
    failure; the pipeline treats that as fatal for the running session.
    """

    def __init__(self):
        self._sequence = 0
        self._last_end: Optional[float] = None

    def _stamp(self, pixels: np.ndarray) -> Frame:
        end = time.time()
        start = self._last_end if self._last_end is not None else end
        self._last_end = end
        frame = Frame(pixels=pixels, sequence=self._sequence, start=start, end=end)
        self._sequence += 1
        return frame

    @abstractmethod
    def open(self) -> None:
        """Acquire the device."""

    @abstractmethod
    def read(self) -> Frame:
        """Block until the next frame is available."""

    @abstractmethod
    def close(self) -> None:
        """Release the device. Must be safe to call twice."""

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class SyntheticFrameSource(FrameSource):
    """Renders a light band whose columns follow a model spectrum.

    Args:
        spectrum_fn: Maps wavelengths (nm) to relative intensity in [0, 1]
        width: Frame width in pixels
        height: Frame height in pixels
        calibration: Pixel -> wavelength map used to render the columns
        band: [top, bottom) rows lit by the spectrum; other rows stay dark
        channel_weights: Relative response of the r, g, b channels
        noise: Standard deviation of additive Gaussian noise (full scale 1)
        fps: Pace read() to this rate; None reads as fast as possible
        dtype: np.uint8 for camera-like frames, a float type for exact values
        fail_after: Raise DeviceError after this many frames
    """

    def __init__(self,
                 spectrum_fn: Callable[[np.ndarray], np.ndarray],
                 width: int = 640,
                 height: int = 48,
                 calibration: Optional[CalibrationMap] = None,
                 band: Optional[Tuple[int, int]] = None,
                 channel_weights: Sequence[float] = (1.0, 1.0, 1.0),
                 noise: float = 0.0,
                 fps: Optional[float] = None,
                 dtype=np.uint8,
                 fail_after: Optional[int] = None,
                 seed: int = 0):
        super().__init__()
        self.spectrum_fn = spectrum_fn
        self.width = int(width)
        self.height = int(height)
        self.calibration = calibration or CalibrationMap(((0.0, 380.0), (width - 1.0, 780.0)))
        self.band = band or (self.height // 4, 3 * self.height // 4)
        self.channel_weights = np.asarray(channel_weights, dtype=float)
        self.noise = float(noise)
        self.period = 1.0 / fps if fps else None
        self.dtype = np.dtype(dtype)
        self.fail_after = fail_after
        self._rng = np.random.default_rng(seed)
        self._opened = False
        self._next_time = 0.0

    def render(self) -> np.ndarray:
        wavelengths = self.calibration.wavelength_at(np.arange(self.width, dtype=float))
        profile = np.clip(np.asarray(self.spectrum_fn(wavelengths), dtype=float), 0.0, 1.0)
        pixels = np.zeros((self.height, self.width, 3), dtype=float)
        top, bottom = self.band
        pixels[top:bottom, :, :] = profile[None, :, None] * self.channel_weights[None, None, :]
        if self.noise > 0:
            pixels += self._rng.normal(0.0, self.noise, size=pixels.shape)
        pixels = np.clip(pixels, 0.0, 1.0)
        if np.issubdtype(self.dtype, np.integer):
            return np.round(pixels * np.iinfo(self.dtype).max).astype(self.dtype)
        return pixels.astype(self.dtype)

    def open(self):
        self._opened = True
        self._next_time = time.monotonic()
        logger.info(f"Synthetic frame source opened ({self.width}x{self.height})")

    def read(self) -> Frame:
        if not self._opened:
            raise DeviceError("Synthetic frame source is not open")
        if self.fail_after is not None and self._sequence >= self.fail_after:
            raise DeviceError(f"Synthetic device failure after {self.fail_after} frames")
        if self.period is not None:
            self._next_time += self.period
            delay = self._next_time - time.monotonic()
            if delay > 0:
                time.sleep(delay)
        return self._stamp(self.render())

    def close(self):
        self._opened = False


class OpenCVFrameSource(FrameSource):
    """Webcam via OpenCV (install the `camera` extra)."""

    def __init__(self, index: int = 0, width: Optional[int] = None,
                 height: Optional[int] = None, fps: Optional[float] = None):
        super().__init__()
        self.index = int(index)
        self.width = width
        self.height = height
        self.fps = fps
        self._cv2 = None
        self._capture = None

    def open(self):
        try:
            import cv2
        except ImportError as e:
            raise DeviceError(f"OpenCV is not installed: {e}")
        self._cv2 = cv2
        capture = cv2.VideoCapture(self.index)
        if not capture.isOpened():
            raise DeviceError(f"Could not open camera {self.index}")
        if self.width:
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        if self.height:
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        if self.fps:
            capture.set(cv2.CAP_PROP_FPS, self.fps)
        self._capture = capture
        logger.info(f"Camera {self.index} opened at "
                    f"{int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))}x{int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))}")

    def read(self) -> Frame:
        if self._capture is None:
            raise DeviceError("Camera is not open")
        ok, bgr = self._capture.read()
        if not ok or bgr is None:
            raise DeviceError(f"Could not poll frame from camera {self.index}")
        if bgr.ndim != 3 or bgr.shape[2] != 3:
            raise DeviceError(f"Unexpected frame format {bgr.shape}")
        return self._stamp(self._cv2.cvtColor(bgr, self._cv2.COLOR_BGR2RGB))

    def close(self):
        if self._capture is not None:
            self._capture.release()
            self._capture = None
            logger.info(f"Camera {self.index} closed")


class FrameQueue:
    """Bounded frame queue with a drop-oldest policy.

    put() never blocks: when full, the oldest frame is discarded so the
    consumer always sees the freshest data.
    """

    def __init__(self, maxsize: int = 4):
        if maxsize < 1:
            raise ValueError("maxsize must be positive")
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self._dropped_count = 0

    def put(self, frame: Frame) -> bool:
        """Returns False if an older frame had to be dropped."""
        with self._lock:
            try:
                self._queue.put_nowait(frame)
                return True
            except queue.Full:
                dropped = False
                try:
                    self._queue.get_nowait()
                    self._dropped_count += 1
                    dropped = True
                except queue.Empty:
                    # Consumer emptied a slot in the meantime
                    pass
                self._queue.put_nowait(frame)
                return not dropped

    def get(self, timeout: Optional[float] = None) -> Optional[Frame]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def clear(self):
        with self._lock:
            while True:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    break

    def qsize(self) -> int:
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped_count
