"""Threaded capture/processing coordinator.

Two worker threads per session: the capture thread pulls frames from the
source into a bounded drop-oldest FrameQueue, the processing thread turns
them into spectra and publishes the newest one to a latest-value cell.
Configuration changes and user commands are handed to the processing thread
and take effect between two frames, never in the middle of one.
"""

import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import replace
from typing import Any, Callable, Dict, Optional, Union

import numpy as np

from .errors import DeviceError, PipelineStateError
from .frames import FrameQueue, FrameSource
from .pipeline import SpectrumProcessor
from .spectrometer_config import SpectrometerConfig
from .spectrum import PipelineState, PublishedSpectrum, ReferenceSpectrum

logger = logging.getLogger(__name__)

_JOIN_TIMEOUT_S = 2.0


class LatestSpectrum:
    """Single-slot cell holding the newest published spectrum.

    The lock is held only while swapping the reference, so readers never
    wait on processing and the writer never waits on rendering.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._value: Optional[PublishedSpectrum] = None

    def publish(self, value: PublishedSpectrum):
        with self._cond:
            self._value = value
            self._cond.notify_all()

    def get(self) -> Optional[PublishedSpectrum]:
        with self._cond:
            return self._value

    def clear(self):
        with self._cond:
            self._value = None

    def wait_for(self, min_sequence: int = 0, timeout: Optional[float] = None) -> Optional[PublishedSpectrum]:
        """Block until a spectrum with sequence >= min_sequence is published."""
        with self._cond:
            self._cond.wait_for(
                lambda: self._value is not None and self._value.sequence >= min_sequence, timeout)
            return self._value


class PipelineCoordinator:
    """Owns the session state machine (Idle / Running / Paused).

    Args:
        config: Initial configuration snapshot
        on_error: Called from the capture thread with the DeviceError that
            ended a session
    """

    def __init__(self, config: Optional[SpectrometerConfig] = None,
                 on_error: Optional[Callable[[Exception], None]] = None):
        self._config = config or SpectrometerConfig()
        self.processor = SpectrumProcessor(self._config)
        self.on_error = on_error

        self._lock = threading.RLock()
        self._state = PipelineState.IDLE
        self._source: Optional[FrameSource] = None
        self._frames: Optional[FrameQueue] = None
        self._stop = threading.Event()
        self._capture_thread: Optional[threading.Thread] = None
        self._process_thread: Optional[threading.Thread] = None

        self._pending_config: Optional[SpectrometerConfig] = None
        self._commands: queue.Queue = queue.Queue()
        self._accepting_commands = False
        self._latest = LatestSpectrum()

        self._captured = 0
        self._processed = 0
        self._last_error: Optional[Exception] = None

    # ------------------------------------------------------------------ state

    @property
    def state(self) -> PipelineState:
        with self._lock:
            return self._state

    @property
    def config(self) -> SpectrometerConfig:
        with self._lock:
            return self._pending_config or self._config

    @property
    def last_error(self) -> Optional[Exception]:
        return self._last_error

    def attach(self, source: FrameSource):
        """Idle -> Running: open the source and start both worker threads."""
        with self._lock:
            if self._state is not PipelineState.IDLE:
                raise PipelineStateError(f"Cannot attach a source while {self._state.value}")
        # Workers of a failed session may still be winding down
        self._join_workers()
        with self._lock:
            if self._state is not PipelineState.IDLE:
                raise PipelineStateError(f"Cannot attach a source while {self._state.value}")
            try:
                source.open()
            except DeviceError as e:
                self._last_error = e
                logger.error(f"Could not open frame source: {e}")
                raise

            self._apply_pending_config()
            self.processor.reset()
            self._latest.clear()
            self._source = source
            self._frames = FrameQueue(self._config.capture.queue_size)
            self._stop = threading.Event()
            self._captured = self._processed = 0
            self._last_error = None
            self._accepting_commands = True
            self._state = PipelineState.RUNNING

            self._capture_thread = threading.Thread(
                target=self._capture_loop, args=(source, self._frames, self._stop),
                name='spectro-capture', daemon=True)
            self._process_thread = threading.Thread(
                target=self._process_loop, args=(self._frames, self._stop),
                name='spectro-process', daemon=True)
            self._capture_thread.start()
            self._process_thread.start()
        logger.info("Frame source attached; pipeline running")

    def detach(self):
        """Any state -> Idle. Stops the workers and releases the source."""
        with self._lock:
            was = self._state
            self._state = PipelineState.IDLE
            self._stop.set()
        self._join_workers()
        with self._lock:
            if self._source is not None:
                self._source.close()
                self._source = None
            if self._frames is not None:
                self._frames.clear()
        if was is not PipelineState.IDLE:
            logger.info(f"Frame source detached ({self._processed} spectra from {self._captured} frames)")

    def pause(self):
        with self._lock:
            if self._state is not PipelineState.RUNNING:
                raise PipelineStateError(f"Cannot pause while {self._state.value}")
            self._state = PipelineState.PAUSED
        logger.info("Processing paused")

    def resume(self):
        with self._lock:
            if self._state is not PipelineState.PAUSED:
                raise PipelineStateError(f"Cannot resume while {self._state.value}")
            self._state = PipelineState.RUNNING
        logger.info("Processing resumed")

    def _join_workers(self):
        current = threading.current_thread()
        for thread in (self._capture_thread, self._process_thread):
            if thread is not None and thread is not current and thread.is_alive():
                thread.join(timeout=_JOIN_TIMEOUT_S)
                if thread.is_alive():
                    logger.warning(f"Worker thread {thread.name} did not stop within {_JOIN_TIMEOUT_S}s")

    def _fail(self, error: Exception, stop: threading.Event):
        with self._lock:
            self._last_error = error
            if not stop.is_set():
                self._state = PipelineState.IDLE
                stop.set()
        logger.error(f"Capture failed, pipeline stopped: {error}")
        if self.on_error is not None:
            self.on_error(error)

    # ---------------------------------------------------------------- workers

    def _capture_loop(self, source: FrameSource, frames: FrameQueue, stop: threading.Event):
        try:
            while not stop.is_set():
                try:
                    frame = source.read()
                except DeviceError as e:
                    self._fail(e, stop)
                    return
                if stop.is_set():
                    break
                self._captured += 1
                if not frames.put(frame):
                    logger.debug(f"Frame queue full, dropped oldest ({frames.dropped_count} total)")
        finally:
            source.close()

    def _process_loop(self, frames: FrameQueue, stop: threading.Event):
        timeout = self._config.capture.poll_timeout_s
        while not stop.is_set():
            self._run_commands()
            self._apply_pending_config()
            if self.state is PipelineState.PAUSED:
                stop.wait(timeout)
                continue
            frame = frames.get(timeout=timeout)
            if frame is None or stop.is_set():
                continue
            try:
                published = self.processor.process(frame)
            except Exception as e:
                logger.exception(f"Processing frame #{frame.sequence} failed; pausing")
                with self._lock:
                    self._last_error = e
                    if self._state is PipelineState.RUNNING:
                        self._state = PipelineState.PAUSED
                continue
            if stop.is_set():
                break
            self._latest.publish(published)
            self._processed += 1

        with self._lock:
            self._accepting_commands = False
        # Commands queued after the last frame still get an answer
        self._run_commands()

    # ------------------------------------------------------- config/commands

    def update_config(self, config: Union[SpectrometerConfig, Dict[str, Any]]) -> SpectrometerConfig:
        """Validate and stage a new snapshot.

        Raises ConfigValidationError before anything changes; the previous
        snapshot stays in force. While running, the snapshot is adopted at
        the next frame boundary.
        """
        if not isinstance(config, SpectrometerConfig):
            config = SpectrometerConfig.from_dict(config)
        with self._lock:
            self._pending_config = config
            if not self._accepting_commands:
                self._apply_pending_config()
        return config

    def _apply_pending_config(self):
        with self._lock:
            config, self._pending_config = self._pending_config, None
        if config is None:
            return
        self.processor.apply_config(config)
        with self._lock:
            self._config = config
        logger.debug("Configuration snapshot applied")

    def _submit(self, fn: Callable[[], Any]) -> Future:
        future: Future = Future()
        with self._lock:
            if self._accepting_commands:
                self._commands.put((fn, future))
                return future
            # No processing thread: run on the caller's thread
            self._execute(fn, future)
        return future

    def _run_commands(self):
        while True:
            try:
                fn, future = self._commands.get_nowait()
            except queue.Empty:
                return
            self._execute(fn, future)

    @staticmethod
    def _execute(fn: Callable[[], Any], future: Future):
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn())
        except Exception as e:
            future.set_exception(e)

    def set_reference(self, reference: ReferenceSpectrum) -> Future:
        """Compute calibration factors from the current live spectrum.

        The Future resolves to the CalibrationFactors, or raises
        CalibrationDegenerate / PipelineStateError.
        """
        return self._submit(lambda: self.processor.set_reference(reference))

    def clear_calibration(self) -> Future:
        return self._submit(self.processor.clear_calibration)

    def set_zero_reference(self) -> Future:
        return self._submit(self.processor.set_zero_reference)

    def clear_zero_reference(self) -> Future:
        return self._submit(self.processor.clear_zero_reference)

    # ---------------------------------------------------------------- readers

    def latest(self) -> Optional[PublishedSpectrum]:
        """Newest spectrum, tagged with the current pipeline state."""
        published = self._latest.get()
        if published is None:
            return None
        return replace(published, state=self.state)

    def wait_for_spectrum(self, min_sequence: int = 0,
                          timeout: Optional[float] = None) -> Optional[PublishedSpectrum]:
        published = self._latest.wait_for(min_sequence, timeout)
        if published is None or published.sequence < min_sequence:
            return None
        return replace(published, state=self.state)

    def spectrum_max(self) -> float:
        """Largest valid intensity of the newest spectrum (0 when none)."""
        published = self._latest.get()
        if published is None:
            return 0.0
        spectrum = published.spectrum
        values = spectrum.intensity[spectrum.valid]
        return float(np.max(values)) if values.size else 0.0

    def stats(self) -> Dict[str, Any]:
        frames = self._frames
        return {
            'state': self.state.value,
            'frames_captured': self._captured,
            'spectra_processed': self._processed,
            'frames_dropped': frames.dropped_count if frames is not None else 0,
            'queue_depth': frames.qsize() if frames is not None else 0,
            'calibrated': self.processor.calibration.active,
            'zero_reference': self.processor.absorption.active,
            'last_error': str(self._last_error) if self._last_error else None,
        }
