"""Frame-to-spectrum processing chain.

SpectrumProcessor runs every stage for one frame and owns all state that
persists between frames (filter buffers, calibration factors, zero
reference). It is not thread-safe: the coordinator calls it from its
processing thread only.
"""

import logging
from typing import List, Optional, Tuple

from .absorption import AbsorptionEngine
from .calibration import CalibrationEngine, CalibrationFactors, CalibrationMap, WavelengthMapper
from .conditioning import ChannelConditioner
from .extraction import extract_columns
from .filtering import TemporalFilterStage
from .peak_analysis import extract_features
from .spectrometer_config import SpectrometerConfig
from .spectrum import (
    DipFeature,
    Frame,
    PeakFeature,
    PipelineState,
    PublishedSpectrum,
    ReferenceSpectrum,
    Spectrum,
)

logger = logging.getLogger(__name__)


class SpectrumProcessor:
    """Column extraction -> conditioning -> filtering -> mapping -> calibration
    -> absorption -> features."""

    def __init__(self, config: Optional[SpectrometerConfig] = None):
        self.config = config or SpectrometerConfig()
        self.conditioner = ChannelConditioner(self.config.conditioning)
        self.filter = TemporalFilterStage(self.config.filter)
        self.mapper = WavelengthMapper(CalibrationMap.from_config(self.config.calibration),
                                       self.config.output_grid)
        self.calibration = CalibrationEngine()
        self.absorption = AbsorptionEngine()
        # Spectrum before calibration (basis for new calibration factors)
        self.last_mapped: Optional[Spectrum] = None
        # Spectrum after calibration (basis for a zero reference)
        self.last_calibrated: Optional[Spectrum] = None

    def apply_config(self, config: SpectrometerConfig):
        """Adopt a new snapshot. Called between frames only."""
        old = self.config
        if config == old:
            return
        if config.conditioning != old.conditioning:
            self.conditioner = ChannelConditioner(config.conditioning)
            if config.conditioning.linearization_curve != old.conditioning.linearization_curve or \
                    config.conditioning.linearization != old.conditioning.linearization:
                logger.info("Linearization changed; clearing averaging buffers")
                self.filter.reset()
        if config.extraction != old.extraction:
            logger.info("Extraction window changed; clearing averaging buffers")
            self.filter.reset()
        self.filter.configure(config.filter)
        if config.calibration != old.calibration or config.output_grid != old.output_grid:
            self.mapper = WavelengthMapper(CalibrationMap.from_config(config.calibration), config.output_grid)
            self.last_mapped = None
            self.last_calibrated = None
        if config.output_grid != old.output_grid:
            if self.calibration.active or self.absorption.active:
                logger.warning("Output grid changed; discarding calibration and zero reference")
            self.calibration.clear()
            self.absorption.clear()
        self.config = config

    def reset(self):
        """Forget everything tied to the previous capture session."""
        self.filter.reset()
        self.last_mapped = None
        self.last_calibrated = None

    def map_frame(self, frame: Frame) -> Spectrum:
        """Stages up to the wavelength mapper (mutates filter state)."""
        ext = self.config.extraction
        curves = extract_columns(frame, ext.vertical_window, ext.horizontal_window, ext.reduce, ext.flip)
        conditioned = self.conditioner(curves)
        filtered = self.filter.process(conditioned, frame.start, frame.end)
        start, end = self.filter.window_span()
        return self.mapper.map(filtered, sequence=frame.sequence, start=start, end=end)

    def features(self, spectrum: Spectrum) -> Tuple[List[PeakFeature], List[DipFeature]]:
        if not self.config.features.enabled:
            return [], []
        return extract_features(spectrum, self.config.features.prominence)

    def process(self, frame: Frame) -> PublishedSpectrum:
        mapped = self.map_frame(frame)
        calibrated = self.calibration.apply(mapped)
        final = self.absorption.apply(calibrated)
        peaks, dips = self.features(final)
        self.last_mapped = mapped
        self.last_calibrated = calibrated
        logger.debug(f"Frame #{frame.sequence}: {len(peaks)} peaks, {len(dips)} dips")
        return PublishedSpectrum(
            spectrum=final,
            peaks=peaks,
            dips=dips,
            state=PipelineState.RUNNING,
            calibrated=self.calibration.active,
        )

    def set_reference(self, reference: ReferenceSpectrum) -> CalibrationFactors:
        scale = self.config.reference.scale
        if scale != 1.0:
            reference = reference.scaled(scale)
        return self.calibration.set_reference(reference, self.last_mapped)

    def clear_calibration(self):
        self.calibration.clear()

    def set_zero_reference(self) -> Spectrum:
        return self.absorption.set_zero_reference(self.last_calibrated)

    def clear_zero_reference(self):
        self.absorption.clear()
