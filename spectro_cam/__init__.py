"""
Webcam Spectrometer
-------------------
Turns frames of a diffraction-grating webcam into calibrated spectra.
"""

__version__ = "0.1.0"

from .core import (
    PipelineCoordinator,
    SpectrometerConfig,
    SpectrumProcessor,
    SyntheticFrameSource,
    OpenCVFrameSource,
    reference_from_tungsten,
)

__all__ = [
    'PipelineCoordinator',
    'SpectrometerConfig',
    'SpectrumProcessor',
    'SyntheticFrameSource',
    'OpenCVFrameSource',
    'reference_from_tungsten',
]
