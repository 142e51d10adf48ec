"""Signal pipeline of the webcam spectrometer.

Modules:
- extraction / conditioning / filtering: frame -> per-channel pixel curves
- calibration / absorption: wavelength mapping, intensity calibration, absorbance
- peak_analysis: peak and dip detection
- pipeline / coordinator: per-frame processing and the threaded session
"""

from .errors import (
    SpectroCamError,
    DeviceError,
    ConfigValidationError,
    NonMonotonicInput,
    CalibrationDegenerate,
    PipelineStateError,
)
from .spectrometer_config import SpectrometerConfig
from .spectrum import (
    CHANNELS,
    Frame,
    Spectrum,
    ReferenceSpectrum,
    PeakFeature,
    DipFeature,
    PublishedSpectrum,
    PipelineState,
)
from .calibration import CalibrationMap, WavelengthMapper, CalibrationEngine
from .absorption import AbsorptionEngine
from .peak_analysis import extract_features
from .reference import reference_from_tungsten
from .frames import FrameSource, SyntheticFrameSource, OpenCVFrameSource, FrameQueue
from .pipeline import SpectrumProcessor
from .coordinator import PipelineCoordinator
