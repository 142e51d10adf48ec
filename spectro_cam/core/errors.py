"""Exception taxonomy for the spectrum pipeline."""


class SpectroCamError(Exception):
    """Base class for all pipeline errors."""


class DeviceError(SpectroCamError, RuntimeError):
    """Capture source failure (disconnect, format mismatch, missing driver)."""


class ConfigValidationError(SpectroCamError, ValueError):
    """A configuration snapshot was rejected; the previous one stays in effect."""


class NonMonotonicInput(ConfigValidationError):
    """Calibration points or reference wavelengths are not strictly increasing."""


class CalibrationDegenerate(SpectroCamError, ArithmeticError):
    """Every bin of a calibration had a near-zero denominator."""


class PipelineStateError(SpectroCamError, RuntimeError):
    """Operation not allowed in the current coordinator state."""
