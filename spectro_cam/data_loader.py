import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Union

import numpy as np
import pandas as pd

from .core.errors import NonMonotonicInput
from .core.spectrum import CHANNELS, PublishedSpectrum, ReferenceSpectrum, Spectrum

# Set up logging
logger = logging.getLogger(__name__)


def _read_csv_spectrum(path: Union[str, Path]) -> pd.DataFrame:
    """Read a spectrum CSV and normalize columns to wavelength,intensity.
    Accepts headerless files as two columns. Row order is preserved.
    """
    try:
        df = pd.read_csv(path)
        if 'wavelength' not in df.columns or 'intensity' not in df.columns:
            df = pd.read_csv(path, header=None, names=['wavelength', 'intensity'])
        df = df[['wavelength', 'intensity']].copy()
        df['wavelength'] = pd.to_numeric(df['wavelength'], errors='coerce')
        df['intensity'] = pd.to_numeric(df['intensity'], errors='coerce')
        return df.dropna().reset_index(drop=True)
    except Exception as e:
        raise RuntimeError(f"Failed to read spectrum {path}: {e}")


def load_reference_csv(path: Union[str, Path], name: str = None) -> ReferenceSpectrum:
    """
    Load a reference spectrum (wavelength,intensity) for intensity calibration.

    Args:
        path: CSV file, with or without a header row
        name: Display name, defaults to the file stem

    Returns:
        ReferenceSpectrum

    Raises:
        ValueError: File holds fewer than two usable rows
        NonMonotonicInput: Wavelengths are not strictly increasing
    """
    df = _read_csv_spectrum(path)
    if len(df) < 2:
        raise ValueError(f"Reference file {path} is empty or invalid")
    wl = df['wavelength'].to_numpy(dtype=float)
    if np.any(np.diff(wl) <= 0):
        raise NonMonotonicInput(f"Reference {path}: wavelengths must be strictly increasing")
    reference = ReferenceSpectrum(wl, df['intensity'].to_numpy(dtype=float), name=name or Path(path).stem)
    logger.info(f"Loaded reference '{reference.name}' ({len(df)} points, "
                f"{wl[0]:.1f}-{wl[-1]:.1f} nm) from {path}")
    return reference


def write_reference_csv(reference: ReferenceSpectrum, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame({'wavelength': reference.wavelengths, 'intensity': reference.intensity}).to_csv(path, index=False)
    return path


def spectrum_to_frame(spectrum: Spectrum) -> pd.DataFrame:
    """Ordered (wavelength, r, g, b, sum) table of a spectrum.

    `sum` is the combined channel the pipeline reports as intensity.
    """
    data = {'wavelength': spectrum.wavelengths}
    for name, row in zip(CHANNELS, spectrum.channels):
        data[name] = row
    data['sum'] = spectrum.intensity
    return pd.DataFrame(data)


def write_spectrum_csv(spectrum: Spectrum, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    spectrum_to_frame(spectrum).to_csv(path, index=False, float_format='%.6g')
    logger.info(f"Spectrum saved to {path}")
    return path


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def spectrum_to_dict(published: PublishedSpectrum) -> Dict[str, Any]:
    spectrum = published.spectrum
    return {
        'start': _iso(spectrum.start),
        'end': _iso(spectrum.end),
        'sequence': int(spectrum.sequence),
        'state': published.state.value,
        'calibrated': bool(published.calibrated),
        'absorption': bool(spectrum.absorption),
        'spectrum': [
            {'wavelength': float(w), 'value': float(v)}
            for w, v in zip(spectrum.wavelengths, spectrum.intensity)
        ],
        'peaks': [{'wavelength': p.wavelength, 'value': p.intensity, 'prominence': p.prominence}
                  for p in published.peaks],
        'dips': [{'wavelength': d.wavelength, 'value': d.intensity, 'prominence': d.prominence}
                 for d in published.dips],
        'unreliable': [float(w) for w in spectrum.wavelengths[spectrum.unreliable]],
    }


def spectrum_to_json(published: PublishedSpectrum, indent: int = None) -> str:
    return json.dumps(spectrum_to_dict(published), indent=indent)
