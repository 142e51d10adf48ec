"""
Plotting of published spectra.
"""
from typing import Optional, Union
from pathlib import Path
import logging

import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
from matplotlib.figure import Figure

from .core.spectrum import CHANNELS, PublishedSpectrum

logger = logging.getLogger(__name__)

_CHANNEL_COLORS = {'r': 'tab:red', 'g': 'tab:green', 'b': 'tab:blue'}


def plot_spectrum(published: PublishedSpectrum,
                  title: Optional[str] = None,
                  show_channels: bool = True,
                  save_path: Optional[Union[str, Path]] = None) -> Figure:
    """
    Plot a published spectrum with its peaks and dips.

    Args:
        published: Spectrum snapshot from the pipeline
        title: Plot title, defaults to the frame sequence number
        show_channels: Also draw the r, g, b curves
        save_path: If provided, save the figure to this path

    Returns:
        Matplotlib Figure object
    """
    spectrum = published.spectrum
    wl = spectrum.wavelengths
    fig, ax = plt.subplots(figsize=(10, 6))

    if show_channels and not spectrum.absorption:
        for name, row in zip(CHANNELS, spectrum.channels):
            ax.plot(wl, row, color=_CHANNEL_COLORS[name], lw=0.8, alpha=0.6, label=name)
    ax.plot(wl, spectrum.intensity, color='black', lw=1.5, label='sum')

    for peak in published.peaks:
        ax.plot(peak.wavelength, peak.intensity, 'rv')
        ax.text(peak.wavelength, peak.intensity, f"{peak.wavelength:.1f} nm", ha='center', va='bottom', fontsize=8)
    for dip in published.dips:
        ax.plot(dip.wavelength, dip.intensity, 'b^')
        ax.text(dip.wavelength, dip.intensity, f"{dip.wavelength:.1f} nm", ha='center', va='top', fontsize=8)

    # Shade bins outside the sensor or with an unreliable correction
    flagged = spectrum.unreliable | ~spectrum.valid
    if np.any(flagged):
        top = float(np.max(spectrum.intensity)) if spectrum.intensity.size else 1.0
        ax.fill_between(wl, 0, top if top > 0 else 1.0, where=flagged, color='grey', alpha=0.15,
                        step='mid', label='unreliable')

    ax.set_xlabel('Wavelength (nm)')
    ax.set_ylabel('Absorbance' if spectrum.absorption else 'Intensity (a.u.)')
    ax.set_title(title or f"Spectrum #{published.sequence}" + (" (calibrated)" if published.calibrated else ""))
    ax.grid(True, alpha=0.3)
    ax.legend(loc='upper right', fontsize=8)

    if save_path:
        save_path = Path(save_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Figure saved to {save_path}")

    return fig
