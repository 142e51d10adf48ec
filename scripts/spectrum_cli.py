import argparse
import logging
import os
import sys
import time
from pathlib import Path

import numpy as np

# Ensure repo root is on sys.path when running from anywhere
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from config.config_loader import load_spectrometer_config  # noqa: E402
from spectro_cam.core import (  # noqa: E402
    CalibrationMap,
    OpenCVFrameSource,
    PipelineCoordinator,
    SpectroCamError,
    SyntheticFrameSource,
    reference_from_tungsten,
)
from spectro_cam.data_loader import load_reference_csv, spectrum_to_json, write_spectrum_csv  # noqa: E402
from spectro_cam.visualization import plot_spectrum  # noqa: E402

logger = logging.getLogger("spectrum_cli")

# (wavelength nm, relative height) of the lines in the synthetic lamp
_LAMP_LINES = ((405.0, 0.35), (436.0, 0.8), (546.0, 1.0), (578.0, 0.45), (611.0, 0.6))


def fluorescent_lamp(wavelengths: np.ndarray) -> np.ndarray:
    """Low continuum plus narrow emission lines, roughly a compact fluorescent lamp."""
    out = 0.08 * np.exp(-0.5 * ((wavelengths - 560.0) / 90.0) ** 2)
    for center, height in _LAMP_LINES:
        out = out + height * np.exp(-0.5 * ((wavelengths - center) / 2.5) ** 2)
    return out


def _make_source(args, cfg):
    if args.source == 'camera':
        return OpenCVFrameSource(index=args.camera_index)
    return SyntheticFrameSource(
        fluorescent_lamp,
        calibration=CalibrationMap.from_config(cfg.calibration),
        noise=0.01,
        fps=args.fps,
    )


def main():
    parser = argparse.ArgumentParser(
        description="Headless webcam spectrometer: capture -> spectrum -> CSV/JSON/plot export"
    )
    parser.add_argument("--config", default=None, help="YAML configuration (default: config/config.yaml)")
    parser.add_argument("--source", choices=["synthetic", "camera"], default="synthetic")
    parser.add_argument("--camera-index", type=int, default=0, dest="camera_index")
    parser.add_argument("--fps", type=float, default=30.0, help="Frame rate of the synthetic source")
    parser.add_argument("--seconds", type=float, default=3.0, help="Capture duration")
    parser.add_argument("--reference", type=str, help="Reference CSV (wavelength,intensity) to calibrate against")
    parser.add_argument("--tungsten", type=float, help="Calibrate against a tungsten lamp at this temperature (K)")
    parser.add_argument("--zero-after", type=int, default=None, dest="zero_after",
                        help="Take a zero reference after N spectra and report absorbance")
    parser.add_argument("--out", default=str(REPO_ROOT / "output"), help="Output directory")
    parser.add_argument("-v", "--verbose", action="store_true")

    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    try:
        cfg = load_spectrometer_config(args.config)
    except (FileNotFoundError, SpectroCamError) as e:
        parser.error(str(e))
    out_root = os.path.abspath(args.out)

    reference = None
    if args.reference:
        reference = load_reference_csv(args.reference)
    elif args.tungsten:
        reference = reference_from_tungsten(args.tungsten)

    coordinator = PipelineCoordinator(cfg)
    coordinator.attach(_make_source(args, cfg))
    deadline = time.time() + args.seconds
    try:
        # Let the averaging window fill before using the live spectrum
        warm = coordinator.wait_for_spectrum(cfg.filter.depth - 1, timeout=args.seconds)
        if warm is None:
            logger.error("No spectrum produced; is the source delivering frames?")
            return 1
        if reference is not None:
            factors = coordinator.set_reference(reference).result(timeout=5.0)
            print(f"Calibrated against '{reference.name}': "
                  f"{factors.reliable_fraction:.0%} of bins reliable")
        if args.zero_after is not None:
            coordinator.wait_for_spectrum(warm.sequence + args.zero_after, timeout=args.seconds)
            coordinator.set_zero_reference().result(timeout=5.0)
            print("Zero reference taken; reporting absorbance")
        remaining = deadline - time.time()
        if remaining > 0:
            time.sleep(remaining)
        published = coordinator.latest()
    finally:
        coordinator.detach()

    stats = coordinator.stats()
    print("\nCapture summary")
    print("---------------")
    for key in ("frames_captured", "spectra_processed", "frames_dropped", "last_error"):
        print(f"{key}: {stats[key]}")
    if published is None:
        return 1

    print("\nFeatures")
    print("--------")
    for peak in published.peaks:
        print(f"peak {peak.wavelength:7.1f} nm  value={peak.intensity:.4f}  prominence={peak.prominence:.4f}")
    for dip in published.dips:
        print(f"dip  {dip.wavelength:7.1f} nm  value={dip.intensity:.4f}  prominence={dip.prominence:.4f}")

    out_dir = Path(out_root)
    out_dir.mkdir(parents=True, exist_ok=True)
    write_spectrum_csv(published.spectrum, out_dir / "spectrum.csv")
    (out_dir / "spectrum.json").write_text(spectrum_to_json(published, indent=2), encoding='utf-8')
    plot_spectrum(published, save_path=out_dir / "spectrum.png")
    print("\nOutputs written under:", out_root)
    return 0


if __name__ == "__main__":
    sys.exit(main())
