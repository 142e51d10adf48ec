import yaml
from pathlib import Path
from typing import Dict, Any, Optional

from spectro_cam.core.spectrometer_config import SpectrometerConfig

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load the raw YAML configuration mapping.

    Args:
        config_path: Optional explicit path to the configuration file. If None,
                     load `config.yaml` from the `config` package directory.

    Returns:
        A dictionary with one entry per pipeline section.
    """
    path = DEFAULT_CONFIG_PATH if config_path is None else Path(config_path)

    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found at: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f) or {}

    return config


def load_spectrometer_config(config_path: Optional[str] = None) -> SpectrometerConfig:
    """Load and validate a configuration file into a snapshot (ConfigValidationError on bad values)."""
    return SpectrometerConfig.from_dict(load_config(config_path))


def save_config(config: SpectrometerConfig, config_path: str) -> Path:
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(config.to_dict(), f, sort_keys=False)
    return path
