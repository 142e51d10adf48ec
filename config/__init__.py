from .config_loader import load_config, load_spectrometer_config, save_config
