"""Configuration management for tonefield components."""

from typing import Dict, Any, Optional
import copy
import json
import os
from pathlib import Path

from ..logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIGS: Dict[str, Dict[str, Any]] = {
    "pitch_detector": {
        "yin_threshold": 0.06,
        "rms_onset": 0.005,
        "rms_sustain": 0.003,
        "min_frequency": 55.0,
        "max_frequency": 4200.0,
    },
    "harmonic_analyzer": {
        "search_cents": 80.0,
        "noise_floor_db": -65.0,
        "sub_octave_window_db": 6.0,
        "sub_third_window_db": 6.0,
        "confirm_window_db": 24.0,
        "forward_confirmation": False,
        "rescan_min_hz": 55.0,
        "rescan_max_hz": 1200.0,
    },
    "precision_detector": {
        "fft_size": 4096,
        "fundamental_window_cents": 20.0,
        "octave_window_cents": 15.0,
        "compound_fifth_window_cents": 15.0,
        "noise_floor_rms": 0.005,
        "noise_floor_db": -65.0,
        "use_phase": True,
    },
    "stability": {
        "ema_alpha": 0.7,
        "stable_frame_threshold": 30,
        "null_grace_frames": 3,
        "fundamental_tolerance_cents": 2.0,
        "octave_tolerance_cents": 2.0,
        "compound_fifth_tolerance_cents": 5.0,
        "emit_interval_s": 0.05,
    },
    "spectral_matcher": {
        "min_midi": 50,
        "max_midi": 84,
        "search_cents": 50.0,
        "noise_floor_db": -65.0,
        "prominence_range_db": 45.0,
        "min_score": 0.3,
    },
    "identify": {
        "stable_frames_required": 20,
        "rms_floor": 0.003,
    },
}


class ConfigManager:
    """Configuration manager for tonefield components."""

    def __init__(self, config_dir: Optional[str] = None, persist: bool = True):
        """Initialize the configuration manager.

        Args:
            config_dir: Directory to store configuration files, or None to use default
            persist: If False, nothing is read from or written to disk
        """
        if config_dir is None:
            # Use ~/.config/tonefield by default
            home = os.path.expanduser("~")
            config_dir = os.path.join(home, ".config", "tonefield")

        self.config_dir = Path(config_dir)
        self.persist = persist
        if self.persist:
            self.config_dir.mkdir(parents=True, exist_ok=True)

        self.default_configs = copy.deepcopy(DEFAULT_CONFIGS)

        # Load existing configurations or create default ones
        self.configs = {}
        for config_name, default_config in self.default_configs.items():
            self.configs[config_name] = self.load_config(config_name, default_config)

    def load_config(self, name: str, default_config: Dict[str, Any]) -> Dict[str, Any]:
        """Load configuration from file or create default.

        Args:
            name: Configuration name
            default_config: Default configuration to use if file doesn't exist

        Returns:
            Configuration dictionary
        """
        if not self.persist:
            return default_config.copy()

        config_file = self.config_dir / f"{name}.json"

        if config_file.exists():
            try:
                with open(config_file, "r") as f:
                    config = json.load(f)
                if not isinstance(config, dict):
                    raise ValueError("top-level JSON value is not an object")
                logger.info(f"Loaded configuration from {config_file}")

                # Ensure all default keys are present
                for key, value in default_config.items():
                    if key not in config:
                        config[key] = value

                return config
            except (OSError, ValueError) as e:
                logger.error(f"Error loading configuration from {config_file}: {e}")
                return default_config.copy()
        else:
            # Create default configuration
            config = default_config.copy()
            self.save_config(name, config)
            return config

    def save_config(self, name: str, config: Dict[str, Any]) -> bool:
        """Save configuration to file.

        Args:
            name: Configuration name
            config: Configuration dictionary

        Returns:
            True if saved successfully, False otherwise
        """
        if not self.persist:
            return True

        config_file = self.config_dir / f"{name}.json"

        try:
            with open(config_file, "w") as f:
                json.dump(config, f, indent=2)
            logger.info(f"Saved configuration to {config_file}")
            return True
        except (OSError, TypeError) as e:
            logger.error(f"Error saving configuration to {config_file}: {e}")
            return False

    def get_config(self, name: str) -> Dict[str, Any]:
        """Get configuration by name.

        Args:
            name: Configuration name

        Returns:
            Configuration dictionary (a copy; empty for unknown names)
        """
        return self.configs.get(name, {}).copy()

    def get(self, name: str, key: str, default: Any = None) -> Any:
        """Get a single configuration value."""
        return self.configs.get(name, {}).get(key, default)

    def update_config(self, name: str, updates: Dict[str, Any]) -> bool:
        """Update configuration and save to file.

        Args:
            name: Configuration name
            updates: Dictionary of updates to apply

        Returns:
            True if updated and saved successfully, False otherwise
        """
        if name not in self.configs:
            logger.error(f"Unknown configuration: {name}")
            return False

        # Update configuration
        self.configs[name].update(updates)

        # Save to file
        return self.save_config(name, self.configs[name])

    def reset_config(self, name: str) -> bool:
        """Reset configuration to default.

        Args:
            name: Configuration name

        Returns:
            True if reset successfully, False otherwise
        """
        if name not in self.default_configs:
            logger.error(f"Unknown configuration: {name}")
            return False

        # Reset to default
        self.configs[name] = self.default_configs[name].copy()

        # Save to file
        return self.save_config(name, self.configs[name])
