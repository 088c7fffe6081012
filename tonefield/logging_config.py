"""Centralized logging configuration for tonefield.

This module provides a consistent way to configure logging across the package.
Library code never calls ``setup_logging`` itself; applications and the replay
harness do.
"""

import logging
import sys
from typing import Optional

# Log levels for different modules
MODULE_LOG_LEVELS = {
    # Core modules
    "tonefield": logging.INFO,
    "tonefield.audio": logging.INFO,
    "tonefield.audio.pitch_detector": logging.INFO,
    "tonefield.audio.harmonic_analyzer": logging.INFO,  # DEBUG shows octave redirects
    "tonefield.audio.precision_detector": logging.INFO,
    "tonefield.audio.spectral_matcher": logging.INFO,
    "tonefield.detection": logging.INFO,
    "tonefield.core": logging.INFO,
    "tonefield.services": logging.INFO,
    "tonefield.scripts": logging.INFO,
    # Libraries/third-party
    "soundfile": logging.ERROR,
    # Root logger
    "": logging.ERROR,
}

# Shared console handler
_console_handler: Optional[logging.Handler] = None


def setup_logging(level: Optional[str] = None) -> None:
    """Set up logging configuration for the application.

    Args:
        level: If provided, override all 'tonefield' log levels with this level (e.g., "DEBUG").
    """
    global _console_handler

    # Create a single, shared console handler if it doesn't exist
    if _console_handler is None:
        _console_handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        _console_handler.setFormatter(formatter)

    # Determine log levels
    log_levels = MODULE_LOG_LEVELS.copy()
    if level:
        numeric_level = logging.getLevelName(level.upper())
        if isinstance(numeric_level, int):
            for module_name in log_levels:
                if module_name.startswith("tonefield"):
                    log_levels[module_name] = numeric_level
        else:
            logging.getLogger(__name__).error(f"Invalid log level: {level}")

    # Apply module-specific levels; child loggers propagate up to these
    for module_name, module_level in log_levels.items():
        logger = logging.getLogger(module_name)
        logger.setLevel(module_level)

        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
        if module_name in ("", "tonefield", "soundfile"):
            logger.addHandler(_console_handler)
            logger.propagate = False

    logging.getLogger("tonefield").info("Logging configuration complete")
