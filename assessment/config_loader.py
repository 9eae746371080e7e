"""
Configuration loader for engine parameters.

Handles loading and validating engine configuration files.
"""

import json
import sys
from pathlib import Path
from typing import Optional

from .models import EngineConfig


def default_config_path() -> Path:
    """Location of config.json next to the executable/script."""
    if getattr(sys, 'frozen', False):
        base_dir = Path(sys.executable).parent
    else:
        base_dir = Path(__file__).parent.parent
    return base_dir / "config.json"


def load_config(config_path: Optional[Path] = None) -> EngineConfig:
    """
    Load engine configuration from a JSON file.

    Args:
        config_path: Path to the configuration file. If None, looks for
                    'config.json' next to the executable/script.

    Returns:
        EngineConfig object with validated configuration

    Raises:
        ValueError: If config is invalid
    """
    if config_path is None:
        config_path = default_config_path()

    if not config_path.exists():
        print(f"Warning: Config file '{config_path}' not found. Using default configuration.")
        return EngineConfig.default()

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}")
    except OSError as e:
        raise ValueError(f"Error reading config file: {e}")

    if not isinstance(data, dict):
        raise ValueError("Config file must contain a JSON object")

    try:
        config = EngineConfig.from_dict(data)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid value in config file: {e}")

    is_valid, error_message = config.validate()
    if not is_valid:
        raise ValueError(f"Invalid configuration: {error_message}")

    return config


def create_sample_config(output_path: Path):
    """
    Create a sample configuration file for exam administrators.

    Args:
        output_path: Path where to save the sample config
    """
    sample_config = {
        "low_time_warning_seconds": 60,
        "tick_interval_seconds": 1.0,
        "visibility_debounce_ms": 500,
        "mcq_reject_after": 2,
        "sound_enabled": True,
        "execution_time_limit_ms": 10000,
        "runtime_init_timeout_seconds": 30,
        "node_executable": None,
        "store_dir": "exam_data",
        "time_server_url": None,
        "language": "en",
        "_comment": "This is a sample engine configuration. Adjust values as needed.",
        "_instructions": {
            "low_time_warning_seconds": "Remaining seconds at which the one-time low-time warning fires",
            "tick_interval_seconds": "Countdown tick period in seconds",
            "visibility_debounce_ms": "Duplicate tab-switch events inside this window count once (minimum 500)",
            "mcq_reject_after": "Number of violations that rejects an MCQ exam",
            "sound_enabled": "Play audible cues for warnings",
            "execution_time_limit_ms": "Wall-clock cap per test case when the question sets none",
            "runtime_init_timeout_seconds": "How long submission waits for an interpreter to become ready",
            "node_executable": "Path to node for JavaScript questions (null searches PATH)",
            "store_dir": "Directory where submission documents are written",
            "time_server_url": "URL whose HTTP Date header is the trusted clock (null uses the local clock)",
            "language": "Interface language: en or fr"
        }
    }

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(sample_config, f, indent=2)

    print(f"Sample configuration created at: {output_path}")
