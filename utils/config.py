"""
config.py - Configuration management for the arbiter bot.

This module provides utilities for:
- Loading configuration from YAML/JSON files
- Saving configuration back to disk
- Applying file sections onto the per-component config dataclasses
- Setting random seeds for reproducible runs
"""

import dataclasses
import json
import logging
import os
import random
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import yaml

logger = logging.getLogger(__name__)


def set_seed(seed: int) -> random.Random:
    """
    Set random seeds for reproducibility.

    Seeds the module-level NumPy and Python generators and returns a
    dedicated Random instance for the bot to draw cooldowns from.

    Args:
        seed: Random seed value

    Returns:
        A Random seeded with the same value
    """
    np.random.seed(seed)
    random.seed(seed)
    os.environ['PYTHONHASHSEED'] = str(seed)
    return random.Random(seed)


def load_config(path: str) -> Optional[Dict]:
    """
    Load configuration from a YAML or JSON file.

    Args:
        path: Path to configuration file

    Returns:
        Configuration dictionary, or None if the file is missing or unreadable
    """
    if not os.path.exists(path):
        logger.warning(f"Config file not found: {path}")
        return None

    try:
        with open(path, 'r') as f:
            if path.endswith('.yaml') or path.endswith('.yml'):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Error loading config {path}: {e}")
        return None

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.error(f"Config {path} must contain a mapping, got {type(data).__name__}")
        return None
    return data


def save_config(config: Dict, path: str) -> None:
    """
    Save configuration to a file.

    Args:
        config: Configuration dictionary
        path: Path to save to (.yaml/.yml or .json)
    """
    Path(path).parent.mkdir(parents=True, exist_ok=True)

    with open(path, 'w') as f:
        if path.endswith('.yaml') or path.endswith('.yml'):
            yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)
        else:
            json.dump(config, f, indent=2)


def apply_overrides(target: Any, values: Optional[Dict], section: str = "") -> Any:
    """
    Copy matching keys from a dict onto a config dataclass.

    Unknown keys are logged and ignored. Numeric fields accept any value
    that converts cleanly; anything else raises ValueError.

    Args:
        target: Dataclass instance to update in place
        values: Values from a config file section
        section: Section name used in messages

    Returns:
        The updated target
    """
    if not values:
        return target
    if not isinstance(values, dict):
        raise ValueError(f"Config section '{section}' must be a mapping")

    fields = {f.name: f for f in dataclasses.fields(target)}
    label = section or type(target).__name__
    for key, value in values.items():
        if key not in fields:
            logger.warning(f"Unknown config key '{label}.{key}' ignored")
            continue
        setattr(target, key, _coerce(getattr(target, key), value, f"{label}.{key}"))
    return target


def _coerce(current: Any, value: Any, name: str) -> Any:
    """Convert value to the type of the current default where that is unambiguous."""
    if value is None or current is None:
        return value
    try:
        if isinstance(current, bool):
            if isinstance(value, bool):
                return value
            if isinstance(value, str) and value.lower() in ('true', 'false'):
                return value.lower() == 'true'
            raise ValueError(f"expected a boolean, got {value!r}")
        if isinstance(current, int):
            return int(value)
        if isinstance(current, float):
            return float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid value for {name}: {e}") from e
    return value
