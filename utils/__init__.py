"""
Utilities module for the arbiter bot.

This module provides common utilities:
- Logging setup and per-session activity logs
- Configuration loading and overrides
- Random seed management
"""

from .logger import (
    setup_logging,
    SessionLogger,
    LogEntry
)
from .config import (
    set_seed,
    load_config,
    save_config,
    apply_overrides
)

__all__ = [
    'setup_logging',
    'SessionLogger',
    'LogEntry',
    'set_seed',
    'load_config',
    'save_config',
    'apply_overrides'
]
