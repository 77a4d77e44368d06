"""
errors.py - Exception types for the behavior arbitration core.

Only navigation errors cross component boundaries at runtime; policy
tasks catch them at the iteration boundary and count them as no
progress.
"""


class ArbiterError(Exception):
    """Base class for arbiter errors."""


class ConfigError(ArbiterError):
    """Invalid configuration value or file."""


class NavigationError(ArbiterError):
    """A movement goal did not complete."""


class NavigationCancelled(NavigationError):
    """The goal was replaced by a newer goal or cleared by stop()."""


class NavigationTimeout(NavigationError):
    """The goal did not complete within its time budget."""
