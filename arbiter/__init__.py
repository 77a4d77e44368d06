"""
Behavior arbiter for an autonomous game actor.

This package provides:
- StateMachineEngine: named behaviors with guarded transitions
- AutomationController: pause/resume/stop of concurrent tasks
- Threshold-triggered tasks (farm, deposit, eat), travel and combat
- Bot: wiring plus the command surface
"""

from .errors import ArbiterError, ConfigError, NavigationError, NavigationCancelled, NavigationTimeout
from .scheduler import Scheduler, AsyncioScheduler, VirtualScheduler
from .sink_memory import SinkMemory
from .state_machine import (
    Behavior,
    BehaviorKind,
    EngineConfig,
    HistoryEntry,
    StateMachineEngine,
    Transition,
)
from .navigation import GuardedMovement
from .automation import AutomationController, AutomationTask
from .context import BotContext
from .policy import Outcome, PolicyConfig, PolicyPhase, ThresholdPolicyTask
from .deposit import DepositConfig, DepositTask
from .farm import FarmConfig, FarmTask
from .eat import EatConfig, EatTask
from .travel import TravelConfig, TravelMode, TravelTask
from .combat import CombatConfig, CombatMode, CombatTask
from .bot import Bot, BotConfig

__all__ = [
    'ArbiterError',
    'ConfigError',
    'NavigationError',
    'NavigationCancelled',
    'NavigationTimeout',
    'Scheduler',
    'AsyncioScheduler',
    'VirtualScheduler',
    'SinkMemory',
    'Behavior',
    'BehaviorKind',
    'EngineConfig',
    'HistoryEntry',
    'StateMachineEngine',
    'Transition',
    'GuardedMovement',
    'AutomationController',
    'AutomationTask',
    'BotContext',
    'Outcome',
    'PolicyConfig',
    'PolicyPhase',
    'ThresholdPolicyTask',
    'DepositConfig',
    'DepositTask',
    'FarmConfig',
    'FarmTask',
    'EatConfig',
    'EatTask',
    'TravelConfig',
    'TravelMode',
    'TravelTask',
    'CombatConfig',
    'CombatMode',
    'CombatTask',
    'Bot',
    'BotConfig',
]
