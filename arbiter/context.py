"""
context.py - Collaborator bundle shared by the arbiter components.

Every task receives one BotContext at construction instead of reaching
for a global client, so several independent bots (or a bot built from
fakes in a test) can coexist in one process.
"""

import random
from dataclasses import dataclass, field
from typing import Optional

from integration.mc_client import (
    AttackController,
    InventorySource,
    PerceptionSource,
    WorldActions,
)
from utils.logger import SessionLogger
from .automation import AutomationController
from .navigation import GuardedMovement
from .scheduler import Scheduler
from .state_machine import StateMachineEngine


@dataclass
class BotContext:
    """Everything a task needs to observe and act on the world."""
    scheduler: Scheduler
    engine: StateMachineEngine
    controller: AutomationController
    movement: GuardedMovement
    perception: PerceptionSource
    inventory: InventorySource
    attacks: Optional[AttackController] = None
    world: Optional[WorldActions] = None
    rng: random.Random = field(default_factory=random.Random)
    session: Optional[SessionLogger] = None

    def now(self) -> float:
        return self.scheduler.now()
