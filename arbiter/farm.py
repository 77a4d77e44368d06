"""
farm.py - Harvest mature crops in the farm area.

FarmTask runs short harvest cycles whenever enough mature crops are in
range. Each cycle harvests a few crops, replants them and checks that
the carried crop count actually went up. Crops that were just harvested
are skipped for a few seconds so the same block is not revisited while
its drops are still settling.

The task yields as soon as another task holds exclusive control.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from integration.mc_client import Block, Position
from .context import BotContext
from .policy import Outcome, PolicyConfig, ThresholdPolicyTask

logger = logging.getLogger(__name__)


@dataclass
class FarmConfig(PolicyConfig):
    """Configuration for the farm task."""
    check_interval: float = 3.0
    threshold: int = 1  # mature crops in range
    max_iterations: int = 3  # crops per cycle
    cooldown_min: float = 30.0
    cooldown_max: float = 60.0
    retry_delay: float = 0.5
    memory_ttl: float = 5.0
    crop: str = "wheat"
    mature_age: int = 7
    harvest_item: str = "wheat"
    farm_area: Optional[List[float]] = None  # [x, y, z]; defaults to the actor's position
    farm_radius: float = 32.0
    reach: float = 2.0
    replant: bool = True
    collect_delay: float = 0.5


class FarmTask(ThresholdPolicyTask):
    """
    Crop harvesting task.

    While enabled the engine sits in the 'farming' state; it returns to
    idle when the task is stopped.
    """

    holds_state_during_cycle = False

    def __init__(self, context: BotContext, config: Optional[FarmConfig] = None, name: str = "farm"):
        config = config or FarmConfig()
        super().__init__(name, "farming", context, config)
        self.config: FarmConfig = config
        self.harvested = 0
        self.replant_misses = 0

    def install(self) -> None:
        engine = self.ctx.engine
        engine.register_behavior(self.state_name)
        engine.create_transition(
            engine.idle_state, self.state_name,
            guard=lambda: self.enabled,
            name=f"idle_to_{self.state_name}"
        )
        engine.create_transition(
            self.state_name, engine.idle_state,
            guard=lambda: not self.enabled,
            name=f"{self.state_name}_to_idle"
        )

    async def on_start(self) -> None:
        self.ctx.engine.set_state(self.state_name)

    def on_stop(self) -> None:
        engine = self.ctx.engine
        if engine.is_in_state(self.state_name):
            engine.set_state(engine.idle_state)

    # -- measurement ----------------------------------------------------

    def _origin(self) -> Optional[Position]:
        if not self.config.farm_area:
            return None
        x, y, z = self.config.farm_area
        return Position(float(x), float(y), float(z))

    def _is_harvestable(self, obj) -> bool:
        return (isinstance(obj, Block)
                and obj.name == self.config.crop
                and obj.metadata >= self.config.mature_age
                and obj.key not in self.memory)

    def mature_crops(self) -> List[Block]:
        return self.ctx.perception.find_all(self._is_harvestable, self.config.farm_radius, self._origin())

    def measure(self) -> int:
        return len(self.mature_crops())

    def should_trigger(self) -> bool:
        if not self._has_control():
            return False
        return super().should_trigger()

    def work_remaining(self, forced: bool) -> bool:
        return self.measure() > 0

    def may_continue(self) -> bool:
        if self._has_control():
            return True
        logger.info(f"{self.name}: yielding to '{self.ctx.controller.exclusive_holder}'")
        return False

    def _has_control(self) -> bool:
        holder = self.ctx.controller.exclusive_holder
        return holder is None or holder == self.name

    async def acquire(self) -> bool:
        return self._has_control()

    async def release(self) -> None:
        pass

    # -- iteration ------------------------------------------------------

    async def run_iteration(self) -> Outcome:
        crop = self.ctx.perception.find_nearest(
            self._is_harvestable, self.config.farm_radius, self._origin()
        )
        if crop is None:
            return Outcome.NO_TARGET

        before = self.ctx.inventory.count(self.config.harvest_item)
        await self.ctx.movement.goto(crop.position, tolerance=self.config.reach)

        self.memory.mark(crop.key)
        await self.ctx.world.harvest(crop)
        if self.config.replant and not await self.ctx.world.replant(crop):
            self.replant_misses += 1
            logger.debug(f"{self.name}: could not replant {crop.key}")

        await self.ctx.scheduler.sleep(self.config.collect_delay)
        after = self.ctx.inventory.count(self.config.harvest_item)
        if after > before:
            self.harvested += after - before
            logger.debug(f"{self.name}: harvested {crop.key} (+{after - before})")
            return Outcome.PROGRESS
        logger.info(f"{self.name}: harvest at {crop.key} yielded nothing")
        return Outcome.NO_PROGRESS

    def status(self) -> Dict[str, Any]:
        status = super().status()
        status.update({
            "crop": self.config.crop,
            "harvested": self.harvested,
            "replant_misses": self.replant_misses,
        })
        return status
