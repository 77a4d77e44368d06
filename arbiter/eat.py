"""
eat.py - Keep the actor fed.

EatTask checks food and health every couple of seconds. When food drops
below the threshold, or health drops below the panic level, it takes
control, stops its named conflicting tasks directly (farming and travel
by default), eats the best food carried and restarts whatever it stopped.
It never interrupts a task that already holds exclusive control, such
as a deposit run.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from integration.mc_client import Item
from .context import BotContext
from .policy import Outcome, PolicyConfig, ThresholdPolicyTask

logger = logging.getLogger(__name__)

FOOD_PRIORITY = [
    'golden_carrot', 'cooked_beef', 'cooked_porkchop', 'cooked_mutton',
    'cooked_chicken', 'cooked_rabbit', 'baked_potato', 'bread',
    'pumpkin_pie', 'beetroot_soup', 'mushroom_stew', 'rabbit_stew',
    'carrot', 'sweet_berries', 'apple',
]

EDIBLE = [
    'apple', 'golden_apple', 'enchanted_golden_apple', 'golden_carrot', 'carrot',
    'potato', 'baked_potato', 'beetroot', 'beetroot_soup', 'bread', 'cake',
    'cookie', 'pumpkin_pie', 'mushroom_stew', 'rabbit_stew', 'suspicious_stew',
    'chorus_fruit', 'dried_kelp', 'sweet_berries', 'glow_berries', 'melon_slice',
    'cooked_beef', 'beef', 'cooked_porkchop', 'porkchop', 'cooked_mutton', 'mutton',
    'cooked_chicken', 'chicken', 'cooked_rabbit', 'rabbit', 'cooked_cod', 'cod',
    'cooked_salmon', 'salmon', 'tropical_fish', 'pufferfish',
]

FOOD_BLACKLIST = ['rotten_flesh', 'spider_eye', 'pufferfish', 'poisonous_potato', 'chicken']


@dataclass
class EatConfig(PolicyConfig):
    """Configuration for the eat task."""
    check_interval: float = 2.0
    threshold: int = 14  # eat when food < threshold
    health_panic: float = 10.0  # or when health < health_panic
    max_iterations: int = 3
    cooldown_min: float = 30.0
    cooldown_max: float = 60.0
    retry_delay: float = 0.5
    settle_delay: float = 0.2
    conflicts: List[str] = field(default_factory=lambda: ["farm", "travel"])
    priority: List[str] = field(default_factory=lambda: list(FOOD_PRIORITY))
    edible: List[str] = field(default_factory=lambda: list(EDIBLE))
    blacklist: List[str] = field(default_factory=lambda: list(FOOD_BLACKLIST))


class EatTask(ThresholdPolicyTask):
    """Feeding task."""

    def __init__(self, context: BotContext, config: Optional[EatConfig] = None, name: str = "eat"):
        config = config or EatConfig()
        super().__init__(name, "eating", context, config)
        self.config: EatConfig = config
        self.eaten = 0
        self._stopped: List[str] = []

    def measure(self) -> float:
        return self.ctx.perception.vitals().food

    def needs_food(self) -> bool:
        vitals = self.ctx.perception.vitals()
        return vitals.food < self.config.threshold or vitals.health < self.config.health_panic

    def should_trigger(self) -> bool:
        holder = self.ctx.controller.exclusive_holder
        if holder is not None and holder != self.name:
            return False
        return self.needs_food()

    def work_remaining(self, forced: bool) -> bool:
        if forced:
            return self.measure() < 20
        return self.needs_food()

    def pick_food(self) -> Optional[Item]:
        """Best food carried: priority list first, then anything edible."""
        items = self.ctx.inventory.items()
        by_name = {}
        for item in items:
            if item.count > 0:
                by_name.setdefault(item.name, item)

        for name in self.config.priority:
            if name in by_name and name not in self.config.blacklist:
                return by_name[name]

        edible = set(self.config.edible)
        blacklist = set(self.config.blacklist)
        for item in items:
            if item.count > 0 and item.name in edible and item.name not in blacklist:
                return item
        return None

    async def acquire(self) -> bool:
        if not await super().acquire():
            return False
        self._stopped = []
        for name in self.config.conflicts:
            task = self.ctx.controller.get(name)
            if task is None or not task.is_active():
                continue
            try:
                task.stop()
            except Exception as e:
                logger.error(f"{self.name}: failed to stop '{name}': {e}", exc_info=True)
            self._stopped.append(name)
        try:
            self.ctx.movement.stop()
        except Exception as e:
            logger.error(f"{self.name}: failed to stop movement: {e}", exc_info=True)
        return True

    async def release(self) -> None:
        await super().release()
        stopped, self._stopped = self._stopped, []
        for name in stopped:
            task = self.ctx.controller.get(name)
            if task is None:
                continue
            try:
                await task.start()
            except Exception as e:
                logger.error(f"{self.name}: failed to restart '{name}': {e}", exc_info=True)

    async def run_iteration(self) -> Outcome:
        food = self.pick_food()
        if food is None:
            logger.warning(f"{self.name}: no edible food in inventory")
            return Outcome.NO_TARGET

        before = self.measure()
        await self.ctx.inventory.equip(food, "hand")
        await self.ctx.scheduler.sleep(self.config.settle_delay)
        await self.ctx.inventory.consume()
        await self.ctx.scheduler.sleep(self.config.settle_delay)

        after = self.measure()
        if after > before:
            self.eaten += 1
            logger.info(f"{self.name}: ate {food.name} (food {before:.0f} -> {after:.0f})")
            return Outcome.PROGRESS
        logger.info(f"{self.name}: eating {food.name} did not restore food")
        return Outcome.NO_PROGRESS

    def status(self) -> Dict[str, Any]:
        vitals = self.ctx.perception.vitals()
        status = super().status()
        status.update({"food": vitals.food, "health": vitals.health, "eaten": self.eaten})
        return status
