"""
bot.py - Assembles and runs the behavior arbiter for one actor.

This module wires the pieces together:
- StateMachineEngine with the idle, farming, depositing, eating,
  moving, following, patrolling and fighting behaviors
- AutomationController managing the pausable tasks
- FarmTask, one DepositTask per configured item, EatTask, TravelTask,
  CombatTask
- A run loop with a runtime limit and periodic status logging
- The command surface (state changes, pause/resume/stop, per-task
  start/stop/trigger, goto/follow/patrol, status and stats)
"""

import asyncio
import dataclasses
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from integration.mc_client import (
    AttackController,
    InventorySource,
    MovementController,
    PerceptionSource,
    Position,
    WorldActions,
)
from utils.config import apply_overrides
from utils.logger import SessionLogger
from .automation import AutomationController, AutomationTask
from .combat import CombatConfig, CombatTask
from .context import BotContext
from .deposit import DepositConfig, DepositTask
from .eat import EatConfig, EatTask
from .errors import ConfigError
from .farm import FarmConfig, FarmTask
from .navigation import GuardedMovement
from .policy import ThresholdPolicyTask
from .scheduler import AsyncioScheduler, Scheduler
from .state_machine import EngineConfig, StateMachineEngine
from .travel import TravelConfig, TravelTask

logger = logging.getLogger(__name__)


def _default_deposits() -> List[DepositConfig]:
    return [
        DepositConfig(item="sugar_cane", check_interval=4.0),
        DepositConfig(item="wheat", check_interval=10.0),
    ]


@dataclass
class BotConfig:
    """Configuration for the bot."""
    # Runtime
    max_runtime_minutes: float = 0.0  # 0 = no limit
    log_interval_seconds: float = 30.0
    movement_timeout: float = 60.0
    seed: Optional[int] = None

    # Components
    engine: EngineConfig = field(default_factory=EngineConfig)
    farm: FarmConfig = field(default_factory=FarmConfig)
    deposits: List[DepositConfig] = field(default_factory=_default_deposits)
    eat: EatConfig = field(default_factory=EatConfig)
    combat: CombatConfig = field(default_factory=CombatConfig)
    travel: TravelConfig = field(default_factory=TravelConfig)

    SECTIONS = ("engine", "farm", "eat", "combat", "travel")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'BotConfig':
        """
        Build a config from a loaded file.

        Top-level scalars override runtime settings; 'engine', 'farm',
        'eat', 'combat' and 'travel' are sections; 'deposits' is a list
        of deposit sections, one per item.

        Raises:
            ConfigError: A value has the wrong type
        """
        config = cls()
        data = dict(data or {})
        try:
            for section in cls.SECTIONS:
                if section in data:
                    apply_overrides(getattr(config, section), data.pop(section), section)
            if "deposits" in data:
                entries = data.pop("deposits") or []
                if not isinstance(entries, list):
                    raise ValueError("'deposits' must be a list of sections")
                config.deposits = [
                    apply_overrides(DepositConfig(), entry, f"deposits[{i}]")
                    for i, entry in enumerate(entries)
                ]
            apply_overrides(config, data, "bot")
        except ValueError as e:
            raise ConfigError(str(e)) from e

        items = [d.item for d in config.deposits]
        if len(set(items)) != len(items):
            raise ConfigError(f"Duplicate deposit items: {items}")
        return config

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


class Bot:
    """
    Behavior arbiter for one actor.

    Usage:
        bot = Bot.from_client(client, BotConfig())
        await bot.run()
    """

    def __init__(
        self,
        config: BotConfig,
        perception: PerceptionSource,
        inventory: InventorySource,
        movement: MovementController,
        attacks: Optional[AttackController] = None,
        world: Optional[WorldActions] = None,
        scheduler: Optional[Scheduler] = None,
        rng: Optional[random.Random] = None,
        session: Optional[SessionLogger] = None
    ):
        """
        Initialize the bot and all of its components.

        Args:
            config: Bot configuration
            perception: World queries
            inventory: Inventory and containers
            movement: Raw movement collaborator; wrapped in GuardedMovement
            attacks: Attack execution for combat
            world: Block interaction for farming
            scheduler: Clock and timers; defaults to the asyncio loop
            rng: Random source for backoff windows
            session: Optional activity log
        """
        self.config = config
        self.scheduler = scheduler or AsyncioScheduler()
        if rng is None:
            rng = random.Random(config.seed) if config.seed is not None else random.Random()

        self.engine = StateMachineEngine(self.scheduler, config.engine)
        self.movement = GuardedMovement(movement, self.scheduler, config.movement_timeout)
        self.controller = AutomationController(self.engine, self.movement)
        self.session = session
        if session is not None:
            self.engine.add_listener(session.log_transition)

        self.ctx = BotContext(
            scheduler=self.scheduler,
            engine=self.engine,
            controller=self.controller,
            movement=self.movement,
            perception=perception,
            inventory=inventory,
            attacks=attacks,
            world=world,
            rng=rng,
            session=session,
        )

        self.farm = FarmTask(self.ctx, config.farm)
        self.deposits = [
            DepositTask(self.ctx, dc, name=f"deposit_{dc.item}", state_name=f"depositing_{dc.item}")
            for dc in config.deposits
        ]
        self.eat = EatTask(self.ctx, config.eat)
        self.travel = TravelTask(self.ctx, config.travel)
        self.combat = CombatTask(self.ctx, config.combat)

        self._tasks: Dict[str, AutomationTask] = {}
        for task in [self.farm, *self.deposits, self.eat, self.travel]:
            task.install()
            self.controller.register(task)
            self._tasks[task.name] = task
        # Combat stays out of pause_all so the actor keeps defending itself.
        self.combat.install()
        self._tasks[self.combat.name] = self.combat

        self._start_time: Optional[float] = None
        self._last_log_time = 0.0
        self._stop_event: Optional[asyncio.Event] = None

        logger.info(f"Bot initialized (tasks: {', '.join(self._tasks)})")

    @classmethod
    def from_client(cls, client: Any, config: Optional[BotConfig] = None, **kwargs) -> 'Bot':
        """
        Build a bot from a single client object implementing every collaborator.

        Damage and attacker-correlation callbacks are attached to the
        client when it exposes them.
        """
        bot = cls(
            config or BotConfig(),
            perception=client,
            inventory=client,
            movement=client,
            attacks=getattr(client, "attacks", None),
            world=client,
            **kwargs
        )
        if hasattr(client, "on_damaged"):
            client.on_damaged = bot.combat.on_damaged
        if hasattr(client, "on_attack_correlated"):
            client.on_attack_correlated = bot.combat.on_attack_correlated
        return bot

    # -- lifecycle ------------------------------------------------------

    async def start(self) -> None:
        """Start monitoring, auto-start tasks and the combat tick."""
        self._start_time = self.scheduler.now()
        self._last_log_time = self._start_time
        self.engine.start()
        for task in [self.farm, *self.deposits, self.eat]:
            if task.config.auto_start:
                await task.start()
        await self.combat.start()

    async def run(self, max_runtime_minutes: Optional[float] = None) -> None:
        """
        Main bot loop.

        Runs until request_stop() or the runtime limit is reached.
        """
        limit = self.config.max_runtime_minutes if max_runtime_minutes is None else max_runtime_minutes
        self._stop_event = asyncio.Event()
        logger.info("Starting arbiter bot...")
        logger.info(f"Max runtime: {f'{limit} minutes' if limit else 'unlimited'}")

        await self.start()
        try:
            while not self._stop_event.is_set():
                if self._check_runtime_limit(limit):
                    logger.info("Runtime limit reached, stopping...")
                    break
                self._periodic_log()
                await self.scheduler.sleep(1.0)
        except asyncio.CancelledError:
            logger.info("Interrupted")
            raise
        finally:
            await self.shutdown()

    def request_stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    async def shutdown(self) -> None:
        """Stop every task and the engine."""
        logger.info("Shutting down...")
        await self.controller.stop_all()
        self.combat.stop()
        self.engine.stop()
        if self.session is not None:
            self.session.close()
        logger.info(f"Final stats: {self.get_stats()}")

    def _check_runtime_limit(self, limit: Optional[float]) -> bool:
        if not limit or self._start_time is None:
            return False
        elapsed_minutes = (self.scheduler.now() - self._start_time) / 60
        return elapsed_minutes >= limit

    def _periodic_log(self) -> None:
        now = self.scheduler.now()
        if now - self._last_log_time < self.config.log_interval_seconds:
            return
        self._last_log_time = now
        pos = self.ctx.perception.position()
        vitals = self.ctx.perception.vitals()
        active = self.controller.active_names()
        logger.info(f"Status: state={self.engine.get_state()}, "
                    f"pos=({pos.x:.1f}, {pos.y:.1f}, {pos.z:.1f}), "
                    f"health={vitals.health:.0f}, food={vitals.food:.0f}, "
                    f"active={','.join(active) or 'none'}, "
                    f"runtime={self._runtime() / 60:.1f}min")

    def _runtime(self) -> float:
        if self._start_time is None:
            return 0.0
        return self.scheduler.now() - self._start_time

    # -- commands -------------------------------------------------------

    def set_state(self, name: str, force: bool = False) -> bool:
        return self.engine.set_state(name, force=force)

    def get_state(self) -> str:
        return self.engine.get_state()

    def get_history(self, n: int = 10) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self.engine.get_history(n)]

    async def pause_all(self) -> List[str]:
        return await self.controller.pause_all()

    async def resume_all(self) -> List[str]:
        return await self.controller.resume_all()

    async def stop_all(self) -> List[str]:
        return await self.controller.stop_all()

    def get_task(self, name: str) -> Optional[AutomationTask]:
        task = self._tasks.get(name)
        if task is None:
            logger.error(f"Unknown task '{name}' (known: {', '.join(self._tasks)})")
        return task

    async def start_task(self, name: str) -> bool:
        task = self.get_task(name)
        if task is None:
            return False
        await task.start()
        return True

    def stop_task(self, name: str) -> bool:
        task = self.get_task(name)
        if task is None:
            return False
        task.stop()
        return True

    async def trigger(self, name: str) -> bool:
        """Force one cycle of a policy task, bypassing threshold and cooldown."""
        task = self.get_task(name)
        if task is None:
            return False
        if not isinstance(task, ThresholdPolicyTask):
            logger.error(f"Task '{name}' cannot be triggered")
            return False
        return await task.trigger()

    async def goto(self, x: float, y: float, z: float, tolerance: Optional[float] = None) -> bool:
        """Walk to a point; True on arrival."""
        return await self.travel.goto(Position(x, y, z), tolerance)

    async def goto_waypoint(self, name: str) -> bool:
        return await self.travel.goto_waypoint(name)

    def follow(self, target: str) -> bool:
        return self.travel.follow(target)

    def patrol(self, waypoints: Optional[List[str]] = None) -> bool:
        return self.travel.patrol(waypoints)

    async def stop_travel(self) -> None:
        await self.travel.cancel()

    # -- observation ----------------------------------------------------

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.engine.get_state(),
            "engine": self.engine.status(),
            "controller": self.controller.status(),
            "tasks": {name: task.status() for name, task in self._tasks.items()},
        }

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "runtime_seconds": round(self._runtime(), 1),
            "state": self.engine.get_state(),
            "transitions": self.engine.status()["transition_count"],
            "harvested": self.farm.harvested,
            "deposited": {d.config.item: d.deposited for d in self.deposits},
            "eaten": self.eat.eaten,
            "arrivals": self.travel.arrivals,
            "engagements": self.combat.engagements,
            "retaliations": len(self.combat.retaliations),
        }
        if self.session is not None:
            stats["session"] = self.session.get_summary()
        return stats
