"""
deposit.py - Deposit carried items into nearby containers.

DepositTask watches the count of one item kind. Once the count reaches
the threshold it pauses every other automation task, walks to the chest
area and transfers items into the nearest container that is not known
to be full, until the count drops below the threshold. Afterwards the
paused tasks are resumed in their original order.

A container is remembered as full for a while when it positively
reports no room for the item, or when two consecutive attempts against
it move nothing. Transfer errors and silent stalls are counted
separately; both feed the same full-container rule.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from integration.mc_client import Position, Sink
from .context import BotContext
from .policy import Outcome, PolicyConfig, ThresholdPolicyTask

logger = logging.getLogger(__name__)


@dataclass
class DepositConfig(PolicyConfig):
    """Configuration for a deposit task."""
    item: str = "sugar_cane"
    sink_names: List[str] = field(default_factory=lambda: ["chest", "trapped_chest", "barrel"])
    chest_area: Optional[List[float]] = None  # [x, y, z] center of the chest area
    area_radius: float = 5.0
    sink_radius: float = 8.0
    sink_reach: float = 2.0
    full_after: int = 2
    settle_delay: float = 0.3


@dataclass
class SinkStrikes:
    """Consecutive failed attempts against one container."""
    key: str
    transfer_failures: int = 0
    stalls: int = 0

    @property
    def total(self) -> int:
        return self.transfer_failures + self.stalls


class DepositTask(ThresholdPolicyTask):
    """
    Threshold-triggered deposit of one item kind.

    Usage:
        deposit = DepositTask(context, DepositConfig(item="wheat", chest_area=[0, 64, 10]))
        deposit.install()
        controller.register(deposit)
        await deposit.start()
    """

    def __init__(
        self,
        context: BotContext,
        config: Optional[DepositConfig] = None,
        name: str = "deposit",
        state_name: str = "depositing"
    ):
        config = config or DepositConfig()
        super().__init__(name, state_name, context, config)
        self.config: DepositConfig = config
        self.deposited = 0
        self.transfer_failures = 0
        self.stalls = 0
        self._strikes: Optional[SinkStrikes] = None
        self._paused: List[str] = []

    # -- measurement ----------------------------------------------------

    def measure(self) -> int:
        return self.ctx.inventory.count(self.config.item)

    def work_remaining(self, forced: bool) -> bool:
        count = self.measure()
        if forced:
            return count > 0
        return count >= self.config.threshold

    # -- control --------------------------------------------------------

    async def acquire(self) -> bool:
        controller = self.ctx.controller
        if not controller.claim(self.name):
            logger.info(f"{self.name}: skipped, '{controller.exclusive_holder}' has control")
            return False
        try:
            self._paused = await controller.pause_all(exclude=[self.name])
        except Exception:
            controller.release(self.name)
            raise
        self.ctx.engine.set_state(self.state_name, force=True)
        logger.info(f"{self.name}: depositing {self.measure()} {self.config.item} "
                    f"(paused: {', '.join(self._paused) or 'none'})")
        return True

    async def release(self) -> None:
        self.ctx.controller.release(self.name)
        self._strikes = None
        await self.ctx.controller.resume_all()
        self._paused = []

    # -- iteration ------------------------------------------------------

    def _area_center(self) -> Optional[Position]:
        if not self.config.chest_area:
            return None
        x, y, z = self.config.chest_area
        return Position(float(x), float(y), float(z))

    def find_sink(self) -> Optional[Sink]:
        """Nearest container in the chest area that is not remembered as full."""
        names = set(self.config.sink_names)

        def eligible(obj) -> bool:
            return isinstance(obj, Sink) and obj.name in names and obj.key not in self.memory

        return self.ctx.perception.find_nearest(eligible, self.config.sink_radius, self._area_center())

    async def run_iteration(self) -> Outcome:
        center = self._area_center()
        if center is not None:
            await self.ctx.movement.goto(center, tolerance=self.config.area_radius)

        sink = self.find_sink()
        if sink is None:
            logger.warning(f"{self.name}: no eligible container in the chest area")
            return Outcome.NO_TARGET

        if sink.reports_full_for(self.config.item):
            self.mark_full(sink, "reports no free space")
            return Outcome.NO_PROGRESS

        await self.ctx.movement.goto(sink.position, tolerance=self.config.sink_reach)

        before = self.measure()
        if before <= 0:
            return Outcome.DONE

        try:
            await self.ctx.inventory.transfer(sink, self.config.item, before)
        except Exception as e:
            self.transfer_failures += 1
            logger.warning(f"{self.name}: transfer into {sink.key} failed: {e}")
            self._strike(sink, transfer_failed=True)
            return Outcome.NO_PROGRESS

        await self.ctx.scheduler.sleep(self.config.settle_delay)
        after = self.measure()
        if after < before:
            moved = before - after
            self.deposited += moved
            self._strikes = None
            logger.info(f"{self.name}: deposited {moved} {self.config.item} into {sink.key} "
                        f"({after} left)")
            return Outcome.PROGRESS

        self.stalls += 1
        logger.info(f"{self.name}: nothing moved into {sink.key}")
        self._strike(sink, transfer_failed=False)
        return Outcome.NO_PROGRESS

    def _strike(self, sink: Sink, transfer_failed: bool) -> None:
        if self._strikes is None or self._strikes.key != sink.key:
            self._strikes = SinkStrikes(sink.key)
        if transfer_failed:
            self._strikes.transfer_failures += 1
        else:
            self._strikes.stalls += 1

        if self._strikes.total >= self.config.full_after:
            reason = (f"{self._strikes.stalls} stalls, "
                      f"{self._strikes.transfer_failures} failed transfers")
            self.mark_full(sink, reason)

    def mark_full(self, sink: Sink, reason: str) -> None:
        self.memory.mark(sink.key)
        self._strikes = None
        logger.warning(f"{self.name}: container {sink.key} marked full ({reason})")

    def status(self) -> Dict[str, Any]:
        status = super().status()
        status.update({
            "item": self.config.item,
            "carried": self.measure(),
            "deposited": self.deposited,
            "transfer_failures": self.transfer_failures,
            "stalls": self.stalls,
            "full_sinks": self.memory.keys(),
        })
        return status
