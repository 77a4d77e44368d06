"""
policy.py - Threshold-triggered policy tasks.

A policy task watches a measured quantity (items carried, mature crops,
food level) on a fixed interval. When the quantity crosses its threshold
the task takes control of the actor and runs a bounded cycle of
iterations until the work is done, the task is stopped, or the iteration
cap is reached.

Phases:
- IDLE: waiting for the periodic check
- TRIGGERED: threshold crossed, acquiring control
- BUSY: running iterations
- SUCCESS: the cycle finished its work
- BACKOFF: no eligible target was found repeatedly; periodic checks are
  suppressed until the cooldown ends (a forced trigger still runs)
"""

import asyncio
import logging
from abc import abstractmethod
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, Optional

from .automation import AutomationTask
from .context import BotContext
from .errors import NavigationCancelled, NavigationError
from .sink_memory import SinkMemory

logger = logging.getLogger(__name__)


class PolicyPhase(Enum):
    """Lifecycle phase of a policy task."""
    IDLE = auto()
    TRIGGERED = auto()
    BUSY = auto()
    SUCCESS = auto()
    BACKOFF = auto()


class Outcome(Enum):
    """Result of one iteration."""
    PROGRESS = auto()
    NO_PROGRESS = auto()
    NO_TARGET = auto()
    DONE = auto()


@dataclass
class PolicyConfig:
    """Settings shared by every threshold-triggered task."""
    auto_start: bool = False
    check_interval: float = 4.0
    threshold: int = 64
    max_iterations: int = 20
    max_no_target: int = 3
    cooldown_min: float = 300.0
    cooldown_max: float = 600.0
    retry_delay: float = 1.0
    memory_ttl: float = 300.0


@dataclass
class PolicyStats:
    """Counters kept across cycles."""
    cycles: int = 0
    iterations: int = 0
    progress: int = 0
    no_progress: int = 0
    no_target: int = 0
    failures: int = 0
    backoffs: int = 0
    last_cycle_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


class ThresholdPolicyTask(AutomationTask):
    """
    Base class for threshold-triggered tasks.

    Subclasses supply measurement, trigger and iteration logic; this
    class owns the periodic check, the busy flag, the backoff window and
    the acquire/release bracket around each cycle.

    Stopping is cooperative: stop() cancels the periodic check and asks
    any running cycle to finish at its next iteration boundary. The
    cycle always clears its busy flag and releases control on exit.
    """

    # Whether the engine sits in state_name only while a cycle runs.
    holds_state_during_cycle = True

    def __init__(self, name: str, state_name: str, context: BotContext, config: PolicyConfig):
        """
        Args:
            name: Task name used by the automation controller
            state_name: Engine behavior shown while the task works
            context: Shared collaborators
            config: Task settings
        """
        self.name = name
        self.state_name = state_name
        self.ctx = context
        self.config = config

        self.enabled = False
        self.busy = False
        self.phase = PolicyPhase.IDLE
        self.cooldown_until = 0.0
        self.memory = SinkMemory(config.memory_ttl, context.scheduler.now, label=f"{name} memory")
        self.stats = PolicyStats()

        self._check_job: Optional[asyncio.Task] = None
        self._cycle: Optional[asyncio.Task] = None
        self._stop_requested = False

    # -- subclass hooks -------------------------------------------------

    @abstractmethod
    def measure(self) -> float:
        """Current value of the watched quantity."""

    def threshold_reached(self, value: float) -> bool:
        return value >= self.config.threshold

    def should_trigger(self) -> bool:
        """Whether an unforced check should start a cycle."""
        return self.threshold_reached(self.measure())

    @abstractmethod
    def work_remaining(self, forced: bool) -> bool:
        """Whether the cycle should run another iteration."""

    @abstractmethod
    async def run_iteration(self) -> Outcome:
        """One attempt at the task's work."""

    def may_continue(self) -> bool:
        """Checked before each iteration in addition to the stop flag."""
        return True

    async def acquire(self) -> bool:
        """
        Take control of the actor for a cycle.

        Returns:
            False to skip the cycle
        """
        if not self.ctx.controller.claim(self.name):
            logger.info(f"{self.name}: skipped, '{self.ctx.controller.exclusive_holder}' "
                        f"has control")
            return False
        if self.holds_state_during_cycle:
            self.ctx.engine.set_state(self.state_name, force=True)
        return True

    async def release(self) -> None:
        self.ctx.controller.release(self.name)

    async def on_start(self) -> None:
        pass

    def on_stop(self) -> None:
        pass

    # -- engine wiring --------------------------------------------------

    def install(self) -> None:
        """Register this task's behavior and its edge back to idle."""
        engine = self.ctx.engine
        engine.register_behavior(self.state_name)
        engine.create_transition(
            self.state_name, engine.idle_state,
            guard=lambda: not self.busy,
            name=f"{self.state_name}_to_idle"
        )

    # -- AutomationTask -------------------------------------------------

    def is_active(self) -> bool:
        return self.enabled

    async def start(self) -> None:
        if self.enabled:
            return
        self.enabled = True
        self._stop_requested = False
        self._check_job = self.ctx.scheduler.every(
            self.config.check_interval, self._on_check_timer, name=f"{self.name}-check"
        )
        await self.on_start()
        logger.info(f"{self.name} started (threshold={self.config.threshold}, "
                    f"every {self.config.check_interval}s)")

    def stop(self) -> None:
        was_enabled = self.enabled
        self.enabled = False
        if self.busy:
            self._stop_requested = True
        if self._check_job is not None:
            self._check_job.cancel()
            self._check_job = None
        if was_enabled:
            self.on_stop()
            logger.info(f"{self.name} stopped")

    async def trigger(self) -> bool:
        """Run a cycle now, ignoring the threshold and any cooldown."""
        return await self.check(force=True)

    def _on_check_timer(self) -> None:
        if self.busy or (self._cycle is not None and not self._cycle.done()):
            return
        # Cycles run outside the periodic job; stop() only cancels the job.
        self._cycle = self.ctx.scheduler.spawn(self._periodic_check(), name=f"{self.name}-cycle")

    async def _periodic_check(self) -> None:
        try:
            await self.check()
        except Exception as e:
            logger.error(f"{self.name}: check failed: {e}", exc_info=True)

    # -- cycle ----------------------------------------------------------

    def in_cooldown(self) -> bool:
        return self.ctx.scheduler.now() < self.cooldown_until

    async def check(self, force: bool = False) -> bool:
        """
        Evaluate the trigger and run a cycle if it fires.

        Args:
            force: Skip the threshold and cooldown checks

        Returns:
            True if a cycle ran
        """
        if self.busy:
            logger.debug(f"{self.name}: check skipped, cycle already running")
            return False

        if not force:
            if not self.enabled:
                return False
            if self.in_cooldown():
                remaining = self.cooldown_until - self.ctx.scheduler.now()
                logger.debug(f"{self.name}: in cooldown for another {remaining:.0f}s")
                return False
            if not self.should_trigger():
                return False

        self.busy = True
        self._stop_requested = False
        self.phase = PolicyPhase.TRIGGERED
        acquired = False
        iterations = 0
        progress = 0
        backed_off = False
        try:
            acquired = await self.acquire()
            if not acquired:
                return False
            self.phase = PolicyPhase.BUSY
            logger.info(f"{self.name}: cycle started{' (forced)' if force else ''}")
            iterations, progress, backed_off = await self._run_cycle(force)
            return True
        finally:
            self.busy = False
            engine = self.ctx.engine
            if self.holds_state_during_cycle and engine.is_in_state(self.state_name):
                engine.set_state(engine.idle_state, force=True)
            if acquired:
                try:
                    await self.release()
                except Exception as e:
                    logger.error(f"{self.name}: release failed: {e}", exc_info=True)
                self._finish_cycle(iterations, progress, backed_off)
            self.phase = PolicyPhase.BACKOFF if self.in_cooldown() else PolicyPhase.IDLE

    async def _run_cycle(self, force: bool):
        iterations = 0
        progress = 0
        misses = 0
        while not self._stop_requested and (self.enabled or force):
            if iterations >= self.config.max_iterations:
                logger.warning(f"{self.name}: iteration cap ({self.config.max_iterations}) reached")
                break
            if not self.work_remaining(force):
                self.phase = PolicyPhase.SUCCESS
                break
            if not self.may_continue():
                break

            iterations += 1
            self.stats.iterations += 1
            outcome = await self._attempt()

            if outcome is Outcome.DONE:
                self.phase = PolicyPhase.SUCCESS
                break
            if outcome is Outcome.PROGRESS:
                progress += 1
                self.stats.progress += 1
                misses = 0
                continue

            if outcome is Outcome.NO_TARGET:
                misses += 1
                self.stats.no_target += 1
                if misses >= self.config.max_no_target:
                    self._enter_backoff(misses)
                    return iterations, progress, True
            else:
                misses = 0
                self.stats.no_progress += 1

            if self.config.retry_delay > 0 and not self._stop_requested:
                await self.ctx.scheduler.sleep(self.config.retry_delay)
        return iterations, progress, False

    async def _attempt(self) -> Outcome:
        try:
            return await self.run_iteration()
        except NavigationCancelled as e:
            logger.info(f"{self.name}: movement cancelled ({e})")
        except NavigationError as e:
            self.stats.failures += 1
            logger.warning(f"{self.name}: navigation failed: {e}")
        except Exception as e:
            self.stats.failures += 1
            logger.error(f"{self.name}: iteration failed: {e}", exc_info=True)
        return Outcome.NO_PROGRESS

    def _enter_backoff(self, misses: int) -> None:
        duration = self.ctx.rng.uniform(self.config.cooldown_min, self.config.cooldown_max)
        self.cooldown_until = self.ctx.scheduler.now() + duration
        self.memory.clear()
        self.stats.backoffs += 1
        self.phase = PolicyPhase.BACKOFF
        logger.warning(f"{self.name}: no eligible target after {misses} attempts, "
                       f"backing off for {duration:.0f}s")

    def _finish_cycle(self, iterations: int, progress: int, backed_off: bool) -> None:
        self.stats.cycles += 1
        self.stats.last_cycle_at = self.ctx.scheduler.now()
        logger.info(f"{self.name}: cycle finished ({iterations} iterations, {progress} with progress)")
        if self.ctx.session is not None:
            self.ctx.session.log_cycle(self.name, iterations, progress, backed_off)

    def status(self) -> Dict[str, Any]:
        cooldown = max(0.0, self.cooldown_until - self.ctx.scheduler.now())
        return {
            "enabled": self.enabled,
            "busy": self.busy,
            "phase": self.phase.name,
            "cooldown_remaining": round(cooldown, 1),
            "remembered": len(self.memory),
            **self.stats.to_dict(),
        }
