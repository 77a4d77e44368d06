"""
automation.py - Cooperative pause/resume of automation tasks.

This module provides:
- AutomationTask: the start/stop contract every automation loop implements
- AutomationController: pauses, resumes and hard-stops the managed tasks
  and arbitrates exclusive use of the actor

Tasks are looked up by name when an operation runs, so the controller
never holds stale references across re-registration.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from integration.mc_client import MovementController
from .state_machine import StateMachineEngine

logger = logging.getLogger(__name__)


class AutomationTask(ABC):
    """An independently startable and stoppable automation loop."""

    name: str = ""

    @abstractmethod
    def is_active(self) -> bool:
        """Whether the task is currently running."""

    @abstractmethod
    async def start(self) -> None:
        """Start (or restart) the task."""

    @abstractmethod
    def stop(self) -> None:
        """Stop the task. Stopping an inactive task is a no-op."""


class AutomationController:
    """
    Manages automation tasks as a group.

    pause_all() remembers which tasks it stopped so resume_all() can
    restart exactly those, in the same order. Pauses that nest (a user
    pause during a deposit run) add to one record until the next
    resume_all() or stop_all() clears it. Operations never
    interleave: a call made while another is running waits for it.

    Usage:
        controller = AutomationController(engine, movement)
        controller.register(farm)
        controller.register(deposit)
        paused = await controller.pause_all(exclude=["deposit"])
        ...
        await controller.resume_all()
    """

    def __init__(
        self,
        engine: Optional[StateMachineEngine] = None,
        movement: Optional[MovementController] = None
    ):
        """
        Args:
            engine: State machine whose monitoring is paused alongside the tasks
            movement: Shared movement whose goal is cancelled on pause/stop
        """
        self._engine = engine
        self._movement = movement
        self._tasks: Dict[str, AutomationTask] = {}
        self._paused: List[str] = []
        self._monitoring_paused = False
        self._busy = False
        self._idle_event: Optional[asyncio.Event] = None
        self._exclusive: Optional[str] = None

    # -- registry -------------------------------------------------------

    def register(self, task: AutomationTask) -> None:
        if task.name in self._tasks:
            logger.warning(f"Task '{task.name}' re-registered")
        self._tasks[task.name] = task
        logger.debug(f"Registered automation task '{task.name}'")

    def get(self, name: str) -> Optional[AutomationTask]:
        return self._tasks.get(name)

    def names(self) -> List[str]:
        return list(self._tasks)

    def active_names(self) -> List[str]:
        return [name for name, task in self._tasks.items() if task.is_active()]

    # -- group operations -----------------------------------------------

    async def pause_all(self, exclude: Iterable[str] = ()) -> List[str]:
        """
        Stop every active task and remember which ones were stopped.

        The shared movement goal is cancelled immediately and engine
        monitoring is paused until resume_all().

        Args:
            exclude: Task names to leave running (usually the caller)

        Returns:
            Names of the tasks that were stopped, in registration order
        """
        excluded = set(exclude)
        await self._enter("pause_all")
        try:
            paused = []
            for name, task in self._tasks.items():
                if name in excluded or not task.is_active():
                    continue
                self._stop_task(task)
                paused.append(name)
            # A nested pause adds to the record rather than replacing it.
            self._paused.extend(name for name in paused if name not in self._paused)

            self._stop_movement()
            if self._engine is not None:
                self._engine.pause_monitoring()
                self._monitoring_paused = True

            if paused:
                logger.info(f"Paused tasks: {', '.join(paused)}")
            else:
                logger.debug("pause_all: no active tasks")
            return list(paused)
        finally:
            self._leave()

    async def resume_all(self) -> List[str]:
        """
        Restart the tasks stopped by pause_all() since the last resume or stop.

        Tasks are started one at a time in the recorded order; a task
        that fails to start is logged and skipped. Without a prior
        pause this does nothing.

        Returns:
            Names of the tasks that were restarted
        """
        await self._enter("resume_all")
        try:
            if not self._paused and not self._monitoring_paused:
                logger.debug("resume_all: nothing to resume")
                return []

            if self._engine is not None and self._monitoring_paused:
                self._engine.resume_monitoring()
            self._monitoring_paused = False

            names, self._paused = self._paused, []
            resumed = []
            for name in names:
                task = self._tasks.get(name)
                if task is None:
                    logger.error(f"resume_all: task '{name}' is no longer registered")
                    continue
                try:
                    await task.start()
                    resumed.append(name)
                except Exception as e:
                    logger.error(f"Failed to resume task '{name}': {e}", exc_info=True)

            if resumed:
                logger.info(f"Resumed tasks: {', '.join(resumed)}")
            return resumed
        finally:
            self._leave()

    async def stop_all(self) -> List[str]:
        """
        Hard-stop every active task without recording them for resume.

        Returns:
            Names of the tasks that were stopped
        """
        await self._enter("stop_all")
        try:
            stopped = []
            for name, task in self._tasks.items():
                if task.is_active():
                    self._stop_task(task)
                    stopped.append(name)
            self._stop_movement()

            self._paused = []
            if self._engine is not None:
                if self._monitoring_paused:
                    self._engine.resume_monitoring()
                self._engine.set_state(self._engine.idle_state, force=True)
            self._monitoring_paused = False

            logger.info(f"Stopped all tasks ({', '.join(stopped) or 'none active'})")
            return stopped
        finally:
            self._leave()

    def is_any_active(self) -> bool:
        return any(task.is_active() for task in self._tasks.values())

    def has_paused(self) -> bool:
        return bool(self._paused)

    def paused_names(self) -> List[str]:
        return list(self._paused)

    @property
    def busy(self) -> bool:
        return self._busy

    # -- exclusivity ----------------------------------------------------

    def claim(self, name: str) -> bool:
        """
        Take exclusive control of the actor.

        Returns:
            True if name now holds control (including if it already did)
        """
        if self._exclusive is not None and self._exclusive != name:
            logger.debug(f"'{name}' denied exclusive control, held by '{self._exclusive}'")
            return False
        self._exclusive = name
        return True

    def release(self, name: str) -> None:
        if self._exclusive == name:
            self._exclusive = None

    @property
    def exclusive_holder(self) -> Optional[str]:
        return self._exclusive

    # -- internals ------------------------------------------------------

    async def _enter(self, operation: str) -> None:
        while self._busy:
            logger.debug(f"{operation} queued behind a running operation")
            if self._idle_event is None:
                self._idle_event = asyncio.Event()
            await self._idle_event.wait()
        self._busy = True

    def _leave(self) -> None:
        self._busy = False
        event, self._idle_event = self._idle_event, None
        if event is not None:
            event.set()

    def _stop_task(self, task: AutomationTask) -> None:
        try:
            task.stop()
        except Exception as e:
            logger.error(f"Failed to stop task '{task.name}': {e}", exc_info=True)

    def _stop_movement(self) -> None:
        if self._movement is None:
            return
        try:
            self._movement.stop()
        except Exception as e:
            logger.error(f"Failed to stop movement: {e}", exc_info=True)

    def status(self) -> Dict[str, object]:
        return {
            "tasks": self.names(),
            "active": self.active_names(),
            "paused": self.paused_names(),
            "exclusive_holder": self._exclusive,
            "busy": self._busy,
        }
