"""
navigation.py - Guarded movement for the shared actor.

GuardedMovement wraps a MovementController so that:
- Issuing a new goal, or stop(), makes any waiter on the previous goal
  fail fast with NavigationCancelled instead of hanging
- Every goal carries an upper-bound timeout (NavigationTimeout)
- Other collaborator failures surface as NavigationError

Policy tasks and the automation controller share one GuardedMovement,
so cancelling movement from the controller immediately releases a
paused task that was waiting on a goto.
"""

import asyncio
import logging
from typing import Dict, Optional

from integration.mc_client import MovementController, Position
from .errors import NavigationCancelled, NavigationError, NavigationTimeout
from .scheduler import Scheduler

logger = logging.getLogger(__name__)


class GuardedMovement(MovementController):
    """
    Movement controller with cancellation and timeouts.

    Usage:
        movement = GuardedMovement(client.movement, scheduler, default_timeout=60.0)
        try:
            await movement.goto(chest.position, tolerance=2.0)
        except NavigationCancelled:
            ...  # another goal (or stop) took over
    """

    def __init__(
        self,
        movement: MovementController,
        scheduler: Scheduler,
        default_timeout: float = 60.0
    ):
        """
        Args:
            movement: Underlying movement collaborator
            scheduler: Scheduler used for goal tasks and timeouts
            default_timeout: Seconds before a goal fails with NavigationTimeout
        """
        self._movement = movement
        self._scheduler = scheduler
        self.default_timeout = default_timeout

        self._current: Optional[asyncio.Task] = None
        self._reasons: Dict[asyncio.Task, str] = {}
        self._goals = 0

    async def goto(
        self,
        position: Position,
        tolerance: float = 2.0,
        timeout: Optional[float] = None
    ) -> None:
        """
        Walk to a position, replacing any goal in progress.

        Args:
            position: Target position
            tolerance: How close to get (in blocks)
            timeout: Seconds before giving up; defaults to default_timeout

        Raises:
            NavigationCancelled: A newer goal or stop() replaced this one
            NavigationTimeout: The goal did not complete in time
            NavigationError: The movement collaborator failed
        """
        timeout = self.default_timeout if timeout is None else timeout
        self._cancel_current("replaced by a new goal")

        self._goals += 1
        task = self._scheduler.spawn(
            self._movement.goto(position, tolerance),
            name=f"goto-{self._goals}"
        )
        self._current = task
        timer = self._scheduler.call_later(timeout, self._expire, task)

        try:
            await task
        except asyncio.CancelledError:
            reason = self._reasons.pop(task, None)
            if reason == "timeout":
                raise NavigationTimeout(
                    f"goto {position.key()} timed out after {timeout:.1f}s"
                ) from None
            if reason is not None:
                raise NavigationCancelled(f"goto {position.key()} {reason}") from None
            raise
        except NavigationError:
            raise
        except Exception as e:
            raise NavigationError(f"goto {position.key()} failed: {e}") from e
        finally:
            timer.cancel()
            self._reasons.pop(task, None)
            if self._current is task:
                self._current = None

    def stop(self) -> None:
        """Cancel the current goal and clear it on the collaborator."""
        self._cancel_current("cancelled by stop")
        self._movement.stop()

    def is_moving(self) -> bool:
        if self._current is not None and not self._current.done():
            return True
        return self._movement.is_moving()

    def _cancel_current(self, reason: str) -> None:
        task = self._current
        self._current = None
        if task is not None and not task.done():
            self._reasons[task] = reason
            task.cancel()
            logger.debug(f"Movement goal {reason}")

    def _expire(self, task: asyncio.Task) -> None:
        if task.done():
            return
        logger.warning("Movement goal timed out")
        self._reasons[task] = "timeout"
        task.cancel()
        if self._current is task:
            self._current = None
            self._movement.stop()
