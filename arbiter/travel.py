"""
travel.py - Directed movement: go to a point, follow an entity, patrol a route.

TravelTask drives the 'moving', 'following' and 'patrolling' behaviors
on top of the shared GuardedMovement. It is a managed automation task:
pause_all() interrupts whatever it is doing and resume_all() picks the
same activity up again (a patrol continues from the waypoint it was
heading to). Each behavior has an edge back to idle that opens once the
activity ends.

Farming walks the same actor around, so the named conflicts are stopped
when an activity begins and restarted when it ends on its own or is
cancelled.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from integration.mc_client import Entity, Position
from .automation import AutomationTask
from .context import BotContext
from .errors import NavigationCancelled, NavigationError

logger = logging.getLogger(__name__)


class TravelMode(Enum):
    MOVING = "moving"
    FOLLOWING = "following"
    PATROLLING = "patrolling"


@dataclass
class TravelConfig:
    """Configuration for goto, follow and patrol."""
    goto_tolerance: float = 2.0
    follow_distance: float = 3.0
    follow_interval: float = 1.0
    follow_radius: float = 64.0
    patrol_pause: float = 3.0
    waypoints: Dict[str, List[float]] = field(default_factory=dict)  # name -> [x, y, z]
    conflicts: List[str] = field(default_factory=lambda: ["farm"])


@dataclass
class Activity:
    """What the task is doing; kept across a pause so it can resume."""
    mode: TravelMode
    goal: Optional[Position] = None
    tolerance: float = 2.0
    target: Optional[str] = None
    route: List[Position] = field(default_factory=list)
    index: int = 0

    def describe(self) -> str:
        if self.mode is TravelMode.MOVING:
            return f"going to {self.goal.key()}"
        if self.mode is TravelMode.FOLLOWING:
            return f"following {self.target}"
        return f"patrolling {len(self.route)} waypoints (next {self.index + 1})"


class TravelTask(AutomationTask):
    """
    Goto, follow and patrol as one pausable task.

    Usage:
        travel = TravelTask(context, TravelConfig(waypoints={"home": [0, 64, 0]}))
        travel.install()
        controller.register(travel)
        arrived = await travel.goto(Position(10, 64, 10))
        travel.follow("Steve")
    """

    def __init__(self, context: BotContext, config: Optional[TravelConfig] = None, name: str = "travel"):
        self.name = name
        self.ctx = context
        self.config = config or TravelConfig()

        self.activity: Optional[Activity] = None
        self.arrivals = 0
        self.waypoints_reached = 0
        self.lost_targets = 0

        self._interrupted: Optional[Activity] = None
        self._job: Optional[asyncio.Task] = None
        self._step: Optional[asyncio.Task] = None
        self._step_goal: Optional[Position] = None
        self._stopped: List[str] = []

    # -- engine wiring --------------------------------------------------

    def install(self) -> None:
        engine = self.ctx.engine
        for mode in TravelMode:
            engine.register_behavior(mode.value)
            engine.create_transition(
                mode.value, engine.idle_state,
                guard=lambda m=mode: not self.in_mode(m),
                name=f"{mode.value}_to_idle"
            )

    def in_mode(self, mode: TravelMode) -> bool:
        return self.activity is not None and self.activity.mode is mode

    # -- AutomationTask -------------------------------------------------

    def is_active(self) -> bool:
        return self.activity is not None

    async def start(self) -> None:
        """Resume the activity interrupted by the last stop()."""
        if self.activity is not None:
            return
        activity, self._interrupted = self._interrupted, None
        if activity is None:
            logger.debug(f"{self.name}: nothing to resume")
            return
        logger.info(f"{self.name}: resuming, {activity.describe()}")
        self._begin(activity)

    def stop(self) -> None:
        """Interrupt the current activity; start() resumes it."""
        activity = self.activity
        if activity is None:
            return
        self.activity = None
        self._interrupted = activity
        self._cancel_job()
        self.ctx.movement.stop()
        self._leave_state(activity.mode)
        logger.info(f"{self.name} stopped while {activity.describe()}")

    async def cancel(self) -> None:
        """Stop for good: forget the activity and restart the conflicts."""
        self.stop()
        self._interrupted = None
        await self._restart_conflicts()

    # -- commands -------------------------------------------------------

    async def goto(self, position: Position, tolerance: Optional[float] = None) -> bool:
        """
        Walk to a position.

        Returns:
            True on arrival; False if unreachable, interrupted or refused
        """
        if not self._may_begin(f"goto {position.key()}"):
            return False
        tolerance = self.config.goto_tolerance if tolerance is None else tolerance
        job = self._begin(Activity(TravelMode.MOVING, goal=position, tolerance=tolerance))
        await asyncio.wait({job})
        if job.cancelled():
            return False
        return bool(job.result())

    async def goto_waypoint(self, name: str) -> bool:
        route = self.route_from([name])
        if not route:
            return False
        return await self.goto(route[0])

    def follow(self, target: str) -> bool:
        """Keep within follow_distance of the named entity until it is lost."""
        if not self._may_begin(f"follow {target}"):
            return False
        if self._find_entity(target) is None:
            logger.warning(f"{self.name}: cannot find {target}")
            return False
        self._begin(Activity(TravelMode.FOLLOWING, target=target))
        return True

    def patrol(self, names: Optional[List[str]] = None, route: Optional[List[Position]] = None) -> bool:
        """
        Walk a route of waypoints in a loop.

        Args:
            names: Configured waypoint names; all of them when omitted
            route: Explicit positions, used instead of names
        """
        if not self._may_begin("patrol"):
            return False
        route = list(route) if route is not None else self.route_from(names)
        if len(route) < 2:
            logger.warning(f"{self.name}: need at least 2 waypoints to patrol, got {len(route)}")
            return False
        self._begin(Activity(TravelMode.PATROLLING, route=route))
        return True

    def route_from(self, names: Optional[List[str]] = None) -> List[Position]:
        waypoints = self.config.waypoints
        names = list(waypoints) if names is None else names
        route = []
        for name in names:
            if name not in waypoints:
                logger.error(f"{self.name}: waypoint '{name}' not found "
                             f"(known: {', '.join(waypoints) or 'none'})")
                return []
            x, y, z = waypoints[name]
            route.append(Position(float(x), float(y), float(z)))
        return route

    # -- activities -----------------------------------------------------

    def _may_begin(self, what: str) -> bool:
        holder = self.ctx.controller.exclusive_holder
        if holder is not None and holder != self.name:
            logger.warning(f"{self.name}: {what} refused, '{holder}' has control")
            return False
        return True

    def _begin(self, activity: Activity) -> asyncio.Task:
        if self.activity is not None:
            self._cancel_job()
        else:
            self._stop_conflicts()
        self.activity = activity
        self._step = self._step_goal = None
        self.ctx.engine.set_state(activity.mode.value, force=True)

        runners = {
            TravelMode.MOVING: self._run_goto,
            TravelMode.FOLLOWING: self._run_follow,
            TravelMode.PATROLLING: self._run_patrol,
        }
        self._job = self.ctx.scheduler.spawn(
            runners[activity.mode](activity), name=f"{self.name}-{activity.mode.value}"
        )
        logger.info(f"{self.name}: {activity.describe()}")
        return self._job

    async def _run_goto(self, activity: Activity) -> bool:
        try:
            await self.ctx.movement.goto(activity.goal, tolerance=activity.tolerance)
        except NavigationCancelled as e:
            if self.activity is activity:
                logger.info(f"{self.name}: movement taken over ({e})")
                await self._finish(activity, "interrupted")
            return False
        except NavigationError as e:
            logger.warning(f"{self.name}: could not reach {activity.goal.key()}: {e}")
            await self._finish(activity, "unreachable")
            return False
        self.arrivals += 1
        await self._finish(activity, f"arrived at {activity.goal.key()}")
        return True

    async def _run_follow(self, activity: Activity) -> bool:
        while self.activity is activity:
            target = self._find_entity(activity.target)
            if target is None:
                self.lost_targets += 1
                logger.warning(f"{self.name}: lost sight of {activity.target}")
                await self._finish(activity, "target lost")
                return False
            distance = self.ctx.perception.position().distance_to(target.position)
            if distance > self.config.follow_distance and self._needs_step(target):
                self._step_goal = target.position
                self._step = self.ctx.scheduler.spawn(
                    self._follow_step(target), name=f"{self.name}-step"
                )
            await self.ctx.scheduler.sleep(self.config.follow_interval)
        return True

    def _needs_step(self, target: Entity) -> bool:
        # Re-path only once the target has drifted from the goal being walked to.
        if self._step is None or self._step.done() or self._step_goal is None:
            return True
        return self._step_goal.distance_to(target.position) > self.config.follow_distance

    async def _follow_step(self, target: Entity) -> None:
        # Each step replaces the previous goal.
        try:
            await self.ctx.movement.goto(target.position, tolerance=self.config.follow_distance)
        except NavigationCancelled:
            logger.debug(f"{self.name}: follow step replaced")
        except NavigationError as e:
            logger.warning(f"{self.name}: cannot reach {target.name}: {e}")

    async def _run_patrol(self, activity: Activity) -> bool:
        while self.activity is activity:
            waypoint = activity.route[activity.index]
            try:
                await self.ctx.movement.goto(waypoint, tolerance=self.config.goto_tolerance)
            except NavigationCancelled:
                if self.activity is not activity:
                    return False
                logger.info(f"{self.name}: patrol step interrupted, retrying")
            except NavigationError as e:
                logger.error(f"{self.name}: patrol step to {waypoint.key()} failed: {e}")
                await self._finish(activity, "route blocked")
                return False
            else:
                self.waypoints_reached += 1
                activity.index = (activity.index + 1) % len(activity.route)
            await self.ctx.scheduler.sleep(self.config.patrol_pause)
        return True

    async def _finish(self, activity: Activity, reason: str) -> None:
        if self.activity is not activity:
            return
        self.activity = None
        self._job = None
        self._leave_state(activity.mode)
        logger.info(f"{self.name}: done {activity.describe()} ({reason})")
        await self._restart_conflicts()

    # -- helpers --------------------------------------------------------

    def _find_entity(self, name: str) -> Optional[Entity]:
        self_id = self.ctx.perception.self_id
        for entity in self.ctx.perception.nearby_entities(self.config.follow_radius):
            if entity.name == name and entity.entity_id != self_id:
                return entity
        return None

    def _leave_state(self, mode: TravelMode) -> None:
        engine = self.ctx.engine
        if engine.is_in_state(mode.value):
            engine.set_state(engine.idle_state)

    def _cancel_job(self) -> None:
        job, self._job = self._job, None
        if job is not None and not job.done():
            job.cancel()

    def _stop_conflicts(self) -> None:
        for name in self.config.conflicts:
            task = self.ctx.controller.get(name)
            if task is None or not task.is_active():
                continue
            try:
                task.stop()
            except Exception as e:
                logger.error(f"{self.name}: failed to stop '{name}': {e}", exc_info=True)
            if name not in self._stopped:
                self._stopped.append(name)

    async def _restart_conflicts(self) -> None:
        stopped, self._stopped = self._stopped, []
        for name in stopped:
            task = self.ctx.controller.get(name)
            if task is None:
                continue
            try:
                await task.start()
            except Exception as e:
                logger.error(f"{self.name}: failed to restart '{name}': {e}", exc_info=True)

    def status(self) -> Dict[str, Any]:
        activity = self.activity
        return {
            "active": activity is not None,
            "mode": activity.mode.value if activity else None,
            "doing": activity.describe() if activity else None,
            "interrupted": self._interrupted.describe() if self._interrupted else None,
            "arrivals": self.arrivals,
            "waypoints_reached": self.waypoints_reached,
            "lost_targets": self.lost_targets,
        }
