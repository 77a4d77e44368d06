"""
state_machine.py - Priority-aware behavior state machine.

This module provides:
- Behavior: frozen record of a named state and its enter/exit hooks
- BehaviorRegistry: name -> Behavior lookup
- TransitionTable: guarded edges between behaviors, ordered by priority
- StateMachineEngine: current state, guarded and forced transitions,
  bounded history and the periodic evaluation tick

Exactly one behavior is current at any time. The idle behavior is the
only state the tick will leave on its own for another task state; a
task state is only left through its own edge back to idle or through a
forced set_state().
"""

import inspect
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Deque, Dict, List, Optional

from .scheduler import Scheduler

logger = logging.getLogger(__name__)

Hook = Optional[Callable[[], Any]]
Guard = Callable[[], bool]
TransitionListener = Callable[[str, str, bool], None]


class BehaviorKind(Enum):
    """What a behavior represents."""
    IDLE = auto()
    TASK = auto()
    PLACEHOLDER = auto()  # auto-registered for an unknown state name


@dataclass(frozen=True)
class Behavior:
    """A named state. Re-registering a name replaces the whole record."""
    name: str
    kind: BehaviorKind = BehaviorKind.TASK
    priority: int = 0
    on_enter: Hook = None
    on_exit: Hook = None


@dataclass(frozen=True)
class Transition:
    """A guarded edge from source to target."""
    source: str
    target: str
    guard: Guard
    priority: int = 0
    name: str = ""
    on_transition: Hook = None


@dataclass(frozen=True)
class HistoryEntry:
    """One applied transition."""
    state: str
    timestamp: float
    previous: Optional[str] = None
    forced: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "timestamp": self.timestamp,
            "previous": self.previous,
            "forced": self.forced,
        }


@dataclass
class EngineConfig:
    """Configuration for the state machine engine."""
    idle_state: str = "idle"
    tick_interval: float = 2.0
    max_history: int = 50


class BehaviorRegistry:
    """Registered behaviors keyed by name, in registration order."""

    def __init__(self):
        self._behaviors: Dict[str, Behavior] = {}

    def register(self, behavior: Behavior) -> Behavior:
        self._behaviors[behavior.name] = behavior
        return behavior

    def get(self, name: str) -> Optional[Behavior]:
        return self._behaviors.get(name)

    def names(self) -> List[str]:
        return list(self._behaviors)

    def all(self) -> List[Behavior]:
        return list(self._behaviors.values())

    def __contains__(self, name: str) -> bool:
        return name in self._behaviors

    def __len__(self) -> int:
        return len(self._behaviors)


class TransitionTable:
    """Guarded edges. Multiple edges may share a source."""

    def __init__(self):
        self._transitions: List[Transition] = []

    def add(self, transition: Transition) -> Transition:
        self._transitions.append(transition)
        return transition

    def outgoing(self, source: str) -> List[Transition]:
        """Edges leaving source, highest priority first, ties in insertion order."""
        edges = [t for t in self._transitions if t.source == source]
        return sorted(edges, key=lambda t: -t.priority)

    def between(self, source: str, target: str) -> List[Transition]:
        return [t for t in self.outgoing(source) if t.target == target]

    def __len__(self) -> int:
        return len(self._transitions)


class StateMachineEngine:
    """
    Behavior state machine with guarded transitions and a background tick.

    Usage:
        engine = StateMachineEngine(scheduler)
        engine.register_behavior("farming", on_enter=..., on_exit=...)
        engine.create_transition("idle", "farming", guard=lambda: farm.enabled)
        engine.start()
    """

    def __init__(self, scheduler: Scheduler, config: Optional[EngineConfig] = None):
        """
        Initialize the engine in the idle state.

        Args:
            scheduler: Clock and timer service
            config: Engine configuration
        """
        self.config = config or EngineConfig()
        self._scheduler = scheduler

        self.registry = BehaviorRegistry()
        self.transitions = TransitionTable()
        self.registry.register(Behavior(self.config.idle_state, BehaviorKind.IDLE))

        self._current = self.config.idle_state
        self._history: Deque[HistoryEntry] = deque(maxlen=max(0, self.config.max_history))
        self._transitioning = False
        self._monitoring_paused = False
        self._tick_job = None
        self._listeners: List[TransitionListener] = []
        self._transition_count = 0

        logger.info(f"StateMachineEngine initialized (idle='{self.idle_state}', "
                    f"tick={self.config.tick_interval}s)")

    @property
    def idle_state(self) -> str:
        return self.config.idle_state

    # -- registration ---------------------------------------------------

    def register_behavior(
        self,
        name: str,
        on_enter: Hook = None,
        on_exit: Hook = None,
        priority: int = 0
    ) -> Behavior:
        """Register (or replace) a behavior."""
        kind = BehaviorKind.IDLE if name == self.idle_state else BehaviorKind.TASK
        replaced = name in self.registry
        behavior = self.registry.register(
            Behavior(name, kind, priority, on_enter, on_exit)
        )
        if replaced:
            logger.debug(f"Behavior '{name}' re-registered")
        else:
            logger.debug(f"Behavior '{name}' registered")
        return behavior

    def create_transition(
        self,
        source: str,
        target: str,
        guard: Guard,
        priority: int = 0,
        name: Optional[str] = None,
        on_transition: Hook = None
    ) -> Optional[Transition]:
        """
        Add a guarded edge.

        Returns:
            The transition, or None if either endpoint is not registered
        """
        for endpoint in (source, target):
            if endpoint not in self.registry:
                logger.error(f"Cannot create transition {source} -> {target}: "
                             f"state '{endpoint}' is not registered")
                return None
        transition = Transition(
            source=source,
            target=target,
            guard=guard,
            priority=priority,
            name=name or f"{source}_to_{target}",
            on_transition=on_transition,
        )
        return self.transitions.add(transition)

    def add_listener(self, listener: TransitionListener) -> None:
        """Call listener(previous, current, forced) after every transition."""
        self._listeners.append(listener)

    # -- transitions ----------------------------------------------------

    def set_state(self, name: str, force: bool = False) -> bool:
        """
        Change the current state.

        An unknown name is registered as a placeholder behavior. Without
        force, the change only happens through an edge from the current
        state whose guard is true.

        Args:
            name: Target state
            force: Apply unconditionally

        Returns:
            True if the actor is now in the target state
        """
        if self._transitioning:
            logger.warning(f"Rejected re-entrant transition to '{name}' "
                           f"while leaving '{self._current}'")
            return False

        if name not in self.registry:
            logger.warning(f"State '{name}' is not registered, adding placeholder")
            self.registry.register(Behavior(name, BehaviorKind.PLACEHOLDER))

        if name == self._current:
            return True

        if force:
            self._apply(name, transition=None, forced=True)
            return True

        for transition in self.transitions.between(self._current, name):
            if self._check_guard(transition):
                self._apply(name, transition=transition, forced=False)
                return True

        logger.debug(f"No open transition {self._current} -> {name}")
        return False

    def tick(self) -> Optional[str]:
        """
        Evaluate guarded transitions once.

        In the idle state every outgoing edge is considered; in any other
        state only the edges back to idle are.

        Returns:
            The new state if a transition was applied
        """
        if self._monitoring_paused or self._transitioning:
            return None

        candidates = self.transitions.outgoing(self._current)
        if self._current != self.idle_state:
            candidates = [t for t in candidates if t.target == self.idle_state]

        for transition in candidates:
            if self._check_guard(transition):
                self._apply(transition.target, transition=transition, forced=False)
                return transition.target
        return None

    def _check_guard(self, transition: Transition) -> bool:
        try:
            return bool(transition.guard())
        except Exception as e:
            logger.error(f"Guard for {transition.name} raised: {e}", exc_info=True)
            return False

    def _apply(self, target: str, transition: Optional[Transition], forced: bool) -> None:
        previous = self.registry.get(self._current)
        self._transitioning = True
        try:
            if previous is not None:
                self._run_hook(f"{previous.name}.on_exit", previous.on_exit)
            if transition is not None:
                self._run_hook(f"{transition.name}.on_transition", transition.on_transition)

            self._current = target
            self._transition_count += 1
            self._history.append(HistoryEntry(
                state=target,
                timestamp=self._scheduler.now(),
                previous=previous.name if previous else None,
                forced=forced,
            ))

            behavior = self.registry.get(target)
            if behavior is not None:
                self._run_hook(f"{target}.on_enter", behavior.on_enter)
        finally:
            self._transitioning = False

        previous_name = previous.name if previous else None
        suffix = " (forced)" if forced else ""
        logger.info(f"State: {previous_name} -> {target}{suffix}")

        for listener in self._listeners:
            try:
                listener(previous_name, target, forced)
            except Exception as e:
                logger.error(f"Transition listener failed: {e}", exc_info=True)

    def _run_hook(self, label: str, hook: Hook) -> None:
        if hook is None:
            return
        try:
            result = hook()
            if inspect.isawaitable(result):
                self._scheduler.spawn(self._await_hook(label, result), name=label)
        except Exception as e:
            logger.error(f"Hook {label} failed: {e}", exc_info=True)

    async def _await_hook(self, label: str, awaitable: Any) -> None:
        try:
            await awaitable
        except Exception as e:
            logger.error(f"Hook {label} failed: {e}", exc_info=True)

    # -- reads ----------------------------------------------------------

    def get_state(self) -> str:
        return self._current

    def is_in_state(self, name: str) -> bool:
        return self._current == name

    def get_history(self, n: int = 10) -> List[HistoryEntry]:
        """The last n transitions, most recent last."""
        if n <= 0:
            return []
        return list(self._history)[-n:]

    def can_transition_to(self, name: str) -> bool:
        """Whether set_state(name) without force would currently succeed."""
        if name == self._current:
            return True
        return self.edge_open(self._current, name)

    def edge_open(self, source: str, target: str) -> bool:
        """Whether some edge source -> target has a true guard right now."""
        return any(self._check_guard(t) for t in self.transitions.between(source, target))

    def behaviors(self) -> List[Behavior]:
        return self.registry.all()

    def available_transitions(self) -> List[str]:
        return [t.target for t in self.transitions.outgoing(self._current)]

    # -- background evaluation ------------------------------------------

    def start(self) -> None:
        """Start the periodic tick."""
        if self._tick_job is not None:
            return
        self._tick_job = self._scheduler.every(
            self.config.tick_interval, self.tick, name="state-machine-tick"
        )
        logger.info("State machine monitoring started")

    def stop(self) -> None:
        """Stop the periodic tick."""
        if self._tick_job is not None:
            self._tick_job.cancel()
            self._tick_job = None
            logger.info("State machine monitoring stopped")

    def pause_monitoring(self) -> None:
        if not self._monitoring_paused:
            self._monitoring_paused = True
            logger.debug("State machine monitoring paused")

    def resume_monitoring(self) -> None:
        if self._monitoring_paused:
            self._monitoring_paused = False
            logger.debug("State machine monitoring resumed")

    @property
    def is_running(self) -> bool:
        return self._tick_job is not None

    @property
    def monitoring_paused(self) -> bool:
        return self._monitoring_paused

    def status(self) -> Dict[str, Any]:
        return {
            "current_state": self._current,
            "running": self.is_running,
            "monitoring_paused": self._monitoring_paused,
            "behaviors": len(self.registry),
            "transitions": len(self.transitions),
            "transition_count": self._transition_count,
            "available_transitions": self.available_transitions(),
            "recent_history": [e.to_dict() for e in self.get_history(5)],
        }
