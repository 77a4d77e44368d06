"""
mc_client.py - World types and collaborator interfaces for the arbiter.

This module provides the boundary between the behavior arbitration core
and whatever actually drives the actor in the game:
- World data types (Position, Entity, Block, Sink, Item, Vitals)
- MovementController: goal-based movement (goto/stop/is_moving)
- PerceptionSource: entity and block queries around the actor
- InventorySource: item counts, container transfer, equip/consume
- AttackController: melee and ranged attack execution
- WorldActions: block interaction used by farming

The core only ever talks to these interfaces. A real client (a protocol
library, a bridge to an external bot process) implements them; the
SimulatedClient in simulated.py implements them in memory for dry runs
and tests.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union


@dataclass
class Position:
    """3D position in the world."""
    x: float
    y: float
    z: float

    def to_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    def distance_to(self, other: 'Position') -> float:
        """Calculate Euclidean distance to another position."""
        return math.sqrt(
            (self.x - other.x) ** 2 +
            (self.y - other.y) ** 2 +
            (self.z - other.z) ** 2
        )

    def key(self) -> str:
        """Integer block key, e.g. '12,64,-3'."""
        return f"{math.floor(self.x)},{math.floor(self.y)},{math.floor(self.z)}"

    def offset(self, dx: float = 0.0, dy: float = 0.0, dz: float = 0.0) -> 'Position':
        return Position(self.x + dx, self.y + dy, self.z + dz)


@dataclass
class Entity:
    """Entity information."""
    entity_id: int
    kind: str  # "player" or "mob"
    name: str  # username for players, mob type otherwise (e.g. "zombie")
    position: Position
    metadata: Dict[str, object] = field(default_factory=dict)

    @property
    def is_player(self) -> bool:
        return self.kind == "player"


@dataclass
class Block:
    """Block information."""
    position: Position
    name: str  # e.g. "chest", "wheat"
    metadata: int = 0  # crop age for crops

    @property
    def key(self) -> str:
        return self.position.key()


@dataclass
class Sink(Block):
    """
    A container block that items can be deposited into.

    free_slots is None when the client cannot tell how much room is left.
    mergeable maps item kind to the room left in partial stacks of that kind.
    """
    free_slots: Optional[int] = None
    mergeable: Dict[str, int] = field(default_factory=dict)

    def reports_full_for(self, item_kind: str) -> bool:
        """True only if the container positively reports no room for item_kind."""
        if self.free_slots is None:
            return False
        return self.free_slots == 0 and self.mergeable.get(item_kind, 0) <= 0


@dataclass
class Item:
    """Item information."""
    name: str  # e.g. "bread"
    count: int
    slot: int = 0


@dataclass
class Vitals:
    """Health and food levels (0-20)."""
    health: float = 20.0
    food: float = 20.0


WorldObject = Union[Entity, Block]


class MovementController(ABC):
    """Goal-based movement. Setting a new goal replaces the previous one."""

    @abstractmethod
    async def goto(self, position: Position, tolerance: float = 2.0) -> None:
        """Walk until within tolerance of position. Raises on failure."""

    @abstractmethod
    def stop(self) -> None:
        """Clear the current goal."""

    @abstractmethod
    def is_moving(self) -> bool:
        """Whether a goal is currently being pursued."""


class PerceptionSource(ABC):
    """Read-only view of the world around the actor."""

    @property
    @abstractmethod
    def self_id(self) -> int:
        """Entity id of the controlled actor."""

    @abstractmethod
    def position(self) -> Position:
        """Current actor position."""

    @abstractmethod
    def vitals(self) -> Vitals:
        """Current health and food."""

    @abstractmethod
    def find_nearest(
        self,
        predicate: Callable[[WorldObject], bool],
        radius: float,
        origin: Optional[Position] = None
    ) -> Optional[WorldObject]:
        """Nearest entity or block within radius of origin matching predicate."""

    @abstractmethod
    def find_all(
        self,
        predicate: Callable[[WorldObject], bool],
        radius: float,
        origin: Optional[Position] = None
    ) -> List[WorldObject]:
        """All entities and blocks within radius of origin matching predicate."""

    @abstractmethod
    def nearby_entities(self, radius: float) -> List[Entity]:
        """Entities (other than the actor) within radius."""

    @abstractmethod
    def get_entity(self, entity_id: int) -> Optional[Entity]:
        """Current state of an entity, or None if it no longer exists."""


class InventorySource(ABC):
    """The actor's inventory and container transfers."""

    @abstractmethod
    def count(self, item_kind: str) -> int:
        """Total number of items of a kind carried."""

    @abstractmethod
    def items(self) -> List[Item]:
        """Snapshot of carried item stacks."""

    @abstractmethod
    async def transfer(self, sink: Sink, item_kind: str, amount: int) -> None:
        """Move up to amount items of a kind into the sink. Raises on failure."""

    @abstractmethod
    async def equip(self, item: Item, destination: str = "hand") -> None:
        """Equip an item into 'hand' or 'off-hand'."""

    @abstractmethod
    async def consume(self) -> None:
        """Consume the held item."""


class AttackController(ABC):
    """Attack execution for combat."""

    @abstractmethod
    def melee(self, target: Entity) -> None:
        """Start (or retarget) melee attacks."""

    @abstractmethod
    def ranged(self, target: Entity) -> None:
        """Start (or retarget) ranged attacks."""

    @abstractmethod
    def stop(self) -> None:
        """Stop all attacks."""


class WorldActions(ABC):
    """Block interaction used by farming."""

    @abstractmethod
    async def harvest(self, block: Block) -> None:
        """Break a crop block and collect its drops."""

    @abstractmethod
    async def replant(self, block: Block) -> bool:
        """Replant the crop at block; False if no seeds were available."""
