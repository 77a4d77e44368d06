"""
simulated.py - In-memory world implementing every collaborator interface.

SimulatedClient stands in for a real game connection in dry runs and
tests. It keeps entities, blocks, inventory and vitals in plain dicts;
movement takes time on the supplied scheduler (virtual or real), so
timeouts and cancellation behave as they would against a live client.

Test hooks let a scenario make containers stall or fail, block paths,
and fire damage / attacker-correlation signals.
"""

import logging
from typing import Callable, Dict, List, Optional, Set

from arbiter.scheduler import Scheduler
from .mc_client import (
    AttackController,
    Block,
    Entity,
    InventorySource,
    Item,
    MovementController,
    PerceptionSource,
    Position,
    Sink,
    Vitals,
    WorldActions,
    WorldObject,
)

logger = logging.getLogger(__name__)

FOOD_VALUES = {
    'golden_carrot': 6, 'cooked_beef': 8, 'cooked_porkchop': 8, 'cooked_mutton': 6,
    'cooked_chicken': 6, 'baked_potato': 5, 'bread': 5, 'carrot': 3, 'apple': 4,
    'sweet_berries': 2, 'melon_slice': 2, 'rotten_flesh': 4,
}

# crop block -> (item dropped, seed item used to replant)
CROP_DROPS = {
    'wheat': ('wheat', 'wheat_seeds'),
    'carrots': ('carrot', 'carrot'),
    'potatoes': ('potato', 'potato'),
    'sugar_cane': ('sugar_cane', 'sugar_cane'),
}

STACK_SIZE = 64


class SimulatedAttacks(AttackController):
    """Records attack commands."""

    def __init__(self):
        self.mode: Optional[str] = None
        self.target: Optional[int] = None
        self.log: List[str] = []

    def melee(self, target: Entity) -> None:
        self.mode = "melee"
        self.target = target.entity_id
        self.log.append(f"melee:{target.name}")

    def ranged(self, target: Entity) -> None:
        self.mode = "ranged"
        self.target = target.entity_id
        self.log.append(f"ranged:{target.name}")

    def stop(self) -> None:
        self.mode = None
        self.target = None


class SimulatedClient(MovementController, PerceptionSource, InventorySource, WorldActions):
    """
    A single-actor world held in memory.

    Usage:
        scheduler = VirtualScheduler()
        client = SimulatedClient(scheduler)
        client.add_sink(Position(10, 64, 0), capacity=128)
        client.give("wheat", 70)
        bot = Bot.from_client(client, config, scheduler=scheduler)
    """

    def __init__(
        self,
        scheduler: Scheduler,
        position: Optional[Position] = None,
        self_id: int = 1,
        walk_speed: float = 4.3
    ):
        """
        Args:
            scheduler: Time source for movement and actions
            position: Starting actor position
            self_id: Entity id of the actor
            walk_speed: Blocks per second
        """
        self._scheduler = scheduler
        self._position = position or Position(0.0, 64.0, 0.0)
        self._self_id = self_id
        self.walk_speed = walk_speed

        self.entities: Dict[int, Entity] = {}
        self.blocks: Dict[str, Block] = {}
        self.inventory: Dict[str, int] = {}
        self.equipped: Dict[str, str] = {}
        self.state = Vitals()

        # container key -> remaining capacity in items; None = unlimited
        self.sink_room: Dict[str, Optional[int]] = {}
        self.sink_contents: Dict[str, Dict[str, int]] = {}
        self.stalling_sinks: Set[str] = set()
        self.failing_sinks: Set[str] = set()
        self.unreachable: Set[str] = set()

        self.goals: List[Position] = []
        self.attacks = SimulatedAttacks()
        self.transfers = 0
        self._moving = False

        self.on_damaged: Optional[Callable[[], None]] = None
        self.on_attack_correlated: Optional[Callable[[Entity, Entity], None]] = None

    # -- world setup ----------------------------------------------------

    def add_entity(self, entity_id: int, name: str, position: Position, kind: str = "mob") -> Entity:
        entity = Entity(entity_id, kind, name, position)
        self.entities[entity_id] = entity
        return entity

    def remove_entity(self, entity_id: int) -> None:
        self.entities.pop(entity_id, None)

    def move_entity(self, entity_id: int, position: Position) -> None:
        self.entities[entity_id].position = position

    def add_sink(
        self,
        position: Position,
        name: str = "chest",
        capacity: Optional[int] = None,
        reports_capacity: bool = False
    ) -> Sink:
        """
        Place a container.

        Args:
            position: Block position
            name: Block name
            capacity: Items it can still take; None for unlimited
            reports_capacity: Whether it exposes free_slots to perception
        """
        sink = Sink(position, name)
        self.blocks[sink.key] = sink
        self.sink_room[sink.key] = capacity
        self.sink_contents[sink.key] = {}
        if reports_capacity:
            self._refresh_sink(sink)
        return sink

    def add_crop(self, position: Position, name: str = "wheat", age: int = 7) -> Block:
        block = Block(position, name, age)
        self.blocks[block.key] = block
        return block

    def give(self, item: str, count: int) -> None:
        self.inventory[item] = self.inventory.get(item, 0) + count

    def set_vitals(self, health: Optional[float] = None, food: Optional[float] = None) -> None:
        if health is not None:
            self.state.health = health
        if food is not None:
            self.state.food = food

    def teleport(self, position: Position) -> None:
        self._position = position

    def grow_crops(self, max_age: int = 7) -> None:
        for block in self.blocks.values():
            if block.name in CROP_DROPS and not isinstance(block, Sink):
                block.metadata = min(max_age, block.metadata + 1)

    def hurt(self, amount: float = 1.0) -> None:
        """Apply damage and fire the damage signal."""
        self.state.health = max(0.0, self.state.health - amount)
        if self.on_damaged is not None:
            self.on_damaged()

    def correlate(self, attacker_id: int) -> None:
        """Fire the attacker-correlation signal for the actor."""
        if self.on_attack_correlated is None:
            return
        attacker = self.entities[attacker_id]
        me = Entity(self._self_id, "player", "self", self._position)
        self.on_attack_correlated(attacker, me)

    # -- MovementController ---------------------------------------------

    async def goto(self, position: Position, tolerance: float = 2.0) -> None:
        self.goals.append(position)
        if position.key() in self.unreachable:
            raise RuntimeError(f"no path to {position.key()}")
        self._moving = True
        try:
            distance = self._position.distance_to(position)
            if distance > tolerance:
                await self._scheduler.sleep((distance - tolerance) / self.walk_speed)
                self._position = Position(position.x, position.y, position.z)
        finally:
            self._moving = False

    def stop(self) -> None:
        if self._moving:
            logger.debug("Simulated movement goal cleared")
        self._moving = False

    def is_moving(self) -> bool:
        return self._moving

    # -- PerceptionSource -----------------------------------------------

    @property
    def self_id(self) -> int:
        return self._self_id

    def position(self) -> Position:
        return self._position

    def vitals(self) -> Vitals:
        return Vitals(self.state.health, self.state.food)

    def _objects(self) -> List[WorldObject]:
        objects: List[WorldObject] = [
            e for e in self.entities.values() if e.entity_id != self._self_id
        ]
        objects.extend(self.blocks.values())
        return objects

    def find_all(
        self,
        predicate: Callable[[WorldObject], bool],
        radius: float,
        origin: Optional[Position] = None
    ) -> List[WorldObject]:
        origin = origin or self._position
        found = [
            obj for obj in self._objects()
            if origin.distance_to(obj.position) <= radius and predicate(obj)
        ]
        found.sort(key=lambda obj: origin.distance_to(obj.position))
        return found

    def find_nearest(
        self,
        predicate: Callable[[WorldObject], bool],
        radius: float,
        origin: Optional[Position] = None
    ) -> Optional[WorldObject]:
        found = self.find_all(predicate, radius, origin)
        return found[0] if found else None

    def nearby_entities(self, radius: float) -> List[Entity]:
        return [
            e for e in self.entities.values()
            if e.entity_id != self._self_id and self._position.distance_to(e.position) <= radius
        ]

    def get_entity(self, entity_id: int) -> Optional[Entity]:
        return self.entities.get(entity_id)

    # -- InventorySource ------------------------------------------------

    def count(self, item_kind: str) -> int:
        return self.inventory.get(item_kind, 0)

    def items(self) -> List[Item]:
        return [
            Item(name, count, slot)
            for slot, (name, count) in enumerate(self.inventory.items())
            if count > 0
        ]

    async def transfer(self, sink: Sink, item_kind: str, amount: int) -> None:
        await self._scheduler.sleep(0.1)
        if sink.key in self.failing_sinks:
            raise RuntimeError(f"container at {sink.key} could not be opened")
        self.transfers += 1
        if sink.key in self.stalling_sinks:
            return

        room = self.sink_room.get(sink.key)
        moved = min(amount, self.count(item_kind))
        if room is not None:
            moved = min(moved, room)
            self.sink_room[sink.key] = room - moved
        if moved <= 0:
            return

        self.inventory[item_kind] -= moved
        contents = self.sink_contents.setdefault(sink.key, {})
        contents[item_kind] = contents.get(item_kind, 0) + moved
        block = self.blocks.get(sink.key)
        if isinstance(block, Sink) and block.free_slots is not None:
            self._refresh_sink(block)

    def _refresh_sink(self, sink: Sink) -> None:
        room = self.sink_room.get(sink.key)
        if room is None:
            sink.free_slots = 27
            return
        sink.free_slots = room // STACK_SIZE
        sink.mergeable = {name: room % STACK_SIZE for name in self.sink_contents.get(sink.key, {})}

    async def equip(self, item: Item, destination: str = "hand") -> None:
        if self.count(item.name) <= 0:
            raise RuntimeError(f"no {item.name} to equip")
        self.equipped[destination] = item.name

    async def consume(self) -> None:
        held = self.equipped.get("hand")
        if held is None or self.count(held) <= 0:
            raise RuntimeError("nothing to consume")
        await self._scheduler.sleep(1.6)
        self.inventory[held] -= 1
        if self.state.food < 20:
            self.state.food = min(20.0, self.state.food + FOOD_VALUES.get(held, 2))

    # -- WorldActions ---------------------------------------------------

    async def harvest(self, block: Block) -> None:
        current = self.blocks.get(block.key)
        if current is None or current.name not in CROP_DROPS:
            raise RuntimeError(f"nothing to harvest at {block.key}")
        await self._scheduler.sleep(0.25)
        drop, seed = CROP_DROPS[current.name]
        self.give(drop, 1)
        if seed != drop:
            self.give(seed, 1)
        current.metadata = -1  # broken, awaiting replant

    async def replant(self, block: Block) -> bool:
        current = self.blocks.get(block.key)
        if current is None:
            return False
        _, seed = CROP_DROPS.get(current.name, (None, None))
        if seed is None or self.count(seed) <= 0:
            return False
        self.inventory[seed] -= 1
        current.metadata = 0
        return True


def build_demo_world(client: SimulatedClient) -> None:
    """Populate a small farm with a chest area, crops, food and a few mobs."""
    for i in range(3):
        client.add_sink(Position(12.0, 64.0, float(i * 2)), capacity=STACK_SIZE * 4)
    for x in range(-6, -2):
        for z in range(-2, 2):
            client.add_crop(Position(float(x), 64.0, float(z)), "wheat", age=7)
    client.give("wheat", 40)
    client.give("wheat_seeds", 8)
    client.give("bread", 6)
    client.give("iron_sword", 1)
    client.give("shield", 1)
    client.set_vitals(health=20.0, food=15.0)
    client.add_entity(100, "zombie", Position(20.0, 64.0, 20.0))
    client.add_entity(101, "cow", Position(-10.0, 64.0, 8.0))
