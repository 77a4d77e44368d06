"""
targets.py - Target filtering and nearest-target selection for combat.

Filtering follows three rules, in order:
- names on the exclude list are never targets
- a non-empty include list is authoritative: only those names qualify,
  whatever their type
- otherwise players qualify when requested, and mobs qualify when their
  type is on the hostile list

Nearest selection is vectorized with numpy over entity positions.
"""

import logging
from typing import Iterable, List, Optional, Sequence

import numpy as np

from integration.mc_client import Entity, Position

logger = logging.getLogger(__name__)

HOSTILE_MOBS = [
    'zombie', 'skeleton', 'creeper', 'spider', 'enderman',
    'witch', 'slime', 'phantom', 'drowned', 'husk',
    'stray', 'cave_spider', 'silverfish', 'blaze', 'ghast',
]

# Target class priority; higher classes are preferred and preempt lower ones.
PLAYER_PRIORITY = 2
MOB_PRIORITY = 1


def target_priority(entity: Entity) -> int:
    return PLAYER_PRIORITY if entity.is_player else MOB_PRIORITY


def filter_targets(
    entities: Iterable[Entity],
    origin: Optional[Position] = None,
    max_distance: Optional[float] = None,
    hostile: bool = False,
    players: bool = False,
    hostile_mobs: Sequence[str] = HOSTILE_MOBS,
    exclude_names: Sequence[str] = (),
    include_names: Sequence[str] = ()
) -> List[Entity]:
    """
    Filter entities by distance, name lists and type.

    Args:
        entities: Candidate entities
        origin: Position distances are measured from
        max_distance: Drop entities further than this from origin
        hostile: Accept mobs whose type is in hostile_mobs
        players: Accept any player
        hostile_mobs: Mob types considered hostile
        exclude_names: Names that are never accepted
        include_names: If non-empty, the only names accepted

    Returns:
        Matching entities in input order
    """
    excluded = set(exclude_names)
    included = set(include_names)
    hostile_set = set(hostile_mobs)

    result = []
    for entity in entities:
        if max_distance is not None and origin is not None:
            if origin.distance_to(entity.position) > max_distance:
                continue
        if entity.name in excluded:
            continue
        if included:
            if entity.name in included:
                result.append(entity)
            continue
        if players and entity.is_player:
            result.append(entity)
        elif hostile and not entity.is_player and entity.name in hostile_set:
            result.append(entity)
    return result


def distances(entities: Sequence[Entity], origin: Position) -> np.ndarray:
    """Euclidean distance from origin to each entity."""
    if not entities:
        return np.empty(0)
    points = np.array([e.position.to_tuple() for e in entities], dtype=float)
    return np.linalg.norm(points - np.array(origin.to_tuple(), dtype=float), axis=1)


def find_nearest(entities: Sequence[Entity], origin: Position) -> Optional[Entity]:
    """Closest entity to origin; ties go to the earliest entity."""
    if not entities:
        return None
    return entities[int(np.argmin(distances(entities, origin)))]
