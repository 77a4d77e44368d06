"""
Integration module for the arbiter bot.

This module provides the boundary to whatever drives the actor:
- World types and collaborator interfaces (mc_client)
- SimulatedClient: in-memory implementation for dry runs and tests
"""

from .mc_client import (
    Position,
    Entity,
    Block,
    Sink,
    Item,
    Vitals,
    MovementController,
    PerceptionSource,
    InventorySource,
    AttackController,
    WorldActions,
)
from .simulated import SimulatedClient, SimulatedAttacks, build_demo_world

__all__ = [
    'Position',
    'Entity',
    'Block',
    'Sink',
    'Item',
    'Vitals',
    'MovementController',
    'PerceptionSource',
    'InventorySource',
    'AttackController',
    'WorldActions',
    'SimulatedClient',
    'SimulatedAttacks',
    'build_demo_world',
]
