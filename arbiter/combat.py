"""
combat.py - Combat target selection, attack modes and retaliation.

This module provides:
- CombatConfig: radii, hysteresis, retaliation timing, name lists
- CombatSession: the current engagement
- CombatTask: acquisition, melee/ranged switching, retaliation and
  target retention, driven by a fast combat tick

Retaliation races two signals. A damage signal starts a short fallback
timer; an attacker-correlation signal that arrives first cancels the
timer and names the attacker directly. If the timer fires first, the
nearest plausible attacker in melee range is used instead, and a
correlation arriving shortly afterwards is ignored. A fallback that
finds nobody leaves the way open for a later correlation.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from integration.mc_client import Entity, Item
from .automation import AutomationTask
from .context import BotContext
from .targets import HOSTILE_MOBS, filter_targets, find_nearest, target_priority

logger = logging.getLogger(__name__)

WEAPON_PRIORITY = {
    'netherite_sword': 10, 'diamond_sword': 9, 'iron_sword': 8,
    'netherite_axe': 9, 'diamond_axe': 8, 'iron_axe': 7,
    'stone_sword': 7, 'wooden_sword': 6,
}


class CombatMode(Enum):
    MELEE = "melee"
    RANGED = "ranged"


@dataclass
class CombatConfig:
    """Configuration for combat."""
    auto_attack: bool = False  # engage hostile mobs
    auto_attack_hostile: bool = False  # engage configured hostile players
    auto_retaliate: bool = True
    use_long_range: bool = False
    hostile_players: List[str] = field(default_factory=list)
    exclude_names: List[str] = field(default_factory=list)
    include_names: List[str] = field(default_factory=list)
    hostile_mobs: List[str] = field(default_factory=lambda: list(HOSTILE_MOBS))
    mob_radius: float = 32.0
    player_radius: float = 64.0
    attack_range: float = 6.0
    mode_buffer: float = 2.0
    melee_radius: float = 6.0  # fallback attacker search radius
    max_chase_distance: float = 64.0
    fallback_delay: float = 0.15
    correlation_window: float = 1.0
    tick_interval: float = 0.25
    ranged_weapons: List[str] = field(default_factory=lambda: ["bow", "crossbow"])
    weapon_priority: Dict[str, int] = field(default_factory=lambda: dict(WEAPON_PRIORITY))
    equip_shield: bool = True


@dataclass
class CombatSession:
    """The current engagement. Exists only while engaged."""
    target: Entity
    mode: CombatMode
    last_mode_switch_distance: float
    started_at: float


@dataclass
class Retaliation:
    """One retaliation decision."""
    attacker: str
    attacker_id: int
    source: str  # "correlation" or "fallback"
    engaged: bool
    timestamp: float


class CombatTask(AutomationTask):
    """
    Combat arbitration for the actor.

    The task is active while its combat tick runs. Retaliation works
    whenever it is enabled in the config, whether or not auto-attack is on.

    Usage:
        combat = CombatTask(context, CombatConfig(auto_attack=True))
        combat.install()
        await combat.start()
        client.on_damaged = combat.on_damaged
        client.on_attack_correlated = combat.on_attack_correlated
    """

    def __init__(self, context: BotContext, config: Optional[CombatConfig] = None, name: str = "combat"):
        self.name = name
        self.state_name = "fighting"
        self.ctx = context
        self.config = config or CombatConfig()

        self.session: Optional[CombatSession] = None
        self.retaliations: List[Retaliation] = []
        self.engagements = 0
        self.mode_switches = 0

        self._tick_job = None
        self._pending_fallback = None
        self._fallback_fired_at: Optional[float] = None
        self._correlated_at: Optional[float] = None
        self._interrupted_state: Optional[str] = None

    # -- engine wiring --------------------------------------------------

    def install(self) -> None:
        engine = self.ctx.engine
        engine.register_behavior(
            self.state_name,
            on_enter=lambda: logger.debug("Entered fighting state"),
            on_exit=lambda: logger.debug("Exited fighting state"),
            priority=10
        )
        engine.create_transition(
            engine.idle_state, self.state_name,
            guard=lambda: self.session is not None,
            priority=10,
            name="idle_to_fighting"
        )
        engine.create_transition(
            self.state_name, engine.idle_state,
            guard=lambda: self.session is None,
            name="fighting_to_idle"
        )

    # -- AutomationTask -------------------------------------------------

    def is_active(self) -> bool:
        return self._tick_job is not None

    async def start(self) -> None:
        self._ensure_ticking()

    def stop(self) -> None:
        if self._tick_job is not None:
            self._tick_job.cancel()
            self._tick_job = None
        if self._pending_fallback is not None:
            self._pending_fallback.cancel()
            self._pending_fallback = None
        self.disengage("combat stopped")

    def _ensure_ticking(self) -> None:
        if self._tick_job is None:
            self._tick_job = self.ctx.scheduler.every(
                self.config.tick_interval, self.tick, name=f"{self.name}-tick"
            )
            logger.info(f"{self.name} started")

    # -- commands -------------------------------------------------------

    async def attack(self) -> None:
        """Enable auto-attack against hostile mobs."""
        self.config.auto_attack = True
        await self.start()
        self.find_and_attack()

    async def attack_hostile(self) -> None:
        """Enable auto-attack against hostile mobs and configured hostile players."""
        self.config.auto_attack = True
        self.config.auto_attack_hostile = True
        await self.start()
        logger.info(f"Attacking hostile players: {', '.join(self.config.hostile_players) or 'none configured'}")
        self.find_and_attack()

    def defend(self) -> None:
        """Disable auto-attack; retaliation stays as configured."""
        self.config.auto_attack = False
        self.config.auto_attack_hostile = False
        self.disengage("auto-attack disabled")

    # -- acquisition ----------------------------------------------------

    def _distance(self, entity: Entity) -> float:
        return self.ctx.perception.position().distance_to(entity.position)

    def find_target(self) -> Optional[Entity]:
        """Nearest acquirable target, or None."""
        cfg = self.config
        origin = self.ctx.perception.position()
        candidates: Dict[int, Entity] = {}

        if cfg.auto_attack:
            mobs = filter_targets(
                self.ctx.perception.nearby_entities(cfg.mob_radius),
                origin=origin,
                max_distance=cfg.mob_radius,
                hostile=True,
                hostile_mobs=cfg.hostile_mobs,
                exclude_names=cfg.exclude_names,
                include_names=cfg.include_names,
            )
            candidates.update((e.entity_id, e) for e in mobs)

        if cfg.auto_attack_hostile and cfg.hostile_players:
            players = filter_targets(
                self.ctx.perception.nearby_entities(cfg.player_radius),
                origin=origin,
                max_distance=cfg.player_radius,
                players=True,
                exclude_names=cfg.exclude_names,
                include_names=cfg.hostile_players,
            )
            candidates.update((e.entity_id, e) for e in players)

        return find_nearest(list(candidates.values()), origin)

    def find_nearest_attacker(self) -> Optional[Entity]:
        """Nearest player or hostile mob within melee range."""
        origin = self.ctx.perception.position()
        nearby = [
            e for e in self.ctx.perception.nearby_entities(self.config.melee_radius)
            if e.entity_id != self.ctx.perception.self_id
        ]
        attackers = filter_targets(
            nearby,
            origin=origin,
            max_distance=self.config.melee_radius,
            hostile=True,
            players=True,
            hostile_mobs=self.config.hostile_mobs,
        )
        return find_nearest(attackers, origin)

    def find_and_attack(self) -> None:
        if not (self.config.auto_attack or self.config.auto_attack_hostile):
            return
        target = self.find_target()
        if target is None:
            return
        if self.session is None or self.session.target.entity_id != target.entity_id:
            logger.info(f"New target found: {target.name}")
            self.engage(target)

    # -- modes ----------------------------------------------------------

    def ranged_available(self) -> bool:
        if not self.config.use_long_range:
            return False
        ranged = set(self.config.ranged_weapons)
        return any(item.name in ranged and item.count > 0 for item in self.ctx.inventory.items())

    def initial_mode(self, distance: float) -> CombatMode:
        if distance > self.config.attack_range and self.ranged_available():
            return CombatMode.RANGED
        return CombatMode.MELEE

    def update_mode(self, distance: float) -> Optional[CombatMode]:
        """
        Re-evaluate the attack mode with hysteresis.

        Melee switches to ranged only beyond attack_range + mode_buffer;
        ranged switches back to melee at attack_range or when no ranged
        weapon is available.

        Returns:
            The current mode, or None when not engaged
        """
        session = self.session
        if session is None:
            return None

        has_ranged = self.ranged_available()
        new_mode = session.mode
        if session.mode is CombatMode.MELEE:
            if distance > self.config.attack_range + self.config.mode_buffer and has_ranged:
                new_mode = CombatMode.RANGED
        elif distance <= self.config.attack_range or not has_ranged:
            new_mode = CombatMode.MELEE

        if new_mode is not session.mode:
            logger.info(f"Switching combat mode: {session.mode.value} -> {new_mode.value} "
                        f"(distance {distance:.1f}, range {self.config.attack_range})")
            self._stop_attacks()
            session.mode = new_mode
            session.last_mode_switch_distance = distance
            self.mode_switches += 1
            self._arm(new_mode, equip_shield=False)
            self._start_attacks(session)
        return session.mode

    # -- engagement -----------------------------------------------------

    def engage(self, target: Entity) -> None:
        """Start (or switch to) attacking target."""
        distance = self._distance(target)
        mode = self.initial_mode(distance)
        if self.session is not None:
            self._stop_attacks()

        self.session = CombatSession(
            target=target,
            mode=mode,
            last_mode_switch_distance=distance,
            started_at=self.ctx.scheduler.now(),
        )
        self.engagements += 1
        self.ctx.controller.claim(self.name)
        engine = self.ctx.engine
        if not engine.is_in_state(self.state_name):
            self._interrupted_state = engine.get_state()
        engine.set_state(self.state_name, force=True)
        self._ensure_ticking()

        logger.info(f"Attacking {target.name} in {mode.value} mode ({distance:.1f} away)")
        self._arm(mode, equip_shield=self.config.equip_shield)
        self._start_attacks(self.session)

    def disengage(self, reason: str) -> None:
        if self.session is None:
            return
        target = self.session.target
        self.session = None
        self._stop_attacks()
        self.ctx.controller.release(self.name)
        engine = self.ctx.engine
        if engine.is_in_state(self.state_name):
            resume = self._state_after_fight()
            engine.set_state(resume, force=resume != engine.idle_state)
        self._interrupted_state = None
        logger.info(f"Stopped fighting {target.name}: {reason}")

    def _state_after_fight(self) -> str:
        """
        The state combat interrupted, unless its owner has finished meanwhile.

        A task state whose own edge back to idle is open (a deposit run
        that ended, a farm that was stopped) is not restored.
        """
        engine = self.ctx.engine
        previous = self._interrupted_state
        if previous is None or previous == engine.idle_state or previous not in engine.registry:
            return engine.idle_state
        if engine.edge_open(previous, engine.idle_state):
            return engine.idle_state
        return previous

    def tick(self) -> None:
        """Combat tick: follow the target, update the mode, acquire new targets."""
        session = self.session
        if session is not None:
            target = self.ctx.perception.get_entity(session.target.entity_id)
            if target is None:
                self.disengage("target lost")
            else:
                session.target = target
                distance = self._distance(target)
                if distance > self.config.max_chase_distance:
                    self.disengage(f"target too far ({distance:.1f})")
                else:
                    self.update_mode(distance)

        if self.session is None:
            self.find_and_attack()

    # -- retaliation ----------------------------------------------------

    def _retaliation_enabled(self) -> bool:
        cfg = self.config
        return cfg.auto_retaliate or cfg.auto_attack or cfg.auto_attack_hostile

    def on_damaged(self) -> None:
        """The actor took damage; wait briefly for the attacker to be identified."""
        if not self._retaliation_enabled():
            return
        now = self.ctx.scheduler.now()
        if self._correlated_at is not None and now - self._correlated_at <= self.config.correlation_window:
            logger.debug("Damage already attributed by correlation")
            return
        if self._pending_fallback is not None:
            self._pending_fallback.cancel()
        logger.debug("Actor hurt, waiting for attacker correlation")
        self._pending_fallback = self.ctx.scheduler.call_later(
            self.config.fallback_delay, self._fallback
        )

    def on_attack_correlated(self, attacker: Entity, victim: Entity) -> None:
        """An authoritative signal that attacker hit victim."""
        if victim.entity_id != self.ctx.perception.self_id:
            return
        if not self._retaliation_enabled():
            return

        now = self.ctx.scheduler.now()
        if self._pending_fallback is not None:
            self._pending_fallback.cancel()
            self._pending_fallback = None
        elif (self._fallback_fired_at is not None
              and now - self._fallback_fired_at <= self.config.correlation_window):
            logger.debug(f"Late correlation for {attacker.name} ignored, fallback already fired")
            return

        self._correlated_at = now
        self.retaliate(attacker, source="correlation")

    def _fallback(self) -> None:
        self._pending_fallback = None
        attacker = self.find_nearest_attacker()
        if attacker is None:
            # A correlation may still name an attacker out of melee range.
            logger.warning("Hurt but no attacker found nearby")
            return
        logger.info(f"Fallback identified attacker: {attacker.name}")
        self.retaliate(attacker, source="fallback")
        self._fallback_fired_at = self.ctx.scheduler.now()

    def should_switch_to(self, candidate: Entity) -> bool:
        """
        Target retention rule.

        A lower-priority candidate never replaces the current target, an
        equal-priority one only if strictly closer, a higher-priority one
        always.
        """
        session = self.session
        if session is None:
            return True
        if candidate.entity_id == session.target.entity_id:
            return False
        current = self.ctx.perception.get_entity(session.target.entity_id) or session.target

        current_priority = target_priority(current)
        new_priority = target_priority(candidate)
        if new_priority != current_priority:
            return new_priority > current_priority
        return self._distance(candidate) < self._distance(current)

    def retaliate(self, attacker: Entity, source: str) -> bool:
        """
        Respond to an identified attacker.

        Returns:
            True if the attacker is now the target
        """
        already_target = self.session is not None and self.session.target.entity_id == attacker.entity_id
        switch = self.should_switch_to(attacker)
        if switch:
            logger.info(f"Retaliating against {attacker.name} ({source})")
            self.engage(attacker)
        elif not already_target:
            logger.info(f"Keeping current target {self.session.target.name} over {attacker.name}")

        engaged = switch or already_target
        self.retaliations.append(Retaliation(
            attacker=attacker.name,
            attacker_id=attacker.entity_id,
            source=source,
            engaged=engaged,
            timestamp=self.ctx.scheduler.now(),
        ))
        if self.ctx.session is not None:
            self.ctx.session.log_retaliation(attacker.name, source)
        return engaged

    # -- equipment and attacks ------------------------------------------

    def best_weapon(self, mode: CombatMode) -> Optional[Item]:
        items = self.ctx.inventory.items()
        if mode is CombatMode.RANGED:
            ranged = set(self.config.ranged_weapons)
            return next((i for i in items if i.name in ranged), None)
        weapons = [i for i in items if i.name in self.config.weapon_priority]
        if not weapons:
            return None
        return max(weapons, key=lambda i: self.config.weapon_priority[i.name])

    def _arm(self, mode: CombatMode, equip_shield: bool) -> None:
        self.ctx.scheduler.spawn(self._equip(mode, equip_shield), name=f"{self.name}-equip")

    async def _equip(self, mode: CombatMode, equip_shield: bool) -> None:
        try:
            weapon = self.best_weapon(mode)
            if weapon is not None:
                await self.ctx.inventory.equip(weapon, "hand")
                logger.info(f"Equipped {weapon.name} for {mode.value} combat")
            if equip_shield:
                shield = next((i for i in self.ctx.inventory.items() if i.name == "shield"), None)
                if shield is not None:
                    await self.ctx.inventory.equip(shield, "off-hand")
                    logger.info("Equipped shield")
        except Exception as e:
            logger.error(f"Failed to equip for {mode.value} combat: {e}")

    def _start_attacks(self, session: CombatSession) -> None:
        attacks = self.ctx.attacks
        if attacks is None:
            logger.warning("No attack controller available")
            return
        if session.mode is CombatMode.RANGED:
            attacks.ranged(session.target)
        else:
            attacks.melee(session.target)

    def _stop_attacks(self) -> None:
        if self.ctx.attacks is not None:
            self.ctx.attacks.stop()

    def status(self) -> Dict[str, Any]:
        session = self.session
        return {
            "active": self.is_active(),
            "in_combat": session is not None,
            "target": session.target.name if session else None,
            "mode": session.mode.value if session else None,
            "auto_attack": self.config.auto_attack,
            "auto_attack_hostile": self.config.auto_attack_hostile,
            "auto_retaliate": self.config.auto_retaliate,
            "engagements": self.engagements,
            "mode_switches": self.mode_switches,
            "retaliations": len(self.retaliations),
        }
