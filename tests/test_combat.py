import asyncio

from arbiter.combat import CombatConfig, CombatMode, CombatTask
from arbiter.deposit import DepositConfig, DepositTask
from integration.mc_client import Entity, Position


def _combat(ctx, client, **overrides):
    combat = CombatTask(ctx, CombatConfig(**overrides))
    combat.install()
    client.on_damaged = combat.on_damaged
    client.on_attack_correlated = combat.on_attack_correlated
    return combat


def _at(x, z=0.0):
    return Position(float(x), 64.0, float(z))


def test_mode_switch_has_hysteresis(ctx, client):
    client.give("bow", 1)
    combat = _combat(ctx, client, use_long_range=True)
    zombie = client.add_entity(10, "zombie", _at(3))

    async def scenario():
        combat.engage(zombie)
        assert combat.session.mode is CombatMode.MELEE

        # Inside (attack_range, attack_range + buffer] nothing changes.
        assert combat.update_mode(7.0) is CombatMode.MELEE
        assert combat.update_mode(8.0) is CombatMode.MELEE
        assert combat.update_mode(8.5) is CombatMode.RANGED
        assert combat.update_mode(7.0) is CombatMode.RANGED
        assert combat.update_mode(6.0) is CombatMode.MELEE
        await ctx.scheduler.drain()

    asyncio.run(scenario())
    assert combat.mode_switches == 2
    assert client.attacks.log == ["melee:zombie", "ranged:zombie", "melee:zombie"]


def test_ranged_needs_a_ranged_weapon(ctx, client):
    combat = _combat(ctx, client, use_long_range=True)
    zombie = client.add_entity(10, "zombie", _at(20))

    async def scenario():
        combat.engage(zombie)
        assert combat.session.mode is CombatMode.MELEE
        assert combat.update_mode(20.0) is CombatMode.MELEE
        await ctx.scheduler.drain()

    asyncio.run(scenario())


def test_engage_equips_best_weapon_and_shield(ctx, scheduler, client):
    client.give("stone_sword", 1)
    client.give("diamond_sword", 1)
    client.give("shield", 1)
    combat = _combat(ctx, client)
    zombie = client.add_entity(10, "zombie", _at(3))

    async def scenario():
        combat.engage(zombie)
        await scheduler.drain()

    asyncio.run(scenario())
    assert client.equipped == {"hand": "diamond_sword", "off-hand": "shield"}
    assert ctx.engine.get_state() == "fighting"


def test_correlated_attacker_gets_exactly_one_retaliation(ctx, scheduler, client):
    combat = _combat(ctx, client)
    zombie = client.add_entity(10, "zombie", _at(3))
    client.add_entity(11, "skeleton", _at(2))

    async def scenario():
        await combat.start()
        client.hurt(2.0)
        await scheduler.advance(0.05)
        client.correlate(zombie.entity_id)
        await scheduler.advance(1.0)

    asyncio.run(scenario())
    assert len(combat.retaliations) == 1
    assert combat.retaliations[0].source == "correlation"
    assert combat.retaliations[0].attacker == "zombie"
    assert combat.session.target.entity_id == zombie.entity_id
    assert client.attacks.mode == "melee"


def test_fallback_picks_nearest_attacker_and_ignores_late_correlation(ctx, scheduler, client):
    combat = _combat(ctx, client)
    zombie = client.add_entity(10, "zombie", _at(3))
    client.add_entity(11, "cow", _at(1))

    async def scenario():
        await combat.start()
        client.hurt(2.0)
        await scheduler.advance(0.2)
        assert len(combat.retaliations) == 1
        client.correlate(zombie.entity_id)
        await scheduler.advance(0.5)

    asyncio.run(scenario())
    assert [r.source for r in combat.retaliations] == ["fallback"]
    assert combat.retaliations[0].attacker == "zombie"


def test_damage_with_nobody_around_does_not_retaliate(ctx, scheduler, client):
    combat = _combat(ctx, client)
    client.add_entity(11, "cow", _at(1))

    async def scenario():
        client.hurt(1.0)
        await scheduler.advance(1.0)

    asyncio.run(scenario())
    assert combat.retaliations == []
    assert combat.session is None


def test_correlation_after_an_empty_fallback_still_retaliates(ctx, scheduler, client):
    combat = _combat(ctx, client)
    skeleton = client.add_entity(10, "skeleton", _at(15))

    async def scenario():
        client.hurt(2.0)
        await scheduler.advance(0.2)
        assert combat.retaliations == []
        client.correlate(skeleton.entity_id)
        await scheduler.drain()

    asyncio.run(scenario())
    assert [(r.attacker, r.source) for r in combat.retaliations] == [("skeleton", "correlation")]
    assert combat.session.target.entity_id == skeleton.entity_id
    assert ctx.engine.get_state() == "fighting"


def test_retaliation_disabled(ctx, scheduler, client):
    combat = _combat(ctx, client, auto_retaliate=False)
    zombie = client.add_entity(10, "zombie", _at(3))

    async def scenario():
        client.hurt(1.0)
        client.correlate(zombie.entity_id)
        await scheduler.advance(1.0)

    asyncio.run(scenario())
    assert combat.retaliations == []


def test_correlation_for_another_victim_is_ignored(ctx, client):
    combat = _combat(ctx, client)
    zombie = client.add_entity(10, "zombie", _at(3))
    villager = Entity(50, "mob", "villager", _at(4))

    combat.on_attack_correlated(zombie, villager)
    assert combat.retaliations == []


def test_target_retention_rules(ctx, client):
    combat = _combat(ctx, client)
    zombie = client.add_entity(10, "zombie", _at(5))
    skeleton = client.add_entity(11, "skeleton", _at(3))
    creeper = client.add_entity(12, "creeper", _at(4))
    griefer = client.add_entity(20, "griefer", _at(10), kind="player")
    husk = client.add_entity(13, "husk", _at(1))

    async def scenario():
        assert combat.retaliate(zombie, "correlation")
        # Equal priority and strictly closer: switch.
        assert combat.retaliate(skeleton, "correlation")
        # Equal priority but further away: keep.
        assert not combat.retaliate(creeper, "correlation")
        # Higher priority wins regardless of distance.
        assert combat.retaliate(griefer, "correlation")
        # Lower priority never displaces a player, however close.
        assert not combat.retaliate(husk, "fallback")
        # The current target hitting again keeps it engaged.
        assert combat.retaliate(griefer, "correlation")
        await ctx.scheduler.drain()

    asyncio.run(scenario())
    assert combat.session.target.name == "griefer"
    assert [r.engaged for r in combat.retaliations] == [True, True, False, True, False, True]
    assert combat.engagements == 3


def test_auto_attack_acquires_hostile_mobs(ctx, scheduler, client):
    combat = _combat(ctx, client, auto_attack=True, exclude_names=["creeper"])
    client.add_entity(12, "creeper", _at(2))
    client.add_entity(13, "cow", _at(1))
    zombie = client.add_entity(10, "zombie", _at(20))

    async def scenario():
        await combat.start()
        await scheduler.advance(0.25)

    asyncio.run(scenario())
    assert combat.session.target.entity_id == zombie.entity_id
    assert ctx.engine.get_state() == "fighting"


def test_auto_attack_hostile_players(ctx, scheduler, client):
    combat = _combat(ctx, client)
    client.add_entity(20, "friend", _at(5), kind="player")
    client.add_entity(21, "griefer", _at(40), kind="player")
    combat.config.hostile_players = ["griefer"]

    async def scenario():
        await combat.attack_hostile()
        await scheduler.drain()

    asyncio.run(scenario())
    assert combat.session.target.name == "griefer"


def test_target_lost_returns_to_idle(ctx, scheduler, client):
    combat = _combat(ctx, client, auto_attack=True)
    zombie = client.add_entity(10, "zombie", _at(3))

    async def scenario():
        await combat.start()
        await scheduler.advance(0.25)
        assert combat.session is not None
        client.remove_entity(zombie.entity_id)
        await scheduler.advance(0.25)

    asyncio.run(scenario())
    assert combat.session is None
    assert ctx.engine.get_state() == "idle"
    assert client.attacks.mode is None
    assert ctx.controller.exclusive_holder is None


def test_target_out_of_chase_range_is_dropped(ctx, scheduler, client):
    combat = _combat(ctx, client, max_chase_distance=10.0)
    zombie = client.add_entity(10, "zombie", _at(3))

    async def scenario():
        combat.engage(zombie)
        client.move_entity(zombie.entity_id, _at(30))
        await scheduler.advance(0.25)

    asyncio.run(scenario())
    assert combat.session is None


def test_defend_disables_auto_attack(ctx, scheduler, client):
    combat = _combat(ctx, client)
    client.add_entity(10, "zombie", _at(3))

    async def scenario():
        await combat.attack()
        assert combat.session is not None
        combat.defend()
        await scheduler.advance(1.0)

    asyncio.run(scenario())
    assert combat.session is None
    assert not combat.config.auto_attack


def _deposit(ctx, **overrides):
    deposit = DepositTask(ctx, DepositConfig(item="wheat", chest_area=[10, 64, 0], **overrides))
    deposit.install()
    ctx.controller.register(deposit)
    return deposit


def test_disengage_restores_a_deposit_still_in_progress(ctx, scheduler, client):
    stuck = client.add_sink(Position(10.0, 64.0, 0.0))
    client.stalling_sinks.add(stuck.key)
    client.give("wheat", 70)
    deposit = _deposit(ctx, full_after=100)
    combat = _combat(ctx, client)
    zombie = client.add_entity(10, "zombie", _at(3))

    async def scenario():
        cycle = scheduler.spawn(deposit.trigger())
        await scheduler.advance(3.0)
        assert ctx.engine.get_state() == "depositing"

        combat.engage(zombie)
        assert ctx.engine.get_state() == "fighting"
        client.remove_entity(zombie.entity_id)
        await scheduler.advance(0.25)
        assert combat.session is None
        assert deposit.busy
        assert ctx.engine.get_state() == "depositing"

        deposit.stop()
        assert await scheduler.run_until(cycle.done, timeout=10.0)

    asyncio.run(scenario())
    assert ctx.engine.get_state() == "idle"


def test_disengage_goes_idle_when_the_interrupted_cycle_has_ended(ctx, scheduler, client):
    client.add_sink(Position(10.0, 64.0, 0.0))
    client.give("wheat", 70)
    deposit = _deposit(ctx)
    combat = _combat(ctx, client)
    zombie = client.add_entity(10, "zombie", _at(3))

    async def scenario():
        cycle = scheduler.spawn(deposit.trigger())
        await scheduler.drain()
        assert ctx.engine.get_state() == "depositing"

        combat.engage(zombie)
        assert await scheduler.run_until(cycle.done, timeout=30.0)
        assert ctx.engine.get_state() == "fighting"

        client.remove_entity(zombie.entity_id)
        await scheduler.advance(0.25)

    asyncio.run(scenario())
    assert deposit.deposited == 70
    assert ctx.engine.get_state() == "idle"
