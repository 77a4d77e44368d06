import asyncio
import random

from arbiter.bot import Bot, BotConfig
from arbiter.deposit import DepositConfig
from arbiter.farm import FarmConfig
from arbiter.scheduler import VirtualScheduler
from arbiter.travel import TravelConfig
from integration.mc_client import Position
from integration.simulated import SimulatedClient, build_demo_world
from utils.logger import SessionLogger


def _bot(config=None, session=None):
    scheduler = VirtualScheduler()
    client = SimulatedClient(scheduler)
    bot = Bot.from_client(client, config or BotConfig(), scheduler=scheduler,
                          rng=random.Random(1), session=session)
    return bot, client, scheduler


def test_wiring_registers_every_behavior():
    bot, _, _ = _bot()
    assert set(bot.engine.registry.names()) == {
        "idle", "farming", "depositing_sugar_cane", "depositing_wheat", "eating", "fighting",
        "moving", "following", "patrolling",
    }
    assert bot.controller.names() == ["farm", "deposit_sugar_cane", "deposit_wheat", "eat", "travel"]
    assert bot.get_state() == "idle"


def test_from_client_wires_combat_signals():
    bot, client, _ = _bot()
    assert client.on_damaged == bot.combat.on_damaged
    assert client.on_attack_correlated == bot.combat.on_attack_correlated


def test_unknown_task_names_are_rejected():
    bot, _, _ = _bot()

    async def scenario():
        assert await bot.start_task("fish") is False
        assert bot.stop_task("fish") is False
        assert await bot.trigger("fish") is False
        assert await bot.trigger("combat") is False

    asyncio.run(scenario())


def test_deposit_interrupts_farming_and_hands_back(tmp_path):
    config = BotConfig(
        farm=FarmConfig(auto_start=True),
        deposits=[DepositConfig(item="wheat", threshold=64, chest_area=[12, 64, 0])],
    )
    session = SessionLogger(str(tmp_path), session_name="bot", clock=lambda: 0.0)
    bot, client, scheduler = _bot(config, session)
    client.add_sink(Position(12.0, 64.0, 0.0))
    client.give("wheat", 70)
    deposit = bot.deposits[0]

    async def scenario():
        await bot.start()
        assert bot.get_state() == "farming"
        await bot.start_task("deposit_wheat")
        assert await scheduler.run_until(lambda: deposit.stats.cycles == 1, timeout=30.0)
        await bot.shutdown()

    asyncio.run(scenario())

    states = [(h["previous"], h["state"]) for h in bot.get_history(10)]
    assert ("farming", "idle") in states
    assert ("idle", "depositing_wheat") in states
    assert ("depositing_wheat", "idle") in states
    assert states.index(("idle", "depositing_wheat")) < states.index(("depositing_wheat", "idle"))
    assert client.count("wheat") == 0

    stats = bot.get_stats()
    assert stats["deposited"] == {"wheat": 70}
    assert stats["session"]["cycles"] == 1
    assert bot.get_state() == "idle"
    assert not bot.engine.is_running


def test_farm_resumes_after_deposit():
    config = BotConfig(
        farm=FarmConfig(auto_start=True),
        deposits=[DepositConfig(item="wheat", threshold=64, chest_area=[12, 64, 0])],
    )
    bot, client, scheduler = _bot(config)
    client.add_sink(Position(12.0, 64.0, 0.0))
    client.give("wheat", 70)

    async def scenario():
        await bot.start()
        await bot.start_task("deposit_wheat")
        assert await scheduler.run_until(lambda: bot.deposits[0].stats.cycles == 1, timeout=30.0)
        await scheduler.drain()

    asyncio.run(scenario())
    assert bot.farm.is_active()
    assert bot.get_state() == "farming"
    assert not bot.controller.has_paused()


def test_pause_resume_and_stop_commands():
    bot, _, _ = _bot()

    async def scenario():
        await bot.start_task("farm")
        await bot.start_task("eat")
        assert await bot.pause_all() == ["farm", "eat"]
        assert await bot.resume_all() == ["farm", "eat"]
        assert await bot.stop_all() == ["farm", "eat"]
        assert await bot.resume_all() == []

    asyncio.run(scenario())
    assert bot.get_state() == "idle"


def test_run_stops_at_runtime_limit():
    bot, _, scheduler = _bot()

    async def scenario():
        run = scheduler.spawn(bot.run(max_runtime_minutes=1))
        assert await scheduler.run_until(run.done, timeout=120.0, step=1.0)
        run.result()
        return scheduler.now()

    finished_at = asyncio.run(scenario())
    assert 60.0 <= finished_at <= 62.0
    assert not bot.engine.is_running
    assert not bot.combat.is_active()


def test_request_stop_ends_run():
    bot, _, scheduler = _bot()

    async def scenario():
        run = scheduler.spawn(bot.run())
        await scheduler.advance(5.0)
        bot.request_stop()
        assert await scheduler.run_until(run.done, timeout=5.0, step=1.0)

    asyncio.run(scenario())
    assert bot.get_stats()["runtime_seconds"] >= 5.0


def test_demo_world_session():
    config = BotConfig(farm=FarmConfig(auto_start=True))
    bot, client, scheduler = _bot(config)
    build_demo_world(client)

    async def scenario():
        await bot.start()
        await scheduler.advance(120.0)
        status = bot.status()
        await bot.shutdown()
        return status

    status = asyncio.run(scenario())
    assert bot.farm.harvested > 0
    assert status["tasks"]["farm"]["harvested"] == bot.farm.harvested
    assert "combat" in status["tasks"]


def test_retaliation_while_farming():
    config = BotConfig(farm=FarmConfig(auto_start=True))
    bot, client, scheduler = _bot(config)
    zombie = client.add_entity(10, "zombie", Position(3.0, 64.0, 0.0))

    async def scenario():
        await bot.start()
        client.hurt(2.0)
        await scheduler.advance(0.05)
        client.correlate(zombie.entity_id)
        await scheduler.advance(0.5)

    asyncio.run(scenario())
    assert bot.get_state() == "fighting"
    assert bot.get_stats()["retaliations"] == 1


def test_travel_commands():
    config = BotConfig(travel=TravelConfig(waypoints={"home": [5, 64, 0], "field": [5, 64, 5]}))
    bot, client, scheduler = _bot(config)

    async def scenario():
        job = scheduler.spawn(bot.goto(12.0, 64.0, 0.0))
        assert await scheduler.run_until(job.done, timeout=10.0)
        assert job.result() is True
        assert bot.patrol(["home", "field"])
        await scheduler.advance(3.0)
        assert bot.get_state() == "patrolling"
        await bot.stop_travel()

    asyncio.run(scenario())
    assert bot.get_stats()["arrivals"] == 1
    assert bot.get_state() == "idle"
    assert not bot.follow("nobody")
    assert client.goals[:2] == [Position(12.0, 64.0, 0.0), Position(5.0, 64.0, 0.0)]
