import asyncio

from arbiter.farm import FarmConfig, FarmTask
from integration.mc_client import Position


def _farm(ctx, **overrides):
    farm = FarmTask(ctx, FarmConfig(**overrides))
    farm.install()
    ctx.controller.register(farm)
    return farm


def test_harvests_mature_crops_and_replants(ctx, scheduler, client):
    ripe = client.add_crop(Position(3.0, 64.0, 0.0), age=7)
    young = client.add_crop(Position(4.0, 64.0, 0.0), age=3)
    client.give("wheat_seeds", 2)
    farm = _farm(ctx)

    async def scenario():
        await farm.start()
        assert ctx.engine.get_state() == "farming"
        assert await scheduler.run_until(lambda: farm.harvested == 1, timeout=20.0)
        await scheduler.advance(10.0)

    asyncio.run(scenario())
    assert client.count("wheat") == 1
    assert client.count("wheat_seeds") == 2
    assert ripe.metadata == 0
    assert young.metadata == 3
    assert farm.harvested == 1


def test_stop_returns_engine_to_idle(ctx, scheduler):
    farm = _farm(ctx)

    async def scenario():
        await farm.start()
        assert farm.is_active()
        farm.stop()

    asyncio.run(scenario())
    assert not farm.is_active()
    assert ctx.engine.get_state() == "idle"


def test_yields_to_exclusive_holder(ctx, scheduler, client):
    client.add_crop(Position(3.0, 64.0, 0.0), age=7)
    farm = _farm(ctx)

    async def scenario():
        ctx.controller.claim("deposit_wheat")
        await farm.start()
        await scheduler.advance(10.0)
        assert farm.harvested == 0

        ctx.controller.release("deposit_wheat")
        assert await scheduler.run_until(lambda: farm.harvested == 1, timeout=20.0)

    asyncio.run(scenario())


def test_replant_disabled_leaves_the_plot_empty(ctx, scheduler, client):
    crop = client.add_crop(Position(3.0, 64.0, 0.0), age=7)
    farm = _farm(ctx, replant=False)

    async def scenario():
        cycle = scheduler.spawn(farm.trigger())
        assert await scheduler.run_until(cycle.done, timeout=20.0)
        return cycle.result()

    assert asyncio.run(scenario()) is True
    assert farm.harvested == 1
    assert crop.metadata == -1
    assert client.count("wheat_seeds") == 1


def test_forced_cycle_without_crops_does_nothing(ctx, scheduler, client):
    farm = _farm(ctx)

    async def scenario():
        cycle = scheduler.spawn(farm.trigger())
        assert await scheduler.run_until(cycle.done, timeout=20.0)

    asyncio.run(scenario())
    assert farm.stats.iterations == 0
    assert client.goals == []
