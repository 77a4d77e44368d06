import asyncio

from arbiter.eat import EatConfig, EatTask
from arbiter.travel import TravelConfig, TravelTask
from integration.mc_client import Position


def _travel(ctx, **overrides):
    travel = TravelTask(ctx, TravelConfig(**overrides))
    travel.install()
    ctx.controller.register(travel)
    return travel


def test_goto_arrives_and_returns_to_idle(ctx, scheduler, client):
    travel = _travel(ctx)

    async def scenario():
        job = scheduler.spawn(travel.goto(Position(20.0, 64.0, 0.0)))
        await scheduler.drain()
        assert ctx.engine.get_state() == "moving"
        assert travel.is_active()
        assert await scheduler.run_until(job.done, timeout=10.0)
        return job.result()

    assert asyncio.run(scenario()) is True
    assert travel.arrivals == 1
    assert client.position().key() == Position(20.0, 64.0, 0.0).key()
    assert not travel.is_active()
    assert ctx.engine.get_state() == "idle"
    last = ctx.engine.get_history(1)[0]
    assert (last.previous, last.state, last.forced) == ("moving", "idle", False)


def test_unreachable_goal_goes_idle(ctx, scheduler, client):
    travel = _travel(ctx)
    goal = Position(20.0, 64.0, 0.0)
    client.unreachable.add(goal.key())

    async def scenario():
        job = scheduler.spawn(travel.goto(goal))
        assert await scheduler.run_until(job.done, timeout=5.0)
        return job.result()

    assert asyncio.run(scenario()) is False
    assert travel.arrivals == 0
    assert not travel.is_active()
    assert ctx.engine.get_state() == "idle"


def test_goto_stops_and_restarts_the_farm(ctx, scheduler, fake_task):
    log = []
    ctx.controller.register(fake_task("farm", log, active=True))
    travel = _travel(ctx)

    async def scenario():
        job = scheduler.spawn(travel.goto(Position(10.0, 64.0, 0.0)))
        assert await scheduler.run_until(job.done, timeout=10.0)
        return job.result()

    assert asyncio.run(scenario()) is True
    assert log == ["stop farm", "start farm", "started farm"]


def test_pause_all_interrupts_and_resume_all_continues(ctx, scheduler, client):
    travel = _travel(ctx)
    goal = Position(43.0, 64.0, 0.0)

    async def scenario():
        job = scheduler.spawn(travel.goto(goal))
        await scheduler.advance(2.0)
        assert ctx.engine.get_state() == "moving"

        assert await ctx.controller.pause_all() == ["travel"]
        await scheduler.drain()
        assert not travel.is_active()
        assert ctx.engine.get_state() == "idle"
        assert travel.status()["interrupted"] == f"going to {goal.key()}"
        assert job.done()
        assert job.cancelled() or job.result() is False

        assert await ctx.controller.resume_all() == ["travel"]
        assert travel.is_active()
        assert ctx.engine.get_state() == "moving"
        assert await scheduler.run_until(lambda: travel.arrivals == 1, timeout=20.0)

    asyncio.run(scenario())
    assert client.position().key() == goal.key()
    assert ctx.engine.get_state() == "idle"
    assert travel.status()["interrupted"] is None


def test_stop_all_halts_movement(ctx, scheduler, client):
    travel = _travel(ctx)

    async def scenario():
        scheduler.spawn(travel.goto(Position(43.0, 64.0, 0.0)))
        await scheduler.advance(1.0)
        assert await ctx.controller.stop_all() == ["travel"]
        await scheduler.advance(15.0)

    asyncio.run(scenario())
    assert not travel.is_active()
    assert not ctx.movement.is_moving()
    assert travel.arrivals == 0
    assert client.position().key() == Position(0.0, 64.0, 0.0).key()
    assert ctx.engine.get_state() == "idle"
    assert not ctx.controller.has_paused()


def test_follow_keeps_up_and_ends_when_the_target_is_lost(ctx, scheduler, client):
    travel = _travel(ctx)
    steve = client.add_entity(20, "Steve", Position(10.0, 64.0, 0.0), kind="player")

    async def scenario():
        assert travel.follow("Steve")
        assert ctx.engine.get_state() == "following"
        await scheduler.advance(3.0)
        assert client.position().distance_to(steve.position) <= 3.0

        client.move_entity(steve.entity_id, Position(30.0, 64.0, 0.0))
        await scheduler.advance(8.0)
        assert client.position().distance_to(Position(30.0, 64.0, 0.0)) <= 3.0
        assert ctx.engine.get_state() == "following"

        client.remove_entity(steve.entity_id)
        await scheduler.advance(1.5)

    asyncio.run(scenario())
    assert travel.lost_targets == 1
    assert not travel.is_active()
    assert ctx.engine.get_state() == "idle"


def test_follow_unknown_target_is_refused(ctx):
    travel = _travel(ctx)
    assert not travel.follow("nobody")
    assert not travel.is_active()
    assert ctx.engine.get_state() == "idle"


def test_patrol_cycles_through_waypoints(ctx, scheduler, client):
    travel = _travel(ctx, patrol_pause=1.0, waypoints={"a": [10, 64, 0], "b": [0, 64, 10]})

    async def scenario():
        assert travel.patrol()
        assert ctx.engine.get_state() == "patrolling"
        assert await scheduler.run_until(lambda: travel.waypoints_reached >= 4, timeout=60.0)
        assert ctx.engine.get_state() == "patrolling"
        await travel.cancel()

    asyncio.run(scenario())
    assert client.goals[:4] == [
        Position(10.0, 64.0, 0.0), Position(0.0, 64.0, 10.0),
        Position(10.0, 64.0, 0.0), Position(0.0, 64.0, 10.0),
    ]
    assert not travel.is_active()
    assert travel.status()["interrupted"] is None
    assert ctx.engine.get_state() == "idle"


def test_patrol_stops_when_a_waypoint_is_unreachable(ctx, scheduler, client):
    travel = _travel(ctx, patrol_pause=1.0, waypoints={"a": [10, 64, 0], "b": [0, 64, 10]})
    client.unreachable.add(Position(0.0, 64.0, 10.0).key())

    async def scenario():
        assert travel.patrol(["a", "b"])
        assert await scheduler.run_until(lambda: not travel.is_active(), timeout=30.0)

    asyncio.run(scenario())
    assert travel.waypoints_reached == 1
    assert ctx.engine.get_state() == "idle"


def test_patrol_needs_two_known_waypoints(ctx):
    travel = _travel(ctx, waypoints={"a": [10, 64, 0], "b": [0, 64, 10]})
    assert not travel.patrol(["a"])
    assert not travel.patrol(["a", "nowhere"])
    assert not travel.is_active()
    assert asyncio.run(travel.goto_waypoint("nowhere")) is False


def test_commands_refused_while_another_task_has_control(ctx, client):
    travel = _travel(ctx)
    client.add_entity(20, "Steve", Position(10.0, 64.0, 0.0), kind="player")
    ctx.controller.claim("deposit_wheat")

    assert not travel.follow("Steve")
    assert asyncio.run(travel.goto(Position(10.0, 64.0, 0.0))) is False
    assert not travel.is_active()
    assert client.goals == []


def test_eating_interrupts_travel_and_hands_it_back(ctx, scheduler, client):
    travel = _travel(ctx)
    eat = EatTask(ctx, EatConfig())
    eat.install()
    ctx.controller.register(eat)
    client.set_vitals(food=5.0)
    client.give("bread", 4)
    goal = Position(43.0, 64.0, 0.0)

    async def scenario():
        scheduler.spawn(travel.goto(goal))
        await scheduler.advance(1.0)
        meal = scheduler.spawn(eat.trigger())
        assert await scheduler.run_until(meal.done, timeout=10.0)
        assert meal.result()
        assert travel.is_active()
        assert ctx.engine.get_state() == "moving"
        assert await scheduler.run_until(lambda: travel.arrivals == 1, timeout=20.0)

    asyncio.run(scenario())
    assert eat.eaten > 0
    assert client.position().key() == goal.key()
    assert ctx.engine.get_state() == "idle"
    assert ctx.controller.exclusive_holder is None
