import random

import pytest

from arbiter.automation import AutomationController, AutomationTask
from arbiter.context import BotContext
from arbiter.navigation import GuardedMovement
from arbiter.scheduler import VirtualScheduler
from arbiter.state_machine import EngineConfig, StateMachineEngine
from integration.simulated import SimulatedClient


class FakeTask(AutomationTask):
    """Automation task that records start/stop calls into a shared log."""

    def __init__(self, name, log, active=False, start_delay=0.0, scheduler=None, fail_on_start=False):
        self.name = name
        self.log = log
        self.active = active
        self.start_delay = start_delay
        self.scheduler = scheduler
        self.fail_on_start = fail_on_start

    def is_active(self):
        return self.active

    async def start(self):
        self.log.append(f"start {self.name}")
        if self.fail_on_start:
            raise RuntimeError("cannot start")
        if self.start_delay:
            await self.scheduler.sleep(self.start_delay)
        self.active = True
        self.log.append(f"started {self.name}")

    def stop(self):
        self.log.append(f"stop {self.name}")
        self.active = False


@pytest.fixture
def scheduler():
    return VirtualScheduler()


@pytest.fixture
def client(scheduler):
    return SimulatedClient(scheduler)


@pytest.fixture
def ctx(scheduler, client):
    engine = StateMachineEngine(scheduler, EngineConfig(tick_interval=1.0))
    movement = GuardedMovement(client, scheduler, default_timeout=30.0)
    controller = AutomationController(engine, movement)
    return BotContext(
        scheduler=scheduler,
        engine=engine,
        controller=controller,
        movement=movement,
        perception=client,
        inventory=client,
        attacks=client.attacks,
        world=client,
        rng=random.Random(7),
    )


@pytest.fixture
def fake_task():
    return FakeTask
