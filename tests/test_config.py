import json
from dataclasses import dataclass, field
from typing import List

import pytest

from arbiter.bot import BotConfig
from arbiter.errors import ConfigError
from utils.config import apply_overrides, load_config, save_config, set_seed


@dataclass
class Sample:
    interval: float = 1.0
    count: int = 3
    enabled: bool = False
    names: List[str] = field(default_factory=list)


def test_load_yaml(tmp_path):
    path = tmp_path / "bot.yaml"
    path.write_text("farm:\n  check_interval: 5\n  crop: carrots\n")
    assert load_config(str(path)) == {"farm": {"check_interval": 5, "crop": "carrots"}}


def test_load_json(tmp_path):
    path = tmp_path / "bot.json"
    path.write_text(json.dumps({"seed": 3}))
    assert load_config(str(path)) == {"seed": 3}


def test_load_missing_empty_and_malformed(tmp_path):
    assert load_config(str(tmp_path / "nope.yaml")) is None

    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    assert load_config(str(empty)) == {}

    listing = tmp_path / "list.yaml"
    listing.write_text("- a\n- b\n")
    assert load_config(str(listing)) is None

    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    assert load_config(str(broken)) is None


def test_save_then_load(tmp_path):
    path = str(tmp_path / "nested" / "out.yaml")
    save_config({"eat": {"threshold": 12}}, path)
    assert load_config(path) == {"eat": {"threshold": 12}}


def test_apply_overrides_coerces_and_ignores_unknown(caplog):
    sample = apply_overrides(Sample(), {"interval": 2, "count": "7", "enabled": "true",
                                        "names": ["x"], "colour": "red"}, "sample")
    assert sample == Sample(interval=2.0, count=7, enabled=True, names=["x"])
    assert isinstance(sample.interval, float)
    assert "sample.colour" in caplog.text


def test_apply_overrides_rejects_bad_values():
    with pytest.raises(ValueError):
        apply_overrides(Sample(), {"count": "many"})
    with pytest.raises(ValueError):
        apply_overrides(Sample(), {"enabled": "maybe"})
    with pytest.raises(ValueError):
        apply_overrides(Sample(), ["not", "a", "mapping"])


def test_bot_config_from_dict():
    config = BotConfig.from_dict({
        "max_runtime_minutes": 15,
        "seed": 42,
        "engine": {"tick_interval": 1},
        "farm": {"crop": "carrots", "harvest_item": "carrot"},
        "combat": {"auto_attack": True, "hostile_players": ["griefer"]},
        "deposits": [
            {"item": "carrot", "threshold": 128, "chest_area": [0, 64, 10]},
        ],
    })
    assert config.max_runtime_minutes == 15.0
    assert config.seed == 42
    assert config.engine.tick_interval == 1.0
    assert config.farm.crop == "carrots"
    assert config.combat.auto_attack is True
    assert config.combat.hostile_players == ["griefer"]
    assert [d.item for d in config.deposits] == ["carrot"]
    assert config.deposits[0].threshold == 128
    assert config.to_dict()["deposits"][0]["chest_area"] == [0, 64, 10]


def test_bot_config_travel_section():
    config = BotConfig.from_dict({
        "travel": {"follow_distance": 5, "waypoints": {"home": [0, 64, 0], "field": [20, 64, 5]}},
    })
    assert config.travel.follow_distance == 5.0
    assert list(config.travel.waypoints) == ["home", "field"]
    assert config.to_dict()["travel"]["waypoints"]["field"] == [20, 64, 5]


def test_bot_config_defaults_have_two_deposit_items():
    config = BotConfig.from_dict(None)
    assert [d.item for d in config.deposits] == ["sugar_cane", "wheat"]


def test_bot_config_errors():
    with pytest.raises(ConfigError):
        BotConfig.from_dict({"eat": {"threshold": "hungry"}})
    with pytest.raises(ConfigError):
        BotConfig.from_dict({"deposits": {"item": "wheat"}})
    with pytest.raises(ConfigError):
        BotConfig.from_dict({"deposits": [{"item": "wheat"}, {"item": "wheat"}]})


def test_set_seed_returns_reproducible_rng():
    first = set_seed(5)
    second = set_seed(5)
    assert [first.random() for _ in range(3)] == [second.random() for _ in range(3)]
