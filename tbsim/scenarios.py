"""
Pre-built policy scenarios.

Each scenario is a partial simulation config, read from params/scenarios/<id>.yml,
that is merged over a full configuration to produce a runnable one.
"""
import logging
from copy import deepcopy
from typing import Dict, Optional

from tbsim.config import SimulationConfig, load_config, read_yaml_file
from tbsim.parameters import BaseModel
from tbsim.settings import SCENARIOS_PATH

logger = logging.getLogger(__name__)

# Display order
SCENARIO_IDS = [
    "current-trajectory",
    "universal-bcg",
    "enhanced-screening",
    "who-elimination",
    "no-intervention",
]


class ScenarioPreset(BaseModel):
    id: str
    name: str
    description: str
    expected_outcome: str
    config: dict


def _load_scenarios() -> Dict[str, ScenarioPreset]:
    scenarios = {}
    for scenario_id in SCENARIO_IDS:
        data = read_yaml_file(SCENARIOS_PATH / f"{scenario_id}.yml")
        scenario = ScenarioPreset(**data)
        assert scenario.id == scenario_id, f"Scenario file {scenario_id}.yml declares id {scenario.id}"
        scenarios[scenario_id] = scenario

    return scenarios


SCENARIOS = _load_scenarios()


def is_valid_scenario_id(scenario_id: str) -> bool:
    return scenario_id in SCENARIOS


def get_scenario(scenario_id: str) -> Optional[ScenarioPreset]:
    return SCENARIOS.get(scenario_id)


def get_scenario_config(scenario_id: str) -> Optional[dict]:
    """
    Returns a copy of the partial config for a scenario, or None if there is no such scenario.
    """
    scenario = get_scenario(scenario_id)
    if scenario is None:
        return None

    return deepcopy(scenario.config)


def build_scenario_config(scenario_id: str, base: Optional[SimulationConfig] = None) -> SimulationConfig:
    """
    Build a complete, validated config for a scenario.

    Args:
        scenario_id: One of SCENARIO_IDS
        base: Config to apply the scenario to, the default config if not supplied

    Returns:
        The scenario's simulation config

    Raises:
        KeyError: If the scenario does not exist

    """
    partial = get_scenario_config(scenario_id)
    if partial is None:
        raise KeyError(f"Unknown scenario {scenario_id}, expected one of {SCENARIO_IDS}")

    logger.info("Building config for scenario %s", scenario_id)
    if base is None:
        return load_config(partial)

    return base.merge(partial)
