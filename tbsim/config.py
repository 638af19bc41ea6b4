"""
Simulation configuration: the validated run configuration, YAML parameter loading and the regional breakdown.
"""
import logging
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

import yaml
from pydantic import Field, field_validator

from tbsim.compartment import CompartmentState
from tbsim.parameters import BaseModel, DiseaseParameters, create_disease_parameters
from tbsim.policies import PolicyIntervention, VaccinationPolicy
from tbsim.settings import DEFAULT_CONFIG_PATH, REGIONAL_REFERENCE_INCIDENCE

logger = logging.getLogger(__name__)

Validator = Callable[[dict], None]
PathOrDict = Union[dict, str, Path]


class RegionConfig(BaseModel):
    id: str
    name: str
    population: float = Field(gt=0.0)
    # Notified cases per 100,000
    tb_incidence_rate: float = Field(ge=0.0)
    vaccination_coverage: float = Field(ge=0.0, le=1.0)


class SimulationConfig(BaseModel):
    """
    Everything needed to run one simulation.
    Fixed for the duration of a run, apart from explicit updates through the engine.
    """

    id: str = "default"
    name: str
    description: str = ""
    # Days
    duration: int = Field(gt=0)
    # Fraction of a day per integration step
    time_step: float = Field(gt=0.0, le=1.0)
    total_population: float = Field(gt=0.0)
    initial_infected: float = Field(ge=0.0)
    initial_latent: float = Field(ge=0.0)
    imported_cases_per_day: float = Field(0.0, ge=0.0)
    disease_params: DiseaseParameters = Field(default_factory=create_disease_parameters)
    vaccination_policy: VaccinationPolicy
    interventions: List[PolicyIntervention] = Field(default_factory=list)
    regions: List[RegionConfig] = Field(default_factory=list)

    @field_validator("disease_params", mode="before")
    @classmethod
    def fill_disease_params(cls, value):
        # Partially specified parameters are completed from the derived defaults
        if isinstance(value, dict):
            return {**create_disease_parameters().model_dump(), **value}
        return value

    def merge(self, partial: dict) -> "SimulationConfig":
        """
        Returns a new, validated config with the top level fields of partial replacing the current ones.
        """
        data = {k: getattr(self, k) for k in type(self).model_fields}
        data.update(partial)
        return SimulationConfig(**data)


def validate_config(data: dict):
    SimulationConfig(**data)


"""
Loading configuration from parameter files
"""


def merge_dicts(src: dict, dest: dict) -> dict:
    """
    Merge src dict into dest dict.

    Args:
        src: Source dictionary
        dest: Destination dictionary
    Returns:
        The merged dictionary

    """
    for key, value in src.items():
        if isinstance(value, dict):
            # Get node or create one
            node = dest.setdefault(key, {})
            if node is None:
                dest[key] = value
            else:
                merge_dicts(value, node)
        else:
            dest[key] = value

    return dest


def read_yaml_file(path: Union[str, Path]) -> dict:
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


class Params:
    """
    Layers of configuration, each a YAML file or a dict, merged in the order they were added.
    Each new layer is checked by the validator with every earlier layer applied.
    """

    def __init__(self, data: PathOrDict, validator: Optional[Validator] = None):
        self._layers = []
        self._validator = validator
        self._add_layer(data)

    def to_dict(self) -> dict:
        merged = {}
        for layer in self._layers:
            merged = merge_dicts(deepcopy(layer), merged)

        return merged

    def update(self, data: PathOrDict) -> "Params":
        """
        Returns a copy with another layer on top, overwriting existing values where they conflict.
        """
        updated = Params({})
        updated._layers = list(self._layers)
        updated._validator = self._validator
        updated._add_layer(data)
        return updated

    def _add_layer(self, data: PathOrDict):
        if isinstance(data, (str, Path)):
            layer = read_yaml_file(data)
        elif isinstance(data, dict):
            layer = data
        else:
            raise ValueError(f"Loaded parameter data must be a path or dict, got {type(data)}")

        self._layers.append(layer)
        if self._validator:
            self._validator(self.to_dict())


def get_base_params() -> Params:
    return Params(DEFAULT_CONFIG_PATH, validator=validate_config)


def load_config(path_or_dict: Optional[PathOrDict] = None) -> SimulationConfig:
    """
    Build a validated simulation config from the defaults, with an optional file or dict of updates on top.

    Raises:
        pydantic.ValidationError: If the merged configuration is invalid

    """
    params = get_base_params()
    if path_or_dict is not None:
        if not isinstance(path_or_dict, dict):
            logger.info("Loading simulation config from %s", path_or_dict)
        params = params.update(path_or_dict)

    return SimulationConfig(**params.to_dict())


"""
Regional breakdown
"""


@dataclass(frozen=True)
class RegionState:
    region_id: str
    compartments: CompartmentState
    population: float
    incidence_rate: float


def partition_by_region(
    state: CompartmentState, regions: Sequence[RegionConfig], total_population: float
) -> Dict[str, RegionState]:
    """
    Split the national compartments across regions in proportion to population.
    Latent and infectious counts are weighted by the regional incidence relative to the national reference,
    and vaccinated counts by the regional vaccination coverage,
    so the regional states need not sum back to the national state.
    """
    region_states = {}
    for region in regions:
        share = region.population / total_population
        incidence_weight = region.tb_incidence_rate / REGIONAL_REFERENCE_INCIDENCE
        compartments = CompartmentState(
            S=state.S * share,
            V=state.V * share * region.vaccination_coverage,
            E_H=state.E_H * share * incidence_weight,
            E_L=state.E_L * share * incidence_weight,
            I=state.I * share * incidence_weight,
            R=state.R * share,
            D=state.D * share,
        )
        region_states[region.id] = RegionState(
            region_id=region.id,
            compartments=compartments,
            population=region.population,
            incidence_rate=region.tb_incidence_rate,
        )

    return region_states
