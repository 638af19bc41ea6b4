"""
Tuberculosis transmission and vaccination impact simulator.
"""
from .compartment import CompartmentState
from .config import SimulationConfig, load_config
from .engine import SimulationEngine, SimulationStatus
from .parameters import DiseaseParameters, create_disease_parameters
from .scenarios import SCENARIO_IDS, build_scenario_config
