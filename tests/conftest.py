# PyTest configuration file.
# See pytest fixture docs: https://docs.pytest.org/en/latest/fixture.html
from datetime import datetime

import pytest

from tbsim.compartment import CompartmentState
from tbsim.config import load_config
from tbsim.parameters import create_disease_parameters

START_TIME = datetime(2024, 1, 1)


def pytest_configure(config):
    config.addinivalue_line("markers", "run_models: A test which runs a full length simulation")


@pytest.fixture
def params():
    return create_disease_parameters()


@pytest.fixture
def population_state():
    """A population of one million with an established epidemic"""
    return CompartmentState(S=900_000, V=50_000, E_H=10_000, E_L=30_000, I=2_000, R=8_000, D=0)


@pytest.fixture
def small_config():
    """
    The default config scaled down to a short run of a small population with no regions.
    """
    return load_config(
        {
            "duration": 60,
            "total_population": 1_000_000,
            "initial_infected": 500,
            "initial_latent": 10_000,
            "imported_cases_per_day": 2.0,
            "regions": [],
        }
    )


@pytest.fixture
def start_time():
    return START_TIME
