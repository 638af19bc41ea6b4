"""
Simulation commands
"""
import logging

import click
import numpy as np
import pandas as pd

from tbsim.compartment import COMPARTMENTS
from tbsim.config import load_config
from tbsim.engine import SimulationEngine
from tbsim.model import create_initial_state
from tbsim.outputs import history_to_frame, metrics_to_frame
from tbsim.scenarios import SCENARIO_IDS, build_scenario_config, get_scenario
from tbsim.solver import SOLVER_TYPES, SolverType, solve_model

logger = logging.getLogger(__name__)


@click.command()
@click.option("--scenario", type=str, default=None, help="Preset scenario to run.")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), default=None)
@click.option("--days", type=click.IntRange(min=0), default=None, help="Days to simulate, the whole run if not given.")
@click.option("--output", type=click.Path(dir_okay=False), default=None, help="CSV file for the daily history.")
def run(scenario, config_path, days, output):
    """
    Run a simulation and print its metrics.
    """
    config = load_config(config_path)
    if scenario is not None:
        try:
            config = build_scenario_config(scenario, base=config)
        except KeyError:
            raise click.BadParameter(f"Expected one of {', '.join(SCENARIO_IDS)}", param_hint="--scenario")

    engine = SimulationEngine(config)
    engine.initialize()
    engine.run(days if days is not None else config.duration)

    state = engine.get_state()
    click.echo(f"{config.name}: day {state.current_day} of {config.duration}")
    click.echo(metrics_to_frame(state.metrics).to_string())
    if output:
        history_to_frame(state.history).to_csv(output)
        logger.info("Wrote daily history to %s", output)


@click.command()
def scenarios():
    """
    List the preset scenarios.
    """
    for scenario_id in SCENARIO_IDS:
        scenario = get_scenario(scenario_id)
        click.echo(f"{scenario_id}\t{scenario.name}\t{scenario.description}")


@click.command()
@click.option("--days", type=click.IntRange(min=1), default=365)
@click.option("--solver", type=click.Choice(SOLVER_TYPES), default=SolverType.RUNGE_KUTTA)
@click.option("--output", type=click.Path(dir_okay=False), default=None)
def trajectory(days, solver, output):
    """
    Solve the model equations for the default population, without policies or imported cases.
    """
    config = load_config()
    state = create_initial_state(
        config.total_population, config.initial_infected, config.initial_latent, 0.0
    )
    times = np.arange(days + 1, dtype=float)
    results = solve_model(state, config.disease_params, times, solver, {"step_size": 1.0})

    frame = pd.DataFrame(results, columns=COMPARTMENTS, index=pd.Index(times, name="day"))
    click.echo(frame.iloc[[0, -1]].to_string())
    if output:
        frame.to_csv(output)
        logger.info("Wrote %s trajectory to %s", solver, output)
