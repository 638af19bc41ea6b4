"""
Runs TB simulations

You can access this script from your CLI by running:

    python -m tbsim --help

"""
import logging

import click

from .simulate import run, scenarios, trajectory


@click.group()
@click.option("--verbose", is_flag=True, help="Log each simulated day.")
def cli(verbose):
    """TB simulator CLI"""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)


cli.add_command(run)
cli.add_command(scenarios)
cli.add_command(trajectory)
