"""
Runs the TB simulator

You can access this script from your CLI by running:

    python -m tbsim --help

"""
from tbsim.cli import cli

cli()
