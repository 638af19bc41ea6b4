import os
from pathlib import Path
from os.path import dirname

# Filesystem paths
PACKAGE_PATH = Path(os.path.abspath(dirname(dirname(__file__))))
PARAMS_PATH = PACKAGE_PATH / "params"
SCENARIOS_PATH = PARAMS_PATH / "scenarios"
TB_PARAMETERS_PATH = PARAMS_PATH / "tb_parameters.yml"
DEFAULT_CONFIG_PATH = PARAMS_PATH / "default.yml"
