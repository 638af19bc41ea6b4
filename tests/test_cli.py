import pandas as pd
import yaml
from click.testing import CliRunner

from tbsim.cli import cli
from tbsim.scenarios import SCENARIO_IDS


def test_list_scenarios():
    result = CliRunner().invoke(cli, ["scenarios"])
    assert result.exit_code == 0, result.output
    lines = result.output.strip().splitlines()
    assert [line.split("\t")[0] for line in lines] == SCENARIO_IDS


def test_run_scenario():
    result = CliRunner().invoke(cli, ["run", "--scenario", "universal-bcg", "--days", "3"])
    assert result.exit_code == 0, result.output
    assert "Universal BCG: day 3 of 5475" in result.output
    assert "infections_prevented" in result.output


def test_run_unknown_scenario():
    result = CliRunner().invoke(cli, ["run", "--scenario", "status-quo", "--days", "3"])
    assert result.exit_code == 2
    assert "--scenario" in result.output


def test_run_config_file(tmp_path):
    config_path = tmp_path / "config.yml"
    output_path = tmp_path / "history.csv"
    config = {"name": "Small run", "duration": 10, "total_population": 1_000_000, "regions": []}
    config_path.write_text(yaml.safe_dump(config))

    result = CliRunner().invoke(cli, ["run", "--config", str(config_path), "--output", str(output_path)])
    assert result.exit_code == 0, result.output
    assert "Small run: day 10 of 10" in result.output

    history = pd.read_csv(output_path, index_col="day")
    assert list(history.index) == list(range(11))


def test_run_missing_config_file(tmp_path):
    result = CliRunner().invoke(cli, ["run", "--config", str(tmp_path / "missing.yml")])
    assert result.exit_code == 2


def test_trajectory(tmp_path):
    output_path = tmp_path / "trajectory.csv"
    result = CliRunner().invoke(cli, ["trajectory", "--days", "30", "--output", str(output_path)])
    assert result.exit_code == 0, result.output

    frame = pd.read_csv(output_path, index_col="day")
    assert len(frame) == 31
    assert list(frame.columns) == ["S", "V", "E_H", "E_L", "I", "R", "D"]
    assert (frame.values >= 0).all()


def test_trajectory_unknown_solver():
    result = CliRunner().invoke(cli, ["trajectory", "--solver", "leapfrog"])
    assert result.exit_code == 2
