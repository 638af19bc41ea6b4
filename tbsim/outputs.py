"""
Tabular views of simulation results.
"""
import dataclasses
from typing import Sequence

import pandas as pd

from tbsim.compartment import COMPARTMENTS
from tbsim.engine import SimulationMetrics, TimeSeriesPoint
from tbsim.events import SimulationEvent

HISTORY_COLUMNS = [
    "day",
    "timestamp",
    *COMPARTMENTS,
    "new_infections",
    "new_deaths",
    "prevented_infections",
    "effective_r",
    "vaccinations_given",
]
EVENT_COLUMNS = ["id", "day", "type", "description", "details", "location"]


def history_to_frame(history: Sequence[TimeSeriesPoint]) -> pd.DataFrame:
    """
    One row per recorded day, with a column for each compartment and each daily quantity.
    """
    rows = []
    for point in history:
        row = {"day": point.day, "timestamp": point.timestamp}
        row.update(point.compartments.to_dict())
        row.update(
            {
                "new_infections": point.new_infections,
                "new_deaths": point.new_deaths,
                "prevented_infections": point.prevented_infections,
                "effective_r": point.effective_r,
                "vaccinations_given": point.vaccinations_given,
            }
        )
        rows.append(row)

    return pd.DataFrame(rows, columns=HISTORY_COLUMNS).set_index("day")


def metrics_to_frame(metrics: SimulationMetrics) -> pd.DataFrame:
    values = dataclasses.asdict(metrics)
    return pd.DataFrame({"metric": list(values.keys()), "value": list(values.values())}).set_index("metric")


def events_to_frame(events: Sequence[SimulationEvent]) -> pd.DataFrame:
    rows = [
        {
            "id": e.id,
            "day": e.day,
            "type": e.type,
            "description": e.description,
            "details": dict(e.details),
            "location": e.location,
        }
        for e in events
    ]
    return pd.DataFrame(rows, columns=EVENT_COLUMNS)
