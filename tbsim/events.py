"""
Discrete simulation events and the checks that raise them each day.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from tbsim.model import calculate_incidence_rate
from tbsim.policies import PolicyIntervention
from tbsim.settings import (
    DAYS_PER_YEAR,
    DEATH_MILESTONES,
    MAX_EVENTS,
    OUTBREAK_MIN_INFECTIONS,
    OUTBREAK_MULTIPLIER,
    OUTBREAK_WINDOW_DAYS,
    WHO_LOW_INCIDENCE_THRESHOLD,
)


class EventType:
    OUTBREAK = "outbreak"
    THRESHOLD_CROSSED = "threshold_crossed"
    POLICY_CHANGE = "policy_change"
    DEATH = "death"


@dataclass(frozen=True)
class SimulationEvent:
    id: str
    day: int
    type: str
    description: str
    details: Mapping[str, Any] = field(default_factory=dict)
    location: Optional[str] = None


def make_event(day: int, seq: int, event_type: str, description: str, details: dict) -> SimulationEvent:
    """
    Event ids are unique within a run, numbered in the order the events were raised.
    """
    return SimulationEvent(
        id=f"evt_{day}_{seq}",
        day=day,
        type=event_type,
        description=description,
        details=MappingProxyType(dict(details)),
    )


def append_events(
    events: Tuple[SimulationEvent, ...], new_events: Sequence[SimulationEvent], max_events: int = MAX_EVENTS
) -> Tuple[SimulationEvent, ...]:
    """
    Add events to the log, keeping only the most recent max_events.
    """
    combined = (*events, *new_events)
    if len(combined) > max_events:
        return combined[-max_events:]

    return combined


def get_trailing_incidence_rate(new_infections: Sequence[float], population: float) -> float:
    """
    Annualised incidence per 100,000, from the mean daily infections over the last year or less of history.
    """
    lookback = min(DAYS_PER_YEAR, len(new_infections))
    if lookback == 0:
        return 0.0

    recent = sum(new_infections[-lookback:])
    annualised = recent / lookback * DAYS_PER_YEAR
    return calculate_incidence_rate(annualised, population)


"""
Daily checks, each returning (type, description, details) for the events raised
"""


def check_outbreak(previous_infections: Sequence[float], new_infections: float) -> List[tuple]:
    """
    An outbreak is a day with more than double the average of the last week, above an absolute floor.
    The week ends with the day itself, and at least a week of earlier days must be recorded.
    """
    if len(previous_infections) < OUTBREAK_WINDOW_DAYS:
        return []

    window = [*previous_infections[-(OUTBREAK_WINDOW_DAYS - 1):], new_infections]
    recent_avg = sum(window) / OUTBREAK_WINDOW_DAYS
    # A positive day gives a positive average, so the increase is always defined
    if new_infections > recent_avg * OUTBREAK_MULTIPLIER and new_infections > OUTBREAK_MIN_INFECTIONS:
        details = {
            "new_infections": round(new_infections),
            "previous_average": round(recent_avg),
            "increase": round((new_infections / recent_avg - 1.0) * 100),
        }
        return [(EventType.OUTBREAK, "Significant increase in infections detected", details)]

    return []


def check_incidence_threshold(previous_rate: float, current_rate: float) -> List[tuple]:
    threshold = WHO_LOW_INCIDENCE_THRESHOLD
    details = {"incidence_rate": current_rate, "previous_incidence_rate": previous_rate}
    if previous_rate >= threshold > current_rate:
        return [(EventType.THRESHOLD_CROSSED, "Achieved WHO low-incidence status", details)]
    elif previous_rate < threshold <= current_rate:
        return [(EventType.THRESHOLD_CROSSED, "Lost WHO low-incidence status", details)]

    return []


def check_policy_boundaries(interventions: Sequence[PolicyIntervention], day: int) -> List[tuple]:
    raised = []
    for intervention in interventions:
        if intervention.start_day == day:
            details = {
                "policy_id": intervention.id,
                "policy_type": intervention.type,
                "effect_on_r0": intervention.effect_on_r0,
            }
            raised.append((EventType.POLICY_CHANGE, f"Policy started: {intervention.name}", details))

        if intervention.end_day == day:
            details = {"policy_id": intervention.id, "policy_type": intervention.type}
            raised.append((EventType.POLICY_CHANGE, f"Policy ended: {intervention.name}", details))

    return raised


def check_death_milestones(previous_deaths: float, deaths: float) -> List[tuple]:
    raised = []
    for milestone in DEATH_MILESTONES:
        if previous_deaths < milestone <= deaths:
            details = {"milestone": milestone, "total_deaths": round(deaths)}
            raised.append((EventType.DEATH, f"{milestone} cumulative TB deaths", details))

    return raised


def detect_events(
    day: int,
    first_seq: int,
    previous_infections: Sequence[float],
    new_infections: float,
    population: float,
    interventions: Sequence[PolicyIntervention],
    previous_deaths: float,
    deaths: float,
) -> List[SimulationEvent]:
    """
    Run every daily check for the day just simulated.

    Args:
        day: The day just simulated
        first_seq: Sequence number for the first event raised
        previous_infections: Daily new infections recorded before this day
        new_infections: New infections on this day
        population: Living population at the end of the day
        interventions: Configured interventions
        previous_deaths: Cumulative TB deaths at the start of the day
        deaths: Cumulative TB deaths at the end of the day

    Returns:
        The events raised, in check order

    """
    previous_rate = get_trailing_incidence_rate(previous_infections, population)
    current_rate = get_trailing_incidence_rate([*previous_infections, new_infections], population)

    raised = [
        *check_outbreak(previous_infections, new_infections),
        *check_incidence_threshold(previous_rate, current_rate),
        *check_policy_boundaries(interventions, day),
        *check_death_milestones(previous_deaths, deaths),
    ]
    return [
        make_event(day, first_seq + idx, event_type, description, details)
        for idx, (event_type, description, details) in enumerate(raised)
    ]
