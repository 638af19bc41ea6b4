"""
The simulation engine.

The state of a run is held in an immutable EngineState record, moved forward one day at a time by the pure
advance function. Alongside the main track the engine integrates a counterfactual track with vaccination
switched off, so that the infections and deaths prevented by vaccination can be estimated.

SimulationEngine is a thin host around these functions that holds the current record and the run status.
"""
import dataclasses
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple

from tbsim.compartment import CompartmentState, clone_state, get_total_population, is_valid_state
from tbsim.config import RegionState, SimulationConfig, partition_by_region
from tbsim.events import (
    EventType,
    SimulationEvent,
    append_events,
    detect_events,
    get_trailing_incidence_rate,
    make_event,
)
from tbsim.model import (
    calculate_effective_r,
    calculate_new_deaths,
    calculate_new_infections,
    calculate_prevalence,
    create_initial_state,
)
from tbsim.parameters import TB_PARAMETERS, DiseaseParameters
from tbsim.policies import PolicyType, VaccinationPolicy, adjust_parameters_for_policy
from tbsim.settings import (
    CATCH_UP_AGE_SPAN_YEARS,
    CATCH_UP_CAMPAIGN_DAYS,
    DAILY_BIRTH_RATE,
    DAYS_PER_YEAR,
    HEALTHCARE_WORKER_CAMPAIGN_DAYS,
    HEALTHCARE_WORKER_PROPORTION,
    HISTORICAL_BCG_ELIGIBLE_PROPORTION,
    MAX_HISTORY,
    MAX_SPEED,
    MIN_SPEED,
    RISK_BASED_NEONATAL_PROPORTION,
    WHO_2035_TARGET_RATE,
    WHO_BASELINE_INCIDENCE_RATE,
    WHO_LOW_INCIDENCE_THRESHOLD,
)
from tbsim.solver import runge_kutta_4

logger = logging.getLogger(__name__)


class SimulationStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass(frozen=True)
class TimeSeriesPoint:
    day: int
    timestamp: datetime
    compartments: CompartmentState
    new_infections: float
    new_deaths: float
    prevented_infections: int
    effective_r: float
    vaccinations_given: float


@dataclass(frozen=True)
class PreventedCounts:
    infections: int
    deaths: int


@dataclass(frozen=True)
class SimulationMetrics:
    total_infections: int
    total_deaths: int
    total_recovered: int
    total_vaccinated: int
    infections_prevented: int
    deaths_prevented: int
    # Per 100,000 per year
    current_incidence_rate: float
    current_prevalence: float
    effective_r: float
    # Percent of the way from the 2015 baseline rate to the 2035 target rate
    who_target_progress: float
    low_incidence_status: bool


@dataclass(frozen=True)
class EngineState:
    """
    Everything that changes over the course of a run.
    """

    day: int
    start_time: datetime
    compartments: CompartmentState
    counterfactual: CompartmentState
    base_params: DiseaseParameters
    params: DiseaseParameters
    counterfactual_params: DiseaseParameters
    cumulative_infections: float
    cumulative_deaths: float
    cumulative_vaccinations: float
    counterfactual_infections: float
    counterfactual_deaths: float
    # The most recent days only, oldest dropped first
    history: Tuple[TimeSeriesPoint, ...]
    # Daily new infections over the trailing year, newest last
    recent_infections: Tuple[float, ...]
    events: Tuple[SimulationEvent, ...]
    # Number of events raised so far, including any dropped from the bounded log
    event_count: int


@dataclass(frozen=True)
class SimulationState:
    """
    A snapshot of a run, as seen by callers of the engine.
    """

    current_day: int
    current_time: datetime
    compartments: CompartmentState
    region_states: Mapping[str, RegionState]
    history: Tuple[TimeSeriesPoint, ...]
    events: Tuple[SimulationEvent, ...]
    metrics: SimulationMetrics
    status: SimulationStatus
    speed: float


"""
Vaccination and imported cases
"""


def calculate_initial_vaccinated(total_population: float, policy: VaccinationPolicy) -> float:
    """
    People already protected by past BCG programmes at the start of a run.
    """
    vaccinated = 0.0
    if policy.neonatal_bcg.enabled:
        vaccinated += total_population * HISTORICAL_BCG_ELIGIBLE_PROPORTION * policy.neonatal_bcg.coverage_target

    if policy.healthcare_worker_bcg.enabled:
        coverage = policy.healthcare_worker_bcg.coverage_target
        vaccinated += total_population * HEALTHCARE_WORKER_PROPORTION * coverage

    return round(vaccinated)


def apply_vaccination(
    compartments: CompartmentState, policy: VaccinationPolicy, day: int
) -> Tuple[CompartmentState, float]:
    """
    Move people from susceptible to vaccinated under the vaccination programmes running on a given day.
    No move takes more people than are currently susceptible.

    Returns:
        The new compartments and the number of people vaccinated

    """
    total_pop = get_total_population(compartments)
    susceptible = compartments.S
    moved = 0.0

    neonatal = policy.neonatal_bcg
    if neonatal.enabled and neonatal.eligibility_criteria != "none":
        eligible_prop = RISK_BASED_NEONATAL_PROPORTION if neonatal.eligibility_criteria == "risk-based" else 1.0
        births = total_pop * DAILY_BIRTH_RATE
        to_vaccinate = min(births * eligible_prop * neonatal.coverage_target, susceptible)
        susceptible -= to_vaccinate
        moved += to_vaccinate

    # Existing healthcare workers are vaccinated at the start of the run
    workers = policy.healthcare_worker_bcg
    if workers.enabled and day <= HEALTHCARE_WORKER_CAMPAIGN_DAYS:
        daily_prop = HEALTHCARE_WORKER_PROPORTION * workers.coverage_target / HEALTHCARE_WORKER_CAMPAIGN_DAYS
        to_vaccinate = min(total_pop * daily_prop, susceptible)
        susceptible -= to_vaccinate
        moved += to_vaccinate

    catch_up = policy.catch_up_vaccination
    if catch_up.enabled and day <= CATCH_UP_CAMPAIGN_DAYS:
        min_age, max_age = catch_up.target_age_group
        target_pop = total_pop * (max_age - min_age) / CATCH_UP_AGE_SPAN_YEARS
        daily_vaccinations = target_pop * catch_up.coverage_target / CATCH_UP_CAMPAIGN_DAYS
        to_vaccinate = min(daily_vaccinations, susceptible)
        susceptible -= to_vaccinate
        moved += to_vaccinate

    if moved == 0.0:
        return compartments, 0.0

    return compartments.replace(S=susceptible, V=compartments.V + moved), moved


def get_screening_efficacy(config: SimulationConfig, day: int) -> float:
    """
    The share of imported cases stopped at entry on a given day.
    """
    efficacy = 0.0
    screening = config.vaccination_policy.immigrant_screening
    if screening.enabled:
        efficacy = screening.efficacy

    for intervention in config.interventions:
        if intervention.type == PolicyType.PRE_ENTRY_SCREENING and intervention.is_active(day):
            efficacy = max(efficacy, TB_PARAMETERS.uk_specific.pre_entry_screening_efficacy)

    return efficacy


"""
Pure engine functions
"""


def get_counterfactual_params(base_params: DiseaseParameters) -> DiseaseParameters:
    return base_params.model_copy(update={"rho": 0.0, "ve": 0.0})


def _get_prevented(counterfactual_total: float, actual_total: float) -> int:
    return round(max(0.0, counterfactual_total - actual_total))


def calculate_prevented(state: EngineState) -> PreventedCounts:
    """
    Infections and deaths avoided, relative to the counterfactual track. Never negative.
    """
    return PreventedCounts(
        infections=_get_prevented(state.counterfactual_infections, state.cumulative_infections),
        deaths=_get_prevented(state.counterfactual_deaths, state.cumulative_deaths),
    )


def initialize_state(config: SimulationConfig, start_time: Optional[datetime] = None) -> EngineState:
    """
    Build the day 0 state for a run: initial compartments on both tracks,
    day 0 policies applied, the first history point and an initialization event.
    """
    start_time = start_time or datetime.now()
    total_population = config.total_population
    initial_vaccinated = calculate_initial_vaccinated(total_population, config.vaccination_policy)

    compartments = create_initial_state(
        total_population, config.initial_infected, config.initial_latent, initial_vaccinated
    )
    # The counterfactual never has anyone vaccinated
    counterfactual = create_initial_state(
        total_population, config.initial_infected, config.initial_latent, 0.0
    )

    base_params = config.disease_params
    params = adjust_parameters_for_policy(base_params, config.interventions, 0)
    compartments, vaccinated_today = apply_vaccination(compartments, config.vaccination_policy, 0)

    initial_infections = config.initial_infected + config.initial_latent
    first_point = TimeSeriesPoint(
        day=0,
        timestamp=start_time,
        compartments=compartments,
        new_infections=0.0,
        new_deaths=0.0,
        prevented_infections=0,
        effective_r=calculate_effective_r(compartments, params),
        vaccinations_given=initial_vaccinated + vaccinated_today,
    )
    init_details = {
        "total_population": total_population,
        "initial_infected": config.initial_infected,
        "initial_latent": config.initial_latent,
        "initial_vaccinated": initial_vaccinated,
    }
    init_event = make_event(0, 1, EventType.POLICY_CHANGE, "Simulation initialized", init_details)

    logger.info(
        "Initialized simulation %s: population %d, %d vaccinated",
        config.id,
        total_population,
        initial_vaccinated,
    )
    return EngineState(
        day=0,
        start_time=start_time,
        compartments=compartments,
        counterfactual=counterfactual,
        base_params=base_params,
        params=params,
        counterfactual_params=get_counterfactual_params(base_params),
        cumulative_infections=initial_infections,
        cumulative_deaths=0.0,
        cumulative_vaccinations=initial_vaccinated + vaccinated_today,
        counterfactual_infections=initial_infections,
        counterfactual_deaths=0.0,
        history=(first_point,),
        recent_infections=(0.0,),
        events=(init_event,),
        event_count=1,
    )


def advance(
    state: EngineState, config: SimulationConfig, max_history: int = MAX_HISTORY
) -> Tuple[EngineState, List[SimulationEvent]]:
    """
    Simulate one day.

    Policies and vaccination programmes for the new day are applied first, then both tracks are integrated
    over ceil(1 / time_step) Runge-Kutta steps, then the day's imported cases arrive.
    Daily infections and deaths are accumulated from the state at the start of each integration step.

    Args:
        state: The state at the end of the previous day
        config: The run configuration
        max_history: Number of history points retained

    Returns:
        The state at the end of the new day, and the events raised on that day

    """
    day = state.day + 1
    dt = config.time_step
    steps_per_day = math.ceil(1.0 / dt)

    params = adjust_parameters_for_policy(state.base_params, config.interventions, day)
    compartments, vaccinated_today = apply_vaccination(state.compartments, config.vaccination_policy, day)
    counterfactual = state.counterfactual
    cf_params = state.counterfactual_params

    new_infections = 0.0
    new_deaths = 0.0
    cf_infections = 0.0
    cf_deaths = 0.0
    for _ in range(steps_per_day):
        new_infections += calculate_new_infections(compartments, params, dt)
        new_deaths += calculate_new_deaths(compartments, params, dt)
        vaccinated_today += params.rho * compartments.S * dt
        compartments = runge_kutta_4(compartments, params, dt)

        cf_infections += calculate_new_infections(counterfactual, cf_params, dt)
        cf_deaths += calculate_new_deaths(counterfactual, cf_params, dt)
        counterfactual = runge_kutta_4(counterfactual, cf_params, dt)

    if not is_valid_state(compartments):
        logger.warning("Negative compartment values on day %d: %s", day, compartments)

    # Imported cases arrive as recent latent infections, screening applies to the main track only
    imported = config.imported_cases_per_day
    if imported > 0:
        screened_imports = imported * (1.0 - get_screening_efficacy(config, day))
        compartments = compartments.replace(E_H=compartments.E_H + screened_imports)
        counterfactual = counterfactual.replace(E_H=counterfactual.E_H + imported)
        new_cumulative_infections = state.cumulative_infections + new_infections + screened_imports
        new_cf_infections = state.counterfactual_infections + cf_infections + imported
    else:
        new_cumulative_infections = state.cumulative_infections + new_infections
        new_cf_infections = state.counterfactual_infections + cf_infections

    prevented_infections = _get_prevented(new_cf_infections, new_cumulative_infections)
    point = TimeSeriesPoint(
        day=day,
        timestamp=state.start_time + timedelta(days=day),
        compartments=compartments,
        new_infections=new_infections,
        new_deaths=new_deaths,
        prevented_infections=prevented_infections,
        effective_r=calculate_effective_r(compartments, params),
        vaccinations_given=vaccinated_today,
    )

    events = detect_events(
        day=day,
        first_seq=state.event_count + 1,
        previous_infections=state.recent_infections,
        new_infections=new_infections,
        population=get_total_population(compartments),
        interventions=config.interventions,
        previous_deaths=state.compartments.D,
        deaths=compartments.D,
    )

    new_state = dataclasses.replace(
        state,
        day=day,
        compartments=compartments,
        counterfactual=counterfactual,
        params=params,
        cumulative_infections=new_cumulative_infections,
        cumulative_deaths=state.cumulative_deaths + new_deaths,
        cumulative_vaccinations=state.cumulative_vaccinations + vaccinated_today,
        counterfactual_infections=new_cf_infections,
        counterfactual_deaths=state.counterfactual_deaths + cf_deaths,
        history=(*state.history, point)[-max_history:],
        recent_infections=(*state.recent_infections, new_infections)[-DAYS_PER_YEAR:],
        events=append_events(state.events, events),
        event_count=state.event_count + len(events),
    )
    return new_state, events


def compute_metrics(state: EngineState) -> SimulationMetrics:
    """
    Derived metrics for a state, recomputed on every call.
    """
    compartments = state.compartments
    total_pop = get_total_population(compartments)
    prevented = calculate_prevented(state)

    incidence_rate = get_trailing_incidence_rate(state.recent_infections, total_pop)
    target_reduction = WHO_BASELINE_INCIDENCE_RATE - WHO_2035_TARGET_RATE
    reduction = WHO_BASELINE_INCIDENCE_RATE - incidence_rate
    who_target_progress = min(100.0, max(0.0, reduction / target_reduction * 100.0))

    return SimulationMetrics(
        total_infections=round(state.cumulative_infections),
        total_deaths=round(compartments.D),
        total_recovered=round(compartments.R),
        total_vaccinated=round(state.cumulative_vaccinations),
        infections_prevented=prevented.infections,
        deaths_prevented=prevented.deaths,
        current_incidence_rate=incidence_rate,
        current_prevalence=calculate_prevalence(compartments),
        effective_r=calculate_effective_r(compartments, state.params),
        who_target_progress=who_target_progress,
        low_incidence_status=incidence_rate < WHO_LOW_INCIDENCE_THRESHOLD,
    )


def reapply_policies(state: EngineState, config: SimulationConfig) -> EngineState:
    """
    Rebuild the parameters of a state from the config's disease parameters and interventions,
    at the state's current day, leaving the compartments untouched.
    """
    base_params = config.disease_params
    return dataclasses.replace(
        state,
        base_params=base_params,
        params=adjust_parameters_for_policy(base_params, config.interventions, state.day),
        counterfactual_params=get_counterfactual_params(base_params),
    )


"""
Engine host
"""


class SimulationEngine:
    """
    Runs a simulation day by day, holding the current state and the run status.

    Status moves from idle to running when stepped or started, between running and paused,
    and to completed once the configured duration is reached.
    Control calls made in the wrong status are ignored.
    Not safe to share between threads without external locking.

    Args:
        config: The run configuration
        start_time: Calendar time of day 0, the time of initialization if not supplied

    Example:
        Run the first year of the default configuration::

            engine = SimulationEngine(load_config())
            engine.initialize()
            engine.run(365)
            engine.get_metrics().infections_prevented

    """

    def __init__(self, config: SimulationConfig, start_time: Optional[datetime] = None):
        self._config = config
        self._start_time = start_time
        self._state: Optional[EngineState] = None
        self._status = SimulationStatus.IDLE
        self._speed = 1.0

    @property
    def status(self) -> SimulationStatus:
        return self._status

    @property
    def speed(self) -> float:
        return self._speed

    def initialize(self):
        self._state = initialize_state(self._config, self._start_time)
        self._status = SimulationStatus.IDLE

    def _get_engine_state(self) -> EngineState:
        if self._state is None:
            self.initialize()

        return self._state

    def start(self):
        if self._status in (SimulationStatus.IDLE, SimulationStatus.PAUSED):
            self._status = SimulationStatus.RUNNING
        else:
            logger.debug("Ignoring start while %s", self._status.value)

    def pause(self):
        if self._status == SimulationStatus.RUNNING:
            self._status = SimulationStatus.PAUSED
        else:
            logger.debug("Ignoring pause while %s", self._status.value)

    def resume(self):
        if self._status == SimulationStatus.PAUSED:
            self._status = SimulationStatus.RUNNING
        else:
            logger.debug("Ignoring resume while %s", self._status.value)

    def reset(self):
        logger.info("Resetting simulation %s", self._config.id)
        self._speed = 1.0
        self.initialize()

    def step(self) -> SimulationState:
        """
        Simulate the next day and return a snapshot, unless the run has completed.
        """
        state = self._get_engine_state()
        if self._status == SimulationStatus.COMPLETED:
            logger.debug("Ignoring step, simulation %s has completed", self._config.id)
            return self.get_state()

        self._state, events = advance(state, self._config)
        for event in events:
            logger.debug("Day %d: %s", event.day, event.description)

        if self._state.day >= self._config.duration:
            self._status = SimulationStatus.COMPLETED
            logger.info("Simulation %s completed after %d days", self._config.id, self._state.day)
        else:
            self._status = SimulationStatus.RUNNING

        return self.get_state()

    def run(self, steps: int) -> List[SimulationState]:
        """
        Simulate up to the given number of days, stopping at the end of the run.

        Returns:
            One snapshot per day simulated

        """
        state = self._get_engine_state()
        if self._status == SimulationStatus.COMPLETED:
            return []

        max_steps = min(steps, self._config.duration - state.day)
        self._status = SimulationStatus.RUNNING
        snapshots = []
        for _ in range(max_steps):
            snapshot = self.step()
            snapshots.append(snapshot)
            if snapshot.status == SimulationStatus.COMPLETED:
                break

        return snapshots

    def set_speed(self, multiplier: float):
        self._speed = max(MIN_SPEED, min(MAX_SPEED, multiplier))

    def update_config(self, **partial):
        """
        Replace top level config fields for the rest of the run.
        New disease parameters or interventions take effect immediately, without resetting the compartments.
        """
        self._config = self._config.merge(partial)
        if self._state is not None and ("disease_params" in partial or "interventions" in partial):
            self._state = reapply_policies(self._state, self._config)

    def get_metrics(self) -> SimulationMetrics:
        return compute_metrics(self._get_engine_state())

    def calculate_prevented(self) -> PreventedCounts:
        return calculate_prevented(self._get_engine_state())

    def get_current_params(self) -> DiseaseParameters:
        """Disease parameters with the current day's policies applied"""
        return self._get_engine_state().params

    def get_counterfactual_state(self) -> CompartmentState:
        return clone_state(self._get_engine_state().counterfactual)

    def get_config(self) -> SimulationConfig:
        return self._config

    def get_engine_state(self) -> EngineState:
        return self._get_engine_state()

    def get_state(self) -> SimulationState:
        state = self._get_engine_state()
        regions = partition_by_region(state.compartments, self._config.regions, self._config.total_population)
        return SimulationState(
            current_day=state.day,
            current_time=state.start_time + timedelta(days=state.day),
            compartments=clone_state(state.compartments),
            region_states=MappingProxyType(regions),
            history=state.history,
            events=state.events,
            metrics=compute_metrics(state),
            status=self._status,
            speed=self._speed,
        )
