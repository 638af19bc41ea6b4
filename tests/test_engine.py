import dataclasses
from datetime import timedelta

import pytest
from numpy.testing import assert_allclose
from pydantic import ValidationError

from tbsim.compartment import CompartmentState, get_total_population
from tbsim.config import load_config
from tbsim.engine import (
    EngineState,
    SimulationEngine,
    SimulationStatus,
    advance,
    apply_vaccination,
    calculate_initial_vaccinated,
    calculate_prevented,
    compute_metrics,
    get_screening_efficacy,
    initialize_state,
)
from tbsim.events import EventType
from tbsim.parameters import TB_PARAMETERS
from tbsim.policies import PolicyIntervention, PolicyType
from tbsim.scenarios import build_scenario_config
from tbsim.settings import MAX_HISTORY


def build_intervention(policy_type, start_day=0, end_day=None, effect_on_r0=1.0):
    return PolicyIntervention(
        id=f"{policy_type}-test",
        type=policy_type,
        name=policy_type.replace("_", " ").title(),
        start_day=start_day,
        end_day=end_day,
        effect_on_r0=effect_on_r0,
    )


"""
Vaccination mechanics and imported cases
"""


def test_initial_vaccinated(small_config):
    # 270,000 from historical neonatal BCG and 47,500 healthcare workers
    assert calculate_initial_vaccinated(1_000_000, small_config.vaccination_policy) == 317_500


def test_initial_vaccinated_without_programmes():
    policy = build_scenario_config("no-intervention").vaccination_policy
    assert calculate_initial_vaccinated(1_000_000, policy) == 0


def _get_policy(**updates):
    policy = load_config(
        {
            "vaccination_policy": {
                "neonatal_bcg": {"enabled": False},
                "healthcare_worker_bcg": {"enabled": False},
                "catch_up_vaccination": {"enabled": False},
                **updates,
            }
        }
    ).vaccination_policy
    return policy


@pytest.mark.parametrize("criteria, eligible_prop", [("universal", 1.0), ("risk-based", 0.15), ("none", 0.0)])
def test_neonatal_vaccination(criteria, eligible_prop):
    policy = _get_policy(
        neonatal_bcg={"enabled": True, "coverage_target": 0.9, "eligibility_criteria": criteria}
    )
    state = CompartmentState(S=900_000, V=100_000)
    new_state, moved = apply_vaccination(state, policy, 100)
    expected = 1_000_000 * 0.0011 / 365 * eligible_prop * 0.9
    assert_allclose(moved, expected)
    assert_allclose(new_state.S, 900_000 - expected)
    assert_allclose(new_state.V, 100_000 + expected)


@pytest.mark.parametrize("day, expected", [(0, 1583.3333), (30, 1583.3333), (31, 0.0)])
def test_healthcare_worker_vaccination_front_loaded(day, expected):
    policy = _get_policy(healthcare_worker_bcg={"enabled": True, "coverage_target": 0.95})
    state = CompartmentState(S=1_000_000)
    _, moved = apply_vaccination(state, policy, day)
    assert_allclose(moved, expected, rtol=1e-6)


@pytest.mark.parametrize("day, active", [(1, True), (365, True), (366, False)])
def test_catch_up_vaccination_window(day, active):
    policy = _get_policy(
        catch_up_vaccination={"enabled": True, "target_age_group": [5, 21], "coverage_target": 0.8}
    )
    state = CompartmentState(S=1_000_000)
    _, moved = apply_vaccination(state, policy, day)
    expected = 1_000_000 * 16 / 80 * 0.8 / 365 if active else 0.0
    assert_allclose(moved, expected)


def test_vaccination_capped_at_susceptible():
    policy = _get_policy(
        catch_up_vaccination={"enabled": True, "target_age_group": [0, 80], "coverage_target": 1.0},
        healthcare_worker_bcg={"enabled": True, "coverage_target": 1.0},
    )
    state = CompartmentState(S=10, V=999_990)
    new_state, moved = apply_vaccination(state, policy, 1)
    assert moved == 10
    assert new_state.S == 0
    assert new_state.V == 1_000_000


def test_screening_efficacy(small_config):
    assert get_screening_efficacy(small_config, 1) == 0.7

    no_screening = build_scenario_config("no-intervention")
    assert get_screening_efficacy(no_screening, 1) == 0.0

    interventions = [build_intervention(PolicyType.PRE_ENTRY_SCREENING, start_day=10, end_day=20)]
    with_policy = no_screening.merge({"interventions": interventions})
    assert get_screening_efficacy(with_policy, 9) == 0.0
    assert get_screening_efficacy(with_policy, 10) == TB_PARAMETERS.uk_specific.pre_entry_screening_efficacy
    assert get_screening_efficacy(with_policy, 21) == 0.0

    enhanced = build_scenario_config("enhanced-screening")
    assert get_screening_efficacy(enhanced, 1) == 0.9


"""
Pure engine functions
"""


def test_initialize_state(small_config, start_time):
    state = initialize_state(small_config, start_time)
    assert state.day == 0
    assert state.start_time == start_time
    assert state.cumulative_infections == 10_500
    assert state.counterfactual_infections == 10_500
    assert state.compartments.I == 500
    assert state.compartments.E_H == 2_000
    assert state.compartments.V > 317_500
    assert state.counterfactual.V == 0
    assert state.counterfactual_params.rho == 0
    assert state.counterfactual_params.ve == 0
    assert len(state.history) == 1
    assert state.history[0].new_infections == 0

    assert len(state.events) == 1
    event = state.events[0]
    assert event.id == "evt_0_1"
    assert event.type == EventType.POLICY_CHANGE
    assert event.description == "Simulation initialized"
    assert event.details["initial_vaccinated"] == 317_500


def test_advance_is_pure(small_config, start_time):
    state = initialize_state(small_config, start_time)
    first, _ = advance(state, small_config)
    second, _ = advance(state, small_config)
    assert first == second
    assert state.day == 0
    assert len(state.history) == 1
    assert first.day == 1
    assert len(first.history) == 2


def test_advance_counts_imports(small_config, start_time):
    """
    Screened imports reach the main track, unscreened imports reach the counterfactual.
    """
    config = small_config.merge({"time_step": 0.5})
    state = initialize_state(config, start_time)
    new_state, _ = advance(state, config)
    point = new_state.history[-1]
    assert_allclose(
        new_state.cumulative_infections, state.cumulative_infections + point.new_infections + 2.0 * 0.3
    )
    assert new_state.counterfactual_infections > state.counterfactual_infections + 2.0


def test_counterfactual_never_vaccinated(small_config, start_time):
    state = initialize_state(small_config, start_time)
    for _ in range(20):
        state, _ = advance(state, small_config)

    assert state.counterfactual.V == 0
    assert state.compartments.V > 0


def test_history_points(small_config, start_time):
    state = initialize_state(small_config, start_time)
    for _ in range(5):
        state, _ = advance(state, small_config)

    assert [p.day for p in state.history] == [0, 1, 2, 3, 4, 5]
    for point in state.history:
        assert point.timestamp == start_time + timedelta(days=point.day)
        assert point.prevented_infections >= 0

    assert state.history[-1].compartments == state.compartments
    assert_allclose(sum(p.vaccinations_given for p in state.history), state.cumulative_vaccinations)


def test_history_is_bounded(small_config, start_time):
    state = initialize_state(small_config, start_time)
    for _ in range(12):
        state, _ = advance(state, small_config, max_history=5)

    assert [p.day for p in state.history] == [8, 9, 10, 11, 12]
    assert len(state.recent_infections) == 13
    assert state.recent_infections[-5:] == tuple(p.new_infections for p in state.history)


def test_recent_infections_keep_a_year(small_config, start_time):
    state = initialize_state(small_config, start_time)
    state = dataclasses.replace(state, recent_infections=tuple(float(i) for i in range(365)))
    new_state, _ = advance(state, small_config)

    assert len(new_state.recent_infections) == 365
    assert new_state.recent_infections[0] == 1.0
    assert new_state.recent_infections[-1] == new_state.history[-1].new_infections


def test_default_history_limit(small_config, start_time):
    state = initialize_state(small_config, start_time)
    points = state.history * MAX_HISTORY
    state, _ = advance(dataclasses.replace(state, history=points), small_config)
    assert len(state.history) == MAX_HISTORY
    assert state.history[-1].day == 1


def test_compute_metrics(small_config, start_time):
    state = initialize_state(small_config, start_time)
    for _ in range(30):
        state, _ = advance(state, small_config)

    metrics = compute_metrics(state)
    assert metrics.total_deaths == round(state.compartments.D)
    assert metrics.total_recovered == round(state.compartments.R)
    assert metrics.total_infections == round(state.cumulative_infections)
    assert metrics.total_vaccinated == round(state.cumulative_vaccinations)
    assert 0 <= metrics.who_target_progress <= 100
    assert metrics.low_incidence_status == (metrics.current_incidence_rate < 10)
    assert_allclose(metrics.current_prevalence, state.compartments.I / get_total_population(state.compartments))

    infections = [p.new_infections for p in state.history]
    expected_rate = sum(infections) / len(infections) * 365 / get_total_population(state.compartments) * 100_000
    assert_allclose(metrics.current_incidence_rate, expected_rate)


@pytest.mark.parametrize(
    "rate, progress",
    [(20.0, 0.0), (15.0, 0.0), (12.5, 50.0), (10.0, 100.0), (2.0, 100.0)],
)
def test_who_target_progress(small_config, start_time, rate, progress):
    state = initialize_state(small_config, start_time)
    total_pop = get_total_population(state.compartments)
    daily_infections = rate * total_pop / 100_000 / 365
    metrics = compute_metrics(dataclasses.replace(state, recent_infections=(daily_infections,)))
    assert_allclose(metrics.current_incidence_rate, rate)
    assert_allclose(metrics.who_target_progress, progress)


def test_prevented_never_negative(small_config, start_time):
    state = initialize_state(small_config, start_time)
    worse = dataclasses.replace(state, cumulative_infections=1e9, cumulative_deaths=1e9)
    prevented = calculate_prevented(worse)
    assert prevented.infections == 0
    assert prevented.deaths == 0

    better = dataclasses.replace(state, counterfactual_infections=state.cumulative_infections + 10.4)
    assert calculate_prevented(better).infections == 10


"""
Engine host
"""


def test_engine_initialize(small_config, start_time):
    engine = SimulationEngine(small_config, start_time)
    engine.initialize()
    state = engine.get_state()
    assert state.current_day == 0
    assert state.current_time == start_time
    assert state.status == SimulationStatus.IDLE
    assert state.speed == 1.0
    assert len(state.history) == 1
    assert state.events[0].description == "Simulation initialized"


def test_step_before_initialize(small_config):
    engine = SimulationEngine(small_config)
    state = engine.step()
    assert state.current_day == 1
    assert state.status == SimulationStatus.RUNNING


def test_status_machine(small_config):
    engine = SimulationEngine(small_config)
    engine.initialize()
    assert engine.status == SimulationStatus.IDLE

    # Pause and resume do nothing in the wrong status
    engine.pause()
    assert engine.status == SimulationStatus.IDLE
    engine.resume()
    assert engine.status == SimulationStatus.IDLE

    engine.start()
    assert engine.status == SimulationStatus.RUNNING
    engine.resume()
    assert engine.status == SimulationStatus.RUNNING
    engine.pause()
    assert engine.status == SimulationStatus.PAUSED
    engine.pause()
    assert engine.status == SimulationStatus.PAUSED
    engine.start()
    assert engine.status == SimulationStatus.RUNNING
    engine.pause()
    engine.resume()
    assert engine.status == SimulationStatus.RUNNING


def test_control_surface_does_not_advance_time(small_config):
    engine = SimulationEngine(small_config)
    engine.initialize()
    engine.start()
    engine.pause()
    engine.resume()
    engine.set_speed(5)
    engine.get_metrics()
    assert engine.get_state().current_day == 0


def test_run_partial(small_config):
    engine = SimulationEngine(small_config)
    engine.initialize()
    snapshots = engine.run(10)
    assert [s.current_day for s in snapshots] == list(range(1, 11))
    assert engine.status == SimulationStatus.RUNNING
    assert engine.get_state().current_day == 10


def test_run_to_completion(small_config):
    engine = SimulationEngine(small_config)
    engine.initialize()
    snapshots = engine.run(1000)
    assert len(snapshots) == 60
    assert snapshots[-1].status == SimulationStatus.COMPLETED
    assert engine.status == SimulationStatus.COMPLETED

    # A completed run cannot be advanced
    assert engine.run(10) == []
    assert engine.step().current_day == 60
    engine.start()
    assert engine.status == SimulationStatus.COMPLETED


def test_run_never_passes_duration(small_config):
    engine = SimulationEngine(small_config)
    engine.initialize()
    engine.run(55)
    assert len(engine.run(10)) == 5
    assert engine.get_state().current_day == 60


@pytest.mark.parametrize("multiplier, expected", [(0.01, 0.1), (0.1, 0.1), (2.5, 2.5), (10, 10), (50, 10)])
def test_set_speed(small_config, multiplier, expected):
    engine = SimulationEngine(small_config)
    engine.set_speed(multiplier)
    assert engine.speed == expected
    assert engine.get_state().speed == expected


def test_snapshots_are_immutable(small_config):
    engine = SimulationEngine(small_config)
    engine.initialize()
    first = engine.step()
    compartments = first.compartments
    history = first.history
    engine.run(10)

    assert first.current_day == 1
    assert first.compartments == compartments
    assert len(first.history) == len(history) == 2
    with pytest.raises(dataclasses.FrozenInstanceError):
        first.current_day = 5
    with pytest.raises(ValueError):
        first.compartments.values[0] = 0
    with pytest.raises(TypeError):
        first.events[0].details["total_population"] = 0


def test_reset(small_config, start_time):
    engine = SimulationEngine(small_config, start_time)
    engine.initialize()
    initial = engine.get_state()
    engine.run(20)
    engine.set_speed(4)
    engine.reset()

    state = engine.get_state()
    assert state.current_day == 0
    assert state.status == SimulationStatus.IDLE
    assert state.speed == 1.0
    assert len(state.history) == 1
    assert len(state.events) == 1
    assert state.compartments == initial.compartments
    assert engine.get_metrics() == initial.metrics


def test_prevented_counts_never_negative(small_config):
    engine = SimulationEngine(small_config)
    engine.initialize()
    for snapshot in engine.run(60):
        assert snapshot.metrics.infections_prevented >= 0
        assert snapshot.metrics.deaths_prevented >= 0

    prevented = engine.calculate_prevented()
    assert prevented.infections >= 0
    assert prevented.deaths >= 0


def test_vaccination_prevents_infections(small_config):
    """
    With vaccination on the main track only, it has fewer infections than the counterfactual.
    """
    engine = SimulationEngine(small_config)
    engine.run(60)
    assert engine.calculate_prevented().infections > 0
    assert engine.get_counterfactual_state().V == 0


def test_update_config_interventions(small_config):
    engine = SimulationEngine(small_config)
    engine.initialize()
    engine.run(5)
    compartments = engine.get_state().compartments
    base_beta = engine.get_current_params().beta

    engine.update_config(interventions=[build_intervention(PolicyType.LATENT_TB_TREATMENT, start_day=3)])
    assert_allclose(engine.get_current_params().beta, base_beta * 0.8)
    assert engine.get_state().compartments == compartments
    assert engine.get_state().current_day == 5
    assert len(engine.get_config().interventions) == 1


def test_update_config_disease_params(small_config):
    engine = SimulationEngine(small_config)
    engine.initialize()
    new_params = small_config.disease_params.model_copy(update={"beta": 0.002, "rho": 0.01})
    engine.update_config(disease_params=new_params)
    assert engine.get_current_params().beta == 0.002
    assert engine.get_engine_state().counterfactual_params.beta == 0.002
    assert engine.get_engine_state().counterfactual_params.rho == 0


def test_update_config_rejects_invalid_values(small_config):
    engine = SimulationEngine(small_config)
    with pytest.raises(ValidationError):
        engine.update_config(time_step=5)

    assert engine.get_config() == small_config


def test_policy_events(small_config):
    interventions = [build_intervention(PolicyType.CONTACT_TRACING, start_day=5, end_day=10)]
    engine = SimulationEngine(small_config.merge({"interventions": interventions}))
    engine.run(15)
    policy_events = [e for e in engine.get_state().events if e.description.startswith("Policy")]
    assert [(e.day, e.description) for e in policy_events] == [
        (5, "Policy started: Contact Tracing"),
        (10, "Policy ended: Contact Tracing"),
    ]
    assert all(e.type == EventType.POLICY_CHANGE for e in policy_events)
    assert policy_events[0].details["policy_id"] == "contact_tracing-test"


def test_death_milestone_events(small_config):
    config = small_config.merge({"initial_infected": 200_000, "imported_cases_per_day": 0.0, "duration": 20})
    engine = SimulationEngine(config)
    engine.run(20)
    state = engine.get_state()

    death_events = [e for e in state.events if e.type == EventType.DEATH]
    milestones = [e.details["milestone"] for e in death_events]
    assert milestones[:2] == [100, 500]
    assert len(milestones) == len(set(milestones))

    first_day_over_100 = next(p.day for p in state.history if p.compartments.D >= 100)
    assert death_events[0].day == first_day_over_100


def test_event_ids_are_unique(small_config):
    config = small_config.merge({"initial_infected": 200_000})
    engine = SimulationEngine(config)
    engine.run(60)
    ids = [e.id for e in engine.get_state().events]
    assert len(ids) == len(set(ids))


def test_region_states():
    config = load_config({"duration": 5})
    engine = SimulationEngine(config)
    engine.initialize()
    regions = engine.get_state().region_states
    assert len(regions) == 9
    london = regions["london"]
    compartments = engine.get_state().compartments
    assert_allclose(london.compartments.S, compartments.S * 9_000_000 / 67_000_000)
    assert_allclose(london.compartments.I, compartments.I * 9_000_000 / 67_000_000 * 2.06)


@pytest.mark.run_models
def test_full_default_run():
    """
    A full ten year run of the default configuration stays valid and near its starting population.
    """
    config = load_config()
    engine = SimulationEngine(config)
    engine.run(config.duration)
    state = engine.get_engine_state()
    assert isinstance(state, EngineState)
    assert state.day == 3650
    assert all(v >= 0 for v in state.compartments.values)
    initial_total = config.total_population
    final_total = get_total_population(state.compartments) + state.compartments.D
    assert abs(final_total - initial_total) / initial_total < 0.05
