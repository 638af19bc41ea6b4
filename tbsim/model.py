"""
The TB transmission model: instantaneous flow rates between compartments and derived epidemiological quantities.

Flows
    S -> V          vaccination (rho)
    S, V, R -> E_H  infection, with V and R at reduced susceptibility (1 - ve) and sigma
    E_H -> E_L      stabilisation (kappa)
    E_H -> I        fast progression (epsilon)
    E_L -> I        reactivation (omega)
    I -> R          recovery or treatment (gamma)
    I -> D          TB death (mu_tb)

Births enter S and background deaths leave every living compartment, both at rate mu.
"""
import math
from typing import Callable

import numpy as np

from tbsim.compartment import CompartmentState, get_total_population
from tbsim.parameters import TB_PARAMETERS, DiseaseParameters
from tbsim.settings import HIGH_RISK_LATENT_PROPORTION, INCIDENCE_DENOMINATOR

OdeFunction = Callable[[np.ndarray, float], np.ndarray]


def calculate_force_of_infection(state: CompartmentState, params: DiseaseParameters) -> float:
    """
    Per-capita rate at which susceptible people are infected, beta * I / N.
    """
    total_pop = get_total_population(state)
    if total_pop == 0.0 or state.I == 0.0:
        return 0.0

    return params.beta * state.I / total_pop


def compute_derivatives(state: CompartmentState, params: DiseaseParameters) -> CompartmentState:
    """
    Rates of change of every compartment at the given state.

    Args:
        state: Current compartment occupancy
        params: Disease parameters

    Returns:
        A state holding the derivatives, which may be negative

    """
    p = params
    S, V, E_H, E_L, I, R = state.S, state.V, state.E_H, state.E_L, state.I, state.R
    total_pop = get_total_population(state)
    force = calculate_force_of_infection(state, params)

    return CompartmentState(
        S=p.mu * total_pop - force * S - p.rho * S - p.mu * S,
        V=p.rho * S - (1.0 - p.ve) * force * V - p.mu * V,
        E_H=force * S
        + (1.0 - p.ve) * force * V
        + p.sigma * force * R
        - (p.epsilon + p.kappa + p.mu) * E_H,
        E_L=p.kappa * E_H - (p.omega + p.mu) * E_L,
        I=p.epsilon * E_H + p.omega * E_L - (p.gamma + p.mu_tb + p.mu) * I,
        R=p.gamma * I - p.sigma * force * R - p.mu * R,
        D=p.mu_tb * I,
    )


def build_ode_func(params: DiseaseParameters) -> OdeFunction:
    """
    Wrap the derivatives as an array function of (values, time), the signature used by the ODE solvers.
    """

    def ode_func(values: np.ndarray, time: float) -> np.ndarray:
        state = CompartmentState.from_array(values)
        return compute_derivatives(state, params).values.copy()

    return ode_func


def calculate_r0(params: DiseaseParameters) -> float:
    """
    Basic reproduction number, summing the fast progression and the slow reactivation pathways
    out of the high-risk latent compartment.
    """
    p = params
    if p.beta == 0.0 or (p.epsilon == 0.0 and p.omega == 0.0):
        return 0.0

    contact_rate = TB_PARAMETERS.contact_rates.general
    infections_per_case = p.beta * contact_rate / (p.gamma + p.mu_tb + p.mu)

    exit_early_latent = p.epsilon + p.kappa + p.mu
    fast_pathway = p.epsilon / exit_early_latent
    slow_pathway = (p.kappa / exit_early_latent) * (p.omega / (p.omega + p.mu))

    return infections_per_case * (fast_pathway + slow_pathway)


def calculate_effective_r(state: CompartmentState, params: DiseaseParameters) -> float:
    """
    R0 scaled by the susceptibility-weighted share of the population.
    """
    total_pop = get_total_population(state)
    if total_pop == 0.0:
        return 0.0

    susceptible = state.S + (1.0 - params.ve) * state.V + params.sigma * state.R
    return calculate_r0(params) * susceptible / total_pop


def calculate_new_infections(state: CompartmentState, params: DiseaseParameters, dt: float) -> float:
    force = calculate_force_of_infection(state, params)
    rate = force * state.S + (1.0 - params.ve) * force * state.V + params.sigma * force * state.R
    return dt * rate


def calculate_new_deaths(state: CompartmentState, params: DiseaseParameters, dt: float) -> float:
    return dt * params.mu_tb * state.I


def calculate_incidence_rate(new_cases: float, population: float) -> float:
    """
    Cases per 100,000 population.
    """
    if population == 0:
        return 0.0

    return new_cases / population * INCIDENCE_DENOMINATOR


def calculate_prevalence(state: CompartmentState) -> float:
    total_pop = get_total_population(state)
    if total_pop == 0.0:
        return 0.0

    return state.I / total_pop


def create_initial_state(
    total_population: float,
    initial_infected: float,
    initial_latent: float,
    initial_vaccinated: float,
) -> CompartmentState:
    """
    Starting compartments for a population.
    The recently infected share of the latent population is rounded to whole people, halves rounding up.
    Susceptibles are whatever remains, never negative.
    """
    early_latent = math.floor(initial_latent * HIGH_RISK_LATENT_PROPORTION + 0.5)
    late_latent = initial_latent - early_latent
    susceptible = max(0.0, total_population - initial_infected - initial_latent - initial_vaccinated)

    return CompartmentState(
        S=susceptible,
        V=initial_vaccinated,
        E_H=early_latent,
        E_L=late_latent,
        I=initial_infected,
        R=0.0,
        D=0.0,
    )
