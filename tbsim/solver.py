"""
Tools for integrating the TB model ODEs
"""
import numpy as np
from scipy.integrate import odeint
from scipy.interpolate import interp1d

from tbsim.compartment import CompartmentState, add_states, scale_state
from tbsim.model import OdeFunction, build_ode_func, compute_derivatives
from tbsim.parameters import DiseaseParameters


class SolverType:
    """
    Options for ODE solver used by model
    """

    ODE_INT = "odeint"
    EULER = "euler"
    RUNGE_KUTTA = "rk4"


SOLVER_TYPES = [SolverType.RUNGE_KUTTA, SolverType.EULER, SolverType.ODE_INT]


def runge_kutta_4(state: CompartmentState, params: DiseaseParameters, dt: float) -> CompartmentState:
    """
    Advance the compartments by one classic fourth order Runge-Kutta step.
    Negative values are not clamped, callers check the result with is_valid_state.
    """
    k1 = compute_derivatives(state, params)
    k2 = compute_derivatives(add_states(state, scale_state(k1, dt / 2)), params)
    k3 = compute_derivatives(add_states(state, scale_state(k2, dt / 2)), params)
    k4 = compute_derivatives(add_states(state, scale_state(k3, dt)), params)

    increment = add_states(add_states(k1, scale_state(k2, 2.0)), add_states(scale_state(k3, 2.0), k4))
    return add_states(state, scale_state(increment, dt / 6))


def rk4_step(ode_func: OdeFunction, values: np.ndarray, time: float, step_size: float) -> np.ndarray:
    """
    A single Runge-Kutta 4 step over a raw array of values.
    """
    k1 = step_size * ode_func(values, time)
    k2 = step_size * ode_func(values + k1 / 2, time + step_size / 2)
    k3 = step_size * ode_func(values + k2 / 2, time + step_size / 2)
    k4 = step_size * ode_func(values + k3, time + step_size)
    return values + (1 / 6) * (k1 + 2 * k2 + 2 * k3 + k4)


def solve_ode(
    solver_type: str,
    ode_func: OdeFunction,
    values: np.ndarray,
    times: np.ndarray,
    solver_args: dict,
) -> np.ndarray:
    """
    Solve an ODE function given a function describing the dynamics, some initial conditions and times.
    """
    if solver_type == SolverType.ODE_INT:
        return solve_with_odeint(ode_func, values, times, solver_args)
    elif solver_type == SolverType.EULER:
        return solve_with_euler(ode_func, values, times, solver_args)
    elif solver_type == SolverType.RUNGE_KUTTA:
        return solve_with_rk4(ode_func, values, times, solver_args)
    else:
        raise ValueError(f"Solver type {solver_type} is not available")


def solve_with_odeint(ode_func: OdeFunction, values: np.ndarray, times: np.ndarray, solver_args: dict):
    """
    Solve ODE with SciPy's odeint solver.

    https://docs.scipy.org/doc/scipy/reference/generated/scipy.integrate.odeint.html
    """
    atol = solver_args.get("atol", 1e-3)
    rtol = solver_args.get("rtol", 1e-6)
    return odeint(ode_func, values, times, atol=atol, rtol=rtol)


def _get_integration_times(times: np.ndarray, step_size: float) -> np.ndarray:
    start_time = times[0]
    end_time = times[-1]
    time_span = end_time - start_time
    num_timesteps = int(round(time_span / step_size)) + 1
    assert np.isclose(
        num_timesteps, time_span / step_size + 1
    ), f"Step size {step_size} must be a factor of the time span {time_span}."
    return np.linspace(start_time, end_time, num_timesteps)


def solve_with_euler(ode_func: OdeFunction, values: np.ndarray, times: np.ndarray, solver_args: dict):
    """
    Solve ODE with a hand-rolled Euler's method implementation.

    `WARNING: This method is too inaccurate to use for real applications.`
    """
    step_size = solver_args.get("step_size", 0.1)
    integration_times = _get_integration_times(times, step_size)
    results_arr = np.zeros([len(integration_times), len(values)])
    results_arr[0] = np.array(values)

    for time_idx, time in enumerate(integration_times[:-1]):
        values_arr = results_arr[time_idx]
        gradient_arr = ode_func(values_arr, time)
        results_arr[time_idx + 1] = values_arr + step_size * gradient_arr

    return _interpolate_solver_results(results_arr, integration_times, times)


def solve_with_rk4(ode_func: OdeFunction, values: np.ndarray, times: np.ndarray, solver_args: dict):
    """
    Solve ODE with a hand-rolled Runge-Kutta 4 implementation.
    """
    step_size = solver_args.get("step_size", 0.1)
    integration_times = _get_integration_times(times, step_size)
    results_arr = np.zeros([len(integration_times), len(values)])
    results_arr[0] = np.array(values)

    for time_idx, time in enumerate(integration_times[:-1]):
        results_arr[time_idx + 1] = rk4_step(ode_func, results_arr[time_idx], time, step_size)

    return _interpolate_solver_results(results_arr, integration_times, times)


def _interpolate_solver_results(results_arr, integration_times, requested_times):
    """
    Interpolate solver results into an output array that matches the requested times

    results_arr: Solver results, 2D Numpy array
    integration_times: Times used to get solver results
    requested_times: Times to interpolate
    """
    solved_func = interp1d(integration_times, results_arr, axis=0)
    output_arr = np.zeros([len(requested_times), results_arr.shape[1]])
    output_arr[0] = results_arr[0]
    for time_idx in range(1, len(requested_times)):
        output_arr[time_idx] = solved_func(requested_times[time_idx])

    return output_arr


def solve_model(
    state: CompartmentState,
    params: DiseaseParameters,
    times: np.ndarray,
    solver_type: str = SolverType.RUNGE_KUTTA,
    solver_args: dict = None,
) -> np.ndarray:
    """
    Integrate the TB model from an initial state over the requested times, with fixed parameters.

    Returns:
        An array of shape (len(times), 7), columns in compartment order

    """
    times = np.asarray(times, dtype=float)
    solver_args = solver_args or {}
    ode_func = build_ode_func(params)
    return solve_ode(solver_type, ode_func, state.values.copy(), times, solver_args)
