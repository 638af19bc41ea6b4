"""
This module contains the class used to represent the occupancy of the TB model compartments,
along with the vector arithmetic used by the integrator.
"""
from typing import Dict, Union

import numpy as np


class Compartment:
    """
    A tuberculosis model compartment.
    """

    SUSCEPTIBLE = "S"
    VACCINATED = "V"
    EARLY_LATENT = "E_H"
    LATE_LATENT = "E_L"
    INFECTIOUS = "I"
    RECOVERED = "R"
    DECEASED = "D"


# Fixed vector order of every compartment state
COMPARTMENTS = [
    Compartment.SUSCEPTIBLE,
    Compartment.VACCINATED,
    Compartment.EARLY_LATENT,
    Compartment.LATE_LATENT,
    Compartment.INFECTIOUS,
    Compartment.RECOVERED,
    Compartment.DECEASED,
]
LIVING_COMPARTMENTS = COMPARTMENTS[:-1]
NUM_COMPARTMENTS = len(COMPARTMENTS)
_INDEX = {name: idx for idx, name in enumerate(COMPARTMENTS)}


class CompartmentState:
    """
    The number of people in each of the seven compartments at a single instant.
    The state is immutable: all of the arithmetic below returns new states.
    Values may be negative when the state holds derivatives or weighted derivative terms.

    Args:
        S, V, E_H, E_L, I, R, D: The compartment values

    Example:
        Create a state and read a compartment::

            state = CompartmentState(S=990, I=10)
            state.I  # 10.0

    """

    __slots__ = ("_values",)

    def __init__(
        self,
        S: float = 0.0,
        V: float = 0.0,
        E_H: float = 0.0,
        E_L: float = 0.0,
        I: float = 0.0,
        R: float = 0.0,
        D: float = 0.0,
    ):
        values = np.array([S, V, E_H, E_L, I, R, D], dtype=float)
        values.flags.writeable = False
        self._values = values

    @classmethod
    def from_array(cls, values: Union[np.ndarray, list]) -> "CompartmentState":
        """
        Build a state from a vector in the standard compartment order.
        """
        values = np.array(values, dtype=float)
        assert values.shape == (NUM_COMPARTMENTS,), f"Expected {NUM_COMPARTMENTS} values, got shape {values.shape}"
        state = cls.__new__(cls)
        values.flags.writeable = False
        state._values = values
        return state

    @classmethod
    def from_dict(cls, values: Dict[str, float]) -> "CompartmentState":
        return cls(**values)

    @property
    def values(self) -> np.ndarray:
        """A read-only view of the compartment vector"""
        return self._values

    @property
    def S(self) -> float:
        return float(self._values[0])

    @property
    def V(self) -> float:
        return float(self._values[1])

    @property
    def E_H(self) -> float:
        return float(self._values[2])

    @property
    def E_L(self) -> float:
        return float(self._values[3])

    @property
    def I(self) -> float:
        return float(self._values[4])

    @property
    def R(self) -> float:
        return float(self._values[5])

    @property
    def D(self) -> float:
        return float(self._values[6])

    def get(self, name: str) -> float:
        return float(self._values[_INDEX[name]])

    def replace(self, **changes: float) -> "CompartmentState":
        """
        Returns a copy of the state with some compartments overwritten.
        """
        values = self._values.copy()
        for name, value in changes.items():
            values[_INDEX[name]] = value

        return CompartmentState.from_array(values)

    def to_dict(self) -> Dict[str, float]:
        return dict(zip(COMPARTMENTS, self._values.tolist()))

    def __eq__(self, obj):
        return type(obj) is CompartmentState and np.array_equal(self._values, obj._values)

    def __hash__(self):
        return hash(self._values.tobytes())

    def __repr__(self) -> str:
        contents = ", ".join(f"{k}={v:g}" for k, v in self.to_dict().items())
        return f"<CompartmentState {contents}>"


def get_total_population(state: CompartmentState) -> float:
    """
    Returns the living population, which excludes the deceased compartment.
    """
    return float(state.values[:-1].sum())


def add_states(a: CompartmentState, b: CompartmentState) -> CompartmentState:
    return CompartmentState.from_array(a.values + b.values)


def scale_state(state: CompartmentState, factor: float) -> CompartmentState:
    return CompartmentState.from_array(state.values * factor)


def clone_state(state: CompartmentState) -> CompartmentState:
    return CompartmentState.from_array(state.values.copy())


def is_valid_state(state: CompartmentState) -> bool:
    """
    Returns True if every compartment is non-negative (NaN is never valid).
    """
    return bool(np.all(state.values >= 0))
