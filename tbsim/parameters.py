"""
Type definitions and derivations for the TB disease parameters.

The research constants live in params/tb_parameters.yml and are validated into TB_PARAMETERS on import.
The compact DiseaseParameters vector used by the differential equations is derived from them.
"""
import logging
import numbers
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml
from pydantic import BaseModel as _BaseModel, ConfigDict, Field, ValidationError, field_validator

from tbsim.settings import TB_PARAMETERS_PATH

logger = logging.getLogger(__name__)


class BaseModel(_BaseModel):
    # Forbid additional arguments to prevent extraneous parameter specification
    # and keep parameters immutable once loaded
    model_config = ConfigDict(extra="forbid", frozen=True, str_strip_whitespace=True)


"""
Research constants
"""


class R0Range(BaseModel):
    min: float
    max: float
    default: float


class TransmissionRates(BaseModel):
    baseline: float
    household: float


class Latency(BaseModel):
    """
    TB has a two-stage latency: recent infections progress fast, stabilised infections reactivate slowly.
    """

    fast_progression_rate: float
    stabilization_rate: float
    reactivation_rate: float


class ByTreatment(BaseModel):
    untreated: float
    treated: float


class BcgEfficacy(BaseModel):
    neonatal: float = Field(ge=0.0, le=1.0)
    childhood: float = Field(ge=0.0, le=1.0)
    adult: float = Field(ge=0.0, le=1.0)
    waning: float = Field(ge=0.0, le=1.0)
    duration: float = Field(gt=0.0)


class ContactRates(BaseModel):
    general: float = Field(gt=0.0)
    household: float
    workplace: float
    healthcare: float


class UkSpecific(BaseModel):
    pre_entry_screening_efficacy: float = Field(ge=0.0, le=1.0)
    active_case_finding: float = Field(ge=0.0, le=1.0)
    treatment_delay: float


class TbParametersConfig(BaseModel):
    r0: R0Range
    transmission_rate: TransmissionRates
    latency: Latency
    infectious_period: ByTreatment
    treatment_rate: float = Field(ge=0.0, le=1.0)
    natural_recovery_rate: float = Field(ge=0.0, le=1.0)
    case_fatality_rate: ByTreatment
    bcg_efficacy: BcgEfficacy
    contact_rates: ContactRates
    uk_specific: UkSpecific
    life_expectancy: float = Field(gt=0.0)
    default_vaccination_rate: float = Field(ge=0.0, le=1.0)
    default_reinfection_susceptibility: float = Field(ge=0.0, le=1.0)

    @property
    def natural_mortality_rate(self) -> float:
        return 1.0 / (self.life_expectancy * 365.0)

    @property
    def average_infectious_period(self) -> float:
        """Infectious period in days, weighted by the proportion treated"""
        treated = self.treatment_rate
        return treated * self.infectious_period.treated + (1.0 - treated) * self.infectious_period.untreated

    @property
    def average_case_fatality(self) -> float:
        treated = self.treatment_rate
        return treated * self.case_fatality_rate.treated + (1.0 - treated) * self.case_fatality_rate.untreated


def load_tb_parameters(path: Union[str, Path] = TB_PARAMETERS_PATH) -> TbParametersConfig:
    with open(path, "r") as f:
        data = yaml.safe_load(f)

    return TbParametersConfig(**data)


TB_PARAMETERS = load_tb_parameters()


"""
Model parameters
"""


def _check_number(value):
    # Booleans are ints in Python, but never a valid rate
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ValueError(f"Expected a number, got {type(value).__name__}")
    return value


class DiseaseParameters(BaseModel):
    """
    The per-day rates used by the differential equations.
    """

    beta: float = Field(gt=0.0, le=1.0, description="Transmission rate per contact-day")
    epsilon: float = Field(ge=0.0, le=1.0, description="Fast progression rate, E_H to I")
    kappa: float = Field(ge=0.0, le=1.0, description="Stabilisation rate, E_H to E_L")
    omega: float = Field(ge=0.0, le=1.0, description="Reactivation rate, E_L to I")
    gamma: float = Field(ge=0.0, le=1.0, description="Recovery rate, I to R")
    mu: float = Field(ge=0.0, le=1.0, description="Natural background mortality")
    mu_tb: float = Field(ge=0.0, le=1.0, description="TB mortality of the infectious")
    rho: float = Field(ge=0.0, le=1.0, description="Vaccination rate, S to V")
    ve: float = Field(ge=0.0, le=1.0, description="Vaccine efficacy")
    sigma: float = Field(ge=0.0, le=1.0, description="Relative reinfection susceptibility of R")

    @field_validator("*", mode="before")
    @classmethod
    def check_numeric(cls, value):
        return _check_number(value)


PARAMETER_NAMES = list(DiseaseParameters.model_fields.keys())


def create_disease_parameters(overrides: Optional[Dict[str, float]] = None) -> DiseaseParameters:
    """
    Derive the disease parameters from the research constants.

    Overrides are applied last and are not re-derived or validated,
    so an override of beta does not change gamma and vice versa.

    Args:
        overrides: Parameter values that replace the derived defaults

    Returns:
        The disease parameters

    """
    tb = TB_PARAMETERS
    avg_infectious_period = tb.average_infectious_period

    # R0 = beta * contact_rate * infectious_duration
    beta = tb.r0.default / (tb.contact_rates.general * avg_infectious_period)
    gamma = 1.0 / avg_infectious_period
    mu_tb = tb.average_case_fatality / avg_infectious_period

    params = DiseaseParameters(
        beta=beta,
        epsilon=tb.latency.fast_progression_rate,
        kappa=tb.latency.stabilization_rate,
        omega=tb.latency.reactivation_rate,
        gamma=gamma,
        mu=tb.natural_mortality_rate,
        mu_tb=mu_tb,
        rho=tb.default_vaccination_rate,
        ve=tb.bcg_efficacy.neonatal,
        sigma=tb.default_reinfection_susceptibility,
    )
    if not overrides:
        return params

    unknown = set(overrides) - set(PARAMETER_NAMES)
    if unknown:
        raise KeyError(f"Unknown disease parameters: {sorted(unknown)}")

    return params.model_copy(update=overrides)


@dataclass(frozen=True)
class ValidationResult:
    success: bool
    data: Optional[DiseaseParameters] = None
    errors: List[dict] = field(default_factory=list)


def _as_input(params):
    # Copies made with model_copy skip validation, so check their values rather than trusting the type
    if isinstance(params, DiseaseParameters):
        return params.model_dump()
    return params


def validate_parameters(params) -> ValidationResult:
    """
    Check a set of disease parameters without raising.

    Args:
        params: A mapping of parameter values or a DiseaseParameters

    Returns:
        The validated parameters on success, otherwise a list of errors with location and message

    """
    try:
        validated = DiseaseParameters.model_validate(_as_input(params))
    except ValidationError as e:
        errors = [{"loc": err["loc"], "msg": err["msg"], "type": err["type"]} for err in e.errors()]
        return ValidationResult(success=False, errors=errors)

    return ValidationResult(success=True, data=validated)


def validate_parameters_or_throw(params) -> DiseaseParameters:
    """
    Check a set of disease parameters, raising pydantic's ValidationError if they are invalid.
    """
    return DiseaseParameters.model_validate(_as_input(params))


def calculate_effective_r0(params: DiseaseParameters, vaccine_coverage: float = 0.0) -> float:
    """
    Simple reproduction number estimate: beta * contact rate * infectious duration,
    reduced by the protected share of the population.
    """
    if params.gamma <= 0.0:
        return float("inf")

    r0 = params.beta * TB_PARAMETERS.contact_rates.general / params.gamma
    return r0 * (1.0 - params.ve * vaccine_coverage)


def get_adjusted_bcg_efficacy(age_at_vaccination: float, years_since_vaccination: float) -> float:
    """
    BCG efficacy given the age at vaccination (years), waning exponentially each year
    and lost entirely once the protection duration has passed.
    """
    bcg = TB_PARAMETERS.bcg_efficacy
    if years_since_vaccination > bcg.duration:
        return 0.0

    if age_at_vaccination < 1.0:
        base_efficacy = bcg.neonatal
    elif age_at_vaccination < 16.0:
        base_efficacy = bcg.childhood
    else:
        base_efficacy = bcg.adult

    years_protected = min(years_since_vaccination, bcg.duration)
    return max(0.0, base_efficacy * (1.0 - bcg.waning) ** years_protected)
