"""
Policy interventions, vaccination policies and the adjustments they make to the disease parameters.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from pydantic import Field, model_validator

from tbsim.parameters import TB_PARAMETERS, BaseModel, DiseaseParameters

logger = logging.getLogger(__name__)


class PolicyType:
    """
    The kinds of intervention with a known effect on the disease parameters.
    """

    PRE_ENTRY_SCREENING = "pre_entry_screening"
    ACTIVE_CASE_FINDING = "active_case_finding"
    CONTACT_TRACING = "contact_tracing"
    DIRECTLY_OBSERVED_THERAPY = "directly_observed_therapy"
    LATENT_TB_TREATMENT = "latent_tb_treatment"
    UNIVERSAL_BCG = "universal_bcg"
    HEALTHCARE_WORKER_BCG = "healthcare_worker_bcg"
    BORDER_HEALTH_CHECKS = "border_health_checks"
    PUBLIC_AWARENESS_CAMPAIGN = "public_awareness_campaign"


class PolicyIntervention(BaseModel):
    """
    A named intervention, active from start_day to end_day inclusive (open-ended without an end_day).

    The type is not restricted to the known PolicyType values,
    so configurations written for newer intervention kinds still load.
    """

    id: str
    type: str
    name: str
    description: str = ""
    start_day: int = Field(ge=0)
    end_day: Optional[int] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    # Direct multiplier on transmission, applied on top of the type's own effect
    effect_on_r0: float = Field(1.0, ge=0.0)

    @model_validator(mode="after")
    def check_window(self):
        if self.end_day is not None:
            msg = f"Intervention {self.id} ends (day {self.end_day}) before it starts (day {self.start_day})"
            assert self.end_day >= self.start_day, msg
        return self

    def is_active(self, day: int) -> bool:
        if day < self.start_day:
            return False
        return self.end_day is None or day <= self.end_day


"""
Vaccination policy
"""


class NeonatalBcg(BaseModel):
    enabled: bool
    coverage_target: float = Field(ge=0.0, le=1.0)
    eligibility_criteria: Literal["universal", "risk-based", "none"]
    risk_based_threshold: float = 0.0


class HealthcareWorkerBcg(BaseModel):
    enabled: bool
    coverage_target: float = Field(ge=0.0, le=1.0)


class ImmigrantScreening(BaseModel):
    enabled: bool
    screening_country_threshold: float = 0.0
    efficacy: float = Field(ge=0.0, le=1.0)


class CatchUpVaccination(BaseModel):
    enabled: bool
    target_age_group: Tuple[float, float]
    coverage_target: float = Field(ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_age_group(self):
        min_age, max_age = self.target_age_group
        assert 0.0 <= min_age <= max_age, f"Invalid catch-up age group {self.target_age_group}"
        return self


class VaccinationPolicy(BaseModel):
    neonatal_bcg: NeonatalBcg
    healthcare_worker_bcg: HealthcareWorkerBcg
    immigrant_screening: ImmigrantScreening
    catch_up_vaccination: CatchUpVaccination


"""
Policy effects on the disease parameters
"""


@dataclass(frozen=True)
class PolicyEffect:
    """
    Multipliers applied to the base rates while an intervention of a given type is active.
    A ve_adjustment overwrites the vaccine efficacy rather than multiplying it.
    """

    beta_multiplier: Optional[float] = None
    gamma_multiplier: Optional[float] = None
    rho_multiplier: Optional[float] = None
    ve_adjustment: Optional[float] = None
    mu_tb_multiplier: Optional[float] = None


_uk = TB_PARAMETERS.uk_specific
_bcg = TB_PARAMETERS.bcg_efficacy

POLICY_EFFECTS: Dict[str, PolicyEffect] = {
    # Fewer imported cases
    PolicyType.PRE_ENTRY_SCREENING: PolicyEffect(
        beta_multiplier=1.0 - _uk.pre_entry_screening_efficacy * 0.3,
    ),
    # Earlier detection shortens the infectious period
    PolicyType.ACTIVE_CASE_FINDING: PolicyEffect(
        beta_multiplier=1.0 - _uk.active_case_finding * 0.2,
        gamma_multiplier=1.5,
    ),
    PolicyType.CONTACT_TRACING: PolicyEffect(beta_multiplier=0.85, gamma_multiplier=1.1),
    # Better adherence
    PolicyType.DIRECTLY_OBSERVED_THERAPY: PolicyEffect(gamma_multiplier=1.2, mu_tb_multiplier=0.7),
    PolicyType.LATENT_TB_TREATMENT: PolicyEffect(beta_multiplier=0.8),
    PolicyType.UNIVERSAL_BCG: PolicyEffect(rho_multiplier=10.0, ve_adjustment=_bcg.neonatal),
    PolicyType.HEALTHCARE_WORKER_BCG: PolicyEffect(rho_multiplier=2.0, ve_adjustment=_bcg.adult),
    PolicyType.BORDER_HEALTH_CHECKS: PolicyEffect(beta_multiplier=0.9),
    PolicyType.PUBLIC_AWARENESS_CAMPAIGN: PolicyEffect(beta_multiplier=0.95, gamma_multiplier=1.05),
}


def get_active_interventions(
    interventions: Sequence[PolicyIntervention], day: int
) -> List[PolicyIntervention]:
    return [i for i in interventions if i.is_active(day)]


def adjust_parameters_for_policy(
    params: DiseaseParameters,
    interventions: Sequence[PolicyIntervention],
    current_day: int = 0,
) -> DiseaseParameters:
    """
    Apply the cumulative effects of the interventions active on the current day.

    Multipliers from every active intervention are combined multiplicatively and applied once.
    Each intervention's effect_on_r0 multiplies beta again on top of its type's own effect.
    The highest vaccine efficacy requested by any active intervention replaces ve.
    Interventions of an unknown type have no effect.

    Args:
        params: The base disease parameters, which are left unchanged
        interventions: All configured interventions, active or not
        current_day: The simulation day

    Returns:
        A new, adjusted set of disease parameters

    """
    beta_mult = 1.0
    gamma_mult = 1.0
    rho_mult = 1.0
    mu_tb_mult = 1.0
    ve_override = None

    for intervention in get_active_interventions(interventions, current_day):
        effect = POLICY_EFFECTS.get(intervention.type)
        if effect is None:
            logger.debug("Skipping intervention %s of unknown type %s", intervention.id, intervention.type)
            continue

        if effect.beta_multiplier is not None:
            beta_mult *= effect.beta_multiplier
        if effect.gamma_multiplier is not None:
            gamma_mult *= effect.gamma_multiplier
        if effect.rho_multiplier is not None:
            rho_mult *= effect.rho_multiplier
        if effect.mu_tb_multiplier is not None:
            mu_tb_mult *= effect.mu_tb_multiplier
        if effect.ve_adjustment is not None:
            ve_override = effect.ve_adjustment if ve_override is None else max(ve_override, effect.ve_adjustment)

        beta_mult *= intervention.effect_on_r0

    update = {
        "beta": params.beta * beta_mult,
        "gamma": params.gamma * gamma_mult,
        "rho": min(params.rho * rho_mult, 1.0),
        "mu_tb": params.mu_tb * mu_tb_mult,
    }
    if ve_override is not None:
        update["ve"] = ve_override

    return params.model_copy(update=update)
