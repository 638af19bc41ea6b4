import pytest
from numpy.testing import assert_allclose
from pydantic import ValidationError

from tbsim.parameters import (
    PARAMETER_NAMES,
    TB_PARAMETERS,
    DiseaseParameters,
    calculate_effective_r0,
    create_disease_parameters,
    get_adjusted_bcg_efficacy,
    load_tb_parameters,
    validate_parameters,
    validate_parameters_or_throw,
)
from tbsim.settings import TB_PARAMETERS_PATH


def test_research_constants_load():
    constants = load_tb_parameters(TB_PARAMETERS_PATH)
    assert constants == TB_PARAMETERS
    assert constants.r0.default == 1.7
    assert constants.bcg_efficacy.neonatal == 0.86
    assert constants.contact_rates.general == 10.0
    assert_allclose(constants.natural_mortality_rate, 1 / (80 * 365))


def test_create_disease_parameters_derivation():
    """
    Rates are derived from the treatment-weighted infectious period and case fatality.
    """
    params = create_disease_parameters()
    avg_period = 0.85 * 180 + 0.15 * 730
    avg_fatality = 0.85 * 0.04 + 0.15 * 0.45
    assert_allclose(avg_period, 262.5)
    assert_allclose(params.gamma, 1 / avg_period)
    assert_allclose(params.beta, 1.7 / (10 * avg_period))
    assert_allclose(params.mu_tb, avg_fatality / avg_period)
    assert params.epsilon == 0.0014
    assert params.kappa == 0.001
    assert params.omega == 0.0001
    assert params.rho == 0.001
    assert params.ve == 0.86
    assert params.sigma == 0.5
    assert_allclose(params.mu, 1 / 29200)


def test_overrides_are_applied_last_without_rederivation():
    default = create_disease_parameters()
    params = create_disease_parameters({"beta": 0.5})
    assert params.beta == 0.5
    assert params.gamma == default.gamma


def test_overrides_may_produce_out_of_range_values():
    params = create_disease_parameters({"rho": 2.0})
    assert params.rho == 2.0
    assert not validate_parameters(params).success


def test_unknown_override_rejected():
    with pytest.raises(KeyError):
        create_disease_parameters({"alpha": 0.1})


def test_validate_default_parameters():
    result = validate_parameters(create_disease_parameters().model_dump())
    assert result.success
    assert result.errors == []
    assert result.data == create_disease_parameters()


@pytest.mark.parametrize("name", PARAMETER_NAMES)
def test_validate_rejects_values_above_one(name):
    values = create_disease_parameters().model_dump()
    values[name] = 1.5
    result = validate_parameters(values)
    assert not result.success
    assert result.data is None
    assert result.errors[0]["loc"] == (name,)


@pytest.mark.parametrize("name", PARAMETER_NAMES)
def test_validate_rejects_negative_values(name):
    values = create_disease_parameters().model_dump()
    values[name] = -0.1
    assert not validate_parameters(values).success


def test_beta_must_be_strictly_positive():
    values = create_disease_parameters().model_dump()
    values["beta"] = 0.0
    assert not validate_parameters(values).success
    values["beta"] = 1.0
    assert validate_parameters(values).success


def test_other_parameters_accept_zero_and_one():
    values = create_disease_parameters().model_dump()
    values.update({"epsilon": 0.0, "ve": 1.0, "rho": 0.0, "sigma": 1.0})
    assert validate_parameters(values).success


@pytest.mark.parametrize("bad_value", ["0.1", None, True, [0.1]])
def test_validate_rejects_non_numeric_values(bad_value):
    values = create_disease_parameters().model_dump()
    values["gamma"] = bad_value
    assert not validate_parameters(values).success


def test_validate_rejects_missing_fields():
    values = create_disease_parameters().model_dump()
    del values["sigma"]
    result = validate_parameters(values)
    assert not result.success
    assert result.errors[0]["loc"] == ("sigma",)
    assert result.errors[0]["type"] == "missing"


def test_validate_rejects_unknown_fields():
    values = create_disease_parameters().model_dump()
    values["alpha"] = 0.1
    assert not validate_parameters(values).success


def test_validate_or_throw():
    params = validate_parameters_or_throw(create_disease_parameters().model_dump())
    assert isinstance(params, DiseaseParameters)

    values = create_disease_parameters().model_dump()
    values["beta"] = 2.0
    with pytest.raises(ValidationError):
        validate_parameters_or_throw(values)


def test_parameters_are_immutable():
    params = create_disease_parameters()
    with pytest.raises(ValidationError):
        params.beta = 0.5


def test_effective_r0():
    params = create_disease_parameters()
    r0 = params.beta * 10 / params.gamma
    assert_allclose(calculate_effective_r0(params), r0)
    assert_allclose(calculate_effective_r0(params, 0.5), r0 * (1 - 0.86 * 0.5))
    assert_allclose(r0, 1.7)


def test_effective_r0_without_recovery():
    params = create_disease_parameters({"gamma": 0.0})
    assert calculate_effective_r0(params) == float("inf")


def test_bcg_efficacy_wanes():
    assert_allclose(get_adjusted_bcg_efficacy(0, 5), 0.86 * (1 - 0.02) ** 5)
    assert get_adjusted_bcg_efficacy(0, 0) == 0.86


def test_bcg_efficacy_lost_after_protection_duration():
    duration = TB_PARAMETERS.bcg_efficacy.duration
    assert get_adjusted_bcg_efficacy(0, duration + 1) == 0.0
    assert get_adjusted_bcg_efficacy(0, duration) > 0.0


@pytest.mark.parametrize(
    "age, expected",
    [(0, 0.86), (0.5, 0.86), (1, 0.7), (15.9, 0.7), (16, 0.5), (40, 0.5)],
)
def test_bcg_efficacy_by_age_at_vaccination(age, expected):
    assert get_adjusted_bcg_efficacy(age, 0) == expected
