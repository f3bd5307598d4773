import logging
import math

import pytest

from demographics import Demographics, FiscalData, Inputs
from domain import AccountGroup, AccountType
from income_streams import (
    FixedIncomeStreams,
    elective_deferral_limit,
    scaled_contributions,
)
from ledger import Ledger


def _streams(profile, deferral_limits, year_index=0):
    inputs = Inputs.from_dict(profile)
    demographics = Demographics.for_year(inputs, year_index)
    fiscal_data = FiscalData.for_year(inputs, year_index)
    ledger = Ledger.open(inputs.balances, inputs.start_year)
    year = ledger.year(fiscal_data.tax_year)
    return FixedIncomeStreams.create(
        inputs, demographics, fiscal_data, year, deferral_limits
    )


def test_elective_deferral_limit_adds_catch_up(deferral_limits):
    assert elective_deferral_limit(45, deferral_limits) == 23000
    assert elective_deferral_limit(55, deferral_limits) == 30500


def test_contributions_scale_down_to_the_limit(deferral_limits):
    trad, roth = scaled_contributions(200000, 0.15, 0.05, 45, deferral_limits)
    assert trad == pytest.approx(17250)
    assert roth == pytest.approx(5750)
    assert scaled_contributions(0, 0.15, 0.05, 45, deferral_limits) == (0.0, 0.0)


def test_retiree_streams_with_rmd(retiree_profile, deferral_limits):
    retiree_profile["Subject"].update(
        {"Age": 75, "SS Monthly": 2000, "Pension Monthly": 1000}
    )
    retiree_profile["Withholding"] = {
        "pension": 0.10,
        "social_security": 0.07,
        "tax_deferred": 0.12,
    }
    streams = _streams(retiree_profile, deferral_limits)

    assert streams.social_security == 24000
    assert streams.pension == 12000
    assert streams.rmd == 20325.20
    assert streams.rmd_by_account[AccountType.SUBJECT_401K] == 20325.20
    assert streams.fixed_taxable_income == pytest.approx(32325.20)
    assert streams.total_withholding == pytest.approx(1200 + 1680 + 2439.02)
    assert streams.total_actual_fixed_income == pytest.approx(51006.18)


def test_benefits_grow_with_cola_after_start_age(retiree_profile, deferral_limits):
    retiree_profile["Subject"].update({"Age": 69, "SS Monthly": 1000})
    retiree_profile["SS COLA"] = 0.02
    streams = _streams(retiree_profile, deferral_limits)

    assert streams.subject_ss == pytest.approx(12000 * 1.02**2, abs=0.01)


def test_no_benefits_before_start_age(retiree_profile, deferral_limits):
    retiree_profile["Subject"].update({"Age": 62, "SS Monthly": 2000})
    streams = _streams(retiree_profile, deferral_limits)

    assert streams.social_security == 0
    assert streams.rmd == 0


def test_working_household_wages_and_deferrals(retiree_profile, deferral_limits):
    retiree_profile["Subject"].update(
        {
            "Age": 55,
            "Retirement Age": 60,
            "Wages": 100000,
            "Trad 401k Contribution Rate": 0.10,
            "Roth 401k Contribution Rate": 0.05,
        }
    )
    retiree_profile["Withholding"] = {"wages": 0.15}
    streams = _streams(retiree_profile, deferral_limits)

    assert streams.trad_401k_contribution == 10000
    assert streams.roth_contribution == 5000
    assert streams.taxable_wages == 90000
    assert streams.wages_withholding == 13500
    assert streams.wages_take_home == 71500
    assert streams.non_taxable_cash == -5000


def test_partner_streams_are_combined(retiree_profile, deferral_limits):
    retiree_profile["Subject"].update({"Age": 70, "SS Monthly": 2000})
    retiree_profile["Partner"] = {
        "Age": 68,
        "SS Start Age": 67,
        "SS Monthly": 1000,
        "Pension Start Age": 65,
        "Pension Monthly": 500,
    }
    streams = _streams(retiree_profile, deferral_limits)

    assert streams.subject_ss == 24000
    assert streams.partner_ss == 12000
    assert streams.social_security == 36000
    assert streams.partner_pension == 6000
    assert streams.partner_rmd == 0


def test_inputs_reject_missing_keys(retiree_profile):
    del retiree_profile["Spend"]
    with pytest.raises(ValueError, match="Spend"):
        Inputs.from_dict(retiree_profile)


def test_inputs_reject_unknown_account(retiree_profile):
    retiree_profile["Balances"]["Brokerage"] = 1000
    with pytest.raises(ValueError, match="Invalid profile entry"):
        Inputs.from_dict(retiree_profile)


def test_inputs_reject_non_positive_years(retiree_profile):
    retiree_profile["Years"] = 0
    with pytest.raises(ValueError, match="Years"):
        Inputs.from_dict(retiree_profile)


def test_demographics_eligibility(retiree_profile):
    retiree_profile["Subject"]["Retirement Age"] = 67
    inputs = Inputs.from_dict(retiree_profile)

    first = Demographics.for_year(inputs, 0)
    later = Demographics.for_year(inputs, 2)
    assert first.is_working and not first.is_retired
    assert not first.eligible_for_ss
    assert first.eligible_for_pension
    assert later.age == 67
    assert later.is_retired and later.eligible_for_ss
    assert not later.has_partner
    assert not later.partner_eligible_for_ss


def test_fiscal_data_inflates_spend(retiree_profile):
    retiree_profile["Inflation"] = 0.03
    inputs = Inputs.from_dict(retiree_profile)
    fiscal = FiscalData.for_year(inputs, 2)

    assert fiscal.tax_year == 2027
    assert fiscal.spend == pytest.approx(30000 * 1.03**2)
    assert fiscal.rate_of_return(AccountGroup.SAVINGS) == 0.0
    assert fiscal.enabled_groups[AccountGroup.TAX_DEFERRED]


def test_fiscal_data_ignores_nan_inflation(retiree_profile, caplog):
    retiree_profile["Inflation"] = float("nan")
    inputs = Inputs.from_dict(retiree_profile)
    with caplog.at_level(logging.WARNING):
        fiscal = FiscalData.for_year(inputs, 3, logging.getLogger("tests.fiscal"))

    assert fiscal.spend == 30000
    assert not math.isnan(fiscal.spend)
    assert "[Inflation]" in caplog.text
