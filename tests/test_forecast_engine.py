import pytest

from demographics import Inputs
from domain import AccountType
from forecast_engine import ForecastEngine
from load_data import load_profile


def test_sample_profile_runs_every_year(tax_calc, deferral_limits):
    inputs = Inputs.from_dict(load_profile())
    engine = ForecastEngine(inputs, tax_calc, deferral_limits)
    summary_df, ledger_df = engine.run()

    assert len(summary_df) == inputs.years
    assert summary_df["Year"].iloc[0] == inputs.start_year
    assert summary_df["Year"].iloc[-1] == inputs.start_year + inputs.years - 1
    assert not ledger_df.empty
    assert {"Federal Tax", "Shortfall Flag", "Net Worth"} <= set(summary_df.columns)


def test_balances_carry_between_years(retiree_profile, tax_calc, deferral_limits):
    retiree_profile["Years"] = 3
    retiree_profile["Inflation"] = 0.03
    retiree_profile["Returns"] = {"savings": 0.04, "roth": 0.06, "tax_deferred": 0.06}
    retiree_profile["Balances"]["Savings"] = 200000
    engine = ForecastEngine(Inputs.from_dict(retiree_profile), tax_calc, deferral_limits)
    summary_df, _ = engine.run()

    first = summary_df.iloc[0]
    second_year = engine.ledger.year(2026)
    assert second_year.get_starting_balance(AccountType.SAVINGS) == first["Savings Balance"]
    assert summary_df["Spend"].iloc[2] == pytest.approx(30000 * 1.03**2, abs=0.01)
    assert summary_df["Savings Interest"].iloc[0] > 0


def test_ledger_balances_reconcile_every_year(retiree_profile, tax_calc, deferral_limits):
    retiree_profile["Years"] = 4
    retiree_profile["Subject"]["Age"] = 72
    retiree_profile["Subject"]["SS Monthly"] = 2500
    retiree_profile["Withholding"] = {"social_security": 0.07, "tax_deferred": 0.10}
    retiree_profile["Returns"] = {"savings": 0.03, "roth": 0.05, "tax_deferred": 0.05}
    engine = ForecastEngine(Inputs.from_dict(retiree_profile), tax_calc, deferral_limits)
    engine.run()

    for tax_year in range(2025, 2029):
        year = engine.ledger.year(tax_year)
        for account_type in AccountType:
            assert year.get_ending_balance(account_type) == pytest.approx(
                year.get_starting_balance(account_type)
                + year.get_deposits(account_type)
                - year.get_withdrawals(account_type),
                abs=0.01,
            )
    # RMDs begin at 73
    assert engine.results[0].rmd == 0
    assert engine.results[1].rmd > 0


def test_first_shortfall_year_is_reported(retiree_profile, tax_calc, deferral_limits):
    retiree_profile["Years"] = 5
    retiree_profile["Balances"] = {"Savings": 45000}
    engine = ForecastEngine(Inputs.from_dict(retiree_profile), tax_calc, deferral_limits)
    summary_df, _ = engine.run()

    assert engine.first_shortfall_year() == 2026
    assert list(summary_df["Shortfall Flag"]) == [False, True, True, True, True]


def test_no_shortfall_year_when_funded(retiree_profile, tax_calc, deferral_limits):
    engine = ForecastEngine(Inputs.from_dict(retiree_profile), tax_calc, deferral_limits)
    engine.run()
    assert engine.first_shortfall_year() is None
