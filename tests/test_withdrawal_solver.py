import pytest

from demographics import Inputs
from domain import AccountGroup, AccountType, TransactionCategory
from forecast_engine import ForecastEngine
from taxes import FilingStatus
from withdrawal_solver import TaxContext, YearResult, solve_withdrawal

SS_BENEFIT = 32307


@pytest.fixture
def mfj_context(tax_calc) -> TaxContext:
    status = FilingStatus.MARRIED_FILING_JOINTLY
    return TaxContext(
        fixed_taxable_income=0,
        ss_benefit=SS_BENEFIT,
        brackets=tax_calc.tax_brackets(status, 2025, 0.0),
        standard_deduction=29200,
        ss_thresholds=tax_calc.social_security_thresholds(status),
    )


def _run_first_year(profile, tax_calc, deferral_limits):
    engine = ForecastEngine(Inputs.from_dict(profile), tax_calc, deferral_limits)
    return engine.run_year(0), engine.ledger.year(profile["Start Year"])


def test_bisection_meets_target_net_income(mfj_context):
    amount, iterations, converged = solve_withdrawal(70000, mfj_context)

    net = SS_BENEFIT + amount - mfj_context.federal_tax(amount)
    assert converged
    assert iterations <= 80
    assert net == pytest.approx(70000, abs=0.0101)


def test_taxable_social_security_follows_provisional_income(mfj_context):
    amount, _, _ = solve_withdrawal(70000, mfj_context)

    provisional = amount + 0.5 * SS_BENEFIT
    expected = min(0.85 * SS_BENEFIT, 6000 + 0.85 * (provisional - 44000))
    assert provisional > 44000
    assert mfj_context.taxable_social_security(amount) == pytest.approx(expected)


def test_bisection_is_repeatable(mfj_context):
    first, _, _ = solve_withdrawal(70000, mfj_context)
    second, _, _ = solve_withdrawal(70000, mfj_context)
    assert first == pytest.approx(second, abs=0.01)


def test_zero_target_needs_no_withdrawal(tax_calc):
    context = TaxContext(0, 0, tax_calc.tax_brackets("mfj", 2025, 0.0), 29200)
    assert solve_withdrawal(0, context) == (0.0, 1, True)


def test_target_already_covered_converges_to_zero(tax_calc):
    context = TaxContext(50000, 0, tax_calc.tax_brackets("mfj", 2025, 0.0), 29200)
    amount, _, converged = solve_withdrawal(10000, context)

    assert converged
    assert amount < 0.01


def test_iteration_ceiling_returns_best_effort_midpoint(mfj_context):
    amount, iterations, converged = solve_withdrawal(
        70000, mfj_context, max_iterations=3
    )

    assert not converged
    assert iterations == 3
    assert 0 < amount < 140000


def test_tax_context_matches_calculator(mfj_context, tax_calc):
    amount = 40000
    result = tax_calc.calculate_tax(
        "mfj", 2025, 0.0, ordinary_income=amount, ss_benefits=SS_BENEFIT
    )
    assert mfj_context.federal_tax(amount) == pytest.approx(
        result["federal_tax"], abs=0.01
    )


def test_bisection_never_lands_under_the_target(mfj_context):
    amount, _, converged = solve_withdrawal(70000, mfj_context)

    assert converged
    assert mfj_context.net_income(amount) >= 70000


def test_partner_benefit_splits_the_taxable_portion(mfj_context, tax_calc):
    status = FilingStatus.MARRIED_FILING_JOINTLY
    split = TaxContext(
        fixed_taxable_income=0,
        ss_benefit=20000,
        brackets=tax_calc.tax_brackets(status, 2025, 0.0),
        standard_deduction=29200,
        ss_thresholds=tax_calc.social_security_thresholds(status),
        partner_ss_benefit=SS_BENEFIT - 20000,
    )
    breakdown = split.breakdown(40000)

    assert split.total_ss_benefit == SS_BENEFIT
    assert split.net_income(40000) == pytest.approx(mfj_context.net_income(40000))
    assert breakdown.taxable_portion == pytest.approx(
        mfj_context.taxable_social_security(40000)
    )
    assert breakdown.portion_for(20000) + breakdown.portion_for(
        SS_BENEFIT - 20000
    ) == pytest.approx(breakdown.taxable_portion)


def test_tax_free_groups_drain_in_priority_order(
    retiree_profile, tax_calc, deferral_limits
):
    result, year = _run_first_year(retiree_profile, tax_calc, deferral_limits)

    assert result.withdrawals[AccountGroup.SAVINGS] == 10000
    assert result.withdrawals[AccountGroup.ROTH] == 20000
    assert result.withdrawals[AccountGroup.TAX_DEFERRED] == 0
    assert result.disbursed == 30000
    assert result.taxes["federal_tax"] == 0
    assert not result.shortfall_flag
    assert year.get_ending_balance(AccountType.SAVINGS) == 0
    assert year.get_ending_balance(AccountType.SUBJECT_ROTH_IRA) == 30000
    assert year.get_deposits(AccountType.DISBURSEMENT) == 30000
    assert year.get_deposits(
        AccountType.DISBURSEMENT, TransactionCategory.DISBURSEMENT
    ) == 30000


def test_disabled_savings_shifts_the_draw_to_roth(
    retiree_profile, tax_calc, deferral_limits
):
    retiree_profile["Use"] = {"savings": False}
    result, _ = _run_first_year(retiree_profile, tax_calc, deferral_limits)

    assert result.withdrawals[AccountGroup.SAVINGS] == 0
    assert result.withdrawals[AccountGroup.ROTH] == 30000


def test_tax_deferred_withdrawal_is_grossed_up_for_tax(
    retiree_profile, tax_calc, deferral_limits
):
    retiree_profile["Spend"] = 50000
    retiree_profile["Balances"] = {"Subject 401k": 500000}
    result, year = _run_first_year(retiree_profile, tax_calc, deferral_limits)

    # 10% bracket: tax = 0.1 * (W - 29200) and W - tax = 50000
    expected_tax = 2080 / 0.9
    assert result.solver_converged
    assert result.withdrawals[AccountGroup.TAX_DEFERRED] == pytest.approx(
        50000 + expected_tax, abs=0.02
    )
    assert result.taxes["federal_tax"] == pytest.approx(expected_tax, abs=0.02)
    assert result.tax_payment == pytest.approx(expected_tax, abs=0.02)
    assert result.disbursed == 50000
    assert not result.shortfall_flag
    assert year.get_withdrawals(
        AccountType.SUBJECT_401K, TransactionCategory.TRAD_401K
    ) == pytest.approx(50000 + expected_tax, abs=0.02)


def test_withholding_is_refunded_when_it_exceeds_tax(
    retiree_profile, tax_calc, deferral_limits
):
    retiree_profile["Spend"] = 50000
    retiree_profile["Balances"] = {"Subject 401k": 500000}
    retiree_profile["Withholding"]["tax_deferred"] = 0.20
    result, year = _run_first_year(retiree_profile, tax_calc, deferral_limits)

    withheld = year.get_deposits(AccountType.WITHHOLDINGS, TransactionCategory.TAXES)
    assert result.withheld == withheld
    assert withheld > result.taxes["federal_tax"]
    assert result.tax_refund == pytest.approx(
        withheld - result.taxes["federal_tax"], abs=0.01
    )
    assert result.disbursed == pytest.approx(50000, abs=0.02)
    assert not result.shortfall_flag


def test_rmd_is_taken_even_when_spend_is_covered(
    retiree_profile, tax_calc, deferral_limits
):
    retiree_profile["Subject"]["Age"] = 75
    retiree_profile["Spend"] = 10000
    result, year = _run_first_year(retiree_profile, tax_calc, deferral_limits)

    assert result.rmd == 20325.20
    assert year.get_withdrawals(
        AccountType.SUBJECT_401K, TransactionCategory.RMD
    ) == 20325.20
    assert result.withdrawals[AccountGroup.SAVINGS] == 0
    assert result.withdrawals[AccountGroup.TAX_DEFERRED] == 0
    assert year.get_deposits(AccountType.SAVINGS, TransactionCategory.OVERAGE) == 10325.20
    assert result.disbursed == 10000


def test_unfunded_spend_is_flagged_not_fatal(retiree_profile, tax_calc, deferral_limits):
    retiree_profile["Spend"] = 100000
    retiree_profile["Balances"] = {"Savings": 1000}
    result, _ = _run_first_year(retiree_profile, tax_calc, deferral_limits)

    assert result.disbursed == 1000
    assert result.shortfall == 99000
    assert result.shortfall_flag
    assert result.to_dict()["Shortfall Flag"]


def test_year_result_row_has_group_columns():
    result = YearResult(2025, 70, None, 40000)
    result.ending_balances = {AccountGroup.SAVINGS: 100, AccountGroup.ROTH: 50}
    row = result.to_dict()

    assert row["Year"] == 2025
    assert row["Tax Deferred Withdrawal"] == 0
    assert row["Savings Balance"] == 100
    assert row["Net Worth"] == 150
    assert row["Shortfall Flag"] is False


def test_year_end_tax_includes_savings_interest(retiree_profile, tax_calc, deferral_limits):
    retiree_profile["Spend"] = 50000
    retiree_profile["Withdrawal Priority"] = ["tax_deferred", "savings", "roth"]
    retiree_profile["Balances"] = {"Savings": 100000, "Subject 401k": 500000}
    retiree_profile["Returns"]["savings"] = 0.05
    result, year = _run_first_year(retiree_profile, tax_calc, deferral_limits)

    context = TaxContext(0, 0, tax_calc.tax_brackets("mfj", 2025, 0.0), 29200)
    estimated = context.federal_tax(result.solver_amount)
    # 5000 of interest is taxed at 12% on top of the solver's estimate
    assert result.interest[AccountGroup.SAVINGS] == 5000
    assert result.taxes["federal_tax"] > estimated
    assert result.taxes["federal_tax"] == pytest.approx(
        2320 + 0.12 * (result.solver_amount + 5000 - 29200 - 23200), abs=0.02
    )
    assert result.tax_payment == result.taxes["federal_tax"]
    assert year.get_withdrawals(
        AccountType.SAVINGS, TransactionCategory.TAX_PAYMENT
    ) == result.tax_payment
    assert result.disbursed == 50000
    assert not result.shortfall_flag


def test_tax_deferred_draw_is_capped_at_the_balance(
    retiree_profile, tax_calc, deferral_limits
):
    retiree_profile["Spend"] = 80000
    retiree_profile["Withdrawal Priority"] = ["tax_deferred", "savings", "roth"]
    retiree_profile["Balances"] = {"Savings": 100000, "Subject 401k": 60000}
    result, year = _run_first_year(retiree_profile, tax_calc, deferral_limits)

    assert result.solver_amount > 60000
    assert result.withdrawals[AccountGroup.TAX_DEFERRED] == 60000
    assert result.withdrawals[AccountGroup.SAVINGS] == 20000
    assert year.get_ending_balance(AccountType.SUBJECT_401K) == 0
    assert result.taxes["federal_tax"] == 3232.0
    assert result.tax_payment == 3232.0
    assert result.disbursed == 80000
    assert not result.shortfall_flag


def test_withheld_draw_settles_to_the_full_spend(
    retiree_profile, tax_calc, deferral_limits
):
    retiree_profile["Spend"] = 50000
    retiree_profile["Balances"] = {"Subject 401k": 500000}
    retiree_profile["Withholding"]["tax_deferred"] = 0.12
    result, year = _run_first_year(retiree_profile, tax_calc, deferral_limits)

    assert result.tax_refund > 0
    assert year.get_withdrawals(AccountType.SAVINGS, TransactionCategory.SHORTAGE) > 0
    assert year.get_deposits(
        AccountType.DISBURSEMENT, TransactionCategory.DISBURSEMENT
    ) == pytest.approx(50000, abs=0.001)
    assert result.disbursed == 50000
    assert result.shortfall == 0


def test_partner_benefits_are_split_in_the_year_row(
    retiree_profile, tax_calc, deferral_limits
):
    retiree_profile["Subject"].update({"Age": 70, "SS Monthly": 2000})
    retiree_profile["Partner"] = {
        "Age": 68,
        "SS Start Age": 67,
        "SS Monthly": 1000,
        "Pension Start Age": 65,
        "Pension Monthly": 0,
    }
    retiree_profile["Spend"] = 80000
    retiree_profile["Balances"] = {"Subject 401k": 500000}
    result, _ = _run_first_year(retiree_profile, tax_calc, deferral_limits)
    row = result.to_dict()

    assert result.taxes["ss_gross"] == 36000
    assert row["Provisional Income"] == pytest.approx(
        result.withdrawals[AccountGroup.TAX_DEFERRED] + 18000, abs=0.01
    )
    assert row["Subject Taxable SS"] + row["Partner Taxable SS"] == pytest.approx(
        row["Taxable SS"], abs=0.01
    )
    assert row["Subject Taxable SS"] == pytest.approx(
        2 * row["Partner Taxable SS"], abs=0.02
    )
    assert row["Non-Taxable SS"] == pytest.approx(36000 - row["Taxable SS"], abs=0.01)
