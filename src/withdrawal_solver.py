import logging
import math
import pandas as pd

from typing import Any, Dict, List, Optional, Tuple

# Internal Imports
from demographics import Demographics, FiscalData
from domain import (
    ACCOUNT_GROUPS,
    TAX_FREE_GROUPS,
    AccountGroup,
    AccountType,
    PeriodicFrequency,
    TransactionCategory,
)
from income_streams import FixedIncomeStreams
from ledger import AccountingYear
from logging_setup import resolve_logger
from money import as_currency
from portioner import AccountPortioner
from taxes import (
    Bracket,
    SocialSecurityBreakdown,
    TaxCalculator,
    tax_from_brackets,
)

SOLVER_TOLERANCE = 0.01
SOLVER_MAX_ITERATIONS = 80


class TaxContext:
    """
    Everything the bisection needs to price a candidate tax-deferred
    withdrawal: fixed non-SS taxable income, gross SS per beneficiary,
    tax-free cash, brackets, deduction and the SS provisional-income
    thresholds. `ss_benefit` is the subject's benefit, or the household
    total when no partner split is given.
    """

    def __init__(
        self,
        fixed_taxable_income: float,
        ss_benefit: float,
        brackets: List[Bracket],
        standard_deduction: float,
        ss_thresholds: Tuple[float, float] = (32000.0, 44000.0),
        non_taxable_income: float = 0.0,
        partner_ss_benefit: float = 0.0,
    ):
        self.fixed_taxable_income = fixed_taxable_income
        self.ss_benefit = ss_benefit
        self.partner_ss_benefit = partner_ss_benefit
        self.brackets = brackets
        self.standard_deduction = standard_deduction
        self.tier1, self.tier2 = ss_thresholds
        self.non_taxable_income = non_taxable_income

    @classmethod
    def from_streams(
        cls, streams: FixedIncomeStreams, tax_calculator: TaxCalculator
    ) -> "TaxContext":
        fiscal = streams.fiscal_data
        status = streams.demographics.filing_status
        return cls(
            fixed_taxable_income=streams.fixed_taxable_income,
            ss_benefit=streams.subject_ss,
            partner_ss_benefit=streams.partner_ss,
            brackets=tax_calculator.tax_brackets(
                status, fiscal.tax_year, fiscal.inflation_rate
            ),
            standard_deduction=tax_calculator.standard_deduction(
                status, fiscal.tax_year, fiscal.inflation_rate
            ),
            ss_thresholds=tax_calculator.social_security_thresholds(status),
            non_taxable_income=streams.non_taxable_cash,
        )

    @property
    def total_ss_benefit(self) -> float:
        return self.ss_benefit + self.partner_ss_benefit

    def breakdown(self, withdrawal: float) -> SocialSecurityBreakdown:
        # Provisional income moves with the candidate withdrawal
        return SocialSecurityBreakdown(
            self.ss_benefit,
            self.partner_ss_benefit,
            self.fixed_taxable_income + withdrawal,
            (self.tier1, self.tier2),
        )

    def taxable_social_security(self, withdrawal: float) -> float:
        return self.breakdown(withdrawal).taxable_portion

    def taxable_income(self, withdrawal: float) -> float:
        agi = (
            self.fixed_taxable_income
            + withdrawal
            + self.taxable_social_security(withdrawal)
        )
        return max(0.0, agi - self.standard_deduction)

    def federal_tax(self, withdrawal: float) -> float:
        return tax_from_brackets(self.taxable_income(withdrawal), self.brackets)

    def gross_income(self, withdrawal: float) -> float:
        return (
            self.fixed_taxable_income
            + self.total_ss_benefit
            + self.non_taxable_income
            + withdrawal
        )

    def net_income(self, withdrawal: float) -> float:
        return self.gross_income(withdrawal) - self.federal_tax(withdrawal)


def solve_withdrawal(
    target: float,
    tax_context: TaxContext,
    tolerance: float = SOLVER_TOLERANCE,
    max_iterations: int = SOLVER_MAX_ITERATIONS,
) -> Tuple[float, int, bool]:
    """
    Bisect for the gross tax-deferred withdrawal whose after-tax income
    meets `target`. Searches [0, 2 * target]; a need above that bound ends
    pinned at the upper edge.

    On convergence the returned amount nets at least `target`: the search
    finishes on the upper bound, never on a midpoint that nets short.

    Returns (amount, iterations, converged). When the iteration ceiling is
    hit first, the last midpoint is returned with converged=False.
    """
    lo, hi = 0.0, max(2 * target, 0.0)
    target_cents = as_currency(target)
    amount = 0.0
    iterations = 0
    converged = False

    while iterations < max_iterations:
        iterations += 1
        amount = (lo + hi) / 2
        net = tax_context.net_income(amount)

        if net >= target and as_currency(net) == target_cents:
            converged = True
            break
        if net < target:
            lo = amount
        else:
            hi = amount
        if hi - lo <= tolerance:
            amount = hi
            converged = True
            break

    return amount, iterations, converged


class YearResult:
    """
    Outcome of one simulated year, flat enough to tabulate.
    """

    def __init__(self, tax_year: int, age: int, partner_age: Optional[int], spend: float):
        self.tax_year = tax_year
        self.age = age
        self.partner_age = partner_age
        self.spend = spend
        self.fixed_income: Dict[str, float] = {}
        self.actual_fixed_income = 0.0
        self.portions: Dict[AccountGroup, float] = {}
        self.withdrawals: Dict[AccountGroup, float] = {g: 0.0 for g in AccountGroup}
        self.rmd = 0.0
        self.solver_amount = 0.0
        self.solver_iterations = 0
        self.solver_converged = True
        self.tax_deferred_withholding = 0.0
        self.interest: Dict[AccountGroup, float] = {g: 0.0 for g in AccountGroup}
        self.taxes: Dict[str, float] = {}
        self.withheld = 0.0
        self.tax_refund = 0.0
        self.tax_payment = 0.0
        self.unpaid_tax = 0.0
        self.disbursed = 0.0
        self.shortfall = 0.0
        self.ending_balances: Dict[AccountGroup, float] = {}

    @property
    def shortfall_flag(self) -> bool:
        # cent-level residue from the solver tolerance is not a shortfall
        return self.shortfall > SOLVER_TOLERANCE

    @property
    def net_worth(self) -> float:
        return as_currency(sum(self.ending_balances.values()))

    def to_dict(self) -> Dict[str, Any]:
        row = {
            "Year": self.tax_year,
            "Age": self.age,
            "Partner Age": self.partner_age,
            "Spend": as_currency(self.spend),
            "Actual Fixed Income": self.actual_fixed_income,
        }
        row.update({k.replace("_", " ").title(): v for k, v in self.fixed_income.items()})
        for group in AccountGroup:
            label = group.value.replace("_", " ").title()
            row[f"{label} Withdrawal"] = self.withdrawals.get(group, 0.0)
            row[f"{label} Interest"] = self.interest.get(group, 0.0)
            row[f"{label} Balance"] = self.ending_balances.get(group, 0.0)
        row.update(
            {
                "RMD": self.rmd,
                "Solver Amount": as_currency(self.solver_amount),
                "Solver Iterations": self.solver_iterations,
                "Solver Converged": self.solver_converged,
                "AGI": self.taxes.get("agi", 0.0),
                "Provisional Income": self.taxes.get("provisional_income", 0.0),
                "Taxable SS": self.taxes.get("taxable_ss", 0.0),
                "Non-Taxable SS": self.taxes.get("non_taxable_ss", 0.0),
                "Subject Taxable SS": self.taxes.get("subject_taxable_ss", 0.0),
                "Partner Taxable SS": self.taxes.get("partner_taxable_ss", 0.0),
                "Taxable Income": self.taxes.get("taxable_income", 0.0),
                "Federal Tax": self.taxes.get("federal_tax", 0.0),
                "Effective Tax Rate": self.taxes.get("effective_tax_rate", 0.0),
                "Withheld": self.withheld,
                "Tax Refund": self.tax_refund,
                "Tax Payment": self.tax_payment,
                "Unpaid Tax": self.unpaid_tax,
                "Disbursed": self.disbursed,
                "Shortfall": self.shortfall,
                "Shortfall Flag": self.shortfall_flag,
                "Net Worth": self.net_worth,
            }
        )
        return row


class WithdrawalSolver:
    """
    Runs one year against the ledger:
      1) post contributions and fixed income (take-home to Cash, withholding
         to Withholdings, mandatory RMDs out of the 401ks)
      2) ask the portioner to split the shortfall across account groups
      3) draw tax-free groups at their ask; bisect the tax-deferred gross
      4) disburse the spend from Cash and sweep any surplus into Savings
      5) credit interest, then settle actual tax against withholding
      6) pull any remaining need from Savings, flag what is still unmet
    """

    def __init__(
        self,
        accounting_year: AccountingYear,
        streams: FixedIncomeStreams,
        fiscal_data: FiscalData,
        demographics: Demographics,
        tax_calculator: TaxCalculator,
        priority: Optional[List[AccountGroup]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if accounting_year is None:
            raise ValueError("accounting_year is required")
        self.year = accounting_year
        self.streams = streams
        self.fiscal_data = fiscal_data
        self.demographics = demographics
        self.tax_calculator = tax_calculator
        self.priority = priority
        self.logger = resolve_logger(logger)
        self.tax_year = fiscal_data.tax_year
        self.year_end = pd.Timestamp(year=self.tax_year, month=12, day=31)

    def process_withdrawals(self) -> YearResult:
        spend = as_currency(self.fiscal_data.spend)
        result = YearResult(
            self.tax_year, self.demographics.age, self.demographics.partner_age, spend
        )
        result.fixed_income = self.streams.to_dict()

        self._post_contributions()
        result.actual_fixed_income = self._post_fixed_income(result)
        shortfall = as_currency(spend - result.actual_fixed_income)
        self.logger.info(
            f"[Solver] {self.tax_year} spend ${spend:,.2f}, fixed income ${result.actual_fixed_income:,.2f}, shortfall ${shortfall:,.2f}"
        )

        portioner = AccountPortioner(
            available_funds={
                g: self.year.get_group_available_funds(g) for g in AccountGroup
            },
            enabled=self.fiscal_data.enabled_groups,
            priority=self.priority,
            logger=self.logger,
        )
        result.portions = portioner.calculate_portions(shortfall)
        tax_free_asks = sum(
            ask for g, ask in result.portions.items() if g in TAX_FREE_GROUPS
        )

        for group in portioner.priority:
            if group in TAX_FREE_GROUPS:
                result.withdrawals[group] = self._withdraw_tax_free(
                    group, result.portions.get(group, 0.0)
                )
            elif self.fiscal_data.use_trad_401k:
                result.withdrawals[group] = self._withdraw_tax_deferred(
                    as_currency(spend - tax_free_asks), result
                )

        result.disbursed = self._disburse_spend(spend)
        result.interest = self._apply_interest()
        self._reconcile_withholding(result)

        remaining = self._cover_remaining_shortfall(as_currency(spend - result.disbursed))
        result.disbursed = as_currency(spend - remaining)
        result.shortfall = as_currency(remaining + result.unpaid_tax)
        if result.shortfall_flag:
            self.logger.error(
                f"[Solver] {self.tax_year} unable to cover shortfall: ${result.shortfall:,.2f}"
            )

        result.ending_balances = {
            g: self.year.get_group_ending_balance(g) for g in AccountGroup
        }
        return result

    # ---------- fixed income ----------

    def _post_contributions(self) -> None:
        for account_type, amount in self.streams.trad_401k_contributions.items():
            self.year.process_as_periodic_deposits(
                account_type,
                TransactionCategory.CONTRIBUTION,
                amount,
                PeriodicFrequency.MONTHLY,
                "Elective deferral",
            )
        for account_type, amount in self.streams.roth_contributions.items():
            self.year.process_as_periodic_deposits(
                account_type,
                TransactionCategory.CONTRIBUTION,
                amount,
                PeriodicFrequency.MONTHLY,
                "Roth deferral",
            )

    def _post_fixed_income(self, result: YearResult) -> float:
        streams = self.streams
        posted = 0.0
        for category, amount, memo in [
            (TransactionCategory.INCOME, streams.wages_take_home, "Working income"),
            (TransactionCategory.PENSION, streams.pension_take_home, "Pension income"),
            (
                TransactionCategory.SOCIAL_SECURITY,
                streams.ss_take_home,
                "Social Security income",
            ),
            (
                TransactionCategory.OTHER_TAXABLE,
                streams.misc_taxable_income,
                "Other taxable income",
            ),
            (
                TransactionCategory.OTHER_NON_TAXABLE,
                streams.misc_non_taxable_income,
                "Tax-free income",
            ),
        ]:
            if amount <= 0:
                continue
            posted += self.year.process_as_periodic_deposits(
                AccountType.CASH, category, amount, PeriodicFrequency.MONTHLY, memo
            )

        for amount, memo in [
            (streams.wages_withholding, "Wage withholding"),
            (streams.pension_withholding, "Pension withholding"),
            (streams.ss_withholding, "Social Security withholding"),
        ]:
            self.year.deposit(
                AccountType.WITHHOLDINGS, TransactionCategory.TAXES, amount, memo
            )

        for account_type, rmd in streams.rmd_by_account.items():
            if rmd <= 0:
                continue
            available = self.year.get_available_funds([account_type])
            gross = self.year.process_as_periodic_withdrawals(
                account_type,
                TransactionCategory.RMD,
                min(rmd, available),
                PeriodicFrequency.MONTHLY,
                "Required minimum distribution",
            )
            withheld = streams.rmd_withholding(gross)
            self.year.deposit(
                AccountType.WITHHOLDINGS,
                TransactionCategory.TAXES,
                withheld,
                "RMD withholding",
            )
            posted += self.year.process_as_periodic_deposits(
                AccountType.CASH,
                TransactionCategory.RMD,
                as_currency(gross - withheld),
                PeriodicFrequency.MONTHLY,
                "RMD take-home",
            )
            result.rmd = as_currency(result.rmd + gross)

        return as_currency(posted)

    # ---------- discretionary withdrawals ----------

    def _withdraw_tax_free(self, group: AccountGroup, ask: float) -> float:
        if ask <= 0:
            return 0.0
        category = (
            TransactionCategory.SAVINGS
            if group == AccountGroup.SAVINGS
            else TransactionCategory.ROTH
        )
        taken = sum(
            self.year.withdraw_from_group(
                group, category, ask, f"Withdrawal from {group.value}"
            ).values()
        )
        taken = as_currency(taken)
        self.year.deposit(
            AccountType.CASH, category, taken, f"Income from {group.value}"
        )
        self.logger.info(
            f"[Solver] {self.tax_year} {group.value} withdrawal ${taken:,.2f} (ask ${ask:,.2f})"
        )
        return taken

    def _withdraw_tax_deferred(self, target: float, result: YearResult) -> float:
        context = TaxContext.from_streams(self.streams, self.tax_calculator)
        if context.net_income(0.0) >= target:
            self.logger.debug(
                f"[Solver] {self.tax_year} fixed income already nets ${target:,.2f}; no tax-deferred withdrawal"
            )
            return 0.0

        amount, iterations, converged = solve_withdrawal(target, context)
        result.solver_amount = amount
        result.solver_iterations = iterations
        result.solver_converged = converged
        if not converged:
            self.logger.warning(
                f"[Solver] {self.tax_year} bisection stopped after {iterations} iterations; using ${amount:,.2f}"
            )

        available = self.year.get_group_available_funds(AccountGroup.TAX_DEFERRED)
        # round up to the cent
        gross = as_currency(min(math.ceil(amount * 100) / 100, available))
        if gross < as_currency(amount):
            self.logger.warning(
                f"[Solver] {self.tax_year} tax-deferred need ${amount:,.2f} capped at available ${available:,.2f}"
            )
        if gross <= 0:
            return 0.0

        taken = as_currency(
            sum(
                self.year.withdraw_from_group(
                    AccountGroup.TAX_DEFERRED,
                    TransactionCategory.TRAD_401K,
                    gross,
                    "Tax-deferred withdrawal",
                ).values()
            )
        )
        withheld = as_currency(taken * self.fiscal_data.withholding_rate("tax_deferred"))
        result.tax_deferred_withholding = withheld
        self.year.deposit(
            AccountType.WITHHOLDINGS,
            TransactionCategory.TAXES,
            withheld,
            "Tax-deferred withholding",
        )
        self.year.deposit(
            AccountType.CASH,
            TransactionCategory.TRAD_401K,
            as_currency(taken - withheld),
            "Tax-deferred take-home",
        )
        self.logger.info(
            f"[Solver] {self.tax_year} tax-deferred gross ${taken:,.2f} after {iterations} iterations (target net ${target:,.2f})"
        )
        return taken

    # ---------- settlement ----------

    def _disburse_spend(self, spend: float) -> float:
        cash = self.year.get_available_funds([AccountType.CASH])
        paid = as_currency(min(spend, cash))
        self.year.withdrawal(
            AccountType.CASH, TransactionCategory.SPEND, paid, "Spending"
        )
        self.year.deposit(
            AccountType.DISBURSEMENT,
            TransactionCategory.DISBURSEMENT,
            paid,
            "Spending",
        )

        surplus = as_currency(cash - paid)
        if surplus > 0:
            self.year.withdrawal(
                AccountType.CASH,
                TransactionCategory.TRANSFER,
                surplus,
                "Surplus to savings",
                self.year_end,
            )
            self.year.deposit(
                AccountType.SAVINGS,
                TransactionCategory.OVERAGE,
                surplus,
                "Surplus income",
                self.year_end,
            )
        return paid

    def _apply_interest(self) -> Dict[AccountGroup, float]:
        interest = {}
        for group in [AccountGroup.SAVINGS, AccountGroup.ROTH, AccountGroup.TAX_DEFERRED]:
            rate = self.fiscal_data.rate_of_return(group)
            interest[group] = as_currency(
                sum(
                    self.year.record_interest_earned_for_year(
                        account_type, rate, self.fiscal_data.interest_basis
                    )
                    for account_type in ACCOUNT_GROUPS[group]
                )
            )
        return interest

    def _realized_ordinary_income(self) -> float:
        tax_deferred = sum(
            self.year.get_withdrawals(account_type, TransactionCategory.RMD)
            + self.year.get_withdrawals(account_type, TransactionCategory.TRAD_401K)
            for account_type in ACCOUNT_GROUPS[AccountGroup.TAX_DEFERRED]
        )
        savings_interest = self.year.get_deposits(
            AccountType.SAVINGS, TransactionCategory.INTEREST
        )
        return as_currency(
            self.streams.taxable_wages
            + self.streams.pension
            + self.streams.misc_taxable_income
            + tax_deferred
            + savings_interest
        )

    def _reconcile_withholding(self, result: YearResult) -> None:
        status = self.demographics.filing_status
        ordinary_income = self._realized_ordinary_income()
        result.taxes = self.tax_calculator.calculate_tax(
            status,
            self.tax_year,
            self.fiscal_data.inflation_rate,
            ordinary_income=ordinary_income,
            ss_benefits=self.streams.social_security,
            non_taxable_income=self.streams.misc_non_taxable_income,
        )
        breakdown = SocialSecurityBreakdown(
            self.streams.subject_ss,
            self.streams.partner_ss,
            ordinary_income,
            self.tax_calculator.social_security_thresholds(status),
        )
        result.taxes.update(breakdown.to_dict())
        result.withheld = self.year.get_deposits(
            AccountType.WITHHOLDINGS, TransactionCategory.TAXES
        )
        balance_due = as_currency(result.taxes["federal_tax"] - result.withheld)

        if balance_due < 0:
            result.tax_refund = self.year.deposit(
                AccountType.SAVINGS,
                TransactionCategory.TAX_REFUND,
                -balance_due,
                "Federal tax refund",
                self.year_end,
            )
        elif balance_due > 0:
            available = self.year.get_available_funds([AccountType.SAVINGS])
            result.tax_payment = self.year.withdrawal(
                AccountType.SAVINGS,
                TransactionCategory.TAX_PAYMENT,
                min(balance_due, available),
                "Federal tax balance due",
                self.year_end,
            )
            result.unpaid_tax = as_currency(balance_due - result.tax_payment)

        self.logger.info(
            f"[Tax] {self.tax_year} due ${result.taxes['federal_tax']:,.2f}, withheld ${result.withheld:,.2f}, refund ${result.tax_refund:,.2f}, paid ${result.tax_payment:,.2f}"
        )

    def _cover_remaining_shortfall(self, shortfall: float) -> float:
        if shortfall <= 0:
            return 0.0
        available = self.year.get_available_funds([AccountType.SAVINGS])
        taken = self.year.withdrawal(
            AccountType.SAVINGS,
            TransactionCategory.SHORTAGE,
            min(shortfall, available),
            "Shortfall covered from savings",
            self.year_end,
        )
        self.year.deposit(
            AccountType.DISBURSEMENT,
            TransactionCategory.DISBURSEMENT,
            taken,
            "Shortfall covered from savings",
            self.year_end,
        )
        return as_currency(shortfall - taken)
