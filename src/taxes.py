import logging
import math

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# Internal Imports
from logging_setup import resolve_logger
from money import adjusted_for_inflation, as_currency, as_percentage_of

RMD_START_AGE = 73

# IRS Uniform Lifetime Table
UNIFORM_LIFETIME_TABLE: Dict[int, float] = {
    73: 26.5,
    74: 25.5,
    75: 24.6,
    76: 23.7,
    77: 22.9,
    78: 22.0,
    79: 21.1,
    80: 20.2,
    81: 19.4,
    82: 18.5,
    83: 17.7,
    84: 16.8,
    85: 16.0,
    86: 15.2,
    87: 14.4,
    88: 13.7,
    89: 12.9,
    90: 12.2,
    91: 11.5,
    92: 10.8,
    93: 10.1,
    94: 9.5,
    95: 8.9,
    96: 8.4,
    97: 7.8,
    98: 7.3,
    99: 6.8,
    100: 6.4,
}


class TaxTableError(ValueError):
    pass


class FilingStatus(str, Enum):
    SINGLE = "single"
    MARRIED_FILING_JOINTLY = "mfj"


Bracket = Dict[str, float]


def tax_from_brackets(taxable_income: float, brackets: List[Bracket]) -> float:
    """
    Marginal-bracket tax: each slice of income between the previous ceiling
    and this bracket's ceiling is taxed at that bracket's rate.
    """
    if taxable_income <= 0:
        return 0.0

    tax = 0.0
    previous_ceiling = 0.0
    for bracket in brackets:
        ceiling = bracket["up_to"]
        taxable_chunk = min(taxable_income, ceiling) - previous_ceiling
        if taxable_chunk > 0:
            tax += taxable_chunk * bracket["rate"]
        if taxable_income <= ceiling:
            break
        previous_ceiling = ceiling

    return tax


def taxable_social_security(
    ss_benefit: float,
    other_income: float,
    tier1: float = 32000,
    tier2: float = 44000,
) -> float:
    """
    Portion of Social Security subject to income tax, from provisional income
    (other income + half the benefit):
      - at or below tier1: nothing
      - up to tier2: half the excess over tier1, capped at 50% of the benefit
      - above tier2: 0.5 * (tier2 - tier1) + 85% of the excess over tier2,
        capped at 85% of the benefit
    """
    if ss_benefit <= 0:
        return 0.0

    provisional = other_income + 0.5 * ss_benefit
    if provisional <= tier1:
        return 0.0
    if provisional <= tier2:
        return min(0.5 * ss_benefit, 0.5 * (provisional - tier1))
    return min(
        0.85 * ss_benefit,
        0.5 * (tier2 - tier1) + 0.85 * (provisional - tier2),
    )


def life_expectancy_factor(age: int) -> float:
    if age <= 100:
        return UNIFORM_LIFETIME_TABLE.get(age, UNIFORM_LIFETIME_TABLE[100])
    return max(1.0, UNIFORM_LIFETIME_TABLE[100] - (age - 100) * 0.1)


def calculate_rmd(enabled: bool, age: int, prior_year_balance: float) -> float:
    if not enabled or age < RMD_START_AGE or prior_year_balance <= 0:
        return 0.0
    return prior_year_balance / life_expectancy_factor(age)


class SocialSecurityBreakdown:
    """
    Taxable / non-taxable split of the combined Social Security benefit for a
    given amount of other (non-SS) taxable income.
    """

    def __init__(
        self,
        subject_benefit: float,
        partner_benefit: float,
        other_income: float,
        thresholds: Tuple[float, float],
    ):
        self.subject_benefit = subject_benefit
        self.partner_benefit = partner_benefit
        self.other_income = other_income
        self.tier1, self.tier2 = thresholds

    @property
    def total_benefit(self) -> float:
        return self.subject_benefit + self.partner_benefit

    @property
    def provisional_income(self) -> float:
        return self.other_income + 0.5 * self.total_benefit

    @property
    def taxable_portion(self) -> float:
        return taxable_social_security(
            self.total_benefit, self.other_income, self.tier1, self.tier2
        )

    @property
    def non_taxable_portion(self) -> float:
        return self.total_benefit - self.taxable_portion

    def portion_for(self, benefit: float) -> float:
        if self.total_benefit == 0:
            return 0.0
        return self.taxable_portion * benefit / self.total_benefit

    def to_dict(self) -> Dict[str, float]:
        return {
            "ss_gross": as_currency(self.total_benefit),
            "provisional_income": as_currency(self.provisional_income),
            "taxable_ss": as_currency(self.taxable_portion),
            "non_taxable_ss": as_currency(self.non_taxable_portion),
            "subject_taxable_ss": as_currency(self.portion_for(self.subject_benefit)),
            "partner_taxable_ss": as_currency(self.portion_for(self.partner_benefit)),
        }


class TaxCalculator:
    """
    Federal income tax from base-year tables (ordinary brackets, standard
    deduction, Social Security provisional-income thresholds), inflated per
    year by (1 + inflation_rate) ** (year - base_year).
    """

    def __init__(
        self,
        base_tables: Dict[str, Any],
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = resolve_logger(logger)
        self.base_year = int(base_tables["Base Year"])
        self.base_brackets = self._validate_brackets(base_tables["Brackets"])
        self.base_deductions = {
            FilingStatus(k): float(v)
            for k, v in base_tables["Standard Deduction"].items()
        }
        self.ss_thresholds = {
            FilingStatus(k): (float(v["tier1"]), float(v["tier2"]))
            for k, v in base_tables["Social Security Taxability"].items()
        }

    def _validate_brackets(
        self, brackets_by_status: Dict[str, List[Bracket]]
    ) -> Dict[FilingStatus, List[Bracket]]:
        validated = {}
        for label, bracket_list in brackets_by_status.items():
            try:
                status = FilingStatus(label)
            except ValueError:
                raise TaxTableError(f"Unknown filing status in brackets: {label}")

            rows = []
            previous = 0.0
            for b in bracket_list:
                up_to = float("inf") if b["up_to"] is None else float(b["up_to"])
                if up_to <= previous:
                    raise TaxTableError(
                        f"{label} bracket bounds must be strictly increasing (got {up_to} after {previous})"
                    )
                rows.append({"rate": float(b["rate"]), "up_to": up_to})
                previous = up_to

            if not rows or not math.isinf(rows[-1]["up_to"]):
                raise TaxTableError(f"{label} brackets must end with an unbounded bracket")
            validated[status] = rows
        return validated

    def _status(self, filing_status) -> FilingStatus:
        try:
            return FilingStatus(filing_status)
        except ValueError:
            raise TaxTableError(f"Unknown filing status: {filing_status}") from None

    def _modifier(self, year: int, inflation_rate: float) -> float:
        return adjusted_for_inflation(
            1.0, inflation_rate, year - self.base_year, self.logger
        )

    def tax_brackets(
        self, filing_status, year: int, inflation_rate: float
    ) -> List[Bracket]:
        modifier = self._modifier(year, inflation_rate)
        return [
            {"rate": b["rate"], "up_to": b["up_to"] * modifier}
            for b in self.base_brackets[self._status(filing_status)]
        ]

    def standard_deduction(
        self, filing_status, year: int, inflation_rate: float
    ) -> float:
        base = self.base_deductions[self._status(filing_status)]
        return base * self._modifier(year, inflation_rate)

    def social_security_thresholds(self, filing_status) -> Tuple[float, float]:
        return self.ss_thresholds[self._status(filing_status)]

    def calculate_tax(
        self,
        filing_status,
        year: int,
        inflation_rate: float,
        ordinary_income: float = 0.0,
        ss_benefits: float = 0.0,
        non_taxable_income: float = 0.0,
    ) -> Dict[str, float]:
        """
        Federal tax on a year's income.
          - ordinary_income: all non-SS taxable income (wages, pensions,
            tax-deferred withdrawals, interest, misc)
          - ss_benefits: gross Social Security, taxed via provisional income
        """
        brackets = self.tax_brackets(filing_status, year, inflation_rate)
        deduction = self.standard_deduction(filing_status, year, inflation_rate)
        tier1, tier2 = self.social_security_thresholds(filing_status)

        taxable_ss = taxable_social_security(ss_benefits, ordinary_income, tier1, tier2)
        agi = ordinary_income + taxable_ss
        taxable_income = max(0.0, agi - deduction)
        federal_tax = tax_from_brackets(taxable_income, brackets)
        gross_income = ordinary_income + ss_benefits + non_taxable_income

        self.logger.debug(
            f"[Tax] {year} ordinary=${ordinary_income:,.2f} ss=${ss_benefits:,.2f} "
            f"taxable_ss=${taxable_ss:,.2f} taxable=${taxable_income:,.2f} tax=${federal_tax:,.2f}"
        )

        return {
            "gross_income": as_currency(gross_income),
            "agi": as_currency(agi),
            "standard_deduction": as_currency(deduction),
            "taxable_ss": as_currency(taxable_ss),
            "taxable_income": as_currency(taxable_income),
            "federal_tax": as_currency(federal_tax),
            "effective_tax_rate": as_percentage_of(federal_tax, gross_income),
        }
