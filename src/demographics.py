import logging

from typing import Any, Dict, List, Optional

# Internal Imports
from domain import AccountGroup, AccountType, InterestBasis, coerce_member
from logging_setup import resolve_logger
from money import adjusted_for_inflation
from taxes import FilingStatus


class PersonInputs:
    """
    Per-person settings from the profile: ages, benefit start ages and
    amounts, wages and elective contribution rates.
    """

    def __init__(
        self,
        age: int,
        ss_start_age: int = 67,
        ss_monthly: float = 0.0,
        pension_start_age: int = 65,
        pension_monthly: float = 0.0,
        wages: float = 0.0,
        trad_401k_contribution_rate: float = 0.0,
        roth_401k_contribution_rate: float = 0.0,
        retirement_age: Optional[int] = None,
    ):
        self.age = int(age)
        self.ss_start_age = int(ss_start_age)
        self.ss_monthly = float(ss_monthly)
        self.pension_start_age = int(pension_start_age)
        self.pension_monthly = float(pension_monthly)
        self.wages = float(wages)
        self.trad_401k_contribution_rate = float(trad_401k_contribution_rate)
        self.roth_401k_contribution_rate = float(roth_401k_contribution_rate)
        self.retirement_age = int(retirement_age) if retirement_age is not None else None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], label: str) -> "PersonInputs":
        if "Age" not in raw:
            raise ValueError(f"{label} profile requires 'Age'")
        return cls(
            age=raw["Age"],
            ss_start_age=raw.get("SS Start Age", 67),
            ss_monthly=raw.get("SS Monthly", 0),
            pension_start_age=raw.get("Pension Start Age", 65),
            pension_monthly=raw.get("Pension Monthly", 0),
            wages=raw.get("Wages", 0),
            trad_401k_contribution_rate=raw.get("Trad 401k Contribution Rate", 0),
            roth_401k_contribution_rate=raw.get("Roth 401k Contribution Rate", 0),
            retirement_age=raw.get("Retirement Age"),
        )


class Inputs:
    """
    Validated bundle handed to the engine for a whole run. Amounts are in
    start-year dollars; the engine inflates them per year.
    """

    REQUIRED_KEYS = ["Start Year", "Years", "Filing Status", "Subject", "Spend"]

    def __init__(
        self,
        start_year: int,
        years: int,
        filing_status: FilingStatus,
        subject: PersonInputs,
        partner: Optional[PersonInputs],
        spend: float,
        inflation: float = 0.0,
        wage_raise: float = 0.0,
        ss_cola: float = 0.0,
        pension_cola: float = 0.0,
        returns: Optional[Dict[AccountGroup, float]] = None,
        balances: Optional[Dict[AccountType, float]] = None,
        use: Optional[Dict[str, bool]] = None,
        withholding: Optional[Dict[str, float]] = None,
        misc_taxable_income: float = 0.0,
        misc_non_taxable_income: float = 0.0,
        withdrawal_priority: Optional[List[AccountGroup]] = None,
        interest_basis: InterestBasis = InterestBasis.IGNORE_DEPOSITS,
    ):
        self.start_year = int(start_year)
        self.years = int(years)
        self.filing_status = FilingStatus(filing_status)
        self.subject = subject
        self.partner = partner
        self.spend = float(spend)
        self.inflation = inflation
        self.wage_raise = float(wage_raise)
        self.ss_cola = float(ss_cola)
        self.pension_cola = float(pension_cola)
        self.returns = returns or {}
        self.balances = balances or {}
        self.use = {"savings": True, "roth": True, "tax_deferred": True, "rmd": True}
        self.use.update(use or {})
        self.withholding = {
            "wages": 0.0,
            "pension": 0.0,
            "social_security": 0.0,
            "tax_deferred": 0.0,
        }
        self.withholding.update(withholding or {})
        self.misc_taxable_income = float(misc_taxable_income)
        self.misc_non_taxable_income = float(misc_non_taxable_income)
        self.withdrawal_priority = withdrawal_priority
        self.interest_basis = coerce_member(InterestBasis, interest_basis)

        if self.years <= 0:
            raise ValueError("Years must be a positive number of simulated years")
        if self.subject.retirement_age is None:
            raise ValueError("Subject profile requires 'Retirement Age'")

    @classmethod
    def from_dict(cls, profile: Dict[str, Any]) -> "Inputs":
        missing = [k for k in cls.REQUIRED_KEYS if k not in profile]
        if missing:
            raise ValueError(f"Profile is missing required keys: {', '.join(missing)}")

        partner_raw = profile.get("Partner")
        try:
            returns = {
                AccountGroup(k): float(v) for k, v in profile.get("Returns", {}).items()
            }
            balances = {
                AccountType(k): float(v) for k, v in profile.get("Balances", {}).items()
            }
            priority = (
                [AccountGroup(g) for g in profile["Withdrawal Priority"]]
                if "Withdrawal Priority" in profile
                else None
            )
        except ValueError as e:
            raise ValueError(f"Invalid profile entry: {e}") from e

        return cls(
            start_year=profile["Start Year"],
            years=profile["Years"],
            filing_status=profile["Filing Status"],
            subject=PersonInputs.from_dict(profile["Subject"], "Subject"),
            partner=(
                PersonInputs.from_dict(partner_raw, "Partner") if partner_raw else None
            ),
            spend=profile["Spend"],
            inflation=profile.get("Inflation", 0.0),
            wage_raise=profile.get("Wage Raise", 0.0),
            ss_cola=profile.get("SS COLA", 0.0),
            pension_cola=profile.get("Pension COLA", 0.0),
            returns=returns,
            balances=balances,
            use=profile.get("Use"),
            withholding=profile.get("Withholding"),
            misc_taxable_income=profile.get("Misc Taxable Income", 0),
            misc_non_taxable_income=profile.get("Misc Non-Taxable Income", 0),
            withdrawal_priority=priority,
            interest_basis=profile.get("Interest Basis", InterestBasis.IGNORE_DEPOSITS),
        )


class Demographics:
    """
    Age-based eligibility for one simulated year.
    """

    def __init__(
        self,
        age: int,
        retirement_age: int,
        ss_start_age: int,
        pension_start_age: int,
        year_index: int,
        filing_status: FilingStatus,
        partner_age: Optional[int] = None,
        partner_ss_start_age: Optional[int] = None,
        partner_pension_start_age: Optional[int] = None,
    ):
        self.age = age
        self.retirement_age = retirement_age
        self.ss_start_age = ss_start_age
        self.pension_start_age = pension_start_age
        self.year_index = year_index
        self.filing_status = FilingStatus(filing_status)
        self.partner_age = partner_age
        self.partner_ss_start_age = partner_ss_start_age
        self.partner_pension_start_age = partner_pension_start_age

    @classmethod
    def for_year(cls, inputs: Inputs, year_index: int) -> "Demographics":
        partner = inputs.partner
        return cls(
            age=inputs.subject.age + year_index,
            retirement_age=inputs.subject.retirement_age,
            ss_start_age=inputs.subject.ss_start_age,
            pension_start_age=inputs.subject.pension_start_age,
            year_index=year_index,
            filing_status=inputs.filing_status,
            partner_age=partner.age + year_index if partner else None,
            partner_ss_start_age=partner.ss_start_age if partner else None,
            partner_pension_start_age=partner.pension_start_age if partner else None,
        )

    @property
    def has_partner(self) -> bool:
        return self.partner_age is not None

    @property
    def is_retired(self) -> bool:
        return self.age >= self.retirement_age

    @property
    def is_working(self) -> bool:
        return not self.is_retired

    @property
    def eligible_for_ss(self) -> bool:
        return self.age >= self.ss_start_age

    @property
    def eligible_for_pension(self) -> bool:
        return self.age >= self.pension_start_age

    @property
    def partner_eligible_for_ss(self) -> bool:
        return self.has_partner and self.partner_age >= self.partner_ss_start_age

    @property
    def partner_eligible_for_pension(self) -> bool:
        return (
            self.has_partner and self.partner_age >= self.partner_pension_start_age
        )


class FiscalData:
    """
    Per-year money settings: tax year, inflation, returns, the inflated spend
    target, account switches and flat withholding rates.
    """

    def __init__(
        self,
        tax_year: int,
        inflation_rate: float,
        spend: float,
        returns: Dict[AccountGroup, float],
        use_savings: bool = True,
        use_roth: bool = True,
        use_trad_401k: bool = True,
        use_rmd: bool = True,
        withholding: Optional[Dict[str, float]] = None,
        interest_basis: InterestBasis = InterestBasis.IGNORE_DEPOSITS,
    ):
        self.tax_year = tax_year
        self.inflation_rate = inflation_rate
        self.spend = spend
        self.returns = returns
        self.use_savings = use_savings
        self.use_roth = use_roth
        self.use_trad_401k = use_trad_401k
        self.use_rmd = use_rmd
        self.withholding = withholding or {}
        self.interest_basis = coerce_member(InterestBasis, interest_basis)

    @classmethod
    def for_year(
        cls,
        inputs: Inputs,
        year_index: int,
        logger: Optional[logging.Logger] = None,
    ) -> "FiscalData":
        logger = resolve_logger(logger)
        return cls(
            tax_year=inputs.start_year + year_index,
            inflation_rate=inputs.inflation,
            spend=adjusted_for_inflation(
                inputs.spend, inputs.inflation, year_index, logger
            ),
            returns=dict(inputs.returns),
            use_savings=bool(inputs.use.get("savings", True)),
            use_roth=bool(inputs.use.get("roth", True)),
            use_trad_401k=bool(inputs.use.get("tax_deferred", True)),
            use_rmd=bool(inputs.use.get("rmd", True)),
            withholding=dict(inputs.withholding),
            interest_basis=inputs.interest_basis,
        )

    def rate_of_return(self, group: AccountGroup) -> float:
        return self.returns.get(AccountGroup(group), 0.0)

    def withholding_rate(self, stream: str) -> float:
        return self.withholding.get(stream, 0.0)

    @property
    def enabled_groups(self) -> Dict[AccountGroup, bool]:
        return {
            AccountGroup.SAVINGS: self.use_savings,
            AccountGroup.ROTH: self.use_roth,
            AccountGroup.TAX_DEFERRED: self.use_trad_401k,
        }
