import logging

from typing import Any, Dict, Optional, Tuple

# Internal Imports
from demographics import Demographics, FiscalData, Inputs, PersonInputs
from domain import AccountType
from ledger import AccountingYear
from logging_setup import resolve_logger
from money import adjusted_for_inflation, as_currency, compounded_rate
from taxes import calculate_rmd


def elective_deferral_limit(age: int, limits: Dict[str, float]) -> float:
    limit = float(limits.get("limit", 23000))
    if age >= int(limits.get("catch_up_age", 50)):
        limit += float(limits.get("catch_up", 7500))
    return limit


def scaled_contributions(
    wages: float,
    trad_rate: float,
    roth_rate: float,
    age: int,
    limits: Dict[str, float],
) -> Tuple[float, float]:
    """
    Desired trad/roth contributions as a share of wages, scaled down together
    so their sum never exceeds the elective deferral limit.
    """
    desired_trad = wages * trad_rate
    desired_roth = wages * roth_rate
    desired = desired_trad + desired_roth
    if desired <= 0:
        return 0.0, 0.0
    scale = min(1.0, elective_deferral_limit(age, limits) / desired)
    return desired_trad * scale, desired_roth * scale


class FixedIncomeStreams:
    """
    Non-discretionary income for one year: wages, pensions, gross Social
    Security, RMDs and misc adjustments, with flat withholding per stream.
    """

    def __init__(
        self,
        demographics: Demographics,
        fiscal_data: FiscalData,
        subject_wages: float = 0.0,
        partner_wages: float = 0.0,
        trad_401k_contributions: Optional[Dict[AccountType, float]] = None,
        roth_contributions: Optional[Dict[AccountType, float]] = None,
        subject_pension: float = 0.0,
        partner_pension: float = 0.0,
        subject_ss: float = 0.0,
        partner_ss: float = 0.0,
        subject_rmd: float = 0.0,
        partner_rmd: float = 0.0,
        misc_taxable_income: float = 0.0,
        misc_non_taxable_income: float = 0.0,
    ):
        self.demographics = demographics
        self.fiscal_data = fiscal_data
        self.subject_wages = subject_wages
        self.partner_wages = partner_wages
        self.trad_401k_contributions = trad_401k_contributions or {}
        self.roth_contributions = roth_contributions or {}
        self.subject_pension = subject_pension
        self.partner_pension = partner_pension
        self.subject_ss = subject_ss
        self.partner_ss = partner_ss
        self.subject_rmd = subject_rmd
        self.partner_rmd = partner_rmd
        self.misc_taxable_income = misc_taxable_income
        self.misc_non_taxable_income = misc_non_taxable_income

    @classmethod
    def create(
        cls,
        inputs: Inputs,
        demographics: Demographics,
        fiscal_data: FiscalData,
        accounting_year: AccountingYear,
        deferral_limits: Dict[str, Any],
        logger: Optional[logging.Logger] = None,
    ) -> "FixedIncomeStreams":
        logger = resolve_logger(logger)
        n = demographics.year_index

        def inflated(amount: float) -> float:
            return adjusted_for_inflation(amount, fiscal_data.inflation_rate, n, logger)

        def benefit(monthly: float, cola: float, age: int, start_age: int) -> float:
            return monthly * 12 * compounded_rate(cola, age - start_age)

        def wages_for(person: Optional[PersonInputs]) -> float:
            if person is None or not demographics.is_working:
                return 0.0
            return person.wages * compounded_rate(inputs.wage_raise, n)

        subject_wages = wages_for(inputs.subject)
        partner_wages = wages_for(inputs.partner)

        trad, roth = {}, {}
        s_trad, s_roth = scaled_contributions(
            subject_wages,
            inputs.subject.trad_401k_contribution_rate,
            inputs.subject.roth_401k_contribution_rate,
            demographics.age,
            deferral_limits,
        )
        trad[AccountType.SUBJECT_401K] = s_trad
        roth[AccountType.SUBJECT_ROTH_IRA] = s_roth
        if inputs.partner is not None:
            p_trad, p_roth = scaled_contributions(
                partner_wages,
                inputs.partner.trad_401k_contribution_rate,
                inputs.partner.roth_401k_contribution_rate,
                demographics.partner_age,
                deferral_limits,
            )
            trad[AccountType.PARTNER_401K] = p_trad
            roth[AccountType.PARTNER_ROTH_IRA] = p_roth

        subject_pension = (
            benefit(
                inputs.subject.pension_monthly,
                inputs.pension_cola,
                demographics.age,
                demographics.pension_start_age,
            )
            if demographics.eligible_for_pension
            else 0.0
        )
        subject_ss = (
            benefit(
                inputs.subject.ss_monthly,
                inputs.ss_cola,
                demographics.age,
                demographics.ss_start_age,
            )
            if demographics.eligible_for_ss
            else 0.0
        )
        partner_pension = (
            benefit(
                inputs.partner.pension_monthly,
                inputs.pension_cola,
                demographics.partner_age,
                demographics.partner_pension_start_age,
            )
            if demographics.partner_eligible_for_pension
            else 0.0
        )
        partner_ss = (
            benefit(
                inputs.partner.ss_monthly,
                inputs.ss_cola,
                demographics.partner_age,
                demographics.partner_ss_start_age,
            )
            if demographics.partner_eligible_for_ss
            else 0.0
        )

        # RMDs are driven by each owner's prior-year ending balance
        subject_rmd = calculate_rmd(
            fiscal_data.use_rmd,
            demographics.age,
            accounting_year.get_starting_balance(AccountType.SUBJECT_401K),
        )
        partner_rmd = (
            calculate_rmd(
                fiscal_data.use_rmd,
                demographics.partner_age,
                accounting_year.get_starting_balance(AccountType.PARTNER_401K),
            )
            if demographics.has_partner
            else 0.0
        )
        if subject_rmd or partner_rmd:
            logger.info(
                f"[RMD] {fiscal_data.tax_year} subject=${subject_rmd:,.2f} partner=${partner_rmd:,.2f}"
            )

        return cls(
            demographics=demographics,
            fiscal_data=fiscal_data,
            subject_wages=as_currency(subject_wages),
            partner_wages=as_currency(partner_wages),
            trad_401k_contributions={k: as_currency(v) for k, v in trad.items()},
            roth_contributions={k: as_currency(v) for k, v in roth.items()},
            subject_pension=as_currency(subject_pension),
            partner_pension=as_currency(partner_pension),
            subject_ss=as_currency(subject_ss),
            partner_ss=as_currency(partner_ss),
            subject_rmd=as_currency(subject_rmd),
            partner_rmd=as_currency(partner_rmd),
            misc_taxable_income=as_currency(inflated(inputs.misc_taxable_income)),
            misc_non_taxable_income=as_currency(
                inflated(inputs.misc_non_taxable_income)
            ),
        )

    # ---------- gross amounts ----------

    @property
    def wages(self) -> float:
        return self.subject_wages + self.partner_wages

    @property
    def trad_401k_contribution(self) -> float:
        return sum(self.trad_401k_contributions.values())

    @property
    def roth_contribution(self) -> float:
        return sum(self.roth_contributions.values())

    @property
    def taxable_wages(self) -> float:
        return self.wages - self.trad_401k_contribution

    @property
    def pension(self) -> float:
        return self.subject_pension + self.partner_pension

    @property
    def social_security(self) -> float:
        return self.subject_ss + self.partner_ss

    @property
    def rmd(self) -> float:
        return self.subject_rmd + self.partner_rmd

    @property
    def rmd_by_account(self) -> Dict[AccountType, float]:
        return {
            AccountType.SUBJECT_401K: self.subject_rmd,
            AccountType.PARTNER_401K: self.partner_rmd,
        }

    @property
    def fixed_taxable_income(self) -> float:
        """Non-SS taxable income before any discretionary withdrawal."""
        return self.taxable_wages + self.pension + self.rmd + self.misc_taxable_income

    @property
    def non_taxable_cash(self) -> float:
        """Tax-free cash in, less after-tax Roth deferrals out."""
        return self.misc_non_taxable_income - self.roth_contribution

    # ---------- withholding ----------

    def _withheld(self, amount: float, stream: str) -> float:
        return as_currency(amount * self.fiscal_data.withholding_rate(stream))

    @property
    def wages_withholding(self) -> float:
        return self._withheld(self.taxable_wages, "wages")

    @property
    def pension_withholding(self) -> float:
        return self._withheld(self.pension, "pension")

    @property
    def ss_withholding(self) -> float:
        return self._withheld(self.social_security, "social_security")

    def rmd_withholding(self, amount: Optional[float] = None) -> float:
        return self._withheld(self.rmd if amount is None else amount, "tax_deferred")

    @property
    def total_withholding(self) -> float:
        return as_currency(
            self.wages_withholding
            + self.pension_withholding
            + self.ss_withholding
            + self.rmd_withholding()
        )

    # ---------- take-home ----------

    @property
    def wages_take_home(self) -> float:
        return as_currency(
            self.taxable_wages - self.roth_contribution - self.wages_withholding
        )

    @property
    def pension_take_home(self) -> float:
        return as_currency(self.pension - self.pension_withholding)

    @property
    def ss_take_home(self) -> float:
        return as_currency(self.social_security - self.ss_withholding)

    @property
    def total_actual_fixed_income(self) -> float:
        """Cash that lands for spending before any account withdrawal."""
        return as_currency(
            self.wages_take_home
            + self.pension_take_home
            + self.ss_take_home
            + self.rmd
            - self.rmd_withholding()
            + self.misc_taxable_income
            + self.misc_non_taxable_income
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "wages": as_currency(self.wages),
            "trad_401k_contribution": as_currency(self.trad_401k_contribution),
            "roth_contribution": as_currency(self.roth_contribution),
            "pension": as_currency(self.pension),
            "social_security": as_currency(self.social_security),
            "rmd": as_currency(self.rmd),
            "misc_taxable_income": self.misc_taxable_income,
            "misc_non_taxable_income": self.misc_non_taxable_income,
            "fixed_withholding": self.total_withholding,
            "actual_fixed_income": self.total_actual_fixed_income,
        }
