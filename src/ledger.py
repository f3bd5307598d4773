import logging
import math
import pandas as pd

from datetime import date
from dateutil.relativedelta import relativedelta
from typing import Dict, Iterable, List, Optional

# Internal Imports
from domain import (
    ACCOUNT_GROUPS,
    Account,
    AccountGroup,
    AccountNotFound,
    AccountType,
    InterestBasis,
    PeriodicFrequency,
    Transaction,
    TransactionCategory,
    coerce_member,
    validate_amount,
)
from logging_setup import resolve_logger
from money import as_currency


def periodic_dates(year: int, frequency: PeriodicFrequency) -> List[pd.Timestamp]:
    """
    Posting dates inside `year` for a periodic cadence:
      - leading cadences post on the first day of each period
      - trailing cadences post on the last day of each period
      - monthly posts on the 1st, daily on every calendar day
    """
    frequency = coerce_member(PeriodicFrequency, frequency)
    jan_1 = date(year, 1, 1)

    if frequency == PeriodicFrequency.MONTHLY:
        return list(pd.date_range(jan_1, periods=12, freq="MS"))
    if frequency == PeriodicFrequency.DAILY:
        return list(pd.date_range(jan_1, date(year, 12, 31), freq="D"))

    months_per_period = {
        PeriodicFrequency.ANNUAL_LEADING: 12,
        PeriodicFrequency.ANNUAL_TRAILING: 12,
        PeriodicFrequency.SEMI_ANNUAL_LEADING: 6,
        PeriodicFrequency.SEMI_ANNUAL_TRAILING: 6,
        PeriodicFrequency.QUARTERLY_LEADING: 3,
        PeriodicFrequency.QUARTERLY_TRAILING: 3,
    }[frequency]
    periods = 12 // months_per_period
    trailing = frequency.value.endswith("trailing")

    dates = []
    for i in range(periods):
        if trailing:
            d = jan_1 + relativedelta(months=months_per_period * (i + 1), days=-1)
        else:
            d = jan_1 + relativedelta(months=months_per_period * i)
        dates.append(pd.Timestamp(d))
    return dates


def split_installments(amount: float, count: int) -> List[float]:
    """
    Whole-dollar installments with the remainder carried by the last one.
    Amounts too small to spread come back as a single installment.
    """
    if amount < count:
        return [as_currency(amount)]
    installment = math.trunc(amount / count)
    last = as_currency(amount - installment * (count - 1))
    return [float(installment)] * (count - 1) + [last]


class Ledger:
    """
    Owns every Account for one simulation run, keyed by AccountType.
    """

    def __init__(
        self,
        accounts: Optional[Dict[AccountType, Account]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.accounts: Dict[AccountType, Account] = (
            accounts
            if accounts is not None
            else {account_type: Account(account_type) for account_type in AccountType}
        )
        self.logger = resolve_logger(logger)

    @classmethod
    def open(
        cls,
        opening_balances: Dict[AccountType, float],
        first_year: int,
        logger: Optional[logging.Logger] = None,
    ) -> "Ledger":
        """
        Seed each account with an opening-balance deposit dated Jan 1 of the
        year before `first_year`, so it shows up as that year's starting balance.
        """
        ledger = cls(logger=logger)
        opening_date = pd.Timestamp(year=first_year - 1, month=1, day=1)
        for account_type, balance in opening_balances.items():
            account = ledger.account(account_type)
            account.deposit(
                balance,
                TransactionCategory.OPENING_BALANCE,
                opening_date,
                "Opening balance",
            )
        return ledger

    def account(self, account_type: AccountType) -> Account:
        try:
            key = AccountType(account_type)
        except ValueError:
            raise AccountNotFound(f"Account not found: {account_type!r}") from None
        if key not in self.accounts:
            raise AccountNotFound(f"Account not found: {key.value}")
        return self.accounts[key]

    def year(self, tax_year: int) -> "AccountingYear":
        return AccountingYear(self, tax_year, self.logger)

    def to_dataframe(self) -> pd.DataFrame:
        frames = [a.to_dataframe() for a in self.accounts.values() if a.transactions]
        if not frames:
            return pd.DataFrame(
                columns=[
                    "account",
                    "date",
                    "type",
                    "category",
                    "amount",
                    "signed_amount",
                    "memo",
                ]
            )
        return pd.concat(frames, ignore_index=True).sort_values(
            ["date", "account"], kind="stable", ignore_index=True
        )


class AccountingYear:
    """
    Read/write view of the Ledger scoped to one tax year.
    Holds no balances of its own.
    """

    def __init__(
        self,
        ledger: Ledger,
        tax_year: int,
        logger: Optional[logging.Logger] = None,
    ):
        self.ledger = ledger
        self.tax_year = tax_year
        self.logger = resolve_logger(logger)

    # ---------- writes ----------

    def _default_date(self, posting_date) -> pd.Timestamp:
        if posting_date is None:
            return pd.Timestamp(year=self.tax_year, month=1, day=1)
        posting_date = pd.Timestamp(posting_date)
        if posting_date.year != self.tax_year:
            raise ValueError(
                f"Posting date {posting_date.date()} is outside tax year {self.tax_year}"
            )
        return posting_date

    def deposit(
        self,
        account_type: AccountType,
        category: TransactionCategory,
        amount: float,
        memo: str = "",
        posting_date=None,
    ) -> float:
        account = self.ledger.account(account_type)
        posted = account.deposit(
            amount, category, self._default_date(posting_date), memo
        )
        if posted:
            self.logger.debug(
                f"[Ledger] {self.tax_year} deposit ${posted:,.2f} to {account.name} ({category})"
            )
        return posted

    def withdrawal(
        self,
        account_type: AccountType,
        category: TransactionCategory,
        amount: float,
        memo: str = "",
        posting_date=None,
    ) -> float:
        account = self.ledger.account(account_type)
        posted = account.withdrawal(
            amount, category, self._default_date(posting_date), memo
        )
        if posted:
            self.logger.debug(
                f"[Ledger] {self.tax_year} withdrawal ${posted:,.2f} from {account.name} ({category})"
            )
        return posted

    def _process_as_periodic(
        self,
        post,
        account_type: AccountType,
        category: TransactionCategory,
        amount: float,
        frequency: PeriodicFrequency,
        memo: str,
    ) -> float:
        self.ledger.account(account_type)
        amount = validate_amount(amount)
        if amount == 0:
            return 0.0

        dates = periodic_dates(self.tax_year, frequency)
        installments = split_installments(amount, len(dates))
        total = 0.0
        for posting_date, installment in zip(dates, installments):
            total += post(account_type, category, installment, memo, posting_date)
        return as_currency(total)

    def process_as_periodic_deposits(
        self,
        account_type: AccountType,
        category: TransactionCategory,
        amount: float,
        frequency: PeriodicFrequency = PeriodicFrequency.MONTHLY,
        memo: str = "",
    ) -> float:
        return self._process_as_periodic(
            self.deposit, account_type, category, amount, frequency, memo
        )

    def process_as_periodic_withdrawals(
        self,
        account_type: AccountType,
        category: TransactionCategory,
        amount: float,
        frequency: PeriodicFrequency = PeriodicFrequency.MONTHLY,
        memo: str = "",
    ) -> float:
        return self._process_as_periodic(
            self.withdrawal, account_type, category, amount, frequency, memo
        )

    def withdraw_from_group(
        self,
        group: AccountGroup,
        category: TransactionCategory,
        amount: float,
        memo: str = "",
        posting_date=None,
    ) -> Dict[AccountType, float]:
        """
        Withdraw up to `amount` across the accounts of `group`, split by each
        account's share of the group's available funds. The last funded account
        takes the residual so rounding never loses a cent.
        Returns the amount actually withdrawn per account.
        """
        amount = validate_amount(amount)
        members = ACCOUNT_GROUPS[coerce_member(AccountGroup, group)]
        available = {
            t: self.ledger.account(t).available_funds(self.tax_year) for t in members
        }
        total_available = sum(available.values())
        to_withdraw = min(amount, total_available)
        out = {t: 0.0 for t in members}
        if to_withdraw <= 0:
            return out

        funded = [t for t in members if available[t] > 0]
        remainder = as_currency(to_withdraw)
        for t in funded[:-1]:
            share = min(
                as_currency(to_withdraw * available[t] / total_available), remainder
            )
            out[t] = self.withdrawal(t, category, share, memo, posting_date)
            remainder = as_currency(remainder - out[t])

        last = funded[-1]
        out[last] = self.withdrawal(
            last, category, min(remainder, available[last]), memo, posting_date
        )
        return out

    # ---------- queries ----------

    def get_deposits(
        self, account_type: AccountType, category: Optional[TransactionCategory] = None
    ) -> float:
        return self.ledger.account(account_type).deposits(self.tax_year, category)

    def get_withdrawals(
        self, account_type: AccountType, category: Optional[TransactionCategory] = None
    ) -> float:
        return self.ledger.account(account_type).withdrawals(self.tax_year, category)

    def get_starting_balance(
        self, account_type: AccountType, category: Optional[TransactionCategory] = None
    ) -> float:
        return self.ledger.account(account_type).starting_balance(
            self.tax_year, category
        )

    def get_ending_balance(
        self, account_type: AccountType, category: Optional[TransactionCategory] = None
    ) -> float:
        return self.ledger.account(account_type).ending_balance(self.tax_year, category)

    def get_available_funds(self, account_types: Iterable[AccountType]) -> float:
        total = sum(
            max(self.get_ending_balance(account_type), 0.0)
            for account_type in account_types
        )
        return as_currency(max(total, 0.0))

    def get_group_available_funds(self, group: AccountGroup) -> float:
        members = ACCOUNT_GROUPS[coerce_member(AccountGroup, group)]
        return self.get_available_funds(members)

    def get_group_ending_balance(self, group: AccountGroup) -> float:
        return as_currency(
            sum(
                self.get_ending_balance(t)
                for t in ACCOUNT_GROUPS[coerce_member(AccountGroup, group)]
            )
        )

    def get_account_transactions(self, account_type: AccountType) -> List[Transaction]:
        return self.ledger.account(account_type).transactions_for_year(self.tax_year)

    def to_dataframe(self) -> pd.DataFrame:
        df = self.ledger.to_dataframe()
        return df[df["date"].dt.year == self.tax_year].reset_index(drop=True)

    # ---------- interest ----------

    def calculate_interest_for_year(
        self,
        account_type: AccountType,
        rate: float,
        basis: InterestBasis = InterestBasis.IGNORE_DEPOSITS,
    ) -> float:
        """
        Interest the account would earn this year on a non-rolling basis.
          - starting_balance:   opening balance
          - ignore_deposits:    opening balance less this year's withdrawals
          - ignore_withdrawals: opening balance plus this year's deposits
          - average_balance:    mean of opening and closing balance
          - ending_balance:     closing balance
        """
        basis = coerce_member(InterestBasis, basis)
        start = self.get_starting_balance(account_type)

        if basis == InterestBasis.STARTING_BALANCE:
            principal = start
        elif basis == InterestBasis.IGNORE_DEPOSITS:
            principal = start - self.get_withdrawals(account_type)
        elif basis == InterestBasis.IGNORE_WITHDRAWALS:
            principal = start + self.get_deposits(account_type)
        elif basis == InterestBasis.AVERAGE_BALANCE:
            principal = (start + self.get_ending_balance(account_type)) / 2
        elif basis == InterestBasis.ENDING_BALANCE:
            principal = self.get_ending_balance(account_type)
        else:
            raise ValueError(
                "Rolling interest is posted monthly; use record_interest_earned_for_year"
            )

        if principal <= 0 or rate <= 0:
            return 0.0
        return as_currency(principal * rate)

    def record_interest_earned_for_year(
        self,
        account_type: AccountType,
        rate: float,
        basis: InterestBasis = InterestBasis.IGNORE_DEPOSITS,
    ) -> float:
        basis = coerce_member(InterestBasis, basis)
        if basis == InterestBasis.ROLLING_BALANCE:
            total = self._record_rolling_interest(account_type, rate)
        else:
            interest = self.calculate_interest_for_year(account_type, rate, basis)
            total = self.deposit(
                account_type,
                TransactionCategory.INTEREST,
                interest,
                f"Interest ({basis.value})",
                pd.Timestamp(year=self.tax_year, month=12, day=31),
            )

        if total:
            self.logger.info(
                f"[Interest] {self.tax_year} {AccountType(account_type).value} earned ${total:,.2f} at {rate:.2%} ({basis.value})"
            )
        return total

    def _record_rolling_interest(self, account_type: AccountType, rate: float) -> float:
        if rate <= 0:
            return 0.0

        year_df = pd.DataFrame(
            [t.to_dict() for t in self.get_account_transactions(account_type)],
            columns=["date", "signed_amount"],
        )
        monthly_flows = (
            year_df.groupby(year_df["date"].dt.month)["signed_amount"].sum()
            if not year_df.empty
            else pd.Series(dtype=float)
        ).reindex(range(1, 13), fill_value=0.0)

        monthly_rate = rate / 12
        balance = self.get_starting_balance(account_type)
        total = 0.0
        for month, flow in monthly_flows.items():
            balance += flow
            if balance <= 0:
                continue
            interest = as_currency(balance * monthly_rate)
            month_start = pd.Timestamp(year=self.tax_year, month=int(month), day=1)
            month_end = month_start + pd.offsets.MonthEnd(0)
            posted = self.deposit(
                account_type,
                TransactionCategory.INTEREST,
                interest,
                "Interest (rolling_balance)",
                month_end,
            )
            balance += posted
            total += posted
        return as_currency(total)
