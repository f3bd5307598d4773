import math
import pandas as pd

from enum import Enum
from typing import Any, Dict, List, Optional, Type

# Internal Imports
from money import as_currency


class LedgerError(ValueError):
    pass


class AccountNotFound(LedgerError):
    pass


class InvalidAmount(LedgerError):
    pass


class InvalidTransaction(LedgerError):
    pass


class AccountType(str, Enum):
    SAVINGS = "Savings"
    CASH = "Cash"
    SUBJECT_401K = "Subject 401k"
    PARTNER_401K = "Partner 401k"
    SUBJECT_ROTH_IRA = "Subject Roth IRA"
    PARTNER_ROTH_IRA = "Partner Roth IRA"
    WITHHOLDINGS = "Withholdings"
    DISBURSEMENT = "Disbursement"


class AccountGroup(str, Enum):
    SAVINGS = "savings"
    ROTH = "roth"
    TAX_DEFERRED = "tax_deferred"


ACCOUNT_GROUPS: Dict[AccountGroup, List[AccountType]] = {
    AccountGroup.SAVINGS: [AccountType.SAVINGS],
    AccountGroup.ROTH: [AccountType.SUBJECT_ROTH_IRA, AccountType.PARTNER_ROTH_IRA],
    AccountGroup.TAX_DEFERRED: [AccountType.SUBJECT_401K, AccountType.PARTNER_401K],
}

# Groups whose withdrawals never count as taxable income
TAX_FREE_GROUPS = {AccountGroup.SAVINGS, AccountGroup.ROTH}


class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class TransactionCategory(str, Enum):
    OPENING_BALANCE = "opening_balance"
    INTEREST = "interest"
    CONTRIBUTION = "contribution"
    DISBURSEMENT = "disbursement"
    INCOME = "income"
    TAXES = "taxes"
    SPEND = "spend"
    SOCIAL_SECURITY = "social_security"
    PENSION = "pension"
    TRAD_401K = "trad_401k"
    ROTH = "roth"
    SAVINGS = "savings"
    RMD = "rmd"
    TAX_REFUND = "tax_refund"
    TAX_PAYMENT = "tax_payment"
    OTHER_TAXABLE = "other_taxable"
    OTHER_NON_TAXABLE = "other_non_taxable"
    OVERAGE = "overage"
    SHORTAGE = "shortage"
    TRANSFER = "transfer"


class PeriodicFrequency(str, Enum):
    ANNUAL_LEADING = "annual_leading"
    ANNUAL_TRAILING = "annual_trailing"
    SEMI_ANNUAL_LEADING = "semi_annual_leading"
    SEMI_ANNUAL_TRAILING = "semi_annual_trailing"
    QUARTERLY_LEADING = "quarterly_leading"
    QUARTERLY_TRAILING = "quarterly_trailing"
    MONTHLY = "monthly"
    DAILY = "daily"


class InterestBasis(str, Enum):
    STARTING_BALANCE = "starting_balance"
    IGNORE_DEPOSITS = "ignore_deposits"
    IGNORE_WITHDRAWALS = "ignore_withdrawals"
    AVERAGE_BALANCE = "average_balance"
    ENDING_BALANCE = "ending_balance"
    ROLLING_BALANCE = "rolling_balance"


def coerce_member(enum_cls: Type[Enum], value: Any) -> Any:
    """
    Resolve `value` to a member of `enum_cls` by member or by value,
    raising InvalidTransaction for anything outside the enumeration.
    """
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidTransaction(
            f"'{value}' is not a valid {enum_cls.__name__} (expected one of: {allowed})"
        ) from None


def validate_amount(amount: float) -> float:
    try:
        amount = float(amount)
    except (TypeError, ValueError):
        raise InvalidAmount(f"Amount {amount!r} is not a number") from None
    if not math.isfinite(amount):
        raise InvalidAmount(f"Amount {amount!r} is not finite")
    if amount < 0:
        raise InvalidAmount(f"Amount ${amount:,.2f} must not be negative")
    return amount


class Transaction:
    """
    Immutable ledger entry. The amount is stored unsigned; direction comes
    from the transaction type.
    """

    def __init__(
        self,
        amount: float,
        transaction_type: TransactionType,
        category: TransactionCategory,
        date: Any,
        memo: str = "",
    ):
        self._type = coerce_member(TransactionType, transaction_type)
        self._category = coerce_member(TransactionCategory, category)
        self._amount = as_currency(validate_amount(amount))
        self._date = pd.Timestamp(date)
        self._memo = memo or ""

    @property
    def amount(self) -> float:
        return self._amount

    @property
    def transaction_type(self) -> TransactionType:
        return self._type

    @property
    def category(self) -> TransactionCategory:
        return self._category

    @property
    def date(self) -> pd.Timestamp:
        return self._date

    @property
    def memo(self) -> str:
        return self._memo

    @property
    def year(self) -> int:
        return self._date.year

    @property
    def signed_amount(self) -> float:
        return self._amount if self._type == TransactionType.DEPOSIT else -self._amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self._date,
            "type": self._type.value,
            "category": self._category.value,
            "amount": self._amount,
            "signed_amount": self.signed_amount,
            "memo": self._memo,
        }

    def __repr__(self) -> str:
        return (
            f"Transaction({self._date.date()} {self._type.value} "
            f"{self._category.value} ${self._amount:,.2f})"
        )


class Account:
    """
    Append-only list of transactions for one account type.
    Balances are derived from the transactions, never stored.
    """

    def __init__(self, account_type: AccountType):
        self.account_type = coerce_member(AccountType, account_type)
        self.transactions: List[Transaction] = []

    @property
    def name(self) -> str:
        return self.account_type.value

    def deposit(
        self,
        amount: float,
        category: TransactionCategory,
        date: Any,
        memo: str = "",
    ) -> float:
        return self._record(amount, TransactionType.DEPOSIT, category, date, memo)

    def withdrawal(
        self,
        amount: float,
        category: TransactionCategory,
        date: Any,
        memo: str = "",
    ) -> float:
        return self._record(amount, TransactionType.WITHDRAWAL, category, date, memo)

    def _record(
        self,
        amount: float,
        transaction_type: TransactionType,
        category: TransactionCategory,
        date: Any,
        memo: str,
    ) -> float:
        amount = validate_amount(amount)
        category = coerce_member(TransactionCategory, category)
        if amount == 0:
            return 0.0

        tx = Transaction(amount, transaction_type, category, date, memo)
        self.transactions.append(tx)
        return tx.amount

    def _matching(
        self, category: Optional[TransactionCategory] = None
    ) -> List[Transaction]:
        if category is None:
            return self.transactions
        category = coerce_member(TransactionCategory, category)
        return [t for t in self.transactions if t.category == category]

    def transactions_for_year(self, year: int) -> List[Transaction]:
        return sorted(
            (t for t in self.transactions if t.year == year), key=lambda t: t.date
        )

    def starting_balance(
        self, year: int, category: Optional[TransactionCategory] = None
    ) -> float:
        return as_currency(
            sum(t.signed_amount for t in self._matching(category) if t.year < year)
        )

    def ending_balance(
        self, year: int, category: Optional[TransactionCategory] = None
    ) -> float:
        return as_currency(
            sum(t.signed_amount for t in self._matching(category) if t.year <= year)
        )

    def deposits(
        self, year: int, category: Optional[TransactionCategory] = None
    ) -> float:
        return as_currency(
            sum(
                t.amount
                for t in self._matching(category)
                if t.year == year and t.transaction_type == TransactionType.DEPOSIT
            )
        )

    def withdrawals(
        self, year: int, category: Optional[TransactionCategory] = None
    ) -> float:
        return as_currency(
            sum(
                t.amount
                for t in self._matching(category)
                if t.year == year and t.transaction_type == TransactionType.WITHDRAWAL
            )
        )

    def available_funds(self, year: int) -> float:
        return max(self.ending_balance(year), 0.0)

    def to_dataframe(self) -> pd.DataFrame:
        columns = ["date", "type", "category", "amount", "signed_amount", "memo"]
        df = pd.DataFrame([t.to_dict() for t in self.transactions], columns=columns)
        df.insert(0, "account", self.name)
        return df
