import copy

import pytest

from domain import AccountType
from ledger import Ledger
from load_data import load_tax_tables
from taxes import TaxCalculator

RETIREE_PROFILE = {
    "Start Year": 2025,
    "Years": 1,
    "Filing Status": "mfj",
    "Subject": {
        "Age": 65,
        "Retirement Age": 65,
        "SS Start Age": 67,
        "SS Monthly": 0,
        "Pension Start Age": 65,
        "Pension Monthly": 0,
    },
    "Spend": 30000,
    "Inflation": 0.0,
    "Returns": {"savings": 0.0, "roth": 0.0, "tax_deferred": 0.0},
    "Balances": {
        "Savings": 10000,
        "Subject Roth IRA": 50000,
        "Subject 401k": 500000,
    },
    "Withholding": {
        "wages": 0.0,
        "pension": 0.0,
        "social_security": 0.0,
        "tax_deferred": 0.0,
    },
}


@pytest.fixture
def tax_tables() -> dict:
    return copy.deepcopy(load_tax_tables())


@pytest.fixture
def tax_calc(tax_tables) -> TaxCalculator:
    return TaxCalculator(tax_tables)


@pytest.fixture
def deferral_limits(tax_tables) -> dict:
    return tax_tables["Elective Deferral"]


@pytest.fixture
def retiree_profile() -> dict:
    return copy.deepcopy(RETIREE_PROFILE)


@pytest.fixture
def ledger() -> Ledger:
    return Ledger.open(
        {
            AccountType.SAVINGS: 10000,
            AccountType.SUBJECT_401K: 75000,
            AccountType.PARTNER_401K: 25000,
        },
        2025,
    )
