import logging

from typing import Dict, List, Optional

# Internal Imports
from domain import AccountGroup, coerce_member
from logging_setup import resolve_logger
from money import as_currency

DEFAULT_PRIORITY: List[AccountGroup] = [
    AccountGroup.SAVINGS,
    AccountGroup.ROTH,
    AccountGroup.TAX_DEFERRED,
]


class AccountPortioner:
    """
    Greedy waterfall over account groups. Each enabled group in priority
    order is asked for as much of the remaining shortfall as its available
    funds allow before the next group is considered. Disabled groups are
    asked for nothing. No transactions are posted here.
    """

    def __init__(
        self,
        available_funds: Dict[AccountGroup, float],
        enabled: Dict[AccountGroup, bool],
        priority: Optional[List[AccountGroup]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.available_funds = {
            coerce_member(AccountGroup, k): max(float(v), 0.0)
            for k, v in available_funds.items()
        }
        self.enabled = {coerce_member(AccountGroup, k): bool(v) for k, v in enabled.items()}
        self.priority = [
            coerce_member(AccountGroup, g) for g in (priority or DEFAULT_PRIORITY)
        ]
        if len(set(self.priority)) != len(self.priority):
            raise ValueError(f"Withdrawal priority lists a group twice: {self.priority}")
        self.logger = resolve_logger(logger)

    def calculate_portions(self, shortfall: float) -> Dict[AccountGroup, float]:
        portions = {group: 0.0 for group in self.priority}
        remaining = max(float(shortfall), 0.0)

        for group in self.priority:
            if remaining <= 0:
                break
            if not self.enabled.get(group, False):
                self.logger.debug(f"[Portioner] {group.value} disabled, skipping")
                continue

            ask = as_currency(min(remaining, self.available_funds.get(group, 0.0)))
            portions[group] = ask
            remaining = as_currency(remaining - ask)

        if remaining > 0:
            self.logger.info(
                f"[Portioner] ${remaining:,.2f} of ${shortfall:,.2f} not covered by available accounts"
            )
        return portions

    def uncovered(self, shortfall: float) -> float:
        return as_currency(
            max(float(shortfall), 0.0) - sum(self.calculate_portions(shortfall).values())
        )
