import logging
import pandas as pd

from tqdm import tqdm
from typing import Any, Dict, List, Optional, Tuple

# Internal Imports
from demographics import Demographics, FiscalData, Inputs
from income_streams import FixedIncomeStreams
from ledger import Ledger
from logging_setup import resolve_logger
from taxes import TaxCalculator
from withdrawal_solver import WithdrawalSolver, YearResult


class ForecastEngine:
    """
    Drives the withdrawal solver across consecutive years on one ledger, so
    each year starts from the previous year's ending balances.
    """

    def __init__(
        self,
        inputs: Inputs,
        tax_calc: TaxCalculator,
        deferral_limits: Dict[str, Any],
        logger: Optional[logging.Logger] = None,
        show_progress: bool = False,
    ):
        self.inputs = inputs
        self.tax_calc = tax_calc
        self.deferral_limits = deferral_limits
        self.logger = resolve_logger(logger)
        self.show_progress = show_progress
        self.ledger = Ledger.open(inputs.balances, inputs.start_year, self.logger)
        self.results: List[YearResult] = []

    def run_year(self, year_index: int) -> YearResult:
        demographics = Demographics.for_year(self.inputs, year_index)
        fiscal_data = FiscalData.for_year(self.inputs, year_index, self.logger)
        accounting_year = self.ledger.year(fiscal_data.tax_year)
        streams = FixedIncomeStreams.create(
            self.inputs,
            demographics,
            fiscal_data,
            accounting_year,
            self.deferral_limits,
            self.logger,
        )
        solver = WithdrawalSolver(
            accounting_year,
            streams,
            fiscal_data,
            demographics,
            self.tax_calc,
            priority=self.inputs.withdrawal_priority,
            logger=self.logger,
        )
        return solver.process_withdrawals()

    def run(self) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """
        Returns (yearly summary, full transaction ledger).
        """
        self.results = []
        years = range(self.inputs.years)
        for year_index in tqdm(
            years, desc="Simulating years", disable=not self.show_progress
        ):
            self.results.append(self.run_year(year_index))

        summary_df = pd.DataFrame([r.to_dict() for r in self.results])
        return summary_df, self.ledger.to_dataframe()

    def first_shortfall_year(self) -> Optional[int]:
        for result in self.results:
            if result.shortfall_flag:
                return result.tax_year
        return None
