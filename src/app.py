import logging
import time

from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

# Internal Imports
from demographics import Inputs
from forecast_engine import ForecastEngine
from load_data import BASE, load_profile, load_tax_tables
from logging_setup import setup_logging
from taxes import TaxCalculator

# Run settings
SHOW_PROGRESS = True
SAVE_FORECAST = False
SAVE_LEDGER = False
EXPORT_DIR = BASE / "export"


@contextmanager
def timed(label, years):
    start = time.time()
    yield
    logging.info(
        f"{label} over {years} years completed in {(time.time() - start):.1f} seconds."
    )


def stage_load():
    profile = load_profile()
    tables = load_tax_tables()
    inputs = Inputs.from_dict(profile)
    tax_calc = TaxCalculator(tables, logging.getLogger("drawdown.taxes"))
    return inputs, tax_calc, tables.get("Elective Deferral", {})


def export(df, name: str, ts: str) -> Path:
    EXPORT_DIR.mkdir(exist_ok=True)
    path = EXPORT_DIR / f"{ts}_{name}.csv"
    df.to_csv(path, index=False)
    logging.info(f"Saved {name} to {path}")
    return path


def main():
    setup_logging()
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")

    inputs, tax_calc, deferral_limits = stage_load()
    engine = ForecastEngine(
        inputs,
        tax_calc,
        deferral_limits,
        logger=logging.getLogger("drawdown"),
        show_progress=SHOW_PROGRESS,
    )

    with timed("Forecast", inputs.years):
        summary_df, ledger_df = engine.run()

    final = summary_df.iloc[-1]
    shortfall_year = engine.first_shortfall_year()
    logging.info(
        f"Final year {final['Year']}: net worth ${final['Net Worth']:,.0f}, "
        f"total federal tax ${summary_df['Federal Tax'].sum():,.0f}"
    )
    if shortfall_year is not None:
        logging.warning(f"Spending first went unmet in {shortfall_year}")

    print(
        summary_df[
            ["Year", "Age", "Spend", "Federal Tax", "Shortfall", "Net Worth"]
        ].to_string(index=False)
    )
    if shortfall_year is not None:
        print(f"\nFirst shortfall year: {shortfall_year}")

    if SAVE_FORECAST:
        export(summary_df, "forecast", ts)
    if SAVE_LEDGER:
        export(ledger_df, "ledger", ts)


if __name__ == "__main__":
    main()
