import argparse
import logging
import sys

from typing import Dict, List, Optional

# Internal Imports
from load_data import load_tax_tables
from logging_setup import setup_logging
from money import adjusted_for_inflation, as_currency
from taxes import FilingStatus, TaxCalculator, TaxTableError
from withdrawal_solver import TaxContext, solve_withdrawal


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Solve the tax-deferred withdrawal that nets a target income"
    )
    parser.add_argument("target_net", type=float, help="Target net (after-tax) income")
    parser.add_argument("ss_benefit", type=float, help="Gross Social Security benefit")
    parser.add_argument(
        "savings",
        type=float,
        nargs="?",
        default=0.0,
        help="Tax-exempt savings contribution toward the target",
    )
    parser.add_argument(
        "other_taxable_income",
        type=float,
        nargs="?",
        default=0.0,
        help="Other taxable income (pensions, interest, wages)",
    )
    parser.add_argument(
        "--year-index",
        type=int,
        default=0,
        help="Years after the tax-table base year (default: 0)",
    )
    parser.add_argument(
        "--inflation",
        type=float,
        default=0.0,
        help="Annual inflation/COLA rate applied over --year-index (default: 0)",
    )
    parser.add_argument(
        "--filing-status",
        choices=[s.value for s in FilingStatus],
        default=FilingStatus.MARRIED_FILING_JOINTLY.value,
        help="Filing status (default: mfj)",
    )
    parser.add_argument("--verbose", action="store_true", help="Log to stderr")
    return parser


def reconcile(
    target_net: float,
    ss_benefit: float,
    tax_calc: TaxCalculator,
    savings: float = 0.0,
    other_taxable_income: float = 0.0,
    year_index: int = 0,
    inflation: float = 0.0,
    filing_status: FilingStatus = FilingStatus.MARRIED_FILING_JOINTLY,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, float]:
    """
    Single-shot solve: the savings contribution is tax-exempt, so it comes
    off the target before bisecting for the tax-deferred withdrawal.
    """
    year = tax_calc.base_year + year_index
    ss_adjusted = adjusted_for_inflation(ss_benefit, inflation, year_index, logger)
    context = TaxContext(
        fixed_taxable_income=other_taxable_income,
        ss_benefit=ss_adjusted,
        brackets=tax_calc.tax_brackets(filing_status, year, inflation),
        standard_deduction=tax_calc.standard_deduction(filing_status, year, inflation),
        ss_thresholds=tax_calc.social_security_thresholds(filing_status),
    )
    amount, iterations, converged = solve_withdrawal(target_net - savings, context)

    tax = context.federal_tax(amount)
    net = context.net_income(amount)
    return {
        "tax_year": year,
        "target_net": as_currency(target_net),
        "ss_benefit": as_currency(ss_adjusted),
        "other_taxable_income": as_currency(other_taxable_income),
        "withdrawal": as_currency(amount),
        "total_income": as_currency(other_taxable_income + ss_adjusted + amount),
        "taxable_ss": as_currency(context.taxable_social_security(amount)),
        "standard_deduction": as_currency(context.standard_deduction),
        "tax": as_currency(tax),
        "net_income": as_currency(net),
        "savings": as_currency(savings),
        "final_spend": as_currency(net + savings),
        "iterations": iterations,
        "converged": converged,
    }


def format_reconciliation(summary: Dict[str, float]) -> str:
    rule = "=" * 40
    lines = [
        rule,
        f"*** Retirement Income Summary ({summary['tax_year']}) ***",
        rule,
        f"Target Net Income:          ${summary['target_net']:>12,.0f}",
        "",
        f"Social Security Benefit:    ${summary['ss_benefit']:>12,.0f}",
        f"+ Other Taxable Income:     ${summary['other_taxable_income']:>12,.0f}",
        f"+ 401k Withdrawal Needed:   ${summary['withdrawal']:>12,.0f}",
        "-" * 40,
        f"Total Income:               ${summary['total_income']:>12,.0f}",
        f"- Taxes:                    ${summary['tax']:>12,.0f}",
        rule,
        f"Net Income:                 ${summary['net_income']:>12,.0f}",
        f"+ Savings Contribution:     ${summary['savings']:>12,.0f}",
        f"Final Spend:                ${summary['final_spend']:>12,.0f}",
        "",
        f"Taxable SS:                 ${summary['taxable_ss']:>12,.0f}",
        f"Solver iterations: {summary['iterations']}"
        + ("" if summary["converged"] else " (did not converge)"),
    ]
    return "\n".join(lines)


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    amounts = {
        "target_net": args.target_net,
        "ss_benefit": args.ss_benefit,
        "savings": args.savings,
        "other_taxable_income": args.other_taxable_income,
    }
    negative = [name for name, value in amounts.items() if value < 0]
    if negative:
        print(f"Amounts must not be negative: {', '.join(negative)}", file=sys.stderr)
        return 2
    if args.year_index < 0:
        print("--year-index must not be negative", file=sys.stderr)
        return 2

    if args.verbose:
        setup_logging(level=logging.DEBUG, filename=None)
    logger = logging.getLogger("drawdown.cli") if args.verbose else None

    try:
        tax_calc = TaxCalculator(load_tax_tables(), logger)
    except (OSError, KeyError, TaxTableError) as exc:
        print(f"Failed to load tax tables: {exc}", file=sys.stderr)
        return 2

    summary = reconcile(
        args.target_net,
        args.ss_benefit,
        tax_calc,
        savings=args.savings,
        other_taxable_income=args.other_taxable_income,
        year_index=args.year_index,
        inflation=args.inflation,
        filing_status=FilingStatus(args.filing_status),
        logger=logger,
    )
    print(format_reconciliation(summary))
    return 0


if __name__ == "__main__":
    sys.exit(main())
