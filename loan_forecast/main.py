"""Command-line interface for the loan repayment forecaster.

This module uses the ``click`` library to implement a multi-command interface.
Users can compute full repayment schedules, view summaries or generate a
natural-language report. Results can be printed to the terminal or exported to
JSON/CSV files.

``build_config_from_options`` is the single place where raw user input is
parsed and validated into a ``LoanInput``; the web interface reuses it.
"""

from __future__ import annotations

import asyncio
import csv
import json
import logging
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import click

from .data_models import (
    INTEREST_REDUCING,
    INTEREST_TYPES,
    PENALTY_BASES,
    PENALTY_ON_PRINCIPAL,
    RATE_MODE_AUTO,
    RATE_MODES,
    CustomFee,
    ExtraPayment,
    FullPrepayment,
    InsurancePolicy,
    LoanInput,
    PenaltyRule,
    ScenarioRule,
    ScheduleRow,
)
from .engine import compute_schedule, summarize_schedule
from .formatter import print_schedule, print_summary, serialize_schedule
from .report import generate_report
from .utils import decimal_from_str, parse_start_date

MAX_PRINTED_ROWS = 120
MAX_TENURE_MONTHS = 1200  # 100 years


def parse_amount(value: str) -> Decimal:
    """Parse a numeric string with optional suffixes.

    Accepts plain numbers ("500000") and shorthand with ``k``/``m`` suffixes
    (e.g., "500k" meaning 500_000).
    """
    value = str(value).strip().lower().replace(",", "")
    factor = Decimal(1)
    if value.endswith("k"):
        factor = Decimal(1_000)
        value = value[:-1]
    elif value.endswith("m"):
        factor = Decimal(1_000_000)
        value = value[:-1]
    try:
        return decimal_from_str(value) * factor
    except ValueError:
        raise click.BadParameter(f"Invalid amount: {value}")


def _parse_int(value: str, label: str) -> int:
    try:
        return int(str(value).strip())
    except ValueError:
        raise click.BadParameter(f"Invalid {label}: {value}")


def _parse_decimal(value: Any, label: str) -> Decimal:
    try:
        return decimal_from_str(str(value))
    except ValueError:
        raise click.BadParameter(f"Invalid {label}: {value}")


def parse_fee_strings(values: Iterable[str]) -> Tuple[CustomFee, ...]:
    fees: List[CustomFee] = []
    for item in values:
        if ":" not in item:
            raise click.BadParameter(f"Fee must be in NAME:AMOUNT format; got {item}")
        name, amount_str = item.rsplit(":", 1)
        amount = parse_amount(amount_str)
        if amount < 0:
            raise click.BadParameter(f"Fee amount must not be negative; got {item}")
        fees.append(CustomFee(name=name.strip(), amount=amount))
    return tuple(fees)


def parse_scenario_strings(values: Iterable[str]) -> Tuple[ScenarioRule, ...]:
    """Parse ``full:AFTER`` and ``extra:AFTER:COUNT:PERCENT`` scenario strings."""
    scenarios: List[ScenarioRule] = []
    for item in values:
        parts = [p.strip() for p in item.split(":")]
        kind = parts[0].lower()
        if kind == "full" and len(parts) == 2:
            after = _parse_int(parts[1], "installment number")
            if after < 0:
                raise click.BadParameter(f"Scenario installment must not be negative; got {item}")
            scenarios.append(FullPrepayment(after_installment=after))
        elif kind == "extra" and len(parts) == 4:
            after = _parse_int(parts[1], "installment number")
            count = _parse_int(parts[2], "installment count")
            percent = _parse_decimal(parts[3].rstrip("%"), "percentage")
            if after < 0 or count < 0 or percent < 0:
                raise click.BadParameter(f"Scenario values must not be negative; got {item}")
            scenarios.append(ExtraPayment(after_installment=after, count=count, percent=percent))
        else:
            raise click.BadParameter(
                f"Scenario must be in full:AFTER or extra:AFTER:COUNT:PERCENT format; got {item}"
            )
    return tuple(scenarios)


def parse_penalty_strings(values: Iterable[str]) -> Dict[int, PenaltyRule]:
    """Parse ``INSTALLMENT:DAYS:RATE[:BASE]`` penalty strings keyed by installment."""
    penalties: Dict[int, PenaltyRule] = {}
    for item in values:
        parts = [p.strip() for p in item.split(":")]
        if len(parts) not in (3, 4):
            raise click.BadParameter(
                f"Penalty must be in INSTALLMENT:DAYS:RATE[:BASE] format; got {item}"
            )
        installment = _parse_int(parts[0], "installment number")
        days_late = _parse_int(parts[1], "days late")
        rate = _parse_decimal(parts[2].rstrip("%"), "penalty rate")
        base = parts[3].lower() if len(parts) == 4 else PENALTY_ON_PRINCIPAL
        if installment < 1 or days_late < 0 or rate < 0:
            raise click.BadParameter(f"Penalty values out of range; got {item}")
        if base not in PENALTY_BASES:
            raise click.BadParameter(
                f"Penalty base must be one of {', '.join(PENALTY_BASES)}; got {base}"
            )
        if installment in penalties:
            raise click.BadParameter(f"Duplicate penalty for installment {installment}")
        penalties[installment] = PenaltyRule(days_late=days_late, rate_percent=rate, base=base)
    return penalties


def build_config_from_options(
    principal: str,
    tenure: int,
    start_date: Optional[str] = None,
    down_payment: Optional[str] = None,
    apply_interest: bool = True,
    rate_mode: str = RATE_MODE_AUTO,
    rate: Any = "8",
    interest_type: str = INTEREST_REDUCING,
    insurance_rate: Optional[str] = None,
    fee: Tuple[str, ...] = (),
    scenario: Tuple[str, ...] = (),
    penalty: Tuple[str, ...] = (),
) -> LoanInput:
    principal_value = parse_amount(principal)
    down_payment_value = parse_amount(down_payment) if down_payment else Decimal("0")
    if principal_value < 0 or down_payment_value < 0:
        raise click.BadParameter("Principal and down payment must not be negative")
    if down_payment_value > principal_value:
        raise click.BadParameter("Down payment must not exceed the principal")

    tenure_value = _parse_int(tenure, "tenure")
    if tenure_value < 1:
        raise click.BadParameter("Tenure must be at least one month")
    if tenure_value > MAX_TENURE_MONTHS:
        raise click.BadParameter(f"Tenure must not exceed {MAX_TENURE_MONTHS} months")

    if start_date:
        try:
            start_dt = parse_start_date(start_date)
        except ValueError as exc:
            raise click.BadParameter(str(exc))
    else:
        start_dt = date.today()

    rate_mode = rate_mode.lower()
    if rate_mode not in RATE_MODES:
        raise click.BadParameter(f"Rate mode must be one of {', '.join(RATE_MODES)}")
    manual_rate = _parse_decimal(rate, "interest rate")
    if manual_rate < 0:
        raise click.BadParameter("Interest rate must not be negative")
    interest_type = interest_type.lower()
    if interest_type not in INTEREST_TYPES:
        raise click.BadParameter(f"Interest type must be one of {', '.join(INTEREST_TYPES)}")

    insurance = InsurancePolicy()
    if insurance_rate not in (None, ""):
        insurance_value = _parse_decimal(insurance_rate, "insurance rate")
        if insurance_value < 0:
            raise click.BadParameter("Insurance rate must not be negative")
        insurance = InsurancePolicy(enabled=True, annual_rate=insurance_value)

    return LoanInput(
        principal=principal_value,
        tenure_months=tenure_value,
        start_date=start_dt,
        down_payment=down_payment_value,
        apply_interest=apply_interest,
        rate_mode=rate_mode,
        manual_rate=manual_rate,
        interest_type=interest_type,
        insurance=insurance,
        fees=parse_fee_strings(fee),
        scenarios=parse_scenario_strings(scenario),
        penalties=parse_penalty_strings(penalty),
    )


def export_to_json(path: Path, schedule: List[ScheduleRow], summary: Dict[str, Any]) -> None:
    """Export schedule and summary to a JSON file."""
    data = {"summary": summary, "schedule": serialize_schedule(schedule)}
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def export_to_csv(path: Path, schedule: List[ScheduleRow]) -> None:
    """Export schedule to a CSV file."""
    rows = serialize_schedule(schedule)
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        if rows:
            writer.writerow(list(rows[0].keys()))
        for row in rows:
            writer.writerow(["" if v is None else v for v in row.values()])


def loan_options(func: Callable) -> Callable:
    """Attach the loan input options shared by every command."""
    options = [
        click.option("--principal", "-p", "principal", required=True, help="Total loan amount"),
        click.option("--tenure", "-t", "tenure", required=True, type=int, help="Loan tenure in months"),
        click.option("--start-date", "-s", "start_date", help="Loan start date (YYYY-MM-DD), defaults to today"),
        click.option("--down-payment", "-d", "down_payment", help="Down payment amount"),
        click.option("--interest/--no-interest", "apply_interest", default=True, help="Charge interest at all"),
        click.option("--rate-mode", "rate_mode", type=click.Choice(RATE_MODES), default=RATE_MODE_AUTO,
                     help="Pick the rate from the tenure (auto) or use --rate (manual)"),
        click.option("--rate", "-r", "rate", default="8", help="Manual annual interest rate (percent)"),
        click.option("--interest-type", "interest_type", type=click.Choice(INTEREST_TYPES),
                     default=INTEREST_REDUCING, help="Interest on the reducing balance or the financed amount"),
        click.option("--insurance-rate", "insurance_rate", help="Annual insurance rate (percent); enables insurance"),
        click.option("--fee", "fee", multiple=True, help="One-time fee in NAME:AMOUNT format"),
        click.option("--scenario", "scenario", multiple=True,
                     help="Prepayment scenario: full:AFTER or extra:AFTER:COUNT:PERCENT"),
        click.option("--penalty", "penalty", multiple=True,
                     help="Late payment in INSTALLMENT:DAYS:RATE[:principal|principal_with_interest] format"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """A command-line loan repayment forecaster."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@loan_options
@click.option("--output", "output", type=str, help="Output file path (.json or .csv)")
def schedule(output: Optional[str], **options: Any) -> None:
    """Compute and print the full repayment schedule."""
    config = build_config_from_options(**options)
    schedule_rows = compute_schedule(config)
    summary_data = summarize_schedule(schedule_rows)
    if output:
        path = Path(output)
        if path.suffix.lower() == ".json":
            export_to_json(path, schedule_rows, summary_data)
        elif path.suffix.lower() == ".csv":
            export_to_csv(path, schedule_rows)
        else:
            raise click.BadParameter("Unsupported output format; use .json or .csv")
        click.echo(f"Schedule exported to {path}")
        return

    print_summary(summary_data)
    # Limit schedule length printed to avoid flooding the terminal
    if len(schedule_rows) > MAX_PRINTED_ROWS:
        click.echo(f"Schedule has {len(schedule_rows)} rows; showing first {MAX_PRINTED_ROWS} rows.")
        print_schedule(schedule_rows[:MAX_PRINTED_ROWS])
    else:
        print_schedule(schedule_rows)


@cli.command()
@loan_options
@click.option("--output", "output", type=str, help="Output file path (.json)")
def summary(output: Optional[str], **options: Any) -> None:
    """Compute and print only the summary metrics for a loan."""
    config = build_config_from_options(**options)
    summary_data = summarize_schedule(compute_schedule(config))
    if output:
        path = Path(output)
        if path.suffix.lower() != ".json":
            raise click.BadParameter("Summary export must use .json extension")
        with path.open("w", encoding="utf-8") as f:
            json.dump({"summary": summary_data}, f, indent=2)
        click.echo(f"Summary exported to {path}")
    else:
        print_summary(summary_data)


@cli.command()
@loan_options
def report(**options: Any) -> None:
    """Generate a natural-language report for the repayment schedule.

    Set ``OPENAI_API_KEY`` to have the report written by a language model;
    without it a report is assembled from the schedule totals.
    """
    config = build_config_from_options(**options)
    click.echo(asyncio.run(generate_report(compute_schedule(config))))


if __name__ == "__main__":
    cli()
