"""Output helpers for the loan repayment forecaster.

This module provides simple functions to render repayment schedules and
summaries in a tabular text format, and to convert schedule rows into
JSON-serialisable dictionaries for exports and the web interface.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from .data_models import EarlyClosureRow, ScheduleRow

SCHEDULE_HEADERS = [
    "No",
    "Due",
    "Rate%",
    "Principal",
    "Interest",
    "Insurance",
    "Fees",
    "Penalty",
    "AmountDue",
    "Balance",
    "BaseEMI",
    "NewEMI",
    "Note",
]


def _money(value: Optional[Decimal]) -> Optional[float]:
    return None if value is None else round(float(value), 2)


def row_to_dict(row: ScheduleRow) -> Dict[str, Any]:
    """Convert a schedule row into a JSON-serialisable dictionary.

    Early closure rows carry ``None`` for every numeric field.
    """
    if isinstance(row, EarlyClosureRow):
        return {
            "sequence_number": row.sequence_number,
            "due_date": None,
            "annual_rate": None,
            "principal": None,
            "interest": None,
            "insurance": None,
            "fees": None,
            "amount_due": None,
            "ending_balance": 0.0,
            "penalty_days_late": None,
            "penalty_amount": None,
            "baseline_emi": None,
            "adjusted_emi": None,
            "note": row.note,
            "closed_early": True,
        }
    return {
        "sequence_number": row.sequence_number,
        "due_date": row.due_date.isoformat(),
        "annual_rate": float(row.annual_rate),
        "principal": _money(row.principal),
        "interest": _money(row.interest),
        "insurance": _money(row.insurance),
        "fees": _money(row.fees),
        "amount_due": _money(row.amount_due),
        "ending_balance": _money(row.ending_balance),
        "penalty_days_late": row.penalty_days_late,
        "penalty_amount": _money(row.penalty_amount),
        "baseline_emi": _money(row.baseline_emi),
        "adjusted_emi": _money(row.adjusted_emi),
        "note": row.note,
        "closed_early": False,
    }


def serialize_schedule(schedule: Iterable[ScheduleRow]) -> List[Dict[str, Any]]:
    return [row_to_dict(row) for row in schedule]


def print_summary(summary: Dict[str, object]) -> None:
    """Print a summary of loan metrics in a human-readable format."""
    print("Summary")
    print("-" * 72)
    print(f"Annual rate        : {summary['annual_rate']:.2f}%")
    print(f"Baseline EMI       : {summary['baseline_emi']:.2f}")
    print(f"Total principal    : {summary['total_principal']:.2f}")
    print(f"Total interest     : {summary['total_interest']:.2f}")
    if summary.get("total_insurance"):
        print(f"Total insurance    : {summary['total_insurance']:.2f}")
    if summary.get("total_fees"):
        print(f"Total fees         : {summary['total_fees']:.2f}")
    if summary.get("total_penalty"):
        print(f"Total penalty      : {summary['total_penalty']:.2f}")
    print(f"Total amount due   : {summary['total_amount_due']:.2f}")
    print(f"Highest payment    : {summary['max_payment']:.2f}")
    print(f"Installments paid  : {summary['installments_paid']}")
    if summary.get("closed_early"):
        print(f"Closed early       : after {summary['installments_paid']} month(s)")
    print("-" * 72)


def print_schedule(schedule: Iterable[ScheduleRow]) -> None:
    """Print the repayment schedule as a simple tab separated table."""
    print("\t".join(SCHEDULE_HEADERS))
    for row in schedule:
        if isinstance(row, EarlyClosureRow):
            cells = [str(row.sequence_number)] + ["-"] * (len(SCHEDULE_HEADERS) - 2) + [row.note]
            print("\t".join(cells))
            continue
        cells = [
            str(row.sequence_number),
            row.due_date.isoformat(),
            f"{row.annual_rate:.2f}",
            f"{row.principal:.2f}",
            f"{row.interest:.2f}",
            f"{row.insurance:.2f}",
            f"{row.fees:.2f}",
            f"{row.penalty_amount:.2f}",
            f"{row.amount_due:.2f}",
            f"{row.ending_balance:.2f}",
            f"{row.baseline_emi:.2f}",
            f"{row.adjusted_emi:.2f}" if row.adjusted_emi is not None else "-",
            row.note,
        ]
        print("\t".join(cells))
