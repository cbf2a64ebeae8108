"""Core calculation engine for the loan repayment forecaster.

This module implements the month-by-month simulation that turns a
``LoanInput`` into a repayment schedule. On top of the equal-installment
(EMI) plan it folds in one-time fees, insurance premiums, prepayment scenarios
and late-payment penalties. Results are returned as a list of
``InstallmentRow`` objects, followed by an ``EarlyClosureRow`` when the loan is
repaid before the end of its tenure.

The engine is a pure function: it performs no I/O and keeps no state between
calls.
"""

from __future__ import annotations

import logging
from decimal import Decimal, getcontext
from typing import Dict, List, Optional

from .data_models import (
    INTEREST_FIXED,
    PENALTY_ON_PRINCIPAL_WITH_INTEREST,
    RATE_MODE_MANUAL,
    EarlyClosureRow,
    ExtraPayment,
    FullPrepayment,
    InstallmentRow,
    LoanInput,
    ScheduleRow,
)
from .utils import add_months, format_percent

getcontext().prec = 28  # increase precision for financial calculations

logger = logging.getLogger(__name__)

BALANCE_EPSILON = Decimal("0.01")

# (max tenure in months, annual rate in percent) used when the rate is automatic
AUTO_RATE_STEPS = (
    (12, Decimal("5")),
    (60, Decimal("8")),
)
AUTO_RATE_LONG_TERM = Decimal("10")


def resolve_annual_rate(loan: LoanInput) -> Decimal:
    """Return the annual interest rate in percent that applies to ``loan``.

    Without interest the rate is zero. A manual rate is used as given;
    otherwise the rate is a step function of the tenure: up to 12 months 5 %,
    up to 60 months 8 %, and 10 % beyond that.
    """
    if not loan.apply_interest:
        return Decimal("0")
    if loan.rate_mode == RATE_MODE_MANUAL:
        return loan.manual_rate
    for max_months, rate in AUTO_RATE_STEPS:
        if loan.tenure_months <= max_months:
            return rate
    return AUTO_RATE_LONG_TERM


def calculate_emi(principal: Decimal, rate_per_month: Decimal, term: int) -> Decimal:
    """Return the equated monthly installment for a loan.

    The formula is:

        payment = P * i * (1 + i)^n / ((1 + i)^n - 1)

    where ``P`` is the principal, ``i`` is the monthly interest rate and
    ``n`` is the number of payments. When the interest rate is zero, the
    payment simplifies to ``P / n``.
    """
    if term <= 0:
        raise ValueError("Term must be positive")
    if rate_per_month == 0:
        return principal / Decimal(term)
    factor = (1 + rate_per_month) ** term
    return principal * rate_per_month * factor / (factor - 1)


def _period_interest(loan: LoanInput, balance: Decimal, rate_per_month: Decimal) -> Decimal:
    if loan.interest_type == INTEREST_FIXED:
        return loan.financed_amount * rate_per_month
    return balance * rate_per_month


def compute_schedule(loan: LoanInput) -> List[ScheduleRow]:
    """Compute the repayment schedule for a loan.

    Parameters
    ----------
    loan: LoanInput
        The validated loan configuration.

    Returns
    -------
    schedule: List[ScheduleRow]
        One ``InstallmentRow`` per month until the balance is repaid or the
        tenure ends. If the balance reaches zero early, a single
        ``EarlyClosureRow`` is appended.

    Scenario rules are evaluated in their input order for every period. When
    several rules match the same period, the last one overwrites the note and
    amounts set by the earlier ones.
    """
    financed = loan.financed_amount
    annual_rate = resolve_annual_rate(loan)
    rate_per_month = annual_rate / Decimal(100) / Decimal(12)
    # The baseline EMI stays fixed; scenario payments are expressed against it.
    emi = calculate_emi(financed, rate_per_month, loan.tenure_months)
    logger.debug(
        "Computing schedule: financed=%s rate=%s%% emi=%s tenure=%d",
        financed, annual_rate, emi, loan.tenure_months,
    )

    fees_total = sum((fee.amount for fee in loan.fees), Decimal("0"))
    insurance_rate = loan.insurance.annual_rate / Decimal(100) / Decimal(12)

    schedule: List[ScheduleRow] = []
    balance = financed
    for period in range(1, loan.tenure_months + 1):
        if balance <= 0:
            break
        opening_balance = balance

        interest = _period_interest(loan, opening_balance, rate_per_month)
        principal = emi - interest
        insurance = opening_balance * insurance_rate if loan.insurance.enabled else Decimal("0")
        fees = fees_total if period == 1 else Decimal("0")
        amount_due = emi + insurance + fees

        adjusted_emi: Optional[Decimal] = None
        scenario_note = ""
        # Balance as seen by later rules; a full prepayment settles it.
        remaining = opening_balance
        for rule in loan.scenarios:
            if isinstance(rule, FullPrepayment):
                if period == rule.after_installment + 1 and remaining > 0:
                    principal = opening_balance
                    interest = _period_interest(loan, opening_balance, rate_per_month)
                    amount_due = opening_balance + interest + insurance
                    remaining = Decimal("0")
                    scenario_note = f"Full Prepayment after #{rule.after_installment}"
            elif isinstance(rule, ExtraPayment):
                in_window = rule.after_installment < period <= rule.after_installment + rule.count
                if in_window and remaining > 0:
                    adjusted_emi = emi * (1 + rule.percent / Decimal(100))
                    principal += adjusted_emi - emi
                    amount_due = adjusted_emi + insurance + fees
                    scenario_note = (
                        f"Extra +{format_percent(rule.percent)}% after #{rule.after_installment} "
                        f"(Original: {emi:.2f} → New: {adjusted_emi:.2f})"
                    )

        if principal > opening_balance:
            principal = opening_balance
            interest = emi - principal

        penalty_amount = Decimal("0")
        penalty_note = ""
        penalty = loan.penalties.get(period)
        if penalty is not None and penalty.days_late > 0 and penalty.rate_percent > 0:
            if penalty.base == PENALTY_ON_PRINCIPAL_WITH_INTEREST:
                base = principal + interest
            else:
                base = principal
            penalty_amount = base * (penalty.rate_percent / Decimal(100)) * penalty.days_late
            amount_due += penalty_amount
            penalty_note = (
                f"Penalty {format_percent(penalty.rate_percent)}%/day × {penalty.days_late} day(s)"
            )

        balance = opening_balance - principal
        if balance < BALANCE_EPSILON:
            balance = Decimal("0")

        schedule.append(
            InstallmentRow(
                sequence_number=period,
                due_date=add_months(loan.start_date, period),
                annual_rate=annual_rate,
                principal=principal,
                interest=interest,
                insurance=insurance,
                fees=fees,
                amount_due=amount_due,
                ending_balance=balance,
                penalty_days_late=penalty.days_late if penalty is not None else 0,
                penalty_amount=penalty_amount,
                baseline_emi=emi,
                adjusted_emi=adjusted_emi,
                # scenario notes take priority over penalty notes
                note=scenario_note or penalty_note or "-",
            )
        )

    paid = len(schedule)
    if paid < loan.tenure_months:
        logger.info("Loan closed early after %d of %d months", paid, loan.tenure_months)
        schedule.append(
            EarlyClosureRow(
                sequence_number=paid + 1,
                note=f"Loan closed early in {paid} month(s)",
            )
        )
    return schedule


def summarize_schedule(schedule: List[ScheduleRow]) -> Dict[str, object]:
    """Aggregate a schedule into summary metrics.

    Returns a flat dictionary of floats and plain values suitable for printing
    or JSON export: totals per component, the number of installments paid,
    whether the loan closed early, the baseline EMI and the highest amount due.
    """
    installments = [row for row in schedule if isinstance(row, InstallmentRow)]
    closed_early = any(isinstance(row, EarlyClosureRow) for row in schedule)

    def total(attr: str) -> float:
        return float(sum((getattr(row, attr) for row in installments), Decimal("0")))

    first = installments[0] if installments else None
    last = installments[-1] if installments else None
    return {
        "annual_rate": float(first.annual_rate) if first else 0.0,
        "baseline_emi": float(first.baseline_emi) if first else 0.0,
        "total_principal": total("principal"),
        "total_interest": total("interest"),
        "total_insurance": total("insurance"),
        "total_fees": total("fees"),
        "total_penalty": total("penalty_amount"),
        "total_amount_due": total("amount_due"),
        "max_payment": max((float(row.amount_due) for row in installments), default=0.0),
        "installments_paid": len(installments),
        "closed_early": closed_early,
        "last_due_date": last.due_date.isoformat() if last else None,
    }
