"""Natural-language reports for repayment schedules.

``generate_report`` turns a computed schedule into a short advisory text. When
an OpenAI API key is configured the schedule is sent to the chat completions
API; otherwise a placeholder report is assembled locally from the schedule
totals. Report generation never raises: failures are logged and replaced with
an error text, so a broken report cannot affect the schedule it describes.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Iterable, List, Optional

from openai import AsyncOpenAI

from .data_models import InstallmentRow, ScheduleRow
from .engine import summarize_schedule

logger = logging.getLogger(__name__)

REPORT_ERROR_TEXT = "Error generating AI report."
SYSTEM_PROMPT = "You are a financial advisor."


@dataclass
class ReportSettings:
    """Settings for the report API, read from the environment."""

    api_key: Optional[str] = None
    model: str = "gpt-4"
    temperature: float = 0.7
    max_tokens: int = 700

    @classmethod
    def from_env(cls) -> "ReportSettings":
        return cls(
            api_key=os.environ.get("OPENAI_API_KEY") or None,
            model=os.environ.get("LOAN_FORECAST_REPORT_MODEL", "gpt-4"),
        )


def _installments(schedule: Iterable[ScheduleRow]) -> List[InstallmentRow]:
    return [row for row in schedule if isinstance(row, InstallmentRow)]


def build_report_prompt(schedule: Iterable[ScheduleRow]) -> str:
    """Build the prompt sent to the language model, one line per installment."""
    lines = [
        f"Installment {row.sequence_number}: Due {row.due_date.isoformat()}, "
        f"Principal {row.principal:.2f}, Interest {row.interest:.2f}, "
        f"Penalty {row.penalty_amount:.2f}, Amount Due {row.amount_due:.2f}"
        for row in _installments(schedule)
    ]
    return (
        "You are a financial advisor. Given the following loan repayment schedule, generate:\n"
        "1. Summary of total principal, interest, and penalty.\n"
        "2. Identify any patterns.\n"
        "3. Provide tips to optimize repayment.\n"
        "\n"
        "Schedule:\n" + "\n".join(lines)
    )


def placeholder_report(schedule: List[ScheduleRow]) -> str:
    """Assemble a report from the schedule totals without calling any service."""
    summary = summarize_schedule(schedule)
    penalised = [row.sequence_number for row in _installments(schedule) if row.penalty_amount > 0]

    lines = [
        "1. Summary of total principal, interest, and penalty:",
        "",
        f"- Total Principal: {summary['total_principal']:,.2f}",
        f"- Total Interest: {summary['total_interest']:,.2f}",
        f"- Total Penalty: {summary['total_penalty']:,.2f}",
        f"- Total Amount Due: {summary['total_amount_due']:,.2f}",
        "",
        "2. Identify any patterns:",
        "",
    ]
    if summary["closed_early"]:
        lines.append(f"- The loan is closed early, after {summary['installments_paid']} installment(s).")
    else:
        lines.append(f"- The loan runs its full term of {summary['installments_paid']} installment(s).")
    if penalised:
        numbers = ", ".join(f"#{n}" for n in penalised)
        lines.append(f"- Late-payment penalties are applied on installment(s) {numbers}.")
    else:
        lines.append("- No late-payment penalties are applied.")
    lines += [
        "",
        "3. Provide tips to optimize repayment:",
        "",
        "- Making extra payments early reduces the balance on which interest accrues.",
    ]
    if penalised:
        lines.append("- Paying on time avoids the penalties seen in this schedule.")
    return "\n".join(lines)


async def generate_report(schedule: List[ScheduleRow], settings: Optional[ReportSettings] = None) -> str:
    """Return a natural-language report for ``schedule``.

    Parameters
    ----------
    schedule: List[ScheduleRow]
        The schedule as returned by ``compute_schedule``.
    settings: ReportSettings, optional
        API settings; read from the environment when omitted.
    """
    settings = settings or ReportSettings.from_env()
    if not settings.api_key:
        return placeholder_report(schedule)

    try:
        client = AsyncOpenAI(api_key=settings.api_key)
        response = await client.chat.completions.create(
            model=settings.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_report_prompt(schedule)},
            ],
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        )
        return response.choices[0].message.content or ""
    except Exception:
        logger.exception("Report generation failed")
        return REPORT_ERROR_TEXT
