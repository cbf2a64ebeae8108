"""Data models for the loan repayment forecaster.

This module defines dataclasses representing the entities used by the
forecaster: the loan configuration with its optional adjustments (custom fees,
insurance, prepayment scenarios and late-payment penalties) and the rows of the
resulting repayment schedule. The dataclasses are frozen: a ``LoanInput`` is
built once per computation and a schedule is replaced wholesale, never edited.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union

RATE_MODE_AUTO = "auto"
RATE_MODE_MANUAL = "manual"
RATE_MODES = (RATE_MODE_AUTO, RATE_MODE_MANUAL)

INTEREST_REDUCING = "reducing"
INTEREST_FIXED = "fixed"
INTEREST_TYPES = (INTEREST_REDUCING, INTEREST_FIXED)

PENALTY_ON_PRINCIPAL = "principal"
PENALTY_ON_PRINCIPAL_WITH_INTEREST = "principal_with_interest"
PENALTY_BASES = (PENALTY_ON_PRINCIPAL, PENALTY_ON_PRINCIPAL_WITH_INTEREST)


@dataclass(frozen=True)
class CustomFee:
    """A one-time fee charged with the first installment."""

    name: str
    amount: Decimal


@dataclass(frozen=True)
class InsurancePolicy:
    """Loan insurance charged monthly on the outstanding balance.

    Attributes
    ----------
    enabled: bool
        Whether a premium is added to every installment.
    annual_rate: Decimal
        Annual premium in percent of the balance, e.g. ``Decimal("0.5")``.
    """

    enabled: bool = False
    annual_rate: Decimal = Decimal("0")


@dataclass(frozen=True)
class FullPrepayment:
    """Pay off the remaining balance on installment ``after_installment + 1``."""

    after_installment: int


@dataclass(frozen=True)
class ExtraPayment:
    """A temporarily inflated installment.

    Attributes
    ----------
    after_installment: int
        The last regular installment before the extra payments start.
    count: int
        Number of inflated installments.
    percent: Decimal
        How much larger than the baseline installment each payment is, in
        percent. The surplus goes entirely to principal.
    """

    after_installment: int
    count: int
    percent: Decimal


ScenarioRule = Union[FullPrepayment, ExtraPayment]


@dataclass(frozen=True)
class PenaltyRule:
    """A late-payment penalty for one installment.

    ``rate_percent`` is charged per day late against ``base``, which is either
    the principal component alone or principal plus interest.
    """

    days_late: int
    rate_percent: Decimal
    base: str = PENALTY_ON_PRINCIPAL


@dataclass(frozen=True)
class LoanInput:
    """Configuration of a loan.

    This configuration collects all user inputs into a single object. Unlike
    ``principal``, the ``financed_amount`` already accounts for the down
    payment.
    """

    principal: Decimal
    tenure_months: int
    start_date: date
    down_payment: Decimal = Decimal("0")
    apply_interest: bool = True
    rate_mode: str = RATE_MODE_AUTO
    manual_rate: Decimal = Decimal("8")  # annual rate in percent
    interest_type: str = INTEREST_REDUCING
    insurance: InsurancePolicy = field(default_factory=InsurancePolicy)
    fees: Tuple[CustomFee, ...] = ()
    scenarios: Tuple[ScenarioRule, ...] = ()
    # keyed by installment number; stored as a read-only copy
    penalties: Mapping[int, PenaltyRule] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "penalties", MappingProxyType(dict(self.penalties)))

    @property
    def financed_amount(self) -> Decimal:
        return self.principal - self.down_payment


@dataclass(frozen=True)
class InstallmentRow:
    """One installment of the repayment schedule.

    ``baseline_emi`` is the installment computed before the simulation and is
    the same on every row. ``adjusted_emi`` is only set on rows where an extra
    payment scenario inflated the installment.
    """

    sequence_number: int
    due_date: date
    annual_rate: Decimal
    principal: Decimal
    interest: Decimal
    insurance: Decimal
    fees: Decimal
    amount_due: Decimal
    ending_balance: Decimal
    penalty_days_late: int
    penalty_amount: Decimal
    baseline_emi: Decimal
    adjusted_emi: Optional[Decimal]
    note: str = "-"


@dataclass(frozen=True)
class EarlyClosureRow:
    """Terminal row appended when the loan is repaid before the tenure ends."""

    sequence_number: int
    note: str


ScheduleRow = Union[InstallmentRow, EarlyClosureRow]
