"""
Employee Cost Engine

Pure functions turning plain employee and overhead records into annual and
monthly fully-loaded costs. Money is stored in the base currency and is
converted to the secondary currency only when a positive exchange ratio is
configured.

Calculators that feed the explain/breakdown views return a Calculation: the
value plus the ordered lines that produced it, so the explanation can never
drift from the answer.
"""

import logging
import math
import os
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Union

from pricing_models import OverheadPeriod

logger = logging.getLogger(__name__)

BASE_CURRENCY = os.getenv("PRICING_BASE_CURRENCY", "EGP")
SECONDARY_CURRENCY = os.getenv("PRICING_SECONDARY_CURRENCY", "USD")


# =============================================================================
# INPUT RECORDS
# =============================================================================

@dataclass
class AllocationShare:
    """Share (0-1) of one overhead type attributed to an employee"""
    overhead_type_id: int
    share: float


@dataclass
class EmployeeRecord:
    id: int
    name: str
    category: str
    tech_stack_id: Optional[int]
    gross_monthly: float
    net_monthly: float = 0.0
    oncost_rate: Optional[float] = None
    annual_benefits: Optional[float] = None
    annual_bonus: Optional[float] = None
    fte: float = 1.0
    is_active: bool = True
    hiring_date: Optional[date] = None
    overhead_allocs: List[AllocationShare] = field(default_factory=list)

    @classmethod
    def from_model(cls, employee) -> "EmployeeRecord":
        """Build a record (with base allocations) from an Employee row."""
        return cls(
            id=employee.id,
            name=employee.name,
            category=employee.category,
            tech_stack_id=employee.tech_stack_id,
            gross_monthly=float(employee.gross_monthly),
            net_monthly=float(employee.net_monthly or 0),
            oncost_rate=employee.oncost_rate,
            annual_benefits=float(employee.annual_benefits) if employee.annual_benefits is not None else None,
            annual_bonus=float(employee.annual_bonus) if employee.annual_bonus is not None else None,
            fte=float(employee.fte),
            is_active=bool(employee.is_active),
            hiring_date=employee.hiring_date,
            overhead_allocs=[
                AllocationShare(overhead_type_id=a.overhead_type_id, share=float(a.share))
                for a in employee.overhead_allocs
            ],
        )

    def with_effective(self, is_active: bool, allocs: List[AllocationShare]) -> "EmployeeRecord":
        return replace(self, is_active=is_active, overhead_allocs=list(allocs))


@dataclass
class OverheadTypeRecord:
    id: int
    name: str
    amount: float
    period: str
    is_active: bool = True

    @classmethod
    def from_model(cls, overhead_type) -> "OverheadTypeRecord":
        return cls(
            id=overhead_type.id,
            name=overhead_type.name,
            amount=float(overhead_type.amount),
            period=overhead_type.period,
            is_active=bool(overhead_type.is_active),
        )


# =============================================================================
# BREAKDOWN STRUCTURES
# =============================================================================

@dataclass
class CalcLine:
    """One labelled step of a computation"""
    label: str
    value: Optional[float]
    formula: str
    inputs: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "value": self.value,
            "formula": self.formula,
            "inputs": self.inputs,
        }


@dataclass
class Calculation:
    """A computed value and the ordered lines that derived it"""
    value: Optional[float]
    lines: List[CalcLine] = field(default_factory=list)


@dataclass
class Breakdown:
    """Explain view for one derived quantity"""
    key: str
    title: str
    result: Optional[float]
    currency: str
    lines: List[CalcLine] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "title": self.title,
            "result": self.result,
            "currency": self.currency,
            "lines": [line.to_dict() for line in self.lines],
        }


# =============================================================================
# PERIOD NORMALIZER
# =============================================================================

def _period_value(period: Union[str, OverheadPeriod]) -> str:
    return period.value if isinstance(period, OverheadPeriod) else period


def to_annual(amount: float, period: Union[str, OverheadPeriod]) -> float:
    """Annual equivalent of an amount billed per period."""
    p = _period_value(period)
    if p == OverheadPeriod.MONTHLY.value:
        return amount * 12
    if p == OverheadPeriod.QUARTERLY.value:
        return amount * 4
    return amount


def to_monthly(amount: float, period: Union[str, OverheadPeriod]) -> float:
    """Monthly equivalent of an amount billed per period."""
    p = _period_value(period)
    if p == OverheadPeriod.ANNUAL.value:
        return amount / 12
    if p == OverheadPeriod.QUARTERLY.value:
        return amount / 3
    return amount


# =============================================================================
# CURRENCY CONVERTER
# =============================================================================

def get_exchange_ratio(settings: Dict[str, float]) -> Optional[float]:
    """
    exchange_ratio means 1 secondary unit = ratio base units.
    None (single-currency mode) when unset, non-finite or not positive.
    """
    ratio = settings.get("exchange_ratio")
    if ratio is None or not math.isfinite(ratio) or ratio <= 0:
        return None
    return ratio


def convert_currency(amount: float, exchange_ratio: Optional[float]) -> float:
    if exchange_ratio is None or exchange_ratio <= 0:
        return amount
    return amount / exchange_ratio


def currency_label(exchange_ratio: Optional[float]) -> str:
    if exchange_ratio is not None and exchange_ratio > 0:
        return SECONDARY_CURRENCY
    return BASE_CURRENCY


# =============================================================================
# EMPLOYEE COST CALCULATOR
# =============================================================================

def _finite_or_zero(value: Optional[float]) -> float:
    if value is None or not math.isfinite(value):
        return 0.0
    return value


def adjusted_gross_monthly(employee: EmployeeRecord, annual_increase: Optional[float] = 0.0) -> float:
    return employee.gross_monthly * (1 + _finite_or_zero(annual_increase))


def annual_base(
    employee: EmployeeRecord,
    exchange_ratio: Optional[float],
    annual_increase: Optional[float] = 0.0,
) -> float:
    """
    annualBase = adjustedGrossMonthly*12 * (1 + oncostRate) + annualBenefits + annualBonus,
    converted to the display currency.
    """
    adjusted_gross_annual = adjusted_gross_monthly(employee, annual_increase) * 12
    oncost_rate = employee.oncost_rate or 0.0
    benefits = employee.annual_benefits or 0.0
    bonus = employee.annual_bonus or 0.0
    return convert_currency(adjusted_gross_annual * (1 + oncost_rate) + benefits + bonus, exchange_ratio)


def allocated_overhead(
    employee: EmployeeRecord,
    overhead_types: Iterable[OverheadTypeRecord],
    exchange_ratio: Optional[float],
) -> float:
    """
    Sum of annualised overhead amounts weighted by the employee's shares.

    overhead_types is the already active-filtered list; allocations pointing
    at a type not in it contribute nothing.
    """
    if not employee.overhead_allocs:
        return 0.0

    types_by_id = {t.id: t for t in overhead_types}
    total = 0.0
    for alloc in employee.overhead_allocs:
        overhead_type = types_by_id.get(alloc.overhead_type_id)
        if overhead_type is None:
            logger.debug(
                f"Employee {employee.id}: skipping allocation to unknown overhead type {alloc.overhead_type_id}"
            )
            continue
        total += to_annual(overhead_type.amount, overhead_type.period) * alloc.share
    return convert_currency(total, exchange_ratio)


def fully_loaded_annual(
    employee: EmployeeRecord,
    overhead_types: Iterable[OverheadTypeRecord],
    exchange_ratio: Optional[float],
    annual_increase: Optional[float] = 0.0,
) -> float:
    return (
        annual_base(employee, exchange_ratio, annual_increase)
        + allocated_overhead(employee, overhead_types, exchange_ratio)
    )


def fully_loaded_monthly(
    employee: EmployeeRecord,
    overhead_types: Iterable[OverheadTypeRecord],
    exchange_ratio: Optional[float],
    annual_increase: Optional[float] = 0.0,
) -> float:
    return fully_loaded_annual(employee, overhead_types, exchange_ratio, annual_increase) / 12


def raw_monthly(employee: EmployeeRecord, annual_increase: Optional[float] = 0.0) -> float:
    """Monthly cost excluding overhead, in the base currency."""
    oncost_rate = employee.oncost_rate or 0.0
    benefits = employee.annual_benefits or 0.0
    bonus = employee.annual_bonus or 0.0
    return adjusted_gross_monthly(employee, annual_increase) * (1 + oncost_rate) + benefits / 12 + bonus / 12


def explain_fully_loaded_monthly(
    employee: EmployeeRecord,
    overhead_types: List[OverheadTypeRecord],
    exchange_ratio: Optional[float],
    annual_increase: Optional[float] = 0.0,
) -> Calculation:
    """Fully-loaded monthly cost of one employee, with its derivation."""
    prefix = f"{employee.name}"
    adjusted = adjusted_gross_monthly(employee, annual_increase)
    base = annual_base(employee, exchange_ratio, annual_increase)
    overhead = allocated_overhead(employee, overhead_types, exchange_ratio)
    annual = base + overhead
    monthly = annual / 12

    lines = [
        CalcLine(
            label=f"{prefix}: adjusted gross monthly",
            value=adjusted,
            formula="grossMonthly * (1 + annualIncrease)",
            inputs={"grossMonthly": employee.gross_monthly, "annualIncrease": _finite_or_zero(annual_increase)},
        ),
        CalcLine(
            label=f"{prefix}: annual base",
            value=base,
            formula="convert(adjustedGrossMonthly * 12 * (1 + oncostRate) + annualBenefits + annualBonus)",
            inputs={
                "adjustedGrossMonthly": adjusted,
                "oncostRate": employee.oncost_rate or 0.0,
                "annualBenefits": employee.annual_benefits or 0.0,
                "annualBonus": employee.annual_bonus or 0.0,
                "exchangeRatio": exchange_ratio,
            },
        ),
    ]

    types_by_id = {t.id: t for t in overhead_types}
    weighted_total = 0.0
    for alloc in employee.overhead_allocs:
        overhead_type = types_by_id.get(alloc.overhead_type_id)
        if overhead_type is None:
            lines.append(CalcLine(
                label=f"{prefix}: overhead {alloc.overhead_type_id} (not active)",
                value=0.0,
                formula="unknown or inactive overhead type contributes 0",
                inputs={"overheadTypeId": alloc.overhead_type_id, "share": alloc.share},
            ))
            continue
        annual_amount = to_annual(overhead_type.amount, overhead_type.period)
        weighted = annual_amount * alloc.share
        weighted_total += weighted
        lines.append(CalcLine(
            label=f"{prefix}: overhead {overhead_type.name}",
            value=weighted,
            formula="toAnnual(amount, period) * share",
            inputs={
                "overheadTypeId": overhead_type.id,
                "amount": overhead_type.amount,
                "period": _period_value(overhead_type.period),
                "annualAmount": annual_amount,
                "share": alloc.share,
            },
        ))

    lines += [
        CalcLine(
            label=f"{prefix}: allocated overhead (annual)",
            value=overhead,
            formula="convert(sum(toAnnual(amount, period) * share))",
            inputs={"weightedOverheadTotal": weighted_total, "exchangeRatio": exchange_ratio},
        ),
        CalcLine(
            label=f"{prefix}: fully loaded monthly",
            value=monthly,
            formula="(annualBase + allocatedOverhead) / 12",
            inputs={"annualBase": base, "allocatedOverhead": overhead},
        ),
    ]
    return Calculation(value=monthly, lines=lines)
