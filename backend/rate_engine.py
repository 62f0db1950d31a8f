"""
Capacity & Rate Engine

Turns sets of employee records into per-releaseable-hour rates:
cost per releaseable hour for a DEV/AGENTIC_AI team, QA/BA add-ons,
releaseable cost and final price, plus the per-stack decomposition
(raw cost, overhead per hour, add-on components) used by the results view.

Zero capacity with a non-empty team is a data-entry error and raises;
an empty QA/BA team is a legitimate "not applicable" state and costs 0.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from cost_engine import (
    CalcLine, Calculation, EmployeeRecord, OverheadTypeRecord, adjusted_gross_monthly,
    convert_currency, explain_fully_loaded_monthly, get_exchange_ratio,
    raw_monthly, to_monthly,
)
from settings_registry import SettingsMap, get_setting

logger = logging.getLogger(__name__)


class PricingComputationError(ValueError):
    """Pricing inputs are unusable (malformed configuration, not a user error)"""
    pass


class CapacityError(PricingComputationError):
    """A divisor (capacity hours or standard hours) is zero"""
    pass


# =============================================================================
# CAPACITY
# =============================================================================

def capacity_hours(employees: List[EmployeeRecord], releasable_hours_per_month: float) -> float:
    """releasableHoursPerMonth * sum(fte). Same rule for DEV and AGENTIC_AI."""
    return releasable_hours_per_month * sum(e.fte for e in employees)


def _releasable_hours(settings: SettingsMap) -> float:
    return get_setting(settings, "dev_releasable_hours_per_month")


def _standard_hours(settings: SettingsMap) -> float:
    return get_setting(settings, "standard_hours_per_month")


def _annual_increase(settings: SettingsMap) -> float:
    return get_setting(settings, "annual_increase")


# =============================================================================
# COST PER RELEASEABLE HOUR
# =============================================================================

def explain_cost_per_releasable_hour(
    employees: List[EmployeeRecord],
    overhead_types: List[OverheadTypeRecord],
    settings: SettingsMap,
) -> Calculation:
    """
    monthlyCost = sum(fullyLoadedMonthly), capacity = releasableHours * sum(fte),
    costPerRelHour = monthlyCost / capacity.

    None when there are no employees; CapacityError when capacity is zero.
    """
    if not employees:
        return Calculation(value=None, lines=[
            CalcLine(label="No employees", value=None, formula="n/a", inputs={"employees": 0}),
        ])

    exchange_ratio = get_exchange_ratio(settings)
    annual_increase = _annual_increase(settings)
    releasable_hours = _releasable_hours(settings)

    lines: List[CalcLine] = []
    monthly_cost = 0.0
    for employee in employees:
        calc = explain_fully_loaded_monthly(employee, overhead_types, exchange_ratio, annual_increase)
        lines.extend(calc.lines)
        monthly_cost += calc.value

    total_fte = sum(e.fte for e in employees)
    capacity = capacity_hours(employees, releasable_hours)

    lines.append(CalcLine(
        label="Team monthly cost",
        value=monthly_cost,
        formula="sum(fullyLoadedMonthly)",
        inputs={"employees": len(employees)},
    ))
    lines.append(CalcLine(
        label="Capacity hours",
        value=capacity,
        formula="dev_releasable_hours_per_month * sum(fte)",
        inputs={"dev_releasable_hours_per_month": releasable_hours, "totalFte": total_fte},
    ))

    if capacity == 0:
        raise CapacityError(
            "Cannot calculate cost per releaseable hour: capacity is zero "
            f"(total fte={total_fte}, dev_releasable_hours_per_month={releasable_hours})"
        )

    value = monthly_cost / capacity
    lines.append(CalcLine(
        label="Cost per releaseable hour",
        value=value,
        formula="monthlyCost / capacityHours",
        inputs={"monthlyCost": monthly_cost, "capacityHours": capacity},
    ))
    return Calculation(value=value, lines=lines)


def cost_per_releasable_hour(
    employees: List[EmployeeRecord],
    overhead_types: List[OverheadTypeRecord],
    settings: SettingsMap,
) -> Optional[float]:
    return explain_cost_per_releasable_hour(employees, overhead_types, settings).value


# =============================================================================
# QA / BA ADD-ONS
# =============================================================================

def explain_add_on_per_releasable_hour(
    team: List[EmployeeRecord],
    overhead_types: List[OverheadTypeRecord],
    settings: SettingsMap,
    ratio_key: str,
) -> Calculation:
    """
    addOn = ratio * sum(fullyLoadedMonthly) / standard_hours_per_month.

    An empty team contributes exactly 0.
    """
    if not team:
        return Calculation(value=0.0, lines=[
            CalcLine(
                label="No team members",
                value=0.0,
                formula="empty team contributes 0",
                inputs={"ratioKey": ratio_key},
            ),
        ])

    exchange_ratio = get_exchange_ratio(settings)
    annual_increase = _annual_increase(settings)
    standard_hours = _standard_hours(settings)
    ratio = get_setting(settings, ratio_key)

    lines: List[CalcLine] = []
    team_monthly = 0.0
    for employee in team:
        calc = explain_fully_loaded_monthly(employee, overhead_types, exchange_ratio, annual_increase)
        lines.extend(calc.lines)
        team_monthly += calc.value

    lines.append(CalcLine(
        label="Team monthly cost",
        value=team_monthly,
        formula="sum(fullyLoadedMonthly)",
        inputs={"employees": len(team)},
    ))

    if standard_hours == 0:
        raise CapacityError(f"Cannot calculate {ratio_key} add-on: standard_hours_per_month is zero")

    per_team_hour = team_monthly / standard_hours
    value = ratio * per_team_hour
    lines.append(CalcLine(
        label="Cost per team hour",
        value=per_team_hour,
        formula="teamMonthlyCost / standard_hours_per_month",
        inputs={"teamMonthlyCost": team_monthly, "standard_hours_per_month": standard_hours},
    ))
    lines.append(CalcLine(
        label="Add-on per dev releaseable hour",
        value=value,
        formula=f"{ratio_key} * costPerTeamHour",
        inputs={ratio_key: ratio, "costPerTeamHour": per_team_hour},
    ))
    return Calculation(value=value, lines=lines)


def add_on_per_releasable_hour(
    team: List[EmployeeRecord],
    overhead_types: List[OverheadTypeRecord],
    settings: SettingsMap,
    ratio_key: str,
) -> float:
    return explain_add_on_per_releasable_hour(team, overhead_types, settings, ratio_key).value


def qa_cost_per_dev_releasable_hour(qa_team, overhead_types, settings) -> float:
    return add_on_per_releasable_hour(qa_team, overhead_types, settings, "qa_ratio")


def ba_cost_per_dev_releasable_hour(ba_team, overhead_types, settings) -> float:
    return add_on_per_releasable_hour(ba_team, overhead_types, settings, "ba_ratio")


# =============================================================================
# RELEASEABLE COST / FINAL PRICE
# =============================================================================

def explain_releaseable_cost(
    primary_cost: Optional[float],
    qa_add_on: float,
    ba_add_on: float,
) -> Calculation:
    if primary_cost is None:
        return Calculation(value=None, lines=[
            CalcLine(label="Releaseable cost", value=None, formula="no primary cost", inputs={}),
        ])
    value = primary_cost + qa_add_on + ba_add_on
    return Calculation(value=value, lines=[
        CalcLine(
            label="Releaseable cost",
            value=value,
            formula="costPerRelHour + qaAddOn + baAddOn",
            inputs={"costPerRelHour": primary_cost, "qaAddOn": qa_add_on, "baAddOn": ba_add_on},
        ),
    ])


def releaseable_cost(primary_cost: Optional[float], qa_add_on: float, ba_add_on: float) -> Optional[float]:
    return explain_releaseable_cost(primary_cost, qa_add_on, ba_add_on).value


def explain_final_price(cost: Optional[float], settings: SettingsMap) -> Calculation:
    if cost is None:
        return Calculation(value=None, lines=[
            CalcLine(label="Final price", value=None, formula="no releaseable cost", inputs={}),
        ])
    margin = get_setting(settings, "margin")
    risk = get_setting(settings, "risk")
    value = cost * (1 + margin) * (1 + risk)
    return Calculation(value=value, lines=[
        CalcLine(
            label="Final price",
            value=value,
            formula="releaseableCost * (1 + margin) * (1 + risk)",
            inputs={"releaseableCost": cost, "margin": margin, "risk": risk},
        ),
    ])


def final_price(cost: Optional[float], settings: SettingsMap) -> Optional[float]:
    return explain_final_price(cost, settings).value


# =============================================================================
# PER-STACK DECOMPOSITION
# =============================================================================

def overhead_share_sum(employees: List[EmployeeRecord], overhead_type_id: int) -> float:
    """Sum of one overhead type's shares across the given employees."""
    total = 0.0
    for employee in employees:
        for alloc in employee.overhead_allocs:
            if alloc.overhead_type_id == overhead_type_id:
                total += alloc.share
    return total


def explain_overhead_per_releasable_hour(
    overhead_type: OverheadTypeRecord,
    employees: List[EmployeeRecord],
    settings: SettingsMap,
) -> Calculation:
    """convert(sum(share) * toMonthly(amount) / capacity); None when capacity is zero."""
    capacity = capacity_hours(employees, _releasable_hours(settings))
    share_sum = overhead_share_sum(employees, overhead_type.id)
    monthly = to_monthly(overhead_type.amount, overhead_type.period)
    if capacity == 0:
        return Calculation(value=None, lines=[
            CalcLine(label=f"{overhead_type.name} per hour", value=None, formula="capacity is zero",
                     inputs={"capacityHours": capacity}),
        ])
    value = convert_currency(share_sum * monthly / capacity, get_exchange_ratio(settings))
    return Calculation(value=value, lines=[
        CalcLine(
            label=f"{overhead_type.name} monthly",
            value=monthly,
            formula="toMonthly(amount, period)",
            inputs={"amount": overhead_type.amount, "period": overhead_type.period},
        ),
        CalcLine(
            label=f"{overhead_type.name} per hour",
            value=value,
            formula="convert(sum(share) * overheadMonthly / capacityHours)",
            inputs={"shareSum": share_sum, "overheadMonthly": monthly, "capacityHours": capacity},
        ),
    ])


def overhead_per_releasable_hour(overhead_type, employees, settings) -> Optional[float]:
    return explain_overhead_per_releasable_hour(overhead_type, employees, settings).value


def explain_raw_cost_per_releasable_hour(
    employees: List[EmployeeRecord],
    settings: SettingsMap,
) -> Calculation:
    """convert(sum(rawMonthly) / capacity); None when capacity is zero."""
    capacity = capacity_hours(employees, _releasable_hours(settings))
    if capacity == 0:
        return Calculation(value=None, lines=[
            CalcLine(label="Raw cost per hour", value=None, formula="capacity is zero",
                     inputs={"capacityHours": capacity}),
        ])
    annual_increase = _annual_increase(settings)
    lines: List[CalcLine] = []
    raw_total = 0.0
    for employee in employees:
        employee_raw = raw_monthly(employee, annual_increase)
        raw_total += employee_raw
        lines.append(CalcLine(
            label=f"{employee.name}: raw monthly",
            value=employee_raw,
            formula="adjustedGrossMonthly * (1 + oncostRate) + annualBenefits/12 + annualBonus/12",
            inputs={
                "adjustedGrossMonthly": adjusted_gross_monthly(employee, annual_increase),
                "oncostRate": employee.oncost_rate or 0.0,
                "annualBenefits": employee.annual_benefits or 0.0,
                "annualBonus": employee.annual_bonus or 0.0,
            },
        ))

    value = convert_currency(raw_total / capacity, get_exchange_ratio(settings))
    return Calculation(value=value, lines=lines + [
        CalcLine(
            label="Raw monthly cost",
            value=raw_total,
            formula="sum(rawMonthly)",
            inputs={"employees": len(employees), "annualIncrease": annual_increase},
        ),
        CalcLine(
            label="Raw cost per hour",
            value=value,
            formula="convert(rawMonthlyCost / capacityHours)",
            inputs={"rawMonthlyCost": raw_total, "capacityHours": capacity},
        ),
    ])


def raw_cost_per_releasable_hour(employees, settings) -> Optional[float]:
    return explain_raw_cost_per_releasable_hour(employees, settings).value


@dataclass
class AddOnDecomposition:
    """Global QA or BA add-on split into its raw part and per-overhead parts"""
    raw: float
    overheads: Dict[int, float] = field(default_factory=dict)
    total: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "raw": self.raw,
            "overheads": {str(k): v for k, v in self.overheads.items()},
            "total": self.total,
        }


def add_on_decomposition(
    team: List[EmployeeRecord],
    overhead_types: List[OverheadTypeRecord],
    settings: SettingsMap,
    ratio_key: str,
) -> AddOnDecomposition:
    """
    raw = ratio * sum(rawMonthly) / standardHours
    overhead(O) = ratio * toMonthly(O) * sum(share of O) / standardHours

    Components are display figures: an empty team or zero standard hours
    yields zeros instead of raising.
    """
    standard_hours = _standard_hours(settings)
    if not team or standard_hours == 0:
        return AddOnDecomposition(raw=0.0, overheads={t.id: 0.0 for t in overhead_types}, total=0.0)

    ratio = get_setting(settings, ratio_key)
    exchange_ratio = get_exchange_ratio(settings)
    annual_increase = _annual_increase(settings)

    raw_total = sum(raw_monthly(e, annual_increase) for e in team)
    raw = convert_currency(ratio * raw_total / standard_hours, exchange_ratio)
    overheads = {}
    for overhead_type in overhead_types:
        monthly = to_monthly(overhead_type.amount, overhead_type.period) * overhead_share_sum(team, overhead_type.id)
        overheads[overhead_type.id] = convert_currency(ratio * monthly / standard_hours, exchange_ratio)

    return AddOnDecomposition(raw=raw, overheads=overheads, total=raw + sum(overheads.values()))


@dataclass
class StackRow:
    """Decomposed hourly cost for one stack and category"""
    raw_cost: Optional[float]
    overheads: Dict[int, Optional[float]]
    total_overheads: float
    qa_add_on: Optional[float]
    ba_add_on: Optional[float]
    total_releaseable_cost: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "raw_cost": self.raw_cost,
            "overheads": {str(k): v for k, v in self.overheads.items()},
            "total_overheads": self.total_overheads,
            "qa_add_on": self.qa_add_on,
            "ba_add_on": self.ba_add_on,
            "total_releaseable_cost": self.total_releaseable_cost,
        }


def compute_stack_row(
    employees: List[EmployeeRecord],
    overhead_types: List[OverheadTypeRecord],
    settings: SettingsMap,
    qa_add_on: Optional[float] = None,
    ba_add_on: Optional[float] = None,
) -> Optional[StackRow]:
    """
    Row for one stack/category. Pass the global add-on totals for DEV rows;
    AGENTIC_AI rows leave them as None. Returns None when capacity is zero.
    """
    if capacity_hours(employees, _releasable_hours(settings)) == 0:
        return None

    raw_cost = raw_cost_per_releasable_hour(employees, settings)
    overheads = {t.id: overhead_per_releasable_hour(t, employees, settings) for t in overhead_types}
    total_overheads = sum(v or 0.0 for v in overheads.values())

    total = None
    if raw_cost is not None:
        total = raw_cost + total_overheads + (qa_add_on or 0.0) + (ba_add_on or 0.0)

    return StackRow(
        raw_cost=raw_cost,
        overheads=overheads,
        total_overheads=total_overheads,
        qa_add_on=qa_add_on,
        ba_add_on=ba_add_on,
        total_releaseable_cost=total,
    )
