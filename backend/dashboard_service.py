"""
Dashboard Service

Read-only figures for the pricing dashboard of one view: cost totals,
allocation diagnostics per overhead type, the inactive-employee drilldown
and settings health.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

import pandas as pd
from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from cost_engine import (
    EmployeeRecord, OverheadTypeRecord, convert_currency, currency_label, fully_loaded_monthly,
    to_monthly,
)
from pricing_models import EmployeeCategory
from settings_registry import (
    ALLOCATION_SUM_MAX, ALLOCATION_SUM_MIN, find_missing_settings, get_setting,
)
from view_resolver import EffectiveDataset, ViewResolver

logger = logging.getLogger(__name__)


def is_allocation_valid(total: float) -> bool:
    return ALLOCATION_SUM_MIN <= total <= ALLOCATION_SUM_MAX


def format_tenure_since(hiring_date: date, now: Optional[date] = None) -> str:
    """
    "X years Y months" since hiring, pluralised. A month only counts once
    its day-of-month is reached; future dates give "0 months".
    """
    now = now or date.today()
    if hiring_date > now:
        return "0 months"

    delta = relativedelta(now, hiring_date)
    years, months = delta.years, delta.months
    year_text = "year" if years == 1 else "years"
    month_text = "month" if months == 1 else "months"

    if years == 0 and months == 0:
        return "0 months"
    if years == 0:
        return f"{months} {month_text}"
    if months == 0:
        return f"{years} {year_text}"
    return f"{years} {year_text} {months} {month_text}"


# =============================================================================
# ALLOCATION DIAGNOSTICS
# =============================================================================

@dataclass
class AllocationDiagnostic:
    overhead_type_id: int
    overhead_type_name: str
    allocation_sum: float
    missing_count: int
    is_valid: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overhead_type_id": self.overhead_type_id,
            "overhead_type_name": self.overhead_type_name,
            "allocation_sum": self.allocation_sum,
            "missing_count": self.missing_count,
            "is_valid": self.is_valid,
        }


def allocation_matrix(
    employees: List[EmployeeRecord],
    overhead_types: List[OverheadTypeRecord],
) -> pd.DataFrame:
    """Employee x overhead type matrix of effective shares (0 where absent)."""
    employee_ids = [e.id for e in employees]
    type_ids = [t.id for t in overhead_types]
    type_id_set = set(type_ids)

    rows = [
        {"employee_id": e.id, "overhead_type_id": a.overhead_type_id, "share": a.share}
        for e in employees
        for a in e.overhead_allocs
        if a.overhead_type_id in type_id_set
    ]
    if not rows:
        return pd.DataFrame(0.0, index=employee_ids, columns=type_ids)

    df = pd.DataFrame(rows)
    matrix = df.pivot_table(
        index="employee_id", columns="overhead_type_id", values="share", aggfunc="sum", fill_value=0.0
    )
    return matrix.reindex(index=employee_ids, columns=type_ids, fill_value=0.0).fillna(0.0)


def allocation_diagnostics(
    employees: List[EmployeeRecord],
    overhead_types: List[OverheadTypeRecord],
) -> List[AllocationDiagnostic]:
    """Share sum and missing-allocation count per overhead type over the given employees."""
    matrix = allocation_matrix(employees, overhead_types)
    diagnostics = []
    for overhead_type in overhead_types:
        column = matrix[overhead_type.id] if overhead_type.id in matrix.columns else pd.Series(dtype=float)
        total = float(column.sum())
        diagnostics.append(AllocationDiagnostic(
            overhead_type_id=overhead_type.id,
            overhead_type_name=overhead_type.name,
            allocation_sum=total,
            missing_count=int((column <= 0).sum()),
            is_valid=is_allocation_valid(total),
        ))
    return diagnostics


# =============================================================================
# TOTALS
# =============================================================================

def total_monthly_cost(
    employees: List[EmployeeRecord],
    overhead_types: List[OverheadTypeRecord],
    exchange_ratio: Optional[float],
    annual_increase: float = 0.0,
) -> float:
    return sum(fully_loaded_monthly(e, overhead_types, exchange_ratio, annual_increase) for e in employees)


def total_overhead_monthly(overhead_types: List[OverheadTypeRecord], exchange_ratio: Optional[float]) -> float:
    return convert_currency(sum(to_monthly(t.amount, t.period) for t in overhead_types), exchange_ratio)


def inactive_employee_rows(dataset: EffectiveDataset, now: Optional[date] = None) -> List[Dict[str, Any]]:
    """Drilldown rows for effective-inactive employees, ordered by name."""
    now = now or date.today()
    ratio = dataset.exchange_ratio
    return [
        {
            "id": e.id,
            "name": e.name,
            "gross_monthly": convert_currency(e.gross_monthly, ratio),
            "tenure_text": format_tenure_since(e.hiring_date, now) if e.hiring_date else None,
        }
        for e in sorted(dataset.inactive_employees, key=lambda e: e.name)
    ]


class DashboardService:
    def __init__(self, db: Session):
        self.db = db

    def get_diagnostics(self, view_id: Optional[int] = None) -> Dict[str, Any]:
        dataset = ViewResolver(self.db).resolve(view_id)
        return self._diagnostics(dataset)

    def _diagnostics(self, dataset: EffectiveDataset) -> Dict[str, Any]:
        diagnostics = allocation_diagnostics(dataset.active_employees, dataset.active_overhead_types)
        invalid = [d for d in diagnostics if not d.is_valid]
        if invalid:
            logger.debug(f"View {dataset.view_id}: {len(invalid)} overhead type(s) not allocated to 100%")
        return {
            "view_id": dataset.view_id,
            "allocations": [d.to_dict() for d in diagnostics],
            "dangling_allocations": [d.to_dict() for d in dataset.dangling_allocations],
            "missing_settings": find_missing_settings(dataset.settings),
        }

    def get_dashboard(self, view_id: Optional[int] = None, now: Optional[date] = None) -> Dict[str, Any]:
        dataset = ViewResolver(self.db).resolve(view_id)
        ratio = dataset.exchange_ratio
        annual_increase = get_setting(dataset.settings, "annual_increase")
        overhead_types = dataset.active_overhead_types

        by_category = {}
        for category in EmployeeCategory:
            members = [e for e in dataset.active_employees if e.category == category.value]
            by_category[category.value] = {
                "count": len(members),
                "monthly_cost": total_monthly_cost(members, overhead_types, ratio, annual_increase),
            }

        active_cost = sum(c["monthly_cost"] for c in by_category.values())
        inactive_cost = total_monthly_cost(dataset.inactive_employees, overhead_types, ratio, annual_increase)

        return {
            **self._diagnostics(dataset),
            "currency": currency_label(ratio),
            "total_monthly_cost": active_cost,
            "total_overhead_monthly": total_overhead_monthly(overhead_types, ratio),
            "total_inactive_monthly_cost": inactive_cost,
            "by_category": by_category,
            "active_employee_count": len(dataset.active_employees),
            "inactive_employee_count": len(dataset.inactive_employees),
            "inactive_overhead_type_count": len(dataset.inactive_overhead_types),
            "inactive_employees": inactive_employee_rows(dataset, now),
        }
