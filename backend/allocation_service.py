"""
Allocation Distributor

Distributes one overhead type over the effective-active employees:
equally, proportionally to adjusted gross pay, or by normalizing the current
shares to sum to 1. Base variants write base allocation rows; view variants
write only that view's override rows. Every batch is a single atomic write.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from cost_engine import EmployeeRecord, adjusted_gross_monthly
from outcomes import MutationResult, atomic, fail, mutation, ok
from pricing_models import (
    Employee, OverheadAllocation, OverheadAllocationOverride, OverheadType, PricingView,
)
from settings_registry import get_setting
from view_resolver import ViewOverrides, ViewResolver, resolve_active

logger = logging.getLogger(__name__)


class AllocationError(ValueError):
    """A distribution cannot be computed from the current data"""
    pass


# =============================================================================
# SHARE ALGORITHMS
# =============================================================================

def equal_shares(employee_ids: List[int]) -> Dict[int, float]:
    if not employee_ids:
        raise AllocationError("No active employees found")
    share = 1 / len(employee_ids)
    return {employee_id: share for employee_id in employee_ids}


def proportional_shares(employees: List[EmployeeRecord], annual_increase: float = 0.0) -> Dict[int, float]:
    """share(e) = adjustedGross(e) / sum(adjustedGross)"""
    if not employees:
        raise AllocationError("No active employees found")
    gross = {e.id: adjusted_gross_monthly(e, annual_increase) for e in employees}
    total = sum(gross.values())
    if total == 0:
        raise AllocationError("Total adjusted gross monthly is zero")
    return {employee_id: value / total for employee_id, value in gross.items()}


def normalized_shares(current: Dict[int, float]) -> Dict[int, float]:
    """Rescale shares so they sum to 1, keeping their proportions."""
    if not current:
        raise AllocationError("No active allocations found for this overhead type")
    total = sum(current.values())
    if total == 0:
        raise AllocationError("All shares are zero")
    return {employee_id: share / total for employee_id, share in current.items()}


# =============================================================================
# SERVICE
# =============================================================================

class AllocationService:
    """Applies the share algorithms to base rows or to a view's overrides."""

    def __init__(self, db: Session):
        self.db = db

    def _load_context(self, overhead_type_id: int, view_id: Optional[int]):
        """
        Returns (overrides, active employee rows, error). The overhead type
        must exist and be effectively active.

        The active check also applies to the base scope, which is stricter
        than the base allocate actions have historically been: distributing
        an inactive overhead type is refused everywhere, not only in views.
        """
        if view_id is not None and not self.db.query(PricingView).filter(PricingView.id == view_id).first():
            return None, [], "View not found"

        overhead_type = self.db.query(OverheadType).filter(OverheadType.id == overhead_type_id).first()
        if not overhead_type:
            return None, [], "Overhead type not found"

        overrides = ViewOverrides.load(self.db, view_id)
        type_active = resolve_active(overhead_type.is_active, overrides.overhead_type_active.get(overhead_type_id))
        if not type_active:
            if view_id is None:
                return None, [], "Overhead type is not active"
            return None, [], "Overhead type is not active in this view"

        employees = self.db.query(Employee).order_by(Employee.id).all()
        active = [
            e for e in employees
            if resolve_active(e.is_active, overrides.employee_active.get(e.id))
        ]
        return overrides, active, None

    def _write_shares(self, overhead_type_id: int, view_id: Optional[int], shares: Dict[int, float]) -> None:
        if view_id is None:
            model = OverheadAllocation
            existing = {
                row.employee_id: row
                for row in self.db.query(OverheadAllocation).filter(
                    OverheadAllocation.overhead_type_id == overhead_type_id,
                    OverheadAllocation.employee_id.in_(list(shares)),
                )
            }
        else:
            model = OverheadAllocationOverride
            existing = {
                row.employee_id: row
                for row in self.db.query(OverheadAllocationOverride).filter(
                    OverheadAllocationOverride.view_id == view_id,
                    OverheadAllocationOverride.overhead_type_id == overhead_type_id,
                    OverheadAllocationOverride.employee_id.in_(list(shares)),
                )
            }

        with atomic(self.db):
            for employee_id, share in shares.items():
                row = existing.get(employee_id)
                if row is not None:
                    row.share = share
                elif view_id is None:
                    self.db.add(model(employee_id=employee_id, overhead_type_id=overhead_type_id, share=share))
                else:
                    self.db.add(model(
                        view_id=view_id, employee_id=employee_id, overhead_type_id=overhead_type_id, share=share
                    ))

        scope = "base" if view_id is None else f"view {view_id}"
        logger.info(f"Wrote {len(shares)} {scope} allocations for overhead type {overhead_type_id}")

    def _apply(self, overhead_type_id: int, view_id: Optional[int], compute) -> MutationResult:
        overrides, active, error = self._load_context(overhead_type_id, view_id)
        if error:
            return fail(error)
        try:
            shares = compute(overrides, active)
        except AllocationError as e:
            message = str(e)
            if view_id is not None and message == "No active employees found":
                message = "No active employees found in this view"
            return fail(message)
        self._write_shares(overhead_type_id, view_id, shares)
        return ok({str(k): v for k, v in shares.items()})

    @mutation("allocate equally")
    def allocate_equally(self, overhead_type_id: int, view_id: Optional[int] = None) -> MutationResult:
        return self._apply(
            overhead_type_id, view_id,
            lambda overrides, active: equal_shares([e.id for e in active]),
        )

    @mutation("allocate proportional to gross")
    def allocate_proportional_to_gross(self, overhead_type_id: int, view_id: Optional[int] = None) -> MutationResult:
        def compute(overrides, active):
            settings = ViewResolver(self.db).effective_settings(view_id)
            annual_increase = get_setting(settings, "annual_increase")
            records = [EmployeeRecord.from_model(e) for e in active]
            return proportional_shares(records, annual_increase)

        return self._apply(overhead_type_id, view_id, compute)

    @mutation("normalize allocations")
    def normalize_to_100_percent(self, overhead_type_id: int, view_id: Optional[int] = None) -> MutationResult:
        """
        Base: rescales the existing base rows of active employees.
        View: rescales the effective shares (override else base) and writes
        every one of them as an override row.
        """
        def compute(overrides, active):
            active_ids = [e.id for e in active]
            current: Dict[int, float] = {}
            for row in self.db.query(OverheadAllocation).filter(
                OverheadAllocation.overhead_type_id == overhead_type_id,
                OverheadAllocation.employee_id.in_(active_ids),
            ).order_by(OverheadAllocation.employee_id):
                current[row.employee_id] = float(row.share)
            if view_id is not None:
                for employee_id in active_ids:
                    override = overrides.allocation_shares.get(employee_id, {}).get(overhead_type_id)
                    if override is not None:
                        current[employee_id] = override
            return normalized_shares(current)

        return self._apply(overhead_type_id, view_id, compute)
