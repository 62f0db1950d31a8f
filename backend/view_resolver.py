"""
View Override Resolver

Merges a pricing view's sparse overrides over the base dataset:

    effective(id) = override[id] if id in override else base[id]

Reads are side-effect free. Overrides are loaded once into a ViewOverrides
snapshot at the start of a resolution pass and never re-read mid-pass.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy.orm import Session, selectinload

from cost_engine import (
    AllocationShare, EmployeeRecord, OverheadTypeRecord, get_exchange_ratio,
)
from pricing_models import (
    Employee, EmployeeActiveOverride, OverheadAllocationOverride, OverheadType,
    OverheadTypeActiveOverride, Setting, SettingOverride,
)
from settings_registry import SETTING_DEFINITIONS, SettingsMap, build_settings_map

logger = logging.getLogger(__name__)


# =============================================================================
# OVERRIDE SNAPSHOT
# =============================================================================

@dataclass(frozen=True)
class ViewOverrides:
    """Immutable snapshot of one view's override rows"""
    view_id: Optional[int] = None
    employee_active: Dict[int, bool] = field(default_factory=dict)
    overhead_type_active: Dict[int, bool] = field(default_factory=dict)
    # key -> (value, value_type)
    settings: Dict[str, Tuple[str, str]] = field(default_factory=dict)
    # employee_id -> {overhead_type_id: share}
    allocation_shares: Dict[int, Dict[int, float]] = field(default_factory=dict)

    @classmethod
    def load(cls, db: Session, view_id: Optional[int]) -> "ViewOverrides":
        if view_id is None:
            return cls()

        allocation_shares: Dict[int, Dict[int, float]] = {}
        for row in db.query(OverheadAllocationOverride).filter(
            OverheadAllocationOverride.view_id == view_id
        ):
            allocation_shares.setdefault(row.employee_id, {})[row.overhead_type_id] = float(row.share)

        return cls(
            view_id=view_id,
            employee_active={
                row.employee_id: bool(row.is_active)
                for row in db.query(EmployeeActiveOverride).filter(EmployeeActiveOverride.view_id == view_id)
            },
            overhead_type_active={
                row.overhead_type_id: bool(row.is_active)
                for row in db.query(OverheadTypeActiveOverride).filter(
                    OverheadTypeActiveOverride.view_id == view_id
                )
            },
            settings={
                row.key: (row.value, row.value_type)
                for row in db.query(SettingOverride).filter(SettingOverride.view_id == view_id)
            },
            allocation_shares=allocation_shares,
        )


# =============================================================================
# PURE RESOLUTION
# =============================================================================

def resolve_active(base_active: bool, override: Optional[bool]) -> bool:
    return override if override is not None else base_active


def resolve_settings(
    global_rows: Iterable[Tuple[str, str, str]],
    overrides: ViewOverrides,
) -> SettingsMap:
    """Numeric settings map with view overrides taking precedence."""
    rows = list(global_rows)
    rows.extend((key, value, value_type) for key, (value, value_type) in overrides.settings.items())
    return build_settings_map(rows)


def resolve_allocations(
    employee: EmployeeRecord,
    employee_active: bool,
    active_type_ids: Set[int],
    overrides: ViewOverrides,
) -> List[AllocationShare]:
    """
    Effective allocations of one employee.

    Inactive employees have none. Rows for inactive overhead types are
    dropped, the override share replaces the base share, non-positive shares
    are dropped, and override-only rows are surfaced after the base rows.
    """
    if not employee_active:
        return []

    override_shares = overrides.allocation_shares.get(employee.id, {})
    effective: List[AllocationShare] = []
    base_type_ids = set()

    for alloc in employee.overhead_allocs:
        base_type_ids.add(alloc.overhead_type_id)
        if alloc.overhead_type_id not in active_type_ids:
            continue
        share = override_shares.get(alloc.overhead_type_id, alloc.share)
        if share > 0:
            effective.append(AllocationShare(overhead_type_id=alloc.overhead_type_id, share=share))

    for overhead_type_id in sorted(override_shares):
        if overhead_type_id in base_type_ids or overhead_type_id not in active_type_ids:
            continue
        share = override_shares[overhead_type_id]
        if share > 0:
            effective.append(AllocationShare(overhead_type_id=overhead_type_id, share=share))

    return effective


@dataclass
class DanglingAllocation:
    """A base allocation whose overhead type no longer exists"""
    employee_id: int
    employee_name: str
    overhead_type_id: int
    share: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "employee_id": self.employee_id,
            "employee_name": self.employee_name,
            "overhead_type_id": self.overhead_type_id,
            "share": self.share,
        }


@dataclass
class EffectiveDataset:
    """The base dataset as seen through one view (or no view)"""
    view_id: Optional[int]
    employees: List[EmployeeRecord]
    overhead_types: List[OverheadTypeRecord]
    settings: SettingsMap
    dangling_allocations: List[DanglingAllocation] = field(default_factory=list)

    @property
    def active_employees(self) -> List[EmployeeRecord]:
        return [e for e in self.employees if e.is_active]

    @property
    def inactive_employees(self) -> List[EmployeeRecord]:
        return [e for e in self.employees if not e.is_active]

    @property
    def active_overhead_types(self) -> List[OverheadTypeRecord]:
        return [t for t in self.overhead_types if t.is_active]

    @property
    def inactive_overhead_types(self) -> List[OverheadTypeRecord]:
        return [t for t in self.overhead_types if not t.is_active]

    @property
    def exchange_ratio(self) -> Optional[float]:
        return get_exchange_ratio(self.settings)


def resolve_dataset(
    employees: List[EmployeeRecord],
    overhead_types: List[OverheadTypeRecord],
    global_setting_rows: Iterable[Tuple[str, str, str]],
    overrides: ViewOverrides,
) -> EffectiveDataset:
    """Apply an override snapshot to plain base records."""
    effective_types = [
        OverheadTypeRecord(
            id=t.id,
            name=t.name,
            amount=t.amount,
            period=t.period,
            is_active=resolve_active(t.is_active, overrides.overhead_type_active.get(t.id)),
        )
        for t in overhead_types
    ]
    known_type_ids = {t.id for t in overhead_types}
    active_type_ids = {t.id for t in effective_types if t.is_active}

    dangling: List[DanglingAllocation] = []
    effective_employees: List[EmployeeRecord] = []
    for employee in employees:
        for alloc in employee.overhead_allocs:
            if alloc.overhead_type_id not in known_type_ids:
                dangling.append(DanglingAllocation(
                    employee_id=employee.id,
                    employee_name=employee.name,
                    overhead_type_id=alloc.overhead_type_id,
                    share=alloc.share,
                ))
        is_active = resolve_active(employee.is_active, overrides.employee_active.get(employee.id))
        allocs = resolve_allocations(employee, is_active, active_type_ids, overrides)
        effective_employees.append(employee.with_effective(is_active, allocs))

    if dangling:
        logger.warning(f"{len(dangling)} allocation(s) reference unknown overhead types")

    return EffectiveDataset(
        view_id=overrides.view_id,
        employees=effective_employees,
        overhead_types=effective_types,
        settings=resolve_settings(global_setting_rows, overrides),
        dangling_allocations=dangling,
    )


# =============================================================================
# DATABASE-BACKED RESOLVER
# =============================================================================

class ViewResolver:
    """Loads base rows and one view's overrides, then resolves them."""

    def __init__(self, db: Session):
        self.db = db

    def load_employees(self) -> List[EmployeeRecord]:
        rows = (
            self.db.query(Employee)
            .options(selectinload(Employee.overhead_allocs))
            .order_by(Employee.name, Employee.id)
            .all()
        )
        return [EmployeeRecord.from_model(row) for row in rows]

    def load_overhead_types(self) -> List[OverheadTypeRecord]:
        rows = self.db.query(OverheadType).order_by(OverheadType.name, OverheadType.id).all()
        return [OverheadTypeRecord.from_model(row) for row in rows]

    def load_global_setting_rows(self) -> List[Tuple[str, str, str]]:
        return [(s.key, s.value, s.value_type) for s in self.db.query(Setting).order_by(Setting.key).all()]

    def resolve(self, view_id: Optional[int] = None) -> EffectiveDataset:
        overrides = ViewOverrides.load(self.db, view_id)
        dataset = resolve_dataset(
            self.load_employees(),
            self.load_overhead_types(),
            self.load_global_setting_rows(),
            overrides,
        )
        logger.debug(
            f"Resolved view {view_id}: {len(dataset.active_employees)} active employees, "
            f"{len(dataset.active_overhead_types)} active overhead types"
        )
        return dataset

    def effective_settings(self, view_id: Optional[int] = None) -> SettingsMap:
        overrides = ViewOverrides.load(self.db, view_id)
        return resolve_settings(self.load_global_setting_rows(), overrides)

    def effective_setting_rows(self, view_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Per-key listing of global and effective values, marking overridden keys."""
        overrides = ViewOverrides.load(self.db, view_id)
        rows: List[Dict[str, Any]] = []
        seen = set()
        for setting in self.db.query(Setting).order_by(Setting.group, Setting.key).all():
            seen.add(setting.key)
            override = overrides.settings.get(setting.key)
            rows.append({
                "key": setting.key,
                "global_value": setting.value,
                "value": override[0] if override else setting.value,
                "value_type": override[1] if override else setting.value_type,
                "group": setting.group,
                "unit": setting.unit,
                "is_overridden": override is not None,
            })
        for key, (value, value_type) in sorted(overrides.settings.items()):
            if key in seen:
                continue
            definition = SETTING_DEFINITIONS.get(key)
            rows.append({
                "key": key,
                "global_value": None,
                "value": value,
                "value_type": value_type,
                "group": definition.group if definition else None,
                "unit": definition.unit if definition else None,
                "is_overridden": True,
            })
        return rows
