"""
Pricing View Service

Administration of pricing views and the "set override" mutations.
Override rows are kept sparse: a write that would make an override equal
to its base value deletes the override instead of storing it.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from outcomes import MutationResult, atomic, fail, mutation, ok
from pricing_models import (
    Employee, EmployeeActiveOverride, OverheadAllocation, OverheadAllocationOverride,
    OverheadType, OverheadTypeActiveOverride, PricingView, Setting, SettingOverride,
    SettingValueType,
)
from settings_registry import SETTING_DEFINITIONS, parsed_values_equal, validate_setting_value

logger = logging.getLogger(__name__)

VIEW_NOT_FOUND = "View not found"


class PricingViewService:
    """Views CRUD and sparse override writes."""

    def __init__(self, db: Session):
        self.db = db

    # ═══════════════════════════════════════════════════════════════════════════
    # VIEWS
    # ═══════════════════════════════════════════════════════════════════════════

    def list_views(self) -> List[PricingView]:
        return self.db.query(PricingView).order_by(PricingView.created_at.desc(), PricingView.id.desc()).all()

    def get_view(self, view_id: int) -> Optional[PricingView]:
        return self.db.query(PricingView).filter(PricingView.id == view_id).first()

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        query = self.db.query(PricingView).filter(PricingView.name == name)
        if exclude_id is not None:
            query = query.filter(PricingView.id != exclude_id)
        return query.first() is not None

    @mutation("create view")
    def create_view(self, name: str, description: Optional[str] = None) -> MutationResult:
        name = (name or "").strip()
        if not name:
            return fail("View name is required")
        if self._name_taken(name):
            return fail("A view with this name already exists")

        view = PricingView(name=name, description=description)
        with atomic(self.db):
            self.db.add(view)
        self.db.refresh(view)
        logger.info(f"Created pricing view {view.id} ({name})")
        return ok(view.to_dict())

    @mutation("rename view")
    def rename_view(self, view_id: int, name: str) -> MutationResult:
        view = self.get_view(view_id)
        if not view:
            return fail(VIEW_NOT_FOUND)
        name = (name or "").strip()
        if not name:
            return fail("View name is required")
        if self._name_taken(name, exclude_id=view_id):
            return fail("A view with this name already exists")

        with atomic(self.db):
            view.name = name
        logger.info(f"Renamed pricing view {view_id} to {name}")
        return ok(view.to_dict())

    @mutation("delete view")
    def delete_view(self, view_id: int) -> MutationResult:
        view = self.get_view(view_id)
        if not view:
            return fail(VIEW_NOT_FOUND)
        with atomic(self.db):
            self.db.delete(view)
        logger.info(f"Deleted pricing view {view_id} and its overrides")
        return ok()

    def get_view_summary(self, view_id: int) -> Optional[Dict[str, Any]]:
        view = self.get_view(view_id)
        if not view:
            return None

        def count(model) -> int:
            return self.db.query(model).filter(model.view_id == view_id).count()

        return {
            **view.to_dict(),
            "employee_overrides": count(EmployeeActiveOverride),
            "overhead_type_overrides": count(OverheadTypeActiveOverride),
            "setting_overrides": count(SettingOverride),
            "allocation_overrides": count(OverheadAllocationOverride),
        }

    # ═══════════════════════════════════════════════════════════════════════════
    # ACTIVE-FLAG OVERRIDES
    # ═══════════════════════════════════════════════════════════════════════════

    @mutation("set employee override")
    def set_employee_active_override(self, view_id: int, employee_id: int, is_active: bool) -> MutationResult:
        if not self.get_view(view_id):
            return fail(VIEW_NOT_FOUND)
        employee = self.db.query(Employee).filter(Employee.id == employee_id).first()
        if not employee:
            return fail("Employee not found")

        existing = self.db.query(EmployeeActiveOverride).filter(
            EmployeeActiveOverride.view_id == view_id,
            EmployeeActiveOverride.employee_id == employee_id,
        ).first()

        with atomic(self.db):
            if is_active == employee.is_active:
                if existing:
                    self.db.delete(existing)
            elif existing:
                existing.is_active = is_active
            else:
                self.db.add(EmployeeActiveOverride(view_id=view_id, employee_id=employee_id, is_active=is_active))
        logger.info(f"View {view_id}: employee {employee_id} effective active={is_active}")
        return ok()

    @mutation("set overhead type override")
    def set_overhead_type_active_override(
        self, view_id: int, overhead_type_id: int, is_active: bool
    ) -> MutationResult:
        if not self.get_view(view_id):
            return fail(VIEW_NOT_FOUND)
        overhead_type = self.db.query(OverheadType).filter(OverheadType.id == overhead_type_id).first()
        if not overhead_type:
            return fail("Overhead type not found")

        existing = self.db.query(OverheadTypeActiveOverride).filter(
            OverheadTypeActiveOverride.view_id == view_id,
            OverheadTypeActiveOverride.overhead_type_id == overhead_type_id,
        ).first()

        with atomic(self.db):
            if is_active == overhead_type.is_active:
                if existing:
                    self.db.delete(existing)
            elif existing:
                existing.is_active = is_active
            else:
                self.db.add(OverheadTypeActiveOverride(
                    view_id=view_id, overhead_type_id=overhead_type_id, is_active=is_active
                ))
        logger.info(f"View {view_id}: overhead type {overhead_type_id} effective active={is_active}")
        return ok()

    # ═══════════════════════════════════════════════════════════════════════════
    # SETTING OVERRIDES
    # ═══════════════════════════════════════════════════════════════════════════

    @mutation("set setting override")
    def set_setting_override(
        self,
        view_id: int,
        key: str,
        value: Optional[str],
        value_type: Optional[str] = None,
        group: Optional[str] = None,
        unit: Optional[str] = None,
    ) -> MutationResult:
        """
        value=None deletes the override. A value that parses equal to the
        global value (with the requested kind) also deletes it.
        """
        if not self.get_view(view_id):
            return fail(VIEW_NOT_FOUND)

        existing = self.db.query(SettingOverride).filter(
            SettingOverride.view_id == view_id, SettingOverride.key == key
        ).first()

        if value is None:
            with atomic(self.db):
                if existing:
                    self.db.delete(existing)
            logger.info(f"View {view_id}: setting {key} reverted to global")
            return ok()

        global_setting = self.db.query(Setting).filter(Setting.key == key).first()
        definition = SETTING_DEFINITIONS.get(key)
        if value_type is None:
            if global_setting:
                value_type = global_setting.value_type
            elif definition:
                value_type = definition.value_type.value
            else:
                value_type = SettingValueType.FLOAT.value

        error = validate_setting_value(value, value_type)
        if error:
            return fail(error)

        if global_setting and parsed_values_equal(value, global_setting.value, value_type):
            with atomic(self.db):
                if existing:
                    self.db.delete(existing)
            logger.info(f"View {view_id}: setting {key} equals global, override removed")
            return ok()

        with atomic(self.db):
            if existing:
                existing.value = value
                existing.value_type = value_type
                existing.group = group
                existing.unit = unit
            else:
                self.db.add(SettingOverride(
                    view_id=view_id, key=key, value=value, value_type=value_type, group=group, unit=unit
                ))
        logger.info(f"View {view_id}: setting {key} overridden to {value!r}")
        return ok()

    # ═══════════════════════════════════════════════════════════════════════════
    # ALLOCATION OVERRIDES
    # ═══════════════════════════════════════════════════════════════════════════

    @mutation("set allocation override")
    def set_allocation_override(
        self,
        view_id: int,
        employee_id: int,
        overhead_type_id: int,
        share: Optional[float],
    ) -> MutationResult:
        if share is not None and (share < 0 or share > 1):
            return fail("Share must be between 0 and 1")
        if not self.get_view(view_id):
            return fail(VIEW_NOT_FOUND)
        if not self.db.query(Employee).filter(Employee.id == employee_id).first():
            return fail("Employee not found")
        if not self.db.query(OverheadType).filter(OverheadType.id == overhead_type_id).first():
            return fail("Overhead type not found")

        existing = self.db.query(OverheadAllocationOverride).filter(
            OverheadAllocationOverride.view_id == view_id,
            OverheadAllocationOverride.employee_id == employee_id,
            OverheadAllocationOverride.overhead_type_id == overhead_type_id,
        ).first()
        base = self.db.query(OverheadAllocation).filter(
            OverheadAllocation.employee_id == employee_id,
            OverheadAllocation.overhead_type_id == overhead_type_id,
        ).first()

        revert = share is None or (base is not None and share == base.share)
        with atomic(self.db):
            if revert:
                if existing:
                    self.db.delete(existing)
            elif existing:
                existing.share = share
            else:
                self.db.add(OverheadAllocationOverride(
                    view_id=view_id, employee_id=employee_id, overhead_type_id=overhead_type_id, share=share
                ))

        if revert:
            logger.info(f"View {view_id}: allocation ({employee_id}, {overhead_type_id}) reverted to base")
        else:
            logger.info(f"View {view_id}: allocation ({employee_id}, {overhead_type_id}) overridden to {share}")
        return ok()
