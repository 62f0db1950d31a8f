"""
Base Dataset Administration

Create/update operations on the base dataset (tech stacks, employees,
overhead types, base allocations, global settings). Validation failures are
returned as MutationResult errors before anything is written.
"""

import logging
import math
from datetime import date
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from outcomes import MutationResult, atomic, fail, mutation, ok
from pricing_models import (
    Employee, EmployeeCategory, OverheadAllocation, OverheadPeriod, OverheadType, Setting,
    SettingValueType, TechStack,
)
from settings_registry import CORE_DEFAULT_KEYS, SETTING_DEFINITIONS, validate_setting_value

logger = logging.getLogger(__name__)

_CATEGORIES = {c.value for c in EmployeeCategory}
_PERIODS = {p.value for p in OverheadPeriod}


def _is_non_negative(value: Optional[float]) -> bool:
    return value is None or (math.isfinite(value) and value >= 0)


class PricingAdminService:
    def __init__(self, db: Session):
        self.db = db

    # ═══════════════════════════════════════════════════════════════════════════
    # TECH STACKS
    # ═══════════════════════════════════════════════════════════════════════════

    def list_tech_stacks(self):
        return self.db.query(TechStack).order_by(TechStack.name).all()

    @mutation("create tech stack")
    def create_tech_stack(self, name: str) -> MutationResult:
        name = (name or "").strip()
        if not name:
            return fail("Name is required")
        if self.db.query(TechStack).filter(TechStack.name == name).first():
            return fail("A tech stack with this name already exists")
        stack = TechStack(name=name)
        with atomic(self.db):
            self.db.add(stack)
        self.db.refresh(stack)
        logger.info(f"Created tech stack {stack.id} ({name})")
        return ok(stack.to_dict())

    @mutation("delete tech stack")
    def delete_tech_stack(self, stack_id: int) -> MutationResult:
        stack = self.db.query(TechStack).filter(TechStack.id == stack_id).first()
        if not stack:
            return fail("Tech stack not found")
        with atomic(self.db):
            # employees fall back to "unassigned"
            for employee in stack.employees:
                employee.tech_stack_id = None
            self.db.delete(stack)
        logger.info(f"Deleted tech stack {stack_id}")
        return ok()

    # ═══════════════════════════════════════════════════════════════════════════
    # EMPLOYEES
    # ═══════════════════════════════════════════════════════════════════════════

    def _validate_employee(self, data: Dict[str, Any]) -> Optional[str]:
        if not (data.get("name") or "").strip():
            return "Name is required"
        if data.get("category") not in _CATEGORIES:
            return "Valid category is required"
        if data.get("gross_monthly") is None or data.get("net_monthly") is None:
            return "Gross and net monthly are required"
        for key in ("gross_monthly", "net_monthly", "annual_benefits", "annual_bonus", "oncost_rate"):
            if not _is_non_negative(data.get(key)):
                return f"{key} must be a non-negative number"
        if not _is_non_negative(data.get("fte", 1.0)):
            return "fte must be a non-negative number"
        stack_id = data.get("tech_stack_id")
        if stack_id is not None and not self.db.query(TechStack).filter(TechStack.id == stack_id).first():
            return "Invalid tech stack selected"
        return None

    @mutation("create employee")
    def create_employee(
        self,
        name: str,
        category: str,
        gross_monthly: float,
        net_monthly: float,
        tech_stack_id: Optional[int] = None,
        oncost_rate: Optional[float] = None,
        annual_benefits: Optional[float] = None,
        annual_bonus: Optional[float] = None,
        fte: float = 1.0,
        is_active: bool = True,
        hiring_date: Optional[date] = None,
    ) -> MutationResult:
        data = dict(
            name=name, category=category, gross_monthly=gross_monthly, net_monthly=net_monthly,
            tech_stack_id=tech_stack_id, oncost_rate=oncost_rate, annual_benefits=annual_benefits,
            annual_bonus=annual_bonus, fte=fte, is_active=is_active, hiring_date=hiring_date,
        )
        error = self._validate_employee(data)
        if error:
            return fail(error)
        data["name"] = name.strip()
        employee = Employee(**data)
        with atomic(self.db):
            self.db.add(employee)
        self.db.refresh(employee)
        logger.info(f"Created employee {employee.id} ({employee.category})")
        return ok(employee.to_dict())

    @mutation("update employee")
    def update_employee(self, employee_id: int, **changes) -> MutationResult:
        employee = self.db.query(Employee).filter(Employee.id == employee_id).first()
        if not employee:
            return fail("Employee not found")
        data = employee.to_dict()
        data["hiring_date"] = employee.hiring_date
        data.update({k: v for k, v in changes.items() if k in data and k != "id"})
        error = self._validate_employee(data)
        if error:
            return fail(error)
        with atomic(self.db):
            for key, value in data.items():
                if key == "id":
                    continue
                setattr(employee, key, value.strip() if key == "name" else value)
        logger.info(f"Updated employee {employee_id}")
        return ok(employee.to_dict())

    @mutation("update employee status")
    def set_employee_active(self, employee_id: int, is_active: bool) -> MutationResult:
        employee = self.db.query(Employee).filter(Employee.id == employee_id).first()
        if not employee:
            return fail("Employee not found")
        with atomic(self.db):
            employee.is_active = is_active
        logger.info(f"Employee {employee_id} base active={is_active}")
        return ok()

    @mutation("delete employee")
    def delete_employee(self, employee_id: int) -> MutationResult:
        employee = self.db.query(Employee).filter(Employee.id == employee_id).first()
        if not employee:
            return fail("Employee not found")
        with atomic(self.db):
            self.db.delete(employee)
        logger.info(f"Deleted employee {employee_id}")
        return ok()

    # ═══════════════════════════════════════════════════════════════════════════
    # OVERHEAD TYPES & BASE ALLOCATIONS
    # ═══════════════════════════════════════════════════════════════════════════

    @staticmethod
    def _validate_overhead_type(name: str, amount: Optional[float], period: str) -> Optional[str]:
        if not (name or "").strip() or amount is None or not period:
            return "Name, amount, and period are required"
        if period not in _PERIODS:
            return "Invalid period"
        if not math.isfinite(amount) or amount <= 0:
            return "Amount must be greater than zero"
        return None

    @mutation("create overhead type")
    def create_overhead_type(self, name: str, amount: float, period: str, is_active: bool = True) -> MutationResult:
        error = self._validate_overhead_type(name, amount, period)
        if error:
            return fail(error)
        overhead_type = OverheadType(name=name.strip(), amount=amount, period=period, is_active=is_active)
        with atomic(self.db):
            self.db.add(overhead_type)
        self.db.refresh(overhead_type)
        logger.info(f"Created overhead type {overhead_type.id} ({overhead_type.name})")
        return ok(overhead_type.to_dict())

    @mutation("update overhead type")
    def update_overhead_type(
        self, overhead_type_id: int, name: str, amount: float, period: str, is_active: bool = True
    ) -> MutationResult:
        overhead_type = self.db.query(OverheadType).filter(OverheadType.id == overhead_type_id).first()
        if not overhead_type:
            return fail("Overhead type not found")
        error = self._validate_overhead_type(name, amount, period)
        if error:
            return fail(error)
        with atomic(self.db):
            overhead_type.name = name.strip()
            overhead_type.amount = amount
            overhead_type.period = period
            overhead_type.is_active = is_active
        return ok(overhead_type.to_dict())

    @mutation("update overhead type status")
    def set_overhead_type_active(self, overhead_type_id: int, is_active: bool) -> MutationResult:
        overhead_type = self.db.query(OverheadType).filter(OverheadType.id == overhead_type_id).first()
        if not overhead_type:
            return fail("Overhead type not found")
        with atomic(self.db):
            overhead_type.is_active = is_active
        logger.info(f"Overhead type {overhead_type_id} base active={is_active}")
        return ok()

    @mutation("delete overhead type")
    def delete_overhead_type(self, overhead_type_id: int) -> MutationResult:
        overhead_type = self.db.query(OverheadType).filter(OverheadType.id == overhead_type_id).first()
        if not overhead_type:
            return fail("Overhead type not found")
        with atomic(self.db):
            self.db.delete(overhead_type)
        logger.info(f"Deleted overhead type {overhead_type_id} and its allocations")
        return ok()

    @mutation("update overhead allocation")
    def update_allocation(self, employee_id: int, overhead_type_id: int, share: Optional[float]) -> MutationResult:
        if share is None:
            return fail("Share is required")
        if share < 0 or share > 1:
            return fail("Share must be between 0 and 1")
        if not self.db.query(Employee).filter(Employee.id == employee_id).first():
            return fail("Employee not found")
        if not self.db.query(OverheadType).filter(OverheadType.id == overhead_type_id).first():
            return fail("Overhead type not found")

        row = self.db.query(OverheadAllocation).filter(
            OverheadAllocation.employee_id == employee_id,
            OverheadAllocation.overhead_type_id == overhead_type_id,
        ).first()
        with atomic(self.db):
            if row:
                row.share = share
            else:
                self.db.add(OverheadAllocation(employee_id=employee_id, overhead_type_id=overhead_type_id, share=share))
        return ok()

    # ═══════════════════════════════════════════════════════════════════════════
    # SETTINGS
    # ═══════════════════════════════════════════════════════════════════════════

    def list_settings(self):
        return self.db.query(Setting).order_by(Setting.group, Setting.key).all()

    @mutation("create setting")
    def create_setting(
        self, key: str, value: str, value_type: str, group: Optional[str] = None, unit: Optional[str] = None
    ) -> MutationResult:
        key = (key or "").strip()
        if not key or value is None or not value_type:
            return fail("Key, value, and type are required")
        error = validate_setting_value(value, value_type)
        if error:
            return fail(error)
        if self.db.query(Setting).filter(Setting.key == key).first():
            return fail("Setting with this key already exists")

        setting = Setting(key=key, value=value, value_type=value_type, group=group or "general", unit=unit)
        with atomic(self.db):
            self.db.add(setting)
        self.db.refresh(setting)
        logger.info(f"Created setting {key}={value!r}")
        return ok(setting.to_dict())

    @mutation("update setting")
    def update_setting(
        self, setting_id: int, value: str, value_type: Optional[str] = None,
        group: Optional[str] = None, unit: Optional[str] = None,
    ) -> MutationResult:
        setting = self.db.query(Setting).filter(Setting.id == setting_id).first()
        if not setting:
            return fail("Setting not found")
        value_type = value_type or setting.value_type
        error = validate_setting_value(value, value_type)
        if error:
            return fail(error)
        with atomic(self.db):
            setting.value = value
            setting.value_type = value_type
            if group is not None:
                setting.group = group
            if unit is not None:
                setting.unit = unit
        logger.info(f"Updated setting {setting.key}={value!r}")
        return ok(setting.to_dict())

    @mutation("delete setting")
    def delete_setting(self, setting_id: int) -> MutationResult:
        setting = self.db.query(Setting).filter(Setting.id == setting_id).first()
        if not setting:
            return fail("Setting not found")
        key = setting.key
        with atomic(self.db):
            self.db.delete(setting)
        logger.info(f"Deleted setting {key}")
        return ok()

    @mutation("reset core defaults")
    def reset_core_defaults(self) -> MutationResult:
        """Upsert the core capacity/ratio settings to their documented defaults in one batch."""
        existing = {
            s.key: s for s in self.db.query(Setting).filter(Setting.key.in_(CORE_DEFAULT_KEYS))
        }
        with atomic(self.db):
            for key in CORE_DEFAULT_KEYS:
                definition = SETTING_DEFINITIONS[key]
                value = f"{definition.default:g}"
                if key in existing:
                    existing[key].value = value
                else:
                    self.db.add(Setting(
                        key=key,
                        value=value,
                        value_type=SettingValueType.FLOAT.value,
                        group=definition.group,
                        unit=definition.unit,
                    ))
        logger.info("Reset core settings to defaults")
        return ok()
