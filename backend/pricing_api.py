"""
Pricing API

Endpoints for pricing views and their overrides, allocation distribution,
base dataset administration, and the computed pricing results.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from admin_service import PricingAdminService
from allocation_service import AllocationService
from dashboard_service import DashboardService
from database import get_db
from outcomes import MutationResult
from pricing_models import TechStack
from pricing_orchestrator import build_pricing_report
from rate_engine import PricingComputationError
from view_resolver import ViewResolver
from view_service import PricingViewService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pricing", tags=["Pricing"])


# ═══════════════════════════════════════════════════════════════════════════════
# SCHEMAS
# ═══════════════════════════════════════════════════════════════════════════════

class ViewCreate(BaseModel):
    name: str
    description: Optional[str] = None


class ViewRename(BaseModel):
    name: str


class ActiveFlagUpdate(BaseModel):
    is_active: bool


class SettingOverrideUpdate(BaseModel):
    """value=None reverts the key to its global value."""
    value: Optional[str] = None
    value_type: Optional[str] = None
    group: Optional[str] = None
    unit: Optional[str] = None


class AllocationShareUpdate(BaseModel):
    employee_id: int
    overhead_type_id: int
    share: Optional[float] = None


class AllocateRequest(BaseModel):
    strategy: str = Field("equal", pattern="^(equal|proportional|normalize)$")
    view_id: Optional[int] = None


class TechStackCreate(BaseModel):
    name: str


class EmployeeCreate(BaseModel):
    name: str
    category: str
    gross_monthly: float
    net_monthly: float
    tech_stack_id: Optional[int] = None
    oncost_rate: Optional[float] = None
    annual_benefits: Optional[float] = None
    annual_bonus: Optional[float] = None
    fte: float = 1.0
    is_active: bool = True
    hiring_date: Optional[date] = None


class EmployeeUpdate(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    gross_monthly: Optional[float] = None
    net_monthly: Optional[float] = None
    tech_stack_id: Optional[int] = None
    oncost_rate: Optional[float] = None
    annual_benefits: Optional[float] = None
    annual_bonus: Optional[float] = None
    fte: Optional[float] = None
    hiring_date: Optional[date] = None


class OverheadTypeCreate(BaseModel):
    name: str
    amount: float
    period: str = "monthly"
    is_active: bool = True


class SettingCreate(BaseModel):
    key: str
    value: str
    value_type: str = "float"
    group: Optional[str] = None
    unit: Optional[str] = None


class SettingUpdate(BaseModel):
    value: str
    value_type: Optional[str] = None
    group: Optional[str] = None
    unit: Optional[str] = None


def _respond(result: MutationResult) -> dict:
    if result.success:
        return result.to_dict()
    status_code = 404 if result.is_not_found else 400
    raise HTTPException(status_code=status_code, detail=result.error)


def _require_view(db: Session, view_id: Optional[int]) -> None:
    if view_id is not None and not PricingViewService(db).get_view(view_id):
        raise HTTPException(status_code=404, detail="View not found")


# ═══════════════════════════════════════════════════════════════════════════════
# VIEWS
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/views")
def list_views(db: Session = Depends(get_db)):
    return [view.to_dict() for view in PricingViewService(db).list_views()]


@router.post("/views")
def create_view(data: ViewCreate, db: Session = Depends(get_db)):
    return _respond(PricingViewService(db).create_view(data.name, data.description))


@router.get("/views/{view_id}")
def get_view(view_id: int, db: Session = Depends(get_db)):
    summary = PricingViewService(db).get_view_summary(view_id)
    if summary is None:
        raise HTTPException(status_code=404, detail="View not found")
    return summary


@router.patch("/views/{view_id}")
def rename_view(view_id: int, data: ViewRename, db: Session = Depends(get_db)):
    return _respond(PricingViewService(db).rename_view(view_id, data.name))


@router.delete("/views/{view_id}")
def delete_view(view_id: int, db: Session = Depends(get_db)):
    return _respond(PricingViewService(db).delete_view(view_id))


@router.put("/views/{view_id}/employees/{employee_id}/active")
def set_employee_override(view_id: int, employee_id: int, data: ActiveFlagUpdate, db: Session = Depends(get_db)):
    return _respond(PricingViewService(db).set_employee_active_override(view_id, employee_id, data.is_active))


@router.put("/views/{view_id}/overhead-types/{overhead_type_id}/active")
def set_overhead_type_override(
    view_id: int, overhead_type_id: int, data: ActiveFlagUpdate, db: Session = Depends(get_db)
):
    return _respond(
        PricingViewService(db).set_overhead_type_active_override(view_id, overhead_type_id, data.is_active)
    )


@router.put("/views/{view_id}/settings/{key}")
def set_setting_override(view_id: int, key: str, data: SettingOverrideUpdate, db: Session = Depends(get_db)):
    return _respond(PricingViewService(db).set_setting_override(
        view_id, key, data.value, data.value_type, data.group, data.unit
    ))


@router.put("/views/{view_id}/allocations")
def set_allocation_override(view_id: int, data: AllocationShareUpdate, db: Session = Depends(get_db)):
    return _respond(PricingViewService(db).set_allocation_override(
        view_id, data.employee_id, data.overhead_type_id, data.share
    ))


# ═══════════════════════════════════════════════════════════════════════════════
# ALLOCATION DISTRIBUTION (BASE OR VIEW)
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("/overhead-types/{overhead_type_id}/allocate")
def allocate(overhead_type_id: int, data: AllocateRequest, db: Session = Depends(get_db)):
    service = AllocationService(db)
    if data.strategy == "equal":
        result = service.allocate_equally(overhead_type_id, data.view_id)
    elif data.strategy == "proportional":
        result = service.allocate_proportional_to_gross(overhead_type_id, data.view_id)
    else:
        result = service.normalize_to_100_percent(overhead_type_id, data.view_id)
    return _respond(result)


# ═══════════════════════════════════════════════════════════════════════════════
# BASE DATASET
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/tech-stacks")
def list_tech_stacks(db: Session = Depends(get_db)):
    return [stack.to_dict() for stack in PricingAdminService(db).list_tech_stacks()]


@router.post("/tech-stacks")
def create_tech_stack(data: TechStackCreate, db: Session = Depends(get_db)):
    return _respond(PricingAdminService(db).create_tech_stack(data.name))


@router.delete("/tech-stacks/{stack_id}")
def delete_tech_stack(stack_id: int, db: Session = Depends(get_db)):
    return _respond(PricingAdminService(db).delete_tech_stack(stack_id))


@router.post("/employees")
def create_employee(data: EmployeeCreate, db: Session = Depends(get_db)):
    return _respond(PricingAdminService(db).create_employee(**data.model_dump()))


@router.patch("/employees/{employee_id}")
def update_employee(employee_id: int, data: EmployeeUpdate, db: Session = Depends(get_db)):
    return _respond(PricingAdminService(db).update_employee(employee_id, **data.model_dump(exclude_unset=True)))


@router.put("/employees/{employee_id}/active")
def set_employee_active(employee_id: int, data: ActiveFlagUpdate, db: Session = Depends(get_db)):
    return _respond(PricingAdminService(db).set_employee_active(employee_id, data.is_active))


@router.delete("/employees/{employee_id}")
def delete_employee(employee_id: int, db: Session = Depends(get_db)):
    return _respond(PricingAdminService(db).delete_employee(employee_id))


@router.post("/overhead-types")
def create_overhead_type(data: OverheadTypeCreate, db: Session = Depends(get_db)):
    return _respond(PricingAdminService(db).create_overhead_type(data.name, data.amount, data.period, data.is_active))


@router.put("/overhead-types/{overhead_type_id}")
def update_overhead_type(overhead_type_id: int, data: OverheadTypeCreate, db: Session = Depends(get_db)):
    return _respond(PricingAdminService(db).update_overhead_type(
        overhead_type_id, data.name, data.amount, data.period, data.is_active
    ))


@router.put("/overhead-types/{overhead_type_id}/active")
def set_overhead_type_active(overhead_type_id: int, data: ActiveFlagUpdate, db: Session = Depends(get_db)):
    return _respond(PricingAdminService(db).set_overhead_type_active(overhead_type_id, data.is_active))


@router.delete("/overhead-types/{overhead_type_id}")
def delete_overhead_type(overhead_type_id: int, db: Session = Depends(get_db)):
    return _respond(PricingAdminService(db).delete_overhead_type(overhead_type_id))


@router.put("/allocations")
def update_allocation(data: AllocationShareUpdate, db: Session = Depends(get_db)):
    return _respond(PricingAdminService(db).update_allocation(data.employee_id, data.overhead_type_id, data.share))


@router.get("/settings")
def list_settings(db: Session = Depends(get_db)):
    return [setting.to_dict() for setting in PricingAdminService(db).list_settings()]


@router.post("/settings")
def create_setting(data: SettingCreate, db: Session = Depends(get_db)):
    return _respond(PricingAdminService(db).create_setting(
        data.key, data.value, data.value_type, data.group, data.unit
    ))


@router.put("/settings/{setting_id}")
def update_setting(setting_id: int, data: SettingUpdate, db: Session = Depends(get_db)):
    return _respond(PricingAdminService(db).update_setting(
        setting_id, data.value, data.value_type, data.group, data.unit
    ))


@router.delete("/settings/{setting_id}")
def delete_setting(setting_id: int, db: Session = Depends(get_db)):
    return _respond(PricingAdminService(db).delete_setting(setting_id))


@router.post("/settings/reset-defaults")
def reset_core_defaults(db: Session = Depends(get_db)):
    return _respond(PricingAdminService(db).reset_core_defaults())


# ═══════════════════════════════════════════════════════════════════════════════
# RESULTS
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/results")
def get_results(
    view_id: Optional[int] = Query(None),
    breakdown: bool = Query(False),
    db: Session = Depends(get_db),
):
    _require_view(db, view_id)
    dataset = ViewResolver(db).resolve(view_id)
    stacks = [(s.id, s.name) for s in db.query(TechStack).order_by(TechStack.name).all()]
    try:
        report = build_pricing_report(dataset, stacks, with_breakdown=breakdown)
    except PricingComputationError as e:
        logger.warning(f"Pricing failed for view {view_id}: {e}")
        raise HTTPException(status_code=422, detail=str(e))
    return report.to_dict()


@router.get("/diagnostics")
def get_diagnostics(view_id: Optional[int] = Query(None), db: Session = Depends(get_db)):
    _require_view(db, view_id)
    return DashboardService(db).get_diagnostics(view_id)


@router.get("/dashboard")
def get_dashboard(view_id: Optional[int] = Query(None), db: Session = Depends(get_db)):
    _require_view(db, view_id)
    return DashboardService(db).get_dashboard(view_id)


@router.get("/effective-settings")
def get_effective_settings(view_id: Optional[int] = Query(None), db: Session = Depends(get_db)):
    _require_view(db, view_id)
    resolver = ViewResolver(db)
    return {
        "view_id": view_id,
        "values": resolver.effective_settings(view_id),
        "settings": resolver.effective_setting_rows(view_id),
    }
