"""
Base dataset administration: validation messages and write behavior.
"""

from datetime import date

import pytest

import pricing_models
from admin_service import PricingAdminService
from view_service import PricingViewService


pytestmark = pytest.mark.integration


class TestTechStacks:
    def test_create_and_list(self, db_session):
        service = PricingAdminService(db_session)
        assert service.create_tech_stack(" Go ").data["name"] == "Go"
        assert service.create_tech_stack("Go").error == "A tech stack with this name already exists"
        assert service.create_tech_stack("").error == "Name is required"
        assert [s.name for s in service.list_tech_stacks()] == ["Go"]

    def test_delete_unassigns_employees(self, db_session, pricing_data):
        service = PricingAdminService(db_session)
        assert service.delete_tech_stack(pricing_data.python.id).success
        db_session.expire_all()
        alice = db_session.get(pricing_models.Employee, pricing_data.dev_a.id)
        assert alice.tech_stack_id is None
        assert service.delete_tech_stack(999).is_not_found


class TestEmployees:
    def test_create_employee(self, db_session, pricing_data):
        result = PricingAdminService(db_session).create_employee(
            name="  Carol ", category="QA", gross_monthly=9000, net_monthly=7000,
            hiring_date=date(2023, 6, 1),
        )
        assert result.success
        assert result.data["name"] == "Carol"
        assert result.data["tech_stack_id"] is None
        assert result.data["hiring_date"] == "2023-06-01"

    @pytest.mark.parametrize("overrides,error", [
        ({"name": " "}, "Name is required"),
        ({"category": "PM"}, "Valid category is required"),
        ({"gross_monthly": None}, "Gross and net monthly are required"),
        ({"gross_monthly": -1}, "gross_monthly must be a non-negative number"),
        ({"annual_bonus": float("nan")}, "annual_bonus must be a non-negative number"),
        ({"tech_stack_id": 999}, "Invalid tech stack selected"),
    ])
    def test_create_employee_validation(self, db_session, pricing_data, overrides, error):
        fields = dict(name="Carol", category="DEV", gross_monthly=9000, net_monthly=7000)
        fields.update(overrides)
        result = PricingAdminService(db_session).create_employee(**fields)
        assert result.error == error
        assert db_session.query(pricing_models.Employee).filter(
            pricing_models.Employee.name == "Carol"
        ).count() == 0

    def test_update_employee(self, db_session, pricing_data):
        service = PricingAdminService(db_session)
        result = service.update_employee(pricing_data.dev_b.id, gross_monthly=25000, fte=0.5)
        assert result.success
        assert result.data["gross_monthly"] == 25000
        assert result.data["fte"] == 0.5
        assert result.data["name"] == "Bob"

        assert service.update_employee(pricing_data.dev_b.id, category="CEO").error == "Valid category is required"
        assert service.update_employee(999, fte=1).is_not_found

    def test_set_active_and_delete(self, db_session, pricing_data, view):
        service = PricingAdminService(db_session)
        PricingViewService(db_session).set_employee_active_override(view.id, pricing_data.dev_a.id, False)

        assert service.set_employee_active(pricing_data.dev_a.id, False).success
        assert service.delete_employee(pricing_data.dev_a.id).success
        db_session.expire_all()
        assert db_session.query(pricing_models.OverheadAllocation).filter(
            pricing_models.OverheadAllocation.employee_id == pricing_data.dev_a.id
        ).count() == 0
        assert db_session.query(pricing_models.EmployeeActiveOverride).count() == 0


class TestOverheadTypes:
    @pytest.mark.parametrize("name,amount,period,error", [
        ("", 100, "annual", "Name, amount, and period are required"),
        ("Rent", None, "annual", "Name, amount, and period are required"),
        ("Rent", 100, "weekly", "Invalid period"),
        ("Rent", 0, "annual", "Amount must be greater than zero"),
        ("Rent", -5, "monthly", "Amount must be greater than zero"),
    ])
    def test_validation(self, db_session, name, amount, period, error):
        assert PricingAdminService(db_session).create_overhead_type(name, amount, period).error == error

    def test_create_update_and_deactivate(self, db_session, pricing_data):
        service = PricingAdminService(db_session)
        created = service.create_overhead_type("Cloud", 3000, "quarterly")
        assert created.success
        type_id = created.data["id"]

        updated = service.update_overhead_type(type_id, "Cloud Hosting", 3500, "quarterly")
        assert updated.data["name"] == "Cloud Hosting"
        assert service.set_overhead_type_active(type_id, False).success
        assert db_session.get(pricing_models.OverheadType, type_id).is_active is False

    def test_delete_removes_allocations(self, db_session, pricing_data):
        service = PricingAdminService(db_session)
        assert service.delete_overhead_type(pricing_data.rent.id).success
        assert db_session.query(pricing_models.OverheadAllocation).count() == 0

    def test_update_allocation(self, db_session, pricing_data):
        service = PricingAdminService(db_session)
        assert service.update_allocation(pricing_data.agent.id, pricing_data.tools.id, 0.25).success
        assert service.update_allocation(pricing_data.dev_a.id, pricing_data.rent.id, 0.4).success
        rows = {
            (r.employee_id, r.overhead_type_id): r.share
            for r in db_session.query(pricing_models.OverheadAllocation)
        }
        assert rows[(pricing_data.agent.id, pricing_data.tools.id)] == 0.25
        assert rows[(pricing_data.dev_a.id, pricing_data.rent.id)] == 0.4

        assert service.update_allocation(pricing_data.dev_a.id, pricing_data.rent.id, None).error == "Share is required"
        assert service.update_allocation(
            pricing_data.dev_a.id, pricing_data.rent.id, 1.2
        ).error == "Share must be between 0 and 1"


class TestSettings:
    def test_create_setting(self, db_session, pricing_data):
        service = PricingAdminService(db_session)
        assert service.create_setting("annual_increase", "0.05", "float", "Assumptions", "ratio").success
        assert service.create_setting("margin", "0.3", "float").error == "Setting with this key already exists"
        assert service.create_setting("flag", "maybe", "boolean").error == "Value must be 'true' or 'false'"

    def test_update_and_delete_setting(self, db_session, pricing_data):
        service = PricingAdminService(db_session)
        margin = db_session.query(pricing_models.Setting).filter(pricing_models.Setting.key == "margin").one()
        assert service.update_setting(margin.id, "0.25").data["value"] == "0.25"
        assert service.update_setting(margin.id, "abc").error == "Value must be a valid number"
        assert service.delete_setting(margin.id).success
        assert service.delete_setting(margin.id).is_not_found

    def test_reset_core_defaults(self, db_session, pricing_data):
        service = PricingAdminService(db_session)
        db_session.query(pricing_models.Setting).filter(
            pricing_models.Setting.key == "standard_hours_per_month"
        ).delete()
        qa = db_session.query(pricing_models.Setting).filter(pricing_models.Setting.key == "qa_ratio").one()
        qa.value = "0.9"
        db_session.commit()

        assert service.reset_core_defaults().success
        values = {s.key: s.value for s in service.list_settings()}
        assert values["standard_hours_per_month"] == "160"
        assert values["qa_ratio"] == "0.5"
        assert values["margin"] == "0.2"
