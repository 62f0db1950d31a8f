"""
Pricing orchestration tests over the shared base dataset.

Base figures (EGP, no exchange ratio):
    Alice  147000 + 6000 rent  -> 12750 / month
    Bob    240000 + 3600 rent  -> 20300 / month
    Python DEV cost/hour        = 33050 / 200      = 165.25
    QA add-on                   = 0.5 * 8200 / 160 = 25.625
    BA add-on                   = 0.25 * 6000 / 160 = 9.375
"""

import pytest

import pricing_models
from conftest import make_employee
from pricing_orchestrator import (
    UNASSIGNED_STACK_NAME, EmployeeBuckets, build_pricing_report, calculate_pricing_for_category,
)
from rate_engine import CapacityError
from view_resolver import ViewResolver
from view_service import PricingViewService


def _price(db, category, stack_id, view_id=None, with_breakdown=False):
    dataset = ViewResolver(db).resolve(view_id)
    return calculate_pricing_for_category(
        category, stack_id, dataset.employees, dataset.active_overhead_types, dataset.settings, with_breakdown
    )


def _stacks(db):
    return [(s.id, s.name) for s in db.query(pricing_models.TechStack).order_by(pricing_models.TechStack.name)]


class TestBuckets:
    pytestmark = pytest.mark.unit

    def test_buckets_by_category_stack_and_active(self):
        buckets = EmployeeBuckets([
            make_employee(id=1, tech_stack_id=1),
            make_employee(id=2, tech_stack_id=2),
            make_employee(id=3, tech_stack_id=1, is_active=False),
            make_employee(id=4, category="QA", tech_stack_id=None),
        ])
        assert [e.id for e in buckets.get("DEV", 1)] == [1]
        assert [e.id for e in buckets.get("DEV", 1, active=False)] == [3]
        assert sorted(e.id for e in buckets.category("DEV")) == [1, 2]
        assert len(buckets.all()) == 3
        assert not buckets.has_unassigned()

    def test_unpriced_category_rejected(self):
        with pytest.raises(ValueError):
            calculate_pricing_for_category("QA", None, [], [], {})


@pytest.mark.integration
class TestCategoryPricing:
    def test_dev_pricing(self, db_session, pricing_data):
        result = _price(db_session, "DEV", pricing_data.python.id)
        assert result.dev_cost_per_rel_hour == pytest.approx(165.25)
        assert result.qa_cost_per_dev_rel_hour == pytest.approx(25.625)
        assert result.ba_cost_per_dev_rel_hour == pytest.approx(9.375)
        assert result.releaseable_cost == pytest.approx(200.25)
        assert result.final_price == pytest.approx(200.25 * 1.2 * 1.1)

    def test_agentic_pricing_has_no_add_ons(self, db_session, pricing_data):
        result = _price(db_session, "AGENTIC_AI", pricing_data.python.id)
        assert result.dev_cost_per_rel_hour == pytest.approx(50.0)
        assert result.qa_cost_per_dev_rel_hour == 0
        assert result.ba_cost_per_dev_rel_hour == 0
        assert result.final_price == pytest.approx(66.0)

    def test_agentic_invariant_to_qa_ba_ratios(self, db_session, pricing_data, view):
        service = PricingViewService(db_session)
        service.set_setting_override(view.id, "qa_ratio", "2")
        service.set_setting_override(view.id, "ba_ratio", "3")

        base_agentic = _price(db_session, "AGENTIC_AI", pricing_data.python.id)
        view_agentic = _price(db_session, "AGENTIC_AI", pricing_data.python.id, view.id)
        assert view_agentic.final_price == pytest.approx(base_agentic.final_price)

        base_dev = _price(db_session, "DEV", pricing_data.python.id)
        view_dev = _price(db_session, "DEV", pricing_data.python.id, view.id)
        assert view_dev.final_price > base_dev.final_price

    def test_stack_without_active_employees(self, db_session, pricing_data):
        result = _price(db_session, "DEV", pricing_data.node.id)
        assert result.dev_cost_per_rel_hour is None
        assert result.releaseable_cost is None
        assert result.final_price is None

    def test_view_deactivation_excludes_employee(self, db_session, pricing_data, view):
        PricingViewService(db_session).set_employee_active_override(view.id, pricing_data.dev_b.id, False)
        result = _price(db_session, "DEV", pricing_data.python.id, view.id)
        assert result.dev_cost_per_rel_hour == pytest.approx(127.5)

        db_session.refresh(pricing_data.dev_b)
        assert pricing_data.dev_b.is_active is True
        assert _price(db_session, "DEV", pricing_data.python.id).dev_cost_per_rel_hour == pytest.approx(165.25)

    def test_view_overhead_deactivation(self, db_session, pricing_data, view):
        PricingViewService(db_session).set_overhead_type_active_override(view.id, pricing_data.rent.id, False)
        result = _price(db_session, "DEV", pricing_data.python.id, view.id)
        # (12250 + 20000) / 200
        assert result.dev_cost_per_rel_hour == pytest.approx(161.25)

    def test_empty_qa_pool_contributes_zero(self, db_session, pricing_data, view):
        PricingViewService(db_session).set_employee_active_override(view.id, pricing_data.qa.id, False)
        result = _price(db_session, "DEV", pricing_data.python.id, view.id)
        assert result.qa_cost_per_dev_rel_hour == 0
        assert result.ba_cost_per_dev_rel_hour == pytest.approx(9.375)

    def test_zero_capacity_propagates(self, db_session, pricing_data, view):
        PricingViewService(db_session).set_setting_override(view.id, "dev_releasable_hours_per_month", "0")
        with pytest.raises(CapacityError):
            _price(db_session, "DEV", pricing_data.python.id, view.id)

    def test_breakdown_reproduces_values(self, db_session, pricing_data):
        result = _price(db_session, "DEV", pricing_data.python.id, with_breakdown=True)
        assert set(result.breakdowns) == {
            "dev_cost_hr", "qa_addon_hr", "ba_addon_hr", "releaseable_cost", "final_price",
        }
        dev = result.breakdowns["dev_cost_hr"]
        assert dev.result == result.dev_cost_per_rel_hour
        assert dev.lines[-1].value == pytest.approx(165.25)
        assert dev.currency == "EGP"

        final = result.breakdowns["final_price"]
        assert final.lines[-1].value == pytest.approx(result.final_price)
        assert len(final.lines) == sum(
            len(result.breakdowns[k].lines)
            for k in ("dev_cost_hr", "qa_addon_hr", "ba_addon_hr", "releaseable_cost")
        ) + 1

    def test_breakdown_inputs_rebuild_dev_cost(self, db_session, pricing_data):
        db_session.add(pricing_models.OverheadAllocation(
            employee_id=pricing_data.dev_b.id, overhead_type_id=pricing_data.tools.id, share=0.5,
        ))
        db_session.commit()
        result = _price(db_session, "DEV", pricing_data.python.id, with_breakdown=True)
        lines = result.breakdowns["dev_cost_hr"].lines

        periods_per_year = {"annual": 1, "quarterly": 4, "monthly": 12}
        annual = {}
        for line in lines:
            name, _, rest = line.label.partition(": ")
            inputs = line.inputs
            if rest == "annual base":
                annual[name] = annual.get(name, 0.0) + (
                    inputs["adjustedGrossMonthly"] * 12 * (1 + inputs["oncostRate"])
                    + inputs["annualBenefits"] + inputs["annualBonus"]
                )
            elif rest.startswith("overhead ") and "amount" in inputs:
                assert inputs["annualAmount"] == pytest.approx(
                    inputs["amount"] * periods_per_year[inputs["period"]]
                )
                annual[name] = annual.get(name, 0.0) + inputs["amount"] * periods_per_year[inputs["period"]] * inputs["share"]

        capacity = next(line for line in lines if line.label == "Capacity hours").inputs
        rebuilt = sum(v / 12 for v in annual.values()) / (
            capacity["dev_releasable_hours_per_month"] * capacity["totalFte"]
        )
        # Bob picks up half of Tools: 12000 * 0.5 / 12 = 500 more per month
        assert set(annual) == {"Alice", "Bob"}
        assert rebuilt == pytest.approx(result.dev_cost_per_rel_hour)
        assert rebuilt == pytest.approx((33050 + 500) / 200)

    def test_exchange_ratio_converts_prices(self, db_session, pricing_data, view):
        PricingViewService(db_session).set_setting_override(view.id, "exchange_ratio", "50")
        result = _price(db_session, "DEV", pricing_data.python.id, view.id, with_breakdown=True)
        assert result.dev_cost_per_rel_hour == pytest.approx(165.25 / 50)
        assert result.final_price == pytest.approx(200.25 * 1.32 / 50)
        assert result.breakdowns["final_price"].currency == "USD"


@pytest.mark.integration
class TestPricingReport:
    def test_report_rows(self, db_session, pricing_data):
        report = build_pricing_report(ViewResolver(db_session).resolve(None), _stacks(db_session))
        entries = {(s.tech_stack_name, s.category): s for s in report.stacks}
        assert set(entries) == {("Python", "DEV"), ("Python", "AGENTIC_AI")}
        assert report.currency == "EGP"
        assert report.missing_settings == []
        assert report.inactive_employee_count == 1

        dev = entries[("Python", "DEV")]
        assert dev.row.raw_cost == pytest.approx((12250 + 20000) / 200)
        assert dev.row.overheads[pricing_data.rent.id] == pytest.approx(1000 * 0.8 / 200)
        assert dev.row.total_releaseable_cost == pytest.approx(dev.pricing.releaseable_cost)

        agentic = entries[("Python", "AGENTIC_AI")]
        assert agentic.row.qa_add_on is None
        assert agentic.row.total_releaseable_cost == pytest.approx(50.0)

    def test_add_on_decomposition_matches_add_on(self, db_session, pricing_data):
        report = build_pricing_report(ViewResolver(db_session).resolve(None), _stacks(db_session))
        assert report.qa_add_on.total == pytest.approx(25.625)
        assert report.qa_add_on.raw == pytest.approx(25.0)
        assert report.ba_add_on.total == pytest.approx(9.375)

    def test_unassigned_stack_included(self, db_session, pricing_data):
        db_session.add(pricing_models.Employee(
            name="Stackless", category="DEV", tech_stack_id=None, gross_monthly=4000, net_monthly=3500,
            fte=1.0, is_active=True,
        ))
        db_session.commit()

        report = build_pricing_report(ViewResolver(db_session).resolve(None), _stacks(db_session))
        unassigned = [s for s in report.stacks if s.tech_stack_name == UNASSIGNED_STACK_NAME]
        assert len(unassigned) == 1
        assert unassigned[0].tech_stack_id is None
        assert unassigned[0].pricing.dev_cost_per_rel_hour == pytest.approx(40.0)

    def test_reactivated_employee_appears_in_view(self, db_session, pricing_data, view):
        PricingViewService(db_session).set_employee_active_override(view.id, pricing_data.dev_inactive.id, True)
        report = build_pricing_report(ViewResolver(db_session).resolve(view.id), _stacks(db_session))
        node = [s for s in report.stacks if s.tech_stack_name == "Node"]
        assert [s.category for s in node] == ["DEV"]
        assert node[0].pricing.dev_cost_per_rel_hour == pytest.approx(70.0)

    def test_breakdowns_in_report(self, db_session, pricing_data):
        report = build_pricing_report(
            ViewResolver(db_session).resolve(None), _stacks(db_session), with_breakdown=True
        )
        dev = next(s for s in report.stacks if s.category == "DEV")
        assert "dev_raw_hr" in dev.row_breakdowns
        assert f"dev_overhead_hr:{pricing_data.rent.id}" in dev.row_breakdowns
        assert dev.row_breakdowns["total_overheads_hr"].result == pytest.approx(dev.row.total_overheads)
        assert set(report.add_on_breakdowns) == {"qa_addon_hr", "ba_addon_hr"}
        assert report.to_dict()["stacks"][0]["pricing"]["breakdowns"]

    def test_missing_settings_reported(self, db_session, pricing_data):
        db_session.query(pricing_models.Setting).filter(pricing_models.Setting.key == "margin").delete()
        db_session.commit()
        report = build_pricing_report(ViewResolver(db_session).resolve(None), _stacks(db_session))
        assert report.missing_settings == ["margin"]
