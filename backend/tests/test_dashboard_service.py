"""
Dashboard figures: tenure text, allocation diagnostics and cost totals.
"""

from datetime import date

import pytest

from conftest import make_employee, make_overhead_type
from dashboard_service import (
    DashboardService, allocation_diagnostics, allocation_matrix, format_tenure_since,
    is_allocation_valid, total_overhead_monthly,
)
from view_service import PricingViewService


class TestTenure:
    pytestmark = pytest.mark.unit

    @pytest.mark.parametrize("hired,now,expected", [
        (date(2020, 1, 15), date(2024, 3, 20), "4 years 2 months"),
        (date(2020, 1, 15), date(2021, 1, 15), "1 year"),
        (date(2020, 1, 15), date(2020, 2, 14), "0 months"),
        (date(2020, 1, 15), date(2020, 2, 15), "1 month"),
        (date(2020, 1, 15), date(2021, 2, 15), "1 year 1 month"),
        (date(2020, 1, 15), date(2020, 1, 15), "0 months"),
        (date(2030, 1, 1), date(2024, 1, 1), "0 months"),
    ])
    def test_format_tenure(self, hired, now, expected):
        assert format_tenure_since(hired, now) == expected


class TestDiagnostics:
    pytestmark = pytest.mark.unit

    @pytest.mark.parametrize("total,valid", [
        (1.0, True), (0.995, True), (1.005, True), (0.99, False), (1.01, False), (0.0, False),
    ])
    def test_tolerance_band(self, total, valid):
        assert is_allocation_valid(total) is valid

    def test_matrix_fills_missing_with_zero(self):
        employees = [make_employee(id=1, allocs={10: 0.6}), make_employee(id=2)]
        matrix = allocation_matrix(employees, [make_overhead_type(id=10), make_overhead_type(id=11)])
        assert list(matrix.index) == [1, 2]
        assert list(matrix.columns) == [10, 11]
        assert matrix.loc[1, 10] == pytest.approx(0.6)
        assert matrix.loc[2, 11] == 0

    def test_sum_and_missing_count(self):
        employees = [
            make_employee(id=1, allocs={10: 0.6}),
            make_employee(id=2, allocs={10: 0.4}),
            make_employee(id=3),
        ]
        types = [make_overhead_type(id=10, name="Rent"), make_overhead_type(id=11, name="Tools")]
        rent, tools = allocation_diagnostics(employees, types)
        assert rent.allocation_sum == pytest.approx(1.0)
        assert rent.missing_count == 1
        assert rent.is_valid
        assert tools.allocation_sum == 0
        assert tools.missing_count == 3
        assert not tools.is_valid

    def test_no_employees(self):
        (diagnostic,) = allocation_diagnostics([], [make_overhead_type(id=1)])
        assert diagnostic.allocation_sum == 0
        assert diagnostic.missing_count == 0

    def test_total_overhead_monthly(self):
        types = [make_overhead_type(id=1, amount=12000, period="annual"),
                 make_overhead_type(id=2, amount=3000, period="quarterly")]
        assert total_overhead_monthly(types, None) == pytest.approx(2000)
        assert total_overhead_monthly(types, 10) == pytest.approx(200)


@pytest.mark.integration
class TestDashboardService:
    def test_base_dashboard(self, db_session, pricing_data):
        dashboard = DashboardService(db_session).get_dashboard(None, now=date(2024, 3, 20))
        assert dashboard["currency"] == "EGP"
        assert dashboard["total_monthly_cost"] == pytest.approx(12750 + 20300 + 5000 + 8200 + 6000)
        assert dashboard["total_overhead_monthly"] == pytest.approx(2000)
        assert dashboard["total_inactive_monthly_cost"] == pytest.approx(7000)
        assert dashboard["by_category"]["DEV"]["count"] == 2
        assert dashboard["by_category"]["QA"]["monthly_cost"] == pytest.approx(8200)
        assert dashboard["active_employee_count"] == 5
        assert dashboard["inactive_employees"] == [
            {"id": pricing_data.dev_inactive.id, "name": "Dora", "gross_monthly": 7000, "tenure_text": "2 years"},
        ]

    def test_diagnostics(self, db_session, pricing_data):
        diagnostics = DashboardService(db_session).get_diagnostics(None)
        by_name = {d["overhead_type_name"]: d for d in diagnostics["allocations"]}
        assert by_name["Rent"]["is_valid"] is True
        assert by_name["Rent"]["missing_count"] == 2
        assert by_name["Tools"]["is_valid"] is False
        assert diagnostics["dangling_allocations"] == []
        assert diagnostics["missing_settings"] == []

    def test_view_dashboard(self, db_session, pricing_data, view):
        service = PricingViewService(db_session)
        service.set_employee_active_override(view.id, pricing_data.dev_b.id, False)
        service.set_overhead_type_active_override(view.id, pricing_data.tools.id, False)
        service.set_setting_override(view.id, "exchange_ratio", "50")

        dashboard = DashboardService(db_session).get_dashboard(view.id, now=date(2024, 3, 20))
        assert dashboard["view_id"] == view.id
        assert dashboard["currency"] == "USD"
        assert dashboard["total_overhead_monthly"] == pytest.approx(1000 / 50)
        # an inactive employee carries no allocations, so compensation only
        assert dashboard["total_inactive_monthly_cost"] == pytest.approx((20000 + 7000) / 50)
        assert {row["name"] for row in dashboard["inactive_employees"]} == {"Bob", "Dora"}
        assert dashboard["inactive_overhead_type_count"] == 1

        rent = dashboard["allocations"][0]
        assert rent["allocation_sum"] == pytest.approx(0.7)
        assert rent["is_valid"] is False
