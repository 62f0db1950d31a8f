"""
Pytest configuration and fixtures for the pricing test suite

Markers:
    - unit: Fast unit tests over pure functions
    - property: Property-based tests (Hypothesis)
    - integration: Tests against an in-memory database
"""

import os
import sys
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pricing_models  # noqa: E402
from cost_engine import AllocationShare, EmployeeRecord, OverheadTypeRecord  # noqa: E402
from database import enable_sqlite_foreign_keys  # noqa: E402


# ═══════════════════════════════════════════════════════════════════════════════
# PYTEST CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "property: Property-based tests (Hypothesis)")
    config.addinivalue_line("markers", "integration: Tests against an in-memory database")


# ═══════════════════════════════════════════════════════════════════════════════
# RECORD FACTORIES
# ═══════════════════════════════════════════════════════════════════════════════

def make_employee(
    id=1,
    category="DEV",
    tech_stack_id=1,
    gross_monthly=10000.0,
    oncost_rate=None,
    annual_benefits=None,
    annual_bonus=None,
    fte=1.0,
    is_active=True,
    allocs=None,
    name=None,
):
    return EmployeeRecord(
        id=id,
        name=name or f"Employee {id}",
        category=category,
        tech_stack_id=tech_stack_id,
        gross_monthly=gross_monthly,
        net_monthly=gross_monthly * 0.8,
        oncost_rate=oncost_rate,
        annual_benefits=annual_benefits,
        annual_bonus=annual_bonus,
        fte=fte,
        is_active=is_active,
        overhead_allocs=[AllocationShare(overhead_type_id=t, share=s) for t, s in (allocs or {}).items()],
    )


def make_overhead_type(id=1, amount=12000.0, period="annual", is_active=True, name=None):
    return OverheadTypeRecord(id=id, name=name or f"Overhead {id}", amount=amount, period=period, is_active=is_active)


@pytest.fixture
def employee_factory():
    return make_employee


@pytest.fixture
def overhead_type_factory():
    return make_overhead_type


# ═══════════════════════════════════════════════════════════════════════════════
# DATABASE FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    enable_sqlite_foreign_keys(engine)
    pricing_models.Base.metadata.create_all(engine)

    Session = sessionmaker(bind=engine, autoflush=False)
    session = Session()

    yield session

    session.close()
    engine.dispose()


def _setting(key, value, group="Assumptions", unit=None):
    return pricing_models.Setting(key=key, value=value, value_type="float", group=group, unit=unit)


@pytest.fixture
def pricing_data(db_session):
    """
    A small base dataset:
    - two stacks (Python, Node)
    - two active Python DEVs, one active Python AGENTIC_AI, one inactive Node DEV
    - one QA, one BA
    - Rent (12000/year) and Tools (1000/month) overheads
    - the six required settings at their documented defaults
    """
    python = pricing_models.TechStack(name="Python")
    node = pricing_models.TechStack(name="Node")
    db_session.add_all([python, node])
    db_session.flush()

    dev_a = pricing_models.Employee(
        name="Alice", category="DEV", tech_stack_id=python.id, gross_monthly=10000, net_monthly=8000,
        oncost_rate=0.1, annual_benefits=5000, annual_bonus=10000, fte=1.0, is_active=True,
        hiring_date=date(2020, 1, 15),
    )
    dev_b = pricing_models.Employee(
        name="Bob", category="DEV", tech_stack_id=python.id, gross_monthly=20000, net_monthly=16000,
        fte=1.0, is_active=True,
    )
    agent = pricing_models.Employee(
        name="Agent Smith", category="AGENTIC_AI", tech_stack_id=python.id, gross_monthly=5000,
        net_monthly=5000, fte=1.0, is_active=True,
    )
    dev_inactive = pricing_models.Employee(
        name="Dora", category="DEV", tech_stack_id=node.id, gross_monthly=7000, net_monthly=6000,
        fte=1.0, is_active=False, hiring_date=date(2022, 3, 1),
    )
    qa = pricing_models.Employee(
        name="Quinn", category="QA", tech_stack_id=None, gross_monthly=8000, net_monthly=6500,
        fte=1.0, is_active=True,
    )
    ba = pricing_models.Employee(
        name="Bea", category="BA", tech_stack_id=None, gross_monthly=6000, net_monthly=5000,
        fte=1.0, is_active=True,
    )
    db_session.add_all([dev_a, dev_b, agent, dev_inactive, qa, ba])

    rent = pricing_models.OverheadType(name="Rent", amount=12000, period="annual", is_active=True)
    tools = pricing_models.OverheadType(name="Tools", amount=1000, period="monthly", is_active=True)
    db_session.add_all([rent, tools])
    db_session.flush()

    db_session.add_all([
        pricing_models.OverheadAllocation(employee_id=dev_a.id, overhead_type_id=rent.id, share=0.5),
        pricing_models.OverheadAllocation(employee_id=dev_b.id, overhead_type_id=rent.id, share=0.3),
        pricing_models.OverheadAllocation(employee_id=qa.id, overhead_type_id=rent.id, share=0.2),
    ])

    db_session.add_all([
        _setting("dev_releasable_hours_per_month", "100", unit="hours/month"),
        _setting("standard_hours_per_month", "160", unit="hours/month"),
        _setting("qa_ratio", "0.5", group="Ratios", unit="ratio"),
        _setting("ba_ratio", "0.25", group="Ratios", unit="ratio"),
        _setting("margin", "0.2", group="Pricing", unit="ratio"),
        _setting("risk", "0.1", group="Pricing", unit="ratio"),
    ])
    db_session.commit()

    return SimpleNamespace(
        python=python, node=node,
        dev_a=dev_a, dev_b=dev_b, agent=agent, dev_inactive=dev_inactive, qa=qa, ba=ba,
        rent=rent, tools=tools,
    )


@pytest.fixture
def view(db_session, pricing_data):
    pricing_view = pricing_models.PricingView(name="Scenario A")
    db_session.add(pricing_view)
    db_session.commit()
    db_session.refresh(pricing_view)
    return pricing_view
