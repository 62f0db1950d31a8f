"""
Pricing Models

SQLAlchemy models for the base pricing dataset (employees, tech stacks,
overhead types, allocations, settings) and for pricing views, the named
scenarios that override a sparse subset of that base data.

Override tables are kept sparse: a row exists only while the override
differs from the base value. The services enforce that on write.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Any

from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Boolean, Float, Text,
    ForeignKey, Index, CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


# =============================================================================
# ENUMS
# =============================================================================

class EmployeeCategory(str, Enum):
    """Role category of an employee"""
    DEV = "DEV"
    QA = "QA"
    BA = "BA"
    AGENTIC_AI = "AGENTIC_AI"


class OverheadPeriod(str, Enum):
    """Billing period of an overhead amount"""
    ANNUAL = "annual"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class SettingValueType(str, Enum):
    """How a setting's stored text is parsed"""
    STRING = "string"
    NUMBER = "number"
    FLOAT = "float"
    INTEGER = "integer"
    BOOLEAN = "boolean"


# =============================================================================
# BASE DATASET
# =============================================================================

class TechStack(Base):
    """A delivery stack that DEV and AGENTIC_AI capacity is priced per."""
    __tablename__ = "tech_stacks"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    employees = relationship("Employee", back_populates="tech_stack")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Employee(Base):
    """
    An employee (or agentic AI seat) whose cost feeds the pricing model.

    Money columns are monthly in the base currency except the two annual
    extras (benefits and bonus).
    """
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    category = Column(String(20), nullable=False, index=True)
    tech_stack_id = Column(Integer, ForeignKey("tech_stacks.id", ondelete="SET NULL"), nullable=True, index=True)

    gross_monthly = Column(Float, nullable=False)
    net_monthly = Column(Float, nullable=False)
    oncost_rate = Column(Float, nullable=True)
    annual_benefits = Column(Float, nullable=True)
    annual_bonus = Column(Float, nullable=True)
    fte = Column(Float, default=1.0, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    hiring_date = Column(Date, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tech_stack = relationship("TechStack", back_populates="employees")
    overhead_allocs = relationship(
        "OverheadAllocation",
        back_populates="employee",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="OverheadAllocation.id",
    )

    __table_args__ = (
        CheckConstraint('fte >= 0', name='check_employee_fte_non_negative'),
        Index('ix_employees_category_stack', 'category', 'tech_stack_id'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "tech_stack_id": self.tech_stack_id,
            "gross_monthly": self.gross_monthly,
            "net_monthly": self.net_monthly,
            "oncost_rate": self.oncost_rate,
            "annual_benefits": self.annual_benefits,
            "annual_bonus": self.annual_bonus,
            "fte": self.fte,
            "is_active": self.is_active,
            "hiring_date": self.hiring_date.isoformat() if self.hiring_date else None,
        }


class OverheadType(Base):
    """A named recurring cost pool distributed over employees by share."""
    __tablename__ = "overhead_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    amount = Column(Float, nullable=False)
    period = Column(String(20), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    allocations = relationship(
        "OverheadAllocation",
        back_populates="overhead_type",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint('amount > 0', name='check_overhead_amount_positive'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "amount": self.amount,
            "period": self.period,
            "is_active": self.is_active,
        }


class OverheadAllocation(Base):
    """Base share of one overhead type attributed to one employee."""
    __tablename__ = "overhead_allocations"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    overhead_type_id = Column(Integer, ForeignKey("overhead_types.id", ondelete="CASCADE"), nullable=False, index=True)
    share = Column(Float, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    employee = relationship("Employee", back_populates="overhead_allocs")
    overhead_type = relationship("OverheadType", back_populates="allocations")

    __table_args__ = (
        UniqueConstraint('employee_id', 'overhead_type_id', name='uq_allocation_employee_type'),
        CheckConstraint('share >= 0 AND share <= 1', name='check_allocation_share_range'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "overhead_type_id": self.overhead_type_id,
            "share": self.share,
        }


class Setting(Base):
    """A global setting; value is stored as text and parsed by value_type."""
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), nullable=False, unique=True)
    value = Column(String(200), nullable=False)
    value_type = Column(String(20), nullable=False)
    group = Column(String(100), nullable=False, default="general")
    unit = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "key": self.key,
            "value": self.value,
            "value_type": self.value_type,
            "group": self.group,
            "unit": self.unit,
        }


# =============================================================================
# PRICING VIEWS AND OVERRIDES
# =============================================================================

class PricingView(Base):
    """
    A named pricing scenario.

    Views never mutate the base dataset; they own sparse override rows
    that are merged over it at resolution time.
    """
    __tablename__ = "pricing_views"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, unique=True)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    employee_overrides = relationship(
        "EmployeeActiveOverride", cascade="all, delete-orphan", passive_deletes=True
    )
    overhead_type_overrides = relationship(
        "OverheadTypeActiveOverride", cascade="all, delete-orphan", passive_deletes=True
    )
    setting_overrides = relationship(
        "SettingOverride", cascade="all, delete-orphan", passive_deletes=True
    )
    allocation_overrides = relationship(
        "OverheadAllocationOverride", cascade="all, delete-orphan", passive_deletes=True
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class EmployeeActiveOverride(Base):
    __tablename__ = "employee_active_overrides"

    id = Column(Integer, primary_key=True, index=True)
    view_id = Column(Integer, ForeignKey("pricing_views.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    is_active = Column(Boolean, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('view_id', 'employee_id', name='uq_employee_override_view_employee'),
    )


class OverheadTypeActiveOverride(Base):
    __tablename__ = "overhead_type_active_overrides"

    id = Column(Integer, primary_key=True, index=True)
    view_id = Column(Integer, ForeignKey("pricing_views.id", ondelete="CASCADE"), nullable=False, index=True)
    overhead_type_id = Column(Integer, ForeignKey("overhead_types.id", ondelete="CASCADE"), nullable=False)
    is_active = Column(Boolean, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('view_id', 'overhead_type_id', name='uq_overhead_override_view_type'),
    )


class SettingOverride(Base):
    __tablename__ = "setting_overrides"

    id = Column(Integer, primary_key=True, index=True)
    view_id = Column(Integer, ForeignKey("pricing_views.id", ondelete="CASCADE"), nullable=False, index=True)
    key = Column(String(100), nullable=False)
    value = Column(String(200), nullable=False)
    value_type = Column(String(20), nullable=False)
    group = Column(String(100), nullable=True)
    unit = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('view_id', 'key', name='uq_setting_override_view_key'),
    )


class OverheadAllocationOverride(Base):
    __tablename__ = "overhead_allocation_overrides"

    id = Column(Integer, primary_key=True, index=True)
    view_id = Column(Integer, ForeignKey("pricing_views.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    overhead_type_id = Column(Integer, ForeignKey("overhead_types.id", ondelete="CASCADE"), nullable=False)
    share = Column(Float, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('view_id', 'employee_id', 'overhead_type_id', name='uq_allocation_override_key'),
        CheckConstraint('share >= 0 AND share <= 1', name='check_allocation_override_share_range'),
    )
