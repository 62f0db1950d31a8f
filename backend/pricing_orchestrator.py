"""
Pricing Orchestrator

Prices a (category, tech stack) pair from an effective dataset:

1. bucket employees once by (category, stack, effective active)
2. cost per releaseable hour for the DEV / AGENTIC_AI bucket
3. QA/BA add-ons from the global QA/BA pools (DEV only; AGENTIC_AI gets 0)
4. releaseable cost and final price

Breakdowns are the calculators' own lines concatenated, so an explanation
always reproduces the number next to it.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from cost_engine import (
    Breakdown, CalcLine, Calculation, EmployeeRecord, OverheadTypeRecord, currency_label,
    get_exchange_ratio,
)
from pricing_models import EmployeeCategory
from rate_engine import (
    AddOnDecomposition, StackRow, add_on_decomposition, compute_stack_row,
    explain_add_on_per_releasable_hour, explain_cost_per_releasable_hour, explain_final_price,
    explain_overhead_per_releasable_hour, explain_raw_cost_per_releasable_hour,
    explain_releaseable_cost,
)
from settings_registry import SettingsMap, find_missing_settings

logger = logging.getLogger(__name__)

PRICED_CATEGORIES = (EmployeeCategory.DEV.value, EmployeeCategory.AGENTIC_AI.value)
UNASSIGNED_STACK_NAME = "Unassigned"

BucketKey = Tuple[str, Optional[int], bool]


# =============================================================================
# EMPLOYEE BUCKETS
# =============================================================================

class EmployeeBuckets:
    """Employees grouped once by (category, tech_stack_id, is_active)."""

    def __init__(self, employees: Iterable[EmployeeRecord]):
        self._buckets: Dict[BucketKey, List[EmployeeRecord]] = defaultdict(list)
        for employee in employees:
            self._buckets[(employee.category, employee.tech_stack_id, employee.is_active)].append(employee)

    def get(self, category: str, tech_stack_id: Optional[int], active: bool = True) -> List[EmployeeRecord]:
        return list(self._buckets.get((category, tech_stack_id, active), []))

    def category(self, category: str, active: bool = True) -> List[EmployeeRecord]:
        """All employees of a category across every stack."""
        result: List[EmployeeRecord] = []
        for (cat, _, is_active), members in self._buckets.items():
            if cat == category and is_active == active:
                result.extend(members)
        return result

    def all(self, active: bool = True) -> List[EmployeeRecord]:
        result: List[EmployeeRecord] = []
        for (_, _, is_active), members in self._buckets.items():
            if is_active == active:
                result.extend(members)
        return result

    def has_unassigned(self, categories: Iterable[str] = PRICED_CATEGORIES) -> bool:
        return any(self._buckets.get((cat, None, True)) for cat in categories)


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class PricingResult:
    category: str
    tech_stack_id: Optional[int]
    dev_cost_per_rel_hour: Optional[float]
    qa_cost_per_dev_rel_hour: float
    ba_cost_per_dev_rel_hour: float
    releaseable_cost: Optional[float]
    final_price: Optional[float]
    breakdowns: Dict[str, Breakdown] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "tech_stack_id": self.tech_stack_id,
            "dev_cost_per_rel_hour": self.dev_cost_per_rel_hour,
            "qa_cost_per_dev_rel_hour": self.qa_cost_per_dev_rel_hour,
            "ba_cost_per_dev_rel_hour": self.ba_cost_per_dev_rel_hour,
            "releaseable_cost": self.releaseable_cost,
            "final_price": self.final_price,
            "breakdowns": {k: b.to_dict() for k, b in self.breakdowns.items()},
        }


def _zero_add_on(ratio_key: str) -> Calculation:
    return Calculation(value=0.0, lines=[
        CalcLine(
            label="Not applicable for AGENTIC_AI",
            value=0.0,
            formula="AGENTIC_AI pricing excludes QA/BA",
            inputs={"ratioKey": ratio_key},
        ),
    ])


def global_add_ons(
    buckets: EmployeeBuckets,
    overhead_types: List[OverheadTypeRecord],
    settings: SettingsMap,
) -> Tuple[Calculation, Calculation]:
    """QA and BA add-ons from the global (not stack-filtered) active pools."""
    qa = explain_add_on_per_releasable_hour(
        buckets.category(EmployeeCategory.QA.value), overhead_types, settings, "qa_ratio"
    )
    ba = explain_add_on_per_releasable_hour(
        buckets.category(EmployeeCategory.BA.value), overhead_types, settings, "ba_ratio"
    )
    return qa, ba


def _price(
    category: str,
    tech_stack_id: Optional[int],
    buckets: EmployeeBuckets,
    overhead_types: List[OverheadTypeRecord],
    settings: SettingsMap,
    add_ons: Optional[Tuple[Calculation, Calculation]],
    with_breakdown: bool,
) -> PricingResult:
    team = buckets.get(category, tech_stack_id)
    primary = explain_cost_per_releasable_hour(team, overhead_types, settings)

    if category == EmployeeCategory.DEV.value:
        qa, ba = add_ons if add_ons is not None else global_add_ons(buckets, overhead_types, settings)
    else:
        qa, ba = _zero_add_on("qa_ratio"), _zero_add_on("ba_ratio")

    releaseable = explain_releaseable_cost(primary.value, qa.value, ba.value)
    price = explain_final_price(releaseable.value, settings)

    result = PricingResult(
        category=category,
        tech_stack_id=tech_stack_id,
        dev_cost_per_rel_hour=primary.value,
        qa_cost_per_dev_rel_hour=qa.value,
        ba_cost_per_dev_rel_hour=ba.value,
        releaseable_cost=releaseable.value,
        final_price=price.value,
    )

    if with_breakdown:
        currency = currency_label(get_exchange_ratio(settings))
        label = "DEV" if category == EmployeeCategory.DEV.value else "Agentic AI"
        result.breakdowns = {
            "dev_cost_hr": Breakdown(
                key="dev_cost_hr", title=f"{label} Cost per Releaseable Hour",
                result=primary.value, currency=currency, lines=primary.lines,
            ),
            "qa_addon_hr": Breakdown(
                key="qa_addon_hr", title="QA Add-on per Dev Releaseable Hour",
                result=qa.value, currency=currency, lines=qa.lines,
            ),
            "ba_addon_hr": Breakdown(
                key="ba_addon_hr", title="BA Add-on per Dev Releaseable Hour",
                result=ba.value, currency=currency, lines=ba.lines,
            ),
            "releaseable_cost": Breakdown(
                key="releaseable_cost", title="Releaseable Cost",
                result=releaseable.value, currency=currency, lines=releaseable.lines,
            ),
            "final_price": Breakdown(
                key="final_price", title="Final Price",
                result=price.value, currency=currency,
                lines=primary.lines + qa.lines + ba.lines + releaseable.lines + price.lines,
            ),
        }
    return result


def calculate_pricing_for_category(
    category: str,
    tech_stack_id: Optional[int],
    employees: Iterable[EmployeeRecord],
    overhead_types: List[OverheadTypeRecord],
    settings: SettingsMap,
    with_breakdown: bool = False,
) -> PricingResult:
    """
    Price one category in one stack (tech_stack_id=None is "unassigned").

    employees is the effective employee set; overhead_types the effective
    active overhead types.
    """
    if category not in PRICED_CATEGORIES:
        raise ValueError(f"Category {category} is not priced per releaseable hour")
    buckets = employees if isinstance(employees, EmployeeBuckets) else EmployeeBuckets(employees)
    return _price(category, tech_stack_id, buckets, overhead_types, settings, None, with_breakdown)


# =============================================================================
# PRICING REPORT
# =============================================================================

@dataclass
class StackPricing:
    tech_stack_id: Optional[int]
    tech_stack_name: str
    category: str
    pricing: PricingResult
    row: Optional[StackRow]
    row_breakdowns: Dict[str, Breakdown] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tech_stack_id": self.tech_stack_id,
            "tech_stack_name": self.tech_stack_name,
            "category": self.category,
            "pricing": self.pricing.to_dict(),
            "row": self.row.to_dict() if self.row else None,
            "row_breakdowns": {k: b.to_dict() for k, b in self.row_breakdowns.items()},
        }


@dataclass
class PricingReport:
    view_id: Optional[int]
    currency: str
    stacks: List[StackPricing]
    overhead_types: List[OverheadTypeRecord]
    qa_add_on: AddOnDecomposition
    ba_add_on: AddOnDecomposition
    add_on_breakdowns: Dict[str, Breakdown]
    missing_settings: List[str]
    inactive_employee_count: int
    inactive_overhead_type_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "view_id": self.view_id,
            "currency": self.currency,
            "stacks": [s.to_dict() for s in self.stacks],
            "overhead_types": [{"id": t.id, "name": t.name} for t in self.overhead_types],
            "qa_add_on": self.qa_add_on.to_dict(),
            "ba_add_on": self.ba_add_on.to_dict(),
            "add_on_breakdowns": {k: b.to_dict() for k, b in self.add_on_breakdowns.items()},
            "missing_settings": self.missing_settings,
            "inactive_employee_count": self.inactive_employee_count,
            "inactive_overhead_type_count": self.inactive_overhead_type_count,
        }


def _row_breakdowns(
    team: List[EmployeeRecord],
    overhead_types: List[OverheadTypeRecord],
    settings: SettingsMap,
    currency: str,
) -> Dict[str, Breakdown]:
    raw = explain_raw_cost_per_releasable_hour(team, settings)
    breakdowns = {
        "dev_raw_hr": Breakdown(
            key="dev_raw_hr", title="Raw Cost per Releaseable Hour",
            result=raw.value, currency=currency, lines=raw.lines,
        ),
    }
    total_lines: List[CalcLine] = []
    total = 0.0
    for overhead_type in overhead_types:
        calc = explain_overhead_per_releasable_hour(overhead_type, team, settings)
        key = f"dev_overhead_hr:{overhead_type.id}"
        breakdowns[key] = Breakdown(
            key=key, title=f"{overhead_type.name} per Releaseable Hour",
            result=calc.value, currency=currency, lines=calc.lines,
        )
        total_lines.extend(calc.lines)
        total += calc.value or 0.0
    total_lines.append(CalcLine(
        label="Total overheads per hour",
        value=total,
        formula="sum(overheadPerHour)",
        inputs={"overheadTypes": len(overhead_types)},
    ))
    breakdowns["total_overheads_hr"] = Breakdown(
        key="total_overheads_hr", title="Total Overheads per Releaseable Hour",
        result=total, currency=currency, lines=total_lines,
    )
    return breakdowns


def build_pricing_report(
    dataset,
    tech_stacks: List[Tuple[int, str]],
    with_breakdown: bool = False,
) -> PricingReport:
    """
    Price every stack (plus "unassigned" when such employees exist) for each
    of DEV and AGENTIC_AI having at least one effective-active employee.

    dataset is a view_resolver.EffectiveDataset; tech_stacks is (id, name)
    pairs in display order.
    """
    settings = dataset.settings
    overhead_types = dataset.active_overhead_types
    buckets = EmployeeBuckets(dataset.employees)
    currency = currency_label(dataset.exchange_ratio)

    add_ons = global_add_ons(buckets, overhead_types, settings)
    qa_team = buckets.category(EmployeeCategory.QA.value)
    ba_team = buckets.category(EmployeeCategory.BA.value)
    qa_decomposition = add_on_decomposition(qa_team, overhead_types, settings, "qa_ratio")
    ba_decomposition = add_on_decomposition(ba_team, overhead_types, settings, "ba_ratio")

    stacks: List[Tuple[Optional[int], str]] = list(tech_stacks)
    if buckets.has_unassigned():
        stacks.append((None, UNASSIGNED_STACK_NAME))

    priced: List[StackPricing] = []
    for stack_id, stack_name in stacks:
        for category in PRICED_CATEGORIES:
            team = buckets.get(category, stack_id)
            if not team:
                continue
            pricing = _price(category, stack_id, buckets, overhead_types, settings, add_ons, with_breakdown)
            if category == EmployeeCategory.DEV.value:
                row = compute_stack_row(
                    team, overhead_types, settings,
                    qa_add_on=qa_decomposition.total, ba_add_on=ba_decomposition.total,
                )
            else:
                row = compute_stack_row(team, overhead_types, settings)
            priced.append(StackPricing(
                tech_stack_id=stack_id,
                tech_stack_name=stack_name,
                category=category,
                pricing=pricing,
                row=row,
                row_breakdowns=_row_breakdowns(team, overhead_types, settings, currency) if with_breakdown else {},
            ))

    add_on_breakdowns: Dict[str, Breakdown] = {}
    if with_breakdown:
        qa, ba = add_ons
        add_on_breakdowns = {
            "qa_addon_hr": Breakdown(
                key="qa_addon_hr", title="QA Add-on per Dev Releaseable Hour",
                result=qa.value, currency=currency, lines=qa.lines,
            ),
            "ba_addon_hr": Breakdown(
                key="ba_addon_hr", title="BA Add-on per Dev Releaseable Hour",
                result=ba.value, currency=currency, lines=ba.lines,
            ),
        }

    logger.info(f"Priced {len(priced)} stack/category rows for view {dataset.view_id}")
    return PricingReport(
        view_id=dataset.view_id,
        currency=currency,
        stacks=priced,
        overhead_types=overhead_types,
        qa_add_on=qa_decomposition,
        ba_add_on=ba_decomposition,
        add_on_breakdowns=add_on_breakdowns,
        missing_settings=find_missing_settings(settings),
        inactive_employee_count=len(dataset.inactive_employees),
        inactive_overhead_type_count=len(dataset.inactive_overhead_types),
    )
