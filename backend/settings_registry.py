"""
Settings Registry

Settings are stored as text tagged with a value type. This module owns the
parse function for every kind and the single declarative table of
documented defaults that every pricing formula consults, so an undefined
key always means "use the default" rather than an error.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Union

from pricing_models import SettingValueType

logger = logging.getLogger(__name__)

ParsedValue = Union[float, int, bool, str]
SettingsMap = Dict[str, float]

# Allocation shares for one overhead type count as "100%" inside this band.
ALLOCATION_SUM_MIN = 0.995
ALLOCATION_SUM_MAX = 1.005


class SettingParseError(ValueError):
    """Raised when stored text cannot be parsed for its declared kind"""
    pass


# =============================================================================
# DEFINITIONS
# =============================================================================

@dataclass(frozen=True)
class SettingDefinition:
    key: str
    label: str
    description: str
    default: Optional[float]
    value_type: SettingValueType
    group: str
    unit: Optional[str] = None
    required: bool = False


SETTING_DEFINITIONS: Dict[str, SettingDefinition] = {
    d.key: d for d in [
        SettingDefinition(
            key="dev_releasable_hours_per_month",
            label="Dev Releasable Hours per Month",
            description="Billable/releasable hours per month for one DEV or AGENTIC_AI FTE",
            default=100.0,
            value_type=SettingValueType.FLOAT,
            group="Assumptions",
            unit="hours/month",
            required=True,
        ),
        SettingDefinition(
            key="standard_hours_per_month",
            label="Standard Hours per Month",
            description="Standard working hours per month (typically 160)",
            default=160.0,
            value_type=SettingValueType.FLOAT,
            group="Assumptions",
            unit="hours/month",
            required=True,
        ),
        SettingDefinition(
            key="qa_ratio",
            label="QA Ratio",
            description="QA hours per dev releaseable hour (0.5 = 50%)",
            default=0.5,
            value_type=SettingValueType.FLOAT,
            group="Ratios",
            unit="ratio",
            required=True,
        ),
        SettingDefinition(
            key="ba_ratio",
            label="BA Ratio",
            description="BA hours per dev releaseable hour (0.25 = 25%)",
            default=0.25,
            value_type=SettingValueType.FLOAT,
            group="Ratios",
            unit="ratio",
            required=True,
        ),
        SettingDefinition(
            key="margin",
            label="Margin",
            description="Profit margin applied to releaseable cost (0.2 = 20%)",
            default=0.2,
            value_type=SettingValueType.FLOAT,
            group="Pricing",
            unit="ratio",
            required=True,
        ),
        SettingDefinition(
            key="risk",
            label="Risk Factor",
            description="Risk adjustment applied after margin (0.1 = 10%)",
            default=0.1,
            value_type=SettingValueType.FLOAT,
            group="Pricing",
            unit="ratio",
            required=True,
        ),
        SettingDefinition(
            key="annual_increase",
            label="Annual Increase",
            description="Expected raise applied to gross monthly pay (0.1 = 10%)",
            default=0.0,
            value_type=SettingValueType.FLOAT,
            group="Assumptions",
            unit="ratio",
        ),
        SettingDefinition(
            key="exchange_ratio",
            label="Exchange Ratio",
            description="1 secondary-currency unit = X base-currency units (unset or 0 = base currency)",
            default=None,
            value_type=SettingValueType.FLOAT,
            group="Pricing",
            unit="base/secondary",
        ),
    ]
}

REQUIRED_SETTINGS: List[str] = [key for key, d in SETTING_DEFINITIONS.items() if d.required]

# Restored by the "reset core defaults" admin action.
CORE_DEFAULT_KEYS: List[str] = [
    "dev_releasable_hours_per_month",
    "standard_hours_per_month",
    "qa_ratio",
    "ba_ratio",
]


# =============================================================================
# TAGGED VALUES
# =============================================================================

def _parse_float(text: str) -> float:
    try:
        value = float(text.strip())
    except (TypeError, ValueError):
        raise SettingParseError(f"'{text}' is not a valid number")
    if not math.isfinite(value):
        raise SettingParseError(f"'{text}' is not a finite number")
    return value


def _parse_integer(text: str) -> int:
    stripped = text.strip()
    try:
        return int(stripped)
    except (TypeError, ValueError):
        pass
    # "12.7" is accepted and truncated, matching how the values were entered historically
    return int(_parse_float(stripped))


def _parse_boolean(text: str) -> bool:
    return text.strip() == "true"


def _parse_string(text: str) -> str:
    return text


_PARSERS = {
    SettingValueType.FLOAT: _parse_float,
    SettingValueType.NUMBER: _parse_float,
    SettingValueType.INTEGER: _parse_integer,
    SettingValueType.BOOLEAN: _parse_boolean,
    SettingValueType.STRING: _parse_string,
}


@dataclass(frozen=True)
class SettingValue:
    """
    A setting value as stored: raw text plus the kind it is parsed as.

    parse() gives the typed value; as_number() gives the value the pricing
    formulas consume (booleans become 1/0, non-numeric strings become 0).
    """
    kind: SettingValueType
    raw: str

    @classmethod
    def of(cls, raw: str, kind: Union[str, SettingValueType]) -> "SettingValue":
        return cls(kind=SettingValueType(kind), raw=raw)

    def parse(self) -> ParsedValue:
        return _PARSERS[self.kind](self.raw)

    def as_number(self) -> float:
        if self.kind == SettingValueType.BOOLEAN:
            return 1.0 if _parse_boolean(self.raw) else 0.0
        if self.kind == SettingValueType.STRING:
            try:
                return _parse_float(self.raw)
            except SettingParseError:
                return 0.0
        return float(self.parse())


def validate_setting_value(raw: Optional[str], kind: str) -> Optional[str]:
    """
    Validate text for a value type before it is written.

    Returns an error message, or None when the value is acceptable.
    """
    try:
        value_type = SettingValueType(kind)
    except ValueError:
        return "Invalid value type"

    if raw is None or raw.strip() == "":
        return "Value is required"

    if value_type == SettingValueType.BOOLEAN:
        if raw.strip() not in ("true", "false"):
            return "Value must be 'true' or 'false'"
        return None

    try:
        SettingValue(value_type, raw).parse()
    except SettingParseError:
        if value_type == SettingValueType.INTEGER:
            return "Value must be a valid integer"
        return "Value must be a valid number"
    return None


def parsed_values_equal(left: str, right: str, kind: Union[str, SettingValueType]) -> bool:
    """Compare two stored texts after parsing both with the same kind."""
    value_type = SettingValueType(kind)
    try:
        return SettingValue(value_type, left).parse() == SettingValue(value_type, right).parse()
    except SettingParseError:
        return False


# =============================================================================
# SETTINGS MAPS
# =============================================================================

def build_settings_map(rows: Iterable[Tuple[str, str, str]]) -> SettingsMap:
    """
    Build the key -> number map from (key, value, value_type) rows.

    Later rows win, so callers can pass global rows followed by overrides.
    A row that does not parse is skipped: an earlier parsed value for the key
    stays in place, otherwise the documented default applies.
    """
    settings: SettingsMap = {}
    for key, raw, kind in rows:
        try:
            settings[key] = SettingValue.of(raw, kind).as_number()
        except (SettingParseError, ValueError):
            logger.warning(f"Ignoring unparseable setting {key}={raw!r} ({kind})")
            continue
    return settings


def get_setting(settings: SettingsMap, key: str, default: Optional[float] = None) -> Optional[float]:
    """Value from the map, else the explicit default, else the documented default."""
    if key in settings and settings[key] is not None:
        return settings[key]
    if default is not None:
        return default
    definition = SETTING_DEFINITIONS.get(key)
    return definition.default if definition else None


def find_missing_settings(settings: SettingsMap) -> List[str]:
    return [key for key in REQUIRED_SETTINGS if key not in settings]
