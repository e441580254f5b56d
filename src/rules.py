import dataclasses
import json
import logging
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "RECONCILIATION_CONFIG_PATH"
DEFAULT_CONFIG_PATH = "config/recon_config.json"

DEFAULT_KEYS = ("CustomerDomainName", "ProductId")
STRICT_KEYS = ("CustomerDomainName", "ProductId", "ChargeType", "ChargeStartDate", "SubscriptionId")


@dataclass(frozen=True)
class ValidationOptions:
    numeric_tolerance: Decimal = Decimal("0.01")
    date_tolerance_days: int = 0
    text_distance: int = 2
    blank_threshold: Decimal = Decimal("0.1")
    max_detailed_rows: int = 50


@dataclass(frozen=True)
class ReconciliationOptions:
    amount_tolerance: Decimal = Decimal("0.01")
    quantity_tolerance: Decimal = Decimal("0.01")
    high_priority_threshold: Decimal = Decimal("20")
    composite_keys: Tuple[str, ...] = DEFAULT_KEYS
    strict_composite_keys: Tuple[str, ...] = STRICT_KEYS
    strict_keys: bool = False
    column_map_path: str = "config/column_map.json"
    excluded_tenants: Tuple[str, ...] = ()
    tenant_column: str = "CustomerId"
    hide_missing: bool = False
    excluded_category: str = "Azure plan"
    filter_partner: bool = True

    @property
    def key_columns(self) -> Tuple[str, ...]:
        return self.strict_composite_keys if self.strict_keys else self.composite_keys


@dataclass(frozen=True)
class Rules:
    validation: ValidationOptions = field(default_factory=ValidationOptions)
    reconciliation: ReconciliationOptions = field(default_factory=ReconciliationOptions)


def _snake(name: str) -> str:
    s = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", str(name).strip())
    return s.replace("-", "_").lower()


def _coerce(current: Any, value: Any) -> Any:
    if isinstance(current, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(current, Decimal):
        return Decimal(str(value))
    if isinstance(current, int):
        return int(value)
    if isinstance(current, tuple):
        if isinstance(value, str):
            value = [v for v in value.split(",")]
        return tuple(str(v).strip() for v in value if str(v).strip())
    return str(value)


def _build(cls, raw: Optional[Dict[str, Any]]):
    defaults = cls()
    if not raw:
        return defaults
    known = {f.name for f in dataclasses.fields(cls)}
    changes = {}
    for key, value in raw.items():
        name = _snake(key)
        if name not in known:
            logger.warning("Ignoring unknown setting '%s' in %s", key, cls.__name__)
            continue
        if value is None:
            continue
        changes[name] = _coerce(getattr(defaults, name), value)
    return dataclasses.replace(defaults, **changes)


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    for key, value in raw.items():
        if str(key).strip().lower() == name and isinstance(value, dict):
            return value
    return {}


def parse_rules(raw: Dict[str, Any]) -> Rules:
    return Rules(
        validation=_build(ValidationOptions, _section(raw, "validation")),
        reconciliation=_build(ReconciliationOptions, _section(raw, "reconciliation")),
    )


def load_rules(path: Optional[str] = None) -> Rules:
    """
    Settings from JSON, falling back to defaults. A missing or unreadable
    document never stops a run.
    """
    path = path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    if not os.path.exists(path):
        logger.warning("Config file %s not found. Using defaults.", path)
        return Rules()
    try:
        with open(path, "r", encoding="utf-8-sig") as f:
            raw: Dict[str, Any] = json.load(f)
        rules = parse_rules(raw if isinstance(raw, dict) else {})
    except (OSError, ValueError, TypeError, ArithmeticError) as exc:
        logger.warning("Could not read config %s (%s). Using defaults.", path, exc)
        return Rules()
    logger.info("Loaded config: %s", path)
    return rules
