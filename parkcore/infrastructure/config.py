# File: parkcore/infrastructure/config.py
"""
Configuration for the parking engine

Settings are pydantic models loaded from an optional YAML file and a few
environment variables. Validated settings are turned into immutable domain
objects (RateTable, ThresholdTable) before any component sees them; an
invalid configuration raises ConfigurationError and the process must not
start.

Sources, later wins:
1. built-in defaults
2. YAML file (argument, or the PARKCORE_CONFIG environment variable)
3. DATABASE_URL / PARKCORE_TX_TIMEOUT / PARKCORE_LOG_LEVEL environment variables
"""

from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional
import logging
import os

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..domain.exceptions import ConfigurationError
from ..domain.models import (
    BillingMode, VehicleCategory, RateSlab, RateTable, OverstayThreshold, ThresholdTable
)

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "PARKCORE_CONFIG"


# ============================================================================
# SETTINGS MODELS
# ============================================================================

class SettingsModel(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)


class RateSlabSettings(SettingsModel):
    min_hours: int = Field(ge=0)
    max_hours: int = Field(gt=0)
    rate: Decimal = Field(ge=0)

    @field_validator('rate', mode='before')
    @classmethod
    def _rate_as_text(cls, value):
        # YAML floats would carry binary noise into Decimal
        if isinstance(value, float):
            return str(value)
        return value


def _default_slabs() -> List[RateSlabSettings]:
    return [
        RateSlabSettings(min_hours=0, max_hours=1, rate=Decimal('50')),
        RateSlabSettings(min_hours=1, max_hours=3, rate=Decimal('100')),
        RateSlabSettings(min_hours=3, max_hours=6, rate=Decimal('150')),
        RateSlabSettings(min_hours=6, max_hours=24, rate=Decimal('200')),
    ]


class BillingSettings(SettingsModel):
    currency: str = Field(default="INR", min_length=3, max_length=3)
    day_pass_rate: Decimal = Field(default=Decimal('150'), ge=0)
    hourly_slabs: List[RateSlabSettings] = Field(default_factory=_default_slabs, min_length=1)

    @field_validator('day_pass_rate', mode='before')
    @classmethod
    def _day_pass_as_text(cls, value):
        if isinstance(value, float):
            return str(value)
        return value

    def to_rate_table(self) -> RateTable:
        return RateTable(
            slabs=tuple(RateSlab(s.min_hours, s.max_hours, s.rate) for s in self.hourly_slabs),
            day_pass_rate=self.day_pass_rate,
            currency=self.currency,
        )


class ThresholdSettings(SettingsModel):
    warning: float = Field(gt=0)
    alert: float = Field(gt=0)
    critical: float = Field(gt=0)

    @model_validator(mode='after')
    def _ordered(self):
        if not (self.warning < self.alert < self.critical):
            raise ValueError(
                f"thresholds must satisfy warning < alert < critical, got "
                f"{self.warning}/{self.alert}/{self.critical}"
            )
        return self


def _default_thresholds() -> Dict[BillingMode, Dict[VehicleCategory, ThresholdSettings]]:
    hourly = {
        VehicleCategory.CAR: ThresholdSettings(warning=6, alert=8, critical=12),
        VehicleCategory.BIKE: ThresholdSettings(warning=4, alert=6, critical=8),
        VehicleCategory.EV: ThresholdSettings(warning=8, alert=10, critical=14),
        VehicleCategory.HANDICAP_ACCESSIBLE: ThresholdSettings(warning=8, alert=12, critical=16),
    }
    day_pass = {category: ThresholdSettings(warning=24, alert=30, critical=48) for category in VehicleCategory}
    return {BillingMode.HOURLY: hourly, BillingMode.DAY_PASS: day_pass}


class OverstaySettings(SettingsModel):
    thresholds: Dict[BillingMode, Dict[VehicleCategory, ThresholdSettings]] = Field(
        default_factory=_default_thresholds
    )

    @field_validator('thresholds', mode='after')
    @classmethod
    def _over_defaults(cls, value):
        """Configured pairs replace defaults one (mode, category) at a time"""
        merged = _default_thresholds()
        for mode, per_category in value.items():
            merged.setdefault(mode, {}).update(per_category)
        return merged

    def to_threshold_table(self) -> ThresholdTable:
        entries = {}
        for mode, per_category in self.thresholds.items():
            for category, t in per_category.items():
                entries[(mode, category)] = OverstayThreshold(t.warning, t.alert, t.critical)
        return ThresholdTable(entries)


class EngineSettings(SettingsModel):
    database_url: str = "sqlite:///./parkcore.db"
    transaction_timeout_seconds: float = Field(default=10.0, gt=0)
    max_allocation_attempts: int = Field(default=2, ge=1, le=10)
    isolation_level: str = "READ COMMITTED"
    echo_sql: bool = False


class LoggingSettings(SettingsModel):
    level: str = "INFO"
    log_dir: Optional[str] = "logs"
    log_file: str = "parkcore.log"

    @field_validator('level')
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"unknown log level: {value}")
        return value


class AppSettings(SettingsModel):
    engine: EngineSettings = Field(default_factory=EngineSettings)
    billing: BillingSettings = Field(default_factory=BillingSettings)
    overstay: OverstaySettings = Field(default_factory=OverstaySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def rate_table(self) -> RateTable:
        return self.billing.to_rate_table()

    def threshold_table(self) -> ThresholdTable:
        return self.overstay.to_threshold_table()


# ============================================================================
# LOADING
# ============================================================================

def _read_yaml(path: str) -> Dict[str, Any]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping at the top level")
    return data


def _apply_environment(data: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    engine = dict(data.get('engine') or {})
    if environ.get('DATABASE_URL'):
        engine['database_url'] = environ['DATABASE_URL']
    if environ.get('PARKCORE_TX_TIMEOUT'):
        engine['transaction_timeout_seconds'] = environ['PARKCORE_TX_TIMEOUT']
    if engine:
        data['engine'] = engine

    if environ.get('PARKCORE_LOG_LEVEL'):
        log_section = dict(data.get('logging') or {})
        log_section['level'] = environ['PARKCORE_LOG_LEVEL']
        data['logging'] = log_section
    return data


def build_settings(data: Optional[Dict[str, Any]] = None) -> AppSettings:
    """
    Validate raw settings and the domain objects built from them.

    Raises ConfigurationError for anything the engine cannot run with.
    """
    try:
        settings = AppSettings.model_validate(data or {})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    # Contiguity and ordering rules live on the domain objects
    settings.rate_table()
    settings.threshold_table()
    return settings


def load_settings(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> AppSettings:
    environ = os.environ if environ is None else environ
    path = path or environ.get(CONFIG_ENV_VAR)

    data: Dict[str, Any] = {}
    if path:
        logger.info(f"Loading configuration from {path}")
        data = _read_yaml(path)

    return build_settings(_apply_environment(data, environ))
