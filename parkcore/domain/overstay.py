# File: parkcore/domain/overstay.py
"""
Overstay Classifier

Grades an active session by how long it has been parked compared with the
thresholds configured for its (billing mode, vehicle category). Read-only:
classification never changes session or slot state.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import logging

from .billing import BillingCalculator
from .models import (
    BillingMode, VehicleCategory, Severity, Money, ThresholdTable, to_naive_utc
)


@dataclass(frozen=True)
class OverstayAssessment:
    severity: Severity
    elapsed_hours: float
    threshold_hours: float
    overstay_hours: float
    estimated_cost: Money


class OverstayClassifier:
    """
    Maps elapsed time to a severity.

    Elapsed time is real-valued here (no rounding up), unlike billing. The
    estimated cost is what the session would be billed if it ended now.
    """

    def __init__(self, thresholds: ThresholdTable, billing_calculator: BillingCalculator):
        self.thresholds = thresholds
        self.billing_calculator = billing_calculator
        self.logger = logging.getLogger(self.__class__.__name__)

    def classify(
        self,
        entry_time: datetime,
        now: datetime,
        billing_mode: BillingMode,
        vehicle_category: VehicleCategory
    ) -> Optional[OverstayAssessment]:
        """Return an assessment, or None when no threshold has been reached"""
        threshold = self.thresholds.lookup(BillingMode(billing_mode), VehicleCategory(vehicle_category))
        if threshold is None:
            self.logger.debug(f"No overstay thresholds for {billing_mode}/{vehicle_category}")
            return None

        entry_time = to_naive_utc(entry_time)
        now = to_naive_utc(now)
        if now < entry_time:
            return None

        elapsed_hours = (now - entry_time).total_seconds() / 3600
        reached = threshold.severity_for(elapsed_hours)
        if reached is None:
            return None

        severity, threshold_hours = reached
        estimate = self.billing_calculator.estimate(entry_time, billing_mode, now)
        return OverstayAssessment(
            severity=severity,
            elapsed_hours=elapsed_hours,
            threshold_hours=threshold_hours,
            overstay_hours=elapsed_hours - threshold_hours,
            estimated_cost=estimate.amount,
        )
