# File: parkcore/domain/billing.py
"""
Billing Calculator

Domain service turning a stay into a charge:
- HOURLY stays are billed by rounding the duration up to whole hours and
  applying the flat rate of the slab that holds that hour count
- DAY_PASS stays are billed the day-pass rate regardless of duration

The calculator is pure: same inputs, same outputs, no clock reads except in
`estimate`, which takes `now` explicitly.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional
import logging

from .models import BillingMode, Money, RateSlab, RateTable, to_naive_utc


_MICROS_PER_HOUR = 3600 * 1000 * 1000


def _total_microseconds(delta: timedelta) -> int:
    return (delta.days * 86400 + delta.seconds) * 1000000 + delta.microseconds


def billable_hours(entry_time: datetime, exit_time: datetime) -> int:
    """
    Whole hours for billing: the exact duration rounded up.

    61 minutes is 2 hours; exactly 60 minutes is 1 hour. Integer arithmetic
    keeps the boundary exact.
    """
    micros = _total_microseconds(to_naive_utc(exit_time) - to_naive_utc(entry_time))
    if micros < 0:
        raise ValueError("Exit time cannot be before entry time")
    return -(-micros // _MICROS_PER_HOUR)


def format_duration(delta: timedelta) -> str:
    """Render a duration as "Xh Ym", truncating seconds"""
    total_minutes = max(0, int(delta.total_seconds() // 60))
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes}m"


@dataclass(frozen=True)
class BillingResult:
    amount: Money
    duration_hours: int
    duration: str
    billing_mode: BillingMode
    applied_slab: Optional[RateSlab] = None


class BillingCalculator:
    """Computes charges from an immutable RateTable"""

    def __init__(self, rate_table: RateTable):
        self.rate_table = rate_table
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def currency(self) -> str:
        return self.rate_table.currency

    def compute_amount(
        self,
        entry_time: datetime,
        exit_time: datetime,
        billing_mode: BillingMode
    ) -> BillingResult:
        """
        Charge for a stay from entry_time to exit_time.

        An hour count outside every slab range (zero, or past the table) is
        billed at the last slab.
        """
        hours = billable_hours(entry_time, exit_time)
        duration = format_duration(to_naive_utc(exit_time) - to_naive_utc(entry_time))
        billing_mode = BillingMode(billing_mode)

        if billing_mode == BillingMode.DAY_PASS:
            return BillingResult(
                amount=Money(self.rate_table.day_pass_rate, self.currency),
                duration_hours=hours,
                duration=duration,
                billing_mode=billing_mode,
            )

        slab = self.rate_table.slab_for(hours)
        self.logger.debug(f"{hours}h billed on slab ({slab.min_hours}, {slab.max_hours}] at {slab.rate}")
        return BillingResult(
            amount=Money(slab.rate, self.currency),
            duration_hours=hours,
            duration=duration,
            billing_mode=billing_mode,
            applied_slab=slab,
        )

    def estimate(self, entry_time: datetime, billing_mode: BillingMode, now: datetime) -> BillingResult:
        """What the session would cost if it ended at `now`"""
        return self.compute_amount(entry_time, now, billing_mode)

    def rate_preview(self) -> List[str]:
        """Human readable description of every slab plus the day pass"""
        lines = [slab.describe(self.currency) for slab in self.rate_table.slabs]
        last = self.rate_table.slabs[-1]
        lines.append(f"Over {last.max_hours} hours: {last.rate} {self.currency} (capped)")
        lines.append(f"Day pass: {self.rate_table.day_pass_rate} {self.currency}")
        return lines
