"""
Payment model evaluation.

Everything here is pure: no store access, no I/O. Callers resolve the
workplace first and pass ``None`` when it does not exist.
"""

import math
from collections.abc import Mapping

from shiftbook.models import EarningsEstimate, Hospital, PaymentModel

# Length of the reference shift the workplace rates are quoted for.
REFERENCE_SHIFT_HOURS = 24


def compute_earnings(
    hospital: Hospital | None,
    cases_count: float,
    custom_rate: float | None = None,
    item_counts: Mapping[str, float] | None = None,
) -> float:
    """
    Compute what a shift is worth at ``hospital``.

    A positive ``custom_rate`` wins over every payment model. Unknown
    workplaces and unknown payment models both earn 0. Counts are used
    as given, negative or fractional values included.
    """
    if hospital is None:
        return 0

    if custom_rate is not None and custom_rate > 0:
        return custom_rate

    match hospital.payment_model:
        case PaymentModel.FIXED:
            return hospital.fixed_rate
        case PaymentModel.PER_PATIENT:
            return cases_count * hospital.per_patient_rate
        case PaymentModel.MIXED:
            return hospital.fixed_rate + cases_count * hospital.per_patient_rate
        case PaymentModel.DETAILED:
            total = hospital.fixed_salary or 0
            counts = item_counts or {}
            for item in hospital.item_rates or []:
                total += counts.get(item.id, 0) * item.rate
            return total
        case _:
            return 0


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def shift_duration_hours(start: str, end: str) -> float:
    """
    Hours between two "HH:MM" wall-clock times, rounded to 2 decimals.
    An end at or before the start spans midnight.
    """
    minutes = _minutes(end) - _minutes(start)
    if minutes <= 0:
        minutes += 24 * 60
    return round(minutes / 60, 2)


def pro_rata_earnings(full_amount: float, hours: float) -> int:
    """Share of a full reference-shift amount for ``hours``, half-up rounded."""
    return math.floor(full_amount / REFERENCE_SHIFT_HOURS * hours + 0.5)


def estimate_earnings(
    hospital: Hospital | None,
    cases_count: float,
    start_time: str,
    end_time: str,
    custom_rate: float | None = None,
    item_counts: Mapping[str, float] | None = None,
) -> EarningsEstimate:
    earnings = compute_earnings(hospital, cases_count, custom_rate, item_counts)
    hours = shift_duration_hours(start_time, end_time)
    is_partial = hours < REFERENCE_SHIFT_HOURS
    return EarningsEstimate(
        earnings=earnings,
        hours=hours,
        pro_rata=pro_rata_earnings(earnings, hours) if is_partial else earnings,
        is_partial=is_partial,
    )
