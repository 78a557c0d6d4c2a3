"""Earnings aggregations for the dashboard and profile views."""

from collections.abc import Iterable

from shiftbook.models import Hospital, HospitalIncome, MonthlyStats, Shift, Totals

DEFAULT_HOSPITAL_COLOR = "#3b82f6"


def shifts_in_month(shifts: Iterable[Shift], year: int, month: int) -> list[Shift]:
    return [s for s in shifts if s.date.year == year and s.date.month == month]


def income_by_hospital(
    shifts: Iterable[Shift], hospitals: Iterable[Hospital]
) -> list[HospitalIncome]:
    """Per-hospital income, leaving out hospitals that earned nothing."""
    shifts = list(shifts)
    breakdown = []
    for hospital in hospitals:
        hospital_shifts = [s for s in shifts if s.hospital_id == hospital.id]
        income = sum(s.total_earnings for s in hospital_shifts)
        if income > 0:
            breakdown.append(
                HospitalIncome(
                    hospital_id=hospital.id,
                    hospital_name=hospital.name,
                    income=income,
                    shifts=len(hospital_shifts),
                    color=hospital.color or DEFAULT_HOSPITAL_COLOR,
                )
            )
    return breakdown


def monthly_stats(
    shifts: Iterable[Shift], hospitals: Iterable[Hospital], year: int, month: int
) -> MonthlyStats:
    month_shifts = shifts_in_month(shifts, year, month)
    total_income = sum(s.total_earnings for s in month_shifts)
    return MonthlyStats(
        year=year,
        month=month,
        total_shifts=len(month_shifts),
        total_patients=sum(s.cases_count for s in month_shifts),
        total_income=total_income,
        average_per_shift=total_income / len(month_shifts) if month_shifts else 0,
        income_by_hospital=income_by_hospital(month_shifts, hospitals),
        # Compare calendar days, not instants: remote rows may carry a timezone.
        recent_shifts=sorted(
            month_shifts, key=lambda s: (s.date.date(), s.start_time), reverse=True
        ),
    )


def totals(shifts: Iterable[Shift], hospitals: Iterable[Hospital]) -> Totals:
    shifts = list(shifts)
    return Totals(
        total_shifts=len(shifts),
        total_hospitals=len(list(hospitals)),
        total_earnings=sum(s.total_earnings for s in shifts),
    )
