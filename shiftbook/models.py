"""
Domain models for the shift earnings tracker.

Attribute names are snake_case and double as the remote column names;
every model also carries a camelCase alias, which is the shape used by
the local snapshot, backup files and the HTTP surface.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class PaymentModel(str, Enum):
    """How a workplace pays for a shift."""

    FIXED = "fixed"
    PER_PATIENT = "per_patient"
    MIXED = "mixed"
    DETAILED = "detailed"


class ReminderKind(str, Enum):
    START = "start"
    END = "end"


# Known models resolve to the enum; anything else is kept as a plain string
# so older snapshots and remote rows still load (they earn 0).
PaymentModelField = Annotated[
    PaymentModel | str, Field(union_mode="left_to_right")
]
# Wall-clock "HH:MM" (a single-digit hour is accepted), 00:00 through 23:59.
TimeOfDay = Annotated[str, Field(pattern=r"^([01]?\d|2[0-3]):[0-5]\d$")]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ItemRate(CamelModel):
    """A billable service line used by the detailed payment model."""

    id: str
    name: str
    rate: float


def _check_unique_item_rates(
    value: list[ItemRate] | None,
) -> list[ItemRate] | None:
    if value is None:
        return value
    seen: set[str] = set()
    for item in value:
        if item.id in seen:
            raise ValueError(f"Duplicate item rate id: {item.id}")
        seen.add(item.id)
    return value


class HospitalBase(CamelModel):
    name: str
    payment_model: PaymentModelField
    fixed_rate: float = 0
    per_patient_rate: float = 0
    fixed_salary: float | None = None
    item_rates: list[ItemRate] | None = None
    color: str | None = None

    @field_validator("item_rates")
    @classmethod
    def unique_item_rate_ids(cls, value: list[ItemRate] | None):
        return _check_unique_item_rates(value)


class HospitalCreate(HospitalBase):
    """Payload for registering a workplace; id and timestamps are assigned."""


class Hospital(HospitalBase):
    """A workplace the user logs shifts against."""

    id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now())
    updated_at: datetime = Field(default_factory=lambda: datetime.now())


class HospitalUpdate(CamelModel):
    """Partial workplace update. Only fields that were set are applied."""

    name: str | None = None
    payment_model: PaymentModelField | None = None
    fixed_rate: float | None = None
    per_patient_rate: float | None = None
    fixed_salary: float | None = None
    item_rates: list[ItemRate] | None = None
    color: str | None = None

    @field_validator("item_rates")
    @classmethod
    def unique_item_rate_ids(cls, value: list[ItemRate] | None):
        return _check_unique_item_rates(value)


class ShiftBase(CamelModel):
    hospital_id: str
    date: datetime
    start_time: TimeOfDay
    end_time: TimeOfDay
    cases_count: int = 0
    procedures_count: int = 0
    includes_outpatient: bool = False
    notes: str | None = None
    custom_rate: float | None = None
    item_counts: dict[str, int] | None = None


class ShiftCreate(ShiftBase):
    """Payload for logging a shift. Earnings are always computed, never read."""


class Shift(ShiftBase):
    """One worked period at a workplace."""

    id: str
    total_earnings: float = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now())
    updated_at: datetime = Field(default_factory=lambda: datetime.now())


class ShiftUpdate(CamelModel):
    """Partial shift update. Only fields that were set are applied."""

    hospital_id: str | None = None
    date: datetime | None = None
    start_time: TimeOfDay | None = None
    end_time: TimeOfDay | None = None
    cases_count: int | None = None
    procedures_count: int | None = None
    includes_outpatient: bool | None = None
    notes: str | None = None
    custom_rate: float | None = None
    item_counts: dict[str, int] | None = None


class UserProfile(CamelModel):
    name: str = ""
    title: str = ""
    email: str = ""
    gender: str | None = None


class ProfileUpdate(CamelModel):
    name: str | None = None
    title: str | None = None
    email: str | None = None
    gender: str | None = None


class AppSnapshot(CamelModel):
    """Everything that is persisted locally for the current device."""

    user_profile: UserProfile = Field(default_factory=UserProfile)
    notifications_enabled: bool = False
    hospitals: list[Hospital] = Field(default_factory=list)
    shifts: list[Shift] = Field(default_factory=list)


class BackupFile(AppSnapshot):
    """A snapshot exported for restore-from-backup."""

    version: int = 1
    export_date: datetime = Field(default_factory=lambda: datetime.now())


class ScheduledReminder(CamelModel):
    """A notification derived from a shift's time window."""

    id: int
    shift_id: str
    kind: ReminderKind
    fire_at: datetime
    title: str
    body: str


class EstimateRequest(CamelModel):
    hospital_id: str
    cases_count: float = 0
    custom_rate: float | None = None
    item_counts: dict[str, float] | None = None
    start_time: TimeOfDay
    end_time: TimeOfDay


class EarningsEstimate(CamelModel):
    """
    Computed earnings for a shift together with the advisory pro-rata
    amount for shifts shorter than the 24 hour reference shift.
    """

    earnings: float
    hours: float
    pro_rata: float
    is_partial: bool


class HospitalIncome(CamelModel):
    hospital_id: str
    hospital_name: str
    income: float
    shifts: int
    color: str


class MonthlyStats(CamelModel):
    year: int
    month: int
    total_shifts: int
    total_patients: int
    total_income: float
    average_per_shift: float
    income_by_hospital: list[HospitalIncome] = Field(default_factory=list)
    recent_shifts: list[Shift] = Field(default_factory=list)


class Totals(CamelModel):
    total_shifts: int
    total_hospitals: int
    total_earnings: float


class LoginRequest(BaseModel):
    email: str
    password: str


class NotificationsRequest(BaseModel):
    enabled: bool
