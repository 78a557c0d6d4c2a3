"""
The domain store: the single in-memory owner of hospitals and shifts.

Every mutator is synchronous. It applies its change in memory, writes the
snapshot through the local persistence slot, and then starts (without
awaiting) the remote push and reminder work on the running event loop.
Callers that need to know the remote copy is up to date await
``sync_data`` / ``fetch_data`` instead.

``sync_data`` and ``fetch_data`` are not serialized against each other:
when two fetches overlap, whichever finishes last wins.
"""

import asyncio
import logging
import uuid
from collections.abc import Coroutine, Mapping
from datetime import datetime
from typing import Any

from shiftbook.database import InMemoryKeyValueDatabase
from shiftbook.earnings import compute_earnings, estimate_earnings
from shiftbook.exceptions import NotAuthenticatedError
from shiftbook.models import (
    AppSnapshot,
    BackupFile,
    EarningsEstimate,
    EstimateRequest,
    Hospital,
    HospitalCreate,
    HospitalUpdate,
    ProfileUpdate,
    Shift,
    ShiftCreate,
    ShiftUpdate,
    UserProfile,
)
from shiftbook.persistence import LocalPersistence, parse_backup
from shiftbook.reminders import ReminderScheduler
from shiftbook.remote import RemoteState, RemoteSync

logger = logging.getLogger(__name__)

HOSPITAL_COLORS = [
    "#3b82f6",  # blue
    "#10b981",  # emerald
    "#f59e0b",  # amber
    "#8b5cf6",  # violet
    "#ec4899",  # pink
    "#06b6d4",  # cyan
    "#f97316",  # orange
    "#6366f1",  # indigo
]

# Shift fields whose change requires recomputing total_earnings.
EARNINGS_FIELDS = frozenset({"hospital_id", "cases_count", "custom_rate", "item_counts"})

UNKNOWN_HOSPITAL_NAME = "your workplace"


def generate_id() -> str:
    return str(uuid.uuid4())


class ShiftStore:
    def __init__(
        self,
        snapshot: AppSnapshot | None = None,
        persistence: LocalPersistence | None = None,
        remote: RemoteSync | None = None,
        reminders: ReminderScheduler | None = None,
    ) -> None:
        self.persistence = persistence
        self.remote = remote
        self.reminders = reminders
        self.hospitals_db: InMemoryKeyValueDatabase[str, Hospital] = (
            InMemoryKeyValueDatabase[str, Hospital]()
        )
        self.shifts_db: InMemoryKeyValueDatabase[str, Shift] = (
            InMemoryKeyValueDatabase[str, Shift]()
        )
        self.user_profile = UserProfile()
        self.notifications_enabled = False
        self._background_tasks: set[asyncio.Task] = set()
        self._apply_snapshot(snapshot or AppSnapshot())

    @classmethod
    def open(
        cls,
        persistence: LocalPersistence,
        remote: RemoteSync | None = None,
        reminders: ReminderScheduler | None = None,
    ) -> "ShiftStore":
        """Restore the store from its persisted snapshot."""
        snapshot = persistence.load()
        logger.info(
            f"Loaded {len(snapshot.hospitals)} hospitals and "
            f"{len(snapshot.shifts)} shifts from {persistence.path}"
        )
        return cls(snapshot, persistence=persistence, remote=remote, reminders=reminders)

    # --- Snapshot ---

    def _apply_snapshot(self, snapshot: AppSnapshot) -> None:
        self.user_profile = snapshot.user_profile
        self.notifications_enabled = snapshot.notifications_enabled
        self.hospitals_db.replace_all((h.id, h) for h in snapshot.hospitals)
        self.shifts_db.replace_all((s.id, s) for s in snapshot.shifts)

    def snapshot(self) -> AppSnapshot:
        return AppSnapshot(
            user_profile=self.user_profile,
            notifications_enabled=self.notifications_enabled,
            hospitals=self.hospitals_db.all(),
            shifts=self.shifts_db.all(),
        )

    def _persist(self) -> None:
        if self.persistence is not None:
            self.persistence.save(self.snapshot())

    # --- Background work ---

    def _spawn(self, coro: Coroutine[Any, Any, Any], description: str) -> None:
        """Start ``coro`` on the running loop without awaiting it."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug(f"No running event loop, {description} not started")
            return
        task = loop.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def wait_for_background_tasks(self) -> None:
        while self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    def _push(self, description: str, make_coro) -> None:
        if self.remote is not None:
            self._spawn(make_coro(self.remote), f"remote {description}")

    def _hospital_name(self, hospital_id: str) -> str:
        hospital = self.hospitals_db.get(hospital_id)
        return hospital.name if hospital else UNKNOWN_HOSPITAL_NAME

    # --- Reads ---

    @property
    def hospitals(self) -> list[Hospital]:
        return self.hospitals_db.all()

    @property
    def shifts(self) -> list[Shift]:
        return self.shifts_db.all()

    def get_hospital(self, hospital_id: str) -> Hospital | None:
        return self.hospitals_db.get(hospital_id)

    def get_shift(self, shift_id: str) -> Shift | None:
        return self.shifts_db.get(shift_id)

    # --- Earnings ---

    def calculate_shift_earnings(
        self,
        hospital_id: str,
        cases_count: float,
        custom_rate: float | None = None,
        item_counts: Mapping[str, float] | None = None,
    ) -> float:
        return compute_earnings(
            self.hospitals_db.get(hospital_id), cases_count, custom_rate, item_counts
        )

    def estimate(self, request: EstimateRequest) -> EarningsEstimate:
        return estimate_earnings(
            self.hospitals_db.get(request.hospital_id),
            request.cases_count,
            request.start_time,
            request.end_time,
            custom_rate=request.custom_rate,
            item_counts=request.item_counts,
        )

    # --- Hospitals ---

    def add_hospital(self, data: HospitalCreate) -> Hospital:
        now = datetime.now()
        fields = data.model_dump()
        fields["color"] = data.color or HOSPITAL_COLORS[
            len(self.hospitals_db) % len(HOSPITAL_COLORS)
        ]
        hospital = Hospital(**fields, id=generate_id(), created_at=now, updated_at=now)
        self.hospitals_db.put(hospital.id, hospital)
        self._persist()
        logger.info(f"Added hospital {hospital.id} ({hospital.name})")

        self._push(
            f"upsert of hospital {hospital.id}",
            lambda remote: remote.push_hospital(hospital),
        )
        return hospital

    def update_hospital(self, hospital_id: str, updates: HospitalUpdate) -> Hospital | None:
        """
        Merge the fields set on ``updates`` into the hospital. Shifts keep
        the earnings they were computed with. Unknown ids are ignored.
        """
        existing = self.hospitals_db.get(hospital_id)
        if existing is None:
            logger.debug(f"Hospital {hospital_id} not found, update ignored")
            return None

        changes = updates.model_dump(exclude_unset=True)
        hospital = Hospital.model_validate(
            {**existing.model_dump(), **changes, "updated_at": datetime.now()}
        )
        self.hospitals_db.put(hospital_id, hospital)
        self._persist()
        logger.info(f"Updated hospital {hospital_id}: {sorted(changes)}")

        self._push(
            f"upsert of hospital {hospital_id}",
            lambda remote: remote.push_hospital(hospital),
        )
        return hospital

    def delete_hospital(self, hospital_id: str) -> bool:
        """Delete a hospital together with every shift logged against it."""
        if self.hospitals_db.delete(hospital_id) is None:
            logger.debug(f"Hospital {hospital_id} not found, delete ignored")
            return False

        removed = self.shifts_db.delete_where(lambda s: s.hospital_id == hospital_id)
        self._persist()
        logger.info(
            f"Deleted hospital {hospital_id} and {len(removed)} of its shifts"
        )

        if self.reminders is not None:
            for shift in removed:
                self._spawn(
                    self.reminders.cancel_for_shift(shift.id),
                    f"reminder cancel for shift {shift.id}",
                )
        self._push(
            f"delete of hospital {hospital_id}",
            lambda remote: remote.delete_hospital(hospital_id),
        )
        return True

    # --- Shifts ---

    def _schedule_reminders(self, shift: Shift, reschedule: bool) -> None:
        if self.reminders is None or not self.notifications_enabled:
            return
        name = self._hospital_name(shift.hospital_id)
        if reschedule:
            coro = self.reminders.reschedule(shift, name)
        else:
            coro = self.reminders.schedule_for_shift(shift, name)
        self._spawn(coro, f"reminders for shift {shift.id}")

    def add_shift(self, data: ShiftCreate) -> Shift:
        now = datetime.now()
        total_earnings = self.calculate_shift_earnings(
            data.hospital_id, data.cases_count, data.custom_rate, data.item_counts
        )
        shift = Shift(
            **data.model_dump(),
            id=generate_id(),
            total_earnings=total_earnings,
            created_at=now,
            updated_at=now,
        )
        self.shifts_db.put(shift.id, shift)
        self._persist()
        logger.info(
            f"Added shift {shift.id} at hospital {shift.hospital_id} "
            f"earning {total_earnings}"
        )

        self._push(f"upsert of shift {shift.id}", lambda remote: remote.push_shift(shift))
        self._schedule_reminders(shift, reschedule=False)
        return shift

    def update_shift(self, shift_id: str, updates: ShiftUpdate) -> Shift | None:
        """
        Merge the fields set on ``updates`` into the shift. Earnings are
        recomputed only when a field in ``EARNINGS_FIELDS`` was set.
        """
        existing = self.shifts_db.get(shift_id)
        if existing is None:
            logger.debug(f"Shift {shift_id} not found, update ignored")
            return None

        changes = updates.model_dump(exclude_unset=True)
        shift = Shift.model_validate(
            {**existing.model_dump(), **changes, "updated_at": datetime.now()}
        )
        if EARNINGS_FIELDS & changes.keys():
            shift.total_earnings = self.calculate_shift_earnings(
                shift.hospital_id, shift.cases_count, shift.custom_rate, shift.item_counts
            )
        self.shifts_db.put(shift_id, shift)
        self._persist()
        logger.info(f"Updated shift {shift_id}: {sorted(changes)}")

        self._push(f"upsert of shift {shift_id}", lambda remote: remote.push_shift(shift))
        self._schedule_reminders(shift, reschedule=True)
        return shift

    def delete_shift(self, shift_id: str) -> bool:
        if self.shifts_db.delete(shift_id) is None:
            logger.debug(f"Shift {shift_id} not found, delete ignored")
            return False
        self._persist()
        logger.info(f"Deleted shift {shift_id}")

        if self.reminders is not None:
            self._spawn(
                self.reminders.cancel_for_shift(shift_id),
                f"reminder cancel for shift {shift_id}",
            )
        self._push(
            f"delete of shift {shift_id}", lambda remote: remote.delete_shift(shift_id)
        )
        return True

    # --- Profile and notifications ---

    def update_user_profile(self, updates: ProfileUpdate) -> UserProfile:
        changes = updates.model_dump(exclude_unset=True)
        self.user_profile = UserProfile.model_validate(
            {**self.user_profile.model_dump(), **changes}
        )
        self._persist()

        profile = self.user_profile
        self._push("upsert of profile", lambda remote: remote.push_profile(profile))
        return profile

    async def set_notifications_enabled(self, enabled: bool) -> bool:
        """
        Turn shift reminders on or off. Turning them on needs the
        notifier's permission; returns whether the requested state was set.
        """
        if not enabled:
            self.notifications_enabled = False
            self._persist()
            if self.reminders is not None:
                for shift in self.shifts_db.all():
                    await self.reminders.cancel_for_shift(shift.id)
            return True

        if self.reminders is None:
            logger.warning("No reminder scheduler configured, notifications unavailable")
            return False

        if not await self.reminders.request_permission():
            logger.info("Notification permission denied")
            return False

        self.notifications_enabled = True
        self._persist()
        for shift in self.shifts_db.all():
            await self.reminders.schedule_for_shift(
                shift, self._hospital_name(shift.hospital_id)
            )
        return True

    # --- Backup ---

    def import_data(self, snapshot: AppSnapshot) -> None:
        """
        Replace all local state with ``snapshot``. Nothing is pushed.
        Reminders of the replaced shifts are cancelled and, when the
        imported preference has notifications on, the imported shifts get
        theirs.
        """
        replaced = [shift.id for shift in self.shifts_db]
        self._apply_snapshot(snapshot)
        self._persist()
        logger.info(
            f"Imported {len(snapshot.hospitals)} hospitals and "
            f"{len(snapshot.shifts)} shifts"
        )

        if self.reminders is None:
            return
        self._spawn(
            self._replace_reminders(replaced), "reminder rebuild after import"
        )

    async def _replace_reminders(self, replaced_ids: list[str]) -> None:
        for shift_id in replaced_ids:
            await self.reminders.cancel_for_shift(shift_id)
        if not self.notifications_enabled:
            return
        for shift in self.shifts_db.all():
            await self.reminders.schedule_for_shift(
                shift, self._hospital_name(shift.hospital_id)
            )

    def export_data(self) -> BackupFile:
        snapshot = self.snapshot()
        return BackupFile(
            user_profile=snapshot.user_profile,
            notifications_enabled=snapshot.notifications_enabled,
            hospitals=snapshot.hospitals,
            shifts=snapshot.shifts,
            export_date=datetime.now(),
        )

    def restore_backup(self, raw: Any) -> AppSnapshot:
        """Validate a backup file's content and import it. Raises InvalidBackupError."""
        snapshot = parse_backup(raw)
        self.import_data(snapshot)
        return snapshot

    # --- Remote ---

    def _require_remote(self) -> RemoteSync:
        if self.remote is None:
            raise NotAuthenticatedError("No remote backend configured")
        return self.remote

    async def sync_data(self) -> None:
        """Push every local record to the remote store."""
        await self._require_remote().push_all(self.snapshot())

    async def fetch_data(self) -> RemoteState:
        """
        Pull the remote copy and replace local collections with it. An empty
        remote collection leaves the local one untouched.
        """
        state = await self._require_remote().fetch_all()
        if state.profile is not None:
            self.user_profile = state.profile
        if state.hospitals:
            self.hospitals_db.replace_all((h.id, h) for h in state.hospitals)
        if state.shifts:
            self.shifts_db.replace_all((s.id, s) for s in state.shifts)
        self._persist()
        return state

    async def reconcile_after_login(self) -> RemoteState:
        """
        Push local data first so nothing gathered while signed out is lost,
        then adopt the remote copy.
        """
        if len(self.hospitals_db) or len(self.shifts_db):
            await self.sync_data()
        return await self.fetch_data()
