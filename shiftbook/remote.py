"""
Mirroring of local state to the remote store.

Local records are the source of truth; the remote copy is a best-effort
mirror keyed by the same ids. Model attribute names are the remote column
names, so translating a record is a plain (non-alias) dump plus the
owning ``user_id``, and translating back is a validation against the
model.

Per-record pushes swallow and log every failure. ``push_all`` and
``fetch_all`` are meant to be awaited and raise ``RemoteSyncError`` so
the caller learns about the failure.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from pydantic import BaseModel, Field, ValidationError

from shiftbook.exceptions import NotAuthenticatedError, RemoteSyncError
from shiftbook.models import AppSnapshot, Hospital, Shift, UserProfile
from shiftbook.persistence import load_records

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"
HOSPITALS_TABLE = "hospitals"
SHIFTS_TABLE = "shifts"


class RemoteBackend(Protocol):
    async def upsert(self, table: str, record: dict[str, Any]) -> None: ...

    async def delete(self, table: str, record_id: str) -> None: ...

    async def select(
        self, table: str, filters: dict[str, str]
    ) -> list[dict[str, Any]]: ...

    async def current_user_id(self) -> str | None: ...

    async def sign_in(self, email: str, password: str) -> str: ...

    async def sign_out(self) -> None: ...


def hospital_to_row(hospital: Hospital, user_id: str) -> dict[str, Any]:
    return {**hospital.model_dump(mode="json"), "user_id": user_id}


def shift_to_row(shift: Shift, user_id: str) -> dict[str, Any]:
    return {**shift.model_dump(mode="json"), "user_id": user_id}


def profile_to_row(profile: UserProfile, user_id: str) -> dict[str, Any]:
    return {**profile.model_dump(mode="json"), "id": user_id}


class RemoteState(BaseModel):
    """What a full fetch found for the signed-in user."""

    profile: UserProfile | None = None
    hospitals: list[Hospital] = Field(default_factory=list)
    shifts: list[Shift] = Field(default_factory=list)


class RemoteSync:
    def __init__(self, backend: RemoteBackend) -> None:
        self.backend = backend

    async def user_id(self) -> str | None:
        try:
            return await self.backend.current_user_id()
        except Exception as e:
            logger.error(f"Could not read remote session: {e}", exc_info=True)
            return None

    async def _push(
        self, description: str, action: Callable[[str], Awaitable[None]]
    ) -> bool:
        user_id = await self.user_id()
        if user_id is None:
            logger.debug(f"No remote session, skipping {description}")
            return False
        try:
            await action(user_id)
        except Exception as e:
            logger.error(f"Remote {description} failed: {e}", exc_info=True)
            return False
        logger.debug(f"Remote {description} done")
        return True

    async def push_hospital(self, hospital: Hospital) -> bool:
        return await self._push(
            f"upsert of hospital {hospital.id}",
            lambda uid: self.backend.upsert(
                HOSPITALS_TABLE, hospital_to_row(hospital, uid)
            ),
        )

    async def delete_hospital(self, hospital_id: str) -> bool:
        # Shifts of the hospital are removed by the remote's own cascade.
        return await self._push(
            f"delete of hospital {hospital_id}",
            lambda uid: self.backend.delete(HOSPITALS_TABLE, hospital_id),
        )

    async def push_shift(self, shift: Shift) -> bool:
        return await self._push(
            f"upsert of shift {shift.id}",
            lambda uid: self.backend.upsert(SHIFTS_TABLE, shift_to_row(shift, uid)),
        )

    async def delete_shift(self, shift_id: str) -> bool:
        return await self._push(
            f"delete of shift {shift_id}",
            lambda uid: self.backend.delete(SHIFTS_TABLE, shift_id),
        )

    async def push_profile(self, profile: UserProfile) -> bool:
        return await self._push(
            "upsert of profile",
            lambda uid: self.backend.upsert(
                PROFILES_TABLE, profile_to_row(profile, uid)
            ),
        )

    async def _require_user(self) -> str:
        user_id = await self.user_id()
        if user_id is None:
            raise NotAuthenticatedError("Sign in to sync with the cloud")
        return user_id

    async def push_all(self, snapshot: AppSnapshot) -> None:
        """
        Upsert the profile and every hospital and shift by id.
        Repeating it with unchanged data changes nothing remotely.
        """
        user_id = await self._require_user()
        try:
            await self.backend.upsert(
                PROFILES_TABLE, profile_to_row(snapshot.user_profile, user_id)
            )
            # Hospitals first so shift rows never reference a missing parent.
            for hospital in snapshot.hospitals:
                await self.backend.upsert(
                    HOSPITALS_TABLE, hospital_to_row(hospital, user_id)
                )
            for shift in snapshot.shifts:
                await self.backend.upsert(SHIFTS_TABLE, shift_to_row(shift, user_id))
        except Exception as e:
            logger.error(f"Full sync for user {user_id} failed: {e}", exc_info=True)
            raise RemoteSyncError(f"Full sync failed: {e}") from e

        logger.info(
            f"Synced {len(snapshot.hospitals)} hospitals and "
            f"{len(snapshot.shifts)} shifts for user {user_id}"
        )

    async def fetch_all(self) -> RemoteState:
        user_id = await self._require_user()
        try:
            profile_rows = await self.backend.select(PROFILES_TABLE, {"id": user_id})
            hospital_rows = await self.backend.select(
                HOSPITALS_TABLE, {"user_id": user_id}
            )
            shift_rows = await self.backend.select(SHIFTS_TABLE, {"user_id": user_id})
        except Exception as e:
            logger.error(f"Full fetch for user {user_id} failed: {e}", exc_info=True)
            raise RemoteSyncError(f"Full fetch failed: {e}") from e

        profile = None
        if profile_rows:
            try:
                profile = UserProfile.model_validate(profile_rows[0])
            except ValidationError as e:
                logger.warning(f"Ignoring malformed remote profile: {e}")

        state = RemoteState(
            profile=profile,
            hospitals=load_records(Hospital, hospital_rows),
            shifts=load_records(Shift, shift_rows),
        )
        logger.info(
            f"Fetched {len(state.hospitals)} hospitals and {len(state.shifts)} "
            f"shifts for user {user_id}"
        )
        return state
