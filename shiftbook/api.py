import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request
from pydantic import ValidationError

from shiftbook import models, stats
from shiftbook.backend import RestBackend
from shiftbook.config import Settings, configure_logging
from shiftbook.exceptions import (
    AuthenticationError,
    InvalidBackupError,
    NotAuthenticatedError,
    RemoteSyncError,
    ShiftbookError,
)
from shiftbook.notifier import LocalNotifier
from shiftbook.persistence import LocalPersistence
from shiftbook.reminders import ReminderScheduler
from shiftbook.remote import RemoteBackend, RemoteSync
from shiftbook.store import ShiftStore

router = APIRouter()

logger = logging.getLogger(__name__)


def get_store(request: Request) -> ShiftStore:
    return request.app.state.store


def _remote_http_error(e: ShiftbookError) -> HTTPException:
    if isinstance(e, (NotAuthenticatedError, AuthenticationError)):
        return HTTPException(status_code=401, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


def _backend(store: ShiftStore) -> RemoteBackend:
    if store.remote is None:
        raise HTTPException(status_code=503, detail="Cloud sync is not configured")
    return store.remote.backend


# --- Hospitals ---


@router.get("/hospitals")
async def list_hospitals(
    store: ShiftStore = Depends(get_store),
) -> list[models.Hospital]:
    return sorted(store.hospitals, key=lambda h: h.name.lower())


@router.post("/hospitals", status_code=201)
async def create_hospital(
    data: models.HospitalCreate, store: ShiftStore = Depends(get_store)
) -> models.Hospital:
    return store.add_hospital(data)


@router.patch("/hospitals/{hospital_id}")
async def update_hospital(
    hospital_id: str,
    updates: models.HospitalUpdate,
    store: ShiftStore = Depends(get_store),
) -> models.Hospital:
    """
    Update a hospital's settings. Existing shifts keep the earnings they
    were logged with.
    """
    try:
        hospital = store.update_hospital(hospital_id, updates)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    if hospital is None:
        raise HTTPException(
            status_code=404, detail=f"Hospital {hospital_id} not found"
        )
    return hospital


@router.delete("/hospitals/{hospital_id}")
async def delete_hospital(
    hospital_id: str, store: ShiftStore = Depends(get_store)
) -> dict[str, str]:
    """Delete a hospital and every shift logged against it."""
    if not store.delete_hospital(hospital_id):
        raise HTTPException(
            status_code=404, detail=f"Hospital {hospital_id} not found"
        )
    return {"status": "deleted"}


# --- Shifts ---


@router.get("/shifts")
async def list_shifts(
    hospital_id: str | None = Query(default=None, alias="hospitalId"),
    store: ShiftStore = Depends(get_store),
) -> list[models.Shift]:
    """All shifts, newest first, optionally for one hospital."""
    shifts = [
        s for s in store.shifts if hospital_id is None or s.hospital_id == hospital_id
    ]
    return sorted(shifts, key=lambda s: (s.date.date(), s.start_time), reverse=True)


@router.post("/shifts", status_code=201)
async def create_shift(
    data: models.ShiftCreate, store: ShiftStore = Depends(get_store)
) -> models.Shift:
    """
    Log a shift. Earnings are computed from the hospital's current rates;
    any totalEarnings sent by the client is ignored.
    """
    if store.get_hospital(data.hospital_id) is None:
        raise HTTPException(
            status_code=404, detail=f"Hospital {data.hospital_id} not found"
        )
    return store.add_shift(data)


@router.get("/shifts/{shift_id}")
async def get_shift(
    shift_id: str, store: ShiftStore = Depends(get_store)
) -> models.Shift:
    shift = store.get_shift(shift_id)
    if shift is None:
        raise HTTPException(status_code=404, detail=f"Shift {shift_id} not found")
    return shift


@router.patch("/shifts/{shift_id}")
async def update_shift(
    shift_id: str,
    updates: models.ShiftUpdate,
    store: ShiftStore = Depends(get_store),
) -> models.Shift:
    try:
        shift = store.update_shift(shift_id, updates)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    if shift is None:
        raise HTTPException(status_code=404, detail=f"Shift {shift_id} not found")
    return shift


@router.delete("/shifts/{shift_id}")
async def delete_shift(
    shift_id: str, store: ShiftStore = Depends(get_store)
) -> dict[str, str]:
    if not store.delete_shift(shift_id):
        raise HTTPException(status_code=404, detail=f"Shift {shift_id} not found")
    return {"status": "deleted"}


@router.post("/earnings/estimate")
async def estimate_earnings(
    request: models.EstimateRequest, store: ShiftStore = Depends(get_store)
) -> models.EarningsEstimate:
    """
    Preview a shift's earnings. For shifts shorter than 24 hours the
    response also carries the pro-rata amount, which the client may send
    back as customRate.
    """
    return store.estimate(request)


# --- Stats ---


@router.get("/stats/monthly")
async def get_monthly_stats(
    year: int = Query(ge=1970),
    month: int = Query(ge=1, le=12),
    store: ShiftStore = Depends(get_store),
) -> models.MonthlyStats:
    return stats.monthly_stats(store.shifts, store.hospitals, year, month)


@router.get("/stats/totals")
async def get_totals(store: ShiftStore = Depends(get_store)) -> models.Totals:
    return stats.totals(store.shifts, store.hospitals)


# --- Profile and settings ---


@router.get("/profile")
async def get_profile(store: ShiftStore = Depends(get_store)) -> models.UserProfile:
    return store.user_profile


@router.patch("/profile")
async def update_profile(
    updates: models.ProfileUpdate, store: ShiftStore = Depends(get_store)
) -> models.UserProfile:
    try:
        return store.update_user_profile(updates)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


@router.get("/settings/notifications")
async def get_notifications(store: ShiftStore = Depends(get_store)) -> dict[str, bool]:
    return {"enabled": store.notifications_enabled}


@router.put("/settings/notifications")
async def set_notifications(
    request: models.NotificationsRequest, store: ShiftStore = Depends(get_store)
) -> dict[str, bool]:
    """
    Turn shift reminders on or off. ``success`` is false when permission
    to show notifications was refused.
    """
    success = await store.set_notifications_enabled(request.enabled)
    return {"enabled": store.notifications_enabled, "success": success}


# --- Sync and auth ---


@router.post("/sync")
async def sync_now(store: ShiftStore = Depends(get_store)) -> dict[str, str]:
    """Push everything local to the cloud copy."""
    try:
        await store.sync_data()
    except ShiftbookError as e:
        raise _remote_http_error(e) from e
    return {"status": "success"}


@router.post("/sync/fetch")
async def fetch_now(store: ShiftStore = Depends(get_store)) -> dict[str, Any]:
    """Replace local data with the cloud copy (empty cloud collections are skipped)."""
    try:
        state = await store.fetch_data()
    except ShiftbookError as e:
        raise _remote_http_error(e) from e
    return {
        "status": "success",
        "hospitals": len(state.hospitals),
        "shifts": len(state.shifts),
    }


@router.post("/auth/login")
async def login(
    credentials: models.LoginRequest, store: ShiftStore = Depends(get_store)
) -> dict[str, str]:
    """
    Sign in, upload anything recorded while signed out, then adopt the
    cloud copy.
    """
    backend = _backend(store)
    try:
        user_id = await backend.sign_in(credentials.email, credentials.password)
    except AuthenticationError as e:
        raise _remote_http_error(e) from e
    except Exception as e:
        logger.error(f"Sign-in failed: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail="Sign-in failed") from e

    try:
        await store.reconcile_after_login()
    except ShiftbookError as e:
        raise _remote_http_error(e) from e
    return {"status": "success", "userId": user_id}


@router.post("/auth/logout")
async def logout(store: ShiftStore = Depends(get_store)) -> dict[str, str]:
    """Drop the cloud session. Local data stays on the device."""
    await _backend(store).sign_out()
    return {"status": "success"}


# --- Backup ---


@router.get("/backup")
async def export_backup(store: ShiftStore = Depends(get_store)) -> models.BackupFile:
    return store.export_data()


@router.post("/backup/restore")
async def restore_backup(
    payload: Any = Body(...), store: ShiftStore = Depends(get_store)
) -> dict[str, Any]:
    """Replace all local data with a backup file's content."""
    try:
        snapshot = store.restore_backup(payload)
    except InvalidBackupError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return {
        "status": "success",
        "hospitals": len(snapshot.hospitals),
        "shifts": len(snapshot.shifts),
    }


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    store: ShiftStore = app.state.store
    if store.remote is not None and isinstance(store.remote.backend, RestBackend):
        await store.remote.backend.refresh_session()
    if store.remote is not None and await store.remote.user_id() is not None:
        try:
            await store.fetch_data()
        except ShiftbookError as e:
            logger.warning(f"Startup fetch failed, continuing with local data: {e}")
    yield
    await store.wait_for_background_tasks()
    if store.remote is not None and isinstance(store.remote.backend, RestBackend):
        await store.remote.backend.aclose()


def build_store(settings: Settings) -> ShiftStore:
    remote = None
    if settings.remote_enabled:
        remote = RemoteSync(
            RestBackend(
                settings.remote_url,
                settings.remote_api_key,
                timeout=settings.remote_timeout,
                session_path=settings.session_path,
            )
        )
    else:
        logger.info("No remote backend configured, running in guest mode")
    return ShiftStore.open(
        LocalPersistence(settings.snapshot_path),
        remote=remote,
        reminders=ReminderScheduler(LocalNotifier()),
    )


def create_app(store: ShiftStore | None = None) -> FastAPI:
    if store is None:
        settings = Settings()
        configure_logging(settings.log_level)
        store = build_store(settings)
    app = FastAPI(title="shiftbook", lifespan=lifespan)
    app.state.store = store
    app.include_router(router)
    return app
