"""
Tests for the REST backend client against a mocked transport.
"""

import json

import httpx
import pytest
import pytest_asyncio

from shiftbook.api import create_app, lifespan
from shiftbook.backend import RestBackend
from shiftbook.exceptions import AuthenticationError, RemoteSyncError
from shiftbook.models import PaymentModel
from shiftbook.remote import RemoteSync
from shiftbook.store import ShiftStore
from tests.factories import USER_ID, fixed_hospital, shift_for

API_KEY = "anon-key"
TOKEN = "access-token-123"
REFRESHED_TOKEN = "access-token-456"
REFRESH_TOKEN = "refresh-token-abc"


class RecordingHandler:
    """Answers like a PostgREST backend and records every request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.rows: dict[str, list[dict]] = {"profiles": [], "hospitals": [], "shifts": []}
        self.fail_writes = False
        self.valid_refresh_token = REFRESH_TOKEN

    def session_response(self, access_token: str) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "access_token": access_token,
                "refresh_token": REFRESH_TOKEN,
                "user": {"id": USER_ID},
            },
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/auth/v1/token":
            body = json.loads(request.content)
            if request.url.params["grant_type"] == "refresh_token":
                if body["refresh_token"] != self.valid_refresh_token:
                    return httpx.Response(400, json={"error": "invalid_grant"})
                return self.session_response(REFRESHED_TOKEN)
            if body["password"] != "correct-horse":
                return httpx.Response(400, json={"error": "invalid_grant"})
            return self.session_response(TOKEN)
        if path == "/auth/v1/logout":
            return httpx.Response(204)

        table = path.removeprefix("/rest/v1/")
        if request.method == "POST":
            if self.fail_writes:
                return httpx.Response(503, json={"message": "unavailable"})
            self.rows[table].append(json.loads(request.content))
            return httpx.Response(201)
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(200, json=self.rows[table])


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler()


@pytest_asyncio.fixture
async def rest_backend(handler: RecordingHandler):
    backend = RestBackend(
        "https://example.supabase.co/", API_KEY, transport=httpx.MockTransport(handler)
    )
    yield backend
    await backend.aclose()


@pytest.mark.asyncio
async def test_sign_in_sets_session(rest_backend: RestBackend, handler: RecordingHandler) -> None:
    assert await rest_backend.current_user_id() is None

    user_id = await rest_backend.sign_in("sara@example.com", "correct-horse")

    assert user_id == USER_ID
    assert await rest_backend.current_user_id() == USER_ID
    request = handler.requests[0]
    assert request.url.params["grant_type"] == "password"
    assert request.headers["apikey"] == API_KEY


@pytest.mark.asyncio
async def test_sign_in_rejects_bad_credentials(rest_backend: RestBackend) -> None:
    with pytest.raises(AuthenticationError):
        await rest_backend.sign_in("sara@example.com", "wrong")

    assert await rest_backend.current_user_id() is None


@pytest.mark.asyncio
async def test_sign_out_drops_session(rest_backend: RestBackend) -> None:
    await rest_backend.sign_in("sara@example.com", "correct-horse")

    await rest_backend.sign_out()

    assert await rest_backend.current_user_id() is None


@pytest.mark.asyncio
async def test_upsert_uses_token_and_merge_preference(
    rest_backend: RestBackend, handler: RecordingHandler
) -> None:
    await rest_backend.sign_in("sara@example.com", "correct-horse")

    await rest_backend.upsert("hospitals", {"id": "h-1", "name": "Cairo General"})

    request = handler.requests[-1]
    assert request.method == "POST"
    assert request.url.path == "/rest/v1/hospitals"
    assert request.headers["Authorization"] == f"Bearer {TOKEN}"
    assert "resolution=merge-duplicates" in request.headers["Prefer"]


@pytest.mark.asyncio
async def test_delete_and_select_filter_by_column(
    rest_backend: RestBackend, handler: RecordingHandler
) -> None:
    await rest_backend.delete("shifts", "s-1")
    await rest_backend.select("shifts", {"user_id": USER_ID})

    delete_request, select_request = handler.requests
    assert delete_request.method == "DELETE"
    assert delete_request.url.params["id"] == "eq.s-1"
    assert select_request.url.params["user_id"] == f"eq.{USER_ID}"
    assert select_request.url.params["select"] == "*"


@pytest.mark.asyncio
async def test_store_round_trip_through_rest_backend(
    rest_backend: RestBackend, handler: RecordingHandler
) -> None:
    """A full sync followed by a fetch on a fresh device reproduces the data."""
    await rest_backend.sign_in("sara@example.com", "correct-horse")
    store = ShiftStore(remote=RemoteSync(rest_backend))
    hospital = store.add_hospital(fixed_hospital())
    store.add_shift(shift_for(hospital.id, cases_count=2))
    await store.wait_for_background_tasks()
    handler.rows = {"profiles": [], "hospitals": [], "shifts": []}

    await store.sync_data()
    fresh = ShiftStore(remote=RemoteSync(rest_backend))
    await fresh.fetch_data()

    assert fresh.hospitals[0].id == hospital.id
    assert fresh.hospitals[0].payment_model is PaymentModel.FIXED
    assert fresh.shifts == store.shifts


@pytest.mark.asyncio
async def test_http_errors_surface_as_sync_errors(
    rest_backend: RestBackend, handler: RecordingHandler
) -> None:
    await rest_backend.sign_in("sara@example.com", "correct-horse")
    store = ShiftStore(remote=RemoteSync(rest_backend))
    handler.fail_writes = True

    store.add_hospital(fixed_hospital())
    await store.wait_for_background_tasks()

    assert len(store.hospitals) == 1
    with pytest.raises(RemoteSyncError):
        await store.sync_data()


def backend_at(handler: RecordingHandler, session_path) -> RestBackend:
    return RestBackend(
        "https://example.supabase.co",
        API_KEY,
        transport=httpx.MockTransport(handler),
        session_path=session_path,
    )


@pytest.mark.asyncio
async def test_session_survives_restart(handler: RecordingHandler, tmp_path) -> None:
    session_path = tmp_path / "session.json"
    first = backend_at(handler, session_path)
    await first.sign_in("sara@example.com", "correct-horse")
    await first.aclose()

    restarted = backend_at(handler, session_path)
    await restarted.upsert("hospitals", {"id": "h-1"})
    await restarted.aclose()

    assert await restarted.current_user_id() == USER_ID
    assert handler.requests[-1].headers["Authorization"] == f"Bearer {TOKEN}"


@pytest.mark.asyncio
async def test_sign_out_forgets_stored_session(handler: RecordingHandler, tmp_path) -> None:
    session_path = tmp_path / "session.json"
    backend = backend_at(handler, session_path)
    await backend.sign_in("sara@example.com", "correct-horse")

    await backend.sign_out()
    await backend.aclose()

    assert not session_path.exists()
    restarted = backend_at(handler, session_path)
    assert await restarted.current_user_id() is None
    await restarted.aclose()


@pytest.mark.asyncio
async def test_unreadable_session_file_is_ignored(handler: RecordingHandler, tmp_path) -> None:
    session_path = tmp_path / "session.json"
    session_path.write_text("{not json", encoding="utf-8")

    backend = backend_at(handler, session_path)

    assert await backend.current_user_id() is None
    await backend.aclose()


@pytest.mark.asyncio
async def test_refresh_session_swaps_access_token(handler: RecordingHandler, tmp_path) -> None:
    session_path = tmp_path / "session.json"
    backend = backend_at(handler, session_path)
    await backend.sign_in("sara@example.com", "correct-horse")

    assert await backend.refresh_session() == USER_ID

    await backend.select("shifts", {"user_id": USER_ID})
    assert handler.requests[-1].headers["Authorization"] == f"Bearer {REFRESHED_TOKEN}"
    assert REFRESHED_TOKEN in session_path.read_text(encoding="utf-8")
    await backend.aclose()


@pytest.mark.asyncio
async def test_rejected_refresh_ends_session(handler: RecordingHandler, tmp_path) -> None:
    session_path = tmp_path / "session.json"
    backend = backend_at(handler, session_path)
    await backend.sign_in("sara@example.com", "correct-horse")
    handler.valid_refresh_token = "rotated-elsewhere"

    assert await backend.refresh_session() is None

    assert await backend.current_user_id() is None
    assert not session_path.exists()
    await backend.aclose()


@pytest.mark.asyncio
async def test_refresh_while_offline_keeps_session(tmp_path) -> None:
    def offline(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    session_path = tmp_path / "session.json"
    session_path.write_text(
        json.dumps(
            {"access_token": TOKEN, "refresh_token": REFRESH_TOKEN, "user_id": USER_ID}
        ),
        encoding="utf-8",
    )
    backend = RestBackend(
        "https://example.supabase.co",
        API_KEY,
        transport=httpx.MockTransport(offline),
        session_path=session_path,
    )

    assert await backend.refresh_session() == USER_ID
    assert session_path.exists()
    await backend.aclose()


@pytest.mark.asyncio
async def test_restart_with_stored_session_fetches_on_startup(
    handler: RecordingHandler, tmp_path
) -> None:
    session_path = tmp_path / "session.json"
    first = backend_at(handler, session_path)
    await first.sign_in("sara@example.com", "correct-horse")
    await first.aclose()
    handler.rows["hospitals"] = [
        {
            "id": "h-remote",
            "name": "Cairo General",
            "payment_model": "fixed",
            "fixed_rate": 800,
            "per_patient_rate": 0,
            "user_id": USER_ID,
        }
    ]

    store = ShiftStore(remote=RemoteSync(backend_at(handler, session_path)))
    async with lifespan(create_app(store)):
        assert [h.id for h in store.hospitals] == ["h-remote"]

    refresh = [r for r in handler.requests if r.url.params.get("grant_type") == "refresh_token"]
    assert len(refresh) == 1
    assert handler.requests[-1].headers["Authorization"] == f"Bearer {REFRESHED_TOKEN}"
