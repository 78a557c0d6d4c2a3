"""
httpx client for a PostgREST-style backend (tables under ``/rest/v1``,
password sign-in under ``/auth/v1``).

When given a ``session_path`` the signed-in session is kept in that file,
so a restarted process is still signed in and can refresh its token.
"""

import logging
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from shiftbook.exceptions import AuthenticationError
from shiftbook.persistence import write_text_atomically

logger = logging.getLogger(__name__)


class StoredSession(BaseModel):
    access_token: str
    refresh_token: str | None = None
    user_id: str


class RestBackend:
    """Remote tables addressed by id, scoped to the signed-in user."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        session_path: Path | str | None = None,
    ) -> None:
        self.api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"apikey": api_key},
        )
        self.session_path = Path(session_path) if session_path else None
        self._session: StoredSession | None = self._load_session()

    # --- Session ---

    def _load_session(self) -> StoredSession | None:
        if self.session_path is None or not self.session_path.exists():
            return None
        try:
            session = StoredSession.model_validate_json(
                self.session_path.read_text(encoding="utf-8")
            )
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable session at {self.session_path}: {e}")
            return None
        logger.info(f"Restored session for user {session.user_id}")
        return session

    def _set_session(self, session: StoredSession | None) -> None:
        self._session = session
        if self.session_path is None:
            return
        if session is None:
            self.session_path.unlink(missing_ok=True)
        else:
            write_text_atomically(self.session_path, session.model_dump_json())

    def _session_from_response(self, data: dict[str, Any]) -> StoredSession:
        return StoredSession(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            user_id=data["user"]["id"],
        )

    def _auth_headers(self) -> dict[str, str]:
        token = self._session.access_token if self._session else self.api_key
        return {"Authorization": f"Bearer {token}"}

    async def sign_in(self, email: str, password: str) -> str:
        response = await self._client.post(
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if response.status_code in (400, 401):
            raise AuthenticationError("Invalid email or password")
        response.raise_for_status()

        session = self._session_from_response(response.json())
        self._set_session(session)
        logger.info(f"Signed in as user {session.user_id}")
        return session.user_id

    async def refresh_session(self) -> str | None:
        """
        Swap the stored refresh token for a fresh access token. A rejected
        refresh token ends the session; a network failure keeps it.
        """
        if self._session is None or self._session.refresh_token is None:
            return await self.current_user_id()
        try:
            response = await self._client.post(
                "/auth/v1/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": self._session.refresh_token},
            )
        except httpx.HTTPError as e:
            logger.warning(f"Could not refresh session, keeping the stored one: {e}")
            return await self.current_user_id()

        if response.status_code in (400, 401):
            logger.info(f"Session for user {self._session.user_id} expired, signing out")
            self._set_session(None)
            return None
        try:
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Could not refresh session, keeping the stored one: {e}")
            return await self.current_user_id()

        self._set_session(self._session_from_response(response.json()))
        return await self.current_user_id()

    async def sign_out(self) -> None:
        if self._session is not None:
            try:
                response = await self._client.post(
                    "/auth/v1/logout", headers=self._auth_headers()
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.warning(f"Remote sign-out failed, dropping session anyway: {e}")
        self._set_session(None)

    async def current_user_id(self) -> str | None:
        return self._session.user_id if self._session else None

    # --- Tables ---

    async def upsert(self, table: str, record: dict[str, Any]) -> None:
        response = await self._client.post(
            f"/rest/v1/{table}",
            json=record,
            headers={
                **self._auth_headers(),
                "Prefer": "resolution=merge-duplicates,return=minimal",
            },
        )
        response.raise_for_status()

    async def delete(self, table: str, record_id: str) -> None:
        response = await self._client.delete(
            f"/rest/v1/{table}",
            params={"id": f"eq.{record_id}"},
            headers=self._auth_headers(),
        )
        response.raise_for_status()

    async def select(
        self, table: str, filters: dict[str, str]
    ) -> list[dict[str, Any]]:
        params = {"select": "*"}
        params.update({column: f"eq.{value}" for column, value in filters.items()})
        response = await self._client.get(
            f"/rest/v1/{table}", params=params, headers=self._auth_headers()
        )
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()
