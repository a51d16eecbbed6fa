"""
Backend HTTP record store.

Talks to the learner-state REST endpoints:

    GET    /api/users/{id}/state   -> 200 {"state": ...} | 404
    POST   /api/users/{id}/state   -> 201 | 409 USER_ALREADY_EXISTS
    PUT    /api/users/{id}/state   -> 200 | 409 VERSION_CONFLICT {"currentVersion": n}
    DELETE /api/users/{id}/state   -> 204

Timeouts, connection errors and 5xx map to TransportError so the sync
engine can retry them; other 4xx responses and malformed bodies map to
PermanentStoreError.

Usage:
    with HttpRecordStore("https://api.example.com", token=token) as store:
        state = store.get("u1")
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from helix_sync.core.errors import (
    PermanentStoreError,
    RecordAlreadyExists,
    TransportError,
    VersionConflict,
)
from helix_sync.core.state import UserState


class HttpRecordStore:
    """Record store backed by the backend's REST API."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout_seconds: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    def __enter__(self) -> HttpRecordStore:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _path(user_id: str) -> str:
        return f"/api/users/{user_id}/state"

    def _request(self, method: str, user_id: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, self._path(user_id), **kwargs)
        except httpx.TimeoutException as exc:
            raise TransportError(f"{method} state for {user_id} timed out") from exc
        except httpx.RequestError as exc:
            raise TransportError(f"{method} state for {user_id} failed: {exc}") from exc

        if response.status_code >= 500:
            raise TransportError(
                f"{method} state for {user_id}: server error {response.status_code}"
            )
        if response.status_code in (401, 403):
            raise PermanentStoreError(
                f"{method} state for {user_id}: not authorized ({response.status_code})"
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            return response.json()
        except ValueError as exc:
            raise PermanentStoreError(f"backend returned non-JSON body: {exc}") from exc

    @staticmethod
    def _fail(response: httpx.Response, user_id: str) -> PermanentStoreError:
        logger.error("State API error for {}: {} {}", user_id, response.status_code, response.text)
        return PermanentStoreError(
            f"state API rejected request for {user_id}: {response.status_code}"
        )

    # ========================================
    # RecordStore
    # ========================================

    def get(self, user_id: str) -> UserState | None:
        response = self._request("GET", user_id)
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise self._fail(response, user_id)

        body = self._json(response)
        payload = body.get("state", body)
        try:
            return UserState.from_wire(payload)
        except ValidationError as exc:
            raise PermanentStoreError(f"remote state for {user_id} is malformed: {exc}") from exc

    def insert(self, state: UserState) -> None:
        response = self._request("POST", state.user_id, json={"state": state.to_wire()})
        if response.status_code == 409:
            raise RecordAlreadyExists(state.user_id)
        if response.status_code not in (200, 201):
            raise self._fail(response, state.user_id)

    def compare_and_set(self, user_id: str, expected_version: int, new_state: UserState) -> None:
        response = self._request(
            "PUT",
            user_id,
            json={"expectedVersion": expected_version, "state": new_state.to_wire()},
        )
        if response.status_code == 409:
            body = self._json(response)
            raise VersionConflict(user_id, expected_version, body.get("currentVersion"))
        if response.status_code == 404:
            raise VersionConflict(user_id, expected_version, None)
        if response.status_code != 200:
            raise self._fail(response, user_id)

    def delete(self, user_id: str) -> None:
        response = self._request("DELETE", user_id)
        if response.status_code not in (200, 204, 404):
            raise self._fail(response, user_id)
