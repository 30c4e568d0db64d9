"""
REST client for the studio web app.

Maps the commit cycle's operations onto the app's endpoints:

    create -> POST   /api/scheduled
    update -> PATCH  /api/scheduled/<id>
    delete -> DELETE /api/scheduled/<id>

The server checks room overlaps again on every write and answers 409 when
the slot is taken; that answer becomes a StoreConflictError.
"""

from __future__ import annotations

import threading
from typing import Any, Optional
from urllib.parse import urljoin

import requests

from studioschedule.errors import MalformedPlacementError, PersistenceError, StoreConflictError
from studioschedule.log import get_logger
from studioschedule.model import Dancer, Placement, Room, Routine
from studioschedule.parse import parse_dancer, parse_placement, parse_room, parse_routine, placement_payload

logger = get_logger(__name__)

SESSION_COOKIE_NAME = "session_token"


class HttpScheduleStore:
    """
    Schedule store backed by the web app.

    The commit cycle calls it from several threads, and requests.Session is
    not thread-safe, so each thread gets its own session. A session passed in
    explicitly is shared by all threads instead.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout
        self.token = token
        self._shared = self._authorize(session) if session is not None else None
        self._local = threading.local()

    def _authorize(self, session: requests.Session) -> requests.Session:
        if self.token:
            session.cookies.set(SESSION_COOKIE_NAME, self.token)
        return session

    @property
    def session(self) -> requests.Session:
        if self._shared is not None:
            return self._shared
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._authorize(requests.Session())
            self._local.session = session
        return session

    def _url(self, path: str) -> str:
        return urljoin(self.base_url, path.lstrip("/"))

    def _request(
        self,
        method: str,
        path: str,
        payload: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, str]] = None,
    ) -> Any:
        url = self._url(path)
        try:
            resp = self.session.request(method, url, json=payload, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise PersistenceError(f"{method} {path} failed: {exc}") from exc

        if resp.status_code == 409:
            raise StoreConflictError(_error_message(resp, "Time slot already occupied for this room and date."), 409)
        if not resp.ok:
            raise PersistenceError(_error_message(resp, f"{method} {path} failed"), resp.status_code)

        logger.debug("store_request", method=method, path=path, status=resp.status_code)
        if method == "DELETE" or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise PersistenceError(f"{method} {path} returned invalid JSON") from exc

    def _list(self, path: str, params: Optional[dict[str, str]] = None) -> list[dict[str, Any]]:
        data = self._request("GET", path, params=params)
        if not isinstance(data, list):
            raise PersistenceError(f"GET {path} did not return a list")
        return data

    # -- reads ------------------------------------------------------------

    def load_rooms(self) -> list[Room]:
        return [parse_room(r) for r in self._list("/api/rooms")]

    def load_routines(self) -> list[Routine]:
        return [parse_routine(r) for r in self._list("/api/routines")]

    def load_dancers(self) -> list[Dancer]:
        return [parse_dancer(d) for d in self._list("/api/dancers")]

    def load_placements(self, date_from: Optional[str] = None, date_to: Optional[str] = None) -> list[Placement]:
        params: dict[str, str] = {}
        if date_from:
            params["from"] = date_from
        if date_to:
            params["to"] = date_to
        return [_parse_saved(r) for r in self._list("/api/scheduled", params or None)]

    # -- writes -----------------------------------------------------------

    def create(self, placement: Placement) -> Placement:
        return _parse_saved(self._request("POST", "/api/scheduled", placement_payload(placement)))

    def update(self, placement: Placement) -> Placement:
        return _parse_saved(self._request("PATCH", f"/api/scheduled/{placement.id}", placement_payload(placement)))

    def delete(self, placement_id: str) -> None:
        self._request("DELETE", f"/api/scheduled/{placement_id}")


def _parse_saved(record: Any) -> Placement:
    if not isinstance(record, dict):
        raise PersistenceError("Store returned an unexpected record")
    try:
        return parse_placement(record)
    except MalformedPlacementError as exc:
        raise PersistenceError(f"Store returned a malformed record: {exc}") from exc


def _error_message(resp: requests.Response, default: str) -> str:
    try:
        body = resp.json()
    except ValueError:
        return default
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return default
