"""Spotify Web API device and catalog.

Playback commands go to ``/me/player`` on a Spotify Connect device picked by
name; state is polled from ``/me/player/currently-playing`` and pushed to
listeners as notifications. HTTP calls are blocking ``requests`` calls run
off the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import requests

from beat_coach.catalog import PlaylistInfo
from beat_coach.device import DeviceListeners, DeviceState
from beat_coach.errors import DeviceError, DeviceErrorKind
from beat_coach.playlist import Track
from beat_coach.timers import OwnedTimer, TimerHost

logger = logging.getLogger(__name__)

API_BASE = "https://api.spotify.com/v1"
REQUEST_TIMEOUT_S = 30
STATE_POLL_INTERVAL_S = 1.0


def error_kind_for_status(status: int) -> DeviceErrorKind:
    if status == 401:
        return DeviceErrorKind.AUTHENTICATION
    if status == 403:
        return DeviceErrorKind.ACCOUNT
    if status == 404:
        return DeviceErrorKind.INITIALIZATION
    return DeviceErrorKind.PLAYBACK


class SpotifyClient:
    """Blocking Web API client with bearer auth and error classification."""

    def __init__(
        self,
        token: str,
        *,
        session: Optional[requests.Session] = None,
        base_url: str = API_BASE,
        timeout: float = REQUEST_TIMEOUT_S,
    ) -> None:
        self._token = token
        self._session = session or requests.Session()
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> Optional[dict[str, Any]]:
        """Send one request; return the JSON body, or None for empty replies."""
        url = path if path.startswith("http") else f"{self._base_url}{path}"
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {self._token}"},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise DeviceError(DeviceErrorKind.PLAYBACK, f"{method} {path}: {exc}") from exc
        if response.status_code == 204 or not response.content:
            if response.status_code >= 400:
                self._raise_for(response, method, path)
            return None
        try:
            response.raise_for_status()
        except requests.HTTPError:
            self._raise_for(response, method, path)
        return response.json()

    def _raise_for(self, response: requests.Response, method: str, path: str) -> None:
        kind = error_kind_for_status(response.status_code)
        logger.warning("Spotify %s %s -> HTTP %s", method, path, response.status_code)
        raise DeviceError(kind, f"HTTP {response.status_code} from {method} {path}")

    def close(self) -> None:
        self._session.close()


def track_from_item(item: dict[str, Any]) -> Optional[Track]:
    if not item or item.get("is_local") or not item.get("id"):
        return None
    images = (item.get("album") or {}).get("images") or []
    return Track(
        id=str(item["id"]),
        name=str(item.get("name", "")).strip(),
        duration_ms=int(item.get("duration_ms") or 0),
        artists=tuple(
            str(artist["name"])
            for artist in item.get("artists", [])
            if artist.get("name") is not None
        ),
        artwork_url=images[0].get("url") if images else None,
        uri=item.get("uri") or f"spotify:track:{item['id']}",
    )


def state_from_playback(data: Optional[dict[str, Any]]) -> Optional[DeviceState]:
    if not data:
        return None
    item = data.get("item") or {}
    return DeviceState(
        position_ms=int(data.get("progress_ms") or 0),
        duration_ms=int(item.get("duration_ms") or 0),
        paused=not data.get("is_playing", False),
        track_id=item.get("id"),
    )


class SpotifyConnectDevice(DeviceListeners):
    def __init__(
        self,
        client: SpotifyClient,
        timers: TimerHost,
        *,
        device_name: str = "Beat Coach",
        poll_interval_s: float = STATE_POLL_INTERVAL_S,
    ) -> None:
        super().__init__()
        self._client = client
        self._timers = timers
        self._device_name = device_name
        self._poll_interval_s = poll_interval_s
        self._poll_timer = OwnedTimer("spotify-state-poll")
        self._poll_task: Optional[asyncio.Task[None]] = None
        self._last_state: Optional[DeviceState] = None
        self.device_id: Optional[str] = None

    async def _call(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> Optional[dict[str, Any]]:
        return await asyncio.to_thread(
            self._client.request, method, path, params=params, json=json
        )

    def _pick_device(self, devices: list[dict[str, Any]]) -> Optional[dict[str, Any]]:
        for device in devices:
            if device.get("name") == self._device_name:
                return device
        for device in devices:
            if device.get("is_active"):
                return device
        return devices[0] if devices else None

    async def connect(self) -> str:
        data = await self._call("GET", "/me/player/devices") or {}
        device = self._pick_device(list(data.get("devices", [])))
        if device is None or not device.get("id"):
            raise DeviceError(
                DeviceErrorKind.INITIALIZATION,
                "No Spotify device available. Open Spotify on a device first.",
            )
        self.device_id = str(device["id"])
        logger.info("Using Spotify device %s (%s)", device.get("name"), self.device_id)
        self._poll_timer.replace(
            self._timers.set_interval(self._poll_interval_s, self._on_poll)
        )
        return self.device_id

    def _device_params(self) -> dict[str, Any]:
        return {"device_id": self.device_id} if self.device_id else {}

    async def load_and_play(
        self, track: Track, position_ms: int = 0
    ) -> Optional[DeviceState]:
        uri = track.uri or f"spotify:track:{track.id}"
        await self._call(
            "PUT",
            "/me/player/play",
            params=self._device_params(),
            json={"uris": [uri], "position_ms": int(position_ms)},
        )
        logger.debug("Started playback: %s", uri)
        return DeviceState(
            position_ms=int(position_ms),
            duration_ms=track.duration_ms,
            paused=False,
            track_id=track.id,
        )

    async def pause(self) -> Optional[DeviceState]:
        await self._call("PUT", "/me/player/pause", params=self._device_params())
        return None

    async def resume(self) -> Optional[DeviceState]:
        await self._call("PUT", "/me/player/play", params=self._device_params())
        return None

    async def seek(self, position_ms: int) -> Optional[DeviceState]:
        params = {"position_ms": max(0, int(position_ms)), **self._device_params()}
        await self._call("PUT", "/me/player/seek", params=params)
        return None

    async def get_current_state(self) -> Optional[DeviceState]:
        return state_from_playback(await self._call("GET", "/me/player/currently-playing"))

    def _on_poll(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._poll_task = asyncio.ensure_future(self._poll_once())

    async def _poll_once(self) -> None:
        try:
            state = await self.get_current_state()
        except DeviceError as exc:
            self.emit_error(exc)
            return
        if state is None or state == self._last_state:
            return
        self._last_state = state
        self.emit_state(state)

    async def disconnect(self) -> None:
        self._poll_timer.cancel()
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        self._last_state = None
        self.device_id = None
        self._client.close()


class SpotifyCatalog:
    def __init__(self, client: SpotifyClient) -> None:
        self._client = client

    def fetch_playlist(self, playlist_id: str) -> PlaylistInfo:
        if ":" in playlist_id:
            playlist_id = playlist_id.split(":")[-1]
        data = self._client.request("GET", f"/playlists/{playlist_id}") or {}
        name = str(data.get("name", playlist_id))
        tracks: list[Track] = []
        page: Optional[dict[str, Any]] = data.get("tracks") or {}
        while page:
            for entry in page.get("items", []):
                track = track_from_item(entry.get("track") or {})
                if track is not None:
                    tracks.append(track)
            next_url = page.get("next")
            page = self._client.request("GET", next_url) if next_url else None
        logger.debug("Fetched %s tracks for playlist %s", len(tracks), playlist_id)
        return PlaylistInfo(id=playlist_id, name=name, tracks=tuple(tracks))
