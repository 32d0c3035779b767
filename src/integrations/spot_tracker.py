"""SPOT satellite tracker public feed client."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any
from urllib.parse import quote

import httpx

from config.settings import Settings

LOGGER = logging.getLogger(__name__)

FEED_URL = "https://api.findmespot.com/spot-main-web/consumer/rest-api/2.0/public/feed/{feed_id}/latest.json"
MISSING_COORDINATE = -99999


@dataclass(frozen=True, slots=True)
class TrackPoint:
    latitude: float
    longitude: float
    unix_time: int
    message_id: str
    messenger_id: str | None = None
    messenger_name: str | None = None
    message_type: str = "TRACK"

    def as_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


def _valid_lat_lng(lat: float, lng: float) -> bool:
    if lat == MISSING_COORDINATE or lng == MISSING_COORDINATE:
        return False
    return abs(lat) <= 90 and abs(lng) <= 180


def _latest_message(payload: Any) -> dict[str, Any] | None:
    if not isinstance(payload, dict):
        return None
    feed = (payload.get("response") or {}).get("feedMessageResponse") or payload.get("feedMessageResponse") or {}
    message = (feed.get("messages") or {}).get("message")
    # latest.json carries one message per device; a list means several devices.
    if isinstance(message, list):
        message = message[0] if message else None
    return message if isinstance(message, dict) else None


def track_from_payload(payload: Any) -> TrackPoint | None:
    """Extract the latest TRACK fix from a feed response, if it has one."""

    message = _latest_message(payload)
    if message is None:
        return None
    if (message.get("messageType") or message.get("message_type")) != "TRACK":
        return None
    try:
        latitude = float(message["latitude"])
        longitude = float(message["longitude"])
    except (KeyError, TypeError, ValueError):
        return None
    if not _valid_lat_lng(latitude, longitude):
        return None
    return TrackPoint(
        latitude=latitude,
        longitude=longitude,
        unix_time=int(message.get("unixTime") or 0),
        message_id=str(message.get("id") or ""),
        messenger_id=str(message["messengerId"]) if message.get("messengerId") else None,
        messenger_name=str(message["messengerName"]) if message.get("messengerName") else None,
    )


class SpotTracker:
    """Fetches the latest tracked position, throttled to the feed's rate limit.

    A failed or empty fetch keeps returning the last good fix until the
    throttle window elapses again.
    """

    def __init__(
        self,
        feed_id: str,
        feed_password: str,
        *,
        throttle_seconds: float = 150.0,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not feed_id or not feed_password:
            raise ValueError("SPOT_FEED_ID and SPOT_FEED_PASSWORD must be configured.")
        self._url = FEED_URL.format(feed_id=quote(feed_id, safe=""))
        self._password = feed_password
        self._throttle = throttle_seconds
        self._http = http_client or httpx.AsyncClient(timeout=15.0)
        self._owns_http = http_client is None
        self._clock = clock
        self._fetched_at: float | None = None
        self._latest: TrackPoint | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> SpotTracker:
        return cls(
            settings.spot_feed_id or "",
            settings.spot_feed_password or "",
            throttle_seconds=settings.spot_throttle_seconds,
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def latest_track(self, *, force: bool = False) -> TrackPoint | None:
        now = self._clock()
        if not force and self._fetched_at is not None and now - self._fetched_at < self._throttle:
            return self._latest

        self._fetched_at = now
        try:
            response = await self._http.get(
                self._url,
                params={"feedPassword": self._password},
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.warning("Tracker feed request failed: %s", exc)
            return self._latest

        track = track_from_payload(payload)
        if track is None:
            LOGGER.info("Tracker feed has no usable TRACK message")
            return self._latest
        self._latest = track
        return track
