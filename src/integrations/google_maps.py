"""Google Maps Platform clients (Routes, Places (New), Geocoding and Time Zone)."""

from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

LOGGER = logging.getLogger(__name__)

ROUTES_URL = "https://routes.googleapis.com/directions/v2:computeRoutes"
PLACES_TEXT_SEARCH_URL = "https://places.googleapis.com/v1/places:searchText"
PLACES_NEARBY_URL = "https://places.googleapis.com/v1/places:searchNearby"
GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
TIMEZONE_URL = "https://maps.googleapis.com/maps/api/timezone/json"

ROUTES_FIELD_MASK = (
    "routes.duration",
    "routes.distanceMeters",
    "routes.polyline.encodedPolyline",
    "routes.legs.steps.travelMode",
    "routes.legs.steps.distanceMeters",
    "routes.legs.steps.duration",
    "routes.legs.steps.navigationInstruction.instructions",
    "routes.legs.steps.navigationInstruction.maneuver",
    "routes.legs.steps.transitDetails",
)

PLACES_FIELD_MASK = (
    "places.id",
    "places.displayName",
    "places.businessStatus",
    "places.location",
    "places.formattedAddress",
    "places.googleMapsUri",
    "places.rating",
    "places.nationalPhoneNumber",
    "places.websiteUri",
    "places.regularOpeningHours.weekdayDescriptions",
)

NEARBY_FIELD_MASK = (
    "places.id",
    "places.displayName",
    "places.formattedAddress",
    "places.location",
    "places.primaryType",
    "places.googleMapsUri",
)

DEFAULT_TTL_SECONDS = 150.0
METERS_PER_DEGREE = 111_320.0


@dataclass(slots=True)
class ComputedRoute:
    distance_meters: int | None
    duration: str | None
    encoded_polyline: str | None
    steps: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "distanceMeters": self.distance_meters,
            "duration": self.duration,
            "encodedPolyline": self.encoded_polyline,
            "steps": self.steps,
        }


class _TTLCache:
    def __init__(self, ttl_seconds: float) -> None:
        self._ttl = ttl_seconds
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        hit = self._entries.get(key)
        if hit is None:
            return None
        expires_at, value = hit
        if expires_at <= time.monotonic():
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (time.monotonic() + self._ttl, value)


def _route_from_payload(route: dict[str, Any]) -> ComputedRoute:
    legs = route.get("legs") or []
    steps = (legs[0].get("steps") if legs else None) or []
    distance = route.get("distanceMeters")
    duration = route.get("duration")
    polyline = (route.get("polyline") or {}).get("encodedPolyline")
    return ComputedRoute(
        distance_meters=distance if isinstance(distance, int) else None,
        duration=duration if isinstance(duration, str) else None,
        encoded_polyline=polyline if isinstance(polyline, str) else None,
        steps=list(steps) if isinstance(steps, list) else [],
    )


def _bounding_box(lat: float, lng: float, radius_m: float) -> dict[str, Any]:
    lat_delta = radius_m / METERS_PER_DEGREE
    lng_delta = radius_m / (METERS_PER_DEGREE * max(math.cos(math.radians(lat)), 0.01))
    return {
        "low": {"latitude": max(lat - lat_delta, -90.0), "longitude": max(lng - lng_delta, -180.0)},
        "high": {"latitude": min(lat + lat_delta, 90.0), "longitude": min(lng + lng_delta, 180.0)},
    }


def _place_from_payload(place: dict[str, Any]) -> dict[str, Any]:
    location = place.get("location") or {}
    lat, lng = location.get("latitude"), location.get("longitude")
    return {
        "id": place.get("id"),
        "name": (place.get("displayName") or {}).get("text"),
        "businessStatus": place.get("businessStatus"),
        "location": {"lat": float(lat), "lng": float(lng)} if lat is not None and lng is not None else None,
        "address": place.get("formattedAddress"),
        "mapsUrl": place.get("googleMapsUri"),
        "rating": place.get("rating"),
        "phone": place.get("nationalPhoneNumber"),
        "website": place.get("websiteUri"),
        "hours": (place.get("regularOpeningHours") or {}).get("weekdayDescriptions"),
    }


def _nearby_place_from_payload(place: dict[str, Any]) -> dict[str, Any]:
    location = place.get("location") or {}
    lat, lng = location.get("latitude"), location.get("longitude")
    return {
        "id": place.get("id"),
        "name": (place.get("displayName") or {}).get("text"),
        "address": place.get("formattedAddress"),
        "location": {"lat": float(lat), "lng": float(lng)} if lat is not None and lng is not None else None,
        "primaryType": place.get("primaryType"),
        "mapsUrl": place.get("googleMapsUri"),
    }


def _component(components: list[dict[str, Any]], kind: str, name: str = "long_name") -> str | None:
    for component in components:
        if kind in (component.get("types") or []):
            return component.get(name) or None
    return None


def _city(components: list[dict[str, Any]]) -> str | None:
    for kind in ("locality", "postal_town", "sublocality_level_1", "sublocality", "administrative_area_level_3"):
        city = _component(components, kind)
        if city:
            return city
    return None


def address_from_geocode(geocode: dict[str, Any]) -> dict[str, Any]:
    """Summarize the first reverse-geocode result as address and approximate location."""

    results = geocode.get("results") or []
    first = results[0] if results and isinstance(results[0], dict) else {}
    components = [c for c in first.get("address_components") or [] if isinstance(c, dict)]

    number, route = _component(components, "street_number"), _component(components, "route")
    street = f"{number} {route}" if number and route else route or number
    city = _city(components)
    region = _component(components, "administrative_area_level_1")
    address = {
        "formattedAddress": first.get("formatted_address"),
        "street": street,
        "city": city,
        "region": region,
        "postalCode": _component(components, "postal_code"),
        "country": _component(components, "country"),
        "countryCode": _component(components, "country", "short_name"),
    }
    user_location = {
        "type": "approximate",
        "country": address["countryCode"],
        "region": region,
        "city": city,
    }
    return {
        "address": {key: value for key, value in address.items() if value},
        "userLocation": {key: value for key, value in user_location.items() if value},
    }


class GoogleMapsClient:
    """Thin async client for the Routes and Places endpoints.

    Failed HTTP calls return ``None`` so callers can report the feature as
    unavailable rather than failing the turn.
    """

    def __init__(
        self,
        api_key: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
    ) -> None:
        if not api_key:
            raise ValueError("GOOGLE_MAPS_API_KEY must be configured.")
        self._api_key = api_key
        self._http = http_client or httpx.AsyncClient(timeout=15.0)
        self._owns_http = http_client is None
        self._routes_cache = _TTLCache(ttl_seconds)
        self._places_cache = _TTLCache(ttl_seconds)
        self._nearby_cache = _TTLCache(ttl_seconds)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def _headers(self, field_mask: tuple[str, ...]) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self._api_key,
            "X-Goog-FieldMask": ",".join(field_mask),
        }

    async def _post(self, url: str, body: dict[str, Any], field_mask: tuple[str, ...]) -> dict[str, Any] | None:
        try:
            response = await self._http.post(url, json=body, headers=self._headers(field_mask))
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.warning("Google Maps request to %s failed: %s", url, exc)
            return None
        return data if isinstance(data, dict) else None

    async def _get(self, url: str, params: dict[str, Any]) -> dict[str, Any] | None:
        try:
            response = await self._http.get(url, params={**params, "key": self._api_key})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            # The key travels in the query string, so only the endpoint is logged.
            LOGGER.warning("Google Maps request to %s failed: %s", url, type(exc).__name__)
            return None
        return data if isinstance(data, dict) else None

    async def describe_location(
        self,
        lat: float,
        lng: float,
        *,
        language: str | None = None,
        include_timezone: bool = True,
        timestamp: int | None = None,
    ) -> dict[str, Any] | None:
        """Reverse geocode a point and optionally resolve its IANA time zone."""

        params: dict[str, Any] = {"latlng": f"{lat},{lng}"}
        if language:
            params["language"] = language
        geocode = await self._get(GEOCODE_URL, params)
        if geocode is None:
            return None

        result: dict[str, Any] = {"lat": lat, "lng": lng, **address_from_geocode(geocode)}
        if include_timezone:
            timezone = await self._get(
                TIMEZONE_URL,
                {"location": f"{lat},{lng}", "timestamp": timestamp if timestamp is not None else int(time.time())},
            )
            if timezone and timezone.get("status") == "OK" and timezone.get("timeZoneId"):
                result["timezoneId"] = timezone["timeZoneId"]
        return result

    async def search_nearby(
        self,
        lat: float,
        lng: float,
        radius_m: float,
        *,
        included_primary_types: list[str] | None = None,
        max_result_count: int = 10,
        rank_preference: str = "POPULARITY",
        language_code: str | None = None,
        region_code: str | None = None,
    ) -> list[dict[str, Any]] | None:
        body: dict[str, Any] = {
            "locationRestriction": {
                "circle": {"center": {"latitude": lat, "longitude": lng}, "radius": radius_m},
            },
            "maxResultCount": max_result_count,
            "rankPreference": rank_preference,
        }
        optional = {
            "includedPrimaryTypes": included_primary_types or None,
            "languageCode": language_code,
            "regionCode": region_code,
        }
        body.update({name: value for name, value in optional.items() if value is not None})

        # Round the center so GPS jitter does not defeat the cache.
        key_fields = {name: value for name, value in body.items() if name != "locationRestriction"}
        key = json.dumps(
            {**key_fields, "center": [round(lat, 6), round(lng, 6)], "radius": radius_m},
            sort_keys=True,
        )
        cached = self._nearby_cache.get(key)
        if cached is not None:
            return cached

        data = await self._post(PLACES_NEARBY_URL, body, NEARBY_FIELD_MASK)
        if data is None:
            return None

        places = [_nearby_place_from_payload(place) for place in data.get("places") or [] if isinstance(place, dict)]
        self._nearby_cache.set(key, places)
        return places

    async def compute_route(
        self,
        *,
        origin: tuple[float, float],
        destination: tuple[float, float],
        travel_mode: str = "DRIVE",
        routing_preference: str | None = None,
        compute_alternative_routes: bool = False,
        avoid_tolls: bool = False,
        avoid_highways: bool = False,
        avoid_ferries: bool = False,
        language_code: str | None = None,
        units: str = "METRIC",
    ) -> dict[str, Any] | None:
        body: dict[str, Any] = {
            "origin": {"location": {"latLng": {"latitude": origin[0], "longitude": origin[1]}}},
            "destination": {"location": {"latLng": {"latitude": destination[0], "longitude": destination[1]}}},
            "travelMode": travel_mode,
            "computeAlternativeRoutes": compute_alternative_routes,
            "routeModifiers": {
                "avoidTolls": avoid_tolls,
                "avoidHighways": avoid_highways,
                "avoidFerries": avoid_ferries,
            },
            "units": units,
        }
        # Routing preference is only accepted for DRIVE and TWO_WHEELER.
        if travel_mode in {"DRIVE", "TWO_WHEELER"}:
            body["routingPreference"] = routing_preference or "TRAFFIC_AWARE"
        if language_code:
            body["languageCode"] = language_code

        key = json.dumps(body, sort_keys=True)
        cached = self._routes_cache.get(key)
        if cached is not None:
            return cached

        data = await self._post(ROUTES_URL, body, ROUTES_FIELD_MASK)
        if data is None:
            return None

        routes = [_route_from_payload(route) for route in data.get("routes") or [] if isinstance(route, dict)]
        result = {
            "route": routes[0] if routes else None,
            "routes": routes,
            "raw": data,
        }
        self._routes_cache.set(key, result)
        return result

    async def search_text(
        self,
        text_query: str,
        *,
        included_type: str | None = None,
        use_strict_type_filtering: bool = False,
        is_open_now: bool | None = None,
        min_rating: float | None = None,
        max_result_count: int = 10,
        language: str | None = None,
        region: str | None = None,
        location_bias: tuple[float, float] | None = None,
        location_restriction: tuple[float, float, float] | None = None,
    ) -> list[dict[str, Any]] | None:
        body: dict[str, Any] = {
            "textQuery": text_query,
            "useStrictTypeFiltering": use_strict_type_filtering,
            "maxResultCount": max_result_count,
        }
        optional = {
            "includedType": included_type,
            "openNow": is_open_now,
            "minRating": min_rating,
            "languageCode": language,
            "regionCode": region,
        }
        body.update({name: value for name, value in optional.items() if value is not None})

        # A restriction takes precedence over a bias. Text search only accepts
        # rectangular restrictions, so the circle is widened to its bounding box.
        if location_restriction is not None:
            lat, lng, radius = location_restriction
            body["locationRestriction"] = {"rectangle": _bounding_box(lat, lng, radius)}
        elif location_bias is not None:
            lat, lng = location_bias
            body["locationBias"] = {"circle": {"center": {"latitude": lat, "longitude": lng}, "radius": 5000.0}}

        key = json.dumps(body, sort_keys=True)
        cached = self._places_cache.get(key)
        if cached is not None:
            return cached

        data = await self._post(PLACES_TEXT_SEARCH_URL, body, PLACES_FIELD_MASK)
        if data is None:
            return None

        places = [_place_from_payload(place) for place in data.get("places") or [] if isinstance(place, dict)]
        self._places_cache.set(key, places)
        return places
