"""Capabilities built on the primary caller's tracked position."""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import Field

from tools.base import ArgumentsModel, Capability, ToolContext

LOGGER = logging.getLogger(__name__)

METERS_PER_MILE = 1609.344
DEFAULT_RADIUS_MILES = 5
DEFAULT_RADIUS_M = round(METERS_PER_MILE * DEFAULT_RADIUS_MILES)
MAX_RADIUS_M = 50_000

LOCATION_UNAVAILABLE = "Location information not available."
NEARBY_UNAVAILABLE = "Current location not available."


def _unavailable(message: str) -> dict[str, Any]:
    return {"status": "unavailable", "message": message}


def _is_primary_caller(context: ToolContext) -> bool:
    return bool(context.caller_e164) and context.caller_e164 in context.settings.primary_callers


def resolve_radius_m(radius_m: float | None, radius_miles: float | None) -> int:
    """Meters win over miles; neither means the default five-mile radius."""

    if radius_m is not None:
        radius = radius_m
    elif radius_miles is not None:
        radius = radius_miles * METERS_PER_MILE
    else:
        return DEFAULT_RADIUS_M
    radius = round(radius)
    if radius <= 0 or radius > MAX_RADIUS_M:
        raise ValueError(f"Invalid radius; must be between 1 and {MAX_RADIUS_M} meters.")
    return radius


class CurrentLocationArgs(ArgumentsModel):
    pass


class GetCurrentLocation(Capability):
    name = "get_current_location"
    description = (
        "Get the current tracked location for the caller. Only available for primary callers; "
        "returns location, address, and timezone details when available. Prefer reading "
        "location.address and location.userLocation when mentioning the street, city, and region."
    )
    parameters = {"type": "object", "properties": {}, "additionalProperties": False}
    arguments_model = CurrentLocationArgs

    async def execute(self, args: CurrentLocationArgs, context: ToolContext) -> dict[str, Any]:
        services = context.services
        if not _is_primary_caller(context) or services.tracker is None or services.maps is None:
            return _unavailable(LOCATION_UNAVAILABLE)

        track = await services.tracker.latest_track()
        if track is None:
            return _unavailable(LOCATION_UNAVAILABLE)

        location = await services.maps.describe_location(track.latitude, track.longitude)
        if location is None:
            LOGGER.info("Reverse geocoding failed for the latest track")
            return _unavailable(LOCATION_UNAVAILABLE)
        return {"status": "ok", "track": track.as_dict(), "location": location}


class NearbyPlaceArgs(ArgumentsModel):
    radius_miles: float | None = None
    radius_m: float | None = None
    included_primary_types: list[str] | None = None
    max_result_count: int = Field(default=10, ge=1, le=20)
    rank_preference: Literal["POPULARITY", "DISTANCE"] = "POPULARITY"
    language_code: str | None = None
    region_code: str | None = None


class FindCurrentlyNearbyPlace(Capability):
    name = "find_currently_nearby_place"
    description = (
        "Find places near the caller's current tracked location. Defaults to a 5 mile radius "
        "when radius is not provided."
    )
    parameters = {
        "type": "object",
        "properties": {
            "radius_miles": {"type": "number", "description": "Search radius in miles. Defaults to 5 miles when omitted."},
            "radius_m": {
                "type": "number",
                "description": "Search radius in meters (1..50000). Overrides radius_miles when provided.",
            },
            "included_primary_types": {
                "type": "array",
                "description": 'Places (New) primary types the user is looking for (e.g., ["restaurant"]).',
                "items": {"type": "string"},
            },
            "max_result_count": {"type": "number", "description": "Max results (1..20)."},
            "rank_preference": {
                "type": "string",
                "enum": ["POPULARITY", "DISTANCE"],
                "description": "Result ranking preference: POPULARITY or DISTANCE.",
            },
            "language_code": {"type": "string", "description": 'BCP-47 language code, e.g., "en".'},
            "region_code": {"type": "string", "description": 'CLDR region code, e.g., "US".'},
        },
    }
    arguments_model = NearbyPlaceArgs

    async def execute(self, args: NearbyPlaceArgs, context: ToolContext) -> dict[str, Any]:
        services = context.services
        if not _is_primary_caller(context):
            return _unavailable(NEARBY_UNAVAILABLE)

        radius_m = resolve_radius_m(args.radius_m, args.radius_miles)
        if services.tracker is None or services.maps is None:
            return _unavailable(NEARBY_UNAVAILABLE)

        track = await services.tracker.latest_track()
        if track is None:
            return _unavailable(NEARBY_UNAVAILABLE)

        places = await services.maps.search_nearby(
            track.latitude,
            track.longitude,
            radius_m,
            included_primary_types=args.included_primary_types,
            max_result_count=args.max_result_count,
            rank_preference=args.rank_preference,
            language_code=args.language_code,
            region_code=args.region_code,
        )
        if places is None:
            return _unavailable(NEARBY_UNAVAILABLE)
        return {"status": "ok", "radius_m": radius_m, "places": places}
