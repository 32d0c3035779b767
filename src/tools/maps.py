"""Navigation and place-lookup capabilities backed by Google Maps."""

from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, Field

from integrations.google_maps import GoogleMapsClient
from tools.base import ArgumentsModel, Capability, ToolContext

DIRECTIONS_UNAVAILABLE = "Directions unavailable."
PLACES_UNAVAILABLE = "Places search unavailable."

_TAGS = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")

_LAT_LNG_SCHEMA = {
    "type": "object",
    "properties": {"lat": {"type": "number"}, "lng": {"type": "number"}},
}


class LatLng(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class RouteModifiers(BaseModel):
    avoid_tolls: bool = False
    avoid_highways: bool = False
    avoid_ferries: bool = False


def _require_maps(context: ToolContext) -> GoogleMapsClient:
    if context.services.maps is None:
        raise RuntimeError("Google Maps is not configured.")
    return context.services.maps


def format_directions(steps: list[dict[str, Any]]) -> list[str]:
    """Render route steps as short spoken-friendly lines."""

    lines = []
    for index, step in enumerate(steps, start=1):
        raw_instruction = str((step.get("navigationInstruction") or {}).get("instructions") or "")
        instruction = _WHITESPACE.sub(" ", _TAGS.sub(" ", raw_instruction)).strip()
        distance = step.get("distanceMeters")
        duration = step.get("duration")
        suffix = ", ".join(
            part
            for part in (
                f"{round(distance)} m" if isinstance(distance, (int, float)) else None,
                duration if isinstance(duration, str) else None,
            )
            if part
        )
        label = instruction or f"Step {index}"
        lines.append(f"{label} ({suffix})" if suffix else label)
    return lines


class DirectionsArgs(ArgumentsModel):
    origin: LatLng
    destination: LatLng
    travel_mode: Literal["DRIVE", "BICYCLE", "WALK", "TWO_WHEELER", "TRANSIT"] = "DRIVE"
    routing_preference: Literal["TRAFFIC_UNAWARE", "TRAFFIC_AWARE", "TRAFFIC_AWARE_OPTIMAL"] | None = None
    compute_alternative_routes: bool = False
    route_modifiers: RouteModifiers = Field(default_factory=RouteModifiers)
    language_code: str | None = None
    units: Literal["METRIC", "IMPERIAL"] = "METRIC"


class Directions(Capability):
    name = "directions"
    description = "Get directions between two locations using the Google Routes API."
    parameters = {
        "type": "object",
        "properties": {
            "origin": {**_LAT_LNG_SCHEMA, "description": "Origin coordinates."},
            "destination": {**_LAT_LNG_SCHEMA, "description": "Destination coordinates."},
            "travel_mode": {
                "type": "string",
                "description": "Travel mode. Default DRIVE.",
                "enum": ["DRIVE", "BICYCLE", "WALK", "TWO_WHEELER", "TRANSIT"],
            },
            "routing_preference": {
                "type": "string",
                "description": "Routing preference. Default TRAFFIC_AWARE.",
                "enum": ["TRAFFIC_UNAWARE", "TRAFFIC_AWARE", "TRAFFIC_AWARE_OPTIMAL"],
            },
            "compute_alternative_routes": {"type": "boolean", "description": "Whether to compute alternate routes."},
            "route_modifiers": {
                "type": "object",
                "description": "Avoid options for the route.",
                "properties": {
                    "avoid_tolls": {"type": "boolean"},
                    "avoid_highways": {"type": "boolean"},
                    "avoid_ferries": {"type": "boolean"},
                },
            },
            "language_code": {"type": "string", "description": 'BCP-47 language tag (e.g., "en-US").'},
            "units": {"type": "string", "description": "Units for distances. Default METRIC.", "enum": ["METRIC", "IMPERIAL"]},
        },
        "required": ["origin", "destination"],
    }
    arguments_model = DirectionsArgs

    async def execute(self, args: DirectionsArgs, context: ToolContext) -> dict[str, Any]:
        maps = _require_maps(context)
        result = await maps.compute_route(
            origin=(args.origin.lat, args.origin.lng),
            destination=(args.destination.lat, args.destination.lng),
            travel_mode=args.travel_mode,
            routing_preference=args.routing_preference,
            compute_alternative_routes=args.compute_alternative_routes,
            avoid_tolls=args.route_modifiers.avoid_tolls,
            avoid_highways=args.route_modifiers.avoid_highways,
            avoid_ferries=args.route_modifiers.avoid_ferries,
            language_code=args.language_code,
            units=args.units,
        )
        if not result or result["route"] is None:
            return {"status": "unavailable", "message": DIRECTIONS_UNAVAILABLE}

        route = result["route"]
        return {
            "status": "ok",
            "route": route.as_dict(),
            "alternatives": len(result["routes"]) - 1,
            "directions": format_directions(route.steps),
        }


class LocationRestriction(BaseModel):
    center: LatLng
    radius_m: float = Field(gt=0, le=50_000)


class PlacesTextSearchArgs(ArgumentsModel):
    text_query: str = Field(min_length=1)
    included_type: str | None = None
    use_strict_type_filtering: bool = False
    is_open_now: bool | None = None
    min_rating: float | None = Field(default=None, ge=0, le=5)
    max_result_count: int = Field(default=10, ge=1, le=20)
    language: str | None = None
    region: str | None = None
    location_bias: LatLng | None = None
    location_restriction: LocationRestriction | None = None


class PlacesTextSearch(Capability):
    name = "places_text_search"
    description = (
        'Text search for places using Google Places API (New). Use for queries like "coffee '
        'shops in Seattle" or "shaved ice in Tucson".'
    )
    parameters = {
        "type": "object",
        "properties": {
            "text_query": {"type": "string", "description": "Search query for places or a phone number."},
            "included_type": {"type": "string", "description": 'Restrict results to a single place type, e.g. "cafe".'},
            "use_strict_type_filtering": {"type": "boolean", "description": "Strictly enforce included_type."},
            "is_open_now": {"type": "boolean", "description": "Only return places that are open now."},
            "min_rating": {"type": "number", "description": "Minimum rating (1..5)."},
            "max_result_count": {"type": "number", "description": "Max results (1..20). Default 10."},
            "language": {"type": "string", "description": 'BCP-47 language tag (e.g., "en-US").'},
            "region": {"type": "string", "description": 'Region code (e.g., "us").'},
            "location_bias": {**_LAT_LNG_SCHEMA, "description": "Bias results toward a point."},
            "location_restriction": {
                "type": "object",
                "description": "Restrict results to a circle defined by center and radius_m (meters).",
                "properties": {"center": _LAT_LNG_SCHEMA, "radius_m": {"type": "number"}},
            },
        },
        "required": ["text_query"],
    }
    arguments_model = PlacesTextSearchArgs

    async def execute(self, args: PlacesTextSearchArgs, context: ToolContext) -> dict[str, Any]:
        maps = _require_maps(context)
        restriction = args.location_restriction
        places = await maps.search_text(
            args.text_query,
            included_type=args.included_type,
            use_strict_type_filtering=args.use_strict_type_filtering,
            is_open_now=args.is_open_now,
            min_rating=args.min_rating,
            max_result_count=args.max_result_count,
            language=args.language,
            region=args.region,
            location_bias=(args.location_bias.lat, args.location_bias.lng) if args.location_bias else None,
            location_restriction=(
                (restriction.center.lat, restriction.center.lng, restriction.radius_m) if restriction else None
            ),
        )
        if places is None:
            return {"status": "unavailable", "message": PLACES_UNAVAILABLE}
        return {"status": "ok", "places": places}
