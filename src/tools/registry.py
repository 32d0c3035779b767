"""Default capability set exposed to the realtime model."""

from __future__ import annotations

from tools.base import Capability
from tools.call_control import EndCall, TransferCall, UpdateMicDistance
from tools.dispatcher import CapabilityDispatcher
from tools.location import FindCurrentlyNearbyPlace, GetCurrentLocation
from tools.maps import Directions, PlacesTextSearch
from tools.messaging import SendEmail, SendSms
from tools.search import GetCurrentTime, GptWebSearch


def build_default_capabilities() -> list[Capability]:
    return [
        GptWebSearch(),
        SendEmail(),
        SendSms(),
        UpdateMicDistance(),
        EndCall(),
        TransferCall(),
        GetCurrentTime(),
        Directions(),
        PlacesTextSearch(),
        GetCurrentLocation(),
        FindCurrentlyNearbyPlace(),
    ]


def build_default_dispatcher() -> CapabilityDispatcher:
    return CapabilityDispatcher(build_default_capabilities())
