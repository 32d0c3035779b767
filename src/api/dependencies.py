"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules. The objects are
created once in the application lifespan and stored on ``app.state``.
"""

from __future__ import annotations

from fastapi import Request, WebSocket

from tools.base import ServiceContext
from tools.dispatcher import CapabilityDispatcher


def get_services(request: Request) -> ServiceContext:
    return request.app.state.services


def get_dispatcher(request: Request) -> CapabilityDispatcher:
    return request.app.state.dispatcher


def get_active_calls(request: Request) -> set:
    return request.app.state.active_calls


def ws_services(websocket: WebSocket) -> ServiceContext:
    return websocket.app.state.services


def ws_dispatcher(websocket: WebSocket) -> CapabilityDispatcher:
    return websocket.app.state.dispatcher
