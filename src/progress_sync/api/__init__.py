"""
progress-sync HTTP API.

FastAPI surface over a ProgressSession: connect/disconnect, snapshots,
missions, item effects and sync.
"""

from .server import create_app
from .schemas import (
    ConnectRequest,
    ConnectResponse,
    EffectsResponse,
    EventResponse,
    GameplayEventRequest,
    UseItemRequest,
)

__all__ = [
    "create_app",
    "ConnectRequest",
    "ConnectResponse",
    "EffectsResponse",
    "EventResponse",
    "GameplayEventRequest",
    "UseItemRequest",
]
