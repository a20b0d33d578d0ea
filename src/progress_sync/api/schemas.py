"""
Pydantic schemas for the progress-sync API.

Request bodies and the response wrappers that are not already state
models. Snapshots, missions and sync results are returned as their state
schema types directly.
"""

from pydantic import BaseModel, Field

from ..state.schema import EffectCategory, ItemEffect, MissionEvent, PlayerProgressSnapshot
from ..systems.missions import MissionUpdate


# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------

class ConnectRequest(BaseModel):
    """Options for connecting an identity."""
    auto_sync: bool = True


class PlayerUpdateRequest(BaseModel):
    """Caller-owned player fields. Omitted fields are left unchanged."""
    name: str | None = None
    position: tuple[float, float, float] | None = None
    stats: dict[str, float] | None = None


class GameplayEventRequest(MissionEvent):
    """A gameplay event routed to the active mission."""
    pass


class UseItemRequest(BaseModel):
    resource_id: str
    quantity: int = Field(default=1, ge=1)


# -----------------------------------------------------------------------------
# Responses
# -----------------------------------------------------------------------------

class ConnectResponse(BaseModel):
    ok: bool = True
    identity: str
    snapshot: PlayerProgressSnapshot


class DisconnectResponse(BaseModel):
    ok: bool
    identity: str


class EventResponse(BaseModel):
    """Result of a gameplay event. update is None when nothing advanced."""
    ok: bool = True
    update: MissionUpdate | None = None


class EffectsResponse(BaseModel):
    total_items_used: int
    multipliers: dict[EffectCategory, float]
    effects: list[ItemEffect] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Standard error response."""
    ok: bool = False
    error: str
    code: str | None = None
