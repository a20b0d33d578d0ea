"""
progress-sync FastAPI server.

Thin HTTP surface over a ProgressSession. All state lives in the session;
handlers translate engine errors into status codes.

Endpoints:
- POST /players/{identity}/connect      - Load progress, start auto-sync
- POST /players/{identity}/disconnect   - Persist and release
- GET  /players/{identity}              - Snapshot
- PATCH /players/{identity}             - Update caller-owned fields
- GET  /players/{identity}/sync         - Sync status
- POST /players/{identity}/sync         - Force sync
- GET  /players/{identity}/missions     - Mission list
- POST /players/{identity}/missions/{mission_id}/start
- POST /players/{identity}/events       - Gameplay event
- POST /players/{identity}/items/use    - Consume items
- GET  /players/{identity}/effects      - Active effects and multipliers
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import Config
from ..errors import (
    InvariantViolation,
    NoActiveIdentityError,
    ProgressSyncError,
    UnknownMissionError,
)
from ..session import ItemUseResult, ProgressSession
from ..state.schema import MissionRecord, PlayerProgressSnapshot, SyncResult, SyncStatus
from .schemas import (
    ConnectRequest,
    ConnectResponse,
    DisconnectResponse,
    EffectsResponse,
    ErrorResponse,
    EventResponse,
    GameplayEventRequest,
    PlayerUpdateRequest,
    UseItemRequest,
)

logger = logging.getLogger(__name__)


def _error(status: int, exc: Exception, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(error=str(exc), code=code).model_dump(),
    )


def create_app(session: ProgressSession | None = None, config: Config | None = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        session: Prebuilt session (tests), otherwise built from config
        config: Configuration for ProgressSession.from_config
    """
    session = session or ProgressSession.from_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        yield
        # Shutdown - persist and release every connected identity
        await session.close()

    app = FastAPI(
        title="progress-sync API",
        description="Local-first player progress with remote reconciliation",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.session = session

    def get_session() -> ProgressSession:
        return app.state.session

    # -------------------------------------------------------------------------
    # Error mapping
    # -------------------------------------------------------------------------

    @app.exception_handler(NoActiveIdentityError)
    async def no_identity_handler(request: Request, exc: NoActiveIdentityError):
        return _error(404, exc, "identity_not_connected")

    @app.exception_handler(UnknownMissionError)
    async def unknown_mission_handler(request: Request, exc: UnknownMissionError):
        return _error(404, exc, "unknown_mission")

    @app.exception_handler(InvariantViolation)
    async def invariant_handler(request: Request, exc: InvariantViolation):
        return _error(409, exc, type(exc).__name__)

    @app.exception_handler(ProgressSyncError)
    async def progress_error_handler(request: Request, exc: ProgressSyncError):
        logger.warning("Unhandled progress error on %s: %s", request.url.path, exc)
        return _error(503, exc, type(exc).__name__)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _error(400, exc, "invalid_value")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @app.get("/health")
    async def health_check(session: ProgressSession = Depends(get_session)):
        """Health check endpoint."""
        return {"ok": True, "service": "progress-sync", "connected": len(session.connected_identities())}

    @app.post("/players/{identity}/connect", response_model=ConnectResponse)
    async def connect(
        identity: str,
        request: ConnectRequest | None = None,
        session: ProgressSession = Depends(get_session),
    ):
        auto_sync = request.auto_sync if request else True
        snapshot = await session.connect(identity, auto_sync=auto_sync)
        return ConnectResponse(identity=identity, snapshot=snapshot)

    @app.post("/players/{identity}/disconnect", response_model=DisconnectResponse)
    async def disconnect(identity: str, session: ProgressSession = Depends(get_session)):
        ok = await session.disconnect(identity)
        return DisconnectResponse(ok=ok, identity=identity)

    # -------------------------------------------------------------------------
    # Player
    # -------------------------------------------------------------------------

    @app.get("/players/{identity}", response_model=PlayerProgressSnapshot)
    async def get_player(identity: str, session: ProgressSession = Depends(get_session)):
        return session.manager.require(identity)

    @app.patch("/players/{identity}", response_model=PlayerProgressSnapshot)
    async def update_player(
        identity: str,
        request: PlayerUpdateRequest,
        session: ProgressSession = Depends(get_session),
    ):
        fields = request.model_dump(exclude_none=True)
        if not fields:
            return session.manager.require(identity)
        return session.update_player(identity, **fields)

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    @app.get("/players/{identity}/sync", response_model=SyncStatus)
    async def sync_status(identity: str, session: ProgressSession = Depends(get_session)):
        session.manager.require(identity)
        return session.coordinator.sync_status(identity)

    @app.post("/players/{identity}/sync", response_model=SyncResult)
    async def force_sync(identity: str, session: ProgressSession = Depends(get_session)):
        session.manager.require(identity)
        return await session.coordinator.force_sync(identity)

    # -------------------------------------------------------------------------
    # Missions
    # -------------------------------------------------------------------------

    @app.get("/players/{identity}/missions", response_model=list[MissionRecord])
    async def list_missions(identity: str, session: ProgressSession = Depends(get_session)):
        return session.missions.get_missions(identity)

    @app.post("/players/{identity}/missions/{mission_id}/start", response_model=MissionRecord)
    async def start_mission(identity: str, mission_id: str, session: ProgressSession = Depends(get_session)):
        return session.missions.start_mission(identity, mission_id)

    @app.post("/players/{identity}/events", response_model=EventResponse)
    async def gameplay_event(
        identity: str,
        request: GameplayEventRequest,
        session: ProgressSession = Depends(get_session),
    ):
        update = session.missions.apply_event(identity, request)
        return EventResponse(update=update)

    # -------------------------------------------------------------------------
    # Items & Effects
    # -------------------------------------------------------------------------

    @app.post("/players/{identity}/items/use", response_model=ItemUseResult)
    async def use_items(
        identity: str,
        request: UseItemRequest,
        session: ProgressSession = Depends(get_session),
    ):
        return session.use_items(identity, request.resource_id, request.quantity)

    @app.get("/players/{identity}/effects", response_model=EffectsResponse)
    async def get_effects(identity: str, session: ProgressSession = Depends(get_session)):
        engine = session.effects(identity)
        return EffectsResponse(
            total_items_used=engine.total_items_used,
            multipliers=engine.get_active_multipliers(),
            effects=engine.active_effects(),
        )

    return app
