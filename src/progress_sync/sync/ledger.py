"""
Remote ledger transports.

The remote ledger is the authoritative copy of a player's progress. It is
reached over the network, so every call may fail; implementations raise
TransientRemoteError and leave recovery to the SyncCoordinator.

Implementations:
- MemoryRemoteLedger: in-process, with failure injection (testing)
- HttpRemoteLedger: JSON over HTTP via urllib, run in a worker thread
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote

from pydantic import BaseModel, Field, ValidationError

from ..errors import TransientRemoteError
from ..state.schema import ConflictRecord, PlayerProgressSnapshot
from .merge import merge_snapshots

logger = logging.getLogger(__name__)


class RemoteProgress(BaseModel):
    """What the ledger holds for an identity."""
    success: bool = True
    profile: dict[str, Any] = Field(default_factory=dict)
    stats: dict[str, Any] = Field(default_factory=dict)
    snapshot: PlayerProgressSnapshot | None = None


class RemoteSyncResult(BaseModel):
    success: bool
    synced_progress: PlayerProgressSnapshot | None = None
    conflicts: list[ConflictRecord] = Field(default_factory=list)
    error: str | None = None


@runtime_checkable
class RemoteLedger(Protocol):
    """Async transport to the authoritative ledger."""

    async def load_complete_player_progress(self, identity: str) -> RemoteProgress | None:
        """Remote record for identity, or None if it has none."""
        ...

    async def save_complete_player_progress(self, identity: str, snapshot: PlayerProgressSnapshot) -> bool:
        """Full overwrite. Idempotent."""
        ...

    async def sync_progress(self, identity: str, snapshot: PlayerProgressSnapshot) -> RemoteSyncResult:
        """Server-side merge of snapshot into the remote record."""
        ...

    async def update_mission_progress(self, identity: str, mission_id: str, progress: int) -> None:
        ...


def profile_of(snapshot: PlayerProgressSnapshot) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a snapshot into the profile/stats views the ledger exposes."""
    profile = {"name": snapshot.name, "level": snapshot.level}
    stats = {
        "experience": snapshot.experience,
        "credits": snapshot.credits,
        "completed_missions": len(snapshot.completed_missions),
        **snapshot.stats,
    }
    return profile, stats


class MemoryRemoteLedger:
    """
    In-process ledger.

    Set `offline` to fail every call, or `fail_next` to fail that many
    upcoming calls. `latency` seconds are awaited before each call so
    concurrent callers interleave.
    """

    def __init__(self, latency: float = 0.0):
        self.records: dict[str, str] = {}
        self.mission_updates: list[tuple[str, str, int]] = []
        self.calls: dict[str, int] = {}
        self.offline = False
        self.fail_next = 0
        self.latency = latency

    async def _enter(self, operation: str) -> None:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        await asyncio.sleep(self.latency)
        if self.offline:
            raise TransientRemoteError(operation, "ledger offline")
        if self.fail_next > 0:
            self.fail_next -= 1
            raise TransientRemoteError(operation, "injected failure")

    def put(self, identity: str, snapshot: PlayerProgressSnapshot) -> None:
        """Seed a record directly (test utility)."""
        self.records[identity] = snapshot.model_dump_json()

    def get(self, identity: str) -> PlayerProgressSnapshot | None:
        raw = self.records.get(identity)
        return PlayerProgressSnapshot.model_validate_json(raw) if raw else None

    async def load_complete_player_progress(self, identity: str) -> RemoteProgress | None:
        await self._enter("load")
        snapshot = self.get(identity)
        if snapshot is None:
            return None
        profile, stats = profile_of(snapshot)
        return RemoteProgress(profile=profile, stats=stats, snapshot=snapshot)

    async def save_complete_player_progress(self, identity: str, snapshot: PlayerProgressSnapshot) -> bool:
        await self._enter("save")
        self.put(identity, snapshot)
        return True

    async def sync_progress(self, identity: str, snapshot: PlayerProgressSnapshot) -> RemoteSyncResult:
        await self._enter("sync")
        existing = self.get(identity)
        if existing is None:
            self.put(identity, snapshot)
            return RemoteSyncResult(success=True, synced_progress=snapshot)
        merged, conflicts = merge_snapshots(snapshot, existing)
        self.put(identity, merged)
        return RemoteSyncResult(success=True, synced_progress=merged, conflicts=conflicts)

    async def update_mission_progress(self, identity: str, mission_id: str, progress: int) -> None:
        await self._enter("mission")
        self.mission_updates.append((identity, mission_id, progress))


class HttpRemoteLedger:
    """
    Ledger reached over plain JSON HTTP.

    Routes (relative to base_url):
        GET  /players/{identity}/progress      -> RemoteProgress, 404 if none
        PUT  /players/{identity}/progress      <- snapshot
        POST /players/{identity}/sync          <- snapshot -> RemoteSyncResult
        POST /players/{identity}/missions/{id} <- {"progress": n}

    urllib blocks, so each request runs in a worker thread.
    """

    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _url(self, identity: str, *parts: str) -> str:
        path = "/".join(quote(p, safe="") for p in ("players", identity, *parts))
        return f"{self.base_url}/{path}"

    def _request(self, operation: str, method: str, url: str, payload: str | None = None) -> dict[str, Any] | None:
        """Blocking request. Returns the decoded JSON object, or None on 404."""
        req = urllib.request.Request(
            url,
            data=payload.encode("utf-8") if payload is not None else None,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            method=method,
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            if e.code == 404:
                return None
            raise TransientRemoteError(operation, f"HTTP {e.code}: {e.reason}") from e
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            raise TransientRemoteError(operation, str(e)) from e

        if not body:
            return {}
        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise TransientRemoteError(operation, f"invalid JSON response: {e}") from e
        if not isinstance(data, dict):
            raise TransientRemoteError(operation, f"expected a JSON object, got {type(data).__name__}")
        return data

    async def _call(self, operation: str, method: str, url: str, payload: str | None = None) -> Any:
        logger.debug("%s %s", method, url)
        return await asyncio.to_thread(self._request, operation, method, url, payload)

    async def load_complete_player_progress(self, identity: str) -> RemoteProgress | None:
        data = await self._call("load", "GET", self._url(identity, "progress"))
        if data is None:
            return None
        try:
            return RemoteProgress.model_validate(data)
        except ValidationError as e:
            raise TransientRemoteError("load", f"unexpected response shape: {e.error_count()} errors") from e

    async def save_complete_player_progress(self, identity: str, snapshot: PlayerProgressSnapshot) -> bool:
        data = await self._call("save", "PUT", self._url(identity, "progress"), snapshot.model_dump_json())
        if data is None:
            raise TransientRemoteError("save", "endpoint not found")
        return bool(data.get("success", True))

    async def sync_progress(self, identity: str, snapshot: PlayerProgressSnapshot) -> RemoteSyncResult:
        data = await self._call("sync", "POST", self._url(identity, "sync"), snapshot.model_dump_json())
        if data is None:
            raise TransientRemoteError("sync", "endpoint not found")
        try:
            return RemoteSyncResult.model_validate(data)
        except ValidationError as e:
            raise TransientRemoteError("sync", f"unexpected response shape: {e.error_count()} errors") from e

    async def update_mission_progress(self, identity: str, mission_id: str, progress: int) -> None:
        await self._call(
            "mission",
            "POST",
            self._url(identity, "missions", mission_id),
            json.dumps({"progress": progress}),
        )
