"""
Local progress storage.

Separates persistence from domain logic for testability. Every identity
owns three keys: its snapshot, its effect ledger and its sync metadata.
Reads never raise: a missing key and a corrupt document both mean "absent".
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol, TypeVar, runtime_checkable
from urllib.parse import quote, unquote

from pydantic import BaseModel, ValidationError

from ..errors import DataCorruptionError
from .schema import EffectLedger, PlayerProgressSnapshot, SyncMeta

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

PROGRESS_KIND = "progress"
EFFECTS_KIND = "effects"
SYNC_KIND = "sync"
KINDS = (PROGRESS_KIND, EFFECTS_KIND, SYNC_KIND)


def decode(key: str, raw: str, model: type[ModelT]) -> ModelT:
    """Parse a stored document, raising DataCorruptionError on bad data."""
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise DataCorruptionError(key, f"{e.error_count()} validation error(s)") from e


@runtime_checkable
class ProgressStore(Protocol):
    """
    Abstract storage interface for player progress.

    Implementations:
    - JsonProgressStore: File-based persistence (production)
    - MemoryProgressStore: In-memory storage (testing)
    """

    def load(self, identity: str) -> PlayerProgressSnapshot | None:
        """Load a snapshot. Returns None if missing or unreadable."""
        ...

    def save(self, identity: str, snapshot: PlayerProgressSnapshot) -> None:
        """Full overwrite of the identity's snapshot."""
        ...

    def clear(self, identity: str) -> None:
        """Remove the identity's snapshot."""
        ...

    def load_effects(self, identity: str) -> EffectLedger | None:
        ...

    def save_effects(self, identity: str, ledger: EffectLedger) -> None:
        ...

    def load_sync_meta(self, identity: str) -> SyncMeta | None:
        ...

    def save_sync_meta(self, identity: str, meta: SyncMeta) -> None:
        ...

    def clear_all(self, identity: str) -> None:
        """Remove every key owned by the identity."""
        ...

    def list_identities(self) -> list[str]:
        ...


class JsonProgressStore:
    """
    File-based progress storage using JSON.

    Features:
    - Identity-namespaced file names (URL-quoted, collision free)
    - Atomic writes via temp file + rename
    - Automatic backup of the previous snapshot, read back when the
      current file is corrupt (or explicitly via restore_backup)
    """

    def __init__(self, data_dir: Path | str = "progress"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, identity: str, kind: str) -> Path:
        return self.data_dir / f"{quote(identity, safe='')}.{kind}.json"

    def _backup_path(self, identity: str, kind: str) -> Path:
        return self._path(identity, kind).with_suffix(".json.bak")

    def _decode_file(self, identity: str, path: Path, model: type[ModelT]) -> ModelT | None:
        try:
            return decode(path.name, path.read_text(encoding="utf-8"), model)
        except (DataCorruptionError, OSError) as e:
            logger.warning("Ignoring unreadable %s for %s: %s", path.name, identity, e)
            return None

    def _read(self, identity: str, kind: str, model: type[ModelT], fallback: bool = False) -> ModelT | None:
        """
        Read one document. With fallback, a corrupt main file is replaced
        by the .bak copy of the previous save, if that one still parses.
        """
        path = self._path(identity, kind)
        if not path.exists():
            return None
        document = self._decode_file(identity, path, model)
        if document is not None or not fallback:
            return document

        backup = self._backup_path(identity, kind)
        if not backup.exists():
            return None
        document = self._decode_file(identity, backup, model)
        if document is not None:
            logger.warning("Recovered %s for %s from backup", kind, identity)
        return document

    def restore_backup(self, identity: str) -> PlayerProgressSnapshot | None:
        """
        Replace the current snapshot with its .bak copy.

        Returns the restored snapshot, or None (nothing changed) if there is
        no readable backup.
        """
        backup = self._backup_path(identity, PROGRESS_KIND)
        if not backup.exists():
            return None
        snapshot = self._decode_file(identity, backup, PlayerProgressSnapshot)
        if snapshot is None or snapshot.id != identity:
            return None
        self._write(identity, PROGRESS_KIND, snapshot)
        logger.info("Restored snapshot for %s from backup", identity)
        return snapshot

    def _write(self, identity: str, kind: str, document: BaseModel, backup: bool = False) -> None:
        path = self._path(identity, kind)
        if backup and path.exists():
            # A corrupt current file must not replace a good backup
            if self._decode_file(identity, path, type(document)) is not None:
                self._backup_path(identity, kind).write_bytes(path.read_bytes())

        temp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.data_dir, delete=False
            ) as handle:
                temp_path = Path(handle.name)
                handle.write(document.model_dump_json(indent=2))
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_path, path)
            temp_path = None
        finally:
            if temp_path is not None:
                try:
                    temp_path.unlink()
                except FileNotFoundError:
                    pass

    def _remove(self, identity: str, kind: str) -> None:
        for path in (self._path(identity, kind), self._backup_path(identity, kind)):
            if path.exists():
                path.unlink()

    def load(self, identity: str) -> PlayerProgressSnapshot | None:
        snapshot = self._read(identity, PROGRESS_KIND, PlayerProgressSnapshot, fallback=True)
        if snapshot is not None and snapshot.id != identity:
            logger.warning("Snapshot under %s belongs to %s, ignoring", identity, snapshot.id)
            return None
        return snapshot

    def save(self, identity: str, snapshot: PlayerProgressSnapshot) -> None:
        self._write(identity, PROGRESS_KIND, snapshot, backup=True)

    def clear(self, identity: str) -> None:
        self._remove(identity, PROGRESS_KIND)

    def load_effects(self, identity: str) -> EffectLedger | None:
        return self._read(identity, EFFECTS_KIND, EffectLedger)

    def save_effects(self, identity: str, ledger: EffectLedger) -> None:
        self._write(identity, EFFECTS_KIND, ledger)

    def load_sync_meta(self, identity: str) -> SyncMeta | None:
        return self._read(identity, SYNC_KIND, SyncMeta)

    def save_sync_meta(self, identity: str, meta: SyncMeta) -> None:
        self._write(identity, SYNC_KIND, meta)

    def clear_all(self, identity: str) -> None:
        for kind in KINDS:
            self._remove(identity, kind)

    def list_identities(self) -> list[str]:
        """Identities with a stored snapshot, most recently written first."""
        suffix = f".{PROGRESS_KIND}.json"
        files = sorted(
            self.data_dir.glob(f"*{suffix}"),
            key=lambda f: f.stat().st_mtime,
            reverse=True,
        )
        return [unquote(f.name[: -len(suffix)]) for f in files]


class MemoryProgressStore:
    """
    In-memory progress storage for testing.

    Documents are kept as JSON text, so a loaded snapshot never aliases
    the live session object and corrupt payloads can be injected.
    """

    def __init__(self):
        self.documents: dict[tuple[str, str], str] = {}

    def _read(self, identity: str, kind: str, model: type[ModelT]) -> ModelT | None:
        raw = self.documents.get((identity, kind))
        if raw is None:
            return None
        try:
            return decode(f"{identity}.{kind}", raw, model)
        except DataCorruptionError as e:
            logger.warning("Ignoring unreadable %s for %s: %s", kind, identity, e)
            return None

    def load(self, identity: str) -> PlayerProgressSnapshot | None:
        return self._read(identity, PROGRESS_KIND, PlayerProgressSnapshot)

    def save(self, identity: str, snapshot: PlayerProgressSnapshot) -> None:
        self.documents[(identity, PROGRESS_KIND)] = snapshot.model_dump_json()

    def clear(self, identity: str) -> None:
        self.documents.pop((identity, PROGRESS_KIND), None)

    def load_effects(self, identity: str) -> EffectLedger | None:
        return self._read(identity, EFFECTS_KIND, EffectLedger)

    def save_effects(self, identity: str, ledger: EffectLedger) -> None:
        self.documents[(identity, EFFECTS_KIND)] = ledger.model_dump_json()

    def load_sync_meta(self, identity: str) -> SyncMeta | None:
        return self._read(identity, SYNC_KIND, SyncMeta)

    def save_sync_meta(self, identity: str, meta: SyncMeta) -> None:
        self.documents[(identity, SYNC_KIND)] = meta.model_dump_json()

    def clear_all(self, identity: str) -> None:
        for kind in KINDS:
            self.documents.pop((identity, kind), None)

    def list_identities(self) -> list[str]:
        return [identity for identity, kind in self.documents if kind == PROGRESS_KIND]

    def put_raw(self, identity: str, kind: str, raw: str) -> None:
        """Store an arbitrary payload (test utility)."""
        self.documents[(identity, kind)] = raw
