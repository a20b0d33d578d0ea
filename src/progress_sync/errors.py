"""
Error taxonomy for progress-sync.

Remote and storage failures never cross a module boundary as exceptions:
the coordinator and the stores convert them into result values. Engine
misuse (InvariantViolation) is raised to the caller so it cannot proceed
with an inconsistent mission state.
"""


class ProgressSyncError(Exception):
    """Base error for progress-sync."""
    pass


class TransientRemoteError(ProgressSyncError):
    """Timeout or transport failure talking to the remote ledger."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Remote {operation} failed: {reason}")


class DataCorruptionError(ProgressSyncError):
    """A persisted document could not be parsed."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Corrupt data under {key!r}: {reason}")


class InvariantViolation(ProgressSyncError):
    """Engine misuse. Programming error, not a transient condition."""
    pass


class InvalidStateError(InvariantViolation):
    """Attempted transition not valid for the mission's current status."""

    def __init__(self, mission_id: str, current: str, attempted: str):
        self.mission_id = mission_id
        self.current = current
        self.attempted = attempted
        super().__init__(
            f"Cannot {attempted} mission {mission_id!r}: {current}."
        )


class UnknownMissionError(InvariantViolation):
    """Mission id is not part of the catalog."""

    def __init__(self, mission_id: str):
        self.mission_id = mission_id
        super().__init__(f"Unknown mission: {mission_id!r}")


class NoActiveIdentityError(InvariantViolation):
    """Operation needs a connected identity and none is loaded."""

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"No progress loaded for identity {identity!r}")


class InsufficientQuantityError(InvariantViolation):
    """Tried to consume more of a resource than the inventory holds."""

    def __init__(self, resource_id: str, requested: int, available: int):
        self.resource_id = resource_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot use {requested} of {resource_id!r}: only {available} held"
        )
