"""
progress-sync - local-first player progress synchronization.

Keeps a player's progress consistent across the in-memory session, a local
persistent cache and a remote authoritative ledger. Provides:
- Snapshot persistence (JSON files or memory)
- Mission state machine with exactly-once rewards
- Tiered, self-expiring item effects with restart-safe timers
- Reconciliation with field-aware merge and conflict reporting
"""

__version__ = "0.1.0"
