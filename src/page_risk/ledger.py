"""
Evidence/threat ledger.

Append-only, capacity-bounded history of findings and collected evidence,
one ordered sequence per ledger kind. Appending beyond a kind's capacity
evicts the oldest entries so exactly the last N remain.

Each kind is persisted as a list of records under its own key of the
key-value store. Read-modify-write of a kind runs under that kind's lock, and
the in-memory state only changes after the store write succeeded.
"""

import asyncio
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Optional

from .audit_logger import AuditLogger
from .config import LedgerConfig
from .enums import LedgerKind, LogLevel
from .exceptions import (
    CapacityInvariantViolation,
    InvalidInputError,
    PageRiskError,
    StoreUnavailableError,
)
from .models import LedgerEntry, LedgerResult, isoformat_z, utc_now
from .store import KeyValueStore


class Ledger:
    """Per-kind FIFO ledger over a key-value store."""

    COMPONENT = "Ledger"

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[LedgerConfig] = None,
        logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._config = config or LedgerConfig()
        self._logger = logger
        self._clock = clock
        self._entries: dict[LedgerKind, list[LedgerEntry]] = {}
        self._locks: defaultdict[LedgerKind, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._last_id = 0

    def capacity(self, kind: LedgerKind) -> Optional[int]:
        """Maximum number of retained entries, None for uncapped kinds."""
        return {
            LedgerKind.THREAT_HISTORY: self._config.threat_capacity,
            LedgerKind.ANALYSIS_HISTORY: self._config.analysis_capacity,
            LedgerKind.EVIDENCE: self._config.evidence_capacity,
        }[kind]

    async def append(self, kind: LedgerKind, entry: LedgerEntry) -> LedgerResult:
        """
        Append an entry, assigning its id and evicting the oldest beyond capacity.

        Returns:
            LedgerResult with the assigned id, or ok=False with the store error;
            on failure the ledger is unchanged
        """
        async with self._locks[kind]:
            try:
                current = await self._current(kind, strict=True)
            except StoreUnavailableError as e:
                return LedgerResult(ok=False, error=e)
            now = self._clock()
            entry_id = self._next_id(now)
            stored = replace(entry, kind=kind).with_identity(entry_id, isoformat_z(now))

            updated = current + [stored]
            evicted = 0
            capacity = self.capacity(kind)
            if capacity is not None and len(updated) > capacity:
                evicted = len(updated) - capacity
                updated = updated[evicted:]
            updated = self._check_capacity(kind, updated)

            error = await self._write(kind, updated)
            if error is not None:
                return LedgerResult(ok=False, error=error)

            self._entries[kind] = updated
            if evicted:
                self._log(LogLevel.DEBUG, "Evicted oldest entries", {"kind": kind.value, "evicted": evicted})
            return LedgerResult(ok=True, entry_id=entry_id, evicted=evicted)

    async def list_entries(self, kind: LedgerKind) -> tuple[LedgerEntry, ...]:
        """Entries of a kind, oldest first."""
        async with self._locks[kind]:
            return tuple(await self._current(kind))

    async def recent(self, kind: LedgerKind, limit: Optional[int]) -> tuple[LedgerEntry, ...]:
        """The ``limit`` most recent entries of a kind, oldest first."""
        entries = await self.list_entries(kind)
        if limit is None or len(entries) <= limit:
            return entries
        return entries[len(entries) - limit:] if limit > 0 else ()

    async def clear(self, kind: LedgerKind) -> LedgerResult:
        """Remove every entry of a kind. Clearing an empty kind succeeds."""
        async with self._locks[kind]:
            error = await self._write(kind, [])
            if error is not None:
                return LedgerResult(ok=False, error=error)
            self._entries[kind] = []
            self._log(LogLevel.INFO, "Ledger cleared", {"kind": kind.value})
            return LedgerResult(ok=True)

    async def trim(self) -> dict[str, int]:
        """
        Force every capped kind down to its capacity.

        Returns:
            Number of entries removed per kind
        """
        removed = {}
        for kind in LedgerKind:
            capacity = self.capacity(kind)
            if capacity is None:
                continue
            async with self._locks[kind]:
                try:
                    current = await self._current(kind, strict=True)
                except StoreUnavailableError:
                    continue
                if len(current) <= capacity:
                    continue
                trimmed = current[len(current) - capacity:]
                error = await self._write(kind, trimmed)
                if error is None:
                    self._entries[kind] = trimmed
                    removed[kind.value] = len(current) - capacity
        return removed

    def contribution(self, entry: LedgerEntry) -> int:
        """An entry's share of the aggregate score, bounded to 0..100."""
        if entry.score is not None:
            value = entry.score
        else:
            weights = self._config.entry_weights
            value = weights.get(entry.entry_type)
            if value is None and entry.category is not None:
                value = weights.get(entry.category)
            if value is None:
                value = self._config.default_entry_weight
        return max(0, min(100, value))

    async def aggregate_score(self, kind: LedgerKind) -> int:
        entries = await self.list_entries(kind)
        return min(100, sum(self.contribution(entry) for entry in entries))

    async def overall_risk_score(self) -> int:
        """Aggregate over collected evidence and threat history together."""
        evidence = await self.list_entries(LedgerKind.EVIDENCE)
        threats = await self.list_entries(LedgerKind.THREAT_HISTORY)
        return min(100, sum(self.contribution(entry) for entry in evidence + threats))

    async def _current(self, kind: LedgerKind, strict: bool = False) -> list[LedgerEntry]:
        """
        In-memory entries, loading them from the store on first use.

        An unreadable store counts as empty for views and is retried on next
        access. With ``strict`` the read error is raised instead, so callers
        that write the kind back never replace persisted entries they could
        not see.

        Raises:
            StoreUnavailableError: If strict and the store read failed
        """
        if kind in self._entries:
            return list(self._entries[kind])

        try:
            stored = await asyncio.wait_for(
                self._store.get([kind.value]), timeout=self._config.read_timeout_seconds
            )
        except asyncio.TimeoutError:
            error = StoreUnavailableError(
                code="read_timeout",
                message=f"Store read timed out after {self._config.read_timeout_seconds}s",
                details={"kind": kind.value},
            )
        except StoreUnavailableError as e:
            error = e
        except Exception as e:
            error = StoreUnavailableError(
                code="read_failed",
                message=f"Store read failed: {e}",
                details={"kind": kind.value, "error_type": type(e).__name__},
            )
        else:
            error = None

        if error is not None:
            if strict:
                self._log_error("Ledger read failed", error, kind)
                raise error
            self._log_error("Ledger read failed, treating as empty", error, kind)
            return []

        entries = self._parse(kind, stored.get(kind.value, []))
        capacity = self.capacity(kind)
        if capacity is not None and len(entries) > capacity:
            self._log(
                LogLevel.WARN,
                "Persisted ledger exceeds capacity, trimming",
                {"kind": kind.value, "size": len(entries), "capacity": capacity},
            )
            entries = entries[len(entries) - capacity:]

        self._entries[kind] = entries
        if entries:
            self._last_id = max(self._last_id, max(entry.id for entry in entries))
        return list(entries)

    def _parse(self, kind: LedgerKind, records: Any) -> list[LedgerEntry]:
        if not isinstance(records, list):
            self._log(LogLevel.WARN, "Persisted ledger is not a list, using empty", {"kind": kind.value})
            return []
        entries = []
        for record in records:
            try:
                entries.append(LedgerEntry.from_dict(record, kind))
            except InvalidInputError as e:
                self._log(LogLevel.WARN, "Skipping invalid ledger record", {"kind": kind.value, "error": e.message})
        return entries

    async def _write(self, kind: LedgerKind, entries: list[LedgerEntry]) -> Optional[PageRiskError]:
        payload = {kind.value: [entry.to_dict() for entry in entries]}
        try:
            await asyncio.wait_for(self._store.set(payload), timeout=self._config.write_timeout_seconds)
        except asyncio.TimeoutError:
            error = StoreUnavailableError(
                code="write_timeout",
                message=f"Store write timed out after {self._config.write_timeout_seconds}s",
                details={"kind": kind.value},
            )
        except StoreUnavailableError as e:
            error = e
        except Exception as e:
            error = StoreUnavailableError(
                code="write_failed",
                message=f"Store write failed: {e}",
                details={"kind": kind.value, "error_type": type(e).__name__},
            )
        else:
            return None
        self._log_error("Ledger write failed", error, kind)
        return error

    def _next_id(self, now: datetime) -> int:
        # Millisecond timestamp, bumped to stay strictly increasing
        entry_id = max(int(now.timestamp() * 1000), self._last_id + 1)
        self._last_id = entry_id
        return entry_id

    def _check_capacity(self, kind: LedgerKind, entries: list[LedgerEntry]) -> list[LedgerEntry]:
        capacity = self.capacity(kind)
        if capacity is None or len(entries) <= capacity:
            return entries
        if self._config.strict_invariants:
            raise CapacityInvariantViolation(
                code="capacity_exceeded",
                message=f"Ledger {kind.value} holds {len(entries)} entries, capacity {capacity}",
                details={"kind": kind.value, "size": len(entries), "capacity": capacity},
            )
        self._log(
            LogLevel.ERROR,
            "Ledger exceeded capacity after eviction, force-trimming",
            {"kind": kind.value, "size": len(entries), "capacity": capacity},
        )
        return entries[len(entries) - capacity:]

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)

    def _log_error(self, message: str, error: BaseException, kind: LedgerKind) -> None:
        if self._logger:
            self._logger.log_error(self.COMPONENT, message, error=error, additional_data={"kind": kind.value})

    list = list_entries
