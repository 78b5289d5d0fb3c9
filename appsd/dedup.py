"""Duplicate-operation suppression for lifecycle messages.

The control plane re-delivers intent, sometimes several times in a row.
The deduplicator gates execution per operation key so the same intent is
applied once.

Two modes:
- Token mode: the record stores the last version token seen for a key.
  A delivery carrying the stored token is suppressed.
- Sentinel mode (no token): each key walks Idle -> Running -> Cooldown -> Idle.
  Deliveries are suppressed while Running and during the cooldown window.
  Idle sentinel keys hold no record; expired cooldowns are dropped.

Records live in memory only and are rebuilt from traffic after a restart.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from appsd.models import OperationKey

logger = logging.getLogger(__name__)


class RecordState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COOLDOWN = "cooldown"


@dataclass
class OperationRecord:
    """Per-key deduplication state"""
    token: Optional[str] = None
    state: RecordState = RecordState.IDLE
    cooldown_until: float = 0.0


class OperationDeduplicator:
    """Gate for reconcilable operations, keyed by OperationKey.

    Thread-safe: every check-and-set happens under one lock, so two
    concurrent deliveries of the same key cannot both pass.

    Example:
        dedup = OperationDeduplicator(cooldown=2.0)
        if dedup.should_run(key, "v1"):
            try:
                apply()
                dedup.finish(key, "v1", ok=True)
            except AppsdError:
                dedup.finish(key, "v1", ok=False)
    """

    def __init__(self, cooldown: float = 2.0, clock: Callable[[], float] = time.monotonic):
        self.cooldown = cooldown
        self._clock = clock
        self._records: Dict[OperationKey, OperationRecord] = {}
        self._lock = threading.Lock()

    def should_run(self, key: OperationKey, token: Optional[str]) -> bool:
        """Record the delivery and tell whether it must be executed."""
        with self._lock:
            self._prune()
            record = self._records.get(key)

            if token is not None:
                if record is not None and record.token == token:
                    logger.info(f"Suppressed duplicate operation {key} (token={token})")
                    return False
                self._records[key] = OperationRecord(token=token, state=RecordState.RUNNING)
                return True

            if record is not None and record.state is not RecordState.IDLE:
                logger.info(f"Suppressed operation {key} ({record.state.value})")
                return False
            self._records[key] = OperationRecord(state=RecordState.RUNNING)
            return True

    def finish(self, key: OperationKey, token: Optional[str], ok: bool) -> None:
        """Mark the run that was admitted with *token* as completed.

        Only the run owning the current record may change it: a stale run
        finishing after a newer token took over the key is ignored. A failed
        run clears the record so a re-delivery is not suppressed. A successful
        token-mode run keeps its token; a successful sentinel-mode run enters
        the cooldown window.
        """
        with self._lock:
            record = self._records.get(key)
            if record is None or record.state is not RecordState.RUNNING:
                return
            if record.token != token:
                logger.debug(f"Ignoring stale completion of {key} (token={token}, current={record.token})")
                return
            if not ok:
                del self._records[key]
                return
            if token is None:
                record.state = RecordState.COOLDOWN
                record.cooldown_until = self._clock() + self.cooldown
            else:
                record.state = RecordState.IDLE

    def clear(self, key: OperationKey) -> None:
        """Forget *key* regardless of its token."""
        with self._lock:
            self._records.pop(key, None)

    def state_of(self, key: OperationKey) -> Optional[OperationRecord]:
        """Snapshot of the record for *key*; None once a cooldown has expired"""
        with self._lock:
            self._prune()
            record = self._records.get(key)
            if record is None:
                return None
            return OperationRecord(record.token, record.state, record.cooldown_until)

    def __len__(self) -> int:
        with self._lock:
            self._prune()
            return len(self._records)

    def _prune(self) -> None:
        # Sentinel records past their cooldown are back to Idle: forget them
        now = self._clock()
        expired = [
            key for key, record in self._records.items()
            if record.state is RecordState.COOLDOWN and now >= record.cooldown_until
        ]
        for key in expired:
            del self._records[key]
