"""ExpiryReaper — purges expired and used-up messages through the engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ephemera.db import storage_errors

if TYPE_CHECKING:
    from datetime import datetime

    from ephemera.messages.engine import LifecycleEngine
    from ephemera.messages.store import MessageStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepReport:
    examined: int = 0
    purged: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"examined": self.examined, "purged": self.purged, "failed": self.failed}


class ExpiryReaper:
    """Finds reapable messages and purges each one independently.

    A candidate list is only a hint: :meth:`LifecycleEngine.reap` re-checks
    the predicate under the message lock, so a message saved after the query
    survives.  Sweeps are idempotent and safe to run redundantly.

    Args:
        engine: LifecycleEngine whose delete path performs the purge.
        store: MessageStore queried for candidates.
    """

    def __init__(self, engine: LifecycleEngine, store: MessageStore) -> None:
        self._engine = engine
        self._store = store

    async def sweep(self, now: datetime | None = None) -> SweepReport:
        """Sweep every conversation. Raises only if the candidate query fails."""
        now = now or self._engine.now()
        async with storage_errors("sweep"):
            candidates = await self._store.list_reapable(now)
        return await self._purge_all([m.id for m in candidates], now)

    async def sweep_conversation(
        self, a: str, b: str, now: datetime | None = None
    ) -> SweepReport:
        """Sweep one conversation (run whenever a participant opens it)."""
        now = now or self._engine.now()
        async with storage_errors("sweep_conversation"):
            candidates = await self._store.list_reapable(now, pair=(a, b))
        return await self._purge_all([m.id for m in candidates], now)

    async def _purge_all(self, message_ids: list[str], now: datetime) -> SweepReport:
        purged = failed = 0
        for message_id in message_ids:
            try:
                if await self._engine.reap(message_id, now):
                    purged += 1
            except Exception:
                failed += 1
                logger.exception("Reaper failed on message %s", message_id)
        report = SweepReport(examined=len(message_ids), purged=purged, failed=failed)
        if message_ids:
            logger.info(
                "Sweep done: examined=%d purged=%d failed=%d",
                report.examined,
                report.purged,
                report.failed,
            )
        return report

    async def run_scheduled(self) -> SweepReport | None:
        """Scheduler callback. A failed sweep is logged; the next tick retries."""
        try:
            return await self.sweep()
        except Exception:
            logger.exception("Scheduled sweep failed")
            return None
