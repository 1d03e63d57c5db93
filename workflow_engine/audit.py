"""
Audit log for workflow step transitions.

Entries are appended in emission order and forwarded to an optional sink.
Emission is serialized through one lock so concurrent children of a
parallel step never interleave inside a single sink call.
"""

import asyncio
import inspect
import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Union

from .types import AuditEntry, AuditSink, AuditStatus

logger = logging.getLogger(__name__)


class AuditLog:
    """Bounded, ordered audit stream with a single writer."""

    def __init__(self, sink: Optional[AuditSink] = None, max_entries: int = 10000):
        """
        Initialize audit log.

        Args:
            sink: Callback invoked once per entry; may be sync or async.
                  Exceptions raised by the sink propagate to the caller.
            max_entries: Number of entries kept in memory (oldest dropped first)
        """
        self.sink = sink
        self._entries: Deque[AuditEntry] = deque(maxlen=max_entries)
        self._lock = asyncio.Lock()

    async def emit(
        self,
        step: str,
        status: AuditStatus,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        """Record one entry and forward it to the sink."""
        async with self._lock:
            entry = AuditEntry(step=step, status=status, metadata=metadata)
            self._entries.append(entry)
            logger.debug(f"Audit: {step} {status.value} {metadata or ''}")
            if self.sink is not None:
                result = self.sink(entry)
                if inspect.isawaitable(result):
                    await result
            return entry

    async def started(self, step: str) -> AuditEntry:
        return await self.emit(step, AuditStatus.STARTED)

    async def completed(self, step: str, metadata: Optional[Dict[str, Any]] = None) -> AuditEntry:
        return await self.emit(step, AuditStatus.COMPLETED, metadata)

    async def failed(self, step: str, error: Union[BaseException, str]) -> AuditEntry:
        return await self.emit(step, AuditStatus.FAILED, {"error": str(error)})

    async def skipped(self, step: str, reason: str) -> AuditEntry:
        return await self.emit(step, AuditStatus.SKIPPED, {"reason": reason})

    def entries(self) -> List[AuditEntry]:
        """Copy of the retained entries, oldest first."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
