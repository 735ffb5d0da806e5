"""Audit trail for SOAP calls.

Every dispatched SMAPI call becomes one ``AuditEntry``: it is logged through
structlog straight away and appended to a JSON-lines file in batches.
"""

import asyncio
import uuid
from collections import Counter
from pathlib import Path
from typing import Any, Optional

import aiofiles

from shared.logging import get_logger
from shared.models import AuditEntry, AuditStatus, SmapiRequest

logger = get_logger(__name__)

REDACTED = "[REDACTED]"

# Compared case-insensitively against SOAP parameter names
SENSITIVE_PARAMS = frozenset({
    "password",
    "token",
    "secret",
    "authtoken",
    "logintoken",
    "linkcode",
    "devicecode",
    "privatekey",
})


def redact(params: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``params`` with credential-like values masked, recursively."""
    clean: dict[str, Any] = {}
    for name, value in params.items():
        if name.lower() in SENSITIVE_PARAMS:
            clean[name] = REDACTED
        elif isinstance(value, dict):
            clean[name] = redact(value)
        else:
            clean[name] = value
    return clean


class AuditLogger:
    """
    Buffered audit sink for SMAPI calls.

    When disabled nothing is logged, buffered or written, and no directory
    is ever created.
    """

    def __init__(
        self,
        log_path: str = "logs/audit.log",
        enabled: bool = True,
        batch_size: int = 50
    ) -> None:
        self.log_path = Path(log_path)
        self.enabled = enabled
        self.batch_size = batch_size
        self.status_counts: Counter[AuditStatus] = Counter()
        self._pending: list[AuditEntry] = []
        self._write_lock = asyncio.Lock()

    def create_entry(
        self,
        request_id: str,
        operation: str,
        parameters: dict[str, Any],
        credential_present: bool,
        status: AuditStatus,
        error: Optional[str] = None,
        execution_time_ms: float = 0
    ) -> AuditEntry:
        return AuditEntry(
            id=uuid.uuid4().hex,
            request_id=request_id,
            operation=operation,
            parameters=redact(parameters),
            credential_present=credential_present,
            status=status,
            error=error,
            execution_time_ms=execution_time_ms,
        )

    async def record(
        self,
        request_id: str,
        request: Optional[SmapiRequest],
        status: AuditStatus,
        error: Optional[str],
        execution_time_ms: float
    ) -> Optional[AuditEntry]:
        """
        Audit one dispatch.

        ``request`` is None when the envelope could not be parsed.
        """
        if not self.enabled:
            return None

        entry = self.create_entry(
            request_id=request_id,
            operation=request.operation if request else "",
            parameters=dict(request.parameters) if request else {},
            credential_present=bool(request and request.credential),
            status=status,
            error=error,
            execution_time_ms=execution_time_ms,
        )
        await self.log(entry)
        return entry

    async def log(self, entry: AuditEntry) -> None:
        if not self.enabled:
            return

        self.status_counts[entry.status] += 1
        logger.info(
            "SMAPI call",
            request_id=entry.request_id,
            operation=entry.operation or None,
            status=entry.status.value,
            authenticated=entry.credential_present,
            error=entry.error,
            duration_ms=round(entry.execution_time_ms, 2)
        )

        async with self._write_lock:
            self._pending.append(entry)
            if len(self._pending) >= self.batch_size:
                await self._write_pending()

    async def _write_pending(self) -> None:
        if not self._pending:
            return

        batch, self._pending = self._pending, []
        lines = "".join(entry.model_dump_json() + "\n" for entry in batch)

        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.log_path, "a", encoding="utf-8") as f:
                await f.write(lines)
        except OSError as e:
            logger.error("Audit write failed", path=str(self.log_path), error=str(e))
            # Retried on the next flush
            self._pending = batch + self._pending

    async def flush(self) -> None:
        """Write everything still buffered; called on shutdown."""
        async with self._write_lock:
            await self._write_pending()

    @property
    def pending(self) -> list[AuditEntry]:
        return list(self._pending)
