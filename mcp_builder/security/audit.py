"""Append-only audit trail of security decisions."""

from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path
from typing import Any

import yaml

from ..models import AuditAction, AuditLogEntry, ScanResult

logger = logging.getLogger(__name__)


def new_audit_id() -> str:
    return f"audit_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class AuditLog:
    """Records every scan, sanitize, approve and reject decision.

    Entries are kept in memory; when ``path`` is set each record is also
    appended to a YAML document stream on disk.
    """

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else None
        self.entries: list[AuditLogEntry] = []
        if self.path and self.path.exists():
            self.entries = self._load(self.path)

    def record(
        self,
        server_id: str,
        actor: str,
        scan_result: ScanResult,
        action: AuditAction,
        metadata: dict[str, Any] | None = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            id=new_audit_id(),
            server_id=server_id,
            actor=actor,
            scan_result=scan_result,
            action=action,
            metadata=metadata or {},
        )
        self.entries.append(entry)
        logger.info(
            "Audit %s: server=%s score=%d passed=%s",
            action.value, server_id, scan_result.score, scan_result.passed,
        )
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a") as f:
                f.write("---\n")
                yaml.dump(entry.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)
        return entry

    def for_server(self, server_id: str) -> list[AuditLogEntry]:
        return [e for e in self.entries if e.server_id == server_id]

    @staticmethod
    def _load(path: Path) -> list[AuditLogEntry]:
        with path.open() as f:
            return [AuditLogEntry.model_validate(doc) for doc in yaml.safe_load_all(f) if doc]
