"""Version history helpers for generated servers."""

from __future__ import annotations

import difflib
from typing import Any

from ..models import GeneratedServer, VersionSnapshot

DEFAULT_KEEP = 10


def create_snapshot(server: GeneratedServer, change_description: str | None = None) -> VersionSnapshot:
    return VersionSnapshot(
        version=server.version,
        code=server.code,
        tools=server.tools,
        status=server.status,
        deployment_url=server.deployment_url,
        change_description=change_description or "Manual save",
    )


def prune_history(snapshots: list[VersionSnapshot], keep: int) -> list[VersionSnapshot]:
    """Keep the newest ``keep`` snapshots (oldest first order preserved)."""
    count = keep if keep > 0 else DEFAULT_KEEP
    return snapshots[-count:]


def archive_changes(
    server: GeneratedServer,
    change_description: str,
    keep: int = DEFAULT_KEEP,
) -> dict[str, Any]:
    """Field updates that archive the current code and bump the version.

    A server without code yet (first generation) keeps its version.
    """
    if not server.code:
        return {}
    history = prune_history([*server.previous_versions, create_snapshot(server, change_description)], keep)
    return {"previous_versions": history, "version": server.version + 1}


def all_versions(server: GeneratedServer) -> list[VersionSnapshot]:
    """Current version first, then archived versions newest first."""
    current = VersionSnapshot(
        version=server.version,
        code=server.code,
        tools=server.tools,
        status=server.status,
        deployment_url=server.deployment_url,
        timestamp=server.updated_at,
        change_description="Current version",
    )
    return [current, *reversed(server.previous_versions)]


def find_version(server: GeneratedServer, version: int) -> VersionSnapshot | None:
    for snapshot in all_versions(server):
        if snapshot.version == version:
            return snapshot
    return None


def calculate_diff(old: str, new: str) -> dict[str, int]:
    """Line-level change summary between two code versions."""
    added = removed = 0
    for line in difflib.unified_diff(old.splitlines(), new.splitlines(), lineterm="", n=0):
        if line.startswith("+") and not line.startswith("+++"):
            added += 1
        elif line.startswith("-") and not line.startswith("---"):
            removed += 1
    return {
        "lines_added": added,
        "lines_removed": removed,
        "characters_changed": abs(len(new) - len(old)),
    }
