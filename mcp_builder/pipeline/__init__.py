"""Lifecycle state machine, persistence and the end-to-end build pipeline."""

from .pipeline import BuilderPipeline, descriptor_for
from .state import TRANSITIONS, can_transition, ensure_transition
from .store import FileServerStore, InMemoryServerStore, ServerStore, generate_slug, load_servers
from .versioning import all_versions, archive_changes, calculate_diff, find_version, prune_history

__all__ = [
    "BuilderPipeline",
    "descriptor_for",
    "TRANSITIONS",
    "can_transition",
    "ensure_transition",
    "FileServerStore",
    "InMemoryServerStore",
    "ServerStore",
    "generate_slug",
    "load_servers",
    "all_versions",
    "archive_changes",
    "calculate_diff",
    "find_version",
    "prune_history",
]
