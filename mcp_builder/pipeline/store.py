"""Persistence of GeneratedServer records.

Every write is an atomic read-modify-write of one record under the store
lock, so concurrent stages never interleave partial updates.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from pathlib import Path
from typing import Any, Callable, Protocol, Union

import yaml

from ..errors import ServerNotFoundError
from ..models import GeneratedServer, now_ms

logger = logging.getLogger(__name__)

Changes = Union[dict[str, Any], Callable[[GeneratedServer], dict[str, Any]]]


def generate_slug(name: str) -> str:
    """URL-safe slug: lowercase alphanumerics separated by single dashes."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or f"server-{int(time.time() * 1000)}"


class ServerStore(Protocol):
    async def add(self, server: GeneratedServer) -> GeneratedServer:
        ...

    async def get(self, server_id: str) -> GeneratedServer:
        ...

    async def list(self, owner_id: str | None = None) -> list[GeneratedServer]:
        ...

    async def update(self, server_id: str, changes: Changes) -> GeneratedServer:
        ...

    async def unique_slug(self, name: str, exclude_id: str | None = None) -> str:
        ...


class InMemoryServerStore:
    """Dict-backed store."""

    def __init__(self) -> None:
        self._servers: dict[str, GeneratedServer] = {}
        self._lock = asyncio.Lock()

    async def add(self, server: GeneratedServer) -> GeneratedServer:
        async with self._lock:
            self._servers[server.id] = server
            self._persist(server)
        return server

    async def get(self, server_id: str) -> GeneratedServer:
        try:
            return self._servers[server_id]
        except KeyError:
            raise ServerNotFoundError(f"Server not found: {server_id}") from None

    async def find_by_slug(self, slug: str) -> GeneratedServer | None:
        for server in self._servers.values():
            if server.slug == slug:
                return server
        return None

    async def list(self, owner_id: str | None = None) -> list[GeneratedServer]:
        servers = sorted(self._servers.values(), key=lambda s: s.created_at)
        if owner_id is not None:
            servers = [s for s in servers if s.owner_id == owner_id]
        return servers

    async def update(self, server_id: str, changes: Changes) -> GeneratedServer:
        """Atomically replace a record.

        Args:
            server_id: Record to update
            changes: Field updates, or a callable computing them from the
                current record (it may raise to abort the update)

        Returns:
            The new record
        """
        async with self._lock:
            current = await self.get(server_id)
            update = changes(current) if callable(changes) else changes
            # Validate the merged fields so nested dict updates become typed models
            replaced = GeneratedServer.model_validate(
                {**dict(current), **update, "updated_at": now_ms()}
            )
            self._servers[server_id] = replaced
            self._persist(replaced)
        return replaced

    async def unique_slug(self, name: str, exclude_id: str | None = None) -> str:
        base = generate_slug(name)
        taken = {s.slug for s in self._servers.values() if s.id != exclude_id}
        slug, n = base, 2
        while slug in taken:
            slug = f"{base}-{n}"
            n += 1
        return slug

    def _persist(self, server: GeneratedServer) -> None:
        pass


class FileServerStore(InMemoryServerStore):
    """Store keeping one YAML document per server in a directory."""

    def __init__(self, directory: str | Path):
        super().__init__()
        self.directory = Path(directory)
        for server in load_servers(self.directory):
            self._servers[server.id] = server

    def _persist(self, server: GeneratedServer) -> None:
        server.to_yaml_file(self.directory / f"{server.id}.yaml")


def load_servers(directory: str | Path) -> list[GeneratedServer]:
    """Load all GeneratedServer YAML files from a directory.

    Unreadable files are skipped with a warning.
    """
    directory = Path(directory)
    servers = []
    if not directory.exists():
        return servers

    for path in sorted(directory.iterdir()):
        if path.suffix in (".yaml", ".yml") and path.is_file():
            try:
                servers.append(GeneratedServer.from_yaml_file(path))
            except (OSError, ValueError, yaml.YAMLError) as e:
                logger.warning("Failed to load %s: %s", path, e)
    return servers
