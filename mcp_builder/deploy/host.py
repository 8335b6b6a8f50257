"""Deployment host clients.

``HostClient`` is the boundary the orchestrator depends on.
``VercelHostClient`` implements it against the Vercel REST API.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from ..errors import HostAPIError, RequestTimeoutError
from ..models import DeploymentRecord, DeploymentState

logger = logging.getLogger(__name__)


@dataclass
class HostProject:
    id: str
    name: str


class HostClient(Protocol):
    async def get_project(self, name: str) -> HostProject | None:
        ...

    async def create_project(self, name: str) -> HostProject:
        ...

    async def create_deployment(
        self, name: str, files: dict[str, str], env: dict[str, str]
    ) -> DeploymentRecord:
        ...

    async def get_deployment(self, deployment_id: str) -> DeploymentRecord:
        ...

    async def get_project_domains(self, name: str) -> list[str]:
        ...


def encode_files(files: dict[str, str]) -> list[dict[str, str]]:
    """Inline file payloads, base64-encoded from UTF-8."""
    return [
        {
            "file": path,
            "data": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "encoding": "base64",
        }
        for path, content in files.items()
    ]


def deployment_from_payload(data: dict[str, Any], project_id: str = "") -> DeploymentRecord:
    raw_state = (data.get("readyState") or data.get("state") or "QUEUED").lower()
    try:
        state = DeploymentState(raw_state)
    except ValueError:
        # INITIALIZING and similar pre-build states
        state = DeploymentState.QUEUED
    return DeploymentRecord(
        project_id=data.get("projectId") or project_id,
        deployment_id=data["id"],
        state=state,
        url=data.get("url") or "",
        created_at=data.get("createdAt"),
        building_at=data.get("buildingAt"),
        ready_at=data.get("readyAt"),
        error_message=data.get("errorMessage"),
        error_code=data.get("errorCode"),
        error_step=data.get("errorStep"),
    )


class VercelHostClient:
    """HostClient for the Vercel REST API."""

    def __init__(
        self,
        token: str | None,
        *,
        base_url: str = "https://api.vercel.com",
        team_id: str | None = None,
        install_command: str = "npm install",
        target: str = "production",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.token = token
        self.team_id = team_id
        self.install_command = install_command
        self.target = target
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    async def _request(self, method: str, path: str, payload: dict | None = None) -> dict[str, Any]:
        if not self.token:
            raise HostAPIError("VERCEL_TOKEN is not set")
        params = {"teamId": self.team_id} if self.team_id else None
        try:
            response = await self.client.request(
                method, path, json=payload, params=params, headers=self.headers
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"Host API request timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            raise HostAPIError(f"Host API request failed: {e}") from e

        if not response.is_success:
            raise HostAPIError(
                f"Host API error: {_error_details(response)}", status=response.status_code
            )
        return response.json()

    async def get_project(self, name: str) -> HostProject | None:
        try:
            data = await self._request("GET", f"/v9/projects/{name}")
        except HostAPIError as e:
            if e.status == 404:
                return None
            raise
        return HostProject(id=data["id"], name=data["name"])

    async def create_project(self, name: str) -> HostProject:
        data = await self._request(
            "POST",
            "/v9/projects",
            {
                "name": name,
                "framework": None,
                "buildCommand": None,
                "outputDirectory": None,
                "installCommand": self.install_command,
            },
        )
        return HostProject(id=data["id"], name=data["name"])

    async def create_deployment(
        self, name: str, files: dict[str, str], env: dict[str, str]
    ) -> DeploymentRecord:
        data = await self._request(
            "POST",
            "/v13/deployments",
            {
                "name": name,
                "files": encode_files(files),
                "projectSettings": {
                    "framework": None,
                    "buildCommand": None,
                    "outputDirectory": None,
                    "installCommand": self.install_command,
                },
                "env": env,
                "target": self.target,
            },
        )
        return deployment_from_payload(data)

    async def get_deployment(self, deployment_id: str) -> DeploymentRecord:
        data = await self._request("GET", f"/v13/deployments/{deployment_id}")
        return deployment_from_payload(data)

    async def get_project_domains(self, name: str) -> list[str]:
        data = await self._request("GET", f"/v9/projects/{name}/domains")
        return [d["name"] for d in data.get("domains") or [] if d.get("name")]

    async def aclose(self) -> None:
        await self.client.aclose()


def _error_details(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or str(response.status_code)
    if not isinstance(body, dict):
        return str(body)
    error = body.get("error") if isinstance(body.get("error"), dict) else body
    message = error.get("message") or response.reason_phrase
    code = error.get("code")
    return f"{message} ({code})" if code else message
