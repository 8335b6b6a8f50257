"""Provision, deploy, poll and probe a generated server on the host."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from ..config import DeploySettings
from ..errors import DeploymentStateError, DeploymentTimeoutError, HostAPIError
from ..models import DeploymentRecord, DeploymentState
from .clock import AsyncioClock, Clock
from .health import HealthChecker
from .host import HostClient, HostProject

logger = logging.getLogger(__name__)


@dataclass
class DeploymentOutcome:
    """Result of a successful deployment."""

    project: HostProject
    record: DeploymentRecord
    url: str
    polls: int


def describe_failure(record: DeploymentRecord) -> str:
    parts = [f"Deployment failed with state: {record.state.value.upper()}"]
    if record.error_message:
        parts.append(f"Message: {record.error_message}")
    if record.error_code:
        parts.append(f"Code: {record.error_code}")
    if record.error_step:
        parts.append(f"Step: {record.error_step}")
    return ". ".join(parts)


class DeploymentOrchestrator:
    """Drives one deployment from project provisioning to a healthy URL.

    Polling never retries a failed deployment: ``error`` and ``canceled``
    end the attempt immediately and the timeout bounds the total wait.
    """

    def __init__(
        self,
        host: HostClient,
        health: HealthChecker,
        settings: DeploySettings | None = None,
        clock: Clock | None = None,
    ):
        self.host = host
        self.health = health
        self.settings = settings or DeploySettings()
        self.clock = clock or AsyncioClock()

    async def ensure_project(self, name: str) -> HostProject:
        """Return the host project for ``name``, creating it if missing."""
        project = await self.host.get_project(name)
        if project is not None:
            logger.info("Reusing host project %s", name)
            return project
        logger.info("Creating host project %s", name)
        return await self.host.create_project(name)

    async def wait_for_ready(self, deployment_id: str) -> tuple[DeploymentRecord, int]:
        """Poll until the deployment is ready.

        Returns:
            The ready record and the number of status polls made

        Raises:
            DeploymentStateError: If the deployment errors or is canceled
            DeploymentTimeoutError: If it is still pending when the timeout elapses
        """
        timeout = self.settings.timeout
        start = self.clock.monotonic()
        polls = 0
        while True:
            record = await self.host.get_deployment(deployment_id)
            polls += 1
            if record.state == DeploymentState.READY:
                return record, polls
            if record.state in (DeploymentState.ERROR, DeploymentState.CANCELED):
                raise DeploymentStateError(describe_failure(record), state=record.state.value)

            elapsed = self.clock.monotonic() - start
            if elapsed >= timeout:
                raise DeploymentTimeoutError(
                    f"Deployment {deployment_id} not ready after {timeout:g}s ({polls} polls, state {record.state.value})"
                )
            await self.clock.sleep(min(self.settings.poll_interval, timeout - elapsed))

    async def resolve_url(self, name: str, record: DeploymentRecord) -> str:
        """Prefer the project's stable domain over the per-deployment URL."""
        try:
            domains = await self.host.get_project_domains(name)
        except HostAPIError as e:
            logger.warning("Could not list domains for %s: %s", name, e)
            domains = []
        url = domains[0] if domains else record.url
        return url if url.startswith("http") else f"https://{url}"

    async def deploy_async(
        self,
        name: str,
        files: dict[str, str],
        env: dict[str, str] | None = None,
    ) -> DeploymentOutcome:
        """Deploy a file bundle and wait for it to be live and healthy."""
        project = await self.ensure_project(name)
        created = await self.host.create_deployment(name, files, env or {})
        logger.info("Created deployment %s for %s", created.deployment_id, name)

        record, polls = await self.wait_for_ready(created.deployment_id)
        url = await self.resolve_url(name, record)
        await self.health.check(url)
        logger.info("Deployment %s is live at %s", record.deployment_id, url)
        return DeploymentOutcome(project=project, record=record, url=url, polls=polls)

    def deploy(self, name: str, files: dict[str, str], env: dict[str, str] | None = None) -> DeploymentOutcome:
        """Synchronous wrapper for deploy_async."""
        return asyncio.run(self.deploy_async(name, files, env))
