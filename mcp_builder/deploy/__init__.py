"""Deployment to the hosting platform."""

from .clock import AsyncioClock, Clock
from .health import HealthChecker
from .host import HostClient, HostProject, VercelHostClient
from .orchestrator import DeploymentOrchestrator, DeploymentOutcome

__all__ = [
    "AsyncioClock",
    "Clock",
    "HealthChecker",
    "HostClient",
    "HostProject",
    "VercelHostClient",
    "DeploymentOrchestrator",
    "DeploymentOutcome",
]
