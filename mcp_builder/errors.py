"""Error taxonomy for the build pipeline.

Every failure that can end a pipeline stage derives from ``BuilderError`` and
carries a stable ``kind`` string so callers (CLI, gateway, stored records) can
report it without inspecting the class hierarchy.
"""

from __future__ import annotations


class BuilderError(Exception):
    """Base class for all pipeline failures."""

    kind = "builder_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class SourceFetchError(BuilderError):
    """An API source could not be fetched or decoded."""

    kind = "source_fetch"

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class RequestTimeoutError(BuilderError):
    """A network call exceeded its timeout."""

    kind = "timeout"

    def __init__(self, message: str, timeout: float | None = None):
        super().__init__(message)
        self.timeout = timeout


class RepoExplorationError(BuilderError):
    """No usable source files could be selected from a repository."""

    kind = "repo_exploration"


class ModelServiceError(BuilderError):
    """The code-generation model service failed to answer."""

    kind = "model_service"


class GenerationContractError(BuilderError):
    """The model reply did not satisfy the generation contract."""

    kind = "generation_contract"

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class SecurityGateError(BuilderError):
    """Deployment was refused because the latest scan did not pass."""

    kind = "security_gate"


class HostAPIError(BuilderError):
    """The deployment host rejected a request."""

    kind = "host_api"

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class DeploymentTimeoutError(BuilderError):
    """A deployment never reached a terminal state within the timeout."""

    kind = "deployment_timeout"


class DeploymentStateError(BuilderError):
    """A deployment ended in a failing terminal state."""

    kind = "deployment_state"

    def __init__(self, message: str, state: str):
        super().__init__(message)
        self.state = state


class HealthCheckError(BuilderError):
    """The deployed server did not answer its health probe."""

    kind = "health_check"


class InvalidTransitionError(BuilderError):
    """A lifecycle transition is not allowed from the current status."""

    kind = "invalid_transition"


class OperationInProgressError(BuilderError):
    """Another write operation is already running for the same server."""

    kind = "operation_in_progress"


class ServerNotFoundError(BuilderError):
    """No server record exists for the given id."""

    kind = "server_not_found"


class SecretDecryptionError(BuilderError):
    """A stored external API key could not be decrypted."""

    kind = "secret_decryption"
