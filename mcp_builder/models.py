"""Pydantic models shared by every pipeline stage.

NormalizedSource: the one intermediate representation all inputs converge on
GenerationResult: the code-generation contract (code + tool definitions)
ScanResult / SecurityIssue / AuditLogEntry: security scanner output
DeploymentRecord: host-side deployment state
GeneratedServer: the lifecycle record the pipeline mutates stage by stage
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal, Union

import yaml
from pydantic import BaseModel, Field


def now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ServerStatus(str, Enum):
    """Lifecycle states of a generated server."""

    ANALYZING = "analyzing"
    GENERATING = "generating"
    DRAFT = "draft"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    FAILED = "failed"


class SourceType(str, Enum):
    SPEC = "spec"
    DOCS = "docs"
    REPO = "repo"
    TEXT = "text"


class AuthMethod(str, Enum):
    BEARER = "bearer"
    APIKEY = "apikey"
    OAUTH = "oauth"
    BASIC = "basic"
    NONE = "none"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class IssueType(str, Enum):
    CREDENTIAL = "credential"
    DANGEROUS_CODE = "dangerous_code"
    INSECURE_DEPENDENCY = "insecure_dependency"
    VULNERABILITY = "vulnerability"


class AuditAction(str, Enum):
    SCAN = "scan"
    SANITIZE = "sanitize"
    REJECT = "reject"
    APPROVE = "approve"


class DeploymentState(str, Enum):
    QUEUED = "queued"
    BUILDING = "building"
    READY = "ready"
    ERROR = "error"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (DeploymentState.READY, DeploymentState.ERROR, DeploymentState.CANCELED)


# ---------------------------------------------------------------------------
# Source description
# ---------------------------------------------------------------------------


class Endpoint(BaseModel):
    """One HTTP operation of the described API."""

    path: str
    method: str = Field(default="GET", description="Upper-case HTTP method")
    operation_id: str | None = None
    summary: str = ""
    description: str = ""
    parameters: list[dict[str, Any]] = Field(default_factory=list)
    request_body: dict[str, Any] | None = None
    responses: dict[str, Any] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)

    @property
    def tool_name(self) -> str:
        """Snake_case tool name derived from the operation id or method + path."""
        if self.operation_id:
            return _snake(self.operation_id)
        segments = [s for s in self.path.strip("/").split("/") if s and not s.startswith("{")]
        resource = "_".join(segments) or "root"
        verb = {
            "GET": "list" if not self.path.rstrip("/").endswith("}") else "get",
            "POST": "create",
            "PUT": "update",
            "PATCH": "update",
            "DELETE": "delete",
        }.get(self.method.upper(), self.method.lower())
        if verb != "list" and resource.endswith("s") and not resource.endswith("ss"):
            resource = resource[:-1]
        return _snake(f"{verb}_{resource}")


def _snake(value: str) -> str:
    out = []
    for i, ch in enumerate(value):
        if ch.isupper() and i and (value[i - 1].islower() or value[i - 1].isdigit()):
            out.append("_")
        out.append(ch.lower() if ch.isalnum() else "_")
    return "_".join(part for part in "".join(out).split("_") if part)


class ToolDefinition(BaseModel):
    """A tool exposed by a generated server."""

    name: str
    description: str = ""
    schema_: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        alias="schema",
        description="JSON Schema for the tool input",
    )

    model_config = {"populate_by_name": True}

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class GenerationResult(BaseModel):
    """Parsed reply of the code-generation model."""

    code: str
    tools: list[ToolDefinition] = Field(default_factory=list)
    name: str | None = None
    description: str | None = None
    base_url: str | None = None
    auth_method: AuthMethod | None = None
    endpoints: list[Endpoint] = Field(default_factory=list)


class NormalizedSource(BaseModel):
    """Input-independent description of an API."""

    name: str
    description: str = ""
    base_url: str = ""
    auth_method: AuthMethod = AuthMethod.UNKNOWN
    endpoints: list[Endpoint] = Field(default_factory=list)
    schemas: dict[str, Any] = Field(default_factory=dict)
    source_type: SourceType = SourceType.SPEC
    source_url: str | None = None
    source_content: str | None = None
    prefetched: GenerationResult | None = Field(
        default=None,
        description="Generation output already produced while normalizing (documentation input)",
    )

    def to_openapi(self) -> dict[str, Any]:
        """Serialize as an OpenAPI 3 document for the generation prompt."""
        paths: dict[str, dict[str, Any]] = {}
        for ep in self.endpoints:
            operation: dict[str, Any] = {
                "operationId": ep.operation_id or ep.tool_name,
                "summary": ep.summary,
            }
            if ep.description:
                operation["description"] = ep.description
            if ep.parameters:
                operation["parameters"] = ep.parameters
            if ep.request_body:
                operation["requestBody"] = ep.request_body
            operation["responses"] = ep.responses or {"200": {"description": "Success"}}
            paths.setdefault(ep.path, {})[ep.method.lower()] = operation

        doc: dict[str, Any] = {
            "openapi": "3.0.0",
            "info": {"title": self.name, "description": self.description, "version": "1.0.0"},
            "paths": paths,
        }
        if self.base_url:
            doc["servers"] = [{"url": self.base_url}]
        if self.schemas:
            doc["components"] = {"schemas": self.schemas}
        doc["x-auth-method"] = self.auth_method.value
        return doc


class SpecSource(BaseModel):
    kind: Literal["spec"] = "spec"
    url: str


class DocsSource(BaseModel):
    kind: Literal["docs"] = "docs"
    url: str


class RepoSource(BaseModel):
    kind: Literal["repo"] = "repo"
    url: str


class TextSource(BaseModel):
    kind: Literal["text"] = "text"
    content: str
    name: str | None = None


SourceDescriptor = Annotated[
    Union[SpecSource, DocsSource, RepoSource, TextSource],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------


class SecurityIssue(BaseModel):
    type: IssueType
    severity: Severity
    message: str
    line: int | None = Field(default=None, description="1-based line number")
    code: str | None = Field(default=None, description="Offending snippet")
    fix: str | None = None
    file: str | None = Field(default=None, description="Project-relative path")


class ScanResult(BaseModel):
    passed: bool
    issues: list[SecurityIssue] = Field(default_factory=list)
    score: int = Field(ge=0, le=100)
    scanned_at: int = Field(default_factory=now_ms)

    def count(self, severity: Severity) -> int:
        return sum(1 for issue in self.issues if issue.severity == severity)


class AuditLogEntry(BaseModel):
    id: str
    server_id: str
    actor: str
    scan_result: ScanResult
    action: AuditAction
    timestamp: int = Field(default_factory=now_ms)
    metadata: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Deployment and lifecycle
# ---------------------------------------------------------------------------


class DeploymentRecord(BaseModel):
    project_id: str
    deployment_id: str
    state: DeploymentState
    url: str = ""
    created_at: int | None = None
    building_at: int | None = None
    ready_at: int | None = None
    error_message: str | None = None
    error_code: str | None = None
    error_step: str | None = None


class ToolDoc(BaseModel):
    name: str
    description: str = ""
    params: str = Field(default="{}", description="Pretty-printed JSON schema")
    example: str = ""


class VersionSnapshot(BaseModel):
    version: int
    code: str
    tools: list[ToolDefinition] = Field(default_factory=list)
    status: ServerStatus
    deployment_url: str | None = None
    timestamp: int = Field(default_factory=now_ms)
    change_description: str | None = None


class GeneratedServer(BaseModel):
    """Lifecycle record of one generated tool server.

    Serializable to/from YAML for the file-backed store.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    owner_id: str = "local"
    slug: str
    name: str
    description: str = ""
    source_type: SourceType
    source_url: str | None = None
    source_content: str | None = None
    code: str = ""
    tools: list[ToolDefinition] = Field(default_factory=list)
    status: ServerStatus = ServerStatus.ANALYZING
    error: str | None = None
    deployment_url: str | None = None
    host_project_id: str | None = None
    version: int = 1
    previous_versions: list[VersionSnapshot] = Field(default_factory=list)
    scan_result: ScanResult | None = None
    allowed_domains: list[str] = Field(default_factory=list)
    rate_limit: int = 100
    readme: str | None = None
    tool_docs: list[ToolDoc] = Field(default_factory=list)
    external_api_service: str | None = None
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    def to_yaml(self) -> str:
        """Serialize to YAML string."""
        return yaml.dump(
            self.model_dump(mode="json", by_alias=True),
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )

    @classmethod
    def from_yaml(cls, yaml_str: str) -> GeneratedServer:
        """Deserialize from YAML string."""
        return cls.model_validate(yaml.safe_load(yaml_str))

    @classmethod
    def from_yaml_file(cls, path: str | Path) -> GeneratedServer:
        return cls.from_yaml(Path(path).read_text())

    def to_yaml_file(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_yaml())
