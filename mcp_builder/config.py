"""Configuration for the build pipeline.

Defaults live on the models below; a YAML file may override any of them and
environment variables override both (see ``BuilderConfig.from_env``).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


# Default model used for generation and documentation
DEFAULT_MODEL = "claude-sonnet-4-20250514"


class ExplorerSettings(BaseModel):
    """Budgets for repository exploration."""

    max_depth: int = Field(default=3, description="Deepest directory level visited (root is 0)")
    max_files: int = 15
    max_file_bytes: int = 8_000
    max_total_bytes: int = 50_000
    download_concurrency: int = 4
    min_success_rate: float = 0.5


class DeploySettings(BaseModel):
    """Host deployment and polling parameters."""

    host_api_url: str = "https://api.vercel.com"
    poll_interval: float = Field(default=3.0, description="Seconds between status polls")
    timeout: float = Field(default=300.0, description="Seconds before a deployment is abandoned")
    health_timeout: float = 10.0
    target: str = "production"
    install_command: str = "npm install"


class SandboxConfig(BaseModel):
    """Runtime restrictions checked against generated code."""

    allowed_modules: list[str] = Field(
        default_factory=lambda: [
            "elysia",
            "@modelcontextprotocol/sdk",
            "zod",
            "axios",
            "node-fetch",
        ]
    )
    max_execution_time_ms: int = 30_000
    max_memory_mb: int = 512
    allow_network_access: bool = True
    allow_file_system_access: bool = False
    allowed_domains: list[str] = Field(default_factory=list)


class BuilderConfig(BaseModel):
    """Top-level configuration."""

    model: str = DEFAULT_MODEL
    model_max_tokens: int = 8_000
    model_timeout: float = 300.0
    request_timeout: float = 30.0
    github_timeout: float = 15.0
    github_api_url: str = "https://api.github.com"
    docs_char_limit: int = 50_000
    repo_char_limit: int = 50_000
    readme_code_limit: int = 10_000
    max_versions: int = 10
    store_dir: str | None = None

    vercel_token: str | None = None
    team_id: str | None = None
    github_token: str | None = None
    gateway_secret: str | None = None
    encryption_key: str | None = Field(default=None, description="Fernet key for external_api_keys")
    external_api_keys: dict[str, str] = Field(
        default_factory=dict,
        description="Service name -> encrypted API key injected into deployments",
    )

    explorer: ExplorerSettings = Field(default_factory=ExplorerSettings)
    deploy: DeploySettings = Field(default_factory=DeploySettings)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)

    @classmethod
    def from_yaml(cls, yaml_str: str) -> BuilderConfig:
        data = yaml.safe_load(yaml_str) or {}
        return cls.model_validate(data)

    @classmethod
    def from_yaml_file(cls, path: str | Path) -> BuilderConfig:
        """Load from a YAML file."""
        return cls.from_yaml(Path(path).read_text())

    @classmethod
    def from_env(
        cls,
        path: str | Path | None = None,
        environ: dict[str, str] | None = None,
    ) -> BuilderConfig:
        """Build a config from an optional YAML file plus environment overrides.

        Args:
            path: Optional YAML file with base values
            environ: Mapping to read instead of ``os.environ``

        Returns:
            Configured BuilderConfig
        """
        env = os.environ if environ is None else environ
        config = cls.from_yaml_file(path) if path else cls()

        overrides: dict[str, Any] = {}
        for var, key in _ENV_FIELDS.items():
            if env.get(var):
                overrides[key] = env[var]
        if env.get("MCP_BUILDER_STORE_DIR"):
            overrides["store_dir"] = env["MCP_BUILDER_STORE_DIR"]
        if env.get("MCP_BUILDER_DEPLOY_TIMEOUT"):
            overrides["deploy"] = config.deploy.model_copy(
                update={"timeout": float(env["MCP_BUILDER_DEPLOY_TIMEOUT"])}
            )

        if not overrides:
            return config
        return config.model_validate({**config.model_dump(), **overrides})


_ENV_FIELDS = {
    "MCP_BUILDER_MODEL": "model",
    "VERCEL_TOKEN": "vercel_token",
    "VERCEL_TEAM_ID": "team_id",
    "GITHUB_TOKEN": "github_token",
    "MCP_GATEWAY_SECRET": "gateway_secret",
    "MCP_BUILDER_ENCRYPTION_KEY": "encryption_key",
}
