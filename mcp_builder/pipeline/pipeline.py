"""End-to-end build pipeline: normalize, generate, scan, deploy, document.

Each stage moves a GeneratedServer through exactly one lifecycle transition
and writes its results with a single atomic store update. Any exception
inside a stage (including cancellation) marks the server ``failed`` and is
re-raised unchanged.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import contextmanager
from typing import Any, Iterator

from ..config import BuilderConfig
from ..deploy import DeploymentOrchestrator, HealthChecker, HostClient, VercelHostClient
from ..deploy.clock import Clock
from ..docs import DocumentationGenerator
from ..errors import (
    BuilderError,
    InvalidTransitionError,
    OperationInProgressError,
    SecretDecryptionError,
    SecurityGateError,
    ServerNotFoundError,
)
from ..explorer import RepositoryExplorer
from ..generator import ClaudeAgentModelClient, CodeGenerator, ModelClient, build_deploy_bundle
from ..http import HttpFetcher
from ..models import (
    AuditAction,
    DocsSource,
    GeneratedServer,
    RepoSource,
    ScanResult,
    ServerStatus,
    Severity,
    SourceDescriptor,
    SourceType,
    SpecSource,
    TextSource,
    VersionSnapshot,
)
from ..security import AuditLog, SecurityScanner, decrypt_secret
from ..sources import SourceNormalizer
from .state import can_transition, ensure_transition
from .store import FileServerStore, InMemoryServerStore, ServerStore
from .versioning import all_versions, archive_changes, find_version

logger = logging.getLogger(__name__)

SOURCE_TYPES = {
    "spec": SourceType.SPEC,
    "docs": SourceType.DOCS,
    "repo": SourceType.REPO,
    "text": SourceType.TEXT,
}


def descriptor_for(server: GeneratedServer) -> SourceDescriptor:
    """Rebuild the source descriptor a server was generated from."""
    if server.source_type == SourceType.TEXT:
        return TextSource(content=server.source_content or "", name=server.name)
    cls = {SourceType.SPEC: SpecSource, SourceType.DOCS: DocsSource, SourceType.REPO: RepoSource}
    return cls[server.source_type](url=server.source_url or "")


def _name_hint(descriptor: SourceDescriptor) -> str:
    if isinstance(descriptor, TextSource):
        return descriptor.name or "text-api"
    return descriptor.url.rstrip("/").rsplit("/", 1)[-1] or "api"


def _error_text(error: BaseException) -> str:
    if isinstance(error, BuilderError):
        return f"{error.kind}: {error.message}"
    if isinstance(error, asyncio.CancelledError):
        return "cancelled"
    return str(error) or type(error).__name__


class BuilderPipeline:
    """Coordinates every stage for a set of generated servers.

    Write operations on one server are single-flight: starting a second one
    while another is running raises ``OperationInProgressError``.
    """

    def __init__(
        self,
        *,
        normalizer: SourceNormalizer,
        generator: CodeGenerator,
        scanner: SecurityScanner,
        orchestrator: DeploymentOrchestrator,
        store: ServerStore,
        audit: AuditLog,
        docs: DocumentationGenerator | None = None,
        max_versions: int = 10,
        external_api_keys: dict[str, str] | None = None,
        encryption_key: str | None = None,
    ):
        self.normalizer = normalizer
        self.generator = generator
        self.scanner = scanner
        self.orchestrator = orchestrator
        self.store = store
        self.audit = audit
        self.docs = docs
        self.max_versions = max_versions
        self.external_api_keys = external_api_keys or {}
        self.encryption_key = encryption_key
        self._in_flight: set[str] = set()

    @classmethod
    def from_config(
        cls,
        config: BuilderConfig,
        *,
        model: ModelClient | None = None,
        host: HostClient | None = None,
        clock: Clock | None = None,
        store: ServerStore | None = None,
        fetcher: HttpFetcher | None = None,
        audit: AuditLog | None = None,
    ) -> BuilderPipeline:
        """Wire a pipeline from configuration, with optional collaborator overrides."""
        fetcher = fetcher or HttpFetcher(timeout=config.request_timeout)
        model = model or ClaudeAgentModelClient(config.model, timeout=config.model_timeout)
        generator = CodeGenerator(
            model,
            max_tokens=config.model_max_tokens,
            docs_char_limit=config.docs_char_limit,
            repo_char_limit=config.repo_char_limit,
        )
        explorer = RepositoryExplorer(
            fetcher,
            config.explorer,
            api_url=config.github_api_url,
            token=config.github_token,
            timeout=config.github_timeout,
        )
        host = host or VercelHostClient(
            config.vercel_token,
            base_url=config.deploy.host_api_url,
            team_id=config.team_id,
            install_command=config.deploy.install_command,
            target=config.deploy.target,
            timeout=config.request_timeout,
        )
        orchestrator = DeploymentOrchestrator(
            host,
            HealthChecker(fetcher, timeout=config.deploy.health_timeout),
            config.deploy,
            clock,
        )
        if store is None:
            store = FileServerStore(config.store_dir) if config.store_dir else InMemoryServerStore()
        if audit is None:
            audit_path = f"{config.store_dir}/audit.log.yaml" if config.store_dir else None
            audit = AuditLog(audit_path)
        return cls(
            normalizer=SourceNormalizer(fetcher, generator, explorer, config.repo_char_limit),
            generator=generator,
            scanner=SecurityScanner(config.sandbox),
            orchestrator=orchestrator,
            store=store,
            audit=audit,
            docs=DocumentationGenerator(model, code_limit=config.readme_code_limit),
            max_versions=config.max_versions,
            external_api_keys=config.external_api_keys,
            encryption_key=config.encryption_key,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _exclusive(self, server_id: str) -> Iterator[None]:
        if server_id in self._in_flight:
            raise OperationInProgressError(f"An operation is already running for server {server_id}")
        self._in_flight.add(server_id)
        try:
            yield
        finally:
            self._in_flight.discard(server_id)

    def is_busy(self, server_id: str) -> bool:
        return server_id in self._in_flight

    async def _transition(self, server_id: str, target: ServerStatus, **changes: Any) -> GeneratedServer:
        def apply(server: GeneratedServer) -> dict[str, Any]:
            ensure_transition(server.status, target)
            return {**changes, "status": target}

        server = await self.store.update(server_id, apply)
        logger.info("Server %s -> %s", server.slug, target.value)
        return server

    async def _fail(self, server_id: str, error: BaseException) -> None:
        def apply(server: GeneratedServer) -> dict[str, Any]:
            if not can_transition(server.status, ServerStatus.FAILED):
                return {}
            return {"status": ServerStatus.FAILED, "error": _error_text(error)}

        await self.store.update(server_id, apply)
        logger.warning("Server %s failed: %s", server_id, _error_text(error))

    def _deploy_env(self, server: GeneratedServer) -> dict[str, str]:
        """Decrypt the stored key of the server's external service, if any."""
        service = server.external_api_service
        if not service or service not in self.external_api_keys:
            return {}
        if not self.encryption_key:
            raise SecretDecryptionError(
                f"No encryption key configured to decrypt the stored key for {service} "
                "(set MCP_BUILDER_ENCRYPTION_KEY)"
            )
        key = decrypt_secret(self.external_api_keys[service], self.encryption_key)
        return {"STORED_API_KEYS": json.dumps({service: key})}

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def create_async(
        self,
        descriptor: SourceDescriptor,
        *,
        owner_id: str = "local",
        external_api_service: str | None = None,
    ) -> GeneratedServer:
        """Create a server record and run normalization and generation for it.

        Returns:
            The server in ``draft`` status with code, tools and a scan result
        """
        hint = _name_hint(descriptor)
        server = GeneratedServer(
            owner_id=owner_id,
            slug=await self.store.unique_slug(hint),
            name=hint,
            source_type=SOURCE_TYPES[descriptor.kind],
            source_url=getattr(descriptor, "url", None),
            source_content=getattr(descriptor, "content", None),
            external_api_service=external_api_service,
        )
        await self.store.add(server)
        with self._exclusive(server.id):
            return await self._generate(server.id, descriptor, is_new=True)

    def create(self, descriptor: SourceDescriptor, **kwargs: Any) -> GeneratedServer:
        """Synchronous wrapper for create_async."""
        return asyncio.run(self.create_async(descriptor, **kwargs))

    async def regenerate_async(
        self,
        server_id: str,
        descriptor: SourceDescriptor | None = None,
    ) -> GeneratedServer:
        """Start a new generation attempt for an existing server.

        The current code is archived and the version incremented once the new
        draft is written.
        """
        with self._exclusive(server_id):
            server = await self._transition(server_id, ServerStatus.ANALYZING, error=None)
            return await self._generate(server_id, descriptor or descriptor_for(server), is_new=False)

    async def _generate(self, server_id: str, descriptor: SourceDescriptor, *, is_new: bool) -> GeneratedServer:
        try:
            source = await self.normalizer.normalize_async(descriptor)

            changes: dict[str, Any] = {"description": source.description}
            if is_new:
                changes["name"] = source.name
                changes["slug"] = await self.store.unique_slug(source.name, exclude_id=server_id)
            if source.source_content and source.source_type != SourceType.TEXT:
                changes["source_content"] = source.source_content
            await self._transition(server_id, ServerStatus.GENERATING, **changes)

            result = await self.generator.generate_async(source)
            scan = self.scanner.scan_serialized(result.code)

            def to_draft(server: GeneratedServer) -> dict[str, Any]:
                ensure_transition(server.status, ServerStatus.DRAFT)
                return {
                    **archive_changes(server, "Regenerated", self.max_versions),
                    "code": result.code,
                    "tools": result.tools,
                    "scan_result": scan,
                    "status": ServerStatus.DRAFT,
                }

            server = await self.store.update(server_id, to_draft)
        except (Exception, asyncio.CancelledError) as e:
            await self._fail(server_id, e)
            raise

        self.audit.record(server_id, server.owner_id, scan, AuditAction.SCAN, {"version": server.version})
        logger.info("Server %s drafted (v%d, %d tools, score %d)", server.slug, server.version, len(server.tools), scan.score)
        return server

    # ------------------------------------------------------------------
    # Security review
    # ------------------------------------------------------------------

    async def scan_async(self, server_id: str, actor: str = "system") -> ScanResult:
        """Re-scan the current code and store the result."""
        with self._exclusive(server_id):
            server = await self.store.get(server_id)
            scan = self.scanner.scan_serialized(server.code)
            await self.store.update(server_id, {"scan_result": scan})
            self.audit.record(server_id, actor, scan, AuditAction.SCAN, {"version": server.version})
            return scan

    async def sanitize_async(self, server_id: str, actor: str = "system") -> GeneratedServer:
        """Redact lines with critical findings from a draft and re-scan it."""
        with self._exclusive(server_id):
            server = await self.store.get(server_id)
            if server.status != ServerStatus.DRAFT:
                raise InvalidTransitionError(
                    f"Only draft servers can be sanitized (status is '{server.status.value}')"
                )
            before = server.scan_result or self.scanner.scan_serialized(server.code)
            sanitized = self.scanner.sanitize_serialized(server.code, before.issues)
            after = self.scanner.scan_serialized(sanitized)

            server = await self.store.update(
                server_id,
                lambda s: {
                    **archive_changes(s, "Sanitized critical security issues", self.max_versions),
                    "code": sanitized,
                    "scan_result": after,
                },
            )
            self.audit.record(
                server_id,
                actor,
                after,
                AuditAction.SANITIZE,
                {"score_before": before.score, "redacted": before.count(Severity.CRITICAL)},
            )
            return server

    async def approve_async(self, server_id: str, actor: str = "system") -> ScanResult:
        """Record a reviewer approval; only passing scans can be approved."""
        server = await self.store.get(server_id)
        scan = server.scan_result
        if scan is None or not scan.passed:
            raise SecurityGateError(f"Server {server.slug} has no passing security scan to approve")
        self.audit.record(server_id, actor, scan, AuditAction.APPROVE)
        return scan

    async def reject_async(self, server_id: str, actor: str = "system", reason: str = "") -> GeneratedServer:
        """Reject a draft: the server moves to ``failed``."""
        with self._exclusive(server_id):
            server = await self.store.get(server_id)
            scan = server.scan_result or self.scanner.scan_serialized(server.code)
            server = await self._transition(
                server_id, ServerStatus.FAILED, error=f"Rejected by security review: {reason}".rstrip(": ")
            )
            self.audit.record(server_id, actor, scan, AuditAction.REJECT, {"reason": reason})
            return server

    # ------------------------------------------------------------------
    # Deployment
    # ------------------------------------------------------------------

    async def deploy_async(self, server_id: str, actor: str = "system") -> GeneratedServer:
        """Deploy a draft whose latest scan passed.

        Raises:
            SecurityGateError: If the latest scan is missing or failed
            SecretDecryptionError: If the stored external API key cannot be decrypted
            OperationInProgressError: If another write for this server is running
        """
        with self._exclusive(server_id):
            server = await self.store.get(server_id)
            ensure_transition(server.status, ServerStatus.DEPLOYING)
            scan = server.scan_result
            if scan is None or not scan.passed:
                scan = scan or self.scanner.scan_serialized(server.code)
                self.audit.record(server_id, actor, scan, AuditAction.REJECT, {"reason": "deployment blocked"})
                raise SecurityGateError(
                    f"Deployment blocked for {server.slug}: security scan failed "
                    f"(score {scan.score}, {scan.count(Severity.CRITICAL)} critical, "
                    f"{scan.count(Severity.HIGH)} high)"
                )

            env = self._deploy_env(server)
            server = await self._transition(server_id, ServerStatus.DEPLOYING, error=None)
            try:
                files = build_deploy_bundle(server.slug, server.code, server.readme)
                outcome = await self.orchestrator.deploy_async(server.slug, files, env)
                server = await self._transition(
                    server_id,
                    ServerStatus.DEPLOYED,
                    deployment_url=outcome.url,
                    host_project_id=outcome.project.id,
                )
            except (Exception, asyncio.CancelledError) as e:
                await self._fail(server_id, e)
                raise

            return await self._document(server)

    def deploy(self, server_id: str, actor: str = "system") -> GeneratedServer:
        """Synchronous wrapper for deploy_async."""
        return asyncio.run(self.deploy_async(server_id, actor))

    async def _document(self, server: GeneratedServer) -> GeneratedServer:
        if self.docs is None:
            return server
        try:
            readme, tool_docs = await self.docs.generate_async(server)
        except Exception as e:
            # Documentation is best-effort and never reverts a deployment
            logger.warning("Documentation generation failed for %s: %s", server.slug, e)
            return server
        return await self.store.update(server.id, {"readme": readme, "tool_docs": tool_docs})

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    async def list_versions_async(self, server_id: str) -> list[VersionSnapshot]:
        return all_versions(await self.store.get(server_id))

    async def restore_version_async(self, server_id: str, version: int) -> GeneratedServer:
        """Roll back to an archived version as a new draft version."""
        with self._exclusive(server_id):
            server = await self.store.get(server_id)
            snapshot = find_version(server, version)
            if snapshot is None:
                raise ServerNotFoundError(f"Version {version} not found for server {server.slug}")
            if snapshot.version == server.version:
                return server
            scan = self.scanner.scan_serialized(snapshot.code)

            def restore(current: GeneratedServer) -> dict[str, Any]:
                if current.status != ServerStatus.DRAFT:
                    ensure_transition(current.status, ServerStatus.DRAFT)
                return {
                    **archive_changes(current, f"Restored version {version}", self.max_versions),
                    "code": snapshot.code,
                    "tools": snapshot.tools,
                    "scan_result": scan,
                    "status": ServerStatus.DRAFT,
                }

            server = await self.store.update(server_id, restore)
            self.audit.record(server_id, server.owner_id, scan, AuditAction.SCAN, {"restored_from": version})
            return server
