"""Tests for lifecycle state, persistence, versioning and the end-to-end pipeline."""

import asyncio
import json

import httpx
import pytest

from mcp_builder.config import BuilderConfig
from mcp_builder.errors import (
    DeploymentStateError,
    GenerationContractError,
    HealthCheckError,
    InvalidTransitionError,
    OperationInProgressError,
    SecretDecryptionError,
    SecurityGateError,
    ServerNotFoundError,
)
from mcp_builder.models import (
    AuditAction,
    DeploymentState,
    GeneratedServer,
    ServerStatus,
    SourceType,
    TextSource,
    ToolDefinition,
)
from mcp_builder.pipeline import BuilderPipeline, FileServerStore, InMemoryServerStore
from mcp_builder.pipeline.state import can_transition, ensure_transition
from mcp_builder.pipeline.store import generate_slug, load_servers
from mcp_builder.pipeline.versioning import (
    all_versions,
    archive_changes,
    calculate_diff,
    find_version,
    prune_history,
    create_snapshot,
)
from mcp_builder.security import AuditLog, encrypt_secret, generate_key

from fakes import SERVER_CODE, FakeClock, FakeHost, FakeModel, healthy, mock_fetcher

S = ServerStatus
ITEMS_TEXT = "GET /items - List items\nPOST /items - Create an item"
LEAKY_CODE = 'import { Elysia } from "elysia";\nconst apiKey = "sk-live-1234567890abcdef";\nexport default new Elysia();'


def _server(**kwargs):
    defaults = {"slug": "items-api", "name": "items-api", "source_type": SourceType.TEXT}
    return GeneratedServer(**{**defaults, **kwargs})


def _pipeline(model=None, host=None, fetch_handler=healthy, **config):
    return BuilderPipeline.from_config(
        BuilderConfig(**config),
        model=model or FakeModel(),
        host=host or FakeHost(states=[DeploymentState.BUILDING, DeploymentState.READY]),
        clock=FakeClock(),
        store=InMemoryServerStore(),
        fetcher=mock_fetcher(fetch_handler),
        audit=AuditLog(),
    )


class TestStateMachine:
    def test_happy_path(self):
        for current, target in [
            (S.ANALYZING, S.GENERATING),
            (S.GENERATING, S.DRAFT),
            (S.DRAFT, S.DEPLOYING),
            (S.DEPLOYING, S.DEPLOYED),
        ]:
            assert can_transition(current, target)

    def test_failure_reachable_from_active_states(self):
        for current in (S.ANALYZING, S.GENERATING, S.DRAFT, S.DEPLOYING):
            assert can_transition(current, S.FAILED)

    def test_invalid(self):
        assert not can_transition(S.ANALYZING, S.DEPLOYED)
        assert not can_transition(S.DEPLOYED, S.DEPLOYING)
        with pytest.raises(InvalidTransitionError, match="'analyzing' to 'draft'"):
            ensure_transition(S.ANALYZING, S.DRAFT)


class TestStore:
    """Tests for the in-memory and file-backed stores."""

    def test_slug(self):
        assert generate_slug("My Cool API!") == "my-cool-api"
        assert generate_slug("!!!").startswith("server-")

    def test_get_missing(self):
        with pytest.raises(ServerNotFoundError):
            asyncio.run(InMemoryServerStore().get("nope"))

    def test_unique_slug(self):
        async def run():
            store = InMemoryServerStore()
            await store.add(_server())
            first = await store.unique_slug("Items API")
            await store.add(_server(slug=first))
            return first, await store.unique_slug("items api")

        assert asyncio.run(run()) == ("items-api-2", "items-api-3")

    def test_update_with_callable_is_validated(self):
        async def run():
            store = InMemoryServerStore()
            server = await store.add(_server())
            return await store.update(
                server.id,
                lambda s: {"tools": [{"name": "list_items", "schema": {"type": "object"}}], "version": s.version + 1},
            )

        updated = asyncio.run(run())
        assert isinstance(updated.tools[0], ToolDefinition)
        assert updated.version == 2

    def test_failed_update_leaves_record(self):
        async def run():
            store = InMemoryServerStore()
            server = await store.add(_server())

            def reject(current):
                ensure_transition(current.status, S.DEPLOYED)
                return {"status": S.DEPLOYED}

            with pytest.raises(InvalidTransitionError):
                await store.update(server.id, reject)
            return await store.get(server.id)

        assert asyncio.run(run()).status == S.ANALYZING

    def test_list_by_owner(self):
        async def run():
            store = InMemoryServerStore()
            await store.add(_server(owner_id="a"))
            await store.add(_server(owner_id="b", slug="other"))
            return await store.list("a"), await store.list()

        mine, everyone = asyncio.run(run())
        assert len(mine) == 1
        assert len(everyone) == 2

    def test_file_store_persists(self, tmp_path):
        async def run():
            store = FileServerStore(tmp_path)
            server = await store.add(_server())
            await store.update(server.id, {"code": "x", "status": S.GENERATING})
            return server.id

        server_id = asyncio.run(run())
        reloaded = FileServerStore(tmp_path)
        server = asyncio.run(reloaded.get(server_id))
        assert server.code == "x"
        assert server.status == S.GENERATING

    def test_load_servers_skips_bad_files(self, tmp_path):
        (tmp_path / "broken.yaml").write_text("id: [unclosed")
        (tmp_path / "notes.txt").write_text("ignored")
        _server().to_yaml_file(tmp_path / "good.yaml")
        assert [s.slug for s in load_servers(tmp_path)] == ["items-api"]


class TestVersioning:
    def test_first_generation_keeps_version(self):
        assert archive_changes(_server(), "Regenerated") == {}

    def test_archive_bumps_version(self):
        server = _server(code="v1", status=S.DRAFT)
        changes = archive_changes(server, "Regenerated")
        assert changes["version"] == 2
        assert changes["previous_versions"][0].code == "v1"
        assert changes["previous_versions"][0].change_description == "Regenerated"

    def test_prune(self):
        snapshots = [create_snapshot(_server(code=str(i), version=i)) for i in range(1, 15)]
        kept = prune_history(snapshots, 10)
        assert [s.version for s in kept] == list(range(5, 15))

    def test_all_versions_current_first(self):
        server = _server(code="v3", version=3, status=S.DRAFT)
        server.previous_versions = [
            create_snapshot(_server(code="v1", version=1)),
            create_snapshot(_server(code="v2", version=2)),
        ]
        assert [v.version for v in all_versions(server)] == [3, 2, 1]
        assert find_version(server, 1).code == "v1"
        assert find_version(server, 9) is None

    def test_diff(self):
        diff = calculate_diff("a\nb\nc", "a\nB\nc\nd")
        assert diff["lines_added"] == 2
        assert diff["lines_removed"] == 1


class TestPipelineEndToEnd:
    """Text input through generation, scanning and deployment."""

    def test_items_api(self):
        pipeline = _pipeline()

        async def run():
            draft = await pipeline.create_async(TextSource(content=ITEMS_TEXT, name="items-api"))
            deployed = await pipeline.deploy_async(draft.id)
            return draft, deployed

        draft, deployed = asyncio.run(run())
        assert draft.status == S.DRAFT
        assert [t.name for t in draft.tools] == ["list_items", "create_item"]
        assert draft.scan_result.score == 100
        assert draft.scan_result.passed
        assert draft.version == 1

        assert deployed.status == S.DEPLOYED
        assert deployed.deployment_url == "https://items-api.vercel.app"
        assert deployed.host_project_id == "prj_1"
        assert deployed.readme.startswith("# Items API")
        assert [d.name for d in deployed.tool_docs] == ["list_items", "create_item"]

        actions = [e.action for e in pipeline.audit.for_server(draft.id)]
        assert actions == [AuditAction.SCAN]

    def test_bundle_uploaded(self):
        host = FakeHost()
        pipeline = _pipeline(host=host)

        async def run():
            draft = await pipeline.create_async(TextSource(content=ITEMS_TEXT, name="items-api"))
            await pipeline.deploy_async(draft.id)

        asyncio.run(run())
        files = host.deployments[0]["files"]
        assert 'export const runtime = "edge";' in files["api/index.ts"]
        assert "package.json" in files

    def test_external_api_key_injected(self):
        host = FakeHost()
        key = generate_key()
        pipeline = _pipeline(
            host=host,
            encryption_key=key,
            external_api_keys={"items": encrypt_secret("secret-value", key)},
        )

        async def run():
            draft = await pipeline.create_async(
                TextSource(content=ITEMS_TEXT, name="items-api"), external_api_service="items"
            )
            await pipeline.deploy_async(draft.id)

        asyncio.run(run())
        env = host.deployments[0]["env"]
        assert json.loads(env["STORED_API_KEYS"]) == {"items": "secret-value"}

    def test_stored_api_key_not_kept_in_plaintext(self):
        key = generate_key()
        token = encrypt_secret("secret-value", key)
        assert "secret-value" not in token
        config = BuilderConfig(encryption_key=key, external_api_keys={"items": token})
        assert "secret-value" not in json.dumps(config.model_dump())

    def test_undecryptable_api_key_blocks_deploy(self):
        for settings in (
            {"external_api_keys": {"items": encrypt_secret("secret-value", generate_key())}},
            {"external_api_keys": {"items": "secret-value"}, "encryption_key": generate_key()},
        ):
            host = FakeHost()
            pipeline = _pipeline(host=host, **settings)

            async def run():
                draft = await pipeline.create_async(
                    TextSource(content=ITEMS_TEXT, name="items-api"), external_api_service="items"
                )
                with pytest.raises(SecretDecryptionError):
                    await pipeline.deploy_async(draft.id)
                return await pipeline.store.get(draft.id)

            server = asyncio.run(run())
            assert server.status == S.DRAFT
            assert host.deployments == []


class TestSecurityGate:
    def test_failing_scan_blocks_deploy(self):
        host = FakeHost()
        pipeline = _pipeline(model=FakeModel(code=LEAKY_CODE), host=host)

        async def run():
            draft = await pipeline.create_async(TextSource(content=ITEMS_TEXT, name="leaky"))
            with pytest.raises(SecurityGateError, match="1 critical"):
                await pipeline.deploy_async(draft.id)
            return await pipeline.store.get(draft.id)

        server = asyncio.run(run())
        assert server.status == S.DRAFT
        assert host.deployments == []
        actions = [e.action for e in pipeline.audit.for_server(server.id)]
        assert actions == [AuditAction.SCAN, AuditAction.REJECT]

    def test_sanitize_then_deploy(self):
        pipeline = _pipeline(model=FakeModel(code=LEAKY_CODE))

        async def run():
            draft = await pipeline.create_async(TextSource(content=ITEMS_TEXT, name="leaky"))
            sanitized = await pipeline.sanitize_async(draft.id, actor="alice")
            deployed = await pipeline.deploy_async(draft.id)
            return draft, sanitized, deployed

        draft, sanitized, deployed = asyncio.run(run())
        assert not draft.scan_result.passed
        assert sanitized.scan_result.passed
        assert sanitized.version == 2
        assert sanitized.previous_versions[0].code == LEAKY_CODE
        assert len(sanitized.code.split("\n")) == len(LEAKY_CODE.split("\n"))
        assert deployed.status == S.DEPLOYED

    def test_approve_requires_passing_scan(self):
        pipeline = _pipeline(model=FakeModel(code=LEAKY_CODE))

        async def run():
            draft = await pipeline.create_async(TextSource(content=ITEMS_TEXT, name="leaky"))
            with pytest.raises(SecurityGateError):
                await pipeline.approve_async(draft.id)

        asyncio.run(run())

    def test_reject(self):
        pipeline = _pipeline()

        async def run():
            draft = await pipeline.create_async(TextSource(content=ITEMS_TEXT, name="items-api"))
            await pipeline.approve_async(draft.id, actor="alice")
            return await pipeline.reject_async(draft.id, actor="bob", reason="not needed")

        server = asyncio.run(run())
        assert server.status == S.FAILED
        assert server.error == "Rejected by security review: not needed"
        actions = [e.action for e in pipeline.audit.for_server(server.id)]
        assert actions == [AuditAction.SCAN, AuditAction.APPROVE, AuditAction.REJECT]


class TestFailures:
    """Every stage failure lands the server in ``failed`` exactly once."""

    def test_generation_contract_failure(self):
        pipeline = _pipeline(model=FakeModel(reply="Sorry, no code today."))

        async def run():
            with pytest.raises(GenerationContractError):
                await pipeline.create_async(TextSource(content=ITEMS_TEXT, name="items-api"))
            return await pipeline.store.list()

        [server] = asyncio.run(run())
        assert server.status == S.FAILED
        assert server.error.startswith("generation_contract: ")

    def test_deployment_error_state(self):
        host = FakeHost(states=[DeploymentState.ERROR])
        pipeline = _pipeline(host=host)

        async def run():
            draft = await pipeline.create_async(TextSource(content=ITEMS_TEXT, name="items-api"))
            with pytest.raises(DeploymentStateError) as exc_info:
                await pipeline.deploy_async(draft.id)
            return exc_info.value, await pipeline.store.get(draft.id)

        error, server = asyncio.run(run())
        assert error.kind == "deployment_state"
        assert server.status == S.FAILED
        assert server.deployment_url is None

    def test_health_check_failure(self):
        pipeline = _pipeline(fetch_handler=lambda request: httpx.Response(500))

        async def run():
            draft = await pipeline.create_async(TextSource(content=ITEMS_TEXT, name="items-api"))
            with pytest.raises(HealthCheckError):
                await pipeline.deploy_async(draft.id)
            return await pipeline.store.get(draft.id)

        assert asyncio.run(run()).status == S.FAILED

    def test_deploy_requires_draft(self):
        pipeline = _pipeline()

        async def run():
            draft = await pipeline.create_async(TextSource(content=ITEMS_TEXT, name="items-api"))
            await pipeline.deploy_async(draft.id)
            with pytest.raises(InvalidTransitionError):
                await pipeline.deploy_async(draft.id)

        asyncio.run(run())

    def test_documentation_failure_keeps_deployment(self):
        class DocsFailModel(FakeModel):
            async def complete(self, prompt, *, max_tokens=None):
                if "technical writer" in prompt:
                    raise RuntimeError("docs service down")
                return await super().complete(prompt, max_tokens=max_tokens)

        pipeline = _pipeline(model=DocsFailModel())

        async def run():
            draft = await pipeline.create_async(TextSource(content=ITEMS_TEXT, name="items-api"))
            return await pipeline.deploy_async(draft.id)

        server = asyncio.run(run())
        assert server.status == S.DEPLOYED
        assert server.readme is None


class GatedHost(FakeHost):
    """Holds every status poll until ``release`` is set."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.release = asyncio.Event()

    async def get_deployment(self, deployment_id):
        await self.release.wait()
        return await super().get_deployment(deployment_id)


class TestConcurrency:
    def test_back_to_back_deploys_conflict(self):
        async def run():
            host = GatedHost()
            pipeline = _pipeline(host=host)
            draft = await pipeline.create_async(TextSource(content=ITEMS_TEXT, name="items-api"))
            first = asyncio.create_task(pipeline.deploy_async(draft.id))
            await asyncio.sleep(0)
            assert pipeline.is_busy(draft.id)
            with pytest.raises(OperationInProgressError):
                await pipeline.deploy_async(draft.id)
            host.release.set()
            return pipeline, await first

        pipeline, server = asyncio.run(run())
        assert server.status == S.DEPLOYED
        assert not pipeline.is_busy(server.id)

    def test_cancelled_deploy_marks_failed(self):
        class BlockingClock(FakeClock):
            async def sleep(self, seconds):
                await asyncio.sleep(3600)

        pipeline = _pipeline(host=FakeHost(states=[DeploymentState.BUILDING]))
        pipeline.orchestrator.clock = BlockingClock()

        async def run():
            draft = await pipeline.create_async(TextSource(content=ITEMS_TEXT, name="items-api"))
            task = asyncio.create_task(pipeline.deploy_async(draft.id))
            for _ in range(5):
                await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return await pipeline.store.get(draft.id)

        server = asyncio.run(run())
        assert server.status == S.FAILED
        assert server.error == "cancelled"
        assert not pipeline.is_busy(server.id)


class TestVersions:
    def test_regenerate_and_restore(self):
        model = FakeModel()
        pipeline = _pipeline(model=model)

        async def run():
            draft = await pipeline.create_async(TextSource(content=ITEMS_TEXT, name="items-api"))
            model.code = SERVER_CODE.replace("/health", "/healthz")
            regenerated = await pipeline.regenerate_async(draft.id)
            history = await pipeline.list_versions_async(draft.id)
            restored = await pipeline.restore_version_async(draft.id, 1)
            return regenerated, history, restored

        regenerated, history, restored = asyncio.run(run())
        assert regenerated.version == 2
        assert "/healthz" in regenerated.code
        assert [v.version for v in history] == [2, 1]
        assert restored.version == 3
        assert restored.code == SERVER_CODE
        assert restored.status == S.DRAFT

    def test_restore_unknown_version(self):
        pipeline = _pipeline()

        async def run():
            draft = await pipeline.create_async(TextSource(content=ITEMS_TEXT, name="items-api"))
            with pytest.raises(ServerNotFoundError):
                await pipeline.restore_version_async(draft.id, 7)

        asyncio.run(run())
