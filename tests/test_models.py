"""Tests for the shared pydantic models."""

import pytest
from pydantic import TypeAdapter, ValidationError

from mcp_builder.models import (
    AuthMethod,
    DeploymentState,
    Endpoint,
    GeneratedServer,
    NormalizedSource,
    ScanResult,
    SecurityIssue,
    Severity,
    IssueType,
    SourceDescriptor,
    SourceType,
    TextSource,
    ToolDefinition,
    RepoSource,
)


class TestEndpointToolName:
    """Tests for tool names derived from endpoints."""

    def test_list_and_create_for_collection(self):
        assert Endpoint(path="/items", method="GET").tool_name == "list_items"
        assert Endpoint(path="/items", method="POST").tool_name == "create_item"

    def test_item_routes(self):
        assert Endpoint(path="/items/{id}", method="GET").tool_name == "get_item"
        assert Endpoint(path="/items/{id}", method="PUT").tool_name == "update_item"
        assert Endpoint(path="/items/{id}", method="DELETE").tool_name == "delete_item"

    def test_operation_id_wins(self):
        ep = Endpoint(path="/pets", method="GET", operation_id="listPets")
        assert ep.tool_name == "list_pets"

    def test_nested_resource(self):
        ep = Endpoint(path="/users/{userId}/orders", method="GET")
        assert ep.tool_name == "list_users_orders"

    def test_root_path(self):
        assert Endpoint(path="/", method="GET").tool_name == "list_root"


class TestToolDefinition:
    def test_schema_alias(self):
        tool = ToolDefinition.model_validate(
            {"name": "t", "schema": {"type": "object", "properties": {"q": {"type": "string"}}}}
        )
        assert tool.schema_["properties"]["q"]["type"] == "string"
        assert "schema" in tool.to_dict()

    def test_default_schema(self):
        assert ToolDefinition(name="t").schema_ == {"type": "object", "properties": {}}


class TestNormalizedSource:
    def test_to_openapi(self):
        source = NormalizedSource(
            name="Items",
            base_url="https://api.example.com",
            auth_method=AuthMethod.BEARER,
            endpoints=[Endpoint(path="/items", method="GET"), Endpoint(path="/items", method="POST")],
        )
        doc = source.to_openapi()
        assert doc["servers"] == [{"url": "https://api.example.com"}]
        assert set(doc["paths"]["/items"]) == {"get", "post"}
        assert doc["paths"]["/items"]["post"]["operationId"] == "create_item"
        assert doc["x-auth-method"] == "bearer"
        assert "components" not in doc


class TestSourceDescriptor:
    """Tests for the discriminated source union."""

    def test_discriminates_by_kind(self):
        adapter = TypeAdapter(SourceDescriptor)
        assert isinstance(adapter.validate_python({"kind": "repo", "url": "https://github.com/a/b"}), RepoSource)
        assert isinstance(adapter.validate_python({"kind": "text", "content": "GET /x"}), TextSource)

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            TypeAdapter(SourceDescriptor).validate_python({"kind": "ftp", "url": "x"})


class TestScanResult:
    def test_score_bounds(self):
        with pytest.raises(ValidationError):
            ScanResult(passed=True, score=101)
        with pytest.raises(ValidationError):
            ScanResult(passed=False, score=-1)

    def test_count(self):
        issue = SecurityIssue(type=IssueType.CREDENTIAL, severity=Severity.CRITICAL, message="x")
        result = ScanResult(passed=False, score=60, issues=[issue])
        assert result.count(Severity.CRITICAL) == 1
        assert result.count(Severity.LOW) == 0


class TestDeploymentState:
    def test_terminal_states(self):
        assert DeploymentState.READY.is_terminal
        assert DeploymentState.ERROR.is_terminal
        assert DeploymentState.CANCELED.is_terminal
        assert not DeploymentState.BUILDING.is_terminal


class TestGeneratedServerYaml:
    def test_roundtrip_file(self, tmp_path):
        server = GeneratedServer(
            slug="items-api",
            name="Items API",
            source_type=SourceType.TEXT,
            code="export default 1;",
            tools=[ToolDefinition(name="list_items", description="List")],
        )
        path = tmp_path / "servers" / f"{server.id}.yaml"
        server.to_yaml_file(path)

        loaded = GeneratedServer.from_yaml_file(path)
        assert loaded.id == server.id
        assert loaded.tools[0].name == "list_items"
        assert loaded.source_type == SourceType.TEXT
        assert "schema:" in path.read_text()
