"""OpenAPI / Swagger document parsing.

Accepts JSON or YAML text (PyYAML parses both) and produces the
``NormalizedSource`` representation used by the rest of the pipeline.
"""

from __future__ import annotations

from typing import Any

import yaml

from ..errors import SourceFetchError
from ..models import AuthMethod, Endpoint, NormalizedSource, SourceType

HTTP_METHODS = ("get", "post", "put", "patch", "delete", "head", "options")


def load_document(text: str) -> dict[str, Any]:
    """Decode a JSON or YAML API document.

    Raises:
        SourceFetchError: If the text is not a mapping
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise SourceFetchError(f"Could not decode API specification: {e}") from e
    if not isinstance(data, dict):
        raise SourceFetchError("API specification must be a JSON or YAML object")
    return data


def is_openapi_document(data: Any) -> bool:
    return isinstance(data, dict) and ("openapi" in data or "swagger" in data) and "paths" in data


def extract_endpoints(doc: dict[str, Any]) -> list[Endpoint]:
    """One Endpoint per path x HTTP method, with path-level parameters merged in."""
    endpoints = []
    for path, item in (doc.get("paths") or {}).items():
        if not isinstance(item, dict):
            continue
        shared_params = item.get("parameters") or []
        for method, op in item.items():
            if method.lower() not in HTTP_METHODS or not isinstance(op, dict):
                continue
            params = _merge_parameters(shared_params, op.get("parameters") or [])
            endpoints.append(
                Endpoint(
                    path=path,
                    method=method.upper(),
                    operation_id=op.get("operationId"),
                    summary=op.get("summary") or "",
                    description=op.get("description") or "",
                    parameters=params,
                    request_body=op.get("requestBody") or _swagger_body(params),
                    responses=op.get("responses") or {},
                )
            )
    return endpoints


def _merge_parameters(shared: list[dict], own: list[dict]) -> list[dict]:
    # Operation-level parameters override path-level ones with the same name+location
    merged: dict[tuple, dict] = {}
    for param in [*shared, *own]:
        if not isinstance(param, dict):
            continue
        merged[(param.get("name"), param.get("in"), param.get("$ref"))] = param
    return list(merged.values())


def _swagger_body(params: list[dict]) -> dict[str, Any] | None:
    for param in params:
        if param.get("in") == "body":
            return {"content": {"application/json": {"schema": param.get("schema", {"type": "object"})}}}
    return None


def extract_schemas(doc: dict[str, Any]) -> dict[str, Any]:
    components = doc.get("components") or {}
    return components.get("schemas") or doc.get("definitions") or {}


def extract_base_url(doc: dict[str, Any]) -> str:
    servers = doc.get("servers") or []
    if servers and isinstance(servers[0], dict) and servers[0].get("url"):
        return servers[0]["url"]
    host = doc.get("host")
    if host:
        scheme = (doc.get("schemes") or ["https"])[0]
        return f"{scheme}://{host}{doc.get('basePath', '')}".rstrip("/")
    return ""


def detect_auth_method(doc: dict[str, Any]) -> AuthMethod:
    """Map the first declared security scheme onto an AuthMethod."""
    components = doc.get("components") or {}
    schemes = components.get("securitySchemes") or doc.get("securityDefinitions") or {}
    if not schemes:
        return AuthMethod.NONE if "paths" in doc else AuthMethod.UNKNOWN

    for scheme in schemes.values():
        if not isinstance(scheme, dict):
            continue
        kind = (scheme.get("type") or "").lower()
        if kind == "apikey":
            return AuthMethod.APIKEY
        if kind in ("oauth2", "openidconnect"):
            return AuthMethod.OAUTH
        if kind == "basic":
            return AuthMethod.BASIC
        if kind == "http":
            http_scheme = (scheme.get("scheme") or "").lower()
            if http_scheme == "basic":
                return AuthMethod.BASIC
            return AuthMethod.BEARER
    return AuthMethod.UNKNOWN


def normalize_openapi(
    doc: dict[str, Any],
    *,
    source_url: str | None = None,
    source_content: str | None = None,
    source_type: SourceType = SourceType.SPEC,
) -> NormalizedSource:
    info = doc.get("info") or {}
    return NormalizedSource(
        name=info.get("title") or "API",
        description=info.get("description") or "",
        base_url=extract_base_url(doc),
        auth_method=detect_auth_method(doc),
        endpoints=extract_endpoints(doc),
        schemas=extract_schemas(doc),
        source_type=source_type,
        source_url=source_url,
        source_content=source_content,
    )
