"""Parsers for inline API descriptions.

Supported inputs, tried in this order by ``auto_parse``:

- OpenAPI / Swagger documents pasted as text
- Postman collections (v2.1 JSON)
- One or more cURL commands
- API Blueprint documents
- Plain text lines such as ``GET /users - List users``
"""

from __future__ import annotations

import json
import re
import shlex
from typing import Any
from urllib.parse import urlsplit

import yaml

from ..models import Endpoint, NormalizedSource, SourceType
from .openapi import is_openapi_document, normalize_openapi

DEFAULT_RESPONSES = {"200": {"description": "Successful response"}}

PLAIN_ENDPOINT_RE = re.compile(
    r"^(GET|POST|PUT|PATCH|DELETE)\s*:?\s+(/\S*?):?(?:\s+[-:]?\s*(.*))?$",
    re.IGNORECASE,
)
BLUEPRINT_ACTION_RE = re.compile(r"^###?\s+(.+?)\s+\[([A-Z]+)(?:\s+([^\]]+))?\]")
BLUEPRINT_RESOURCE_RE = re.compile(r"^##\s+[^\[]+\[([^\]]+)\]")
BLUEPRINT_PARAM_RE = re.compile(r"\+\s+([^\s:]+)(?:\s*:\s*[^\s(]+)?\s*(?:\(([^)]+)\))?.*?-\s*(.*)")
POSTMAN_VARIABLE_RE = re.compile(r"\{\{([^}]+)\}\}")


def _json_body(raw: str) -> dict[str, Any]:
    try:
        example = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return {"content": {"text/plain": {"schema": {"type": "string"}, "example": raw}}}
    return {"content": {"application/json": {"schema": {"type": "object"}, "example": example}}}


# ---------------------------------------------------------------------------
# Postman
# ---------------------------------------------------------------------------


def parse_postman_collection(collection: dict[str, Any]) -> NormalizedSource:
    """Parse a Postman v2.1 collection, descending into folders."""
    info = collection.get("info") or {}
    base_url = ""
    for var in collection.get("variable") or []:
        if var.get("key") in ("baseUrl", "base_url", "url"):
            base_url = var.get("value") or ""
            break

    endpoints: list[Endpoint] = []

    def walk(items: list[dict[str, Any]]) -> None:
        nonlocal base_url
        for item in items or []:
            if "request" in item:
                endpoints.append(_postman_endpoint(item))
                raw = _postman_raw_url(item["request"])
                if not base_url and raw.startswith("http"):
                    parts = urlsplit(raw)
                    base_url = f"{parts.scheme}://{parts.netloc}"
            elif "item" in item:
                walk(item["item"])

    walk(collection.get("item") or [])
    description = info.get("description") or "API imported from Postman collection"
    if isinstance(description, dict):
        description = description.get("content", "")
    return NormalizedSource(
        name=info.get("name") or "Postman API",
        description=description,
        base_url=base_url,
        endpoints=endpoints,
        source_type=SourceType.TEXT,
    )


def _postman_raw_url(request: dict[str, Any]) -> str:
    url = request.get("url")
    if isinstance(url, dict):
        return url.get("raw") or ""
    return url or ""


def _postman_endpoint(item: dict[str, Any]) -> Endpoint:
    request = item["request"]
    raw = _postman_raw_url(request)
    path = urlsplit(raw).path if raw.startswith("http") else raw.split("?")[0]
    # Leading {{baseUrl}} style variables stand for the host
    path = re.sub(r"^\{\{[^}]+\}\}", "", path)
    path = POSTMAN_VARIABLE_RE.sub(lambda m: "{" + m.group(1) + "}", path) or "/"
    if not path.startswith("/"):
        path = "/" + path

    headers = {
        h["key"]: h["value"]
        for h in request.get("header") or []
        if h.get("key") and h.get("value")
    }

    params = []
    url = request.get("url")
    if isinstance(url, dict):
        for q in url.get("query") or []:
            if q.get("key"):
                params.append({
                    "name": q["key"],
                    "in": "query",
                    "description": q.get("description") or "",
                    "required": not q.get("disabled", False),
                    "schema": {"type": "string"},
                })

    body = request.get("body") or {}
    request_body = None
    if body.get("mode") == "raw":
        request_body = _json_body(body.get("raw") or "")
    elif body.get("mode") == "formdata":
        request_body = {"content": {"multipart/form-data": {"schema": {"type": "object"}}}}

    name = item.get("name") or ""
    return Endpoint(
        path=path,
        method=(request.get("method") or "GET").upper(),
        operation_id=re.sub(r"\s+", "_", name.lower()) or None,
        summary=name,
        description=request.get("description") or "",
        parameters=params,
        request_body=request_body,
        headers=headers,
        responses=dict(DEFAULT_RESPONSES),
    )


# ---------------------------------------------------------------------------
# cURL
# ---------------------------------------------------------------------------


def parse_curl_command(command: str) -> tuple[Endpoint, str]:
    """Parse one cURL command.

    Returns:
        The endpoint and the base URL (scheme + host, empty if none)
    """
    command = command.replace("\\\n", " ")
    try:
        tokens = shlex.split(command)
    except ValueError:
        tokens = command.split()

    method = None
    url = ""
    headers: dict[str, str] = {}
    data = None
    i = 1 if tokens and tokens[0] == "curl" else 0
    while i < len(tokens):
        token = tokens[i]
        value = tokens[i + 1] if i + 1 < len(tokens) else ""
        if token in ("-X", "--request"):
            method = value.upper()
            i += 2
        elif token in ("-H", "--header"):
            key, _, val = value.partition(":")
            if key and val:
                headers[key.strip()] = val.strip()
            i += 2
        elif token in ("-d", "--data", "--data-raw", "--data-binary", "--json"):
            data = value
            i += 2
        elif token.startswith("-"):
            i += 1
        else:
            if not url:
                url = token
            i += 1

    if method is None:
        method = "POST" if data is not None else "GET"

    base_url = ""
    path = url
    if url.startswith("http"):
        parts = urlsplit(url)
        base_url = f"{parts.scheme}://{parts.netloc}"
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"

    endpoint = Endpoint(
        path=path or "/",
        method=method,
        summary=f"{method} {path}",
        description="Imported from cURL command",
        headers=headers,
        request_body=_json_body(data) if data is not None else None,
        responses=dict(DEFAULT_RESPONSES),
    )
    return endpoint, base_url


def parse_curl_commands(text: str) -> NormalizedSource:
    commands = [c for c in re.split(r"\n(?=curl\s)", text.strip()) if c.strip()]
    endpoints = []
    base_url = ""
    for command in commands:
        endpoint, url = parse_curl_command(command)
        endpoints.append(endpoint)
        base_url = base_url or url
    return NormalizedSource(
        name="cURL Import",
        description="API imported from cURL commands",
        base_url=base_url,
        endpoints=endpoints,
        source_type=SourceType.TEXT,
    )


# ---------------------------------------------------------------------------
# Plain text and API Blueprint
# ---------------------------------------------------------------------------


def parse_plain_text(text: str) -> NormalizedSource:
    lines = text.split("\n")
    endpoints = []
    for line in lines:
        match = PLAIN_ENDPOINT_RE.match(line.strip())
        if not match:
            continue
        method, path, description = match.groups()
        description = (description or "").strip()
        endpoints.append(
            Endpoint(
                path=path,
                method=method.upper(),
                summary=description or f"{method.upper()} {path}",
                description=description,
                responses=dict(DEFAULT_RESPONSES),
            )
        )

    name = "Plain Text API"
    description = "API imported from plain text description"
    first = lines[0].strip() if lines else ""
    if first and not PLAIN_ENDPOINT_RE.match(first):
        name = first
        if len(lines) > 1 and lines[1].strip() and not PLAIN_ENDPOINT_RE.match(lines[1].strip()):
            description = lines[1].strip()

    return NormalizedSource(
        name=name,
        description=description,
        endpoints=endpoints,
        source_type=SourceType.TEXT,
    )


def parse_api_blueprint(text: str) -> NormalizedSource:
    lines = text.split("\n")
    name = "API Blueprint"
    description = ""
    base_url = ""
    endpoints: list[Endpoint] = []
    current: dict[str, Any] | None = None
    resource_path = ""
    found_name = False

    i = 0
    while i < len(lines):
        stripped = lines[i].strip()
        i += 1

        if stripped.startswith("HOST:"):
            base_url = stripped[5:].strip()
            continue
        if stripped.startswith("# ") and current is None and not found_name:
            name = stripped[2:].strip()
            found_name = True
            continue
        if (
            stripped
            and current is None
            and not description
            and found_name
            and not stripped.startswith(("#", "+"))
        ):
            description = stripped
            continue

        action = BLUEPRINT_ACTION_RE.match(stripped)
        if action:
            if current:
                endpoints.append(Endpoint(**current))
            summary, method, path = action.groups()
            current = {
                "path": (path or resource_path or "/").strip(),
                "method": method.upper(),
                "summary": summary.strip(),
                "responses": {},
            }
            continue

        resource = BLUEPRINT_RESOURCE_RE.match(stripped)
        if resource:
            resource_path = resource.group(1).strip()
            continue

        if current is None:
            continue

        if stripped.startswith("+ Parameters"):
            params = []
            while (
                i < len(lines)
                and lines[i].strip().startswith("+")
                and not lines[i].strip().startswith(("+ Request", "+ Response"))
            ):
                param = BLUEPRINT_PARAM_RE.match(lines[i].strip())
                if param:
                    pname, ptype, pdesc = param.groups()
                    params.append({
                        "name": pname,
                        "in": "path",
                        "description": (pdesc or "").strip(),
                        "required": True,
                        "schema": {"type": (ptype or "string").split(",")[0].strip().lower()},
                    })
                i += 1
            current["parameters"] = params
        elif stripped.startswith("+ Request"):
            body_lines = []
            while i < len(lines) and not lines[i].strip().startswith("+ Response"):
                if lines[i].strip() and not lines[i].strip().startswith("+"):
                    body_lines.append(lines[i])
                i += 1
            if body_lines:
                body = _json_body("\n".join(body_lines))
                if "application/json" in body["content"]:
                    current["request_body"] = body
        elif stripped.startswith("+ Response"):
            status = re.match(r"\+\s+Response\s+(\d+)", stripped)
            if status:
                current["responses"][status.group(1)] = {"description": "Response"}

    if current:
        endpoints.append(Endpoint(**current))

    return NormalizedSource(
        name=name,
        description=description,
        base_url=base_url,
        endpoints=endpoints,
        source_type=SourceType.TEXT,
    )


def auto_parse(text: str, name: str | None = None) -> NormalizedSource:
    """Detect the input format and parse it."""
    stripped = text.strip()
    source = _parse_structured(stripped)
    if source is None:
        if stripped.startswith("curl "):
            source = parse_curl_commands(stripped)
        elif "# " in stripped and ("[GET" in stripped or "[POST" in stripped):
            source = parse_api_blueprint(stripped)
        else:
            source = parse_plain_text(stripped)

    update: dict[str, Any] = {"source_content": text}
    if name:
        update["name"] = name
    return source.model_copy(update=update)


def _parse_structured(text: str) -> NormalizedSource | None:
    if not text.startswith(("{", "openapi", "swagger", "---")):
        return None
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError:
        return None
    if is_openapi_document(data):
        return normalize_openapi(data, source_type=SourceType.TEXT)
    if isinstance(data, dict) and "info" in data and "item" in data:
        return parse_postman_collection(data)
    return None
