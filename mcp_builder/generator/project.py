"""Serialized project layout of a generated server.

Generated ``code`` is either a JSON object mapping project-relative paths to
file contents, or a single entry-point source. Deployment always works on the
expanded file mapping produced by ``build_deploy_bundle``.
"""

from __future__ import annotations

import json
import re

ENTRY_POINT = "api/index.ts"
MANIFEST = "package.json"
HOST_CONFIG = "vercel.json"
SOURCE_SUFFIXES = (".ts", ".js", ".tsx", ".jsx", ".mjs", ".cjs")

HANDLER_EXPORT_RE = re.compile(
    r"^export const (?:GET|POST|PUT|DELETE|PATCH|OPTIONS|runtime) = .*?;?[ \t]*$\n?",
    re.MULTILINE,
)
EDGE_EXPORTS = """
// Edge runtime exports
export const GET = (request) => app.fetch(request);
export const POST = (request) => app.fetch(request);
export const PUT = (request) => app.fetch(request);
export const DELETE = (request) => app.fetch(request);
export const PATCH = (request) => app.fetch(request);
export const OPTIONS = (request) => app.fetch(request);

export const runtime = "edge";
"""


def parse_project(code: str) -> dict[str, str]:
    """Expand serialized code into a path -> content mapping."""
    stripped = code.strip()
    if stripped.startswith("{"):
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict) and data and all(
            isinstance(k, str) and isinstance(v, str) for k, v in data.items()
        ):
            return dict(data)
    return {ENTRY_POINT: code}


def serialize_project(files: dict[str, str]) -> str:
    """Inverse of ``parse_project``."""
    if list(files) == [ENTRY_POINT]:
        return files[ENTRY_POINT]
    return json.dumps(files, indent=2)


def source_files(files: dict[str, str]) -> dict[str, str]:
    return {path: content for path, content in files.items() if path.endswith(SOURCE_SUFFIXES)}


def wrap_entry_point(code: str) -> str:
    """Replace framework handler exports with edge-runtime fetch exports."""
    body = code.replace("// @ts-nocheck\n", "", 1) if code.startswith("// @ts-nocheck\n") else code
    body = HANDLER_EXPORT_RE.sub("", body)
    body = body.replace("\n// Edge runtime exports\n", "\n").rstrip()
    return f"// @ts-nocheck\n{body}\n{EDGE_EXPORTS}"


def build_package_json(name: str) -> str:
    return json.dumps(
        {
            "name": name,
            "version": "1.0.0",
            "type": "module",
            "scripts": {"build": "echo 'Edge runtime - no build required'"},
            "dependencies": {"elysia": "^1.2.0"},
        },
        indent=2,
    )


def build_host_config() -> str:
    return json.dumps(
        {
            "version": 2,
            "builds": [{"src": ENTRY_POINT, "use": "@vercel/node"}],
            "routes": [{"src": "/(.*)", "dest": f"/{ENTRY_POINT}"}],
        },
        indent=2,
    )


def build_readme(name: str) -> str:
    return f"""# {name}

MCP tool server generated by mcp-builder.

## Authentication

`tools/list` and `tools/call` require the `X-API-Key` header.

```bash
curl -X POST https://{name}.vercel.app/tools/call \\
  -H "Content-Type: application/json" \\
  -H "X-API-Key: YOUR_API_KEY" \\
  -d '{{"name": "tool_name", "arguments": {{}}}}'
```

## Endpoints

- `GET /health` - health check
- `POST /mcp` - JSON-RPC (initialize, ping, tools/list, tools/call)
- `GET /tools/list` - list tools
- `POST /tools/call` - call a tool
"""


def build_deploy_bundle(name: str, code: str, readme: str | None = None) -> dict[str, str]:
    """All files uploaded to the host for one deployment."""
    files = parse_project(code)
    if ENTRY_POINT in files:
        files[ENTRY_POINT] = wrap_entry_point(files[ENTRY_POINT])
    files.setdefault(MANIFEST, build_package_json(name))
    files.setdefault(HOST_CONFIG, build_host_config())
    files.setdefault("README.md", readme or build_readme(name))
    return files
