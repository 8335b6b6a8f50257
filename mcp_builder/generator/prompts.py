"""Prompt templates for the code-generation model.

Templates are formatted with ``str.format``; literal braces are doubled.
"""

SERVER_CONTRACT = """The generated server is a single TypeScript module using the Elysia framework and
must expose exactly these routes:

- GET  /health       -> {{"ok": true}} (public, no authentication)
- POST /mcp          -> JSON-RPC 2.0 envelope {{"jsonrpc": "2.0", "method", "params", "id"}}
                        supporting "initialize", "initialized", "ping", "tools/list" and "tools/call"
- GET  /tools/list   -> {{"tools": [{{"name", "description", "inputSchema"}}]}}
- POST /tools/call   -> body {{"name": "...", "arguments": {{...}}}}, returns
                        {{"content": [{{"type": "text", "text": "..."}}]}}

Authentication rules:
- "tools/list" and "tools/call" (both JSON-RPC and REST forms) require the
  x-api-key header and must answer 401 when it is missing.
- Credentials for the upstream API are read from process.env (for example
  process.env.STORED_API_KEYS, a JSON object keyed by service name). Never
  hardcode secrets, tokens or keys in the source.

Only import from these modules: elysia, @modelcontextprotocol/sdk, zod, axios, node-fetch.
Do not touch the filesystem and do not spawn processes or call eval.

The module must end with:
export const GET = app.handle;
export const POST = app.handle;
"""

GENERATE_FROM_SPECIFICATION = """You are an expert at building MCP (Model Context Protocol) tool servers.

You are given an OpenAPI document describing an HTTP API. Generate a complete
MCP server that exposes every operation as one tool:

1. One tool per operation, named in snake_case after the operationId
   (for example "list_items", "create_item")
2. A JSON Schema for every tool input covering path, query and body parameters
3. Input validation and error handling for upstream failures
4. Readable text results for an AI assistant

""" + SERVER_CONTRACT + """
Return ONLY a JSON object with this exact structure:
{{
  "code": "// full TypeScript source",
  "tools": [
    {{
      "name": "tool_name",
      "description": "What the tool does",
      "schema": {{"type": "object", "properties": {{}}, "required": []}}
    }}
  ]
}}

OpenAPI document:
{spec}
"""

GENERATE_FROM_DOCUMENTATION = """You are an expert at reading API documentation and building MCP (Model Context Protocol) tool servers.

You are given the raw HTML or text of an API documentation page. In one pass:

1. Extract every endpoint: HTTP method, path, query/path parameters, headers and bodies
2. Identify the authentication scheme of the upstream API
3. Generate one MCP tool per distinct operation with a complete input JSON Schema
4. Generate the server implementation

""" + SERVER_CONTRACT + """
Return ONLY a JSON object with this exact structure:
{{
  "name": "API name",
  "description": "What the API does",
  "baseUrl": "https://api.example.com or null",
  "authMethod": "bearer|apikey|oauth|basic|none|unknown",
  "endpoints": [
    {{
      "path": "/weather",
      "method": "GET",
      "operationId": "get_current_weather",
      "summary": "Get current weather",
      "description": "Current conditions for a location",
      "parameters": [{{"name": "lat", "in": "query", "required": true, "schema": {{"type": "number"}}}}]
    }}
  ],
  "code": "// full TypeScript source",
  "tools": [
    {{
      "name": "get_current_weather",
      "description": "Current weather for a latitude/longitude",
      "schema": {{"type": "object", "properties": {{"lat": {{"type": "number"}}}}, "required": ["lat"]}}
    }}
  ]
}}

Documentation URL: {url}

Content:
{content}
"""

ANALYZE_REPOSITORY = """You are a code analysis expert. Extract the externally reachable API surface of this codebase.

Look for HTTP route registrations and handlers in any language (Express, Fastify,
Next.js routes, Flask, FastAPI, Django, gin, echo, chi, net/http, Spring,
JAX-RS, actix-web, rocket), OpenAPI/Swagger documents, request/response
types and authentication requirements. If the code is not a web API, describe
the interface it does offer (CLI, RPC, library) in the same shape.

Return ONLY a JSON object:
{{
  "name": "Service name",
  "description": "What the service does",
  "baseUrl": "https://... or null",
  "authMethod": "bearer|apikey|oauth|basic|none|unknown",
  "endpoints": [
    {{
      "path": "/items",
      "method": "GET",
      "operationId": "list_items",
      "summary": "List items",
      "description": "What this endpoint does",
      "parameters": [{{"name": "limit", "in": "query", "required": false, "schema": {{"type": "integer"}}}}]
    }}
  ]
}}

If no endpoints can be identified return an empty "endpoints" array and explain
what the codebase is in "description".

Repository: {repository}

Code files:
{files}
"""

GENERATE_DOCS = """You are a technical writer. Write concise markdown documentation for this MCP tool server.

Cover:
- Overview and purpose
- Authentication (the x-api-key header)
- Each tool with an example call
- Common use cases
- Troubleshooting

Return only the markdown.

Server: {name}

Server code:
{code}

Tools:
{tools}
"""
