"""README and per-tool documentation for deployed servers."""

from __future__ import annotations

import asyncio
import json
import logging

from .generator.model_client import ModelClient
from .generator.prompts import GENERATE_DOCS
from .models import GeneratedServer, ToolDefinition, ToolDoc

logger = logging.getLogger(__name__)


def build_tool_docs(tools: list[ToolDefinition]) -> list[ToolDoc]:
    """Derive per-tool reference entries from tool definitions."""
    docs = []
    for tool in tools:
        properties = tool.schema_.get("properties") or {}
        example_args = {name: f"<{spec.get('type', 'value')}>" for name, spec in properties.items() if isinstance(spec, dict)}
        docs.append(
            ToolDoc(
                name=tool.name,
                description=tool.description,
                params=json.dumps(tool.schema_, indent=2),
                example=json.dumps({"name": tool.name, "arguments": example_args}, indent=2),
            )
        )
    return docs


class DocumentationGenerator:
    """Generates a markdown README through the model service."""

    def __init__(self, model: ModelClient, code_limit: int = 10_000, max_tokens: int = 4_000):
        self.model = model
        self.code_limit = code_limit
        self.max_tokens = max_tokens

    async def generate_async(self, server: GeneratedServer) -> tuple[str, list[ToolDoc]]:
        """Return ``(readme, tool_docs)`` for a server."""
        prompt = GENERATE_DOCS.format(
            name=server.name,
            code=server.code[: self.code_limit],
            tools=json.dumps([t.to_dict() for t in server.tools], indent=2),
        )
        readme = await self.model.complete(prompt, max_tokens=self.max_tokens)
        return readme.strip(), build_tool_docs(server.tools)

    def generate(self, server: GeneratedServer) -> tuple[str, list[ToolDoc]]:
        """Synchronous wrapper for generate_async."""
        return asyncio.run(self.generate_async(server))
