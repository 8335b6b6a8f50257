"""Generate MCP server code from a normalized API description."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from ..models import GenerationResult, NormalizedSource
from .model_client import ModelClient
from .parsing import parse_generation_result, parse_repository_analysis
from .prompts import ANALYZE_REPOSITORY, GENERATE_FROM_DOCUMENTATION, GENERATE_FROM_SPECIFICATION

logger = logging.getLogger(__name__)


class CodeGenerator:
    """Drives the model service through the fixed generation templates.

    Every reply goes through ``parse_generation_result`` so callers either get
    a valid ``{code, tools}`` contract or a ``GenerationContractError``.
    """

    def __init__(
        self,
        model: ModelClient,
        max_tokens: int = 8_000,
        docs_char_limit: int = 50_000,
        repo_char_limit: int = 50_000,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.docs_char_limit = docs_char_limit
        self.repo_char_limit = repo_char_limit

    async def generate_async(self, source: NormalizedSource) -> GenerationResult:
        """Generate server code and tools for a normalized source.

        Documentation sources already carry the generation output from the
        analysis call, which is returned as-is.

        Args:
            source: Normalized API description

        Returns:
            Parsed generation result
        """
        if source.prefetched is not None:
            logger.info("Using generation output produced during documentation analysis")
            return source.prefetched

        prompt = GENERATE_FROM_SPECIFICATION.format(
            spec=json.dumps(source.to_openapi(), indent=2)
        )
        reply = await self.model.complete(prompt, max_tokens=self.max_tokens)
        result = parse_generation_result(reply)
        logger.info("Generated %d tools for %s", len(result.tools), source.name)
        return result

    def generate(self, source: NormalizedSource) -> GenerationResult:
        """Synchronous wrapper for generate_async."""
        return asyncio.run(self.generate_async(source))

    async def generate_from_documentation_async(self, url: str, content: str) -> GenerationResult:
        """Analyze raw documentation and generate code in a single model call."""
        prompt = GENERATE_FROM_DOCUMENTATION.format(
            url=url,
            content=content[: self.docs_char_limit],
        )
        reply = await self.model.complete(prompt, max_tokens=self.max_tokens)
        return parse_generation_result(reply)

    async def analyze_repository_async(self, repository: str, files_bundle: str) -> dict[str, Any]:
        """Extract the API surface from a bundle of repository files."""
        prompt = ANALYZE_REPOSITORY.format(
            repository=repository,
            files=files_bundle[: self.repo_char_limit],
        )
        reply = await self.model.complete(prompt, max_tokens=self.max_tokens)
        return parse_repository_analysis(reply)
