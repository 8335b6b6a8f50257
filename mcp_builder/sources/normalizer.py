"""Convert any supported source descriptor into a NormalizedSource."""

from __future__ import annotations

import asyncio
import logging

from ..errors import SourceFetchError
from ..explorer import RepositoryExplorer, parse_repo_url
from ..generator.code_generator import CodeGenerator
from ..http import HttpFetcher, is_valid_url
from ..models import (
    AuthMethod,
    DocsSource,
    NormalizedSource,
    RepoSource,
    SourceDescriptor,
    SourceType,
    SpecSource,
    TextSource,
)
from .openapi import load_document, normalize_openapi
from .text_parsers import auto_parse

logger = logging.getLogger(__name__)


class SourceNormalizer:
    """Fetches and normalizes API descriptions.

    Downstream stages only ever see ``NormalizedSource``; the variant of the
    original input is kept in ``source_type`` for bookkeeping.
    """

    def __init__(
        self,
        fetcher: HttpFetcher,
        generator: CodeGenerator,
        explorer: RepositoryExplorer,
        repo_char_limit: int = 50_000,
    ):
        self.fetcher = fetcher
        self.generator = generator
        self.explorer = explorer
        self.repo_char_limit = repo_char_limit

    async def normalize_async(self, descriptor: SourceDescriptor) -> NormalizedSource:
        if isinstance(descriptor, SpecSource):
            return await self._from_spec(descriptor)
        if isinstance(descriptor, DocsSource):
            return await self._from_docs(descriptor)
        if isinstance(descriptor, RepoSource):
            return await self._from_repo(descriptor)
        if isinstance(descriptor, TextSource):
            return self._from_text(descriptor)
        raise TypeError(f"Unsupported source descriptor: {type(descriptor).__name__}")

    def normalize(self, descriptor: SourceDescriptor) -> NormalizedSource:
        """Synchronous wrapper for normalize_async."""
        return asyncio.run(self.normalize_async(descriptor))

    def _check_url(self, url: str) -> None:
        if not is_valid_url(url):
            raise SourceFetchError(f"Invalid URL: {url}")

    async def _from_spec(self, descriptor: SpecSource) -> NormalizedSource:
        self._check_url(descriptor.url)
        text = await self.fetcher.get_text(descriptor.url)
        doc = load_document(text)
        source = normalize_openapi(doc, source_url=descriptor.url, source_content=text)
        logger.info("Parsed %d endpoints from %s", len(source.endpoints), descriptor.url)
        return source

    async def _from_docs(self, descriptor: DocsSource) -> NormalizedSource:
        self._check_url(descriptor.url)
        content = await self.fetcher.get_text(descriptor.url)
        result = await self.generator.generate_from_documentation_async(descriptor.url, content)
        return NormalizedSource(
            name=result.name or descriptor.url,
            description=result.description or "",
            base_url=result.base_url or "",
            auth_method=result.auth_method or AuthMethod.UNKNOWN,
            endpoints=result.endpoints,
            source_type=SourceType.DOCS,
            source_url=descriptor.url,
            source_content=content[: self.generator.docs_char_limit],
            prefetched=result,
        )

    async def _from_repo(self, descriptor: RepoSource) -> NormalizedSource:
        owner, repo = parse_repo_url(descriptor.url)
        metadata = await self.explorer.fetch_metadata_async(owner, repo)
        exploration = await self.explorer.explore_async(owner, repo)
        bundle = exploration.to_prompt_bundle(self.repo_char_limit)
        analysis = await self.generator.analyze_repository_async(f"{owner}/{repo}", bundle)
        return NormalizedSource(
            name=metadata.get("name") or analysis["name"] or repo,
            description=metadata.get("description") or analysis["description"],
            base_url=analysis["base_url"],
            auth_method=analysis["auth_method"],
            endpoints=analysis["endpoints"],
            source_type=SourceType.REPO,
            source_url=descriptor.url,
            source_content=bundle,
        )

    def _from_text(self, descriptor: TextSource) -> NormalizedSource:
        if not descriptor.content.strip():
            raise SourceFetchError("Text source is empty")
        return auto_parse(descriptor.content, name=descriptor.name)
