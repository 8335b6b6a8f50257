"""Bounded exploration of a remote source repository.

Walks a GitHub repository through the contents API, scores every candidate
source file by how likely it is to describe an HTTP API surface, and
downloads the best ones under per-file and cumulative byte budgets.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .config import ExplorerSettings
from .errors import RepoExplorationError, RequestTimeoutError, SourceFetchError
from .http import HttpFetcher

logger = logging.getLogger(__name__)

CODE_EXTENSIONS = (".ts", ".js", ".tsx", ".jsx", ".go", ".py", ".rs", ".java", ".rb", ".php")

API_KEYWORDS = (
    "openapi", "swagger", "api", "route", "controller",
    "handler", "endpoint", "server", "rest", "http",
)

SPEC_FILENAMES = tuple(
    f"{stem}{ext}" for stem in ("openapi", "swagger", "api") for ext in (".yaml", ".yml", ".json")
)

PRIORITY_DIRS = ("api", "pkg", "internal", "src", "cmd", "server", "routes", "handlers", "controllers")

VENDOR_DIRS = frozenset({
    "vendor", "node_modules", "bower_components", "third_party", "third-party",
    "site-packages", "venv", ".venv", "env", "Pods", "deps",
})

BUILD_DIRS = frozenset({
    "dist", "build", "target", "out", "__pycache__", "coverage", ".next", "bin", "obj",
})

TEST_PATH_RE = re.compile(r"(^|/)(tests?|__tests__|specs?)(/|$)|(^|/)test_|[._-](test|spec)\.[a-z]+$")
REPO_URL_RE = re.compile(r"github\.com[/:]([^/]+)/([^/#?]+)")


@dataclass
class CandidateFile:
    """A file found during traversal, before download."""

    path: str
    download_url: str
    score: int


@dataclass
class RepoFile:
    """A downloaded (possibly truncated) source file."""

    path: str
    content: str
    score: int
    truncated: bool = False

    @property
    def size(self) -> int:
        return len(self.content.encode("utf-8"))


@dataclass
class ExplorationResult:
    """Outcome of exploring one repository."""

    owner: str
    repo: str
    files: list[RepoFile] = field(default_factory=list)
    candidates_found: int = 0
    selected: int = 0
    download_failures: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(f.size for f in self.files)

    @property
    def success_rate(self) -> float:
        attempted = len(self.files) + self.download_failures
        return len(self.files) / attempted if attempted else 0.0

    def to_prompt_bundle(self, limit: int | None = None) -> str:
        """Concatenate files as ``// path`` headed blocks for the analysis prompt."""
        bundle = "\n\n---\n\n".join(f"// {f.path}\n{f.content}" for f in self.files)
        return bundle[:limit] if limit is not None else bundle

    def to_dict(self) -> dict[str, Any]:
        return {
            "repository": f"{self.owner}/{self.repo}",
            "files": [{"path": f.path, "score": f.score, "bytes": f.size, "truncated": f.truncated} for f in self.files],
            "candidates_found": self.candidates_found,
            "download_failures": self.download_failures,
            "total_bytes": self.total_bytes,
            "warnings": self.warnings,
        }


def parse_repo_url(url: str) -> tuple[str, str]:
    """Extract ``(owner, repo)`` from a GitHub URL.

    Raises:
        SourceFetchError: If the URL does not name a repository
    """
    match = REPO_URL_RE.search(url)
    if not match:
        raise SourceFetchError(
            f"Invalid GitHub URL: {url}. Expected format: https://github.com/owner/repo"
        )
    owner, repo = match.group(1), match.group(2)
    if repo.endswith(".git"):
        repo = repo[:-4]
    return owner, repo


def is_pruned(name: str) -> bool:
    """Hidden entries and dependency/build directories are never visited."""
    return name.startswith(".") or name in VENDOR_DIRS or name in BUILD_DIRS


def is_candidate(path: str) -> bool:
    lower = path.lower()
    return lower.endswith(CODE_EXTENSIONS) or lower.rsplit("/", 1)[-1] in SPEC_FILENAMES


def score_path(path: str) -> int:
    """Relevance of a path for API discovery (higher is better)."""
    lower = path.lower()
    filename = lower.rsplit("/", 1)[-1]
    score = sum(10 for keyword in API_KEYWORDS if keyword in lower)
    if filename in SPEC_FILENAMES:
        score += 50
    if TEST_PATH_RE.search(lower):
        score -= 5
    if any(part in VENDOR_DIRS for part in path.split("/")):
        score -= 100
    return score


def _priority_key(item: dict[str, Any]) -> int:
    if item.get("type") != "dir":
        return 1
    name = (item.get("name") or "").lower()
    return 0 if any(d in name for d in PRIORITY_DIRS) else 1


def _truncate_bytes(text: str, limit: int) -> str:
    encoded = text.encode("utf-8")
    if len(encoded) <= limit:
        return text
    return encoded[:limit].decode("utf-8", errors="ignore")


class RepositoryExplorer:
    """Selects the most API-relevant files of a GitHub repository."""

    def __init__(
        self,
        fetcher: HttpFetcher,
        settings: ExplorerSettings | None = None,
        *,
        api_url: str = "https://api.github.com",
        token: str | None = None,
        timeout: float = 15.0,
    ):
        self.fetcher = fetcher
        self.settings = settings or ExplorerSettings()
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    @property
    def headers(self) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github.v3+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def fetch_metadata_async(self, owner: str, repo: str) -> dict[str, Any]:
        """Fetch repository metadata (name, description, default branch)."""
        response = await self.fetcher.get(
            f"{self.api_url}/repos/{owner}/{repo}",
            headers=self.headers,
            timeout=self.timeout,
            check=False,
        )
        if response.status_code == 404:
            raise SourceFetchError(f"Repository not found: {owner}/{repo}", status=404)
        if response.status_code == 403:
            raise SourceFetchError("GitHub API rate limit exceeded. Try again later.", status=403)
        if not response.is_success:
            raise SourceFetchError(
                f"GitHub API error: {response.status_code} {response.reason_phrase}",
                status=response.status_code,
            )
        return response.json()

    async def explore_async(self, owner: str, repo: str) -> ExplorationResult:
        """Traverse, rank and download the repository's most relevant files.

        Raises:
            RepoExplorationError: If no candidate files exist or none could be downloaded
        """
        result = ExplorationResult(owner=owner, repo=repo)
        found: list[CandidateFile] = []
        await self._walk(owner, repo, "", 0, found, result)
        result.candidates_found = len(found)

        ranked = sorted(found, key=lambda c: (-c.score, c.path))[: self.settings.max_files]
        result.selected = len(ranked)
        if not ranked:
            raise RepoExplorationError(
                f"No relevant code files found in repository {owner}/{repo}. "
                f"Supported file types: {', '.join(CODE_EXTENSIONS)}."
            )

        await self._download_all(ranked, result)

        if not result.files:
            raise RepoExplorationError(
                f"Failed to download any code files from repository {owner}/{repo}. "
                f"{result.download_failures} files failed. Supported file types: "
                f"{', '.join(CODE_EXTENSIONS)}."
            )
        if result.success_rate < self.settings.min_success_rate:
            message = (
                f"Only {len(result.files)}/{len(result.files) + result.download_failures} "
                "files downloaded successfully. Analysis may be incomplete."
            )
            logger.warning(message)
            result.warnings.append(message)

        logger.info("Selected %d files from %s/%s", len(result.files), owner, repo)
        return result

    def explore(self, owner: str, repo: str) -> ExplorationResult:
        """Synchronous wrapper for explore_async."""
        return asyncio.run(self.explore_async(owner, repo))

    def _enough(self, found: list[CandidateFile]) -> bool:
        return sum(1 for c in found if c.score > 0) >= self.settings.max_files * 2

    async def _walk(
        self,
        owner: str,
        repo: str,
        path: str,
        depth: int,
        found: list[CandidateFile],
        result: ExplorationResult,
    ) -> None:
        if depth > self.settings.max_depth or self._enough(found):
            return

        url = f"{self.api_url}/repos/{owner}/{repo}/contents"
        if path:
            url = f"{url}/{path}"
        response = await self.fetcher.get(url, headers=self.headers, timeout=self.timeout, check=False)
        if not response.is_success:
            if response.status_code == 403:
                message = f"GitHub API rate limit hit while listing {path or 'root'}"
            else:
                message = f"Failed to list {path or 'root'}: {response.status_code}"
            logger.warning(message)
            result.warnings.append(message)
            return

        items = response.json()
        if not isinstance(items, list):
            return

        for item in sorted(items, key=_priority_key):
            name = item.get("name") or ""
            if is_pruned(name):
                continue
            item_path = item.get("path") or (f"{path}/{name}" if path else name)
            if item.get("type") == "file" and is_candidate(item_path) and item.get("download_url"):
                found.append(CandidateFile(item_path, item["download_url"], score_path(item_path)))
            elif item.get("type") == "dir" and depth < self.settings.max_depth:
                await self._walk(owner, repo, item_path, depth + 1, found, result)

            if self._enough(found):
                break

    async def _download_all(self, ranked: list[CandidateFile], result: ExplorationResult) -> None:
        semaphore = asyncio.Semaphore(self.settings.download_concurrency)
        downloaded: dict[str, str] = {}

        async def download(candidate: CandidateFile) -> None:
            async with semaphore:
                try:
                    downloaded[candidate.path] = await self.fetcher.get_text(
                        candidate.download_url, headers=self.headers, timeout=self.timeout
                    )
                except (SourceFetchError, RequestTimeoutError) as e:
                    logger.warning("Failed to download %s: %s", candidate.path, e)
                    result.download_failures += 1

        await asyncio.gather(*(download(c) for c in ranked))

        # Caps apply in rank order, not completion order
        used = 0
        for candidate in ranked:
            if candidate.path not in downloaded:
                continue
            remaining = self.settings.max_total_bytes - used
            if remaining <= 0:
                break
            text = downloaded[candidate.path]
            limit = min(self.settings.max_file_bytes, remaining)
            kept = _truncate_bytes(text, limit)
            truncated = len(kept) < len(text)
            if truncated:
                logger.info("Truncated %s to %d bytes", candidate.path, limit)
            used += len(kept.encode("utf-8"))
            result.files.append(RepoFile(candidate.path, kept, candidate.score, truncated))
