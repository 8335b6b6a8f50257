"""Sandbox compliance checks for generated code."""

from __future__ import annotations

import re
from urllib.parse import urlsplit

from ..config import SandboxConfig
from ..models import IssueType, SecurityIssue, Severity

IMPORT_RE = re.compile(
    r"""(?:\bimport\s+(?:[^'";]*?\s+from\s+)?|\bexport\s+[^'";]*?\s+from\s+|\bimport\s*\(\s*|\brequire\s*\(\s*)["']([^"']+)["']"""
)
FS_PATTERNS = (
    re.compile(r"""\bfs\.|\brequire\(\s*["'](?:node:)?fs(?:/promises)?["']\s*\)|\bfrom\s+["'](?:node:)?fs(?:/promises)?["']"""),
    re.compile(r"\b(?:readFile|writeFile|appendFile|unlink)(?:Sync)?\b"),
)
NETWORK_RE = re.compile(r"\bfetch\s*\(|\baxios\b|\bhttps?\.request\s*\(")
URL_RE = re.compile(r"""https?://[^\s"'`)]+""")


def base_module(specifier: str) -> str:
    """``@scope/pkg/sub`` -> ``@scope/pkg``; ``pkg/sub`` -> ``pkg``."""
    parts = specifier.split("/")
    if specifier.startswith("@") and len(parts) > 1:
        return "/".join(parts[:2])
    return parts[0]


def _line_of(code: str, offset: int) -> int:
    return code.count("\n", 0, offset) + 1


def _domain_allowed(host: str, allowed: list[str]) -> bool:
    return any(host == d or host.endswith("." + d) for d in allowed)


def check_sandbox_compliance(code: str, config: SandboxConfig | None = None) -> list[SecurityIssue]:
    """Report module, filesystem and network usage the sandbox would refuse."""
    config = config or SandboxConfig()
    issues = []

    for match in IMPORT_RE.finditer(code):
        specifier = match.group(1)
        if specifier.startswith((".", "/")):
            continue
        module = base_module(specifier)
        if module in config.allowed_modules:
            continue
        issues.append(
            SecurityIssue(
                type=IssueType.VULNERABILITY,
                severity=Severity.HIGH,
                message=f'Module "{module}" is not allowed in sandbox environment',
                line=_line_of(code, match.start()),
                code=match.group(0),
                fix=f"Only use allowed modules: {', '.join(config.allowed_modules)}",
            )
        )

    if not config.allow_file_system_access:
        for pattern in FS_PATTERNS:
            match = pattern.search(code)
            if match:
                issues.append(
                    SecurityIssue(
                        type=IssueType.VULNERABILITY,
                        severity=Severity.HIGH,
                        message="File system access is not allowed in sandbox environment",
                        line=_line_of(code, match.start()),
                        code=match.group(0),
                        fix="Remove file system operations",
                    )
                )

    if not config.allow_network_access:
        match = NETWORK_RE.search(code)
        if match:
            issues.append(
                SecurityIssue(
                    type=IssueType.VULNERABILITY,
                    severity=Severity.HIGH,
                    message="Network access is not allowed in sandbox environment",
                    line=_line_of(code, match.start()),
                    code=match.group(0),
                    fix="Remove outbound network calls",
                )
            )
    elif config.allowed_domains:
        for match in URL_RE.finditer(code):
            host = urlsplit(match.group(0)).hostname or ""
            if host and not _domain_allowed(host, config.allowed_domains):
                issues.append(
                    SecurityIssue(
                        type=IssueType.VULNERABILITY,
                        severity=Severity.HIGH,
                        message=f'Domain "{host}" is not in the sandbox allow-list',
                        line=_line_of(code, match.start()),
                        code=match.group(0),
                        fix=f"Only call allowed domains: {', '.join(config.allowed_domains)}",
                    )
                )

    return issues
