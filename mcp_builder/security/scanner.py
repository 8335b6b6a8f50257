"""Static security scanning of generated server code.

Each detector is a pure function from source text (or a manifest) to a list
of ``SecurityIssue``. ``SecurityScanner`` composes them, scores the result
and can redact lines carrying critical findings.
"""

from __future__ import annotations

import json
import re
from typing import Any

from ..config import SandboxConfig
from ..generator.project import MANIFEST, parse_project, serialize_project, source_files
from ..models import IssueType, ScanResult, SecurityIssue, Severity
from .sandbox import check_sandbox_compliance

SEVERITY_WEIGHTS = {
    Severity.CRITICAL: 40,
    Severity.HIGH: 20,
    Severity.MEDIUM: 10,
    Severity.LOW: 5,
}

ENV_MARKERS = ("process.env", "import.meta.env", "os.environ", "os.getenv", "Deno.env", "Bun.env")

REDACTION_MARKER = "// REMOVED: Security issue detected at line {line}"
HASH_REDACTION_MARKER = "# REMOVED: Security issue detected at line {line}"
HASH_COMMENT_SUFFIXES = (".env", ".yaml", ".yml", ".toml", ".sh")

_Q = r"""["'`]"""

CREDENTIAL_PATTERNS = [
    (re.compile(rf"(?:api[_-]?key|apikey|access[_-]?key){_Q}?\s*[=:]\s*{_Q}([^\"'`]+){_Q}", re.I), "API Key"),
    (re.compile(rf"(?:secret|password|passwd|pwd){_Q}?\s*[=:]\s*{_Q}([^\"'`]+){_Q}", re.I), "Secret/Password"),
    (re.compile(rf"(?:token|auth[_-]?token){_Q}?\s*[=:]\s*{_Q}([^\"'`]+){_Q}", re.I), "Auth Token"),
    (re.compile(rf"(?:private[_-]?key|privatekey){_Q}?\s*[=:]\s*{_Q}([^\"'`]+){_Q}", re.I), "Private Key"),
    (re.compile(r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----"), "Private Key"),
    (re.compile(rf"(?:aws[_-]?access[_-]?key[_-]?id|awsKey){_Q}?\s*[=:]\s*{_Q}([A-Z0-9]{{20}}){_Q}", re.I), "AWS Access Key"),
    (re.compile(r"\b(?:AKIA|ASIA)[0-9A-Z]{16}\b"), "AWS Access Key"),
    (re.compile(rf"(?:aws[_-]?secret[_-]?access[_-]?key){_Q}?\s*[=:]\s*{_Q}([A-Za-z0-9/+=]{{40}}){_Q}", re.I), "AWS Secret Key"),
    (re.compile(r"Bearer\s+[A-Za-z0-9\-_=]+\.[A-Za-z0-9\-_=]+\.?[A-Za-z0-9\-_.+/=]*"), "JWT Token"),
    (re.compile(r"\beyJ[A-Za-z0-9_-]{5,}\.eyJ[A-Za-z0-9_-]{5,}\.[A-Za-z0-9_-]+"), "JWT Token"),
    (re.compile(r"\bgh[pousr]_[A-Za-z0-9_]{36,}"), "GitHub Token"),
]

# KEY=value assignments in dotenv files
DOTENV_SECRET_RE = re.compile(
    r"^\s*(?:export\s+)?[A-Za-z0-9_]*(?:KEY|SECRET|TOKEN|PASSWORD|PASSWD)[A-Za-z0-9_]*\s*=\s*[^\s#]+", re.I
)

DANGEROUS_PATTERNS = [
    (re.compile(r"\beval\s*\("), Severity.CRITICAL,
     "Use of eval() detected - this can lead to code injection vulnerabilities"),
    (re.compile(r"\bnew\s+Function\s*\(|(?<![\w.])Function\s*\(\s*[\"'`]"), Severity.HIGH,
     "Dynamic function creation detected - potential code injection risk"),
    (re.compile(r"(?<![\w.])(?:exec|execSync|execFile|execFileSync|spawn|spawnSync)\s*\(|\bchild_process\b"), Severity.HIGH,
     "Command execution detected - ensure input is properly sanitized"),
    (re.compile(r"\binnerHTML\s*=(?!=)"), Severity.HIGH,
     "Direct innerHTML manipulation - potential XSS vulnerability"),
    (re.compile(r"\bdangerouslySetInnerHTML\b"), Severity.MEDIUM,
     "dangerouslySetInnerHTML usage detected - ensure content is sanitized"),
    (re.compile(r"\bdocument\.write(?:ln)?\s*\("), Severity.MEDIUM,
     "document.write usage - can lead to XSS vulnerabilities"),
    (re.compile(r"\bSELECT\s+.*\s+FROM\s+.*\s+WHERE\s+.*(?:\+|\$\{)", re.I), Severity.CRITICAL,
     "Possible SQL injection - use parameterized queries"),
    (re.compile(r"\$\{[^}]*\breq\.(?:body|query|params)[^}]*\}"), Severity.HIGH,
     "Template literal with user input - potential injection vulnerability"),
]

# name -> (first fixed version, severity)
VULNERABLE_PACKAGES = {
    "lodash": ((4, 17, 21), Severity.HIGH),
    "axios": ((0, 21, 2), Severity.MEDIUM),
    "express": ((4, 17, 3), Severity.HIGH),
    "minimist": ((1, 2, 6), Severity.MEDIUM),
}

VERSION_RE = re.compile(r"(\d+)(?:\.(\d+|[xX*]))?(?:\.(\d+|[xX*]))?")
UNPINNED_VALUES = {"", "*", "x", "X", "latest", "next"}


def _is_env_line(line: str) -> bool:
    return any(marker in line for marker in ENV_MARKERS)


def _is_dotenv(path: str) -> bool:
    return path.rsplit("/", 1)[-1].startswith(".env")


def detect_credential_leaks(code: str, dotenv: bool = False) -> list[SecurityIssue]:
    """Hardcoded secrets; lines that read from the environment are exempt.

    With ``dotenv`` set, unquoted ``NAME_KEY=value`` assignments count too.
    """
    issues = []
    for index, line in enumerate(code.split("\n"), start=1):
        if _is_env_line(line):
            continue
        labels = [label for pattern, label in CREDENTIAL_PATTERNS if pattern.search(line)]
        if not labels and dotenv and DOTENV_SECRET_RE.search(line):
            labels = ["Secret"]
        for label in labels:
            issues.append(
                SecurityIssue(
                    type=IssueType.CREDENTIAL,
                    severity=Severity.CRITICAL,
                    message=f"Hardcoded {label} detected. Use environment variables instead.",
                    line=index,
                    code=line.strip(),
                    fix="Replace with process.env.YOUR_SECRET_NAME",
                )
            )
    return issues


def detect_dangerous_code(code: str) -> list[SecurityIssue]:
    issues = []
    for index, line in enumerate(code.split("\n"), start=1):
        for pattern, severity, message in DANGEROUS_PATTERNS:
            if pattern.search(line):
                issues.append(
                    SecurityIssue(
                        type=IssueType.DANGEROUS_CODE,
                        severity=severity,
                        message=message,
                        line=index,
                        code=line.strip(),
                    )
                )
    return issues


def parse_min_version(spec: str) -> tuple[int, int, int] | None:
    """Lowest concrete version a semver range admits, or None if not numeric."""
    match = VERSION_RE.search(spec)
    if not match:
        return None
    parts = [int(p) if p and p.isdigit() else 0 for p in match.groups()]
    return parts[0], parts[1], parts[2]


def is_unpinned(spec: str) -> bool:
    spec = spec.strip()
    if spec in UNPINNED_VALUES or "*" in spec:
        return True
    if re.search(r"(?:^|\.)[xX](?:\.|$)", spec):
        return True
    # Open lower bound with no upper bound
    return spec.startswith(">") and "<" not in spec and " - " not in spec


def detect_insecure_dependencies(manifest: str) -> list[SecurityIssue]:
    """Known-vulnerable and unpinned entries of a package.json manifest."""
    try:
        pkg = json.loads(manifest)
    except json.JSONDecodeError:
        return []
    if not isinstance(pkg, dict):
        return []

    deps: dict[str, Any] = {}
    for section in ("dependencies", "devDependencies"):
        if isinstance(pkg.get(section), dict):
            deps.update(pkg[section])

    issues = []
    for name, version in deps.items():
        version = str(version)
        if name in VULNERABLE_PACKAGES:
            fixed, severity = VULNERABLE_PACKAGES[name]
            minimum = parse_min_version(version)
            if minimum is None or minimum < fixed:
                issues.append(
                    SecurityIssue(
                        type=IssueType.INSECURE_DEPENDENCY,
                        severity=severity,
                        message=f'Package "{name}" at version {version} has known vulnerabilities',
                        fix=f"Update to {name}@{'.'.join(map(str, fixed))} or later",
                    )
                )
        if is_unpinned(version):
            issues.append(
                SecurityIssue(
                    type=IssueType.INSECURE_DEPENDENCY,
                    severity=Severity.MEDIUM,
                    message=f'Unpinned version "{version}" for "{name}" can lead to unpredictable builds',
                    fix="Pin to a specific version range",
                )
            )
    return issues


def _first_line(code: str, pattern: re.Pattern) -> int | None:
    match = pattern.search(code)
    return code.count("\n", 0, match.start()) + 1 if match else None


CORS_RE = re.compile(r"\bcors\b")
ROUTE_RE = re.compile(r"\b(?:app|router)\.(?:get|post|put|patch|delete)\s*\(")
USER_INPUT_RE = re.compile(r"\breq\.(?:body|query)\b")
HTTP_SERVER_RE = re.compile(r"\bhttp\.createServer\s*\(")


def detect_missing_security_configs(code: str) -> list[SecurityIssue]:
    issues = []
    if CORS_RE.search(code) and "origin:" not in code and "origin =" not in code:
        issues.append(
            SecurityIssue(
                type=IssueType.VULNERABILITY,
                severity=Severity.MEDIUM,
                message="CORS enabled without origin restriction - allows requests from any domain",
                line=_first_line(code, CORS_RE),
                fix="Configure CORS with specific allowed origins",
            )
        )
    if ROUTE_RE.search(code) and not re.search(r"rateLimit|rate-limit|rate_limit", code, re.I):
        issues.append(
            SecurityIssue(
                type=IssueType.VULNERABILITY,
                severity=Severity.LOW,
                message="No rate limiting detected - API may be vulnerable to abuse",
                line=_first_line(code, ROUTE_RE),
                fix="Implement rate limiting middleware",
            )
        )
    if USER_INPUT_RE.search(code) and not re.search(r"validate|schema|\bzod\b|t\.Object", code):
        issues.append(
            SecurityIssue(
                type=IssueType.VULNERABILITY,
                severity=Severity.MEDIUM,
                message="User input without validation - potential injection vulnerabilities",
                line=_first_line(code, USER_INPUT_RE),
                fix="Add input validation using a schema validator",
            )
        )
    if HTTP_SERVER_RE.search(code) and "https" not in code:
        issues.append(
            SecurityIssue(
                type=IssueType.VULNERABILITY,
                severity=Severity.HIGH,
                message="HTTP server without HTTPS - data transmitted in plain text",
                line=_first_line(code, HTTP_SERVER_RE),
                fix="Use HTTPS for production deployments",
            )
        )
    return issues


def compute_score(issues: list[SecurityIssue]) -> tuple[int, bool]:
    """Return ``(score, passed)`` for a set of issues."""
    deduction = sum(SEVERITY_WEIGHTS[issue.severity] for issue in issues)
    passed = not any(issue.severity in (Severity.CRITICAL, Severity.HIGH) for issue in issues)
    return max(0, 100 - deduction), passed


def build_scan_result(issues: list[SecurityIssue]) -> ScanResult:
    score, passed = compute_score(issues)
    return ScanResult(passed=passed, issues=issues, score=score)


def sanitize_code(code: str, issues: list[SecurityIssue], marker: str = REDACTION_MARKER) -> str:
    """Redact every line that carries a critical issue.

    The line count never changes: each offending line is replaced in place
    by a single-line marker.
    """
    lines = code.split("\n")
    for issue in issues:
        if issue.severity != Severity.CRITICAL or not issue.line:
            continue
        if 1 <= issue.line <= len(lines):
            lines[issue.line - 1] = marker.format(line=issue.line)
    return "\n".join(lines)


def _blank_secret(match: re.Match) -> str:
    if match.lastindex is None:
        return ""
    text, offset = match.group(0), match.start(0)
    return text[: match.start(1) - offset] + text[match.end(1) - offset :]


def sanitize_json(code: str, issues: list[SecurityIssue]) -> str:
    """Blank secret values on flagged lines, leaving the document parseable."""
    lines = code.split("\n")
    for issue in issues:
        if issue.type != IssueType.CREDENTIAL or not issue.line:
            continue
        if 1 <= issue.line <= len(lines):
            line = lines[issue.line - 1]
            for pattern, _ in CREDENTIAL_PATTERNS:
                line = pattern.sub(_blank_secret, line)
            lines[issue.line - 1] = line
    return "\n".join(lines)


class SecurityScanner:
    """Composes the detectors over single sources or whole project bundles."""

    def __init__(self, sandbox: SandboxConfig | None = None):
        self.sandbox = sandbox

    def _scan_source(self, code: str) -> list[SecurityIssue]:
        issues = detect_credential_leaks(code)
        issues.extend(detect_dangerous_code(code))
        issues.extend(detect_missing_security_configs(code))
        if self.sandbox is not None:
            issues.extend(check_sandbox_compliance(code, self.sandbox))
        return issues

    def scan_code(self, code: str, manifest: str | None = None) -> ScanResult:
        """Scan one source text and an optional package.json."""
        issues = self._scan_source(code)
        if manifest:
            issues.extend(detect_insecure_dependencies(manifest))
        return build_scan_result(issues)

    def scan_project(self, files: dict[str, str]) -> ScanResult:
        """Scan every source file plus the manifest of a project bundle.

        Credential detection runs over every file, config and dotenv
        files included. The code detectors only see source files.
        """
        issues = []
        sources = source_files(files)
        for path, content in files.items():
            if path in sources:
                found = self._scan_source(content)
            else:
                found = detect_credential_leaks(content, dotenv=_is_dotenv(path))
            for issue in found:
                issues.append(issue.model_copy(update={"file": path}))
        if MANIFEST in files:
            for issue in detect_insecure_dependencies(files[MANIFEST]):
                issues.append(issue.model_copy(update={"file": MANIFEST}))
        return build_scan_result(issues)

    def scan_serialized(self, code: str) -> ScanResult:
        """Scan generated ``code`` in either serialized project form."""
        return self.scan_project(parse_project(code))

    def sanitize_project(self, files: dict[str, str], issues: list[SecurityIssue]) -> dict[str, str]:
        sanitized = dict(files)
        for path in sanitized:
            own = [i for i in issues if i.file == path]
            if not own:
                continue
            if path.endswith(".json"):
                sanitized[path] = sanitize_json(sanitized[path], own)
            elif _is_dotenv(path) or path.endswith(HASH_COMMENT_SUFFIXES):
                sanitized[path] = sanitize_code(sanitized[path], own, HASH_REDACTION_MARKER)
            else:
                sanitized[path] = sanitize_code(sanitized[path], own)
        return sanitized

    def sanitize_serialized(self, code: str, issues: list[SecurityIssue]) -> str:
        files = parse_project(code)
        return serialize_project(self.sanitize_project(files, issues))
