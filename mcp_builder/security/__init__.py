"""Security scanning, sanitization, sandbox checks and audit logging."""

from .audit import AuditLog
from .sandbox import check_sandbox_compliance
from .scanner import (
    SecurityScanner,
    compute_score,
    detect_credential_leaks,
    detect_dangerous_code,
    detect_insecure_dependencies,
    detect_missing_security_configs,
    sanitize_code,
)
from .secrets import decrypt_secret, encrypt_secret, generate_key

__all__ = [
    "AuditLog",
    "SecurityScanner",
    "check_sandbox_compliance",
    "compute_score",
    "detect_credential_leaks",
    "detect_dangerous_code",
    "detect_insecure_dependencies",
    "detect_missing_security_configs",
    "sanitize_code",
    "decrypt_secret",
    "encrypt_secret",
    "generate_key",
]
