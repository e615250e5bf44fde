"""
Input checks for tool arguments.

The file and shell tools consult these denylists before touching the
system. They are heuristics, not a sandbox.
"""

import re
from dataclasses import dataclass, field

MAX_PATH_LENGTH = 4096
MAX_COMMAND_LENGTH = 10000

DANGEROUS_PATH_PATTERNS = [
    re.compile(r'\.\.'),  # Directory traversal
    re.compile(r'^/etc/'),
    re.compile(r'^/usr/'),
    re.compile(r'^/bin/'),
    re.compile(r'^/sbin/'),
    re.compile(r'^/proc/'),
    re.compile(r'^/sys/'),
    re.compile(r'^/dev/'),
    re.compile(r'\.env$'),
    re.compile(r'\.key$'),
    re.compile(r'\.pem$'),
    re.compile(r'\.p12$'),
    re.compile(r'\.crt$'),
]

# Only checked for writes
WRITE_PROTECTED_PATTERNS = [
    re.compile(r'node_modules/'),
    re.compile(r'\.git/'),
    re.compile(r'\.svn/'),
    re.compile(r'dist/'),
    re.compile(r'build/'),
    re.compile(r'coverage/'),
]

DANGEROUS_COMMAND_PATTERNS = [
    re.compile(r'>\s*/dev/(zero|random|urandom|sd[a-z]|nvme)'),
    re.compile(r'rm\s+-(rf|fr)\s+/(\s|$|\*)'),
    re.compile(r':\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:'),  # Fork bomb
    re.compile(r'>\s*/etc/(passwd|shadow|sudoers)'),
    re.compile(r'chmod\s+(-R\s+)?777\s+/'),
    re.compile(r'dd\s+if=.*of=/dev/'),
    re.compile(r'\bmkfs\.'),
    re.compile(r'\bfdisk\b'),
    re.compile(r'\bu?mount\s+.*/dev/'),
    re.compile(r'\b(shutdown|reboot|halt|poweroff)\b'),
]


@dataclass
class ValidationResult:
    """Outcome of a check; `errors` is empty when valid."""
    is_valid: bool
    errors: list[str] = field(default_factory=list)


def validate_file_path(path: str, allow_write: bool = False) -> ValidationResult:
    """
    Check a path against the sensitive-location denylist.

    Args:
        path: Path as supplied by the model
        allow_write: Also apply the write-protected directory checks
    """
    if not path or not isinstance(path, str):
        return ValidationResult(False, ["Path must be a non-empty string"])

    errors = []
    if len(path) > MAX_PATH_LENGTH:
        errors.append(f"Path too long (max {MAX_PATH_LENGTH} characters)")

    normalized = path.replace("\\", "/")

    if any(p.search(normalized) for p in DANGEROUS_PATH_PATTERNS):
        errors.append(f"Path contains potentially dangerous pattern: {path}")

    if allow_write and any(p.search(normalized) for p in WRITE_PROTECTED_PATTERNS):
        errors.append(f"Write operation not allowed in: {path}")

    return ValidationResult(not errors, errors)


def validate_bash_command(command: str) -> ValidationResult:
    """Check a shell command against the destructive-command denylist."""
    if not command or not isinstance(command, str):
        return ValidationResult(False, ["Command must be a non-empty string"])

    errors = []
    if len(command) > MAX_COMMAND_LENGTH:
        errors.append(f"Command too long (max {MAX_COMMAND_LENGTH} characters)")

    if any(p.search(command) for p in DANGEROUS_COMMAND_PATTERNS):
        errors.append("Command contains potentially dangerous patterns")

    return ValidationResult(not errors, errors)
