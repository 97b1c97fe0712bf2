#!/usr/bin/env python3
"""Security gate: no credentials or customer data in logs.

Fails if, anywhere under src/:
- print( is used in runtime code
- a logger call builds its message with an f-string or % formatting
- a logger call passes sensitive names (tokens, secrets, phones, message
  bodies) without going through safe_log_context/redact_value/redact_string

Logger calls are checked as a whole, across lines.

Usage:
    python scripts/gate_security_logging.py
"""

import re
import sys
from pathlib import Path

SENSITIVE_KEYWORDS = (
    "access_token",
    "app_secret",
    "verify_token",
    "signature",
    "authorization",
    "phone_number",
    "contact_phone",
    "body",
    "payload",
    "content",
    "variables",
)

PRINT_PATTERN = re.compile(r"^\s*print\s*\(")

LOGGER_CALL_PATTERN = re.compile(r"\blogger\.(debug|info|warning|error|critical|exception)\s*\(")

# First positional argument, a plain string literal
MESSAGE_LITERAL = re.compile(r"""\s*(?P<q>["'])(?:\\.|(?!(?P=q)).)*(?P=q)""")

FORMATTED_MESSAGE = re.compile(r"""^\s*(f["']|["'][^"']*["']\s*%)""")

REDACTION_PATTERNS = (
    "safe_log_context",
    "redact_value",
    "redact_string",
)


def _call_text(content: str, start: int) -> str:
    """Arguments of the call whose "(" ends at start, up to the matching ")"."""
    depth = 1
    i = start
    quote: str | None = None
    while i < len(content) and depth:
        ch = content[i]
        if quote:
            if ch == "\\":
                i += 1
            elif ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        i += 1
    return content[start:i - 1]


def check_source(content: str, label: str) -> list[str]:
    """Check one source text. Returns error messages."""
    errors: list[str] = []

    for lineno, line in enumerate(content.splitlines(), start=1):
        if PRINT_PATTERN.search(line):
            errors.append(f"{label}:{lineno}: print() not allowed in runtime code")

    for match in LOGGER_CALL_PATTERN.finditer(content):
        lineno = content.count("\n", 0, match.start()) + 1
        args = _call_text(content, match.end())

        if FORMATTED_MESSAGE.search(args):
            errors.append(f"{label}:{lineno}: logger message must be a constant string")
            continue

        message = MESSAGE_LITERAL.match(args)
        rest = args[message.end():] if message else args
        if any(rp in rest for rp in REDACTION_PATTERNS):
            continue

        rest_lower = rest.lower()
        for keyword in SENSITIVE_KEYWORDS:
            if keyword in rest_lower:
                errors.append(
                    f"{label}:{lineno}: logger call with '{keyword}' "
                    "must use redaction (safe_log_context/redact_value)"
                )
    return errors


def check_file(filepath: Path) -> list[str]:
    try:
        content = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []
    return check_source(content, str(filepath))


def main() -> int:
    src_dir = Path("src")
    if not src_dir.exists():
        src_dir = Path(__file__).parent.parent / "src"
    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))

    if all_errors:
        sys.stderr.write("Logging gate FAILED - sensitive data may reach logs:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("Logging gate PASSED\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
