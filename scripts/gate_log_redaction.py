#!/usr/bin/env python3
"""Gate: guest data must not reach the logs unredacted.

Fails if, in src/**:
- print( is used (logs go through the JSON logger only)
- a logger call passes extra= without building it with log_fields()
- a logger call mentions guest or card fields without log_fields()

Usage:
    python scripts/gate_log_redaction.py
"""

import re
import sys
from pathlib import Path

# Field names that carry guest or payment-card data
SENSITIVE_KEYWORDS = (
    "email",
    "phone",
    "first_name",
    "last_name",
    "card_number",
    "reference_number",
    "request.json",
)

PRINT_PATTERN = re.compile(r"\bprint\s*\(")

LOGGER_CALL_PATTERN = re.compile(
    r"logger\.(debug|info|warning|error|critical|exception)\s*\("
)

REDACTION_PATTERNS = (
    "log_fields(",
    "safe_log_context(",
)


def _call_text(lines: list[str], start: int) -> str:
    """Source of the logger call opening on lines[start], up to its closing paren."""
    depth = 0
    chunk: list[str] = []
    for line in lines[start:]:
        code = line.split("#")[0]
        chunk.append(code)
        depth += code.count("(") - code.count(")")
        if depth <= 0:
            break
    return "\n".join(chunk)


def check_file(filepath: Path) -> list[str]:
    """Check a single file for violations. Returns list of error messages."""
    try:
        content = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []

    errors = []
    lines = content.splitlines()

    for index, line in enumerate(lines):
        lineno = index + 1
        code_part = line.split("#")[0]
        if not code_part.strip():
            continue

        if PRINT_PATTERN.search(code_part):
            errors.append(f"{filepath}:{lineno}: print() not allowed in runtime code")

        if not LOGGER_CALL_PATTERN.search(code_part):
            continue

        call = _call_text(lines, index)
        redacted = any(rp in call for rp in REDACTION_PATTERNS)
        if "extra=" in call and not redacted:
            errors.append(f"{filepath}:{lineno}: logger extra= must be built with log_fields()")
            continue

        call_lower = call.lower()
        for keyword in SENSITIVE_KEYWORDS:
            if keyword in call_lower and not redacted:
                errors.append(
                    f"{filepath}:{lineno}: logger call with '{keyword}' must use log_fields()"
                )

    return errors


def check_tree(src_dir: Path) -> list[str]:
    all_errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))
    return all_errors


def main() -> int:
    src_dir = Path("src")
    if not src_dir.exists():
        src_dir = Path(__file__).parent.parent / "src"
    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors = check_tree(src_dir)
    if all_errors:
        sys.stderr.write("Log redaction gate FAILED:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("Log redaction gate PASSED\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
