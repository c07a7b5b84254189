#!/usr/bin/env python3
"""Gate: contact data must never reach logs or stdout.

Fails if, in runtime code (src/**):
- print( is called
- a logger call passes a sensitive value (message text, phone, sender ids,
  raw payloads) that is not wrapped in a hashing/redaction helper or len()

Usage:
    python scripts/gate_security_pii.py
"""

from __future__ import annotations

import ast
import sys
from pathlib import Path

# Identifiers that hold contact data
SENSITIVE_NAMES = frozenset(
    {
        "content",
        "text",
        "phone",
        "payload",
        "body",
        "body_bytes",
        "sender_id",
        "channel_native_id",
        "legacy_display_id",
        "display_name",
        "display_name_hint",
        "recipient_id",
        "subscriber_id",
        "access_token",
        "page_access_token",
    }
)

# Calls whose result is safe to log
SAFE_WRAPPERS = frozenset(
    {"hash_identifier", "safe_log_context", "redact_value", "redact_string", "len", "bool"}
)

LOG_METHODS = frozenset({"debug", "info", "warning", "error", "critical", "exception"})


def _call_name(func: ast.expr) -> str:
    if isinstance(func, ast.Name):
        return func.id
    if isinstance(func, ast.Attribute):
        return func.attr
    return ""


def _is_logger_call(node: ast.Call) -> bool:
    func = node.func
    return (
        isinstance(func, ast.Attribute)
        and func.attr in LOG_METHODS
        and isinstance(func.value, ast.Name)
        and func.value.id == "logger"
    )


def _unsafe_refs(node: ast.AST, wrapped: bool = False) -> list[str]:
    """Sensitive identifiers referenced outside a safe wrapper."""
    if isinstance(node, ast.Call):
        inner = wrapped or _call_name(node.func) in SAFE_WRAPPERS
        found: list[str] = []
        for child in [*node.args, *(k.value for k in node.keywords)]:
            found.extend(_unsafe_refs(child, inner))
        return found
    if isinstance(node, ast.Name):
        return [node.id] if node.id in SENSITIVE_NAMES and not wrapped else []
    if isinstance(node, ast.Attribute):
        # Only the last attribute names the value (event.content -> content)
        return [node.attr] if node.attr in SENSITIVE_NAMES and not wrapped else []

    found = []
    for child in ast.iter_child_nodes(node):
        found.extend(_unsafe_refs(child, wrapped))
    return found


def check_source(source: str, filename: str = "<string>") -> list[str]:
    """Check source text. Returns list of error messages."""
    try:
        tree = ast.parse(source, filename=filename)
    except SyntaxError as exc:
        return [f"{filename}:{exc.lineno}: syntax error"]

    errors = []
    for node in ast.walk(tree):
        if not isinstance(node, ast.Call):
            continue
        if isinstance(node.func, ast.Name) and node.func.id == "print":
            errors.append(f"{filename}:{node.lineno}: print() not allowed in runtime code")
        elif _is_logger_call(node):
            for name in sorted(set(_unsafe_refs(node))):
                errors.append(
                    f"{filename}:{node.lineno}: logger call with '{name}' "
                    "must hash or redact it (hash_identifier/safe_log_context/len)"
                )
    return errors


def check_file(filepath: Path) -> list[str]:
    try:
        source = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []
    return check_source(source, str(filepath))


def main(src_dir: Path | None = None) -> int:
    """Run the gate over src/. Returns a process exit code."""
    if src_dir is None:
        src_dir = Path(__file__).resolve().parent.parent / "src"

    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))

    if all_errors:
        sys.stderr.write("PII gate FAILED:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("PII gate PASSED\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
