#!/usr/bin/env python3
"""Log safety gate for evoinbox source files.

Fails if, anywhere under src/:
- print( is used in runtime code
- a logger call's message is not a plain string literal (f-strings and
  %-args can carry phone numbers or message text)
- a logger call passes `extra` whose `extra_fields` is not built by
  safe_log_context(...)
- a logger call references a sensitive name (sender number, message text,
  raw webhook data) outside of safe_log_context(...)

Usage:
    python scripts/gate_security_pii.py
"""

import ast
import sys
from pathlib import Path

# Names that must never reach a log record unredacted
SENSITIVE_NAMES = frozenset(
    {
        "body",
        "content",
        "number",
        "payload",
        "phone",
        "push_name",
        "qr_payload",
        "recipient",
        "recipient_phone",
        "remote_jid",
        "remote_phone",
        "text",
    }
)

LOG_METHODS = frozenset({"debug", "info", "warning", "error", "critical", "exception"})

REDACTION_CALLS = frozenset({"safe_log_context", "redact_value", "redact_string", "mask_tail"})


def _call_name(node: ast.Call) -> str:
    func = node.func
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


def _sensitive_refs(node: ast.AST) -> list[str]:
    """Sensitive identifiers in `node`, skipping redaction call subtrees."""
    if isinstance(node, ast.Call) and _call_name(node) in REDACTION_CALLS:
        return []
    found = []
    if isinstance(node, ast.Name) and node.id in SENSITIVE_NAMES:
        found.append(node.id)
    elif isinstance(node, ast.Attribute) and node.attr in SENSITIVE_NAMES:
        found.append(node.attr)
    for child in ast.iter_child_nodes(node):
        found.extend(_sensitive_refs(child))
    return found


def _check_logger_call(node: ast.Call) -> list[str]:
    problems = []

    if not node.args or not (
        isinstance(node.args[0], ast.Constant) and isinstance(node.args[0].value, str)
    ):
        problems.append("log message must be a string literal")
    elif len(node.args) > 1:
        problems.append("log message must not take %-style arguments")

    for keyword in node.keywords:
        if keyword.arg != "extra":
            continue
        if not isinstance(keyword.value, ast.Dict):
            problems.append("extra must be a dict literal")
            continue
        for key, value in zip(keyword.value.keys, keyword.value.values):
            if (
                isinstance(key, ast.Constant)
                and key.value == "extra_fields"
                and not (isinstance(value, ast.Call) and _call_name(value) == "safe_log_context")
            ):
                problems.append("extra_fields must be built with safe_log_context")

    for name in sorted(set(_sensitive_refs(node))):
        problems.append(f"'{name}' logged without redaction")

    return problems


def check_source(source: str, filename: str = "<string>") -> list[str]:
    """Check Python source text. Returns list of error messages."""
    tree = ast.parse(source, filename=filename)
    errors = []

    for node in ast.walk(tree):
        if not isinstance(node, ast.Call):
            continue
        if isinstance(node.func, ast.Name) and node.func.id == "print":
            errors.append(f"{filename}:{node.lineno}: print() not allowed in runtime code")
        elif _is_logger_call(node):
            for problem in _check_logger_call(node):
                errors.append(f"{filename}:{node.lineno}: {problem}")

    return errors


def check_file(filepath: Path) -> list[str]:
    """Check a single file for violations. Returns list of error messages."""
    return check_source(filepath.read_text(encoding="utf-8"), str(filepath))


def main() -> int:
    """Run gate check on src directory."""
    src_dir = Path(__file__).resolve().parent.parent / "src"

    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))

    if all_errors:
        sys.stderr.write("Log safety gate FAILED:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("Log safety gate PASSED\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
