"""Tests for the log safety gate and a run of it over the evoinbox sources."""

from pathlib import Path

import pytest

from scripts.gate_security_pii import check_file, check_source

SRC_DIR = Path(__file__).resolve().parents[1] / "src" / "evoinbox"


def test_evoinbox_sources_pass():
    errors = []
    for pyfile in sorted(SRC_DIR.rglob("*.py")):
        errors.extend(check_file(pyfile))

    assert errors == []


def test_redacted_call_passes():
    source = (
        "logger.info(\n"
        "    'message ingested',\n"
        "    extra={'extra_fields': safe_log_context(data=payload, tail=mask_tail(phone))},\n"
        ")\n"
    )

    assert check_source(source) == []


@pytest.mark.parametrize(
    "source, problem",
    [
        ("print(record)\n", "print()"),
        ("logger.info(f'from {x}')\n", "string literal"),
        ("logger.info('from %s', x)\n", "%-style"),
        ("logger.info('x', extra={'extra_fields': {'a': 1}})\n", "safe_log_context"),
        ("logger.info('x', extra=ctx)\n", "dict literal"),
        ("logger.error('send failed', extra={'extra_fields': safe_log_context()}, exc_info=record.remote_phone)\n", "'remote_phone'"),
        ("logger.warning('bad', extra={'extra_fields': safe_log_context(), 'raw': text})\n", "'text'"),
    ],
)
def test_violations_reported(source, problem):
    errors = check_source(source, "sample.py")

    assert errors
    assert problem in errors[0]
    assert errors[0].startswith("sample.py:1:")


def test_other_loggers_ignored():
    assert check_source("log.info(f'{text}')\n") == []
