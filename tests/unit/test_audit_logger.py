"""Tests for the audit logger."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path

import pytest

from src.audit.logger import AuditLogger, validate_audit_chain
from src.models import AuditEventType, RiskLevel
from tests.conftest import make_audit_event


@pytest.fixture
def log_file(tmp_path: Path) -> Path:
    return tmp_path / "audit" / "relay.jsonl"


def test_log_writes_one_json_line(log_file: Path) -> None:
    AuditLogger(str(log_file)).log(make_audit_event(recipient_id=42, source_ip="10.0.0.1"))

    lines = log_file.read_text().strip().split("\n")
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["event_type"] == "webhook_forbidden"
    assert record["risk_level"] == "high"
    assert record["recipient_id"] == 42
    assert record["source_ip"] == "10.0.0.1"
    assert "T" in record["timestamp"]


def test_records_append_in_order(log_file: Path) -> None:
    audit = AuditLogger(str(log_file))
    audit.log(make_audit_event(event_type=AuditEventType.WEBHOOK_ACCEPTED, risk_level=RiskLevel.INFO))
    audit.log(make_audit_event(event_type=AuditEventType.TOKEN_RESET, risk_level=RiskLevel.MEDIUM))

    types = [json.loads(line)["event_type"] for line in log_file.read_text().strip().split("\n")]
    assert types == ["webhook_accepted", "token_reset"]


def test_hash_chain_links_consecutive_records(log_file: Path) -> None:
    audit = AuditLogger(str(log_file))
    audit.log(make_audit_event(action="first"))
    audit.log(make_audit_event(action="second"))

    lines = log_file.read_text().strip().split("\n")
    assert json.loads(lines[0])["prev_hash"] is None
    assert json.loads(lines[1])["prev_hash"] == hashlib.sha256(lines[0].encode()).hexdigest()


def test_chain_continues_after_reopen(log_file: Path) -> None:
    AuditLogger(str(log_file)).log(make_audit_event(action="first"))
    AuditLogger(str(log_file)).log(make_audit_event(action="second"))
    assert validate_audit_chain(log_file).valid


def test_validate_detects_tampering(log_file: Path) -> None:
    audit = AuditLogger(str(log_file))
    for i in range(4):
        audit.log(make_audit_event(action=f"POST /webhook/{i}"))

    lines = log_file.read_text().strip().split("\n")
    lines[1] = lines[1].replace("/webhook/1", "/webhook/9")
    log_file.write_text("\n".join(lines) + "\n")

    result = validate_audit_chain(log_file)
    assert not result.valid
    assert result.broken_at_line == 3


def test_validate_empty_file(log_file: Path) -> None:
    log_file.parent.mkdir(parents=True)
    log_file.write_text("")
    assert validate_audit_chain(log_file).valid


def test_rotation_keeps_bounded_backups(log_file: Path) -> None:
    audit = AuditLogger(str(log_file), max_bytes=200, backup_count=2)
    for i in range(30):
        audit.log(make_audit_event(action=f"event-{i}"))
    assert log_file.with_name("relay.jsonl.1").exists()
    assert not log_file.with_name("relay.jsonl.3").exists()


def test_from_env_reads_rotation_settings(monkeypatch: pytest.MonkeyPatch, log_file: Path) -> None:
    monkeypatch.setenv("AUDIT_LOG_MAX_BYTES", "1024")
    monkeypatch.setenv("AUDIT_LOG_BACKUP_COUNT", "3")
    audit = AuditLogger.from_env(str(log_file))
    assert audit._max_bytes == 1024
    assert audit._backup_count == 3
