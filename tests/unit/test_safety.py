"""Unit tests for the production gate, the pull lock and the audit log."""

import json

import pytest

from dbpull.core.audit import AuditEventType, AuditLogger, AuditResult
from dbpull.core.exceptions import SafetyError
from dbpull.core.safety import ProductionDetector, PullLock, check_production_gate


class TestProductionGate:
    """Tests for check_production_gate()."""

    def test_configured_production(self, monkeypatch):
        monkeypatch.delenv("APP_ENV", raising=False)
        monkeypatch.delenv("ENVIRONMENT", raising=False)
        detector = ProductionDetector(environment="Production")

        with pytest.raises(SafetyError) as exc:
            check_production_gate(detector, force=False)

        assert exc.value.hint == "Use --force to proceed"
        assert "Configured environment is 'Production'" in exc.value.details

    def test_force(self):
        check_production_gate(ProductionDetector(environment="production"), force=True)


class TestPullLock:
    """Tests for PullLock."""

    def test_writes_pid_and_releases(self, tmp_path):
        path = tmp_path / "backups" / ".dbpull.lock"

        with PullLock(path) as lock:
            assert lock.held
            assert path.read_text().isdigit()

        assert not lock.held

    def test_second_holder_refused(self, tmp_path):
        path = tmp_path / ".dbpull.lock"

        with PullLock(path):
            with pytest.raises(SafetyError) as exc:
                PullLock(path).acquire()

        assert str(path) in exc.value.hint
        PullLock(path).acquire()

    def test_release_without_acquire(self, tmp_path):
        PullLock(tmp_path / ".dbpull.lock").release()


class TestAuditLogger:
    """Tests for AuditLogger."""

    def read(self, audit: AuditLogger) -> list[dict]:
        return [json.loads(line) for line in audit.log_path.read_text().splitlines()]

    def test_writes_json_lines(self, audit):
        audit.log_operation(
            AuditEventType.PULL_START,
            AuditResult.PENDING,
            "app_local",
            parameters={"remote_host": "prod.example.com"},
        )

        [entry] = self.read(audit)
        assert entry["event_type"] == "pull.start"
        assert entry["result"] == "pending"
        assert entry["target"] == {"type": "database", "name": "app_local"}
        assert entry["operation"] == "pull"
        assert entry["session_id"] == audit.session_id
        assert entry["correlation_id"] is None

    def test_redacts_secrets(self, audit):
        audit.log_operation(
            AuditEventType.PULL_START,
            AuditResult.PENDING,
            "app_local",
            parameters={"password": "s3cret", "nested": {"ssh_key": "/k"}, "timeout": 5},
        )

        text = audit.log_path.read_text()
        [entry] = self.read(audit)
        assert "s3cret" not in text
        assert entry["parameters"]["password"] == "***REDACTED***"
        assert entry["parameters"]["nested"]["ssh_key"] == "***REDACTED***"
        assert entry["parameters"]["timeout"] == 5

    def test_correlation(self, audit):
        with audit.correlation("pull") as corr_id:
            audit.log_blocked("Refusing to run in production.", "app_local")
            audit.log_blocked("again", "app_local")
        audit.log_blocked("outside")

        entries = self.read(audit)
        assert corr_id.startswith("pull_")
        assert [e["correlation_id"] for e in entries] == [corr_id, corr_id, None]
        assert entries[0]["result"] == "blocked"

    def test_disabled(self, tmp_path):
        audit = AuditLogger(log_path=tmp_path / "audit.log", enabled=False)
        audit.log_blocked("nothing")
        assert not audit.log_path.exists()

    def test_rotation(self, tmp_path):
        audit = AuditLogger(log_path=tmp_path / "audit.log", max_size_mb=0, backup_count=2)

        audit.log_blocked("first")
        audit.log_blocked("second")

        assert (tmp_path / "audit.1").exists()
        assert (tmp_path / "audit.2").exists()
        assert audit.log_path.read_text() == ""

    def test_unwritable_location_is_ignored(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        audit = AuditLogger(log_path=blocker / "audit.log")

        audit.log_blocked("still fine")
