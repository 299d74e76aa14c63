"""Operator CLI commands against the test database."""

from datetime import timedelta

import pytest
from sqlalchemy.orm import sessionmaker
from typer.testing import CliRunner

from gatekeepr.cli import app
from gatekeepr.models.user import User
from gatekeepr.schemas.schemas import DirectGrantRequest
from gatekeepr.services.access_service import access_service
from gatekeepr.services.audit_service import utcnow

runner = CliRunner()


@pytest.fixture
def cli_db(engine, db_session, monkeypatch):
    """Point the CLI's session factory at the seeded test engine."""
    monkeypatch.setattr("gatekeepr.db.session.SessionLocal", sessionmaker(bind=engine))
    return db_session


def test_setup_runs_once(cli_db):
    result = runner.invoke(app, ["setup", "--email", "ops@example.com", "--password", "long-enough"])
    assert result.exit_code == 0
    assert "ops@example.com" in result.output
    assert cli_db.query(User).filter(User.email == "ops@example.com").count() == 1

    again = runner.invoke(app, ["setup", "--email", "other@example.com", "--password", "long-enough"])
    assert again.exit_code == 1
    assert "System already initialized" in again.output


def test_access_check_and_expired(cli_db, member, admin):
    assert runner.invoke(app, ["access", "expired"]).output.strip() == "No expired grants"

    access_service.direct_grant(
        cli_db, admin.id,
        DirectGrantRequest(user_id=member.id, target_type="tool", target_id=5, duration_minutes=30),
        now=utcnow() - timedelta(hours=1),
    )
    access_service.direct_grant(
        cli_db, admin.id, DirectGrantRequest(user_id=member.id, target_type="tool", target_id=6)
    )

    expired = runner.invoke(app, ["access", "expired"])
    assert member.email in expired.output
    assert "tool:5" in expired.output

    assert runner.invoke(app, ["access", "check", str(member.id), "tool", "6"]).exit_code == 0
    assert runner.invoke(app, ["access", "check", str(member.id), "tool", "5"]).exit_code == 1


def test_db_create_requires_mysql(monkeypatch):
    monkeypatch.setattr("gatekeepr.core.config.settings.DATABASE_URL", "sqlite://")
    result = runner.invoke(app, ["db", "create"])
    assert result.exit_code == 1
    assert "not a MySQL URL" in result.output
