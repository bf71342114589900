"""
tests/test_cli.py -- Tests for the administrative command line (main.py).

Each test points --database-url at a fresh SQLite file under tmp_path.
"""

from __future__ import annotations

import io
from datetime import datetime, timedelta, timezone

import pytest

from auth.models import RefreshToken
from auth.store import CredentialStore
from auth.tokens import verify_password
from main import build_parser, main


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cli.db'}"


def test_no_command_prints_help(capsys) -> None:
    assert main([]) == 0
    assert "usage: orbit-auth" in capsys.readouterr().out


def test_parser_defaults() -> None:
    args = build_parser().parse_args(["create-user", "a@example.com", "--name", "A"])
    assert args.role == "sales_agent"
    assert args.password_stdin is False


def test_seed_twice(db_url, capsys) -> None:
    assert main(["--database-url", db_url, "seed"]) == 0
    first = capsys.readouterr().out
    assert "Roles created:       2" in first
    assert "admin@shoporbit.com" in first

    assert main(["--database-url", db_url, "seed"]) == 0
    second = capsys.readouterr().out
    assert "Roles created:       0" in second
    assert "Admin user" not in second


def test_create_user_from_stdin(db_url, monkeypatch, capsys) -> None:
    main(["--database-url", db_url, "seed"])
    monkeypatch.setattr("sys.stdin", io.StringIO("Stdin-Pass-123\n"))

    rc = main(["--database-url", db_url, "create-user", "Carol@Example.com", "--name", "Carol", "--password-stdin"])

    assert rc == 0
    assert "Created carol@example.com (Sales Agent)" in capsys.readouterr().out
    store = CredentialStore(db_url)
    try:
        user = store.get_user_by_email("carol@example.com")
        assert verify_password("Stdin-Pass-123", user.password_hash)
    finally:
        store.close()


def test_create_user_unknown_role(db_url, monkeypatch, capsys) -> None:
    main(["--database-url", db_url, "seed"])
    monkeypatch.setattr("sys.stdin", io.StringIO("Stdin-Pass-123\n"))
    rc = main(["--database-url", db_url, "create-user", "d@example.com", "--name", "D", "--role", "nope", "--password-stdin"])
    assert rc == 1
    assert "No role with key 'nope'" in capsys.readouterr().out


def test_create_user_reports_field_errors(db_url, monkeypatch, capsys) -> None:
    main(["--database-url", db_url, "seed"])
    monkeypatch.setattr("sys.stdin", io.StringIO("short\n"))
    rc = main(["--database-url", db_url, "create-user", "e@example.com", "--name", "E", "--password-stdin"])
    assert rc == 1
    assert "password:" in capsys.readouterr().out


def test_purge_tokens(db_url, capsys) -> None:
    main(["--database-url", db_url, "seed"])
    store = CredentialStore(db_url)
    try:
        admin = store.get_user_by_email("admin@shoporbit.com")
        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat(timespec="microseconds")
        store.create_refresh_token(RefreshToken(user_id=admin.id, token_hash="9" * 64, expires_at=past))
    finally:
        store.close()
    capsys.readouterr()

    assert main(["--database-url", db_url, "purge-tokens"]) == 0
    assert "Purged 1 expired or revoked" in capsys.readouterr().out
