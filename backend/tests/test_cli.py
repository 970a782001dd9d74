import pytest

from docshare import cli
from docshare.credentials import verify_bearer
from docshare.models import User


@pytest.fixture()
def cli_db(monkeypatch, session_factory):
    monkeypatch.setattr(cli, "SessionLocal", session_factory)
    monkeypatch.setattr(cli, "init_db", lambda: None)


def test_create_user_with_token(cli_db, db_session, capsys):
    code = cli.main(
        ["--username", "dave", "--email", "dave@example.com", "--password", "dave-pass", "--token-name", "sync"]
    )
    assert code == 0

    out = capsys.readouterr().out
    assert "User created" in out
    token_line = next(line for line in out.splitlines() if line.startswith("API token (sync): "))
    secret = token_line.split(": ", 1)[1]

    user = db_session.query(User).filter(User.username == "dave").one()
    assert verify_bearer(db_session, secret).user_id == user.id


def test_create_user_without_token(cli_db, capsys):
    assert cli.main(["--username", "erin", "--email", "erin@example.com", "--password", "erin-pass"]) == 0
    assert "API token" not in capsys.readouterr().out


def test_duplicate_user_reports_error(cli_db, user, capsys):
    code = cli.main(["--username", "alice", "--email", "alice@example.com", "--password", "whatever"])
    assert code == 1
    assert "error: Username or email already exists" in capsys.readouterr().err
