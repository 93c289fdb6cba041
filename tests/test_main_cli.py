"""Tests for the main.py command line (argument parsing and create-user)."""

from __future__ import annotations

import pytest

import main
from auth.provider import StoreSessionProvider
from auth.store import UserStore


@pytest.fixture
def cli_provider(monkeypatch, store: UserStore, settings) -> StoreSessionProvider:
    """Point the CLI at the test store; keep it open after the command closes it."""
    provider = StoreSessionProvider(store, settings)
    monkeypatch.setattr(main, "_open_provider", lambda: provider)
    monkeypatch.setattr(store, "close", lambda: None)
    return provider


def test_no_command_prints_help(capsys) -> None:
    assert main.main([]) == 0
    assert "create-user" in capsys.readouterr().out


def test_serve_defaults() -> None:
    args = main.build_parser().parse_args(["serve"])
    assert (args.host, args.port, args.reload) == ("127.0.0.1", 8000, False)


def test_create_user(cli_provider: StoreSessionProvider, store: UserStore, capsys) -> None:
    args = main.build_parser().parse_args(["create-user", "Ada Lovelace", "Ada@Example.com"])
    assert main.cmd_create_user(args, password="correct horse battery") == 0
    assert "Ada Lovelace <ada@example.com>" in capsys.readouterr().out
    assert store.get_by_email("ada@example.com") is not None


def test_create_user_duplicate_email(cli_provider: StoreSessionProvider, capsys) -> None:
    args = main.build_parser().parse_args(["create-user", "Ada", "ada@example.com"])
    assert main.cmd_create_user(args, password="correct horse battery") == 0
    assert main.cmd_create_user(args, password="correct horse battery") == 1
    assert "already exists" in capsys.readouterr().err


def test_purge_sessions(cli_provider: StoreSessionProvider, capsys) -> None:
    assert main.main(["purge-sessions"]) == 0
    assert "Removed 0 expired session(s)." in capsys.readouterr().out


def test_create_user_password_over_byte_limit(cli_provider: StoreSessionProvider, store: UserStore, capsys) -> None:
    args = main.build_parser().parse_args(["create-user", "Ada", "ada@example.com"])
    assert main.cmd_create_user(args, password="é" * 60) == 1
    assert "72 bytes" in capsys.readouterr().err
    assert store.get_by_email("ada@example.com") is None
