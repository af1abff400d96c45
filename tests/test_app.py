"""Tests for the event bus and application wiring."""

from __future__ import annotations

import json

import pytest

from app import build_parser, build_services, main
from config import AppConfig
from conftest import SELLER, run
from models import STATUS_PENDING
from services.realtime import SessionEventBus


class Row:
    def __init__(self, session_id, status=STATUS_PENDING):
        self.session_id = session_id
        self.status = status


def test_event_bus_delivers_per_session():
    bus = SessionEventBus()
    seen = []
    sub = bus.subscribe("a", lambda s: seen.append(("a", s.status)))
    bus.subscribe("b", lambda s: seen.append(("b", s.status)))

    assert bus.publish(Row("a")) == 1
    sub.unsubscribe()
    sub.unsubscribe()
    assert bus.publish(Row("a")) == 0
    assert bus.subscriber_count("a") == 0
    assert seen == [("a", STATUS_PENDING)]


def test_failing_subscriber_does_not_block_others(caplog):
    bus = SessionEventBus()
    seen = []

    def broken(session):
        raise RuntimeError("boom")

    bus.subscribe("a", broken)
    bus.subscribe("a", lambda s: seen.append(s.status))

    assert bus.publish(Row("a")) == 1
    assert seen == [STATUS_PENDING]
    assert "boom" in caplog.text


def test_build_services(tmp_path):
    config = AppConfig(data_dir=str(tmp_path), webhook_url="https://hooks.example/qr")
    services = build_services(config)

    assert services.chain.chain_id == 43113
    assert services.notifier is not None
    assert services.vault.vault_path.parent == tmp_path / "wallets"
    assert services.sessions.ttl_ms == config.session_ttl_ms
    run(services.aclose())


def test_build_services_rejects_unknown_chain(tmp_path):
    with pytest.raises(ValueError):
        build_services(AppConfig(chain_id=1, data_dir=str(tmp_path)))


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])
    args = build_parser().parse_args(["create-session", SELLER, "--amount", "5000000"])
    assert args.command == "create-session"
    assert args.amount == "5000000"


def test_cli_create_session_and_status(tmp_path, capsys, monkeypatch):
    monkeypatch.setenv("BREWFI_DATA_DIR", str(tmp_path))
    settings = tmp_path / "settings.json"

    assert main(["--settings", str(settings), "create-session", SELLER, "--amount", "5000000"]) == 0
    created = json.loads(capsys.readouterr().out)
    qr = json.loads(created["qr"])
    assert qr["amount"] == "5000000"

    assert main(["--settings", str(settings), "status", qr["sessionId"]]) == 0
    status = json.loads(capsys.readouterr().out)
    assert status["status"] == STATUS_PENDING
    assert status["session_id"] == qr["sessionId"]
