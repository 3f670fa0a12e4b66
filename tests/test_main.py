"""Tests for the command-line entry point."""

import pytest

import znodewatch.__main__ as cli
from znodewatch.observer import StateObserver


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("observer:\n  hosts: zk.test:2181\n  depth: 1\n")
    return path


@pytest.fixture
def in_memory_cli(monkeypatch, service):
    def build(config, registry):
        return StateObserver(config, registry, client_factory=service.client)

    monkeypatch.setattr(cli, "StateObserver", build)
    return service


def test_invalid_config_exits_with_2(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--config", str(tmp_path / "missing.yaml")])

    assert excinfo.value.code == 2


def test_fetch_prints_node_data(config_file, in_memory_cli, capsys):
    in_memory_cli.create("/cfg", b"value")

    cli.main(["--config", str(config_file), "--fetch", "/cfg"])

    assert capsys.readouterr().out.strip() == "value"
    assert in_memory_cli.live_clients == []


def test_fetch_missing_node_exits_with_1(config_file, in_memory_cli):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--config", str(config_file), "--fetch", "/missing"])

    assert excinfo.value.code == 1


def test_unreachable_service_exits_with_1(config_file, in_memory_cli):
    in_memory_cli.refuse_connections = True

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--config", str(config_file), "--fetch", "/cfg"])

    assert excinfo.value.code == 1
