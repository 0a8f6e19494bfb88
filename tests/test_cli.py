"""Tests for CLI commands."""

import pytest
import yaml
from pathlib import Path
from typer.testing import CliRunner

from sshkeystore import cli, config
from sshkeystore.cli import app
from sshkeystore.service import KeyRequestService


runner = CliRunner()

HOST_ARGS = ["--hostname", "host1", "--fqdn", "host1.example.com", "--ip", "192.0.2.10"]


@pytest.fixture(autouse=True)
def use_fake_keygen(monkeypatch, fake_keygen):
    """Make every service the CLI builds use the fake keygen."""
    original_init = KeyRequestService.__init__

    def init(self, settings=None, keygen=None, host=None):
        original_init(self, settings, keygen=fake_keygen, host=host)

    monkeypatch.setattr(KeyRequestService, "__init__", init)
    monkeypatch.delenv(config.CONFIG_ENV, raising=False)
    monkeypatch.delenv(config.BASE_PATH_ENV, raising=False)
    monkeypatch.setattr(config, "DEFAULT_CONFIG_PATH", Path("/nonexistent/sshkeystore.toml"))


def test_request_private_hostkey(tmp_path: Path):
    result = runner.invoke(app, [
        "request", "web1",
        "--request", "private",
        "--hostkey",
        "--dir", "ssh/hostkeys",
        "--base-path", str(tmp_path),
        *HOST_ARGS,
    ])

    assert result.exit_code == 0
    keypath = tmp_path / "ssh" / "hostkeys"
    assert result.stdout == (keypath / "web1").read_text()
    assert "host1,host1.example.com,192.0.2.10 " in (keypath / "known_hosts").read_text()


def test_request_with_aliases(tmp_path: Path):
    result = runner.invoke(app, [
        "request", "web1", "-r", "public", "--hostkey",
        "-a", "www", "-a", "web",
        "-b", str(tmp_path),
        *HOST_ARGS,
    ])

    assert result.exit_code == 0
    record = (tmp_path / "ssh" / "known_hosts").read_text().splitlines()[1]
    assert record.startswith("host1,host1.example.com,192.0.2.10,www,web ")


def test_request_known_hosts_without_name(tmp_path: Path):
    result = runner.invoke(app, ["request", "-r", "known_hosts", "-b", str(tmp_path), *HOST_ARGS])

    assert result.exit_code == 0
    assert result.stdout == "# managed by sshkeystore\n"


def test_request_missing_name(tmp_path: Path):
    result = runner.invoke(app, ["request", "-r", "public", "-b", str(tmp_path), *HOST_ARGS])

    assert result.exit_code == 1
    assert "name argument is required" in result.output


def test_request_path_conflict(tmp_path: Path):
    (tmp_path / "ssh").write_text("")

    result = runner.invoke(app, ["request", "web1", "-r", "public", "-b", str(tmp_path), *HOST_ARGS])

    assert result.exit_code == 1
    assert "is not a directory" in result.output


def test_request_uses_config_file(tmp_path: Path):
    settings = config.Settings(base_path=tmp_path / "keys", default_dir="users", default_type="ed25519")
    config_path = config.save_settings(settings, tmp_path / "config.toml")

    result = runner.invoke(app, ["request", "alice", "-r", "public", "-c", str(config_path), *HOST_ARGS])

    assert result.exit_code == 0
    assert result.stdout.startswith("ssh-ed25519 ")
    assert (tmp_path / "keys" / "users" / "alice.pub").exists()


def test_batch(tmp_path: Path):
    requests_file = tmp_path / "requests.yaml"
    requests_file.write_text(yaml.safe_dump([
        {"name": "web1", "request": "public", "hostkey": True},
        {"name": "backup", "request": "public", "authkey": True},
        {"request": "authorized_keys"},
    ]))

    result = runner.invoke(app, ["batch", str(requests_file), "-b", str(tmp_path / "keys"), *HOST_ARGS])

    assert result.exit_code == 0
    results = yaml.safe_load(result.stdout)
    assert [r["name"] for r in results] == ["web1", "backup", None]
    assert [r["request"] for r in results] == ["public", "public", "authorized_keys"]
    assert results[1]["result"] in results[2]["result"]


def test_batch_stops_at_invalid_request(tmp_path: Path):
    requests_file = tmp_path / "requests.yaml"
    requests_file.write_text(yaml.safe_dump([
        {"name": "web1", "request": "public"},
        {"request": "private"},
    ]))

    result = runner.invoke(app, ["batch", str(requests_file), "-b", str(tmp_path), *HOST_ARGS])

    assert result.exit_code == 1
    assert "request #2" in result.output


def test_batch_not_a_list(tmp_path: Path):
    requests_file = tmp_path / "requests.yaml"
    requests_file.write_text("name: web1\n")

    result = runner.invoke(app, ["batch", str(requests_file), "-b", str(tmp_path), *HOST_ARGS])

    assert result.exit_code == 1
    assert "must contain a list" in result.output


def test_list(tmp_path: Path):
    for name in ["web1", "db1"]:
        runner.invoke(app, ["request", name, "-r", "public", "--hostkey", "-b", str(tmp_path), *HOST_ARGS])

    result = runner.invoke(app, ["list", "-b", str(tmp_path)])

    assert result.exit_code == 0
    assert "2 keys" in result.stdout
    assert "  db1\n  web1\n" in result.stdout


def test_init_config(tmp_path: Path):
    config_path = tmp_path / "config.toml"

    result = runner.invoke(app, ["init-config", str(config_path), "--base-path", "/srv/keys"])

    assert result.exit_code == 0
    assert "Wrote settings" in result.stdout
    assert config.load_settings(config_path).base_path == Path("/srv/keys")


def test_init_config_refuses_overwrite(tmp_path: Path):
    config_path = tmp_path / "config.toml"
    config_path.write_text("")

    result = runner.invoke(app, ["init-config", str(config_path)])

    assert result.exit_code == 1
    assert "already exists" in result.stdout


def test_host_facts_given_explicitly():
    """Fully specified facts skip detection."""
    facts = cli._host_facts("web1", "web1.example.com", "192.0.2.5")

    assert facts.hostname == "web1"
    assert facts.fqdn == "web1.example.com"
    assert facts.ip_address == "192.0.2.5"


def test_batch_wrong_typed_field(tmp_path: Path):
    requests_file = tmp_path / "requests.yaml"
    requests_file.write_text("- name: web1\n  request: public\n  bits: '2048'\n")

    result = runner.invoke(app, ["batch", str(requests_file), "-b", str(tmp_path), *HOST_ARGS])

    assert result.exit_code == 1
    assert "request #1: invalid key size '2048'" in result.output
