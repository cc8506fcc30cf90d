"""
test_main.py

End-to-end tests for the machine CLI.

Uses typer's CliRunner (in-process) with a temporary --storage-path and a
mocked Atlantic.Net client, so:
  - No network access and no real servers.
  - The JSON store written by 'create' is read back by the other commands.

Run:  pytest test_main.py
"""

import json
import os
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from drivers.atlanticnet_api import (
    Instance,
    Plan,
    RebootResult,
    RunInstanceResult,
    SSHKey,
    TerminateResult,
)
from main import app

ENV = {
    "ATLANTIC_NET_API_KEY": None,
    "ATLANTIC_NET_API_SECRET": None,
    "ATLANTIC_NET_SSH_KEY_ID": None,
    "ATLANTIC_NET_VM_LOCATION": None,
    "MACHINE_STORAGE_PATH": None,
    "COLUMNS": "200",
}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def runner():
    return CliRunner(env=ENV)


@pytest.fixture
def api():
    client = MagicMock()
    client.list_ssh_keys.return_value = [SSHKey(key_id="42")]
    client.describe_plan.return_value = [Plan(plan_name="XS")]
    client.run_instance.return_value = [
        RunInstanceResult(instanceid="555", ip_address="5.6.7.8", password="pw"),
    ]
    client.describe_instance.return_value = Instance(InstanceId="555", vm_status="RUNNING")
    client.terminate_instance.return_value = [TerminateResult(InstanceId="555", result="true")]
    client.reboot_instance.return_value = RebootResult(value="true")
    with patch("drivers.atlanticnet.new_client", return_value=client):
        yield client


@pytest.fixture
def local_key(tmp_path):
    key = tmp_path / "id_rsa"
    key.write_text("PRIVATE")
    return str(key)


def invoke(runner, tmp_path, *args, **kwargs):
    return runner.invoke(app, ["--storage-path", str(tmp_path / "store"), *args], **kwargs)


def create_machine(runner, tmp_path, local_key, name="m1"):
    return invoke(
        runner, tmp_path, "create", name,
        "--atlantic-net-api-key", "KEY",
        "--atlantic-net-api-secret", "SECRET",
        "--atlantic-net-ssh-key-id", "42",
        "--atlantic-net-ssh-key-path", local_key,
    )


def stored_config(tmp_path, name="m1"):
    with open(tmp_path / "store" / "machines" / name / "config.json") as f:
        return json.load(f)


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------

def test_create_requires_api_key(runner, tmp_path, api):
    result = invoke(runner, tmp_path, "create", "m1")

    assert result.exit_code == 1, result.output
    assert "--atlantic-net-api-key" in result.output
    api.list_ssh_keys.assert_not_called()
    assert not os.path.exists(tmp_path / "store" / "machines" / "m1")


def test_create_saves_machine(runner, tmp_path, api, local_key):
    result = create_machine(runner, tmp_path, local_key)

    assert result.exit_code == 0, result.output
    config = stored_config(tmp_path)
    assert config["driver"] == "atlanticnet"
    assert config["instance_id"] == "555"
    assert config["ip_address"] == "5.6.7.8"
    assert config["vm_location"] == "USWEST1"
    assert (tmp_path / "store" / "machines" / "m1" / "id_rsa").read_text() == "PRIVATE"
    request = api.run_instance.call_args[0][0]
    assert request.server_name == "m1"


def test_create_reads_credentials_from_env(tmp_path, api, local_key):
    runner = CliRunner(env={**ENV, "ATLANTIC_NET_API_KEY": "K", "ATLANTIC_NET_API_SECRET": "S"})
    result = invoke(
        runner, tmp_path, "create", "m1",
        "--atlantic-net-ssh-key-id", "42",
        "--atlantic-net-ssh-key-path", local_key,
    )
    assert result.exit_code == 0, result.output
    assert stored_config(tmp_path)["api_key"] == "K"


def test_create_rejects_invalid_region(runner, tmp_path, api, local_key):
    result = invoke(
        runner, tmp_path, "create", "m1",
        "--atlantic-net-api-key", "KEY",
        "--atlantic-net-api-secret", "SECRET",
        "--atlantic-net-vm-location", "MARS1",
    )
    assert result.exit_code == 1
    assert "MARS1" in result.output
    api.run_instance.assert_not_called()


def test_create_refuses_existing_machine(runner, tmp_path, api, local_key):
    assert create_machine(runner, tmp_path, local_key).exit_code == 0
    result = create_machine(runner, tmp_path, local_key)
    assert result.exit_code == 1
    assert "already exists" in result.output
    assert api.run_instance.call_count == 1


# ---------------------------------------------------------------------------
# queries
# ---------------------------------------------------------------------------

def test_status_ip_and_url(runner, tmp_path, api, local_key):
    create_machine(runner, tmp_path, local_key)

    status = invoke(runner, tmp_path, "status", "m1")
    assert status.exit_code == 0, status.output
    assert "RUNNING" in status.output

    ip = invoke(runner, tmp_path, "ip", "m1")
    assert ip.output.strip() == "5.6.7.8"

    url = invoke(runner, tmp_path, "url", "m1")
    assert url.output.strip() == "tcp://5.6.7.8:2376"


def test_url_fails_when_not_running(runner, tmp_path, api, local_key):
    create_machine(runner, tmp_path, local_key)
    api.describe_instance.return_value = Instance(InstanceId="555", vm_status="STOPPED")

    result = invoke(runner, tmp_path, "url", "m1")

    assert result.exit_code == 1
    assert "not running" in result.output


def test_unknown_machine(runner, tmp_path, api):
    result = invoke(runner, tmp_path, "status", "ghost")
    assert result.exit_code == 1
    assert "does not exist" in result.output


# ---------------------------------------------------------------------------
# power operations
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("command", ["start", "stop", "kill"])
def test_power_commands_are_refused(runner, tmp_path, api, local_key, command):
    create_machine(runner, tmp_path, local_key)
    result = invoke(runner, tmp_path, command, "m1")
    assert result.exit_code == 1
    assert "restart" in result.output


def test_restart(runner, tmp_path, api, local_key):
    create_machine(runner, tmp_path, local_key)
    result = invoke(runner, tmp_path, "restart", "m1")
    assert result.exit_code == 0, result.output
    api.reboot_instance.assert_called_once_with("555", "soft")


# ---------------------------------------------------------------------------
# rm
# ---------------------------------------------------------------------------

def test_rm_force_removes_store(runner, tmp_path, api, local_key):
    create_machine(runner, tmp_path, local_key)

    result = invoke(runner, tmp_path, "rm", "m1", "--force")

    assert result.exit_code == 0, result.output
    api.terminate_instance.assert_called_once_with("555")
    assert not os.path.exists(tmp_path / "store" / "machines" / "m1")


def test_rm_keeps_store_when_terminate_fails(runner, tmp_path, api, local_key):
    create_machine(runner, tmp_path, local_key)
    api.terminate_instance.return_value = [TerminateResult(InstanceId="555", result="false")]

    result = invoke(runner, tmp_path, "rm", "m1", "--force")

    assert result.exit_code == 1
    assert "555" in result.output
    assert os.path.exists(tmp_path / "store" / "machines" / "m1" / "config.json")


def test_rm_asks_for_confirmation(runner, tmp_path, api, local_key):
    create_machine(runner, tmp_path, local_key)

    result = invoke(runner, tmp_path, "rm", "m1", input="n\n")

    assert result.exit_code != 0
    api.terminate_instance.assert_not_called()


# ---------------------------------------------------------------------------
# flags
# ---------------------------------------------------------------------------

def test_flags_lists_create_options(runner, tmp_path):
    result = invoke(runner, tmp_path, "flags")
    assert result.exit_code == 0, result.output
    assert "ATLANTIC_NET_API_KEY" in result.output
    assert "USWEST1" in result.output


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
