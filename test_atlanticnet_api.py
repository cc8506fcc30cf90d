"""
test_atlanticnet_api.py

Tests for the Atlantic.Net API client.

A MagicMock stands in for requests.Session, so the tests check exactly
which query parameters were sent and how canned JSON bodies are parsed.

Run:  pytest test_atlanticnet_api.py
"""

import base64
import hashlib
import hmac
from unittest.mock import MagicMock

import pytest

from drivers.atlanticnet_api import (
    API_ENDPOINT,
    REBOOT_TYPE_HARD,
    Client,
    RunInstanceRequest,
    items,
)
from drivers.errors import ApiError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_client(body, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.text = str(body)
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    session = MagicMock()
    session.get.return_value = response
    client = Client("KEY", "SECRET", session=session, clock=lambda: 1700000000.5)
    return client, session


def sent_params(session):
    return session.get.call_args.kwargs["params"]


# ---------------------------------------------------------------------------
# Signing and transport
# ---------------------------------------------------------------------------

def test_signature_is_hmac_sha256_of_timestamp_and_guid():
    client = Client("KEY", "SECRET")
    expected = base64.b64encode(
        hmac.new(b"SECRET", b"1700000000abc-123", hashlib.sha256).digest()
    ).decode()
    assert client.sign("1700000000", "abc-123") == expected


def test_request_carries_auth_parameters():
    client, session = make_client({"list-sshkeysresponse": {"KeysSet": {}}})
    client.list_ssh_keys()

    assert session.get.call_args.args[0] == API_ENDPOINT
    params = sent_params(session)
    assert params["Action"] == "list-sshkeys"
    assert params["Format"] == "json"
    assert params["Version"] == "2010-12-30"
    assert params["ACSAccessKeyId"] == "KEY"
    assert params["Timestamp"] == "1700000000"
    assert params["Signature"] == client.sign(params["Timestamp"], params["Rndguid"])


def test_session_is_lazy():
    client = Client("KEY", "SECRET")
    assert client._session is None
    assert client.session is client.session


def test_api_error_body_raises():
    client, _ = make_client({"error": {"code": "E0001", "message": "Invalid signature"}})
    with pytest.raises(ApiError) as excinfo:
        client.describe_instance("1")
    assert str(excinfo.value) == "Invalid signature"
    assert excinfo.value.code == "E0001"


def test_http_error_raises():
    client, _ = make_client(ValueError("not json"), status_code=503)
    with pytest.raises(ApiError) as excinfo:
        client.list_ssh_keys()
    assert excinfo.value.code == "503"


def test_non_json_success_raises():
    client, _ = make_client(ValueError("not json"))
    with pytest.raises(ApiError):
        client.list_ssh_keys()


# ---------------------------------------------------------------------------
# Item sets
# ---------------------------------------------------------------------------

def test_items_normalisation():
    assert items(None) == []
    assert items("") == []
    assert items({"item": {"a": 1}}) == [{"a": 1}]
    assert items({"item": [{"a": 1}, {"a": 2}]}) == [{"a": 1}, {"a": 2}]
    assert items({"2item": {"a": 2}, "1item": {"a": 1}}) == [{"a": 1}, {"a": 2}]
    assert items([{"a": 1}]) == [{"a": 1}]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

def test_run_instance():
    client, session = make_client({"run-instanceresponse": {
        "instancesSet": {"item": {
            "instanceid": 174208,
            "ip_address": "209.208.65.177",
            "password": "s3cret",
            "username": "root",
        }},
        "requestid": "58c3c2a2-9f5e",
    }})

    result = client.run_instance(RunInstanceRequest(
        server_name="m1", image_id="ubuntu-14.04_64bit", plan_name="XS",
        vm_location="USWEST1", key_id="",
    ))

    assert len(result) == 1
    assert result[0].id == "174208"
    assert result[0].ip_address == "209.208.65.177"
    assert result[0].password == "s3cret"
    params = sent_params(session)
    assert params["servername"] == "m1"
    assert params["imageid"] == "ubuntu-14.04_64bit"
    assert params["planname"] == "XS"
    assert params["vm_location"] == "USWEST1"
    assert "key_id" not in params


def test_run_instance_sends_key_id():
    client, session = make_client({"run-instanceresponse": {
        "instancesSet": {"item": {"instanceid": "1", "ip_address": "1.1.1.1"}},
    }})
    client.run_instance(RunInstanceRequest(
        server_name="m1", image_id="img", plan_name="XS", vm_location="USWEST1", key_id="abc",
    ))
    assert sent_params(session)["key_id"] == "abc"


def test_run_instance_without_instances_raises():
    client, _ = make_client({"run-instanceresponse": {"instancesSet": {}}})
    with pytest.raises(ApiError):
        client.run_instance(RunInstanceRequest(
            server_name="m1", image_id="img", plan_name="XS", vm_location="USWEST1",
        ))


def test_describe_instance():
    client, session = make_client({"describe-instanceresponse": {
        "instanceSet": {"item": {
            "InstanceId": 174208,
            "vm_status": "RUNNING",
            "vm_ip_address": "209.208.65.177",
            "vm_plan_name": "XS",
            "vm_description": None,
        }},
    }})

    instance = client.describe_instance("174208")

    assert instance.id == "174208"
    assert instance.vm_status == "RUNNING"
    assert instance.ip_address == "209.208.65.177"
    assert instance.name == ""
    assert sent_params(session)["instanceid"] == "174208"


def test_describe_missing_instance_raises():
    client, _ = make_client({"describe-instanceresponse": {"instanceSet": None}})
    with pytest.raises(ApiError, match="174208"):
        client.describe_instance("174208")


def test_malformed_item_raises_api_error():
    client, _ = make_client({"run-instanceresponse": {
        "instancesSet": {"item": {"ip_address": "1.1.1.1", "password": "pw"}},
    }})
    with pytest.raises(ApiError, match="run-instance: malformed response"):
        client.run_instance(RunInstanceRequest(
            server_name="m1", image_id="img", plan_name="XS", vm_location="USWEST1",
        ))


def test_terminate_instance():
    client, _ = make_client({"terminate-instanceresponse": {
        "instancesSet": {"item": {"InstanceId": 174208, "result": "true", "message": "ok"}},
    }})
    results = client.terminate_instance("174208")
    assert [(r.id, r.succeeded) for r in results] == [("174208", True)]


def test_reboot_instance():
    client, session = make_client({"reboot-instanceresponse": {
        "return": {"value": "true", "Message": "Reboot in progress"},
    }})
    result = client.reboot_instance("174208", "soft")
    assert result.succeeded
    assert result.message == "Reboot in progress"
    assert sent_params(session)["reboottype"] == "soft"


def test_hard_reboot_type_is_sent():
    client, session = make_client({"reboot-instanceresponse": {"return": {"value": "true"}}})
    client.reboot_instance("174208", REBOOT_TYPE_HARD)
    assert sent_params(session)["reboottype"] == "hard"


def test_list_ssh_keys():
    client, _ = make_client({"list-sshkeysresponse": {"KeysSet": {
        "1item": {"key_id": "v3z1", "key_name": "laptop", "public_key": "ssh-rsa AAA"},
        "2item": {"key_id": "k9a2", "key_name": "ci", "public_key": "ssh-rsa BBB"},
    }}})
    keys = client.list_ssh_keys()
    assert [k.id for k in keys] == ["v3z1", "k9a2"]
    assert keys[0].name == "laptop"


def test_describe_plan():
    client, session = make_client({"describe-planresponse": {"plans": {"item": [
        {"plan_name": "XS", "platform": "linux", "ram": 512, "disk": 20, "num_cpu": 1},
        {"plan_name": "S", "platform": "linux", "ram": 1024, "disk": 40, "num_cpu": 1},
    ]}}})

    plans = client.describe_plan("", "linux")

    assert [p.plan_name for p in plans] == ["XS", "S"]
    assert plans[0].ram == "512"
    params = sent_params(session)
    assert params["platform"] == "linux"
    assert "plan_name" not in params


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
