"""
drivers/atlanticnet_api.py

Minimal client for the Atlantic.Net Cloud API.

Only the actions the machine driver needs are wrapped:
  run-instance, describe-instance, terminate-instance, reboot-instance,
  list-sshkeys, describe-plan

Every request is a GET against a single endpoint. Authentication is a
per-request signature: base64(HMAC-SHA256(secret, Timestamp + Rndguid)).

Responses come back wrapped as {"<action>response": {...}} and item sets
are either {"item": {...}}, {"item": [...]} or {"1item": {...}, "2item": ...}
depending on how many results there are. The models below hide that shape.
"""

import base64
import hashlib
import hmac
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

import requests
from pydantic import BaseModel, Field, ValidationError, model_validator

from .errors import ApiError

logger = logging.getLogger(__name__)

API_ENDPOINT = "https://cloudapi.atlantic.net/"
API_VERSION  = "2010-12-30"
API_FORMAT   = "json"
REQUEST_TIMEOUT = 30

# vm_status values returned by describe-instance
STATUS_AWAITING_CREATION = "AWAITING_CREATION"
STATUS_CREATING          = "CREATING"
STATUS_RESTARTING        = "RESTARTING"
STATUS_RUNNING           = "RUNNING"
STATUS_STOPPED           = "STOPPED"

REBOOT_TYPE_SOFT = "soft"
REBOOT_TYPE_HARD = "hard"


def _to_str(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    return value


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class RunInstanceRequest(BaseModel):
    """Parameters for run-instance."""
    server_name: str = Field(..., description="Hostname given to the new server")
    image_id:    str = Field(..., description="Image identifier, e.g. ubuntu-14.04_64bit")
    plan_name:   str = Field(..., description="Plan / size tier, e.g. XS")
    vm_location: str = Field(..., description="Region, e.g. USWEST1")
    key_id:      str = Field("",  description="Registered SSH key id; empty for password login")

    def to_params(self) -> Dict[str, str]:
        params = {
            "servername":  self.server_name,
            "imageid":     self.image_id,
            "planname":    self.plan_name,
            "vm_location": self.vm_location,
        }
        if self.key_id:
            params["key_id"] = self.key_id
        return params


class ApiModel(BaseModel):
    """Base for response models: fields are read by alias and always hold strings."""

    class Config:
        populate_by_name = True

    @model_validator(mode="before")
    @classmethod
    def stringify(cls, data):
        # The API returns the same field as a number in one response, a string
        # in the next, and null when unset.
        if isinstance(data, dict):
            return {k: _to_str(v) for k, v in data.items()}
        return data


class RunInstanceResult(ApiModel):
    """One created server, including the root password the provider issued."""
    id:         str = Field(..., alias="instanceid")
    ip_address: str = Field("")
    password:   str = Field("")
    username:   str = Field("")


class Instance(ApiModel):
    """describe-instance result, reduced to the fields the driver reads."""
    id:         str = Field(..., alias="InstanceId")
    name:       str = Field("",  alias="vm_description")
    vm_status:  str = Field("")
    ip_address: str = Field("",  alias="vm_ip_address")
    plan_name:  str = Field("",  alias="vm_plan_name")
    image:      str = Field("",  alias="vm_image")


class TerminateResult(ApiModel):
    """One entry of a terminate-instance result set."""
    id:      str = Field(..., alias="InstanceId")
    result:  str = Field("")
    message: str = Field("")

    @property
    def succeeded(self) -> bool:
        return self.result == "true"


class RebootResult(ApiModel):
    value:   str = Field("")
    message: str = Field("", alias="Message")

    @property
    def succeeded(self) -> bool:
        return self.value == "true"


class SSHKey(ApiModel):
    id:         str = Field(..., alias="key_id")
    name:       str = Field("",  alias="key_name")
    public_key: str = Field("")


class Plan(ApiModel):
    plan_name:   str = Field(...)
    platform:    str = Field("")
    ram:         str = Field("")
    disk:        str = Field("")
    num_cpu:     str = Field("")
    rate_per_hr: str = Field("")


def _parse(model, action: str, data: Any):
    """Validate one response item, reporting a malformed body as an ApiError."""
    try:
        return model.model_validate(data)
    except ValidationError as ex:
        raise ApiError(f"Atlantic.Net API {action}: malformed response: {ex}") from ex


def items(container: Any) -> List[Dict[str, Any]]:
    """
    Flatten an API item set into a list of dicts.

    Accepts a list, {"item": dict | list} or numbered keys {"1item": ..., "2item": ...}.
    A missing or empty set yields [].
    """
    if not container:
        return []
    if isinstance(container, list):
        return [c for c in container if isinstance(c, dict)]
    if not isinstance(container, dict):
        return []
    if "item" in container:
        return items(container["item"]) if isinstance(container["item"], list) else [container["item"]]
    numbered = sorted(
        (k for k in container if k.endswith("item") and k[:-4].isdigit()),
        key=lambda k: int(k[:-4]),
    )
    if numbered:
        return [container[k] for k in numbered]
    return [container]


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class Client:
    """
    Atlantic.Net API client.

    The session is created on first request so building a Client never
    touches the network.
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        endpoint: str = API_ENDPOINT,
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.endpoint = endpoint
        self.timeout = timeout
        self._session = session
        self._clock = clock

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def sign(self, timestamp: str, rndguid: str) -> str:
        digest = hmac.new(
            self.api_secret.encode(), (timestamp + rndguid).encode(), hashlib.sha256
        ).digest()
        return base64.b64encode(digest).decode()

    def _call(self, action: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        Perform one signed API action and return the unwrapped response body.

        Raises:
            ApiError: the API reported an error or answered with an HTTP error.
            requests.RequestException: the request itself failed.
        """
        timestamp = str(int(self._clock()))
        rndguid = str(uuid.uuid4())
        query = {
            "Action":         action,
            "Format":         API_FORMAT,
            "Version":        API_VERSION,
            "ACSAccessKeyId": self.api_key,
            "Timestamp":      timestamp,
            "Rndguid":        rndguid,
            "Signature":      self.sign(timestamp, rndguid),
        }
        query.update(params or {})

        logger.debug("Atlantic.Net API call %s %s", action, params or {})
        resp = self.session.get(self.endpoint, params=query, timeout=self.timeout)

        try:
            body = resp.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and "error" in body:
            err = body["error"] or {}
            raise ApiError(
                err.get("message") or f"Atlantic.Net API {action} failed",
                code=err.get("code"),
            )
        if resp.status_code >= 400:
            raise ApiError(
                f"Atlantic.Net API {action}: {resp.status_code} {resp.text}",
                code=str(resp.status_code),
            )
        if not isinstance(body, dict):
            raise ApiError(f"Atlantic.Net API {action}: unexpected response {resp.text!r}")

        return body.get(f"{action}response", {}) or {}

    # ------------------------------------------------------------------
    # actions
    # ------------------------------------------------------------------

    def run_instance(self, request: RunInstanceRequest) -> List[RunInstanceResult]:
        body = self._call("run-instance", request.to_params())
        results = [
            _parse(RunInstanceResult, "run-instance", i) for i in items(body.get("instancesSet"))
        ]
        if not results:
            raise ApiError("Atlantic.Net API run-instance returned no instances")
        return results

    def describe_instance(self, instance_id: str) -> Instance:
        body = self._call("describe-instance", {"instanceid": instance_id})
        found = items(body.get("instanceSet"))
        if not found:
            raise ApiError(f"Instance {instance_id} not found")
        return _parse(Instance, "describe-instance", found[0])

    def terminate_instance(self, instance_id: str) -> List[TerminateResult]:
        body = self._call("terminate-instance", {"instanceid": instance_id})
        return [
            _parse(TerminateResult, "terminate-instance", i) for i in items(body.get("instancesSet"))
        ]

    def reboot_instance(self, instance_id: str, reboot_type: str = REBOOT_TYPE_SOFT) -> RebootResult:
        body = self._call("reboot-instance", {"instanceid": instance_id, "reboottype": reboot_type})
        return _parse(RebootResult, "reboot-instance", body.get("return") or {})

    def list_ssh_keys(self) -> List[SSHKey]:
        body = self._call("list-sshkeys")
        return [_parse(SSHKey, "list-sshkeys", i) for i in items(body.get("KeysSet"))]

    def describe_plan(self, plan_name: str = "", platform: str = "") -> List[Plan]:
        params = {}
        if plan_name:
            params["plan_name"] = plan_name
        if platform:
            params["platform"] = platform
        body = self._call("describe-plan", params)
        return [_parse(Plan, "describe-plan", i) for i in items(body.get("plans"))]


def new_client(api_key: str, api_secret: str, **kwargs: Any) -> Client:
    return Client(api_key, api_secret, **kwargs)
