"""Client for the cloud connector service that relays messages to rhc recipients."""

from __future__ import annotations

import abc
import enum
import json
import logging
import urllib.error
import urllib.request
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union
from urllib.parse import quote

log = logging.getLogger("pbdispatch")

BASE_PATH = "/api/cloud-connector/"

HEADER_REQUEST_ID = "x-rh-insights-request-id"
HEADER_CLOUD_CONNECTOR_CLIENT_ID = "x-rh-cloud-connector-client-id"
HEADER_CLOUD_CONNECTOR_PSK = "x-rh-cloud-connector-psk"
HEADER_CLOUD_CONNECTOR_ORG_ID = "x-rh-cloud-connector-org-id"


@dataclass
class HttpRequest:
    """An outgoing HTTP request."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None


@dataclass
class HttpResponse:
    """A received HTTP response."""

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


def _header(headers: Mapping[str, str], name: str) -> str:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return ""


def _json_body(response: HttpResponse) -> Optional[Any]:
    if "json" not in _header(response.headers, "Content-Type"):
        return None
    try:
        return json.loads(response.body.decode("utf-8"))
    except ValueError:
        return None


class HttpRequestDoer(abc.ABC):
    """Something that performs HTTP requests."""

    @abc.abstractmethod
    def do(self, request: HttpRequest) -> HttpResponse:
        """Send the request and return the response, whatever its status."""


class UrllibRequestDoer(HttpRequestDoer):
    """Performs requests with the standard library."""

    def __init__(self, timeout: Optional[float]) -> None:
        self.timeout = timeout if timeout else None

    def do(self, request: HttpRequest) -> HttpResponse:
        native = urllib.request.Request(
            request.url, data=request.body, headers=dict(request.headers), method=request.method
        )
        try:
            with urllib.request.urlopen(native, timeout=self.timeout) as reply:
                return HttpResponse(reply.status, dict(reply.headers.items()), reply.read())
        except urllib.error.HTTPError as error:
            with error:
                return HttpResponse(error.code, dict(error.headers.items()), error.read())


class UnexpectedResponseError(Exception):
    """The service answered with a status or content type that was not expected."""

    def __init__(self, response: HttpResponse) -> None:
        self.response = response
        content_type = _header(response.headers, "Content-Type")
        super().__init__(
            f'unexpected status code "{response.status_code}" or content type "{content_type}"'
        )


class ConnectionStatus(str, enum.Enum):
    """Whether a recipient is connected to cloud connector."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


def _get_string(cfg: Mapping[str, Any], key: str) -> str:
    value = cfg.get(key)
    return "" if value is None else str(value)


def _get_int(cfg: Mapping[str, Any], key: str) -> int:
    value = cfg.get(key)
    if value is None or value == "":
        return 0
    return int(value)


class CloudConnectorClient(abc.ABC):
    """Sends messages to, and asks about, rhc recipients."""

    @abc.abstractmethod
    def send_cloud_connector_request(
        self,
        org_id: str,
        recipient: Union[uuid.UUID, str],
        url: Optional[str],
        directive: str,
        metadata: Mapping[str, str],
        request_id: Optional[str] = None,
    ) -> tuple[Optional[str], bool]:
        """Send a message; return the message id and whether the recipient was not found."""

    @abc.abstractmethod
    def get_connection_status(
        self, org_id: str, recipient: str, request_id: Optional[str] = None
    ) -> ConnectionStatus:
        """Connection status of the recipient."""


class CloudConnectorClientImpl(CloudConnectorClient):
    """Client talking to a real cloud connector over HTTP."""

    def __init__(self, cfg: Mapping[str, Any], doer: HttpRequestDoer) -> None:
        self._server = "{}://{}:{}{}".format(
            _get_string(cfg, "cloud.connector.scheme"),
            _get_string(cfg, "cloud.connector.host"),
            _get_int(cfg, "cloud.connector.port"),
            BASE_PATH,
        )
        self._client_id = _get_string(cfg, "cloud.connector.client.id")
        self._psk = _get_string(cfg, "cloud.connector.psk")
        self._doer = doer

    def _headers(self, org_id: str, request_id: Optional[str]) -> dict[str, str]:
        return {
            HEADER_REQUEST_ID: request_id or "",
            HEADER_CLOUD_CONNECTOR_CLIENT_ID: self._client_id,
            HEADER_CLOUD_CONNECTOR_PSK: self._psk,
            HEADER_CLOUD_CONNECTOR_ORG_ID: org_id,
        }

    def _url(self, recipient: str, action: str) -> str:
        return f"{self._server}v2/connections/{quote(recipient, safe='')}/{action}"

    def send_cloud_connector_request(
        self,
        org_id: str,
        recipient: Union[uuid.UUID, str],
        url: Optional[str],
        directive: str,
        metadata: Mapping[str, str],
        request_id: Optional[str] = None,
    ) -> tuple[Optional[str], bool]:
        recipient_string = str(recipient)
        log.debug(
            "Sending Cloud Connector message directive=%s metadata=%s payload=%s recipient=%s",
            directive,
            metadata,
            url,
            recipient_string,
        )

        body: dict[str, Any] = {
            "directive": directive,
            "metadata": dict(sorted(metadata.items())),
        }
        if url is not None:
            body["payload"] = url
        data = (json.dumps(body, ensure_ascii=False, separators=(",", ":")) + "\n").encode("utf-8")

        headers = self._headers(org_id, request_id)
        headers["Content-Type"] = "application/json"
        response = self._doer.do(
            HttpRequest("POST", self._url(recipient_string, "message"), headers, data)
        )

        if response.status_code == 404:
            return None, True

        parsed = _json_body(response) if response.status_code == 201 else None
        if not isinstance(parsed, dict):
            raise UnexpectedResponseError(response)

        return parsed.get("id"), False

    def get_connection_status(
        self, org_id: str, recipient: str, request_id: Optional[str] = None
    ) -> ConnectionStatus:
        log.debug(
            "Sending Cloud Connector status request org_id=%s recipient=%s", org_id, recipient
        )

        response = self._doer.do(
            HttpRequest("GET", self._url(str(recipient), "status"), self._headers(org_id, request_id))
        )

        parsed = _json_body(response) if response.status_code == 200 else None
        if not isinstance(parsed, dict):
            raise UnexpectedResponseError(response)

        try:
            return ConnectionStatus(parsed.get("status"))
        except ValueError:
            raise UnexpectedResponseError(response) from None


class CloudConnectorClientMock(CloudConnectorClient):
    """Canned cloud connector used when no real service is configured."""

    def send_cloud_connector_request(
        self,
        org_id: str,
        recipient: Union[uuid.UUID, str],
        url: Optional[str],
        directive: str,
        metadata: Mapping[str, str],
        request_id: Optional[str] = None,
    ) -> tuple[Optional[str], bool]:
        recipient_string = str(recipient)

        if recipient_string == "b5fbb740-5590-45a4-8240-89192dc49199":
            return None, True

        if recipient_string == "b31955fb-3064-4f56-ae44-a1c488a28587":
            raise TimeoutError("timeout")

        if (
            recipient_string == "9200e4a3-c97c-4021-9856-82fa4673e8d2"
            and metadata.get("sat_id") != "9274c274-a258-5d00-91fe-dbe0f7849cef"
        ):
            raise ValueError("sat_id mismatch")

        return str(uuid.uuid4()), False

    def get_connection_status(
        self, org_id: str, recipient: str, request_id: Optional[str] = None
    ) -> ConnectionStatus:
        if org_id == "5318290" and recipient == "411cb203-f8c9-480e-ba20-1efbc74e3a33":
            return ConnectionStatus.DISCONNECTED
        return ConnectionStatus.CONNECTED


def new_connector_client(
    cfg: Mapping[str, Any], doer: Optional[HttpRequestDoer] = None
) -> CloudConnectorClient:
    """Client for the configured cloud connector, using urllib unless a doer is given."""
    if doer is None:
        doer = UrllibRequestDoer(timeout=_get_int(cfg, "cloud.connector.timeout"))
    return CloudConnectorClientImpl(cfg, doer)