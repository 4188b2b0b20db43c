"""Client for the sources service that describes Satellite connections."""

from __future__ import annotations

import abc
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from urllib.parse import quote, urlencode

from pbdispatch.cloud_connector import (
    HEADER_REQUEST_ID,
    HttpRequest,
    HttpRequestDoer,
    HttpResponse,
    UrllibRequestDoer,
)

log = logging.getLogger("pbdispatch")

BASE_PATH = "/api/sources/v3.1/"
FILTER_PATH = "filter[source_ref][eq]="
HEADER_IDENTITY = "x-rh-identity"


@dataclass
class SourceConnectionStatus:
    """A source together with its rhc connection."""

    id: str
    source_name: Optional[str] = None
    rhc_id: Optional[str] = None
    availability_status: Optional[str] = None


class SourcesError(Exception):
    """The sources service could not supply connection details."""


def _get_string(cfg: Mapping[str, Any], key: str) -> str:
    value = cfg.get(key)
    return "" if value is None else str(value)


def _get_int(cfg: Mapping[str, Any], key: str) -> int:
    value = cfg.get(key)
    if value is None or value == "":
        return 0
    return int(value)


def _header(headers: Mapping[str, str], name: str) -> str:
    wanted = name.lower()
    return next((value for key, value in headers.items() if key.lower() == wanted), "")


def _json_for(response: HttpResponse, status: int) -> Optional[Any]:
    if response.status_code != status or "json" not in _header(response.headers, "Content-Type"):
        return None
    try:
        return json.loads(response.body.decode("utf-8"))
    except ValueError:
        return None


def _unexpected(operation: str, response: HttpResponse) -> SourcesError:
    return SourcesError(
        f'{operation} unexpected status code "{response.status_code}" '
        f'or content type "{_header(response.headers, "content-type")}"'
    )


class SourcesConnector(abc.ABC):
    """Looks up source connection details."""

    @abc.abstractmethod
    def get_source_connection_details(
        self, source_id: str, request_id: Optional[str] = None, identity: Optional[str] = None
    ) -> SourceConnectionStatus:
        """Connection details of the source; raises SourcesError on failure."""


class SourcesClient(SourcesConnector):
    """Talks to the sources service over HTTP."""

    def __init__(self, cfg: Mapping[str, Any], doer: HttpRequestDoer) -> None:
        self._server = "{}://{}:{}{}".format(
            _get_string(cfg, "sources.scheme"),
            _get_string(cfg, "sources.host"),
            _get_int(cfg, "sources.port"),
            BASE_PATH,
        )
        self._doer = doer

    def _get(self, url: str, request_id: Optional[str], identity: Optional[str]) -> HttpResponse:
        headers = {HEADER_REQUEST_ID: request_id or ""}
        if identity is not None:
            headers[HEADER_IDENTITY] = identity
        return self._doer.do(HttpRequest("GET", url, headers))

    def _rhc_connection_status(
        self, source_id: str, request_id: Optional[str], identity: Optional[str]
    ) -> Mapping[str, Any]:
        log.debug("Sending Sources RHC Connection Request")
        url = f"{self._server}sources/{quote(source_id, safe='')}/rhc_connections"
        response = self._get(url, request_id, identity)

        if response.status_code == 404:
            raise SourcesError("RHCStatus Not Found")
        if response.status_code == 400:
            raise SourcesError("RHCStatus Bad Request")

        parsed = _json_for(response, 200)
        if not isinstance(parsed, dict):
            raise _unexpected("GetRhcConnectionStatus", response)
        return parsed

    def _sources(
        self, source_id: str, request_id: Optional[str], identity: Optional[str]
    ) -> list[Mapping[str, Any]]:
        log.debug("Sending Sources Request")
        query = urlencode({"filter": FILTER_PATH + source_id})
        response = self._get(f"{self._server}sources?{query}", request_id, identity)

        if _json_for(response, 400) is not None:
            raise SourcesError("Source Bad Request")

        parsed = _json_for(response, 200)
        if not isinstance(parsed, dict):
            raise _unexpected("GetSources", response)
        return parsed.get("data") or []

    def get_source_connection_details(
        self, source_id: str, request_id: Optional[str] = None, identity: Optional[str] = None
    ) -> SourceConnectionStatus:
        log.debug("Gathering Source Connection Details")
        sources = self._sources(source_id, request_id, identity)
        rhc_connection = self._rhc_connection_status(source_id, request_id, identity)

        if not sources:
            raise SourcesError(f"Source not found: {source_id}")

        source = sources[0]
        return SourceConnectionStatus(
            id=str(source["id"]),
            source_name=source.get("name"),
            rhc_id=rhc_connection.get("rhc_id"),
            availability_status=rhc_connection.get("availability_status"),
        )


class SourcesClientMock(SourcesConnector):
    """Canned sources service used when no real service is configured."""

    RHC_ID = "d415fc2d-9700-4e30-9621-6a410ccc92d8"
    NAME = "test"
    STATUS_AVAILABLE = "available"

    _FAILURES = {
        "07c9268f-6dc2-4e05-be57-d9d252a6bb47": "RHCStatus Not Found",
        "5d322fdb-1de4-4402-b383-30f0f66b0bc1": "RHCStatus Bad Request",
        "d3966054-5d45-45a5-a4b4-2f34ea4ae9e0": "Source Bad Request",
    }

    def get_source_connection_details(
        self, source_id: str, request_id: Optional[str] = None, identity: Optional[str] = None
    ) -> SourceConnectionStatus:
        failure = self._FAILURES.get(source_id)
        if failure is not None:
            raise SourcesError(failure)

        return SourceConnectionStatus(
            id=source_id,
            source_name=self.NAME,
            rhc_id=self.RHC_ID,
            availability_status=self.STATUS_AVAILABLE,
        )


def new_sources_client(
    cfg: Mapping[str, Any], doer: Optional[HttpRequestDoer] = None
) -> SourcesClient:
    """Sources client for the configured service, using urllib unless a doer is given."""
    if doer is None:
        doer = UrllibRequestDoer(timeout=_get_int(cfg, "sources.timeout"))
    return SourcesClient(cfg, doer)