"""Client for the host inventory service."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional
from urllib.parse import quote, urlencode

from pbdispatch.cloud_connector import (
    HEADER_REQUEST_ID,
    HttpRequest,
    HttpRequestDoer,
    HttpResponse,
    UnexpectedResponseError,
    UrllibRequestDoer,
)

log = logging.getLogger("pbdispatch")

BASE_PATH = "/api/inventory/"
HEADER_IDENTITY = "x-rh-identity"
ORDER_HOW_ASC = "ASC"
SYSTEM_PROFILE_FIELDS = ("rhc_client_id", "owner_id")


@dataclass
class SatelliteFacts:
    """Satellite facts reported for a host."""

    satellite_instance_id: Optional[str] = None
    satellite_version: Optional[str] = None


@dataclass
class HostDetails:
    """Connection details of one inventory host."""

    id: str = ""
    owner_id: Optional[str] = None
    satellite_instance_id: Optional[str] = None
    satellite_version: Optional[str] = None
    rhc_client_id: Optional[str] = None


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


def _json_200(response: HttpResponse) -> Optional[dict[str, Any]]:
    if response.status_code != 200 or "json" not in _header(response.headers, "Content-Type"):
        return None
    try:
        parsed = json.loads(response.body.decode("utf-8"))
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def key_system_profile_results(results: Iterable[Mapping[str, Any]]) -> dict[str, Mapping[str, Any]]:
    """Index system profile results by host id."""
    return {result["id"]: result for result in results}


def _as_string(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"fact {name} is not a string: {value!r}")
    return value


def get_satellite_facts(facts: Optional[Iterable[Mapping[str, Any]]]) -> SatelliteFacts:
    """Extract the Satellite instance id and version from a host's fact sets."""
    result = SatelliteFacts()
    for fact_set in facts or ():
        if fact_set.get("namespace") != "satellite":
            continue
        values = fact_set.get("facts") or {}
        if "satellite_instance_id" in values:
            result.satellite_instance_id = _as_string(
                values["satellite_instance_id"], "satellite_instance_id"
            )
        if "satellite_version" in values:
            result.satellite_version = _as_string(values["satellite_version"], "satellite_version")
    return result


class InventoryClient:
    """Looks up host connection details in inventory over HTTP."""

    def __init__(self, cfg: Mapping[str, Any], doer: HttpRequestDoer) -> None:
        self._server = "{}://{}:{}{}".format(
            _get_string(cfg, "inventory.connector.scheme"),
            _get_string(cfg, "inventory.connector.host"),
            _get_int(cfg, "inventory.connector.port"),
            BASE_PATH,
        )
        self._doer = doer

    def _get(
        self, path: str, query: Mapping[str, str], request_id: Optional[str], identity: Optional[str]
    ) -> HttpResponse:
        headers = {HEADER_REQUEST_ID: request_id or ""}
        if identity is not None:
            headers[HEADER_IDENTITY] = identity
        url = f"{self._server}{path}?{urlencode(query, safe='[],')}"
        return self._doer.do(HttpRequest("GET", url, headers))

    @staticmethod
    def _id_list(ids: Iterable[str]) -> str:
        return quote(",".join(ids), safe=",")

    def _host_details(
        self,
        ids: list[str],
        order_by: str,
        order_how: str,
        request_id: Optional[str],
        identity: Optional[str],
    ) -> list[Mapping[str, Any]]:
        query = {"order_by": order_by, "order_how": ORDER_HOW_ASC}
        response = self._get(f"v1/hosts/{self._id_list(ids)}", query, request_id, identity)
        parsed = _json_200(response)
        if parsed is None:
            raise UnexpectedResponseError(response)
        return parsed.get("results") or []

    def _system_profile_details(
        self,
        ids: list[str],
        order_by: str,
        order_how: str,
        request_id: Optional[str],
        identity: Optional[str],
    ) -> dict[str, Mapping[str, Any]]:
        query = {
            "order_by": order_by,
            "order_how": order_how,
            "fields[system_profile]": ",".join(SYSTEM_PROFILE_FIELDS),
        }
        response = self._get(
            f"v1/hosts/{self._id_list(ids)}/system_profile", query, request_id, identity
        )
        parsed = _json_200(response)
        if parsed is None:
            raise UnexpectedResponseError(response)
        return key_system_profile_results(parsed.get("results") or [])

    def get_host_connection_details(
        self,
        ids: list[str],
        order_how: str,
        order_by: str,
        limit: int,
        offset: int,
        request_id: Optional[str] = None,
        identity: Optional[str] = None,
    ) -> list[HostDetails]:
        """Connection details for the hosts, one entry per requested id."""
        ids = list(ids)
        # The host listing receives the ordering arguments in swapped positions.
        hosts = self._host_details(ids, order_how, order_by, request_id, identity)
        profiles = self._system_profile_details(ids, order_by, order_how, request_id, identity)

        details = []
        for host in hosts:
            host_id = host["id"]
            facts = get_satellite_facts(host.get("facts"))
            profile = (profiles.get(host_id) or {}).get("system_profile") or {}
            details.append(
                HostDetails(
                    id=host_id,
                    owner_id=profile.get("owner_id"),
                    satellite_instance_id=facts.satellite_instance_id,
                    satellite_version=facts.satellite_version,
                    rhc_client_id=profile.get("rhc_client_id"),
                )
            )
        details.extend(HostDetails() for _ in range(len(ids) - len(details)))
        return details


def new_inventory_client(
    cfg: Mapping[str, Any], doer: Optional[HttpRequestDoer] = None
) -> InventoryClient:
    """Inventory client for the configured service, using urllib unless a doer is given."""
    if doer is None:
        doer = UrllibRequestDoer(timeout=_get_int(cfg, "inventory.connector.timeout"))
    return InventoryClient(cfg, doer)