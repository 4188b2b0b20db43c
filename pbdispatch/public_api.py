"""Helpers behind the public run and run-host listing endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping, Optional, Sequence
from urllib.parse import parse_qsl, quote_plus, urlencode

from pbdispatch.models import Run, RunHost

DEFAULT_LIMIT = 50

FIELD_ID = "id"
FIELD_ORG_ID = "org_id"
FIELD_RECIPIENT = "recipient"
FIELD_URL = "url"
FIELD_LABELS = "labels"
FIELD_TIMEOUT = "timeout"
FIELD_STATUS = "status"
FIELD_CREATED_AT = "created_at"
FIELD_UPDATED_AT = "updated_at"
FIELD_RUN = "run"
FIELD_HOST = "host"
FIELD_STDOUT = "stdout"
FIELD_SERVICE = "service"
FIELD_CORRELATION_ID = "correlation_id"
FIELD_LINKS = "links"
FIELD_INVENTORY_ID = "inventory_id"
FIELD_NAME = "name"
FIELD_WEB_CONSOLE_URL = "web_console_url"

RUN_FIELDS = frozenset(
    {
        FIELD_ID,
        FIELD_ORG_ID,
        FIELD_RECIPIENT,
        FIELD_URL,
        FIELD_LABELS,
        FIELD_TIMEOUT,
        FIELD_STATUS,
        FIELD_CREATED_AT,
        FIELD_UPDATED_AT,
        FIELD_SERVICE,
        FIELD_CORRELATION_ID,
        FIELD_NAME,
        FIELD_WEB_CONSOLE_URL,
    }
)

RUN_HOST_FIELDS = frozenset(
    {FIELD_HOST, FIELD_RUN, FIELD_STATUS, FIELD_STDOUT, FIELD_LINKS, FIELD_INVENTORY_ID}
)

DEFAULT_RUN_FIELDS = (
    FIELD_ID,
    FIELD_ORG_ID,
    FIELD_RECIPIENT,
    FIELD_URL,
    FIELD_LABELS,
    FIELD_TIMEOUT,
    FIELD_STATUS,
)

DEFAULT_RUN_HOST_FIELDS = (FIELD_HOST, FIELD_RUN, FIELD_STATUS)

RUNS_PATH = "/api/playbook-dispatcher/v1/runs"
RUN_HOSTS_PATH = "/api/playbook-dispatcher/v1/run_hosts"

_STATUS_SQL = (
    "CASE WHEN runs.status='running' AND runs.created_at + runs.timeout * interval '1 second' "
    "<= NOW() THEN 'timeout' ELSE runs.status END as status"
)

_HOST_FIELD_SQL = {
    FIELD_HOST: "run_hosts.host",
    FIELD_RUN: "run_hosts.run_id",
    FIELD_STATUS: "run_hosts.status",
    FIELD_STDOUT: "run_hosts.log",
    FIELD_LINKS: "run_hosts.inventory_id",
    FIELD_INVENTORY_ID: "run_hosts.inventory_id",
}


class UnknownFieldError(ValueError):
    """A requested field is not one the resource offers."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"unknown field: {field}")


def get_limit(limit: Optional[int]) -> int:
    """Page size, defaulting when not given."""
    return DEFAULT_LIMIT if limit is None else int(limit)


def get_offset(offset: Optional[int]) -> int:
    """Page offset, zero when not given."""
    return 0 if offset is None else int(offset)


def parse_fields(
    query: Mapping[str, Sequence[str]],
    key: str,
    known_fields: Iterable[str],
    defaults: Sequence[str],
) -> list[str]:
    """Fields selected under `key`, comma separated; defaults if the key is absent."""
    if key not in query:
        return list(defaults)

    known = set(known_fields)
    result = []
    for value in query[key]:
        for field in value.split(","):
            if field not in known:
                raise UnknownFieldError(field)
            result.append(field)
    return result


def create_link(base: str, query_string: str, limit: int, offset: int) -> str:
    """Link to one page: the query string with limit and offset replaced, keys sorted."""
    params: dict[str, list[str]] = {}
    for name, value in parse_qsl(query_string, keep_blank_values=True):
        params.setdefault(name, []).append(value)

    params["limit"] = [str(limit)]
    params["offset"] = [str(offset)]

    pairs = [(name, value) for name in sorted(params) for value in params[name]]
    return f"{base}?{urlencode(pairs, quote_via=quote_plus, safe='')}"


def create_links(
    base: str, query_string: str, limit: int, offset: int, total: int
) -> dict[str, str]:
    """Pagination links: first and last always, previous and next where they exist."""
    last_page = max(total - 1, 0) // limit

    links = {
        "first": create_link(base, query_string, limit, 0),
        "last": create_link(base, query_string, limit, last_page * limit),
    }

    if offset > 0:
        links["previous"] = create_link(base, query_string, limit, max(offset - limit, 0))

    if offset + limit < total:
        links["next"] = create_link(base, query_string, limit, offset + limit)

    return links


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _format_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)

    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")

    offset = value.utcoffset() or timedelta(0)
    if offset == timedelta(0):
        return text + "Z"
    sign = "+" if offset > timedelta(0) else "-"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def db_run_to_api_run(run: Run, fields: Iterable[str]) -> dict[str, Any]:
    """API representation of a stored run, limited to the selected fields."""
    result: dict[str, Any] = {}

    for field in fields:
        if field == FIELD_ID:
            result["id"] = str(run.id)
        elif field == FIELD_ORG_ID:
            result["org_id"] = run.org_id
        elif field == FIELD_RECIPIENT:
            result["recipient"] = str(run.recipient)
        elif field == FIELD_URL:
            result["url"] = run.url
        elif field == FIELD_LABELS:
            result["labels"] = dict(run.labels) if run.labels is not None else {}
        elif field == FIELD_TIMEOUT:
            result["timeout"] = run.timeout
        elif field == FIELD_STATUS:
            result["status"] = _enum_value(run.status)
        elif field == FIELD_NAME:
            if run.playbook_name is not None:
                result["name"] = run.playbook_name
        elif field == FIELD_WEB_CONSOLE_URL:
            result["web_console_url"] = run.playbook_run_url
        elif field == FIELD_CREATED_AT:
            result["created_at"] = _format_time(run.created_at)
        elif field == FIELD_UPDATED_AT:
            result["updated_at"] = _format_time(run.updated_at)
        elif field == FIELD_SERVICE:
            result["service"] = run.service
        elif field == FIELD_CORRELATION_ID:
            result["correlation_id"] = str(run.correlation_id)
        else:
            raise UnknownFieldError(field)

    return result


def inventory_link(inventory_id: Optional[uuid.UUID]) -> Optional[str]:
    """Path of the host in inventory, or None when the host has no inventory id."""
    if inventory_id is None:
        return None
    return f"/api/inventory/v1/hosts/{inventory_id}"


def db_run_host_to_api_run_host(host: RunHost, fields: Iterable[str]) -> dict[str, Any]:
    """API representation of a stored run host, limited to the selected fields."""
    result: dict[str, Any] = {}

    for field in fields:
        if field == FIELD_HOST:
            result["host"] = host.host
        elif field == FIELD_STDOUT:
            result["stdout"] = host.log
        elif field == FIELD_STATUS:
            result["status"] = _enum_value(host.status)
        elif field == FIELD_RUN:
            result["run"] = {"id": str(host.run_id)}
        elif field == FIELD_LINKS:
            result["links"] = {"inventory_host": inventory_link(host.inventory_id)}
        elif field == FIELD_INVENTORY_ID:
            if host.inventory_id is not None:
                result["inventory_id"] = str(host.inventory_id)

    return result


def get_order_by(sort_by: Optional[str]) -> str:
    """SQL ordering for a `field[:direction]` sort parameter, descending by default."""
    if not sort_by:
        return "created_at desc"

    parts = sort_by.split(":")
    if len(parts) == 1:
        return f"{parts[0]} desc"
    return f"{parts[0]} {parts[1]}"


def map_fields_to_sql(field: str) -> str:
    """Column expression selecting a run field."""
    if field == FIELD_STATUS:
        # expired runs read as timed out
        return _STATUS_SQL
    if field == FIELD_NAME:
        return "playbook_name"
    if field == FIELD_WEB_CONSOLE_URL:
        return "playbook_run_url"
    return field


def map_host_fields_to_sql(field: str) -> str:
    """Column selecting a run host field."""
    try:
        return _HOST_FIELD_SQL[field]
    except KeyError:
        raise UnknownFieldError(field) from None