"""Mapping and error handling shared by the internal run endpoints."""

from __future__ import annotations

import uuid
from http import HTTPStatus
from typing import Any, Iterable, Mapping, Optional

from pbdispatch.errors import (
    RecipientNotFoundError,
    RunCancelNotCancelableError,
    RunCancelTypeError,
    RunNotFoundError,
    RunOrgIdMismatchError,
)
from pbdispatch.models import CancelInput, RunHostsInput, RunInput


class TenantNotFoundError(Exception):
    """No tenant matches the given account number."""


class ValidationError(ValueError):
    """A run request is not well formed."""


def get_labels(labels: Optional[Mapping[str, str]]) -> dict[str, str]:
    """The request labels, or an empty mapping when none were given."""
    if labels is None:
        return {}
    return dict(labels)


def parse_validated_uuid(value: str) -> uuid.UUID:
    """Parse a UUID that the request schema has already validated."""
    return uuid.UUID(str(value))


def parse_run_hosts(hosts: Optional[Iterable[Mapping[str, Any]]]) -> list[RunHostsInput]:
    """Convert request hosts to protocol-independent host inputs."""
    if hosts is None:
        return []

    return [
        RunHostsInput(
            ansible_host=host.get("ansible_host"),
            inventory_id=(
                parse_validated_uuid(host["inventory_id"])
                if host.get("inventory_id") is not None
                else None
            ),
        )
        for host in hosts
    ]


def run_input_v1_generic_map(
    run_input: Mapping[str, Any],
    org_id: str,
    recipient: uuid.UUID,
    hosts: list[RunHostsInput],
) -> RunInput:
    """Build a RunInput from a v1 run request."""
    return RunInput(
        recipient=recipient,
        org_id=org_id,
        account=str(run_input["account"]),
        url=str(run_input["url"]),
        labels=get_labels(run_input.get("labels")),
        timeout=run_input.get("timeout"),
        hosts=hosts,
    )


def run_input_v2_generic_map(
    run_input: Mapping[str, Any],
    recipient: uuid.UUID,
    hosts: list[RunHostsInput],
    sat_id: Optional[uuid.UUID],
) -> RunInput:
    """Build a RunInput from a v2 run request."""
    recipient_config = run_input.get("recipient_config")
    sat_org_id = recipient_config.get("sat_org_id") if recipient_config is not None else None

    return RunInput(
        recipient=recipient,
        org_id=str(run_input["org_id"]),
        url=str(run_input["url"]),
        labels=get_labels(run_input.get("labels")),
        timeout=run_input.get("timeout"),
        hosts=hosts,
        name=str(run_input.get("name", "")),
        web_console_url=run_input.get("web_console_url"),
        principal=str(run_input.get("principal", "")),
        sat_id=sat_id,
        sat_org_id=sat_org_id,
    )


def cancel_input_v2_generic_map(cancel_input: Mapping[str, Any], run_id: uuid.UUID) -> CancelInput:
    """Build a CancelInput from a v2 cancel request."""
    return CancelInput(
        run_id=run_id,
        org_id=str(cancel_input["org_id"]),
        principal=str(cancel_input["principal"]),
    )


def validate_satellite_fields(run_input: Mapping[str, Any]) -> None:
    """Raise ValidationError if the Satellite-specific fields are inconsistent."""
    recipient_config = run_input.get("recipient_config")
    if recipient_config is None:
        return

    has_sat_id = recipient_config.get("sat_id") is not None
    has_sat_org_id = recipient_config.get("sat_org_id") is not None

    if has_sat_id != has_sat_org_id:
        raise ValidationError("Both sat_id and sat_org need to be defined")

    if not has_sat_id:
        return

    hosts = run_input.get("hosts")
    if hosts is None:
        raise ValidationError("Hosts need to be defined")

    if len(hosts) == 0:
        raise ValidationError("Hosts cannot be empty")

    if any(host.get("inventory_id") is None for host in hosts):
        raise ValidationError("Inventory ID needs to be defined")


def handle_run_create_error(error: BaseException) -> dict[str, Any]:
    """Per-run result describing a failed run creation."""
    if isinstance(error, (RecipientNotFoundError, TenantNotFoundError)):
        return {"code": HTTPStatus.NOT_FOUND.value}
    return {"code": HTTPStatus.INTERNAL_SERVER_ERROR.value}


_CANCEL_ERROR_CODES: tuple[tuple[type[BaseException], HTTPStatus], ...] = (
    (RunNotFoundError, HTTPStatus.NOT_FOUND),
    (RunOrgIdMismatchError, HTTPStatus.BAD_REQUEST),
    (RecipientNotFoundError, HTTPStatus.CONFLICT),
    (RunCancelNotCancelableError, HTTPStatus.CONFLICT),
    (RunCancelTypeError, HTTPStatus.BAD_REQUEST),
)


def handle_run_cancel_error(error: BaseException) -> dict[str, Any]:
    """Per-run result describing a failed cancellation."""
    for error_type, status in _CANCEL_ERROR_CODES:
        if isinstance(error, error_type):
            return {"code": status.value}
    return {"code": HTTPStatus.INTERNAL_SERVER_ERROR.value}


def run_created(run_id: uuid.UUID) -> dict[str, Any]:
    """Per-run result for a created run."""
    return {"code": HTTPStatus.CREATED.value, "id": str(run_id)}


def run_canceled(run_id: uuid.UUID) -> dict[str, Any]:
    """Per-run result for an accepted cancellation."""
    return {"code": HTTPStatus.ACCEPTED.value, "run_id": str(run_id)}