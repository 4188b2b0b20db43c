"""Data records for playbook runs and the inputs that create them."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


class RunStatus(str, enum.Enum):
    """Lifecycle state of a run or of a host within a run."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    CANCELED = "canceled"


@dataclass
class RunHostsInput:
    """A host requested as part of a run."""

    ansible_host: Optional[str] = None
    inventory_id: Optional[uuid.UUID] = None


@dataclass
class RunInput:
    """Protocol-independent description of a run to dispatch."""

    recipient: uuid.UUID
    org_id: str
    url: str
    account: Optional[str] = None
    labels: dict[str, str] = field(default_factory=dict)
    timeout: Optional[int] = None
    hosts: list[RunHostsInput] = field(default_factory=list)
    name: Optional[str] = None
    web_console_url: Optional[str] = None
    principal: Optional[str] = None
    sat_id: Optional[uuid.UUID] = None
    sat_org_id: Optional[str] = None


@dataclass
class CancelInput:
    """Request to cancel a running run."""

    run_id: uuid.UUID
    org_id: str
    principal: str


@dataclass
class Run:
    """A stored playbook run."""

    id: uuid.UUID
    org_id: str
    correlation_id: uuid.UUID
    url: str
    status: RunStatus
    recipient: uuid.UUID
    labels: dict[str, str]
    response_full: bool
    service: str
    timeout: int
    playbook_run_url: str
    playbook_name: Optional[str] = None
    principal: Optional[str] = None
    sat_id: Optional[uuid.UUID] = None
    sat_org_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class RunHost:
    """A stored host belonging to a run."""

    id: uuid.UUID
    run_id: uuid.UUID
    host: str
    status: RunStatus
    inventory_id: Optional[uuid.UUID] = None
    log: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def new_run(
    run_input: RunInput,
    correlation_id: uuid.UUID,
    response_full: bool,
    service: str,
) -> Run:
    """Build a new running Run record from an input whose defaults are applied."""
    if run_input.timeout is None or run_input.web_console_url is None:
        raise ValueError("timeout and web_console_url must be defaulted before creating a run")

    return Run(
        id=uuid.uuid4(),
        org_id=run_input.org_id,
        correlation_id=correlation_id,
        url=run_input.url,
        status=RunStatus.RUNNING,
        recipient=run_input.recipient,
        labels=run_input.labels,
        response_full=response_full,
        service=service,
        timeout=run_input.timeout,
        playbook_run_url=run_input.web_console_url,
        playbook_name=run_input.name,
        principal=run_input.principal,
        sat_id=run_input.sat_id,
        sat_org_id=run_input.sat_org_id,
    )


def _host_name(host: RunHostsInput) -> str:
    if host.ansible_host is not None:
        return host.ansible_host
    if host.inventory_id is None:
        raise ValueError("a host needs either ansible_host or inventory_id")
    return str(host.inventory_id)


def new_host_runs(run_hosts: list[RunHostsInput], run_id: uuid.UUID) -> list[RunHost]:
    """Build running RunHost records for the given run."""
    return [
        RunHost(
            id=uuid.uuid4(),
            run_id=run_id,
            inventory_id=host.inventory_id,
            host=_host_name(host),
            status=RunStatus.RUNNING,
        )
        for host in run_hosts
    ]