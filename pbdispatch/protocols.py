"""Message builders for the rhc workers that execute playbooks."""

from __future__ import annotations

import abc
import enum
import hashlib
import uuid
from typing import Any, Mapping

from pbdispatch.models import CancelInput, RunInput

LABEL_RUNNER_REQUEST = "ansible"
LABEL_SAT_REQUEST = "satellite"


class Directive(str, enum.Enum):
    """Identifier of an rhc worker."""

    RUNNER = "rhc-worker-playbook"
    SATELLITE = "foreman_rh_cloud"


def _get_string(cfg: Mapping[str, Any], key: str) -> str:
    value = cfg.get(key)
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _get_bool(cfg: Mapping[str, Any], key: str) -> bool:
    value = cfg.get(key)
    if isinstance(value, str):
        return value.strip().lower() in {"1", "t", "true"}
    return bool(value)


def build_common_signal(cfg: Mapping[str, Any]) -> dict[str, str]:
    """Metadata fields shared by all protocols."""
    return {
        "return_url": _get_string(cfg, "return.url"),
        "response_interval": _get_string(cfg, "response.interval"),
    }


class Protocol(abc.ABC):
    """Knows how to format a run message for one rhc worker."""

    directive: Directive
    label: str

    @abc.abstractmethod
    def response_full(self, cfg: Mapping[str, Any]) -> bool:
        """Whether the worker reports the full response."""

    @abc.abstractmethod
    def build_metadata(
        self, run_input: RunInput, correlation_id: uuid.UUID, cfg: Mapping[str, Any]
    ) -> dict[str, str]:
        """Metadata dictionary in the worker's format."""


class RunnerProtocol(Protocol):
    """Protocol of the rhc playbook worker."""

    directive = Directive.RUNNER
    label = LABEL_RUNNER_REQUEST

    def response_full(self, cfg: Mapping[str, Any]) -> bool:
        return True

    def build_metadata(
        self, run_input: RunInput, correlation_id: uuid.UUID, cfg: Mapping[str, Any]
    ) -> dict[str, str]:
        metadata = build_common_signal(cfg)
        metadata["crc_dispatcher_correlation_id"] = str(correlation_id)
        return metadata


class SatelliteProtocol(Protocol):
    """Protocol of the Satellite cloud worker."""

    directive = Directive.SATELLITE
    label = LABEL_SAT_REQUEST

    def response_full(self, cfg: Mapping[str, Any]) -> bool:
        return _get_bool(cfg, "satellite.response.full")

    def principal_hash(self, principal: str) -> str:
        """Hex SHA-256 digest of the principal."""
        return hashlib.sha256(principal.encode("utf-8")).hexdigest()

    def build_metadata(
        self, run_input: RunInput, correlation_id: uuid.UUID, cfg: Mapping[str, Any]
    ) -> dict[str, str]:
        for name in ("principal", "name", "web_console_url", "sat_id", "sat_org_id"):
            if getattr(run_input, name) is None:
                raise ValueError(f"satellite run requires {name}")
        for host in run_input.hosts:
            if host.inventory_id is None:
                raise ValueError("satellite run hosts require inventory_id")

        metadata = build_common_signal(cfg)
        metadata["operation"] = "run"
        metadata["correlation_id"] = str(correlation_id)
        metadata["playbook_run_name"] = run_input.name
        metadata["playbook_run_url"] = run_input.web_console_url
        metadata["sat_id"] = str(run_input.sat_id)
        metadata["sat_org_id"] = run_input.sat_org_id
        metadata["initiator_user_id"] = self.principal_hash(run_input.principal)
        metadata["hosts"] = ",".join(str(host.inventory_id) for host in run_input.hosts)
        metadata["response_full"] = "true" if self.response_full(cfg) else "false"
        return metadata

    def build_cancel_metadata(
        self, cancel_input: CancelInput, correlation_id: uuid.UUID, cfg: Mapping[str, Any]
    ) -> dict[str, str]:
        """Metadata for cancelling a running Satellite run."""
        return {
            "operation": "cancel",
            "correlation_id": str(correlation_id),
            "initiator_user_id": self.principal_hash(cancel_input.principal),
        }


RUNNER_PROTOCOL = RunnerProtocol()
SATELLITE_PROTOCOL = SatelliteProtocol()