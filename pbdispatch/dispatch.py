"""Sends run signals through cloud connector and records the runs."""

from __future__ import annotations

import abc
import dataclasses
import math
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from pbdispatch import instrumentation
from pbdispatch.cloud_connector import CloudConnectorClient
from pbdispatch.errors import (
    RecipientNotFoundError,
    RunCancelNotCancelableError,
    RunCancelTypeError,
    RunNotFoundError,
    RunOrgIdMismatchError,
)
from pbdispatch.models import (
    CancelInput,
    Run,
    RunHost,
    RunInput,
    RunStatus,
    new_host_runs,
    new_run,
)
from pbdispatch.protocols import RUNNER_PROTOCOL, SATELLITE_PROTOCOL, Protocol


def _get_string(cfg: Mapping[str, Any], key: str) -> str:
    value = cfg.get(key)
    return "" if value is None else str(value)


def _get_int(cfg: Mapping[str, Any], key: str) -> int:
    value = cfg.get(key)
    if value is None or value == "":
        return 0
    return int(value)


def _get_bool(cfg: Mapping[str, Any], key: str) -> bool:
    value = cfg.get(key)
    if isinstance(value, str):
        return value.strip().lower() in {"1", "t", "true"}
    return bool(value)


class RateLimiter:
    """Token bucket that refills at `rate` tokens per second up to `burst` tokens."""

    def __init__(self, rate: float, burst: int) -> None:
        self._rate = float(rate)
        self._burst = int(burst)
        self._tokens = float(self._burst)
        self._last = time.monotonic()
        self._lock = threading.Lock()

    def wait(self) -> None:
        """Take one token, sleeping until one is available."""
        if math.isinf(self._rate) and self._rate > 0:
            return
        if self._burst < 1:
            raise ValueError(f"rate: Wait(n=1) exceeds limiter's burst {self._burst}")

        with self._lock:
            now = time.monotonic()
            if self._rate > 0:
                refill = (now - self._last) * self._rate
                self._tokens = min(float(self._burst), self._tokens + refill)
            self._last = now

            if self._tokens < 1 and self._rate <= 0:
                raise ValueError("rate: Wait(n=1) can never be satisfied")

            self._tokens -= 1
            delay = -self._tokens / self._rate if self._tokens < 0 else 0.0

        if delay > 0:
            time.sleep(delay)


class RunStore(abc.ABC):
    """Persistence of runs and their hosts."""

    @abc.abstractmethod
    def get_run(self, run_id: uuid.UUID) -> Optional[Run]:
        """The run with the given id, or None."""

    @abc.abstractmethod
    def create_run(self, run: Run, hosts: list[RunHost]) -> None:
        """Store a run together with its hosts, all or nothing."""


class InMemoryRunStore(RunStore):
    """Run store kept in process memory."""

    def __init__(self) -> None:
        self._runs: dict[uuid.UUID, Run] = {}
        self._hosts: dict[uuid.UUID, list[RunHost]] = {}
        self._lock = threading.Lock()

    def get_run(self, run_id: uuid.UUID) -> Optional[Run]:
        with self._lock:
            return self._runs.get(run_id)

    def create_run(self, run: Run, hosts: list[RunHost]) -> None:
        with self._lock:
            if run.id in self._runs:
                raise ValueError(f"duplicate run id: {run.id}")
            for host in hosts:
                if host.run_id != run.id:
                    raise ValueError(f"host {host.id} does not belong to run {run.id}")
            now = datetime.now(timezone.utc)
            for record in (run, *hosts):
                record.created_at = record.created_at or now
                record.updated_at = record.updated_at or now
            self._runs[run.id] = run
            self._hosts[run.id] = list(hosts)

    def hosts_for(self, run_id: uuid.UUID) -> list[RunHost]:
        """Hosts stored for the run, empty if there are none."""
        with self._lock:
            return list(self._hosts.get(run_id, []))


def get_protocol(run_input: RunInput) -> Protocol:
    """Satellite protocol for runs aimed at a Satellite, runner protocol otherwise."""
    if run_input.sat_id is not None:
        return SATELLITE_PROTOCOL
    return RUNNER_PROTOCOL


class DispatchManager:
    """Orchestrates sending run signals and storing the run records."""

    def __init__(
        self,
        config: Mapping[str, Any],
        cloud_connector: CloudConnectorClient,
        rate_limiter: RateLimiter,
        store: RunStore,
    ) -> None:
        self.config = config
        self.cloud_connector = cloud_connector
        self.rate_limiter = rate_limiter
        self.store = store

    def _new_correlation_id(self) -> uuid.UUID:
        if _get_bool(self.config, "demo.mode"):
            return uuid.UUID(int=0)
        return uuid.uuid4()

    def _with_defaults(self, run_input: RunInput) -> RunInput:
        changes: dict[str, Any] = {}
        if run_input.web_console_url is None:
            changes["web_console_url"] = _get_string(self.config, "web.console.url.default")
        if run_input.timeout is None:
            changes["timeout"] = _get_int(self.config, "default.run.timeout")
        return dataclasses.replace(run_input, **changes) if changes else run_input

    def _send(
        self,
        org_id: str,
        recipient: uuid.UUID,
        payload: str,
        protocol: Protocol,
        metadata: dict[str, str],
    ) -> Optional[str]:
        self.rate_limiter.wait()

        try:
            message_id, not_found = self.cloud_connector.send_cloud_connector_request(
                org_id, recipient, payload, protocol.directive.value, metadata
            )
        except Exception as error:
            instrumentation.cloud_connector_request_error(error, recipient, protocol.label)
            raise

        if not_found:
            instrumentation.cloud_connector_no_connection(recipient, protocol.label)
            raise RecipientNotFoundError(recipient)

        instrumentation.cloud_connector_ok(recipient, message_id)
        return message_id

    def process_run(
        self,
        org_id: str,
        service: str,
        run_input: RunInput,
        api_version: str = instrumentation.API_V1,
    ) -> tuple[uuid.UUID, uuid.UUID]:
        """Signal the recipient and store the run; return (run id, correlation id)."""
        correlation_id = self._new_correlation_id()
        run = self._with_defaults(run_input)
        protocol = get_protocol(run)
        metadata = protocol.build_metadata(run, correlation_id, self.config)

        self._send(org_id, run.recipient, run.url, protocol, metadata)

        entity = new_run(run, correlation_id, protocol.response_full(self.config), service)
        hosts = new_host_runs(run.hosts, entity.id) if run.hosts else []

        try:
            self.store.create_run(entity, hosts)
        except Exception as error:
            instrumentation.playbook_run_create_error(error, entity, protocol.label, api_version)
            raise

        instrumentation.run_created(
            run.recipient, entity.id, run.url, entity.service, protocol.label, api_version
        )
        return entity.id, correlation_id

    def process_cancel(self, org_id: str, cancel_input: CancelInput) -> tuple[uuid.UUID, uuid.UUID]:
        """Signal cancellation of a running Satellite run; return (run id, correlation id)."""
        run = self.store.get_run(cancel_input.run_id)
        if run is None:
            error = RunNotFoundError(cancel_input.run_id)
            instrumentation.playbook_run_cancel_error(error)
            raise error

        if run.org_id != org_id:
            error = RunOrgIdMismatchError(cancel_input.run_id)
            instrumentation.playbook_run_cancel_error(error)
            raise error

        if run.sat_id is None or run.sat_org_id is None:
            instrumentation.playbook_run_cancel_run_type_error(run.id)
            raise RunCancelTypeError(run.id)

        if run.status != RunStatus.RUNNING:
            raise RunCancelNotCancelableError(run.id)

        protocol = SATELLITE_PROTOCOL
        metadata = protocol.build_cancel_metadata(cancel_input, run.correlation_id, self.config)

        self._send(org_id, run.recipient, "", protocol, metadata)

        instrumentation.run_canceled(run.id)
        return cancel_input.run_id, run.correlation_id