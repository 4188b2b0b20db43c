"""Metrics counters and log probes for the dispatch API."""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Iterable, Optional

log = logging.getLogger("pbdispatch")

LABEL_DB = "db"
LABEL_PLAYBOOK_RUN_CREATE = "playbook_run_create"
LABEL_PLAYBOOK_RUN_HOST_CREATE = "playbook_run_host_create"
LABEL_PLAYBOOK_RUN_READ = "playbook_run_read"
LABEL_NO_CONNECTION = "no_connection"
LABEL_ERROR_GENERIC = "error"
LABEL_TENANT_ANEMIC = "anemic-tenant"
LABEL_SATELLITE = "satellite"
LABEL_ANSIBLE_REQUEST = "ansible"
LABEL_SAT_REQUEST = "satellite"

API_V1 = "v1"
API_V2 = "v2"


class LabeledCounter:
    """Monotonic counter partitioned by label values."""

    def __init__(self, name: str, help: str, label_names: Iterable[str]) -> None:
        self.name = name
        self.help = help
        self.label_names = tuple(label_names)
        self._values: dict[tuple[str, ...], float] = {}
        self._lock = threading.Lock()

    def _key(self, args: tuple[Any, ...]) -> tuple[str, ...]:
        if len(args) != len(self.label_names):
            raise ValueError(
                f"{self.name}: expected {len(self.label_names)} label values, got {len(args)}"
            )
        return tuple(str(arg) for arg in args)

    def init_labels(self, *args: Any) -> None:
        """Make the label combination visible with a zero value."""
        key = self._key(args)
        with self._lock:
            self._values.setdefault(key, 0)

    def inc(self, *args: Any) -> None:
        """Add one to the label combination."""
        key = self._key(args)
        with self._lock:
            self._values[key] = self._values.get(key, 0) + 1

    def value(self, *args: Any) -> float:
        """Current value of the label combination, zero if never seen."""
        key = self._key(args)
        with self._lock:
            return self._values.get(key, 0)

    def __contains__(self, labels: object) -> bool:
        if not isinstance(labels, tuple):
            labels = (labels,)
        key = self._key(labels)
        with self._lock:
            return key in self._values


VALIDATION_FAILURE_TOTAL = LabeledCounter(
    "api_validation_failure_total", "The total number of invalid requests", ["type"]
)
ERROR_TOTAL = LabeledCounter(
    "api_error_total",
    "The total number of errors",
    ["type", "subtype", "request", "api_version"],
)
CONNECTOR_ERROR_TOTAL = LabeledCounter(
    "api_cloud_connector_error_total",
    "The total number of errors talking to cloud connector",
    ["type", "request"],
)
CONNECTOR_SENT_TOTAL = LabeledCounter(
    "api_cloud_connector_sent_total", "The total number of messages sent via cloud connector", []
)
RBAC_ERROR_TOTAL = LabeledCounter("api_rbac_error_total", "The total number of errors from RBAC", [])
RBAC_REJECTED_TOTAL = LabeledCounter(
    "api_rbac_rejected_total", "The total number of requests rejected due to RBAC", []
)
RUN_CREATED_TOTAL = LabeledCounter(
    "api_run_created_total",
    "The total number of created playbook runs",
    ["dispatching_service", "request", "api_version"],
)
RUN_CANCELED_TOTAL = LabeledCounter(
    "api_run_canceled_total", "The total number of canceled playbook runs", []
)
RUN_CANCELED_ERROR_TOTAL = LabeledCounter(
    "app_run_canceled_error_total", "The total number of errors from the run cancel endpoint", []
)


def tenant_anemic(org_id: str) -> None:
    log.error("Rejecting request for anemic tenant org_id=%s", org_id)
    VALIDATION_FAILURE_TOTAL.inc(LABEL_TENANT_ANEMIC)


def invalid_satellite_request(error: BaseException) -> None:
    log.error("Invalid Satellite request error=%s", error)
    VALIDATION_FAILURE_TOTAL.inc(LABEL_SATELLITE)


def cloud_connector_request_error(error: BaseException, recipient: uuid.UUID, request_type: str) -> None:
    log.error("Error sending message to cloud connector error=%s recipient=%s", error, recipient)
    CONNECTOR_ERROR_TOTAL.inc(LABEL_ERROR_GENERIC, request_type)


def cloud_connector_no_connection(recipient: uuid.UUID, request_type: str) -> None:
    log.error("Cloud connector reporting no connection for recipient recipient=%s", recipient)
    CONNECTOR_ERROR_TOTAL.inc(LABEL_NO_CONNECTION, request_type)


def cloud_connector_ok(recipient: uuid.UUID, message_id: Optional[str]) -> None:
    log.debug(
        "Received response from cloud connector recipient=%s message_id=%s", recipient, message_id
    )
    CONNECTOR_SENT_TOTAL.inc()


def playbook_run_create_error(error: BaseException, run: Any, request_type: str, api_version: str) -> None:
    log.error("Error creating run error=%s run=%s", error, run)
    ERROR_TOTAL.inc(LABEL_DB, LABEL_PLAYBOOK_RUN_CREATE, request_type, api_version)


def playbook_run_host_create_error(
    error: BaseException, hosts: Any, request_type: str, api_version: str
) -> None:
    log.error("Error creating run host error=%s data=%s", error, hosts)
    ERROR_TOTAL.inc(LABEL_DB, LABEL_PLAYBOOK_RUN_HOST_CREATE, request_type, api_version)


def playbook_run_cancel_error(error: Optional[BaseException]) -> None:
    log.error("Error canceling run error=%s", error)
    RUN_CANCELED_ERROR_TOTAL.inc()


def playbook_run_cancel_run_type_error(run_id: uuid.UUID) -> None:
    log.error("Attempting to cancel run not of type Satellite RHC run_id=%s", run_id)
    RUN_CANCELED_ERROR_TOTAL.inc()


def playbook_run_read_error(error: BaseException) -> None:
    log.error("Error reading playbook runs from database error=%s", error)
    # Reads carry no request type or API version; those labels stay empty.
    ERROR_TOTAL.inc(LABEL_DB, LABEL_PLAYBOOK_RUN_READ, "", "")


def rbac_error(error: BaseException) -> None:
    log.error("error getting permissions from RBAC error=%s", error)
    RBAC_ERROR_TOTAL.inc()


def rbac_rejected() -> None:
    log.info("access rejected due to RBAC")
    RBAC_REJECTED_TOTAL.inc()


def run_created(
    recipient: uuid.UUID,
    run_id: uuid.UUID,
    payload: str,
    service: str,
    request_type: str,
    api_version: str,
) -> None:
    log.info(
        "Created new playbook run recipient=%s run_id=%s payload=%s service=%s",
        recipient,
        run_id,
        payload,
        service,
    )
    RUN_CREATED_TOTAL.inc(service, request_type, api_version)


def run_canceled(run_id: uuid.UUID) -> None:
    log.info("Successfully initiated playbook run cancelation run_id=%s", run_id)
    RUN_CANCELED_TOTAL.inc()


def start() -> None:
    """Initialise the known label combinations so they report zero."""
    VALIDATION_FAILURE_TOTAL.init_labels(LABEL_TENANT_ANEMIC)
    VALIDATION_FAILURE_TOTAL.init_labels(LABEL_SATELLITE)

    combinations = [
        (LABEL_ANSIBLE_REQUEST, API_V1),
        (LABEL_ANSIBLE_REQUEST, API_V2),
        (LABEL_SAT_REQUEST, API_V2),
    ]
    for request_type, version in combinations:
        for subtype in (LABEL_PLAYBOOK_RUN_CREATE, LABEL_PLAYBOOK_RUN_HOST_CREATE, LABEL_PLAYBOOK_RUN_READ):
            ERROR_TOTAL.init_labels(LABEL_DB, subtype, request_type, version)

    for error_type in (LABEL_ERROR_GENERIC, LABEL_NO_CONNECTION):
        for request_type in (LABEL_ANSIBLE_REQUEST, LABEL_SAT_REQUEST):
            CONNECTOR_ERROR_TOTAL.init_labels(error_type, request_type)