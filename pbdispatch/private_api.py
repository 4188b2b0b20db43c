"""Handlers of the internal API used by other services to dispatch runs."""

from __future__ import annotations

import abc
import json
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Callable, Mapping, Optional, Sequence, TypeVar, Union

from pbdispatch import instrumentation
from pbdispatch.cloud_connector import CloudConnectorClient, ConnectionStatus
from pbdispatch.dispatch import DispatchManager, RateLimiter, RunStore
from pbdispatch.private_actions import (
    ValidationError,
    cancel_input_v2_generic_map,
    handle_run_cancel_error,
    handle_run_create_error,
    parse_run_hosts,
    parse_validated_uuid,
    run_canceled,
    run_created,
    run_input_v1_generic_map,
    run_input_v2_generic_map,
    validate_satellite_fields,
)

log = logging.getLogger("pbdispatch")

_MAX_WORKERS = 32
_MALFORMED = (KeyError, TypeError, ValueError, AttributeError)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class ApiResponse:
    """HTTP status and JSON-serialisable body of a handler's reply."""

    status: int
    body: Any = None


class TenantTranslator(abc.ABC):
    """Translates account numbers to organization ids."""

    @abc.abstractmethod
    def ean_to_org_id(self, ean: str) -> str:
        """Org id of the account; raises TenantNotFoundError if there is none."""


def _get_string(cfg: Mapping[str, Any], key: str) -> str:
    value = cfg.get(key)
    return "" if value is None else str(value)


def _get_int(cfg: Mapping[str, Any], key: str) -> int:
    value = cfg.get(key)
    if value is None or value == "":
        return 0
    return int(value)


def get_rate_limiter(config: Mapping[str, Any]) -> RateLimiter:
    """Token-bucket limiter for requests to cloud connector."""
    return RateLimiter(
        _get_int(config, "cloud.connector.rps"),
        _get_int(config, "cloud.connector.req.bucket"),
    )


def get_request_type_label(run_input: Mapping[str, Any]) -> str:
    """Metrics label of a v2 run request."""
    recipient_config = run_input.get("recipient_config")
    if recipient_config is not None and recipient_config.get("sat_id") is not None:
        return instrumentation.LABEL_SAT_REQUEST
    return instrumentation.LABEL_ANSIBLE_REQUEST


def _read_list(body: Union[str, bytes, bytearray, Sequence[Any]]) -> list[dict[str, Any]]:
    if isinstance(body, (str, bytes, bytearray)):
        body = json.loads(body)
    if not isinstance(body, list) or not all(isinstance(item, dict) for item in body):
        raise ValueError("request body must be a JSON array of objects")
    return body


def _pmap(fn: Callable[[T], R], items: Sequence[T]) -> list[R]:
    if not items:
        return []
    with ThreadPoolExecutor(max_workers=min(len(items), _MAX_WORKERS)) as executor:
        return list(executor.map(fn, items))


class PrivateController:
    """Handlers of the internal endpoints."""

    def __init__(
        self,
        cloud_connector: CloudConnectorClient,
        config: Mapping[str, Any],
        rate_limiter: RateLimiter,
        translator: TenantTranslator,
        dispatch_manager: DispatchManager,
    ) -> None:
        self.cloud_connector = cloud_connector
        self.config = config
        self.rate_limiter = rate_limiter
        self.translator = translator
        self.dispatch_manager = dispatch_manager

    def runs_create(self, body: Any, principal: str) -> ApiResponse:
        """Dispatch v1 runs; one result per requested run."""
        try:
            items = _read_list(body)
            parsed = [
                (item, parse_validated_uuid(item["recipient"]), parse_run_hosts(item.get("hosts")))
                for item in items
            ]
        except _MALFORMED as error:
            log.error("%s", error)
            return ApiResponse(HTTPStatus.BAD_REQUEST.value)

        def process(entry: tuple[dict[str, Any], uuid.UUID, list]) -> dict[str, Any]:
            item, recipient, hosts = entry
            try:
                org_id = self.translator.ean_to_org_id(str(item["account"]))
            except Exception as error:
                log.error("%s", error)
                return handle_run_create_error(error)

            run_input = run_input_v1_generic_map(item, org_id, recipient, hosts)
            try:
                run_id, _ = self.dispatch_manager.process_run(
                    org_id, principal, run_input, instrumentation.API_V1
                )
            except Exception as error:
                return handle_run_create_error(error)
            return run_created(run_id)

        return ApiResponse(HTTPStatus.MULTI_STATUS.value, _pmap(process, parsed))

    def runs_create_v2(self, body: Any, principal: str) -> ApiResponse:
        """Dispatch v2 runs, Satellite ones included; one result per requested run."""
        try:
            items = _read_list(body)
        except _MALFORMED as error:
            log.error("%s", error)
            return ApiResponse(HTTPStatus.BAD_REQUEST.value)

        for item in items:
            try:
                validate_satellite_fields(item)
            except ValidationError as error:
                instrumentation.invalid_satellite_request(error)
                return ApiResponse(HTTPStatus.BAD_REQUEST.value, {"message": str(error)})

        try:
            run_inputs = [self._parse_v2(item) for item in items]
        except _MALFORMED as error:
            log.error("%s", error)
            return ApiResponse(HTTPStatus.BAD_REQUEST.value)

        def process(run_input: Any) -> dict[str, Any]:
            try:
                run_id, _ = self.dispatch_manager.process_run(
                    run_input.org_id, principal, run_input, instrumentation.API_V2
                )
            except Exception as error:
                return handle_run_create_error(error)
            return run_created(run_id)

        return ApiResponse(HTTPStatus.MULTI_STATUS.value, _pmap(process, run_inputs))

    @staticmethod
    def _parse_v2(item: Mapping[str, Any]) -> Any:
        recipient = parse_validated_uuid(item["recipient"])
        hosts = parse_run_hosts(item.get("hosts"))
        sat_id: Optional[uuid.UUID] = None
        recipient_config = item.get("recipient_config")
        if recipient_config is not None and recipient_config.get("sat_id") is not None:
            sat_id = parse_validated_uuid(recipient_config["sat_id"])
        return run_input_v2_generic_map(item, recipient, hosts, sat_id)

    def runs_cancel_v2(self, body: Any) -> ApiResponse:
        """Cancel running Satellite runs; one result per request."""
        try:
            items = _read_list(body)
            cancel_inputs = [
                cancel_input_v2_generic_map(item, parse_validated_uuid(item["run_id"]))
                for item in items
            ]
        except _MALFORMED as error:
            log.error("%s", error)
            return ApiResponse(HTTPStatus.BAD_REQUEST.value)

        def process(cancel_input: Any) -> dict[str, Any]:
            try:
                run_id, _ = self.dispatch_manager.process_cancel(cancel_input.org_id, cancel_input)
            except Exception as error:
                return handle_run_cancel_error(error)
            return run_canceled(run_id)

        return ApiResponse(HTTPStatus.MULTI_STATUS.value, _pmap(process, cancel_inputs))

    def recipients_status(self, body: Any) -> ApiResponse:
        """Connection status of each recipient in the request."""
        try:
            items = _read_list(body)
            recipients = [(str(item["recipient"]), str(item["org_id"])) for item in items]
        except _MALFORMED as error:
            log.error("%s", error)
            return ApiResponse(HTTPStatus.BAD_REQUEST.value)

        results = []
        for recipient, org_id in recipients:
            try:
                self.rate_limiter.wait()
                status = self.cloud_connector.get_connection_status(org_id, recipient)
            except Exception as error:
                log.error("%s", error)
                return ApiResponse(HTTPStatus.INTERNAL_SERVER_ERROR.value)

            results.append(
                {
                    "recipient": recipient,
                    "org_id": org_id,
                    "connected": status == ConnectionStatus.CONNECTED,
                }
            )

        return ApiResponse(HTTPStatus.OK.value, results)

    def version(self) -> ApiResponse:
        """Build commit of the running service."""
        return ApiResponse(HTTPStatus.OK.value, _get_string(self.config, "build.commit"))


def create_controller(
    store: RunStore,
    cloud_connector: CloudConnectorClient,
    config: Mapping[str, Any],
    translator: TenantTranslator,
) -> PrivateController:
    """Controller wired with a dispatch manager that shares its rate limiter."""
    rate_limiter = get_rate_limiter(config)
    return PrivateController(
        cloud_connector=cloud_connector,
        config=config,
        rate_limiter=rate_limiter,
        translator=translator,
        dispatch_manager=DispatchManager(config, cloud_connector, rate_limiter, store),
    )