# pbdispatch

Core of a playbook dispatching service. It turns requests to run Ansible
playbooks into messages for remote hosts, sends them through a cloud connector,
records the runs, and provides helpers for answering queries about them.

## Modules

- `pbdispatch.models`: the records `Run` and `RunHost`, the `RunStatus` enum,
  and the generic inputs `RunInput`, `RunHostsInput` and `CancelInput`.
  `new_run` and `new_host_runs` build running records from an input.
- `pbdispatch.errors`: `DispatchError` and its subclasses
  `RecipientNotFoundError`, `RunNotFoundError`, `RunOrgIdMismatchError`,
  `RunCancelTypeError` and `RunCancelNotCancelableError`.
- `pbdispatch.protocols`: message metadata builders. `RunnerProtocol` uses the
  `rhc-worker-playbook` directive; `SatelliteProtocol` uses `foreman_rh_cloud`
  and also builds cancel metadata, identifying the initiator by the SHA-256 hex
  digest of the principal.
- `pbdispatch.instrumentation`: in-process `LabeledCounter` metrics and log
  probes for connector errors, created and cancelled runs, RBAC and validation
  failures. `start()` registers the known label combinations at zero.
- `pbdispatch.cloud_connector`: `CloudConnectorClientImpl` sends messages and
  asks for connection status over HTTP through an `HttpRequestDoer`
  (`UrllibRequestDoer` by default, via `new_connector_client`).
  `CloudConnectorClientMock` answers with canned results.
- `pbdispatch.inventory`: `InventoryClient.get_host_connection_details` combines
  host facts and system profiles into `HostDetails` (owner id, Satellite
  instance id and version, rhc client id).
- `pbdispatch.sources`: `SourcesClient` looks up a source and its rhc
  connection and returns a `SourceConnectionStatus`; failures raise
  `SourcesError`. `SourcesClientMock` answers with canned results.
- `pbdispatch.dispatch`: `DispatchManager.process_run` applies defaults, picks
  the protocol, waits on a token-bucket `RateLimiter`, sends the message and
  stores the run through a `RunStore`. `process_cancel` cancels a running
  Satellite run. `InMemoryRunStore` is a store kept in process memory.
- `pbdispatch.private_actions`: request mapping and validation
  (`validate_satellite_fields`) and the per-run result codes for created and
  cancelled runs.
- `pbdispatch.private_api`: `PrivateController`, made by `create_controller`,
  with handlers `runs_create`, `runs_create_v2`, `runs_cancel_v2`,
  `recipients_status` and `version`. Each returns an `ApiResponse` holding a
  status code and a JSON-serialisable body. Batches are processed concurrently
  and give one result per item. `runs_create` needs a `TenantTranslator` to map
  account numbers to org ids.
- `pbdispatch.public_api`: helpers for listing runs and run hosts: field
  selection (`parse_fields`), record conversion (`db_run_to_api_run`,
  `db_run_host_to_api_run_host`), paging links (`create_links`), ordering
  (`get_order_by`) and the SQL column expressions for selected fields.

Configuration is any mapping with dotted keys, for example
`"cloud.connector.host"`, `"default.run.timeout"` or `"return.url"`.

## Installation

```
pip install .
```

With the test tools:

```
pip install ".[test]"
```

## Example

```python
from pbdispatch.cloud_connector import CloudConnectorClientMock
from pbdispatch.dispatch import InMemoryRunStore
from pbdispatch.private_api import create_controller

config = {
    "cloud.connector.rps": 100,
    "cloud.connector.req.bucket": 60,
    "web.console.url.default": "https://console.example.com/insights/remediations",
    "default.run.timeout": 3600,
    "return.url": "https://example.com/return",
    "response.interval": "60",
    "satellite.response.full": True,
    "build.commit": "dev",
}

controller = create_controller(
    InMemoryRunStore(), CloudConnectorClientMock(), config, translator=None
)
response = controller.runs_create_v2(
    [{
        "org_id": "5318290",
        "recipient": "dd018b96-da04-4651-84d1-187fa5c23f6c",
        "url": "https://example.com/playbook.yml",
        "name": "example playbook",
        "principal": "test-user",
    }],
    principal="test",
)
print(response.status, response.body)
```

The response status is 207 and each run in the batch gets its own result: code
201 and the new run id, or an error code such as 404 when the recipient is not
connected.

## What the package does not do

- It runs no HTTP server and has no command-line entry point; the handlers are
  plain methods to be called from a web framework of your choice. Request
  schema validation and authentication are left to the caller.
- It has no database layer. `InMemoryRunStore` is the only `RunStore`; the
  public listing helpers produce SQL column expressions and orderings but
  execute no queries, and there are no migrations or clean-up of timed-out runs.
- It consumes no run responses from hosts; run and host statuses change only
  where your own code changes them.
- Metrics are kept in process memory and are not exported.

## Running the tests

```
pytest
```