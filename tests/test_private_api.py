import json
import uuid

import pytest

from pbdispatch.cloud_connector import CloudConnectorClientMock
from pbdispatch.dispatch import InMemoryRunStore
from pbdispatch.models import RunStatus
from pbdispatch.private_actions import TenantNotFoundError
from pbdispatch.private_api import (
    TenantTranslator,
    create_controller,
    get_rate_limiter,
    get_request_type_label,
)

CONFIG = {
    "cloud.connector.rps": 1000,
    "cloud.connector.req.bucket": 100,
    "return.url": "http://example.com/return",
    "response.interval": "60",
    "web.console.url.default": "https://console.example.com",
    "default.run.timeout": 3600,
    "build.commit": "abc123",
    "satellite.response.full": True,
}

NOT_CONNECTED = "b5fbb740-5590-45a4-8240-89192dc49199"
TIMING_OUT = "b31955fb-3064-4f56-ae44-a1c488a28587"


class FakeTranslator(TenantTranslator):
    def ean_to_org_id(self, ean):
        if ean == "0000001":
            return "5318290"
        raise TenantNotFoundError(ean)


@pytest.fixture
def store():
    return InMemoryRunStore()


@pytest.fixture
def controller(store):
    return create_controller(store, CloudConnectorClientMock(), CONFIG, FakeTranslator())


def satellite_run(recipient=None):
    return {
        "org_id": "5318290",
        "recipient": recipient or str(uuid.uuid4()),
        "url": "http://example.com",
        "name": "test-playbook",
        "principal": "test-user",
        "recipient_config": {"sat_id": "16372e6f-1c18-4cdb-b780-50ab4b88e74b", "sat_org_id": "456"},
        "hosts": [{"inventory_id": "16372e6f-1c18-4cdb-b780-50ab4b88e74b"}],
    }


def test_version(controller):
    response = controller.version()
    assert response.status == 200
    assert response.body == "abc123"


def test_runs_create_v2_stores_run(controller, store):
    recipient = str(uuid.uuid4())
    body = [
        {
            "org_id": "5318290",
            "recipient": recipient,
            "url": "http://example.com",
            "principal": "test-user",
            "hosts": [{"ansible_host": "localhost"}],
        }
    ]
    response = controller.runs_create_v2(json.dumps(body), "remediations")
    assert response.status == 207
    assert response.body[0]["code"] == 201

    run = store.get_run(uuid.UUID(response.body[0]["id"]))
    assert run.org_id == "5318290"
    assert str(run.recipient) == recipient
    assert run.service == "remediations"
    assert run.timeout == CONFIG["default.run.timeout"]
    assert run.playbook_run_url == CONFIG["web.console.url.default"]
    assert [h.host for h in store.hosts_for(run.id)] == ["localhost"]


def test_runs_create_v2_per_item_errors(controller):
    body = [
        {"org_id": "5318290", "recipient": NOT_CONNECTED, "url": "http://example.com", "principal": "p"},
        {"org_id": "5318290", "recipient": TIMING_OUT, "url": "http://example.com", "principal": "p"},
    ]
    response = controller.runs_create_v2(body, "remediations")
    assert response.status == 207
    assert [item["code"] for item in response.body] == [404, 500]


def test_runs_create_v2_rejects_invalid_satellite(controller, store):
    run = satellite_run()
    del run["hosts"]
    response = controller.runs_create_v2([run], "remediations")
    assert response.status == 400
    assert response.body == {"message": "Hosts need to be defined"}


def test_runs_create_v2_rejects_malformed_body(controller):
    assert controller.runs_create_v2("not json", "remediations").status == 400
    assert controller.runs_create_v2({"org_id": "1"}, "remediations").status == 400


def test_runs_create_v1_translates_account(controller, store):
    body = [
        {"account": "0000001", "recipient": str(uuid.uuid4()), "url": "http://example.com"},
        {"account": "0000002", "recipient": str(uuid.uuid4()), "url": "http://example.com"},
    ]
    response = controller.runs_create(body, "remediations")
    assert response.status == 207
    assert response.body[0]["code"] == 201
    assert response.body[1] == {"code": 404}
    run = store.get_run(uuid.UUID(response.body[0]["id"]))
    assert run.org_id == "5318290"


def test_cancel_satellite_run(controller, store):
    created = controller.runs_create_v2([satellite_run()], "remediations")
    run_id = created.body[0]["id"]
    assert store.get_run(uuid.UUID(run_id)).status == RunStatus.RUNNING

    response = controller.runs_cancel_v2(
        [{"org_id": "5318290", "run_id": run_id, "principal": "test-user"}]
    )
    assert response.status == 207
    assert response.body == [{"code": 202, "run_id": run_id}]


def test_cancel_errors(controller):
    sat = controller.runs_create_v2([satellite_run()], "remediations").body[0]["id"]
    runner = controller.runs_create_v2(
        [{"org_id": "5318290", "recipient": str(uuid.uuid4()), "url": "http://example.com", "principal": "p"}],
        "remediations",
    ).body[0]["id"]

    response = controller.runs_cancel_v2(
        [
            {"org_id": "5318290", "run_id": str(uuid.uuid4()), "principal": "p"},
            {"org_id": "other", "run_id": sat, "principal": "p"},
            {"org_id": "5318290", "run_id": runner, "principal": "p"},
        ]
    )
    assert [item["code"] for item in response.body] == [404, 400, 400]


def test_recipients_status(controller):
    body = [
        {"recipient": "411cb203-f8c9-480e-ba20-1efbc74e3a33", "org_id": "5318290"},
        {"recipient": "35720ecb-bc23-4b06-a8cd-f0c264edf2c1", "org_id": "5318290"},
    ]
    response = controller.recipients_status(body)
    assert response.status == 200
    assert [item["connected"] for item in response.body] == [False, True]
    assert response.body[1]["recipient"] == "35720ecb-bc23-4b06-a8cd-f0c264edf2c1"
    assert response.body[1]["org_id"] == "5318290"


def test_recipients_status_fails_when_limiter_cannot_serve(store):
    config = dict(CONFIG, **{"cloud.connector.req.bucket": 0})
    controller = create_controller(store, CloudConnectorClientMock(), config, FakeTranslator())
    response = controller.recipients_status(
        [{"recipient": "35720ecb-bc23-4b06-a8cd-f0c264edf2c1", "org_id": "5318290"}]
    )
    assert response.status == 500


def test_rate_limiter_with_empty_bucket_raises():
    limiter = get_rate_limiter({"cloud.connector.rps": 1, "cloud.connector.req.bucket": 0})
    with pytest.raises(ValueError):
        limiter.wait()


def test_request_type_label():
    assert get_request_type_label(satellite_run()) == "satellite"
    assert get_request_type_label({"recipient_config": {"sat_org_id": "1"}}) == "ansible"
    assert get_request_type_label({}) == "ansible"