import uuid
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlsplit

import pytest

from pbdispatch.models import Run, RunHost, RunStatus
from pbdispatch.public_api import (
    DEFAULT_LIMIT,
    DEFAULT_RUN_FIELDS,
    DEFAULT_RUN_HOST_FIELDS,
    RUN_FIELDS,
    RUN_HOST_FIELDS,
    UnknownFieldError,
    create_link,
    create_links,
    db_run_host_to_api_run_host,
    db_run_to_api_run,
    get_limit,
    get_offset,
    get_order_by,
    inventory_link,
    map_fields_to_sql,
    map_host_fields_to_sql,
    parse_fields,
)

BASE = "/api/playbook-dispatcher/v1/runs"


def _make_run(**changes):
    values = dict(
        id=uuid.uuid4(),
        org_id="5318290",
        correlation_id=uuid.uuid4(),
        url="http://example.com",
        status=RunStatus.RUNNING,
        recipient=uuid.uuid4(),
        labels={"foo": "bar"},
        response_full=True,
        service="remediations",
        timeout=3600,
        playbook_run_url="http://example.com/console",
        playbook_name="test-playbook",
        created_at=datetime(2022, 1, 1, 12, 0, tzinfo=timezone.utc),
        updated_at=datetime(2022, 1, 1, 12, 0, tzinfo=timezone.utc),
    )
    values.update(changes)
    return Run(**values)


def _query(link):
    return parse_qs(urlsplit(link).query, keep_blank_values=True)


def test_limit_and_offset_defaults():
    assert get_limit(None) == DEFAULT_LIMIT
    assert get_limit(7) == 7
    assert get_offset(None) == 0
    assert get_offset(12) == 12


def test_parse_fields_defaults_when_key_absent():
    result = parse_fields({}, "data", RUN_FIELDS, DEFAULT_RUN_FIELDS)
    assert result == list(DEFAULT_RUN_FIELDS)


def test_parse_fields_splits_commas_and_keeps_order():
    query = {"data": ["id,labels", "service"]}
    assert parse_fields(query, "data", RUN_FIELDS, DEFAULT_RUN_FIELDS) == [
        "id",
        "labels",
        "service",
    ]


def test_parse_fields_rejects_unknown():
    with pytest.raises(UnknownFieldError) as info:
        parse_fields({"data": ["id,bogus"]}, "data", RUN_FIELDS, DEFAULT_RUN_FIELDS)
    assert info.value.field == "bogus"
    assert str(info.value) == "unknown field: bogus"


def test_create_link_pinned():
    assert create_link(BASE, "", 50, 0) == BASE + "?limit=50&offset=0"


def test_create_link_replaces_limit_and_offset_and_keeps_others():
    link = create_link(BASE, "filter[status]=running&limit=3&offset=9", 10, 20)
    query = _query(link)
    assert link.startswith(BASE + "?")
    assert query["limit"] == ["10"]
    assert query["offset"] == ["20"]
    assert query["filter[status]"] == ["running"]


def test_create_link_sorts_keys():
    link = create_link(BASE, "z=1&a=2", 5, 0)
    keys = [part.split("=")[0] for part in urlsplit(link).query.split("&")]
    assert keys == sorted(keys)


def test_create_links_first_page():
    links = create_links(BASE, "", 10, 0, 25)
    assert links["first"] == create_link(BASE, "", 10, 0)
    assert "previous" not in links
    assert links["next"] == create_link(BASE, "", 10, 10)


@pytest.mark.parametrize("total", [0, 1, 9, 10, 11, 25, 100])
def test_last_link_points_at_last_page(total):
    limit = 10
    last = int(_query(create_links(BASE, "", limit, 0, total)["last"])["offset"][0])
    assert last % limit == 0
    assert last <= max(total - 1, 0)
    assert last + limit >= total


def test_create_links_last_page_has_no_next():
    links = create_links(BASE, "", 10, 20, 25)
    assert "next" not in links
    assert links["previous"] == create_link(BASE, "", 10, 10)


def test_previous_never_negative():
    links = create_links(BASE, "", 10, 3, 25)
    assert _query(links["previous"])["offset"] == ["0"]


def test_db_run_to_api_run_default_fields():
    run = _make_run()
    result = db_run_to_api_run(run, DEFAULT_RUN_FIELDS)
    assert result == {
        "id": str(run.id),
        "org_id": run.org_id,
        "recipient": str(run.recipient),
        "url": run.url,
        "labels": run.labels,
        "timeout": run.timeout,
        "status": "running",
    }


def test_db_run_to_api_run_extra_fields():
    run = _make_run()
    result = db_run_to_api_run(
        run, ["name", "web_console_url", "service", "correlation_id", "created_at"]
    )
    assert result["name"] == run.playbook_name
    assert result["web_console_url"] == run.playbook_run_url
    assert result["service"] == run.service
    assert result["correlation_id"] == str(run.correlation_id)
    assert result["created_at"] == "2022-01-01T12:00:00Z"


def test_db_run_to_api_run_omits_missing_name():
    run = _make_run(playbook_name=None)
    assert "name" not in db_run_to_api_run(run, ["name", "id"])


def test_db_run_to_api_run_rejects_unknown_field():
    with pytest.raises(UnknownFieldError):
        db_run_to_api_run(_make_run(), ["stdout"])


def test_db_run_host_to_api_run_host():
    inventory_id = uuid.uuid4()
    host = RunHost(
        id=uuid.uuid4(),
        run_id=uuid.uuid4(),
        host="localhost",
        status=RunStatus.SUCCESS,
        inventory_id=inventory_id,
        log="ok",
    )
    result = db_run_host_to_api_run_host(host, sorted(RUN_HOST_FIELDS))
    assert result["host"] == "localhost"
    assert result["stdout"] == "ok"
    assert result["status"] == RunStatus.SUCCESS.value
    assert result["run"] == {"id": str(host.run_id)}
    assert result["inventory_id"] == str(inventory_id)
    assert result["links"] == {"inventory_host": inventory_link(inventory_id)}


def test_db_run_host_without_inventory_id():
    host = RunHost(id=uuid.uuid4(), run_id=uuid.uuid4(), host="h", status=RunStatus.RUNNING)
    result = db_run_host_to_api_run_host(host, ["links", "inventory_id", *DEFAULT_RUN_HOST_FIELDS])
    assert "inventory_id" not in result
    assert result["links"] == {"inventory_host": None}
    assert result["host"] == "h"


def test_inventory_link():
    value = uuid.UUID("16372e6f-1c18-4cdb-b780-50ab4b88e74b")
    assert inventory_link(value) == "/api/inventory/v1/hosts/16372e6f-1c18-4cdb-b780-50ab4b88e74b"
    assert inventory_link(None) is None


@pytest.mark.parametrize("sort_by", [None, ""])
def test_get_order_by_default(sort_by):
    assert get_order_by(sort_by) == "created_at desc"


def test_get_order_by_direction():
    assert get_order_by("name") == "name desc"
    assert get_order_by("name:asc") == "name asc"


def test_map_fields_to_sql():
    assert map_fields_to_sql("name") == "playbook_name"
    assert map_fields_to_sql("web_console_url") == "playbook_run_url"
    assert map_fields_to_sql("id") == "id"
    assert map_fields_to_sql("status").endswith("END as status")


def test_map_host_fields_to_sql():
    assert map_host_fields_to_sql("stdout") == "run_hosts.log"
    assert map_host_fields_to_sql("run") == "run_hosts.run_id"
    assert map_host_fields_to_sql("links") == map_host_fields_to_sql("inventory_id")
    with pytest.raises(UnknownFieldError):
        map_host_fields_to_sql("bogus")