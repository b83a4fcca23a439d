import datetime as dt
import json
from unittest.mock import Mock

import pytest
import responses

from tribeserver.metrics import (
    CSV_HEADERS,
    MetricHandler,
    MetricsBountyCsv,
    bounty_status,
    convert_metrics_to_csv,
)
from tribeserver.web import Request

DATE_RANGE = {"start_date": "1111", "end_date": "2222"}


def _request(body, pubkey="test-key", query=""):
    if not isinstance(body, (bytes, str)):
        body = json.dumps(body)
    return Request(method="POST", body=body, pubkey=pubkey, query_string=query)


class FakeCache:
    def __init__(self):
        self.maps = {}

    def get_map(self, key):
        return self.maps.get(key, {})

    def set_map(self, key, values):
        self.maps[key] = dict(values)


class FakePresigner:
    def __init__(self):
        self.keys = []

    def presign_put(self, key):
        self.keys.append(key)
        return "https://storage.example.com/put"

    def presign_get(self, key):
        return f"https://storage.example.com/get/{key}"


ENDPOINTS = [
    "bounty_metrics",
    "metrics_bounties",
    "metrics_bounties_count",
    "metrics_bounties_providers",
    "payment_metrics",
    "organization_metrics",
    "people_metrics",
    "metrics_csv",
]


@pytest.mark.parametrize("name", ENDPOINTS)
def test_invalid_json_is_not_acceptable(name):
    handler = MetricHandler(Mock())
    response = getattr(handler, name)(_request(b'{"key": "value"'))
    assert response.status == 406
    assert response.json() == "Request body not accepted"


@pytest.mark.parametrize("name", ENDPOINTS)
def test_missing_pubkey_is_unauthorized(name):
    db = Mock()
    response = getattr(MetricHandler(db), name)(_request({"key": "value"}, pubkey=""))
    assert response.status == 401
    assert db.method_calls == []


def test_providers_unauthorized_without_body():
    handler = MetricHandler(Mock())
    assert handler.metrics_bounties_providers(Request(body=b"", pubkey="")).status == 401


def test_bounty_metrics_fetches_stats_from_db():
    db = Mock()
    for name in (
        "total_bounties_posted",
        "total_paid_bounties",
        "bounties_paid_percentage",
        "total_sats_posted",
        "total_sats_paid",
        "sats_paid_percentage",
        "average_paid_time",
        "average_completed_time",
        "total_hunters_paid",
        "new_hunters_paid",
    ):
        getattr(db, name).return_value = 1
    response = MetricHandler(db).bounty_metrics(_request(DATE_RANGE))
    assert response.status == 200
    assert response.json() == {
        "bounties_posted": 1,
        "bounties_paid": 1,
        "bounties_paid_percentage": 1,
        "sats_posted": 1,
        "sats_paid": 1,
        "sats_paid_percentage": 1,
        "average_paid": 1,
        "average_completed": 1,
        "unique_hunters_paid": 1,
        "new_hunters_paid": 1,
    }
    db.total_bounties_posted.assert_called_once_with(DATE_RANGE)


def test_bounty_metrics_uses_cache():
    db = Mock()
    cache = FakeCache()
    cache.maps["metrics - 1111 - 2222"] = {"bounties_posted": 7}
    response = MetricHandler(db, cache=cache).bounty_metrics(_request(DATE_RANGE))
    assert response.json() == {"bounties_posted": 7}
    db.total_bounties_posted.assert_not_called()


def test_bounty_metrics_stores_in_cache():
    db = Mock()
    db.total_bounties_posted.return_value = 3
    cache = FakeCache()
    MetricHandler(db, cache=cache).bounty_metrics(_request(DATE_RANGE))
    assert cache.maps["metrics - 1111 - 2222"]["bounties_posted"] == 3


def test_metrics_bounties_fetches_from_db():
    db = Mock()
    bounties = [
        {
            "id": 1,
            "owner_id": "owner-1",
            "price": 100,
            "title": "bounty 1",
            "description": "test bounty",
            "created": 1112,
            "assignee": "",
            "org_uuid": "",
        }
    ]
    db.get_bounties_by_date_range.return_value = bounties
    db.get_person_by_pubkey.side_effect = lambda key: {"id": 1} if key == "owner-1" else {}
    db.get_organization_by_uuid.return_value = {}
    request = _request(DATE_RANGE)
    response = MetricHandler(db).metrics_bounties(request)
    assert response.status == 200
    first = response.json()[0]
    assert first["bounty_id"] == 1
    assert first["owner_id"] == "owner-1"
    assert first["price"] == 100
    assert first["title"] == "bounty 1"
    assert first["bounty_description"] == "test bounty"
    assert first["bounty_created"] == 1112
    assert first["bounty_owner_id"] == 1
    db.get_bounties_by_date_range.assert_called_once_with(DATE_RANGE, request)


def test_metrics_bounties_for_selected_providers():
    db = Mock()
    db.get_bounties_by_date_range.return_value = [
        {"id": 1, "owner_id": "provider1", "price": 100, "title": "bounty 1", "created": 1112},
        {"id": 2, "owner_id": "provider2", "price": 100, "title": "bounty 2", "created": 1112},
    ]
    db.get_person_by_pubkey.return_value = {}
    db.get_organization_by_uuid.return_value = {}
    request = _request(DATE_RANGE, query="provider=provider1,provider2")
    response = MetricHandler(db).metrics_bounties(request)
    owners = [b["owner_id"] for b in response.json()]
    assert owners == ["provider1", "provider2"]


@pytest.mark.parametrize(("query", "count"), [("", 100), ("provider=provider1", 50)])
def test_metrics_bounties_count(query, count):
    db = Mock()
    db.get_bounties_by_date_range_count.return_value = count
    request = _request(DATE_RANGE, query=query)
    response = MetricHandler(db).metrics_bounties_count(request)
    assert response.status == 200
    assert response.json() == count
    db.get_bounties_by_date_range_count.assert_called_once_with(DATE_RANGE, request)


def test_metrics_bounties_providers():
    db = Mock()
    providers = [
        {"id": 1, "owner_alias": "Provider One"},
        {"id": 2, "owner_alias": "Provider Two"},
    ]
    db.get_bounties_providers.return_value = providers
    body = b'{"start_date": "2021-01-01", "end_date": "2021-12-31"}'
    response = MetricHandler(db).metrics_bounties_providers(_request(body, pubkey="valid-key"))
    assert response.status == 200
    assert response.json() == providers


def test_people_metrics_uses_organization_totals():
    db = Mock()
    db.total_organizations_by_date_range.return_value = 12
    response = MetricHandler(db).people_metrics(_request(DATE_RANGE))
    assert response.json() == 12


def test_convert_metrics_to_csv_order():
    now = dt.datetime(2024, 1, 2, 3, 4, 5, tzinfo=dt.timezone.utc)
    rows = [
        MetricsBountyCsv(
            date_posted=now,
            organization="test-org",
            bounty_amount=100,
            provider="provider",
            hunter="hunter",
            bounty_title="test bounty",
            bounty_link="https://community.sphinx.chat/bounty/1",
            bounty_status="paid",
            date_assigned=now,
            date_paid=now,
        )
    ]
    result = convert_metrics_to_csv(rows)
    assert len(result) == 2
    assert result[0] == list(CSV_HEADERS)
    assert result[0][0] == "DatePosted" and result[0][-1] == "DatePaid"
    assert result[1][1:8] == [
        "test-org",
        "100",
        "provider",
        "hunter",
        "test bounty",
        "https://community.sphinx.chat/bounty/1",
        "paid",
    ]


def test_convert_metrics_to_csv_empty():
    assert convert_metrics_to_csv([]) == []


@pytest.mark.parametrize(
    ("bounty", "expected"),
    [
        ({"assignee": "hunter", "paid": False}, "Assigned"),
        ({"assignee": "hunter", "paid": True}, "Paid"),
        ({"assignee": "", "paid": False}, "Paid"),
    ],
)
def test_bounty_status(bounty, expected):
    assert bounty_status(bounty) == expected


def test_get_metrics_bounty_csv_rows():
    db = Mock()
    db.get_person_by_pubkey.side_effect = lambda key: {"owner_alias": f"alias-{key}"}
    db.get_organization_by_uuid.return_value = {"name": "org"}
    rows = MetricHandler(db).get_metrics_bounty_csv(
        [{"id": 9, "owner_id": "o", "assignee": "a", "price": 5, "title": "t", "created": 0}]
    )
    assert rows[0].bounty_link == "https://community.sphinx.chat/bounty/9"
    assert rows[0].provider == "alias-o"
    assert rows[0].hunter == "alias-a"
    assert rows[0].bounty_status == "Assigned"
    assert rows[0].date_posted == dt.datetime(1970, 1, 1, tzinfo=dt.timezone.utc)


def test_metrics_csv_no_content_when_empty():
    db = Mock()
    db.get_bounties_by_date_range.return_value = []
    response = MetricHandler(db).metrics_csv(_request(DATE_RANGE))
    assert response.status == 204


def test_metrics_csv_uploads_and_returns_url():
    db = Mock()
    db.get_bounties_by_date_range.return_value = [
        {"id": 1, "owner_id": "o", "price": 10, "title": "t", "created": 0, "paid": True}
    ]
    db.get_person_by_pubkey.return_value = {"owner_alias": "alias"}
    db.get_organization_by_uuid.return_value = {"name": "org"}
    presigner = FakePresigner()
    handler = MetricHandler(db, presigner=presigner, s3_folder="folder")
    with responses.RequestsMock() as rsps:
        rsps.add(responses.PUT, "https://storage.example.com/put", status=200)
        response = handler.metrics_csv(_request(DATE_RANGE))
        calls = list(rsps.calls)
    assert response.status == 200
    assert response.json() == "https://storage.example.com/get/folder/metrics1111-2222.csv"
    assert presigner.keys == ["folder/metrics1111-2222.csv"]
    uploaded = calls[0].request.body
    assert uploaded.startswith(b"DatePosted,Organization,BountyAmount")
    assert calls[0].request.headers["Content-Type"] == "multipart/form-data"


def test_upload_without_storage_raises():
    with pytest.raises(RuntimeError):
        MetricHandler(Mock()).upload_metrics_csv([["a"]], DATE_RANGE)