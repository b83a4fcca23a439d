import datetime as dt
from dataclasses import dataclass

import pytest

from tribeserver.web import Request, Response, json_response


@dataclass
class _Point:
    x: int
    y: int


def test_request_json_round_trip():
    req = Request(body=b'{"name": "abc", "count": 3}')
    assert req.json() == {"name": "abc", "count": 3}


def test_request_json_accepts_str_body():
    req = Request(body='[1, 2]')
    assert req.json() == [1, 2]


def test_request_json_invalid_raises():
    req = Request(body=b'{"key": "value"')
    with pytest.raises(ValueError):
        req.json()


def test_request_json_empty_body_raises():
    with pytest.raises(ValueError):
        Request().json()


def test_query_param_first_value_and_missing():
    req = Request(query_string="page=2&page=3&search=john+doe")
    assert req.query_param("page") == "2"
    assert req.query_param("search") == "john doe"
    assert req.query_param("missing") == ""


def test_url_param():
    req = Request(url_params={"uuid": "org-uuid"})
    assert req.url_param("uuid") == "org-uuid"
    assert req.url_param("other") == ""


def test_json_response_empty_list_matches_encoder_output():
    resp = json_response(200, [])
    assert resp.status == 200
    assert resp.body == b"[]\n"


def test_json_response_round_trip():
    payload = {"a": 1, "b": [True, None, "x"]}
    assert json_response(201, payload).json() == payload


def test_json_response_dataclass():
    assert json_response(200, _Point(1, 2)).json() == {"x": 1, "y": 2}


def test_json_response_datetime_round_trips():
    moment = dt.datetime(2024, 1, 2, 3, 4, 5, tzinfo=dt.timezone.utc)
    decoded = json_response(200, {"at": moment}).json()
    assert dt.datetime.fromisoformat(decoded["at"]) == moment


def test_json_response_escapes_html():
    assert json_response(200, "<a>").body == b'"\\u003ca\\u003e"\n'


def test_plain_response_has_empty_body():
    resp = Response(status=401)
    assert resp.body == b""
    assert resp.status == 401