"""Bounty and payment metrics endpoints, with CSV export."""

from __future__ import annotations

import csv
import dataclasses
import datetime as _dt
import io
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import requests

from tribeserver.web import Request, Response, json_response

logger = logging.getLogger(__name__)

BOUNTY_LINK_BASE = "https://community.sphinx.chat/bounty/"
CSV_HEADERS = (
    "DatePosted",
    "Organization",
    "BountyAmount",
    "Provider",
    "Hunter",
    "BountyTitle",
    "BountyLink",
    "BountyStatus",
    "DateAssigned",
    "DatePaid",
)
DATE_RANGE_FIELDS = ("start_date", "end_date")
NOT_ACCEPTED = "Request body not accepted"


class _Cache(Protocol):
    def get_map(self, key: str) -> Mapping[str, Any]: ...

    def set_map(self, key: str, values: Mapping[str, Any]) -> None: ...


class _Presigner(Protocol):
    def presign_put(self, key: str) -> str: ...

    def presign_get(self, key: str) -> str: ...


@dataclass
class MetricsBountyCsv:
    """One bounty as a row of the metrics CSV export."""

    date_posted: _dt.datetime | None = None
    organization: str = ""
    bounty_amount: int = 0
    provider: str = ""
    hunter: str = ""
    bounty_title: str = ""
    bounty_link: str = ""
    bounty_status: str = ""
    date_assigned: Any = None
    date_paid: Any = None


def _field(obj: Any, name: str, default: Any = "") -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        value = obj.get(name, default)
    else:
        value = getattr(obj, name, default)
    return default if value is None else value


def bounty_status(bounty: Any) -> str:
    """The status shown for a bounty in the CSV export."""
    if _field(bounty, "assignee") and not _field(bounty, "paid", False):
        return "Assigned"
    return "Paid"


def _csv_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (_dt.datetime, _dt.date)):
        return value.isoformat()
    return str(value)


def convert_metrics_to_csv(rows: Iterable[MetricsBountyCsv]) -> list[list[str]]:
    """A header row followed by one row per bounty; empty when there are none."""
    body = [
        [_csv_cell(getattr(row, f.name)) for f in dataclasses.fields(MetricsBountyCsv)]
        for row in rows
    ]
    if not body:
        return []
    return [list(CSV_HEADERS), *body]


class _Rejected(Exception):
    def __init__(self, response: Response) -> None:
        super().__init__(response.status)
        self.response = response


def _read_date_range(request: Request) -> dict[str, str]:
    if not request.pubkey:
        logger.info("no pubkey from auth")
        raise _Rejected(Response(status=401))
    try:
        payload = request.json()
    except ValueError:
        raise _Rejected(json_response(406, NOT_ACCEPTED)) from None
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise _Rejected(json_response(406, NOT_ACCEPTED))
    date_range = {}
    for name in DATE_RANGE_FIELDS:
        value = payload.get(name)
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise _Rejected(json_response(406, NOT_ACCEPTED))
        date_range[name] = value
    return date_range


class MetricHandler:
    """Endpoints reporting totals and listings over a date range."""

    def __init__(
        self,
        db: Any,
        cache: _Cache | None = None,
        presigner: _Presigner | None = None,
        s3_folder: str = "",
        session: requests.Session | None = None,
    ) -> None:
        self.db = db
        self.cache = cache
        self.presigner = presigner
        self.s3_folder = s3_folder
        self.session = session or requests.Session()

    def _with_date_range(
        self, request: Request, compute: Callable[[dict[str, str]], Response]
    ) -> Response:
        try:
            date_range = _read_date_range(request)
        except _Rejected as rejected:
            return rejected.response
        return compute(date_range)

    def payment_metrics(self, request: Request) -> Response:
        return self._with_date_range(
            request,
            lambda r: json_response(200, self.db.total_payments_by_date_range(r)),
        )

    def organization_metrics(self, request: Request) -> Response:
        return self._with_date_range(
            request,
            lambda r: json_response(200, self.db.total_organizations_by_date_range(r)),
        )

    def people_metrics(self, request: Request) -> Response:
        return self._with_date_range(
            request,
            lambda r: json_response(200, self.db.total_organizations_by_date_range(r)),
        )

    def bounty_metrics(self, request: Request) -> Response:
        return self._with_date_range(request, self._bounty_metrics)

    def _bounty_metrics(self, date_range: dict[str, str]) -> Response:
        key = f"metrics - {date_range['start_date']} - {date_range['end_date']}"
        if self.cache is not None:
            cached = self.cache.get_map(key)
            if cached:
                return json_response(200, dict(cached))

        db = self.db
        metrics = {
            "bounties_posted": db.total_bounties_posted(date_range),
            "bounties_paid": db.total_paid_bounties(date_range),
            "bounties_paid_percentage": db.bounties_paid_percentage(date_range),
            "sats_posted": db.total_sats_posted(date_range),
            "sats_paid": db.total_sats_paid(date_range),
            "sats_paid_percentage": db.sats_paid_percentage(date_range),
            "average_paid": db.average_paid_time(date_range),
            "average_completed": db.average_completed_time(date_range),
            "unique_hunters_paid": db.total_hunters_paid(date_range),
            "new_hunters_paid": db.new_hunters_paid(date_range),
        }
        if self.cache is not None:
            self.cache.set_map(key, metrics)
        return json_response(200, metrics)

    def metrics_bounties(self, request: Request) -> Response:
        def compute(date_range: dict[str, str]) -> Response:
            bounties = self.db.get_bounties_by_date_range(date_range, request)
            data = self.get_metrics_bounties_data(bounties)
            return json_response(200, data or None)

        return self._with_date_range(request, compute)

    def metrics_bounties_count(self, request: Request) -> Response:
        return self._with_date_range(
            request,
            lambda r: json_response(200, self.db.get_bounties_by_date_range_count(r, request)),
        )

    def metrics_bounties_providers(self, request: Request) -> Response:
        return self._with_date_range(
            request,
            lambda r: json_response(200, self.db.get_bounties_providers(r, request)),
        )

    def metrics_csv(self, request: Request) -> Response:
        def compute(date_range: dict[str, str]) -> Response:
            bounties = self.db.get_bounties_by_date_range(date_range, request)
            rows = convert_metrics_to_csv(self.get_metrics_bounty_csv(bounties))
            if not rows:
                return Response(status=204)
            try:
                url = self.upload_metrics_csv(rows, date_range)
            except Exception as exc:
                logger.error("error uploading csv: %s", exc)
                url = ""
            return json_response(200, url)

        return self._with_date_range(request, compute)

    def get_metrics_bounties_data(self, bounties: Iterable[Any]) -> list[dict[str, Any]]:
        """Each bounty merged with details of its owner, assignee and organization."""
        result = []
        for bounty in bounties or ():
            owner = self.db.get_person_by_pubkey(_field(bounty, "owner_id"))
            assignee = self.db.get_person_by_pubkey(_field(bounty, "assignee"))
            org = self.db.get_organization_by_uuid(_field(bounty, "org_uuid"))
            base = dict(bounty) if isinstance(bounty, Mapping) else dict(vars(bounty))
            base.update(
                {
                    "bounty_id": _field(bounty, "id", 0),
                    "person": owner,
                    "bounty_created": _field(bounty, "created", 0),
                    "bounty_description": _field(bounty, "description"),
                    "bounty_updated": _field(bounty, "updated", None),
                    "assignee_id": _field(assignee, "id", 0),
                    "assignee_img": _field(assignee, "img"),
                    "assignee_alias": _field(assignee, "owner_alias"),
                    "assignee_description": _field(assignee, "description"),
                    "assignee_route_hint": _field(assignee, "owner_route_hint"),
                    "bounty_owner_id": _field(owner, "id", 0),
                    "owner_uuid": _field(owner, "uuid"),
                    "owner_description": _field(owner, "description"),
                    "owner_unique_name": _field(owner, "unique_name"),
                    "owner_img": _field(owner, "img"),
                    "organization_name": _field(org, "name"),
                    "organization_img": _field(org, "img"),
                    "organization_uuid": _field(org, "uuid"),
                    "organization_description": _field(org, "description"),
                }
            )
            result.append(base)
        return result

    def get_metrics_bounty_csv(self, bounties: Iterable[Any]) -> list[MetricsBountyCsv]:
        """Each bounty as a CSV export row."""
        rows = []
        for bounty in bounties or ():
            owner = self.db.get_person_by_pubkey(_field(bounty, "owner_id"))
            assignee = self.db.get_person_by_pubkey(_field(bounty, "assignee"))
            org = self.db.get_organization_by_uuid(_field(bounty, "org_uuid"))
            created = _field(bounty, "created", 0)
            rows.append(
                MetricsBountyCsv(
                    date_posted=_dt.datetime.fromtimestamp(created, tz=_dt.timezone.utc),
                    organization=_field(org, "name"),
                    bounty_amount=_field(bounty, "price", 0),
                    provider=_field(owner, "owner_alias"),
                    hunter=_field(assignee, "owner_alias"),
                    bounty_title=_field(bounty, "title"),
                    bounty_link=f"{BOUNTY_LINK_BASE}{_field(bounty, 'id', 0)}",
                    bounty_status=bounty_status(bounty),
                    date_assigned=_field(bounty, "assigned_date", None),
                    date_paid=_field(bounty, "paid_date", None),
                )
            )
        return rows

    def upload_metrics_csv(self, rows: Iterable[Iterable[str]], date_range: Mapping[str, str]) -> str:
        """Upload the CSV to storage and return a download URL for it."""
        if self.presigner is None:
            raise RuntimeError("no storage configured")
        buffer = io.StringIO()
        csv.writer(buffer, lineterminator="\n").writerows(rows)
        content = buffer.getvalue().encode("utf-8")

        key = f"metrics{date_range.get('start_date', '')}-{date_range.get('end_date', '')}.csv"
        path = f"{self.s3_folder}/{key}"
        try:
            put_url = self.presigner.presign_put(path)
            self.session.put(
                put_url,
                data=content,
                headers={"Content-Type": "multipart/form-data"},
                timeout=60,
            )
        except Exception as exc:
            logger.error("error uploading to presigned url: %s", exc)
        return self.presigner.presign_get(path)