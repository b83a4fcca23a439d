"""People endpoints: profiles, tickets, badges, assets and background confirmations."""

from __future__ import annotations

import datetime as _dt
import logging
import os
import re
import threading
import uuid as _uuid
from collections.abc import Callable, Mapping
from typing import Any

import requests

from tribeserver.helpers import convert_string_to_uint
from tribeserver.web import Request, Response, json_response

logger = logging.getLogger(__name__)

ASSET_BALANCES_URL = "https://liquid.sphinx.chat/balances?pubkey="
DEFAULT_ASSET_LIST_URL = "https://liquid.sphinx.chat/assets"
TEST_ASSET_URL_ENV = "TEST_ASSET_URL"
SHORT_LIST_MAX = 10000

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def _get(obj: Any, name: str, default: Any = "") -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        value = obj.get(name, default)
    else:
        value = getattr(obj, name, default)
    return default if value is None else value


def _set(obj: Any, name: str, value: Any) -> None:
    if isinstance(obj, dict):
        obj[name] = value
    else:
        setattr(obj, name, value)


def _now() -> _dt.datetime:
    return _dt.datetime.now(tz=_dt.timezone.utc)


def _new_id() -> str:
    return _uuid.uuid4().hex[:20]


def _parse_int(text: str) -> int:
    if not _INT_RE.fullmatch(text):
        raise ValueError(f"could not parse {text!r} as an integer")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"{text!r} is out of range")
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _read_object(request: Request) -> dict[str, Any]:
    payload = request.json()
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValueError("expected a JSON object")
    return payload


def _unsupported_tribe_verifier(tribe_uuid: str, check_timestamp: bool) -> str:
    raise RuntimeError("no tribe verifier configured")


def person_is_admin(pubkey: str, admin_pubkeys: str) -> bool:
    """Whether pubkey is one of the comma-separated admin public keys."""
    if not admin_pubkeys:
        return False
    return pubkey in admin_pubkeys.split(",")


def get_asset_by_pubkey(pubkey: str) -> list[Any]:
    """The asset balances held by a public key.

    Raises a requests exception when the service cannot be reached and
    ValueError when its answer is not valid JSON.
    """
    test_mode = os.environ.get("TEST_MODE", "") in _TRUE_WORDS
    test_url = os.environ.get(TEST_ASSET_URL_ENV, "")
    url = test_url if test_mode and test_url else ASSET_BALANCES_URL + pubkey
    response = requests.get(url, timeout=30)
    payload = response.json()
    if not isinstance(payload, dict):
        raise ValueError("unexpected asset balance response")
    return payload.get("balances") or []


def get_asset_list(pubkey: str) -> list[Any]:
    """The assets listed for a public key."""
    base = os.environ.get("ASSET_LIST_URL", "") or DEFAULT_ASSET_LIST_URL
    response = requests.get(f"{base}?pubkey={pubkey}", timeout=30)
    payload = response.json()
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise ValueError("unexpected asset list response")
    return payload


def process_twitter_confirmations(db: Any, confirm: Callable[[str], str]) -> int:
    """One pass over unconfirmed twitter accounts; returns how many were confirmed.

    ``confirm`` maps a twitter username to the public key its verification
    tweet proves, raising when it cannot.
    """
    confirmed = 0
    for person in db.get_unconfirmed_twitter() or ():
        accounts = _get(_get(person, "extras", None), "twitter", None)
        if not isinstance(accounts, list) or not accounts:
            continue
        first = accounts[0]
        if not isinstance(first, dict):
            continue
        username = first.get("value")
        if not isinstance(username, str) or not username:
            continue
        try:
            pubkey = confirm(username)
        except Exception as exc:
            logger.debug("twitter confirmation failed for %s: %s", username, exc)
            continue
        if pubkey and pubkey == _get(person, "owner_pubkey"):
            db.update_twitter_confirmed(_get(person, "id", 0), True)
            confirmed += 1
    return confirmed


def process_github_issues(db: Any, get_issue: Callable[[str, str, int], Any]) -> int:
    """One pass refreshing the github issue status of every wanted ticket.

    Returns the number of updates written.
    """
    updates = 0
    for person in db.get_listed_people(None) or ():
        wanteds = _get(_get(person, "extras", None), "wanted", None)
        if not isinstance(wanteds, list):
            continue
        for wanted in wanteds:
            if not isinstance(wanted, dict):
                continue
            repo = wanted.get("repo")
            issue_number = wanted.get("issue")
            if not isinstance(repo, str) or not isinstance(issue_number, str):
                continue
            if "/" not in repo:
                continue
            owner, repo_name = repo.split("/")[:2]
            try:
                number = _parse_int(issue_number)
            except ValueError:
                continue
            if number < 1:
                continue
            try:
                issue = get_issue(owner, repo_name, number)
            except Exception as exc:
                logger.debug("could not fetch issue %s: %s", repo, exc)
                continue
            status = _get(issue, "status")
            assignee = _get(issue, "assignee")
            full_name = f"{owner}/{repo_name}/{issue_number}"

            issues = _get(person, "github_issues", None)
            if issues is None:
                issues = {}
                _set(person, "github_issues", issues)
            known = issues.get(full_name)
            if isinstance(known, dict):
                old_assignee = known.get("assignee")
                old_status = known.get("status")
                has_assignee = isinstance(old_assignee, str)
                has_status = isinstance(old_status, str)
                if has_assignee or has_status:
                    if (old_status if has_status else "") == status and (
                        old_assignee if has_assignee else ""
                    ) == assignee:
                        continue

            issues[full_name] = {"assignee": assignee, "status": status}
            db.update_github_issues(_get(person, "id", 0), issues)
            updates += 1
    return updates


class PeopleHandler:
    """HTTP handlers for people and their profiles."""

    def __init__(
        self,
        db: Any,
        verify_tribe_uuid: Callable[[str, bool], str] | None = None,
        fetch_asset_balances: Callable[[str], list[Any]] = get_asset_by_pubkey,
        fetch_asset_list: Callable[[str], list[Any]] = get_asset_list,
        admin_pubkeys: str | None = None,
        new_id: Callable[[], str] = _new_id,
    ) -> None:
        self.db = db
        self.verify_tribe_uuid = verify_tribe_uuid or _unsupported_tribe_verifier
        self.fetch_asset_balances = fetch_asset_balances
        self.fetch_asset_list = fetch_asset_list
        self.admin_pubkeys = admin_pubkeys
        self.new_id = new_id

    def _is_admin(self, pubkey: str) -> bool:
        admins = self.admin_pubkeys
        if admins is None:
            admins = os.environ.get("ADMIN_PUBKEYS", "")
        return person_is_admin(pubkey, admins)

    def create_or_edit_person(self, request: Request) -> Response:
        pubkey = request.pubkey
        referred_by = request.query_param("referred_by")
        try:
            person = _read_object(request)
        except ValueError as exc:
            logger.info("invalid person body: %s", exc)
            return Response(status=406)
        now = _now()

        if not pubkey:
            logger.info("no pubkey from auth")
            return Response(status=401)
        if pubkey != _get(person, "owner_pubkey"):
            logger.info("mismatched pubkey")
            return Response(status=401)

        person_id = _get(person, "id", 0)
        existing = self.db.get_person_by_pubkey(pubkey)
        existing_id = _get(existing, "id", 0)
        if not existing_id:
            if person_id:
                logger.info("cant edit non existing")
                return Response(status=401)
            person["unique_name"] = self.db.person_unique_name_from_name(
                _get(person, "owner_alias")
            )
            person["created"] = now
            person["uuid"] = self.new_id()
            if referred_by:
                referral = self.db.get_person_by_uuid(referred_by)
                referral_id = _get(referral, "id", 0)
                if referral_id:
                    person["referred_by"] = referral_id
        else:
            if not person_id:
                logger.info("can't create, already existing")
                return Response(status=401)
            if person_id != existing_id:
                logger.info("cant edit someone else")
                return Response(status=401)

        person["owner_pubkey"] = pubkey
        person["updated"] = now

        if _get(person, "new_ticket_time", 0):
            threading.Thread(
                target=self.db.process_alerts, args=(dict(person),), daemon=True
            ).start()

        try:
            saved = self.db.create_or_edit_person(person)
        except Exception as exc:
            logger.error("could not save person: %s", exc)
            return Response(status=400)
        return json_response(200, saved)

    def delete_ticket_by_admin(self, request: Request) -> Response:
        auth_pubkey = request.pubkey
        owner_pubkey = request.url_param("pubKey")
        try:
            created = _parse_int(request.url_param("created"))
        except ValueError:
            logger.info("unable to convert created to an integer")
            return Response(status=500)
        if created == 0 or not owner_pubkey:
            logger.info("insufficient details to delete ticket")
            return Response(status=400)
        if not auth_pubkey:
            logger.info("no pubkey from auth")
            return Response(status=401)

        admin = self.db.get_person_by_pubkey(auth_pubkey)
        if not _get(admin, "id", 0):
            logger.info("could not fetch admin details")
            return Response(status=401)
        if not self._is_admin(_get(admin, "owner_pubkey")):
            logger.info("only admin is allowed to delete tickets")
            return Response(status=401)

        person = self.db.get_person_by_pubkey(owner_pubkey)
        if not _get(person, "id", 0):
            logger.info("could not fetch person")
            return Response(status=401)

        extras = _get(person, "extras", None)
        wanteds = _get(extras, "wanted", None)
        if not isinstance(wanteds, list):
            logger.info("no tickets found for person")
            return Response(status=400)

        index = next(
            (
                i
                for i, wanted in enumerate(wanteds)
                if isinstance(wanted, dict)
                and _is_number(wanted.get("created"))
                and int(wanted["created"]) == created
            ),
            None,
        )
        if index is None:
            logger.info("ticket to delete not found")
            return Response(status=400)
        _set(extras, "wanted", wanteds[:index] + wanteds[index + 1 :])

        try:
            self.db.create_or_edit_person(person)
        except Exception as exc:
            logger.error("could not save person: %s", exc)
            return Response(status=400)
        return Response(status=200)

    def get_person_by_pubkey(self, request: Request) -> Response:
        return json_response(200, self.db.get_person_by_pubkey(request.url_param("pubkey")))

    def get_person_by_id(self, request: Request) -> Response:
        try:
            person_id = convert_string_to_uint(request.url_param("id"))
        except ValueError:
            person_id = 0
        return json_response(200, self.db.get_person(person_id))

    def get_person_by_uuid(self, request: Request) -> Response:
        person = self.db.get_person_by_uuid(request.url_param("uuid"))
        result: dict[str, Any] = {
            "id": _get(person, "id", 0),
            "uuid": _get(person, "uuid"),
            "owner_pubkey": _get(person, "owner_pubkey"),
            "owner_alias": _get(person, "owner_alias"),
            "unique_name": _get(person, "unique_name"),
            "description": _get(person, "description"),
            "tags": _get(person, "tags", None),
            "img": _get(person, "img"),
            "owner_route_hint": _get(person, "owner_route_hint"),
            "owner_contact_key": _get(person, "owner_contact_key"),
            "price_to_meet": _get(person, "price_to_meet", 0),
            "twitter_confirmed": _get(person, "twitter_confirmed", False),
            "github_issues": _get(person, "github_issues", None),
        }
        try:
            balances = self.fetch_asset_balances(result["owner_pubkey"])
        except Exception as exc:
            logger.warning("could not fetch asset balances: %s", exc)
        else:
            badges = [_get(balance, "asset_id", 0) for balance in balances or ()]
            result["badges"] = badges or None
        return json_response(200, result)

    def get_person_assets_by_uuid(self, request: Request) -> Response:
        person = self.db.get_person_by_uuid(request.url_param("uuid"))
        try:
            assets = self.fetch_asset_list(_get(person, "owner_pubkey"))
        except Exception as exc:
            logger.warning("could not fetch asset list: %s", exc)
            return Response(status=503)
        return json_response(200, assets)

    def get_person_by_github_name(self, request: Request) -> Response:
        return json_response(
            200, self.db.get_person_by_github_name(request.url_param("github"))
        )

    def delete_person(self, request: Request) -> Response:
        try:
            person_id = _parse_int(request.url_param("id"))
        except ValueError as exc:
            logger.info("invalid person id: %s", exc)
            return Response(status=401)
        if person_id == 0:
            logger.info("id is 0")
            return Response(status=401)

        existing = self.db.get_person(person_id)
        if not _get(existing, "id", 0):
            logger.info("existing id is 0")
            return Response(status=401)
        if _get(existing, "owner_pubkey") != request.pubkey:
            logger.info("keys dont match")
            return Response(status=401)

        self.db.update_person(person_id, {"deleted": True})
        return json_response(200, True)

    def add_or_remove_badge(self, request: Request) -> Response:
        pubkey = request.pubkey
        try:
            data = _read_object(request)
        except ValueError as exc:
            logger.info("invalid badge body: %s", exc)
            return Response(status=406)

        badge = _get(data, "badge")
        action = _get(data, "action")
        tribe_uuid = _get(data, "tribeId")
        if not badge or not action or action not in ("add", "remove") or not tribe_uuid:
            logger.info("invalid badge request")
            return Response(status=400)

        try:
            extracted = self.verify_tribe_uuid(tribe_uuid, False)
        except Exception as exc:
            logger.info("tribe uuid verification failed: %s", exc)
            return Response(status=401)
        if not pubkey:
            logger.info("no pubkey from auth")
            return Response(status=400)

        tribe = self.db.get_tribe_by_id_and_pubkey(tribe_uuid, extracted)
        if pubkey != _get(tribe, "owner_pubkey"):
            logger.info("mismatched pubkey")
            return Response(status=401)

        badges = list(_get(tribe, "badges", None) or [])
        if action == "add":
            badges.append(badge)
        else:
            wanted = badge.lower()
            for i, existing in enumerate(badges):
                if existing.lower() == wanted:
                    del badges[i]
                    break

        if self.db.update_tribe(_get(tribe, "uuid"), {"badges": badges}):
            updated = self.db.get_tribe_by_id_and_pubkey(tribe_uuid, extracted)
            return json_response(200, updated)
        return Response(status=400)

    def get_people_short_list(self, request: Request) -> Response:
        return json_response(200, self.db.get_people_list_short(SHORT_LIST_MAX))

    def get_people_by_search(self, request: Request) -> Response:
        return json_response(200, self.db.get_people_by_search(request))

    def get_listed_people(self, request: Request) -> Response:
        return json_response(200, self.db.get_listed_people(request))

    def get_listed_posts(self, request: Request) -> Response:
        try:
            posts = self.db.get_listed_posts(request)
        except Exception as exc:
            logger.error("could not list posts: %s", exc)
            return Response(status=400)
        return json_response(200, posts)