"""Organization endpoints: membership, roles, budgets, invoices and deletion."""

from __future__ import annotations

import datetime as _dt
import enum
import logging
import uuid as _uuid
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from tribeserver.helpers import convert_string_to_uint
from tribeserver.web import Request, Response, json_response

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 20
MAX_DESCRIPTION_LENGTH = 120


class Role(str, enum.Enum):
    """Permissions a member can hold within an organization."""

    ADD_BOUNTY = "ADD BOUNTY"
    UPDATE_BOUNTY = "UPDATE BOUNTY"
    DELETE_BOUNTY = "DELETE BOUNTY"
    PAY_BOUNTY = "PAY BOUNTY"
    ADD_USER = "ADD USER"
    UPDATE_USER = "UPDATE USER"
    DELETE_USER = "DELETE USER"
    ADD_ROLES = "ADD ROLES"
    ADD_BUDGET = "ADD BUDGET"
    WITHDRAW_BUDGET = "WITHDRAW BUDGET"
    VIEW_REPORT = "VIEW REPORT"
    EDIT_ORG = "EDIT ORGANIZATION"


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


def check_user(roles: Iterable[Any], pubkey: str) -> bool:
    """Whether any of the roles is granted to the given public key."""
    return any(_get(role, "owner_pubkey") == pubkey for role in roles)


def _unsupported_invoice_lookup(payment_request: str) -> Any:
    raise RuntimeError("no lightning backend configured")


def _read_object(request: Request) -> dict[str, Any]:
    payload = request.json()
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValueError("expected a JSON object")
    return payload


class OrganizationHandler:
    """HTTP handlers for organizations and their members."""

    def __init__(
        self,
        db: Any,
        generate_bounty_response: Callable[[list[Any]], list[Any]] | None = None,
        get_lightning_invoice: Callable[[str], Any] | None = None,
        validate: Callable[[dict[str, Any]], None] | None = None,
        new_id: Callable[[], str] = _new_id,
    ) -> None:
        self.db = db
        self.generate_bounty_response = generate_bounty_response or list
        self.get_lightning_invoice = get_lightning_invoice or _unsupported_invoice_lookup
        self.validate = validate
        self.new_id = new_id

    def _has_access(self, pubkey: str, org_uuid: str, role: Role | str) -> bool:
        value = role.value if isinstance(role, Role) else role
        return bool(self.db.user_has_access(pubkey, org_uuid, value))

    def create_or_edit_organization(self, request: Request) -> Response:
        pubkey = request.pubkey
        if not pubkey:
            logger.info("no pubkey from auth")
            return Response(status=401)
        now = _now()
        try:
            org = _read_object(request)
        except ValueError as exc:
            logger.info("invalid organization body: %s", exc)
            return Response(status=406)

        name = str(_get(org, "name")).strip()
        org["name"] = name
        if not name or len(name.encode("utf-8")) > MAX_NAME_LENGTH:
            return json_response(
                400,
                "Error: organization name must be present and should not exceed 20 character",
            )
        description = str(_get(org, "description"))
        if len(description.encode("utf-8")) > MAX_DESCRIPTION_LENGTH:
            return json_response(
                400, "Error: organization description should not exceed 120 character"
            )

        org_uuid = _get(org, "uuid")
        if pubkey != _get(org, "owner_pubkey"):
            if not self._has_access(pubkey, org_uuid, Role.EDIT_ORG):
                logger.info("mismatched pubkey")
                return json_response(401, "Don't have access to Edit Org")

        if self.validate is not None:
            try:
                self.validate(org)
            except ValueError as exc:
                return json_response(400, f"Error: did not pass validation test : {exc}")

        github = _get(org, "github")
        if github and "github.com/" not in github:
            return json_response(400, "Error: not a valid github")

        org_id = _get(org, "id", 0)
        existing = self.db.get_organization_by_uuid(org_uuid)
        existing_id = _get(existing, "id", 0)
        if not existing_id:
            if org_id:
                logger.info("cant edit non existing")
                return Response(status=401)
            same_name = self.db.get_organization_by_name(name)
            if _get(same_name, "name") == name:
                return json_response(401, "Organization name already exists")
            org["created"] = now
            org["updated"] = now
            org["uuid"] = self.new_id()
        else:
            if not org_id:
                logger.info("can't create existing organization")
                return Response(status=401)
            if org_id != existing_id:
                logger.info("cant edit another organization")
                return Response(status=401)

        try:
            saved = self.db.create_or_edit_organization(org)
        except Exception as exc:
            logger.error("could not save organization: %s", exc)
            return Response(status=400)
        return json_response(200, saved)

    def get_organizations(self, request: Request) -> Response:
        return json_response(200, self.db.get_organizations(request))

    def get_organizations_count(self, request: Request) -> Response:
        return json_response(200, self.db.get_organizations_count())

    def get_organization_by_uuid(self, request: Request) -> Response:
        return json_response(200, self.db.get_organization_by_uuid(request.url_param("uuid")))

    def create_organization_user(self, request: Request) -> Response:
        pubkey = request.pubkey
        now = _now()
        try:
            org_user = _read_object(request)
        except ValueError as exc:
            logger.info("invalid organization user body: %s", exc)
            return Response(status=406)
        org_uuid = _get(org_user, "org_uuid")
        user_pubkey = _get(org_user, "owner_pubkey")
        org = self.db.get_organization_by_uuid(org_uuid)

        if not pubkey:
            logger.info("no pubkey from auth")
            return Response(status=401)
        if user_pubkey == _get(org, "owner_pubkey"):
            return json_response(401, "Cannot add organization admin as a user")
        if pubkey == user_pubkey:
            return json_response(401, "Cannot add userself as a user")
        if not self._has_access(pubkey, org_uuid, Role.ADD_USER):
            return json_response(401, "Don't have access to add user")

        person = self.db.get_person_by_pubkey(user_pubkey)
        if _get(person, "owner_pubkey") != user_pubkey:
            return json_response(401, "User doesn't exists in people")

        existing = self.db.get_organization_user(user_pubkey, org_uuid)
        if _get(existing, "id", 0):
            return json_response(401, "User already exists")

        org_user["created"] = now
        org_user["updated"] = now
        return json_response(200, self.db.create_organization_user(org_user))

    def get_organization_users(self, request: Request) -> Response:
        return json_response(200, self.db.get_organization_users(request.url_param("uuid")))

    def get_organization_user(self, request: Request) -> Response:
        if not request.pubkey:
            logger.info("no pubkey from auth")
            return Response(status=401)
        user = self.db.get_organization_user(request.pubkey, request.url_param("uuid"))
        return json_response(200, user)

    def get_organization_users_count(self, request: Request) -> Response:
        return json_response(
            200, self.db.get_organization_users_count(request.url_param("uuid"))
        )

    def delete_organization_user(self, request: Request) -> Response:
        pubkey = request.pubkey
        try:
            org_user = _read_object(request)
        except ValueError as exc:
            logger.info("invalid organization user body: %s", exc)
            return Response(status=406)
        if not pubkey:
            logger.info("no pubkey from auth")
            return Response(status=401)

        org_uuid = _get(org_user, "org_uuid")
        org = self.db.get_organization_by_uuid(org_uuid)
        if _get(org_user, "owner_pubkey") == _get(org, "owner_pubkey"):
            return json_response(401, "Cannot delete organization admin")
        if not self._has_access(pubkey, org_uuid, Role.DELETE_USER):
            return json_response(401, "Don't have access to delete user")

        self.db.delete_organization_user(org_user, org_uuid)
        return json_response(200, org_user)

    def get_bounty_roles(self, request: Request) -> Response:
        return json_response(200, self.db.get_bounty_roles())

    def add_user_roles(self, request: Request) -> Response:
        pubkey = request.pubkey
        org_uuid = request.url_param("uuid")
        user = request.url_param("user")
        now = _now()
        if not org_uuid or not user:
            return json_response(401, "no uuid, or user pubkey")

        try:
            roles = request.json()
        except ValueError as exc:
            logger.info("invalid roles body: %s", exc)
            return Response(status=406)
        if roles is None:
            roles = []
        if not isinstance(roles, list) or not all(isinstance(r, dict) for r in roles):
            return Response(status=406)

        if not pubkey:
            return json_response(401, "no pubkey from auth")

        has_role = self._has_access(pubkey, org_uuid, Role.ADD_ROLES)
        if check_user(roles, pubkey):
            return json_response(401, "cannot add roles for self")
        if pubkey == user:
            return json_response(401, "auth pubkey cannot be the same with user's")
        if not has_role:
            return json_response(401, "user does not have adequate permissions to add roles")

        roles_map = self.db.get_roles_map()
        insert_roles = []
        for role in roles:
            name = _get(role, "role")
            if name not in roles_map:
                return json_response(401, "not a valid user role")
            if not self._has_access(pubkey, org_uuid, name):
                return json_response(401, "cannot add a role you don't have")
            insert_roles.append({**role, "created": now})

        existing = self.db.get_organization_user(user, org_uuid)
        if _get(existing, "owner_pubkey") != user or _get(existing, "org_uuid") != org_uuid:
            return json_response(401, "User does not exists in the organization")

        self.db.create_user_roles(insert_roles, org_uuid, user)
        return json_response(200, insert_roles)

    def get_user_roles(self, request: Request) -> Response:
        roles = self.db.get_user_roles(request.url_param("uuid"), request.url_param("user"))
        return json_response(200, roles)

    def _user_from_param(self, request: Request) -> Any:
        try:
            user_id = convert_string_to_uint(request.url_param("userId"))
        except ValueError:
            user_id = 0
        if not user_id:
            return None
        return self.db.get_person(user_id)

    def _with_budget(self, org: Any, pubkey: str, org_uuid: str) -> None:
        if self._has_access(pubkey, org_uuid, Role.VIEW_REPORT):
            budget = self.db.get_organization_budget(org_uuid)
            _set(org, "budget", _get(budget, "total_budget", 0))
        else:
            _set(org, "budget", 0)
        _set(org, "bounty_count", self.db.get_organization_bounty_count(org_uuid))

    def _user_organizations(self, request: Request, require_bounty_roles: bool) -> Response:
        user = self._user_from_param(request)
        if user is None:
            logger.info("provide user id")
            return Response(status=406)
        pubkey = _get(user, "owner_pubkey")
        organizations = self.get_created_organizations(pubkey)
        for assigned in self.db.get_user_assigned_organizations(pubkey) or ():
            org_uuid = _get(assigned, "org_uuid")
            org = self.db.get_organization_by_uuid(org_uuid)
            if _get(org, "deleted", False):
                continue
            if require_bounty_roles and not self.db.user_has_manage_bounty_roles(pubkey, org_uuid):
                continue
            self._with_budget(org, pubkey, org_uuid)
            organizations.append(org)
        return json_response(200, organizations)

    def get_user_organizations(self, request: Request) -> Response:
        return self._user_organizations(request, require_bounty_roles=False)

    def get_user_dropdown_organizations(self, request: Request) -> Response:
        return self._user_organizations(request, require_bounty_roles=True)

    def get_created_organizations(self, pubkey: str) -> list[Any]:
        """Organizations created by pubkey, with bounty counts and visible budgets."""
        organizations = list(self.db.get_user_created_organizations(pubkey) or ())
        for org in organizations:
            self._with_budget(org, pubkey, _get(org, "uuid"))
        return organizations

    def get_organization_bounties(self, request: Request) -> Response:
        bounties = self.db.get_organization_bounties(request, request.url_param("uuid"))
        return json_response(200, self.generate_bounty_response(bounties))

    def get_organization_bounties_count(self, request: Request) -> Response:
        count = self.db.get_organization_bounties_count(request, request.url_param("uuid"))
        return json_response(200, count)

    def get_organization_budget(self, request: Request) -> Response:
        pubkey = request.pubkey
        org_uuid = request.url_param("uuid")
        if not pubkey:
            logger.info("no pubkey from auth")
            return Response(status=401)
        if not self._has_access(pubkey, org_uuid, Role.VIEW_REPORT):
            return json_response(401, "Don't have access to view budget")
        return json_response(200, self.db.get_organization_budget(org_uuid))

    def get_organization_budget_history(self, request: Request) -> Response:
        org_uuid = request.url_param("uuid")
        if not self._has_access(request.pubkey, org_uuid, Role.VIEW_REPORT):
            return json_response(401, "Don't have access to view budget history")
        return json_response(200, self.db.get_organization_budget_history(org_uuid))

    def get_payment_history(self, request: Request) -> Response:
        pubkey = request.pubkey
        org_uuid = request.url_param("uuid")
        if not pubkey:
            logger.info("no pubkey from auth")
            return Response(status=401)
        if not self._has_access(pubkey, org_uuid, Role.VIEW_REPORT):
            return json_response(401, "Don't have access to view payments")

        history = []
        for payment in self.db.get_payment_history(org_uuid, request) or ():
            sender = self.db.get_person_by_pubkey(_get(payment, "sender_pubkey"))
            receiver = self.db.get_person_by_pubkey(_get(payment, "receiver_pubkey"))
            base = dict(payment) if isinstance(payment, Mapping) else dict(vars(payment))
            base.update(
                {
                    "sender_name": _get(sender, "unique_name"),
                    "sender_img": _get(sender, "img"),
                    "receiver_name": _get(receiver, "unique_name"),
                    "receiver_img": _get(receiver, "img"),
                }
            )
            history.append(base)
        return json_response(200, history)

    def poll_budget_invoices(self, request: Request) -> Response:
        if not request.pubkey:
            logger.info("no pubkey from auth")
            return Response(status=401)
        for invoice in self.db.get_organization_invoices(request.url_param("uuid")) or ():
            payment_request = _get(invoice, "payment_request")
            try:
                result = self.get_lightning_invoice(payment_request)
            except Exception as exc:
                return json_response(403, {"success": False, "error": str(exc)})
            settled = _get(_get(result, "response", None), "settled", False)
            if settled and not _get(invoice, "status", False) and _get(invoice, "type") == "BUDGET":
                self.db.add_and_update_budget(invoice)
                self.db.update_invoice(payment_request)
        return json_response(200, "Polled invoices")

    def get_invoices_count(self, request: Request) -> Response:
        if not request.pubkey:
            logger.info("no pubkey from auth")
            return Response(status=401)
        return json_response(
            200, self.db.get_organization_invoices_count(request.url_param("uuid"))
        )

    def delete_organization(self, request: Request) -> Response:
        pubkey = request.pubkey
        org_uuid = request.url_param("uuid")
        if not pubkey:
            logger.info("no pubkey from auth")
            return Response(status=401)

        org = self.db.get_organization_by_uuid(org_uuid)
        if pubkey != _get(org, "owner_pubkey"):
            return json_response(401, "only org admin can delete an organization")

        try:
            self.db.update_organization_for_deletion(org_uuid)
        except Exception as exc:
            logger.error("error updating organization: %s", exc)
            return Response(status=500)
        try:
            self.db.delete_all_users_from_organization(org_uuid)
        except Exception as exc:
            logger.error("error removing users from organization: %s", exc)
            return Response(status=500)

        deleted = self.db.change_organization_delete_status(org_uuid, True)
        return json_response(200, deleted)